"""
FastAPI status application.
"""

import logging
import uuid
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from nfs_provisioner.api.models import ExportListResponse, HealthResponse
from nfs_provisioner.cli.lib.server import ExportServer

logger = logging.getLogger(__name__)


def create_app(server: ExportServer) -> FastAPI:
    """Build the status API for a running ExportServer."""
    app = FastAPI(title="NFS Provisioner", description="Status of the NFS export server", version="0.1.0")
    app.state.server = server

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler."""
        request_id = str(uuid.uuid4())
        logger.exception("Unhandled error (request_id=%s, path=%s)", request_id, request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "request_id": request_id,
                "status": "error",
                "error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "details": {}},
            },
        )

    @app.get("/healthz", response_model=HealthResponse)
    def healthz(request: Request):
        """
        Report whether the NFS server is up. 503 while stopped or stopping.
        """
        srv: ExportServer = request.app.state.server
        body = {
            "request_id": str(uuid.uuid4()),
            "status": "ok" if srv.running else "error",
            "data": {"running": srv.running, "daemons": srv.status()},
        }
        if not srv.running:
            return JSONResponse(status_code=503, content=body)
        return body

    @app.get("/v1/exports", response_model=ExportListResponse)
    def list_exports(request: Request) -> Dict[str, Any]:
        """
        List the export table.
        """
        srv: ExportServer = request.app.state.server
        return {
            "request_id": str(uuid.uuid4()),
            "status": "ok",
            "data": {"items": [e.to_dict() for e in srv.exports()]},
        }

    return app
