"""
Uvicorn runner for the status API.
"""

from __future__ import annotations

import threading

import uvicorn

from nfs_provisioner.api.main import create_app
from nfs_provisioner.cli.lib.server import ExportServer


def start_status_server(server: ExportServer, host: str, port: int) -> threading.Thread:
    """
    Serve the status API on a daemon thread.

    Uvicorn only installs signal handlers on the main thread, so the
    provisioner's own handlers stay in charge.
    """
    config = uvicorn.Config(create_app(server), host=host, port=port, log_level="warning")
    status_server = uvicorn.Server(config)
    thread = threading.Thread(target=status_server.run, name="status-api", daemon=True)
    thread.start()
    return thread
