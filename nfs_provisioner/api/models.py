"""
Pydantic models for status API responses.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ExportResponse(BaseModel):
    """One entry of the export table."""

    path: str = Field(..., description="Exported directory")
    access_rule: str = Field(..., description="Client spec, e.g. *(rw,no_root_squash)")
    claim_uid: str = Field("", description="UID of the originating claim; empty for static exports")
    fsid: int = Field(..., description="fsid option passed to the kernel")
    created_at: str = Field(..., description="Creation timestamp")


class ExportListData(BaseModel):
    items: List[ExportResponse]


class ExportListResponse(BaseModel):
    request_id: str
    status: str
    data: ExportListData


class HealthData(BaseModel):
    running: bool
    daemons: Dict[str, Optional[bool]]


class HealthResponse(BaseModel):
    request_id: str
    status: str
    data: HealthData
