"""
Request and response models for the worksheet HTTP API.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime


class WorksheetSaveRequest(BaseModel):
    data: Dict[str, Any] = Field(default_factory=dict)


class WorksheetFlushRequest(BaseModel):
    data: Optional[Dict[str, Any]] = None
    completed: bool = False


class WorksheetResponse(BaseModel):
    phase_number: int
    worksheet_id: str
    data: Dict[str, Any]
    completed: bool
    completed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    progress: int
    optimistic: bool = False


class WorksheetListResponse(BaseModel):
    worksheets: List[WorksheetResponse]


class PhaseProgressResponse(BaseModel):
    phase_number: int
    completed: int
    total: int
    percentage: int
    worksheets: List[WorksheetResponse]


class SaveStatusResponse(BaseModel):
    phase_number: int
    worksheet_id: str
    is_saving: bool
    is_pending: bool
    is_error: bool
    last_error: Optional[str] = None
    last_saved_at: Optional[datetime] = None


class ResetResponse(BaseModel):
    deleted: int


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    config_issues: List[str]

