from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

# -- Response --

# module access check (page load)
class ModuleAccessResponse(BaseModel):
    allowed: bool
    reason: Optional[str] = Field(None, description="denial reason code")
    remaining_seconds: Optional[int] = Field(None, description="module time left, server clock")
    redirect_hint: Optional[str] = None
    module_status: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    attempt_remaining_seconds: Optional[int] = Field(None, description="time left before the overall deadline")
    overall_deadline: Optional[datetime] = None
    server_time: datetime


# module submission
class ModuleCompleteResponse(BaseModel):
    success: bool
    outcome: str
    completed_at: Optional[datetime] = None
    attempt_status: str
    redirect_hint: Optional[str] = None


# client timer / screen directive
class HeartbeatResponse(BaseModel):
    screen: str
    phase: str
    remaining_seconds: Optional[int] = None
    countdown: Optional[str] = None
    resync_after_seconds: Optional[int] = None
    message: Optional[str] = None
    redirect_hint: Optional[str] = None


class ModuleOverviewItem(BaseModel):
    module_type: str
    status: str
    sequence_index: int
    allowed_duration: int
    available: bool
    remaining_seconds: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


# module selector page
class AttemptOverviewResponse(BaseModel):
    attempt_id: str
    status: str
    server_time: datetime
    overall_deadline: Optional[datetime] = None
    attempt_remaining_seconds: Optional[int] = None
    modules: List[ModuleOverviewItem]
