from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, Optional

class ResolvedStatusOut(BaseModel):
    is_ended: bool
    is_warning: bool
    hours_remaining: Optional[float] = None
    display_string: str
    badge: str

class TaskOut(BaseModel):
    id: str
    title: str
    reward: float
    status: str
    deadline: Optional[datetime] = None
    user_time_limit_hours: Optional[float] = None
    max_completions: Optional[int] = None
    completions: int = 0
    resolved: ResolvedStatusOut

class TimerOut(BaseModel):
    task_id: str
    task_title: str
    status: str
    started_at: Optional[datetime] = None
    time_limit_hours: Optional[float] = None
    timer: ResolvedStatusOut

class NotificationOut(BaseModel):
    id: str
    type: str
    title: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    is_read: bool
    created_at: Optional[datetime] = None

class ReviewOut(BaseModel):
    id: str
    status: str
    rejection_reason: Optional[str] = None

class RejectIn(BaseModel):
    reason: str = ""
