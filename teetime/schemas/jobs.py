from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class JobItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_type: str
    booking_id: Optional[UUID] = None
    notification_id: Optional[UUID] = None
    run_at: datetime
    status: str
    attempts: int = 0


class DueJobsResponse(BaseModel):
    count: int
    jobs: list[JobItem]


class JobResultRequest(BaseModel):
    status: Literal["sent", "failed"]
    error: Optional[str] = None
    provider_message_id: Optional[str] = None


class JobResultResponse(BaseModel):
    success: bool
    job_id: UUID
    status: str
    message: str
