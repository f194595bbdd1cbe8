from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ExportRequest(BaseModel):
    # Idempotency token; resubmitting the same token returns the same job
    request_id: str | None = Field(default=None, max_length=100)


class ExportJobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    project_id: str
    request_id: str
    status: str
    progress: float
    current_stage: str | None
    output_path: str | None
    error: str | None
    cancel_requested: bool
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime
