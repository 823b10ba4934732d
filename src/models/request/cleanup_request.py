from pydantic import BaseModel, Field


class CleanupRequest(BaseModel):
    timeout_minutes: int = Field(default=30, gt=0, description="Inactivity after which running executions are paused")
