from pydantic import BaseModel


class CleanupResponse(BaseModel):
    status: str
    paused_count: int
    timeout_minutes: int
