from typing import Optional
from pydantic import BaseModel, Field


class StopExecutionResponse(BaseModel):
    status: str = Field(..., description="stopped, ignored (execution was not running) or error")
    message: str = Field(..., description="Human-readable message")
    flow_id: Optional[str] = Field(None, description="Flow of the execution")
    execution_id: Optional[str] = Field(None, description="Execution ID")
    execution_status: Optional[str] = Field(None, description="Execution status after the request")
    error_details: Optional[str] = Field(None, description="Error details if status is error")
