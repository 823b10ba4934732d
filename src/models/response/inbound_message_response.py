from typing import Optional
from pydantic import BaseModel, Field


class InboundMessageResponse(BaseModel):
    """
    Response model for inbound message processing.
    Indicates whether automation ran and where the execution stands.
    """
    status: str = Field(..., description="Processing status (started, continued, no_automation, ignored, error)")
    message: str = Field(..., description="Human-readable message")
    automation_triggered: bool = Field(default=False, description="Whether a flow handled the message")
    flow_id: Optional[str] = Field(None, description="Flow ID if automation handled the message")
    execution_id: Optional[str] = Field(None, description="Execution ID if automation handled the message")
    current_node_id: Optional[str] = Field(None, description="Node the execution stopped on")
    execution_status: Optional[str] = Field(None, description="Execution status after processing")
    error_details: Optional[str] = Field(None, description="Error details if status is error")

    class Config:
        json_schema_extra = {
            "example": {
                "status": "started",
                "message": "Flow started",
                "automation_triggered": True,
                "flow_id": "flow_123",
                "execution_id": "exec_456",
                "current_node_id": "node_2",
                "execution_status": "running",
                "error_details": None
            }
        }
