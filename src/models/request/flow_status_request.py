from pydantic import BaseModel, Field


class FlowStatusRequest(BaseModel):
    is_active: bool = Field(..., description="Whether the flow can be triggered")
