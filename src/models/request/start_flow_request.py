from typing import Optional, Dict, Any
from pydantic import BaseModel, Field

# Models
from models.message_context import MessageContext


class StartFlowRequest(BaseModel):
    """
    Request model for starting a flow from outside the inbound pipeline
    (scheduler jobs, webhook triggers).
    """
    conversation_id: str = Field(..., description="Conversation to run the flow in")
    phone: str = Field(..., description="Contact phone number")
    contact_name: str = Field(default="", description="Contact display name")
    message_text: str = Field(default="", description="Text made available to the flow, if any")
    message_type: str = Field(default="webhook", description="Origin of the start (webhook, schedule)")
    variables: Optional[Dict[str, Any]] = Field(None, description="Initial execution variables")

    class Config:
        json_schema_extra = {
            "example": {
                "conversation_id": "conv_123",
                "phone": "+5215512345678",
                "contact_name": "Ana",
                "message_type": "schedule",
                "variables": {"campaign": "october"}
            }
        }

    def to_context(self) -> MessageContext:
        return MessageContext(
            conversation_id=self.conversation_id,
            phone=self.phone,
            contact_name=self.contact_name,
            message_text=self.message_text,
            message_type=self.message_type
        )
