from pydantic import BaseModel, Field

# Models
from models.message_context import MessageContext


class InboundMessageRequest(BaseModel):
    """
    Request model for inbound messages posted by a messaging-channel service.
    """
    conversation_id: str = Field(..., description="Conversation identifier")
    phone: str = Field(..., description="Contact phone number")
    contact_name: str = Field(default="", description="Contact display name")
    message_text: str = Field(default="", description="Raw message text")
    message_type: str = Field(default="text", description="Type of message (text, image, button, ...)")

    class Config:
        json_schema_extra = {
            "example": {
                "conversation_id": "conv_123",
                "phone": "+5215512345678",
                "contact_name": "Ana",
                "message_text": "Hola, quiero info",
                "message_type": "text"
            }
        }

    def to_context(self) -> MessageContext:
        return MessageContext(**self.model_dump())
