from pydantic import BaseModel, Field


class MessageContext(BaseModel):
    """
    Inbound event as delivered by a messaging channel
    """
    conversation_id: str = Field(..., description="Conversation the message belongs to")
    phone: str = Field(..., description="Contact phone number")
    contact_name: str = Field(default="", description="Contact display name")
    message_text: str = Field(default="", description="Raw message text")
    message_type: str = Field(default="text", description="Message type (text, image, button, ...)")
