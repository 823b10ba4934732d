from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, Literal
from datetime import datetime

ExecutionStatus = Literal["running", "completed", "paused", "failed"]
WaitState = Literal["question", "delay"]

class ExecutionData(BaseModel):
    """
    One run of a flow bound to a single conversation.
    At most one execution per conversation_id may be running at a time.
    """
    id: Optional[str] = None  # MongoDB _id
    flow_id: str
    conversation_id: str
    phone: str = Field(default="", description="Contact phone, used to send node texts")
    contact_name: str = Field(default="", description="Contact name, used for {{contact_name}}")
    current_node_id: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict)
    status: ExecutionStatus = "running"
    wait_state: Optional[WaitState] = Field(None, description="What a running execution is waiting for")
    resume_at: Optional[datetime] = Field(None, description="When a delay wait is over")
    version: int = Field(default=0, description="Incremented on every write, checked on update")
    started_at: datetime = Field(default_factory=datetime.utcnow)
    last_activity_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
