from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, Literal
from datetime import datetime


class NodeExecutionResult(BaseModel):
    """
    Outcome of running one node
    """
    success: bool = True
    next_node_id: Optional[str] = None
    response_text: Optional[str] = None
    should_wait: bool = False
    wait_state: Optional[Literal["question", "delay"]] = None
    resume_at: Optional[datetime] = None
    terminal_status: Optional[Literal["completed", "paused"]] = None  # Set by transfer nodes
    error: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict)
