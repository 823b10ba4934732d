from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, Literal
from datetime import datetime

class ExecutionLogData(BaseModel):
    """
    One node run of an execution. Append only.
    """
    id: Optional[str] = None  # MongoDB _id
    execution_id: str
    node_id: str
    node_type: str
    action: Literal["executed", "failed", "error"]
    input_data: Dict[str, Any] = Field(default_factory=dict)
    output_data: Dict[str, Any] = Field(default_factory=dict)
    duration_ms: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
