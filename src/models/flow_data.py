from pydantic import BaseModel, Field, ConfigDict, model_validator
from typing import Optional, List, Dict, Any, Literal
from datetime import datetime

TRIGGER_TYPES = ("keyword", "first_message", "schedule", "webhook")
NODE_TYPES = ("message", "question", "condition", "action", "delay", "transfer")
CONDITION_OPERATORS = ("equals", "contains", "starts_with", "ends_with", "greater_than", "less_than")
ACTION_TYPES = ("set_variable", "assign_agent", "tag_conversation", "http_request")

class FlowNodePosition(BaseModel):
    x: float = 0
    y: float = 0

class FlowOption(BaseModel):
    label: str
    value: str

class FlowCondition(BaseModel):
    variable: str
    operator: str
    value: str = ""

class FlowConnection(BaseModel):
    id: str
    target_node_id: str
    label: Optional[str] = None  # "true" / "false" routing for condition nodes
    condition: Optional[str] = None  # Literal reply match for question nodes

class FlowNodeData(BaseModel):
    model_config = ConfigDict(extra='allow')  # Editor specific keys are kept as is

    # Message nodes
    message: Optional[str] = None
    media_type: Optional[str] = None
    media_url: Optional[str] = None

    # Question nodes
    question: Optional[str] = None
    options: Optional[List[FlowOption]] = None
    variable_name: Optional[str] = None

    # Condition nodes
    condition: Optional[FlowCondition] = None

    # Action nodes
    action_type: Optional[str] = None
    action_config: Optional[Dict[str, Any]] = None

    # Delay nodes
    delay_seconds: Optional[float] = None

    # Transfer nodes
    transfer_to_agent: Optional[str] = None
    transfer_message: Optional[str] = None

class FlowNode(BaseModel):
    id: str
    type: str  # Kept open so an unknown type fails the execution, not the flow load
    position: Optional[FlowNodePosition] = None
    data: FlowNodeData = Field(default_factory=FlowNodeData)
    connections: List[FlowConnection] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return len(self.connections) == 0

class FlowData(BaseModel):
    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    trigger_type: Literal["keyword", "first_message", "schedule", "webhook"]
    trigger_value: Optional[str] = None
    is_active: bool = False
    entry_node_id: Optional[str] = Field(None, description="Explicit entry node of the flow")
    nodes: List[FlowNode] = Field(default_factory=list)
    created_at: Optional[datetime] = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = Field(default_factory=datetime.utcnow)

    @model_validator(mode="after")
    def check_unique_node_ids(self) -> "FlowData":
        seen = set()
        for node in self.nodes:
            if node.id in seen:
                raise ValueError(f"Duplicate node id in flow: {node.id}")
            seen.add(node.id)
        return self

    def get_node(self, node_id: Optional[str]) -> Optional[FlowNode]:
        if node_id is None:
            return None
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def find_unreferenced_nodes(self) -> List[FlowNode]:
        """
        Nodes that no connection points to, in flow order
        """
        target_ids = {
            connection.target_node_id
            for node in self.nodes
            for connection in node.connections
        }
        return [node for node in self.nodes if node.id not in target_ids]

    def resolve_entry_node(self) -> Optional[FlowNode]:
        """
        The declared entry node; flows without one fall back to the first
        unreferenced node, then to the first node.
        """
        if self.entry_node_id:
            return self.get_node(self.entry_node_id)
        candidates = self.find_unreferenced_nodes()
        if candidates:
            return candidates[0]
        return self.nodes[0] if self.nodes else None
