from typing import List, Dict, Any, Optional
from datetime import datetime
from pydantic import ValidationError

# Utils
from utils.log_utils import LogUtil

# Database
from database.execution_repository import ExecutionRepository

# Models
from models.flow_data import FlowData, NODE_TYPES, CONDITION_OPERATORS, ACTION_TYPES
from models.execution_data import ExecutionData
from models.execution_log_data import ExecutionLogData

# Exceptions
from exceptions.flow_exception import FlowNotFoundException, FlowValidationException


class FlowService:
    """
    Flow and execution read/write operations behind the management API.
    """
    def __init__(self, log_util: LogUtil, flow_db: ExecutionRepository):
        self.log_util = log_util
        self.flow_db = flow_db

    def validate_flow(self, flow: FlowData) -> None:
        """
        Reject graphs the engine cannot run unambiguously.
        Duplicate node ids are already rejected by FlowData itself.
        """
        if not flow.nodes:
            raise FlowValidationException(message="Flow must contain at least one node")
        if not flow.entry_node_id:
            raise FlowValidationException(message="Flow must declare entry_node_id")
        if flow.get_node(flow.entry_node_id) is None:
            raise FlowValidationException(message=f"Entry node {flow.entry_node_id} does not exist")
        if flow.trigger_type == "keyword" and not flow.trigger_value:
            raise FlowValidationException(message="Keyword flows require a trigger_value")

        node_ids = {node.id for node in flow.nodes}
        for node in flow.nodes:
            if node.type not in NODE_TYPES:
                raise FlowValidationException(message=f"Node {node.id} has unknown type {node.type}")
            for connection in node.connections:
                if connection.target_node_id not in node_ids:
                    raise FlowValidationException(
                        message=f"Connection {connection.id} of node {node.id} targets missing node {connection.target_node_id}"
                    )
            if node.type == "condition":
                if node.data.condition is None:
                    raise FlowValidationException(message=f"Condition node {node.id} has no condition")
                if node.data.condition.operator not in CONDITION_OPERATORS:
                    raise FlowValidationException(
                        message=f"Condition node {node.id} uses unknown operator {node.data.condition.operator}"
                    )
            if node.type == "action" and node.data.action_type not in ACTION_TYPES:
                raise FlowValidationException(message=f"Action node {node.id} has unknown action_type {node.data.action_type}")

    async def create_flow(self, flow_data: Dict[str, Any]) -> FlowData:
        """
        Validate and store a new flow. New flows start inactive unless stated otherwise.
        """
        try:
            flow = FlowData.model_validate({
                **flow_data,
                "id": None,
                "created_at": datetime.utcnow(),
                "updated_at": datetime.utcnow()
            })
        except ValidationError as e:
            raise FlowValidationException(message=f"Invalid flow: {e.errors()[0].get('msg')}") from e

        self.validate_flow(flow)
        saved_flow = await self.flow_db.create_flow(flow)
        self.log_util.info(service_name="FlowService", message=f"Flow {saved_flow.id} ({saved_flow.name}) created")
        return saved_flow

    async def get_flows_list(self) -> List[FlowData]:
        return await self.flow_db.get_flows()

    async def get_flow_detail(self, flow_id: str) -> FlowData:
        flow = await self.flow_db.get_flow(flow_id)
        if flow is None:
            raise FlowNotFoundException(message=f"Flow {flow_id} not found")
        return flow

    async def update_flow_status(self, flow_id: str, is_active: bool) -> FlowData:
        flow = await self.flow_db.update_flow_active(flow_id, is_active)
        if flow is None:
            raise FlowNotFoundException(message=f"Flow {flow_id} not found")
        self.log_util.info(
            service_name="FlowService",
            message=f"Flow {flow_id} {'activated' if is_active else 'deactivated'}"
        )
        return flow

    async def get_flow_executions(self, flow_id: str, limit: int = 100) -> List[ExecutionData]:
        await self.get_flow_detail(flow_id)
        return await self.flow_db.get_executions_by_flow(flow_id, limit=limit)

    async def get_executions_list(self, flow_id: Optional[str] = None, limit: int = 100) -> List[ExecutionData]:
        if flow_id:
            return await self.get_flow_executions(flow_id, limit=limit)
        return await self.flow_db.get_executions(limit=limit)

    async def get_execution(self, execution_id: str) -> ExecutionData:
        execution = await self.flow_db.get_execution(execution_id)
        if execution is None:
            raise FlowNotFoundException(message=f"Execution {execution_id} not found")
        return execution

    async def get_execution_logs(self, execution_id: str) -> List[ExecutionLogData]:
        await self.get_execution(execution_id)
        return await self.flow_db.get_execution_logs(execution_id)
