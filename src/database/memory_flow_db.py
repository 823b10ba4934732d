import asyncio
import uuid
from typing import Optional, List, Dict, Any
from datetime import datetime

# Utils
from utils.log_utils import LogUtil

# Database
from database.execution_repository import ExecutionRepository

# Exceptions
from exceptions.flow_exception import ExecutionConflictError

# Models
from models.flow_data import FlowData
from models.execution_data import ExecutionData
from models.execution_log_data import ExecutionLogData


class InMemoryFlowDB(ExecutionRepository):
    """
    Process-local repository with the same contract as FlowDB.
    Used for local runs (FLOW_DB_BACKEND=memory) and tests.
    """

    def __init__(self, log_util: LogUtil):
        self.log_util = log_util
        self._flows: Dict[str, FlowData] = {}
        self._executions: Dict[str, ExecutionData] = {}
        self._logs: List[ExecutionLogData] = []
        self._lock = asyncio.Lock()

    @staticmethod
    def _new_id() -> str:
        return uuid.uuid4().hex

    # Flows
    async def create_flow(self, flow: FlowData) -> FlowData:
        async with self._lock:
            stored = flow.model_copy(deep=True, update={"id": flow.id or self._new_id()})
            self._flows[stored.id] = stored
            return stored.model_copy(deep=True)

    async def get_flow(self, flow_id: str) -> Optional[FlowData]:
        flow = self._flows.get(flow_id)
        return flow.model_copy(deep=True) if flow else None

    async def get_flows(self) -> List[FlowData]:
        return [flow.model_copy(deep=True) for flow in self._flows.values()]

    async def get_active_flows(self) -> List[FlowData]:
        return [flow.model_copy(deep=True) for flow in self._flows.values() if flow.is_active]

    async def update_flow_active(self, flow_id: str, is_active: bool) -> Optional[FlowData]:
        async with self._lock:
            flow = self._flows.get(flow_id)
            if flow is None:
                return None
            updated = flow.model_copy(update={"is_active": is_active, "updated_at": datetime.utcnow()})
            self._flows[flow_id] = updated
            return updated.model_copy(deep=True)

    # Executions
    async def create_execution(self, execution: ExecutionData) -> ExecutionData:
        async with self._lock:
            if execution.status == "running" and self._find_running(execution.conversation_id):
                self.log_util.warning(
                    service_name="InMemoryFlowDB",
                    message=f"Conversation {execution.conversation_id} already has a running execution"
                )
                raise ExecutionConflictError(
                    message=f"Conversation {execution.conversation_id} already has a running execution"
                )
            stored = execution.model_copy(deep=True, update={"id": self._new_id()})
            self._executions[stored.id] = stored
            return stored.model_copy(deep=True)

    def _find_running(self, conversation_id: str) -> Optional[ExecutionData]:
        running = [
            execution for execution in self._executions.values()
            if execution.conversation_id == conversation_id and execution.status == "running"
        ]
        if not running:
            return None
        return max(running, key=lambda execution: execution.started_at)

    async def get_execution(self, execution_id: str) -> Optional[ExecutionData]:
        execution = self._executions.get(execution_id)
        return execution.model_copy(deep=True) if execution else None

    async def get_running_execution(self, conversation_id: str) -> Optional[ExecutionData]:
        execution = self._find_running(conversation_id)
        return execution.model_copy(deep=True) if execution else None

    async def get_executions(self, limit: int = 100) -> List[ExecutionData]:
        executions = sorted(self._executions.values(), key=lambda execution: execution.started_at, reverse=True)
        return [execution.model_copy(deep=True) for execution in executions[:limit]]

    async def get_executions_by_flow(self, flow_id: str, limit: int = 100) -> List[ExecutionData]:
        executions = [execution for execution in self._executions.values() if execution.flow_id == flow_id]
        executions.sort(key=lambda execution: execution.started_at, reverse=True)
        return [execution.model_copy(deep=True) for execution in executions[:limit]]

    async def compare_and_update_execution(
        self,
        execution_id: str,
        expected_version: int,
        changes: Dict[str, Any]
    ) -> ExecutionData:
        async with self._lock:
            current = self._executions.get(execution_id)
            if current is None:
                raise ExecutionConflictError(message=f"Execution {execution_id} does not exist")
            if current.version != expected_version:
                self.log_util.warning(
                    service_name="InMemoryFlowDB",
                    message=f"Stale write rejected for execution {execution_id} (expected version {expected_version}, found {current.version})"
                )
                raise ExecutionConflictError(
                    message=f"Execution {execution_id} was modified concurrently (expected version {expected_version})"
                )
            if changes.get("status") == "running" and current.status != "running":
                other = self._find_running(current.conversation_id)
                if other is not None and other.id != execution_id:
                    raise ExecutionConflictError(
                        message=f"Execution {execution_id} update collides with another running execution"
                    )
            updated = ExecutionData.model_validate(
                {**current.model_dump(), **changes, "version": current.version + 1}
            )
            self._executions[execution_id] = updated
            return updated.model_copy(deep=True)

    async def pause_timed_out_executions(self, cutoff: datetime) -> int:
        async with self._lock:
            paused = 0
            for execution_id, execution in list(self._executions.items()):
                if execution.status == "running" and execution.last_activity_at < cutoff:
                    self._executions[execution_id] = execution.model_copy(
                        update={"status": "paused", "version": execution.version + 1}
                    )
                    paused += 1
            return paused

    async def get_due_delayed_executions(self, now: datetime) -> List[ExecutionData]:
        due = [
            execution for execution in self._executions.values()
            if execution.status == "running"
            and execution.wait_state == "delay"
            and execution.resume_at is not None
            and execution.resume_at <= now
        ]
        due.sort(key=lambda execution: execution.resume_at)
        return [execution.model_copy(deep=True) for execution in due]

    # Logs
    async def save_execution_log(self, log: ExecutionLogData) -> ExecutionLogData:
        async with self._lock:
            stored = log.model_copy(deep=True, update={"id": self._new_id()})
            self._logs.append(stored)
            return stored.model_copy(deep=True)

    async def get_execution_logs(self, execution_id: str) -> List[ExecutionLogData]:
        return [log.model_copy(deep=True) for log in self._logs if log.execution_id == execution_id]
