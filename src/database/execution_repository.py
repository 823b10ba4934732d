from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any
from datetime import datetime

# Models
from models.flow_data import FlowData
from models.execution_data import ExecutionData
from models.execution_log_data import ExecutionLogData


class ExecutionRepository(ABC):
    """
    Persistence contract for flows, executions and execution logs.

    Implementations raise PersistenceError on any storage failure and
    ExecutionConflictError when a write loses against a concurrent one.
    They never report success for a write that did not happen.
    """

    async def create_indexes(self) -> None:
        return None

    def close(self) -> None:
        return None

    # Flows
    @abstractmethod
    async def create_flow(self, flow: FlowData) -> FlowData:
        ...

    @abstractmethod
    async def get_flow(self, flow_id: str) -> Optional[FlowData]:
        ...

    @abstractmethod
    async def get_flows(self) -> List[FlowData]:
        ...

    @abstractmethod
    async def get_active_flows(self) -> List[FlowData]:
        """
        Active flows in a stable order (creation order)
        """

    @abstractmethod
    async def update_flow_active(self, flow_id: str, is_active: bool) -> Optional[FlowData]:
        ...

    # Executions
    @abstractmethod
    async def create_execution(self, execution: ExecutionData) -> ExecutionData:
        """
        Insert a new execution. Raises ExecutionConflictError when the
        conversation already has a running execution.
        """

    @abstractmethod
    async def get_execution(self, execution_id: str) -> Optional[ExecutionData]:
        ...

    @abstractmethod
    async def get_running_execution(self, conversation_id: str) -> Optional[ExecutionData]:
        ...

    @abstractmethod
    async def get_executions(self, limit: int = 100) -> List[ExecutionData]:
        """
        Most recent first, across all flows
        """

    @abstractmethod
    async def get_executions_by_flow(self, flow_id: str, limit: int = 100) -> List[ExecutionData]:
        """
        Most recent first
        """

    @abstractmethod
    async def compare_and_update_execution(
        self,
        execution_id: str,
        expected_version: int,
        changes: Dict[str, Any]
    ) -> ExecutionData:
        """
        Apply changes only if the stored version still equals expected_version,
        incrementing it. Raises ExecutionConflictError otherwise.
        """

    @abstractmethod
    async def pause_timed_out_executions(self, cutoff: datetime) -> int:
        """
        Move every running execution with last_activity_at < cutoff to paused.
        Returns how many were paused.
        """

    @abstractmethod
    async def get_due_delayed_executions(self, now: datetime) -> List[ExecutionData]:
        """
        Running executions waiting on a delay whose resume_at <= now
        """

    # Logs
    @abstractmethod
    async def save_execution_log(self, log: ExecutionLogData) -> ExecutionLogData:
        ...

    @abstractmethod
    async def get_execution_logs(self, execution_id: str) -> List[ExecutionLogData]:
        ...
