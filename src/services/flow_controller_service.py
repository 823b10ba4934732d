"""
Flow Controller Service
Drives an execution through its flow: start, continue on replies, resume after
delays and end. Every state change goes through the repository's
compare-and-update so a stale writer can never overwrite newer state.
"""
import time
from typing import Optional, Dict, Any, Tuple
from datetime import datetime

# Utils
from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils

# Database
from database.execution_repository import ExecutionRepository

# Services
from services.node_execution_service import NodeExecutionService
from services.internal.channel_service import ChannelService
from services.execution_cache import ExecutionCache

# Exceptions
from exceptions.flow_exception import (
    FlowException,
    FlowValidationException,
    PersistenceError,
    ExecutionConflictError
)

# Models
from models.flow_data import FlowData, FlowNode, FlowConnection
from models.execution_data import ExecutionData
from models.execution_log_data import ExecutionLogData
from models.message_context import MessageContext


class FlowControllerService:
    def __init__(
        self,
        log_util: LogUtil,
        environment_utils: EnvironmentUtils,
        flow_db: ExecutionRepository,
        node_execution_service: NodeExecutionService,
        channel_service: ChannelService,
        execution_cache: Optional[ExecutionCache] = None
    ):
        self.log_util = log_util
        self.flow_db = flow_db
        self.node_execution_service = node_execution_service
        self.channel_service = channel_service
        self.execution_cache = execution_cache or ExecutionCache()
        self.max_steps = int(environment_utils.get_env_variable("FLOW_MAX_STEPS"))

    # Lookups
    async def get_running_execution(self, conversation_id: str) -> Optional[ExecutionData]:
        """
        The stored record decides: a cached entry is only returned while the
        store still holds it running at the same version.
        """
        cached = self.execution_cache.get(conversation_id)
        if cached is not None:
            stored = await self.flow_db.get_execution(cached.id)
            if stored is not None and stored.status == "running" and stored.version == cached.version:
                return cached
            self.log_util.info(
                service_name="FlowControllerService",
                message=f"[CACHE] Cached execution {cached.id} of conversation {conversation_id} is stale, reloading from store"
            )
            self.execution_cache.invalidate(conversation_id, cached.id)
        execution = await self.flow_db.get_running_execution(conversation_id)
        if execution is not None:
            self.execution_cache.put(execution)
        return execution

    async def has_running_execution(self, conversation_id: str) -> bool:
        return await self.get_running_execution(conversation_id) is not None

    # Transitions
    async def start_flow(
        self,
        flow: FlowData,
        context: MessageContext,
        variables: Optional[Dict[str, Any]] = None
    ) -> ExecutionData:
        """
        Create a running execution for the conversation and run the flow from
        its entry node until it waits or ends.

        Raises:
            FlowValidationException: the flow has no usable entry node
            ExecutionConflictError: the conversation already has a running execution
            PersistenceError: the execution could not be stored
        """
        if not flow.entry_node_id:
            self.log_util.warning(
                service_name="FlowControllerService",
                message=f"[FLOW_START] Flow {flow.id} declares no entry_node_id, inferring the entry node"
            )
        entry_node = flow.resolve_entry_node()
        if entry_node is None:
            self.log_util.error(
                service_name="FlowControllerService",
                message=f"[FLOW_START] ❌ No entry node found in flow {flow.id}"
            )
            raise FlowValidationException(message=f"Flow {flow.id} has no entry node")

        execution = await self.flow_db.create_execution(ExecutionData(
            flow_id=flow.id,
            conversation_id=context.conversation_id,
            phone=context.phone,
            contact_name=context.contact_name,
            current_node_id=entry_node.id,
            variables=dict(variables or {}),
            status="running"
        ))
        self.execution_cache.put(execution)
        self.log_util.info(
            service_name="FlowControllerService",
            message=f"[FLOW_START] ✅ Execution {execution.id} started for flow {flow.id} ({flow.name}) in conversation {context.conversation_id}, entry node {entry_node.id}"
        )
        return await self._run_node_loop(flow, execution, entry_node, context)

    async def continue_flow(self, context: MessageContext) -> Optional[ExecutionData]:
        """
        Feed an inbound message to the conversation's running execution.
        Without a running execution this does nothing and returns None.
        """
        execution = await self.get_running_execution(context.conversation_id)
        if execution is None:
            self.log_util.info(
                service_name="FlowControllerService",
                message=f"[FLOW_CONTINUE] No running execution for conversation {context.conversation_id}"
            )
            return None

        loaded = await self._load_flow_and_node(execution)
        if isinstance(loaded, ExecutionData):
            return loaded
        flow, node = loaded

        if execution.wait_state == "delay":
            self.log_util.info(
                service_name="FlowControllerService",
                message=f"[FLOW_CONTINUE] Execution {execution.id} is waiting on delay node {node.id}, message ignored"
            )
            return execution
        if node.type != "question":
            self.log_util.info(
                service_name="FlowControllerService",
                message=f"[FLOW_CONTINUE] Execution {execution.id} is on {node.type} node {node.id}, message ignored"
            )
            return execution

        variable_name = node.data.variable_name or "response"
        variables = {**execution.variables, variable_name: context.message_text}
        connection = self._match_reply(node, context.message_text)
        self.log_util.info(
            service_name="FlowControllerService",
            message=f"[FLOW_CONTINUE] Execution {execution.id} stored reply into '{variable_name}', matched connection: {connection.id if connection else None}"
        )

        if connection is None:
            # Unanticipated reply with no default route ends the flow without a message
            return await self.end_execution(execution, "completed", changes={"variables": variables})

        execution, next_node = await self._move_to_next_node(flow, execution, node, connection.target_node_id, variables)
        if next_node is None:
            return execution
        return await self._run_node_loop(flow, execution, next_node, context)

    async def resume_delayed_execution(self, execution: ExecutionData) -> ExecutionData:
        """
        Continue an execution whose delay is over, following the delay node's
        outgoing connection.
        """
        if execution.status != "running" or execution.wait_state != "delay":
            self.log_util.info(
                service_name="FlowControllerService",
                message=f"[DELAY] Execution {execution.id} is not waiting on a delay, nothing to resume"
            )
            return execution

        loaded = await self._load_flow_and_node(execution)
        if isinstance(loaded, ExecutionData):
            return loaded
        flow, node = loaded

        self.log_util.info(
            service_name="FlowControllerService",
            message=f"[DELAY] Resuming execution {execution.id} after delay node {node.id}"
        )
        context = MessageContext(
            conversation_id=execution.conversation_id,
            phone=execution.phone,
            contact_name=execution.contact_name,
            message_text="",
            message_type="delay_complete"
        )
        execution, next_node = await self._move_to_next_node(flow, execution, node, None, execution.variables)
        if next_node is None:
            return execution
        return await self._run_node_loop(flow, execution, next_node, context)

    async def end_execution(
        self,
        execution: ExecutionData,
        status: str,
        error_message: Optional[str] = None,
        changes: Optional[Dict[str, Any]] = None
    ) -> ExecutionData:
        """
        Persist a terminal status (completed, failed, or paused for handoffs)
        and drop the conversation's cache entry.
        """
        now = datetime.utcnow()
        final_changes = dict(changes or {})
        final_changes.update({
            "status": status,
            "error_message": error_message,
            "completed_at": now,
            "last_activity_at": now,
            "wait_state": None,
            "resume_at": None
        })
        try:
            ended = await self.flow_db.compare_and_update_execution(execution.id, execution.version, final_changes)
        finally:
            self.execution_cache.invalidate(execution.conversation_id, execution.id)

        if status == "failed":
            self.log_util.error(
                service_name="FlowControllerService",
                message=f"[FLOW_END] ❌ Execution {execution.id} failed: {error_message}"
            )
        else:
            self.log_util.info(
                service_name="FlowControllerService",
                message=f"[FLOW_END] Execution {execution.id} ended with status {status}"
            )
        return ended

    # Internals
    async def _load_flow_and_node(self, execution: ExecutionData):
        """
        Returns (flow, current node), or the failed execution when either is gone.
        """
        flow = await self.flow_db.get_flow(execution.flow_id)
        if flow is None:
            return await self.end_execution(execution, "failed", f"Flow {execution.flow_id} not found")
        node = flow.get_node(execution.current_node_id)
        if node is None:
            return await self.end_execution(
                execution, "failed", f"Node {execution.current_node_id} not found in flow {flow.id}"
            )
        return flow, node

    @staticmethod
    def _match_reply(node: FlowNode, message_text: str) -> Optional[FlowConnection]:
        reply = (message_text or "").lower()
        for connection in node.connections:
            if connection.condition and connection.condition.lower() == reply:
                return connection
        for connection in node.connections:
            if not connection.condition:
                return connection
        return None

    @staticmethod
    def _auto_follow_target(node: FlowNode) -> Optional[str]:
        if len(node.connections) == 1:
            connection = node.connections[0]
            if not connection.condition and not connection.label:
                return connection.target_node_id
        return None

    async def _update_execution(self, execution: ExecutionData, **changes) -> ExecutionData:
        changes["last_activity_at"] = datetime.utcnow()
        try:
            updated = await self.flow_db.compare_and_update_execution(execution.id, execution.version, changes)
        except ExecutionConflictError:
            self.execution_cache.invalidate(execution.conversation_id)
            raise
        self.execution_cache.put(updated)
        return updated

    async def _move_to_next_node(
        self,
        flow: FlowData,
        execution: ExecutionData,
        node: FlowNode,
        next_node_id: Optional[str],
        variables: Dict[str, Any]
    ) -> Tuple[ExecutionData, Optional[FlowNode]]:
        """
        Persist the step from node to its successor. Without an explicit
        next_node_id the single unconditional connection is followed; a
        terminal node completes the execution and any other shape fails it.
        Returns the successor, or None once the execution has ended.
        """
        if next_node_id is None:
            next_node_id = self._auto_follow_target(node)

        if next_node_id is None:
            if node.is_terminal:
                return await self.end_execution(execution, "completed", changes={"variables": variables}), None
            return await self.end_execution(
                execution,
                "failed",
                f"Ambiguous branching at node {node.id}: {len(node.connections)} connections and no route selected",
                changes={"variables": variables}
            ), None

        next_node = flow.get_node(next_node_id)
        if next_node is None:
            return await self.end_execution(
                execution,
                "failed",
                f"Node {next_node_id} not found in flow {flow.id}",
                changes={"variables": variables}
            ), None

        execution = await self._update_execution(
            execution,
            current_node_id=next_node.id,
            variables=variables,
            wait_state=None,
            resume_at=None
        )
        return execution, next_node

    async def _write_log(
        self,
        execution: ExecutionData,
        node: FlowNode,
        action: str,
        input_data: Dict[str, Any],
        output_data: Dict[str, Any],
        started: float
    ) -> None:
        await self.flow_db.save_execution_log(ExecutionLogData(
            execution_id=execution.id,
            node_id=node.id,
            node_type=node.type,
            action=action,
            input_data=input_data,
            output_data=output_data,
            duration_ms=int((time.monotonic() - started) * 1000)
        ))

    async def _run_node_loop(
        self,
        flow: FlowData,
        execution: ExecutionData,
        node: FlowNode,
        context: MessageContext
    ) -> ExecutionData:
        """
        Execute nodes one after another until the execution waits or ends.
        Bounded by max_steps per call so cyclic graphs cannot spin forever.
        """
        steps = 0
        while True:
            if steps >= self.max_steps:
                return await self.end_execution(
                    execution, "failed", f"Step limit exceeded ({self.max_steps} nodes in one event)"
                )
            steps += 1

            started = time.monotonic()
            input_data = {"message": context.message_text, "variables": dict(execution.variables)}
            try:
                result = await self.node_execution_service.execute_node(node, execution, context)
            except PersistenceError:
                raise
            except Exception as e:
                error_message = e.message if isinstance(e, FlowException) else str(e)
                self.log_util.error(
                    service_name="FlowControllerService",
                    message=f"[NODE_EXEC] ❌ Node {node.id} ({node.type}) of execution {execution.id} raised: {error_message}"
                )
                await self._write_log(execution, node, "error", {"message": context.message_text}, {"error": error_message}, started)
                return await self.end_execution(execution, "failed", error_message)

            await self._write_log(
                execution,
                node,
                "executed" if result.success else "failed",
                input_data,
                {"response": result.response_text, "next_node": result.next_node_id, "wait_state": result.wait_state},
                started
            )
            if not result.success:
                return await self.end_execution(execution, "failed", result.error or f"Node {node.id} failed")

            if result.response_text:
                await self.channel_service.send_message(execution.phone, result.response_text)

            if result.terminal_status is not None:
                return await self.end_execution(
                    execution,
                    result.terminal_status,
                    changes={"current_node_id": node.id, "variables": result.variables}
                )

            if result.should_wait:
                execution = await self._update_execution(
                    execution,
                    current_node_id=node.id,
                    variables=result.variables,
                    wait_state=result.wait_state,
                    resume_at=result.resume_at
                )
                self.log_util.info(
                    service_name="FlowControllerService",
                    message=f"[NODE_EXEC] Execution {execution.id} waiting ({result.wait_state}) on node {node.id}"
                )
                return execution

            execution, next_node = await self._move_to_next_node(
                flow, execution, node, result.next_node_id, result.variables
            )
            if next_node is None:
                return execution
            node = next_node
