from typing import Optional, Dict, Any, Callable, Awaitable

# Utils
from utils.log_utils import LogUtil
from utils.keyed_lock_utils import KeyedLock

# Database
from database.execution_repository import ExecutionRepository

# Services
from services.trigger_evaluation_service import TriggerEvaluationService
from services.flow_controller_service import FlowControllerService

# Exceptions
from exceptions.flow_exception import (
    FlowException,
    FlowNotFoundException,
    FlowValidationException,
    PersistenceError,
    ExecutionConflictError
)

# Models
from models.execution_data import ExecutionData
from models.message_context import MessageContext

MAX_CONFLICT_RETRIES = 3


class InboundMessageService:
    """
    Entry point of the engine. Serializes all work per conversation and
    routes each event to a trigger check, a flow continuation or a delay
    resumption.
    """

    def __init__(
        self,
        log_util: LogUtil,
        flow_db: ExecutionRepository,
        trigger_evaluation_service: TriggerEvaluationService,
        flow_controller_service: FlowControllerService,
        conversation_lock: Optional[KeyedLock] = None
    ):
        self.log_util = log_util
        self.flow_db = flow_db
        self.trigger_evaluation_service = trigger_evaluation_service
        self.flow_controller_service = flow_controller_service
        self.conversation_lock = conversation_lock or KeyedLock()

    @staticmethod
    def _result(
        status: str,
        message: str,
        execution: Optional[ExecutionData] = None,
        error_details: Optional[str] = None
    ) -> Dict[str, Any]:
        return {
            "status": status,
            "message": message,
            "automation_triggered": execution is not None,
            "flow_id": execution.flow_id if execution else None,
            "execution_id": execution.id if execution else None,
            "current_node_id": execution.current_node_id if execution else None,
            "execution_status": execution.status if execution else None,
            "error_details": error_details
        }

    async def _with_conflict_retry(
        self,
        conversation_id: str,
        operation: Callable[[], Awaitable[Dict[str, Any]]]
    ) -> Dict[str, Any]:
        """
        Run operation under the conversation lock, re-running it against fresh
        state when a concurrent writer (another process) won the race.
        """
        async with self.conversation_lock.acquire(conversation_id):
            attempt = 0
            while True:
                attempt += 1
                try:
                    return await operation()
                except ExecutionConflictError as e:
                    self.flow_controller_service.execution_cache.invalidate(conversation_id)
                    if attempt >= MAX_CONFLICT_RETRIES:
                        self.log_util.error(
                            service_name="InboundMessageService",
                            message=f"Giving up on conversation {conversation_id} after {attempt} conflicting writes: {e.message}"
                        )
                        return self._result("error", "Concurrent update conflict", error_details=e.message)
                    self.log_util.warning(
                        service_name="InboundMessageService",
                        message=f"Write conflict on conversation {conversation_id} (attempt {attempt}), retrying: {e.message}"
                    )
                except PersistenceError as e:
                    # Storage is down: skip automation and leave the conversation to a human
                    self.log_util.error(
                        service_name="InboundMessageService",
                        message=f"Persistence failure for conversation {conversation_id}, skipping automation: {e.message}"
                    )
                    return self._result("error", "Automation skipped: persistence unavailable", error_details=e.message)
                except FlowException as e:
                    self.log_util.error(
                        service_name="InboundMessageService",
                        message=f"Flow error for conversation {conversation_id}: {e.message}"
                    )
                    return self._result("error", "Automation skipped", error_details=e.message)

    async def process_inbound_message(self, context: MessageContext) -> Dict[str, Any]:
        """
        Handle one inbound message: continue the running execution if there is
        one, otherwise start the first flow whose trigger matches.
        """
        self.log_util.info(
            service_name="InboundMessageService",
            message=f"Received {context.message_type} message for conversation {context.conversation_id} from {context.phone}"
        )

        async def _process() -> Dict[str, Any]:
            running = await self.flow_controller_service.get_running_execution(context.conversation_id)
            if running is not None:
                execution = await self.flow_controller_service.continue_flow(context)
                if execution is None:
                    return self._result("no_automation", "No running execution")
                return self._result("continued", "Running execution continued", execution)

            flows = await self.flow_db.get_active_flows()
            flow = await self.trigger_evaluation_service.check_triggers(
                context,
                flows,
                self.flow_controller_service.has_running_execution
            )
            if flow is None:
                return self._result("no_automation", "No trigger matched")
            execution = await self.flow_controller_service.start_flow(flow, context)
            return self._result("started", f"Flow {flow.name} started", execution)

        return await self._with_conflict_retry(context.conversation_id, _process)

    async def start_flow_by_id(
        self,
        flow_id: str,
        context: MessageContext,
        variables: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Start a flow on behalf of an external scheduler or webhook.

        Raises:
            FlowNotFoundException: unknown flow id
            FlowValidationException: flow is inactive
        """
        flow = await self.flow_db.get_flow(flow_id)
        if flow is None:
            raise FlowNotFoundException(message=f"Flow {flow_id} not found")
        if not flow.is_active:
            raise FlowValidationException(message=f"Flow {flow_id} is not active")

        async def _start() -> Dict[str, Any]:
            if await self.flow_controller_service.has_running_execution(context.conversation_id):
                self.log_util.warning(
                    service_name="InboundMessageService",
                    message=f"[FLOW_START] Conversation {context.conversation_id} already runs a flow, external start of {flow_id} refused"
                )
                return self._result("ignored", "Conversation already has a running execution")
            execution = await self.flow_controller_service.start_flow(flow, context, variables=variables)
            return self._result("started", f"Flow {flow.name} started", execution)

        return await self._with_conflict_retry(context.conversation_id, _start)

    async def resume_delayed_execution(self, execution: ExecutionData) -> Dict[str, Any]:
        async def _resume() -> Dict[str, Any]:
            # Re-read under the lock, the scheduler's snapshot may be stale
            current = await self.flow_db.get_execution(execution.id)
            if current is None or current.status != "running" or current.wait_state != "delay":
                return self._result("ignored", "Execution is no longer waiting on a delay")
            resumed = await self.flow_controller_service.resume_delayed_execution(current)
            return self._result("continued", "Delayed execution resumed", resumed)

        return await self._with_conflict_retry(execution.conversation_id, _resume)

    async def stop_execution(self, execution_id: str) -> Dict[str, Any]:
        """
        Halt a running execution on an operator's request. The execution is
        paused between node steps under the conversation lock.

        Raises:
            FlowNotFoundException: unknown execution id
        """
        execution = await self.flow_db.get_execution(execution_id)
        if execution is None:
            raise FlowNotFoundException(message=f"Execution {execution_id} not found")

        async def _stop() -> Dict[str, Any]:
            current = await self.flow_db.get_execution(execution_id)
            if current is None or current.status != "running":
                self.log_util.info(
                    service_name="InboundMessageService",
                    message=f"[FLOW_STOP] Execution {execution_id} is not running, nothing to stop"
                )
                return self._result("ignored", "Execution is not running", current)
            stopped = await self.flow_controller_service.end_execution(current, "paused", error_message="Stopped by operator")
            self.log_util.info(
                service_name="InboundMessageService",
                message=f"[FLOW_STOP] Execution {execution_id} of conversation {current.conversation_id} stopped"
            )
            return self._result("stopped", "Execution stopped", stopped)

        return await self._with_conflict_retry(execution.conversation_id, _stop)
