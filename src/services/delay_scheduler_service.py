"""
Delay Scheduler Service
Background service that wakes up executions whose delay node has elapsed.
"""
import asyncio
import traceback
from typing import Optional, TYPE_CHECKING
from datetime import datetime
from utils.log_utils import LogUtil
from database.execution_repository import ExecutionRepository

if TYPE_CHECKING:
    from services.inbound_message_service import InboundMessageService


class DelaySchedulerService:
    """
    Background service that polls for executions waiting on a delay whose
    resume_at has passed and hands them back to the engine.
    """

    def __init__(
        self,
        log_util: LogUtil,
        flow_db: ExecutionRepository,
        inbound_message_service: Optional["InboundMessageService"] = None,
        check_interval_seconds: int = 20
    ):
        self.log_util = log_util
        self.flow_db = flow_db
        self.inbound_message_service = inbound_message_service
        self.check_interval_seconds = check_interval_seconds
        self._running = False
        self._task = None

    async def start(self):
        """
        Start the background scheduler task.
        """
        if self._running:
            self.log_util.warning(
                service_name="DelaySchedulerService",
                message="Scheduler is already running"
            )
            return

        self._running = True
        self._task = asyncio.create_task(self._scheduler_loop())
        self.log_util.info(
            service_name="DelaySchedulerService",
            message=f"Delay scheduler started, checking every {self.check_interval_seconds} seconds"
        )

    async def stop(self):
        """
        Stop the background scheduler task.
        """
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.log_util.info(
            service_name="DelaySchedulerService",
            message="Delay scheduler stopped"
        )

    async def _scheduler_loop(self):
        """
        Main scheduler loop that checks for elapsed delays.
        """
        while self._running:
            try:
                await self.process_due_delays()
                await asyncio.sleep(self.check_interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.log_util.error(
                    service_name="DelaySchedulerService",
                    message=f"Error in scheduler loop: {str(e)}"
                )
                self.log_util.error(
                    service_name="DelaySchedulerService",
                    message=f"Traceback: {traceback.format_exc()}"
                )
                # Wait before retrying to avoid tight error loop
                await asyncio.sleep(self.check_interval_seconds)

    async def process_due_delays(self) -> int:
        """
        Resume every execution whose delay is over. Returns how many were handed
        back; a failure on one execution does not stop the others.
        """
        if not self.inbound_message_service:
            self.log_util.error(
                service_name="DelaySchedulerService",
                message="InboundMessageService not initialized, cannot resume delayed executions"
            )
            return 0

        due_executions = await self.flow_db.get_due_delayed_executions(datetime.utcnow())
        if not due_executions:
            return 0

        self.log_util.info(
            service_name="DelaySchedulerService",
            message=f"[DELAY] Found {len(due_executions)} delayed execution(s) to resume"
        )

        resumed = 0
        for execution in due_executions:
            try:
                result = await self.inbound_message_service.resume_delayed_execution(execution)
                if result.get("status") == "continued":
                    resumed += 1
                    self.log_util.info(
                        service_name="DelaySchedulerService",
                        message=f"[DELAY] Execution {execution.id} resumed for conversation {execution.conversation_id}"
                    )
                else:
                    self.log_util.warning(
                        service_name="DelaySchedulerService",
                        message=f"[DELAY] Execution {execution.id} not resumed: {result.get('message')}"
                    )
            except Exception as e:
                self.log_util.error(
                    service_name="DelaySchedulerService",
                    message=f"[DELAY] Error resuming execution {execution.id}: {str(e)}"
                )
        return resumed
