"""
Timeout Reaper Service
Pauses running executions that have been inactive for too long.
"""
import asyncio
from typing import Optional
from datetime import datetime, timedelta
from utils.log_utils import LogUtil
from database.execution_repository import ExecutionRepository
from services.execution_cache import ExecutionCache


class TimeoutReaperService:
    """
    Batch job over stored executions. It only moves running executions to
    paused: completed, failed and paused ones, logs and nodes are untouched.
    """

    def __init__(
        self,
        log_util: LogUtil,
        flow_db: ExecutionRepository,
        execution_cache: Optional[ExecutionCache] = None,
        timeout_minutes: int = 30,
        interval_seconds: int = 300
    ):
        self.log_util = log_util
        self.flow_db = flow_db
        self.execution_cache = execution_cache
        self.timeout_minutes = timeout_minutes
        self.interval_seconds = interval_seconds
        self._running = False
        self._task = None

    async def cleanup_timed_out_executions(self, timeout_minutes: Optional[int] = None) -> int:
        """
        Pause every running execution whose last activity is older than
        now - timeout_minutes. Returns the number of executions paused.
        """
        minutes = self.timeout_minutes if timeout_minutes is None else timeout_minutes
        cutoff = datetime.utcnow() - timedelta(minutes=minutes)
        paused = await self.flow_db.pause_timed_out_executions(cutoff)
        if paused and self.execution_cache is not None:
            # Cached snapshots of paused executions would look running
            self.execution_cache.clear()
        self.log_util.info(
            service_name="TimeoutReaperService",
            message=f"[REAPER] Paused {paused} execution(s) inactive since before {cutoff.isoformat()}"
        )
        return paused

    async def start(self):
        if self._running:
            self.log_util.warning(
                service_name="TimeoutReaperService",
                message="Reaper is already running"
            )
            return
        self._running = True
        self._task = asyncio.create_task(self._reaper_loop())
        self.log_util.info(
            service_name="TimeoutReaperService",
            message=f"Timeout reaper started, running every {self.interval_seconds} seconds with a {self.timeout_minutes} minute timeout"
        )

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.log_util.info(
            service_name="TimeoutReaperService",
            message="Timeout reaper stopped"
        )

    async def _reaper_loop(self):
        while self._running:
            try:
                await self.cleanup_timed_out_executions()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.log_util.error(
                    service_name="TimeoutReaperService",
                    message=f"[REAPER] Error pausing timed out executions: {str(e)}"
                )
            try:
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                break
