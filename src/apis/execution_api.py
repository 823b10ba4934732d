from fastapi import APIRouter, Query
from fastapi.exceptions import HTTPException
from typing import List, Optional

# Utils
from utils.log_utils import LogUtil

# Services
from services.flow_service import FlowService
from services.timeout_reaper_service import TimeoutReaperService
from services.inbound_message_service import InboundMessageService

# Exceptions
from exceptions.flow_exception import FlowException

# Models
from models.execution_data import ExecutionData
from models.execution_log_data import ExecutionLogData
from models.request.cleanup_request import CleanupRequest
from models.response.cleanup_response import CleanupResponse
from models.response.stop_execution_response import StopExecutionResponse


def create_execution_api(
    log_util: LogUtil,
    flow_service: FlowService,
    timeout_reaper_service: TimeoutReaperService,
    inbound_message_service: InboundMessageService
) -> APIRouter:
    router = APIRouter(
        prefix="/execution",
        tags=["execution"],
    )

    @router.post("/cleanup", response_model=CleanupResponse)
    async def cleanup_timed_out_executions(cleanup_request: CleanupRequest):
        """
        Pause running executions inactive for longer than timeout_minutes.
        Meant to be called by an external scheduler.
        """
        try:
            paused = await timeout_reaper_service.cleanup_timed_out_executions(cleanup_request.timeout_minutes)
            return CleanupResponse(status="success", paused_count=paused, timeout_minutes=cleanup_request.timeout_minutes)
        except FlowException as e:
            log_util.error(service_name="ExecutionAPI", message=f"Error cleaning up executions: {e}")
            raise HTTPException(status_code=e.status_code, detail=e.message)
        except Exception as e:
            log_util.error(service_name="ExecutionAPI", message=f"Error cleaning up executions: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/list", response_model=List[ExecutionData])
    async def get_executions_list(
        flow_id: Optional[str] = Query(default=None),
        limit: int = Query(default=100, ge=1, le=500)
    ):
        """
        Most recent executions, optionally restricted to one flow.
        """
        try:
            return await flow_service.get_executions_list(flow_id=flow_id, limit=limit)
        except FlowException as e:
            log_util.error(service_name="ExecutionAPI", message=f"Error listing executions: {e}")
            raise HTTPException(status_code=e.status_code, detail=e.message)
        except Exception as e:
            log_util.error(service_name="ExecutionAPI", message=f"Error listing executions: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/{execution_id}/stop", response_model=StopExecutionResponse)
    async def stop_execution(execution_id: str):
        try:
            result = await inbound_message_service.stop_execution(execution_id=execution_id)
            return StopExecutionResponse(**result)
        except FlowException as e:
            log_util.error(service_name="ExecutionAPI", message=f"Error stopping execution {execution_id}: {e}")
            raise HTTPException(status_code=e.status_code, detail=e.message)
        except Exception as e:
            log_util.error(service_name="ExecutionAPI", message=f"Error stopping execution {execution_id}: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/{execution_id}", response_model=ExecutionData)
    async def get_execution(execution_id: str):
        try:
            return await flow_service.get_execution(execution_id=execution_id)
        except FlowException as e:
            log_util.error(service_name="ExecutionAPI", message=f"Error getting execution: {e}")
            raise HTTPException(status_code=e.status_code, detail=e.message)
        except Exception as e:
            log_util.error(service_name="ExecutionAPI", message=f"Error getting execution: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/{execution_id}/logs", response_model=List[ExecutionLogData])
    async def get_execution_logs(execution_id: str):
        try:
            return await flow_service.get_execution_logs(execution_id=execution_id)
        except FlowException as e:
            log_util.error(service_name="ExecutionAPI", message=f"Error getting execution logs: {e}")
            raise HTTPException(status_code=e.status_code, detail=e.message)
        except Exception as e:
            log_util.error(service_name="ExecutionAPI", message=f"Error getting execution logs: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    return router
