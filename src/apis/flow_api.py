from fastapi import APIRouter, Query
from fastapi.exceptions import HTTPException
from typing import List

# Utils
from utils.log_utils import LogUtil

# Services
from services.flow_service import FlowService
from services.inbound_message_service import InboundMessageService

# Exceptions
from exceptions.flow_exception import FlowException

# Models
from models.flow_data import FlowData
from models.execution_data import ExecutionData
from models.request.flow_status_request import FlowStatusRequest
from models.request.start_flow_request import StartFlowRequest
from models.response.inbound_message_response import InboundMessageResponse

def create_flow_api(
    log_util: LogUtil,
    flow_service: FlowService,
    inbound_message_service: InboundMessageService
) -> APIRouter:
    router = APIRouter(
        prefix="/flow",
        tags=["flow"],
    )

    @router.post("/create", response_model=FlowData)
    async def create_flow(flow_data: dict):
        try:
            return await flow_service.create_flow(flow_data=flow_data)
        except FlowException as e:
            log_util.error(service_name="FlowAPI", message=f"Error creating flow: {e}")
            raise HTTPException(status_code=e.status_code, detail=e.message)
        except Exception as e:
            log_util.error(service_name="FlowAPI", message=f"Error creating flow: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/list", response_model=List[FlowData])
    async def get_flows_list():
        try:
            return await flow_service.get_flows_list()
        except FlowException as e:
            log_util.error(service_name="FlowAPI", message=f"Error getting flows list: {e}")
            raise HTTPException(status_code=e.status_code, detail=e.message)
        except Exception as e:
            log_util.error(service_name="FlowAPI", message=f"Error getting flows list: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/detail/{flow_id}", response_model=FlowData)
    async def get_flow_detail(flow_id: str):
        try:
            return await flow_service.get_flow_detail(flow_id=flow_id)
        except FlowException as e:
            log_util.error(service_name="FlowAPI", message=f"Error getting flow detail: {e}")
            raise HTTPException(status_code=e.status_code, detail=e.message)
        except Exception as e:
            log_util.error(service_name="FlowAPI", message=f"Error getting flow detail: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/status/{flow_id}", response_model=FlowData)
    async def update_flow_status(flow_id: str, status_data: FlowStatusRequest):
        """
        Activate or deactivate a flow. Only active flows are triggered.
        """
        try:
            return await flow_service.update_flow_status(flow_id=flow_id, is_active=status_data.is_active)
        except FlowException as e:
            log_util.error(service_name="FlowAPI", message=f"Error updating flow status: {e}")
            raise HTTPException(status_code=e.status_code, detail=e.message)
        except Exception as e:
            log_util.error(service_name="FlowAPI", message=f"Error updating flow status: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/start/{flow_id}", response_model=InboundMessageResponse)
    async def start_flow(flow_id: str, start_request: StartFlowRequest):
        """
        Start a flow for a conversation. Used by schedulers and webhook
        triggers, which never fire from inbound messages.
        """
        try:
            result = await inbound_message_service.start_flow_by_id(
                flow_id=flow_id,
                context=start_request.to_context(),
                variables=start_request.variables
            )
            return InboundMessageResponse(**result)
        except FlowException as e:
            log_util.error(service_name="FlowAPI", message=f"Error starting flow {flow_id}: {e}")
            raise HTTPException(status_code=e.status_code, detail=e.message)
        except Exception as e:
            log_util.error(service_name="FlowAPI", message=f"Error starting flow {flow_id}: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/executions/{flow_id}", response_model=List[ExecutionData])
    async def get_flow_executions(flow_id: str, limit: int = Query(default=100, ge=1, le=500)):
        try:
            return await flow_service.get_flow_executions(flow_id=flow_id, limit=limit)
        except FlowException as e:
            log_util.error(service_name="FlowAPI", message=f"Error getting executions of flow {flow_id}: {e}")
            raise HTTPException(status_code=e.status_code, detail=e.message)
        except Exception as e:
            log_util.error(service_name="FlowAPI", message=f"Error getting executions of flow {flow_id}: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    return router
