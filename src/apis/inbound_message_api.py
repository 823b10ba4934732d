from fastapi import APIRouter
from typing import Dict, Any

# Utils
from utils.log_utils import LogUtil

# Services
from services.inbound_message_service import InboundMessageService

# Models
from models.request.inbound_message_request import InboundMessageRequest
from models.response.inbound_message_response import InboundMessageResponse


def create_inbound_message_api(
    log_util: LogUtil,
    inbound_message_service: InboundMessageService
) -> APIRouter:
    """
    Create API router for inbound messages posted by channel services.
    This is the entry point of flow automation.
    """
    router = APIRouter(
        prefix="/webhook",
        tags=["webhook"],
    )

    @router.post("/message", response_model=InboundMessageResponse)
    async def process_inbound_message(request: InboundMessageRequest) -> InboundMessageResponse:
        """
        Process an inbound message.

        This endpoint:
        1. Continues the conversation's running execution, if any
        2. Otherwise checks active flows for a matching trigger and starts it
        3. Returns where the execution stands
        """
        try:
            result = await inbound_message_service.process_inbound_message(request.to_context())
            return InboundMessageResponse(**result)

        except Exception as e:
            log_util.error(
                service_name="InboundMessageAPI",
                message=f"Error processing message for conversation {request.conversation_id}: {str(e)}"
            )

            # The channel keeps working without automation
            return InboundMessageResponse(
                status="error",
                message="Error processing inbound message",
                automation_triggered=False,
                error_details=str(e)
            )

    @router.get("/health")
    async def webhook_health_check() -> Dict[str, Any]:
        """Health check endpoint for webhook API"""
        return {
            "status": "healthy",
            "api": "inbound_message_api",
            "service": "flow_service"
        }

    return router
