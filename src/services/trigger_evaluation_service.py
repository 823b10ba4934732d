from typing import Optional, List, Callable, Awaitable

# Utils
from utils.log_utils import LogUtil

# Services
from services.internal.conversation_service import ConversationService

# Exceptions
from exceptions.flow_exception import TriggerEvaluationError

# Models
from models.flow_data import FlowData
from models.message_context import MessageContext


class TriggerEvaluationService:
    """
    Decides whether an inbound message starts a flow.
    Read-only: never creates executions or touches conversation state.
    """

    def __init__(
        self,
        log_util: LogUtil,
        conversation_service: ConversationService
    ):
        self.log_util = log_util
        self.conversation_service = conversation_service

    @staticmethod
    def parse_keywords(trigger_value: Optional[str]) -> List[str]:
        """
        Comma separated keywords, trimmed and lowercased. Empty tokens are dropped.
        """
        return [keyword.strip().lower() for keyword in (trigger_value or "").split(",") if keyword.strip()]

    async def check_triggers(
        self,
        context: MessageContext,
        flows: List[FlowData],
        has_running_execution: Callable[[str], Awaitable[bool]]
    ) -> Optional[FlowData]:
        """
        Return the first flow (in list order) whose trigger matches the message,
        or None. A conversation with a running execution never triggers anything.
        """
        if await has_running_execution(context.conversation_id):
            self.log_util.info(
                service_name="TriggerEvaluationService",
                message=f"[TRIGGER_CHECK] Conversation {context.conversation_id} has a running execution, skipping triggers"
            )
            return None

        message = (context.message_text or "").strip().lower()
        self.log_util.info(
            service_name="TriggerEvaluationService",
            message=f"[TRIGGER_CHECK] Checking {len(flows)} flows for conversation {context.conversation_id}, text: '{message}'"
        )

        for flow in flows:
            try:
                if await self._matches(flow, context, message):
                    self.log_util.info(
                        service_name="TriggerEvaluationService",
                        message=f"[TRIGGER_CHECK] ✅ Flow {flow.id} ({flow.name}) matched on {flow.trigger_type} trigger"
                    )
                    return flow
            except TriggerEvaluationError as e:
                self.log_util.warning(
                    service_name="TriggerEvaluationService",
                    message=f"[TRIGGER_CHECK] ⚠️ Skipping flow {flow.id}: {e.message}"
                )

        self.log_util.info(
            service_name="TriggerEvaluationService",
            message=f"[TRIGGER_CHECK] ❌ No trigger matched for conversation {context.conversation_id}"
        )
        return None

    async def _matches(self, flow: FlowData, context: MessageContext, message: str) -> bool:
        if flow.trigger_type == "keyword":
            keywords = self.parse_keywords(flow.trigger_value)
            return any(keyword in message for keyword in keywords)

        if flow.trigger_type == "first_message":
            try:
                message_count = await self.conversation_service.count_messages(context.conversation_id, limit=2)
            except Exception as e:
                raise TriggerEvaluationError(
                    message=f"Could not count messages of conversation {context.conversation_id}: {str(e)}",
                    flow_id=flow.id
                ) from e
            return message_count <= 1

        # schedule and webhook flows are started from outside the inbound pipeline
        return False
