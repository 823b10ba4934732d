from typing import Optional, List, Dict, Any
import httpx

# Utils
from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils

# Exceptions
from exceptions.flow_exception import CollaboratorError


class ConversationService:
    """Client for the helpdesk conversation-state service."""
    def __init__(self, log_util: LogUtil, environment_utils: EnvironmentUtils):
        self.log_util = log_util
        self.conversation_service_url = f"{environment_utils.get_env_variable('CONVERSATION_SERVICE_URL')}/conversations"
        self.timeout = environment_utils.get_env_variable("COLLABORATOR_TIMEOUT_SECONDS")

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            self.log_util.error(service_name="ConversationService", message=f"{method} {url} failed: {str(e)}")
            raise CollaboratorError(message=f"Conversation service unreachable: {str(e)}") from e
        if response.status_code >= 400:
            self.log_util.error(
                service_name="ConversationService",
                message=f"{method} {url} returned HTTP {response.status_code}"
            )
            raise CollaboratorError(message=f"Conversation service returned HTTP {response.status_code}")
        return response

    async def count_messages(self, conversation_id: str, limit: int = 2) -> int:
        """
        Number of stored messages of a conversation, counted up to limit
        """
        response = await self._request(
            "GET",
            f"{self.conversation_service_url}/{conversation_id}/messages/count",
            params={"limit": limit}
        )
        return int(response.json().get("count", 0))

    async def update_conversation(
        self,
        conversation_id: str,
        status: Optional[str] = None,
        assigned_agent_id: Optional[str] = None,
        department_id: Optional[str] = None,
        clear_agent: bool = False
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if status is not None:
            payload["status"] = status
        if assigned_agent_id is not None or clear_agent:
            payload["assigned_agent_id"] = assigned_agent_id
        if department_id is not None:
            payload["department_id"] = department_id
        response = await self._request(
            "PATCH",
            f"{self.conversation_service_url}/{conversation_id}",
            json=payload
        )
        self.log_util.info(
            service_name="ConversationService",
            message=f"Conversation {conversation_id} updated: {payload}"
        )
        return response.json() if response.content else {}

    async def add_tags(self, conversation_id: str, tags: List[str]) -> None:
        await self._request(
            "POST",
            f"{self.conversation_service_url}/{conversation_id}/tags",
            json={"tags": tags}
        )
        self.log_util.info(
            service_name="ConversationService",
            message=f"Conversation {conversation_id} tagged with {tags}"
        )
