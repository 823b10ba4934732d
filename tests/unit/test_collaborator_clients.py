# tests/unit/test_collaborator_clients.py
import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from services.internal.channel_service import ChannelService
from services.internal.conversation_service import ConversationService
from exceptions.flow_exception import CollaboratorError


def mock_client(MockClient, method: str, response=None, side_effect=None):
    client = MagicMock()
    setattr(client, method, AsyncMock(return_value=response, side_effect=side_effect))
    MockClient.return_value.__aenter__.return_value = client
    return client


# --- ChannelService ---
@pytest.mark.asyncio
async def test_send_message_posts_text(log_util, environment_utils):
    service = ChannelService(log_util=log_util, environment_utils=environment_utils)

    with patch("services.internal.channel_service.httpx.AsyncClient") as MockClient:
        client = mock_client(MockClient, "post", response=MagicMock(status_code=200))
        assert await service.send_message("555", "Hola") is True

    client.post.assert_awaited_once_with("http://localhost:8017/messages/send", json={"to": "555", "message": "Hola"})


@pytest.mark.asyncio
async def test_send_message_failures_are_reported_not_raised(log_util, environment_utils):
    service = ChannelService(log_util=log_util, environment_utils=environment_utils)

    with patch("services.internal.channel_service.httpx.AsyncClient") as MockClient:
        mock_client(MockClient, "post", side_effect=httpx.ConnectError("refused"))
        assert await service.send_message("555", "Hola") is False

    with patch("services.internal.channel_service.httpx.AsyncClient") as MockClient:
        mock_client(MockClient, "post", response=MagicMock(status_code=503))
        assert await service.send_message("555", "Hola") is False

    log_util.error.assert_called()


# --- ConversationService ---
@pytest.mark.asyncio
async def test_count_messages(log_util, environment_utils):
    service = ConversationService(log_util=log_util, environment_utils=environment_utils)

    with patch("services.internal.conversation_service.httpx.AsyncClient") as MockClient:
        client = mock_client(MockClient, "request", response=MagicMock(status_code=200, json=lambda: {"count": 1}))
        assert await service.count_messages("conv-1") == 1

    client.request.assert_awaited_once_with(
        "GET", "http://localhost:8019/conversations/conv-1/messages/count", params={"limit": 2}
    )


@pytest.mark.asyncio
async def test_update_conversation_payload(log_util, environment_utils):
    service = ConversationService(log_util=log_util, environment_utils=environment_utils)

    with patch("services.internal.conversation_service.httpx.AsyncClient") as MockClient:
        client = mock_client(MockClient, "request", response=MagicMock(status_code=200, content=b"{}", json=lambda: {}))
        await service.update_conversation("conv-1", status="pending", clear_agent=True)

    client.request.assert_awaited_once_with(
        "PATCH", "http://localhost:8019/conversations/conv-1", json={"status": "pending", "assigned_agent_id": None}
    )


@pytest.mark.asyncio
async def test_conversation_errors_raise_collaborator_error(log_util, environment_utils):
    service = ConversationService(log_util=log_util, environment_utils=environment_utils)

    with patch("services.internal.conversation_service.httpx.AsyncClient") as MockClient:
        mock_client(MockClient, "request", response=MagicMock(status_code=500))
        with pytest.raises(CollaboratorError, match="HTTP 500"):
            await service.add_tags("conv-1", ["vip"])

    with patch("services.internal.conversation_service.httpx.AsyncClient") as MockClient:
        mock_client(MockClient, "request", side_effect=httpx.ConnectError("refused"))
        with pytest.raises(CollaboratorError, match="unreachable"):
            await service.count_messages("conv-1")
