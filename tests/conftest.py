# tests/conftest.py
import os
import pytest
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock
from fastapi.testclient import TestClient

# The app wires its repository at import time: select the in-memory backend
# and keep Loki out before anything imports main.
os.environ["FLOW_DB_BACKEND"] = "memory"
os.environ["LOKI_URL"] = ""

from utils.log_utils import LogUtil  # noqa: E402
from utils.environment_utils import EnvironmentUtils  # noqa: E402
from utils.keyed_lock_utils import KeyedLock  # noqa: E402
from database.memory_flow_db import InMemoryFlowDB  # noqa: E402
from services.execution_cache import ExecutionCache  # noqa: E402
from services.node_execution_service import NodeExecutionService  # noqa: E402
from services.flow_controller_service import FlowControllerService  # noqa: E402
from services.trigger_evaluation_service import TriggerEvaluationService  # noqa: E402
from services.inbound_message_service import InboundMessageService  # noqa: E402
from models.flow_data import FlowData  # noqa: E402
from models.message_context import MessageContext  # noqa: E402


@pytest.fixture
def log_util():
    """A LogUtil stand-in so tests never ship records to Loki."""
    return MagicMock(spec=LogUtil)


@pytest.fixture
def environment_utils(log_util, monkeypatch):
    for name in ("FLOW_MAX_STEPS", "CHANNEL_SERVICE_URL", "CONVERSATION_SERVICE_URL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HTTP_ACTION_TIMEOUT_SECONDS", "5")
    return EnvironmentUtils(log_util=log_util)


@pytest.fixture
def flow_db(log_util):
    return InMemoryFlowDB(log_util=log_util)


@pytest.fixture
def channel_service():
    service = MagicMock()
    service.send_message = AsyncMock(return_value=True)
    return service


@pytest.fixture
def conversation_service():
    service = MagicMock()
    service.count_messages = AsyncMock(return_value=0)
    service.update_conversation = AsyncMock(return_value={})
    service.add_tags = AsyncMock(return_value=None)
    return service


@pytest.fixture
def http_action_service():
    service = MagicMock()
    service.execute = AsyncMock(return_value={"ok": True})
    return service


@pytest.fixture
def execution_cache():
    return ExecutionCache()


@pytest.fixture
def node_execution_service(log_util, conversation_service, http_action_service):
    return NodeExecutionService(
        log_util=log_util,
        conversation_service=conversation_service,
        http_action_service=http_action_service
    )


@pytest.fixture
def flow_controller_service(log_util, environment_utils, flow_db, node_execution_service, channel_service, execution_cache):
    return FlowControllerService(
        log_util=log_util,
        environment_utils=environment_utils,
        flow_db=flow_db,
        node_execution_service=node_execution_service,
        channel_service=channel_service,
        execution_cache=execution_cache
    )


@pytest.fixture
def trigger_evaluation_service(log_util, conversation_service):
    return TriggerEvaluationService(log_util=log_util, conversation_service=conversation_service)


@pytest.fixture
def inbound_message_service(log_util, flow_db, trigger_evaluation_service, flow_controller_service):
    return InboundMessageService(
        log_util=log_util,
        flow_db=flow_db,
        trigger_evaluation_service=trigger_evaluation_service,
        flow_controller_service=flow_controller_service,
        conversation_lock=KeyedLock()
    )


@pytest.fixture
def make_context():
    def _make(message_text: str = "hola", conversation_id: str = "conv-1", **overrides) -> MessageContext:
        values = {
            "conversation_id": conversation_id,
            "phone": "555",
            "contact_name": "Ana",
            "message_text": message_text,
            "message_type": "text",
        }
        values.update(overrides)
        return MessageContext(**values)
    return _make


@pytest.fixture
def make_flow():
    """Build a FlowData from compact node dicts. The first node is the entry unless stated."""
    def _make(
        nodes: List[Dict[str, Any]],
        trigger_type: str = "keyword",
        trigger_value: Optional[str] = "hola",
        is_active: bool = True,
        entry_node_id: Optional[str] = None,
        name: str = "Test flow",
        flow_id: Optional[str] = None
    ) -> FlowData:
        return FlowData(
            id=flow_id,
            name=name,
            trigger_type=trigger_type,
            trigger_value=trigger_value,
            is_active=is_active,
            entry_node_id=entry_node_id if entry_node_id is not None else (nodes[0]["id"] if nodes else None),
            nodes=nodes
        )
    return _make


def _connect(target: str, connection_id: Optional[str] = None, label: Optional[str] = None, condition: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": connection_id or f"to-{target}-{label or condition or 'default'}",
        "target_node_id": target,
        "label": label,
        "condition": condition,
    }


@pytest.fixture
def conn():
    return _connect


@pytest.fixture(scope="function")
def test_client(mocker):
    """
    TestClient over the real app. Background loops are not started and
    collaborator calls are captured instead of sent.
    """
    mocker.patch("services.delay_scheduler_service.DelaySchedulerService.start", new_callable=AsyncMock)
    mocker.patch("services.delay_scheduler_service.DelaySchedulerService.stop", new_callable=AsyncMock)
    mocker.patch("services.timeout_reaper_service.TimeoutReaperService.start", new_callable=AsyncMock)
    mocker.patch("services.timeout_reaper_service.TimeoutReaperService.stop", new_callable=AsyncMock)

    import main
    mocker.patch.object(main.channel_service, "send_message", new_callable=AsyncMock, return_value=True)
    mocker.patch.object(main.conversation_service, "count_messages", new_callable=AsyncMock, return_value=5)
    mocker.patch.object(main.conversation_service, "update_conversation", new_callable=AsyncMock, return_value={})
    mocker.patch.object(main.conversation_service, "add_tags", new_callable=AsyncMock)

    with TestClient(main.app) as client:
        yield client
