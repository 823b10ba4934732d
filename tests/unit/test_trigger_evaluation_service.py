# tests/unit/test_trigger_evaluation_service.py
import pytest
from unittest.mock import AsyncMock

from services.trigger_evaluation_service import TriggerEvaluationService
from exceptions.flow_exception import CollaboratorError

MESSAGE_NODE = [{"id": "n1", "type": "message", "data": {"message": "Hola"}}]


def no_running_execution():
    return AsyncMock(return_value=False)


def test_parse_keywords_drops_empty_tokens():
    assert TriggerEvaluationService.parse_keywords(" Hola, ,INFO ,") == ["hola", "info"]
    assert TriggerEvaluationService.parse_keywords(None) == []


@pytest.mark.asyncio
async def test_keyword_trigger_matches_substring_case_insensitive(trigger_evaluation_service, make_flow, make_context):
    flow = make_flow(MESSAGE_NODE, trigger_value="precio, info", flow_id="f1")

    matched = await trigger_evaluation_service.check_triggers(
        make_context("Quiero INFORMACION del producto"), [flow], no_running_execution()
    )

    assert matched.id == "f1"


@pytest.mark.asyncio
async def test_keyword_trigger_ignores_empty_keyword(trigger_evaluation_service, make_flow, make_context):
    flow = make_flow(MESSAGE_NODE, trigger_value="precio,,", flow_id="f1")

    matched = await trigger_evaluation_service.check_triggers(make_context("hola"), [flow], no_running_execution())

    assert matched is None


@pytest.mark.asyncio
async def test_first_matching_flow_wins(trigger_evaluation_service, make_flow, make_context):
    flows = [
        make_flow(MESSAGE_NODE, trigger_value="soporte", flow_id="f1"),
        make_flow(MESSAGE_NODE, trigger_value="hola", flow_id="f2"),
        make_flow(MESSAGE_NODE, trigger_value="hola", flow_id="f3"),
    ]

    matched = await trigger_evaluation_service.check_triggers(make_context("hola!"), flows, no_running_execution())

    assert matched.id == "f2"


@pytest.mark.asyncio
async def test_running_execution_blocks_triggers(trigger_evaluation_service, make_flow, make_context):
    flow = make_flow(MESSAGE_NODE, trigger_value="hola", flow_id="f1")

    matched = await trigger_evaluation_service.check_triggers(
        make_context("hola"), [flow], AsyncMock(return_value=True)
    )

    assert matched is None


@pytest.mark.asyncio
async def test_first_message_trigger(trigger_evaluation_service, conversation_service, make_flow, make_context):
    flow = make_flow(MESSAGE_NODE, trigger_type="first_message", trigger_value=None, flow_id="f1")

    conversation_service.count_messages.return_value = 1
    assert (await trigger_evaluation_service.check_triggers(make_context("x"), [flow], no_running_execution())).id == "f1"
    conversation_service.count_messages.assert_awaited_with("conv-1", limit=2)

    conversation_service.count_messages.return_value = 2
    assert await trigger_evaluation_service.check_triggers(make_context("x"), [flow], no_running_execution()) is None


@pytest.mark.asyncio
async def test_first_message_count_failure_skips_flow(trigger_evaluation_service, conversation_service, make_flow, make_context, log_util):
    conversation_service.count_messages.side_effect = CollaboratorError(message="down")
    flows = [
        make_flow(MESSAGE_NODE, trigger_type="first_message", trigger_value=None, flow_id="f1"),
        make_flow(MESSAGE_NODE, trigger_value="hola", flow_id="f2"),
    ]

    matched = await trigger_evaluation_service.check_triggers(make_context("hola"), flows, no_running_execution())

    assert matched.id == "f2"
    log_util.warning.assert_called()


@pytest.mark.asyncio
@pytest.mark.parametrize("trigger_type", ["schedule", "webhook"])
async def test_externally_started_triggers_never_match(trigger_evaluation_service, make_flow, make_context, trigger_type):
    flow = make_flow(MESSAGE_NODE, trigger_type=trigger_type, trigger_value="hola", flow_id="f1")

    assert await trigger_evaluation_service.check_triggers(make_context("hola"), [flow], no_running_execution()) is None
