# tests/unit/test_background_services.py
import asyncio
import pytest
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

from services.delay_scheduler_service import DelaySchedulerService
from services.timeout_reaper_service import TimeoutReaperService
from models.execution_data import ExecutionData


def make_execution(conversation_id, **overrides) -> ExecutionData:
    return ExecutionData(flow_id="flow-1", conversation_id=conversation_id, **overrides)


# --- TimeoutReaperService ---
@pytest.mark.asyncio
async def test_reaper_pauses_only_stale_running_executions(log_util, flow_db, execution_cache):
    old = datetime.utcnow() - timedelta(minutes=45)
    stale = await flow_db.create_execution(make_execution("c1", last_activity_at=old))
    fresh = await flow_db.create_execution(make_execution("c2"))
    failed = await flow_db.create_execution(make_execution("c3", status="failed", last_activity_at=old))
    execution_cache.put(stale)

    reaper = TimeoutReaperService(log_util=log_util, flow_db=flow_db, execution_cache=execution_cache, timeout_minutes=30)
    paused = await reaper.cleanup_timed_out_executions()

    assert paused == 1
    assert (await flow_db.get_execution(stale.id)).status == "paused"
    assert (await flow_db.get_execution(fresh.id)).status == "running"
    assert (await flow_db.get_execution(failed.id)).status == "failed"
    assert execution_cache.get("c1") is None


@pytest.mark.asyncio
async def test_reaper_timeout_can_be_overridden(log_util, flow_db):
    await flow_db.create_execution(make_execution("c1", last_activity_at=datetime.utcnow() - timedelta(minutes=10)))
    reaper = TimeoutReaperService(log_util=log_util, flow_db=flow_db, timeout_minutes=30)

    assert await reaper.cleanup_timed_out_executions() == 0
    assert await reaper.cleanup_timed_out_executions(timeout_minutes=5) == 1


@pytest.mark.asyncio
async def test_reaper_start_and_stop(log_util, flow_db):
    reaper = TimeoutReaperService(log_util=log_util, flow_db=flow_db, interval_seconds=3600)

    await reaper.start()
    await asyncio.sleep(0)
    await reaper.stop()

    assert reaper._task is None


# --- DelaySchedulerService ---
@pytest.mark.asyncio
async def test_scheduler_hands_due_delays_to_engine(log_util, flow_db):
    now = datetime.utcnow()
    due = await flow_db.create_execution(make_execution("c1", wait_state="delay", resume_at=now - timedelta(seconds=5)))
    await flow_db.create_execution(make_execution("c2", wait_state="delay", resume_at=now + timedelta(hours=1)))
    inbound_message_service = AsyncMock()
    inbound_message_service.resume_delayed_execution.return_value = {"status": "continued", "message": "ok"}

    scheduler = DelaySchedulerService(log_util=log_util, flow_db=flow_db, inbound_message_service=inbound_message_service)
    resumed = await scheduler.process_due_delays()

    assert resumed == 1
    handed = inbound_message_service.resume_delayed_execution.await_args.args[0]
    assert handed.id == due.id


@pytest.mark.asyncio
async def test_scheduler_keeps_going_after_one_failure(log_util, flow_db):
    past = datetime.utcnow() - timedelta(seconds=5)
    await flow_db.create_execution(make_execution("c1", wait_state="delay", resume_at=past - timedelta(seconds=1)))
    await flow_db.create_execution(make_execution("c2", wait_state="delay", resume_at=past))
    inbound_message_service = AsyncMock()
    inbound_message_service.resume_delayed_execution.side_effect = [
        RuntimeError("boom"),
        {"status": "continued", "message": "ok"},
    ]

    scheduler = DelaySchedulerService(log_util=log_util, flow_db=flow_db, inbound_message_service=inbound_message_service)

    assert await scheduler.process_due_delays() == 1
    assert inbound_message_service.resume_delayed_execution.await_count == 2
    log_util.error.assert_called()


@pytest.mark.asyncio
async def test_scheduler_resumes_delay_end_to_end(log_util, flow_db, inbound_message_service, channel_service, make_flow, conn, make_context):
    flow = await flow_db.create_flow(make_flow([
        {"id": "d1", "type": "delay", "data": {"delay_seconds": 1}, "connections": [conn("m2")]},
        {"id": "m2", "type": "message", "data": {"message": "Ya pasó el tiempo"}},
    ], trigger_value="espera"))
    started = await inbound_message_service.process_inbound_message(make_context("espera"))
    # Move the wake-up time into the past instead of sleeping
    execution = await flow_db.get_execution(started["execution_id"])
    await flow_db.compare_and_update_execution(execution.id, execution.version, {"resume_at": datetime.utcnow() - timedelta(seconds=1)})
    inbound_message_service.flow_controller_service.execution_cache.clear()

    scheduler = DelaySchedulerService(log_util=log_util, flow_db=flow_db, inbound_message_service=inbound_message_service)

    assert await scheduler.process_due_delays() == 1
    assert (await flow_db.get_execution(execution.id)).status == "completed"
    channel_service.send_message.assert_awaited_once_with("555", "Ya pasó el tiempo")
    assert flow.id == execution.flow_id


@pytest.mark.asyncio
async def test_scheduler_without_engine_does_nothing(log_util, flow_db):
    scheduler = DelaySchedulerService(log_util=log_util, flow_db=flow_db)

    assert await scheduler.process_due_delays() == 0
