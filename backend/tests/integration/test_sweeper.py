# backend/tests/integration/test_sweeper.py
from datetime import datetime, timedelta

import pytest
from unittest.mock import AsyncMock

from conftest import USER, text
from nearflow.jobs.session_sweeper import drain_notifications, sweep_expired_sessions
from nearflow.models.session import Session, SessionStatus, SuspendedFlow
from nearflow.workflows import definitions as flows
from nearflow.workflows.errors import VersionConflict

NOW = datetime(2026, 1, 15, 12, 0, 0)


async def seed(store, user_key, flow_id, step_id, minutes_ago, status=SessionStatus.ACTIVE):
    session = Session(
        user_key=user_key,
        status=status,
        active_flow=flow_id if status == SessionStatus.ACTIVE else None,
        current_step=step_id if status == SessionStatus.ACTIVE else None,
        slots={"title": "x"} if flow_id == flows.JOB_POST else {},
        suspended_stack=[SuspendedFlow(flow_id=flows.AGREEMENT_CREATE, step_id="review", suspended_at=NOW - timedelta(minutes=minutes_ago))],
        last_activity_at=NOW - timedelta(minutes=minutes_ago),
    )
    return await store.commit(session, expected_version=0)


@pytest.mark.asyncio
async def test_sweep_expires_only_timed_out_sessions(store, registry):
    await seed(store, "u-stale", flows.JOB_POST, "enter_pay", minutes_ago=31)          # timeout 30
    await seed(store, "u-fresh", flows.JOB_POST, "enter_pay", minutes_ago=29)
    await seed(store, "u-edge", flows.FISH_SUBSCRIBE, "select_frequency", minutes_ago=15)  # timeout 15
    await seed(store, "u-menu", flows.MAIN_MENU, "show_menu", minutes_ago=20)           # scanned, timeout 30
    await seed(store, "u-idle", None, None, minutes_ago=600, status=SessionStatus.IDLE)

    report = await sweep_expired_sessions(NOW, store, registry)

    assert report.expired == 1
    assert report.skipped == 0
    assert report.scanned == 3  # stale, fresh, menu are older than the shortest timeout
    assert report.pruned == 1  # u-idle's agreement snapshot is past its 30 minutes

    stale = await store.load("u-stale")
    assert stale.status == SessionStatus.EXPIRED
    assert stale.active_flow is None
    assert stale.slots == {}
    assert stale.suspended_stack == []
    assert stale.version == 2

    for user_key in ("u-fresh", "u-edge", "u-menu"):
        assert (await store.load(user_key)).status == SessionStatus.ACTIVE

    idle = await store.load("u-idle")
    assert idle.status == SessionStatus.IDLE
    assert idle.suspended_stack == []


@pytest.mark.asyncio
async def test_sweep_is_idempotent(store, registry):
    await seed(store, "u-stale", flows.JOB_POST, "enter_pay", minutes_ago=45)

    first = await sweep_expired_sessions(NOW, store, registry)
    second = await sweep_expired_sessions(NOW, store, registry)

    assert first.expired == 1
    assert second.expired == 0
    assert (await store.load("u-stale")).version == 2


@pytest.mark.asyncio
async def test_sweep_skips_sessions_touched_concurrently(store, registry, mocker):
    await seed(store, "u-stale", flows.JOB_POST, "enter_pay", minutes_ago=45)
    mocker.patch.object(store, "commit", new_callable=AsyncMock, side_effect=VersionConflict("u-stale", 1, 2))

    report = await sweep_expired_sessions(NOW, store, registry)

    assert report.expired == 0
    assert report.skipped == 1


@pytest.mark.asyncio
async def test_sweep_queues_expiry_notifications(store, registry):
    await seed(store, "919800000001", flows.JOB_POST, "enter_pay", minutes_ago=45)
    notifier = AsyncMock()

    await sweep_expired_sessions(NOW, store, registry, notifier)
    await drain_notifications()

    notifier.publish_expiry.assert_awaited_once_with("919800000001", flows.JOB_POST, "enter_pay", NOW)


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_sweep(store, registry):
    await seed(store, "919800000001", flows.JOB_POST, "enter_pay", minutes_ago=45)
    notifier = AsyncMock()
    notifier.publish_expiry.side_effect = ConnectionError("redis down")

    report = await sweep_expired_sessions(NOW, store, registry, notifier)
    await drain_notifications()

    assert report.expired == 1
    assert (await store.load("919800000001")).status == SessionStatus.EXPIRED


@pytest.mark.asyncio
async def test_expired_user_is_greeted_on_return(engine, store, registry, clock):
    clock.now = NOW
    await seed(store, USER, flows.JOB_POST, "enter_pay", minutes_ago=45)
    await sweep_expired_sessions(NOW, store, registry)

    instruction = await engine.handle_event(text("hello", "m1"))
    assert instruction.flow_id == flows.MAIN_MENU
    assert instruction.render_hints["session_expired"] is True


@pytest.mark.asyncio
async def test_sweep_drops_only_timed_out_snapshots_from_idle_sessions(store, registry):
    stack = [
        SuspendedFlow(flow_id=flows.AGREEMENT_CREATE, step_id="review", suspended_at=NOW - timedelta(minutes=31)),
        SuspendedFlow(flow_id=flows.PRODUCT_SEARCH, step_id="ask_image", suspended_at=NOW - timedelta(minutes=31)),  # timeout 120
    ]
    await store.commit(
        Session(user_key="u-idle", status=SessionStatus.IDLE, suspended_stack=stack, last_activity_at=NOW - timedelta(minutes=20)),
        expected_version=0,
    )

    report = await sweep_expired_sessions(NOW, store, registry)
    again = await sweep_expired_sessions(NOW, store, registry)

    assert report.pruned == 1
    assert again.pruned == 0
    stored = await store.load("u-idle")
    assert stored.suspended_flow_ids() == [flows.PRODUCT_SEARCH]
    assert stored.version == 2
