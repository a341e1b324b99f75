# backend/tests/integration/test_concurrency.py
import asyncio

import pytest

from conftest import USER, choice, text
from nearflow.models.session import Session, SessionStatus
from nearflow.services.session_store import InMemorySessionStore
from nearflow.workflows import definitions as flows
from nearflow.workflows.engine import FlowEngine
from nearflow.workflows.errors import TransientError, VersionConflict


class RacingStore(InMemorySessionStore):
    """Lets another writer commit right before the next `races` commits."""

    def __init__(self, races=1):
        super().__init__()
        self.races = races
        self.commit_calls = 0

    async def commit(self, session, expected_version):
        self.commit_calls += 1
        if self.races > 0:
            self.races -= 1
            current = await self.load(session.user_key)
            if current is not None:
                await super().commit(current.model_copy(update={"last_message_id": "other-writer"}), current.version)
        return await super().commit(session, expected_version)


@pytest.mark.asyncio
async def test_single_conflict_is_retried(registry, handlers, clock):
    store = RacingStore(races=1)
    engine = FlowEngine(registry, handlers, store, clock=clock)
    await engine.handle_event(text("hi", "m1"))
    store.races = 1
    store.commit_calls = 0

    instruction = await engine.handle_event(choice("create_agreement", "m2"))

    assert instruction.flow_id == flows.AGREEMENT_CREATE
    assert store.commit_calls == 2
    stored = await store.load(USER)
    # 1 (start) + 1 (other writer) + 1 (retried commit)
    assert stored.version == 3
    assert stored.active_flow == flows.AGREEMENT_CREATE


@pytest.mark.asyncio
async def test_repeated_conflict_is_transient(registry, handlers, clock):
    store = RacingStore(races=0)
    engine = FlowEngine(registry, handlers, store, clock=clock)
    await engine.handle_event(text("hi", "m1"))
    store.races = 2

    with pytest.raises(TransientError):
        await engine.handle_event(choice("create_agreement", "m2"))

    stored = await store.load(USER)
    assert stored.active_flow == flows.MAIN_MENU
    assert stored.version == 3


@pytest.mark.asyncio
async def test_concurrent_commits_on_same_base_version(store):
    """Exactly one of two writers against one base version can win."""
    await store.commit(_fresh_session(), expected_version=0)
    base = await store.load(USER)

    async def write(step):
        return await store.commit(base.model_copy(update={"current_step": step}), base.version)

    results = await asyncio.gather(write("ask_amount"), write("review"), return_exceptions=True)

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, VersionConflict)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert (await store.load(USER)).version == base.version + 1


@pytest.mark.asyncio
async def test_parallel_events_for_one_user_lose_no_updates(engine, store):
    await engine.handle_event(text("hi", "m1"))
    await engine.handle_event(choice("create_agreement", "m2"))

    results = await asyncio.gather(
        engine.handle_event(choice("giving", "m3")),
        engine.handle_event(text("help", "m4")),
        return_exceptions=True,
    )
    assert not any(isinstance(r, Exception) for r in results)
    assert (await store.load(USER)).slots == {"direction": "giving"}


def _fresh_session():
    return Session(user_key=USER, status=SessionStatus.ACTIVE, active_flow=flows.AGREEMENT_CREATE, current_step="ask_direction")
