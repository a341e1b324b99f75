# backend/tests/integration/test_agreement_scenario.py
import pytest

from conftest import USER, choice, text
from nearflow.models.events import InstructionKind
from nearflow.models.session import SessionStatus
from nearflow.workflows import definitions as flows


@pytest.mark.asyncio
async def test_create_agreement_with_interruption(engine, store, clock, registry):
    """Full conversation: start, fill two steps, jump to the menu, resume, confirm."""
    instruction = await engine.handle_event(text("hi", "m1"))
    assert instruction.flow_id == flows.MAIN_MENU

    instruction = await engine.handle_event(choice("create_agreement", "m2"))
    assert (instruction.flow_id, instruction.step_id) == (flows.AGREEMENT_CREATE, "ask_direction")

    clock.advance(minutes=1)
    instruction = await engine.handle_event(choice("giving", "m3"))
    assert instruction.step_id == "ask_amount"
    assert (await store.load(USER)).slots == {"direction": "giving"}

    clock.advance(minutes=1)
    instruction = await engine.handle_event(text("5000", "m4"))
    assert instruction.step_id == "review"
    assert instruction.render_hints["summary"] == {"direction": "giving", "amount": 5000}
    assert (await store.load(USER)).slots == {"direction": "giving", "amount": 5000}

    instruction = await engine.handle_event(text("menu", "m5"))
    assert (instruction.flow_id, instruction.step_id) == (flows.MAIN_MENU, "show_menu")
    assert instruction.render_hints["suspended"] == [flows.AGREEMENT_CREATE]
    stored = await store.load(USER)
    assert stored.suspended_flow_ids() == [flows.AGREEMENT_CREATE]
    assert stored.slots == {}

    instruction = await engine.handle_event(text("resume", "m6"))
    assert instruction.render_hints["resumed"] is True
    assert (instruction.flow_id, instruction.step_id) == (flows.AGREEMENT_CREATE, "review")
    stored = await store.load(USER)
    assert stored.slots == {"direction": "giving", "amount": 5000}
    assert stored.suspended_stack == []

    instruction = await engine.handle_event(choice("confirm", "m7"))
    assert instruction.kind == InstructionKind.TERMINATE
    assert instruction.render_hints["slots"] == {"direction": "giving", "amount": 5000, "confirmation": True}

    stored = await store.load(USER)
    assert stored.status == SessionStatus.IDLE
    assert stored.version == 7


@pytest.mark.asyncio
async def test_every_commit_keeps_step_in_active_flow(engine, store, registry):
    """Walk the fish catch flow and check the step invariant after each event."""
    script = [
        text("hi", "f1"),
        text("sell fish", "f2"),
        choice("pomfret", "f3"),
        choice("10_25", "f4"),
        text("₹450", "f5"),
        text("skip", "f6"),
    ]
    for event in script:
        await engine.handle_event(event)
        stored = await store.load(USER)
        if stored.active_flow is not None:
            assert stored.current_step in registry.resolve(stored.active_flow).step_ids()
            assert stored.active_flow not in stored.suspended_flow_ids()

    assert stored.active_flow == flows.FISH_POST_CATCH
    assert stored.current_step == "confirm"
    assert stored.slots == {"fish_type": "pomfret", "quantity_range": "10_25", "price_per_kg": 450}

    # The confirm step cannot be interrupted.
    instruction = await engine.handle_event(text("cancel", "f7"))
    assert instruction.error_code == "BUSY"

    instruction = await engine.handle_event(choice("confirm", "f8"))
    assert instruction.kind == InstructionKind.TERMINATE
