# /nearflow/routes/events.py

import structlog
from fastapi import APIRouter, Depends, HTTPException

from nearflow.models.events import InboundEvent, InstructionKind, OutboundInstruction
from nearflow.utils.dependencies import get_engine, get_message_guard
from nearflow.utils.logging import mask_user_key
from nearflow.utils.metrics import events_counter
from nearflow.workflows.engine import FlowEngine
from nearflow.workflows.errors import TransientError

# The transport-facing entry point: channel adapters post already-parsed
# events here and render the returned instruction.

router = APIRouter(
    tags=["Events"]
)

log = structlog.get_logger(__name__)


@router.post("/events", response_model=OutboundInstruction)
async def handle_event(
    event: InboundEvent,
    engine: FlowEngine = Depends(get_engine),
    message_guard=Depends(get_message_guard)
):
    """Run one inbound event through the flow engine."""
    if message_guard is not None and await message_guard.is_duplicate(event.user_key, event.message_id):
        log.info("Duplicate delivery dropped at the edge", user=mask_user_key(event.user_key), message_id=event.message_id)
        events_counter.labels(outcome="duplicate").inc()
        return OutboundInstruction(kind=InstructionKind.REPROMPT, error_code="DUPLICATE_MESSAGE")

    try:
        instruction = await engine.handle_event(event)
    except TransientError as e:
        log.warning("Transient failure, asking the transport to redeliver", user=mask_user_key(event.user_key), error=str(e))
        if message_guard is not None:
            await message_guard.release(event.user_key, event.message_id)
        raise HTTPException(status_code=503, detail=str(e), headers={"Retry-After": "1"})
    except Exception:
        if message_guard is not None:
            await message_guard.release(event.user_key, event.message_id)
        raise

    # An error instruction leaves the session untouched; let a redelivery try again.
    if instruction.kind == InstructionKind.ERROR and message_guard is not None:
        await message_guard.release(event.user_key, event.message_id)
    return instruction
