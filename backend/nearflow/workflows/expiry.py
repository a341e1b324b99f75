# /nearflow/workflows/expiry.py

"""
Timeout rules shared by the engine (lazy detection on the next inbound
event) and the sweeper (periodic scan). Pure functions, no persistence.
"""

from datetime import datetime, timedelta
from typing import List, Optional

from nearflow.config.settings import settings
from nearflow.models.session import Session, SessionStatus, SuspendedFlow
from nearflow.workflows.errors import UnknownFlow
from nearflow.workflows.registry import FlowRegistry


def timeout_for(session: Session, registry: FlowRegistry) -> timedelta:
    try:
        minutes = registry.resolve(session.active_flow).timeout_minutes
    except UnknownFlow:
        # Flow removed from the catalog since the session was written.
        minutes = settings.session_timeout_minutes
    return timedelta(minutes=minutes)


def has_timed_out(session: Session, registry: FlowRegistry, now: datetime) -> bool:
    """True when an active session has been inactive for longer than its flow's timeout."""
    if not session.is_active:
        return False
    return now - session.last_activity_at > timeout_for(session, registry)


def expire_session(session: Session, now: datetime, message_id: Optional[str] = None) -> Session:
    """Expired copy of a session: no active flow, slots and stack cleared."""
    return session.model_copy(
        update={
            "status": SessionStatus.EXPIRED,
            "active_flow": None,
            "current_step": None,
            "slots": {},
            "visited_steps": [],
            "suspended_stack": [],
            "last_message_id": message_id or session.last_message_id,
            "last_activity_at": now,
        },
        deep=True,
    )


def snapshot_is_stale(entry: SuspendedFlow, registry: FlowRegistry, now: datetime) -> bool:
    """A suspended flow lives no longer than its own flow's timeout."""
    if entry.flow_id not in registry:
        return True
    timeout = timedelta(minutes=registry.resolve(entry.flow_id).timeout_minutes)
    return now - entry.suspended_at > timeout


def prune_suspended(stack: List[SuspendedFlow], registry: FlowRegistry, now: datetime) -> List[SuspendedFlow]:
    return [entry for entry in stack if not snapshot_is_stale(entry, registry, now)]
