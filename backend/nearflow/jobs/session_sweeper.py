# /nearflow/jobs/session_sweeper.py

"""
Inactive Session Sweeper.

Force-expires sessions whose active flow has been idle past its timeout so
abandoned conversations do not sit in the store forever.

This job:
- Fetches ACTIVE sessions older than the shortest flow timeout
- Re-checks each one against its own flow's timeout
- Commits the expired copy with optimistic locking (a conflict means the
  user came back in the meantime; the session is left alone)
- Queues a best-effort "session expired" notification intent
- Drops timed out suspended flows from idle sessions so they cannot be
  resumed later

Running it twice in a row is safe: the second run finds nothing to expire.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Set

from nearflow.models.session import utcnow
from nearflow.services.notification_queue import ExpiryNotifier
from nearflow.services.session_store import SessionStore
from nearflow.utils.logging import mask_user_key
from nearflow.utils.metrics import sessions_expired_counter, sweep_runs_counter
from nearflow.workflows.errors import VersionConflict
from nearflow.workflows.expiry import expire_session, has_timed_out, prune_suspended
from nearflow.workflows.registry import FlowRegistry

logger = logging.getLogger(__name__)

# Strong references to in-flight notification tasks so they are not
# garbage-collected before they finish.
_pending_notifications: Set[asyncio.Task] = set()


@dataclass
class SweepReport:
    scanned: int = 0
    expired: int = 0
    skipped: int = 0
    pruned: int = 0


async def _notify(notifier: ExpiryNotifier, user_key: str, flow_id: str, step_id: Optional[str], expired_at: datetime):
    try:
        await notifier.publish_expiry(user_key, flow_id, step_id, expired_at)
    except Exception as e:
        logger.error(f"Failed to queue expiry notification for {mask_user_key(user_key)}: {e}")


async def drain_notifications():
    """Wait for queued notification tasks (used before shutting down)."""
    if _pending_notifications:
        await asyncio.gather(*list(_pending_notifications), return_exceptions=True)


async def sweep_expired_sessions(
    now: datetime,
    store: SessionStore,
    registry: FlowRegistry,
    notifier: Optional[ExpiryNotifier] = None
) -> SweepReport:
    """
    Expire every ACTIVE session whose inactivity exceeds its flow's timeout,
    and drop timed out suspended flows from sessions that are not active.

    Args:
        now: Reference time for the timeout comparison
        store: Session store to scan and commit to
        registry: Flow catalog (per-flow timeouts)
        notifier: Optional expiry intent publisher
    """
    report = SweepReport()
    horizon = now - timedelta(minutes=registry.min_timeout_minutes())

    try:
        candidates = await store.find_inactive(horizon)
        stale_stacks = await store.find_stale_suspended(horizon)
    except Exception:
        sweep_runs_counter.labels(status="error").inc()
        raise

    for session in candidates:
        report.scanned += 1
        if not has_timed_out(session, registry, now):
            continue

        flow_id, step_id = session.active_flow, session.current_step
        try:
            await store.commit(expire_session(session, now), session.version)
        except VersionConflict:
            report.skipped += 1
            logger.info(f"Session {mask_user_key(session.user_key)} changed during sweep, skipping")
            continue

        report.expired += 1
        sessions_expired_counter.labels(flow_id=flow_id).inc()
        logger.info(f"Expired session {mask_user_key(session.user_key)} in flow {flow_id} at step {step_id}")

        if notifier is not None:
            task = asyncio.create_task(_notify(notifier, session.user_key, flow_id, step_id, now))
            _pending_notifications.add(task)
            task.add_done_callback(_pending_notifications.discard)

    for session in stale_stacks:
        live = prune_suspended(session.suspended_stack, registry, now)
        if len(live) == len(session.suspended_stack):
            continue
        try:
            await store.commit(session.model_copy(update={"suspended_stack": live}, deep=True), session.version)
        except VersionConflict:
            report.skipped += 1
            continue
        report.pruned += 1

    sweep_runs_counter.labels(status="success").inc()
    logger.info(f"Session sweep finished: scanned={report.scanned} expired={report.expired} skipped={report.skipped} pruned={report.pruned}")
    return report


async def main():
    from nearflow.config.settings import settings, validate_environment
    from nearflow.services.session_store import MongoSessionStore
    from nearflow.utils.logging import setup_logging
    from nearflow.workflows.registry import build_registry

    setup_logging()
    validate_environment(settings)

    store = MongoSessionStore(settings.mongo_uri)
    notifier = ExpiryNotifier.from_url(settings.redis_url)
    try:
        await sweep_expired_sessions(utcnow(), store, build_registry(), notifier)
        await drain_notifications()
    finally:
        await notifier.close()
        store.close()


if __name__ == "__main__":
    asyncio.run(main())
