# /nearflow/utils/lifecycle.py

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from nearflow.config.settings import settings, validate_environment
from nearflow.jobs.session_sweeper import drain_notifications
from nearflow.services.dedupe_service import ProcessedMessageGuard
from nearflow.services.notification_queue import ExpiryNotifier
from nearflow.services.session_store import InMemorySessionStore, MongoSessionStore
from nearflow.utils.logging import setup_logging
from nearflow.workflows.engine import FlowEngine
from nearflow.workflows.flows.catalog import default_handlers
from nearflow.workflows.registry import build_registry

# This file manages the application's lifespan: the flow registry is built
# and validated before the first request (a bad catalog stops startup), and
# the store and Redis clients are opened and closed here.

logger = logging.getLogger(__name__)


def build_store():
    if settings.mongo_uri:
        return MongoSessionStore(settings.mongo_uri)
    logger.warning("NEARFLOW_MONGO_URI not set, using the in-memory session store")
    return InMemorySessionStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    setup_logging()
    validate_environment(settings)

    logger.info("Application starting up...")

    registry = build_registry()
    handlers = default_handlers()
    store = build_store()
    if isinstance(store, MongoSessionStore):
        await store.create_indexes()

    notifier = None
    message_guard = None
    if settings.redis_enabled:
        notifier = ExpiryNotifier.from_url(settings.redis_url)
        message_guard = ProcessedMessageGuard.from_url(settings.redis_url)

    app.state.registry = registry
    app.state.store = store
    app.state.notifier = notifier
    app.state.message_guard = message_guard
    app.state.engine = FlowEngine(registry, handlers, store)

    logger.info("Application startup complete. Ready to accept requests.")

    yield  # Application is now running

    logger.info("Application shutting down...")

    await drain_notifications()
    if notifier:
        await notifier.close()
    if message_guard:
        await message_guard.close()
    if isinstance(store, MongoSessionStore):
        store.close()
