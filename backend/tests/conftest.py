import os
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from dotenv import load_dotenv

# Load the test environment FIRST, before any nearflow imports, so the
# module-level Settings instance picks it up.
load_dotenv(dotenv_path=os.path.join(os.path.dirname(os.path.dirname(__file__)), ".env.test"))

# Now it's safe to import the application and its components
from nearflow.main import app  # noqa: E402
from nearflow.models.events import EventKind, InboundEvent  # noqa: E402
from nearflow.services.session_store import InMemorySessionStore  # noqa: E402
from nearflow.workflows.engine import FlowEngine  # noqa: E402
from nearflow.workflows.flows.catalog import default_handlers  # noqa: E402
from nearflow.workflows.registry import build_registry  # noqa: E402

USER = "919876543210"


class FakeClock:
    """Deterministic clock handed to the engine."""

    def __init__(self, start: datetime = datetime(2026, 1, 15, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def text(body, message_id=None, user_key=USER) -> InboundEvent:
    return InboundEvent(user_key=user_key, kind=EventKind.TEXT, payload=body, message_id=message_id)


def choice(selection, message_id=None, user_key=USER) -> InboundEvent:
    return InboundEvent(user_key=user_key, kind=EventKind.CHOICE, payload=selection, message_id=message_id)


def location(latitude, longitude, message_id=None, user_key=USER) -> InboundEvent:
    return InboundEvent(
        user_key=user_key,
        kind=EventKind.LOCATION,
        payload={"latitude": latitude, "longitude": longitude},
        message_id=message_id,
    )


@pytest.fixture
def registry():
    return build_registry()


@pytest.fixture
def handlers():
    return default_handlers()


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(registry, handlers, store, clock):
    return FlowEngine(registry, handlers, store, clock=clock)


@pytest.fixture(scope="function")
def test_client():
    """
    Provides a TestClient for API integration tests. The test environment
    disables Redis and leaves the Mongo URI unset, so the lifespan wires the
    in-memory session store.
    """
    with TestClient(app) as client:
        yield client
