# backend/tests/unit/test_redis_services.py
import json
from datetime import datetime

import pytest
from unittest.mock import AsyncMock

from nearflow.services.dedupe_service import ProcessedMessageGuard
from nearflow.services.notification_queue import ExpiryNotifier


@pytest.mark.asyncio
async def test_first_delivery_is_not_duplicate():
    redis_client = AsyncMock()
    redis_client.set.return_value = True
    guard = ProcessedMessageGuard(redis_client, ttl_seconds=60)

    assert await guard.is_duplicate("919800000001", "wamid.1") is False
    redis_client.set.assert_awaited_once_with("processed:919800000001:wamid.1", "1", ex=60, nx=True)


@pytest.mark.asyncio
async def test_redelivery_is_duplicate():
    redis_client = AsyncMock()
    redis_client.set.return_value = None
    guard = ProcessedMessageGuard(redis_client, ttl_seconds=60)
    assert await guard.is_duplicate("919800000001", "wamid.1") is True


@pytest.mark.asyncio
async def test_guard_fails_open():
    redis_client = AsyncMock()
    redis_client.set.side_effect = ConnectionError("redis down")
    guard = ProcessedMessageGuard(redis_client)
    assert await guard.is_duplicate("919800000001", "wamid.1") is False


@pytest.mark.asyncio
async def test_guard_ignores_events_without_message_id():
    redis_client = AsyncMock()
    guard = ProcessedMessageGuard(redis_client)
    assert await guard.is_duplicate("919800000001", None) is False
    redis_client.set.assert_not_awaited()


@pytest.mark.asyncio
async def test_release_forgets_the_message():
    redis_client = AsyncMock()
    guard = ProcessedMessageGuard(redis_client)

    await guard.release("919800000001", "wamid.1")
    redis_client.delete.assert_awaited_once_with("processed:919800000001:wamid.1")

    redis_client.delete.side_effect = ConnectionError("redis down")
    await guard.release("919800000001", "wamid.2")


@pytest.mark.asyncio
async def test_publish_expiry_intent():
    redis_client = AsyncMock()
    redis_client.xadd.return_value = b"1700000000000-0"
    notifier = ExpiryNotifier(redis_client, stream_name="expiry_test")

    entry_id = await notifier.publish_expiry("919800000001", "job_post", "enter_pay", datetime(2026, 1, 15, 9, 30))

    assert entry_id == "1700000000000-0"
    stream, fields = redis_client.xadd.await_args.args
    assert stream == "expiry_test"
    assert json.loads(fields["data"]) == {
        "type": "session_expired",
        "user_key": "919800000001",
        "flow_id": "job_post",
        "step_id": "enter_pay",
        "expired_at": "2026-01-15T09:30:00",
    }


@pytest.mark.asyncio
async def test_publish_without_client_is_dropped():
    notifier = ExpiryNotifier(None)
    assert await notifier.publish_expiry("919800000001", "job_post", None, datetime(2026, 1, 15)) is None
