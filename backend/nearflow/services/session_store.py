# /nearflow/services/session_store.py

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError

from nearflow.config.settings import settings
from nearflow.models.session import Session, SessionStatus
from nearflow.utils.logging import mask_user_key
from nearflow.utils.metrics import store_operations_counter, version_conflicts_counter
from nearflow.workflows.errors import VersionConflict

# This service is the only shared mutable state of the engine: a keyed,
# versioned document store. It holds no flow or business logic.

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    """
    Versioned per-user session storage.

    commit() is an atomic compare-and-swap: it succeeds only when the stored
    version equals expected_version (0 meaning "no document yet"), and the
    stored copy gets version expected_version + 1. Two concurrent commits
    against the same base version can never both succeed.
    """

    @abstractmethod
    async def load(self, user_key: str) -> Optional[Session]:
        ...

    @abstractmethod
    async def commit(self, session: Session, expected_version: int) -> Session:
        """Raises VersionConflict when the stored version moved on."""

    @abstractmethod
    async def delete(self, user_key: str) -> None:
        ...

    @abstractmethod
    async def find_inactive(self, before: datetime) -> List[Session]:
        """Active sessions whose last activity is older than `before`."""

    @abstractmethod
    async def find_stale_suspended(self, before: datetime) -> List[Session]:
        """Inactive sessions holding a suspended flow snapshotted before `before`."""


class InMemorySessionStore(SessionStore):
    """Process-local store used by tests and single-worker development runs."""

    def __init__(self):
        self._documents: Dict[str, Session] = {}
        self._lock = asyncio.Lock()

    async def load(self, user_key: str) -> Optional[Session]:
        stored = self._documents.get(user_key)
        return stored.model_copy(deep=True) if stored else None

    async def commit(self, session: Session, expected_version: int) -> Session:
        async with self._lock:
            stored = self._documents.get(session.user_key)
            actual = stored.version if stored else 0
            if actual != expected_version:
                version_conflicts_counter.labels(source="memory").inc()
                raise VersionConflict(session.user_key, expected_version, actual)
            committed = session.model_copy(update={"version": expected_version + 1}, deep=True)
            self._documents[session.user_key] = committed
        store_operations_counter.labels(operation="commit", status="success").inc()
        return committed.model_copy(deep=True)

    async def delete(self, user_key: str) -> None:
        async with self._lock:
            self._documents.pop(user_key, None)

    async def find_inactive(self, before: datetime) -> List[Session]:
        return [
            session.model_copy(deep=True)
            for session in self._documents.values()
            if session.status == SessionStatus.ACTIVE and session.last_activity_at < before
        ]

    async def find_stale_suspended(self, before: datetime) -> List[Session]:
        return [
            session.model_copy(deep=True)
            for session in self._documents.values()
            if session.status != SessionStatus.ACTIVE
            and any(entry.suspended_at < before for entry in session.suspended_stack)
        ]


class MongoSessionStore(SessionStore):
    """
    MongoDB-backed store. Sessions are documents keyed by user_key (_id);
    the version field doubles as the optimistic lock.
    """

    def __init__(self, mongo_uri: str, database: Optional[str] = None, collection: Optional[str] = None):
        try:
            self.client = AsyncIOMotorClient(
                mongo_uri,
                maxPoolSize=settings.max_pool_size,
                minPoolSize=settings.min_pool_size,
                tls=settings.mongo_ssl,
                serverSelectionTimeoutMS=5000,
                connectTimeoutMS=10000
            )
            self.db = self.client[database or settings.mongo_database]
            self.collection = self.db[collection or settings.sessions_collection]
            logger.info("MongoDB session store initialized successfully.")
        except Exception as e:
            logger.error(f"Error initializing MongoDB client: {e}")
            raise

    async def create_indexes(self):
        await self.collection.create_index(
            [("status", ASCENDING), ("last_activity_at", ASCENDING)],
            name="status_last_activity"
        )
        logger.info("Session store indexes ensured.")

    async def load(self, user_key: str) -> Optional[Session]:
        try:
            document = await self.collection.find_one({"_id": user_key})
            store_operations_counter.labels(operation="load", status="success").inc()
        except Exception:
            store_operations_counter.labels(operation="load", status="error").inc()
            raise
        return Session.from_document(document) if document else None

    async def commit(self, session: Session, expected_version: int) -> Session:
        committed = session.model_copy(update={"version": expected_version + 1}, deep=True)
        document = committed.to_document()

        if expected_version == 0:
            try:
                await self.collection.insert_one(document)
            except DuplicateKeyError:
                version_conflicts_counter.labels(source="mongo").inc()
                raise VersionConflict(session.user_key, expected_version)
        else:
            fields = {key: value for key, value in document.items() if key != "_id"}
            result = await self.collection.update_one(
                {"_id": session.user_key, "version": expected_version},
                {"$set": fields}
            )
            if result.matched_count == 0:
                version_conflicts_counter.labels(source="mongo").inc()
                logger.info(
                    f"Optimistic lock failed for session {mask_user_key(session.user_key)} "
                    f"at version {expected_version}"
                )
                raise VersionConflict(session.user_key, expected_version)

        store_operations_counter.labels(operation="commit", status="success").inc()
        return committed

    async def delete(self, user_key: str) -> None:
        await self.collection.delete_one({"_id": user_key})
        store_operations_counter.labels(operation="delete", status="success").inc()

    async def find_inactive(self, before: datetime) -> List[Session]:
        cursor = self.collection.find(
            {"status": SessionStatus.ACTIVE.value, "last_activity_at": {"$lt": before}}
        )
        documents = await cursor.to_list(length=None)
        return [Session.from_document(document) for document in documents]

    async def find_stale_suspended(self, before: datetime) -> List[Session]:
        cursor = self.collection.find(
            {
                "status": {"$ne": SessionStatus.ACTIVE.value},
                "suspended_stack.suspended_at": {"$lt": before},
            }
        )
        documents = await cursor.to_list(length=None)
        return [Session.from_document(document) for document in documents]

    def close(self):
        if self.client:
            self.client.close()
