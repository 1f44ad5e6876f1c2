# orderboard/store.py
"""
Document store collections.

A collection is schemaless: records are plain dicts keyed by a string id.
Readers never touch records directly; they ``subscribe`` and receive the
full snapshot every time any client's write is observed.

``FirestoreCollection`` talks to Cloud Firestore through
:class:`orderboard.firebase_client.FirebaseClient`; ``MemoryCollection`` keeps
records in process and backs sandbox mode and the tests.
"""
import asyncio
import copy
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from firebase_admin import firestore
from google.api_core.exceptions import Conflict, NotFound

from .firebase_client import FirebaseClient

logger = logging.getLogger(__name__)


class _ServerTimestamp:
    def __repr__(self):
        return "SERVER_TIMESTAMP"


# placeholder filled in by the store at write time
SERVER_TIMESTAMP = _ServerTimestamp()


class Document(NamedTuple):
    id: str
    data: Dict[str, Any]


SnapshotListener = Callable[[List[Document]], None]
ErrorListener = Callable[[Exception], None]
Unsubscribe = Callable[[], None]
TransactFn = Callable[[Optional[Dict[str, Any]]], Optional[Dict[str, Any]]]


class StoreError(Exception):
    pass


class DocumentNotFound(StoreError):
    pass


class DocumentExists(StoreError):
    pass


class Collection:
    """Interface shared by every collection implementation."""

    name: str

    def subscribe(self, on_snapshot: SnapshotListener, on_error: Optional[ErrorListener] = None) -> Unsubscribe:
        raise NotImplementedError

    async def add(self, data: Dict[str, Any]) -> str:
        raise NotImplementedError

    async def create(self, doc_id: str, data: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def set(self, doc_id: str, data: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def update(self, doc_id: str, data: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def delete(self, doc_id: str) -> None:
        raise NotImplementedError

    async def transact(self, doc_id: str, fn: TransactFn) -> Optional[Dict[str, Any]]:
        raise NotImplementedError


def _log_subscription_error(name: str) -> ErrorListener:
    def _on_error(exc: Exception) -> None:
        logger.error("Subscription to %s failed: %s", name, exc)
    return _on_error


# -------------------------
# Firestore
# -------------------------
def _to_firestore(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (firestore.SERVER_TIMESTAMP if v is SERVER_TIMESTAMP else v) for k, v in data.items()}


class FirestoreCollection(Collection):
    def __init__(self, client: FirebaseClient, name: str, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.client = client
        self.name = name
        self._loop = loop

    def _event_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def subscribe(self, on_snapshot: SnapshotListener, on_error: Optional[ErrorListener] = None) -> Unsubscribe:
        loop = self._event_loop()
        on_error = on_error or _log_subscription_error(self.name)

        # listener thread -> event loop
        def _snapshot(pairs):
            docs = [Document(doc_id, data) for doc_id, data in pairs]
            loop.call_soon_threadsafe(on_snapshot, docs)

        def _error(exc):
            loop.call_soon_threadsafe(on_error, exc)

        watch = self.client.watch(self.name, _snapshot, _error)

        def _unsubscribe():
            try:
                watch.unsubscribe()
            except Exception:
                logger.exception("Failed to release subscription to %s", self.name)
        return _unsubscribe

    async def add(self, data: Dict[str, Any]) -> str:
        return await self.client.add(self.name, _to_firestore(data))

    async def create(self, doc_id: str, data: Dict[str, Any]) -> None:
        try:
            await self.client.create(self.name, doc_id, _to_firestore(data))
        except Conflict as e:
            raise DocumentExists(f"{self.name}/{doc_id}") from e

    async def set(self, doc_id: str, data: Dict[str, Any]) -> None:
        await self.client.set(self.name, doc_id, _to_firestore(data))

    async def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        return await self.client.get(self.name, doc_id)

    async def update(self, doc_id: str, data: Dict[str, Any]) -> None:
        try:
            await self.client.update(self.name, doc_id, _to_firestore(data))
        except NotFound as e:
            raise DocumentNotFound(f"{self.name}/{doc_id}") from e

    async def delete(self, doc_id: str) -> None:
        await self.client.delete(self.name, doc_id)

    async def transact(self, doc_id: str, fn: TransactFn) -> Optional[Dict[str, Any]]:
        def _fn(current):
            fields = fn(current)
            return _to_firestore(fields) if fields else fields
        return await self.client.transact(self.name, doc_id, _fn)


# -------------------------
# In memory
# -------------------------
class MemoryCollection(Collection):
    """
    In-process collection with the same observable behaviour as Firestore:
    a new subscriber immediately receives the current snapshot, and every
    write re-emits the full snapshot to all subscribers.
    """
    def __init__(self, name: str, records: Optional[Dict[str, Dict[str, Any]]] = None):
        self.name = name
        self._records: Dict[str, Dict[str, Any]] = {}
        self._listeners: Dict[int, tuple] = {}
        self._next_token = 0
        self._lock = threading.Lock()
        for doc_id, data in (records or {}).items():
            self._records[doc_id] = self._resolve(data)

    @staticmethod
    def _resolve(data: Dict[str, Any]) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        return {k: (now if v is SERVER_TIMESTAMP else copy.deepcopy(v)) for k, v in data.items()}

    def snapshot(self) -> List[Document]:
        with self._lock:
            return [Document(doc_id, copy.deepcopy(data)) for doc_id, data in self._records.items()]

    def _emit(self) -> None:
        docs = self.snapshot()
        for on_snapshot, _ in list(self._listeners.values()):
            on_snapshot(list(docs))

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, on_snapshot: SnapshotListener, on_error: Optional[ErrorListener] = None) -> Unsubscribe:
        token = self._next_token
        self._next_token += 1
        self._listeners[token] = (on_snapshot, on_error or _log_subscription_error(self.name))
        on_snapshot(self.snapshot())

        def _unsubscribe():
            self._listeners.pop(token, None)
        return _unsubscribe

    def fail_subscribers(self, exc: Exception) -> None:
        """Deliver a subscription error to every listener."""
        for _, on_error in list(self._listeners.values()):
            on_error(exc)

    async def add(self, data: Dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex[:20]
        with self._lock:
            self._records[doc_id] = self._resolve(data)
        self._emit()
        return doc_id

    async def create(self, doc_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            if doc_id in self._records:
                raise DocumentExists(f"{self.name}/{doc_id}")
            self._records[doc_id] = self._resolve(data)
        self._emit()

    async def set(self, doc_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._records[doc_id] = self._resolve(data)
        self._emit()

    async def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            data = self._records.get(doc_id)
            return copy.deepcopy(data) if data is not None else None

    async def update(self, doc_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            if doc_id not in self._records:
                raise DocumentNotFound(f"{self.name}/{doc_id}")
            self._records[doc_id].update(self._resolve(data))
        self._emit()

    async def delete(self, doc_id: str) -> None:
        with self._lock:
            self._records.pop(doc_id, None)
        self._emit()

    async def transact(self, doc_id: str, fn: TransactFn) -> Optional[Dict[str, Any]]:
        with self._lock:
            current = self._records.get(doc_id)
            fields = fn(copy.deepcopy(current) if current is not None else None)
            if fields and current is None:
                raise DocumentNotFound(f"{self.name}/{doc_id}")
            if fields:
                self._records[doc_id].update(self._resolve(fields))
        if fields:
            self._emit()
        return fields
