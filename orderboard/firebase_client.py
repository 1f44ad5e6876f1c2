# orderboard/firebase_client.py
import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as gexc
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

# transport errors worth another attempt on idempotent calls
TRANSIENT_ERRORS = (
    gexc.ServiceUnavailable,
    gexc.DeadlineExceeded,
    gexc.InternalServerError,
    gexc.TooManyRequests,
)

_retry_transient = retry(
    wait=wait_exponential(multiplier=0.5, max=10),
    stop=stop_after_attempt(4),
    retry=retry_if_exception_type(TRANSIENT_ERRORS),
    reraise=True,
)


class FirebaseClientError(Exception):
    pass


class FirebaseClient:
    """
    Client for Cloud Firestore through the Firebase Admin SDK.
    Constructed by the application context and shut down with it.
    """
    def __init__(self, app_name: str = "orderboard"):
        self._app_name = app_name
        self._app: Optional[firebase_admin.App] = None
        self._db = None

    @property
    def app(self) -> firebase_admin.App:
        self._ensure_initialized()
        return self._app

    def init_app(self, service_account_path: Optional[str] = None,
                 service_account_json: Optional[str] = None,
                 project_id: Optional[str] = None) -> None:
        """
        Initialize the firebase admin SDK. Pass either a path to a
        service account JSON file or the raw JSON string.
        Synchronous; call at app startup.
        """
        if self._app is not None:
            logger.debug("Firebase already initialized.")
            return

        if not (service_account_json or service_account_path):
            raise FirebaseClientError("Provide service_account_path or service_account_json")
        try:
            if service_account_json:
                cred = credentials.Certificate(json.loads(service_account_json))
            else:
                cred = credentials.Certificate(service_account_path)
        except (OSError, ValueError) as e:
            raise FirebaseClientError(f"Invalid service account credentials: {e}") from e

        options = {"projectId": project_id} if project_id else None
        try:
            self._app = firebase_admin.initialize_app(cred, options, name=self._app_name)
            self._db = firestore.client(app=self._app)
            logger.info("Firebase Admin SDK initialized (app=%s).", self._app_name)
        except Exception as e:
            logger.exception("Failed to initialize Firebase Admin SDK")
            self._app = None
            raise FirebaseClientError(str(e)) from e

    def close(self) -> None:
        if self._app is None:
            return
        try:
            firebase_admin.delete_app(self._app)
        finally:
            self._app = None
            self._db = None
        logger.info("Firebase Admin SDK released (app=%s).", self._app_name)

    def _ensure_initialized(self):
        if self._app is None or self._db is None:
            raise FirebaseClientError("Firebase client not initialized. Call init_app() first.")

    def _collection(self, path: str):
        self._ensure_initialized()
        return self._db.collection(path)

    # ---- Helpers to run blocking calls in threadpool ----
    async def _run_blocking(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: func(*args, **kwargs))

    async def run_blocking(self, func, *args, **kwargs):
        return await self._run_blocking(func, *args, **kwargs)

    # ---- Document operations (async wrappers) ----
    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        """Create a document with a generated id. Not retried: a retry could duplicate it."""
        def _add():
            _, ref = self._collection(collection).add(data)
            return ref.id
        doc_id = await self._run_blocking(_add)
        logger.debug("Added to %s -> id=%s", collection, doc_id)
        return doc_id

    async def create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Create the document; fails with ``Conflict`` if it already exists. Not retried."""
        def _create():
            self._collection(collection).document(doc_id).create(data)
        await self._run_blocking(_create)
        logger.debug("Created %s/%s", collection, doc_id)

    @_retry_transient
    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Set (overwrite) the document."""
        def _set():
            self._collection(collection).document(doc_id).set(data)
        await self._run_blocking(_set)
        logger.debug("Set %s/%s", collection, doc_id)

    @_retry_transient
    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one document. Returns its data or None if absent."""
        def _get():
            snap = self._collection(collection).document(doc_id).get()
            return snap.to_dict() if snap.exists else None
        result = await self._run_blocking(_get)
        logger.debug("Got %s/%s: %s", collection, doc_id, "found" if result is not None else "missing")
        return result

    @_retry_transient
    async def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Partial update of the listed fields."""
        def _update():
            self._collection(collection).document(doc_id).update(data)
        await self._run_blocking(_update)
        logger.debug("Updated %s/%s with keys: %s", collection, doc_id, list(data.keys()))

    @_retry_transient
    async def delete(self, collection: str, doc_id: str) -> None:
        def _delete():
            self._collection(collection).document(doc_id).delete()
        await self._run_blocking(_delete)
        logger.debug("Deleted %s/%s", collection, doc_id)

    async def transact(self, collection: str, doc_id: str,
                       fn: Callable[[Optional[Dict[str, Any]]], Optional[Dict[str, Any]]]) -> Optional[Dict[str, Any]]:
        """
        Read the document and apply ``fn(current)`` inside one Firestore
        transaction. ``fn`` returns the fields to update, or None to leave
        the document alone. Returns what ``fn`` returned.
        """
        def _run():
            ref = self._collection(collection).document(doc_id)
            transaction = self._db.transaction()

            @firestore.transactional
            def _apply(txn):
                snap = ref.get(transaction=txn)
                fields = fn(snap.to_dict() if snap.exists else None)
                if fields:
                    txn.update(ref, fields)
                return fields

            return _apply(transaction)
        return await self._run_blocking(_run)

    def watch(self, collection: str, on_snapshot: Callable, on_error: Callable):
        """
        Attach a Firestore listener to the whole collection. Callbacks run on
        the SDK's listener thread. Returns the watch handle (``unsubscribe()``).

        ``on_error`` receives exceptions raised while handling a snapshot.
        The SDK gives no callback when the listen stream itself is closed
        for good, so such a listener simply stops delivering snapshots.
        """
        def _callback(docs, changes, read_time):
            try:
                on_snapshot([(d.id, d.to_dict() or {}) for d in docs])
            except Exception as e:
                on_error(e)

        watch = self._collection(collection).on_snapshot(_callback)
        logger.debug("Watching collection %s", collection)
        return watch
