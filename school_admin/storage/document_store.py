"""Document store with MongoDB primary and JSON-file fallback.

Collections hold JSON documents addressed by a string key. Every public
operation is a coroutine; blocking backend calls run in a worker thread so
callers on the event loop only suspend at I/O boundaries.

Subscribers registered with :meth:`DocumentStore.subscribe` are notified on
the event loop after each successful mutation made through this instance.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any, Callable

from pymongo import MongoClient, ReturnDocument
from pymongo.errors import PyMongoError

from school_admin.core.errors import InfrastructureError, NotFoundError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    """Single document mutation; ``document`` is ``None`` for deletions."""

    collection: str
    key: str
    document: dict[str, Any] | None


ChangeListener = Callable[[ChangeEvent], None]


@dataclass
class _Subscription:
    collection: str
    listener: ChangeListener
    filters: dict[str, Any]

    def matches(self, event: ChangeEvent) -> bool:
        if event.collection != self.collection:
            return False
        if event.document is None:
            return True
        return all(event.document.get(field) == value for field, value in self.filters.items())


class DocumentStore:
    """Keyed JSON document storage backed by MongoDB or local files."""

    def __init__(
        self,
        runtime_dir: Path,
        *,
        mongo_uri: str = "",
        mongo_db: str = "school_admin",
    ) -> None:
        """Initialize storage backends, preferring MongoDB when reachable."""
        self._fallback_dir = runtime_dir / "document_store"
        self._fallback_dir.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
        self._subscriptions: list[_Subscription] = []
        self._client: MongoClient | None = None
        self._db: Any | None = None

        if mongo_uri:
            try:
                client: MongoClient = MongoClient(mongo_uri, serverSelectionTimeoutMS=3000)
                client.admin.command("ping")
                self._client = client
                self._db = client[mongo_db]
                self._db["admins"].create_index("email")
                self._db["admins"].create_index("phone")
                self._db["admins"].create_index("uid")
                self._db["accounts"].create_index("email", unique=True)
                LOGGER.info("DocumentStore using MongoDB: db=%s", mongo_db)
            except PyMongoError:
                LOGGER.exception("MongoDB connection failed. Falling back to local document store.")
                self._client = None
                self._db = None
        else:
            LOGGER.warning("MONGODB_URI is not set. Using local document store fallback.")

    @property
    def uses_mongo(self) -> bool:
        """Return whether MongoDB is the active backend."""
        return self._db is not None

    # -- public async API -------------------------------------------------

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        """Return document by key or ``None``."""
        return await self._run(self._get_sync, collection, key)

    async def set(self, collection: str, key: str, document: dict[str, Any]) -> None:
        """Create or replace a document."""
        stored = await self._run(self._set_sync, collection, key, document)
        self._notify(ChangeEvent(collection=collection, key=key, document=stored))

    async def update(
        self, collection: str, key: str, changes: dict[str, Any]
    ) -> dict[str, Any]:
        """Merge ``changes`` into an existing document and return the result."""
        stored = await self._run(self._update_sync, collection, key, changes)
        self._notify(ChangeEvent(collection=collection, key=key, document=stored))
        return stored

    async def delete(self, collection: str, key: str) -> bool:
        """Delete a document; return whether it existed."""
        existed = await self._run(self._delete_sync, collection, key)
        if existed:
            self._notify(ChangeEvent(collection=collection, key=key, document=None))
        return existed

    async def query(self, collection: str, **equals: Any) -> list[dict[str, Any]]:
        """Return documents whose fields equal every given value."""
        return await self._run(self._query_sync, collection, equals)

    async def list_documents(self, collection: str) -> list[dict[str, Any]]:
        """Return every document in a collection."""
        return [doc for _, doc in await self.items(collection)]

    async def items(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        """Return ``(key, document)`` pairs for a whole collection."""
        return await self._run(self._items_sync, collection)

    def subscribe(
        self,
        collection: str,
        listener: ChangeListener,
        filters: dict[str, Any] | None = None,
    ) -> Callable[[], None]:
        """Register a change listener and return its unsubscribe callable."""
        subscription = _Subscription(
            collection=collection, listener=listener, filters=dict(filters or {})
        )
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    def close(self) -> None:
        """Release backend resources."""
        self._subscriptions.clear()
        if self._client is not None:
            self._client.close()

    # -- internals ---------------------------------------------------------

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except PyMongoError as exc:
            raise InfrastructureError(f"Document store unavailable: {exc}") from exc
        except OSError as exc:
            raise InfrastructureError(f"Document store I/O failed: {exc}") from exc

    def _notify(self, event: ChangeEvent) -> None:
        for subscription in list(self._subscriptions):
            if not subscription.matches(event):
                continue
            try:
                subscription.listener(event)
            except Exception:
                LOGGER.exception(
                    "Document change listener failed: collection=%s key=%s",
                    event.collection,
                    event.key,
                )

    def _collection_file(self, collection: str) -> Path:
        return self._fallback_dir / f"{collection}.json"

    def _read_collection(self, collection: str) -> dict[str, dict[str, Any]]:
        path = self._collection_file(collection)
        if not path.exists():
            return {}
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except ValueError as exc:
            LOGGER.error("Unreadable fallback collection: %s", path)
            raise InfrastructureError(f"Document store collection is corrupt: {collection}") from exc
        if not isinstance(payload, dict):
            LOGGER.error("Unexpected fallback collection shape: %s", path)
            raise InfrastructureError(f"Document store collection is corrupt: {collection}")
        return payload

    def _write_collection(self, collection: str, items: dict[str, dict[str, Any]]) -> None:
        path = self._collection_file(collection)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(items, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp_path.replace(path)

    @staticmethod
    def _strip_mongo_id(doc: dict[str, Any] | None) -> dict[str, Any] | None:
        if doc is None:
            return None
        doc = dict(doc)
        doc.pop("_id", None)
        return doc

    def _get_sync(self, collection: str, key: str) -> dict[str, Any] | None:
        if self._db is not None:
            return self._strip_mongo_id(self._db[collection].find_one({"_id": key}))
        with self._lock:
            doc = self._read_collection(collection).get(key)
        return dict(doc) if isinstance(doc, dict) else None

    def _set_sync(self, collection: str, key: str, document: dict[str, Any]) -> dict[str, Any]:
        doc = dict(document)
        doc.pop("_id", None)
        if self._db is not None:
            self._db[collection].replace_one({"_id": key}, {"_id": key, **doc}, upsert=True)
            return doc
        with self._lock:
            items = self._read_collection(collection)
            items[key] = doc
            self._write_collection(collection, items)
        return dict(doc)

    def _update_sync(
        self, collection: str, key: str, changes: dict[str, Any]
    ) -> dict[str, Any]:
        patch = dict(changes)
        patch.pop("_id", None)
        if self._db is not None:
            doc = self._db[collection].find_one_and_update(
                {"_id": key},
                {"$set": patch},
                return_document=ReturnDocument.AFTER,
            )
            if doc is None:
                raise NotFoundError(f"Document not found: {collection}/{key}")
            return self._strip_mongo_id(doc) or {}
        with self._lock:
            items = self._read_collection(collection)
            if key not in items:
                raise NotFoundError(f"Document not found: {collection}/{key}")
            merged = {**items[key], **patch}
            items[key] = merged
            self._write_collection(collection, items)
        return dict(merged)

    def _delete_sync(self, collection: str, key: str) -> bool:
        if self._db is not None:
            result = self._db[collection].delete_one({"_id": key})
            return result.deleted_count > 0
        with self._lock:
            items = self._read_collection(collection)
            if key not in items:
                return False
            del items[key]
            self._write_collection(collection, items)
        return True

    def _items_sync(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        if self._db is not None:
            return [
                (str(doc.get("_id")), self._strip_mongo_id(doc) or {})
                for doc in self._db[collection].find({})
            ]
        with self._lock:
            items = self._read_collection(collection)
        return [(key, dict(doc)) for key, doc in items.items() if isinstance(doc, dict)]

    def _query_sync(self, collection: str, equals: dict[str, Any]) -> list[dict[str, Any]]:
        if self._db is not None:
            return [
                self._strip_mongo_id(doc) or {}
                for doc in self._db[collection].find(dict(equals))
            ]
        with self._lock:
            items = self._read_collection(collection)
        return [
            dict(doc)
            for doc in items.values()
            if isinstance(doc, dict)
            and all(doc.get(field) == value for field, value in equals.items())
        ]
