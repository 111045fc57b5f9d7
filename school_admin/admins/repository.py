"""Repository for admin access requests in the ``admins`` collection."""

from __future__ import annotations

import logging
from typing import Any, Callable

from pydantic import ValidationError

from school_admin.admins.models import AdminRequest, AdminStatus
from school_admin.storage.document_store import ChangeEvent, DocumentStore

LOGGER = logging.getLogger(__name__)

ADMINS_COLLECTION = "admins"


class MalformedAdminRecord(Exception):
    """Stored document cannot be read as an :class:`AdminRequest`."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Malformed admin record: {key}")
        self.key = key


def parse_admin_request(key: str, doc: dict[str, Any]) -> AdminRequest:
    try:
        return AdminRequest.model_validate({**doc, "id": doc.get("id") or key})
    except ValidationError as exc:
        raise MalformedAdminRecord(key) from exc


def newest_first(requests: list[AdminRequest]) -> list[AdminRequest]:
    return sorted(requests, key=lambda item: item.requested_at, reverse=True)


class AdminRequestRepository:
    """Typed access to admin request documents."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def get(self, request_id: str) -> AdminRequest | None:
        doc = await self._store.get(ADMINS_COLLECTION, request_id)
        return parse_admin_request(request_id, doc) if doc else None

    async def exists(self, **equals: Any) -> bool:
        return bool(await self._store.query(ADMINS_COLLECTION, **equals))

    async def find_by_email(self, email: str) -> AdminRequest | None:
        rows = await self._store.query(ADMINS_COLLECTION, email=email)
        return self._first(rows)

    async def find_by_uid(self, uid: str) -> AdminRequest | None:
        rows = await self._store.query(ADMINS_COLLECTION, uid=uid)
        return self._first(rows)

    async def find_approved_by_email(self, email: str) -> AdminRequest | None:
        rows = await self._store.query(
            ADMINS_COLLECTION, email=email, status=AdminStatus.APPROVED.value
        )
        return self._first(rows)

    async def save(self, request: AdminRequest) -> None:
        await self._store.set(ADMINS_COLLECTION, request.id, request.model_dump(mode="json"))

    async def update(self, request_id: str, changes: dict[str, Any]) -> AdminRequest:
        doc = await self._store.update(ADMINS_COLLECTION, request_id, changes)
        return parse_admin_request(request_id, doc)

    async def delete(self, request_id: str) -> bool:
        return await self._store.delete(ADMINS_COLLECTION, request_id)

    async def list_all(self) -> list[AdminRequest]:
        """Return readable requests newest first; malformed rows are skipped."""
        requests: list[AdminRequest] = []
        for key, doc in await self.list_raw():
            try:
                requests.append(parse_admin_request(key, doc))
            except MalformedAdminRecord:
                LOGGER.warning(
                    "Skipping malformed admin record", extra={"admin_request_id": key}
                )
        return newest_first(requests)

    async def list_raw(self) -> list[tuple[str, dict[str, Any]]]:
        return await self._store.items(ADMINS_COLLECTION)

    def subscribe(self, listener: Callable[[ChangeEvent], None]) -> Callable[[], None]:
        return self._store.subscribe(ADMINS_COLLECTION, listener)

    @staticmethod
    def _first(rows: list[dict[str, Any]]) -> AdminRequest | None:
        if not rows:
            return None
        row = rows[0]
        return parse_admin_request(str(row.get("id") or ""), row)
