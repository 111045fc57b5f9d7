from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from school_admin.core.errors import InfrastructureError, NotFoundError
from school_admin.storage.document_store import ChangeEvent, DocumentStore


def test_document_store_falls_back_to_local_files(tmp_path: Path) -> None:
    store = DocumentStore(tmp_path)

    async def scenario() -> dict | None:
        await store.set("admins", "a1", {"email": "jane@example.com", "status": "pending"})
        return await store.get("admins", "a1")

    doc = asyncio.run(scenario())

    assert store.uses_mongo is False
    assert doc == {"email": "jane@example.com", "status": "pending"}
    assert (tmp_path / "document_store" / "admins.json").exists()


def test_document_store_update_merges_and_requires_existing_document(tmp_path: Path) -> None:
    store = DocumentStore(tmp_path)

    async def scenario() -> dict:
        await store.set("admins", "a1", {"email": "jane@example.com", "status": "pending"})
        return await store.update("admins", "a1", {"status": "approved"})

    merged = asyncio.run(scenario())
    assert merged == {"email": "jane@example.com", "status": "approved"}

    with pytest.raises(NotFoundError):
        asyncio.run(store.update("admins", "missing", {"status": "approved"}))


def test_document_store_query_matches_every_field(tmp_path: Path) -> None:
    store = DocumentStore(tmp_path)

    async def scenario() -> tuple[list[dict], list[dict]]:
        await store.set("admins", "a1", {"email": "a@example.com", "status": "approved"})
        await store.set("admins", "a2", {"email": "b@example.com", "status": "pending"})
        approved = await store.query("admins", status="approved")
        none = await store.query("admins", email="a@example.com", status="pending")
        return approved, none

    approved, none = asyncio.run(scenario())

    assert [doc["email"] for doc in approved] == ["a@example.com"]
    assert none == []


def test_document_store_delete_reports_existence(tmp_path: Path) -> None:
    store = DocumentStore(tmp_path)

    async def scenario() -> tuple[bool, bool, list]:
        await store.set("admins", "a1", {"email": "a@example.com"})
        first = await store.delete("admins", "a1")
        second = await store.delete("admins", "a1")
        return first, second, await store.items("admins")

    first, second, remaining = asyncio.run(scenario())

    assert first is True
    assert second is False
    assert remaining == []


def test_document_store_notifies_filtered_subscribers(tmp_path: Path) -> None:
    store = DocumentStore(tmp_path)
    approved_events: list[ChangeEvent] = []
    all_events: list[ChangeEvent] = []
    store.subscribe("admins", approved_events.append, {"status": "approved"})
    unsubscribe = store.subscribe("admins", all_events.append)

    async def scenario() -> None:
        await store.set("admins", "a1", {"status": "pending"})
        await store.update("admins", "a1", {"status": "approved"})
        unsubscribe()
        await store.delete("admins", "a1")

    asyncio.run(scenario())

    assert [event.document for event in all_events] == [
        {"status": "pending"},
        {"status": "approved"},
    ]
    assert [(event.key, event.document) for event in approved_events] == [
        ("a1", {"status": "approved"}),
        ("a1", None),
    ]


def test_document_store_survives_failing_listener(tmp_path: Path) -> None:
    store = DocumentStore(tmp_path)
    seen: list[str] = []

    def broken(_event: ChangeEvent) -> None:
        raise RuntimeError("listener bug")

    store.subscribe("admins", broken)
    store.subscribe("admins", lambda event: seen.append(event.key))

    asyncio.run(store.set("admins", "a1", {"status": "pending"}))

    assert seen == ["a1"]


def test_document_store_rejects_corrupted_collection_file(tmp_path: Path) -> None:
    store = DocumentStore(tmp_path)
    (tmp_path / "document_store" / "admins.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(InfrastructureError):
        asyncio.run(store.list_documents("admins"))
    with pytest.raises(InfrastructureError):
        asyncio.run(store.get("admins", "a1"))


def test_document_store_never_overwrites_unreadable_collection(tmp_path: Path) -> None:
    store = DocumentStore(tmp_path)
    path = tmp_path / "document_store" / "admins.json"
    asyncio.run(store.set("admins", "a1", {"email": "a@example.com"}))
    damaged = path.read_text(encoding="utf-8") + "x"
    path.write_text(damaged, encoding="utf-8")

    for mutation in (
        store.set("admins", "a2", {"email": "c@example.com"}),
        store.update("admins", "a1", {"status": "approved"}),
        store.delete("admins", "a1"),
    ):
        with pytest.raises(InfrastructureError):
            asyncio.run(mutation)

    assert path.read_text(encoding="utf-8") == damaged


def test_document_store_rejects_non_object_collection_file(tmp_path: Path) -> None:
    store = DocumentStore(tmp_path)
    (tmp_path / "document_store" / "admins.json").write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(InfrastructureError):
        asyncio.run(store.query("admins", status="approved"))
