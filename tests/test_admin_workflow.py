from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from school_admin.admins.models import AdminRequest, AdminStatus
from school_admin.admins.repository import ADMINS_COLLECTION, AdminRequestRepository
from school_admin.admins.workflow import AdminRequestWorkflow
from school_admin.auth.authenticator import Authenticator
from school_admin.core.config import AuthConfig
from school_admin.core.errors import (
    AuthenticationError,
    DuplicateRequestError,
    InfrastructureError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from school_admin.storage.document_store import DocumentStore

PASSWORD = "Str0ng!Pass"


class _Ticker:
    """Clock that moves one minute per reading."""

    def __init__(self) -> None:
        self.current = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(minutes=1)
        return self.current


def _build(tmp_path: Path):
    store = DocumentStore(tmp_path)
    authenticator = Authenticator(
        store, AuthConfig(secret_key="test-secret", session_token_ttl_seconds=3600, issuer="test")
    )
    repository = AdminRequestRepository(store)
    workflow = AdminRequestWorkflow(repository, authenticator, now=_Ticker())
    return workflow, repository, store, authenticator


async def _submit(workflow: AdminRequestWorkflow, email: str = "jane@example.com", phone: str = "9876543210") -> AdminRequest:
    return await workflow.submit_request("  jane   ", "DOE", email, phone, PASSWORD)


def test_submit_request_normalizes_and_stores_pending(tmp_path: Path) -> None:
    workflow, repository, _, _ = _build(tmp_path)

    async def scenario():
        created = await workflow.submit_request(
            "  mary  ann ", "o'BRIEN", " Mary@Example.COM ", "+91 98765 43210", PASSWORD
        )
        return created, await repository.get(created.id)

    created, stored = asyncio.run(scenario())

    assert created.status is AdminStatus.PENDING
    assert created.first_name == "Mary Ann"
    assert created.last_name == "O'brien"
    assert created.email == "mary@example.com"
    assert created.phone == "+919876543210"
    assert created.credential_hash.startswith("pbkdf2_sha256$")
    assert PASSWORD not in created.credential_hash
    assert stored == created


def test_submit_request_rejects_duplicates_by_email_then_phone(tmp_path: Path) -> None:
    workflow, _, _, _ = _build(tmp_path)
    asyncio.run(_submit(workflow))

    with pytest.raises(DuplicateRequestError, match="email"):
        asyncio.run(_submit(workflow, email="JANE@example.com", phone="9123456780"))
    with pytest.raises(DuplicateRequestError, match="phone"):
        asyncio.run(_submit(workflow, email="other@example.com", phone="9876543210"))


@pytest.mark.parametrize(
    ("email", "phone", "password"),
    [
        ("not-an-email", "9876543210", PASSWORD),
        ("jane@example.com", "1234567890", PASSWORD),
        ("jane@example.com", "98765", PASSWORD),
        ("jane@example.com", "9876543210", "weakpass"),
    ],
)
def test_submit_request_validates_input(tmp_path: Path, email: str, phone: str, password: str) -> None:
    workflow, _, store, _ = _build(tmp_path)

    with pytest.raises(ValidationError):
        asyncio.run(workflow.submit_request("Jane", "Doe", email, phone, password))
    assert asyncio.run(store.items(ADMINS_COLLECTION)) == []


def test_approve_revoke_and_reapprove_stamps_fresh_audit_fields(tmp_path: Path) -> None:
    workflow, _, _, _ = _build(tmp_path)

    async def scenario():
        created = await _submit(workflow)
        approved = await workflow.approve(created.id, "root@example.com")
        revoked = await workflow.revoke(created.id, "root@example.com")
        reapproved = await workflow.approve(created.id)
        return approved, revoked, reapproved

    approved, revoked, reapproved = asyncio.run(scenario())

    assert approved.status is AdminStatus.APPROVED
    assert approved.approved_by == "root@example.com"
    assert revoked.status is AdminStatus.REVOKED
    assert revoked.revoked_at is not None
    assert reapproved.status is AdminStatus.APPROVED
    assert reapproved.approved_by == "System"
    assert reapproved.approved_at > approved.approved_at
    assert reapproved.revoked_at == revoked.revoked_at


def test_rejected_request_can_be_approved_but_not_revoked(tmp_path: Path) -> None:
    workflow, _, _, _ = _build(tmp_path)

    async def scenario():
        created = await _submit(workflow)
        rejected = await workflow.reject(created.id, "root@example.com")
        with pytest.raises(InvalidTransitionError):
            await workflow.revoke(created.id)
        return rejected, await workflow.approve(created.id)

    rejected, approved = asyncio.run(scenario())

    assert rejected.rejected_by == "root@example.com"
    assert approved.status is AdminStatus.APPROVED


def test_pending_request_cannot_be_revoked_and_approved_cannot_be_rejected(tmp_path: Path) -> None:
    workflow, _, _, _ = _build(tmp_path)

    async def scenario():
        created = await _submit(workflow)
        with pytest.raises(InvalidTransitionError):
            await workflow.revoke(created.id)
        await workflow.approve(created.id)
        with pytest.raises(InvalidTransitionError):
            await workflow.reject(created.id)

    asyncio.run(scenario())


def test_repeated_transition_is_a_no_op(tmp_path: Path) -> None:
    workflow, _, _, _ = _build(tmp_path)

    async def scenario():
        created = await _submit(workflow)
        first = await workflow.approve(created.id, "a@example.com")
        second = await workflow.approve(created.id, "b@example.com")
        return first, second

    first, second = asyncio.run(scenario())

    assert second == first
    assert second.approved_by == "a@example.com"


def test_transition_unknown_request_raises_not_found(tmp_path: Path) -> None:
    workflow, _, _, _ = _build(tmp_path)

    with pytest.raises(NotFoundError):
        asyncio.run(workflow.approve("missing"))
    with pytest.raises(NotFoundError):
        asyncio.run(workflow.delete_request("missing"))


def test_complete_registration_creates_account_and_binds_uid(tmp_path: Path) -> None:
    workflow, repository, _, authenticator = _build(tmp_path)

    async def scenario():
        created = await _submit(workflow)
        await workflow.approve(created.id)
        completed = await workflow.complete_registration("Jane@Example.com", PASSWORD)
        session = await authenticator.sign_in("jane@example.com", PASSWORD)
        return completed, session, await repository.find_by_uid(completed.uid or "")

    completed, session, by_uid = asyncio.run(scenario())

    assert completed.uid == session.identity.uid
    assert completed.completed_at is not None
    assert completed.credential_hash == ""
    assert by_uid is not None and by_uid.id == completed.id


def test_complete_registration_guards(tmp_path: Path) -> None:
    workflow, _, _, _ = _build(tmp_path)

    async def scenario():
        with pytest.raises(NotFoundError):
            await workflow.complete_registration("nobody@example.com", PASSWORD)
        created = await _submit(workflow)
        with pytest.raises(InvalidTransitionError):
            await workflow.complete_registration("jane@example.com", PASSWORD)
        await workflow.approve(created.id)
        with pytest.raises(AuthenticationError):
            await workflow.complete_registration("jane@example.com", "Diff3rent!Pass")
        await workflow.complete_registration("jane@example.com", PASSWORD)
        with pytest.raises(DuplicateRequestError):
            await workflow.complete_registration("jane@example.com", PASSWORD)

    asyncio.run(scenario())


def test_cleanup_removes_records_with_unparseable_dates(tmp_path: Path) -> None:
    workflow, _, store, _ = _build(tmp_path)

    async def scenario():
        good = await _submit(workflow)
        await store.set(
            ADMINS_COLLECTION,
            "bad-date",
            {**good.model_dump(mode="json"), "id": "bad-date", "email": "x@example.com",
             "requested_at": "yesterday-ish"},
        )
        await store.set(ADMINS_COLLECTION, "no-shape", {"first_name": "Ghost"})
        listed_before = await workflow.list_requests()
        removed = await workflow.cleanup_invalid_requests()
        keys = [key for key, _ in await store.items(ADMINS_COLLECTION)]
        return good, listed_before, removed, keys

    good, listed_before, removed, keys = asyncio.run(scenario())

    assert [item.id for item in listed_before] == [good.id]
    assert removed == 2
    assert keys == [good.id]


def test_stats_and_listing_are_newest_first(tmp_path: Path) -> None:
    workflow, _, _, _ = _build(tmp_path)

    async def scenario():
        first = await _submit(workflow, "a@example.com", "9000000001")
        second = await _submit(workflow, "b@example.com", "9000000002")
        third = await _submit(workflow, "c@example.com", "9000000003")
        await workflow.approve(first.id)
        await workflow.reject(second.id)
        return [first.id, second.id, third.id], await workflow.list_requests(), await workflow.get_stats()

    ids, listed, stats = asyncio.run(scenario())

    assert [item.id for item in listed] == list(reversed(ids))
    assert stats.model_dump() == {
        "total": 3,
        "pending": 1,
        "approved": 1,
        "rejected": 1,
        "revoked": 0,
    }


def test_watch_requests_yields_deduplicated_snapshots(tmp_path: Path) -> None:
    workflow, _, _, _ = _build(tmp_path)

    async def scenario():
        created = await _submit(workflow)
        stream = workflow.watch_requests()
        initial = await anext(stream)
        await workflow.approve(created.id)
        after_approve = await anext(stream)
        await workflow.delete_request(created.id)
        after_delete = await anext(stream)
        await stream.aclose()
        return initial, after_approve, after_delete

    initial, after_approve, after_delete = asyncio.run(scenario())

    assert [item.status for item in initial] == [AdminStatus.PENDING]
    assert [item.status for item in after_approve] == [AdminStatus.APPROVED]
    assert after_delete == []


def test_submit_request_fails_cleanly_on_damaged_storage(tmp_path: Path) -> None:
    workflow, _, _, _ = _build(tmp_path)
    first = asyncio.run(_submit(workflow, "a@example.com"))
    path = tmp_path / "document_store" / f"{ADMINS_COLLECTION}.json"
    path.write_text(path.read_text(encoding="utf-8") + "x", encoding="utf-8")

    with pytest.raises(InfrastructureError):
        asyncio.run(_submit(workflow, "a@example.com"))
    with pytest.raises(InfrastructureError):
        asyncio.run(_submit(workflow, "c@example.com", "9123456780"))

    path.write_text(path.read_text(encoding="utf-8")[:-1], encoding="utf-8")
    assert [request.id for request in asyncio.run(workflow.list_requests())] == [first.id]
