"""
Tests for the workflow storage backends.

The contract tests run against both the in-memory and the SQLite store;
the SQLite-only tests check persistence and the on-disk schema.
"""

import sqlite3
from datetime import datetime, timedelta, UTC

import pytest

from purchase_approvals.core.config import Settings
from purchase_approvals.core.errors import ConditionalCheckFailed, NotFound, StorageError
from purchase_approvals.models.purchase_request import (
    ApprovalStatus,
    ApproverRecord,
    PurchaseRequest,
    RequestStatus,
)
from purchase_approvals.services.storage import (
    InMemoryWorkflowStore,
    SQLiteWorkflowStore,
    create_store,
)

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)


def make_request(request_id="pr-1", requester="requester@x.com", created_at=T0):
    return PurchaseRequest(
        request_id=request_id,
        title="Laptops",
        description="Three laptops",
        amount=1500.0,
        requester_email=requester,
        approver_emails=["a@x.com", "b@x.com", "c@x.com"],
        created_at=created_at,
        updated_at=created_at,
    )


def make_approvers(request_id="pr-1", token_prefix=None):
    prefix = token_prefix or request_id
    return [
        ApproverRecord(
            request_id=request_id,
            approver_email=email,
            approver_token=f"{prefix}-tok-{order}",
            approval_order=order,
            created_at=T0,
            updated_at=T0,
        )
        for order, email in enumerate(["a@x.com", "b@x.com", "c@x.com"], start=1)
    ]


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "approvals.db")


@pytest.fixture(params=["memory", "sqlite"])
def backend(request, db_path):
    if request.param == "memory":
        return InMemoryWorkflowStore()
    return SQLiteWorkflowStore(db_path)


def test_create_and_get(backend):
    backend.create_request(make_request(), make_approvers())

    request = backend.get_request("pr-1")
    assert request.title == "Laptops"
    assert request.approver_emails == ["a@x.com", "b@x.com", "c@x.com"]
    assert request.status == RequestStatus.PENDING_INITIAL_APPROVAL
    assert request.created_at == T0
    assert request.version == 1

    approvers = backend.list_approvers("pr-1")
    assert [a.approval_order for a in approvers] == [1, 2, 3]
    assert all(a.approval_status == ApprovalStatus.PENDING_OTP for a in approvers)


def test_get_missing_returns_none(backend):
    assert backend.get_request("missing") is None
    assert backend.get_approver_by_token("missing") is None


def test_token_lookup(backend):
    backend.create_request(make_request(), make_approvers())
    record = backend.get_approver_by_token("pr-1-tok-2")
    assert record.approver_email == "b@x.com"
    assert record.request_id == "pr-1"


def test_duplicate_token_rejected_without_partial_write(backend):
    backend.create_request(make_request(), make_approvers())

    with pytest.raises(StorageError):
        backend.create_request(make_request("pr-2"), make_approvers("pr-2", token_prefix="pr-1"))

    assert backend.get_request("pr-2") is None
    assert backend.list_approvers("pr-2") == []


def test_duplicate_request_id_rejected(backend):
    backend.create_request(make_request(), make_approvers())
    with pytest.raises(StorageError):
        backend.create_request(make_request(), make_approvers(token_prefix="other"))


def test_list_by_requester_oldest_first(backend):
    backend.create_request(make_request("pr-2", created_at=T0 + timedelta(minutes=5)), make_approvers("pr-2"))
    backend.create_request(make_request("pr-1"), make_approvers("pr-1"))
    backend.create_request(make_request("pr-3", requester="other@x.com"), make_approvers("pr-3"))

    listed = backend.list_requests_by_requester("requester@x.com")
    assert [r.request_id for r in listed] == ["pr-1", "pr-2"]
    assert backend.list_requests_by_requester("nobody@x.com") == []


def test_list_by_status(backend):
    backend.create_request(make_request("pr-1"), make_approvers("pr-1"))
    backend.create_request(make_request("pr-2"), make_approvers("pr-2"))
    backend.update_request("pr-2", {"status": RequestStatus.FULLY_APPROVED}, conditions={})

    listed = backend.list_requests_by_status(RequestStatus.FULLY_APPROVED)
    assert [r.request_id for r in listed] == ["pr-2"]


def test_conditional_request_update(backend):
    backend.create_request(make_request(), make_approvers())

    updated = backend.update_request(
        "pr-1", {"status": RequestStatus.PARTIALLY_APPROVED}, conditions={"version": 1}
    )
    assert updated.status == RequestStatus.PARTIALLY_APPROVED
    assert updated.version == 2

    with pytest.raises(ConditionalCheckFailed):
        backend.update_request("pr-1", {"status": RequestStatus.REJECTED}, conditions={"version": 1})
    assert backend.get_request("pr-1").status == RequestStatus.PARTIALLY_APPROVED

    with pytest.raises(NotFound):
        backend.update_request("missing", {"status": RequestStatus.REJECTED}, conditions={})


def test_conditional_approver_update(backend):
    backend.create_request(make_request(), make_approvers())
    expires = T0 + timedelta(minutes=3)

    updated = backend.update_approver(
        "pr-1", "a@x.com",
        {"otp": "123456", "otp_expiration": expires},
        conditions={"approval_status": ApprovalStatus.PENDING_OTP, "otp": None},
    )
    assert updated.otp == "123456"
    assert updated.otp_expiration == expires

    with pytest.raises(ConditionalCheckFailed):
        backend.update_approver(
            "pr-1", "a@x.com",
            {"approval_status": ApprovalStatus.PENDING_DECISION},
            conditions={"approval_status": ApprovalStatus.PENDING_OTP, "otp": "654321"},
        )
    assert backend.get_approver_by_token("pr-1-tok-1").approval_status == ApprovalStatus.PENDING_OTP

    with pytest.raises(NotFound):
        backend.update_approver("pr-1", "z@x.com", {"otp": None}, conditions={})


def test_returned_records_are_copies(backend):
    backend.create_request(make_request(), make_approvers())
    record = backend.get_approver_by_token("pr-1-tok-1")
    record.approval_status = ApprovalStatus.SIGNED
    assert backend.get_approver_by_token("pr-1-tok-1").approval_status == ApprovalStatus.PENDING_OTP


def test_list_all_approvers(backend):
    backend.create_request(make_request("pr-1"), make_approvers("pr-1"))
    backend.create_request(make_request("pr-2"), make_approvers("pr-2"))
    assert len(backend.list_all_approvers()) == 6


# ----------------------------------------------------------------------
# SQLite specifics
# ----------------------------------------------------------------------

def test_sqlite_persists_across_instances(db_path):
    SQLiteWorkflowStore(db_path).create_request(make_request(), make_approvers())

    reopened = SQLiteWorkflowStore(db_path)
    assert reopened.get_request("pr-1").title == "Laptops"
    assert len(reopened.list_approvers("pr-1")) == 3


def test_sqlite_rows_on_disk(db_path):
    store = SQLiteWorkflowStore(db_path)
    store.create_request(make_request(), make_approvers())

    conn = sqlite3.connect(db_path)
    cursor = conn.cursor()
    cursor.execute("SELECT status, approver_emails FROM purchase_requests WHERE request_id = ?", ("pr-1",))
    row = cursor.fetchone()
    cursor.execute("SELECT COUNT(*) FROM approvers WHERE request_id = ?", ("pr-1",))
    count = cursor.fetchone()[0]
    conn.close()

    assert row[0] == "PendingInitialApproval"
    assert "b@x.com" in row[1]
    assert count == 3


def test_sqlite_rejects_unknown_columns(db_path):
    store = SQLiteWorkflowStore(db_path)
    store.create_request(make_request(), make_approvers())
    with pytest.raises(StorageError):
        store.update_request("pr-1", {"status; DROP TABLE approvers": "x"}, conditions={})


def test_create_store_from_settings(db_path):
    assert isinstance(create_store(Settings(STORAGE_BACKEND="memory")), InMemoryWorkflowStore)
    assert isinstance(
        create_store(Settings(STORAGE_BACKEND="sqlite", SQLITE_DB_PATH=db_path)), SQLiteWorkflowStore
    )
    with pytest.raises(ValueError):
        create_store(Settings(STORAGE_BACKEND="dynamodb"))
