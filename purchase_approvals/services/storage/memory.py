"""
In-memory workflow storage (for tests and local demos).
In production, use a database (SQLite, DynamoDB, etc.)
"""
import threading
from typing import Any

from ...core.errors import NotFound, StorageError
from ...models.purchase_request import ApproverRecord, PurchaseRequest, RequestStatus
from .store_base import WorkflowStoreBase, check_conditions


class InMemoryWorkflowStore(WorkflowStoreBase):
    """
    Dictionary-backed store guarded by a single re-entrant lock.

    Records handed out are copies, so callers never mutate stored state
    outside a conditional update.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._requests: dict[str, PurchaseRequest] = {}
        self._approvers: dict[tuple[str, str], ApproverRecord] = {}
        self._token_index: dict[str, tuple[str, str]] = {}

    def create_request(self, request: PurchaseRequest, approvers: list[ApproverRecord]) -> None:
        with self._lock:
            if request.request_id in self._requests:
                raise StorageError(f"Purchase request {request.request_id} already exists")

            keys = [(a.request_id, a.approver_email) for a in approvers]
            tokens = [a.approver_token for a in approvers]
            if len(set(keys)) != len(keys) or any(k in self._approvers for k in keys):
                raise StorageError("Duplicate approver record in batch")
            if len(set(tokens)) != len(tokens) or any(t in self._token_index for t in tokens):
                raise StorageError("Duplicate approver token in batch")

            # Validation is complete, nothing below can fail halfway.
            self._requests[request.request_id] = request.model_copy(deep=True)
            for approver in approvers:
                key = (approver.request_id, approver.approver_email)
                self._approvers[key] = approver.model_copy(deep=True)
                self._token_index[approver.approver_token] = key

    def get_request(self, request_id: str) -> PurchaseRequest | None:
        with self._lock:
            request = self._requests.get(request_id)
            return request.model_copy(deep=True) if request else None

    def list_requests_by_requester(self, requester_email: str) -> list[PurchaseRequest]:
        with self._lock:
            matches = [r for r in self._requests.values() if r.requester_email == requester_email]
            return [r.model_copy(deep=True) for r in sorted(matches, key=lambda r: r.created_at)]

    def list_requests_by_status(self, status: RequestStatus) -> list[PurchaseRequest]:
        with self._lock:
            matches = [r for r in self._requests.values() if r.status == status]
            return [r.model_copy(deep=True) for r in sorted(matches, key=lambda r: r.created_at)]

    def update_request(
        self,
        request_id: str,
        changes: dict[str, Any],
        conditions: dict[str, Any],
    ) -> PurchaseRequest:
        with self._lock:
            current = self._requests.get(request_id)
            if current is None:
                raise NotFound(f"Purchase request {request_id} not found")
            check_conditions(current, conditions)
            updated = current.model_copy(update={**changes, "version": current.version + 1}, deep=True)
            self._requests[request_id] = updated
            return updated.model_copy(deep=True)

    def get_approver_by_token(self, approver_token: str) -> ApproverRecord | None:
        with self._lock:
            key = self._token_index.get(approver_token)
            if key is None:
                return None
            return self._approvers[key].model_copy(deep=True)

    def list_approvers(self, request_id: str) -> list[ApproverRecord]:
        with self._lock:
            matches = [a for (rid, _), a in self._approvers.items() if rid == request_id]
            return [a.model_copy(deep=True) for a in sorted(matches, key=lambda a: a.approval_order)]

    def list_all_approvers(self) -> list[ApproverRecord]:
        with self._lock:
            return [a.model_copy(deep=True) for a in self._approvers.values()]

    def update_approver(
        self,
        request_id: str,
        approver_email: str,
        changes: dict[str, Any],
        conditions: dict[str, Any],
    ) -> ApproverRecord:
        key = (request_id, approver_email)
        with self._lock:
            current = self._approvers.get(key)
            if current is None:
                raise NotFound(f"Approver {approver_email} not found on request {request_id}")
            check_conditions(current, conditions)
            updated = current.model_copy(update=changes, deep=True)
            self._approvers[key] = updated
            return updated.model_copy(deep=True)
