"""
Abstract base class for workflow storage implementations.

Defines the storage port the approval workflow depends on, enabling
dependency injection and easy swapping of storage backends.
"""

from abc import ABC, abstractmethod
from typing import Any

from ...core.errors import ConditionalCheckFailed
from ...models.purchase_request import ApproverRecord, PurchaseRequest, RequestStatus


class WorkflowStoreBase(ABC):
    """
    Storage port for purchase requests and their approver records.

    Implementations can use:
    - In-memory storage (for testing/demo)
    - SQLite (for single-instance deployments)
    - DynamoDB / Cosmos DB (for cloud-native deployments)

    Every status-mutating update is conditional: ``conditions`` maps field
    names to the values they must currently hold, and a mismatch raises
    ConditionalCheckFailed without writing anything.
    """

    @abstractmethod
    def create_request(self, request: PurchaseRequest, approvers: list[ApproverRecord]) -> None:
        """
        Persist a purchase request and its approver records as one batch.

        Either every record is written or none is.

        Raises:
            StorageError: Duplicate request id or approver token, or backend failure
        """

    @abstractmethod
    def get_request(self, request_id: str) -> PurchaseRequest | None:
        """Get a purchase request by ID, or None if not found."""

    @abstractmethod
    def list_requests_by_requester(self, requester_email: str) -> list[PurchaseRequest]:
        """List a requester's purchase requests, oldest first."""

    @abstractmethod
    def list_requests_by_status(self, status: RequestStatus) -> list[PurchaseRequest]:
        """List purchase requests in a given status, oldest first."""

    @abstractmethod
    def update_request(
        self,
        request_id: str,
        changes: dict[str, Any],
        conditions: dict[str, Any],
    ) -> PurchaseRequest:
        """
        Conditionally update a purchase request and bump its version.

        Returns:
            The updated purchase request

        Raises:
            NotFound: Unknown request id
            ConditionalCheckFailed: A condition no longer holds
        """

    @abstractmethod
    def get_approver_by_token(self, approver_token: str) -> ApproverRecord | None:
        """Resolve an approver token through the unique token index."""

    @abstractmethod
    def list_approvers(self, request_id: str) -> list[ApproverRecord]:
        """List a request's approver records ordered by approval_order."""

    @abstractmethod
    def list_all_approvers(self) -> list[ApproverRecord]:
        """List every approver record (mock mail listing)."""

    @abstractmethod
    def update_approver(
        self,
        request_id: str,
        approver_email: str,
        changes: dict[str, Any],
        conditions: dict[str, Any],
    ) -> ApproverRecord:
        """
        Conditionally update one approver record.

        Returns:
            The updated approver record

        Raises:
            NotFound: Unknown (request id, approver email) pair
            ConditionalCheckFailed: A condition no longer holds
        """


def check_conditions(record: Any, conditions: dict[str, Any]) -> None:
    """Raise ConditionalCheckFailed if any field differs from its expected value"""
    for field, expected in conditions.items():
        actual = getattr(record, field)
        if actual != expected:
            raise ConditionalCheckFailed(
                f"Condition on '{field}' failed"
            )
