"""
Purchase request and approver records, plus the status transition tables.

Statuses are closed enums; any transition not listed in the tables below
is refused by ``ensure_*_transition``.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from ..core.errors import InvalidStateTransition

REQUIRED_APPROVERS = 3


class RequestStatus(str, Enum):
    PENDING_INITIAL_APPROVAL = "PendingInitialApproval"
    PARTIALLY_APPROVED = "PartiallyApproved"
    FULLY_APPROVED = "FullyApproved"
    REJECTED = "Rejected"
    COMPLETED_PDF_GENERATED = "CompletedPdfGenerated"


class ApprovalStatus(str, Enum):
    PENDING_OTP = "PendingOtp"
    PENDING_DECISION = "PendingDecision"
    SIGNED = "Signed"
    REJECTED = "Rejected"


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"

    @property
    def approval_status(self) -> ApprovalStatus:
        return ApprovalStatus.SIGNED if self is Decision.APPROVE else ApprovalStatus.REJECTED


# PendingOtp -> PendingOtp is the OTP re-issue self-loop.
APPROVER_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING_OTP: frozenset({ApprovalStatus.PENDING_OTP, ApprovalStatus.PENDING_DECISION}),
    ApprovalStatus.PENDING_DECISION: frozenset({ApprovalStatus.SIGNED, ApprovalStatus.REJECTED}),
    ApprovalStatus.SIGNED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
}

REQUEST_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING_INITIAL_APPROVAL: frozenset({
        RequestStatus.PARTIALLY_APPROVED,
        RequestStatus.FULLY_APPROVED,
        RequestStatus.REJECTED,
    }),
    RequestStatus.PARTIALLY_APPROVED: frozenset({
        RequestStatus.FULLY_APPROVED,
        RequestStatus.REJECTED,
    }),
    RequestStatus.FULLY_APPROVED: frozenset({RequestStatus.COMPLETED_PDF_GENERATED}),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.COMPLETED_PDF_GENERATED: frozenset(),
}

TERMINAL_APPROVAL_STATUSES = frozenset({ApprovalStatus.SIGNED, ApprovalStatus.REJECTED})

# Approver actions are refused once the request reaches one of these.
CLOSED_REQUEST_STATUSES = frozenset({
    RequestStatus.FULLY_APPROVED,
    RequestStatus.REJECTED,
    RequestStatus.COMPLETED_PDF_GENERATED,
})


def can_transition_request(current: RequestStatus, target: RequestStatus) -> bool:
    return target in REQUEST_TRANSITIONS[current]


def ensure_approver_transition(current: ApprovalStatus, target: ApprovalStatus) -> None:
    if target not in APPROVER_TRANSITIONS[current]:
        raise InvalidStateTransition(
            f"Approver cannot move from {current.value} to {target.value}"
        )


def ensure_request_transition(current: RequestStatus, target: RequestStatus) -> None:
    if not can_transition_request(current, target):
        raise InvalidStateTransition(
            f"Purchase request cannot move from {current.value} to {target.value}"
        )


class PurchaseRequest(BaseModel):
    request_id: str
    title: str
    description: str
    amount: float
    requester_email: str
    approver_emails: list[str]
    status: RequestStatus = RequestStatus.PENDING_INITIAL_APPROVAL
    pdf_evidence_key: str | None = None
    version: int = 1
    created_at: datetime
    updated_at: datetime


class ApproverRecord(BaseModel):
    request_id: str
    approver_email: str
    approver_token: str
    approval_order: int = Field(ge=1, le=REQUIRED_APPROVERS)
    approval_status: ApprovalStatus = ApprovalStatus.PENDING_OTP
    otp: str | None = None
    otp_expiration: datetime | None = None
    otp_attempts: int = 0
    decision_date: datetime | None = None
    signature_name: str | None = None
    created_at: datetime
    updated_at: datetime
