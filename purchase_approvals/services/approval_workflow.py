"""
Purchase approval workflow.

Each approver walks PendingOtp -> PendingDecision -> Signed | Rejected:

- ``issue_otp`` (approver opens their link) stores a fresh code and
  expiry without changing the approver's status
- ``validate_otp`` consumes the code and moves to PendingDecision
- ``submit_decision`` records Signed or Rejected and hands the request
  to the DecisionAggregator, which recomputes the overall status

Every approver write is conditional on the status (and, where it
matters, the code) read beforehand, so a late duplicate request can
never overwrite a newer state. The approver token is the only
credential an approver presents.
"""

import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from urllib.parse import urlencode

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from ..core.config import Settings
from ..core.errors import (
    AlreadyProcessed,
    ConcurrentUpdate,
    ConditionalCheckFailed,
    Forbidden,
    InvalidStateTransition,
    NotFound,
    OtpExpired,
    OtpMismatch,
    OtpNotIssued,
    RequestClosed,
    StorageError,
    ValidationError,
)
from ..models.purchase_request import (
    CLOSED_REQUEST_STATUSES,
    TERMINAL_APPROVAL_STATUSES,
    ApprovalStatus,
    ApproverRecord,
    Decision,
    PurchaseRequest,
    RequestStatus,
    ensure_approver_transition,
    ensure_request_transition,
)
from ..models.schemas import EMAIL_ADAPTER, CreatePurchaseRequest, MockMail
from .aggregator import DecisionAggregator
from .events.event_publisher import EventPublisher
from .otp import Clock, OtpEngine, utc_now
from .storage.store_base import WorkflowStoreBase


@dataclass(frozen=True)
class CreatedPurchaseRequest:
    request: PurchaseRequest
    approvers: list[ApproverRecord]


@dataclass(frozen=True)
class ApprovalInfo:
    request: PurchaseRequest
    otp_expires_at: datetime


@dataclass(frozen=True)
class DecisionOutcome:
    request_id: str
    approver_email: str
    approval_status: ApprovalStatus
    overall_status: RequestStatus


def new_approver_token() -> str:
    return secrets.token_urlsafe(32)


class ApprovalWorkflow:
    """
    Operations exposed to the transport layer.

    Args:
        store: Storage port shared by all operations
        otp_engine: Code issuance and verification (defaults: 3 minutes, 5 attempts)
        aggregator: Overall status recompute (built from ``store`` if omitted)
        event_publisher: Used by the default aggregator for FullyApproved events
        clock: Returns the current aware UTC datetime
        frontend_url: Base URL of the approval page
    """

    def __init__(
        self,
        store: WorkflowStoreBase,
        otp_engine: OtpEngine | None = None,
        aggregator: DecisionAggregator | None = None,
        event_publisher: EventPublisher | None = None,
        clock: Clock = utc_now,
        frontend_url: str = "http://localhost:3000",
    ):
        self.store = store
        self.clock = clock
        self.otp_engine = otp_engine or OtpEngine(clock=clock)
        self.aggregator = aggregator or DecisionAggregator(
            store, event_publisher=event_publisher, clock=clock
        )
        self.frontend_url = frontend_url.rstrip("/")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: WorkflowStoreBase,
        event_publisher: EventPublisher | None = None,
        clock: Clock = utc_now,
    ) -> "ApprovalWorkflow":
        return cls(
            store=store,
            otp_engine=OtpEngine(
                validity=timedelta(minutes=settings.otp_validity_minutes),
                max_attempts=settings.otp_max_attempts,
                clock=clock,
            ),
            aggregator=DecisionAggregator(
                store,
                event_publisher=event_publisher,
                clock=clock,
                max_retries=settings.aggregation_max_retries,
            ),
            clock=clock,
            frontend_url=settings.frontend_url,
        )

    # ------------------------------------------------------------------
    # Requester operations
    # ------------------------------------------------------------------

    def create_request(
        self, requester_email: str, payload: CreatePurchaseRequest
    ) -> CreatedPurchaseRequest:
        """
        Create a purchase request and its three approver records in one batch.

        Raises:
            ValidationError: Missing or malformed requester email
            StorageError: The batch could not be written (nothing is stored)
        """
        requester_email = self._require_email(requester_email)
        now = self.clock()
        request_id = str(uuid.uuid4())

        request = PurchaseRequest(
            request_id=request_id,
            title=payload.title,
            description=payload.description,
            amount=payload.amount,
            requester_email=requester_email,
            approver_emails=list(payload.approver_emails),
            status=RequestStatus.PENDING_INITIAL_APPROVAL,
            created_at=now,
            updated_at=now,
        )
        approvers = [
            ApproverRecord(
                request_id=request_id,
                approver_email=email,
                approver_token=new_approver_token(),
                approval_order=order,
                approval_status=ApprovalStatus.PENDING_OTP,
                created_at=now,
                updated_at=now,
            )
            for order, email in enumerate(payload.approver_emails, start=1)
        ]

        try:
            self.store.create_request(request, approvers)
        except StorageError as e:
            logger.error("Purchase request creation failed", requester=requester_email, error=e.message)
            raise StorageError("Could not save the purchase request") from e

        logger.info(
            "Purchase request created",
            purchase_request_id=request_id,
            requester=requester_email,
            amount=payload.amount,
            approvers=list(payload.approver_emails),
        )
        return CreatedPurchaseRequest(request=request, approvers=approvers)

    def list_by_requester(self, requester_email: str) -> list[PurchaseRequest]:
        requester_email = self._require_email(requester_email)
        return self.store.list_requests_by_requester(requester_email)

    def get_by_id(
        self, request_id: str, requester_email: str
    ) -> tuple[PurchaseRequest, list[ApproverRecord]]:
        """
        Full request detail with approvers sorted by approval order.

        Raises:
            NotFound: Unknown request id
            Forbidden: The caller does not own the request
        """
        requester_email = self._require_email(requester_email)
        request = self.store.get_request(request_id)
        if request is None:
            raise NotFound("Purchase request not found")
        if request.requester_email != requester_email:
            raise Forbidden("Access denied: you are not the owner of this purchase request")
        approvers = sorted(self.store.list_approvers(request_id), key=lambda a: a.approval_order)
        return request, approvers

    # ------------------------------------------------------------------
    # Approver state machine
    # ------------------------------------------------------------------

    def issue_otp(self, request_id: str, approver_token: str) -> ApprovalInfo:
        """
        Issue a fresh one-time code for an approver still in PendingOtp.

        Calling it again regenerates the code and expiry and resets the
        attempt counter; the approver stays in PendingOtp. The code is
        never returned here, it is delivered out-of-band.

        Raises:
            NotFound: Unknown token (or its request vanished)
            Forbidden: Token belongs to another request
            AlreadyProcessed: The approver already signed or rejected
            InvalidStateTransition: The code was already validated
            RequestClosed: The request no longer accepts approver actions
        """
        record = self._resolve_approver(request_id, approver_token)
        if record.approval_status in TERMINAL_APPROVAL_STATUSES:
            raise AlreadyProcessed(self._already_processed_message(record))
        if record.approval_status != ApprovalStatus.PENDING_OTP:
            raise InvalidStateTransition(
                "One-time code already validated; record your decision instead"
            )
        ensure_approver_transition(record.approval_status, ApprovalStatus.PENDING_OTP)
        request = self._ensure_request_open(request_id)

        issued = self.otp_engine.issue()
        try:
            self.store.update_approver(
                record.request_id,
                record.approver_email,
                {
                    "otp": issued.code,
                    "otp_expiration": issued.expires_at,
                    "otp_attempts": 0,
                    "updated_at": self.clock(),
                },
                conditions={"approval_status": ApprovalStatus.PENDING_OTP},
            )
        except ConditionalCheckFailed as e:
            raise ConcurrentUpdate(
                "Approval changed while issuing a code; open the approval link again"
            ) from e

        logger.info(
            "One-time code issued",
            purchase_request_id=request_id,
            approver=record.approver_email,
            expires_at=issued.expires_at.isoformat(),
        )
        return ApprovalInfo(request=request, otp_expires_at=issued.expires_at)

    def validate_otp(self, request_id: str, approver_token: str, submitted_otp: str) -> ApproverRecord:
        """
        Consume the approver's code and move PendingOtp -> PendingDecision.

        Raises:
            NotFound / Forbidden: Token problems as in issue_otp
            InvalidStateTransition: Not in PendingOtp (AlreadyProcessed if decided)
            OtpNotIssued / OtpExpired / OtpAttemptsExceeded: No usable code
            OtpMismatch: Wrong code (counts against the attempt budget)
            ConcurrentUpdate: The code was re-issued or consumed concurrently
        """
        record = self._resolve_approver(request_id, approver_token)
        if record.approval_status in TERMINAL_APPROVAL_STATUSES:
            raise AlreadyProcessed(self._already_processed_message(record))
        if record.approval_status != ApprovalStatus.PENDING_OTP:
            raise InvalidStateTransition("One-time code is not pending for this approver")
        self._ensure_request_open(request_id)

        now = self.clock()
        try:
            self.otp_engine.verify(record, submitted_otp, now)
        except OtpMismatch:
            self._record_failed_attempt(record, now)
            raise

        ensure_approver_transition(record.approval_status, ApprovalStatus.PENDING_DECISION)
        try:
            updated = self.store.update_approver(
                record.request_id,
                record.approver_email,
                {
                    "approval_status": ApprovalStatus.PENDING_DECISION,
                    "otp": None,
                    "otp_expiration": None,
                    "otp_attempts": 0,
                    "updated_at": now,
                },
                conditions={"approval_status": ApprovalStatus.PENDING_OTP, "otp": record.otp},
            )
        except ConditionalCheckFailed as e:
            raise ConcurrentUpdate(
                "One-time code was re-issued or already used; request a new code"
            ) from e

        logger.info(
            "One-time code validated",
            purchase_request_id=request_id,
            approver=record.approver_email,
        )
        return updated

    def submit_decision(
        self,
        request_id: str,
        approver_token: str,
        decision: Decision | str,
        signature_name: str | None = None,
    ) -> DecisionOutcome:
        """
        Record Signed or Rejected for an approver in PendingDecision and
        recompute the request's overall status.

        Raises:
            ValidationError: Unknown decision, or approve without a signature name
            NotFound / Forbidden: Token problems as in issue_otp
            AlreadyProcessed: A decision was already recorded for this approver (the
                overall status is recomputed first, so a retry after a failed
                aggregation converges)
            InvalidStateTransition: The code has not been validated yet
            RequestClosed: The request was already rejected
        """
        try:
            decision = Decision(decision)
        except ValueError as e:
            raise ValidationError("decision must be 'approve' or 'reject'") from e
        signature = (signature_name or "").strip()
        if decision is Decision.APPROVE and not signature:
            raise ValidationError("signature_name is required to approve")

        record = self._resolve_approver(request_id, approver_token)
        if record.approval_status in TERMINAL_APPROVAL_STATUSES:
            # A retry finishes an aggregation the first attempt may have left undone.
            self.aggregator.aggregate(request_id, record.approval_status)
            raise AlreadyProcessed(self._already_processed_message(record))
        if record.approval_status != ApprovalStatus.PENDING_DECISION:
            raise InvalidStateTransition("Validate your one-time code before recording a decision")
        self._ensure_request_open(request_id)

        target = decision.approval_status
        ensure_approver_transition(record.approval_status, target)
        now = self.clock()
        try:
            self.store.update_approver(
                record.request_id,
                record.approver_email,
                {
                    "approval_status": target,
                    "decision_date": now,
                    "signature_name": signature if decision is Decision.APPROVE else None,
                    "updated_at": now,
                },
                conditions={"approval_status": ApprovalStatus.PENDING_DECISION},
            )
        except ConditionalCheckFailed as e:
            raise AlreadyProcessed("A decision was already recorded for this approver") from e

        logger.info(
            "Approver decision recorded",
            purchase_request_id=request_id,
            approver=record.approver_email,
            decision=decision.value,
        )
        overall = self.aggregator.aggregate(request_id, target)
        return DecisionOutcome(
            request_id=request_id,
            approver_email=record.approver_email,
            approval_status=target,
            overall_status=overall,
        )

    # ------------------------------------------------------------------
    # PDF evidence hand-off
    # ------------------------------------------------------------------

    def list_pending_evidence(self) -> list[PurchaseRequest]:
        return self.store.list_requests_by_status(RequestStatus.FULLY_APPROVED)

    def record_evidence(self, request_id: str, evidence_key: str) -> PurchaseRequest:
        """Move FullyApproved -> CompletedPdfGenerated and store the evidence reference"""
        evidence_key = (evidence_key or "").strip()
        if not evidence_key:
            raise ValidationError("evidence_key is required")
        request = self.store.get_request(request_id)
        if request is None:
            raise NotFound("Purchase request not found")
        ensure_request_transition(request.status, RequestStatus.COMPLETED_PDF_GENERATED)
        try:
            updated = self.store.update_request(
                request_id,
                {
                    "status": RequestStatus.COMPLETED_PDF_GENERATED,
                    "pdf_evidence_key": evidence_key,
                    "updated_at": self.clock(),
                },
                conditions={"status": RequestStatus.FULLY_APPROVED},
            )
        except ConditionalCheckFailed as e:
            raise ConcurrentUpdate("Purchase request changed while recording evidence") from e
        logger.info("PDF evidence recorded", purchase_request_id=request_id, evidence_key=evidence_key)
        return updated

    # ------------------------------------------------------------------
    # Development helpers (mock mail, OTP lookup)
    # ------------------------------------------------------------------

    def approval_link(self, request_id: str, approver_token: str) -> str:
        query = urlencode({"purchase_request_id": request_id, "approver_token": approver_token})
        return f"{self.frontend_url}/approve?{query}"

    def list_mock_mail(self) -> list[MockMail]:
        return [
            MockMail(
                approver_email=record.approver_email,
                purchase_request_id=record.request_id,
                approver_token=record.approver_token,
                approval_link=self.approval_link(record.request_id, record.approver_token),
            )
            for record in self.store.list_all_approvers()
        ]

    def peek_otp(self, approver_token: str) -> tuple[str, int]:
        """Return the live code and seconds until it expires (development only)"""
        record = self.store.get_approver_by_token(approver_token) if approver_token else None
        if record is None:
            raise NotFound("Invalid or unknown approver token")
        if record.approval_status != ApprovalStatus.PENDING_OTP:
            raise InvalidStateTransition("One-time code is not pending for this approver")
        if record.otp is None:
            raise OtpNotIssued("No one-time code has been issued for this approver")
        now = self.clock()
        if self.otp_engine.is_expired(record, now):
            raise OtpExpired("The one-time code has expired")
        return record.otp, self.otp_engine.seconds_remaining(record, now)

    # ------------------------------------------------------------------

    def _resolve_approver(self, request_id: str, approver_token: str) -> ApproverRecord:
        if not request_id:
            raise ValidationError("purchase_request_id is required")
        if not approver_token:
            raise ValidationError("approver token is required")
        record = self.store.get_approver_by_token(approver_token)
        if record is None:
            raise NotFound("Invalid or unknown approver token")
        if record.request_id != request_id:
            raise Forbidden("Approver token is not valid for this purchase request")
        return record

    def _ensure_request_open(self, request_id: str) -> PurchaseRequest:
        request = self.store.get_request(request_id)
        if request is None:
            raise NotFound("Purchase request not found")
        if request.status in CLOSED_REQUEST_STATUSES:
            raise RequestClosed(
                f"Purchase request is {request.status.value} and no longer accepts approver actions"
            )
        return request

    def _record_failed_attempt(self, record: ApproverRecord, now: datetime) -> None:
        attempts = record.otp_attempts + 1
        changes = {"otp_attempts": attempts, "updated_at": now}
        exhausted = attempts >= self.otp_engine.max_attempts
        if exhausted:
            changes.update({"otp": None, "otp_expiration": None})
        try:
            self.store.update_approver(
                record.request_id,
                record.approver_email,
                changes,
                conditions={
                    "approval_status": ApprovalStatus.PENDING_OTP,
                    "otp": record.otp,
                    "otp_attempts": record.otp_attempts,
                },
            )
        except ConditionalCheckFailed:
            # The code was replaced or consumed meanwhile; the attempt no longer applies.
            logger.info(
                "Failed attempt not recorded, code changed concurrently",
                purchase_request_id=record.request_id,
                approver=record.approver_email,
            )
            return
        logger.warning(
            "Invalid one-time code submitted",
            purchase_request_id=record.request_id,
            approver=record.approver_email,
            attempts=attempts,
            exhausted=exhausted,
        )

    @staticmethod
    def _already_processed_message(record: ApproverRecord) -> str:
        verb = "approved" if record.approval_status == ApprovalStatus.SIGNED else "rejected"
        return f"This purchase request was already {verb} by you"

    @staticmethod
    def _require_email(email: str | None) -> str:
        email = (email or "").strip()
        if not email:
            raise ValidationError("Requester email is required")
        try:
            return EMAIL_ADAPTER.validate_python(email)
        except PydanticValidationError as e:
            raise ValidationError("Requester email is malformed") from e
