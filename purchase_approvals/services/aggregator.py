"""
Overall purchase request status derived from the approver records.

The status is always recomputed from the full set of approver records
rather than tracked with a counter, so concurrent or out-of-order
decisions converge. The write is conditional on the request version
that was read; on a conflict the recompute runs again against fresh
records.
"""

from loguru import logger

from ..core.errors import ConcurrentUpdate, ConditionalCheckFailed, NotFound
from ..models.purchase_request import (
    REQUIRED_APPROVERS,
    ApprovalStatus,
    ApproverRecord,
    PurchaseRequest,
    RequestStatus,
    can_transition_request,
)
from .events.event_publisher import EventPublisher, PurchaseRequestFullyApprovedEvent
from .otp import Clock, utc_now
from .storage.store_base import WorkflowStoreBase


def compute_overall_status(
    decided: ApprovalStatus, approvers: list[ApproverRecord]
) -> RequestStatus:
    """
    Apply the aggregation rule in precedence order.

    1. The decision just recorded is a rejection -> Rejected
    2. All required approvers signed -> FullyApproved
    3. Any approver rejected (concurrent rejection) -> Rejected
    4. Otherwise -> PartiallyApproved
    """
    if decided == ApprovalStatus.REJECTED:
        return RequestStatus.REJECTED
    signed = sum(1 for a in approvers if a.approval_status == ApprovalStatus.SIGNED)
    if signed == REQUIRED_APPROVERS:
        return RequestStatus.FULLY_APPROVED
    if any(a.approval_status == ApprovalStatus.REJECTED for a in approvers):
        return RequestStatus.REJECTED
    return RequestStatus.PARTIALLY_APPROVED


class DecisionAggregator:
    def __init__(
        self,
        store: WorkflowStoreBase,
        event_publisher: EventPublisher | None = None,
        clock: Clock = utc_now,
        max_retries: int = 5,
    ):
        self.store = store
        self.event_publisher = event_publisher or EventPublisher(service_bus_sender=None)
        self.clock = clock
        self.max_retries = max_retries

    def aggregate(self, request_id: str, decided: ApprovalStatus) -> RequestStatus:
        """
        Recompute and store the overall status after a decision.

        Returns:
            The request status after aggregation. When the computed status
            is not a legal move from the stored one (e.g. the request is
            already Rejected), the stored status is returned unchanged.

        Raises:
            NotFound: The purchase request does not exist
            ConcurrentUpdate: Every conditional write attempt lost a race
        """
        for attempt in range(1, self.max_retries + 1):
            request = self.store.get_request(request_id)
            if request is None:
                raise NotFound(f"Purchase request {request_id} not found")

            approvers = [] if decided == ApprovalStatus.REJECTED else self.store.list_approvers(request_id)
            target = compute_overall_status(decided, approvers)

            if target == request.status:
                return target
            if not can_transition_request(request.status, target):
                logger.info(
                    "Aggregated status not applicable, keeping stored status",
                    purchase_request_id=request_id,
                    stored=request.status.value,
                    computed=target.value,
                )
                return request.status

            try:
                updated = self.store.update_request(
                    request_id,
                    {"status": target, "updated_at": self.clock()},
                    conditions={"version": request.version},
                )
            except ConditionalCheckFailed:
                logger.warning(
                    "Overall status write lost a race, recomputing",
                    purchase_request_id=request_id,
                    attempt=attempt,
                )
                continue

            logger.info(
                "Purchase request status updated",
                purchase_request_id=request_id,
                previous=request.status.value,
                status=target.value,
            )
            if target == RequestStatus.FULLY_APPROVED:
                self._publish_fully_approved(updated, approvers)
            return target

        raise ConcurrentUpdate(
            f"Could not update purchase request {request_id} after {self.max_retries} attempts"
        )

    def _publish_fully_approved(self, request: PurchaseRequest, approvers: list[ApproverRecord]) -> None:
        event = PurchaseRequestFullyApprovedEvent(
            purchase_request_id=request.request_id,
            title=request.title,
            amount=request.amount,
            requester_email=request.requester_email,
            signatures=[
                {
                    "approver_email": a.approver_email,
                    "signature_name": a.signature_name,
                    "decision_date": a.decision_date.isoformat() if a.decision_date else None,
                }
                for a in approvers
            ],
        )
        try:
            self.event_publisher.publish_fully_approved(event)
        except Exception as e:
            # The status is stored; the evidence generator can still poll for it.
            logger.warning("Failed to publish event", purchase_request_id=request.request_id, error=str(e))
