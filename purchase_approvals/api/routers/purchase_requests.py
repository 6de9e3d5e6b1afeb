import httpx
from fastapi import APIRouter, Depends, Header, status
from loguru import logger

from ..deps import get_workflow
from ...models.schemas import CreatePurchaseRequest, PurchaseRequestDetail, PurchaseRequestView
from ...services.approval_workflow import ApprovalWorkflow
from ...services.notifications import post_approver_links_card

router = APIRouter(prefix="/purchase-requests", tags=["purchase-requests"])


@router.post("", response_model=PurchaseRequestDetail, status_code=status.HTTP_201_CREATED)
async def create_purchase_request(
    req: CreatePurchaseRequest,
    x_requester_email: str | None = Header(default=None),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    """
    Create a purchase request naming exactly three approvers.

    Each approver gets a personal link (with their approver token) posted
    to Teams when TEAMS_WEBHOOK_URL is configured. A failed notification
    does not undo the creation; links stay available via /mock-mail in dev.
    """
    created = workflow.create_request(x_requester_email, req)

    try:
        result = await post_approver_links_card(created.request, created.approvers, workflow.approval_link)
        logger.info(
            "Approver notification",
            purchase_request_id=created.request.request_id,
            status=result["status"],
        )
    except httpx.HTTPError as e:
        # Don't fail creation if the notification channel is down
        logger.warning(
            "Failed to notify approvers",
            purchase_request_id=created.request.request_id,
            error=str(e),
        )

    return PurchaseRequestDetail.from_records(created.request, created.approvers)


@router.get("", response_model=list[PurchaseRequestView])
async def list_purchase_requests(
    x_requester_email: str | None = Header(default=None),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    """List the caller's purchase requests, oldest first"""
    return [PurchaseRequestView.from_record(r) for r in workflow.list_by_requester(x_requester_email)]


@router.get("/{purchase_request_id}", response_model=PurchaseRequestDetail)
async def get_purchase_request(
    purchase_request_id: str,
    x_requester_email: str | None = Header(default=None),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    """Full detail including the three approvers, in approval order"""
    request, approvers = workflow.get_by_id(purchase_request_id, x_requester_email)
    return PurchaseRequestDetail.from_records(request, approvers)
