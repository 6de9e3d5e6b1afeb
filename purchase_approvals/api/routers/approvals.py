from fastapi import APIRouter, Depends, Header, Query

from ..deps import get_workflow
from ...models.schemas import (
    ApprovalInfoResponse,
    DecisionRequest,
    DecisionResponse,
    RequestDisplayFields,
    ValidateOtpRequest,
    ValidateOtpResponse,
)
from ...services.approval_workflow import ApprovalWorkflow

router = APIRouter(prefix="/approvals", tags=["approvals"])


@router.get("/info", response_model=ApprovalInfoResponse)
async def get_approval_info(
    purchase_request_id: str = Query(...),
    approver_token: str = Query(...),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    """
    Called when an approver opens their link.

    Issues a fresh one-time code (delivered out-of-band) and returns the
    purchase request's display fields. Calling it again re-issues the code.
    """
    info = workflow.issue_otp(purchase_request_id, approver_token)
    request = info.request
    return ApprovalInfoResponse(
        purchase_request_id=request.request_id,
        purchase_request_details=RequestDisplayFields(
            title=request.title,
            description=request.description,
            amount=request.amount,
            requester_email=request.requester_email,
            created_at=request.created_at,
        ),
        otp_expires_at=info.otp_expires_at,
    )


@router.post("/{purchase_request_id}/validate-otp", response_model=ValidateOtpResponse)
async def validate_otp(
    purchase_request_id: str,
    req: ValidateOtpRequest,
    x_approver_token: str | None = Header(default=None),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    record = workflow.validate_otp(purchase_request_id, x_approver_token, req.otp)
    return ValidateOtpResponse(
        purchase_request_id=record.request_id,
        approval_status=record.approval_status,
    )


@router.post("/{purchase_request_id}/decision", response_model=DecisionResponse)
async def submit_decision(
    purchase_request_id: str,
    req: DecisionRequest,
    x_approver_token: str | None = Header(default=None),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    """Record approve (signature_name required) or reject for the calling approver"""
    outcome = workflow.submit_decision(
        purchase_request_id, x_approver_token, req.decision, req.signature_name
    )
    return DecisionResponse(
        purchase_request_id=outcome.request_id,
        approver_email=outcome.approver_email,
        approval_status=outcome.approval_status,
        overall_status=outcome.overall_status,
    )
