from fastapi import APIRouter, Depends, HTTPException, Query

from ..deps import get_workflow
from ...core.config import settings
from ...models.schemas import DebugOtpResponse, MockMail
from ...services.approval_workflow import ApprovalWorkflow

# Stand-ins for real email delivery; only served when DEBUG_ENDPOINTS_ENABLED is set.
router = APIRouter(tags=["debug"])


def require_debug_endpoints():
    if not settings.debug_endpoints_enabled:
        raise HTTPException(status_code=404, detail="Not Found")


@router.get("/mock-mail", response_model=list[MockMail], dependencies=[Depends(require_debug_endpoints)])
async def list_mock_mail(workflow: ApprovalWorkflow = Depends(get_workflow)):
    """The approval links that would have been emailed to each approver"""
    return workflow.list_mock_mail()


@router.get("/debug/otp", response_model=DebugOtpResponse, dependencies=[Depends(require_debug_endpoints)])
async def get_otp_for_token(
    approver_token: str = Query(...),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    otp, expires_in = workflow.peek_otp(approver_token)
    return DebugOtpResponse(otp=otp, expires_in_seconds=expires_in)
