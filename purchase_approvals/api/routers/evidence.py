from fastapi import APIRouter, Depends

from ..deps import get_workflow
from ...models.schemas import EvidenceRequest, PurchaseRequestView
from ...services.approval_workflow import ApprovalWorkflow

# Used by the PDF evidence generator, not by requesters or approvers.
router = APIRouter(prefix="/evidence", tags=["evidence"])


@router.get("/pending", response_model=list[PurchaseRequestView])
async def list_pending_evidence(workflow: ApprovalWorkflow = Depends(get_workflow)):
    """Fully approved requests still waiting for their PDF evidence"""
    return [PurchaseRequestView.from_record(r) for r in workflow.list_pending_evidence()]


@router.post("/{purchase_request_id}", response_model=PurchaseRequestView)
async def record_evidence(
    purchase_request_id: str,
    req: EvidenceRequest,
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    return PurchaseRequestView.from_record(workflow.record_evidence(purchase_request_id, req.evidence_key))
