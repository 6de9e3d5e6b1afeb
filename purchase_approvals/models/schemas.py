from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, TypeAdapter, field_validator

from .purchase_request import (
    REQUIRED_APPROVERS,
    ApprovalStatus,
    ApproverRecord,
    Decision,
    PurchaseRequest,
    RequestStatus,
)

EMAIL_ADAPTER = TypeAdapter(EmailStr)


class CreatePurchaseRequest(BaseModel):
    """Request body for POST /purchase-requests"""
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    amount: float = Field(gt=0)
    approver_emails: list[EmailStr]

    @field_validator("title", "description")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("approver_emails", mode="before")
    @classmethod
    def strip_emails(cls, emails):
        if isinstance(emails, list):
            return [email.strip() if isinstance(email, str) else email for email in emails]
        return emails

    @field_validator("approver_emails")
    @classmethod
    def three_distinct_emails(cls, emails: list[str]) -> list[str]:
        if len(emails) != REQUIRED_APPROVERS:
            raise ValueError(f"exactly {REQUIRED_APPROVERS} approver emails are required")
        if len({email.lower() for email in emails}) != len(emails):
            raise ValueError("approver emails must be distinct")
        return emails


class ApproverView(BaseModel):
    approver_email: str
    approval_order: int
    approval_status: ApprovalStatus
    decision_date: datetime | None = None
    signature_name: str | None = None

    @classmethod
    def from_record(cls, record: ApproverRecord) -> "ApproverView":
        return cls(
            approver_email=record.approver_email,
            approval_order=record.approval_order,
            approval_status=record.approval_status,
            decision_date=record.decision_date,
            signature_name=record.signature_name,
        )


class PurchaseRequestView(BaseModel):
    purchase_request_id: str
    title: str
    description: str
    amount: float
    requester_email: str
    status: RequestStatus
    approver_emails: list[str]
    pdf_evidence_key: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, request: PurchaseRequest) -> "PurchaseRequestView":
        return cls(
            purchase_request_id=request.request_id,
            title=request.title,
            description=request.description,
            amount=request.amount,
            requester_email=request.requester_email,
            status=request.status,
            approver_emails=list(request.approver_emails),
            pdf_evidence_key=request.pdf_evidence_key,
            created_at=request.created_at,
            updated_at=request.updated_at,
        )


class PurchaseRequestDetail(PurchaseRequestView):
    approvers: list[ApproverView]

    @classmethod
    def from_records(
        cls, request: PurchaseRequest, approvers: list[ApproverRecord]
    ) -> "PurchaseRequestDetail":
        ordered = sorted(approvers, key=lambda a: a.approval_order)
        return cls(
            **PurchaseRequestView.from_record(request).model_dump(),
            approvers=[ApproverView.from_record(a) for a in ordered],
        )


class RequestDisplayFields(BaseModel):
    title: str
    description: str
    amount: float
    requester_email: str
    created_at: datetime


class ApprovalInfoResponse(BaseModel):
    """Returned when an approver opens their link; the code itself travels out-of-band"""
    purchase_request_id: str
    purchase_request_details: RequestDisplayFields
    otp_expires_at: datetime
    message: str = "A one-time code was issued. Enter it to continue."


class ValidateOtpRequest(BaseModel):
    otp: str = Field(pattern=r"^\d{6}$")


class ValidateOtpResponse(BaseModel):
    purchase_request_id: str
    approval_status: ApprovalStatus
    message: str = "One-time code validated. You may now record your decision."


class DecisionRequest(BaseModel):
    decision: Decision
    signature_name: str | None = None


class DecisionResponse(BaseModel):
    purchase_request_id: str
    approver_email: str
    approval_status: ApprovalStatus
    overall_status: RequestStatus


class EvidenceRequest(BaseModel):
    evidence_key: str = Field(min_length=1)


class MockMail(BaseModel):
    approver_email: str
    purchase_request_id: str
    approver_token: str
    approval_link: str


class DebugOtpResponse(BaseModel):
    otp: str
    expires_in_seconds: int
    message: str = "OTP for testing purposes only. Do not expose in production."
