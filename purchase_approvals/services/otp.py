"""
One-time code issuance and verification.

Codes are six random digits drawn from ``secrets``; validity is a fixed
window from issuance. The functions here are pure over an explicit
``now`` so expiry can be tested without sleeping; persisting the code
and the state change is the workflow's job.
"""

import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from typing import Callable

from ..core.errors import OtpAttemptsExceeded, OtpExpired, OtpMismatch, OtpNotIssued
from ..models.purchase_request import ApproverRecord

OTP_LENGTH = 6
OTP_MIN = 100000
OTP_MAX = 999999

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class IssuedOtp:
    code: str
    expires_at: datetime


def generate_otp() -> str:
    """Random six-digit code without a leading zero"""
    return str(OTP_MIN + secrets.randbelow(OTP_MAX - OTP_MIN + 1))


class OtpEngine:
    """
    Issues codes and checks submitted ones against an approver record.

    Args:
        validity: How long an issued code stays valid
        max_attempts: Wrong submissions tolerated per issued code
        clock: Returns the current aware UTC datetime
    """

    def __init__(
        self,
        validity: timedelta = timedelta(minutes=3),
        max_attempts: int = 5,
        clock: Clock = utc_now,
    ):
        self.validity = validity
        self.max_attempts = max_attempts
        self.clock = clock

    def issue(self) -> IssuedOtp:
        return IssuedOtp(code=generate_otp(), expires_at=self.clock() + self.validity)

    def is_expired(self, record: ApproverRecord, now: datetime | None = None) -> bool:
        if record.otp_expiration is None:
            return True
        # The code is still valid at exactly the expiry instant.
        return record.otp_expiration < (now or self.clock())

    def seconds_remaining(self, record: ApproverRecord, now: datetime | None = None) -> int:
        if record.otp_expiration is None:
            return 0
        remaining = (record.otp_expiration - (now or self.clock())).total_seconds()
        return max(0, int(remaining))

    def verify(self, record: ApproverRecord, submitted: str, now: datetime | None = None) -> None:
        """
        Check a submitted code against the record's live code.

        Raises:
            OtpNotIssued: No code is currently stored for the approver
            OtpAttemptsExceeded: The wrong-code budget is already spent
            OtpExpired: The stored code is past its expiry instant
            OtpMismatch: The submitted code differs from the stored one
        """
        if record.otp is None:
            raise OtpNotIssued("No one-time code has been issued; open the approval link again")
        if record.otp_attempts >= self.max_attempts:
            raise OtpAttemptsExceeded("Too many invalid one-time codes; request a new code")
        if self.is_expired(record, now):
            raise OtpExpired("The one-time code has expired; request a new code")
        if not hmac.compare_digest(record.otp.encode(), submitted.encode()):
            raise OtpMismatch("Invalid one-time code")
