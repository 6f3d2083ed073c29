"""
One-time codes gating job start and job completion.

Codes are 4-digit numbers delivered to the customer out of band. Only an
HMAC digest bound to the booking id and purpose is persisted, so a code
cannot be recovered from booking data. Both codes share one expiry policy
(``settings.otp_ttl_minutes``).
"""

from datetime import datetime, timedelta
import hashlib
import hmac
import logging
import secrets
from typing import Optional

from ..core.config import settings
from ..core.enums import OtpPurpose
from ..core.exceptions import InvalidOtpException
from ..core.timezone_utils import ensure_utc, utc_now
from ..models.booking import Booking

logger = logging.getLogger(__name__)

_FIELDS = {
    OtpPurpose.START: ("start_otp_digest", "start_otp_expires_at"),
    OtpPurpose.COMPLETION: ("completion_otp_digest", "completion_otp_expires_at"),
}


class OTPGate:
    """Issues, verifies and clears the per-booking start/completion codes."""

    def __init__(self, ttl_minutes: Optional[int] = None, secret: Optional[str] = None):
        self.ttl = timedelta(minutes=ttl_minutes or settings.otp_ttl_minutes)
        self._secret = (secret or settings.secret_key.get_secret_value()).encode("utf-8")

    @staticmethod
    def generate_code() -> str:
        return str(1000 + secrets.randbelow(9000))

    def _digest(self, booking_id: str, purpose: OtpPurpose, code: str) -> str:
        message = f"{booking_id}:{purpose.value}:{code}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def issue(self, booking: Booking, purpose: OtpPurpose, now: Optional[datetime] = None) -> str:
        """Store a fresh code for the booking, replacing any earlier one, and return it."""
        digest_field, expiry_field = _FIELDS[purpose]
        code = self.generate_code()
        issued_at = ensure_utc(now) or utc_now()
        setattr(booking, digest_field, self._digest(booking.id, purpose, code))
        setattr(booking, expiry_field, issued_at + self.ttl)
        logger.info(
            "OTP issued",
            extra={"booking_id": booking.id, "purpose": purpose.value},
        )
        return code

    def verify(
        self,
        booking: Booking,
        purpose: OtpPurpose,
        code: str,
        now: Optional[datetime] = None,
    ) -> None:
        """
        Raises:
            InvalidOtpException: no code issued, wrong code, or expired code
        """
        digest_field, expiry_field = _FIELDS[purpose]
        stored = getattr(booking, digest_field)
        expires_at = ensure_utc(getattr(booking, expiry_field))
        moment = ensure_utc(now) or utc_now()

        candidate = self._digest(booking.id, purpose, (code or "").strip())
        matches = stored is not None and hmac.compare_digest(stored, candidate)
        if not matches or expires_at is None or moment >= expires_at:
            logger.warning(
                "OTP verification failed",
                extra={"booking_id": booking.id, "purpose": purpose.value},
            )
            raise InvalidOtpException()

    def clear(self, booking: Booking, purpose: OtpPurpose) -> None:
        digest_field, expiry_field = _FIELDS[purpose]
        setattr(booking, digest_field, None)
        setattr(booking, expiry_field, None)
