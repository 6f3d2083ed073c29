from __future__ import annotations

from datetime import timedelta

import pytest

from homeserve.core.enums import OtpPurpose
from homeserve.core.exceptions import InvalidOtpException
from homeserve.core.timezone_utils import utc_now
from homeserve.models.booking import Booking
from homeserve.services.otp_gate import OTPGate


@pytest.fixture
def gate() -> OTPGate:
    return OTPGate(ttl_minutes=15, secret="test-secret")


@pytest.fixture
def booking() -> Booking:
    return Booking(id="01JABCDEFGHJKMNPQRSTVWXYZ0")


class TestOTPGate:
    def test_issue_then_verify(self, gate, booking, fixed_otp):
        code = gate.issue(booking, OtpPurpose.START)

        assert code == fixed_otp
        gate.verify(booking, OtpPurpose.START, code)

    def test_only_digest_is_stored(self, gate, booking):
        code = gate.issue(booking, OtpPurpose.START)

        assert booking.start_otp_digest is not None
        assert code not in booking.start_otp_digest
        assert len(booking.start_otp_digest) == 64

    def test_wrong_code(self, gate, booking):
        gate.issue(booking, OtpPurpose.START)
        with pytest.raises(InvalidOtpException) as exc:
            gate.verify(booking, OtpPurpose.START, "0000")
        assert exc.value.message == "Invalid OTP"

    def test_expired_code(self, gate, booking):
        issued_at = utc_now()
        code = gate.issue(booking, OtpPurpose.COMPLETION, now=issued_at)

        gate.verify(booking, OtpPurpose.COMPLETION, code, now=issued_at + timedelta(minutes=14))
        with pytest.raises(InvalidOtpException):
            gate.verify(booking, OtpPurpose.COMPLETION, code, now=issued_at + timedelta(minutes=15))

    def test_codes_are_bound_to_purpose(self, gate, booking):
        code = gate.issue(booking, OtpPurpose.START)
        with pytest.raises(InvalidOtpException):
            gate.verify(booking, OtpPurpose.COMPLETION, code)

    def test_codes_are_bound_to_booking(self, gate, booking):
        code = gate.issue(booking, OtpPurpose.START)
        other = Booking(id="01JZZZZZZZZZZZZZZZZZZZZZZZ")
        other.start_otp_digest = booking.start_otp_digest
        other.start_otp_expires_at = booking.start_otp_expires_at
        with pytest.raises(InvalidOtpException):
            gate.verify(other, OtpPurpose.START, code)

    def test_cleared_code_cannot_be_reused(self, gate, booking):
        code = gate.issue(booking, OtpPurpose.START)
        gate.clear(booking, OtpPurpose.START)

        assert booking.start_otp_digest is None
        assert booking.start_otp_expires_at is None
        with pytest.raises(InvalidOtpException):
            gate.verify(booking, OtpPurpose.START, code)

    def test_reissue_replaces_previous_code(self, gate, booking, monkeypatch):
        codes = iter(["1111", "2222"])
        monkeypatch.setattr(OTPGate, "generate_code", staticmethod(lambda: next(codes)))

        first = gate.issue(booking, OtpPurpose.START)
        second = gate.issue(booking, OtpPurpose.START)

        gate.verify(booking, OtpPurpose.START, second)
        with pytest.raises(InvalidOtpException):
            gate.verify(booking, OtpPurpose.START, first)

    def test_generated_codes_are_four_digits(self, monkeypatch):
        monkeypatch.undo()
        for _ in range(50):
            code = OTPGate.generate_code()
            assert len(code) == 4
            assert code.isdigit()
