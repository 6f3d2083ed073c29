from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest

from homeserve.core.enums import (
    BookingStatus,
    CollectionMethod,
    CouponType,
    PaymentStatus,
    RoleName,
    WalletTransactionType,
)
from homeserve.core.exceptions import (
    ForbiddenException,
    InvalidOtpException,
    InvalidTransitionException,
    NotFoundException,
    StateConflictException,
    ValidationException,
)
from homeserve.models.booking import Booking
from homeserve.models.coupon import CouponUsage
from homeserve.models.wallet import WorkerWalletTransaction
from homeserve.principal import Principal
from homeserve.schemas.booking import BulkBookingCreate, BulkBookingItem, RescheduleRequest
from tests.factories.builders import (
    TEST_OTP,
    activate_fees,
    address,
    fund_wallet,
    make_coupon,
    make_worker,
    notifications_for,
)


def _statuses(history):
    return [(row.from_status, row.to_status) for row in history]


class TestCreateBooking:
    def test_unpaid_booking_starts_pending(self, create_booking, customer):
        booking = create_booking()

        assert booking.status == BookingStatus.PENDING.value
        assert booking.payment_status == PaymentStatus.PENDING.value
        assert booking.final_price == Decimal("1000.00")
        assert booking.worker_id is None
        assert booking.customer_id == customer.id

    def test_wallet_only_payment(self, db, create_booking, customer, ledger):
        fund_wallet(db, customer.id, "1500")

        booking = create_booking(wallet_amount=Decimal("1000"))

        assert booking.payment_status == PaymentStatus.PAID.value
        assert booking.payment_method == "wallet"
        assert booking.wallet_amount_used == Decimal("1000.00")
        assert ledger.customer_balance(customer.id) == Decimal("500.00")
        debit = ledger.find_customer_transaction(
            booking_id=booking.id, txn_type=WalletTransactionType.BOOKING_PAYMENT
        )
        assert debit is not None

    def test_partial_external_payment(self, create_booking):
        booking = create_booking(amount_paid=Decimal("200"), payment_id="pi_checkout")

        assert booking.payment_status == PaymentStatus.PARTIAL.value
        assert booking.amount_paid == Decimal("200.00")
        assert booking.payment_id == "pi_checkout"

    def test_direct_worker_booking_notifies_worker(self, db, create_booking, worker):
        booking = create_booking(worker_id=worker.id)

        assert booking.status == BookingStatus.PENDING.value
        assert booking.worker_id == worker.id
        titles = [n.title for n in notifications_for(db, worker.id)]
        assert "New Booking Request" in titles

    def test_unknown_direct_worker(self, create_booking):
        with pytest.raises(NotFoundException):
            create_booking(worker_id="01JXXXXXXXXXXXXXXXXXXXXXXX")

    def test_creation_is_audited(self, booking_service, create_booking, customer):
        booking = create_booking()

        history = booking_service.get_status_history(customer, booking.id)
        assert _statuses(history) == [(None, "pending")]


class TestBulkBooking:
    def _request(self, **overrides) -> BulkBookingCreate:
        fields = dict(
            items=[
                BulkBookingItem(service_name="Sofa Cleaning", category="cleaning", base_price=Decimal("600")),
                BulkBookingItem(service_name="Fan Repair", category="electrical", base_price=Decimal("400")),
            ],
            booking_date=date.today() + timedelta(days=3),
            booking_time="09:30",
            address=address(),
        )
        fields.update(overrides)
        return BulkBookingCreate(**fields)

    def test_order_priced_once_and_split(self, db, booking_service, customer, ledger):
        activate_fees(db, "50")
        make_coupon(db, "SAVE10")
        fund_wallet(db, customer.id, "1000")

        order_id, bookings = booking_service.create_bulk_bookings(
            customer, self._request(coupon_code="SAVE10", wallet_amount=Decimal("945"))
        )

        assert len(bookings) == 2
        assert {b.order_id for b in bookings} == {order_id}
        assert [b.final_price for b in bookings] == [Decimal("567.00"), Decimal("378.00")]
        assert [b.coupon_discount for b in bookings] == [Decimal("63.00"), Decimal("42.00")]
        assert all(b.payment_status == PaymentStatus.PAID.value for b in bookings)
        assert ledger.customer_balance(customer.id) == Decimal("55.00")

        usages = db.query(CouponUsage).all()
        assert len(usages) == 1
        assert usages[0].booking_id == bookings[0].id

    def test_items_inherit_order_schedule(self, booking_service, customer):
        request = self._request()
        _, bookings = booking_service.create_bulk_bookings(customer, request)

        assert all(b.booking_date == request.booking_date for b in bookings)
        assert all(b.booking_time == "09:30" for b in bookings)


class TestWorkerLifecycle:
    def test_happy_path_to_completion(
        self, db, booking_service, create_booking, drive, worker_principal, customer, ledger
    ):
        booking = drive(create_booking(), BookingStatus.IN_PROGRESS)
        assert booking.status == BookingStatus.IN_PROGRESS.value
        assert booking.started_at is not None

        issued = booking_service.request_completion_code(worker_principal, booking.id)
        assert issued.expires_at is not None
        otp_messages = [n.message for n in notifications_for(db, customer.id) if n.notification_type == "otp"]
        assert any(TEST_OTP in m for m in otp_messages)

        booking_service.collect_payment(worker_principal, booking.id, CollectionMethod.CASH)
        done = booking_service.complete_with_code(worker_principal, booking.id, TEST_OTP)

        assert done.status == BookingStatus.COMPLETED.value
        assert done.completed_at is not None
        assert done.completion_otp_digest is None
        assert done.loyalty_credited is True
        assert ledger.coin_balance(customer.id) == 5
        assert ledger.worker_balance(worker_principal.id) == Decimal("1000.00")
        assert _statuses(booking_service.get_status_history(customer, booking.id)) == [
            (None, "pending"),
            ("pending", "assigned"),
            ("assigned", "accepted"),
            ("accepted", "in-progress"),
            ("in-progress", "completed"),
        ]

    def test_completion_requires_payment(self, booking_service, create_booking, drive, worker_principal):
        booking = drive(create_booking(), BookingStatus.IN_PROGRESS)
        booking_service.request_completion_code(worker_principal, booking.id)

        with pytest.raises(StateConflictException) as exc:
            booking_service.complete_with_code(worker_principal, booking.id, TEST_OTP)

        assert exc.value.message == "Payment must be collected before completing the job"
        assert booking_service.get_booking(worker_principal, booking.id).status == "in-progress"

        booking_service.collect_payment(worker_principal, booking.id, CollectionMethod.CASH)
        done = booking_service.complete_with_code(worker_principal, booking.id, TEST_OTP)
        assert done.status == "completed"

    def test_free_booking_needs_recorded_collection(
        self, db, booking_service, create_booking, drive, worker_principal, ledger
    ):
        make_coupon(db, "FREE", coupon_type=CouponType.FIXED, value="1000")
        booking = create_booking(coupon_code="FREE")
        assert booking.final_price == Decimal("0.00")
        assert booking.payment_status == PaymentStatus.PENDING.value

        booking = drive(booking, BookingStatus.IN_PROGRESS)
        booking_service.request_completion_code(worker_principal, booking.id)
        with pytest.raises(StateConflictException):
            booking_service.complete_with_code(worker_principal, booking.id, TEST_OTP)

        collected = booking_service.collect_payment(worker_principal, booking.id, CollectionMethod.CASH)
        assert collected.booking.payment_status == PaymentStatus.PAID.value

        done = booking_service.complete_with_code(worker_principal, booking.id, TEST_OTP)
        assert done.status == BookingStatus.COMPLETED.value
        assert ledger.worker_balance(worker_principal.id) == Decimal("0")

    def test_wrong_start_code_keeps_booking_accepted(
        self, booking_service, create_booking, drive, worker_principal
    ):
        booking = drive(create_booking(), BookingStatus.ACCEPTED)
        booking_service.request_start_code(worker_principal, booking.id)

        with pytest.raises(InvalidOtpException):
            booking_service.start_with_code(worker_principal, booking.id, "9999")
        assert booking_service.get_booking(worker_principal, booking.id).status == "accepted"

    def test_start_without_issued_code(self, booking_service, create_booking, drive, worker_principal):
        booking = drive(create_booking(), BookingStatus.ACCEPTED)
        with pytest.raises(InvalidOtpException):
            booking_service.start_with_code(worker_principal, booking.id, TEST_OTP)

    def test_start_code_requires_accepted_booking(
        self, booking_service, create_booking, drive, worker_principal
    ):
        booking = drive(create_booking(), BookingStatus.ASSIGNED)
        with pytest.raises(StateConflictException) as exc:
            booking_service.request_start_code(worker_principal, booking.id)
        assert exc.value.message == "Booking must be accepted to start"

    def test_only_assigned_worker_may_act(self, db, booking_service, create_booking, drive):
        booking = drive(create_booking(), BookingStatus.ASSIGNED)
        stranger = make_worker(db, "Someone Else")

        with pytest.raises(ForbiddenException):
            booking_service.accept_booking(Principal(id=stranger.id, role=RoleName.WORKER), booking.id)

    def test_unassigned_booking_cannot_be_accepted(self, booking_service, create_booking, worker_principal):
        booking = create_booking()
        with pytest.raises(ForbiddenException):
            booking_service.accept_booking(worker_principal, booking.id)

    def test_direct_booking_can_be_accepted_from_pending(
        self, booking_service, create_booking, worker, worker_principal
    ):
        booking = create_booking(worker_id=worker.id)
        accepted = booking_service.accept_booking(worker_principal, booking.id)
        assert accepted.status == "accepted"

    def test_reject_requires_reason(self, booking_service, create_booking, drive, worker_principal):
        booking = drive(create_booking(), BookingStatus.ASSIGNED)
        with pytest.raises(ValidationException):
            booking_service.reject_booking(worker_principal, booking.id, "  ")

    def test_reject_refunds_paid_booking(
        self, db, booking_service, create_booking, drive, worker_principal, customer, ledger
    ):
        fund_wallet(db, customer.id, "1000")
        booking = drive(create_booking(wallet_amount=Decimal("1000")), BookingStatus.ASSIGNED)

        rejected = booking_service.reject_booking(worker_principal, booking.id, "Not available")

        assert rejected.status == "rejected"
        assert rejected.cancellation_reason == "Not available"
        assert rejected.payment_status == PaymentStatus.REFUNDED.value
        assert ledger.customer_balance(customer.id) == Decimal("1000.00")

    def test_worker_cancel_accepted_booking(
        self, booking_service, create_booking, drive, worker_principal
    ):
        booking = drive(create_booking(), BookingStatus.ACCEPTED)
        cancelled = booking_service.worker_cancel_booking(worker_principal, booking.id, "Emergency")
        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_at is not None

    def test_worker_cannot_cancel_started_job(
        self, booking_service, create_booking, drive, worker_principal
    ):
        booking = drive(create_booking(), BookingStatus.IN_PROGRESS)
        with pytest.raises(InvalidTransitionException):
            booking_service.worker_cancel_booking(worker_principal, booking.id, "Emergency")


class TestCustomerCancellation:
    def test_cancel_after_assignment_is_rejected(self, booking_service, create_booking, drive, customer):
        booking = drive(create_booking(), BookingStatus.ASSIGNED)

        with pytest.raises(StateConflictException) as exc:
            booking_service.cancel_booking(customer, booking.id, "Changed plans")

        assert exc.value.code == "WORKER_ASSIGNED"
        assert booking_service.get_booking(customer, booking.id).status == "assigned"

    def test_cancel_pending_booking_refunds_both_portions(
        self, db, booking_service, create_booking, customer, ledger
    ):
        fund_wallet(db, customer.id, "1000")
        booking = create_booking(
            wallet_amount=Decimal("300"), amount_paid=Decimal("200"), payment_id="pi_checkout"
        )
        assert booking.payment_status == PaymentStatus.PARTIAL.value

        cancelled = booking_service.cancel_booking(customer, booking.id, "Changed plans")

        assert cancelled.status == "cancelled"
        assert cancelled.payment_status == PaymentStatus.REFUNDED.value
        assert ledger.customer_balance(customer.id) == Decimal("1200.00")
        wallet_refund = ledger.find_customer_transaction(
            booking_id=booking.id, txn_type=WalletTransactionType.REFUND_WALLET
        )
        external_refund = ledger.find_customer_transaction(
            booking_id=booking.id, txn_type=WalletTransactionType.REFUND_EXTERNAL
        )
        assert wallet_refund.amount == Decimal("300.00")
        assert external_refund.amount == Decimal("200.00")

    def test_cancel_twice(self, booking_service, create_booking, customer):
        booking = create_booking()
        booking_service.cancel_booking(customer, booking.id)
        with pytest.raises(StateConflictException) as exc:
            booking_service.cancel_booking(customer, booking.id)
        assert exc.value.code == "ALREADY_CANCELLED"

    def test_other_customer_cannot_cancel(self, booking_service, create_booking, other_customer):
        booking = create_booking()
        with pytest.raises(ForbiddenException):
            booking_service.cancel_booking(other_customer, booking.id)

    def test_other_customer_cannot_read(self, booking_service, create_booking, other_customer):
        booking = create_booking()
        with pytest.raises(ForbiddenException):
            booking_service.get_booking(other_customer, booking.id)


class TestAdminOverride:
    def test_override_is_audited_and_clears_codes(
        self, booking_service, create_booking, drive, worker_principal, admin
    ):
        booking = drive(create_booking(), BookingStatus.ACCEPTED)
        booking_service.request_start_code(worker_principal, booking.id)

        updated = booking_service.admin_override_status(
            admin, booking.id, BookingStatus.CANCELLED, "Customer called support"
        )

        assert updated.status == "cancelled"
        assert updated.start_otp_digest is None
        last = booking_service.get_status_history(admin, booking.id)[-1]
        assert last.is_override is True
        assert last.actor_id == admin.id
        assert last.reason == "Customer called support"

    def test_override_to_completed_still_requires_payment(
        self, booking_service, create_booking, drive, admin
    ):
        booking = drive(create_booking(), BookingStatus.IN_PROGRESS)
        with pytest.raises(StateConflictException) as exc:
            booking_service.admin_override_status(admin, booking.id, BookingStatus.COMPLETED, "Done")
        assert exc.value.code == "PAYMENT_REQUIRED"

    def test_override_to_active_status_requires_worker(self, booking_service, create_booking, admin):
        booking = create_booking()
        with pytest.raises(StateConflictException) as exc:
            booking_service.admin_override_status(admin, booking.id, BookingStatus.ACCEPTED, "Manual")
        assert exc.value.code == "WORKER_REQUIRED"

    def test_override_to_same_status(self, booking_service, create_booking, admin):
        booking = create_booking()
        with pytest.raises(StateConflictException) as exc:
            booking_service.admin_override_status(admin, booking.id, BookingStatus.PENDING, "Noop")
        assert exc.value.code == "STATUS_UNCHANGED"

    def test_non_admin_cannot_override(self, booking_service, create_booking, customer):
        booking = create_booking()
        with pytest.raises(ForbiddenException):
            booking_service.admin_override_status(customer, booking.id, BookingStatus.CANCELLED, "x")

    def test_override_completion_credits_once(
        self, db, booking_service, create_booking, worker, admin, customer, ledger
    ):
        fund_wallet(db, customer.id, "1000")
        booking = create_booking(worker_id=worker.id, wallet_amount=Decimal("1000"))

        booking_service.admin_override_status(admin, booking.id, BookingStatus.COMPLETED, "Closed by ops")

        with booking_service.transaction():
            booking_service._on_completed(booking_service._get_booking(booking.id))

        assert ledger.coin_balance(customer.id) == 5
        assert ledger.worker_balance(worker.id) == Decimal("1000.00")
        earnings = db.query(WorkerWalletTransaction).filter_by(
            booking_id=booking.id, txn_type=WalletTransactionType.BOOKING_EARNING.value
        )
        assert earnings.count() == 1


class TestWorkerArtefacts:
    def test_work_proof_appends(self, booking_service, create_booking, drive, worker_principal):
        booking = drive(create_booking(), BookingStatus.IN_PROGRESS)

        booking_service.upload_work_proof(worker_principal, booking.id, ["https://img/1.jpg"])
        updated = booking_service.upload_work_proof(worker_principal, booking.id, ["https://img/2.jpg"])

        assert updated.work_proof_photos == ["https://img/1.jpg", "https://img/2.jpg"]

    def test_work_proof_requires_started_job(self, booking_service, create_booking, drive, worker_principal):
        booking = drive(create_booking(), BookingStatus.ACCEPTED)
        with pytest.raises(StateConflictException):
            booking_service.upload_work_proof(worker_principal, booking.id, ["https://img/1.jpg"])

    def test_reschedule_request_notifies_customer(
        self, db, booking_service, create_booking, drive, worker_principal, customer
    ):
        booking = drive(create_booking(), BookingStatus.ACCEPTED)
        new_date = date.today() + timedelta(days=5)

        updated = booking_service.request_reschedule(
            worker_principal,
            booking.id,
            RescheduleRequest(requested_date=new_date, requested_time="14:00", reason="Rain"),
        )

        assert updated.reschedule_request["status"] == "pending"
        assert updated.reschedule_request["requested_date"] == new_date.isoformat()
        assert updated.booking_date != new_date
        assert "Reschedule Requested" in [n.title for n in notifications_for(db, customer.id)]


class TestListing:
    def test_customers_see_only_their_bookings(
        self, booking_service, create_booking, customer, other_customer, admin
    ):
        create_booking()
        create_booking()
        create_booking(actor=other_customer)

        mine, total = booking_service.list_bookings(customer)
        assert total == 2
        assert {b.customer_id for b in mine} == {customer.id}

        everything, total_all = booking_service.list_bookings(admin)
        assert total_all == 3

        filtered, _ = booking_service.list_bookings(admin, customer_id=other_customer.id)
        assert [b.customer_id for b in filtered] == [other_customer.id]

    def test_status_filter(self, booking_service, create_booking, customer):
        first = create_booking()
        create_booking()
        booking_service.cancel_booking(customer, first.id)

        cancelled, total = booking_service.list_bookings(customer, status=BookingStatus.CANCELLED)
        assert total == 1
        assert cancelled[0].id == first.id

    def test_missing_booking(self, booking_service, admin):
        with pytest.raises(NotFoundException):
            booking_service.get_booking(admin, "01JXXXXXXXXXXXXXXXXXXXXXXX")


def test_booking_model_amount_due():
    booking = Booking(final_price=Decimal("500"), amount_paid=Decimal("200"))
    assert booking.amount_due == Decimal("300")
