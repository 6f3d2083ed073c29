from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest

from homeserve.core.enums import WalletTransactionType
from homeserve.services.payment_processor import PROCESSOR_PAID, ProcessorEvent
from tests.factories.builders import TEST_OTP, auth_headers, fund_wallet

BOOKINGS = "/api/v1/bookings"


def _booking_payload(**overrides):
    payload = {
        "service_name": "Deep Cleaning",
        "category": "cleaning",
        "base_price": "1000",
        "booking_date": (date.today() + timedelta(days=2)).isoformat(),
        "booking_time": "10:00",
        "address": {"line1": "12 MG Road", "city": "Pune", "pincode": "411001"},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def customer_headers(customer):
    return auth_headers(customer)


@pytest.fixture
def worker_headers(worker_principal):
    return auth_headers(worker_principal)


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def created(app_client, customer_headers):
    response = app_client.post(f"{BOOKINGS}/", json=_booking_payload(), headers=customer_headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestBookingRoutes:
    def test_create_booking(self, created, customer):
        assert created["status"] == "pending"
        assert created["customer_id"] == customer.id
        assert Decimal(created["final_price"]) == Decimal("1000")
        assert created["payment_status"] == "pending"
        assert "start_otp_digest" not in created

    def test_create_requires_authentication(self, app_client):
        response = app_client.post(f"{BOOKINGS}/", json=_booking_payload())
        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    def test_only_customers_create_bookings(self, app_client, worker_headers):
        response = app_client.post(f"{BOOKINGS}/", json=_booking_payload(), headers=worker_headers)
        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "ROLE_FORBIDDEN"

    def test_unknown_fields_rejected(self, app_client, customer_headers):
        response = app_client.post(
            f"{BOOKINGS}/", json=_booking_payload(final_price="1"), headers=customer_headers
        )
        assert response.status_code == 422

    def test_external_payment_needs_reference(self, app_client, customer_headers):
        response = app_client.post(
            f"{BOOKINGS}/", json=_booking_payload(amount_paid="200"), headers=customer_headers
        )
        assert response.status_code == 422

    def test_list_and_get(self, app_client, created, customer_headers, other_customer):
        listing = app_client.get(f"{BOOKINGS}/", headers=customer_headers)
        assert listing.status_code == 200
        body = listing.json()
        assert body["total"] == 1
        assert [b["id"] for b in body["items"]] == [created["id"]]

        detail = app_client.get(f"{BOOKINGS}/{created['id']}", headers=customer_headers)
        assert detail.status_code == 200

        forbidden = app_client.get(f"{BOOKINGS}/{created['id']}", headers=auth_headers(other_customer))
        assert forbidden.status_code == 403

    def test_malformed_booking_id(self, app_client, customer_headers):
        response = app_client.get(f"{BOOKINGS}/not-a-ulid", headers=customer_headers)
        assert response.status_code == 422

    def test_missing_booking(self, app_client, admin_headers):
        response = app_client.get(f"{BOOKINGS}/01JABCDEFGHJKMNPQRSTVWXYZ0", headers=admin_headers)
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "BOOKING_NOT_FOUND"

    def test_price_preview(self, db, app_client, customer, customer_headers):
        fund_wallet(db, customer.id, "100")
        response = app_client.post(
            f"{BOOKINGS}/price-preview",
            json={"base_price": "1000", "wallet_amount": "100"},
            headers=customer_headers,
        )
        assert response.status_code == 200, response.text
        body = response.json()
        assert Decimal(body["final_price"]) == Decimal("1000")
        assert Decimal(body["wallet_amount_used"]) == Decimal("100")
        assert body["payment_status"] == "partial"

    def test_cancel_after_assignment(self, app_client, created, customer_headers, admin_headers, worker):
        assign = app_client.put(
            f"{BOOKINGS}/{created['id']}/assign", json={"worker_id": worker.id}, headers=admin_headers
        )
        assert assign.status_code == 200, assign.text

        response = app_client.put(f"{BOOKINGS}/{created['id']}/cancel", json={}, headers=customer_headers)
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "WORKER_ASSIGNED"

    def test_full_http_lifecycle(
        self, app_client, created, customer_headers, worker_headers, admin_headers, worker
    ):
        booking_url = f"{BOOKINGS}/{created['id']}"

        candidates = app_client.get(f"{booking_url}/assignable-workers", headers=admin_headers)
        assert [w["id"] for w in candidates.json()] == [worker.id]

        steps = [
            ("assign", {"worker_id": worker.id}, admin_headers, "assigned"),
            ("accept", None, worker_headers, "accepted"),
        ]
        for action, body, headers, expected in steps:
            response = app_client.put(f"{booking_url}/{action}", json=body, headers=headers)
            assert response.status_code == 200, response.text
            assert response.json()["status"] == expected

        issued = app_client.put(f"{booking_url}/request-start-otp", headers=worker_headers)
        assert issued.status_code == 200
        assert set(issued.json()) == {"message", "booking_id", "expires_at"}

        wrong = app_client.put(f"{booking_url}/start", json={"otp": "0000"}, headers=worker_headers)
        assert wrong.status_code == 400
        assert wrong.json()["detail"]["message"] == "Invalid OTP"

        started = app_client.put(f"{booking_url}/start", json={"otp": TEST_OTP}, headers=worker_headers)
        assert started.json()["status"] == "in-progress"

        proof = app_client.put(
            f"{booking_url}/work-proof", json={"photos": ["https://img/1.jpg"]}, headers=worker_headers
        )
        assert proof.json()["work_proof_photos"] == ["https://img/1.jpg"]

        app_client.put(f"{booking_url}/request-completion-otp", headers=worker_headers)
        unpaid = app_client.put(f"{booking_url}/complete", json={"otp": TEST_OTP}, headers=worker_headers)
        assert unpaid.status_code == 400
        assert unpaid.json()["detail"]["code"] == "PAYMENT_REQUIRED"

        paid = app_client.put(f"{booking_url}/payment", json={"method": "cash"}, headers=worker_headers)
        assert paid.status_code == 200
        assert paid.json()["booking"]["payment_status"] == "paid"

        done = app_client.put(f"{booking_url}/complete", json={"otp": TEST_OTP}, headers=worker_headers)
        assert done.status_code == 200
        assert done.json()["status"] == "completed"
        assert done.json()["loyalty_coins_earned"] == 5

        history = app_client.get(f"{booking_url}/history", headers=customer_headers).json()
        assert [h["to_status"] for h in history] == [
            "pending",
            "assigned",
            "accepted",
            "in-progress",
            "completed",
        ]

        wallet = app_client.get("/api/v1/wallet/worker", headers=worker_headers).json()
        assert Decimal(wallet["balance"]) == Decimal("1000")

        coins = app_client.get("/api/v1/wallet/me", headers=customer_headers).json()
        assert coins["coin_balance"] == 5

    def test_processor_link_collection(
        self, app_client, created, worker_headers, admin_headers, customer_headers, worker, processor
    ):
        booking_url = f"{BOOKINGS}/{created['id']}"
        app_client.put(f"{booking_url}/assign", json={"worker_id": worker.id}, headers=admin_headers)
        app_client.put(f"{booking_url}/accept", headers=worker_headers)
        app_client.put(f"{booking_url}/request-start-otp", headers=worker_headers)
        app_client.put(f"{booking_url}/start", json={"otp": TEST_OTP}, headers=worker_headers)

        link = app_client.put(f"{booking_url}/payment", json={"method": "processor-link"}, headers=worker_headers)
        assert link.status_code == 200
        assert link.json()["payment_link"] == f"https://pay.test/{created['id']}"

        pending = app_client.get(f"{booking_url}/verify-payment", headers=customer_headers)
        assert pending.json()["status"] == "pending"

        processor.mark_paid(f"cs_{created['id']}")
        verified = app_client.get(f"{booking_url}/verify-payment", headers=customer_headers)
        assert verified.json()["status"] == PROCESSOR_PAID
        assert verified.json()["booking"]["payment_method"] == "upi"


class TestWalletAndAdminRoutes:
    def test_customer_wallet(self, db, app_client, customer, customer_headers):
        fund_wallet(db, customer.id, "250")

        body = app_client.get("/api/v1/wallet/me", headers=customer_headers).json()

        assert Decimal(body["balance"]) == Decimal("250")
        assert body["transactions"][0]["txn_type"] == WalletTransactionType.TOP_UP.value
        assert body["coin_balance"] == 0

    def test_payout_request_and_admin_review(
        self, db, app_client, ledger, worker, worker_headers, admin_headers
    ):
        ledger.credit_worker(worker.id, Decimal("800"), WalletTransactionType.BOOKING_EARNING, "Earnings")
        db.commit()

        created = app_client.post(
            "/api/v1/wallet/worker/withdrawals", json={"amount": "300"}, headers=worker_headers
        )
        assert created.status_code == 201, created.text
        withdrawal_id = created.json()["id"]

        duplicate = app_client.post(
            "/api/v1/wallet/worker/withdrawals", json={"amount": "100"}, headers=worker_headers
        )
        assert duplicate.status_code == 400
        assert duplicate.json()["detail"]["code"] == "WITHDRAWAL_PENDING"

        pending = app_client.get("/api/v1/admin/withdrawals?status=pending", headers=admin_headers)
        assert [w["id"] for w in pending.json()] == [withdrawal_id]

        rejected = app_client.put(
            f"/api/v1/admin/withdrawals/{withdrawal_id}/reject",
            json={"reason": "KYC incomplete"},
            headers=admin_headers,
        )
        assert rejected.status_code == 200
        assert rejected.json()["status"] == "rejected"

        wallet = app_client.get("/api/v1/wallet/worker", headers=worker_headers).json()
        assert Decimal(wallet["balance"]) == Decimal("800")

        own = app_client.get("/api/v1/wallet/worker/withdrawals", headers=worker_headers).json()
        assert [w["status"] for w in own] == ["rejected"]

    def test_admin_routes_require_admin(self, app_client, worker_headers):
        response = app_client.get("/api/v1/admin/config/fees", headers=worker_headers)
        assert response.status_code == 403

    def test_fee_config_update(self, app_client, admin_headers):
        updated = app_client.put(
            "/api/v1/admin/config/fees",
            json={"platform_fee": "49", "is_active": True},
            headers=admin_headers,
        )
        assert updated.status_code == 200, updated.text

        current = app_client.get("/api/v1/admin/config/fees", headers=admin_headers).json()
        assert Decimal(current["platform_fee"]) == Decimal("49")
        assert current["is_active"] is True

    def test_coin_config_rejects_bad_percentage(self, app_client, admin_headers):
        response = app_client.put(
            "/api/v1/admin/config/coins", json={"max_usage_percentage": "150"}, headers=admin_headers
        )
        assert response.status_code == 422


class TestInfrastructureRoutes:
    def test_webhook_settles_booking(
        self, app_client, created, admin_headers, worker_headers, worker, processor
    ):
        booking_url = f"{BOOKINGS}/{created['id']}"
        app_client.put(f"{booking_url}/assign", json={"worker_id": worker.id}, headers=admin_headers)
        app_client.put(f"{booking_url}/accept", headers=worker_headers)
        app_client.put(f"{booking_url}/request-start-otp", headers=worker_headers)
        app_client.put(f"{booking_url}/start", json={"otp": TEST_OTP}, headers=worker_headers)
        app_client.put(f"{booking_url}/payment", json={"method": "processor-order"}, headers=worker_headers)

        processor.next_event = ProcessorEvent(
            event_type="payment_intent.succeeded",
            payment_id=f"pi_{created['id']}",
            booking_id=created["id"],
            status=PROCESSOR_PAID,
        )
        response = app_client.post(
            "/api/v1/payments/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=abc"}
        )

        assert response.status_code == 200
        assert response.json() == {"status": "processed"}
        booking = app_client.get(booking_url, headers=admin_headers).json()
        assert booking["payment_status"] == "paid"
        assert booking["payment_method"] == "card"

    def test_webhook_ignores_other_events(self, app_client, processor):
        processor.next_event = ProcessorEvent("charge.refunded", "ch_1", None, "refunded")
        response = app_client.post("/api/v1/payments/webhook", content=b"{}")
        assert response.json() == {"status": "ignored"}

    def test_metrics_endpoint(self, app_client):
        response = app_client.get("/metrics")
        assert response.status_code == 200
        assert "homeserve_service_operations_total" in response.text

    def test_health(self, app_client):
        response = app_client.get("/health")
        assert response.json()["status"] == "healthy"
