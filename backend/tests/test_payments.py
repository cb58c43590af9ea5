"""Online payment order + signature verification for pay-now tokens."""
import hashlib
import hmac

import api.payments as payments
from database.models import PaymentTransaction


def sign(order_id, payment_id):
    return hmac.new(
        payments.RAZORPAY_KEY_SECRET.encode(),
        f"{order_id}|{payment_id}".encode(),
        hashlib.sha256,
    ).hexdigest()


def book_pay_now(client, set_setting, booking_payload):
    set_setting("enable_online_payments", True)
    return client.post("/api/booking/book", json=booking_payload(payment_mode="pay_now")).json()


class TestSignature:

    def test_valid_signature(self):
        assert payments.verify_razorpay_signature("order_1", "pay_1", sign("order_1", "pay_1"))

    def test_tampered_signature(self):
        assert not payments.verify_razorpay_signature("order_1", "pay_2", sign("order_1", "pay_1"))


class TestVerifyPayment:

    def test_verified_payment_marks_visit_paid(self, client, db_session, departments, set_setting, booking_payload):
        booking = book_pay_now(client, set_setting, booking_payload)
        order_id = booking["payment_details"]["order_id"]

        response = client.post(f"/api/payments/visits/{booking['visit_id']}/verify", json={
            "razorpay_order_id": order_id,
            "razorpay_payment_id": "pay_ABC123",
            "razorpay_signature": sign(order_id, "pay_ABC123"),
        })

        assert response.status_code == 200, response.text
        assert response.json()["payment_status"] == "paid"

        transaction = db_session.query(PaymentTransaction).one()
        assert transaction.payment_method == "online"
        assert transaction.transaction_id == "pay_ABC123"
        assert float(transaction.amount) == 300.0

    def test_bad_signature_is_rejected(self, client, db_session, departments, set_setting, booking_payload):
        booking = book_pay_now(client, set_setting, booking_payload)
        order_id = booking["payment_details"]["order_id"]

        response = client.post(f"/api/payments/visits/{booking['visit_id']}/verify", json={
            "razorpay_order_id": order_id,
            "razorpay_payment_id": "pay_ABC123",
            "razorpay_signature": "0" * 64,
        })

        assert response.status_code == 400
        assert db_session.query(PaymentTransaction).count() == 0

    def test_order_must_belong_to_visit(self, client, departments, set_setting, booking_payload):
        booking = book_pay_now(client, set_setting, booking_payload)

        response = client.post(f"/api/payments/visits/{booking['visit_id']}/verify", json={
            "razorpay_order_id": "order_someone_else",
            "razorpay_payment_id": "pay_1",
            "razorpay_signature": sign("order_someone_else", "pay_1"),
        })

        assert response.status_code == 400

    def test_pay_at_clinic_token_has_no_online_payment(self, client, departments, booking_payload):
        visit_id = client.post("/api/booking/book", json=booking_payload()).json()["visit_id"]

        assert client.post(f"/api/payments/visits/{visit_id}/order").status_code == 400

    def test_order_can_be_recreated(self, client, departments, set_setting, booking_payload):
        booking = book_pay_now(client, set_setting, booking_payload)

        response = client.post(f"/api/payments/visits/{booking['visit_id']}/order")

        assert response.status_code == 200
        assert response.json()["payment_details"]["order_id"].startswith("order_mock_")
