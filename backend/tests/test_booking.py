"""
Booking flow: POST /api/booking/book

Patient upsert by phone, per-department token numbering, validation rules
and the confirmation payload (position / wait / QR).
"""
import api.booking as booking
from database.models import Patient, Visit, Doctor, Department, VisitStatus
from api.booking import decode_qr_payload
from conftest import TODAY


class TestBookingConfirmation:

    def test_first_two_tokens_of_the_day(self, client, departments, booking_payload):
        first = client.post("/api/booking/book", json=booking_payload())
        assert first.status_code == 200, first.text
        data = first.json()
        assert data["stn"] == 1
        assert data["now_serving"] == 0
        assert data["position"] == 1
        assert data["estimated_wait_minutes"] == 10

        second = client.post("/api/booking/book", json=booking_payload(name="Ravi", phone="9123456780"))
        data = second.json()
        assert data["stn"] == 2
        assert data["now_serving"] == 0
        assert data["position"] == 2
        assert data["estimated_wait_minutes"] == 20

    def test_confirmation_fields(self, client, departments, booking_payload):
        data = client.post("/api/booking/book", json=booking_payload()).json()

        assert data["uid"].startswith("CLN1-")
        assert data["department"] == "general"
        assert data["visit_date"] == TODAY.isoformat()
        assert data["status"] == "waiting"
        assert data["payment_status"] == "pay_at_clinic"
        assert data["payment_required"] is False
        assert data["next_step"] == "show_confirmation"

        payload = decode_qr_payload(data["qr_payload"])
        assert payload["uid"] == data["uid"]
        assert payload["stn"] == 1
        assert payload["visit_date"] == TODAY.isoformat()

    def test_sequences_are_independent_per_department(self, client, departments, booking_payload):
        general = [
            client.post("/api/booking/book", json=booking_payload(phone=f"98000000{i:02d}")).json()["stn"]
            for i in range(3)
        ]
        pediatrics = [
            client.post(
                "/api/booking/book",
                json=booking_payload(phone=f"97000000{i:02d}", department="pediatrics"),
            ).json()["stn"]
            for i in range(2)
        ]

        assert general == [1, 2, 3]
        assert pediatrics == [1, 2]

    def test_yesterdays_tokens_do_not_count(self, client, departments, make_visit, booking_payload):
        make_visit(7, visit_date=TODAY.replace(day=TODAY.day - 1))

        assert client.post("/api/booking/book", json=booking_payload()).json()["stn"] == 1

    def test_get_booking_and_qr(self, client, departments, booking_payload):
        visit_id = client.post("/api/booking/book", json=booking_payload()).json()["visit_id"]

        booking_data = client.get(f"/api/booking/{visit_id}").json()
        assert booking_data["stn"] == 1
        assert booking_data["position"] == 1

        qr = client.get(f"/api/booking/{visit_id}/qr").json()
        assert qr["filename"] == "clinic-token-1.png"
        assert qr["image_base64"]

        assert client.get("/api/booking/9999").status_code == 404


class TestPatientDedup:

    def test_same_phone_reuses_patient_and_fills_new_fields(self, client, db_session, departments, booking_payload):
        client.post("/api/booking/book", json=booking_payload())
        client.post("/api/booking/book", json=booking_payload(email="asha@gmail.com", allergies="penicillin, dust,"))

        patients = db_session.query(Patient).all()
        assert len(patients) == 1
        assert patients[0].email == "asha@gmail.com"
        assert patients[0].allergies == ["penicillin", "dust"]
        assert db_session.query(Visit).count() == 2

    def test_later_booking_never_blanks_fields(self, client, db_session, departments, booking_payload):
        client.post("/api/booking/book", json=booking_payload(email="asha@gmail.com", blood_group="O+"))
        client.post("/api/booking/book", json=booking_payload(email=""))

        patient = db_session.query(Patient).one()
        assert patient.email == "asha@gmail.com"
        assert patient.blood_group == "O+"


class TestBookingValidation:

    def test_field_errors_are_422(self, client, departments, booking_payload):
        cases = [
            booking_payload(phone="12345"),
            booking_payload(age=0),
            booking_payload(age=121),
            booking_payload(name="   "),
            booking_payload(email="not-an-email"),
            booking_payload(payment_mode="bitcoin"),
        ]
        for payload in cases:
            response = client.post("/api/booking/book", json=payload)
            assert response.status_code == 422, payload

    def test_unknown_or_inactive_department(self, client, db_session, departments, booking_payload):
        assert client.post("/api/booking/book", json=booking_payload(department="dental")).status_code == 400

        departments["pediatrics"].is_active = False
        db_session.commit()
        assert client.post("/api/booking/book", json=booking_payload(department="pediatrics")).status_code == 400

    def test_daily_token_cap(self, client, departments, set_setting, booking_payload):
        set_setting("max_tokens_per_department", 1)

        assert client.post("/api/booking/book", json=booking_payload()).status_code == 200
        response = client.post("/api/booking/book", json=booking_payload(phone="9123456780"))
        assert response.status_code == 400
        assert "No more tokens" in response.json()["detail"]

    def test_unreadable_token_cap_uses_default(self, client, departments, set_setting, booking_payload):
        set_setting("max_tokens_per_department", "not-a-number")

        response = client.post("/api/booking/book", json=booking_payload())

        assert response.status_code == 200, response.text

    def test_doctor_must_be_active_and_have_capacity(self, client, db_session, doctor, booking_payload):
        doctor.max_patients_per_day = 1
        db_session.commit()

        assert client.post("/api/booking/book", json=booking_payload(doctor_id=doctor.id)).status_code == 200
        full = client.post("/api/booking/book", json=booking_payload(phone="9123456780", doctor_id=doctor.id))
        assert full.status_code == 400
        assert "maximum patients" in full.json()["detail"]

        assert client.post("/api/booking/book", json=booking_payload(doctor_id=999)).status_code == 400

    def test_maintenance_mode_blocks_booking(self, client, db_session, departments, set_setting, booking_payload):
        set_setting("maintenance_mode", True)

        response = client.post("/api/booking/book", json=booking_payload())

        assert response.status_code == 503
        assert db_session.query(Visit).count() == 0


class TestTokenAllocation:

    def test_taken_token_number_is_retried(self, client, db_session, departments, make_visit,
                                           booking_payload, monkeypatch):
        make_visit(1)
        real_next_stn = booking.next_stn
        calls = []

        def stale_then_real(db, department, visit_date):
            calls.append(department)
            if len(calls) == 1:
                return 1  # read before the other booking committed
            return real_next_stn(db, department, visit_date)

        monkeypatch.setattr(booking, "next_stn", stale_then_real)

        response = client.post("/api/booking/book", json=booking_payload())

        assert response.status_code == 200
        assert response.json()["stn"] == 2
        assert len(calls) == 2
        assert db_session.query(Patient).filter(Patient.phone == "9876543210").count() == 1

    def test_gives_up_after_repeated_conflicts(self, client, db_session, departments, make_visit,
                                               booking_payload, monkeypatch):
        make_visit(1)
        monkeypatch.setattr(booking, "next_stn", lambda db, department, visit_date: 1)

        response = client.post("/api/booking/book", json=booking_payload())

        assert response.status_code == 409
        assert db_session.query(Visit).count() == 1
        assert db_session.query(Patient).filter(Patient.phone == "9876543210").count() == 0


class TestPayNow:

    def test_pay_now_without_online_payments(self, client, departments, booking_payload):
        data = client.post("/api/booking/book", json=booking_payload(payment_mode="pay_now")).json()

        assert data["payment_status"] == "pending"
        assert data["payment_required"] is False
        assert data["payment_details"] is None

    def test_pay_now_routes_to_payment(self, client, departments, set_setting, booking_payload):
        set_setting("enable_online_payments", True)

        data = client.post("/api/booking/book", json=booking_payload(payment_mode="pay_now")).json()

        assert data["payment_required"] is True
        assert data["next_step"] == "complete_payment"
        assert data["payment_details"]["gateway"] == "mock"
        assert data["payment_details"]["order_id"].startswith("order_mock_")
        assert data["payment_details"]["amount"] == 300.0
