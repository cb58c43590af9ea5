"""Admin analytics."""
from datetime import datetime, timedelta
from decimal import Decimal

from database.models import PaymentTransaction, VisitStatus
from conftest import TODAY


def pay(db, visit, amount, status="completed"):
    db.add(PaymentTransaction(
        visit_id=visit.id,
        patient_id=visit.patient_id,
        amount=Decimal(amount),
        payment_method="cash",
        status=status,
    ))
    db.commit()


class TestAnalytics:

    def test_today_week_and_month(self, client, db_session, departments, admin_headers, make_visit):
        done = make_visit(1, status=VisitStatus.COMPLETED)
        make_visit(2)
        make_visit(1, department="pediatrics")
        old = make_visit(1, visit_date=TODAY - timedelta(days=3), status=VisitStatus.COMPLETED)
        make_visit(1, visit_date=TODAY - timedelta(days=20))
        make_visit(1, visit_date=TODAY - timedelta(days=45))

        pay(db_session, done, "300")
        pay(db_session, old, "400")
        pay(db_session, old, "999", status="failed")

        response = client.get("/api/dashboard/analytics", headers=admin_headers)
        assert response.status_code == 200, response.text
        data = response.json()

        assert data["generated_for"] == TODAY.isoformat()
        assert data["today"]["total_visits"] == 3
        assert data["today"]["completed_visits"] == 1
        assert data["today"]["revenue"] == 300.0

        weekly = data["weekly"]
        assert len(weekly["dates"]) == 7
        assert weekly["dates"][-1] == TODAY.isoformat()
        assert weekly["visits_trend"][-1] == 3
        assert weekly["visits_trend"][-4] == 1
        assert weekly["revenue_trend"][-4] == 400.0
        assert weekly["department_distribution"] == {"general": 3, "pediatrics": 1}

        monthly = data["monthly"]
        assert monthly["total_visits"] == 5
        assert monthly["total_revenue"] == 700.0
        assert monthly["top_departments"][0] == {"department": "general", "count": 4}

    def test_average_wait_from_consultations(self, client, db_session, doctor, doctor_headers,
                                             admin_headers, make_visit):
        visit = make_visit(1)
        visit.created_at = datetime.now() - timedelta(minutes=25)
        db_session.commit()

        session = client.post("/api/doctor/sessions/start", json={"doctor_id": doctor.id, "room_name": "R1"},
                              headers=doctor_headers).json()["session"]
        client.post(f"/api/doctor/sessions/{session['id']}/call-next", headers=doctor_headers)

        data = client.get("/api/dashboard/analytics", headers=admin_headers).json()

        assert data["today"]["average_wait_time"] == 25

    def test_no_wait_data(self, client, departments, admin_headers):
        assert client.get("/api/dashboard/analytics", headers=admin_headers).json()["today"]["average_wait_time"] is None

    def test_admin_only(self, client, staff_headers):
        assert client.get("/api/dashboard/analytics", headers=staff_headers).status_code == 403
