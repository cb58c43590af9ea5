"""Staff login, token refresh and role guards."""
from api.auth import create_access_token, create_refresh_token
from database.models import AuditLog, StaffRole
from conftest import create_staff, STAFF_PASSWORD


class TestLogin:

    def test_login_returns_tokens_and_user(self, client, db_session, admin_user):
        response = client.post("/api/auth/login", json={"email": admin_user.email, "password": STAFF_PASSWORD})

        assert response.status_code == 200
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["user"]["role"] == "admin"
        assert data["access_token"] and data["refresh_token"]

        db_session.refresh(admin_user)
        assert admin_user.last_login is not None
        assert db_session.query(AuditLog).filter(AuditLog.action_type == "LOGIN_SUCCESS").count() == 1

    def test_wrong_password(self, client, admin_user):
        response = client.post("/api/auth/login", json={"email": admin_user.email, "password": "wrong-one"})
        assert response.status_code == 401

    def test_inactive_account(self, client, db_session):
        user = create_staff(db_session, "former@mediqueue.in", StaffRole.STAFF, is_active=False)
        response = client.post("/api/auth/login", json={"email": user.email, "password": STAFF_PASSWORD})
        assert response.status_code == 401

    def test_me(self, client, admin_headers):
        data = client.get("/api/auth/me", headers=admin_headers).json()
        assert data["email"] == "admin@mediqueue.in"


class TestTokens:

    def test_refresh_issues_new_access_token(self, client, admin_user):
        refresh = create_refresh_token({"sub": str(admin_user.id)})

        response = client.post("/api/auth/refresh", json={"refresh_token": refresh})

        assert response.status_code == 200
        token = response.json()["access_token"]
        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.json()["id"] == admin_user.id

    def test_access_token_cannot_refresh(self, client, admin_user):
        access = create_access_token({"sub": str(admin_user.id), "role": "admin"})
        assert client.post("/api/auth/refresh", json={"refresh_token": access}).status_code == 400

    def test_refresh_token_cannot_authenticate(self, client, admin_user):
        refresh = create_refresh_token({"sub": str(admin_user.id)})
        response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {refresh}"})
        assert response.status_code == 401

    def test_garbage_token(self, client):
        response = client.get("/api/auth/me", headers={"Authorization": "Bearer not.a.token"})
        assert response.status_code == 401
