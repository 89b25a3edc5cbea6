"""
HTTP tests for the referral, wallet and notification endpoints.

The app runs against the per-test database; the external IP lookup is
switched off.
"""
import pytest
from fastapi.testclient import TestClient

from homeserve.api.dependencies import get_database, get_ip_lookup
from homeserve.api.main import create_app
from homeserve.auth.identity import create_identity_token
from homeserve.referral.models import Referral
from homeserve.settings import settings


def auth(uid, **claims):
    return {"Authorization": f"Bearer {create_identity_token(uid, **claims)}"}


@pytest.fixture
def client(database):
    app = create_app()
    app.dependency_overrides[get_database] = lambda: database
    app.dependency_overrides[get_ip_lookup] = lambda: None
    return TestClient(app)


@pytest.fixture
def admin(make_user):
    return make_user("admin-1", "ADMIN1", display_name="Ops Admin", is_admin=True)


class TestSettleEndpoint:
    """POST /api/v1/referral/settle"""

    def test_requires_identity_token(self, client):
        response = client.post("/api/v1/referral/settle", json={"full_name": "Meera Nair"})
        assert response.status_code == 401

    def test_rejects_bad_token(self, client):
        response = client.post(
            "/api/v1/referral/settle",
            json={"full_name": "Meera Nair"},
            headers={"Authorization": "Bearer not-a-token"},
        )
        assert response.status_code == 401

    def test_referred_signup(self, client, database, configure_program, referrer):
        configure_program(referrer_bonus=50, referred_user_bonus=100)

        response = client.post(
            "/api/v1/referral/settle",
            json={
                "full_name": "Meera Nair",
                "referral_code": "refer1",
                "device": {"user_agent": "Mozilla/5.0", "screen_width": 390, "screen_height": 844},
            },
            headers=auth("new-user", email="meera@example.com"),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["id"] == "new-user"
        assert body["email"] == "meera@example.com"
        assert body["wallet_balance"] == 100
        # Referral outcome is not exposed to the new user
        assert "referred_by_id" not in body

        with database.session() as session:
            referral = session.query(Referral).one()
            assert referral.device_id is not None
            assert referral.ip_address is None

    def test_code_captured_from_link(self, client, configure_program, referrer):
        configure_program()

        capture = client.get("/api/v1/referral/capture/refer1")
        assert capture.status_code == 200
        assert client.cookies.get(settings.referral_cookie_name) == "REFER1"

        response = client.post(
            "/api/v1/referral/settle",
            json={"full_name": "Meera Nair", "email": "meera@example.com"},
            headers=auth("new-user"),
        )

        assert response.status_code == 201
        assert response.json()["wallet_balance"] == 50
        assert client.cookies.get(settings.referral_cookie_name) is None

    def test_retry_is_idempotent(self, client, configure_program, referrer):
        configure_program()
        payload = {"full_name": "Meera Nair", "email": "meera@example.com", "referral_code": "REFER1"}

        first = client.post("/api/v1/referral/settle", json=payload, headers=auth("new-user"))
        second = client.post("/api/v1/referral/settle", json=payload, headers=auth("new-user"))

        assert first.status_code == second.status_code == 201
        assert first.json()["referral_code"] == second.json()["referral_code"]
        assert second.json()["wallet_balance"] == 50

    def test_blank_name_rejected(self, client):
        response = client.post("/api/v1/referral/settle", json={"full_name": "   "}, headers=auth("new-user"))
        assert response.status_code == 422


class TestReferrerEndpoints:
    """Link, stats and code validation"""

    def test_link_and_stats(self, client, configure_program, referrer):
        configure_program()
        client.post(
            "/api/v1/referral/settle",
            json={"full_name": "Meera Nair", "email": "meera@example.com", "referral_code": "REFER1"},
            headers=auth("new-user"),
        )

        link = client.get("/api/v1/referral/link", headers=auth(referrer.id))
        stats = client.get("/api/v1/referral/stats", headers=auth(referrer.id))

        assert link.status_code == 200
        assert link.json()["link"].endswith("/signup?ref=REFER1")
        assert stats.json()["total_referred"] == 1
        assert stats.json()["pending"] == 1
        assert stats.json()["total_earned"] == 0

    def test_profile_required(self, client):
        """A verified token without a settled profile is not enough"""
        response = client.get("/api/v1/referral/stats", headers=auth("nobody"))
        assert response.status_code == 401

    def test_validate_code(self, client, configure_program, referrer):
        configure_program(referred_user_bonus=75)

        valid = client.post("/api/v1/referral/validate", json={"code": "refer1"})
        invalid = client.post("/api/v1/referral/validate", json={"code": "NOPE99"})

        assert valid.json() == {"valid": True, "referrer_name": "Asha", "bonus": 75}
        assert invalid.json()["valid"] is False

    def test_validate_when_disabled(self, client, referrer):
        assert client.post("/api/v1/referral/validate", json={"code": "REFER1"}).json()["valid"] is False


class TestAdminEndpoints:
    """Settings, signups and completion"""

    def test_non_admin_forbidden(self, client, referrer):
        response = client.get("/api/v1/referral/settings", headers=auth(referrer.id))
        assert response.status_code == 403

    def test_update_settings(self, client, admin):
        response = client.put(
            "/api/v1/referral/settings",
            json={"is_referral_system_enabled": True, "referrer_bonus": 200},
            headers=auth(admin.id),
        )

        assert response.status_code == 200
        assert response.json()["referrer_bonus"] == 200

        current = client.get("/api/v1/referral/settings", headers=auth(admin.id)).json()
        assert current["is_referral_system_enabled"] is True
        assert current["referred_user_bonus"] == 0

    def test_invalid_settings_rejected(self, client, admin):
        response = client.put(
            "/api/v1/referral/settings",
            json={"referrer_bonus": -1},
            headers=auth(admin.id),
        )
        assert response.status_code == 422

    def test_signups_and_completion(self, client, configure_program, referrer, admin):
        configure_program()
        client.post(
            "/api/v1/referral/settle",
            json={"full_name": "Meera Nair", "email": "meera@example.com", "referral_code": "REFER1"},
            headers=auth("new-user"),
        )

        signups = client.get("/api/v1/referral/signups", headers=auth(admin.id)).json()
        assert len(signups) == 1
        assert signups[0]["referred_user_name"] == "Meera Nair"

        completed = client.post(
            f"/api/v1/referral/{signups[0]['id']}/complete",
            json={"booking_id": "BK-1", "booking_amount": 800},
            headers=auth(admin.id),
        )
        assert completed.status_code == 200
        assert completed.json()["status"] == "completed"

        wallet = client.get("/api/v1/wallet", headers=auth(referrer.id)).json()
        assert wallet["balance"] == 100

        notifications = client.get("/api/v1/notifications", headers=auth(referrer.id)).json()
        assert [n["title"] for n in notifications] == ["Referral Bonus Credited!", "New Referral Signup!"]

    def test_complete_unknown_referral(self, client, admin):
        response = client.post("/api/v1/referral/missing/complete", json={}, headers=auth(admin.id))
        assert response.status_code == 404


class TestWalletAndNotifications:
    """Wallet history and notification acknowledgement"""

    def test_wallet_transactions(self, client, configure_program, referrer):
        configure_program()
        client.post(
            "/api/v1/referral/settle",
            json={"full_name": "Meera Nair", "email": "meera@example.com", "referral_code": "REFER1"},
            headers=auth("new-user"),
        )

        history = client.get("/api/v1/wallet/transactions", headers=auth("new-user")).json()

        assert len(history) == 1
        assert history[0]["operation"] == "referral_signup_bonus"
        assert history[0]["amount"] == 50

    def test_mark_notification_read(self, client, configure_program, referrer):
        configure_program()
        client.post(
            "/api/v1/referral/settle",
            json={"full_name": "Meera Nair", "email": "meera@example.com", "referral_code": "REFER1"},
            headers=auth("new-user"),
        )
        notification = client.get("/api/v1/notifications", headers=auth(referrer.id)).json()[0]

        assert client.post(f"/api/v1/notifications/{notification['id']}/read", headers=auth(referrer.id)).status_code == 200
        assert client.get("/api/v1/notifications?unread_only=true", headers=auth(referrer.id)).json() == []

        # Not the owner
        assert client.post(f"/api/v1/notifications/{notification['id']}/read", headers=auth("new-user")).status_code == 404
