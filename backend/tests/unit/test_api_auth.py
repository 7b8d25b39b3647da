"""Tests for the authentication endpoints.

POST /api/v1/auth/register, /login, /social-login, /refresh,
/verify-token, /change-password, /deactivate and GET /me.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from credence.core.auth import hash_secret
from credence.main import create_app
from tests.conftest import TEST_PASSWORD, make_test_settings
from tests.unit.conftest import FEDERATED_TOKEN, sign_in

_NEW_PASSWORD = "Rt5$wNc8yQ@j"  # nosec B105


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ===================================================================
# POST /api/v1/auth/register
# ===================================================================


class TestRegister:
    """Tests for POST /api/v1/auth/register."""

    async def test_creates_unverified_user_and_emails_code(self, client, stack):
        response = await client.post(
            "/api/v1/auth/register",
            json={"email": "New@Example.com", "password": TEST_PASSWORD},
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["email"] == "new@example.com"
        assert data["is_verified"] is False
        assert "password_hash" not in data
        stack.session.commit.assert_awaited()

        [(destination, message)] = stack.notifier.sent
        assert destination == "new@example.com"
        code = message.text.split()[4]
        [live] = stack.tokens.tokens
        assert live.token_hash == hash_secret(code)

    async def test_weak_password_is_itemized(self, client):
        response = await client.post(
            "/api/v1/auth/register",
            json={"email": "new@example.com", "password": "password"},
        )

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "WEAK_PASSWORD"
        assert "missing_uppercase" in [d["violation"] for d in error["details"]]

    async def test_duplicate_email(self, client, stack):
        stack.add_verified_user("taken@example.com")

        response = await client.post(
            "/api/v1/auth/register",
            json={"email": "taken@example.com", "password": TEST_PASSWORD},
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "EMAIL_ALREADY_EXISTS"

    async def test_admin_role_cannot_be_requested(self, client):
        response = await client.post(
            "/api/v1/auth/register",
            json={"email": "x@example.com", "password": TEST_PASSWORD, "role": "ADMIN"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_unknown_fields_are_rejected(self, client):
        response = await client.post(
            "/api/v1/auth/register",
            json={
                "email": "x@example.com",
                "password": TEST_PASSWORD,
                "is_verified": True,
            },
        )

        assert response.status_code == 400

    async def test_fourth_registration_in_an_hour_is_throttled(self, client):
        statuses = []
        for i in range(4):
            response = await client.post(
                "/api/v1/auth/register",
                json={"email": f"u{i}@example.com", "password": TEST_PASSWORD},
            )
            statuses.append(response.status_code)

        assert statuses == [201, 201, 201, 429]
        assert response.headers["Retry-After"] == "3600"
        assert response.json()["error"]["code"] == "RATE_LIMITED"


# ===================================================================
# POST /api/v1/auth/login
# ===================================================================


class TestLogin:
    """Tests for POST /api/v1/auth/login."""

    async def test_success_returns_user_and_tokens(self, client, stack):
        stack.add_verified_user()

        response = await client.post(
            "/api/v1/auth/login",
            json={"email": "user@example.com", "password": TEST_PASSWORD},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["user"]["email"] == "user@example.com"
        assert data["tokens"]["token_type"] == "bearer"
        assert data["tokens"]["expires_in"] == 900
        assert response.headers["Cache-Control"] == "no-store, max-age=0"

    @pytest.mark.parametrize("email", ["user@example.com", "nobody@example.com"])
    async def test_wrong_password_and_unknown_email_match(self, client, stack, email):
        stack.add_verified_user()

        response = await client.post(
            "/api/v1/auth/login", json={"email": email, "password": "Wr0ng#pass"}
        )

        assert response.status_code == 401
        assert response.json() == {
            "error": {
                "code": "INVALID_CREDENTIALS",
                "message": "Invalid email or password",
                "details": None,
            }
        }

    async def test_unverified_email(self, client, stack):
        stack.add_verified_user().is_verified = False

        response = await client.post(
            "/api/v1/auth/login",
            json={"email": "user@example.com", "password": TEST_PASSWORD},
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "EMAIL_NOT_VERIFIED"

    async def test_inactive_account(self, client, stack):
        stack.add_verified_user(is_active=False)

        response = await client.post(
            "/api/v1/auth/login",
            json={"email": "user@example.com", "password": TEST_PASSWORD},
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "ACCOUNT_INACTIVE"

    async def test_sixth_attempt_is_throttled_then_recovers(self, client, stack):
        for _ in range(5):
            await client.post(
                "/api/v1/auth/login",
                json={"email": "x@example.com", "password": "Wr0ng#pass"},
            )

        blocked = await client.post(
            "/api/v1/auth/login",
            json={"email": "x@example.com", "password": "Wr0ng#pass"},
        )
        assert blocked.status_code == 429
        assert int(blocked.headers["Retry-After"]) == 900

        stack.limiter_clock.advance(900)
        retried = await client.post(
            "/api/v1/auth/login",
            json={"email": "x@example.com", "password": "Wr0ng#pass"},
        )
        assert retried.status_code == 401

    async def test_invalid_email_is_a_validation_error(self, client):
        response = await client.post(
            "/api/v1/auth/login", json={"email": "not-an-email", "password": "x"}
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"


# ===================================================================
# POST /api/v1/auth/social-login
# ===================================================================


class TestSocialLogin:
    """Tests for POST /api/v1/auth/social-login."""

    async def test_first_and_returning_login(self, client, stack):
        first = await client.post(
            "/api/v1/auth/social-login", json={"id_token": FEDERATED_TOKEN}
        )
        second = await client.post(
            "/api/v1/auth/social-login", json={"id_token": FEDERATED_TOKEN}
        )

        assert first.status_code == 200
        assert first.json()["data"]["is_new_user"] is True
        assert second.json()["data"]["is_new_user"] is False
        assert len(stack.users.users) == 1

    async def test_rejected_identity_token(self, client):
        response = await client.post(
            "/api/v1/auth/social-login", json={"id_token": "forged"}
        )

        assert response.status_code == 401

    async def test_unverified_local_account_blocks_linking(self, client, stack):
        stack.add_verified_user("fed@example.com").is_verified = False

        response = await client.post(
            "/api/v1/auth/social-login", json={"id_token": FEDERATED_TOKEN}
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ACCOUNT_LINK_BLOCKED"


# ===================================================================
# Session tokens
# ===================================================================


class TestRefresh:
    """Tests for POST /api/v1/auth/refresh."""

    async def test_refresh_issues_new_pair(self, client, stack):
        stack.add_verified_user()
        tokens = await sign_in(client)

        response = await client.post(
            "/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
        )

        assert response.status_code == 200
        fresh = response.json()["data"]["tokens"]
        assert fresh["access_token"] != tokens["access_token"]

    async def test_access_token_cannot_refresh(self, client, stack):
        stack.add_verified_user()
        tokens = await sign_in(client)

        response = await client.post(
            "/api/v1/auth/refresh", json={"refresh_token": tokens["access_token"]}
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_SESSION"

    async def test_deactivated_account_cannot_refresh(self, client, stack):
        stack.add_verified_user()
        tokens = await sign_in(client)
        await client.post(
            "/api/v1/auth/deactivate", headers=_bearer(tokens["access_token"])
        )

        response = await client.post(
            "/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "ACCOUNT_INACTIVE"


class TestVerifyToken:
    """Tests for POST /api/v1/auth/verify-token."""

    async def test_valid_access_token(self, client, stack):
        user = stack.add_verified_user()
        tokens = await sign_in(client)

        response = await client.post(
            "/api/v1/auth/verify-token", headers=_bearer(tokens["access_token"])
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["valid"] is True
        assert data["user_id"] == str(user.id)
        assert data["role"] == "CONSUMER"

    async def test_refresh_token_is_rejected(self, client, stack):
        stack.add_verified_user()
        tokens = await sign_in(client)

        response = await client.post(
            "/api/v1/auth/verify-token", headers=_bearer(tokens["refresh_token"])
        )

        assert response.status_code == 401

    @pytest.mark.parametrize(
        "headers", [{}, {"Authorization": "Basic abc"}, {"Authorization": "Bearer "}]
    )
    async def test_missing_bearer_credential(self, client, headers):
        response = await client.post("/api/v1/auth/verify-token", headers=headers)

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"


# ===================================================================
# Authenticated account endpoints
# ===================================================================


class TestMe:
    """Tests for GET /api/v1/auth/me."""

    async def test_returns_current_user(self, client, stack):
        stack.add_verified_user(name="Casey")
        tokens = await sign_in(client)

        response = await client.get(
            "/api/v1/auth/me", headers=_bearer(tokens["access_token"])
        )

        assert response.status_code == 200
        assert response.json()["data"]["name"] == "Casey"


class TestChangePassword:
    """Tests for POST /api/v1/auth/change-password."""

    async def test_changes_password(self, client, stack):
        stack.add_verified_user()
        tokens = await sign_in(client)

        response = await client.post(
            "/api/v1/auth/change-password",
            headers=_bearer(tokens["access_token"]),
            json={"current_password": TEST_PASSWORD, "new_password": _NEW_PASSWORD},
        )

        assert response.status_code == 200
        login = await client.post(
            "/api/v1/auth/login",
            json={"email": "user@example.com", "password": _NEW_PASSWORD},
        )
        assert login.status_code == 200

    async def test_wrong_current_password(self, client, stack):
        stack.add_verified_user()
        tokens = await sign_in(client)

        response = await client.post(
            "/api/v1/auth/change-password",
            headers=_bearer(tokens["access_token"]),
            json={"current_password": "Wr0ng#pass", "new_password": _NEW_PASSWORD},
        )

        assert response.status_code == 401


class TestHealth:
    """Tests for GET /health."""

    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}
        assert response.headers["X-Content-Type-Options"] == "nosniff"

    async def test_no_hsts_outside_production(self, client):
        response = await client.get("/health")

        assert "Strict-Transport-Security" not in response.headers

    async def test_hsts_follows_the_app_config(self):
        app = create_app(
            config=make_test_settings(
                environment="production",
                database_password="s3cure",  # nosec B106
            )
        )

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            response = await ac.get("/health")

        assert response.headers["Strict-Transport-Security"] == (
            "max-age=31536000; includeSubDomains"
        )
