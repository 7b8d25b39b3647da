"""Tests for the verification code endpoints.

Security: request endpoints must answer identically for unknown and known
accounts; redeem endpoints must collapse every failure cause.
"""

from credence.core.auth import hash_secret
from tests.conftest import TEST_PASSWORD
from tests.unit.conftest import sign_in

_NEW_PASSWORD = "Rt5$wNc8yQ@j"  # nosec B105
_CODE_SENT = "If an eligible account exists, a code has been sent."


def _code_from(message) -> str:
    """Pull the code off the first line of a delivered message."""
    return message.text.split("\n")[0].split()[-1]


class TestRequestEmailCode:
    """Tests for POST /api/v1/auth/email/request-code."""

    async def test_unverified_account_gets_a_code(self, client, stack):
        stack.users.add("new@example.com")

        response = await client.post(
            "/api/v1/auth/email/request-code", json={"email": "new@example.com"}
        )

        assert response.status_code == 200
        assert response.json()["data"]["message"] == _CODE_SENT
        [(destination, message)] = stack.notifier.sent
        assert destination == "new@example.com"
        assert stack.tokens.tokens[0].token_hash == hash_secret(_code_from(message))

    async def test_unknown_and_verified_accounts_look_the_same(self, client, stack):
        stack.add_verified_user()

        unknown = await client.post(
            "/api/v1/auth/email/request-code", json={"email": "ghost@example.com"}
        )
        verified = await client.post(
            "/api/v1/auth/email/request-code", json={"email": "user@example.com"}
        )

        assert unknown.status_code == verified.status_code == 200
        assert unknown.json() == verified.json()
        assert stack.notifier.sent == []


class TestVerifyEmail:
    """Tests for POST /api/v1/auth/email/verify."""

    async def test_code_verifies_email_once(self, client, stack):
        register = await client.post(
            "/api/v1/auth/register",
            json={"email": "new@example.com", "password": TEST_PASSWORD},
        )
        assert register.status_code == 201
        code = _code_from(stack.notifier.sent[0][1])

        first = await client.post(
            "/api/v1/auth/email/verify",
            json={"email": "new@example.com", "code": code},
        )
        second = await client.post(
            "/api/v1/auth/email/verify",
            json={"email": "new@example.com", "code": code},
        )

        assert first.status_code == 200
        assert first.json()["data"]["is_verified"] is True
        assert second.status_code == 400
        assert second.json()["error"]["code"] == "INVALID_OR_EXPIRED_CODE"
        await sign_in(client, "new@example.com")

    async def test_failures_share_one_response(self, client, stack):
        stack.users.add("new@example.com")

        unknown_email = await client.post(
            "/api/v1/auth/email/verify",
            json={"email": "ghost@example.com", "code": "123456"},
        )
        malformed = await client.post(
            "/api/v1/auth/email/verify",
            json={"email": "new@example.com", "code": "12"},
        )

        assert unknown_email.status_code == malformed.status_code == 400
        assert unknown_email.json() == malformed.json()


class TestPasswordReset:
    """Tests for the password reset endpoints."""

    async def test_full_reset_flow(self, client, stack):
        stack.add_verified_user()

        requested = await client.post(
            "/api/v1/auth/password-reset/request", json={"email": "user@example.com"}
        )
        assert requested.json()["data"]["message"] == _CODE_SENT
        [(_, message)] = stack.notifier.sent
        assert message.subject == "Reset your password"

        completed = await client.post(
            "/api/v1/auth/password-reset/complete",
            json={
                "email": "user@example.com",
                "code": _code_from(message),
                "new_password": _NEW_PASSWORD,
            },
        )
        assert completed.status_code == 200

        old = await client.post(
            "/api/v1/auth/login",
            json={"email": "user@example.com", "password": TEST_PASSWORD},
        )
        new = await client.post(
            "/api/v1/auth/login",
            json={"email": "user@example.com", "password": _NEW_PASSWORD},
        )
        assert old.status_code == 401
        assert new.status_code == 200

    async def test_unknown_email_sends_nothing(self, client, stack):
        response = await client.post(
            "/api/v1/auth/password-reset/request", json={"email": "ghost@example.com"}
        )

        assert response.status_code == 200
        assert response.json()["data"]["message"] == _CODE_SENT
        assert stack.notifier.sent == []
        stack.session.commit.assert_not_awaited()

    async def test_weak_new_password(self, client, stack):
        stack.add_verified_user()
        await client.post(
            "/api/v1/auth/password-reset/request", json={"email": "user@example.com"}
        )
        code = _code_from(stack.notifier.sent[0][1])

        response = await client.post(
            "/api/v1/auth/password-reset/complete",
            json={"email": "user@example.com", "code": code, "new_password": "short"},
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "WEAK_PASSWORD"

    async def test_request_is_throttled_per_client(self, client):
        for _ in range(3):
            await client.post(
                "/api/v1/auth/password-reset/request",
                json={"email": "ghost@example.com"},
            )

        response = await client.post(
            "/api/v1/auth/password-reset/request", json={"email": "ghost@example.com"}
        )

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "3600"
