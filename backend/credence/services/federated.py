"""Federated identity verification.

A verifier turns an opaque provider ID token into a FederatedClaim, or
fails. Which verifier runs is decided once at startup from settings:
- FirebaseIdentityVerifier: Firebase Authentication ID tokens (RS256)
- DisabledIdentityVerifier: federated login switched off
"""

import asyncio
import logging
from typing import Protocol

import jwt

from credence.core.config import Settings
from credence.core.errors import FederatedLoginDisabledError, UnauthorizedError
from credence.services.identity import FederatedClaim

logger = logging.getLogger(__name__)

_FIREBASE_JWKS_URL = (
    "https://www.googleapis.com/service_accounts/v1/jwk/"
    "securetoken@system.gserviceaccount.com"
)
_FIREBASE_ISSUER_PREFIX = "https://securetoken.google.com/"

# Seconds of clock skew tolerated on iat/exp
_LEEWAY_SECONDS = 30


class FederatedIdentityVerifier(Protocol):
    """Capability: verify a provider ID token."""

    async def verify(self, id_token: str) -> FederatedClaim: ...


class DisabledIdentityVerifier:
    """Verifier used when no identity provider is configured."""

    async def verify(self, id_token: str) -> FederatedClaim:  # noqa: ARG002
        raise FederatedLoginDisabledError()


class FirebaseIdentityVerifier:
    """Verifies Firebase ID tokens against Google's published signing keys.

    Signing keys are fetched and cached by PyJWKClient. The blocking fetch
    and decode run in a worker thread.

    Args:
        project_id: Firebase project id (the token audience).
        jwks_client: Key client override (tests).
    """

    def __init__(
        self, project_id: str, *, jwks_client: jwt.PyJWKClient | None = None
    ) -> None:
        self._project_id = project_id
        self._issuer = f"{_FIREBASE_ISSUER_PREFIX}{project_id}"
        self._jwks = jwks_client or jwt.PyJWKClient(_FIREBASE_JWKS_URL)

    def _decode(self, id_token: str) -> dict:
        signing_key = self._jwks.get_signing_key_from_jwt(id_token)
        return jwt.decode(
            id_token,
            signing_key.key,
            algorithms=["RS256"],
            audience=self._project_id,
            issuer=self._issuer,
            leeway=_LEEWAY_SECONDS,
            options={"require": ["exp", "iat", "sub", "aud", "iss"]},
        )

    async def verify(self, id_token: str) -> FederatedClaim:
        """Verify the token and extract the identity claim.

        Args:
            id_token: Firebase ID token from the client SDK.

        Returns:
            FederatedClaim.

        Raises:
            UnauthorizedError: Token is invalid or expired, or its email is
                missing or unverified.
        """
        try:
            payload = await asyncio.to_thread(self._decode, id_token)
        except jwt.PyJWKClientError:
            logger.warning("Could not load Firebase signing keys", exc_info=True)
            raise UnauthorizedError("Invalid identity token") from None
        except jwt.InvalidTokenError as exc:
            logger.info(
                "Firebase ID token rejected", extra={"error": type(exc).__name__}
            )
            raise UnauthorizedError("Invalid identity token") from None

        email = payload.get("email")
        if not email:
            raise UnauthorizedError("Identity token has no email address")
        if payload.get("email_verified") is not True:
            logger.info(
                "Firebase ID token has an unverified email",
                extra={"provider_user_id": payload["sub"]},
            )
            raise UnauthorizedError("Identity provider has not verified this email")

        return FederatedClaim(
            email=email,
            provider_user_id=payload["sub"],
            name=payload.get("name"),
            picture=payload.get("picture"),
            email_verified=True,
        )


def build_identity_verifier(settings: Settings) -> FederatedIdentityVerifier:
    """Select the verifier for the configured provider.

    Args:
        settings: Application settings.

    Returns:
        FederatedIdentityVerifier variant.
    """
    if settings.federated_provider == "firebase":
        return FirebaseIdentityVerifier(settings.firebase_project_id)
    return DisabledIdentityVerifier()
