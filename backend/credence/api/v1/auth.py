"""Authentication endpoints: registration, sign-in, and sessions.

Security considerations:
- login: one error for unknown email and wrong password, bcrypt against
  DUMMY_HASH on the unknown path so timing matches
- register: strength rules plus breach check before hashing; the first
  verification code is emailed after the commit
- refresh: re-checks the account, so deactivated users cannot renew
- every public endpoint is rate limited per client address
"""

import dataclasses

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from credence.api.deps import AccessClaims, Accounts, DbSession, Mailer, rate_limited
from credence.core.notifier import verification_email
from credence.core.responses import DataResponse
from credence.models.user import User, UserRole
from credence.services.token_issuer import TokenPair

router = APIRouter()


# ===================================================================
# Request models
# ===================================================================


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    role: UserRole = UserRole.CONSUMER
    name: str | None = Field(None, max_length=255)
    phone: str | None = Field(None, max_length=32)


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class SocialLoginRequest(BaseModel):
    """Request body for POST /auth/social-login."""

    model_config = ConfigDict(extra="forbid")

    id_token: str = Field(min_length=1, max_length=8192)


class RefreshRequest(BaseModel):
    """Request body for POST /auth/refresh."""

    model_config = ConfigDict(extra="forbid")

    refresh_token: str = Field(min_length=1, max_length=4096)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /auth/change-password."""

    model_config = ConfigDict(extra="forbid")

    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=1, max_length=128)


# ===================================================================
# Serialization
# ===================================================================


def user_payload(user: User) -> dict:
    """Public view of a user. Never includes the password hash."""
    return {
        "id": str(user.id),
        "email": user.email,
        "role": user.role.value,
        "name": user.name,
        "phone": user.phone,
        "picture": user.picture,
        "is_verified": user.is_verified,
    }


def _session_payload(user: User, tokens: TokenPair, **extra: object) -> dict:
    return {"user": user_payload(user), "tokens": dataclasses.asdict(tokens), **extra}


# ===================================================================
# POST /auth/register
# ===================================================================


@router.post(
    "/register", status_code=201, dependencies=[Depends(rate_limited("register"))]
)
async def register(
    body: RegisterRequest,
    background_tasks: BackgroundTasks,
    db: DbSession,
    accounts: Accounts,
    mailer: Mailer,
) -> DataResponse[dict]:
    """Register a new user with email + password.

    Validates the password, creates an unverified user, and emails a
    verification code.
    """
    issued = await accounts.register(
        db,
        body.email,
        body.password,
        role=body.role,
        name=body.name,
        phone=body.phone,
    )
    await db.commit()

    background_tasks.add_task(
        mailer.deliver,
        issued.user.email,
        verification_email(issued.code, issued.ttl_minutes),
    )
    return DataResponse(data=user_payload(issued.user))


# ===================================================================
# POST /auth/login, /auth/social-login
# ===================================================================


@router.post("/login", dependencies=[Depends(rate_limited("login"))])
async def login(
    body: LoginRequest,
    db: DbSession,
    accounts: Accounts,
) -> DataResponse[dict]:
    """Verify email + password and issue a token pair."""
    user, tokens = await accounts.login(db, body.email, body.password)
    return DataResponse(data=_session_payload(user, tokens))


@router.post("/social-login", dependencies=[Depends(rate_limited("login"))])
async def social_login(
    body: SocialLoginRequest,
    db: DbSession,
    accounts: Accounts,
) -> DataResponse[dict]:
    """Sign in (or sign up) with a federated identity token."""
    user, is_new, tokens = await accounts.social_login(db, body.id_token)
    return DataResponse(data=_session_payload(user, tokens, is_new_user=is_new))


# ===================================================================
# Session tokens
# ===================================================================


@router.post("/refresh", dependencies=[Depends(rate_limited("refresh"))])
async def refresh(
    body: RefreshRequest,
    db: DbSession,
    accounts: Accounts,
) -> DataResponse[dict]:
    """Exchange a refresh token for a new token pair."""
    tokens = await accounts.issuer.refresh(db, body.refresh_token)
    return DataResponse(data={"tokens": dataclasses.asdict(tokens)})


@router.post("/verify-token", dependencies=[Depends(rate_limited("verify_token"))])
async def verify_token(claims: AccessClaims) -> DataResponse[dict]:
    """Check a bearer access token and echo its claims."""
    return DataResponse(
        data={
            "valid": True,
            "user_id": str(claims.subject),
            "role": claims.role.value if claims.role else None,
            "expires_at": claims.expires_at.isoformat(),
        }
    )


# ===================================================================
# Authenticated account endpoints
# ===================================================================


@router.get("/me")
async def me(
    claims: AccessClaims,
    db: DbSession,
    accounts: Accounts,
) -> DataResponse[dict]:
    """Return the signed-in user."""
    user = await accounts.identity.resolve_active_subject(db, claims.subject)
    return DataResponse(data=user_payload(user))


@router.post("/change-password", dependencies=[Depends(rate_limited("login"))])
async def change_password(
    body: ChangePasswordRequest,
    claims: AccessClaims,
    db: DbSession,
    accounts: Accounts,
) -> DataResponse[dict]:
    """Change password after confirming the current one."""
    await accounts.change_password(
        db, claims.subject, body.current_password, body.new_password
    )
    return DataResponse(data={"message": "Password updated"})


@router.post("/deactivate")
async def deactivate(
    claims: AccessClaims,
    db: DbSession,
    accounts: Accounts,
) -> DataResponse[dict]:
    """Deactivate (soft delete) the signed-in account."""
    await accounts.deactivate(db, claims.subject)
    return DataResponse(data={"message": "Account deactivated"})
