"""Verification code endpoints: email verification and password reset.

Request endpoints always answer with the same message, whether or not a
code was sent, so they cannot be used to probe for accounts. Redeem
endpoints collapse every failure cause into "Invalid or expired code".
"""

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from credence.api.deps import Accounts, DbSession, Mailer, rate_limited
from credence.api.v1.auth import user_payload
from credence.core.notifier import password_reset_email, verification_email
from credence.core.responses import DataResponse

router = APIRouter()

_CODE_SENT_MSG = "If an eligible account exists, a code has been sent."


class CodeRequest(BaseModel):
    """Request body for the code request endpoints."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr


class EmailVerifyRequest(BaseModel):
    """Request body for POST /auth/email/verify."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    code: str = Field(min_length=1, max_length=32)


class PasswordResetCompleteRequest(BaseModel):
    """Request body for POST /auth/password-reset/complete."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    code: str = Field(min_length=1, max_length=32)
    new_password: str = Field(min_length=1, max_length=128)


@router.post("/email/request-code", dependencies=[Depends(rate_limited("otp"))])
async def request_email_code(
    body: CodeRequest,
    background_tasks: BackgroundTasks,
    db: DbSession,
    accounts: Accounts,
    mailer: Mailer,
) -> DataResponse[dict]:
    """Send a new email verification code."""
    issued = await accounts.request_email_verification(db, body.email)
    if issued is not None:
        await db.commit()
        background_tasks.add_task(
            mailer.deliver,
            issued.user.email,
            verification_email(issued.code, issued.ttl_minutes),
        )
    return DataResponse(data={"message": _CODE_SENT_MSG})


@router.post("/email/verify", dependencies=[Depends(rate_limited("otp_verify"))])
async def verify_email(
    body: EmailVerifyRequest,
    db: DbSession,
    accounts: Accounts,
) -> DataResponse[dict]:
    """Redeem an email verification code."""
    user = await accounts.confirm_email(db, body.email, body.code)
    return DataResponse(data=user_payload(user))


@router.post(
    "/password-reset/request", dependencies=[Depends(rate_limited("password_reset"))]
)
async def request_password_reset(
    body: CodeRequest,
    background_tasks: BackgroundTasks,
    db: DbSession,
    accounts: Accounts,
    mailer: Mailer,
) -> DataResponse[dict]:
    """Send a password reset code."""
    issued = await accounts.request_password_reset(db, body.email)
    if issued is not None:
        await db.commit()
        background_tasks.add_task(
            mailer.deliver,
            issued.user.email,
            password_reset_email(issued.code, issued.ttl_minutes),
        )
    return DataResponse(data={"message": _CODE_SENT_MSG})


@router.post(
    "/password-reset/complete", dependencies=[Depends(rate_limited("otp_verify"))]
)
async def complete_password_reset(
    body: PasswordResetCompleteRequest,
    db: DbSession,
    accounts: Accounts,
) -> DataResponse[dict]:
    """Set a new password with a reset code."""
    await accounts.complete_password_reset(
        db, body.email, body.code, body.new_password
    )
    return DataResponse(data={"message": "Password updated"})
