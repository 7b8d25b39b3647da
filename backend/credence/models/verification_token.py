"""Verification token model - hashed single-use codes.

One row per issued email-verification or password-reset code. Only the
SHA-256 hash of the code is stored. Rows are never deleted on use; they
are marked used, which is terminal.
"""

import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, String, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from credence.models.base import Base

if TYPE_CHECKING:
    from credence.models.user import User


class VerificationMethod(str, enum.Enum):
    """What a verification code authorizes."""

    EMAIL_VERIFICATION = "EMAIL_VERIFICATION"
    PASSWORD_RESET = "PASSWORD_RESET"


class VerificationToken(Base):
    """Issued verification code (hash only).

    Attributes:
        id: UUID primary key.
        user_id: Owning user.
        token_hash: SHA-256 hex digest of the plaintext code.
        method: What the code authorizes.
        expires_at: Code is dead after this instant.
        is_used: Terminal once true.
        used_at: When the code was consumed or invalidated.
        created_at: Issue time (drives the per-account issuance cap).
    """

    __tablename__ = "verification_tokens"
    __table_args__ = (
        Index(
            "idx_verification_tokens_lookup",
            "user_id",
            "method",
            "token_hash",
        ),
        Index(
            "idx_verification_tokens_issued",
            "user_id",
            "method",
            "created_at",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    token_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )
    method: Mapped[VerificationMethod] = mapped_column(
        Enum(VerificationMethod, name="verification_method", native_enum=False, length=32),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    is_used: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    used_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    user: Mapped["User"] = relationship("User", back_populates="verification_tokens")
