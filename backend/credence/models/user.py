"""User model - identity record.

Owned by identity reconciliation for creation and merge. Mutated by the
token issuer path (last_login_at) and the verification code flows
(is_verified, password_hash).
"""

import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Enum, Index, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from credence.models.base import Base, SoftDeleteMixin, TimestampMixin

if TYPE_CHECKING:
    from credence.models.verification_token import VerificationToken

_DEFAULT_UUID = text("gen_random_uuid()")


class UserRole(str, enum.Enum):
    """Account role carried in access tokens."""

    CONSUMER = "CONSUMER"
    DRIVER = "DRIVER"
    MERCHANT = "MERCHANT"
    ADMIN = "ADMIN"


class User(Base, TimestampMixin, SoftDeleteMixin):
    """User account for authentication.

    Attributes:
        id: UUID primary key.
        email: Lower-cased email, unique among non-deleted rows.
        password_hash: bcrypt hash. NULL for federated-only users.
        role: Account role.
        is_verified: Whether the email address has been proven.
        is_active: False once the account is deactivated.
        name: Display name.
        phone: Phone number.
        picture: Profile picture URL.
        provider_user_id: Subject id asserted by the federated provider.
        last_login_at: Last successful sign-in.
        deleted_at: Soft delete marker (from SoftDeleteMixin).
        created_at: Account creation timestamp (from TimestampMixin).
        updated_at: Last modification timestamp (from TimestampMixin).
    """

    __tablename__ = "users"
    __table_args__ = (
        # Email is unique among live rows only; a deleted account's email
        # may be registered again.
        Index(
            "uq_users_email_live",
            "email",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    password_hash: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role", native_enum=False, length=20),
        nullable=False,
        default=UserRole.CONSUMER,
        server_default=UserRole.CONSUMER.value,
    )
    is_verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    phone: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
    )
    picture: Mapped[str | None] = mapped_column(
        Text(),
        nullable=True,
    )
    provider_user_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    last_login_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )

    verification_tokens: Mapped[list["VerificationToken"]] = relationship(
        "VerificationToken",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_usable(self) -> bool:
        """Whether the account may receive new sessions.

        Returns:
            True if active and not soft deleted.
        """
        return self.is_active and self.deleted_at is None
