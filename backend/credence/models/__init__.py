"""SQLAlchemy ORM models for Credence.

All models are exported from this module for convenient imports:
    from credence.models import User, VerificationToken

Models:
- user.py: User, UserRole
- verification_token.py: VerificationToken, VerificationMethod
"""

from credence.models.base import Base
from credence.models.user import User, UserRole
from credence.models.verification_token import VerificationMethod, VerificationToken

__all__ = [
    "Base",
    "User",
    "UserRole",
    "VerificationMethod",
    "VerificationToken",
]
