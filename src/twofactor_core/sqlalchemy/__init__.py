"""SQLAlchemy (asyncio) persistence for two-factor credentials, codes and attempts.

Requires the ``sqlalchemy`` extra: ``pip install twofactor-core[sqlalchemy]``.
"""

from __future__ import annotations

from .models import (
    Base,
    BackupCodeModel,
    RateLimitAttemptModel,
    RateLimitGuardModel,
    TwoFactorCredentialModel,
)
from .stores import (
    SQLAlchemyBackupCodeRepository,
    SQLAlchemyCredentialStore,
    SQLAlchemyRateLimitStore,
)

__all__ = [
    "Base",
    "TwoFactorCredentialModel",
    "BackupCodeModel",
    "RateLimitAttemptModel",
    "RateLimitGuardModel",
    "SQLAlchemyCredentialStore",
    "SQLAlchemyBackupCodeRepository",
    "SQLAlchemyRateLimitStore",
]
