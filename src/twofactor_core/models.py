"""Entities and value objects of the two-factor core."""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum

# Rate-limit actions partition independent counters per user
TOTP_ACTION = "2fa_totp"
BACKUP_ACTION = "2fa_backup"

USER_AGENT_MAX_LENGTH = 255


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VerificationMethod(str, Enum):
    """Second factor that produced a successful verification."""

    TOTP = "totp"
    BACKUP_CODE = "backup_code"

    @property
    def action(self) -> str:
        """Rate-limit action guarding this method."""
        return TOTP_ACTION if self is VerificationMethod.TOTP else BACKUP_ACTION


def rate_limit_key(user_id: str, action: str) -> str:
    """Build the rate-limit key for a (user, action) pair."""
    return f"{user_id}:{action}"


# ═══════════════════════════════════════════════════════════════
# PERSISTED ENTITIES
# ═══════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class TwoFactorCredential:
    """A user's TOTP credential.

    Created provisioned-but-disabled; enabled after one successful TOTP
    confirmation. At most one per user.

    Attributes:
        user_id: Owning user.
        secret: Base32 TOTP secret (None once wiped).
        enabled: Whether 2FA is active for the user.
        created_at: When the secret was provisioned.
        enabled_at: When the credential was confirmed.
    """

    user_id: str
    secret: str | None
    enabled: bool = False
    created_at: datetime = field(default_factory=_utcnow)
    enabled_at: datetime | None = None

    @property
    def is_provisioned(self) -> bool:
        return bool(self.secret)

    def mark_enabled(self, at: datetime) -> TwoFactorCredential:
        return replace(self, enabled=True, enabled_at=at)


@dataclass(frozen=True)
class BackupCode:
    """A hashed single-use backup code.

    The plaintext code is never stored; only ``code_hash``.
    """

    user_id: str
    code_hash: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    is_used: bool = False
    used_at: datetime | None = None
    created_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class RateLimitRecord:
    """One failed (or in-flight) verification attempt.

    Append-only. Records older than the rate-limit window are ignored.
    """

    key: str
    timestamp: datetime
    client_ip: str | None = None
    user_agent: str | None = None

    def __post_init__(self) -> None:
        if self.user_agent is not None and len(self.user_agent) > USER_AGENT_MAX_LENGTH:
            object.__setattr__(
                self, "user_agent", self.user_agent[:USER_AGENT_MAX_LENGTH]
            )


# ═══════════════════════════════════════════════════════════════
# VALUE OBJECTS
# ═══════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class VerificationContext:
    """Request metadata recorded with failed attempts."""

    client_ip: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a verification. Never persisted."""

    is_valid: bool
    method: VerificationMethod | None = None
    backup_code_used: bool = False

    @classmethod
    def invalid(cls) -> VerificationResult:
        return cls(is_valid=False)

    @classmethod
    def totp(cls) -> VerificationResult:
        return cls(is_valid=True, method=VerificationMethod.TOTP)

    @classmethod
    def backup_code(cls) -> VerificationResult:
        return cls(
            is_valid=True,
            method=VerificationMethod.BACKUP_CODE,
            backup_code_used=True,
        )


@dataclass(frozen=True)
class RateLimitInfo:
    """Rate-limit state of one key.

    Attributes:
        attempts: Failed attempts counted in the current window.
        is_locked: Whether further attempts are rejected.
        locked_until: When the lockout expires (only set while locked).
        remaining_attempts: Attempts left before lockout.
    """

    attempts: int
    is_locked: bool
    remaining_attempts: int
    locked_until: datetime | None = None

    def retry_after_seconds(self, now: datetime) -> int:
        """Whole seconds until the lockout expires (0 when not locked)."""
        if not self.is_locked or self.locked_until is None:
            return 0
        return max(0, math.ceil((self.locked_until - now).total_seconds()))


@dataclass(frozen=True)
class WindowStats:
    """Count and oldest timestamp of in-window rate-limit records."""

    count: int
    oldest: datetime | None = None


@dataclass(frozen=True)
class BackupCodesInfo:
    """Backup code counts for a user. Never exposes code values."""

    total: int
    used: int

    @property
    def remaining(self) -> int:
        return self.total - self.used


@dataclass(frozen=True)
class ProvisioningResult:
    """Data returned once when provisioning a credential.

    Attributes:
        secret: Base32 TOTP secret.
        provisioning_uri: ``otpauth://totp/...`` URI for authenticator apps.
        backup_codes: Plaintext backup codes, shown to the user once.
        manual_key: Secret grouped in blocks of four for manual entry.
    """

    secret: str
    provisioning_uri: str
    backup_codes: list[str]
    manual_key: str

    def __repr__(self) -> str:
        return (
            f"ProvisioningResult(provisioning_uri=<redacted>, "
            f"backup_codes=<{len(self.backup_codes)} codes>)"
        )


@dataclass(frozen=True)
class TwoFactorStatus:
    """2FA status of a user."""

    enabled: bool
    backup_codes: BackupCodesInfo | None = None
    totp_attempts: int = 0
    backup_attempts: int = 0


__all__: list[str] = [
    "TOTP_ACTION",
    "BACKUP_ACTION",
    "VerificationMethod",
    "rate_limit_key",
    "TwoFactorCredential",
    "BackupCode",
    "RateLimitRecord",
    "VerificationContext",
    "VerificationResult",
    "RateLimitInfo",
    "WindowStats",
    "BackupCodesInfo",
    "ProvisioningResult",
    "TwoFactorStatus",
]
