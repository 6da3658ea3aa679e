"""Two-factor verification errors.

All errors inherit from TwoFactorError. Everything except
StoreUnavailableError is an expected condition that callers surface to the
user (re-prompt, show remaining lockout time). StoreUnavailableError is an
infrastructure failure and is folded into InvalidCodeError by the
verification coordinator.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

# ═══════════════════════════════════════════════════════════════
# BASE ERROR
# ═══════════════════════════════════════════════════════════════


class TwoFactorError(Exception):
    """Root exception for the twofactor-core package."""


class ValidationError(TwoFactorError):
    """Raised when a submitted code is malformed.

    Never counted against rate limits. Carries structured errors:
    ``{field: [messages]}``.
    """

    def __init__(self, errors: dict[str, list[str]] | str | None = None) -> None:
        if isinstance(errors, str):
            self.errors: dict[str, list[str]] = {"code": [errors]}
        elif errors is None:
            self.errors = {}
        else:
            self.errors = errors
        super().__init__(str(self.errors))


# ═══════════════════════════════════════════════════════════════
# CREDENTIAL STATE ERRORS
# ═══════════════════════════════════════════════════════════════


class CredentialStateError(TwoFactorError):
    """Base class for operations invalid in the credential's current state."""


class AlreadyEnabledError(CredentialStateError):
    """Raised when provisioning or enabling a credential that is already enabled."""

    def __init__(self, message: str = "2FA is already enabled for this user") -> None:
        super().__init__(message)


class NotEnabledError(CredentialStateError):
    """Raised when an operation requires 2FA to be enabled."""

    def __init__(self, message: str = "2FA is not enabled for this user") -> None:
        super().__init__(message)


class NotProvisionedError(CredentialStateError):
    """Raised when no TOTP secret has been provisioned for the user."""

    def __init__(
        self, message: str = "2FA setup not completed. Provision a secret first."
    ) -> None:
        super().__init__(message)


# ═══════════════════════════════════════════════════════════════
# VERIFICATION ERRORS
# ═══════════════════════════════════════════════════════════════


class VerificationError(TwoFactorError):
    """Base class for rejected verification attempts."""


class RateLimitedError(VerificationError):
    """Raised when too many failed attempts locked out a verification method.

    Attributes:
        retry_after_seconds: Seconds until the lockout expires.
        locked_until: UTC instant at which the lockout expires.
        action: Rate-limit action that is locked (``2fa_totp`` / ``2fa_backup``).
    """

    def __init__(
        self,
        retry_after_seconds: int,
        *,
        locked_until: datetime | None = None,
        action: str | None = None,
    ) -> None:
        minutes = max(1, -(-retry_after_seconds // 60))
        super().__init__(f"Too many attempts. Try again in {minutes} minutes.")
        self.retry_after_seconds = retry_after_seconds
        self.locked_until = locked_until
        self.action = action


class InvalidCodeError(VerificationError):
    """Raised when a code is rejected.

    Covers wrong TOTP codes, wrong backup codes and store outages alike so
    callers cannot tell which method almost matched.
    """

    def __init__(self, message: str = "Invalid verification code") -> None:
        super().__init__(message)


# ═══════════════════════════════════════════════════════════════
# INFRASTRUCTURE ERRORS
# ═══════════════════════════════════════════════════════════════


class StoreUnavailableError(TwoFactorError):
    """Raised by store adapters when the persistent store fails or times out."""


__all__: list[str] = [
    "TwoFactorError",
    "ValidationError",
    "CredentialStateError",
    "AlreadyEnabledError",
    "NotEnabledError",
    "NotProvisionedError",
    "VerificationError",
    "RateLimitedError",
    "InvalidCodeError",
    "StoreUnavailableError",
]
