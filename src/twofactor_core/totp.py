"""TOTP (Time-based One-Time Password) validation.

RFC 6238 codes as produced by any authenticator app (Google Authenticator,
Microsoft Authenticator, Authy, 1Password, FreeOTP). Uses pyotp internally.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import re
from typing import TYPE_CHECKING, Any

import pyotp

from .config import TotpConfig
from .exceptions import ValidationError

if TYPE_CHECKING:
    from datetime import datetime

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_BASE32 = re.compile(r"^[A-Z2-7]+=*$")

_DIGESTS: dict[str, Any] = {
    "SHA1": hashlib.sha1,
    "SHA256": hashlib.sha256,
    "SHA512": hashlib.sha512,
}

MIN_SECRET_LENGTH = 16
MAX_SECRET_LENGTH = 128


class TotpValidator:
    """Stateless TOTP validator.

    Accepts a code when it matches any time step in
    ``[current - window, current + window]``. The reference time is always
    passed in, so callers decide which clock counts.

    Example:
        ```python
        validator = TotpValidator(TotpConfig(window=2))
        code = validator.normalize(" 123 456 ")
        if validator.verify(code, secret, clock.now()):
            ...
        ```
    """

    def __init__(self, config: TotpConfig | None = None) -> None:
        self.config = config or TotpConfig()
        self._code_pattern = re.compile(rf"^[0-9]{{{self.config.digits}}}$")

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(
            secret,
            digits=self.config.digits,
            interval=self.config.step_seconds,
            digest=_DIGESTS[self.config.algorithm],
        )

    def normalize(self, code: str) -> str:
        """Strip whitespace and check the code format.

        Args:
            code: Raw user input.

        Returns:
            The code without whitespace.

        Raises:
            ValidationError: If the code is not exactly ``digits`` ASCII digits.
        """
        normalized = _WHITESPACE.sub("", code or "")
        if not self._code_pattern.match(normalized):
            raise ValidationError(
                f"Invalid token format. Must be {self.config.digits} digits."
            )
        return normalized

    def verify(self, code: str, secret: str, reference_time: datetime) -> bool:
        """Verify a normalized code against a secret.

        Args:
            code: Normalized code (see ``normalize``).
            secret: Base32 secret.
            reference_time: Timezone-aware instant to verify at.

        Returns:
            True if the code matches within the configured window. A secret
            that cannot be decoded never matches.
        """
        try:
            return bool(
                self._totp(secret).verify(
                    code, for_time=reference_time, valid_window=self.config.window
                )
            )
        except (ValueError, TypeError):
            logger.warning("TOTP verification failed: stored secret is malformed")
            return False

    def code_at(self, secret: str, reference_time: datetime) -> str:
        """Return the code for the time step containing ``reference_time``.

        For tests and operator tooling; never expose it to end users.
        """
        return str(self._totp(secret).at(reference_time))

    def provisioning_uri(self, secret: str, account_label: str) -> str:
        """Build the ``otpauth://totp/`` URI for authenticator apps."""
        return str(
            self._totp(secret).provisioning_uri(
                name=account_label, issuer_name=self.config.issuer
            )
        )

    @staticmethod
    def is_valid_secret(secret: str | None) -> bool:
        """Check that a secret is well-formed base32 of acceptable length."""
        if not secret or not isinstance(secret, str):
            return False
        if not MIN_SECRET_LENGTH <= len(secret) <= MAX_SECRET_LENGTH:
            return False
        if not _BASE32.match(secret):
            return False
        padded = secret.rstrip("=")
        padded += "=" * (-len(padded) % 8)
        try:
            base64.b32decode(padded)
        except binascii.Error:
            return False
        return True


__all__: list[str] = ["TotpValidator"]
