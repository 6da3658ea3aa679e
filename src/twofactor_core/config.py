"""Configuration for TOTP, backup codes and rate limiting.

Defaults follow RFC 6238 and the lockout policy of the auth service:
6 digits, 30 second steps, ±2 steps of skew, 10 backup codes hashed with
bcrypt (12 rounds), 5 failed attempts per 15 minute window, 15 minute lockout.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Literal

TotpAlgorithm = Literal["SHA1", "SHA256", "SHA512"]
HashAlgorithm = Literal["bcrypt", "argon2id"]

ENV_PREFIX = "TWOFACTOR_"


@dataclass(frozen=True)
class TotpConfig:
    """TOTP configuration.

    Attributes:
        issuer: Application name shown in authenticator apps.
        digits: Number of digits in a code.
        step_seconds: Length of one time step.
        window: Accepted skew in steps on either side of the current step.
        algorithm: HMAC digest.
        secret_bytes: Entropy of generated secrets in bytes.
    """

    issuer: str = "MyApp"
    digits: int = 6
    step_seconds: int = 30
    window: int = 2
    algorithm: TotpAlgorithm = "SHA1"
    secret_bytes: int = 32

    def __post_init__(self) -> None:
        if not self.issuer or ":" in self.issuer:
            raise ValueError("issuer must be non-empty and must not contain ':'")
        if not 6 <= self.digits <= 10:
            raise ValueError("digits must be between 6 and 10")
        if self.step_seconds <= 0:
            raise ValueError("step_seconds must be positive")
        if self.window < 0:
            raise ValueError("window must not be negative")
        if self.algorithm not in ("SHA1", "SHA256", "SHA512"):
            raise ValueError(f"Unsupported TOTP algorithm: {self.algorithm}")
        # RFC 4226 requires at least 128 bits, recommends 160
        if self.secret_bytes < 20:
            raise ValueError("secret_bytes must be at least 20")


@dataclass(frozen=True)
class BackupCodeConfig:
    """Backup code configuration.

    Attributes:
        count: Codes per provisioning or regeneration batch.
        length: Digits per code.
        hash_algorithm: One-way hash used for storage.
        hash_rounds: bcrypt cost factor.
    """

    count: int = 10
    length: int = 6
    hash_algorithm: HashAlgorithm = "bcrypt"
    hash_rounds: int = 12

    def __post_init__(self) -> None:
        if self.count <= 0:
            raise ValueError("count must be positive")
        if self.length < 6:
            raise ValueError("length must be at least 6")
        # A batch of unique codes must fit in the code space
        if self.count > 10**self.length // 2:
            raise ValueError("count is too large for the code length")
        if self.hash_algorithm not in ("bcrypt", "argon2id"):
            raise ValueError(f"Unsupported hash algorithm: {self.hash_algorithm}")
        if not 4 <= self.hash_rounds <= 31:
            raise ValueError("hash_rounds must be between 4 and 31")


@dataclass(frozen=True)
class RateLimitConfig:
    """Failed-attempt limits for one verification method.

    Attributes:
        max_attempts: Failures within the window that trigger a lockout.
        window_seconds: Trailing window over which failures are counted.
        lockout_seconds: Lockout length, measured from the oldest counted failure.
    """

    max_attempts: int = 5
    window_seconds: int = 900
    lockout_seconds: int = 900

    def __post_init__(self) -> None:
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if self.lockout_seconds <= 0:
            raise ValueError("lockout_seconds must be positive")


@dataclass(frozen=True)
class TwoFactorConfig:
    """Complete two-factor configuration."""

    totp: TotpConfig = field(default_factory=TotpConfig)
    backup_codes: BackupCodeConfig = field(default_factory=BackupCodeConfig)
    totp_rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    backup_rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> TwoFactorConfig:
        """Build a configuration from ``TWOFACTOR_*`` environment variables.

        Unset variables keep their defaults. Durations are in seconds.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``).

        Raises:
            ValueError: If a variable holds an invalid value.
        """
        env = os.environ if environ is None else environ

        def _str(name: str, default: str) -> str:
            return env.get(ENV_PREFIX + name, default)

        def _int(name: str, default: int) -> int:
            raw = env.get(ENV_PREFIX + name)
            if raw is None or raw.strip() == "":
                return default
            try:
                return int(raw)
            except ValueError as e:
                raise ValueError(f"{ENV_PREFIX}{name} must be an integer") from e

        totp = TotpConfig(
            issuer=_str("TOTP_ISSUER", TotpConfig.issuer),
            digits=_int("TOTP_DIGITS", TotpConfig.digits),
            step_seconds=_int("TOTP_STEP", TotpConfig.step_seconds),
            window=_int("TOTP_WINDOW", TotpConfig.window),
            algorithm=_str("TOTP_ALGORITHM", TotpConfig.algorithm).upper(),  # type: ignore[arg-type]
            secret_bytes=_int("TOTP_SECRET_BYTES", TotpConfig.secret_bytes),
        )
        backup_codes = BackupCodeConfig(
            count=_int("BACKUP_CODES_COUNT", BackupCodeConfig.count),
            length=_int("BACKUP_CODES_LENGTH", BackupCodeConfig.length),
            hash_algorithm=_str(  # type: ignore[arg-type]
                "BACKUP_CODES_HASH_ALGORITHM", BackupCodeConfig.hash_algorithm
            ).lower(),
            hash_rounds=_int("BACKUP_CODES_HASH_ROUNDS", BackupCodeConfig.hash_rounds),
        )
        max_attempts = _int("MAX_ATTEMPTS", RateLimitConfig.max_attempts)
        window_seconds = _int("RATE_LIMIT_WINDOW", RateLimitConfig.window_seconds)
        lockout_seconds = _int("LOCKOUT_DURATION", RateLimitConfig.lockout_seconds)
        return cls(
            totp=totp,
            backup_codes=backup_codes,
            totp_rate_limit=RateLimitConfig(
                max_attempts=max_attempts,
                window_seconds=window_seconds,
                lockout_seconds=lockout_seconds,
            ),
            backup_rate_limit=RateLimitConfig(
                max_attempts=_int("BACKUP_MAX_ATTEMPTS", max_attempts),
                window_seconds=window_seconds,
                lockout_seconds=lockout_seconds,
            ),
        )


__all__: list[str] = [
    "TotpConfig",
    "BackupCodeConfig",
    "RateLimitConfig",
    "TwoFactorConfig",
    "TotpAlgorithm",
    "HashAlgorithm",
]
