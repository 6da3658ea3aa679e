"""twofactor-core

Two-factor authentication verification: RFC 6238 TOTP, hashed single-use
backup codes and a per-method rate limiter with lockout, composed into one
verification protocol.

Usage:
    ```python
    from twofactor_core import (
        TwoFactorService,
        TwoFactorConfig,
        InMemoryCredentialStore,
        InMemoryBackupCodeRepository,
        InMemoryRateLimitStore,
        InvalidCodeError,
        RateLimitedError,
    )

    service = TwoFactorService(
        InMemoryCredentialStore(),
        InMemoryBackupCodeRepository(),
        InMemoryRateLimitStore(),
        config=TwoFactorConfig.from_env(),
    )

    try:
        result = await service.verify("user-123", code, client_ip=ip)
    except RateLimitedError as e:
        print(f"Locked, retry in {e.retry_after_seconds}s")
    except InvalidCodeError:
        print("Invalid verification code")
    ```

Submodules:
    - `sqlalchemy`: SQLAlchemy asyncio store adapters
    - `qr`: QR rendering of provisioning URIs
    - `metrics`: Prometheus counters
"""

from __future__ import annotations

from .backup_codes import BackupCodeStore
from .clock import FrozenClock, SystemClock
from .config import BackupCodeConfig, RateLimitConfig, TotpConfig, TwoFactorConfig
from .coordinator import VerificationCoordinator
from .exceptions import (
    AlreadyEnabledError,
    CredentialStateError,
    InvalidCodeError,
    NotEnabledError,
    NotProvisionedError,
    RateLimitedError,
    StoreUnavailableError,
    TwoFactorError,
    ValidationError,
    VerificationError,
)
from .hashing import BackupCodeHasher
from .memory import (
    InMemoryBackupCodeRepository,
    InMemoryCredentialStore,
    InMemoryRateLimitStore,
)
from .models import (
    BACKUP_ACTION,
    TOTP_ACTION,
    BackupCode,
    BackupCodesInfo,
    ProvisioningResult,
    RateLimitInfo,
    RateLimitRecord,
    TwoFactorCredential,
    TwoFactorStatus,
    VerificationContext,
    VerificationMethod,
    VerificationResult,
    rate_limit_key,
)
from .ports import IBackupCodeRepository, IClock, ICredentialStore, IRateLimitStore
from .provisioning import SecretManager
from .rate_limit import RateLimiter
from .service import TwoFactorService
from .totp import TotpValidator

__all__ = [
    # Service
    "TwoFactorService",
    "VerificationCoordinator",
    "SecretManager",
    "TotpValidator",
    "BackupCodeStore",
    "BackupCodeHasher",
    "RateLimiter",
    # Configuration
    "TwoFactorConfig",
    "TotpConfig",
    "BackupCodeConfig",
    "RateLimitConfig",
    # Clock
    "SystemClock",
    "FrozenClock",
    # Models
    "TwoFactorCredential",
    "BackupCode",
    "RateLimitRecord",
    "VerificationContext",
    "VerificationMethod",
    "VerificationResult",
    "RateLimitInfo",
    "BackupCodesInfo",
    "ProvisioningResult",
    "TwoFactorStatus",
    "TOTP_ACTION",
    "BACKUP_ACTION",
    "rate_limit_key",
    # Ports
    "IClock",
    "ICredentialStore",
    "IBackupCodeRepository",
    "IRateLimitStore",
    # In-memory adapters
    "InMemoryCredentialStore",
    "InMemoryBackupCodeRepository",
    "InMemoryRateLimitStore",
    # Exceptions
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
