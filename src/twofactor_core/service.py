"""Two-factor service facade.

The entry points an authentication service calls: provisioning, enabling,
verifying, status, backup code regeneration and disabling. Wires the
secret manager, backup code store, rate limiters and coordinator from one
``TwoFactorConfig``.
"""

from __future__ import annotations

import logging
from typing import Literal

from .backup_codes import BackupCodeStore
from .clock import SystemClock
from .config import TwoFactorConfig
from .coordinator import VerificationCoordinator
from .exceptions import (
    AlreadyEnabledError,
    InvalidCodeError,
    NotEnabledError,
    NotProvisionedError,
    StoreUnavailableError,
)
from .hashing import BackupCodeHasher
from .metrics import TwoFactorMetrics
from .models import (
    BACKUP_ACTION,
    TOTP_ACTION,
    ProvisioningResult,
    RateLimitInfo,
    TwoFactorCredential,
    TwoFactorStatus,
    VerificationContext,
    VerificationResult,
    rate_limit_key,
)
from .ports import IBackupCodeRepository, IClock, ICredentialStore, IRateLimitStore
from .provisioning import SecretManager
from .rate_limit import RateLimiter
from .totp import TotpValidator

logger = logging.getLogger(__name__)

Method = Literal["totp", "backup_code"]


class TwoFactorService:
    """Entry points of the two-factor core.

    Privileged actions (``regenerate_backup_codes``, ``disable``) expect the
    caller to have passed ``verify`` for the same request.

    Example:
        ```python
        service = TwoFactorService(
            credentials=InMemoryCredentialStore(),
            backup_codes=InMemoryBackupCodeRepository(),
            rate_limits=InMemoryRateLimitStore(),
            config=TwoFactorConfig.from_env(),
        )

        setup = await service.provision("user-123", "alice@example.com")
        await service.confirm_enable("user-123", code_from_app)

        result = await service.verify("user-123", code, client_ip="10.0.0.1")
        ```
    """

    def __init__(
        self,
        credentials: ICredentialStore,
        backup_codes: IBackupCodeRepository,
        rate_limits: IRateLimitStore,
        *,
        config: TwoFactorConfig | None = None,
        clock: IClock | None = None,
        hasher: BackupCodeHasher | None = None,
    ) -> None:
        self.config = config or TwoFactorConfig()
        self.clock = clock or SystemClock()
        self.credentials = credentials

        self.secret_manager = SecretManager(
            credentials,
            backup_codes,
            totp_config=self.config.totp,
            backup_config=self.config.backup_codes,
            hasher=hasher,
            clock=self.clock,
        )
        self.backup_code_store = BackupCodeStore(
            backup_codes,
            credentials,
            self.secret_manager,
            clock=self.clock,
        )
        self.totp_limiter = RateLimiter(
            rate_limits, self.config.totp_rate_limit, clock=self.clock
        )
        self.backup_limiter = RateLimiter(
            rate_limits, self.config.backup_rate_limit, clock=self.clock
        )
        self.validator = TotpValidator(self.config.totp)
        self.coordinator = VerificationCoordinator(
            self.validator,
            self.backup_code_store,
            self.totp_limiter,
            self.backup_limiter,
            backup_code_length=self.config.backup_codes.length,
            clock=self.clock,
        )
        self._backup_codes = backup_codes

    async def provision(self, user_id: str, label: str) -> ProvisioningResult:
        """Provision a secret and backup codes (credential stays disabled).

        Raises:
            AlreadyEnabledError: If 2FA is already enabled.
        """
        return await self.secret_manager.provision(user_id, label)

    async def confirm_enable(
        self,
        user_id: str,
        code: str,
        context: VerificationContext | None = None,
    ) -> None:
        """Enable 2FA after the user proves the authenticator app works.

        Only a TOTP code is accepted here.

        Raises:
            NotProvisionedError: If no secret was provisioned.
            AlreadyEnabledError: If 2FA is already enabled.
            ValidationError, RateLimitedError, InvalidCodeError: From verification.
        """
        credential = await self._load_for_verification(user_id)
        if credential is None or not credential.is_provisioned:
            raise NotProvisionedError()
        if credential.enabled:
            raise AlreadyEnabledError()

        await self.coordinator.verify(
            user_id,
            code,
            credential,
            context,
            allow_backup_code=False,
            flow="enable",
        )
        await self.credentials.save(credential.mark_enabled(self.clock.now()))
        logger.info("2FA enabled for user %s", user_id)

    async def verify(
        self,
        user_id: str,
        code: str,
        client_ip: str | None = None,
        user_agent: str | None = None,
    ) -> VerificationResult:
        """Verify a TOTP or backup code for an enabled user.

        Raises:
            NotEnabledError: If 2FA is not enabled.
            ValidationError, RateLimitedError, InvalidCodeError: From verification.
            InvalidCodeError: Also when the credential store is unavailable.
        """
        credential = await self._load_for_verification(user_id)
        if credential is None or not credential.enabled:
            raise NotEnabledError()
        return await self.coordinator.verify(
            user_id,
            code,
            credential,
            VerificationContext(client_ip=client_ip, user_agent=user_agent),
        )

    async def _load_for_verification(self, user_id: str) -> TwoFactorCredential | None:
        # A lookup outage must not surface as "not enabled"
        try:
            return await self.credentials.get(user_id)
        except StoreUnavailableError as e:
            logger.error(
                "2FA verification failed closed for user %s: credential store unavailable",
                user_id,
                exc_info=True,
            )
            TwoFactorMetrics.record_verification("none", "error")
            raise InvalidCodeError() from e

    async def get_status(self, user_id: str) -> TwoFactorStatus:
        """Report whether 2FA is enabled, backup code counts and attempt counters."""
        credential = await self.credentials.get(user_id)
        if credential is None or not credential.enabled:
            return TwoFactorStatus(enabled=False)

        totp = await self.totp_limiter.check(rate_limit_key(user_id, TOTP_ACTION))
        backup = await self.backup_limiter.check(rate_limit_key(user_id, BACKUP_ACTION))
        return TwoFactorStatus(
            enabled=True,
            backup_codes=await self.backup_code_store.get_info(user_id),
            totp_attempts=totp.attempts,
            backup_attempts=backup.attempts,
        )

    async def regenerate_backup_codes(self, user_id: str) -> list[str]:
        """Replace unused backup codes with a fresh batch.

        Raises:
            NotEnabledError: If 2FA is not enabled.
        """
        return await self.backup_code_store.regenerate(user_id)

    async def disable(self, user_id: str) -> None:
        """Disable 2FA: wipe the secret, delete all backup codes, reset counters.

        Raises:
            NotEnabledError: If 2FA is not enabled.
        """
        credential = await self.credentials.get(user_id)
        if credential is None or not credential.enabled:
            raise NotEnabledError()

        await self.credentials.delete(user_id)
        removed = await self._backup_codes.delete_all(user_id)
        await self.totp_limiter.clear(rate_limit_key(user_id, TOTP_ACTION))
        await self.backup_limiter.clear(rate_limit_key(user_id, BACKUP_ACTION))
        logger.info("2FA disabled for user %s (backup codes deleted=%d)", user_id, removed)

    async def get_rate_limit_status(
        self, user_id: str, method: Method = "totp"
    ) -> RateLimitInfo:
        """Report the rate-limit state of one verification method."""
        if method == "totp":
            return await self.totp_limiter.check(rate_limit_key(user_id, TOTP_ACTION))
        if method == "backup_code":
            return await self.backup_limiter.check(
                rate_limit_key(user_id, BACKUP_ACTION)
            )
        raise ValueError(f"Unknown verification method: {method}")

    async def purge_used_backup_codes(self, user_id: str) -> int:
        return await self.backup_code_store.purge_used(user_id)

    async def purge_expired_rate_limits(self) -> int:
        """Delete rate-limit records outside both methods' windows."""
        # Both limiters share one store; the longer window is the safe cutoff
        limiter = max(
            (self.totp_limiter, self.backup_limiter),
            key=lambda item: item.config.window_seconds,
        )
        return await limiter.purge_expired()


__all__: list[str] = ["TwoFactorService"]
