"""Verification protocol composing TOTP, backup codes and rate limiting.

Every flow (login, enable, disable, backup code regeneration) verifies a
second factor through ``VerificationCoordinator.verify``:

1. Malformed input raises ``ValidationError`` before any counter is touched.
2. An attempt is reserved on the TOTP key (``RateLimitedError`` when locked)
   and the code is checked as TOTP. Success clears the TOTP key.
3. Otherwise the TOTP attempt stays recorded as a failure, an attempt is
   reserved on the backup key and the code is consumed as a backup code.
   Success clears the backup key.
4. Otherwise ``InvalidCodeError``, the same error for every wrong-code path.

Store failures are logged and surface as ``InvalidCodeError``.
"""

from __future__ import annotations

import logging
import re

from .backup_codes import BackupCodeStore
from .clock import SystemClock
from .exceptions import (
    InvalidCodeError,
    NotProvisionedError,
    RateLimitedError,
    StoreUnavailableError,
    ValidationError,
)
from .hashing import normalize_code
from .metrics import TwoFactorMetrics
from .models import (
    BACKUP_ACTION,
    TOTP_ACTION,
    RateLimitInfo,
    TwoFactorCredential,
    VerificationContext,
    VerificationResult,
    rate_limit_key,
)
from .ports import IClock
from .rate_limit import RateLimiter
from .totp import TotpValidator

logger = logging.getLogger(__name__)


class VerificationCoordinator:
    """Runs the two-factor verification protocol for one user action.

    TOTP is always tried first; any input that also has the backup code
    shape falls through to backup codes when TOTP fails. Each method has
    its own rate limiter so exhausting backup code attempts leaves TOTP
    usable.
    """

    def __init__(
        self,
        validator: TotpValidator,
        backup_codes: BackupCodeStore,
        totp_limiter: RateLimiter,
        backup_limiter: RateLimiter,
        *,
        backup_code_length: int = 6,
        clock: IClock | None = None,
    ) -> None:
        self.validator = validator
        self.backup_codes = backup_codes
        self.totp_limiter = totp_limiter
        self.backup_limiter = backup_limiter
        self.clock = clock or SystemClock()
        self._backup_pattern = re.compile(rf"^[0-9]{{{backup_code_length}}}$")

    async def verify(
        self,
        user_id: str,
        code: str,
        credential: TwoFactorCredential | None,
        context: VerificationContext | None = None,
        *,
        allow_backup_code: bool = True,
        flow: str = "login",
    ) -> VerificationResult:
        """Verify a second-factor code.

        Args:
            user_id: User identifier.
            code: Code as typed by the user.
            credential: The user's credential.
            context: Request metadata recorded with failed attempts.
            allow_backup_code: Fall back to backup codes when TOTP fails.
                The enable flow passes False so that enabling proves the
                authenticator app works.
            flow: Calling flow, used as a metrics label.

        Returns:
            A valid VerificationResult. Failures are raised, never returned.

        Raises:
            NotProvisionedError: If the credential has no secret.
            ValidationError: If the code is malformed.
            RateLimitedError: If the method being tried is locked.
            InvalidCodeError: If the code is wrong or the store failed.
        """
        if credential is None or not credential.secret:
            raise NotProvisionedError()

        try:
            totp_code, backup_code = self._normalize(code, allow_backup_code)
        except ValidationError:
            TwoFactorMetrics.record_verification("none", "validation_error")
            raise

        context = context or VerificationContext()
        try:
            with TwoFactorMetrics.verification(flow):
                return await self._verify(
                    user_id, credential.secret, totp_code, backup_code, context
                )
        except StoreUnavailableError as e:
            logger.error(
                "2FA verification failed closed for user %s: store unavailable",
                user_id,
                exc_info=True,
            )
            TwoFactorMetrics.record_verification("none", "error")
            raise InvalidCodeError() from e

    def _normalize(
        self, code: str, allow_backup_code: bool
    ) -> tuple[str | None, str | None]:
        backup_code: str | None = None
        if allow_backup_code:
            candidate = normalize_code(code or "")
            if self._backup_pattern.match(candidate):
                backup_code = candidate
        try:
            totp_code: str | None = self.validator.normalize(code)
        except ValidationError:
            if backup_code is None:
                raise
            totp_code = None
        return totp_code, backup_code

    async def _verify(
        self,
        user_id: str,
        secret: str,
        totp_code: str | None,
        backup_code: str | None,
        context: VerificationContext,
    ) -> VerificationResult:
        if totp_code is not None:
            totp_key = rate_limit_key(user_id, TOTP_ACTION)
            info = await self._acquire(
                self.totp_limiter, totp_key, TOTP_ACTION, context
            )
            if self.validator.verify(totp_code, secret, self.clock.now()):
                await self.totp_limiter.clear(totp_key)
                logger.info(
                    "2FA TOTP verified for user %s from %s", user_id, context.client_ip
                )
                TwoFactorMetrics.record_verification("totp", "success")
                return VerificationResult.totp()
            self._failed(self.totp_limiter, totp_key, TOTP_ACTION, info, context)
            TwoFactorMetrics.record_verification("totp", "invalid")

        if backup_code is None:
            raise InvalidCodeError()

        backup_key = rate_limit_key(user_id, BACKUP_ACTION)
        info = await self._acquire(
            self.backup_limiter, backup_key, BACKUP_ACTION, context
        )
        result = await self.backup_codes.verify_and_consume(user_id, backup_code)
        if result.is_valid:
            await self.backup_limiter.clear(backup_key)
            logger.info(
                "2FA backup code verified for user %s from %s",
                user_id,
                context.client_ip,
            )
            TwoFactorMetrics.record_verification("backup_code", "success")
            return result

        self._failed(self.backup_limiter, backup_key, BACKUP_ACTION, info, context)
        TwoFactorMetrics.record_verification("backup_code", "invalid")
        raise InvalidCodeError()

    async def _acquire(
        self,
        limiter: RateLimiter,
        key: str,
        action: str,
        context: VerificationContext,
    ) -> RateLimitInfo:
        try:
            return await limiter.acquire(key, context, action=action)
        except RateLimitedError as e:
            logger.warning(
                "2FA verification blocked for %s from %s: rate limited (retry in %ds)",
                key,
                context.client_ip,
                e.retry_after_seconds,
            )
            TwoFactorMetrics.record_verification("none", "rate_limited")
            raise

    @staticmethod
    def _failed(
        limiter: RateLimiter,
        key: str,
        action: str,
        info: RateLimitInfo,
        context: VerificationContext,
    ) -> None:
        # The record reserved by acquire already counts as the failure
        logger.warning(
            "2FA verification failed for %s from %s (attempts remaining: %d)",
            key,
            context.client_ip,
            info.remaining_attempts,
        )
        if info.remaining_attempts == 0:
            logger.warning(
                "2FA %s locked for %d seconds after %d failed attempts",
                key,
                limiter.config.lockout_seconds,
                info.attempts,
            )
            TwoFactorMetrics.record_lockout(action)


__all__: list[str] = ["VerificationCoordinator"]
