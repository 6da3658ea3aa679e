"""Backup codes for 2FA recovery.

Single-use numeric codes that let users authenticate when they lose access
to their authenticator app. Only hashes are stored; consumption is an
atomic conditional update so a code can succeed at most once.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from .clock import SystemClock
from .exceptions import NotEnabledError
from .hashing import BackupCodeHasher, normalize_code
from .models import BackupCodesInfo, VerificationResult
from .ports import IBackupCodeRepository, IClock, ICredentialStore
from .provisioning import SecretManager

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .models import BackupCode

logger = logging.getLogger(__name__)


class BackupCodeStore:
    """Verifies, consumes, counts and regenerates backup codes.

    Example:
        ```python
        store = BackupCodeStore(repository, credentials, secret_manager)
        result = await store.verify_and_consume("user-123", "482913")
        if result.is_valid:
            info = await store.get_info("user-123")
            print(f"{info.remaining} codes left")
        ```
    """

    def __init__(
        self,
        repository: IBackupCodeRepository,
        credentials: ICredentialStore,
        secret_manager: SecretManager,
        *,
        hasher: BackupCodeHasher | None = None,
        clock: IClock | None = None,
    ) -> None:
        self.repository = repository
        self.credentials = credentials
        self.secret_manager = secret_manager
        self.hasher = hasher or secret_manager.hasher
        self.clock = clock or SystemClock()

    async def verify_and_consume(self, user_id: str, code: str) -> VerificationResult:
        """Verify a backup code and mark it used.

        Every unused hash of the user is compared with the normalized code.
        The first match is consumed with a conditional update; losing that
        update to a concurrent request is a failure.

        Args:
            user_id: User identifier.
            code: Candidate code (whitespace and case are ignored).

        Returns:
            ``VerificationResult.backup_code()`` on success, otherwise
            ``VerificationResult.invalid()``.
        """
        normalized = normalize_code(code)
        unused = await self.repository.list_unused(user_id)
        if not unused:
            logger.warning("No backup codes available for user %s", user_id)
            return VerificationResult.invalid()

        # bcrypt is CPU bound; scan the hashes off the event loop
        backup_code = await asyncio.to_thread(self._find_match, unused, normalized)
        if backup_code is None:
            return VerificationResult.invalid()

        if await self.repository.mark_used(backup_code.id, self.clock.now()):
            logger.info("Backup code %s consumed for user %s", backup_code.id, user_id)
            return VerificationResult.backup_code()
        logger.warning(
            "Backup code %s for user %s was consumed concurrently",
            backup_code.id,
            user_id,
        )
        return VerificationResult.invalid()

    def _find_match(
        self, unused: Sequence[BackupCode], normalized: str
    ) -> BackupCode | None:
        for backup_code in unused:
            if self.hasher.verify(backup_code.code_hash, normalized):
                return backup_code
        return None

    async def get_info(self, user_id: str) -> BackupCodesInfo:
        """Count the user's codes. Never returns code values."""
        total, used = await self.repository.count(user_id)
        return BackupCodesInfo(total=total, used=used)

    async def regenerate(self, user_id: str) -> list[str]:
        """Replace the user's unused codes with a fresh batch.

        Used codes stay recorded as used.

        Returns:
            The new plaintext codes, shown once.

        Raises:
            NotEnabledError: If 2FA is not enabled for the user.
        """
        credential = await self.credentials.get(user_id)
        if credential is None or not credential.enabled:
            raise NotEnabledError(
                "2FA must be enabled before regenerating backup codes"
            )

        removed = await self.repository.delete_unused(user_id)
        codes = await self.secret_manager.issue_backup_codes(user_id)
        logger.info(
            "Backup codes regenerated for user %s (invalidated=%d, issued=%d)",
            user_id,
            removed,
            len(codes),
        )
        return codes

    async def purge_used(self, user_id: str) -> int:
        """Delete the used-code audit trail of a user."""
        purged = await self.repository.delete_used(user_id)
        logger.info("Purged %d used backup codes for user %s", purged, user_id)
        return purged


__all__: list[str] = ["BackupCodeStore"]
