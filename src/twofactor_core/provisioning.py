"""TOTP secret and backup code provisioning."""

from __future__ import annotations

import asyncio
import logging
import math
import secrets

import pyotp

from .clock import SystemClock
from .config import BackupCodeConfig, TotpConfig
from .exceptions import AlreadyEnabledError
from .hashing import BackupCodeHasher, normalize_code
from .models import BackupCode, ProvisioningResult, TwoFactorCredential
from .ports import IBackupCodeRepository, IClock, ICredentialStore
from .totp import TotpValidator

logger = logging.getLogger(__name__)


class SecretManager:
    """Issues TOTP secrets and backup code batches.

    Provisioning leaves the credential disabled; it becomes enabled only
    after the user confirms a TOTP code (see ``TwoFactorService.confirm_enable``).

    Example:
        ```python
        manager = SecretManager(credentials, backup_codes)
        result = await manager.provision("user-123", "alice@example.com")
        print(f"Scan this QR: {result.provisioning_uri}")
        print(f"Save these codes: {result.backup_codes}")
        ```
    """

    def __init__(
        self,
        credentials: ICredentialStore,
        backup_codes: IBackupCodeRepository,
        *,
        totp_config: TotpConfig | None = None,
        backup_config: BackupCodeConfig | None = None,
        hasher: BackupCodeHasher | None = None,
        clock: IClock | None = None,
    ) -> None:
        self.credentials = credentials
        self.backup_codes = backup_codes
        self.totp_config = totp_config or TotpConfig()
        self.backup_config = backup_config or BackupCodeConfig()
        self.hasher = hasher or BackupCodeHasher.from_config(self.backup_config)
        self.clock = clock or SystemClock()
        self._validator = TotpValidator(self.totp_config)

    def generate_secret(self) -> str:
        """Generate a base32 secret from the CSPRNG."""
        length = math.ceil(self.totp_config.secret_bytes * 8 / 5)
        return pyotp.random_base32(length=length)

    def generate_backup_codes(self, count: int | None = None) -> list[str]:
        """Generate a batch of unique zero-padded numeric codes.

        Args:
            count: Batch size (defaults to the configured count).

        Returns:
            Plaintext codes, unique within the batch.
        """
        if count is None:
            count = self.backup_config.count
        length = self.backup_config.length
        codes: list[str] = []
        seen: set[str] = set()
        while len(codes) < count:
            code = str(secrets.randbelow(10**length)).zfill(length)
            if code in seen:
                continue
            seen.add(code)
            codes.append(code)
        return codes

    def _hash_batch(self, codes: list[str]) -> list[str]:
        return [self.hasher.hash(normalize_code(code)) for code in codes]

    async def issue_backup_codes(self, user_id: str) -> list[str]:
        """Generate, hash and persist a fresh batch of backup codes.

        Existing codes are left alone; callers delete what the batch replaces.

        Returns:
            Plaintext codes, shown to the user once and never stored.
        """
        codes = self.generate_backup_codes()
        # bcrypt is CPU bound; hash the batch off the event loop
        hashes = await asyncio.to_thread(self._hash_batch, codes)
        now = self.clock.now()
        await self.backup_codes.add_many(
            [
                BackupCode(user_id=user_id, code_hash=code_hash, created_at=now)
                for code_hash in hashes
            ]
        )
        logger.info(
            "Backup codes hashed and stored for user %s (count=%d)",
            user_id,
            len(codes),
        )
        return codes

    async def provision(self, user_id: str, account_label: str) -> ProvisioningResult:
        """Provision a TOTP secret and a backup code batch for a user.

        Any earlier unconfirmed secret and its backup codes are replaced.

        Args:
            user_id: User identifier.
            account_label: Account name shown in the authenticator app
                (typically the user's email).

        Returns:
            ProvisioningResult with the secret, otpauth URI and plaintext codes.

        Raises:
            AlreadyEnabledError: If 2FA is already enabled for the user.
        """
        existing = await self.credentials.get(user_id)
        if existing is not None and existing.enabled:
            raise AlreadyEnabledError()

        secret = self.generate_secret()
        uri = self._validator.provisioning_uri(secret, account_label)

        await self.backup_codes.delete_all(user_id)
        codes = await self.issue_backup_codes(user_id)
        await self.credentials.save(
            TwoFactorCredential(
                user_id=user_id,
                secret=secret,
                enabled=False,
                created_at=self.clock.now(),
            )
        )

        logger.info(
            "2FA secret provisioned for user %s (secret_length=%d)",
            user_id,
            len(secret),
        )
        return ProvisioningResult(
            secret=secret,
            provisioning_uri=uri,
            backup_codes=codes,
            manual_key=_format_secret(secret),
        )


def _format_secret(secret: str) -> str:
    # Groups of 4 for manual entry
    secret = secret.rstrip("=")
    return " ".join(secret[i : i + 4] for i in range(0, len(secret), 4))


__all__: list[str] = ["SecretManager"]
