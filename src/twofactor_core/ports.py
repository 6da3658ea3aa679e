"""Two-factor ports (protocols).

Defines the clock and the persistence interfaces the verification core
depends on. Applications provide adapters; ``twofactor_core.memory`` and
``twofactor_core.sqlalchemy`` ship reference implementations.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from .models import BackupCode, RateLimitRecord, TwoFactorCredential, WindowStats


@runtime_checkable
class IClock(Protocol):
    """Source of the current time (timezone-aware UTC)."""

    def now(self) -> datetime: ...


@runtime_checkable
class ICredentialStore(Protocol):
    """Protocol for TOTP credential storage.

    Secrets should be encrypted at rest by the implementation.
    """

    async def get(self, user_id: str) -> TwoFactorCredential | None:
        """Get the credential of a user.

        Args:
            user_id: User identifier.

        Returns:
            The credential or None if the user never provisioned 2FA.
        """
        ...

    async def save(self, credential: TwoFactorCredential) -> None:
        """Insert or replace the credential of ``credential.user_id``."""
        ...

    async def delete(self, user_id: str) -> None:
        """Delete the credential of a user (no-op when absent)."""
        ...


@runtime_checkable
class IBackupCodeRepository(Protocol):
    """Protocol for hashed backup code storage.

    Only hashes are persisted. ``mark_used`` must be an atomic conditional
    update so that concurrent consumers of one code cannot both succeed.
    """

    async def add_many(self, codes: Sequence[BackupCode]) -> None:
        """Persist a batch of hashed codes."""
        ...

    async def list_unused(self, user_id: str) -> list[BackupCode]:
        """List the unused codes of a user."""
        ...

    async def mark_used(self, code_id: str, used_at: datetime) -> bool:
        """Mark a code used if it is still unused.

        Args:
            code_id: Backup code identifier.
            used_at: Consumption instant.

        Returns:
            True if exactly this call flipped the code to used.
        """
        ...

    async def count(self, user_id: str) -> tuple[int, int]:
        """Count codes of a user.

        Returns:
            ``(total, used)``.
        """
        ...

    async def delete_unused(self, user_id: str) -> int:
        """Delete unused codes of a user and return how many were removed."""
        ...

    async def delete_used(self, user_id: str) -> int:
        """Delete used codes of a user and return how many were removed."""
        ...

    async def delete_all(self, user_id: str) -> int:
        """Delete every code of a user and return how many were removed."""
        ...


@runtime_checkable
class IRateLimitStore(Protocol):
    """Protocol for rate-limit record storage.

    ``append_if_below`` must serialize concurrent callers for the same key:
    counting and appending happen as one critical section.
    """

    async def append(self, record: RateLimitRecord) -> None:
        """Append a record unconditionally."""
        ...

    async def append_if_below(
        self, record: RateLimitRecord, *, since: datetime, limit: int
    ) -> int | None:
        """Append a record only while fewer than ``limit`` records are in window.

        Args:
            record: Record to append.
            since: Start of the window (inclusive).
            limit: Maximum number of in-window records.

        Returns:
            The in-window count including the new record, or None if the
            limit was already reached and nothing was appended.
        """
        ...

    async def window_stats(self, key: str, since: datetime) -> WindowStats:
        """Count records of ``key`` with ``timestamp >= since``."""
        ...

    async def clear(self, key: str) -> None:
        """Delete all records of a key."""
        ...

    async def purge_before(self, cutoff: datetime) -> int:
        """Delete records older than ``cutoff`` across all keys."""
        ...


__all__: list[str] = [
    "IClock",
    "ICredentialStore",
    "IBackupCodeRepository",
    "IRateLimitStore",
]
