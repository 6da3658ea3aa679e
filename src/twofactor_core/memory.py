"""In-memory store adapters for TESTING and single-process development.

⚠️ WARNING: Secrets are kept in plain process memory and nothing survives a
restart. Do NOT use in production!

Atomicity relies on the event loop: each conditional operation runs without
an ``await`` between its read and its write.
"""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING

from .models import BackupCode, RateLimitRecord, TwoFactorCredential, WindowStats

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime


class InMemoryCredentialStore:
    """Credential store backed by a dict keyed by user id."""

    def __init__(self) -> None:
        self._credentials: dict[str, TwoFactorCredential] = {}

    async def get(self, user_id: str) -> TwoFactorCredential | None:
        return self._credentials.get(user_id)

    async def save(self, credential: TwoFactorCredential) -> None:
        self._credentials[credential.user_id] = credential

    async def delete(self, user_id: str) -> None:
        self._credentials.pop(user_id, None)


class InMemoryBackupCodeRepository:
    """Backup code repository backed by a dict keyed by code id."""

    def __init__(self) -> None:
        self._codes: dict[str, BackupCode] = {}

    def _for_user(self, user_id: str) -> list[BackupCode]:
        return [code for code in self._codes.values() if code.user_id == user_id]

    async def add_many(self, codes: Sequence[BackupCode]) -> None:
        for code in codes:
            self._codes[code.id] = code

    async def list_unused(self, user_id: str) -> list[BackupCode]:
        return [code for code in self._for_user(user_id) if not code.is_used]

    async def mark_used(self, code_id: str, used_at: datetime) -> bool:
        code = self._codes.get(code_id)
        if code is None or code.is_used:
            return False
        self._codes[code_id] = replace(code, is_used=True, used_at=used_at)
        return True

    async def count(self, user_id: str) -> tuple[int, int]:
        codes = self._for_user(user_id)
        return len(codes), sum(1 for code in codes if code.is_used)

    async def _delete_where(self, user_id: str, is_used: bool | None) -> int:
        doomed = [
            code.id
            for code in self._for_user(user_id)
            if is_used is None or code.is_used is is_used
        ]
        for code_id in doomed:
            del self._codes[code_id]
        return len(doomed)

    async def delete_unused(self, user_id: str) -> int:
        return await self._delete_where(user_id, is_used=False)

    async def delete_used(self, user_id: str) -> int:
        return await self._delete_where(user_id, is_used=True)

    async def delete_all(self, user_id: str) -> int:
        return await self._delete_where(user_id, is_used=None)


class InMemoryRateLimitStore:
    """Rate-limit record store backed by per-key lists."""

    def __init__(self) -> None:
        self._records: dict[str, list[RateLimitRecord]] = {}

    def _in_window(self, key: str, since: datetime) -> list[RateLimitRecord]:
        return [r for r in self._records.get(key, []) if r.timestamp >= since]

    async def append(self, record: RateLimitRecord) -> None:
        self._records.setdefault(record.key, []).append(record)

    async def append_if_below(
        self, record: RateLimitRecord, *, since: datetime, limit: int
    ) -> int | None:
        # Count and insert without yielding to the event loop
        count = len(self._in_window(record.key, since))
        if count >= limit:
            return None
        self._records.setdefault(record.key, []).append(record)
        return count + 1

    async def window_stats(self, key: str, since: datetime) -> WindowStats:
        records = self._in_window(key, since)
        if not records:
            return WindowStats(count=0)
        return WindowStats(
            count=len(records), oldest=min(r.timestamp for r in records)
        )

    async def clear(self, key: str) -> None:
        self._records.pop(key, None)

    async def purge_before(self, cutoff: datetime) -> int:
        purged = 0
        for key in list(self._records):
            kept = [r for r in self._records[key] if r.timestamp >= cutoff]
            purged += len(self._records[key]) - len(kept)
            if kept:
                self._records[key] = kept
            else:
                del self._records[key]
        return purged

    def records(self, key: str) -> list[RateLimitRecord]:
        """Return a copy of the records of a key (for tests)."""
        return list(self._records.get(key, []))


__all__: list[str] = [
    "InMemoryCredentialStore",
    "InMemoryBackupCodeRepository",
    "InMemoryRateLimitStore",
]
