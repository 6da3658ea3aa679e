"""SQLAlchemy implementations of the two-factor store ports.

Each store takes an ``async_sessionmaker`` and runs every operation in its
own short transaction. Driver errors and timeouts are raised as
``StoreUnavailableError``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..exceptions import StoreUnavailableError
from ..models import BackupCode, RateLimitRecord, TwoFactorCredential, WindowStats
from .models import (
    BackupCodeModel,
    RateLimitAttemptModel,
    RateLimitGuardModel,
    TwoFactorCredentialModel,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy import Select
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except (SQLAlchemyError, TimeoutError, OSError) as e:
        raise StoreUnavailableError(f"2FA store failed during {operation}") from e


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite returns naive datetimes; everything is stored in UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _rowcount(result: object) -> int:
    return int(getattr(result, "rowcount", 0) or 0)


class SQLAlchemyCredentialStore:
    """Credential store on the ``twofactor_credentials`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, user_id: str) -> TwoFactorCredential | None:
        with _store_errors("credential lookup"):
            async with self._session_factory() as session:
                model = await session.get(TwoFactorCredentialModel, user_id)
                if model is None:
                    return None
                return TwoFactorCredential(
                    user_id=model.user_id,
                    secret=model.secret,
                    enabled=model.enabled,
                    created_at=_as_utc(model.created_at),  # type: ignore[arg-type]
                    enabled_at=_as_utc(model.enabled_at),
                )

    async def save(self, credential: TwoFactorCredential) -> None:
        with _store_errors("credential save"):
            async with self._session_factory() as session, session.begin():
                await session.merge(
                    TwoFactorCredentialModel(
                        user_id=credential.user_id,
                        secret=credential.secret,
                        enabled=credential.enabled,
                        created_at=credential.created_at,
                        enabled_at=credential.enabled_at,
                    )
                )

    async def delete(self, user_id: str) -> None:
        with _store_errors("credential delete"):
            async with self._session_factory() as session, session.begin():
                await session.execute(
                    delete(TwoFactorCredentialModel).where(
                        TwoFactorCredentialModel.user_id == user_id
                    )
                )


class SQLAlchemyBackupCodeRepository:
    """Backup code repository on the ``twofactor_backup_codes`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _from_model(model: BackupCodeModel) -> BackupCode:
        return BackupCode(
            id=model.id,
            user_id=model.user_id,
            code_hash=model.code_hash,
            is_used=model.is_used,
            used_at=_as_utc(model.used_at),
            created_at=_as_utc(model.created_at),  # type: ignore[arg-type]
        )

    async def add_many(self, codes: Sequence[BackupCode]) -> None:
        with _store_errors("backup code insert"):
            async with self._session_factory() as session, session.begin():
                session.add_all(
                    [
                        BackupCodeModel(
                            id=code.id,
                            user_id=code.user_id,
                            code_hash=code.code_hash,
                            is_used=code.is_used,
                            used_at=code.used_at,
                            created_at=code.created_at,
                        )
                        for code in codes
                    ]
                )

    async def list_unused(self, user_id: str) -> list[BackupCode]:
        stmt = (
            select(BackupCodeModel)
            .where(
                BackupCodeModel.user_id == user_id,
                BackupCodeModel.is_used.is_(False),
            )
            .order_by(BackupCodeModel.created_at)
        )
        with _store_errors("backup code lookup"):
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [self._from_model(m) for m in result.scalars().all()]

    async def mark_used(self, code_id: str, used_at: datetime) -> bool:
        # Conditional update: only one concurrent consumer can flip the row
        stmt = (
            update(BackupCodeModel)
            .where(
                BackupCodeModel.id == code_id,
                BackupCodeModel.is_used.is_(False),
            )
            .values(is_used=True, used_at=used_at)
        )
        with _store_errors("backup code consume"):
            async with self._session_factory() as session, session.begin():
                result = await session.execute(stmt)
                return _rowcount(result) == 1

    async def count(self, user_id: str) -> tuple[int, int]:
        total_stmt = select(func.count()).where(BackupCodeModel.user_id == user_id)
        used_stmt = select(func.count()).where(
            BackupCodeModel.user_id == user_id,
            BackupCodeModel.is_used.is_(True),
        )
        with _store_errors("backup code count"):
            async with self._session_factory() as session:
                total = await session.scalar(total_stmt)
                used = await session.scalar(used_stmt)
                return int(total or 0), int(used or 0)

    async def _delete(self, user_id: str, is_used: bool | None, operation: str) -> int:
        stmt = delete(BackupCodeModel).where(BackupCodeModel.user_id == user_id)
        if is_used is not None:
            stmt = stmt.where(BackupCodeModel.is_used.is_(is_used))
        with _store_errors(operation):
            async with self._session_factory() as session, session.begin():
                result = await session.execute(stmt)
                return _rowcount(result)

    async def delete_unused(self, user_id: str) -> int:
        return await self._delete(user_id, False, "backup code invalidation")

    async def delete_used(self, user_id: str) -> int:
        return await self._delete(user_id, True, "backup code purge")

    async def delete_all(self, user_id: str) -> int:
        return await self._delete(user_id, None, "backup code delete")


class SQLAlchemyRateLimitStore:
    """
    Rate-limit store on the ``twofactor_rate_limit_attempts`` table.

    ``append_if_below`` bumps the key's row in ``twofactor_rate_limit_guards``
    first. The update holds a row lock (a write lock on SQLite) until commit,
    so the count and the insert that follow are serialized per key.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _to_model(record: RateLimitRecord) -> RateLimitAttemptModel:
        return RateLimitAttemptModel(
            key=record.key,
            timestamp=record.timestamp,
            client_ip=record.client_ip,
            user_agent=record.user_agent,
        )

    @staticmethod
    def _count_stmt(key: str, since: datetime) -> Select[tuple[int, datetime | None]]:
        return select(func.count(), func.min(RateLimitAttemptModel.timestamp)).where(
            RateLimitAttemptModel.key == key,
            RateLimitAttemptModel.timestamp >= since,
        )

    async def append(self, record: RateLimitRecord) -> None:
        with _store_errors("rate-limit append"):
            async with self._session_factory() as session, session.begin():
                session.add(self._to_model(record))

    async def _create_guard(self, key: str) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                session.add(RateLimitGuardModel(key=key, version=0))
        except IntegrityError:
            # Created by a concurrent request; the row exists either way
            logger.debug("Rate-limit guard for %s created concurrently", key)

    async def append_if_below(
        self, record: RateLimitRecord, *, since: datetime, limit: int
    ) -> int | None:
        lock_stmt = (
            update(RateLimitGuardModel)
            .where(RateLimitGuardModel.key == record.key)
            .values(version=RateLimitGuardModel.version + 1)
        )
        with _store_errors("rate-limit acquire"):
            for _ in range(2):
                async with self._session_factory() as session, session.begin():
                    locked = await session.execute(lock_stmt)
                    if _rowcount(locked) == 1:
                        row = (
                            await session.execute(self._count_stmt(record.key, since))
                        ).one()
                        count = int(row[0] or 0)
                        if count >= limit:
                            return None
                        session.add(self._to_model(record))
                        return count + 1
                await self._create_guard(record.key)
        raise StoreUnavailableError(
            f"2FA store failed during rate-limit acquire: no guard row for {record.key}"
        )

    async def window_stats(self, key: str, since: datetime) -> WindowStats:
        with _store_errors("rate-limit check"):
            async with self._session_factory() as session:
                row = (await session.execute(self._count_stmt(key, since))).one()
                return WindowStats(count=int(row[0] or 0), oldest=_as_utc(row[1]))

    async def clear(self, key: str) -> None:
        with _store_errors("rate-limit clear"):
            async with self._session_factory() as session, session.begin():
                await session.execute(
                    delete(RateLimitAttemptModel).where(RateLimitAttemptModel.key == key)
                )

    async def purge_before(self, cutoff: datetime) -> int:
        with _store_errors("rate-limit purge"):
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    delete(RateLimitAttemptModel).where(
                        RateLimitAttemptModel.timestamp < cutoff
                    )
                )
                return _rowcount(result)


__all__: list[str] = [
    "SQLAlchemyCredentialStore",
    "SQLAlchemyBackupCodeRepository",
    "SQLAlchemyRateLimitStore",
]
