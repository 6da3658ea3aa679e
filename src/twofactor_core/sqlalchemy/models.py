"""
SQLAlchemy models for two-factor persistence.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..models import USER_AGENT_MAX_LENGTH


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for the two-factor tables.

    Applications with their own metadata can create these tables with
    ``Base.metadata.create_all`` or copy the definitions into their migrations.
    """


class TwoFactorCredentialModel(Base):
    """
    One TOTP credential per user.
    """

    __tablename__ = "twofactor_credentials"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    secret: Mapped[str | None] = mapped_column(String(128), nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    enabled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class BackupCodeModel(Base):
    """
    Hashed single-use backup code. Used rows are kept as an audit trail.
    """

    __tablename__ = "twofactor_backup_codes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    code_hash: Mapped[str] = mapped_column(String(255))
    is_used: Mapped[bool] = mapped_column(Boolean, default=False)
    used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )

    __table_args__ = (Index("ix_twofactor_backup_codes_user_used", "user_id", "is_used"),)


class RateLimitAttemptModel(Base):
    """
    Append-only failed attempt record.
    """

    __tablename__ = "twofactor_rate_limit_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(255))
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    client_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(
        String(USER_AGENT_MAX_LENGTH), nullable=True
    )

    __table_args__ = (
        Index("ix_twofactor_rate_limit_attempts_key_ts", "key", "timestamp"),
    )


class RateLimitGuardModel(Base):
    """
    Per-key lock row. Bumping ``version`` row-locks the key for the rest of
    the transaction so count-and-append runs serialized per key.
    """

    __tablename__ = "twofactor_rate_limit_guards"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, default=0)


__all__: list[str] = [
    "Base",
    "TwoFactorCredentialModel",
    "BackupCodeModel",
    "RateLimitAttemptModel",
    "RateLimitGuardModel",
]
