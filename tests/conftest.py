"""Test configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

import pytest

from twofactor_core import (
    BackupCodeConfig,
    FrozenClock,
    InMemoryBackupCodeRepository,
    InMemoryCredentialStore,
    InMemoryRateLimitStore,
    ProvisioningResult,
    TotpValidator,
    TwoFactorConfig,
    TwoFactorService,
)

# Aligned to a 30 second step boundary
T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

USER_ID = "user-123"


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests that run against a real database engine",
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(T0)


@pytest.fixture
def config() -> TwoFactorConfig:
    """Default configuration with a cheap bcrypt cost."""
    return TwoFactorConfig(backup_codes=BackupCodeConfig(hash_rounds=4))


@pytest.fixture
def validator(config: TwoFactorConfig) -> TotpValidator:
    return TotpValidator(config.totp)


@pytest.fixture
def credential_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def backup_code_repository() -> InMemoryBackupCodeRepository:
    return InMemoryBackupCodeRepository()


@pytest.fixture
def rate_limit_store() -> InMemoryRateLimitStore:
    return InMemoryRateLimitStore()


@pytest.fixture
def service(
    credential_store: InMemoryCredentialStore,
    backup_code_repository: InMemoryBackupCodeRepository,
    rate_limit_store: InMemoryRateLimitStore,
    config: TwoFactorConfig,
    clock: FrozenClock,
) -> TwoFactorService:
    return TwoFactorService(
        credential_store,
        backup_code_repository,
        rate_limit_store,
        config=config,
        clock=clock,
    )


@pytest.fixture
async def enabled_user(
    service: TwoFactorService, validator: TotpValidator, clock: FrozenClock
) -> ProvisioningResult:
    """A user with 2FA provisioned and confirmed."""
    setup = await service.provision(USER_ID, "alice@example.com")
    await service.confirm_enable(USER_ID, validator.code_at(setup.secret, clock.now()))
    return setup


@pytest.fixture
def wrong_code(validator: TotpValidator) -> Callable[[str, datetime], str]:
    """Return a well-formed code that is not valid anywhere in the TOTP window."""

    def _wrong_code(secret: str, at: datetime) -> str:
        for digit in "0123456789":
            candidate = digit * validator.config.digits
            if not validator.verify(candidate, secret, at):
                return candidate
        raise AssertionError("no invalid code found")

    return _wrong_code
