"""Tests for the verification protocol."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from unittest.mock import call, patch

import pytest

from twofactor_core import (
    BACKUP_ACTION,
    TOTP_ACTION,
    BackupCodeConfig,
    FrozenClock,
    InMemoryBackupCodeRepository,
    InMemoryCredentialStore,
    InMemoryRateLimitStore,
    InvalidCodeError,
    NotProvisionedError,
    ProvisioningResult,
    RateLimitConfig,
    RateLimitedError,
    StoreUnavailableError,
    TotpValidator,
    TwoFactorConfig,
    TwoFactorCredential,
    TwoFactorService,
    ValidationError,
    VerificationContext,
    VerificationCoordinator,
    VerificationMethod,
    rate_limit_key,
)
from twofactor_core.metrics import TwoFactorMetrics

USER_ID = "user-123"
TOTP_KEY = rate_limit_key(USER_ID, TOTP_ACTION)
BACKUP_KEY = rate_limit_key(USER_ID, BACKUP_ACTION)

WrongCode = Callable[[str, datetime], str]


@pytest.fixture
def coordinator(service: TwoFactorService) -> VerificationCoordinator:
    return service.coordinator


@pytest.fixture
async def credential(
    enabled_user: ProvisioningResult, credential_store: InMemoryCredentialStore
) -> TwoFactorCredential:
    credential = await credential_store.get(USER_ID)
    assert credential is not None
    return credential


class TestInputValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["12345", "abcdef", "1234567", "", "12 34"])
    async def test_malformed_input_never_touches_counters(
        self,
        coordinator: VerificationCoordinator,
        credential: TwoFactorCredential,
        rate_limit_store: InMemoryRateLimitStore,
        code: str,
    ) -> None:
        with pytest.raises(ValidationError):
            await coordinator.verify(USER_ID, code, credential)

        assert rate_limit_store.records(TOTP_KEY) == []
        assert rate_limit_store.records(BACKUP_KEY) == []

    @pytest.mark.asyncio
    async def test_missing_credential(self, coordinator: VerificationCoordinator) -> None:
        with pytest.raises(NotProvisionedError):
            await coordinator.verify(USER_ID, "123456", None)

    @pytest.mark.asyncio
    async def test_credential_without_secret(
        self, coordinator: VerificationCoordinator
    ) -> None:
        with pytest.raises(NotProvisionedError):
            await coordinator.verify(
                USER_ID, "123456", TwoFactorCredential(user_id=USER_ID, secret=None)
            )


class TestTotpPath:
    @pytest.mark.asyncio
    async def test_valid_totp(
        self,
        coordinator: VerificationCoordinator,
        credential: TwoFactorCredential,
        validator: TotpValidator,
        clock: FrozenClock,
    ) -> None:
        code = validator.code_at(credential.secret or "", clock.now())

        result = await coordinator.verify(USER_ID, code, credential)

        assert result.is_valid
        assert result.method is VerificationMethod.TOTP
        assert not result.backup_code_used

    @pytest.mark.asyncio
    async def test_totp_with_clock_skew(
        self,
        coordinator: VerificationCoordinator,
        credential: TwoFactorCredential,
        validator: TotpValidator,
        clock: FrozenClock,
    ) -> None:
        code = validator.code_at(credential.secret or "", clock.now())
        clock.advance(seconds=45)
        assert (await coordinator.verify(USER_ID, code, credential)).is_valid

    @pytest.mark.asyncio
    async def test_expired_totp_is_invalid(
        self,
        coordinator: VerificationCoordinator,
        credential: TwoFactorCredential,
        validator: TotpValidator,
        clock: FrozenClock,
    ) -> None:
        code = validator.code_at(credential.secret or "", clock.now())
        clock.advance(seconds=95)
        with pytest.raises(InvalidCodeError):
            await coordinator.verify(USER_ID, code, credential)

    @pytest.mark.asyncio
    async def test_wrong_code_records_failure_on_both_methods(
        self,
        coordinator: VerificationCoordinator,
        credential: TwoFactorCredential,
        rate_limit_store: InMemoryRateLimitStore,
        wrong_code: WrongCode,
        clock: FrozenClock,
    ) -> None:
        code = wrong_code(credential.secret or "", clock.now())
        context = VerificationContext(client_ip="10.0.0.1", user_agent="pytest")

        with pytest.raises(InvalidCodeError, match="Invalid verification code"):
            await coordinator.verify(USER_ID, code, credential, context)

        [totp_record] = rate_limit_store.records(TOTP_KEY)
        [backup_record] = rate_limit_store.records(BACKUP_KEY)
        assert totp_record.client_ip == backup_record.client_ip == "10.0.0.1"
        assert totp_record.user_agent == "pytest"

    @pytest.mark.asyncio
    async def test_success_clears_totp_counter(
        self,
        coordinator: VerificationCoordinator,
        credential: TwoFactorCredential,
        validator: TotpValidator,
        rate_limit_store: InMemoryRateLimitStore,
        wrong_code: WrongCode,
        clock: FrozenClock,
    ) -> None:
        secret = credential.secret or ""
        for _ in range(4):
            with pytest.raises(InvalidCodeError):
                await coordinator.verify(USER_ID, wrong_code(secret, clock.now()), credential)

        await coordinator.verify(USER_ID, validator.code_at(secret, clock.now()), credential)
        assert rate_limit_store.records(TOTP_KEY) == []

        # A fresh run of max_attempts failures is needed to lock again
        for _ in range(4):
            with pytest.raises(InvalidCodeError):
                await coordinator.verify(
                    USER_ID, wrong_code(secret, clock.now()), credential, allow_backup_code=False
                )
        assert (
            await coordinator.verify(
                USER_ID, validator.code_at(secret, clock.now()), credential
            )
        ).is_valid


class TestLockout:
    @pytest.mark.asyncio
    async def test_totp_lockout_rejects_correct_code(
        self,
        coordinator: VerificationCoordinator,
        credential: TwoFactorCredential,
        validator: TotpValidator,
        wrong_code: WrongCode,
        clock: FrozenClock,
    ) -> None:
        secret = credential.secret or ""
        for _ in range(5):
            with pytest.raises(InvalidCodeError):
                await coordinator.verify(
                    USER_ID, wrong_code(secret, clock.now()), credential, allow_backup_code=False
                )

        with pytest.raises(RateLimitedError) as exc_info:
            await coordinator.verify(
                USER_ID, validator.code_at(secret, clock.now()), credential
            )
        assert exc_info.value.action == TOTP_ACTION
        assert exc_info.value.retry_after_seconds == 15 * 60

    @pytest.mark.asyncio
    async def test_totp_lockout_expires(
        self,
        coordinator: VerificationCoordinator,
        credential: TwoFactorCredential,
        validator: TotpValidator,
        wrong_code: WrongCode,
        clock: FrozenClock,
    ) -> None:
        secret = credential.secret or ""
        for _ in range(5):
            with pytest.raises(InvalidCodeError):
                await coordinator.verify(
                    USER_ID, wrong_code(secret, clock.now()), credential, allow_backup_code=False
                )

        clock.advance(minutes=15, seconds=1)
        code = validator.code_at(secret, clock.now())
        assert (await coordinator.verify(USER_ID, code, credential)).is_valid

    @pytest.mark.asyncio
    async def test_backup_lockout_leaves_totp_usable(
        self,
        coordinator: VerificationCoordinator,
        credential: TwoFactorCredential,
        enabled_user: ProvisioningResult,
        validator: TotpValidator,
        wrong_code: WrongCode,
        clock: FrozenClock,
    ) -> None:
        secret = credential.secret or ""
        # Each wrong code fails on both methods; a TOTP success then resets
        # only the TOTP counter, so backup failures accumulate on their own.
        for _ in range(5):
            with pytest.raises(InvalidCodeError):
                await coordinator.verify(USER_ID, wrong_code(secret, clock.now()), credential)
            clock.advance(seconds=30)
            await coordinator.verify(
                USER_ID, validator.code_at(secret, clock.now()), credential
            )

        with pytest.raises(RateLimitedError) as exc_info:
            await coordinator.verify(USER_ID, enabled_user.backup_codes[0], credential)
        assert exc_info.value.action == BACKUP_ACTION

        clock.advance(seconds=30)
        result = await coordinator.verify(
            USER_ID, validator.code_at(secret, clock.now()), credential
        )
        assert result.method is VerificationMethod.TOTP

    @pytest.mark.asyncio
    async def test_lockout_reports_action_for_colon_user_id(
        self,
        coordinator: VerificationCoordinator,
        credential: TwoFactorCredential,
        wrong_code: WrongCode,
        clock: FrozenClock,
    ) -> None:
        user_id = "tenant:alice"
        secret = credential.secret or ""
        scoped = TwoFactorCredential(user_id=user_id, secret=secret, enabled=True)

        with patch.object(TwoFactorMetrics, "record_lockout") as record_lockout:
            for _ in range(5):
                with pytest.raises(InvalidCodeError):
                    await coordinator.verify(
                        user_id, wrong_code(secret, clock.now()), scoped, allow_backup_code=False
                    )
            record_lockout.assert_called_once_with(TOTP_ACTION)

            with pytest.raises(RateLimitedError) as exc_info:
                await coordinator.verify(user_id, wrong_code(secret, clock.now()), scoped)
        assert exc_info.value.action == TOTP_ACTION

    @pytest.mark.asyncio
    async def test_each_method_lockout_is_counted_under_its_action(
        self,
        coordinator: VerificationCoordinator,
        credential: TwoFactorCredential,
        wrong_code: WrongCode,
        clock: FrozenClock,
    ) -> None:
        secret = credential.secret or ""
        with patch.object(TwoFactorMetrics, "record_lockout") as record_lockout:
            for _ in range(5):
                with pytest.raises(InvalidCodeError):
                    await coordinator.verify(USER_ID, wrong_code(secret, clock.now()), credential)

        assert record_lockout.call_args_list == [call(TOTP_ACTION), call(BACKUP_ACTION)]


class TestBackupPath:
    @pytest.mark.asyncio
    async def test_backup_code_succeeds_after_totp_miss(
        self,
        coordinator: VerificationCoordinator,
        credential: TwoFactorCredential,
        enabled_user: ProvisioningResult,
        rate_limit_store: InMemoryRateLimitStore,
    ) -> None:
        result = await coordinator.verify(USER_ID, enabled_user.backup_codes[0], credential)

        assert result.is_valid
        assert result.method is VerificationMethod.BACKUP_CODE
        assert result.backup_code_used
        assert rate_limit_store.records(BACKUP_KEY) == []
        assert len(rate_limit_store.records(TOTP_KEY)) == 1

    @pytest.mark.asyncio
    async def test_backup_code_is_single_use(
        self,
        coordinator: VerificationCoordinator,
        credential: TwoFactorCredential,
        enabled_user: ProvisioningResult,
    ) -> None:
        code = enabled_user.backup_codes[0]
        assert (await coordinator.verify(USER_ID, code, credential)).is_valid

        with pytest.raises(InvalidCodeError, match="Invalid verification code"):
            await coordinator.verify(USER_ID, code, credential)

    @pytest.mark.asyncio
    async def test_backup_codes_refused_when_disallowed(
        self,
        coordinator: VerificationCoordinator,
        credential: TwoFactorCredential,
        enabled_user: ProvisioningResult,
        rate_limit_store: InMemoryRateLimitStore,
    ) -> None:
        with pytest.raises(InvalidCodeError):
            await coordinator.verify(
                USER_ID,
                enabled_user.backup_codes[0],
                credential,
                allow_backup_code=False,
            )
        assert rate_limit_store.records(BACKUP_KEY) == []

    @pytest.mark.asyncio
    async def test_longer_backup_codes_skip_totp(
        self,
        credential_store: InMemoryCredentialStore,
        backup_code_repository: InMemoryBackupCodeRepository,
        rate_limit_store: InMemoryRateLimitStore,
        clock: FrozenClock,
    ) -> None:
        service = TwoFactorService(
            credential_store,
            backup_code_repository,
            rate_limit_store,
            config=TwoFactorConfig(
                backup_codes=BackupCodeConfig(length=8, hash_rounds=4)
            ),
            clock=clock,
        )
        setup = await service.provision(USER_ID, "alice@example.com")
        await service.confirm_enable(
            USER_ID, service.validator.code_at(setup.secret, clock.now())
        )

        result = await service.verify(USER_ID, setup.backup_codes[0])

        assert result.method is VerificationMethod.BACKUP_CODE
        assert rate_limit_store.records(TOTP_KEY) == []


class _FailingRateLimitStore(InMemoryRateLimitStore):
    async def window_stats(self, key, since):  # type: ignore[no-untyped-def]
        raise StoreUnavailableError("database is down")


class _FailingBackupCodeRepository(InMemoryBackupCodeRepository):
    async def list_unused(self, user_id):  # type: ignore[no-untyped-def]
        raise StoreUnavailableError("database is down")


class TestFailClosed:
    @pytest.mark.asyncio
    async def test_rate_limit_store_outage_is_invalid_code(
        self,
        credential: TwoFactorCredential,
        credential_store: InMemoryCredentialStore,
        backup_code_repository: InMemoryBackupCodeRepository,
        validator: TotpValidator,
        config: TwoFactorConfig,
        clock: FrozenClock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        service = TwoFactorService(
            credential_store,
            backup_code_repository,
            _FailingRateLimitStore(),
            config=config,
            clock=clock,
        )
        code = validator.code_at(credential.secret or "", clock.now())

        with pytest.raises(InvalidCodeError) as exc_info:
            await service.coordinator.verify(USER_ID, code, credential)

        assert isinstance(exc_info.value.__cause__, StoreUnavailableError)
        assert any(r.levelname == "ERROR" for r in caplog.records)

    @pytest.mark.asyncio
    async def test_backup_store_outage_is_invalid_code(
        self,
        credential: TwoFactorCredential,
        credential_store: InMemoryCredentialStore,
        enabled_user: ProvisioningResult,
        config: TwoFactorConfig,
        clock: FrozenClock,
    ) -> None:
        service = TwoFactorService(
            credential_store,
            _FailingBackupCodeRepository(),
            InMemoryRateLimitStore(),
            config=config,
            clock=clock,
        )

        with pytest.raises(InvalidCodeError):
            await service.coordinator.verify(
                USER_ID, enabled_user.backup_codes[0], credential
            )


class TestPerMethodLimits:
    @pytest.mark.asyncio
    async def test_backup_limit_is_configured_separately(
        self,
        credential_store: InMemoryCredentialStore,
        backup_code_repository: InMemoryBackupCodeRepository,
        rate_limit_store: InMemoryRateLimitStore,
        wrong_code: WrongCode,
        clock: FrozenClock,
    ) -> None:
        service = TwoFactorService(
            credential_store,
            backup_code_repository,
            rate_limit_store,
            config=TwoFactorConfig(
                backup_codes=BackupCodeConfig(hash_rounds=4),
                backup_rate_limit=RateLimitConfig(max_attempts=2),
            ),
            clock=clock,
        )
        setup = await service.provision(USER_ID, "alice@example.com")
        await service.confirm_enable(
            USER_ID, service.validator.code_at(setup.secret, clock.now())
        )

        for _ in range(2):
            with pytest.raises(InvalidCodeError):
                await service.verify(USER_ID, wrong_code(setup.secret, clock.now()))

        with pytest.raises(RateLimitedError) as exc_info:
            await service.verify(USER_ID, setup.backup_codes[0])
        assert exc_info.value.action == BACKUP_ACTION
        assert len(rate_limit_store.records(TOTP_KEY)) == 3
