"""Failed-attempt rate limiting with lockout.

Counts failed verification attempts per ``<user_id>:<action>`` key inside a
trailing window. Once ``max_attempts`` failures are counted the key is locked
until ``oldest counted failure + lockout_seconds``; an expired lock is
cleared lazily by the next ``check``.

``acquire`` is the race-free entry point: the store counts and appends in
one critical section per key, so concurrent requests can never jointly
exceed ``max_attempts``. The appended record stands as the failure record
when the attempt fails and is removed by ``clear`` when it succeeds.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from .clock import SystemClock
from .config import RateLimitConfig
from .exceptions import RateLimitedError
from .models import (
    BACKUP_ACTION,
    TOTP_ACTION,
    RateLimitInfo,
    RateLimitRecord,
    VerificationContext,
    rate_limit_key,
)
from .ports import IClock, IRateLimitStore

logger = logging.getLogger(__name__)


class RateLimiter:
    """Per-key failed-attempt limiter.

    One instance guards one verification method; the coordinator holds a
    separate limiter (and configuration) for TOTP and for backup codes.

    Example:
        ```python
        limiter = RateLimiter(store, RateLimitConfig(max_attempts=5))
        key = rate_limit_key("user-123", TOTP_ACTION)
        await limiter.acquire(key, context, action=TOTP_ACTION)  # raises RateLimitedError when locked
        if ok:
            await limiter.clear(key)
        ```
    """

    def __init__(
        self,
        store: IRateLimitStore,
        config: RateLimitConfig | None = None,
        *,
        clock: IClock | None = None,
    ) -> None:
        self.store = store
        self.config = config or RateLimitConfig()
        self.clock = clock or SystemClock()

    @property
    def window(self) -> timedelta:
        return timedelta(seconds=self.config.window_seconds)

    @property
    def lockout(self) -> timedelta:
        return timedelta(seconds=self.config.lockout_seconds)

    def _unlocked(self, attempts: int) -> RateLimitInfo:
        return RateLimitInfo(
            attempts=attempts,
            is_locked=False,
            remaining_attempts=max(0, self.config.max_attempts - attempts),
        )

    async def check(self, key: str) -> RateLimitInfo:
        """Report the current state of a key.

        Args:
            key: Rate-limit key (see ``rate_limit_key``).

        Returns:
            RateLimitInfo. An expired lock is cleared and reported unlocked.
        """
        now = self.clock.now()
        stats = await self.store.window_stats(key, now - self.window)
        if stats.count < self.config.max_attempts or stats.oldest is None:
            return self._unlocked(stats.count)

        locked_until = stats.oldest + self.lockout
        if now > locked_until:
            await self.store.clear(key)
            logger.info("Lockout expired for %s, attempts cleared", key)
            return self._unlocked(0)

        return RateLimitInfo(
            attempts=stats.count,
            is_locked=True,
            remaining_attempts=0,
            locked_until=locked_until,
        )

    async def record_failure(
        self, key: str, context: VerificationContext | None = None
    ) -> RateLimitInfo:
        """Append a failed attempt unconditionally and return the new state."""
        context = context or VerificationContext()
        await self.store.append(
            RateLimitRecord(
                key=key,
                timestamp=self.clock.now(),
                client_ip=context.client_ip,
                user_agent=context.user_agent,
            )
        )
        return await self.check(key)

    async def acquire(
        self,
        key: str,
        context: VerificationContext | None = None,
        *,
        action: str | None = None,
    ) -> RateLimitInfo:
        """Reserve one attempt for ``key``.

        Appends an attempt record only while the key is below
        ``max_attempts``. The record counts as a failure unless the caller
        clears the key after a successful verification.

        Args:
            key: Rate-limit key.
            context: Request metadata stored with the record.
            action: Rate-limit action reported by ``RateLimitedError``.

        Returns:
            State as seen by the admitted attempt (its own record included).

        Raises:
            RateLimitedError: If the key is locked.
        """
        info = await self.check(key)
        if info.is_locked:
            raise self._locked_error(info, action)

        context = context or VerificationContext()
        now = self.clock.now()
        count = await self.store.append_if_below(
            RateLimitRecord(
                key=key,
                timestamp=now,
                client_ip=context.client_ip,
                user_agent=context.user_agent,
            ),
            since=now - self.window,
            limit=self.config.max_attempts,
        )
        if count is None:
            # Lost the race against concurrent attempts on the same key
            raise self._locked_error(await self.check(key), action)
        return self._unlocked(count)

    def _locked_error(
        self, info: RateLimitInfo, action: str | None
    ) -> RateLimitedError:
        now = self.clock.now()
        # A concurrent success may have cleared the key in between
        retry_after = info.retry_after_seconds(now) if info.is_locked else 1
        return RateLimitedError(
            retry_after,
            locked_until=info.locked_until,
            action=action,
        )

    async def clear(self, key: str) -> None:
        """Delete every record of a key."""
        await self.store.clear(key)

    async def purge_expired(self) -> int:
        """Delete records that fell out of the window across all keys."""
        purged = await self.store.purge_before(self.clock.now() - self.window)
        if purged:
            logger.debug("Purged %d expired rate-limit records", purged)
        return purged


__all__: list[str] = [
    "RateLimiter",
    "rate_limit_key",
    "TOTP_ACTION",
    "BACKUP_ACTION",
]
