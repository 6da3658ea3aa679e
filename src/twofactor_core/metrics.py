"""Prometheus metrics for two-factor verification.

Metrics are created lazily on first use and silently disabled when
``prometheus_client`` is not installed (``pip install twofactor-core[metrics]``).

Usage:
    ```python
    from twofactor_core.metrics import TwoFactorMetrics

    with TwoFactorMetrics.verification("login"):
        result = await coordinator.verify(user_id, code, credential)

    TwoFactorMetrics.record_verification("totp", "success")
    ```
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

_logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Generator


class _TwoFactorMetricsRegistry:
    """Registry for two-factor Prometheus metrics.

    Lazily initializes Prometheus metrics on first use.
    """

    def __init__(self) -> None:
        self._verifications: Any = None
        self._lockouts: Any = None
        self._duration: Any = None
        self._initialized = False

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return

        try:
            from prometheus_client import Counter, Histogram

            self._verifications = Counter(
                "twofactor_verifications_total",
                "Two-factor verification outcomes",
                ["method", "result"],
            )
            self._lockouts = Counter(
                "twofactor_lockouts_total",
                "Two-factor lockouts triggered",
                ["action"],
            )
            self._duration = Histogram(
                "twofactor_verification_duration_seconds",
                "Two-factor verification duration",
                ["flow"],
            )
        except ImportError:
            _logger.debug("prometheus_client not available, metrics disabled")

        self._initialized = True

    @property
    def verifications(self) -> Any:
        self._ensure_initialized()
        return self._verifications

    @property
    def lockouts(self) -> Any:
        self._ensure_initialized()
        return self._lockouts

    @property
    def duration(self) -> Any:
        self._ensure_initialized()
        return self._duration


# Global registry instance
_registry = _TwoFactorMetricsRegistry()


class TwoFactorMetrics:
    """Helpers recording verification metrics; no-ops without Prometheus."""

    @staticmethod
    @contextmanager
    def verification(flow: str = "login") -> Generator[None, None, None]:
        """Time a verification.

        Args:
            flow: Calling flow (login, enable, ...).
        """
        start = time.monotonic()
        try:
            yield
        finally:
            if _registry.duration:
                try:
                    _registry.duration.labels(flow=flow).observe(
                        time.monotonic() - start
                    )
                except Exception:
                    _logger.debug("Failed to record verification duration")

    @staticmethod
    def record_verification(method: str, result: str) -> None:
        """Count a verification outcome.

        Args:
            method: ``totp``, ``backup_code`` or ``none``.
            result: ``success``, ``invalid``, ``rate_limited``,
                ``validation_error`` or ``error``.
        """
        if _registry.verifications:
            try:
                _registry.verifications.labels(method=method, result=result).inc()
            except Exception:
                _logger.debug("Failed to record verification counter")

    @staticmethod
    def record_lockout(action: str) -> None:
        """Count a lockout of a rate-limit action."""
        if _registry.lockouts:
            try:
                _registry.lockouts.labels(action=action).inc()
            except Exception:
                _logger.debug("Failed to record lockout counter")


__all__: list[str] = ["TwoFactorMetrics"]
