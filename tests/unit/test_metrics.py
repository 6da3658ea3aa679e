"""Unit tests for two-factor Prometheus metrics."""

from __future__ import annotations

import builtins
from unittest.mock import MagicMock, patch

import pytest

from twofactor_core import metrics as metrics_mod
from twofactor_core.metrics import TwoFactorMetrics


@pytest.fixture(autouse=True)
def fresh_registry(monkeypatch: pytest.MonkeyPatch) -> None:
    """Give every test an uninitialized registry."""
    monkeypatch.setattr(metrics_mod, "_registry", metrics_mod._TwoFactorMetricsRegistry())


class TestWithPrometheus:
    @pytest.fixture(autouse=True)
    def _prometheus(self) -> None:
        pytest.importorskip("prometheus_client")

    def test_record_verification(self):
        counter = MagicMock()
        with (
            patch("prometheus_client.Counter", counter),
            patch("prometheus_client.Histogram", MagicMock()),
        ):
            TwoFactorMetrics.record_verification("totp", "success")

        counter.return_value.labels.assert_called_with(method="totp", result="success")
        counter.return_value.labels.return_value.inc.assert_called_once()

    def test_record_lockout(self):
        counter = MagicMock()
        with (
            patch("prometheus_client.Counter", counter),
            patch("prometheus_client.Histogram", MagicMock()),
        ):
            TwoFactorMetrics.record_lockout("2fa_backup")

        counter.return_value.labels.assert_called_with(action="2fa_backup")

    def test_verification_timer(self):
        histogram = MagicMock()
        with (
            patch("prometheus_client.Counter", MagicMock()),
            patch("prometheus_client.Histogram", histogram),
        ):
            with TwoFactorMetrics.verification("enable"):
                pass

        histogram.return_value.labels.assert_called_once_with(flow="enable")
        histogram.return_value.labels.return_value.observe.assert_called_once()

    def test_timer_records_when_body_raises(self):
        histogram = MagicMock()
        with (
            patch("prometheus_client.Counter", MagicMock()),
            patch("prometheus_client.Histogram", histogram),
        ):
            with pytest.raises(RuntimeError):
                with TwoFactorMetrics.verification("login"):
                    raise RuntimeError("boom")

        histogram.return_value.labels.return_value.observe.assert_called_once()

    def test_metric_errors_are_swallowed(self):
        counter = MagicMock()
        counter.return_value.labels.side_effect = ValueError("bad label")
        with (
            patch("prometheus_client.Counter", counter),
            patch("prometheus_client.Histogram", MagicMock()),
        ):
            TwoFactorMetrics.record_verification("totp", "success")
            TwoFactorMetrics.record_lockout("2fa_totp")


class TestWithoutPrometheus:
    def test_helpers_are_noops(self):
        real_import = builtins.__import__

        def raise_for_prometheus(name, *args, **kwargs):
            if name == "prometheus_client":
                raise ImportError("No module named 'prometheus_client'")
            return real_import(name, *args, **kwargs)

        with patch("builtins.__import__", side_effect=raise_for_prometheus):
            with TwoFactorMetrics.verification("login"):
                TwoFactorMetrics.record_verification("totp", "success")
                TwoFactorMetrics.record_lockout("2fa_totp")

        assert metrics_mod._registry.verifications is None
        assert metrics_mod._registry.duration is None
