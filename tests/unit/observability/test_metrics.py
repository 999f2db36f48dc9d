"""Tests for audit metrics."""

from unittest.mock import patch

from prometheus_client import REGISTRY

from datalens.config.models.observability import MetricsConfig
from datalens.observability.metrics import (
    AUDIT_CHAIN_SEQUENCE,
    AUDIT_RECORDS_APPENDED,
    start_metrics_server,
)


class TestMetrics:
    """Tests for metric registration."""

    def test_appended_counter_labels(self) -> None:
        before = REGISTRY.get_sample_value(
            "datalens_audit_records_appended_total",
            {"chain_scope": "global", "resource_type": "metrics_test"},
        ) or 0.0

        AUDIT_RECORDS_APPENDED.labels(chain_scope="global", resource_type="metrics_test").inc()

        after = REGISTRY.get_sample_value(
            "datalens_audit_records_appended_total",
            {"chain_scope": "global", "resource_type": "metrics_test"},
        )
        assert after == before + 1

    def test_chain_sequence_gauge(self) -> None:
        AUDIT_CHAIN_SEQUENCE.labels(chain_id="metrics-test").set(7)
        assert (
            REGISTRY.get_sample_value(
                "datalens_audit_chain_sequence", {"chain_id": "metrics-test"}
            )
            == 7
        )


class TestStartMetricsServer:
    """Tests for start_metrics_server."""

    def test_disabled(self) -> None:
        with patch("datalens.observability.metrics.start_http_server") as server:
            assert start_metrics_server(MetricsConfig(enabled=False)) is False
        server.assert_not_called()

    def test_enabled(self) -> None:
        with patch("datalens.observability.metrics.start_http_server") as server:
            assert start_metrics_server(MetricsConfig(enabled=True, port=9123)) is True
        server.assert_called_once_with(9123)
