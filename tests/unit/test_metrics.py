"""
Unit tests for the metrics collector and observability hooks.
"""

import logging
from unittest.mock import MagicMock, patch

import pytest

from llm_orchestrator.services.metrics import MetricsCollector, get_metrics_collector
from llm_orchestrator.services.observability import (
    LoggingObservabilitySink,
    ObservabilitySink,
    SafeObservability,
)


class TestMetricsCollector:
    """Bounded event store and summary."""

    def test_summary_of_empty_collector(self):
        summary = MetricsCollector().get_summary()
        assert summary == {
            "total_requests": 0,
            "total_errors": 0,
            "average_response_time": 0,
            "error_rate": 0,
            "recent_errors": [],
        }

    def test_summary_aggregates_events(self):
        collector = MetricsCollector()
        for i in range(4):
            collector.record_api_request("/api/search", f"req-{i}")
        collector.record_api_success("/api/search", "req-0", 100.0)
        collector.record_api_success("/api/search", "req-1", 201.0)
        collector.record_api_error("/api/search", "req-2", 429, "RATE_LIMIT_EXCEEDED")

        summary = collector.get_summary()

        assert summary["total_requests"] == 4
        assert summary["total_errors"] == 1
        assert summary["average_response_time"] == 150
        assert summary["error_rate"] == 25.0
        assert summary["recent_errors"][0]["error_code"] == "RATE_LIMIT_EXCEEDED"

    def test_recent_errors_newest_first_and_limited(self):
        collector = MetricsCollector()
        for i in range(12):
            collector.record_api_error("/api/upload", f"req-{i}", 500, f"E{i}")

        recent = collector.get_summary()["recent_errors"]

        assert len(recent) == 10
        assert recent[0]["error_code"] == "E11"
        assert recent[-1]["error_code"] == "E2"

    def test_oldest_events_dropped_beyond_maximum(self):
        collector = MetricsCollector(max_events=3)
        for i in range(5):
            collector.record_api_request("/health", f"req-{i}")

        events = collector.get_events()
        assert [e.request_id for e in events] == ["req-2", "req-3", "req-4"]

    def test_unknown_event_type_rejected(self):
        with pytest.raises(ValueError):
            MetricsCollector().record_metric("cache_hit")

    def test_event_to_dict_drops_empty_fields(self):
        event = MetricsCollector().record_api_request("/health", "req-1")
        data = event.to_dict()
        assert "status_code" not in data
        assert data["endpoint"] == "/health"

    def test_clear(self):
        collector = MetricsCollector()
        collector.record_api_request("/health", "req-1")
        collector.clear()
        assert collector.get_events() == []

    def test_shared_collector(self):
        assert get_metrics_collector() is get_metrics_collector()


class TestSafeObservability:
    """Best-effort hook dispatch."""

    def test_forwards_to_sink(self):
        sink = MagicMock(spec=ObservabilitySink)
        hooks = SafeObservability(sink)

        hooks.log_event(logging.INFO, "hello", {"a": 1})
        hooks.record_metric("llm_call", {"duration": 5})

        sink.log_event.assert_called_once_with(logging.INFO, "hello", {"a": 1})
        sink.record_metric.assert_called_once_with("llm_call", {"duration": 5})

    def test_sink_failures_are_swallowed(self):
        sink = MagicMock(spec=ObservabilitySink)
        sink.log_event.side_effect = RuntimeError("down")
        sink.record_metric.side_effect = RuntimeError("down")
        hooks = SafeObservability(sink)

        hooks.log_event(logging.ERROR, "hello")
        hooks.record_metric("llm_call")

        assert sink.log_event.called and sink.record_metric.called

    def test_without_sink_is_noop(self):
        hooks = SafeObservability()
        hooks.log_event(logging.INFO, "nothing")
        hooks.record_metric("llm_call", {})


class TestLoggingObservabilitySink:
    """Default sink writing to logging and the metrics collector."""

    def test_log_event_includes_metadata(self, caplog):
        sink = LoggingObservabilitySink(collector=MetricsCollector(), logger_name="test.sink")

        with caplog.at_level(logging.INFO, logger="test.sink"):
            sink.log_event(logging.INFO, "🚀 Starting openai API call", {"provider": "openai"})

        assert "🚀 Starting openai API call | provider=openai" in caplog.text

    def test_known_metrics_reach_collector(self):
        collector = MetricsCollector()
        sink = LoggingObservabilitySink(collector=collector)

        with patch("llm_orchestrator.services.observability.sentry_sdk.add_breadcrumb") as breadcrumb:
            sink.record_metric("llm_call", {"duration": 12.5, "metadata": {"provider": "openai"}})
            sink.record_metric("custom_metric", {"value": 1})

        assert len(collector.get_events("llm_call")) == 1
        assert len(collector.get_events()) == 1
        assert breadcrumb.call_count == 2

    def test_metrics_disabled(self):
        collector = MetricsCollector()
        sink = LoggingObservabilitySink(collector=collector, enable_metrics=False)

        sink.record_metric("llm_call", {"duration": 1})

        assert collector.get_events() == []
