"""
In-Process Metrics Collector

Keeps a bounded window of recent metric events (API requests, LLM calls, file
processing) for the health endpoint. Events beyond the configured maximum are
dropped oldest-first.
"""

import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

METRIC_TYPES = ("api_request", "api_success", "api_error", "llm_call", "file_processing")


@dataclass
class MetricEvent:
    """A single recorded metric."""

    type: str
    timestamp: str
    endpoint: Optional[str] = None
    request_id: Optional[str] = None
    duration: Optional[float] = None  # milliseconds
    status_code: Optional[int] = None
    error_code: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


class MetricsCollector:
    """
    Tracks API usage, performance and errors.

    Features:
    - Bounded in-memory event store
    - Typed helpers per event type
    - Aggregated summary for health checks
    """

    def __init__(self, max_events: int = 1000):
        """
        Initialize the collector.

        Args:
            max_events: Number of most recent events to keep
        """
        self.max_events = max_events
        self._events: Deque[MetricEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def record_metric(self, event_type: str, **fields) -> MetricEvent:
        """
        Record a metric event.

        Args:
            event_type: One of api_request, api_success, api_error, llm_call, file_processing
            **fields: endpoint, request_id, duration, status_code, error_code, metadata
        """
        if event_type not in METRIC_TYPES:
            raise ValueError(f"Unknown metric type: {event_type}")
        event = MetricEvent(
            type=event_type,
            timestamp=datetime.now(timezone.utc).isoformat(),
            endpoint=fields.get("endpoint"),
            request_id=fields.get("request_id"),
            duration=fields.get("duration"),
            status_code=fields.get("status_code"),
            error_code=fields.get("error_code"),
            metadata=dict(fields.get("metadata") or {}),
        )
        with self._lock:
            self._events.append(event)
        logger.debug(f"📊 [METRICS] {event.to_dict()}")
        return event

    def record_api_request(self, endpoint: str, request_id: str, metadata: Optional[Dict[str, Any]] = None):
        return self.record_metric("api_request", endpoint=endpoint, request_id=request_id, metadata=metadata)

    def record_api_success(
        self,
        endpoint: str,
        request_id: str,
        duration: float,
        metadata: Optional[Dict[str, Any]] = None
    ):
        return self.record_metric(
            "api_success", endpoint=endpoint, request_id=request_id, duration=duration, metadata=metadata
        )

    def record_api_error(
        self,
        endpoint: str,
        request_id: Optional[str],
        status_code: int,
        error_code: str,
        duration: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None
    ):
        return self.record_metric(
            "api_error",
            endpoint=endpoint,
            request_id=request_id,
            status_code=status_code,
            error_code=error_code,
            duration=duration,
            metadata=metadata,
        )

    def get_events(self, event_type: Optional[str] = None) -> List[MetricEvent]:
        with self._lock:
            events = list(self._events)
        if event_type:
            events = [e for e in events if e.type == event_type]
        return events

    def get_summary(self) -> Dict[str, Any]:
        """
        Get metrics summary for health checks.

        Returns:
            total_requests, total_errors, average_response_time (ms, successes only),
            error_rate (percent) and the ten most recent errors, newest first
        """
        events = self.get_events()
        requests = [e for e in events if e.type == "api_request"]
        successes = [e for e in events if e.type == "api_success"]
        errors = [e for e in events if e.type == "api_error"]

        durations = [e.duration for e in successes if e.duration is not None]
        average = sum(durations) / len(durations) if durations else 0
        error_rate = (len(errors) / len(requests)) * 100 if requests else 0

        return {
            "total_requests": len(requests),
            "total_errors": len(errors),
            "average_response_time": round(average),
            "error_rate": round(error_rate, 2),
            "recent_errors": [e.to_dict() for e in reversed(errors[-10:])],
        }

    def clear(self):
        """Drop all recorded events."""
        with self._lock:
            self._events.clear()


# Global metrics instance (initialized lazily)
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """Get the process-wide metrics collector."""
    global _metrics_collector
    if _metrics_collector is None:
        from llm_orchestrator.config import get_settings

        _metrics_collector = MetricsCollector(max_events=get_settings().metrics_max_events)
    return _metrics_collector
