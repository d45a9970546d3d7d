"""
Observability hooks for the orchestration core.

The retrying caller and batch runner report through two fire-and-forget
operations, ``log_event(level, message, metadata)`` and
``record_metric(event_type, fields)``. ``SafeObservability`` guarantees that a
broken sink never raises into, or changes the outcome of, the calling code.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import sentry_sdk

from .metrics import METRIC_TYPES, MetricsCollector, get_metrics_collector

logger = logging.getLogger(__name__)


class ObservabilitySink(ABC):
    """Destination for core log events and metrics."""

    @abstractmethod
    def log_event(self, level: int, message: str, metadata: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def record_metric(self, event_type: str, fields: Dict[str, Any]) -> None:
        ...


class LoggingObservabilitySink(ObservabilitySink):
    """
    Default sink.

    Writes events to ``logging``, stores known metric types in the metrics
    collector and leaves a Sentry breadcrumb for each (a no-op when Sentry has
    not been initialised).
    """

    def __init__(
        self,
        collector: Optional[MetricsCollector] = None,
        enable_metrics: bool = True,
        logger_name: str = "llm_orchestrator.core"
    ):
        self.collector = collector
        self.enable_metrics = enable_metrics
        self.logger = logging.getLogger(logger_name)

    def log_event(self, level: int, message: str, metadata: Dict[str, Any]) -> None:
        if metadata:
            context = ", ".join(f"{k}={v}" for k, v in metadata.items())
            self.logger.log(level, f"{message} | {context}")
        else:
            self.logger.log(level, message)

    def record_metric(self, event_type: str, fields: Dict[str, Any]) -> None:
        sentry_sdk.add_breadcrumb(category="metric", message=event_type, data=fields, level="info")
        if not self.enable_metrics or event_type not in METRIC_TYPES:
            return
        collector = self.collector or get_metrics_collector()
        collector.record_metric(event_type, **fields)


class SafeObservability:
    """Wraps a sink so that every call is best-effort and never raises."""

    def __init__(self, sink: Optional[ObservabilitySink] = None):
        self.sink = sink

    def log_event(self, level: int, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        if self.sink is None:
            return
        try:
            self.sink.log_event(level, message, metadata or {})
        except Exception as e:
            logger.debug(f"Observability sink failed in log_event: {e}")

    def record_metric(self, event_type: str, fields: Optional[Dict[str, Any]] = None) -> None:
        if self.sink is None:
            return
        try:
            self.sink.record_metric(event_type, fields or {})
        except Exception as e:
            logger.debug(f"Observability sink failed in record_metric: {e}")


def create_default_observability() -> SafeObservability:
    """Build the default sink from settings."""
    from llm_orchestrator.config import get_settings

    return SafeObservability(
        LoggingObservabilitySink(enable_metrics=get_settings().enable_metrics)
    )
