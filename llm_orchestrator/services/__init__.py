"""
Services Package for the LLM Orchestrator

This package contains the retrying LLM client, the batch query runner and the
services built on them (knowledge search, document extraction), together with
the observability hooks and in-process metrics they report to.
"""

from .llm_client import LLMClient, LLMResponse, get_llm_client
from .batch_query_runner import BatchQueryRunner, QueryOutcome
from .knowledge_search import KnowledgeSearchService, format_search_results_for_prompt
from .document_processor import DocumentProcessor, ExtractedText
from .metrics import MetricsCollector, get_metrics_collector
from .observability import ObservabilitySink, SafeObservability

__all__ = [
    "LLMClient",
    "LLMResponse",
    "get_llm_client",
    "BatchQueryRunner",
    "QueryOutcome",
    "KnowledgeSearchService",
    "format_search_results_for_prompt",
    "DocumentProcessor",
    "ExtractedText",
    "MetricsCollector",
    "get_metrics_collector",
    "ObservabilitySink",
    "SafeObservability",
]
