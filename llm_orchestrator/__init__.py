"""
LLM Orchestrator Application Package

This package contains the resilient external-call orchestration layer: rate
limiting, timeout racing, retrying LLM invocation, JSON extraction from model
output and concurrency-bounded batch querying, plus the thin FastAPI service
that exposes them.
"""

__version__ = "1.0.0"
__author__ = "LLM Orchestrator Development Team"
