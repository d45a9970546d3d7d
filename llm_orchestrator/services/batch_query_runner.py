"""
Concurrency-Bounded Batch Query Runner

Fans a list of independent query strings out to an async query function.
Queries are split into consecutive chunks of ``concurrency_cap``; chunks run
strictly one after another, the queries inside a chunk run concurrently, and
the runner pauses ``inter_batch_delay_ms`` between chunks (not after the last).

A failing query becomes an empty placeholder result. It never aborts its chunk
or the batch, so the output always has one entry per distinct input query.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from llm_orchestrator.utils.exceptions import OrchestratorError, ValidationError
from .observability import SafeObservability

logger = logging.getLogger(__name__)

QueryFunction = Callable[[str, str], Awaitable[List[Any]]]


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class QueryOutcome:
    """Structured outcome for one query of a batch."""

    query: str
    label: str
    results: List[Any] = field(default_factory=list)
    timestamp: str = field(default_factory=_utc_now_iso)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "query": f"{self.label} {self.query}".strip(),
            "results": [r.to_dict() if hasattr(r, "to_dict") else r for r in self.results],
            "timestamp": self.timestamp,
        }
        if self.error:
            data["error"] = self.error
        return data


def chunk_queries(queries: Sequence[str], size: int) -> List[List[str]]:
    """Partition queries into consecutive chunks of at most ``size``."""
    if size < 1:
        raise ValidationError(
            f"Concurrency cap must be at least 1, got {size}",
            details={"concurrency_cap": size}
        )
    return [list(queries[i:i + size]) for i in range(0, len(queries), size)]


class BatchQueryRunner:
    """
    Runs query batches under a concurrency cap with inter-chunk pacing.

    ``query_fn(label, query)`` returns the result list for one query; the label
    identifies the batch's subject (e.g. a company name).
    """

    def __init__(
        self,
        query_fn: QueryFunction,
        concurrency_cap: int = 3,
        inter_batch_delay_ms: float = 500,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        observability: Optional[SafeObservability] = None
    ):
        self.query_fn = query_fn
        self.concurrency_cap = concurrency_cap
        self.inter_batch_delay_ms = inter_batch_delay_ms
        self._sleep = sleep
        self.observability = observability or SafeObservability()

    async def _run_one(self, label: str, query: str) -> QueryOutcome:
        try:
            results = await self.query_fn(label, query)
            return QueryOutcome(query=query, label=label, results=list(results or []))
        except Exception as e:
            error_text = e.message if isinstance(e, OrchestratorError) else (str(e) or type(e).__name__)
            self.observability.log_event(
                logging.WARNING,
                "⚠️ Batch query failed, using empty result",
                {"label": label, "query": query, "error": error_text}
            )
            return QueryOutcome(query=query, label=label, error=error_text)

    async def run_batch(
        self,
        label: str,
        queries: Sequence[str],
        concurrency_cap: Optional[int] = None,
        inter_batch_delay_ms: Optional[float] = None
    ) -> Dict[str, QueryOutcome]:
        """
        Run every query and collect one outcome per query string.

        Args:
            label: Subject the queries are about
            queries: Query strings, launched in input order
            concurrency_cap: Chunk size; defaults to the runner's cap
            inter_batch_delay_ms: Pause between chunks; defaults to the runner's delay

        Returns:
            Mapping from query string to its outcome, in input order

        Raises:
            ValidationError: If the concurrency cap is below 1
        """
        cap = self.concurrency_cap if concurrency_cap is None else concurrency_cap
        delay_ms = self.inter_batch_delay_ms if inter_batch_delay_ms is None else inter_batch_delay_ms
        # Duplicate query strings map to one key, so each is run once
        unique_queries = list(dict.fromkeys(queries))
        chunks = chunk_queries(unique_queries, cap)

        started = time.monotonic()
        self.observability.log_event(
            logging.INFO,
            f"🚀 Starting batch of {len(unique_queries)} queries",
            {"label": label, "chunks": len(chunks), "concurrency_cap": cap, "delay_ms": delay_ms}
        )

        outcomes: Dict[str, QueryOutcome] = {}
        for index, chunk in enumerate(chunks):
            chunk_outcomes = await asyncio.gather(*(self._run_one(label, q) for q in chunk))
            for outcome in chunk_outcomes:
                outcomes[outcome.query] = outcome

            if index < len(chunks) - 1 and delay_ms > 0:
                await self._sleep(delay_ms / 1000)

        failed = sum(1 for o in outcomes.values() if not o.succeeded)
        self.observability.log_event(
            logging.INFO,
            f"✅ Batch complete: {len(outcomes) - failed}/{len(outcomes)} queries succeeded",
            {"label": label, "elapsed_ms": round((time.monotonic() - started) * 1000, 2)}
        )
        return {query: outcomes[query] for query in unique_queries}
