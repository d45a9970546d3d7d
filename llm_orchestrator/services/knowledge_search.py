"""
Knowledge-Base Company Search

Asks the LLM what it knows about a company, one query per topic, through the
retrying client and the batch runner. This draws on the model's training
knowledge only; it is not a live web search.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Optional, Union

from llm_orchestrator.config import Settings, get_settings
from .batch_query_runner import BatchQueryRunner, QueryOutcome
from .llm_client import LLMClient, get_llm_client
from .observability import SafeObservability, create_default_observability

logger = logging.getLogger(__name__)

KNOWLEDGE_BASE_SOURCE = "LLM Knowledge Base"

NO_INFORMATION_MARKERS = (
    "no relevant information found",
    "no information found",
    "could not find",
    "not available in my knowledge",
)

TRACK_RECORD_QUERIES = [
    "regulatory breaches ESG compliance violations",
    "supply chain violations labor issues",
    "financial audit qualified opinion restatement",
    "ESG reporting sustainability disclosure",
    "transparency disclosure public records",
]

ESG_PRACTICE_QUERIES = [
    "ESG policy sustainability practices",
    "environmental policy climate action",
    "social responsibility labor standards",
    "governance policies board structure",
    "ESG reporting sustainability report",
]

SEARCH_SYSTEM_PROMPT = (
    "You are a research assistant that searches for and summarizes information. "
    "Provide accurate, factual information with context from your knowledge base. "
    "Cite what you find or state clearly if nothing is found. "
    "Be specific about dates, events, and sources when available."
)

SEARCH_PROMPT_TEMPLATE = """Based on your knowledge, search for information about: "{full_query}".

Provide specific, verifiable facts including:
- Company name and context
- Specific dates, incidents, or events (if known)
- Regulatory actions or breaches (if any)
- Public disclosures or reports
- News articles or official statements

Focus on:
- ESG-related information
- Regulatory compliance issues
- Supply chain problems
- Transparency and disclosure
- Public records or reports

If you find relevant information, provide details with context. If no information is found in your knowledge base, state clearly: "No relevant information found in knowledge base."

Be specific and factual. Include dates, locations, or context when available."""


@dataclass
class SearchResult:
    title: str
    url: str
    snippet: str
    relevance_score: Optional[float] = None

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


def indicates_no_information(content: str) -> bool:
    """True when the model says it has nothing on the topic."""
    lowered = content.lower()
    return any(marker in lowered for marker in NO_INFORMATION_MARKERS)


class KnowledgeSearchService:
    """
    Runs knowledge queries about a company.

    Each query goes through the retrying LLM client; the batch runner bounds
    concurrency and spaces out chunks to stay under provider rate limits.
    """

    def __init__(
        self,
        llm_client: Optional[LLMClient] = None,
        settings: Optional[Settings] = None,
        runner: Optional[BatchQueryRunner] = None,
        observability: Optional[SafeObservability] = None
    ):
        self.settings = settings or get_settings()
        self._llm_client = llm_client
        self.runner = runner or BatchQueryRunner(
            self.execute_query,
            concurrency_cap=self.settings.search_max_concurrency,
            inter_batch_delay_ms=self.settings.search_delay_ms,
            observability=observability or create_default_observability()
        )

    @property
    def llm_client(self) -> LLMClient:
        if self._llm_client is None:
            self._llm_client = get_llm_client()
        return self._llm_client

    async def execute_query(self, company_name: str, query: str) -> List[SearchResult]:
        """
        Ask the LLM about one topic for a company.

        Returns:
            A single result holding the model's answer, or an empty list when
            the model reports having no information

        Raises:
            LLMError: If the call fails after retries
        """
        full_query = f"{company_name} {query}"
        logger.info(f"🔎 Knowledge query: \"{full_query}\"")

        response = await self.llm_client.call(
            SEARCH_PROMPT_TEMPLATE.format(full_query=full_query),
            system_prompt=SEARCH_SYSTEM_PROMPT,
            max_tokens=self.settings.search_max_tokens
        )
        content = response.content or ""

        if not content.strip() or indicates_no_information(content):
            logger.info(f"No results found for: \"{full_query}\"")
            return []

        logger.info(f"✅ Found information for: \"{full_query}\" ({len(content)} chars)")
        return [SearchResult(
            title=f"Search Results: {full_query}",
            url=KNOWLEDGE_BASE_SOURCE,
            snippet=content,
            relevance_score=0.8
        )]

    def _empty_results(self, company_name: str, queries: Iterable[str]) -> Dict[str, QueryOutcome]:
        return {
            query: QueryOutcome(query=query, label=company_name)
            for query in dict.fromkeys(queries)
        }

    async def search_company_info(self, company_name: str, queries: List[str]) -> Dict[str, QueryOutcome]:
        """
        Run every query for a company.

        Returns:
            Mapping from query to outcome, one entry per distinct query. Falls
            back to empty outcomes for all queries if the batch itself fails.
        """
        if not self.settings.enable_web_search:
            logger.info("Knowledge search disabled, returning empty results")
            return self._empty_results(company_name, queries)

        logger.info(f"🚀 Starting information search for company: {company_name} ({len(queries)} queries)")
        try:
            results = await self.runner.run_batch(company_name, queries)
        except Exception as e:
            logger.error(f"❌ Knowledge search failed for {company_name}: {e}")
            return self._empty_results(company_name, queries)

        total = sum(len(outcome.results) for outcome in results.values())
        logger.info(f"✅ Search completed. Total results: {total} across {len(results)} queries")
        return results

    async def search_track_record(self, company_name: str) -> List[QueryOutcome]:
        """Search for regulatory, supply-chain and audit track record issues."""
        results = await self.search_company_info(company_name, TRACK_RECORD_QUERIES)
        return list(results.values())

    async def search_esg_practices(self, company_name: str) -> List[QueryOutcome]:
        """Search for company ESG policies and practices."""
        results = await self.search_company_info(company_name, ESG_PRACTICE_QUERIES)
        return list(results.values())


def format_search_results_for_prompt(
    search_results: Union[Dict[str, QueryOutcome], List[QueryOutcome]]
) -> str:
    """Render search outcomes as a delimited block for inclusion in a prompt."""
    formatted = "\n\n=== WEB SEARCH RESULTS (External Verification) ===\n"

    if isinstance(search_results, dict):
        entries = [(query, outcome.results) for query, outcome in search_results.items()]
    else:
        entries = [(f"{o.label} {o.query}".strip(), o.results) for o in search_results]

    if not entries or all(not results for _, results in entries):
        formatted += "No additional information found through web search.\n"
        return formatted

    for query, results in entries:
        if not results:
            continue
        formatted += f"\nQuery: \"{query}\"\n"
        for idx, result in enumerate(results, start=1):
            formatted += f"Result {idx}:\n"
            formatted += f"  {result.snippet}\n"
            if result.url and result.url != KNOWLEDGE_BASE_SOURCE:
                formatted += f"  Source: {result.url}\n"
            formatted += "\n"

    formatted += "=== END WEB SEARCH RESULTS ===\n"
    return formatted
