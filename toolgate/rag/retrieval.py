"""
Toolgate Retrieval - Weighted search across several knowledge bases.

A query is fanned out to every configured knowledge source in parallel.
Each source's scores are multiplied by that source's weight, then all
results are merged, sorted by weighted score, and truncated to top_k.
Weighting biases retrieval toward authoritative sources without
normalizing each source's native scoring scale.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence

import httpx

from toolgate.tools.schema import KnowledgeSourceConfig

logger = logging.getLogger(__name__)


class NoSourceConfiguredError(Exception):
    """Raised when a retrieval is requested with no knowledge source configured."""

    pass


@dataclass
class SearchResult:
    """A single retrieved passage."""

    text: str
    score: float
    source_id: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "score": self.score,
            "sourceId": self.source_id,
            "metadata": self.metadata,
        }


class KnowledgeSearcher(ABC):
    """Searches one knowledge source."""

    @abstractmethod
    async def search(self, source_id: str, query: str, top_k: int) -> List[SearchResult]:
        """
        Return up to ``top_k`` results with source-local relevance scores.

        Args:
            source_id: The knowledge base to search.
            query: The query text.
            top_k: Maximum number of results.
        """
        pass


class HttpKnowledgeSearcher(KnowledgeSearcher):
    """
    Searches knowledge bases through the platform HTTP API.

    POSTs ``{query, topK}`` to ``{base_url}/v1/knowledge-base/{id}/search``
    and reads ``data.results`` from the response. When ``app_link`` is set it
    is sent as ``appLink`` so the platform can attribute the search to an app.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        api_key: Optional[str] = None,
        app_link: Optional[str] = None,
    ):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.app_link = app_link

    async def search(self, source_id: str, query: str, top_k: int) -> List[SearchResult]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        body: Dict[str, Any] = {"query": query, "topK": top_k}
        if self.app_link:
            body["appLink"] = self.app_link

        response = await self.client.post(
            f"{self.base_url}/v1/knowledge-base/{source_id}/search",
            json=body,
            headers=headers,
        )
        response.raise_for_status()
        payload = response.json()
        raw_results = (payload.get("data") or {}).get("results") or []

        results = []
        for raw in raw_results[:top_k]:
            metadata = dict(raw.get("metadata") or {})
            for key in ("fileId", "fileName"):
                if key in raw:
                    metadata.setdefault(key, raw[key])
            results.append(SearchResult(
                text=raw.get("text", ""),
                score=float(raw.get("score", 0.0)),
                source_id=source_id,
                metadata=metadata,
            ))
        return results


class WeightedRetriever:
    """
    Merges results from several knowledge sources by weighted score.

    Example:
        >>> retriever = WeightedRetriever(HttpKnowledgeSearcher(client, base_url))
        >>> results = await retriever.search("refund policy", sources, top_k=5)
    """

    def __init__(self, searcher: KnowledgeSearcher):
        self.searcher = searcher

    async def _search_source(
        self,
        source: KnowledgeSourceConfig,
        query: str,
        top_k: int,
    ) -> List[SearchResult]:
        try:
            results = await self.searcher.search(source.id, query, top_k)
        except Exception as e:
            logger.warning("Failed to search knowledge base %s: %s", source.id, e)
            return []

        return [
            replace(r, score=r.score * source.weight, source_id=source.id)
            for r in results[:top_k]
        ]

    async def search(
        self,
        query: str,
        sources: Sequence[KnowledgeSourceConfig],
        top_k: int = 5,
    ) -> List[SearchResult]:
        """
        Search every source in parallel and merge by weighted score.

        A failing source is logged and contributes nothing. Ties keep
        source fan-out order.

        Raises:
            NoSourceConfiguredError: If ``sources`` is empty.
        """
        if not sources:
            raise NoSourceConfiguredError("No knowledge base configured for this application")

        per_source = await asyncio.gather(
            *(self._search_source(source, query, top_k) for source in sources)
        )
        merged = [result for results in per_source for result in results]
        merged.sort(key=lambda r: r.score, reverse=True)
        logger.debug("Merged %d results from %d sources", len(merged), len(sources))
        return merged[:top_k]


def build_context(results: List[SearchResult]) -> str:
    """Format results as numbered passages for a system prompt."""
    return "\n\n".join(f"[{i}] {r.text}" for i, r in enumerate(results, 1))
