"""
search.py — Tavily web search for the research pipeline and the webSearchFast tool.

TavilySearch wraps tavily-python's AsyncTavilyClient and normalises results into
SearchResult models. Provider failures are re-raised as UpstreamError so callers
only ever deal with the CoverNow taxonomy.

The client is created lazily on first use; a missing TAVILY_API_KEY is reported
as an UpstreamError at call time, not at import or startup.
"""
import logging
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field
from tavily import AsyncTavilyClient

from covernow.agents.research_agent.schemas import SearchResult
from covernow.errors import UpstreamError

logger = logging.getLogger(__name__)

SearchDepth = Literal["basic", "advanced"]
SearchTopic = Literal["general", "news"]

MISSING_KEY = "Tavily API key not configured. Please set TAVILY_API_KEY in environment variables."


class SearchResponse(BaseModel):
    query: str
    results: list[SearchResult] = Field(default_factory=list)
    answer: Optional[str] = None


def _to_result(raw: dict[str, Any]) -> SearchResult:
    return SearchResult(
        title=raw.get("title") or "",
        url=raw.get("url") or "",
        content=raw.get("content") or raw.get("raw_content") or "",
        score=float(raw.get("score") or 0.0),
        publishedDate=raw.get("published_date"),
    )


class TavilySearch:
    """Thin async wrapper around AsyncTavilyClient."""

    def __init__(self, api_key: Optional[str], client: Optional[AsyncTavilyClient] = None) -> None:
        self._api_key = api_key
        self._client = client

    @property
    def enabled(self) -> bool:
        return self._client is not None or bool(self._api_key)

    def _get_client(self) -> AsyncTavilyClient:
        if self._client is None:
            if not self._api_key:
                raise UpstreamError(MISSING_KEY)
            self._client = AsyncTavilyClient(api_key=self._api_key)
        return self._client

    async def search(
        self,
        query: str,
        depth: SearchDepth = "basic",
        max_results: int = 5,
        topic: SearchTopic = "general",
        include_answer: bool = False,
    ) -> SearchResponse:
        client = self._get_client()
        logger.info(
            "Tavily search depth=%s max_results=%d topic=%s", depth, max_results, topic
        )
        try:
            raw = await client.search(
                query,
                search_depth=depth,
                max_results=max_results,
                topic=topic,
                include_answer=include_answer,
                include_raw_content=False,
                include_images=False,
            )
        except Exception as exc:
            logger.warning("Tavily search failed: %s", exc)
            raise UpstreamError(f"Search failed: {exc}") from exc

        results = [_to_result(r) for r in raw.get("results") or [] if r.get("url")]
        logger.info("Tavily search returned %d results", len(results))
        return SearchResponse(query=query, results=results, answer=raw.get("answer"))
