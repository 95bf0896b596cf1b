from __future__ import annotations

from dataclasses import dataclass

import httpx

from deepcite.config import Settings
from deepcite.errors import SearchFailure
from deepcite.models.research import SearchResult
from deepcite.services import logger as log_service
from deepcite.tools import brave_search, tavily_search


@dataclass
class SearchResponse:
    results: list[SearchResult]
    provider: str
    fallback_from: str | None = None
    fallback_reason: str | None = None


class SearchService:
    """Web search through the configured provider, falling back to Tavily
    when Brave errors or comes back empty."""

    def __init__(self, settings: Settings, *, http_client: httpx.AsyncClient | None = None):
        self.settings = settings
        self._http_client = http_client

    async def _tavily(self, query: str, max_results: int) -> list[SearchResult]:
        return await tavily_search.search(
            query,
            api_key=self.settings.tavily_api_key,
            max_results=max_results,
        )

    async def _brave(self, query: str, max_results: int) -> list[SearchResult]:
        return await brave_search.search(
            query,
            api_key=self.settings.brave_api_key,
            max_results=max_results,
            http_client=self._http_client,
        )

    async def search_with_provider(self, query: str, *, max_results: int) -> SearchResponse:
        provider = self.settings.search_provider.lower().strip()
        use_fallback = self.settings.search_fallback_enabled

        if provider == "tavily":
            try:
                results = await self._tavily(query, max_results)
            except Exception as e:
                raise SearchFailure(str(e), provider="tavily") from e
            return SearchResponse(results=results, provider="tavily")

        if provider == "brave":
            try:
                results = await self._brave(query, max_results)
                if results or not use_fallback:
                    return SearchResponse(results=results, provider="brave")
                reason = "brave returned zero results"
            except Exception as e:
                if not use_fallback:
                    raise SearchFailure(str(e), provider="brave") from e
                reason = str(e)

            log_service.log_event("search_fallback", f"brave -> tavily: {reason}", query=query)
            try:
                fallback_results = await self._tavily(query, max_results)
            except Exception as e:
                raise SearchFailure(f"{e} (after brave: {reason})", provider="tavily") from e
            return SearchResponse(
                results=fallback_results,
                provider="tavily",
                fallback_from="brave",
                fallback_reason=reason,
            )

        raise ValueError(f"Unsupported SEARCH_PROVIDER: {self.settings.search_provider}")

    async def search(self, query: str, *, max_results: int = 5) -> list[SearchResult]:
        response = await self.search_with_provider(query, max_results=max_results)
        return response.results

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
