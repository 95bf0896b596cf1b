from __future__ import annotations

from typing import Any

from tavily import AsyncTavilyClient

from deepcite.models.research import SearchResult
from deepcite.tools.web_utils import is_valid_url, truncate

SNIPPET_MAX_CHARS = 500


def normalize_results(payload: dict[str, Any]) -> list[SearchResult]:
    results: list[SearchResult] = []
    for item in payload.get("results", []) or []:
        url = str(item.get("url") or "")
        if not is_valid_url(url):
            continue
        results.append(
            SearchResult(
                url=url,
                title=str(item.get("title") or ""),
                snippet=truncate(str(item.get("content") or ""), SNIPPET_MAX_CHARS),
                score=item.get("score"),
                published_date=item.get("published_date"),
            )
        )
    return results


async def search(
    query: str,
    *,
    api_key: str,
    max_results: int = 5,
    search_depth: str = "advanced",
    client: Any | None = None,
) -> list[SearchResult]:
    """Execute a Tavily web search and return normalized results."""
    if not api_key and client is None:
        raise RuntimeError("TAVILY_API_KEY is not configured")
    client = client or AsyncTavilyClient(api_key=api_key)
    response = await client.search(
        query=query,
        search_depth=search_depth,
        max_results=max_results,
        include_answer=False,
        include_raw_content=False,
    )
    return normalize_results(response)[:max_results]
