from __future__ import annotations

from typing import Any

import httpx

from deepcite.models.research import SearchResult
from deepcite.tools.web_utils import is_valid_url, truncate

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
SNIPPET_MAX_CHARS = 500


def normalize_results(payload: dict[str, Any]) -> list[SearchResult]:
    raw_results = payload.get("web", {}).get("results", []) or []
    total = max(len(raw_results), 1)
    mapped: list[SearchResult] = []
    for idx, item in enumerate(raw_results):
        url = str(item.get("url") or "")
        if not is_valid_url(url):
            continue
        snippets = item.get("extra_snippets", []) or []
        description = item.get("description", "") or ""
        content = description.strip() or " ".join(snippets).strip()
        # Brave exposes no relevance score; rank position stands in for one.
        score = max(0.0, 1.0 - (idx / total))
        mapped.append(
            SearchResult(
                url=url,
                title=item.get("title", "") or "",
                snippet=truncate(content, SNIPPET_MAX_CHARS),
                score=score,
                published_date=item.get("page_age") or item.get("age"),
            )
        )
    return mapped


async def search(
    query: str,
    *,
    api_key: str,
    max_results: int = 5,
    http_client: httpx.AsyncClient | None = None,
) -> list[SearchResult]:
    """Execute a Brave web search and normalize results."""
    if not api_key:
        raise RuntimeError("BRAVE_API_KEY is not configured")

    params: dict[str, Any] = {"q": query, "count": max_results}
    headers = {"Accept": "application/json", "X-Subscription-Token": api_key}

    if http_client is not None:
        response = await http_client.get(BRAVE_SEARCH_URL, params=params, headers=headers)
        response.raise_for_status()
        payload = response.json()
    else:
        async with httpx.AsyncClient(timeout=30.0) as client:
            response = await client.get(BRAVE_SEARCH_URL, params=params, headers=headers)
            response.raise_for_status()
            payload = response.json()

    return normalize_results(payload)[:max_results]
