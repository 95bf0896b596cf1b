from __future__ import annotations

import asyncio
import time

from loguru import logger

from deepcite.errors import StageFailure
from deepcite.models.research import SearchResult, SubQuery
from deepcite.models.state import SessionState, Stage, StateUpdate
from deepcite.services import logger as log_service
from deepcite.stages.context import StageContext, error_entry


def order_by_priority(sub_queries: list[SubQuery]) -> list[SubQuery]:
    return sorted(sub_queries, key=lambda sq: sq.priority.rank)


async def run(state: SessionState, ctx: StageContext) -> StateUpdate:
    if not state.sub_queries:
        raise StageFailure("no sub-queries to search")

    t0 = time.monotonic()
    ordered = order_by_priority(state.sub_queries)
    max_results = ctx.settings.search_max_results
    semaphore = asyncio.Semaphore(max(ctx.settings.search_max_parallel_requests, 1))

    async def run_one(sub_query: SubQuery) -> list[SearchResult]:
        async with semaphore:
            return await ctx.services.search.search(sub_query.query, max_results=max_results)

    outcomes = await asyncio.gather(*(run_one(sq) for sq in ordered), return_exceptions=True)

    # Merge in priority order so the earliest sub-query owns a shared url.
    seen = state.search_urls
    new_results: list[SearchResult] = []
    errors: list[str] = []
    for sub_query, outcome in zip(ordered, outcomes):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            logger.warning(f"Search failed for '{sub_query.query}': {outcome}")
            errors.append(error_entry(Stage.SEARCH, state.iteration, f"'{sub_query.query}': {outcome}"))
            continue
        for result in outcome[:max_results]:
            if result.url in seen:
                continue
            seen.add(result.url)
            new_results.append(result.model_copy(update={"sub_query_id": sub_query.id}))

    log_service.log_research_step(
        state.session_id,
        "search",
        "completed",
        {
            "iteration": state.iteration,
            "queries": len(ordered),
            "failed": len(errors),
            "new_results": len(new_results),
            "elapsed_ms": int((time.monotonic() - t0) * 1000),
        },
    )
    update: StateUpdate = {"search_results": new_results}
    if errors:
        update["errors"] = errors
    return update
