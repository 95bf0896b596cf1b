from __future__ import annotations

import asyncio
import time

from loguru import logger

from deepcite.models.research import ScrapedPage, SearchResult
from deepcite.models.state import SessionState, Stage, StateUpdate
from deepcite.services import logger as log_service
from deepcite.stages.context import StageContext, error_entry


def select_urls(state: SessionState, max_urls: int) -> list[SearchResult]:
    """Highest-scored results whose url has not been fetched in this session."""
    skip = state.scraped_urls | set(state.attempted_urls)
    selected: list[SearchResult] = []
    seen: set[str] = set()
    for result in sorted(state.search_results, key=lambda r: r.score or 0.0, reverse=True):
        if result.url in skip or result.url in seen:
            continue
        seen.add(result.url)
        selected.append(result)
        if len(selected) >= max_urls:
            break
    return selected


async def run(state: SessionState, ctx: StageContext) -> StateUpdate:
    settings = ctx.settings
    selected = select_urls(state, settings.scrape_max_urls)
    if not selected:
        logger.info("Nothing new to scrape")
        return {"scraped_pages": []}

    t0 = time.monotonic()
    batch_size = max(settings.scrape_concurrency, 1)
    pages: list[ScrapedPage] = []
    errors: list[str] = []
    too_short = 0

    for start in range(0, len(selected), batch_size):
        batch = selected[start : start + batch_size]
        outcomes = await asyncio.gather(
            *(ctx.services.fetcher.fetch(result.url) for result in batch),
            return_exceptions=True,
        )
        for result, outcome in zip(batch, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning(f"Scrape failed for {result.url}: {outcome}")
                errors.append(error_entry(Stage.SCRAPE, state.iteration, str(outcome)))
                continue
            if outcome.word_count < settings.scrape_min_words:
                too_short += 1
                logger.debug(f"Dropping {result.url}: {outcome.word_count} words")
                continue
            pages.append(
                ScrapedPage(
                    url=result.url,
                    title=outcome.title or result.title,
                    text=outcome.text,
                    word_count=outcome.word_count,
                    sub_query_id=result.sub_query_id,
                )
            )

    log_service.log_research_step(
        state.session_id,
        "scrape",
        "completed",
        {
            "iteration": state.iteration,
            "attempted": len(selected),
            "scraped": len(pages),
            "failed": len(errors),
            "too_short": too_short,
            "elapsed_ms": int((time.monotonic() - t0) * 1000),
        },
    )
    update: StateUpdate = {"scraped_pages": pages, "attempted_urls": [result.url for result in selected]}
    if errors:
        update["errors"] = errors
    return update
