from __future__ import annotations

import time

from loguru import logger

from deepcite.errors import ExternalCallFailure
from deepcite.models.memory import EvidenceRecord
from deepcite.models.state import SessionState, Stage, StateUpdate
from deepcite.services import logger as log_service
from deepcite.services.evidence_store import chunk_id, chunk_words
from deepcite.stages.context import StageContext, error_entry


async def run(state: SessionState, ctx: StageContext) -> StateUpdate:
    settings = ctx.settings
    t0 = time.monotonic()
    known = set(state.stored_chunk_ids)
    default_sub_query = state.sub_queries[0].id if state.sub_queries else ""
    new_ids: list[str] = []
    errors: list[str] = []

    for page in state.scraped_pages:
        windows = chunk_words(
            page.text,
            window_size=settings.chunk_size_words,
            overlap=settings.chunk_overlap_words,
            min_words=settings.chunk_min_words,
        )
        records = [
            EvidenceRecord(
                id=chunk_id(page.url, index),
                text=window,
                url=page.url,
                title=page.title,
                sub_query_id=page.sub_query_id or default_sub_query,
                chunk_index=index,
            )
            for index, window in enumerate(windows)
            if chunk_id(page.url, index) not in known
        ]
        if not records:
            continue
        try:
            ids = await ctx.services.evidence_store.add(records)
        except ExternalCallFailure as e:
            logger.warning(f"Indexing failed for {page.url}: {e}")
            errors.append(error_entry(Stage.INDEX, state.iteration, f"{page.url}: {e.message}"))
            continue
        known.update(ids)
        new_ids.extend(ids)

    log_service.log_research_step(
        state.session_id,
        "index",
        "completed",
        {
            "iteration": state.iteration,
            "pages": len(state.scraped_pages),
            "new_chunks": len(new_ids),
            "elapsed_ms": int((time.monotonic() - t0) * 1000),
        },
    )
    update: StateUpdate = {"stored_chunk_ids": new_ids}
    if errors:
        update["errors"] = errors
    return update
