from __future__ import annotations

import asyncio
import time

from loguru import logger

from deepcite.config import Settings
from deepcite.models.memory import EvidenceHit
from deepcite.models.research import ChunkMetadata, Priority, RetrievedChunk
from deepcite.models.state import SessionState, Stage, StateUpdate
from deepcite.services import logger as log_service
from deepcite.stages.context import StageContext, error_entry


def build_query_set(state: SessionState, settings: Settings) -> list[str]:
    """Question, every high-priority sub-query, the first medium ones and
    reviewer feedback on a revision pass. Duplicates are dropped."""
    queries = [state.research_question]
    queries.extend(sq.query for sq in state.sub_queries if sq.priority is Priority.HIGH)
    medium = [sq.query for sq in state.sub_queries if sq.priority is Priority.MEDIUM]
    queries.extend(medium[: settings.retrieval_max_medium_queries])
    feedback = state.revision_feedback
    if feedback is not None and feedback.feedback.strip():
        queries.append(feedback.feedback)

    deduped: list[str] = []
    seen: set[str] = set()
    for query in queries:
        cleaned = " ".join(query.split())
        if cleaned and cleaned.lower() not in seen:
            seen.add(cleaned.lower())
            deduped.append(cleaned)
    return deduped


def relevance_from_hit(hit: EvidenceHit) -> float:
    if hit.similarity is not None:
        score = hit.similarity
    elif hit.distance is not None:
        score = 1.0 - hit.distance / 2.0
    else:
        score = 0.0
    return max(0.0, min(float(score), 1.0))


def chunk_from_hit(hit: EvidenceHit) -> RetrievedChunk:
    metadata = hit.metadata
    return RetrievedChunk(
        text=hit.text,
        metadata=ChunkMetadata(
            url=str(metadata.get("url") or ""),
            title=str(metadata.get("title") or ""),
            sub_query_id=str(metadata.get("sub_query_id") or ""),
            chunk_index=int(metadata.get("chunk_index") or 0),
        ),
        relevance_score=relevance_from_hit(hit),
    )


def rank_chunks(
    chunks: list[RetrievedChunk],
    *,
    max_chunks: int = 20,
    min_chars: int = 50,
    prefix_chars: int = 100,
) -> list[RetrievedChunk]:
    """Sort by relevance, keep the best chunk per text prefix, cap the list."""
    ranked: list[RetrievedChunk] = []
    seen: set[str] = set()
    for chunk in sorted(chunks, key=lambda c: c.relevance_score, reverse=True):
        if len(chunk.text) < min_chars:
            continue
        key = chunk.text[:prefix_chars].strip()
        if key in seen:
            continue
        seen.add(key)
        ranked.append(chunk)
        if len(ranked) >= max_chunks:
            break
    return ranked


async def run(state: SessionState, ctx: StageContext) -> StateUpdate:
    settings = ctx.settings
    store = ctx.services.evidence_store
    t0 = time.monotonic()

    if await store.count() == 0:
        logger.warning("Evidence store is empty, nothing to retrieve")
        return {"retrieved_chunks": []}

    queries = build_query_set(state, settings)
    outcomes = await asyncio.gather(
        *(store.query(query, settings.retrieval_top_k) for query in queries),
        return_exceptions=True,
    )

    candidates: list[RetrievedChunk] = []
    errors: list[str] = []
    for query, outcome in zip(queries, outcomes):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            logger.warning(f"Retrieval failed for '{query}': {outcome}")
            errors.append(error_entry(Stage.RETRIEVE, state.iteration, f"'{query}': {outcome}"))
            continue
        candidates.extend(chunk_from_hit(hit) for hit in outcome)

    ranked = rank_chunks(
        candidates,
        max_chunks=settings.retrieval_max_chunks,
        min_chars=settings.retrieval_min_chars,
        prefix_chars=settings.retrieval_dedup_prefix_chars,
    )
    log_service.log_research_step(
        state.session_id,
        "retrieve",
        "completed",
        {
            "iteration": state.iteration,
            "queries": len(queries),
            "candidates": len(candidates),
            "kept": len(ranked),
            "top_score": round(ranked[0].relevance_score, 3) if ranked else None,
            "elapsed_ms": int((time.monotonic() - t0) * 1000),
        },
    )
    update: StateUpdate = {"retrieved_chunks": ranked}
    if errors:
        update["errors"] = errors
    return update
