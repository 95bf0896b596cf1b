"""Write the cited report from retrieved evidence."""
from __future__ import annotations

import time

from pydantic import ValidationError

from deepcite.errors import StageFailure, SynthesisParseFailure
from deepcite.models.research import (
    Citation,
    HumanFeedback,
    Report,
    ReportMetadata,
    ReportSection,
    RetrievedChunk,
    SearchResult,
    SynthesizedReport,
)
from deepcite.models.state import SessionState, StateUpdate
from deepcite.services import logger as log_service
from deepcite.services.json_extract import JSONExtractionError, extract_json_object
from deepcite.services.prompt_store import render_prompt
from deepcite.stages.context import StageContext, format_change_requests
from deepcite.tools.web_utils import truncate


def build_citation_map(
    chunks: list[RetrievedChunk],
    search_results: list[SearchResult],
    *,
    max_search_results: int = 20,
) -> list[Citation]:
    """Number sources 1..N: retrieved chunk urls first (by first appearance),
    then uncited urls from the leading slice of raw search results."""
    citations: list[Citation] = []
    by_url: dict[str, Citation] = {}

    def add(url: str, title: str) -> None:
        if not url or url in by_url:
            return
        citation = Citation(id=len(citations) + 1, url=url, title=title)
        by_url[url] = citation
        citations.append(citation)

    for chunk in chunks:
        add(chunk.metadata.url, chunk.metadata.title)
    for result in search_results[:max_search_results]:
        add(result.url, result.title)
    return citations


def render_citations(citations: list[Citation]) -> str:
    return "\n".join(f"[{c.id}] {c.title or 'Untitled'} - {c.url}" for c in citations)


def render_chunks(
    chunks: list[RetrievedChunk],
    citations: list[Citation],
    *,
    max_chunks: int = 15,
    char_limit: int = 2500,
) -> str:
    ids = {c.url: c.id for c in citations}
    blocks = [
        f'[Source {ids.get(chunk.metadata.url, "?")}] "{chunk.metadata.title}" '
        f"(relevance: {chunk.relevance_score:.2f}):\n{truncate(chunk.text, char_limit)}"
        for chunk in chunks[:max_chunks]
    ]
    return "\n\n---\n\n".join(blocks)


def _revision_context(feedback: HumanFeedback | None) -> str:
    if feedback is None:
        return ""
    return render_prompt(
        "synthesize.revision_context",
        feedback=feedback.feedback,
        changes=format_change_requests(feedback.requested_changes),
    )


def parse_report(raw_text: str) -> SynthesizedReport:
    try:
        payload = extract_json_object(raw_text)
        return SynthesizedReport.model_validate(payload)
    except (JSONExtractionError, ValidationError) as e:
        raise SynthesisParseFailure(
            f"model output is not a valid report: {e}",
            raw_excerpt=(raw_text or "")[:500],
        ) from e


def finalize_report(
    parsed: SynthesizedReport,
    citations: list[Citation],
    *,
    sub_query_count: int,
    iteration: int,
) -> Report:
    """Replace model-supplied citations and metadata with local values."""
    valid_ids = {c.id for c in citations}
    quotes = {
        str(item.get("url")): str(item["quote"])
        for item in parsed.citations
        if item.get("url") and item.get("quote")
    }
    sections = [
        ReportSection(
            title=section.title,
            content=section.content,
            citations=sorted({cid for cid in section.citations if cid in valid_ids}),
        )
        for section in parsed.sections
    ]
    return Report(
        title=parsed.title,
        executive_summary=parsed.executive_summary,
        sections=sections,
        conclusions=parsed.conclusions,
        citations=[c.model_copy(update={"quote": quotes.get(c.url)}) for c in citations],
        metadata=ReportMetadata(
            total_sources=len(citations),
            sub_queries_answered=sub_query_count,
            iteration_count=iteration,
        ),
    )


async def run(state: SessionState, ctx: StageContext) -> StateUpdate:
    if not state.retrieved_chunks:
        raise StageFailure("no retrieved evidence to synthesize from")

    settings = ctx.settings
    t0 = time.monotonic()
    citations = build_citation_map(
        state.retrieved_chunks,
        state.search_results,
        max_search_results=settings.synthesis_max_search_citations,
    )
    user_prompt = render_prompt(
        "synthesize.user",
        question=state.research_question,
        revision_context=_revision_context(state.revision_feedback),
        citations=render_citations(citations),
        chunks=render_chunks(
            state.retrieved_chunks,
            citations,
            max_chunks=settings.synthesis_max_chunks,
            char_limit=settings.synthesis_chunk_char_limit,
        ),
    )
    raw = await ctx.services.llm.generate(
        render_prompt("synthesize.system"),
        user_prompt,
        caller="synthesize",
        temperature=settings.synthesis_temperature,
        max_tokens=settings.synthesis_max_tokens,
    )
    report = finalize_report(
        parse_report(raw),
        citations,
        sub_query_count=len(state.sub_queries),
        iteration=state.iteration,
    )

    log_service.log_research_step(
        state.session_id,
        "synthesize",
        "completed",
        {
            "iteration": state.iteration,
            "sections": len(report.sections),
            "citations": len(report.citations),
            "elapsed_ms": int((time.monotonic() - t0) * 1000),
        },
    )
    return {"draft_report": report, "last_draft_report": report}
