"""Turn the research question (plus reviewer feedback) into 3-6 sub-queries."""
from __future__ import annotations

import time
from typing import Any
from uuid import uuid4

from loguru import logger

from deepcite.errors import InvalidInput, LLMFailure
from deepcite.models.research import HumanFeedback, Priority, SubQuery
from deepcite.models.state import SessionState, Stage, StateUpdate
from deepcite.services import logger as log_service
from deepcite.services.json_extract import extract_json_object
from deepcite.services.prompt_store import render_prompt
from deepcite.stages.context import StageContext, error_entry, format_change_requests

MIN_SUB_QUERIES = 3
MAX_SUB_QUERIES = 6


def _coerce_priority(value: Any) -> Priority:
    try:
        return Priority(str(value).strip().lower())
    except ValueError:
        return Priority.MEDIUM


def parse_sub_queries(raw_text: str) -> list[SubQuery]:
    """Read the model's plan. Ids are always assigned here, never by the model."""
    payload = extract_json_object(raw_text)
    items = payload.get("subQueries", payload.get("sub_queries"))
    if not isinstance(items, list):
        raise ValueError("response has no subQueries list")

    sub_queries: list[SubQuery] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        query = " ".join(str(item.get("query") or "").split())
        if not query:
            continue
        sub_queries.append(
            SubQuery(
                id=str(uuid4()),
                query=query,
                rationale=str(item.get("rationale") or ""),
                priority=_coerce_priority(item.get("priority")),
            )
        )
    return sub_queries


def fallback_plan(question: str, feedback: HumanFeedback | None = None) -> list[SubQuery]:
    """Deterministic plan used when the model gives nothing usable."""
    plan: list[tuple[str, str, Priority]] = []
    if feedback is not None and feedback.feedback.strip():
        plan.append((f"{question} {feedback.feedback.strip()}", "Reviewer feedback", Priority.HIGH))
    plan.extend(
        [
            (question, "Original research question", Priority.HIGH),
            (f"{question} key facts and evidence", "Core evidence", Priority.MEDIUM),
            (f"{question} recent developments", "Current state", Priority.MEDIUM),
            (f"{question} criticism and limitations", "Counterpoints", Priority.LOW),
        ]
    )
    return [
        SubQuery(id=str(uuid4()), query=query, rationale=rationale, priority=priority)
        for query, rationale, priority in plan
    ]


def finalize_plan(
    sub_queries: list[SubQuery],
    question: str,
    feedback: HumanFeedback | None = None,
) -> list[SubQuery]:
    if not sub_queries:
        return fallback_plan(question, feedback)[:MAX_SUB_QUERIES]
    plan = list(sub_queries[:MAX_SUB_QUERIES])
    seen = {sq.query.lower() for sq in plan}
    for candidate in fallback_plan(question, feedback):
        if len(plan) >= MIN_SUB_QUERIES:
            break
        if candidate.query.lower() in seen:
            continue
        seen.add(candidate.query.lower())
        plan.append(candidate)
    return plan


def _revision_context(iteration: int, feedback: HumanFeedback | None) -> str:
    if feedback is None:
        return ""
    return render_prompt(
        "decompose.revision_context",
        iteration=iteration,
        feedback=feedback.feedback,
        changes=format_change_requests(feedback.requested_changes),
    )


async def run(state: SessionState, ctx: StageContext) -> StateUpdate:
    question = state.research_question.strip()
    if not question:
        raise InvalidInput("research question is empty")

    iteration = state.iteration + 1
    feedback = state.revision_feedback
    t0 = time.monotonic()
    errors: list[str] = []

    system_prompt = render_prompt("decompose.system")
    user_prompt = render_prompt(
        "decompose.user",
        question=question,
        revision_context=_revision_context(iteration, feedback),
    )

    parsed: list[SubQuery] = []
    try:
        raw = await ctx.services.llm.generate(
            system_prompt,
            user_prompt,
            caller="decompose",
            temperature=ctx.settings.decompose_temperature,
            max_tokens=1500,
        )
        parsed = parse_sub_queries(raw)
    except (LLMFailure, ValueError) as e:
        logger.warning(f"Decomposition fell back to local plan: {e}")
        errors.append(error_entry(Stage.DECOMPOSE, iteration, f"using fallback plan: {e}"))

    sub_queries = finalize_plan(parsed, question, feedback)
    log_service.log_research_step(
        state.session_id,
        "decompose",
        "completed",
        {
            "iteration": iteration,
            "sub_queries": len(sub_queries),
            "from_model": len(parsed),
            "elapsed_ms": int((time.monotonic() - t0) * 1000),
        },
    )
    update: StateUpdate = {"sub_queries": sub_queries, "iteration": iteration}
    if errors:
        update["errors"] = errors
    return update
