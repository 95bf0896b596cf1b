from __future__ import annotations

import pytest

from deepcite.models.research import (
    ChunkMetadata,
    HumanFeedback,
    Priority,
    Report,
    RetrievedChunk,
    ScrapedPage,
    SearchResult,
    SubQuery,
)
from deepcite.models.state import MergePolicy, SessionState, Stage, TerminationReason


def _sub_query(query: str, priority: Priority = Priority.MEDIUM) -> SubQuery:
    return SubQuery(id=f"id-{query}", query=query, priority=priority)


def _chunk(text: str) -> RetrievedChunk:
    return RetrievedChunk(text=text, metadata=ChunkMetadata(url="https://a.com"), relevance_score=0.5)


def _report(title: str) -> Report:
    return Report(title=title, executive_summary="summary")


def test_every_field_declares_exactly_one_policy():
    for field_name in SessionState.model_fields:
        assert isinstance(SessionState.merge_policy(field_name), MergePolicy)


def test_merge_policy_rejects_unknown_field():
    with pytest.raises(ValueError):
        SessionState.merge_policy("not_a_field")


@pytest.mark.parametrize(
    ("field_name", "expected"),
    [
        ("current_stage", MergePolicy.REPLACE),
        ("iteration", MergePolicy.REPLACE),
        ("sub_queries", MergePolicy.REPLACE),
        ("retrieved_chunks", MergePolicy.REPLACE),
        ("draft_report", MergePolicy.REPLACE),
        ("final_report", MergePolicy.REPLACE),
        ("human_feedback", MergePolicy.REPLACE),
        ("search_results", MergePolicy.APPEND),
        ("scraped_pages", MergePolicy.APPEND),
        ("stored_chunk_ids", MergePolicy.APPEND_UNIQUE),
        ("attempted_urls", MergePolicy.APPEND_UNIQUE),
        ("errors", MergePolicy.APPEND_UNIQUE),
    ],
)
def test_declared_policies(field_name, expected):
    assert SessionState.merge_policy(field_name) is expected


def test_current_stage_replaces():
    state = SessionState(research_question="q")
    state.apply({"current_stage": Stage.SEARCH})
    assert state.current_stage is Stage.SEARCH


def test_iteration_replaces():
    state = SessionState(research_question="q", iteration=2)
    state.apply({"iteration": 3})
    assert state.iteration == 3


def test_sub_queries_replace():
    state = SessionState(research_question="q", sub_queries=[_sub_query("old")])
    state.apply({"sub_queries": [_sub_query("new-a"), _sub_query("new-b")]})
    assert [sq.query for sq in state.sub_queries] == ["new-a", "new-b"]


def test_retrieved_chunks_replace_including_with_empty():
    state = SessionState(research_question="q", retrieved_chunks=[_chunk("a" * 60)])
    state.apply({"retrieved_chunks": [_chunk("b" * 60)]})
    assert [c.text[0] for c in state.retrieved_chunks] == ["b"]

    state.apply({"retrieved_chunks": []})
    assert state.retrieved_chunks == []


def test_draft_report_replaces_and_clears():
    state = SessionState(research_question="q", draft_report=_report("v1"))
    state.apply({"draft_report": _report("v2")})
    assert state.draft_report is not None and state.draft_report.title == "v2"

    state.apply({"draft_report": None})
    assert state.draft_report is None


def test_final_report_replaces():
    state = SessionState(research_question="q")
    state.apply({"final_report": _report("final")})
    assert state.final_report is not None and state.final_report.title == "final"


def test_human_feedback_replaces():
    state = SessionState(research_question="q", human_feedback=HumanFeedback(approved=False, feedback="more"))
    state.apply({"human_feedback": HumanFeedback(approved=True)})
    assert state.human_feedback is not None and state.human_feedback.approved


def test_search_results_append_across_updates():
    state = SessionState(research_question="q")
    state.apply({"search_results": [SearchResult(url="https://a.com")]})
    state.apply({"search_results": [SearchResult(url="https://b.com")]})
    assert [r.url for r in state.search_results] == ["https://a.com", "https://b.com"]


def test_scraped_pages_append_across_updates():
    state = SessionState(research_question="q")
    state.apply({"scraped_pages": [ScrapedPage(url="https://a.com", word_count=60)]})
    state.apply({"scraped_pages": [ScrapedPage(url="https://b.com", word_count=70)]})
    assert state.scraped_urls == {"https://a.com", "https://b.com"}


def test_stored_chunk_ids_union_preserves_order():
    state = SessionState(research_question="q", stored_chunk_ids=["a", "b"])
    state.apply({"stored_chunk_ids": ["b", "c", "c"]})
    assert state.stored_chunk_ids == ["a", "b", "c"]


def test_errors_append_without_duplicates():
    state = SessionState(research_question="q")
    state.apply({"errors": ["[search#1] boom"]})
    state.apply({"errors": ["[search#1] boom", "[scrape#1] timeout"]})
    assert state.errors == ["[search#1] boom", "[scrape#1] timeout"]


def test_apply_leaves_unmentioned_fields_untouched():
    state = SessionState(
        research_question="q",
        search_results=[SearchResult(url="https://a.com")],
        stored_chunk_ids=["x"],
    )
    state.apply({"retrieved_chunks": [], "draft_report": None})
    assert len(state.search_results) == 1
    assert state.stored_chunk_ids == ["x"]


def test_apply_rejects_unknown_field():
    state = SessionState(research_question="q")
    with pytest.raises(ValueError):
        state.apply({"bogus": 1})


def test_apply_bumps_updated_at():
    state = SessionState(research_question="q")
    before = state.updated_at
    state.apply({"iteration": 1})
    assert state.updated_at >= before


def test_revision_feedback_only_for_rejections():
    state = SessionState(research_question="q")
    assert state.revision_feedback is None

    state.apply({"human_feedback": HumanFeedback(approved=True)})
    assert state.revision_feedback is None

    state.apply({"human_feedback": HumanFeedback(approved=False, feedback="dig deeper")})
    assert state.revision_feedback is not None
    assert state.revision_feedback.feedback == "dig deeper"


def test_best_report_prefers_final_then_draft_then_last_draft():
    state = SessionState(research_question="q", last_draft_report=_report("last"))
    assert state.best_report is not None and state.best_report.title == "last"

    state.apply({"draft_report": _report("draft")})
    assert state.best_report.title == "draft"

    state.apply({"final_report": _report("final")})
    assert state.best_report.title == "final"


def test_terminal_stages():
    assert Stage.DONE.is_terminal
    assert Stage.ERROR.is_terminal
    assert not Stage.REVIEW.is_terminal


def test_state_round_trips_through_json():
    state = SessionState(
        research_question="q",
        current_stage=Stage.REVIEW,
        sub_queries=[_sub_query("one", Priority.HIGH)],
        termination=TerminationReason.APPROVED,
    )
    restored = SessionState.model_validate_json(state.model_dump_json())
    assert restored.session_id == state.session_id
    assert restored.current_stage is Stage.REVIEW
    assert restored.sub_queries[0].priority is Priority.HIGH
    assert restored.termination is TerminationReason.APPROVED


def test_search_result_score_is_clamped():
    assert SearchResult(url="https://a.com", score=1.7).score == 1.0
    assert SearchResult(url="https://a.com", score=-0.2).score == 0.0
    assert SearchResult(url="https://a.com").score is None
