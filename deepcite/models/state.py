"""Session state threaded through every stage.

Each field declares exactly one merge policy via ``Annotated`` metadata.
Stages never assign to the state directly; they return a partial update
(field name -> value) and :meth:`SessionState.apply` merges it according to
the declared policy.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Mapping, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from deepcite.models.research import (
    HumanFeedback,
    Report,
    RetrievedChunk,
    ScrapedPage,
    SearchResult,
    SubQuery,
    utc_now,
)

StateUpdate = dict[str, Any]


class MergePolicy(str, Enum):
    REPLACE = "replace"
    APPEND = "append"
    APPEND_UNIQUE = "append_unique"


class Stage(str, Enum):
    DECOMPOSE = "decompose"
    SEARCH = "search"
    SCRAPE = "scrape"
    INDEX = "index"
    RETRIEVE = "retrieve"
    SYNTHESIZE = "synthesize"
    REVIEW = "review"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (Stage.DONE, Stage.ERROR)


# Linear successors within one pass. Review has no fixed successor; it is
# resolved by the routing function.
STAGE_SUCCESSORS: dict[Stage, Stage] = {
    Stage.DECOMPOSE: Stage.SEARCH,
    Stage.SEARCH: Stage.SCRAPE,
    Stage.SCRAPE: Stage.INDEX,
    Stage.INDEX: Stage.RETRIEVE,
    Stage.RETRIEVE: Stage.SYNTHESIZE,
    Stage.SYNTHESIZE: Stage.REVIEW,
}


class TerminationReason(str, Enum):
    APPROVED = "approved"
    NO_FEEDBACK = "no_feedback"
    ITERATION_LIMIT = "iteration_limit"
    ABORTED = "aborted"
    ERROR = "error"


class SessionState(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    session_id: Annotated[str, MergePolicy.REPLACE] = Field(default_factory=lambda: str(uuid4()))
    research_question: Annotated[str, MergePolicy.REPLACE] = ""
    current_stage: Annotated[Stage, MergePolicy.REPLACE] = Stage.DECOMPOSE
    iteration: Annotated[int, MergePolicy.REPLACE] = 0

    sub_queries: Annotated[list[SubQuery], MergePolicy.REPLACE] = Field(default_factory=list)
    search_results: Annotated[list[SearchResult], MergePolicy.APPEND] = Field(default_factory=list)
    scraped_pages: Annotated[list[ScrapedPage], MergePolicy.APPEND] = Field(default_factory=list)
    attempted_urls: Annotated[list[str], MergePolicy.APPEND_UNIQUE] = Field(default_factory=list)
    stored_chunk_ids: Annotated[list[str], MergePolicy.APPEND_UNIQUE] = Field(default_factory=list)
    retrieved_chunks: Annotated[list[RetrievedChunk], MergePolicy.REPLACE] = Field(default_factory=list)

    draft_report: Annotated[Optional[Report], MergePolicy.REPLACE] = None
    last_draft_report: Annotated[Optional[Report], MergePolicy.REPLACE] = None
    final_report: Annotated[Optional[Report], MergePolicy.REPLACE] = None
    human_feedback: Annotated[Optional[HumanFeedback], MergePolicy.REPLACE] = None

    termination: Annotated[Optional[TerminationReason], MergePolicy.REPLACE] = None
    errors: Annotated[list[str], MergePolicy.APPEND_UNIQUE] = Field(default_factory=list)
    created_at: Annotated[datetime, MergePolicy.REPLACE] = Field(default_factory=utc_now)
    updated_at: Annotated[datetime, MergePolicy.REPLACE] = Field(default_factory=utc_now)

    @classmethod
    def merge_policy(cls, field_name: str) -> MergePolicy:
        field_info = cls.model_fields.get(field_name)
        if field_info is None:
            raise ValueError(f"Unknown state field: {field_name}")
        policies = [item for item in field_info.metadata if isinstance(item, MergePolicy)]
        if len(policies) != 1:
            raise TypeError(f"State field {field_name} must declare exactly one merge policy")
        return policies[0]

    def apply(self, update: Mapping[str, Any]) -> None:
        """Merge a stage's partial update into this state in place."""
        for field_name, value in update.items():
            policy = self.merge_policy(field_name)
            if policy is MergePolicy.REPLACE:
                setattr(self, field_name, value)
            elif policy is MergePolicy.APPEND:
                setattr(self, field_name, [*getattr(self, field_name), *value])
            else:
                merged = list(getattr(self, field_name))
                seen = set(merged)
                for item in value:
                    if item not in seen:
                        seen.add(item)
                        merged.append(item)
                setattr(self, field_name, merged)
        if "updated_at" not in update:
            self.updated_at = utc_now()

    # --- derived views ---

    @property
    def search_urls(self) -> set[str]:
        return {result.url for result in self.search_results}

    @property
    def scraped_urls(self) -> set[str]:
        return {page.url for page in self.scraped_pages}

    @property
    def revision_feedback(self) -> HumanFeedback | None:
        """Feedback that asked for a revision, if this is a revision pass."""
        if self.human_feedback is not None and not self.human_feedback.approved:
            return self.human_feedback
        return None

    @property
    def best_report(self) -> Report | None:
        return self.final_report or self.draft_report or self.last_draft_report
