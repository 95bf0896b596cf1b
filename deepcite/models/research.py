from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(UTC)


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys (the report document format)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}


class SubQuery(CamelModel):
    """One independently searchable facet of the research question."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    query: str = Field(min_length=1)
    rationale: str = ""
    priority: Priority = Priority.MEDIUM


class SearchResult(CamelModel):
    url: str
    title: str = ""
    snippet: str = ""
    score: Optional[float] = None
    published_date: Optional[str] = None
    sub_query_id: Optional[str] = None  # sub-query that first surfaced this url

    @field_validator("score")
    @classmethod
    def _clamp_score(cls, value: float | None) -> float | None:
        if value is None:
            return None
        return max(0.0, min(float(value), 1.0))


class ScrapedPage(CamelModel):
    url: str
    title: str = ""
    text: str = ""
    word_count: int = Field(default=0, ge=0)
    error: Optional[str] = None
    scraped_at: datetime = Field(default_factory=utc_now)
    sub_query_id: Optional[str] = None


class ChunkMetadata(CamelModel):
    url: str
    title: str = ""
    sub_query_id: str = ""
    chunk_index: int = 0


class RetrievedChunk(CamelModel):
    text: str
    metadata: ChunkMetadata
    relevance_score: float = Field(ge=0.0, le=1.0)


class Citation(CamelModel):
    id: int = Field(ge=1)
    url: str
    title: str = ""
    quote: Optional[str] = None


class ReportSection(CamelModel):
    title: str
    content: str
    citations: list[int] = Field(default_factory=list)


class ReportMetadata(CamelModel):
    total_sources: int = 0
    sub_queries_answered: int = 0
    generated_at: datetime = Field(default_factory=utc_now)
    iteration_count: int = 0


class SynthesizedReport(CamelModel):
    """The shape the model must return. Citations and metadata are optional
    here because they are always recomputed locally."""

    title: str
    executive_summary: str
    sections: list[ReportSection]
    conclusions: str
    citations: list[dict[str, Any]] = Field(default_factory=list)
    metadata: Optional[dict[str, Any]] = None


class Report(CamelModel):
    title: str
    executive_summary: str
    sections: list[ReportSection] = Field(default_factory=list)
    conclusions: str = ""
    citations: list[Citation] = Field(default_factory=list)
    metadata: ReportMetadata = Field(default_factory=ReportMetadata)


class HumanFeedback(CamelModel):
    approved: bool
    feedback: str = ""
    requested_changes: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)

    @property
    def is_revision_request(self) -> bool:
        return not self.approved
