from deepcite.models.research import (
    ChunkMetadata,
    Citation,
    HumanFeedback,
    Priority,
    Report,
    ReportMetadata,
    ReportSection,
    RetrievedChunk,
    ScrapedPage,
    SearchResult,
    SubQuery,
    SynthesizedReport,
)
from deepcite.models.state import MergePolicy, SessionState, Stage, StateUpdate, TerminationReason

__all__ = [
    "ChunkMetadata",
    "Citation",
    "HumanFeedback",
    "MergePolicy",
    "Priority",
    "Report",
    "ReportMetadata",
    "ReportSection",
    "RetrievedChunk",
    "ScrapedPage",
    "SearchResult",
    "SessionState",
    "Stage",
    "StateUpdate",
    "SubQuery",
    "SynthesizedReport",
    "TerminationReason",
]
