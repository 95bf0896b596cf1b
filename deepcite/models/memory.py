from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class EvidenceRecord:
    id: str
    text: str
    url: str
    title: str
    sub_query_id: str
    chunk_index: int
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class EvidenceHit:
    """One similarity match. Stores report either an L2-style ``distance`` or
    a native cosine ``similarity``."""

    id: str
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)
    distance: float | None = None
    similarity: float | None = None
