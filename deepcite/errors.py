"""Error taxonomy for the research pipeline.

Per-item failures (one search call, one page fetch, one store write) are
raised by adapters as ``ExternalCallFailure`` subclasses and caught inside the
owning stage. Anything that escapes a stage ends the pass in the ``error``
state.
"""
from __future__ import annotations

from typing import Literal

ScrapeFailureKind = Literal["http_status", "content_type", "timeout", "generic"]


class ResearchError(Exception):
    """Base class for every error the pipeline raises on purpose."""


class InvalidInput(ResearchError):
    """The research question is missing or blank."""


class ExternalCallFailure(ResearchError):
    """A collaborator call (model, search, fetch, embedding, store) failed."""

    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.message = message


class LLMFailure(ExternalCallFailure):
    def __init__(self, message: str):
        super().__init__("llm", message)


class SearchFailure(ExternalCallFailure):
    def __init__(self, message: str, *, provider: str = "search"):
        super().__init__(provider, message)
        self.provider = provider


class ScrapeFailure(ExternalCallFailure):
    def __init__(
        self,
        url: str,
        message: str,
        *,
        kind: ScrapeFailureKind = "generic",
        status_code: int | None = None,
    ):
        super().__init__("scrape", f"{url}: {message}")
        self.url = url
        self.kind = kind
        self.status_code = status_code


class EmbeddingFailure(ExternalCallFailure):
    def __init__(self, message: str):
        super().__init__("embedding", message)


class EvidenceStoreFailure(ExternalCallFailure):
    def __init__(self, message: str):
        super().__init__("evidence_store", message)


class SynthesisParseFailure(ResearchError):
    """The model's synthesis output could not be coerced into a report."""

    def __init__(self, message: str, *, raw_excerpt: str = ""):
        super().__init__(message)
        self.raw_excerpt = raw_excerpt


class StageFailure(ResearchError):
    """A stage cannot produce any useful output (fatal to the pass)."""


class SessionAbort(ResearchError):
    """The reviewer ended the session without a report."""


class CheckpointNotFound(ResearchError):
    def __init__(self, session_id: str):
        super().__init__(f"No checkpoint for session {session_id}")
        self.session_id = session_id


class SessionNotResumable(ResearchError):
    """The checkpointed session is not suspended at the review boundary."""
