from __future__ import annotations

from contextlib import AsyncExitStack
from dataclasses import dataclass

from deepcite.config import Settings
from deepcite.llm_client import LLMClient
from deepcite.services.checkpoint import CheckpointStore, build_checkpoint_store
from deepcite.services.embeddings import EmbeddingService, OpenAIEmbeddingService
from deepcite.services.evidence_store import EvidenceStore, build_evidence_store
from deepcite.services.report_export import ReportExporter
from deepcite.tools.scraper import PageFetcher
from deepcite.tools.search_provider import SearchService


@dataclass
class ResearchServices:
    """Every external collaborator the stages use, built once per process."""

    llm: LLMClient
    search: SearchService
    fetcher: PageFetcher
    embedder: EmbeddingService
    evidence_store: EvidenceStore
    checkpoints: CheckpointStore
    exporter: ReportExporter

    async def aclose(self) -> None:
        """Close every collaborator; one failing close does not skip the rest."""
        async with AsyncExitStack() as stack:
            for service in (self.llm, self.checkpoints, self.embedder, self.evidence_store, self.search, self.fetcher):
                stack.push_async_callback(service.aclose)

    async def __aenter__(self) -> "ResearchServices":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def build_services(settings: Settings) -> ResearchServices:
    embedder = OpenAIEmbeddingService.from_settings(settings)
    return ResearchServices(
        llm=LLMClient.from_settings(settings),
        search=SearchService(settings),
        fetcher=PageFetcher.from_settings(settings),
        embedder=embedder,
        evidence_store=build_evidence_store(settings, embedder),
        checkpoints=build_checkpoint_store(settings),
        exporter=ReportExporter(settings.report_output_dir),
    )
