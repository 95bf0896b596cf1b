from __future__ import annotations

import time
from typing import Any, Protocol

from deepcite.config import Settings
from deepcite.errors import EmbeddingFailure
from deepcite.services import logger as log_service


class EmbeddingService(Protocol):
    async def embed_texts(self, texts: list[str]) -> list[list[float]]: ...
    async def embed_text(self, text: str) -> list[float]: ...
    async def aclose(self) -> None: ...


class OpenAIEmbeddingService:
    """Embeddings through the OpenAI embeddings endpoint, batched per call."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        model: str,
        batch_size: int = 64,
        openai_client: Any | None = None,
    ):
        self.model = model
        self.batch_size = max(int(batch_size), 1)
        if openai_client is None:
            from openai import AsyncOpenAI

            openai_client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        self._client = openai_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAIEmbeddingService":
        return cls(
            api_key=settings.resolved_embedding_api_key,
            base_url=settings.embedding_base_url,
            model=settings.embedding_model,
        )

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        vectors: list[list[float]] = []
        t0 = time.monotonic()
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start : start + self.batch_size]
            try:
                response = await self._client.embeddings.create(model=self.model, input=batch)
            except Exception as e:
                log_service.log_llm_call(
                    model=self.model,
                    caller="embeddings",
                    duration_ms=int((time.monotonic() - t0) * 1000),
                    status="error",
                    error=str(e),
                )
                raise EmbeddingFailure(str(e)) from e
            rows = sorted(response.data, key=lambda row: row.index)
            vectors.extend([list(map(float, row.embedding)) for row in rows])

        log_service.log_llm_call(
            model=self.model,
            caller="embeddings",
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        if len(vectors) != len(texts):
            raise EmbeddingFailure(f"expected {len(texts)} vectors, got {len(vectors)}")
        return vectors

    async def embed_text(self, text: str) -> list[float]:
        vectors = await self.embed_texts([text])
        return vectors[0]

    async def aclose(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            await close()
