"""Embedding-backed evidence storage and similarity retrieval."""
from __future__ import annotations

import asyncio
import hashlib
import math
from pathlib import Path
from typing import Any, Protocol

from deepcite.config import Settings
from deepcite.errors import EvidenceStoreFailure
from deepcite.models.memory import EvidenceHit, EvidenceRecord
from deepcite.services.embeddings import EmbeddingService


class EvidenceStore(Protocol):
    async def add(self, records: list[EvidenceRecord]) -> list[str]: ...
    async def query(self, text: str, top_k: int) -> list[EvidenceHit]: ...
    async def count(self) -> int: ...
    async def clear(self) -> int: ...
    async def aclose(self) -> None: ...


def chunk_words(
    text: str,
    *,
    window_size: int = 1000,
    overlap: int = 200,
    min_words: int = 50,
) -> list[str]:
    """Split text into overlapping word windows (stride = window - overlap).

    The last window may be shorter than ``window_size``; any window with fewer
    than ``min_words`` words is dropped.
    """
    if overlap < 0 or overlap >= window_size:
        raise ValueError("overlap must be in [0, window_size)")
    words = text.split()
    if not words:
        return []
    stride = window_size - overlap
    windows: list[str] = []
    for start in range(0, len(words), stride):
        window = words[start : start + window_size]
        if len(window) >= min_words:
            windows.append(" ".join(window))
        if start + window_size >= len(words):
            break
    return windows


def chunk_id(url: str, chunk_index: int) -> str:
    return hashlib.sha1(f"{url}|{chunk_index}".encode("utf-8")).hexdigest()


def _metadata_for_record(record: EvidenceRecord) -> dict[str, Any]:
    metadata: dict[str, Any] = {
        "url": record.url,
        "title": record.title,
        "sub_query_id": record.sub_query_id,
        "chunk_index": record.chunk_index,
    }
    metadata.update(record.metadata)
    return metadata


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class ChromaEvidenceStore:
    """ChromaDB collection, embeddings computed by the injected service.

    Sessions sharing a ``collection_name`` see each other's chunks.
    """

    def __init__(
        self,
        *,
        embedder: EmbeddingService,
        collection_name: str,
        persist_dir: str | None = None,
        distance: str = "l2",
        client: Any | None = None,
    ):
        if distance not in ("l2", "cosine"):
            raise ValueError(f"Unsupported chroma distance: {distance}")
        self.collection_name = collection_name
        self.distance = distance
        self.persist_dir = Path(persist_dir) if persist_dir else None
        self._embedder = embedder
        self._client = client
        self._collection: Any | None = None
        self._lock = asyncio.Lock()

    async def _get_collection(self) -> Any:
        async with self._lock:
            if self._collection is not None:
                return self._collection

            def _sync_open() -> Any:
                client = self._client
                if client is None:
                    import chromadb

                    if self.persist_dir is None:
                        client = chromadb.EphemeralClient()
                    else:
                        self.persist_dir.mkdir(parents=True, exist_ok=True)
                        client = chromadb.PersistentClient(path=str(self.persist_dir))
                    self._client = client
                return client.get_or_create_collection(
                    name=self.collection_name,
                    metadata={"hnsw:space": self.distance},
                )

            try:
                self._collection = await asyncio.to_thread(_sync_open)
            except Exception as e:
                raise EvidenceStoreFailure(f"cannot open collection {self.collection_name}: {e}") from e
            return self._collection

    async def add(self, records: list[EvidenceRecord]) -> list[str]:
        if not records:
            return []
        vectors = await self._embedder.embed_texts([record.text for record in records])
        collection = await self._get_collection()
        ids = [record.id for record in records]

        def _sync_upsert() -> None:
            collection.upsert(
                ids=ids,
                documents=[record.text for record in records],
                metadatas=[_metadata_for_record(record) for record in records],
                embeddings=vectors,
            )

        try:
            await asyncio.to_thread(_sync_upsert)
        except Exception as e:
            raise EvidenceStoreFailure(f"upsert failed: {e}") from e
        return ids

    async def query(self, text: str, top_k: int) -> list[EvidenceHit]:
        total = await self.count()
        if total == 0:
            return []
        vector = await self._embedder.embed_text(text)
        collection = await self._get_collection()

        def _sync_query() -> dict[str, Any]:
            return collection.query(
                query_embeddings=[vector],
                n_results=max(min(int(top_k), total), 1),
                include=["documents", "metadatas", "distances"],
            )

        try:
            result = await asyncio.to_thread(_sync_query)
        except Exception as e:
            raise EvidenceStoreFailure(f"query failed: {e}") from e

        docs = (result.get("documents") or [[]])[0]
        metas = (result.get("metadatas") or [[]])[0]
        distances = (result.get("distances") or [[]])[0]
        ids = (result.get("ids") or [[]])[0]
        hits: list[EvidenceHit] = []
        for idx, doc in enumerate(docs):
            if not isinstance(doc, str):
                continue
            metadata = metas[idx] if idx < len(metas) and isinstance(metas[idx], dict) else {}
            raw_distance = float(distances[idx]) if idx < len(distances) else 2.0
            hit_id = ids[idx] if idx < len(ids) and isinstance(ids[idx], str) else f"hit_{idx}"
            if self.distance == "cosine":
                hits.append(EvidenceHit(id=hit_id, text=doc, metadata=dict(metadata), similarity=1.0 - raw_distance))
            else:
                hits.append(EvidenceHit(id=hit_id, text=doc, metadata=dict(metadata), distance=raw_distance))
        return hits

    async def count(self) -> int:
        collection = await self._get_collection()
        try:
            return int(await asyncio.to_thread(collection.count))
        except Exception as e:
            raise EvidenceStoreFailure(f"count failed: {e}") from e

    async def clear(self) -> int:
        collection = await self._get_collection()

        def _sync_clear() -> int:
            ids = collection.get()["ids"]
            if ids:
                collection.delete(ids=ids)
            return len(ids)

        try:
            return await asyncio.to_thread(_sync_clear)
        except Exception as e:
            raise EvidenceStoreFailure(f"clear failed: {e}") from e

    async def aclose(self) -> None:
        self._collection = None


class InMemoryEvidenceStore:
    """Process-local store ranking by cosine similarity. Nothing persists."""

    def __init__(self, *, embedder: EmbeddingService):
        self._embedder = embedder
        self._records: dict[str, tuple[EvidenceRecord, list[float]]] = {}

    async def add(self, records: list[EvidenceRecord]) -> list[str]:
        if not records:
            return []
        vectors = await self._embedder.embed_texts([record.text for record in records])
        for record, vector in zip(records, vectors):
            self._records[record.id] = (record, vector)
        return [record.id for record in records]

    async def query(self, text: str, top_k: int) -> list[EvidenceHit]:
        if not self._records:
            return []
        vector = await self._embedder.embed_text(text)
        hits = [
            EvidenceHit(
                id=record_id,
                text=record.text,
                metadata=_metadata_for_record(record),
                similarity=_cosine_similarity(vector, record_vector),
            )
            for record_id, (record, record_vector) in self._records.items()
        ]
        hits.sort(key=lambda hit: (-(hit.similarity or 0.0), hit.id))
        return hits[: max(int(top_k), 1)]

    async def count(self) -> int:
        return len(self._records)

    async def clear(self) -> int:
        removed = len(self._records)
        self._records.clear()
        return removed

    async def aclose(self) -> None:
        return None


def build_evidence_store(settings: Settings, embedder: EmbeddingService) -> EvidenceStore:
    backend = settings.memory_backend.lower().strip()
    if backend == "chromadb":
        return ChromaEvidenceStore(
            embedder=embedder,
            collection_name=settings.chroma_collection,
            persist_dir=settings.chroma_persist_dir,
            distance=settings.chroma_distance.lower().strip(),
        )
    if backend == "memory":
        return InMemoryEvidenceStore(embedder=embedder)
    raise ValueError(f"Unsupported MEMORY_BACKEND: {settings.memory_backend}")
