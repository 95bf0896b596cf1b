from __future__ import annotations

import math
from uuid import uuid4

import pytest

from deepcite.models.memory import EvidenceRecord
from deepcite.services.evidence_store import (
    ChromaEvidenceStore,
    InMemoryEvidenceStore,
    build_evidence_store,
    chunk_id,
    chunk_words,
)
from tests.fakes import FakeEmbedder, make_settings


def _words(count: int) -> str:
    return " ".join(f"w{index}" for index in range(count))


def _record(record_id: str, text: str, url: str = "https://a.com") -> EvidenceRecord:
    return EvidenceRecord(id=record_id, text=text, url=url, title="A", sub_query_id="sq1", chunk_index=0)


@pytest.mark.parametrize("word_total", [1000, 1001, 1800, 2600, 5000])
def test_window_count_follows_stride(word_total):
    windows = chunk_words(_words(word_total), window_size=1000, overlap=200, min_words=50)
    assert len(windows) == math.ceil((word_total - 200) / 800)


def test_windows_overlap_by_configured_words():
    windows = chunk_words(_words(1800), window_size=1000, overlap=200, min_words=50)
    first, second = (window.split() for window in windows[:2])
    assert first[-200:] == second[:200]
    assert len(first) == 1000


def test_short_trailing_window_is_dropped():
    windows = chunk_words(_words(125), window_size=100, overlap=20, min_words=50)
    assert len(windows) == 1


def test_short_page_yields_nothing():
    assert chunk_words(_words(30), window_size=1000, overlap=200, min_words=50) == []
    assert chunk_words("", window_size=1000, overlap=200, min_words=50) == []


def test_overlap_must_be_smaller_than_window():
    with pytest.raises(ValueError):
        chunk_words(_words(10), window_size=100, overlap=100)


def test_chunk_ids_are_deterministic_and_distinct():
    assert chunk_id("https://a.com", 0) == chunk_id("https://a.com", 0)
    assert chunk_id("https://a.com", 0) != chunk_id("https://a.com", 1)
    assert chunk_id("https://a.com", 0) != chunk_id("https://b.com", 0)


@pytest.mark.asyncio
async def test_in_memory_store_ranks_by_similarity():
    store = InMemoryEvidenceStore(embedder=FakeEmbedder())
    await store.add([_record("r1", "zzzz zzzz zzzz"), _record("r2", "battery battery battery")])

    hits = await store.query("battery", top_k=2)

    assert [hit.id for hit in hits] == ["r2", "r1"]
    assert hits[0].similarity is not None and hits[0].similarity > hits[1].similarity
    assert hits[0].metadata["url"] == "https://a.com"
    assert hits[0].metadata["sub_query_id"] == "sq1"


@pytest.mark.asyncio
async def test_in_memory_store_empty_query_and_clear():
    store = InMemoryEvidenceStore(embedder=FakeEmbedder())
    assert await store.query("anything", top_k=5) == []

    await store.add([_record("r1", "text"), _record("r1", "text again")])
    assert await store.count() == 1

    assert await store.clear() == 1
    assert await store.count() == 0


@pytest.mark.asyncio
async def test_chroma_store_round_trip(tmp_path):
    store = ChromaEvidenceStore(
        embedder=FakeEmbedder(),
        collection_name=f"test_{uuid4().hex[:8]}",
        persist_dir=str(tmp_path / "chroma"),
    )
    assert await store.query("battery", top_k=5) == []

    ids = await store.add([_record("r1", "battery cells and anodes"), _record("r2", "unrelated zzz")])
    assert ids == ["r1", "r2"]
    assert await store.count() == 2

    await store.add([_record("r1", "battery cells and anodes")])
    assert await store.count() == 2

    hits = await store.query("battery cells", top_k=5)
    assert len(hits) == 2
    assert all(hit.distance is not None and hit.similarity is None for hit in hits)
    assert hits[0].metadata["title"] == "A"

    assert await store.clear() == 2
    assert await store.count() == 0
    await store.aclose()


@pytest.mark.asyncio
async def test_chroma_cosine_store_reports_similarity(tmp_path):
    store = ChromaEvidenceStore(
        embedder=FakeEmbedder(),
        collection_name=f"test_{uuid4().hex[:8]}",
        persist_dir=str(tmp_path / "chroma"),
        distance="cosine",
    )
    await store.add([_record("r1", "battery")])
    hits = await store.query("battery", top_k=3)

    assert len(hits) == 1
    assert hits[0].similarity == pytest.approx(1.0, abs=1e-3)


def test_chroma_store_rejects_unknown_distance():
    with pytest.raises(ValueError):
        ChromaEvidenceStore(embedder=FakeEmbedder(), collection_name="x", distance="ip")


def test_build_evidence_store_selects_backend(tmp_path):
    embedder = FakeEmbedder()
    assert isinstance(build_evidence_store(make_settings(tmp_path), embedder), InMemoryEvidenceStore)

    chroma = build_evidence_store(make_settings(tmp_path, memory_backend="chromadb"), embedder)
    assert isinstance(chroma, ChromaEvidenceStore)
    assert chroma.collection_name == "research_findings"

    with pytest.raises(ValueError):
        build_evidence_store(make_settings(tmp_path, memory_backend="redis"), embedder)
