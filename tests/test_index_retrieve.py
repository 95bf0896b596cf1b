from __future__ import annotations

import pytest

from deepcite.errors import EvidenceStoreFailure
from deepcite.models.memory import EvidenceHit
from deepcite.models.research import ChunkMetadata, HumanFeedback, Priority, RetrievedChunk, ScrapedPage, SubQuery
from deepcite.models.state import SessionState
from deepcite.services.evidence_store import InMemoryEvidenceStore, chunk_id
from deepcite.stages import index, retrieve
from tests.fakes import FakeEmbedder, make_context, make_services, make_settings, page_text


def _page(url: str, words: int = 120, sub_query_id: str | None = "sq-a") -> ScrapedPage:
    text = page_text(url, words)
    return ScrapedPage(url=url, title=f"Title {url}", text=text, word_count=len(text.split()), sub_query_id=sub_query_id)


def _sq(query: str, priority: Priority, sq_id: str | None = None) -> SubQuery:
    return SubQuery(id=sq_id or f"id-{query}", query=query, priority=priority)


def _chunk(text: str, score: float, url: str = "https://a.com") -> RetrievedChunk:
    return RetrievedChunk(text=text, metadata=ChunkMetadata(url=url), relevance_score=score)


class _FailingStore(InMemoryEvidenceStore):
    def __init__(self, fail_url: str):
        super().__init__(embedder=FakeEmbedder())
        self.fail_url = fail_url

    async def add(self, records):
        if records and records[0].url == self.fail_url:
            raise EvidenceStoreFailure("disk full")
        return await super().add(records)


@pytest.mark.asyncio
async def test_index_stores_windows_with_metadata(tmp_path):
    store = InMemoryEvidenceStore(embedder=FakeEmbedder())
    ctx = make_context(tmp_path, make_services(tmp_path, evidence_store=store))
    state = SessionState(research_question="q", scraped_pages=[_page("https://a.com", words=1799)])

    update = await index.run(state, ctx)

    assert update["stored_chunk_ids"] == [chunk_id("https://a.com", 0), chunk_id("https://a.com", 1)]
    hits = await store.query("evidence", top_k=5)
    assert {hit.metadata["chunk_index"] for hit in hits} == {0, 1}
    assert {hit.metadata["sub_query_id"] for hit in hits} == {"sq-a"}


@pytest.mark.asyncio
async def test_index_skips_already_stored_windows(tmp_path):
    embedder = FakeEmbedder()
    store = InMemoryEvidenceStore(embedder=embedder)
    ctx = make_context(tmp_path, make_services(tmp_path, evidence_store=store))
    state = SessionState(
        research_question="q",
        scraped_pages=[_page("https://a.com"), _page("https://b.com")],
        stored_chunk_ids=[chunk_id("https://a.com", 0)],
    )
    update = await index.run(state, ctx)

    assert update["stored_chunk_ids"] == [chunk_id("https://b.com", 0)]
    assert await store.count() == 1


@pytest.mark.asyncio
async def test_index_attributes_unowned_pages_to_first_sub_query(tmp_path):
    store = InMemoryEvidenceStore(embedder=FakeEmbedder())
    ctx = make_context(tmp_path, make_services(tmp_path, evidence_store=store))
    state = SessionState(
        research_question="q",
        sub_queries=[_sq("first", Priority.HIGH, "sq-first"), _sq("second", Priority.LOW)],
        scraped_pages=[_page("https://a.com", sub_query_id=None)],
    )
    await index.run(state, ctx)

    hits = await store.query("evidence", top_k=1)
    assert hits[0].metadata["sub_query_id"] == "sq-first"


@pytest.mark.asyncio
async def test_index_failure_for_one_page_is_recorded(tmp_path):
    store = _FailingStore("https://a.com")
    ctx = make_context(tmp_path, make_services(tmp_path, evidence_store=store))
    state = SessionState(
        research_question="q",
        iteration=1,
        scraped_pages=[_page("https://a.com"), _page("https://b.com")],
    )
    update = await index.run(state, ctx)

    assert update["stored_chunk_ids"] == [chunk_id("https://b.com", 0)]
    assert update["errors"] == ["[index#1] https://a.com: disk full"]


def test_query_set_composition(tmp_path):
    settings = make_settings(tmp_path)
    state = SessionState(
        research_question="main question",
        sub_queries=[
            _sq("high a", Priority.HIGH),
            _sq("medium a", Priority.MEDIUM),
            _sq("high b", Priority.HIGH),
            _sq("medium b", Priority.MEDIUM),
            _sq("medium c", Priority.MEDIUM),
            _sq("low a", Priority.LOW),
        ],
    )
    assert retrieve.build_query_set(state, settings) == [
        "main question",
        "high a",
        "high b",
        "medium a",
        "medium b",
    ]

    state.apply({"human_feedback": HumanFeedback(approved=False, feedback="cover costs")})
    assert retrieve.build_query_set(state, settings)[-1] == "cover costs"


def test_relevance_from_distance_and_similarity():
    assert retrieve.relevance_from_hit(EvidenceHit(id="a", text="t", distance=0.5)) == pytest.approx(0.75)
    assert retrieve.relevance_from_hit(EvidenceHit(id="a", text="t", distance=3.0)) == 0.0
    assert retrieve.relevance_from_hit(EvidenceHit(id="a", text="t", similarity=0.8)) == pytest.approx(0.8)
    assert retrieve.relevance_from_hit(EvidenceHit(id="a", text="t", similarity=-0.2)) == 0.0


def test_rank_chunks_dedupes_by_prefix_and_drops_short_text():
    shared_prefix = "p" * 100
    chunks = [
        _chunk(shared_prefix + " first copy", 0.4),
        _chunk(shared_prefix + " better copy", 0.9),
        _chunk("too short", 0.99),
        _chunk("u" * 80, 0.5),
    ]
    ranked = retrieve.rank_chunks(chunks)

    assert [c.relevance_score for c in ranked] == [0.9, 0.5]
    assert ranked[0].text.endswith("better copy")


def test_rank_chunks_caps_total():
    chunks = [_chunk(f"{index:03d}" + "x" * 80, index / 100) for index in range(30)]
    ranked = retrieve.rank_chunks(chunks, max_chunks=20)
    assert len(ranked) == 20
    assert ranked[0].relevance_score == pytest.approx(0.29)


@pytest.mark.asyncio
async def test_retrieve_on_empty_store_returns_nothing(tmp_path):
    ctx = make_context(tmp_path)
    update = await retrieve.run(SessionState(research_question="q"), ctx)
    assert update == {"retrieved_chunks": []}


@pytest.mark.asyncio
async def test_retrieve_returns_ranked_chunks_with_metadata(tmp_path):
    store = InMemoryEvidenceStore(embedder=FakeEmbedder())
    ctx = make_context(tmp_path, make_services(tmp_path, evidence_store=store))
    state = SessionState(
        research_question="evidence",
        sub_queries=[_sq("evidence1", Priority.HIGH)],
        scraped_pages=[_page("https://a.com"), _page("https://b.com")],
    )
    state.apply(await index.run(state, ctx))

    update = await retrieve.run(state, ctx)
    chunks = update["retrieved_chunks"]

    assert {c.metadata.url for c in chunks} == {"https://a.com", "https://b.com"}
    assert all(0.0 <= c.relevance_score <= 1.0 for c in chunks)
    assert chunks == sorted(chunks, key=lambda c: c.relevance_score, reverse=True)


@pytest.mark.asyncio
async def test_retrieve_tolerates_a_failing_query(tmp_path):
    class _FlakyStore(InMemoryEvidenceStore):
        async def query(self, text, top_k):
            if text == "broken":
                raise EvidenceStoreFailure("query timeout")
            return await super().query(text, top_k)

    store = _FlakyStore(embedder=FakeEmbedder())
    ctx = make_context(tmp_path, make_services(tmp_path, evidence_store=store))
    state = SessionState(
        research_question="evidence",
        iteration=1,
        sub_queries=[_sq("broken", Priority.HIGH)],
        scraped_pages=[_page("https://a.com")],
    )
    state.apply(await index.run(state, ctx))

    update = await retrieve.run(state, ctx)
    assert len(update["retrieved_chunks"]) == 1
    assert update["errors"][0].startswith("[retrieve#1]")
