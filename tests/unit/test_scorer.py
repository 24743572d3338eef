from datetime import datetime, timezone

import pytest

from manual_rag.config import RetrievalConfig
from manual_rag.ingest.embedder import HashingEmbedder
from manual_rag.ingest.terms import tokenize_query
from manual_rag.retrieval.scorer import RetrievalScorer, ScoringCandidate
from manual_rag.types import ContentType, DocumentRecord, DocumentType, StoredChunk

_DOCUMENT = DocumentRecord(
    document_id="doc-1",
    package_id="pkg-1",
    title="Tower Heater Manual",
    document_type=DocumentType.MANUAL,
    raw_content="",
    source_url=None,
    parsed_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
)


def _candidate(
    chunk_id: str,
    content: str,
    content_type: ContentType = ContentType.GENERAL,
    embedding: list[float] | None = None,
) -> ScoringCandidate:
    chunk = StoredChunk(
        chunk_id=chunk_id,
        document_id=_DOCUMENT.document_id,
        content=content,
        page_start=1,
        page_end=1,
        section_path="",
        content_type=content_type,
        token_count=len(content) // 4,
        chunk_index=0,
        embedding=embedding or [],
    )
    return ScoringCandidate(chunk=chunk, document=_DOCUMENT)


def test_tokenizer_drops_stopwords_short_tokens_and_duplicates() -> None:
    assert tokenize_query("How do I reset the E-3 error? Reset, please!") == ["reset", "error", "please"]
    assert tokenize_query("the and of") == []


def test_warning_chunk_outranks_unrelated_chunk_through_affinity() -> None:
    warning = _candidate(
        "warn", "WARNING: Risk of electric shock. Unplug the unit before cleaning.", ContentType.WARNING
    )
    general = _candidate("gen", "The unit ships with a remote control and two batteries.")

    ranked = RetrievalScorer().rank("electrical shock hazard", [general, warning])

    assert [result.chunk_id for result in ranked.results] == ["warn", "gen"]
    assert ranked.results[0].signals["affinity"] == pytest.approx(0.5)
    assert ranked.results[1].score == 0.0
    assert ranked.matched_count == 1
    assert ranked.candidate_count == 2


def test_top_k_prefers_non_zero_results_and_pads_with_zero_scores() -> None:
    matching = [_candidate(f"m{i}", f"Clean the filter gently, pass {i}.") for i in range(7)]
    unrelated = [_candidate(f"u{i}", "Batteries are not included.") for i in range(3)]
    scorer = RetrievalScorer()

    full = scorer.rank("filter", unrelated + matching, top_k=5)
    padded = scorer.rank("filter", unrelated + matching[:2], top_k=5)

    assert len(full.results) == 5
    assert all(result.score > 0 for result in full.results)
    assert len(padded.results) == 5
    assert [result.score > 0 for result in padded.results] == [True, True, False, False, False]
    assert padded.matched_count == 2


def test_ties_keep_candidate_order() -> None:
    candidates = [_candidate(chunk_id, "Descale the kettle monthly.") for chunk_id in ("a", "b", "c")]

    results = RetrievalScorer().score("descale kettle", candidates)

    assert [result.chunk_id for result in results] == ["a", "b", "c"]


def test_empty_token_query_scores_everything_zero() -> None:
    candidates = [
        _candidate("w", "WARNING: hot surface.", ContentType.WARNING),
        _candidate("g", "The heater has wheels."),
    ]

    ranked = RetrievalScorer().rank("what is the", candidates)

    assert all(result.score == 0.0 for result in ranked.results)
    assert ranked.matched_count == 0


def test_phrase_bonus_applies_to_literal_query_only() -> None:
    scorer = RetrievalScorer()
    terms = tokenize_query("replace filter")

    literal = scorer.keyword_signal("replace filter", terms, "Replace filter monthly")
    shuffled = scorer.keyword_signal("replace filter", terms, "Filter replace monthly")

    assert literal - shuffled == pytest.approx(1.5)


def test_extra_occurrence_of_a_query_term_never_lowers_the_score() -> None:
    scorer = RetrievalScorer()
    filler = "the appliance runs quietly in most rooms during the evening hours"
    terms = ["filter"]

    previous = scorer.keyword_signal("filter", terms, f"Rinse the filter. {filler} {filler}")
    for extra in range(1, 4):
        content = f"Rinse the filter. {filler} {filler}" + " filter" * extra
        current = scorer.keyword_signal("filter", terms, content)
        assert current >= previous
        previous = current

    swapped = scorer.keyword_signal("filter", terms, f"Rinse the filter. {filler.replace('quietly', 'filter')}")
    baseline = scorer.keyword_signal("filter", terms, f"Rinse the filter. {filler}")
    assert swapped >= baseline


def test_affinity_signal_per_content_type() -> None:
    scorer = RetrievalScorer()

    assert scorer.affinity_signal("how to install the stand", ContentType.PROCEDURE) == pytest.approx(0.3)
    assert scorer.affinity_signal("error when starting", ContentType.TROUBLESHOOTING) == pytest.approx(0.5)
    assert scorer.affinity_signal("what is the weight", ContentType.SPECS) == pytest.approx(0.3)
    assert scorer.affinity_signal("is it safe", ContentType.WARNING) == pytest.approx(0.5)
    assert scorer.affinity_signal("how to install the stand", ContentType.GENERAL) == 0.0
    assert scorer.affinity_signal("what is the weight", ContentType.PROCEDURE) == 0.0


def test_vector_signal_is_fused_when_weighted() -> None:
    embedder = HashingEmbedder()
    texts = ["Descale the kettle every month.", "The remote needs two batteries."]
    embeddings = embedder.embed_chunks(texts)
    candidates = [
        _candidate("kettle", texts[0], embedding=embeddings[0]),
        _candidate("remote", texts[1], embedding=embeddings[1]),
    ]
    config = RetrievalConfig(signal_weights={"keyword": 1.0, "affinity": 1.0, "vector": 1.0})

    results = RetrievalScorer(config, embedder=embedder).score("descale kettle", candidates)

    assert results[0].chunk_id == "kettle"
    assert results[0].signals["vector"] > 0.0
    assert results[0].score == pytest.approx(
        results[0].signals["keyword"] + results[0].signals["affinity"] + results[0].signals["vector"]
    )


def test_vector_signal_is_skipped_by_default() -> None:
    embedder = HashingEmbedder()
    text = "Descale the kettle every month."
    candidate = _candidate("kettle", text, embedding=embedder.embed_query(text))

    result = RetrievalScorer(embedder=embedder).score("descale kettle", [candidate])[0]

    assert "vector" not in result.signals
