import math

import pytest

from manual_rag.ingest.embedder import HashingEmbedder, cosine_similarity
from manual_rag.ingest.terms import term_counts, tokenize_query


def test_term_counts_drop_stopwords_and_keep_repeats() -> None:
    counts = term_counts("Rinse the filter, then rinse it again.")

    assert counts == {"rinse": 2, "filter": 1}


def test_queries_differing_only_in_stopwords_share_an_embedding() -> None:
    embedder = HashingEmbedder()

    assert embedder.embed_query("How do I descale the kettle?") == embedder.embed_query(
        "descale kettle kettle"
    )


def test_query_without_terms_embeds_to_zero_vector() -> None:
    vector = HashingEmbedder(dimension=16).embed_query("what is the")

    assert vector == [0.0] * 16


def test_chunk_vectors_are_normalized_and_closest_to_matching_query() -> None:
    embedder = HashingEmbedder()
    kettle, remote = embedder.embed_chunks(
        ["Descale the kettle every month. Rinse the kettle twice.", "The remote needs two batteries."]
    )
    query = embedder.embed_query("descale kettle")

    assert math.sqrt(sum(value * value for value in kettle)) == pytest.approx(1.0)
    assert cosine_similarity(query, kettle) > cosine_similarity(query, remote)


def test_chunk_and_query_vocabulary_match_the_keyword_tokenizer() -> None:
    embedder = HashingEmbedder()
    text = "Replace the filter"

    assert tokenize_query(text) == ["replace", "filter"]
    assert cosine_similarity(embedder.embed_query(text), embedder.embed_chunks([text])[0]) == pytest.approx(1.0)


def test_dimension_must_be_positive() -> None:
    with pytest.raises(ValueError):
        HashingEmbedder(dimension=0)
