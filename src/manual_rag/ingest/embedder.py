"""Embedding abstractions for the (optional) vector-similarity signal."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from hashlib import blake2b

from manual_rag.ingest.terms import term_counts, tokenize_query


class Embedder(ABC):
    """Embedder interface used by ingestion and the retrieval vector signal."""

    @abstractmethod
    def embed_chunks(self, texts: list[str]) -> list[list[float]]:
        """Embed many chunk texts."""

    @abstractmethod
    def embed_query(self, text: str) -> list[float]:
        """Embed one query."""


class HashingEmbedder(Embedder):
    """Signed feature hashing over the keyword signal's term vocabulary.

    Chunks are embedded from their non-stop-word term counts, each term
    weighted `1 + ln(count)` like the keyword signal. Queries are embedded from
    their de-duplicated terms with unit weight, so two queries that differ
    only in stop words, case, or repeated terms map to the same vector.
    Vectors are L2-normalized; text with no terms maps to the zero vector.
    """

    def __init__(self, dimension: int = 256) -> None:
        if dimension < 1:
            raise ValueError("dimension must be positive")
        self.dimension = dimension

    def embed_chunks(self, texts: list[str]) -> list[list[float]]:
        return [
            self._project({term: 1 + math.log(count) for term, count in term_counts(text).items()})
            for text in texts
        ]

    def embed_query(self, text: str) -> list[float]:
        return self._project({term: 1.0 for term in tokenize_query(text)})

    def _slot(self, term: str) -> tuple[int, float]:
        digest = int.from_bytes(blake2b(term.encode("utf-8"), digest_size=8).digest(), "big")
        return digest % self.dimension, 1.0 if (digest >> 63) == 0 else -1.0

    def _project(self, weights: dict[str, float]) -> list[float]:
        vector = [0.0] * self.dimension
        for term, weight in weights.items():
            index, sign = self._slot(term)
            vector[index] += sign * weight
        norm = math.sqrt(sum(value * value for value in vector))
        return [value / norm for value in vector] if norm else vector


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
