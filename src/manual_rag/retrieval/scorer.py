"""Keyword relevance scoring and ranking over a candidate chunk set."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass

from manual_rag.config import RetrievalConfig
from manual_rag.ingest.embedder import Embedder, cosine_similarity
from manual_rag.ingest.terms import tokenize_query
from manual_rag.retrieval.fusion import SignalFusion
from manual_rag.types import (
    ContentType,
    DocumentRecord,
    RankedRetrieval,
    RetrievalResult,
    StoredChunk,
)

_AFFINITY_CUES: dict[ContentType, re.Pattern[str]] = {
    ContentType.WARNING: re.compile(
        r"\b(?:safe|safety|warning|caution|danger|hazard|shock|electrical)\b", re.IGNORECASE
    ),
    ContentType.TROUBLESHOOTING: re.compile(
        r"\b(?:problem|issue|error|fix|not\s+working|broken|fail|trouble)\b", re.IGNORECASE
    ),
    ContentType.PROCEDURE: re.compile(
        r"\b(?:how\s+to|steps?|install|setup|configure|replace|remove)\b", re.IGNORECASE
    ),
    ContentType.SPECS: re.compile(
        r"\b(?:spec|dimension|size|weight|rating|voltage|watt|capacity|model)\b", re.IGNORECASE
    ),
}


@dataclass(slots=True, frozen=True)
class ScoringCandidate:
    """A stored chunk together with its parent document."""

    chunk: StoredChunk
    document: DocumentRecord


class RetrievalScorer:
    """Ranks candidate chunks against a query.

    Keyword signal, per chunk:
    - `1 + ln(count)` for every distinct query term that occurs as a whole
      word, summed and divided by `sqrt(word count)`;
    - plus coverage (fraction of terms matched) times `coverage_weight`;
    - plus `phrase_bonus` when the whole query appears verbatim;
    - plus `heading_term_bonus` per term found in the chunk's first line.

    The affinity signal rewards chunks whose classified content type matches
    cue words in the query. Signals are fused by `SignalFusion`.
    """

    def __init__(
        self,
        config: RetrievalConfig | None = None,
        *,
        fusion: SignalFusion | None = None,
        embedder: Embedder | None = None,
    ) -> None:
        self.config = config or RetrievalConfig()
        self.fusion = fusion or SignalFusion(self.config)
        self.embedder = embedder

    def score(
        self,
        query: str,
        candidates: list[ScoringCandidate],
        *,
        top_k: int | None = None,
    ) -> list[RetrievalResult]:
        return self.rank(query, candidates, top_k=top_k).results

    def rank(
        self,
        query: str,
        candidates: list[ScoringCandidate],
        *,
        top_k: int | None = None,
    ) -> RankedRetrieval:
        """Score, sort, and truncate candidates.

        Returns the top K results with a non-zero score when at least K exist;
        otherwise the list is padded with zero-score results up to K.
        `matched_count` reports how many non-zero results exist so callers
        can tell "K weak matches" apart from "nothing relevant".
        """

        limit = top_k or self.config.final_k
        terms = tokenize_query(query)
        query_vector = self._query_vector(query) if terms else None

        scored = [self._score_candidate(query, terms, candidate, query_vector) for candidate in candidates]
        ranked = sorted(scored, key=lambda result: result.score, reverse=True)
        non_zero = [result for result in ranked if result.score > 0]

        results = non_zero[:limit] if len(non_zero) >= limit else ranked[:limit]
        return RankedRetrieval(
            results=results,
            matched_count=len(non_zero),
            candidate_count=len(candidates),
        )

    def keyword_signal(self, query: str, terms: list[str], content: str) -> float:
        if not terms or not content.strip():
            return 0.0

        content_lower = content.lower()
        total_hits = 0.0
        matched = 0
        for term in terms:
            count = len(re.findall(rf"\b{re.escape(term)}\b", content_lower))
            if count > 0:
                total_hits += 1 + math.log(count)
                matched += 1

        if total_hits == 0:
            return 0.0

        word_count = max(1, len(content_lower.split()))
        score = total_hits / math.sqrt(word_count)
        score += (matched / len(terms)) * self.config.coverage_weight

        if len(terms) > 1 and query.strip().lower() in content_lower:
            score += self.config.phrase_bonus

        first_line = content_lower.split("\n", 1)[0]
        score += sum(self.config.heading_term_bonus for term in terms if term in first_line)
        return score

    def affinity_signal(self, query: str, content_type: ContentType) -> float:
        cue = _AFFINITY_CUES.get(content_type)
        if cue is None or not cue.search(query):
            return 0.0
        return {
            ContentType.WARNING: self.config.warning_affinity,
            ContentType.TROUBLESHOOTING: self.config.troubleshooting_affinity,
            ContentType.PROCEDURE: self.config.procedure_affinity,
            ContentType.SPECS: self.config.specs_affinity,
        }[content_type]

    def _query_vector(self, query: str) -> list[float] | None:
        if self.embedder is None or not self.fusion.is_enabled("vector"):
            return None
        return self.embedder.embed_query(query)

    def _score_candidate(
        self,
        query: str,
        terms: list[str],
        candidate: ScoringCandidate,
        query_vector: list[float] | None,
    ) -> RetrievalResult:
        chunk = candidate.chunk
        signals: dict[str, float] = {"keyword": 0.0, "affinity": 0.0}
        if terms:
            signals["keyword"] = self.keyword_signal(query, terms, chunk.content)
            signals["affinity"] = self.affinity_signal(query, chunk.content_type)
        if query_vector is not None and chunk.embedding:
            signals["vector"] = max(0.0, cosine_similarity(query_vector, chunk.embedding))

        return RetrievalResult(
            chunk_id=chunk.chunk_id,
            content=chunk.content,
            document_id=chunk.document_id,
            document_title=candidate.document.title,
            document_type=candidate.document.document_type,
            page_start=chunk.page_start,
            page_end=chunk.page_end,
            section_path=chunk.section_path,
            content_type=chunk.content_type,
            score=self.fusion.fuse(signals),
            signals=signals,
        )
