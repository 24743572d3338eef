"""Retrieval over the chunks of one knowledge package."""

from __future__ import annotations

from manual_rag.errors import NotFoundError
from manual_rag.lifecycle.store import KnowledgeStore
from manual_rag.logging_utils import get_logger
from manual_rag.retrieval.scorer import RetrievalScorer, ScoringCandidate
from manual_rag.types import (
    ContentType,
    DocumentType,
    KnowledgePackage,
    PackageStatus,
    RankedRetrieval,
)

logger = get_logger(__name__)


class PackageRetriever:
    """Loads candidates from the ACTIVE (or a pinned) package and ranks them.

    Sessions that must keep answering from the package they started on pass
    `version=`; everything else reads whatever is ACTIVE at call time.
    """

    def __init__(self, store: KnowledgeStore, scorer: RetrievalScorer | None = None) -> None:
        self.store = store
        self.scorer = scorer or RetrievalScorer()

    def retrieve(
        self,
        sku_id: str,
        query: str,
        *,
        version: int | None = None,
        document_type: DocumentType | None = None,
        content_type: ContentType | None = None,
        top_k: int | None = None,
    ) -> RankedRetrieval:
        if self.store.get_sku(sku_id) is None:
            raise NotFoundError(f'SKU "{sku_id}" not found')

        package = self._resolve_package(sku_id, version)
        if package is None:
            logger.info("No ACTIVE package for SKU %s; nothing to retrieve", sku_id)
            return RankedRetrieval(results=[], matched_count=0, candidate_count=0)

        candidates = self.load_candidates(
            package, document_type=document_type, content_type=content_type
        )
        ranked = self.scorer.rank(query, candidates, top_k=top_k)
        ranked.package_version = package.version
        logger.debug(
            "Retrieved %d/%d candidates for SKU %s v%d (%d matched)",
            len(ranked.results),
            ranked.candidate_count,
            sku_id,
            package.version,
            ranked.matched_count,
        )
        return ranked

    def load_candidates(
        self,
        package: KnowledgePackage,
        *,
        document_type: DocumentType | None = None,
        content_type: ContentType | None = None,
    ) -> list[ScoringCandidate]:
        """Candidates in document order, then chunk order."""
        documents = self.store.list_documents(package.package_id, document_type)
        by_id = {document.document_id: document for document in documents}
        chunks = self.store.list_chunks(list(by_id), content_type)
        return [ScoringCandidate(chunk=chunk, document=by_id[chunk.document_id]) for chunk in chunks]

    def _resolve_package(self, sku_id: str, version: int | None) -> KnowledgePackage | None:
        if version is None:
            active = self.store.list_packages(sku_id, PackageStatus.ACTIVE)
            return active[0] if active else None

        package = self.store.find_package(sku_id, version)
        if package is None:
            raise NotFoundError(
                f'KnowledgePackage not found for SKU "{sku_id}" version {version}'
            )
        return package
