"""Knowledge-package lifecycle: DRAFT -> ACTIVE -> ARCHIVED per SKU."""

from __future__ import annotations

import threading
import uuid
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from manual_rag.errors import NotFoundError, PreconditionFailedError
from manual_rag.ingest.embedder import Embedder
from manual_rag.ingest.parser import ManualParser
from manual_rag.lifecycle.store import KnowledgeStore
from manual_rag.logging_utils import get_logger
from manual_rag.types import (
    DocumentRecord,
    DocumentType,
    KnowledgePackage,
    PackageStatus,
    Sku,
    StoredChunk,
)

logger = get_logger(__name__)


@dataclass(slots=True, frozen=True)
class PackageRef:
    package_id: str
    version: int


@dataclass(slots=True, frozen=True)
class IngestResult:
    document_id: str
    chunks_created: int


class KnowledgePackageLifecycle:
    """Versioned package management with atomic publish and rollback.

    Invariants:
    - At most one ACTIVE package per SKU.
    - Versions per SKU start at 1 and strictly increase; numbers are never
      reused, not even after a rollback.
    - Publish and rollback each write "archive old" and "activate new" inside
      one store transaction, serialized per SKU.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        *,
        parser: ManualParser | None = None,
        embedder: Embedder | None = None,
    ) -> None:
        self.store = store
        self.parser = parser or ManualParser()
        self.embedder = embedder
        self._locks_guard = threading.Lock()
        self._sku_locks: defaultdict[str, threading.RLock] = defaultdict(threading.RLock)

    def _sku_lock(self, sku_id: str) -> threading.RLock:
        with self._locks_guard:
            return self._sku_locks[sku_id]

    def register_sku(self, sku_id: str, name: str | None = None) -> Sku:
        sku = Sku(sku_id=sku_id, name=name or sku_id)
        self.store.add_sku(sku)
        return sku

    def _require_sku(self, sku_id: str) -> None:
        if self.store.get_sku(sku_id) is None:
            raise NotFoundError(f'SKU "{sku_id}" not found')

    def create_package(self, sku_id: str) -> PackageRef:
        self._require_sku(sku_id)
        with self._sku_lock(sku_id), self.store.transaction():
            existing = self.store.list_packages(sku_id)
            next_version = (existing[-1].version if existing else 0) + 1
            package = KnowledgePackage(
                package_id=str(uuid.uuid4()),
                sku_id=sku_id,
                version=next_version,
                status=PackageStatus.DRAFT,
                created_at=_utcnow(),
            )
            self.store.insert_package(package)

        logger.info("Created DRAFT package v%d for SKU %s", next_version, sku_id)
        return PackageRef(package_id=package.package_id, version=next_version)

    def get_or_create_draft(self, sku_id: str) -> PackageRef:
        self._require_sku(sku_id)
        with self._sku_lock(sku_id):
            drafts = self.store.list_packages(sku_id, PackageStatus.DRAFT)
            if drafts:
                latest = drafts[-1]
                return PackageRef(package_id=latest.package_id, version=latest.version)
            return self.create_package(sku_id)

    def ingest_document(
        self,
        sku_id: str,
        version: int,
        *,
        title: str,
        content: str,
        document_type: DocumentType = DocumentType.MANUAL,
        source_url: str | None = None,
    ) -> IngestResult:
        """Parse a document and store it with its chunks in a DRAFT package.

        The document row and all chunk rows are written in one transaction:
        either everything is stored or nothing is.
        """

        with self._sku_lock(sku_id):
            package = self.store.find_package(sku_id, version)
            if package is None:
                raise NotFoundError(
                    f'KnowledgePackage not found for SKU "{sku_id}" version {version}'
                )
            if package.status is not PackageStatus.DRAFT:
                raise PreconditionFailedError(
                    f"KnowledgePackage {package.package_id} is not in DRAFT status "
                    f"(current: {package.status.value}). "
                    "Only DRAFT packages can accept new documents.",
                    actual_status=package.status.value,
                )

            parsed = self.parser.parse(content, title)
            embeddings: list[list[float]] = [[] for _ in parsed.chunks]
            if self.embedder is not None and parsed.chunks:
                embeddings = self.embedder.embed_chunks([chunk.content for chunk in parsed.chunks])

            document = DocumentRecord(
                document_id=str(uuid.uuid4()),
                package_id=package.package_id,
                title=title,
                document_type=document_type,
                raw_content=content,
                source_url=source_url,
                parsed_at=_utcnow(),
            )
            stored = [
                StoredChunk(
                    chunk_id=str(uuid.uuid4()),
                    document_id=document.document_id,
                    content=chunk.content,
                    page_start=chunk.page_start,
                    page_end=chunk.page_end,
                    section_path=chunk.section_path,
                    content_type=chunk.content_type,
                    token_count=chunk.token_count,
                    chunk_index=chunk.order_in_document,
                    embedding=embedding,
                )
                for chunk, embedding in zip(parsed.chunks, embeddings, strict=True)
            ]

            with self.store.transaction():
                self.store.insert_document(document)
                if stored:
                    self.store.insert_chunks(stored)

        logger.info(
            'Ingested "%s" into SKU %s v%d (%d chunks)', title, sku_id, version, len(stored)
        )
        return IngestResult(document_id=document.document_id, chunks_created=len(stored))

    def publish(self, package_id: str) -> KnowledgePackage:
        package = self.store.get_package(package_id)
        if package is None:
            raise NotFoundError(f'KnowledgePackage "{package_id}" not found')

        with self._sku_lock(package.sku_id), self.store.transaction():
            package = self.store.get_package(package_id)
            if package is None:
                raise NotFoundError(f'KnowledgePackage "{package_id}" not found')
            if package.status is not PackageStatus.DRAFT:
                raise PreconditionFailedError(
                    f'KnowledgePackage "{package_id}" is not in DRAFT status '
                    f"(current: {package.status.value}). Only DRAFT packages can be published.",
                    actual_status=package.status.value,
                )
            for active in self.store.list_packages(package.sku_id, PackageStatus.ACTIVE):
                self.store.update_package_status(active.package_id, PackageStatus.ARCHIVED)
            published_at = _utcnow()
            self.store.update_package_status(
                package_id, PackageStatus.ACTIVE, published_at=published_at
            )

        logger.info("Published package v%d for SKU %s", package.version, package.sku_id)
        return replace(package, status=PackageStatus.ACTIVE, published_at=published_at)

    def rollback(self, sku_id: str) -> KnowledgePackage:
        """Archive the ACTIVE package and re-activate the newest ARCHIVED one.

        The restored package receives a fresh `published_at`; the original
        publish timestamp is not recovered.
        """

        with self._sku_lock(sku_id), self.store.transaction():
            active = self.store.list_packages(sku_id, PackageStatus.ACTIVE)
            if not active:
                raise NotFoundError(f'No ACTIVE KnowledgePackage found for SKU "{sku_id}"')
            archived = self.store.list_packages(sku_id, PackageStatus.ARCHIVED)
            if not archived:
                raise NotFoundError(
                    f'No ARCHIVED KnowledgePackage found for SKU "{sku_id}": nothing to roll back to'
                )
            current, target = active[0], archived[-1]
            self.store.update_package_status(current.package_id, PackageStatus.ARCHIVED)
            published_at = _utcnow()
            self.store.update_package_status(
                target.package_id, PackageStatus.ACTIVE, published_at=published_at
            )

        logger.info(
            "Rolled back SKU %s from v%d to v%d", sku_id, current.version, target.version
        )
        return replace(target, status=PackageStatus.ACTIVE, published_at=published_at)

    def get_active_package(self, sku_id: str) -> KnowledgePackage | None:
        active = self.store.list_packages(sku_id, PackageStatus.ACTIVE)
        return active[0] if active else None

    def get_package(self, sku_id: str, version: int) -> KnowledgePackage:
        package = self.store.find_package(sku_id, version)
        if package is None:
            raise NotFoundError(
                f'KnowledgePackage not found for SKU "{sku_id}" version {version}'
            )
        return package

    def list_packages(self, sku_id: str) -> list[KnowledgePackage]:
        self._require_sku(sku_id)
        return self.store.list_packages(sku_id)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
