"""File ingestion into a SKU's draft knowledge package."""

from __future__ import annotations

from pathlib import Path

from manual_rag.ingest.parser import SourceReaderRegistry
from manual_rag.lifecycle.service import IngestResult, KnowledgePackageLifecycle
from manual_rag.types import DocumentType


class IngestPipeline:
    """Reads source files and ingests them into the SKU's current DRAFT.

    A DRAFT is created when the SKU has none, so a batch of files lands in
    one package that can then be published as a unit.
    """

    def __init__(
        self,
        lifecycle: KnowledgePackageLifecycle,
        reader_registry: SourceReaderRegistry | None = None,
    ) -> None:
        self._lifecycle = lifecycle
        self._reader_registry = reader_registry or SourceReaderRegistry()

    def ingest_path(
        self,
        sku_id: str,
        path: str | Path,
        *,
        title: str | None = None,
        document_type: DocumentType = DocumentType.MANUAL,
        version: int | None = None,
    ) -> IngestResult:
        """Ingest a single source file and return the stored document summary."""

        source = self._reader_registry.read_path(path, title=title, document_type=document_type)
        if version is None:
            version = self._lifecycle.get_or_create_draft(sku_id).version
        return self._lifecycle.ingest_document(
            sku_id,
            version,
            title=source.title,
            content=source.text,
            document_type=source.document_type,
            source_url=source.source_url,
        )

    def ingest_many(
        self,
        sku_id: str,
        paths: list[str | Path],
        *,
        document_type: DocumentType = DocumentType.MANUAL,
    ) -> list[IngestResult]:
        version = self._lifecycle.get_or_create_draft(sku_id).version
        return [
            self.ingest_path(sku_id, path, document_type=document_type, version=version)
            for path in paths
        ]
