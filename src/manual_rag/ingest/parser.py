"""Manual parsing: raw text sources and the segment + assemble entry point."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from manual_rag.config import ChunkingConfig
from manual_rag.ingest.chunker import ChunkAssembler
from manual_rag.ingest.segmenter import TextBlockSegmenter
from manual_rag.types import DocumentType, ParsedDocument


class ManualParser:
    """Turns normalized manual text into a `ParsedDocument`.

    Empty or whitespace-only input is not an error: it yields a document with
    zero chunks and a single page.
    """

    def __init__(
        self,
        config: ChunkingConfig | None = None,
        *,
        segmenter: TextBlockSegmenter | None = None,
        assembler: ChunkAssembler | None = None,
    ) -> None:
        self.config = config or ChunkingConfig()
        self.segmenter = segmenter or TextBlockSegmenter()
        self.assembler = assembler or ChunkAssembler(self.config)

    def parse(self, raw_text: str, title: str) -> ParsedDocument:
        segmentation = self.segmenter.segment(raw_text)
        chunks = self.assembler.assemble(
            segmentation.blocks, segmentation.headings, segmentation.page_breaks
        )
        total_pages = max(
            (page_break.page_number for page_break in segmentation.page_breaks), default=1
        )
        return ParsedDocument(
            title=title,
            chunks=chunks,
            total_pages=total_pages,
            figure_captions=segmentation.figure_captions,
            metadata={
                "page_count": total_pages,
                "language": "en",
                "extracted_at": datetime.now(timezone.utc).isoformat(),
            },
        )


@dataclass(slots=True)
class SourceDocument:
    """Raw text loaded from disk, before segmentation."""

    title: str
    text: str
    document_type: DocumentType
    source_url: str | None


class SourceReader(ABC):
    """Base reader interface used by the ingest pipeline."""

    extensions: tuple[str, ...] = ()

    @abstractmethod
    def read(
        self,
        path: Path,
        *,
        title: str | None = None,
        document_type: DocumentType = DocumentType.MANUAL,
    ) -> SourceDocument:
        """Read a file into normalized text."""


class TextReader(SourceReader):
    """Reader for plain text exports (form feeds preserved as page breaks)."""

    extensions = (".txt", ".text")

    def read(
        self,
        path: Path,
        *,
        title: str | None = None,
        document_type: DocumentType = DocumentType.MANUAL,
    ) -> SourceDocument:
        text = path.read_text(encoding="utf-8").replace("\r\n", "\n")
        return SourceDocument(
            title=title or path.stem,
            text=text,
            document_type=document_type,
            source_url=path.resolve().as_uri(),
        )


class MarkdownReader(SourceReader):
    """Reader for markdown manuals; the first `# ` heading becomes the title."""

    extensions = (".md", ".markdown")

    def read(
        self,
        path: Path,
        *,
        title: str | None = None,
        document_type: DocumentType = DocumentType.MANUAL,
    ) -> SourceDocument:
        text = path.read_text(encoding="utf-8").replace("\r\n", "\n")
        if title is None:
            title = next(
                (line[2:].strip() for line in text.splitlines() if line.startswith("# ")),
                path.stem,
            )
        return SourceDocument(
            title=title,
            text=text,
            document_type=document_type,
            source_url=path.resolve().as_uri(),
        )


class SourceReaderRegistry:
    """Maps file extension to reader implementation."""

    def __init__(self, readers: list[SourceReader] | None = None) -> None:
        self._readers: dict[str, SourceReader] = {}
        for reader in readers or [TextReader(), MarkdownReader()]:
            self.register(reader)

    def register(self, reader: SourceReader) -> None:
        for extension in reader.extensions:
            self._readers[extension.lower()] = reader

    def read_path(
        self,
        path: str | Path,
        *,
        title: str | None = None,
        document_type: DocumentType = DocumentType.MANUAL,
    ) -> SourceDocument:
        file_path = Path(path)
        reader = self._readers.get(file_path.suffix.lower())
        if reader is None:
            raise ValueError(f"No reader registered for extension: {file_path.suffix}")
        return reader.read(file_path, title=title, document_type=document_type)
