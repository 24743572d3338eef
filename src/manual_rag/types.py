"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class BlockKind(str, Enum):
    PARAGRAPH = "paragraph"
    LIST = "list"
    NUMBERED_STEPS = "numbered_steps"
    WARNING_BLOCK = "warning_block"
    HEADING = "heading"


ATOMIC_BLOCK_KINDS = frozenset({BlockKind.NUMBERED_STEPS, BlockKind.WARNING_BLOCK})


class ContentType(str, Enum):
    PROCEDURE = "PROCEDURE"
    WARNING = "WARNING"
    SPECS = "SPECS"
    TROUBLESHOOTING = "TROUBLESHOOTING"
    GENERAL = "GENERAL"


class PackageStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class DocumentType(str, Enum):
    MANUAL = "MANUAL"
    QUICK_START = "QUICK_START"
    FAQ = "FAQ"
    TROUBLESHOOTING_GUIDE = "TROUBLESHOOTING_GUIDE"
    SAFETY_SHEET = "SAFETY_SHEET"
    OTHER = "OTHER"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class SafetyAction(str, Enum):
    ALLOW = "allow"
    WARN = "warn"
    ESCALATE = "escalate"
    BLOCK = "block"


@dataclass(slots=True)
class Block:
    """A maximal span of source text sharing one semantic kind."""

    content: str
    start_offset: int
    end_offset: int
    kind: BlockKind
    heading_level: int | None = None
    heading_text: str | None = None


@dataclass(slots=True, frozen=True)
class Heading:
    level: int
    text: str
    offset: int


@dataclass(slots=True, frozen=True)
class PageBreak:
    page_number: int
    offset: int


@dataclass(slots=True)
class Segmentation:
    """Output of the block segmenter for one raw document."""

    blocks: list[Block]
    headings: list[Heading]
    page_breaks: list[PageBreak]
    figure_captions: list[str]


@dataclass(slots=True, frozen=True)
class Chunk:
    """A bounded, classified, citable span of document text."""

    content: str
    page_start: int
    page_end: int
    section_path: str
    content_type: ContentType
    token_count: int
    order_in_document: int


@dataclass(slots=True)
class ParsedDocument:
    """A segmented and chunked document ready for storage."""

    title: str
    chunks: list[Chunk]
    total_pages: int
    figure_captions: list[str]
    metadata: dict[str, Any]


@dataclass(slots=True, frozen=True)
class Sku:
    sku_id: str
    name: str


@dataclass(slots=True)
class KnowledgePackage:
    """A versioned bundle of documents/chunks for one SKU."""

    package_id: str
    sku_id: str
    version: int
    status: PackageStatus
    created_at: datetime
    published_at: datetime | None = None


@dataclass(slots=True)
class DocumentRecord:
    document_id: str
    package_id: str
    title: str
    document_type: DocumentType
    raw_content: str
    source_url: str | None
    parsed_at: datetime


@dataclass(slots=True)
class StoredChunk:
    """A chunk row persisted under a document."""

    chunk_id: str
    document_id: str
    content: str
    page_start: int
    page_end: int
    section_path: str
    content_type: ContentType
    token_count: int
    chunk_index: int
    embedding: list[float] = field(default_factory=list)


@dataclass(slots=True)
class RetrievalResult:
    """A query-scoped ranked chunk with its named score signals."""

    chunk_id: str
    content: str
    document_id: str
    document_title: str
    document_type: DocumentType
    page_start: int
    page_end: int
    section_path: str
    content_type: ContentType
    score: float
    signals: dict[str, float] = field(default_factory=dict)


@dataclass(slots=True)
class RankedRetrieval:
    """Ranked results plus how many of them actually matched the query."""

    results: list[RetrievalResult]
    matched_count: int
    candidate_count: int
    package_version: int | None = None


@dataclass(slots=True, frozen=True)
class SafetyTrigger:
    type: str
    severity: Severity
    reason: str


@dataclass(slots=True)
class SafetyCheckResult:
    triggered: bool
    triggers: list[SafetyTrigger]
    action: SafetyAction
