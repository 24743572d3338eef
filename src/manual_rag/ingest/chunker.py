"""Block-aware chunk assembly with overlap and undersized-chunk merging."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field

from manual_rag.config import ChunkingConfig
from manual_rag.ingest.classifier import classify_content, prioritize_content_type
from manual_rag.ingest.segmenter import SectionPathBuilder, page_for_offset
from manual_rag.logging_utils import get_logger
from manual_rag.types import (
    ATOMIC_BLOCK_KINDS,
    Block,
    BlockKind,
    Chunk,
    ContentType,
    Heading,
    PageBreak,
)

logger = get_logger(__name__)

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_OVERLAP_MARKER = "..."
_BLOCK_SEPARATOR = "\n\n"


@dataclass(slots=True)
class _SectionedBlock:
    block: Block
    section_path: str


@dataclass(slots=True)
class _ChunkCandidate:
    items: list[_SectionedBlock] = field(default_factory=list)

    @property
    def start_offset(self) -> int:
        return self.items[0].block.start_offset

    @property
    def end_offset(self) -> int:
        return self.items[-1].block.end_offset

    @property
    def body(self) -> str:
        return _BLOCK_SEPARATOR.join(item.block.content for item in self.items)


@dataclass(slots=True)
class _DraftChunk:
    content: str
    body: str
    page_start: int
    page_end: int
    section_path: str
    content_type: ContentType
    token_count: int


class ChunkAssembler:
    """Packs segmented blocks into token-budgeted, classified chunks.

    Design notes:
    1. Atomic blocks are never bisected.
       Numbered-step and warning blocks always land whole inside one chunk.
       When such a block alone exceeds `max_tokens` it becomes its own
       oversized chunk. Only paragraph and list blocks are split, and only at
       sentence boundaries.

    2. Greedy packing with a soft target.
       Blocks accumulate until the next one would exceed `max_tokens`, or
       until the running total reaches `target_tokens`, which keeps chunks
       near the target rather than always maxed out.

    3. Overlap.
       Every chunk after the first is prefixed with the tail of the previous
       rendered chunk, trimmed to start after a sentence boundary. The prefix
       is dropped when no boundary exists, when it is too short, or when it
       would push the chunk over `max_tokens`.

    4. Backward merge.
       Chunks under `min_tokens` are folded into the previous chunk as long as
       the result stays within `merge_ceiling_factor * max_tokens`.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def assemble(
        self,
        blocks: list[Block],
        headings: list[Heading],
        page_breaks: list[PageBreak],
    ) -> list[Chunk]:
        sectioned = self._assign_section_paths(blocks, headings)
        candidates = self._build_candidates(sectioned)
        drafts = self._render(candidates, page_breaks)
        merged = self._merge_undersized(drafts)

        logger.debug(
            "Assembled %d blocks into %d candidates, %d chunks after merge",
            len(blocks),
            len(candidates),
            len(merged),
        )
        return [
            Chunk(
                content=draft.content,
                page_start=draft.page_start,
                page_end=draft.page_end,
                section_path=draft.section_path,
                content_type=draft.content_type,
                token_count=draft.token_count,
                order_in_document=index,
            )
            for index, draft in enumerate(merged)
        ]

    def estimate_tokens(self, text: str) -> int:
        return math.ceil(len(text) / self.config.chars_per_token)

    def _assign_section_paths(
        self, blocks: list[Block], headings: list[Heading]
    ) -> list[_SectionedBlock]:
        ordered_headings = sorted(headings, key=lambda heading: heading.offset)
        builder = SectionPathBuilder()
        sectioned: list[_SectionedBlock] = []
        next_heading = 0

        for block in blocks:
            while (
                next_heading < len(ordered_headings)
                and ordered_headings[next_heading].offset <= block.start_offset
            ):
                heading = ordered_headings[next_heading]
                builder.push(heading.level, heading.text)
                next_heading += 1
            if block.kind is BlockKind.HEADING:
                continue
            sectioned.append(_SectionedBlock(block=block, section_path=builder.path))
        return sectioned

    def _build_candidates(self, sectioned: list[_SectionedBlock]) -> list[_ChunkCandidate]:
        max_tokens = self.config.max_tokens
        candidates: list[_ChunkCandidate] = []
        current = _ChunkCandidate()
        current_tokens = 0

        for item in sectioned:
            block_tokens = self.estimate_tokens(item.block.content)

            if block_tokens > max_tokens:
                if current.items:
                    candidates.append(current)
                    current, current_tokens = _ChunkCandidate(), 0
                if item.block.kind in ATOMIC_BLOCK_KINDS:
                    candidates.append(_ChunkCandidate(items=[item]))
                else:
                    candidates.extend(
                        _ChunkCandidate(items=[piece]) for piece in self._split_large_block(item)
                    )
                continue

            if current.items and current_tokens + block_tokens > max_tokens:
                candidates.append(current)
                current, current_tokens = _ChunkCandidate(), 0

            current.items.append(item)
            current_tokens += block_tokens

            if current_tokens >= self.config.target_tokens:
                candidates.append(current)
                current, current_tokens = _ChunkCandidate(), 0

        if current.items:
            candidates.append(current)
        return candidates

    def _split_large_block(self, item: _SectionedBlock) -> list[_SectionedBlock]:
        """Split an oversized paragraph or list at sentence boundaries.

        A sentence that alone exceeds the limit is packed at word boundaries
        instead; a single word longer than the limit is cut.
        """
        block = item.block
        max_chars = self.config.max_tokens * self.config.chars_per_token
        sentences: list[str] = []
        for part in _SENTENCE_SPLIT.split(block.content):
            if not part.strip():
                continue
            if len(part) > max_chars:
                sentences.extend(_pack_words(part, max_chars))
            else:
                sentences.append(part)

        pieces: list[_SectionedBlock] = []
        current: list[str] = []
        current_chars = 0
        cursor = 0

        def _emit() -> None:
            nonlocal cursor
            text = " ".join(current).strip()
            local_start = block.content.find(current[0], cursor)
            if local_start < 0:
                local_start = cursor
            local_end = local_start + len(text)
            cursor = local_end
            pieces.append(
                _SectionedBlock(
                    block=Block(
                        content=text,
                        start_offset=block.start_offset + local_start,
                        end_offset=min(block.start_offset + local_end, block.end_offset),
                        kind=block.kind,
                    ),
                    section_path=item.section_path,
                )
            )

        for sentence in sentences:
            added = len(sentence) + (1 if current else 0)
            if current and current_chars + added > max_chars:
                _emit()
                current, current_chars = [], 0
                added = len(sentence)
            current.append(sentence)
            current_chars += added

        if current:
            _emit()
        return pieces

    def _render(
        self, candidates: list[_ChunkCandidate], page_breaks: list[PageBreak]
    ) -> list[_DraftChunk]:
        drafts: list[_DraftChunk] = []
        previous_text: str | None = None

        for candidate in candidates:
            body = candidate.body
            text = body
            if previous_text is not None:
                overlap = self._overlap_prefix(previous_text)
                if overlap:
                    with_overlap = f"{_OVERLAP_MARKER}{overlap}{_BLOCK_SEPARATOR}{body}"
                    if self.estimate_tokens(with_overlap) <= self.config.max_tokens:
                        text = with_overlap
            previous_text = text

            if len(text.strip()) < self.config.min_chunk_chars:
                continue

            drafts.append(
                _DraftChunk(
                    content=text,
                    body=body,
                    page_start=page_for_offset(candidate.start_offset, page_breaks),
                    page_end=page_for_offset(candidate.end_offset, page_breaks),
                    section_path=candidate.items[0].section_path,
                    content_type=classify_content(text),
                    token_count=self.estimate_tokens(text),
                )
            )
        return drafts

    def _overlap_prefix(self, previous_text: str) -> str:
        overlap_chars = self.config.overlap_tokens * self.config.chars_per_token
        if overlap_chars == 0:
            return ""
        tail = previous_text[-overlap_chars:]
        boundary = tail.find(". ")
        if boundary <= 0:
            return ""
        clean = tail[boundary + 2 :].strip()
        if len(clean) <= self.config.min_overlap_chars:
            return ""
        return clean

    def _merge_undersized(self, drafts: list[_DraftChunk]) -> list[_DraftChunk]:
        if len(drafts) <= 1:
            return drafts

        ceiling = self.config.max_tokens * self.config.merge_ceiling_factor
        merged: list[_DraftChunk] = []
        for draft in drafts:
            if draft.token_count < self.config.min_tokens and merged:
                previous = merged[-1]
                content = f"{previous.content}{_BLOCK_SEPARATOR}{draft.body}"
                tokens = self.estimate_tokens(content)
                if tokens <= ceiling:
                    merged[-1] = _DraftChunk(
                        content=content,
                        body=f"{previous.body}{_BLOCK_SEPARATOR}{draft.body}",
                        page_start=previous.page_start,
                        page_end=draft.page_end,
                        section_path=previous.section_path or draft.section_path,
                        content_type=prioritize_content_type(
                            previous.content_type, draft.content_type
                        ),
                        token_count=tokens,
                    )
                    continue
            merged.append(draft)
        return merged


def _pack_words(text: str, max_chars: int) -> list[str]:
    pieces: list[str] = []
    current = ""
    for word in text.split():
        while len(word) > max_chars:
            if current:
                pieces.append(current)
                current = ""
            pieces.append(word[:max_chars])
            word = word[max_chars:]
        if not word:
            continue
        joined = f"{current} {word}" if current else word
        if len(joined) > max_chars:
            pieces.append(current)
            current = word
        else:
            current = joined
    if current:
        pieces.append(current)
    return pieces
