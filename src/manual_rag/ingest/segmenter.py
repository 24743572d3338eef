"""Block segmentation, heading detection, and page-boundary detection."""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass

from manual_rag.logging_utils import get_logger
from manual_rag.types import Block, BlockKind, Heading, PageBreak, Segmentation

logger = get_logger(__name__)

_MARKDOWN_HEADING = re.compile(r"^(#{1,3})\s+(.+)$")
_UNDERLINE_LEVEL_1 = re.compile(r"^={3,}$")
_UNDERLINE_LEVEL_2 = re.compile(r"^-{3,}$")
_CAPS_LINE = re.compile(r"^[A-Z][A-Z\s\-&/,.:0-9]+$")
_NUMBERED_HEADING = re.compile(r"^(\d+(?:\.\d+)?(?:\.\d+)?)\s+([A-Z].{2,})$")
_WARNING_KEYWORD = re.compile(r"\b(?:WARNING|CAUTION|DANGER|NOTICE)\b")
_WARNING_LABEL_LINE = re.compile(r"^(?:WARNING|CAUTION|DANGER|NOTICE)\b")
_NUMBERED_STEP = re.compile(r"^\d+[.)]\s+|^step\s+\d+", flags=re.IGNORECASE)
_STEP_CONTINUATION_INDENT = re.compile(r"^\s{2,}")
_STEP_CONTINUATION_BULLET = re.compile(r"^[-*]\s")
_BULLET = re.compile(r"^[-*+]\s")
_FIGURE_CAPTION = re.compile(r"^(?:Figure|Fig\.?)\s+\d+[.:]\s*.+$", flags=re.IGNORECASE)

_PAGE_LABEL = re.compile(r"^[ \t]*page[ \t]+(\d+)[ \t]*$", flags=re.IGNORECASE | re.MULTILINE)
_PAGE_DASHED = re.compile(r"^[ \t]*-[ \t]*(\d+)[ \t]*-[ \t]*$", flags=re.MULTILINE)
_PAGE_BARE = re.compile(r"^[ \t]*(\d+)[ \t]*$", flags=re.MULTILINE)
_MAX_PAGE_NUMBER = 10000
_MIN_BARE_PAGE_MARKERS = 3


@dataclass(slots=True, frozen=True)
class _LineContext:
    trimmed: str
    previous: str | None
    following: str | None


@dataclass(slots=True, frozen=True)
class _HeadingHit:
    level: int
    text: str
    consumes_next_line: bool = False


def markdown_heading(ctx: _LineContext) -> _HeadingHit | None:
    match = _MARKDOWN_HEADING.match(ctx.trimmed)
    if not match:
        return None
    return _HeadingHit(level=len(match.group(1)), text=match.group(2).strip())


def underline_heading(ctx: _LineContext) -> _HeadingHit | None:
    if ctx.following is None or len(ctx.trimmed) <= 2:
        return None
    if _UNDERLINE_LEVEL_1.match(ctx.following):
        return _HeadingHit(level=1, text=ctx.trimmed, consumes_next_line=True)
    if _UNDERLINE_LEVEL_2.match(ctx.following):
        return _HeadingHit(level=2, text=ctx.trimmed, consumes_next_line=True)
    return None


def caps_heading(ctx: _LineContext) -> _HeadingHit | None:
    """ALL-CAPS short line preceded by a blank line or the start of text."""
    trimmed = ctx.trimmed
    if not 4 <= len(trimmed) < 80:
        return None
    if not _CAPS_LINE.match(trimmed) or _WARNING_LABEL_LINE.match(trimmed):
        return None
    uppercase_letters = sum(1 for char in trimmed if "A" <= char <= "Z")
    if uppercase_letters < len(trimmed) * 0.5:
        return None
    if ctx.previous not in (None, ""):
        return None
    return _HeadingHit(level=1, text=_title_case(trimmed))


def numbered_heading(ctx: _LineContext) -> _HeadingHit | None:
    if len(ctx.trimmed) >= 80:
        return None
    match = _NUMBERED_HEADING.match(ctx.trimmed)
    if not match:
        return None
    depth = len(match.group(1).split("."))
    return _HeadingHit(level=min(depth, 3), text=match.group(2).strip())


HEADING_DETECTORS: tuple[Callable[[_LineContext], _HeadingHit | None], ...] = (
    markdown_heading,
    underline_heading,
    caps_heading,
    numbered_heading,
)


def _first_heading_hit(ctx: _LineContext) -> _HeadingHit | None:
    for detector in HEADING_DETECTORS:
        hit = detector(ctx)
        if hit is not None:
            return hit
    return None


def _title_case(text: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in text.lower().split())


def detect_headings(
    text: str, *, skip_offsets: frozenset[int] = frozenset()
) -> list[Heading]:
    """Detect heading lines; the first matching detector wins per line."""
    return [heading for heading, _ in _scan_headings(text.split("\n"), skip_offsets)]


def _scan_headings(
    lines: list[str], skip_offsets: frozenset[int]
) -> list[tuple[Heading, int | None]]:
    hits: list[tuple[Heading, int | None]] = []
    offset = 0
    index = 0
    while index < len(lines):
        line = lines[index]
        line_offset = offset
        offset += len(line) + 1
        if line_offset in skip_offsets:
            index += 1
            continue

        ctx = _LineContext(
            trimmed=line.strip(),
            previous=lines[index - 1].strip() if index > 0 else None,
            following=lines[index + 1].strip() if index + 1 < len(lines) else None,
        )
        hit = _first_heading_hit(ctx)
        if hit is None:
            index += 1
            continue

        underline_offset: int | None = None
        if hit.consumes_next_line:
            underline_offset = offset
            offset += len(lines[index + 1]) + 1
            index += 1
        hits.append((Heading(level=hit.level, text=hit.text, offset=line_offset), underline_offset))
        index += 1
    return hits


def detect_page_breaks(text: str) -> list[PageBreak]:
    """Detect page boundaries from form feeds, page labels, or bare numbers.

    Bare numeric lines are only trusted when there are at least three of them
    and they form a strictly increasing sequence.
    """
    breaks: list[PageBreak] = []
    page_number = 1
    index = text.find("\f")
    while index != -1:
        page_number += 1
        breaks.append(PageBreak(page_number=page_number, offset=index))
        index = text.find("\f", index + 1)
    if breaks:
        return breaks

    for pattern in (_PAGE_LABEL, _PAGE_DASHED):
        found = _increasing(_pattern_breaks(text, pattern))
        if found:
            return found

    bare = _pattern_breaks(text, _PAGE_BARE)
    if len(bare) >= _MIN_BARE_PAGE_MARKERS and all(
        later.page_number > earlier.page_number for earlier, later in zip(bare, bare[1:])
    ):
        return bare
    return []


def _pattern_breaks(text: str, pattern: re.Pattern[str]) -> list[PageBreak]:
    found: list[PageBreak] = []
    for match in pattern.finditer(text):
        number = int(match.group(1))
        if 0 < number < _MAX_PAGE_NUMBER:
            found.append(PageBreak(page_number=number, offset=match.start()))
    return found


def _increasing(breaks: list[PageBreak]) -> list[PageBreak]:
    kept: list[PageBreak] = []
    for page_break in breaks:
        if not kept or page_break.page_number > kept[-1].page_number:
            kept.append(page_break)
    return kept


def page_for_offset(offset: int, page_breaks: list[PageBreak]) -> int:
    page = 1
    for page_break in page_breaks:
        if offset >= page_break.offset:
            page = page_break.page_number
        else:
            break
    return page


class SectionPathBuilder:
    """Heading stack producing breadcrumb paths like ``Safety/Electrical``."""

    def __init__(self) -> None:
        self._stack: list[tuple[int, str]] = []

    def push(self, level: int, text: str) -> None:
        while self._stack and self._stack[-1][0] >= level:
            self._stack.pop()
        self._stack.append((level, text))

    @property
    def path(self) -> str:
        return "/".join(text for _, text in self._stack)


def extract_figure_captions(text: str) -> list[str]:
    return [
        line.strip() for line in text.split("\n") if _FIGURE_CAPTION.match(line.strip())
    ]


class _BlockAccumulator:
    """Mutable state for the left-to-right block scan."""

    def __init__(self) -> None:
        self.blocks: list[Block] = []
        self.lines: list[str] = []
        self.start = 0
        self.end = 0
        self.kind = BlockKind.PARAGRAPH
        self.in_steps = False
        self.in_warning = False

    def add(self, line: str, line_offset: int) -> None:
        if not self.lines:
            self.start = line_offset
        self.lines.append(line.replace("\f", ""))
        self.end = line_offset + len(line)

    def flush(self) -> None:
        content = "\n".join(self.lines).strip()
        if content:
            self.blocks.append(
                Block(content=content, start_offset=self.start, end_offset=self.end, kind=self.kind)
            )
        self.lines = []
        self.kind = BlockKind.PARAGRAPH
        self.in_steps = False
        self.in_warning = False


class TextBlockSegmenter:
    """Splits raw manual text into atomic semantic blocks.

    The scan is a single left-to-right pass. Warning blocks open on a
    WARNING/CAUTION/DANGER/NOTICE keyword and run to the next blank line.
    Numbered-step blocks open on an ordinal marker and absorb indented or
    bulleted continuation lines. Bullet lines accumulate into lists and
    everything else is paragraph text. Ambiguous formatting degrades to
    paragraphs; this class never raises on content.
    """

    def segment(self, raw_text: str) -> Segmentation:
        if not raw_text or not raw_text.strip():
            return Segmentation(blocks=[], headings=[], page_breaks=[], figure_captions=[])

        page_breaks = detect_page_breaks(raw_text)
        marker_offsets = frozenset(
            page_break.offset for page_break in page_breaks if raw_text[page_break.offset] != "\f"
        )
        lines = raw_text.split("\n")
        heading_hits = _scan_headings(lines, marker_offsets)
        headings = [heading for heading, _ in heading_hits]
        skip_offsets = marker_offsets | {
            underline for _, underline in heading_hits if underline is not None
        }
        blocks = self._segment_blocks(lines, headings, skip_offsets)

        logger.debug(
            "Segmented %d chars into %d blocks, %d headings, %d page breaks",
            len(raw_text),
            len(blocks),
            len(headings),
            len(page_breaks),
        )
        return Segmentation(
            blocks=blocks,
            headings=headings,
            page_breaks=page_breaks,
            figure_captions=extract_figure_captions(raw_text),
        )

    def _segment_blocks(
        self, lines: list[str], headings: list[Heading], skip_offsets: frozenset[int]
    ) -> list[Block]:
        headings_by_offset = {heading.offset: heading for heading in headings}
        acc = _BlockAccumulator()
        offset = 0

        for line in lines:
            line_offset = offset
            offset += len(line) + 1
            trimmed = line.strip()

            heading = headings_by_offset.get(line_offset)
            if heading is not None:
                acc.flush()
                acc.blocks.append(
                    Block(
                        content=trimmed,
                        start_offset=line_offset,
                        end_offset=line_offset + len(line),
                        kind=BlockKind.HEADING,
                        heading_level=heading.level,
                        heading_text=heading.text,
                    )
                )
                continue

            if line_offset in skip_offsets:
                continue

            if not acc.in_warning and _WARNING_KEYWORD.search(trimmed):
                if acc.lines and not acc.in_steps:
                    acc.flush()
                acc.in_warning = True
                acc.kind = BlockKind.WARNING_BLOCK
                acc.add(line, line_offset)
                continue

            if acc.in_warning:
                if trimmed:
                    acc.add(line, line_offset)
                else:
                    acc.flush()
                continue

            if _NUMBERED_STEP.match(trimmed):
                if not acc.in_steps and acc.lines:
                    acc.flush()
                acc.in_steps = True
                acc.kind = BlockKind.NUMBERED_STEPS
                acc.add(line, line_offset)
                continue

            if acc.in_steps:
                if trimmed and (
                    _STEP_CONTINUATION_INDENT.match(line)
                    or _STEP_CONTINUATION_BULLET.match(trimmed)
                ):
                    acc.add(line, line_offset)
                    continue
                acc.flush()
                if trimmed:
                    acc.add(line, line_offset)
                continue

            if _BULLET.match(trimmed):
                if acc.kind is not BlockKind.LIST and acc.lines:
                    acc.flush()
                acc.kind = BlockKind.LIST
                acc.add(line, line_offset)
                continue

            if not trimmed:
                if acc.lines:
                    acc.flush()
                continue

            if acc.kind is BlockKind.LIST:
                acc.flush()
            acc.add(line, line_offset)

        acc.flush()
        return acc.blocks
