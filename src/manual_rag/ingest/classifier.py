"""Rule-based content-type classification for chunks.

Each pattern family is scored independently by a pure function; a fixed
reducer combines the family scores into one `ContentType`. Warning signals
dominate: any text reaching the warning threshold is classified WARNING no
matter how strongly it also looks like a procedure or a spec sheet.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from manual_rag.types import ContentType

_I = re.IGNORECASE
_IM = re.IGNORECASE | re.MULTILINE


@dataclass(slots=True, frozen=True)
class PatternFamily:
    content_type: ContentType
    patterns: tuple[re.Pattern[str], ...]
    weight: int


PROCEDURE_FAMILY = PatternFamily(
    content_type=ContentType.PROCEDURE,
    weight=2,
    patterns=(
        re.compile(r"^\s*\d+\.\s+", re.MULTILINE),
        re.compile(r"^\s*step\s+\d+", _IM),
        re.compile(r"\bhow\s+to\b", _I),
        re.compile(r"\binstructions?\b", _I),
        re.compile(r"\bprocedure\b", _I),
        re.compile(
            r"^\s*[-*]\s+.*(?:install|remove|replace|connect|disconnect|adjust|tighten|loosen)",
            _IM,
        ),
        re.compile(r"\bfollow\s+these\s+steps\b", _I),
        re.compile(r"\bperform\s+the\s+following\b", _I),
    ),
)

WARNING_FAMILY = PatternFamily(
    content_type=ContentType.WARNING,
    weight=3,
    patterns=(
        re.compile(r"\b(?:WARNING|CAUTION|DANGER|NOTICE)\b"),
        re.compile(r"\b(?:warning|caution|danger)\s*[:\-!]", _I),
        re.compile(r"\bdo\s+not\b.*\b(?:risk|hazard|injur\w*|shock|fire|burn|death)\b", _I),
        re.compile(
            r"\b(?:risk\s+of|may\s+cause)\s+(?:electric\w*|shock|fire|injury|death|burn)\b", _I
        ),
        re.compile(r"\bsafety\s+(?:precautions?|warnings?|notice|information)\b", _I),
    ),
)

SPECS_FAMILY = PatternFamily(
    content_type=ContentType.SPECS,
    weight=2,
    patterns=(
        re.compile(r"\bspecifications?\b", _I),
        re.compile(r"\bdimensions?\b", _I),
        re.compile(r"\bratings?\b", _I),
        re.compile(
            r"\b(?:weight|height|width|length|depth|voltage|wattage|amperage|capacity)\s*[:=]",
            _I,
        ),
        re.compile(r"\b\d+\s*(?:mm|cm|m|in|ft|kg|lb|oz|V|W|A|Hz|RPM|dB|BTU|psi|kPa)\b"),
        re.compile(r"\btechnical\s+data\b", _I),
        re.compile(r"\bmodel\s+(?:number|no\.?|#)", _I),
    ),
)

TROUBLESHOOTING_FAMILY = PatternFamily(
    content_type=ContentType.TROUBLESHOOTING,
    weight=2,
    patterns=(
        re.compile(r"\btroubleshooting\b", _I),
        re.compile(r"\bproblem\s*[:\-/]?\s*solution\b", _I),
        re.compile(r"\berror\s+code\b", _I),
        re.compile(r"\bif\s+.*(?:does\s+not|doesn't|won't|fails?\s+to|is\s+not)\b", _I),
        re.compile(r"\b(?:symptom|cause|remedy|fix)\b", _I),
        re.compile(r"\b(?:blinking|flashing)\s+(?:light|LED|indicator)\b", _I),
        re.compile(r"\b(?:E|ERR|ERROR)\s*[-:]?\s*\d+", _I),
    ),
)

# Order matters: ties between non-warning families resolve to the earlier one.
PATTERN_FAMILIES: tuple[PatternFamily, ...] = (
    PROCEDURE_FAMILY,
    WARNING_FAMILY,
    SPECS_FAMILY,
    TROUBLESHOOTING_FAMILY,
)

WARNING_THRESHOLD = 3

MERGE_PRIORITY: tuple[ContentType, ...] = (
    ContentType.WARNING,
    ContentType.PROCEDURE,
    ContentType.TROUBLESHOOTING,
    ContentType.SPECS,
    ContentType.GENERAL,
)


def score_family(text: str, family: PatternFamily) -> int:
    return sum(family.weight for pattern in family.patterns if pattern.search(text))


def score_families(text: str) -> dict[ContentType, int]:
    return {family.content_type: score_family(text, family) for family in PATTERN_FAMILIES}


def reduce_scores(scores: dict[ContentType, int]) -> ContentType:
    if scores.get(ContentType.WARNING, 0) >= WARNING_THRESHOLD:
        return ContentType.WARNING

    best_type = ContentType.GENERAL
    best_score = 0
    for content_type, score in scores.items():
        if content_type in (ContentType.WARNING, ContentType.GENERAL):
            continue
        if score > best_score:
            best_type, best_score = content_type, score
    return best_type


def classify_content(text: str) -> ContentType:
    return reduce_scores(score_families(text))


def prioritize_content_type(a: ContentType, b: ContentType) -> ContentType:
    """Pick the content type to keep when two chunks are merged."""
    return a if MERGE_PRIORITY.index(a) <= MERGE_PRIORITY.index(b) else b
