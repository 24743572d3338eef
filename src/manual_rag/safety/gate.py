"""Safety evaluation of a question, its retrieved evidence, and the answer."""

from __future__ import annotations

import re
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from manual_rag.config import SafetyConfig
from manual_rag.logging_utils import get_logger
from manual_rag.types import (
    RetrievalResult,
    SafetyAction,
    SafetyCheckResult,
    SafetyTrigger,
    Severity,
)

logger = get_logger(__name__)


class ScoredAnswer(Protocol):
    confidence: float


def _word_pattern(phrase: str) -> str:
    return rf"\b{re.escape(phrase)}(?:s|es|ed|ing)?\b"


@dataclass(slots=True, frozen=True)
class KeywordRule:
    """Raise `trigger_type` when any keyword occurs in the lowercased message.

    Keywords match whole words, optionally with a plural or verb suffix, so
    "wires" and "burned" match while "wireless" and "shortcut" do not.
    `requires`, when set, is an extra phrase that must also be present.
    """

    trigger_type: str
    severity: Severity
    keywords: tuple[str, ...]
    reason: str
    requires: str | None = None

    def matches(self, message: str) -> bool:
        if self.requires is not None and not re.search(_word_pattern(self.requires), message):
            return False
        return any(re.search(_word_pattern(keyword), message) for keyword in self.keywords)


KEYWORD_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(
        "safety_bypass_attempt",
        Severity.CRITICAL,
        (
            "bypass",
            "override",
            "disable safety",
            "remove guard",
            "short circuit",
            "ignore your instructions",
        ),
        "User message contains a safety bypass keyword",
    ),
    KeywordRule(
        "electrical",
        Severity.HIGH,
        ("voltage", "amperage", "wire", "fuse", "circuit breaker"),
        "Question involves electrical components; professional help recommended",
    ),
    KeywordRule(
        "gas_fire",
        Severity.HIGH,
        ("gas leak", "flame", "propane", "pilot light"),
        "Question involves gas or fire hazards; professional help recommended",
    ),
    KeywordRule(
        "medical",
        Severity.HIGH,
        ("injury", "burn", "shock", "poisoning"),
        "Question involves potential injury or a medical concern",
    ),
    KeywordRule(
        "warranty_void",
        Severity.MEDIUM,
        ("void warranty", "disassemble", "modify", "root", "jailbreak"),
        "Question may involve warranty-voiding actions",
    ),
    KeywordRule(
        "sharp_tools",
        Severity.MEDIUM,
        ("blade", "saw", "cut"),
        "Question involves sharp tools with procedural intent",
        requires="how to",
    ),
)

CHILD_WORDS = ("child", "baby", "infant")
DANGER_WORDS = ("danger", "harm", "safe")

_ACTION_BY_SEVERITY = {
    Severity.CRITICAL: SafetyAction.BLOCK,
    Severity.HIGH: SafetyAction.ESCALATE,
    Severity.MEDIUM: SafetyAction.WARN,
    Severity.LOW: SafetyAction.ALLOW,
}


def _positions(text: str, word: str) -> list[int]:
    return [match.start() for match in re.finditer(re.escape(word), text)]


def words_near(text: str, group_a: Sequence[str], group_b: Sequence[str], max_distance: int) -> bool:
    """True when some word of `group_a` starts within `max_distance` chars of one of `group_b`."""
    left = [pos for word in group_a for pos in _positions(text, word)]
    right = [pos for word in group_b for pos in _positions(text, word)]
    return any(abs(a - b) <= max_distance for a in left for b in right)


def reduce_action(triggers: Sequence[SafetyTrigger]) -> SafetyAction:
    """The worst severity decides the action."""
    if not triggers:
        return SafetyAction.ALLOW
    worst = max(triggers, key=lambda trigger: trigger.severity.rank)
    return _ACTION_BY_SEVERITY[worst.severity]


class SafetyGate:
    """Evaluates hazards in the message, evidence strength, and answer confidence.

    Every detector is a pure function of its inputs; triggers are collected
    in detector order and reduced to one `SafetyAction`. The gate never
    raises on content.
    """

    def __init__(self, config: SafetyConfig | None = None) -> None:
        self.config = config or SafetyConfig()

    def evaluate(
        self,
        user_message: str,
        retrieved_chunks: Sequence[RetrievalResult],
        answer: ScoredAnswer,
        *,
        matched_count: int | None = None,
    ) -> SafetyCheckResult:
        triggers = [
            *self.message_triggers(user_message),
            *self.evidence_triggers(user_message, retrieved_chunks, matched_count=matched_count),
            *self.confidence_triggers(answer.confidence),
            *self.conflict_triggers(retrieved_chunks),
        ]
        action = reduce_action(triggers)
        if action is not SafetyAction.ALLOW:
            logger.warning(
                "Safety action %s (%s)",
                action.value,
                ", ".join(trigger.type for trigger in triggers),
            )
        return SafetyCheckResult(triggered=bool(triggers), triggers=triggers, action=action)

    def message_triggers(self, user_message: str) -> list[SafetyTrigger]:
        message = user_message.lower()
        triggers = [
            SafetyTrigger(type=rule.trigger_type, severity=rule.severity, reason=rule.reason)
            for rule in KEYWORD_RULES
            if rule.matches(message)
        ]
        if words_near(message, CHILD_WORDS, DANGER_WORDS, self.config.child_proximity_chars):
            triggers.append(
                SafetyTrigger(
                    type="child_safety",
                    severity=Severity.HIGH,
                    reason="Question involves child safety concerns",
                )
            )
        # Worst first; the sort is stable within a severity.
        triggers.sort(key=lambda trigger: -trigger.severity.rank)
        return triggers

    def evidence_triggers(
        self,
        user_message: str,
        retrieved_chunks: Sequence[RetrievalResult],
        *,
        matched_count: int | None = None,
    ) -> list[SafetyTrigger]:
        if not retrieved_chunks:
            return [
                SafetyTrigger(
                    type="no_retrieval_results",
                    severity=Severity.HIGH,
                    reason="No documentation chunks were retrieved for this query",
                )
            ]

        floor = self.config.low_confidence_floor
        if all(chunk.score < floor for chunk in retrieved_chunks):
            reason = f"All retrieval scores below {floor}; insufficient evidence to answer"
            if matched_count == 0:
                reason += " (no chunk matched any query term)"
            return [
                SafetyTrigger(type="insufficient_evidence", severity=Severity.HIGH, reason=reason)
            ]

        top_score = max(chunk.score for chunk in retrieved_chunks)
        word_count = len(user_message.split())
        if top_score < self.config.middling_floor and word_count > self.config.specific_query_min_words:
            return [
                SafetyTrigger(
                    type="low_retrieval_confidence",
                    severity=Severity.MEDIUM,
                    reason=(
                        f"Top retrieval score ({top_score:.3f}) is low for a specific "
                        f"query ({word_count} words)"
                    ),
                )
            ]
        return []

    def confidence_triggers(self, confidence: float) -> list[SafetyTrigger]:
        if confidence < self.config.response_hard_floor:
            return [
                SafetyTrigger(
                    type="low_response_confidence",
                    severity=Severity.HIGH,
                    reason=f"Answer confidence is very low ({confidence:.2f})",
                )
            ]
        if confidence < self.config.response_soft_floor:
            return [
                SafetyTrigger(
                    type="moderate_response_confidence",
                    severity=Severity.MEDIUM,
                    reason=f"Answer confidence is below threshold ({confidence:.2f})",
                )
            ]
        return []

    def conflict_triggers(self, retrieved_chunks: Sequence[RetrievalResult]) -> list[SafetyTrigger]:
        """Heuristic: one section path served by several documents with mixed content types."""
        if len(retrieved_chunks) < 2:
            return []

        by_section: defaultdict[str, list[RetrievalResult]] = defaultdict(list)
        for chunk in retrieved_chunks:
            by_section[chunk.section_path].append(chunk)

        triggers: list[SafetyTrigger] = []
        for section, chunks in by_section.items():
            document_ids = list(dict.fromkeys(chunk.document_id for chunk in chunks))
            content_types = {chunk.content_type for chunk in chunks}
            if len(document_ids) > 1 and len(content_types) > 1:
                triggers.append(
                    SafetyTrigger(
                        type="conflicting_sources",
                        severity=Severity.HIGH,
                        reason=(
                            f"Documents ({', '.join(document_ids)}) disagree on content type "
                            f'for section "{section}"'
                        ),
                    )
                )
        return triggers
