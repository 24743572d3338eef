"""Safety verdict audit trail and request timing."""

from __future__ import annotations

import time
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone

from manual_rag.types import SafetyAction, SafetyTrigger


@dataclass(slots=True)
class SafetyAuditRecord:
    record_id: str
    timestamp_utc: str
    sku_id: str
    package_version: int | None
    question: str
    action: SafetyAction
    triggers: list[SafetyTrigger]
    citations: list[str]
    matched_count: int
    confidence: float
    latency_ms: float


class SafetyAuditLog:
    """In-memory record of every safety verdict."""

    def __init__(self) -> None:
        self._records: dict[str, SafetyAuditRecord] = {}

    def record(
        self,
        *,
        sku_id: str,
        package_version: int | None,
        question: str,
        action: SafetyAction,
        triggers: list[SafetyTrigger],
        citations: list[str],
        matched_count: int,
        confidence: float,
        latency_ms: float,
    ) -> SafetyAuditRecord:
        entry = SafetyAuditRecord(
            record_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            sku_id=sku_id,
            package_version=package_version,
            question=question,
            action=action,
            triggers=list(triggers),
            citations=list(citations),
            matched_count=matched_count,
            confidence=confidence,
            latency_ms=latency_ms,
        )
        self._records[entry.record_id] = entry
        return entry

    def get(self, record_id: str) -> SafetyAuditRecord:
        entry = self._records.get(record_id)
        if entry is None:
            raise KeyError(f"Audit record not found: {record_id}")
        return entry

    def list_recent(self, limit: int = 20) -> list[SafetyAuditRecord]:
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Counts per action and per trigger type, plus latency and escalation rate."""
        records = list(self._records.values())
        total = len(records)
        actions = Counter(entry.action.value for entry in records)
        trigger_types = Counter(trigger.type for entry in records for trigger in entry.triggers)

        result: dict[str, float | int] = {
            "total_requests": total,
            "avg_latency_ms": (sum(entry.latency_ms for entry in records) / total) if total else 0.0,
            "escalation_rate": (
                (actions[SafetyAction.ESCALATE.value] + actions[SafetyAction.BLOCK.value]) / total
                if total
                else 0.0
            ),
        }
        for action in SafetyAction:
            result[f"action_{action.value}"] = actions[action.value]
        for trigger_type, count in sorted(trigger_types.items()):
            result[f"trigger_{trigger_type}"] = count
        return result


class Timer:
    """Context timer for pipeline latency."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
