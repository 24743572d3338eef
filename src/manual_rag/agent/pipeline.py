"""Question answering orchestration: retrieve, generate, gate, audit."""

from __future__ import annotations

from typing import Any

from manual_rag.agent.answering import (
    AnswerGenerator,
    ExtractiveAnswerGenerator,
    StructuredAnswer,
)
from manual_rag.errors import NotFoundError
from manual_rag.obs.audit import SafetyAuditLog, Timer
from manual_rag.retrieval.retriever import PackageRetriever
from manual_rag.safety.gate import SafetyGate
from manual_rag.types import RetrievalResult, SafetyAction

BLOCKED_SUMMARY = (
    "I can't help with that request. Please contact the manufacturer's "
    "support line or a qualified technician."
)


class AssistantPipeline:
    """Runs one grounded answer turn for a SKU.

    Blocked answers are replaced by a refusal before they leave the
    pipeline; escalated and warned answers are returned with their triggers
    so the caller can route the conversation to a human.
    """

    def __init__(
        self,
        *,
        retriever: PackageRetriever,
        generator: AnswerGenerator | None = None,
        safety_gate: SafetyGate | None = None,
        audit_log: SafetyAuditLog | None = None,
    ) -> None:
        self.retriever = retriever
        self.generator = generator or ExtractiveAnswerGenerator()
        self.safety_gate = safety_gate or SafetyGate()
        self.audit_log = audit_log or SafetyAuditLog()

    def answer(
        self,
        sku_id: str,
        question: str,
        *,
        version: int | None = None,
        history: list[Any] | None = None,
    ) -> dict[str, Any]:
        """Answer `question` from the SKU's ACTIVE package (or `version`, if pinned).

        Returns:
            A payload with the structured answer, resolved citations, the
            safety action and triggers, the package version used, the audit
            record id, and latency.
        """

        sku = self.retriever.store.get_sku(sku_id)
        if sku is None:
            raise NotFoundError(f'SKU "{sku_id}" not found')

        with Timer() as timer:
            ranked = self.retriever.retrieve(sku_id, question, version=version)
            answer = self.generator.generate(
                question, ranked.results, product_name=sku.name, history=history
            )
            verdict = self.safety_gate.evaluate(
                question, ranked.results, answer, matched_count=ranked.matched_count
            )
            if verdict.action is SafetyAction.BLOCK:
                answer = StructuredAnswer(summary=BLOCKED_SUMMARY, confidence=0.0)

        record = self.audit_log.record(
            sku_id=sku_id,
            package_version=ranked.package_version,
            question=question,
            action=verdict.action,
            triggers=verdict.triggers,
            citations=answer.citations,
            matched_count=ranked.matched_count,
            confidence=answer.confidence,
            latency_ms=timer.elapsed_ms,
        )

        return {
            "answer": answer,
            "citations": _resolve_citations(answer.citations, ranked.results),
            "action": verdict.action,
            "triggers": verdict.triggers,
            "escalate": verdict.action in (SafetyAction.ESCALATE, SafetyAction.BLOCK),
            "package_version": ranked.package_version,
            "matched_count": ranked.matched_count,
            "audit_id": record.record_id,
            "latency_ms": record.latency_ms,
        }


def _resolve_citations(chunk_ids: list[str], results: list[RetrievalResult]) -> list[dict[str, Any]]:
    by_id = {result.chunk_id: result for result in results}
    resolved: list[dict[str, Any]] = []
    for chunk_id in dict.fromkeys(chunk_ids):
        result = by_id.get(chunk_id)
        if result is None:
            continue
        resolved.append(
            {
                "chunk_id": chunk_id,
                "document_title": result.document_title,
                "page_start": result.page_start,
                "page_end": result.page_end,
                "section_path": result.section_path,
            }
        )
    return resolved
