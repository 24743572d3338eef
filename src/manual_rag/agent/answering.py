"""Answer generation from retrieved manual evidence."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder
from pydantic import BaseModel, Field

from manual_rag.types import ContentType, RetrievalResult

_SYSTEM_PROMPT = """
You are a product support assistant for "{product_name}".

Rules:
1) Answer ONLY from the manual excerpts below; never invent steps or values.
2) Cite every excerpt you rely on by its id, e.g. [chunk-id].
3) Copy safety warnings that apply to the question into `warnings`.
4) If the excerpts do not answer the question, say so and set a low confidence.
5) For electrical, gas, or chemical work recommend a qualified professional.

Manual excerpts:
{context}
""".strip()

_STEP_LINE = re.compile(r"^\s*(?:step\s+\d+[:.)]?|\d+[.)])\s*(?P<text>.+)$", re.IGNORECASE)
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")

NO_EVIDENCE_SUMMARY = (
    "I could not find this in the product documentation. "
    "A support agent can help with this question."
)


class AnswerStep(BaseModel):
    order: int = Field(ge=1)
    instruction: str


class StructuredAnswer(BaseModel):
    """Answer contract shared by every generator."""

    summary: str
    steps: list[AnswerStep] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    citations: list[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    follow_up_questions: list[str] = Field(default_factory=list)


class AnswerGenerator(ABC):
    """Produces a structured answer for a question and its evidence."""

    @abstractmethod
    def generate(
        self,
        question: str,
        evidence: Sequence[RetrievalResult],
        *,
        product_name: str,
        history: list[Any] | None = None,
    ) -> StructuredAnswer:
        """Answer `question` from `evidence` only."""


def format_context(evidence: Sequence[RetrievalResult]) -> str:
    blocks: list[str] = []
    for result in evidence:
        pages = (
            f"p. {result.page_start}"
            if result.page_start == result.page_end
            else f"pp. {result.page_start}-{result.page_end}"
        )
        section = result.section_path or "(no section)"
        blocks.append(
            f"[{result.chunk_id}] {result.document_title}, {pages}, {section} "
            f"({result.content_type.value})\n{result.content}"
        )
    return "\n\n".join(blocks) if blocks else "(no excerpts)"


class LangChainAnswerGenerator(AnswerGenerator):
    """Chat-model generator with structured output.

    `chain` may be injected (any object with `invoke(dict)`) so tests and
    offline environments do not need a live model.
    """

    def __init__(self, llm: Any | None = None, *, chain: Any | None = None) -> None:
        if chain is None and llm is None:
            raise ValueError("Either llm or chain must be provided.")
        self.llm = llm
        if chain is not None:
            self.chain = chain
        else:
            prompt = ChatPromptTemplate.from_messages(
                [
                    ("system", _SYSTEM_PROMPT),
                    MessagesPlaceholder(variable_name="chat_history", optional=True),
                    ("human", "{question}"),
                ]
            )
            self.chain = prompt | llm.with_structured_output(StructuredAnswer)

    def generate(
        self,
        question: str,
        evidence: Sequence[RetrievalResult],
        *,
        product_name: str,
        history: list[Any] | None = None,
    ) -> StructuredAnswer:
        result = self.chain.invoke(
            {
                "product_name": product_name,
                "context": format_context(evidence),
                "question": question,
                "chat_history": history or [],
            }
        )
        answer = result if isinstance(result, StructuredAnswer) else StructuredAnswer.model_validate(result)

        # Citations must point at evidence that was actually shown.
        known = {item.chunk_id for item in evidence}
        answer.citations = [citation for citation in answer.citations if citation in known]
        return answer


class ExtractiveAnswerGenerator(AnswerGenerator):
    """Deterministic generator that quotes the best evidence.

    Used when no chat model is configured. Confidence is derived from the top
    retrieval score as `score / (score + 0.5)`, capped at 0.95, so the
    evidence floors of the safety gate map onto its confidence floors.
    """

    def __init__(self, max_citations: int = 3) -> None:
        self.max_citations = max_citations

    def generate(
        self,
        question: str,
        evidence: Sequence[RetrievalResult],
        *,
        product_name: str,
        history: list[Any] | None = None,
    ) -> StructuredAnswer:
        del question, history
        relevant = [item for item in evidence if item.score > 0]
        if not relevant:
            return StructuredAnswer(summary=NO_EVIDENCE_SUMMARY, confidence=0.0)

        top = relevant[0]
        procedure = next(
            (item for item in relevant if item.content_type is ContentType.PROCEDURE), None
        )
        steps = _extract_steps(procedure.content) if procedure is not None else []
        warnings = [
            _first_sentences(item.content, limit=2)
            for item in relevant
            if item.content_type is ContentType.WARNING
        ]
        cited = relevant[: self.max_citations]
        if procedure is not None and procedure not in cited:
            cited.append(procedure)

        return StructuredAnswer(
            summary=f"From the {product_name} documentation: {_first_sentences(top.content)}",
            steps=steps,
            warnings=warnings,
            citations=[item.chunk_id for item in cited],
            confidence=round(min(0.95, top.score / (top.score + 0.5)), 2),
        )


def _strip_overlap(content: str) -> str:
    if content.startswith("...") and "\n\n" in content:
        return content.split("\n\n", 1)[1]
    return content


def _first_sentences(content: str, limit: int = 2) -> str:
    text = " ".join(_strip_overlap(content).split())
    return " ".join(_SENTENCE_END.split(text)[:limit])


def _extract_steps(content: str) -> list[AnswerStep]:
    steps: list[AnswerStep] = []
    for line in _strip_overlap(content).splitlines():
        match = _STEP_LINE.match(line)
        if match:
            steps.append(AnswerStep(order=len(steps) + 1, instruction=match.group("text").strip()))
    return steps
