"""Error taxonomy shared by lifecycle and retrieval components."""

from __future__ import annotations


class ManualRagError(Exception):
    """Base class for errors raised by the RAG core."""


class NotFoundError(ManualRagError, LookupError):
    """Unknown SKU, package, or document."""


class PreconditionFailedError(ManualRagError, ValueError):
    """A workflow step was invoked against an object in the wrong state.

    Callers should not retry automatically; the error indicates misuse of the
    package workflow rather than a transient failure.
    """

    def __init__(self, message: str, *, actual_status: str | None = None) -> None:
        super().__init__(message)
        self.actual_status = actual_status
