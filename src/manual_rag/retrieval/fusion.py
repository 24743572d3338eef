"""Fusion of named retrieval signals into one ranking score."""

from __future__ import annotations

from manual_rag.config import RetrievalConfig


class SignalFusion:
    """Weighted sum over named score signals.

    The keyword scorer contributes `keyword` and `affinity`; a vector
    similarity signal (`vector`) can be switched on by giving it a non-zero
    weight without changing the result model.
    """

    def __init__(self, config: RetrievalConfig | None = None) -> None:
        self.config = config or RetrievalConfig()

    @property
    def weights(self) -> dict[str, float]:
        return self.config.signal_weights

    def is_enabled(self, signal: str) -> bool:
        return self.weights.get(signal, 0.0) > 0.0

    def fuse(self, signals: dict[str, float]) -> float:
        return sum(self.weights.get(name, 0.0) * value for name, value in signals.items())
