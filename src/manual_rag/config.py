"""Configuration models for the manual RAG core."""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator


class ChunkingConfig(BaseModel):
    """Configures block packing, overlap, and undersized-chunk merging."""

    min_tokens: int = Field(default=200, ge=1)
    max_tokens: int = Field(default=500, ge=10)
    target_tokens: int = Field(default=350, ge=1)
    overlap_tokens: int = Field(default=75, ge=0)
    chars_per_token: int = Field(default=4, ge=1)
    merge_ceiling_factor: float = Field(default=1.5, ge=1.0)
    min_chunk_chars: int = Field(default=20, ge=0)
    min_overlap_chars: int = Field(default=20, ge=0)

    @model_validator(mode="after")
    def _check_budgets(self) -> "ChunkingConfig":
        if self.min_tokens >= self.max_tokens:
            raise ValueError("min_tokens must be less than max_tokens")
        if self.target_tokens > self.max_tokens:
            raise ValueError("target_tokens must not exceed max_tokens")
        if self.overlap_tokens >= self.max_tokens:
            raise ValueError("overlap_tokens must be less than max_tokens")
        return self


class RetrievalConfig(BaseModel):
    """Configures keyword scoring bonuses and signal fusion weights."""

    final_k: int = Field(default=5, ge=1)
    coverage_weight: float = Field(default=0.5, ge=0.0)
    phrase_bonus: float = Field(default=1.5, ge=0.0)
    heading_term_bonus: float = Field(default=0.2, ge=0.0)
    warning_affinity: float = Field(default=0.5, ge=0.0)
    troubleshooting_affinity: float = Field(default=0.5, ge=0.0)
    procedure_affinity: float = Field(default=0.3, ge=0.0)
    specs_affinity: float = Field(default=0.3, ge=0.0)
    signal_weights: dict[str, float] = Field(
        default_factory=lambda: {"keyword": 1.0, "affinity": 1.0, "vector": 0.0}
    )


class SafetyConfig(BaseModel):
    """Configures retrieval/response confidence floors for the safety gate."""

    low_confidence_floor: float = Field(default=0.3, ge=0.0)
    middling_floor: float = Field(default=0.5, ge=0.0)
    specific_query_min_words: int = Field(default=10, ge=0)
    response_hard_floor: float = Field(default=0.4, ge=0.0, le=1.0)
    response_soft_floor: float = Field(default=0.6, ge=0.0, le=1.0)
    child_proximity_chars: int = Field(default=60, ge=0)

    @model_validator(mode="after")
    def _check_floors(self) -> "SafetyConfig":
        if self.response_hard_floor > self.response_soft_floor:
            raise ValueError("response_hard_floor must not exceed response_soft_floor")
        return self
