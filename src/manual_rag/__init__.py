"""Grounded product-manual answering core."""

from .config import ChunkingConfig, RetrievalConfig, SafetyConfig

__all__ = ["ChunkingConfig", "RetrievalConfig", "SafetyConfig"]
