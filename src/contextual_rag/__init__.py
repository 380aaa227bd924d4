"""Semantic chunking with contextual enrichment, and reranking retrieval strategies."""

from .config import ContextConfig, SplitterConfig, StrategyConfig

__all__ = ["ContextConfig", "SplitterConfig", "StrategyConfig"]
