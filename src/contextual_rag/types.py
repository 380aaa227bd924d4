"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from langchain_core.documents import Document


@dataclass(frozen=True, slots=True)
class Chunk:
    """A run of sentences `[start_idx, end_idx]` (inclusive) and its joined text."""

    text: str
    start_idx: int
    end_idx: int

    def __post_init__(self) -> None:
        if self.start_idx > self.end_idx:
            raise ValueError("start_idx must not exceed end_idx")

    @property
    def length(self) -> int:
        return len(self.text)


@dataclass(frozen=True, slots=True)
class ContextualChunk:
    """A finalized chunk plus its situating context (if one was produced)."""

    chunk: Chunk
    text: str
    context: str | None = None

    @property
    def has_context(self) -> bool:
        return bool(self.context)


@dataclass(slots=True)
class ScoredDocument:
    """A retrieved document with its rerank score and retrieval position."""

    document: Document
    score: float | None
    original_position: int


@dataclass(slots=True)
class RerankResult:
    documents: list[Document]
    scores: list[float | None]
    debug_info: dict[str, Any] | None = None


@dataclass(slots=True)
class StrategyResult:
    """Outcome of one strategy execution. Exactly one of answer/documents/error is primary."""

    answer: str | None = None
    source_documents: list[Document] | None = None
    debug: dict[str, Any] | None = None
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.error is not None:
            payload["error"] = self.error
        if self.answer is not None:
            payload["answer"] = self.answer
        if self.source_documents is not None:
            payload["source_documents"] = [
                {"page_content": doc.page_content, "metadata": dict(doc.metadata)}
                for doc in self.source_documents
            ]
        if self.debug is not None:
            payload["debug"] = self.debug
        return payload


@dataclass(slots=True)
class StepResult:
    """One iteration of the multi-step reasoning loop."""

    step: int
    sub_query: str
    documents: list[Document]
    answer: str
    should_stop: bool = False


@dataclass(slots=True)
class CallTrace:
    """Trace record for one observed collaborator or tool call."""

    name: str
    input_preview: str
    output_preview: str
    latency_ms: float
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
