"""Per-execution debug traces and their best-effort persistence."""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from contextual_rag.llm import LanguageModel, ainvoke_text
from contextual_rag.prompts import DEBUG_ANALYSIS_TEMPLATE

logger = logging.getLogger(__name__)


class Memory(Protocol):
    """Anything with LangChain-memory style `asave_context`."""

    async def asave_context(self, inputs: dict[str, Any], outputs: dict[str, str]) -> None: ...


@dataclass(slots=True)
class DebugTrace:
    strategy: str
    configuration: dict[str, Any]
    timing_ms: dict[str, float] = field(default_factory=dict)
    document_flow: dict[str, int] = field(default_factory=dict)
    query_details: dict[str, Any] = field(default_factory=dict)
    reranking: dict[str, Any] | None = None
    answer_generation: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class DebugManager:
    """Accumulates one strategy execution's trace; closed for writes by `finalize`."""

    def __init__(self, strategy: str, configuration: dict[str, Any] | None = None) -> None:
        self._start = time.perf_counter()
        self._closed = False
        self.trace = DebugTrace(strategy=strategy, configuration=dict(configuration or {}))

    @property
    def closed(self) -> bool:
        return self._closed

    def set_query_details(self, **details: Any) -> None:
        if self._writable("query_details"):
            self.trace.query_details.update(details)

    def set_document_flow(self, **flow: int) -> None:
        if self._writable("document_flow"):
            self.trace.document_flow.update(flow)

    def add_timing(self, phase: str, elapsed_ms: float) -> None:
        if self._writable("timing"):
            self.trace.timing_ms[phase] = round(elapsed_ms, 3)

    @contextmanager
    def time(self, phase: str) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            self.add_timing(phase, (time.perf_counter() - start) * 1000.0)

    def set_reranking(self, data: dict[str, Any]) -> None:
        if self._writable("reranking"):
            self.trace.reranking = data

    def set_answer_generation(self, data: dict[str, Any]) -> None:
        if self._writable("answer_generation"):
            self.trace.answer_generation = data

    def finalize(self) -> DebugTrace:
        if not self._closed:
            self.trace.timing_ms["total"] = round((time.perf_counter() - self._start) * 1000.0, 3)
            self._closed = True
        return self.trace

    def _writable(self, section: str) -> bool:
        if self._closed:
            logger.warning("Ignoring %s write to finalized debug trace", section)
            return False
        return True


async def store_in_memory(
    trace: DebugTrace,
    query: str,
    memory: Memory | None,
    *,
    model: LanguageModel | None = None,
    llm_analysis: bool = False,
) -> dict[str, Any] | None:
    """Persist a finalized trace, optionally with an LLM-written analysis.

    Never raises. Returns the stored entry, or None when nothing was stored.
    """

    if memory is None:
        return None
    try:
        data = trace.to_dict()
        analysis: str | None = None
        if llm_analysis and model is not None:
            prompt = DEBUG_ANALYSIS_TEMPLATE.format(
                strategy=trace.strategy,
                debug_data=json.dumps(data, indent=2, default=str),
            )
            analysis = await ainvoke_text(model, prompt)

        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "query": query,
            "strategy": trace.strategy,
            "debug_data": data,
            "summary": {
                "total_time_ms": trace.timing_ms.get("total"),
                "documents_retrieved": trace.document_flow.get("total_retrieved"),
                "final_documents": trace.document_flow.get("final_count"),
                "strategy": trace.strategy,
            },
        }
        if analysis:
            entry["analysis"] = analysis

        await memory.asave_context(
            {"input": f"Debug data for query: {query}"},
            {"output": json.dumps(entry, indent=2, default=str)},
        )
        return entry
    except Exception:
        logger.debug("Debug persistence failed", exc_info=True)
        return None


@dataclass(slots=True)
class MemoryRecord:
    record_id: str
    timestamp_utc: str
    inputs: dict[str, Any]
    outputs: dict[str, str]


class DebugMemory:
    """In-memory store for persisted debug traces, exposed by the API."""

    def __init__(self, max_records: int = 200) -> None:
        self._records: dict[str, MemoryRecord] = {}
        self._max_records = max_records

    def save_context(self, inputs: dict[str, Any], outputs: dict[str, str]) -> None:
        record = MemoryRecord(
            record_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            inputs=dict(inputs),
            outputs=dict(outputs),
        )
        self._records[record.record_id] = record
        while len(self._records) > self._max_records:
            del self._records[next(iter(self._records))]

    async def asave_context(self, inputs: dict[str, Any], outputs: dict[str, str]) -> None:
        self.save_context(inputs, outputs)

    def get(self, record_id: str) -> MemoryRecord:
        record = self._records.get(record_id)
        if record is None:
            raise KeyError(f"Debug record not found: {record_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[MemoryRecord]:
        return list(self._records.values())[-limit:]
