"""Observed wrappers for embeddings and language models.

Each wrapper implements the same capability as the wrapped object, delegates
every call, and reports a `CallTrace` to an optional observer.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from time import perf_counter
from typing import Any, TypeVar

from langchain_core.embeddings import Embeddings

from contextual_rag.llm import LanguageModel, classify_response, response_text
from contextual_rag.types import CallTrace

logger = logging.getLogger(__name__)

Observer = Callable[[CallTrace], None]
T = TypeVar("T")

_PREVIEW_CHARS = 320


class _Observed:
    def __init__(self, name: str, observer: Observer | None) -> None:
        self.name = name
        self._observer = observer

    def set_observer(self, observer: Observer | None) -> None:
        self._observer = observer

    async def _observe_async(
        self,
        operation: str,
        input_preview: str,
        call: Callable[[], Awaitable[T]],
        describe: Callable[[T], str],
    ) -> T:
        logger.debug("%s.%s started: %s", self.name, operation, input_preview)
        start = perf_counter()
        try:
            result = await call()
        except Exception as exc:
            self._emit(operation, input_preview, "", start, error=str(exc))
            raise
        self._emit(operation, input_preview, describe(result), start)
        return result

    def _observe_sync(
        self,
        operation: str,
        input_preview: str,
        call: Callable[[], T],
        describe: Callable[[T], str],
    ) -> T:
        logger.debug("%s.%s started: %s", self.name, operation, input_preview)
        start = perf_counter()
        try:
            result = call()
        except Exception as exc:
            self._emit(operation, input_preview, "", start, error=str(exc))
            raise
        self._emit(operation, input_preview, describe(result), start)
        return result

    def _emit(
        self,
        operation: str,
        input_preview: str,
        output_preview: str,
        start: float,
        *,
        error: str | None = None,
    ) -> None:
        trace = CallTrace(
            name=f"{self.name}.{operation}",
            input_preview=input_preview[:_PREVIEW_CHARS],
            output_preview=output_preview[:_PREVIEW_CHARS],
            latency_ms=(perf_counter() - start) * 1000.0,
            error=error,
        )
        if error is None:
            logger.debug("%s finished in %.1fms", trace.name, trace.latency_ms)
        else:
            logger.warning("%s failed after %.1fms: %s", trace.name, trace.latency_ms, error)
        if self._observer is not None:
            self._observer(trace)


def _describe_vectors(vectors: list[list[float]]) -> str:
    dimension = len(vectors[0]) if vectors else 0
    return f"{len(vectors)} vectors x {dimension}"


def _describe_vector(vector: list[float]) -> str:
    return f"1 vector x {len(vector)}"


class ObservedEmbeddings(_Observed, Embeddings):
    """`Embeddings` decorator reporting every embedding call."""

    def __init__(self, inner: Embeddings, observer: Observer | None = None, name: str = "embeddings") -> None:
        super().__init__(name, observer)
        self.inner = inner

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return self._observe_sync(
            "embed_documents", f"{len(texts)} texts", lambda: self.inner.embed_documents(texts), _describe_vectors
        )

    def embed_query(self, text: str) -> list[float]:
        return self._observe_sync("embed_query", text, lambda: self.inner.embed_query(text), _describe_vector)

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        return await self._observe_async(
            "embed_documents", f"{len(texts)} texts", lambda: self.inner.aembed_documents(texts), _describe_vectors
        )

    async def aembed_query(self, text: str) -> list[float]:
        return await self._observe_async(
            "embed_query", text, lambda: self.inner.aembed_query(text), _describe_vector
        )


class ObservedLanguageModel(_Observed):
    """Language-model decorator reporting every `ainvoke` call."""

    def __init__(self, inner: LanguageModel, observer: Observer | None = None, name: str = "llm") -> None:
        super().__init__(name, observer)
        self.inner = inner

    async def ainvoke(self, input: Any, **kwargs: Any) -> Any:
        return await self._observe_async(
            "invoke",
            str(input),
            lambda: self.inner.ainvoke(input, **kwargs),
            lambda raw: response_text(classify_response(raw)),
        )
