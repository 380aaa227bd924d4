"""LLM-generated situating context for chunks."""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from hashlib import sha1

from langchain_core.documents import Document
from langchain_core.embeddings import Embeddings
from tenacity import AsyncRetrying, stop_after_attempt, wait_incrementing

from contextual_rag.config import ContextConfig, SplitterConfig
from contextual_rag.exceptions import PromptTooLargeError
from contextual_rag.ingest.chunker import SemanticDoublePassSplitter
from contextual_rag.llm import LanguageModel, ainvoke_text
from contextual_rag.prompts import (
    CHUNK_CONTEXT_TEMPLATE,
    GLOBAL_SUMMARY_TEMPLATE,
    SUMMARY_UNAVAILABLE,
)
from contextual_rag.types import Chunk, ContextualChunk

logger = logging.getLogger(__name__)


class SummaryCache:
    """Bounded LRU map from document hash to its global summary."""

    def __init__(self, capacity: int = 5) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._items: OrderedDict[str, str] = OrderedDict()

    def get(self, key: str) -> str | None:
        value = self._items.get(key)
        if value is not None:
            self._items.move_to_end(key)
        return value

    def put(self, key: str, value: str) -> None:
        self._items[key] = value
        self._items.move_to_end(key)
        while len(self._items) > self.capacity:
            self._items.popitem(last=False)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)


def document_key(text: str) -> str:
    return sha1(text.encode("utf-8")).hexdigest()


class ContextAnnotator:
    """Asks a language model to situate each chunk within its document.

    Modes:
    - per-chunk (default): one call per chunk with the whole document, or
      only a window of neighbouring sentences when `use_neighborhood_window`
      is set.
    - global summary: one call per document; the cached summary is the
      context for every chunk of that document.

    Context generation never fails a split. Any error, including an oversized
    prompt, yields the bare chunk text.
    """

    def __init__(
        self,
        model: LanguageModel | None,
        config: ContextConfig | None = None,
        cache: SummaryCache | None = None,
    ) -> None:
        self._model = model
        self.config = config or ContextConfig()
        self.cache = cache or SummaryCache(self.config.summary_cache_size)

    async def annotate(
        self,
        document_text: str,
        chunk: Chunk,
        sentences: list[str] | None = None,
    ) -> ContextualChunk:
        model = self._active_model(document_text)
        if model is None:
            return ContextualChunk(chunk=chunk, text=chunk.text)

        try:
            if self._uses_global_summary(document_text):
                context = await self._global_summary(model, document_text)
            else:
                context = await self._chunk_context(model, document_text, chunk, sentences)
        except Exception:
            logger.warning(
                "Context generation failed for chunk [%d, %d]; emitting bare chunk",
                chunk.start_idx,
                chunk.end_idx,
                exc_info=True,
            )
            return ContextualChunk(chunk=chunk, text=chunk.text)
        return self._attach(chunk, context)

    async def annotate_all(
        self,
        document_text: str,
        chunks: list[Chunk],
        sentences: list[str] | None = None,
    ) -> list[ContextualChunk]:
        """Annotate chunks in batches of `batch_size`, preserving chunk order.

        In global summary mode the summary is generated once up front and
        shared by every chunk, so a batch never issues duplicate calls.
        """

        model = self._active_model(document_text)
        if chunks and model is not None and self._uses_global_summary(document_text):
            try:
                summary = await self._global_summary(model, document_text)
            except Exception:
                logger.warning(
                    "Context generation failed for document summary; emitting bare chunks",
                    exc_info=True,
                )
                return [ContextualChunk(chunk=chunk, text=chunk.text) for chunk in chunks]
            return [self._attach(chunk, summary) for chunk in chunks]

        output: list[ContextualChunk] = []
        size = self.config.batch_size
        for offset in range(0, len(chunks), size):
            batch = chunks[offset : offset + size]
            output.extend(
                await asyncio.gather(
                    *(self.annotate(document_text, chunk, sentences) for chunk in batch)
                )
            )
        return output

    def format(self, context: str, chunk_text: str) -> str:
        if self.config.include_labels:
            return f"Context: {context}\n\nChunk: {chunk_text}"
        return f"{context}\n\n{chunk_text}"

    def build_chunk_prompt(
        self, document_text: str, chunk: Chunk, sentences: list[str] | None = None
    ) -> str:
        document = document_text
        if self.config.use_neighborhood_window and sentences:
            start = max(0, chunk.start_idx - self.config.sentences_before)
            end = min(len(sentences), chunk.end_idx + self.config.sentences_after + 1)
            document = " ".join(sentences[start:end])
        return CHUNK_CONTEXT_TEMPLATE.format(
            document=document,
            chunk=chunk.text,
            instruction=self.config.context_prompt,
        )

    def _active_model(self, document_text: str) -> LanguageModel | None:
        if not self.config.enabled or len(document_text) < self.config.min_document_length:
            return None
        return self._model

    def _attach(self, chunk: Chunk, context: str) -> ContextualChunk:
        context = context.strip()
        if not context:
            return ContextualChunk(chunk=chunk, text=chunk.text)
        return ContextualChunk(chunk=chunk, text=self.format(context, chunk.text), context=context)

    def _uses_global_summary(self, document_text: str) -> bool:
        return (
            self.config.use_global_summary
            and len(document_text) > self.config.global_summary_min_length
        )

    async def _chunk_context(
        self,
        model: LanguageModel,
        document_text: str,
        chunk: Chunk,
        sentences: list[str] | None,
    ) -> str:
        prompt = self.build_chunk_prompt(document_text, chunk, sentences)
        return await self._generate(model, prompt)

    async def _global_summary(self, model: LanguageModel, document_text: str) -> str:
        key = document_key(document_text)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        prompt = GLOBAL_SUMMARY_TEMPLATE.format(
            instruction=self.config.global_summary_prompt,
            document=document_text,
        )
        summary = (await self._generate(model, prompt)).strip()
        if not summary:
            return SUMMARY_UNAVAILABLE
        self.cache.put(key, summary)
        return summary

    async def _generate(self, model: LanguageModel, prompt: str) -> str:
        if len(prompt) > self.config.max_prompt_chars:
            raise PromptTooLargeError(len(prompt), self.config.max_prompt_chars)

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_incrementing(
                start=self.config.retry_wait_seconds,
                increment=self.config.retry_wait_seconds,
            ),
            reraise=True,
        ):
            with attempt:
                text = await ainvoke_text(model, prompt)
        return text


class ContextualSemanticSplitter:
    """Semantic double-pass splitting followed by contextual annotation."""

    def __init__(
        self,
        embeddings: Embeddings,
        model: LanguageModel | None,
        splitter_config: SplitterConfig | None = None,
        context_config: ContextConfig | None = None,
        cache: SummaryCache | None = None,
    ) -> None:
        self.splitter = SemanticDoublePassSplitter(embeddings, splitter_config)
        self.annotator = ContextAnnotator(model, context_config, cache)

    async def split_text(self, text: str) -> list[str]:
        annotated = await self._annotate_text(text)
        return [item.text for item in annotated]

    async def split_documents(self, documents: list[Document]) -> list[Document]:
        output: list[Document] = []
        for document in documents:
            annotated = await self._annotate_text(document.page_content)
            for index, item in enumerate(annotated):
                metadata = {
                    **document.metadata,
                    "chunk_index": index,
                    "start_sentence": item.chunk.start_idx,
                    "end_sentence": item.chunk.end_idx,
                    "has_context": item.has_context,
                }
                if item.context:
                    metadata["context"] = item.context
                    metadata["original_chunk"] = item.chunk.text
                output.append(Document(page_content=item.text, metadata=metadata))
        logger.info("Produced %d contextual chunks from %d documents", len(output), len(documents))
        return output

    async def _annotate_text(self, text: str) -> list[ContextualChunk]:
        chunks, sentences = await self.splitter.split_text_with_chunks(text)
        return await self.annotator.annotate_all(text, chunks, sentences)
