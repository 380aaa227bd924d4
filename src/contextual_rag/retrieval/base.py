"""Strategy contract and helpers shared by every retrieval strategy."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar

from langchain_core.documents import Document
from langchain_core.embeddings import Embeddings

from contextual_rag.config import StrategyConfig
from contextual_rag.llm import LanguageModel, ainvoke_text
from contextual_rag.obs.debugging import DebugManager, Memory, store_in_memory
from contextual_rag.prompts import NO_DOCUMENTS_ANSWER, render_documents
from contextual_rag.retrieval.reranker import EmbeddingReranker, RerankContext
from contextual_rag.retrieval.vector_store import VectorStore
from contextual_rag.types import RerankResult, StrategyResult

logger = logging.getLogger(__name__)

SEARCH_ERROR_TEMPLATE = (
    "Error searching for documents: {message}. This might be due to vector store schema "
    "mismatch. Please check that the vector store is properly configured and the data "
    "types match the expected schema."
)


@dataclass(slots=True)
class StrategyContext:
    """Collaborators and settings for one tool invocation."""

    vector_store: VectorStore
    embeddings: Embeddings
    model: LanguageModel | None = None
    config: StrategyConfig = field(default_factory=StrategyConfig)
    memory: Memory | None = None
    debugging: bool = False
    llm_analysis: bool = False
    reranker: EmbeddingReranker = field(init=False)

    def __post_init__(self) -> None:
        self.reranker = EmbeddingReranker(self.embeddings)


class QueryStrategy(ABC):
    """A named retrieval strategy; `execute` never raises."""

    name: ClassVar[str]
    description: ClassVar[str]

    @abstractmethod
    async def execute(self, query: str, context: StrategyContext) -> StrategyResult:
        """Run the strategy for one query."""


class BaseStrategy(QueryStrategy):
    """Template for strategies: subclasses implement `_run`.

    Each `execute` call owns a fresh `DebugManager`, so strategy instances
    hold no per-call state and can be reused.
    """

    async def execute(self, query: str, context: StrategyContext) -> StrategyResult:
        debug = DebugManager(self.name, context.config.model_dump())
        try:
            return await self._run(query, context, debug)
        except Exception as exc:
            logger.warning("Strategy %s failed", self.name, exc_info=True)
            return StrategyResult(error=str(exc))

    @abstractmethod
    async def _run(self, query: str, context: StrategyContext, debug: DebugManager) -> StrategyResult:
        """Strategy body; exceptions become an error result."""

    async def retrieve(self, query: str, context: StrategyContext) -> list[Document]:
        return await context.vector_store.asimilarity_search(query, k=context.config.documents_to_retrieve)

    async def retrieve_and_rerank(
        self,
        query: str,
        context: StrategyContext,
        rerank_context: RerankContext,
    ) -> tuple[list[Document], RerankResult]:
        """Retrieve candidates for `query` and rerank them to `documents_to_return`."""

        candidates = await self.retrieve(query, context)
        result = await context.reranker.rerank(
            candidates,
            query,
            min(context.config.documents_to_return, len(candidates)),
            context=rerank_context,
            debugging=context.debugging,
        )
        return candidates, result

    async def search_with_fallback(
        self,
        query: str,
        context: StrategyContext,
        debug: DebugManager,
        rerank_context: RerankContext,
    ) -> list[Document] | StrategyResult:
        """Retrieve and rerank; on failure retry once without reranking.

        Returns the documents, or an error result when the retry fails too.
        """

        try:
            with debug.time("document_retrieval"):
                candidates, reranked = await self.retrieve_and_rerank(query, context, rerank_context)
        except Exception as exc:
            logger.warning("Search failed, retrying without reranking", exc_info=True)
            debug.set_query_details(search_error=str(exc))
            try:
                candidates = await self.retrieve(query, context)
            except Exception:
                logger.warning("Fallback search failed", exc_info=True)
                return StrategyResult(error=SEARCH_ERROR_TEMPLATE.format(message=exc))
            documents = candidates[: context.config.documents_to_return]
            debug.set_document_flow(total_retrieved=len(candidates), final_count=len(documents))
            return documents

        debug.set_document_flow(total_retrieved=len(candidates), final_count=len(reranked.documents))
        if reranked.debug_info is not None:
            debug.set_reranking({rerank_context.strategy_type: reranked.debug_info})
        return reranked.documents

    async def generate_answer(
        self,
        documents: list[Document],
        query: str,
        context: StrategyContext,
        debug: DebugManager,
    ) -> str:
        if not documents:
            return NO_DOCUMENTS_ANSWER
        if context.model is None:
            raise ValueError(f"Strategy {self.name} requires a language model")

        document_context = render_documents([doc.page_content for doc in documents])
        template = context.config.prompt_template.strip()
        prompt = template.replace("{context}", document_context, 1).replace("{question}", query, 1)
        debug.set_answer_generation(
            {"context_length": len(document_context), "prompt_length": len(prompt)}
        )
        with debug.time("answer_generation"):
            return await ainvoke_text(context.model, prompt)

    async def finish(
        self,
        query: str,
        answer: str | None,
        documents: list[Document],
        context: StrategyContext,
        debug: DebugManager,
    ) -> StrategyResult:
        """Close the debug trace, persist it, and shape the result."""

        trace = debug.finalize()
        debug_data: dict[str, Any] | None = None
        if context.debugging:
            debug_data = trace.to_dict()
            await store_in_memory(
                trace,
                query,
                context.memory,
                model=context.model,
                llm_analysis=context.llm_analysis,
            )
        return self.format_result(answer, documents, context, debug_data)

    @staticmethod
    def format_result(
        answer: str | None,
        documents: list[Document],
        context: StrategyContext,
        debug_data: dict[str, Any] | None = None,
    ) -> StrategyResult:
        if not answer:
            return StrategyResult(source_documents=list(documents), debug=debug_data)
        if context.config.return_ranked_documents:
            return StrategyResult(answer=answer, source_documents=list(documents), debug=debug_data)
        return StrategyResult(answer=answer, debug=debug_data)


def dedupe_documents(documents: list[Document]) -> list[Document]:
    """Drop documents whose trimmed content was already seen; first one wins."""

    seen: set[str] = set()
    unique: list[Document] = []
    for document in documents:
        key = document.page_content.strip()
        if key not in seen:
            seen.add(key)
            unique.append(document)
    return unique
