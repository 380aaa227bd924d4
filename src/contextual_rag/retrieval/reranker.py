"""Embedding-similarity reranking of retrieved candidates."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from langchain_core.documents import Document
from langchain_core.embeddings import Embeddings

from contextual_rag.similarity import cosine_similarity
from contextual_rag.types import RerankResult, ScoredDocument

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 100


@dataclass(frozen=True, slots=True)
class RerankContext:
    """Describes which strategy step a rerank call belongs to (for debug output)."""

    strategy_type: str
    query_index: int | None = None
    is_original: bool = False
    label: str | None = None


class EmbeddingReranker:
    """Reorders candidates by cosine similarity to the query embedding.

    One `aembed_query` call and one batched `aembed_documents` call per
    rerank. The sort is stable, so equal scores keep retrieval order. If
    embedding or scoring fails, the first `top_k` candidates are returned
    in their original order and the failure is reported in debug info.
    """

    def __init__(self, embeddings: Embeddings) -> None:
        self._embeddings = embeddings

    async def rerank(
        self,
        documents: list[Document],
        query: str,
        top_k: int,
        *,
        context: RerankContext | None = None,
        debugging: bool = False,
    ) -> RerankResult:
        if not documents:
            return RerankResult(documents=[], scores=[])
        context = context or RerankContext(strategy_type="unknown")

        try:
            scored = await self._score(documents, query)
        except Exception as exc:
            logger.warning("Reranking failed, keeping retrieval order", exc_info=True)
            fallback = documents[:top_k]
            debug_info = {"context": asdict(context), "error": str(exc)} if debugging else None
            return RerankResult(documents=fallback, scores=[None] * len(fallback), debug_info=debug_info)

        ranked = sorted(scored, key=lambda item: item.score or 0.0, reverse=True)
        selected = ranked[:top_k]
        debug_info = self._debug_info(scored, ranked, top_k, context) if debugging else None
        return RerankResult(
            documents=[item.document for item in selected],
            scores=[item.score for item in selected],
            debug_info=debug_info,
        )

    async def _score(self, documents: list[Document], query: str) -> list[ScoredDocument]:
        query_vector = await self._embeddings.aembed_query(query)
        vectors = await self._embeddings.aembed_documents([doc.page_content for doc in documents])
        if len(vectors) != len(documents):
            raise ValueError(f"Expected {len(documents)} embeddings, got {len(vectors)}")
        return [
            ScoredDocument(document=doc, score=cosine_similarity(query_vector, vector), original_position=i)
            for i, (doc, vector) in enumerate(zip(documents, vectors, strict=True))
        ]

    @staticmethod
    def _debug_info(
        scored: list[ScoredDocument],
        ranked: list[ScoredDocument],
        top_k: int,
        context: RerankContext,
    ) -> dict[str, Any]:
        selected = ranked[:top_k]
        scores = [item.score or 0.0 for item in scored]
        suffix = f" for {context.label}" if context.label else ""
        movements = [abs(i - item.original_position) for i, item in enumerate(selected)]
        return {
            "context": asdict(context),
            "total_documents": len(scored),
            "original_order": [
                {"position": item.original_position, "score": item.score, "preview": _preview(item.document)}
                for item in scored
            ],
            "reranked_order": [
                {
                    "new_position": i,
                    "original_position": item.original_position,
                    "score": item.score,
                    "movement": i - item.original_position,
                    "preview": _preview(item.document),
                }
                for i, item in enumerate(ranked)
            ],
            "final_selection": [
                {
                    "final_position": i,
                    "original_position": item.original_position,
                    "score": item.score,
                    "total_movement": i - item.original_position,
                    "preview": _preview(item.document),
                }
                for i, item in enumerate(selected)
            ],
            "filtered_out": [
                {
                    "original_position": item.original_position,
                    "reranked_position": top_k + i,
                    "score": item.score,
                    "reason": f"Below top-{top_k} threshold{suffix}",
                    "preview": _preview(item.document),
                }
                for i, item in enumerate(ranked[top_k:])
            ],
            "effectiveness": {
                "average_movement": sum(movements) / len(movements) if movements else 0.0,
                "score_range": {
                    "highest": max(scores),
                    "lowest": min(scores),
                    "spread": max(scores) - min(scores),
                },
                "documents_reordered": sum(1 for movement in movements if movement != 0),
                "significant_movement": sum(1 for movement in movements if movement > 1),
            },
        }


def _preview(document: Document) -> str:
    text = document.page_content
    if len(text) <= _PREVIEW_CHARS:
        return text
    return text[:_PREVIEW_CHARS] + "..."
