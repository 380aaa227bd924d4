"""Vector store contract and an in-memory implementation."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Protocol

from langchain_core.documents import Document
from langchain_core.embeddings import Embeddings

from contextual_rag.similarity import cosine_similarity


class VectorStore(Protocol):
    """Minimal retrieval contract; any LangChain `VectorStore` satisfies it."""

    async def asimilarity_search(self, query: str, k: int = 4, **kwargs: Any) -> list[Document]:
        """Return up to `k` documents most similar to `query`."""


@dataclass(slots=True)
class _StoredVector:
    document: Document
    embedding: list[float]


class InMemoryVectorStore:
    """Deterministic vector store used for tests and local prototyping."""

    def __init__(self, embeddings: Embeddings) -> None:
        self._embeddings = embeddings
        self._store: dict[str, _StoredVector] = {}

    async def aadd_documents(self, documents: list[Document], **kwargs: Any) -> list[str]:
        vectors = await self._embeddings.aembed_documents([doc.page_content for doc in documents])
        ids: list[str] = []
        for document, vector in zip(documents, vectors, strict=True):
            doc_id = document.id or str(uuid.uuid4())
            self._store[doc_id] = _StoredVector(
                document=Document(id=doc_id, page_content=document.page_content, metadata=dict(document.metadata)),
                embedding=vector,
            )
            ids.append(doc_id)
        return ids

    async def asimilarity_search(self, query: str, k: int = 4, **kwargs: Any) -> list[Document]:
        if not self._store:
            return []
        query_vector = await self._embeddings.aembed_query(query)
        ranked = sorted(
            self._store.values(),
            key=lambda record: cosine_similarity(query_vector, record.embedding),
            reverse=True,
        )
        return [record.document for record in ranked[:k]]

    def __len__(self) -> int:
        return len(self._store)
