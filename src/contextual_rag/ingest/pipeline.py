"""End-to-end ingest pipeline: load -> split -> contextualize -> add to store."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

from langchain_core.documents import Document

from contextual_rag.ingest.context import ContextualSemanticSplitter
from contextual_rag.ingest.loader import LoaderRegistry, documents_from_items

logger = logging.getLogger(__name__)


class DocumentSink(Protocol):
    async def aadd_documents(self, documents: list[Document], **kwargs: Any) -> list[str]: ...


class IngestPipeline:
    """Coordinates loader/splitter/vector store stages.

    This class isolates ingestion from query-time retrieval so indexing can be
    executed offline, in batch jobs, or during deployment warm-up.
    """

    def __init__(
        self,
        loaders: LoaderRegistry,
        splitter: ContextualSemanticSplitter,
        vector_store: DocumentSink,
    ) -> None:
        self._loaders = loaders
        self._splitter = splitter
        self._vector_store = vector_store

    async def ingest_documents(self, documents: list[Document]) -> list[Document]:
        chunks = await self._splitter.split_documents(documents)
        if chunks:
            await self._vector_store.aadd_documents(chunks)
        logger.info("Ingested %d documents as %d chunks", len(documents), len(chunks))
        return chunks

    async def ingest_path(
        self,
        path: str | Path,
        *,
        extra_metadata: dict[str, Any] | None = None,
    ) -> list[Document]:
        """Ingest a single source file and return the stored chunks."""

        document = self._loaders.load_path(path)
        if extra_metadata:
            document.metadata.update(extra_metadata)
        return await self.ingest_documents([document])

    async def ingest_items(
        self, items: list[Mapping[str, Any]], metadata_json: str | None = None
    ) -> list[Document]:
        return await self.ingest_documents(documents_from_items(items, metadata_json))
