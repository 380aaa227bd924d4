"""FastAPI entrypoint for ingest/split/query/trace endpoints."""

from __future__ import annotations

import logging
import os
from collections import deque
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException
from langchain_core.embeddings import Embeddings
from pydantic import BaseModel, Field

from contextual_rag.agent.registry import ToolRegistry
from contextual_rag.agent.tools import register_query_retriever_tool
from contextual_rag.config import ContextConfig, DebugConfig, SplitterConfig, StrategyConfig, ToolConfig
from contextual_rag.exceptions import InputTooLargeError, InvalidMetadataError, UnknownStrategyError
from contextual_rag.ingest.chunker import SemanticDoublePassSplitter
from contextual_rag.ingest.context import ContextualSemanticSplitter, SummaryCache
from contextual_rag.ingest.embedder import HashingEmbedder
from contextual_rag.ingest.loader import LoaderRegistry
from contextual_rag.ingest.pipeline import IngestPipeline
from contextual_rag.llm import LanguageModel
from contextual_rag.obs.debugging import DebugMemory
from contextual_rag.obs.wrappers import ObservedEmbeddings, ObservedLanguageModel
from contextual_rag.retrieval.base import StrategyContext
from contextual_rag.retrieval.registry import StrategyRegistry
from contextual_rag.retrieval.vector_store import InMemoryVectorStore
from contextual_rag.types import CallTrace

logger = logging.getLogger(__name__)


def _create_llm() -> Any:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return None

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"), temperature=0)


def _create_embeddings() -> Embeddings:
    if not os.getenv("OPENAI_API_KEY"):
        return HashingEmbedder()

    from langchain_openai import OpenAIEmbeddings

    return OpenAIEmbeddings(model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"))


class IngestRequest(BaseModel):
    path: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class IngestItemsRequest(BaseModel):
    items: list[dict[str, Any]] = Field(min_length=1)
    metadata_json: str | None = None


class SplitRequest(BaseModel):
    text: str
    splitter: SplitterConfig = Field(default_factory=SplitterConfig)


class QueryRequest(BaseModel):
    query: str = Field(min_length=1)
    strategy_type: str = "simple_query"
    documents_to_retrieve: int = Field(default=10, ge=1, le=100)
    documents_to_return: int = Field(default=4, ge=1, le=50)
    return_ranked_documents: bool = False
    debug: DebugConfig = Field(default_factory=DebugConfig)


class ToolRequest(BaseModel):
    query: str = Field(min_length=1)


app = FastAPI(title="Contextual RAG", version="0.1.0")

_calls: deque[CallTrace] = deque(maxlen=500)
_raw_llm = _create_llm()
_llm: LanguageModel | None = (
    ObservedLanguageModel(_raw_llm, _calls.append) if _raw_llm is not None else None
)
_embeddings = ObservedEmbeddings(_create_embeddings(), _calls.append)
_vector_store = InMemoryVectorStore(_embeddings)
_debug_memory = DebugMemory()
_strategies = StrategyRegistry()

_splitter_config = SplitterConfig(min_chunk_size=200, max_chunk_size=1500)
_contextual_splitter = ContextualSemanticSplitter(
    _embeddings,
    _llm,
    _splitter_config,
    ContextConfig(enabled=_llm is not None, use_global_summary=True),
    SummaryCache(capacity=5),
)
_ingest_pipeline = IngestPipeline(LoaderRegistry(), _contextual_splitter, _vector_store)

_tool_context = StrategyContext(
    vector_store=_vector_store,
    embeddings=_embeddings,
    model=_llm,
    config=StrategyConfig(return_ranked_documents=True),
    memory=_debug_memory,
)
_tools = ToolRegistry()
_tools.set_observer(_calls.append)
register_query_retriever_tool(
    _tools,
    _tool_context,
    ToolConfig(
        name="Knowledge Base Search",
        strategy_type="simple_query" if _llm is not None else "none",
    ),
    _strategies,
)


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "llm_configured": _llm is not None,
        "embeddings": type(_embeddings.inner).__name__,
        "document_count": len(_vector_store),
        "strategies": _strategies.available_strategies(),
    }


@app.post("/ingest")
async def ingest(request: IngestRequest) -> dict[str, Any]:
    try:
        chunks = await _ingest_pipeline.ingest_path(request.path, extra_metadata=request.metadata)
    except (OSError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "chunks_created": len(chunks),
        "contextualized": sum(1 for chunk in chunks if chunk.metadata.get("has_context")),
    }


@app.post("/ingest/items")
async def ingest_items(request: IngestItemsRequest) -> dict[str, Any]:
    try:
        chunks = await _ingest_pipeline.ingest_items(request.items, request.metadata_json)
    except InvalidMetadataError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"chunks_created": len(chunks)}


@app.post("/split")
async def split(request: SplitRequest) -> dict[str, Any]:
    splitter = SemanticDoublePassSplitter(_embeddings, request.splitter)
    try:
        chunks, sentences = await splitter.split_text_with_chunks(request.text)
    except InputTooLargeError as exc:
        raise HTTPException(status_code=413, detail=str(exc)) from exc
    return {
        "sentence_count": len(sentences),
        "chunks": [
            {"text": chunk.text, "start_sentence": chunk.start_idx, "end_sentence": chunk.end_idx}
            for chunk in chunks
        ],
    }


@app.post("/query")
async def query(request: QueryRequest) -> dict[str, Any]:
    strategy_type = request.strategy_type if _llm is not None else "none"
    try:
        strategy = _strategies.get_strategy(strategy_type)
    except UnknownStrategyError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    context = StrategyContext(
        vector_store=_vector_store,
        embeddings=_embeddings,
        model=_llm,
        config=StrategyConfig(
            documents_to_retrieve=request.documents_to_retrieve,
            documents_to_return=request.documents_to_return,
            return_ranked_documents=request.return_ranked_documents,
        ),
        memory=_debug_memory,
        debugging=request.debug.enabled,
        llm_analysis=request.debug.llm_analysis,
    )
    result = await strategy.execute(request.query, context)
    if result.error is not None:
        raise HTTPException(status_code=502, detail=result.error)
    return {"strategy": strategy.name, **result.to_payload()}


@app.get("/tools")
def tools() -> dict[str, Any]:
    return {
        "items": [
            {"name": spec.name, "description": spec.description, "tags": spec.tags}
            for spec in _tools.specs()
        ]
    }


@app.post("/tools/{name}")
async def run_tool(name: str, request: ToolRequest) -> dict[str, Any]:
    try:
        output = await _tools.execute(name, request.model_dump())
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"output": output}


@app.get("/traces")
def traces(limit: int = 20) -> dict[str, Any]:
    return {"items": [asdict(record) for record in _debug_memory.list_recent(limit=limit)]}


@app.get("/traces/{record_id}")
def trace_detail(record_id: str) -> dict[str, Any]:
    try:
        record = _debug_memory.get(record_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(record)


@app.get("/calls")
def calls(limit: int = 50) -> dict[str, Any]:
    return {"items": [asdict(trace) for trace in list(_calls)[-limit:]]}
