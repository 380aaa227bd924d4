"""The query retriever tool exposed to agents."""

from __future__ import annotations

import json
import re

from pydantic import BaseModel, Field

from contextual_rag.agent.registry import ToolRegistry, ToolSpec
from contextual_rag.config import ToolConfig
from contextual_rag.retrieval.base import StrategyContext
from contextual_rag.retrieval.registry import StrategyRegistry

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]+")
_DEFAULT_TOOL_NAME = "query_retriever"


class QueryToolInput(BaseModel):
    query: str = Field(min_length=1)


def sanitize_tool_name(raw: str) -> str:
    """Reduce a display name to the `[a-zA-Z0-9_-]` alphabet tool APIs accept."""

    name = _INVALID_NAME_CHARS.sub("_", raw.strip()).strip("_")
    return name or _DEFAULT_TOOL_NAME


def describe_tool(tool_config: ToolConfig, context: StrategyContext) -> str:
    """Append what the configured strategy does to the user-facing description."""

    config = context.config
    strategy = tool_config.strategy_type
    base = tool_config.description.rstrip(". ")
    if strategy == "multi_query":
        action = (
            f"Generates {config.query_variations} query variations, retrieves documents "
            "for each, combines and reranks results"
        )
    elif strategy == "multi_step_query":
        action = (
            f"Breaks the question into up to {config.max_steps} sub-questions, retrieving "
            "and reranking documents for each step"
        )
    else:
        action = "Retrieves and reranks documents"

    if strategy == "none":
        action += f", then returns top {config.documents_to_return} ranked documents without generating an answer"
    else:
        action += f", then uses top {config.documents_to_return} documents to generate answers"
    if config.return_ranked_documents:
        action += " with ranked document citations"
    return f"{base}. {action}."


def register_query_retriever_tool(
    registry: ToolRegistry,
    context: StrategyContext,
    tool_config: ToolConfig | None = None,
    strategies: StrategyRegistry | None = None,
) -> ToolSpec:
    """Register the retriever tool and return its spec.

    Output is the bare answer, a JSON document when documents or debug data
    are part of the result, or the error message.
    """

    tool_config = tool_config or ToolConfig()
    strategy = (strategies or StrategyRegistry()).get_strategy(tool_config.strategy_type)

    async def _query(input_data: QueryToolInput) -> str:
        result = await strategy.execute(input_data.query, context)
        if result.error is not None:
            return result.error
        if result.source_documents is None and result.debug is None:
            return result.answer or ""
        return json.dumps(result.to_payload(), indent=2, ensure_ascii=False, default=str)

    spec = ToolSpec(
        name=sanitize_tool_name(tool_config.name),
        description=describe_tool(tool_config, context),
        args_schema=QueryToolInput,
        handler=_query,
        tags=["retrieval", tool_config.strategy_type],
    )
    registry.register(spec)
    return spec
