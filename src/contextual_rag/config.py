"""Configuration models for chunking, context generation and retrieval."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from contextual_rag.prompts import (
    DEFAULT_ANSWER_PROMPT,
    DEFAULT_CONTEXT_PROMPT,
    DEFAULT_GLOBAL_SUMMARY_PROMPT,
    DEFAULT_QUERY_GENERATION_PROMPT,
)

DEFAULT_SENTENCE_PATTERN = r"(?<=[.?!])\s+"

BreakpointThresholdType = Literal[
    "percentile", "standard_deviation", "interquartile", "gradient"
]
StrategyType = Literal["simple_query", "multi_query", "multi_step_query", "none"]


class SplitterConfig(BaseModel):
    """Configures sentence splitting, breakpoint selection and size limits."""

    sentence_split_regex: str = DEFAULT_SENTENCE_PATTERN
    buffer_size: int = Field(default=1, ge=0)
    breakpoint_threshold_type: BreakpointThresholdType = "percentile"
    breakpoint_threshold_amount: float | None = None
    number_of_chunks: int | None = Field(default=None, ge=0)
    second_pass_threshold: float = Field(default=0.8, ge=-1.0, le=1.0)
    min_chunk_size: int | None = Field(default=None, ge=1)
    max_chunk_size: int | None = Field(default=None, ge=1)
    max_text_length: int = Field(default=10_000_000, ge=1)

    @field_validator("number_of_chunks")
    @classmethod
    def _zero_means_unset(cls, value: int | None) -> int | None:
        return value or None

    @model_validator(mode="after")
    def _check_sizes(self) -> "SplitterConfig":
        if (
            self.min_chunk_size is not None
            and self.max_chunk_size is not None
            and self.min_chunk_size > self.max_chunk_size
        ):
            raise ValueError("min_chunk_size must not exceed max_chunk_size")
        return self


class ContextConfig(BaseModel):
    """Configures LLM-generated situating context for chunks."""

    enabled: bool = True
    context_prompt: str = DEFAULT_CONTEXT_PROMPT
    include_labels: bool = False
    use_global_summary: bool = False
    global_summary_prompt: str = DEFAULT_GLOBAL_SUMMARY_PROMPT
    global_summary_min_length: int = Field(default=1000, ge=0)
    use_neighborhood_window: bool = False
    sentences_before: int = Field(default=2, ge=0)
    sentences_after: int = Field(default=2, ge=0)
    min_document_length: int = Field(default=100, ge=0)
    max_prompt_chars: int = Field(default=100_000, ge=1)
    summary_cache_size: int = Field(default=5, ge=1)
    max_attempts: int = Field(default=1, ge=1, le=10)
    retry_wait_seconds: float = Field(default=1.0, ge=0.0)
    batch_size: int = Field(default=1, ge=1)


class StrategyConfig(BaseModel):
    """Per-invocation retrieval settings; read-only once built."""

    model_config = ConfigDict(frozen=True)

    documents_to_retrieve: int = Field(default=10, ge=1)
    documents_to_return: int = Field(default=4, ge=1)
    return_ranked_documents: bool = False
    prompt_template: str = DEFAULT_ANSWER_PROMPT
    query_generation_prompt: str = DEFAULT_QUERY_GENERATION_PROMPT
    query_variations: int = Field(default=3, ge=1, le=10)
    include_original_query: bool = True
    final_rerank: bool = True
    max_steps: int = Field(default=3, ge=1, le=10)
    enable_early_stop: bool = True


class DebugConfig(BaseModel):
    """Configures per-execution debug traces."""

    enabled: bool = False
    llm_analysis: bool = False


class ToolConfig(BaseModel):
    """Configures the query retriever tool exposed to agents."""

    name: str = "query_retriever"
    description: str = "Retrieve relevant documents from the knowledge base to answer a question."
    strategy_type: StrategyType = "simple_query"
