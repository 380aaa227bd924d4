import re

import pytest
from langchain_core.documents import Document

from contextual_rag.config import StrategyConfig
from contextual_rag.ingest.embedder import HashingEmbedder
from contextual_rag.obs.debugging import DebugMemory
from contextual_rag.prompts import NO_DOCUMENTS_ANSWER
from contextual_rag.retrieval.base import StrategyContext, dedupe_documents
from contextual_rag.retrieval.strategies import (
    MultiQueryStrategy,
    MultiStepQueryStrategy,
    NoneStrategy,
    SimpleQueryStrategy,
    parse_query_variations,
)


class ScriptedStore:
    """Returns canned documents per query and can fail a number of times first."""

    def __init__(
        self,
        routes: dict[str, list[str]] | None = None,
        default: list[str] | None = None,
        failures: int = 0,
    ) -> None:
        self.routes = routes or {}
        self.default = default or []
        self.failures = failures
        self.queries: list[str] = []

    async def asimilarity_search(self, query: str, k: int = 4, **kwargs) -> list[Document]:
        self.queries.append(query)
        if self.failures:
            self.failures -= 1
            raise ConnectionError("store offline")
        texts = self.routes.get(query, self.default)
        return [Document(page_content=text) for text in texts[:k]]


class RoutingModel:
    """Answers by the first marker found in the prompt."""

    def __init__(self, *rules) -> None:
        self.rules = rules
        self.prompts: list[str] = []

    async def ainvoke(self, prompt, **kwargs):
        self.prompts.append(prompt)
        for marker, reply in self.rules:
            if marker in prompt:
                if isinstance(reply, Exception):
                    raise reply
                return reply(prompt) if callable(reply) else reply
        raise AssertionError(f"unexpected prompt: {prompt[:80]}")


_ANSWER = "Use the following pieces of context"
_VARIANTS = "alternative versions of this question"
_SUB_QUESTION = "Generate the next specific sub-question"
_STEP_ANSWER = "Answer the following sub-question"
_STOP_CHECK = "Respond with only"
_SYNTHESIS = "Final Answer:"


def _context(store, model=None, **config) -> StrategyContext:
    return StrategyContext(
        vector_store=store,
        embeddings=HashingEmbedder(),
        model=model,
        config=StrategyConfig(**config),
    )


def _debug_context(store, model=None, memory=None, **config) -> StrategyContext:
    return StrategyContext(
        vector_store=store,
        embeddings=HashingEmbedder(),
        model=model,
        config=StrategyConfig(**config),
        memory=memory,
        debugging=True,
    )


_SOLAR = ["Solar panels turn light into power.", "Batteries store solar power.", "Gardens need water."]


@pytest.mark.asyncio
async def test_simple_query_answers_from_reranked_documents() -> None:
    model = RoutingModel((_ANSWER, "Panels and batteries."))
    store = ScriptedStore(default=_SOLAR)

    result = await SimpleQueryStrategy().execute("How is solar power stored?", _context(store, model, documents_to_return=2))

    assert result.answer == "Panels and batteries."
    assert result.source_documents is None
    assert result.error is None
    prompt = model.prompts[0]
    assert "Document 1:" in prompt and "Document 3:" not in prompt
    assert "Question: How is solar power stored?" in prompt


@pytest.mark.asyncio
async def test_simple_query_can_return_ranked_documents() -> None:
    model = RoutingModel((_ANSWER, "ok"))
    context = _context(ScriptedStore(default=_SOLAR), model, documents_to_return=2, return_ranked_documents=True)

    result = await SimpleQueryStrategy().execute("solar power", context)

    assert result.answer == "ok"
    assert len(result.source_documents) == 2


@pytest.mark.asyncio
async def test_simple_query_with_empty_store() -> None:
    result = await SimpleQueryStrategy().execute("anything", _context(ScriptedStore(), RoutingModel()))

    assert result.answer == NO_DOCUMENTS_ANSWER


@pytest.mark.asyncio
async def test_none_strategy_returns_documents_only() -> None:
    store = ScriptedStore(default=_SOLAR)

    result = await NoneStrategy().execute("solar", _context(store, documents_to_retrieve=3, documents_to_return=2))

    assert result.answer is None
    assert len(result.source_documents) == 2
    assert store.queries == ["solar"]


@pytest.mark.asyncio
async def test_search_failure_retries_without_reranking() -> None:
    store = ScriptedStore(default=_SOLAR, failures=1)

    result = await NoneStrategy().execute("solar", _context(store, documents_to_return=2))

    assert [doc.page_content for doc in result.source_documents] == _SOLAR[:2]
    assert store.queries == ["solar", "solar"]


@pytest.mark.asyncio
async def test_search_failure_twice_is_an_error_result() -> None:
    result = await NoneStrategy().execute("solar", _context(ScriptedStore(failures=2)))

    assert result.error.startswith("Error searching for documents: store offline.")
    assert result.source_documents is None


@pytest.mark.asyncio
async def test_missing_model_becomes_error_result() -> None:
    result = await SimpleQueryStrategy().execute("solar", _context(ScriptedStore(default=_SOLAR)))

    assert result.error == "Strategy simple_query requires a language model"


@pytest.mark.asyncio
async def test_model_free_context_is_rejected_by_llm_strategies() -> None:
    context = _context(ScriptedStore(default=_SOLAR))

    with pytest.raises(ValueError, match="multi_query requires a language model"):
        await MultiQueryStrategy().generate_variations("solar", context)
    result = await MultiStepQueryStrategy().execute("solar", context)

    assert result.error == "multi_step_query requires a language model"


def test_parse_query_variations_drops_noise() -> None:
    text = (
        "IMPORTANT: these are the questions you asked for\n"
        "1. **What is solar power?**\n"
        "short\n"
        "Example format: What is this about?\n"
        "How do gardens grow tall?\n"
        "Which batteries last longest?"
    )

    assert parse_query_variations(text, 2) == ["What is solar power?", "How do gardens grow tall?"]


def test_dedupe_keeps_first_occurrence() -> None:
    docs = [
        Document(page_content="a", metadata={"n": 1}),
        Document(page_content=" a "),
        Document(page_content="b"),
    ]

    assert dedupe_documents(docs) == [docs[0], docs[2]]


@pytest.mark.asyncio
async def test_multi_query_pools_dedupes_and_reranks() -> None:
    model = RoutingModel(
        (_VARIANTS, "What stores solar energy overnight?\nHow do home batteries work?"),
        (_ANSWER, "combined answer"),
    )
    store = ScriptedStore(
        routes={
            "How is solar energy stored?": ["Solar panels turn light into power.", "Batteries store solar power."],
            "What stores solar energy overnight?": ["Batteries store solar power.", "Inverters convert current."],
            "How do home batteries work?": ["Home batteries hold a charge."],
        }
    )
    context = _debug_context(store, model, documents_to_return=2, query_variations=2, return_ranked_documents=True)

    result = await MultiQueryStrategy().execute("How is solar energy stored?", context)

    assert result.answer == "combined answer"
    assert sorted(store.queries) == sorted(store.routes)
    contents = [doc.page_content for doc in result.source_documents]
    assert len(contents) == 2 and len(set(contents)) == 2
    flow = result.debug["document_flow"]
    assert flow["total_retrieved"] == 5
    assert flow["after_deduplication"] == 4
    assert flow["final_count"] == 2
    assert "final_rerank" in result.debug["reranking"]


@pytest.mark.asyncio
async def test_multi_query_without_final_rerank_truncates() -> None:
    model = RoutingModel((_VARIANTS, "How do home batteries work?"), (_ANSWER, "answer"))
    store = ScriptedStore(default=_SOLAR)
    context = _debug_context(
        store, model, documents_to_return=2, query_variations=1, final_rerank=False, return_ranked_documents=True
    )

    result = await MultiQueryStrategy().execute("solar storage", context)

    assert len(result.source_documents) == 2
    assert "final_rerank" not in result.debug["reranking"]


@pytest.mark.asyncio
async def test_multi_query_falls_back_when_no_queries_remain() -> None:
    model = RoutingModel((_VARIANTS, "too short"), (_ANSWER, "fallback answer"))
    store = ScriptedStore(default=_SOLAR)
    context = _debug_context(store, model, include_original_query=False)

    result = await MultiQueryStrategy().execute("solar storage", context)

    assert result.answer == "fallback answer"
    assert store.queries == ["solar storage"]
    assert result.debug["query_details"]["fallback"] == "simple_query"


def _sub_question(prompt: str) -> str:
    step = re.search(r"in Step (\d+) to help", prompt).group(1)
    return f'"What about part {step}?"'


_PART_DOCS = {
    "What about part 1?": ["Alpha notes on part one."],
    "What about part 2?": ["Beta notes on part two."],
    "What about part 3?": ["Gamma notes on part three."],
}


@pytest.mark.asyncio
async def test_multi_step_stops_early_when_model_says_yes() -> None:
    model = RoutingModel(
        (_SUB_QUESTION, _sub_question),
        (_STEP_ANSWER, "step answer"),
        (_STOP_CHECK, "YES"),
        (_SYNTHESIS, "synthesized"),
    )
    store = ScriptedStore(routes=_PART_DOCS)
    context = _context(store, model, max_steps=3, enable_early_stop=True)

    result = await MultiStepQueryStrategy().execute("Explain all parts", context)

    assert result.answer == "synthesized"
    assert store.queries == ["What about part 1?", "What about part 2?"]
    synthesis = model.prompts[-1]
    assert "Alpha notes" in synthesis and "Beta notes" in synthesis
    assert "Gamma notes" not in synthesis
    assert "Step 2: What about part 2?" in synthesis
    assert "Step 3" not in synthesis
    # no stop check after the first step
    assert sum(_STOP_CHECK in prompt for prompt in model.prompts) == 1


@pytest.mark.asyncio
async def test_multi_step_runs_all_steps_without_early_stop() -> None:
    model = RoutingModel(
        (_SUB_QUESTION, _sub_question),
        (_STEP_ANSWER, "step answer"),
        (_SYNTHESIS, "synthesized"),
    )
    store = ScriptedStore(routes=_PART_DOCS)

    await MultiStepQueryStrategy().execute(
        "Explain all parts", _context(store, model, max_steps=3, enable_early_stop=False)
    )

    assert store.queries == list(_PART_DOCS)


@pytest.mark.asyncio
async def test_multi_step_records_failed_step_and_continues() -> None:
    def sub_question(prompt: str) -> str:
        if "in Step 1 to help" in prompt:
            raise RuntimeError("llm hiccup")
        return _sub_question(prompt)

    model = RoutingModel(
        (_SUB_QUESTION, sub_question),
        (_STEP_ANSWER, "step answer"),
        (_SYNTHESIS, "synthesized"),
    )
    store = ScriptedStore(routes=_PART_DOCS)
    context = _debug_context(store, model, max_steps=2, enable_early_stop=False)

    result = await MultiStepQueryStrategy().execute("Explain all parts", context)

    assert result.answer == "synthesized"
    assert result.debug["query_details"]["step_1_error"] == "llm hiccup"
    assert result.debug["document_flow"]["total_steps_executed"] == 1
    assert store.queries == ["What about part 2?"]


@pytest.mark.asyncio
async def test_debugging_persists_trace_to_memory() -> None:
    memory = DebugMemory()
    model = RoutingModel((_ANSWER, "ok"))
    context = _debug_context(ScriptedStore(default=_SOLAR), model, memory=memory, documents_to_return=2)

    result = await SimpleQueryStrategy().execute("solar", context)

    assert result.debug["strategy"] == "simple_query"
    assert "total" in result.debug["timing_ms"]
    assert result.debug["document_flow"] == {"total_retrieved": 3, "final_count": 2}
    [record] = memory.list_recent()
    assert record.inputs == {"input": "Debug data for query: solar"}
