"""Concrete retrieval strategies: simple, none, multi-query and multi-step."""

from __future__ import annotations

import asyncio
import logging
import re

from langchain_core.documents import Document

from contextual_rag.llm import LanguageModel, ainvoke_text
from contextual_rag.obs.debugging import DebugManager
from contextual_rag.prompts import (
    NO_STEP_DOCUMENTS_ANSWER,
    QUERY_VARIANTS_TEMPLATE,
    STEP_ANSWER_TEMPLATE,
    STOP_CHECK_TEMPLATE,
    SUB_QUESTION_TEMPLATE,
    SYNTHESIS_TEMPLATE,
    render_documents,
)
from contextual_rag.retrieval.base import BaseStrategy, StrategyContext, dedupe_documents
from contextual_rag.retrieval.reranker import RerankContext
from contextual_rag.types import RerankResult, StepResult, StrategyResult

logger = logging.getLogger(__name__)

_MIN_QUERY_CHARS = 10
_NUMBERING = re.compile(r"^\d+\.\s*")
_BOLD = re.compile(r"\*\*(.*?)\*\*")
_SURROUNDING_QUOTES = re.compile(r"^[\"']|[\"']$")
_STEP_PREVIEW_CHARS = 200


class SimpleQueryStrategy(BaseStrategy):
    name = "simple_query"
    description = "Generate an answer using all retrieved documents in a single prompt"

    async def _run(self, query: str, context: StrategyContext, debug: DebugManager) -> StrategyResult:
        debug.set_query_details(original=query)
        found = await self.search_with_fallback(
            query, context, debug, RerankContext(self.name, label="simple query")
        )
        if isinstance(found, StrategyResult):
            return found
        answer = await self.generate_answer(found, query, context, debug)
        return await self.finish(query, answer, found, context, debug)


class NoneStrategy(BaseStrategy):
    """Retrieval and reranking only; the documents are the result."""

    name = "none"
    description = "Return reranked documents without generating an answer"

    async def _run(self, query: str, context: StrategyContext, debug: DebugManager) -> StrategyResult:
        debug.set_query_details(original=query)
        found = await self.search_with_fallback(query, context, debug, RerankContext(self.name, label="none"))
        if isinstance(found, StrategyResult):
            return found
        return await self.finish(query, None, found, context, debug)


def parse_query_variations(text: str, limit: int) -> list[str]:
    """Extract one question per line, discarding instructions and formatting."""

    lines = [line.strip() for line in text.splitlines()]
    candidates = [
        line
        for line in lines
        if len(line) > _MIN_QUERY_CHARS and not line.startswith(("Example", "IMPORTANT"))
    ][:limit]

    queries: list[str] = []
    for line in candidates:
        cleaned = _BOLD.sub(r"\1", _NUMBERING.sub("", line)).strip()
        if len(cleaned) > _MIN_QUERY_CHARS:
            queries.append(cleaned)
    return queries


class MultiQueryStrategy(BaseStrategy):
    """Widens recall with LLM-written paraphrases of the query.

    Every query is retrieved and reranked to `documents_to_return` on its
    own (concurrently; results keep query order). The pooled documents are
    deduplicated by trimmed content, first occurrence winning, and reranked
    once more against the original query when more than
    `documents_to_return` remain.
    """

    name = "multi_query"
    description = (
        "Generate multiple query variations, retrieve documents for each, "
        "then combine and rerank results"
    )

    async def _run(self, query: str, context: StrategyContext, debug: DebugManager) -> StrategyResult:
        try:
            return await self._multi_query(query, context, debug)
        except Exception:
            logger.warning("Multi-query pipeline failed, falling back to a simple search", exc_info=True)
            debug.set_query_details(fallback="simple_query")
            found = await self.search_with_fallback(
                query, context, debug, RerankContext(self.name, is_original=True, label="fallback")
            )
            if isinstance(found, StrategyResult):
                return found
            answer = await self.generate_answer(found, query, context, debug)
            return await self.finish(query, answer, found, context, debug)

    async def generate_variations(self, query: str, context: StrategyContext) -> list[str]:
        model = context.model
        if model is None:
            raise ValueError("multi_query requires a language model")
        count = context.config.query_variations
        instructions = (
            context.config.query_generation_prompt.strip()
            .replace("{count}", str(count))
            .replace("{query}", query)
        )
        prompt = QUERY_VARIANTS_TEMPLATE.format(instructions=instructions, query=query, count=count)
        return parse_query_variations(await ainvoke_text(model, prompt), count)

    async def _multi_query(self, query: str, context: StrategyContext, debug: DebugManager) -> StrategyResult:
        config = context.config
        with debug.time("query_generation"):
            variations = await self.generate_variations(query, context)

        queries = [query, *variations] if config.include_original_query else variations
        if not queries:
            raise ValueError("No query variations could be parsed from the model output")
        debug.set_query_details(
            original=query,
            variations=variations,
            include_original=config.include_original_query,
            total_queries=len(queries),
        )

        with debug.time("document_retrieval"):
            outcomes = await asyncio.gather(
                *(
                    self._search_one(text, index, config.include_original_query and index == 0, context)
                    for index, text in enumerate(queries)
                )
            )

        pooled: list[Document] = []
        per_query_debug = []
        documents_per_query = []
        for candidates_count, reranked in outcomes:
            documents_per_query.append(candidates_count)
            if reranked is None:
                continue
            pooled.extend(reranked.documents)
            if reranked.debug_info is not None:
                per_query_debug.append(reranked.debug_info)

        documents = dedupe_documents(pooled)
        debug.set_query_details(documents_per_query=documents_per_query)
        debug.set_document_flow(total_retrieved=len(pooled), after_deduplication=len(documents))

        reranking: dict[str, object] = {"per_query_details": per_query_debug}
        if len(documents) > config.documents_to_return:
            if config.final_rerank:
                with debug.time("final_reranking"):
                    final = await context.reranker.rerank(
                        documents,
                        query,
                        config.documents_to_return,
                        context=RerankContext(self.name, is_original=True, label="final rerank"),
                        debugging=context.debugging,
                    )
                documents = final.documents
                if final.debug_info is not None:
                    reranking["final_rerank"] = final.debug_info
            else:
                documents = documents[: config.documents_to_return]
        if context.debugging:
            debug.set_reranking(reranking)

        debug.set_document_flow(final_count=len(documents))
        answer = await self.generate_answer(documents, query, context, debug)
        return await self.finish(query, answer, documents, context, debug)

    async def _search_one(
        self, text: str, index: int, is_original: bool, context: StrategyContext
    ) -> tuple[int, RerankResult | None]:
        label = "original query" if is_original else f"variation {index}"
        try:
            candidates, reranked = await self.retrieve_and_rerank(
                text,
                context,
                RerankContext(self.name, query_index=index, is_original=is_original, label=label),
            )
        except Exception:
            logger.warning("Retrieval failed for %s, skipping", label, exc_info=True)
            return 0, None
        return len(candidates), reranked


class MultiStepQueryStrategy(BaseStrategy):
    """Answers a complex query through a chain of LLM-chosen sub-questions.

    Each step asks for a sub-question given the reasoning so far, retrieves
    and reranks for it, and records a short step answer. From the second
    step on, the model may end the loop early by answering YES to a
    sufficiency check. A failing step is recorded and skipped.
    """

    name = "multi_step_query"
    description = "Break complex queries into sequential reasoning steps, building context progressively"

    async def _run(self, query: str, context: StrategyContext, debug: DebugManager) -> StrategyResult:
        model = context.model
        if model is None:
            raise ValueError("multi_step_query requires a language model")
        config = context.config
        reasoning = ""
        documents: list[Document] = []
        steps: list[StepResult] = []
        debug.set_query_details(
            original=query,
            max_steps=config.max_steps,
            enable_early_stop=config.enable_early_stop,
        )

        with debug.time("all_steps"):
            for step in range(config.max_steps):
                try:
                    with debug.time(f"step_{step + 1}"):
                        result = await self._step(model, query, reasoning, step, context)
                except Exception as exc:
                    logger.warning("Step %d failed, continuing", step + 1, exc_info=True)
                    debug.set_query_details(**{f"step_{step + 1}_error": str(exc)})
                    continue

                entry = f"Step {result.step}: {result.sub_query}\nAnswer: {result.answer}"
                reasoning = f"{reasoning}\n\n{entry}" if reasoning else entry
                steps.append(result)
                documents = dedupe_documents([*documents, *result.documents])

                if result.should_stop:
                    debug.set_query_details(
                        stopped_early=True,
                        stopped_at_step=result.step,
                        reason="Early stopping condition met",
                    )
                    break

        debug.set_document_flow(
            total_steps_executed=len(steps),
            total_documents_collected=len(documents),
            final_count=len(documents),
        )
        if context.debugging:
            debug.set_reranking({"multi_step_details": _step_summaries(steps, reasoning)})

        answer = await self._synthesize(model, query, reasoning, documents, steps, context, debug)
        return await self.finish(query, answer, documents, context, debug)

    async def _step(
        self, model: LanguageModel, query: str, reasoning: str, step: int, context: StrategyContext
    ) -> StepResult:
        sub_query = await self._sub_question(model, query, reasoning, step)
        step_documents = await self._retrieve_for_step(sub_query, step, context)
        answer = await self._step_answer(model, step_documents, sub_query, reasoning)
        should_stop = (
            context.config.enable_early_stop
            and step > 0
            and await self._should_stop(model, answer, query, reasoning)
        )
        return StepResult(
            step=step + 1,
            sub_query=sub_query,
            documents=step_documents,
            answer=answer,
            should_stop=should_stop,
        )

    async def _sub_question(self, model: LanguageModel, query: str, reasoning: str, step: int) -> str:
        previous = f"Previous Steps:\n{reasoning}\n\n" if reasoning else ""
        prompt = SUB_QUESTION_TEMPLATE.format(query=query, previous=previous, step=step + 1)
        response = await ainvoke_text(model, prompt)
        return _SURROUNDING_QUOTES.sub("", response.strip())

    async def _retrieve_for_step(self, sub_query: str, step: int, context: StrategyContext) -> list[Document]:
        try:
            _, reranked = await self.retrieve_and_rerank(
                sub_query,
                context,
                RerankContext(self.name, query_index=step, label=f"step {step + 1}"),
            )
        except Exception:
            logger.warning("Retrieval failed for step %d", step + 1, exc_info=True)
            return []
        return reranked.documents

    async def _step_answer(
        self, model: LanguageModel, documents: list[Document], sub_query: str, reasoning: str
    ) -> str:
        if not documents:
            return NO_STEP_DOCUMENTS_ANSWER
        previous = f"Previous reasoning:\n{reasoning}\n\n" if reasoning else ""
        prompt = STEP_ANSWER_TEMPLATE.format(
            previous=previous,
            question=sub_query,
            context=render_documents([doc.page_content for doc in documents]),
        )
        return await ainvoke_text(model, prompt)

    async def _should_stop(self, model: LanguageModel, answer: str, query: str, reasoning: str) -> bool:
        prompt = STOP_CHECK_TEMPLATE.format(query=query, reasoning=reasoning, answer=answer)
        try:
            decision = await ainvoke_text(model, prompt)
        except Exception:
            logger.warning("Early-stop check failed, continuing", exc_info=True)
            return False
        return "YES" in decision.strip().upper()

    async def _synthesize(
        self,
        model: LanguageModel,
        query: str,
        reasoning: str,
        documents: list[Document],
        steps: list[StepResult],
        context: StrategyContext,
        debug: DebugManager,
    ) -> str:
        prompt = SYNTHESIS_TEMPLATE.format(
            query=query,
            reasoning=reasoning,
            context=render_documents([doc.page_content for doc in documents]),
        )
        with debug.time("final_synthesis"):
            answer = await ainvoke_text(model, prompt)
        debug.set_answer_generation(
            {
                "steps_count": len(steps),
                "reasoning_length": len(reasoning),
                "documents_used": len(documents),
                "synthesis_prompt_length": len(prompt),
            }
        )
        return answer


def _step_summaries(steps: list[StepResult], reasoning: str) -> dict[str, object]:
    return {
        "step_results": [
            {
                "step": result.step,
                "sub_query": result.sub_query,
                "documents_retrieved": len(result.documents),
                "step_answer": result.answer[:_STEP_PREVIEW_CHARS]
                + ("..." if len(result.answer) > _STEP_PREVIEW_CHARS else ""),
                "should_stop": result.should_stop,
            }
            for result in steps
        ],
        "progressive_reasoning": reasoning,
    }
