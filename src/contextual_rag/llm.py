"""Normalization of language-model responses to plain text.

Chat models return messages whose `content` is either a string or a list of
content blocks; completion models return bare strings. Every call site goes
through `ainvoke_text` so the shape is resolved in one place.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol


class LanguageModel(Protocol):
    """Anything exposing LangChain's async `ainvoke(prompt)`."""

    async def ainvoke(self, input: Any, **kwargs: Any) -> Any: ...


@dataclass(frozen=True, slots=True)
class PlainText:
    text: str


@dataclass(frozen=True, slots=True)
class StructuredText:
    content: str


@dataclass(frozen=True, slots=True)
class BlockText:
    blocks: tuple[str, ...]


TextResponse = PlainText | StructuredText | BlockText


def classify_response(raw: Any) -> TextResponse:
    """Map a raw model response onto one of the three known shapes."""

    if isinstance(raw, str):
        return PlainText(raw)

    content = raw.get("content") if isinstance(raw, Mapping) else getattr(raw, "content", None)
    if isinstance(content, str):
        return StructuredText(content)
    if isinstance(content, list):
        return BlockText(tuple(_block_text(block) for block in content))
    return PlainText(str(raw))


def response_text(response: TextResponse) -> str:
    match response:
        case PlainText(text=text):
            return text
        case StructuredText(content=content):
            return content
        case BlockText(blocks=blocks):
            return "\n".join(block for block in blocks if block)
    raise TypeError(f"Unsupported response type: {type(response).__name__}")


async def ainvoke_text(model: LanguageModel, prompt: str) -> str:
    """Invoke the model and return its answer as plain text."""

    raw = await model.ainvoke(prompt)
    return response_text(classify_response(raw))


def _block_text(block: Any) -> str:
    if isinstance(block, str):
        return block
    if isinstance(block, Mapping):
        text = block.get("text")
        return text if isinstance(text, str) else ""
    return str(block)
