"""Loading files and JSON items into LangChain documents."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from langchain_core.documents import Document

from contextual_rag.exceptions import InvalidMetadataError

_TEXT_KEYS = ("text", "content", "document", "data")
_PASSTHROUGH_KEYS = ("source", "fileName", "fileType")


class Loader(ABC):
    """Base loader interface used by the ingest pipeline."""

    extensions: tuple[str, ...] = ()

    @abstractmethod
    def load(self, path: Path) -> Document:
        """Read a file into one document."""


class TextLoader(Loader):
    extensions = (".txt", ".log")

    def load(self, path: Path) -> Document:
        return Document(
            page_content=path.read_text(encoding="utf-8"),
            metadata={"source": str(path), "format": "text"},
        )


class MarkdownLoader(Loader):
    extensions = (".md", ".markdown")

    def load(self, path: Path) -> Document:
        return Document(
            page_content=path.read_text(encoding="utf-8"),
            metadata={"source": str(path), "format": "markdown"},
        )


class JsonLoader(Loader):
    """Loads a JSON file; objects use the same text-key lookup as items."""

    extensions = (".json",)

    def load(self, path: Path) -> Document:
        payload: Any = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(payload, Mapping):
            text = item_text(payload)
        else:
            text = json.dumps(payload, ensure_ascii=False, indent=2)
        return Document(page_content=text, metadata={"source": str(path), "format": "json"})


class LoaderRegistry:
    """Maps file extension to loader implementation."""

    def __init__(self, loaders: list[Loader] | None = None) -> None:
        self._loaders: dict[str, Loader] = {}
        for loader in loaders or [TextLoader(), MarkdownLoader(), JsonLoader()]:
            self.register(loader)

    def register(self, loader: Loader) -> None:
        for extension in loader.extensions:
            self._loaders[extension.lower()] = loader

    def load_path(self, path: str | Path) -> Document:
        file_path = Path(path)
        loader = self._loaders.get(file_path.suffix.lower())
        if loader is None:
            raise ValueError(f"No loader registered for extension: {file_path.suffix}")
        return loader.load(file_path)


def parse_metadata(metadata_json: str | None) -> dict[str, Any]:
    """Parse a user-supplied metadata JSON object; empty input means no metadata."""

    if not metadata_json or not metadata_json.strip():
        return {}
    try:
        parsed = json.loads(metadata_json)
    except json.JSONDecodeError as exc:
        raise InvalidMetadataError("Invalid JSON in metadata field") from exc
    if not isinstance(parsed, dict):
        raise InvalidMetadataError("Metadata must be a JSON object")
    return parsed


def item_text(item: Mapping[str, Any]) -> str:
    for key in _TEXT_KEYS:
        value = item.get(key)
        if value:
            return value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
    return json.dumps(dict(item), ensure_ascii=False)


def documents_from_items(
    items: list[Mapping[str, Any]], metadata_json: str | None = None
) -> list[Document]:
    """Turn JSON items into documents.

    Metadata is validated before any item is read so bad input fails fast.
    """

    extra = parse_metadata(metadata_json)
    documents: list[Document] = []
    for index, item in enumerate(items):
        metadata: dict[str, Any] = {**extra, "item_index": index}
        for key in _PASSTHROUGH_KEYS:
            if item.get(key):
                metadata[key] = item[key]
        documents.append(Document(page_content=item_text(item), metadata=metadata))
    return documents
