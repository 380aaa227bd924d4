import json

import pytest

from contextual_rag.exceptions import InvalidMetadataError
from contextual_rag.ingest.loader import LoaderRegistry, documents_from_items, item_text, parse_metadata


def test_registry_loads_by_extension(tmp_path) -> None:
    text_file = tmp_path / "notes.TXT"
    text_file.write_text("plain notes", encoding="utf-8")
    markdown_file = tmp_path / "guide.md"
    markdown_file.write_text("# Guide", encoding="utf-8")
    json_file = tmp_path / "record.json"
    json_file.write_text(json.dumps({"title": "t", "content": "json body"}), encoding="utf-8")

    registry = LoaderRegistry()

    assert registry.load_path(text_file).metadata["format"] == "text"
    assert registry.load_path(markdown_file).page_content == "# Guide"
    assert registry.load_path(json_file).page_content == "json body"


def test_unsupported_extension_is_rejected(tmp_path) -> None:
    path = tmp_path / "slides.pptx"
    path.write_bytes(b"")

    with pytest.raises(ValueError, match="No loader registered"):
        LoaderRegistry().load_path(path)


def test_item_text_key_order() -> None:
    assert item_text({"data": "d", "content": "c"}) == "c"
    assert item_text({"text": "", "document": "doc"}) == "doc"
    assert item_text({"data": {"nested": 1}}) == '{"nested": 1}'
    assert item_text({"other": 1}) == '{"other": 1}'


def test_documents_from_items_copies_known_fields() -> None:
    items = [
        {"text": "first", "source": "s3://bucket/a", "fileName": "a.txt", "ignored": "x"},
        {"content": "second", "fileType": "md"},
    ]

    documents = documents_from_items(items, '{"team": "docs"}')

    assert [doc.page_content for doc in documents] == ["first", "second"]
    assert documents[0].metadata == {
        "team": "docs",
        "item_index": 0,
        "source": "s3://bucket/a",
        "fileName": "a.txt",
    }
    assert documents[1].metadata == {"team": "docs", "item_index": 1, "fileType": "md"}


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ("{not json", "Invalid JSON in metadata field"),
        ("[1, 2]", "Metadata must be a JSON object"),
    ],
)
def test_bad_metadata_fails_fast(raw: str, message: str) -> None:
    with pytest.raises(InvalidMetadataError, match=message):
        documents_from_items([{"text": "never read"}], raw)


def test_blank_metadata_means_none() -> None:
    assert parse_metadata(None) == {}
    assert parse_metadata("  ") == {}
