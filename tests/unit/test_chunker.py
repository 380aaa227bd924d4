import pytest
from langchain_core.documents import Document
from langchain_core.embeddings import Embeddings

from contextual_rag.config import SplitterConfig
from contextual_rag.exceptions import InputTooLargeError
from contextual_rag.ingest.chunker import (
    ChunkAssembler,
    SemanticDoublePassSplitter,
    SizeConstraintEnforcer,
)
from contextual_rag.ingest.embedder import HashingEmbedder
from contextual_rag.types import Chunk


class KeywordEmbeddings(Embeddings):
    """One dimension per keyword; records the size of every batch."""

    def __init__(self, vocabulary: list[str]) -> None:
        self.vocabulary = vocabulary
        self.batch_sizes: list[int] = []

    def _vector(self, text: str) -> list[float]:
        lowered = text.lower()
        return [float(lowered.count(word)) for word in self.vocabulary]

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.batch_sizes.append(len(texts))
        return [self._vector(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._vector(text)

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        return self.embed_documents(texts)

    async def aembed_query(self, text: str) -> list[float]:
        return self.embed_query(text)


def _every_gap_cuts(**overrides) -> SplitterConfig:
    return SplitterConfig(buffer_size=0, breakpoint_threshold_amount=-1.0, **overrides)


@pytest.mark.asyncio
async def test_single_sentence_needs_no_embedding() -> None:
    embeddings = KeywordEmbeddings(["hello"])
    splitter = SemanticDoublePassSplitter(embeddings)

    chunks, sentences = await splitter.split_text_with_chunks("Hello world.")

    assert sentences == ["Hello world."]
    assert chunks == [Chunk(text="Hello world.", start_idx=0, end_idx=0)]
    assert embeddings.batch_sizes == []


@pytest.mark.asyncio
async def test_uniform_sentences_stay_together() -> None:
    splitter = SemanticDoublePassSplitter(KeywordEmbeddings(["cats"]))

    assert await splitter.split_text("Cats purr. Cats nap.") == ["Cats purr. Cats nap."]


@pytest.mark.asyncio
async def test_empty_input_returns_nothing() -> None:
    embeddings = KeywordEmbeddings(["x"])
    splitter = SemanticDoublePassSplitter(embeddings)

    assert await splitter.split_text("") == []
    assert await splitter.split_text("  \n ") == []
    assert embeddings.batch_sizes == []


@pytest.mark.asyncio
async def test_too_large_input_is_rejected_before_embedding() -> None:
    embeddings = KeywordEmbeddings(["x"])
    splitter = SemanticDoublePassSplitter(embeddings, SplitterConfig(max_text_length=10))

    with pytest.raises(InputTooLargeError):
        await splitter.split_text("This text is well past ten characters.")
    assert embeddings.batch_sizes == []


def test_create_chunks_partitions_sentences() -> None:
    sentences = ["s0", "s1", "s2", "s3", "s4"]

    chunks = ChunkAssembler.create_chunks(sentences, [2, 4])

    assert [(c.start_idx, c.end_idx) for c in chunks] == [(0, 1), (2, 3), (4, 4)]
    assert [c.text for c in chunks] == ["s0 s1", "s2 s3", "s4"]


@pytest.mark.asyncio
async def test_stale_vector_is_refreshed_only_on_rejection() -> None:
    embeddings = KeywordEmbeddings(["apples", "rockets"])
    splitter = SemanticDoublePassSplitter(embeddings, _every_gap_cuts())

    chunks, _ = await splitter.split_text_with_chunks(
        "Apples are red. Apples are sweet. Rockets fly high."
    )

    # profile, second-pass batch, one refresh of the merged run
    assert embeddings.batch_sizes == [3, 3, 1]
    assert [(c.text, c.start_idx, c.end_idx) for c in chunks] == [
        ("Apples are red. Apples are sweet.", 0, 1),
        ("Rockets fly high.", 2, 2),
    ]



class TableEmbeddings(Embeddings):
    """Fixed vector per text; records every batch."""

    def __init__(self, table: dict[str, list[float]]) -> None:
        self.table = table
        self.batches: list[list[str]] = []

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.batches.append(list(texts))
        return [self.table[text] for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self.table[text]

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        return self.embed_documents(texts)

    async def aembed_query(self, text: str) -> list[float]:
        return self.embed_query(text)


@pytest.mark.asyncio
async def test_merge_run_is_refreshed_at_most_once() -> None:
    embeddings = TableEmbeddings(
        {
            "A": [1.0, 0.0],
            "B": [1.0, 0.0],
            "C": [0.0, 1.0],
            "D": [-1.0, 0.0],
            "A B": [0.0, 1.0],
            "A B C": [0.0, 1.0],
        }
    )
    chunks = [Chunk(text=text, start_idx=i, end_idx=i) for i, text in enumerate("ABCD")]

    merged = await ChunkAssembler(embeddings, 0.8).merge_similar(chunks)

    assert [c.text for c in merged] == ["A B C", "D"]
    # the refreshed "A B" vector rejects D without a second refresh
    assert embeddings.batches == [["A", "B", "C", "D"], ["A B"]]


@pytest.mark.asyncio
async def test_trailing_merge_run_is_not_reembedded() -> None:
    embeddings = KeywordEmbeddings(["apples", "rockets"])
    splitter = SemanticDoublePassSplitter(embeddings, _every_gap_cuts())

    chunks, _ = await splitter.split_text_with_chunks(
        "Rockets fly high. Apples are red. Apples are sweet."
    )

    assert embeddings.batch_sizes == [3, 3]
    assert [c.text for c in chunks] == ["Rockets fly high.", "Apples are red. Apples are sweet."]


def test_oversized_chunk_splits_along_sentences() -> None:
    sentences = ["Alpha one.", "Beta two.", "Gamma three."]
    chunk = Chunk(text=" ".join(sentences), start_idx=0, end_idx=2)

    out = SizeConstraintEnforcer(max_chunk_size=21).apply([chunk], sentences)

    assert [(c.text, c.start_idx, c.end_idx) for c in out] == [
        ("Alpha one. Beta two.", 0, 1),
        ("Gamma three.", 2, 2),
    ]


def test_overlong_sentence_is_word_packed() -> None:
    sentences = ["abcdefgh ij"]

    out = SizeConstraintEnforcer(max_chunk_size=5).apply(
        [Chunk(text=sentences[0], start_idx=0, end_idx=0)], sentences
    )

    assert [c.text for c in out] == ["abcde", "fgh", "ij"]
    assert all(c.start_idx == c.end_idx == 0 for c in out)


def test_small_chunks_merge_forward() -> None:
    chunks = [
        Chunk(text="aa", start_idx=0, end_idx=0),
        Chunk(text="bb", start_idx=1, end_idx=1),
        Chunk(text="cccccccccccc", start_idx=2, end_idx=2),
    ]

    out = SizeConstraintEnforcer(min_chunk_size=10).apply(chunks, [])

    assert out == [Chunk(text="aa bb cccccccccccc", start_idx=0, end_idx=2)]


def test_trailing_small_chunk_folds_backwards() -> None:
    chunks = [
        Chunk(text="long enough", start_idx=0, end_idx=0),
        Chunk(text="x", start_idx=1, end_idx=1),
    ]

    out = SizeConstraintEnforcer(min_chunk_size=5).apply(chunks, [])

    assert out == [Chunk(text="long enough x", start_idx=0, end_idx=1)]


def test_min_merge_never_overflows_max() -> None:
    enforcer = SizeConstraintEnforcer(min_chunk_size=5, max_chunk_size=8)
    trailing = [Chunk(text="abcdefg", start_idx=0, end_idx=0), Chunk(text="xy", start_idx=1, end_idx=1)]
    leading = [Chunk(text="ab", start_idx=0, end_idx=0), Chunk(text="cdefghi", start_idx=1, end_idx=1)]

    assert enforcer.apply(trailing, []) == trailing
    assert enforcer.apply(leading, []) == leading


def test_no_limits_is_identity() -> None:
    chunks = [Chunk(text="a", start_idx=0, end_idx=0)]

    assert SizeConstraintEnforcer().apply(chunks, ["a"]) == chunks


_ARTICLE = (
    "Solar panels convert sunlight into electricity. Panels work best facing south. "
    "Inverters change direct current into alternating current. Batteries store surplus energy. "
    "Gardens need water every morning. Tomatoes prefer warm soil and full sun. "
    "Compost improves the structure of clay soil. Mulch keeps moisture in the ground."
)


@pytest.mark.asyncio
async def test_chunks_respect_max_and_keep_every_word() -> None:
    splitter = SemanticDoublePassSplitter(
        HashingEmbedder(), SplitterConfig(min_chunk_size=20, max_chunk_size=60)
    )

    chunks = await splitter.split_text(_ARTICLE)

    assert chunks
    assert all(len(chunk) <= 60 for chunk in chunks)
    assert " ".join(chunks).split() == _ARTICLE.split()


@pytest.mark.asyncio
async def test_splitting_is_deterministic() -> None:
    splitter = SemanticDoublePassSplitter(HashingEmbedder())

    assert await splitter.split_text(_ARTICLE) == await splitter.split_text(_ARTICLE)


@pytest.mark.asyncio
async def test_split_documents_adds_sentence_metadata() -> None:
    splitter = SemanticDoublePassSplitter(KeywordEmbeddings(["apples", "rockets"]), _every_gap_cuts())
    doc = Document(
        page_content="Apples are red. Apples are sweet. Rockets fly high.",
        metadata={"source": "unit"},
    )

    out = await splitter.split_documents([doc])

    assert [d.metadata for d in out] == [
        {"source": "unit", "chunk_index": 0, "start_sentence": 0, "end_sentence": 1},
        {"source": "unit", "chunk_index": 1, "start_sentence": 2, "end_sentence": 2},
    ]
