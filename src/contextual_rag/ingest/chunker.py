"""Semantic double-pass chunking implementation."""

from __future__ import annotations

import logging

from langchain_core.documents import Document
from langchain_core.embeddings import Embeddings

from contextual_rag.config import SplitterConfig
from contextual_rag.exceptions import InputTooLargeError
from contextual_rag.ingest.breakpoints import BreakpointSelector, EmbeddingDistanceProfiler
from contextual_rag.ingest.sentences import SentenceTokenizer, pack_words
from contextual_rag.similarity import cosine_similarity
from contextual_rag.types import Chunk

logger = logging.getLogger(__name__)


def _join(left: Chunk, right: Chunk) -> Chunk:
    return Chunk(text=f"{left.text} {right.text}", start_idx=left.start_idx, end_idx=right.end_idx)


class ChunkAssembler:
    """Cuts sentences at breakpoints, then merges semantically close neighbours."""

    def __init__(self, embeddings: Embeddings, second_pass_threshold: float = 0.8) -> None:
        self._embeddings = embeddings
        self.second_pass_threshold = second_pass_threshold

    @staticmethod
    def create_chunks(sentences: list[str], breakpoints: list[int]) -> list[Chunk]:
        chunks: list[Chunk] = []
        start = 0
        for end in [*breakpoints, len(sentences)]:
            if end <= start:
                continue
            text = " ".join(sentences[start:end]).strip()
            if text:
                chunks.append(Chunk(text=text, start_idx=start, end_idx=end - 1))
            start = end
        return chunks

    async def merge_similar(self, chunks: list[Chunk]) -> list[Chunk]:
        """Second pass: fold each chunk into its left neighbour when they are similar.

        All first-pass chunks are embedded in one batch. After a merge the
        running embedding still describes the pre-merge text; it is refreshed
        only when that stale vector would reject the next chunk, and the
        decision is then re-taken with the fresh vector. Each merge run is
        refreshed at most once; later decisions in the run use that vector.
        A merge run that reaches the last chunk is never re-embedded.
        """

        if len(chunks) <= 1:
            return list(chunks)

        vectors = await self._embeddings.aembed_documents([chunk.text for chunk in chunks])
        merged: list[Chunk] = []
        current = chunks[0]
        current_vector = vectors[0]
        stale = False
        refreshed = False

        for chunk, vector in zip(chunks[1:], vectors[1:], strict=True):
            similar = cosine_similarity(current_vector, vector) >= self.second_pass_threshold
            if not similar and stale and not refreshed:
                [current_vector] = await self._embeddings.aembed_documents([current.text])
                refreshed = True
                similar = cosine_similarity(current_vector, vector) >= self.second_pass_threshold

            if similar:
                current = _join(current, chunk)
                stale = True
            else:
                merged.append(current)
                current = chunk
                current_vector = vector
                stale = refreshed = False

        merged.append(current)
        logger.debug("Second pass merged %d chunks into %d", len(chunks), len(merged))
        return merged


class SizeConstraintEnforcer:
    """Splits oversized chunks and merges undersized ones.

    `max_chunk_size` is a hard cap: a sentence longer than the cap is packed
    word by word, and an undersized merge that would overflow the cap is
    skipped. Text is never dropped.
    """

    def __init__(self, min_chunk_size: int | None = None, max_chunk_size: int | None = None) -> None:
        self.min_chunk_size = min_chunk_size
        self.max_chunk_size = max_chunk_size

    def apply(self, chunks: list[Chunk], sentences: list[str]) -> list[Chunk]:
        if self.min_chunk_size is None and self.max_chunk_size is None:
            return list(chunks)

        sized: list[Chunk] = []
        for chunk in chunks:
            if self.max_chunk_size is not None and chunk.length > self.max_chunk_size:
                sized.extend(self._split(chunk, sentences, self.max_chunk_size))
            else:
                sized.append(chunk)

        if self.min_chunk_size is None:
            return sized
        return self._merge_small(sized, self.min_chunk_size)

    @staticmethod
    def _split(chunk: Chunk, sentences: list[str], max_size: int) -> list[Chunk]:
        out: list[Chunk] = []
        acc = ""
        start = chunk.start_idx
        for i in range(chunk.start_idx, chunk.end_idx + 1):
            sentence = sentences[i]
            if len(sentence) > max_size:
                if acc:
                    out.append(Chunk(text=acc, start_idx=start, end_idx=i - 1))
                    acc = ""
                out.extend(Chunk(text=piece, start_idx=i, end_idx=i) for piece in pack_words(sentence, max_size))
                continue
            if not acc:
                acc, start = sentence, i
            elif len(acc) + 1 + len(sentence) <= max_size:
                acc = f"{acc} {sentence}"
            else:
                out.append(Chunk(text=acc, start_idx=start, end_idx=i - 1))
                acc, start = sentence, i
        if acc:
            out.append(Chunk(text=acc, start_idx=start, end_idx=chunk.end_idx))
        return out

    def _merge_small(self, chunks: list[Chunk], min_size: int) -> list[Chunk]:
        out: list[Chunk] = []
        current: Chunk | None = None
        for chunk in chunks:
            if current is None:
                current = chunk
            elif current.length < min_size and self._fits(current, chunk):
                current = _join(current, chunk)
            else:
                out.append(current)
                current = chunk

        if current is not None:
            # trailing remainder folds backwards
            if current.length < min_size and out and self._fits(out[-1], current):
                out[-1] = _join(out[-1], current)
            else:
                out.append(current)
        return out

    def _fits(self, left: Chunk, right: Chunk) -> bool:
        return self.max_chunk_size is None or left.length + 1 + right.length <= self.max_chunk_size


class SemanticDoublePassSplitter:
    """Splits text into semantically coherent chunks.

    Design notes:
    1. Sentences are embedded as sliding windows (`buffer_size` neighbours on
       each side) so a single short sentence does not dominate the signal.
    2. Cuts are placed where the adjacent window distance exceeds a threshold
       chosen by `BreakpointSelector`.
    3. A second pass re-joins neighbouring chunks whose embeddings are close,
       which repairs cuts caused by local noise in the distance profile.
    4. Size limits are enforced last, along original sentence boundaries.
    """

    def __init__(self, embeddings: Embeddings, config: SplitterConfig | None = None) -> None:
        self.config = config or SplitterConfig()
        self.tokenizer = SentenceTokenizer(self.config.sentence_split_regex)
        self.profiler = EmbeddingDistanceProfiler(embeddings, self.config.buffer_size)
        self.selector = BreakpointSelector(self.config)
        self.assembler = ChunkAssembler(embeddings, self.config.second_pass_threshold)
        self.enforcer = SizeConstraintEnforcer(self.config.min_chunk_size, self.config.max_chunk_size)

    async def split_text(self, text: str) -> list[str]:
        chunks, _ = await self.split_text_with_chunks(text)
        return [chunk.text for chunk in chunks]

    async def split_text_with_chunks(self, text: str) -> tuple[list[Chunk], list[str]]:
        """Split text and return the chunks together with the sentence sequence.

        Raises:
            InputTooLargeError: text is longer than `max_text_length`; raised
                before any embedding call.
        """

        if not text or not text.strip():
            return [], []
        if len(text) > self.config.max_text_length:
            raise InputTooLargeError(len(text), self.config.max_text_length)

        sentences = self.tokenizer.split(text)
        if not sentences:
            return [], sentences
        if len(sentences) == 1:
            return self._single_sentence(sentences[0]), sentences

        distances = await self.profiler.profile(sentences)
        breakpoints = self.selector.select(distances)
        chunks = self.assembler.create_chunks(sentences, breakpoints)
        chunks = await self.assembler.merge_similar(chunks)
        chunks = self.enforcer.apply(chunks, sentences)
        logger.info(
            "Split %d characters into %d sentences and %d chunks",
            len(text),
            len(sentences),
            len(chunks),
        )
        return chunks, sentences

    async def split_documents(self, documents: list[Document]) -> list[Document]:
        output: list[Document] = []
        for document in documents:
            chunks, _ = await self.split_text_with_chunks(document.page_content)
            for index, chunk in enumerate(chunks):
                output.append(
                    Document(
                        page_content=chunk.text,
                        metadata={
                            **document.metadata,
                            "chunk_index": index,
                            "start_sentence": chunk.start_idx,
                            "end_sentence": chunk.end_idx,
                        },
                    )
                )
        return output

    def _single_sentence(self, sentence: str) -> list[Chunk]:
        max_size = self.config.max_chunk_size
        if max_size is not None and len(sentence) > max_size:
            return [Chunk(text=piece, start_idx=0, end_idx=0) for piece in pack_words(sentence, max_size)]
        return [Chunk(text=sentence, start_idx=0, end_idx=0)]
