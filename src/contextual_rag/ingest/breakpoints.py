"""Sentence-window distance profiling and breakpoint selection."""

from __future__ import annotations

import logging
from math import floor, sqrt

from langchain_core.embeddings import Embeddings

from contextual_rag.config import SplitterConfig
from contextual_rag.similarity import adjacent_distances

logger = logging.getLogger(__name__)

_GRADIENT_FALLBACK = 0.5


def combine_sentences(sentences: list[str], buffer_size: int) -> list[str]:
    """Join each sentence with up to `buffer_size` neighbours on both sides."""

    n = len(sentences)
    buffer = min(buffer_size, n)
    return [
        " ".join(sentences[max(0, i - buffer) : min(n, i + buffer + 1)])
        for i in range(n)
    ]


class EmbeddingDistanceProfiler:
    """Embeds smoothed sentence windows and measures adjacent cosine distance."""

    def __init__(self, embeddings: Embeddings, buffer_size: int = 1) -> None:
        self._embeddings = embeddings
        self.buffer_size = buffer_size

    async def profile(self, sentences: list[str]) -> list[float]:
        if len(sentences) < 2:
            return []
        windows = combine_sentences(sentences, self.buffer_size)
        vectors = await self._embeddings.aembed_documents(windows)
        if len(vectors) != len(windows):
            raise ValueError(
                f"Embeddings returned {len(vectors)} vectors for {len(windows)} windows"
            )
        return adjacent_distances(vectors)


class BreakpointSelector:
    """Turns a distance profile into cut points.

    Threshold precedence: `number_of_chunks`, then an explicit
    `breakpoint_threshold_amount`, then the configured statistical policy.
    A breakpoint `j` means "cut immediately before sentence `j`".
    """

    def __init__(self, config: SplitterConfig | None = None) -> None:
        self.config = config or SplitterConfig()

    def threshold(self, distances: list[float]) -> float:
        if self.config.number_of_chunks:
            ordered = sorted(distances, reverse=True)
            return ordered[min(self.config.number_of_chunks - 1, len(ordered) - 1)]
        if self.config.breakpoint_threshold_amount is not None:
            return self.config.breakpoint_threshold_amount

        policy = self.config.breakpoint_threshold_type
        if policy == "percentile":
            return _percentile(distances)
        if policy == "standard_deviation":
            return _mean_plus_std(distances)
        if policy == "interquartile":
            return _interquartile(distances)
        if policy == "gradient":
            return _gradient(distances)
        raise ValueError(f"Unknown breakpoint threshold type: {policy}")

    def select(self, distances: list[float]) -> list[int]:
        if not distances:
            return []
        threshold = self.threshold(distances)
        breakpoints = [i + 1 for i, distance in enumerate(distances) if distance > threshold]
        logger.debug(
            "Selected %d breakpoints from %d distances (threshold=%.4f)",
            len(breakpoints),
            len(distances),
            threshold,
        )
        return breakpoints


def _percentile(distances: list[float], q: float = 0.95) -> float:
    ordered = sorted(distances)
    return ordered[min(floor(len(ordered) * q), len(ordered) - 1)]


def _mean_plus_std(distances: list[float]) -> float:
    mean = sum(distances) / len(distances)
    variance = sum((d - mean) ** 2 for d in distances) / len(distances)
    return mean + sqrt(variance)


def _interquartile(distances: list[float]) -> float:
    ordered = sorted(distances)
    last = len(ordered) - 1
    q1 = ordered[min(floor(len(ordered) * 0.25), last)]
    q3 = ordered[min(floor(len(ordered) * 0.75), last)]
    return q3 + 1.5 * (q3 - q1)


def _gradient(distances: list[float]) -> float:
    if len(distances) < 2:
        return _GRADIENT_FALLBACK
    gradients = [abs(distances[i] - distances[i - 1]) for i in range(1, len(distances))]
    steepest = gradients.index(max(gradients))
    return distances[min(steepest + 1, len(distances) - 1)]
