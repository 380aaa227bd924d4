"""Sentence tokenization and word packing."""

from __future__ import annotations

import logging
import re

from contextual_rag.config import DEFAULT_SENTENCE_PATTERN

logger = logging.getLogger(__name__)

_DEFAULT_SPLIT = re.compile(DEFAULT_SENTENCE_PATTERN)


class SentenceTokenizer:
    """Splits text into trimmed, non-empty sentences using a boundary regex.

    An invalid user pattern never raises; the default lookbehind on `.?!`
    is used instead.
    """

    def __init__(self, pattern: str | None = None) -> None:
        self.pattern = self._compile(pattern)

    def split(self, text: str) -> list[str]:
        if not text or not text.strip():
            return []
        # re.split yields capture groups (possibly None) between parts
        parts = self.pattern.split(text)
        return [part.strip() for part in parts if isinstance(part, str) and part.strip()]

    @staticmethod
    def _compile(pattern: str | None) -> re.Pattern[str]:
        if not pattern or pattern == DEFAULT_SENTENCE_PATTERN:
            return _DEFAULT_SPLIT
        try:
            return re.compile(pattern)
        except re.error:
            logger.warning("Invalid sentence split regex %r, using default", pattern)
            return _DEFAULT_SPLIT


def pack_words(text: str, max_size: int) -> list[str]:
    """Greedily pack words into pieces no longer than `max_size` characters.

    Words longer than `max_size` are sliced so the bound always holds.
    """

    if max_size < 1:
        raise ValueError("max_size must be positive")

    pieces: list[str] = []
    current = ""
    for word in text.split():
        while len(word) > max_size:
            if current:
                pieces.append(current)
                current = ""
            pieces.append(word[:max_size])
            word = word[max_size:]
        if not word:
            continue
        if not current:
            current = word
        elif len(current) + 1 + len(word) <= max_size:
            current = f"{current} {word}"
        else:
            pieces.append(current)
            current = word
    if current:
        pieces.append(current)
    return pieces
