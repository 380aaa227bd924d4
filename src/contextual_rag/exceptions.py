"""Error types raised by chunking, context generation and strategy lookup."""

from __future__ import annotations


class ContextualRagError(Exception):
    """Base class for package errors."""


class InputTooLargeError(ContextualRagError, ValueError):
    """Raised before any embedding call when a document exceeds the hard size cap."""

    def __init__(self, length: int, limit: int) -> None:
        super().__init__(
            f"Text length ({length} characters) exceeds maximum allowed ({limit} characters)"
        )
        self.length = length
        self.limit = limit


class PromptTooLargeError(ContextualRagError, ValueError):
    """Raised before a model call when the constructed prompt is too long."""

    def __init__(self, length: int, limit: int) -> None:
        super().__init__(f"Prompt too large: {length} characters (limit {limit})")
        self.length = length
        self.limit = limit


class InvalidMetadataError(ContextualRagError, ValueError):
    """Raised when user-supplied metadata is not a JSON object."""


class UnknownStrategyError(ContextualRagError, KeyError):
    """Raised when a strategy name is not registered."""

    def __init__(self, name: str, available: list[str]) -> None:
        super().__init__(
            f"Unknown strategy type: {name}. Available strategies: {', '.join(available)}"
        )
        self.name = name
        self.available = available

    def __str__(self) -> str:
        return str(self.args[0])
