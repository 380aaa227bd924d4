"""Name-to-factory registry for retrieval strategies."""

from __future__ import annotations

from collections.abc import Callable

from contextual_rag.exceptions import UnknownStrategyError
from contextual_rag.retrieval.base import QueryStrategy
from contextual_rag.retrieval.strategies import (
    MultiQueryStrategy,
    MultiStepQueryStrategy,
    NoneStrategy,
    SimpleQueryStrategy,
)

StrategyFactory = Callable[[], QueryStrategy]

_DISPLAY_NAMES = {
    "simple_query": "Simple Query",
    "multi_query": "Multi-Query",
    "multi_step_query": "Multi-Step Query",
    "none": "None",
}


class StrategyRegistry:
    """Builds a fresh strategy instance per lookup."""

    def __init__(self, factories: dict[str, StrategyFactory] | None = None) -> None:
        self._factories: dict[str, StrategyFactory] = {}
        defaults: dict[str, StrategyFactory] = {
            SimpleQueryStrategy.name: SimpleQueryStrategy,
            MultiQueryStrategy.name: MultiQueryStrategy,
            MultiStepQueryStrategy.name: MultiStepQueryStrategy,
            NoneStrategy.name: NoneStrategy,
        }
        for name, factory in (defaults if factories is None else factories).items():
            self.register_strategy(name, factory)

    def register_strategy(self, name: str, factory: StrategyFactory) -> None:
        self._factories[name] = factory

    def get_strategy(self, name: str) -> QueryStrategy:
        factory = self._factories.get(name)
        if factory is None:
            raise UnknownStrategyError(name, self.available_strategies())
        return factory()

    def available_strategies(self) -> list[str]:
        return list(self._factories)

    def strategy_options(self) -> list[dict[str, str]]:
        return [
            {
                "name": _DISPLAY_NAMES.get(name, name),
                "value": name,
                "description": self.get_strategy(name).description,
            }
            for name in self._factories
        ]
