"""
Strategy selector.

Holds the strategies available to the optimizer by name and remembers
which strategy won for each coin. Lookups of unknown names fail loudly.
"""

from threading import Lock
from typing import Iterable, Optional
import structlog

from cryptolab.errors import ConfigurationError
from cryptolab.strategy.base import Strategy

logger = structlog.get_logger(__name__)

DEFAULT_STRATEGY = "support_resistance_consolidation"


class StrategySelector:
    """
    Name -> strategy registry with a per-coin best-strategy map.

    Args:
        strategies: Strategy instances to register
        default_strategy: Name returned for coins without a recorded winner
    """

    def __init__(
        self,
        strategies: Iterable[Strategy],
        default_strategy: Optional[str] = None,
    ):
        self._strategies: dict[str, Strategy] = {}
        for strategy in strategies:
            if strategy.name in self._strategies:
                raise ConfigurationError(f"Duplicate strategy name: {strategy.name}")
            self._strategies[strategy.name] = strategy

        if not self._strategies:
            raise ConfigurationError("StrategySelector needs at least one strategy")

        self.default_strategy = default_strategy or next(iter(self._strategies))
        if self.default_strategy not in self._strategies:
            raise ConfigurationError(f"Unknown default strategy: {self.default_strategy}")

        self._best_by_coin: dict[str, str] = {}
        self._lock = Lock()

        logger.info(
            "strategy_selector_initialized",
            strategies=self.names(),
            default_strategy=self.default_strategy,
        )

    def names(self) -> list[str]:
        return list(self._strategies)

    def get_strategy(self, name: str) -> Strategy:
        """
        Look up a strategy by name.

        Raises:
            ConfigurationError: If no strategy is registered under `name`
        """
        try:
            return self._strategies[name]
        except KeyError:
            raise ConfigurationError(
                f"Unknown strategy '{name}', available: {self.names()}"
            ) from None

    def get_best_strategy_for_coin(self, symbol: str) -> Strategy:
        with self._lock:
            name = self._best_by_coin.get(symbol, self.default_strategy)
        return self._strategies[name]

    def set_best_strategy_for_coin(self, symbol: str, name: str) -> None:
        self.get_strategy(name)
        with self._lock:
            self._best_by_coin[symbol] = name
        logger.info("best_strategy_recorded", symbol=symbol, strategy=name)

    def best_strategies(self) -> dict[str, str]:
        with self._lock:
            return dict(self._best_by_coin)


def build_default_selector() -> StrategySelector:
    """Selector with every built-in strategy registered."""
    from cryptolab.strategy.buy_low_sell_high import BuyLowSellHighStrategy
    from cryptolab.strategy.consolidation import SupportResistanceConsolidationStrategy
    from cryptolab.strategy.momentum import MultiIndexMomentumStrategy
    from cryptolab.strategy.scalper import MovingAverageScalperStrategy

    return StrategySelector(
        [
            MultiIndexMomentumStrategy(),
            MovingAverageScalperStrategy(),
            SupportResistanceConsolidationStrategy(),
            BuyLowSellHighStrategy(),
        ],
        default_strategy=DEFAULT_STRATEGY,
    )
