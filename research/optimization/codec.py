"""
Parameter codecs.

A genotype is a flat tuple of gene values. A codec knows, for each
position, which StrategyParameters field it feeds, the allowed range,
whether the value is an integer, and a scale applied on decode (integer
genes with scale 0.01 give two-decimal thresholds). Fields without a
gene keep the codec's defaults; minimum_candles is always derived from
the decoded look-back lengths.

Decoding is pure and total: any in-bounds genotype decodes.
"""

from dataclasses import dataclass, fields
import random
from typing import Callable, Optional, Sequence

from cryptolab.errors import ConfigurationError
from cryptolab.models import StrategyParameters

Genotype = tuple[float, ...]

_INT_FIELDS = {f.name for f in fields(StrategyParameters) if f.type is int}


@dataclass(frozen=True)
class Gene:
    """
    One optimizable parameter.

    Args:
        name: StrategyParameters field fed by this gene
        low: Smallest allele (inclusive)
        high: Largest allele (inclusive)
        kind: "int" for integer alleles, "float" for continuous ones
        scale: Multiplier applied to the allele on decode
    """
    name: str
    low: float
    high: float
    kind: str = "int"
    scale: float = 1.0

    def __post_init__(self):
        if self.kind not in ("int", "float"):
            raise ConfigurationError(f"Gene {self.name}: unknown kind '{self.kind}'")
        if self.low > self.high:
            raise ConfigurationError(f"Gene {self.name}: low {self.low} > high {self.high}")

    def random_allele(self, rng: random.Random) -> float:
        if self.kind == "int":
            return rng.randint(int(self.low), int(self.high))
        return rng.uniform(self.low, self.high)

    def clip(self, allele: float) -> float:
        value = min(max(allele, self.low), self.high)
        return int(round(value)) if self.kind == "int" else float(value)

    def value(self, allele: float) -> float:
        """Field value encoded by an allele."""
        return self.clip(allele) * self.scale


def _coerce(name: str, value: float):
    return int(value) if name in _INT_FIELDS else float(value)


class ParameterCodec:
    """
    Maps genotypes to StrategyParameters.

    Args:
        name: Codec name (used in logs and the CODECS registry)
        genes: Ordered gene definitions
        defaults: Values for fields without a gene
        derive_minimum_candles: Computes the warm-up from decoded parameters
    """

    def __init__(
        self,
        name: str,
        genes: Sequence[Gene],
        defaults: StrategyParameters,
        derive_minimum_candles: Optional[Callable[[StrategyParameters], int]] = None,
    ):
        names = [g.name for g in genes]
        unknown = set(names) - set(StrategyParameters.field_names())
        if unknown:
            raise ConfigurationError(f"Codec {name}: unknown fields {sorted(unknown)}")
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Codec {name}: duplicate gene names")
        if "minimum_candles" in names:
            raise ConfigurationError(f"Codec {name}: minimum_candles is derived, not a gene")

        self.name = name
        self.genes = tuple(genes)
        self.defaults = defaults
        self.derive_minimum_candles = derive_minimum_candles

    def __len__(self) -> int:
        return len(self.genes)

    def random_genotype(self, rng: random.Random) -> Genotype:
        return tuple(gene.random_allele(rng) for gene in self.genes)

    def random_gene(self, index: int, rng: random.Random) -> float:
        return self.genes[index].random_allele(rng)

    def decode(self, genotype: Sequence[float]) -> StrategyParameters:
        """Decode a genotype; alleles outside their bounds are clipped."""
        if len(genotype) != len(self.genes):
            raise ConfigurationError(
                f"Codec {self.name} expects {len(self.genes)} genes, got {len(genotype)}"
            )

        changes = {
            gene.name: _coerce(gene.name, gene.value(allele))
            for gene, allele in zip(self.genes, genotype)
        }
        params = self.defaults.replace(**changes)

        if self.derive_minimum_candles is not None:
            params = params.replace(minimum_candles=int(self.derive_minimum_candles(params)))
        return params

    def encode(self, params: StrategyParameters) -> Genotype:
        """Closest genotype to the given parameters."""
        return tuple(
            gene.clip(getattr(params, gene.name) / gene.scale)
            for gene in self.genes
        )


# Fixed values for everything the default codec does not search
_DEFAULTS = StrategyParameters(
    macd_fast_period=12,
    macd_slow_period=26,
    macd_signal_period=9,
    volume_period=20,
    above_average_threshold=1.5,
    adx_period=14,
    adx_bullish_threshold=25,
    adx_bearish_threshold=25,
    volatility_period=20,
    lookback_period=50,
    mfi_overbought_threshold=80,
    mfi_oversold_threshold=20,
    mfi_period=14,
    atr_period=14,
    atr_threshold=3,
    support_resistance_period=50,
    support_resistance_threshold=0.02,
    minimum_candles=300,
)


def _fixed_warmup(candles: int) -> Callable[[StrategyParameters], int]:
    return lambda params: candles


def _buy_low_sell_high_warmup(params: StrategyParameters) -> int:
    longest = max(
        params.moving_average_buy_long_period,
        params.volume_period,
        params.rsi_period,
        params.atr_period,
        params.macd_slow_period + params.macd_signal_period,
        params.lookback_period,
    )
    return 3 * longest


def _multi_strategy_warmup(params: StrategyParameters) -> int:
    longest = max(
        params.moving_average_buy_long_period,
        params.moving_average_sell_long_period,
        params.rsi_period,
        params.macd_slow_period,
        params.volume_period,
        params.adx_period,
        params.volatility_period,
        params.mfi_period,
        params.atr_period,
        params.lookback_period,
    )
    return max(300, 3 * longest)


def default_codec(symbol: Optional[str] = None) -> ParameterCodec:
    """Moving average, RSI, risk and volatility threshold search (10 genes)."""
    return ParameterCodec(
        "default",
        [
            Gene("moving_average_buy_short_period", 5, 20),
            Gene("moving_average_buy_long_period", 20, 80),
            Gene("moving_average_sell_short_period", 5, 20),
            Gene("moving_average_sell_long_period", 20, 80),
            Gene("rsi_period", 10, 20),
            Gene("rsi_buy_threshold", 25, 35),
            Gene("rsi_sell_threshold", 65, 75),
            Gene("loss_percent", 3, 10),
            Gene("profit_percent", 4, 12),
            Gene("high_volatility_threshold", 1, 10),
        ],
        _DEFAULTS,
        _fixed_warmup(300),
    )


def buy_low_sell_high_codec(symbol: Optional[str] = None) -> ParameterCodec:
    """Search space of the buy-low-sell-high strategy (17 genes)."""
    return ParameterCodec(
        "buy_low_sell_high",
        [
            Gene("moving_average_buy_short_period", 10, 30),
            Gene("moving_average_buy_long_period", 40, 100),
            Gene("rsi_period", 10, 18),
            Gene("rsi_buy_threshold", 30, 50),
            Gene("rsi_sell_threshold", 65, 80),
            Gene("lookback_period", 3, 8),
            Gene("macd_fast_period", 8, 16),
            Gene("macd_slow_period", 20, 32),
            Gene("macd_signal_period", 7, 12),
            Gene("atr_period", 10, 20),
            Gene("low_volatility_threshold", 70, 110, scale=0.01),
            Gene("high_volatility_threshold", 120, 180, scale=0.01),
            Gene("volume_period", 12, 36),
            Gene("above_average_threshold", 10, 40),
            Gene("loss_percent", 15, 50, scale=0.1),
            Gene("profit_percent", 80, 200, scale=0.1),
            Gene("contraction_threshold", 20, 50, scale=0.1),
        ],
        StrategyParameters(),
        _buy_low_sell_high_warmup,
    )


# Per-coin search ranges for the scalper; strong performers get tighter
# moving average ranges and smaller losses
_SCALPER_RANGES = {
    "XDGUSD": {
        "ma_short": (3, 10), "ma_long": (15, 50), "rsi_period": (7, 14),
        "rsi_buy": (20, 40), "rsi_sell": (60, 80), "loss": (2, 5), "profit": (3, 8),
    },
    "ETHUSD": {
        "ma_short": (3, 10), "ma_long": (20, 60), "rsi_period": (7, 14),
        "rsi_buy": (20, 40), "rsi_sell": (60, 80), "loss": (1, 3), "profit": (5, 15),
    },
    "LTCUSD": {
        "ma_short": (5, 15), "ma_long": (25, 70), "rsi_period": (10, 20),
        "rsi_buy": (25, 35), "rsi_sell": (65, 75), "loss": (3, 10), "profit": (4, 12),
    },
    "XRPUSD": {
        "ma_short": (5, 20), "ma_long": (20, 80), "rsi_period": (10, 20),
        "rsi_buy": (25, 35), "rsi_sell": (65, 75), "loss": (5, 15), "profit": (6, 20),
    },
}

_SCALPER_DEFAULT_RANGES = {
    "ma_short": (5, 20), "ma_long": (20, 80), "rsi_period": (10, 20),
    "rsi_buy": (25, 35), "rsi_sell": (65, 75), "loss": (3, 10), "profit": (4, 12),
}


def scalper_codec(symbol: Optional[str] = None) -> ParameterCodec:
    """Moving average scalper search space, narrowed per coin (10 genes)."""
    r = _SCALPER_RANGES.get((symbol or "").upper(), _SCALPER_DEFAULT_RANGES)
    return ParameterCodec(
        "moving_average_scalper",
        [
            Gene("moving_average_buy_short_period", *r["ma_short"]),
            Gene("moving_average_buy_long_period", *r["ma_long"]),
            Gene("moving_average_sell_short_period", *r["ma_short"]),
            Gene("moving_average_sell_long_period", *r["ma_long"]),
            Gene("rsi_period", *r["rsi_period"]),
            Gene("rsi_buy_threshold", *r["rsi_buy"]),
            Gene("rsi_sell_threshold", *r["rsi_sell"]),
            Gene("loss_percent", *r["loss"]),
            Gene("profit_percent", *r["profit"]),
            Gene("high_volatility_threshold", 1, 10),
        ],
        _DEFAULTS,
        _fixed_warmup(300),
    )


def multi_strategy_codec(symbol: Optional[str] = None) -> ParameterCodec:
    """Every indicator family at once, shared by all strategies (29 genes)."""
    return ParameterCodec(
        "multi_strategy",
        [
            Gene("moving_average_buy_short_period", 5, 50),
            Gene("moving_average_buy_long_period", 20, 200),
            Gene("moving_average_sell_short_period", 5, 50),
            Gene("moving_average_sell_long_period", 20, 200),
            Gene("rsi_period", 7, 30),
            Gene("rsi_buy_threshold", 15, 35, kind="float"),
            Gene("rsi_sell_threshold", 65, 85, kind="float"),
            Gene("macd_fast_period", 8, 20),
            Gene("macd_slow_period", 20, 40),
            Gene("macd_signal_period", 7, 18),
            Gene("volume_period", 10, 30),
            Gene("above_average_threshold", 1.0, 3.0, kind="float"),
            Gene("loss_percent", 1, 10, kind="float"),
            Gene("profit_percent", 2, 20, kind="float"),
            Gene("adx_period", 7, 30),
            Gene("adx_bullish_threshold", 15, 30),
            Gene("adx_bearish_threshold", 15, 30),
            Gene("volatility_period", 7, 30),
            Gene("contraction_threshold", 0.01, 0.1, kind="float"),
            Gene("low_volatility_threshold", 0.01, 0.1, kind="float"),
            Gene("high_volatility_threshold", 0.1, 0.5, kind="float"),
            Gene("mfi_period", 7, 30),
            Gene("mfi_overbought_threshold", 70, 90),
            Gene("mfi_oversold_threshold", 10, 30),
            Gene("atr_period", 7, 30),
            Gene("atr_threshold", 1, 10),
            Gene("lookback_period", 10, 100),
            Gene("support_resistance_period", 20, 200),
            Gene("support_resistance_threshold", 0.01, 0.05, kind="float"),
        ],
        StrategyParameters(),
        _multi_strategy_warmup,
    )


CODECS: dict[str, Callable[[Optional[str]], ParameterCodec]] = {
    "default": default_codec,
    "buy_low_sell_high": buy_low_sell_high_codec,
    "moving_average_scalper": scalper_codec,
    "multi_strategy": multi_strategy_codec,
}

# Strategies whose signals read fields outside the "default" genes
STRATEGY_CODECS = {
    "buy_low_sell_high": "buy_low_sell_high",
    "moving_average_scalper": "moving_average_scalper",
    "multi_index_momentum": "multi_strategy",
    "support_resistance_consolidation": "multi_strategy",
}


def get_codec(name: str, symbol: Optional[str] = None) -> ParameterCodec:
    """
    Build a registered codec.

    Raises:
        ConfigurationError: If no codec is registered under `name`
    """
    try:
        factory = CODECS[name]
    except KeyError:
        raise ConfigurationError(f"Unknown codec '{name}', available: {sorted(CODECS)}") from None
    return factory(symbol)


def codec_for_strategy(strategy_name: str, symbol: Optional[str] = None) -> ParameterCodec:
    return get_codec(STRATEGY_CODECS.get(strategy_name, "default"), symbol)
