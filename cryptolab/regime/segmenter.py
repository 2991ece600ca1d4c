"""
Market regime segmentation.

Splits a long bar series into contiguous stretches of internally
consistent market behavior so parameters can be optimized and checked
per regime instead of being dominated by one anomalous period.

Two measurements are sampled along the series:
- Volatility: population std / mean of closes over a trailing window, in %
- Trend: regression slope * window length / mean close, in % over the window

Segmentation passes:
1. Coarse: four chronological quarters classified with fixed thresholds
2. Refinement (coarse pass found <= 2 distinct regimes): thresholds from
   the medians of the samples, majority vote per sliding window, a cut
   once a new regime stays dominant for a full window
3. Fallback (fewer than 2 usable segments): plain chronological quarters

Window sizes default to 5-minute candles. RegimeSegmenterConfig.for_period
rescales them for other candle periods. Single-threaded: the refinement
pass carries state from window to window.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional
import structlog

import numpy as np
import pandas as pd

from cryptolab.errors import ConfigurationError
from cryptolab.models import EvaluationContext

logger = structlog.get_logger(__name__)


class RegimeType(Enum):
    """Volatility level x trend direction."""
    VOLATILE_UPTREND = "VOLATILE_UPTREND"
    VOLATILE_DOWNTREND = "VOLATILE_DOWNTREND"
    VOLATILE_RANGING = "VOLATILE_RANGING"
    NORMAL_UPTREND = "NORMAL_UPTREND"
    NORMAL_DOWNTREND = "NORMAL_DOWNTREND"
    NORMAL_RANGING = "NORMAL_RANGING"
    CALM_UPTREND = "CALM_UPTREND"
    CALM_DOWNTREND = "CALM_DOWNTREND"
    CALM_RANGING = "CALM_RANGING"

    @property
    def volatility_label(self) -> str:
        return self.value.split("_")[0]

    @property
    def trend_label(self) -> str:
        return self.value.split("_")[1]

    @classmethod
    def classify(
        cls,
        volatility: float,
        trend: float,
        high_volatility: float,
        low_volatility: float,
        strong_trend: float,
    ) -> "RegimeType":
        """Classify one (volatility, trend) pair against thresholds."""
        if volatility > high_volatility:
            level = "VOLATILE"
        elif volatility < low_volatility:
            level = "CALM"
        else:
            level = "NORMAL"

        if abs(trend) > strong_trend:
            direction = "UPTREND" if trend > 0 else "DOWNTREND"
        else:
            direction = "RANGING"

        return cls(f"{level}_{direction}")


@dataclass(frozen=True)
class RegimeSegment:
    """A contiguous bar range [start_index, end_index] with one regime label."""
    start_index: int
    end_index: int
    regime_type: RegimeType

    @property
    def length(self) -> int:
        return self.end_index - self.start_index + 1

    def to_dict(self) -> dict:
        return {
            "start_index": self.start_index,
            "end_index": self.end_index,
            "regime_type": self.regime_type.value,
            "length": self.length,
        }


# Bar counts below are for 5-minute candles
_NATIVE_PERIOD = 5
_BAR_COUNT_FIELDS = (
    "sample_window",
    "sample_step",
    "refine_window",
    "vote_step",
    "min_regime_length",
    "min_series_length",
    "stats_window",
    "stats_step",
)


@dataclass(frozen=True)
class RegimeSegmenterConfig:
    """
    Segmentation constants.

    Args:
        sample_window: Bars per volatility/trend sample (~1 week)
        sample_step: Bars between samples (~1 day)
        refine_window: Bars per refinement vote window (~10 days)
        vote_step: Bars between votes inside a window (~12 hours)
        min_regime_length: Shortest segment kept (~2 months)
        min_series_length: Shorter series are not segmented
        high_volatility: Coarse threshold for VOLATILE (%)
        low_volatility: Coarse threshold for CALM (%)
        strong_trend: Coarse |trend| threshold for a direction (%)
        high_volatility_multiplier: Refined VOLATILE threshold = median * this
        low_volatility_multiplier: Refined CALM threshold = median * this
        strong_trend_multiplier: Refined trend threshold = |median| * this
        stats_window: Window of the per-segment volatility statistic (~10 days)
        stats_step: Step of the per-segment volatility statistic (~2.5 days)
        quarters: Number of chronological parts in the coarse and fallback passes
    """
    sample_window: int = 2016
    sample_step: int = 288
    refine_window: int = 2880
    vote_step: int = 144
    min_regime_length: int = 17_280
    min_series_length: int = 5000
    high_volatility: float = 2.0
    low_volatility: float = 0.75
    strong_trend: float = 0.15
    high_volatility_multiplier: float = 1.5
    low_volatility_multiplier: float = 0.5
    strong_trend_multiplier: float = 1.3
    stats_window: int = 2880
    stats_step: int = 720
    quarters: int = 4

    def __post_init__(self):
        for name in _BAR_COUNT_FIELDS + ("quarters",):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be positive")

    @classmethod
    def for_period(cls, period_minutes: int, **overrides) -> "RegimeSegmenterConfig":
        """
        Config whose windows span the same wall-clock time on another candle period.

        Explicit overrides are applied after rescaling.
        """
        if period_minutes <= 0:
            raise ConfigurationError(f"period must be positive, got {period_minutes}")

        base = cls()
        factor = _NATIVE_PERIOD / period_minutes
        scaled = {
            name: max(1, int(round(getattr(base, name) * factor)))
            for name in _BAR_COUNT_FIELDS
        }
        unknown = set(overrides) - set(cls.__dataclass_fields__)
        if unknown:
            raise ConfigurationError(f"Unknown regime settings: {sorted(unknown)}")
        scaled.update(overrides)
        return replace(base, **scaled)


class RegimeSegmenter:
    """
    Splits bar series into regime segments.

    Args:
        config: Segmentation constants (defaults assume 5-minute candles)
    """

    def __init__(self, config: Optional[RegimeSegmenterConfig] = None):
        self.config = config or RegimeSegmenterConfig()

        logger.info(
            "regime_segmenter_initialized",
            sample_window=self.config.sample_window,
            min_regime_length=self.config.min_regime_length,
        )

    def segment(self, bars: pd.DataFrame) -> list[RegimeSegment]:
        """
        Partition `bars` into regime segments.

        Returns:
            Ordered, non-overlapping segments each at least min_regime_length
            long; empty when the series cannot be segmented.
        """
        segments, _ = self._segment(bars)
        return segments

    def create_regime_contexts(self, context: EvaluationContext) -> list[EvaluationContext]:
        """
        One evaluation context per regime segment.

        Each context keeps the parent's symbol and period and is tagged with
        the regime label, date range and statistics. When nothing qualifies,
        the whole series comes back as a single untagged context.
        """
        bars = context.bars
        segments, method = self._segment(bars)

        if not segments:
            logger.warning(
                "regime_segmentation_unavailable",
                symbol=context.symbol,
                bars_count=len(bars),
                min_series_length=self.config.min_series_length,
            )
            return [
                context.with_bars(
                    bars,
                    metadata={
                        **context.metadata,
                        "regime_type": "UNSEGMENTED",
                        "segmentation": "none",
                    },
                )
            ]

        contexts = []
        for number, segment in enumerate(segments):
            segment_bars = bars.iloc[segment.start_index:segment.end_index + 1].reset_index(drop=True)
            metadata = {
                **context.metadata,
                "segment_id": f"{context.symbol}_{segment.regime_type.value}_{number}",
                "regime_type": segment.regime_type.value,
                "segmentation": method,
                "start_index": segment.start_index,
                "end_index": segment.end_index,
                "start_date": str(segment_bars["timestamp"].iloc[0]),
                "end_date": str(segment_bars["timestamp"].iloc[-1]),
                "volatility": round(self.average_volatility(segment_bars), 2),
                "avg_price": round(float(segment_bars["close"].mean()), 2),
            }
            contexts.append(context.with_bars(segment_bars, metadata=metadata))

            logger.info(
                "regime_context_created",
                symbol=context.symbol,
                regime=segment.regime_type.value,
                bars_count=segment.length,
                start_date=metadata["start_date"],
                end_date=metadata["end_date"],
            )

        return contexts

    def _segment(self, bars: pd.DataFrame) -> tuple[list[RegimeSegment], str]:
        cfg = self.config
        n = len(bars)
        if n < cfg.min_series_length:
            return [], "none"

        close = bars["close"].to_numpy(dtype=float)
        volatility, trend = self.sample_series(close)

        segments = self._coarse_pass(volatility, trend)
        distinct = {s.regime_type for s in segments}
        method = "quarters"

        if len(distinct) <= 2:
            logger.info("regime_refinement_starting", distinct_regimes=len(distinct))
            segments = self._refinement_pass(volatility, trend)
            method = "refined"

        segments = [s for s in segments if s.length >= cfg.min_regime_length]

        if len(segments) < 2:
            logger.warning("regime_fallback_to_time_segments", regime_segments=len(segments))
            segments = self._time_segments(volatility, trend)
            method = "time"

        logger.info(
            "regime_segmentation_complete",
            method=method,
            segments=[s.to_dict() for s in segments],
        )
        return segments, method

    def sample_series(self, close: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """
        Volatility and trend samples aligned to bar indices.

        The sample computed from closes [i - W, i) is assigned to indices
        [i - S, i) that are >= W. Indices without a sample hold NaN.
        """
        n = len(close)
        window = self.config.sample_window
        step = self.config.sample_step

        volatility = np.full(n, np.nan)
        trend = np.full(n, np.nan)

        for i in range(window, n, step):
            vol, slope = _window_measures(close[i - window:i])
            lo = max(i - step, window)
            volatility[lo:i] = vol
            trend[lo:i] = slope

        return volatility, trend

    def _quarter_bounds(self, n: int) -> list[tuple[int, int]]:
        quarters = self.config.quarters
        size = n // quarters
        bounds = []
        for q in range(quarters):
            start = q * size
            end = n - 1 if q == quarters - 1 else (q + 1) * size - 1
            if start < end:
                bounds.append((start, end))
        return bounds

    def _classify_average(
        self,
        volatility: np.ndarray,
        trend: np.ndarray,
        start: int,
        end: int,
    ) -> Optional[RegimeType]:
        vol = volatility[start:end + 1]
        tr = trend[start:end + 1]
        defined = ~np.isnan(vol) & ~np.isnan(tr)
        if not defined.any():
            return None

        cfg = self.config
        return RegimeType.classify(
            float(vol[defined].mean()),
            float(tr[defined].mean()),
            cfg.high_volatility,
            cfg.low_volatility,
            cfg.strong_trend,
        )

    def _coarse_pass(self, volatility: np.ndarray, trend: np.ndarray) -> list[RegimeSegment]:
        """Quarters classified by their averages; equal neighbors are merged."""
        segments: list[RegimeSegment] = []
        for start, end in self._quarter_bounds(len(volatility)):
            regime = self._classify_average(volatility, trend, start, end)
            if regime is None:
                continue
            if segments and segments[-1].regime_type == regime and segments[-1].end_index == start - 1:
                segments[-1] = RegimeSegment(segments[-1].start_index, end, regime)
            else:
                segments.append(RegimeSegment(start, end, regime))
        return segments

    def _refinement_pass(self, volatility: np.ndarray, trend: np.ndarray) -> list[RegimeSegment]:
        """Sliding-window majority vote with medians as thresholds."""
        cfg = self.config
        n = len(volatility)
        defined = ~np.isnan(volatility) & ~np.isnan(trend)
        if not defined.any():
            return []

        high = float(np.median(volatility[defined])) * cfg.high_volatility_multiplier
        low = float(np.median(volatility[defined])) * cfg.low_volatility_multiplier
        strong = abs(float(np.median(trend[defined]))) * cfg.strong_trend_multiplier

        def classify(index: int) -> RegimeType:
            return RegimeType.classify(volatility[index], trend[index], high, low, strong)

        first = int(np.argmax(defined))
        current = classify(first)
        segment_regime = current
        segment_start = first
        stable = 0
        window = cfg.refine_window

        segments: list[RegimeSegment] = []
        for i in range(first + window, n, window):
            votes: dict[RegimeType, int] = {}
            for j in range(i - window, i, cfg.vote_step):
                if defined[j]:
                    regime = classify(j)
                    votes[regime] = votes.get(regime, 0) + 1

            # Ties go to the regime that was voted first
            dominant = max(votes, key=votes.get) if votes else current

            if dominant != current:
                current = dominant
                stable = 0
            else:
                stable += 1

            if stable == 1 and current != segment_regime:
                boundary = i - window - 1
                if boundary - segment_start + 1 >= cfg.min_regime_length:
                    segments.append(RegimeSegment(segment_start, boundary, segment_regime))
                    segment_start = boundary + 1
                segment_regime = current

        if n - segment_start >= cfg.min_regime_length:
            segments.append(RegimeSegment(segment_start, n - 1, segment_regime))

        return segments

    def _time_segments(self, volatility: np.ndarray, trend: np.ndarray) -> list[RegimeSegment]:
        """Chronological quarters long enough to keep, labeled by their averages."""
        segments = []
        for start, end in self._quarter_bounds(len(volatility)):
            if end - start + 1 < self.config.min_regime_length:
                continue
            regime = self._classify_average(volatility, trend, start, end) or RegimeType.NORMAL_RANGING
            segments.append(RegimeSegment(start, end, regime))
        return segments

    def average_volatility(self, bars: pd.DataFrame) -> float:
        """Mean windowed volatility of a segment, 0 when too short."""
        close = bars["close"].to_numpy(dtype=float)
        n = len(close)
        window = min(self.config.stats_window, n // 3)
        if window < 2 or n <= window:
            return 0.0

        samples = [
            _window_measures(close[i - window:i])[0]
            for i in range(window, n, self.config.stats_step)
        ]
        return float(np.mean(samples)) if samples else 0.0


def _window_measures(close: np.ndarray) -> tuple[float, float]:
    """(volatility %, trend %) of one window of closes."""
    n = len(close)
    mean = float(close.mean())
    if n < 2 or mean == 0.0:
        return 0.0, 0.0

    volatility = float(close.std()) / mean * 100.0

    x = np.arange(n, dtype=float)
    denominator = n * float(np.sum(x * x)) - float(np.sum(x)) ** 2
    slope = (n * float(np.sum(x * close)) - float(np.sum(x)) * float(np.sum(close))) / denominator
    trend = slope * n / mean * 100.0

    return volatility, trend
