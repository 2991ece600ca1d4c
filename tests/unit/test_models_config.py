"""
Tests for the data model and settings loading.
"""

from pathlib import Path

import pytest

from cryptolab.config import (
    GeneticConfig,
    Settings,
    load_settings,
    settings_from_dict,
)
from cryptolab.errors import ConfigurationError, DataError
from cryptolab.models import EvaluationContext, StrategyParameters, normalize_bars

CONFIG_PATH = Path(__file__).resolve().parents[2] / "config" / "settings.yaml"


class TestStrategyParameters:
    """Parameter validation and rescaling."""

    def test_non_positive_period_rejected(self):
        with pytest.raises(ConfigurationError):
            StrategyParameters(rsi_period=0)

    def test_negative_warm_up_rejected(self):
        with pytest.raises(ConfigurationError):
            StrategyParameters(minimum_candles=-1)

    def test_scaled_to_quarter_hour(self):
        params = StrategyParameters().scaled_to_period(15)

        assert params.rsi_period == 56
        assert params.minimum_candles == 104
        assert params.rsi_buy_threshold == 30.0
        assert params.loss_percent == 5.0

    @pytest.mark.parametrize("period", [60, 240, 45, 7])
    def test_periods_that_do_not_divide_an_hour_are_unchanged(self, period):
        params = StrategyParameters()

        assert params.scaled_to_period(period) == params

    def test_dict_round_trip_coerces_types(self):
        params = StrategyParameters.from_dict({"rsi_period": "10", "loss_percent": 3})

        assert params.rsi_period == 10
        assert params.loss_percent == 3.0
        assert isinstance(params.loss_percent, float)
        assert StrategyParameters.from_dict(params.to_dict()) == params

    def test_unknown_fields_rejected(self):
        with pytest.raises(ConfigurationError):
            StrategyParameters.from_dict({"rsi_length": 10})

    def test_max_period(self):
        assert StrategyParameters().max_period() == 50


class TestEvaluationContext:
    """Read-only simulation input."""

    def test_metadata_is_read_only(self, make_context):
        context = make_context([1.0, 2.0], metadata={"regime_type": "CALM_RANGING"})

        with pytest.raises(TypeError):
            context.metadata["regime_type"] = "VOLATILE_UPTREND"

    def test_period_must_be_positive(self, bar_factory):
        with pytest.raises(ConfigurationError):
            EvaluationContext(symbol="XBTUSD", period=0, bars=bar_factory([1.0]))

    def test_with_bars_keeps_period(self, make_context, bar_factory):
        context = make_context([1.0, 2.0, 3.0], period=15, metadata={"a": 1})

        derived = context.with_bars(bar_factory([4.0]), symbol="ETHUSD")

        assert derived.period == 15
        assert derived.symbol == "ETHUSD"
        assert derived.metadata["a"] == 1
        assert len(derived) == 1


class TestNormalizeBars:
    """Bar frame validation."""

    def test_missing_column(self, bar_factory):
        with pytest.raises(DataError):
            normalize_bars(bar_factory([1.0, 2.0]).drop(columns=["volume"]))

    def test_sorts_and_resets_index(self, bar_factory):
        shuffled = bar_factory([1.0, 2.0, 3.0]).iloc[[2, 0, 1]]

        bars = normalize_bars(shuffled)

        assert bars["close"].tolist() == [1.0, 2.0, 3.0]
        assert bars.index.tolist() == [0, 1, 2]


class TestSettings:
    """YAML settings."""

    def test_missing_file_gives_defaults(self, temp_dir):
        assert load_settings(str(temp_dir / "missing.yaml")) == Settings()

    def test_shipped_settings_load(self):
        settings = load_settings(str(CONFIG_PATH))

        assert settings.symbols == ("XBTUSD", "ETHUSD")
        assert settings.strategy == "multi_strategy"
        assert settings.genetic.max_workers == 4
        assert settings.walk_forward.train_fraction == 0.7
        assert settings.regime == {}

    def test_env_vars_expand(self, temp_dir, monkeypatch):
        monkeypatch.setenv("CRYPTOLAB_DATA_DIR", "/srv/candles")
        path = temp_dir / "settings.yaml"
        path.write_text(
            "data_dir: \"${CRYPTOLAB_DATA_DIR}\"\nlog_level: \"${UNSET_LEVEL_VAR}\"\n"
        )

        settings = load_settings(str(path))

        assert settings.data_dir == "/srv/candles"
        assert settings.log_level == "${UNSET_LEVEL_VAR}"

    def test_invalid_yaml(self, temp_dir):
        path = temp_dir / "settings.yaml"
        path.write_text("symbols: [XBTUSD, ETHUSD\n")

        with pytest.raises(ConfigurationError):
            load_settings(str(path))

    def test_top_level_must_be_mapping(self, temp_dir):
        path = temp_dir / "settings.yaml"
        path.write_text("- XBTUSD\n")

        with pytest.raises(ConfigurationError):
            load_settings(str(path))

    def test_comma_separated_symbols(self):
        settings = settings_from_dict({"symbols": "XBTUSD, ETHUSD", "period": "15"})

        assert settings.symbols == ("XBTUSD", "ETHUSD")
        assert settings.period == 15

    def test_sections_build_configs(self):
        settings = settings_from_dict({"genetic": {"population_size": 10, "seed": 3}})

        assert settings.genetic == GeneticConfig(population_size=10, seed=3)

    @pytest.mark.parametrize(
        "raw",
        [
            {"symbol": "XBTUSD"},
            {"genetic": {"population": 10}},
            {"genetic": {"population_size": 1}},
            {"backtest": ["initial_capital"]},
            {"regime": "strict"},
        ],
    )
    def test_invalid_settings(self, raw):
        with pytest.raises(ConfigurationError):
            settings_from_dict(raw)

    def test_to_dict_nests_sections(self):
        assert Settings().to_dict()["genetic"]["population_size"] == 50
