"""
Tests for genotype codecs.
"""

import random

import pytest

from cryptolab.errors import ConfigurationError
from cryptolab.models import StrategyParameters
from research.optimization.codec import (
    CODECS,
    Gene,
    ParameterCodec,
    codec_for_strategy,
    get_codec,
    scalper_codec,
)


@pytest.fixture
def small_codec():
    return ParameterCodec(
        "small",
        [
            Gene("rsi_period", 5, 20),
            Gene("rsi_buy_threshold", 20, 40, kind="float"),
            Gene("loss_percent", 10, 50, scale=0.1),
        ],
        StrategyParameters(minimum_candles=0),
        lambda params: params.rsi_period + 1,
    )


class TestGene:
    """Gene bounds and decoding."""

    def test_int_gene_rounds_and_clips(self):
        gene = Gene("rsi_period", 5, 20)

        assert gene.value(7.6) == 8
        assert gene.value(-3) == 5
        assert gene.value(99) == 20

    def test_scaled_gene(self):
        gene = Gene("loss_percent", 15, 50, scale=0.1)

        assert gene.value(25) == pytest.approx(2.5)

    def test_random_allele_within_bounds(self):
        rng = random.Random(0)
        gene = Gene("rsi_buy_threshold", 20, 40, kind="float")

        for _ in range(200):
            assert 20 <= gene.random_allele(rng) <= 40

    def test_invalid_gene(self):
        with pytest.raises(ConfigurationError):
            Gene("rsi_period", 10, 5)
        with pytest.raises(ConfigurationError):
            Gene("rsi_period", 1, 5, kind="bool")


class TestParameterCodec:
    """Decoding genotypes into StrategyParameters."""

    def test_decode_sets_fields_and_derives_warmup(self, small_codec):
        params = small_codec.decode((12, 31.5, 25))

        assert params.rsi_period == 12
        assert isinstance(params.rsi_period, int)
        assert params.rsi_buy_threshold == pytest.approx(31.5)
        assert params.loss_percent == pytest.approx(2.5)
        assert params.minimum_candles == 13
        # Untouched fields keep the codec defaults
        assert params.macd_fast_period == StrategyParameters().macd_fast_period

    def test_decode_clips_out_of_bounds_alleles(self, small_codec):
        params = small_codec.decode((100, 0.0, 1000))

        assert params.rsi_period == 20
        assert params.rsi_buy_threshold == 20.0
        assert params.loss_percent == pytest.approx(5.0)

    def test_decode_is_pure(self, small_codec):
        genotype = (9, 25.0, 30)

        assert small_codec.decode(genotype) == small_codec.decode(genotype)

    def test_decode_wrong_length(self, small_codec):
        with pytest.raises(ConfigurationError):
            small_codec.decode((10, 30.0))

    def test_encode_inverts_decode_for_in_bounds_genotype(self, small_codec):
        genotype = (14, 27.25, 33)

        assert small_codec.encode(small_codec.decode(genotype)) == pytest.approx(genotype)

    def test_unknown_field_rejected(self):
        with pytest.raises(ConfigurationError):
            ParameterCodec("bad", [Gene("not_a_field", 1, 2)], StrategyParameters())

    def test_minimum_candles_is_not_a_gene(self):
        with pytest.raises(ConfigurationError):
            ParameterCodec("bad", [Gene("minimum_candles", 1, 2)], StrategyParameters())


class TestRegistry:
    """Built-in codecs."""

    def test_gene_counts(self):
        assert len(get_codec("default")) == 10
        assert len(get_codec("buy_low_sell_high")) == 17
        assert len(get_codec("moving_average_scalper")) == 10
        assert len(get_codec("multi_strategy")) == 29

    @pytest.mark.parametrize("name", sorted(CODECS))
    def test_random_genotypes_decode_to_valid_parameters(self, name):
        codec = get_codec(name, "XBTUSD")
        rng = random.Random(11)

        for _ in range(25):
            params = codec.decode(codec.random_genotype(rng))
            assert all(getattr(params, f) > 0 for f in params.period_fields())
            assert params.minimum_candles >= 0

    def test_fixed_warmups(self):
        rng = random.Random(3)

        default = get_codec("default")
        assert default.decode(default.random_genotype(rng)).minimum_candles == 300

        multi = get_codec("multi_strategy")
        assert multi.decode(multi.random_genotype(rng)).minimum_candles >= 300

    def test_buy_low_sell_high_warmup_tracks_longest_period(self):
        codec = get_codec("buy_low_sell_high")
        params = codec.decode(codec.random_genotype(random.Random(5)))
        longest = max(
            params.moving_average_buy_long_period,
            params.volume_period,
            params.rsi_period,
            params.atr_period,
            params.macd_slow_period + params.macd_signal_period,
            params.lookback_period,
        )

        assert params.minimum_candles == 3 * longest

    def test_scalper_ranges_are_per_coin(self):
        eth = scalper_codec("ETHUSD")
        other = scalper_codec("UNKNOWN")

        assert eth.genes[7].high == 3
        assert other.genes[7].high == 10

    def test_codec_for_strategy(self):
        assert codec_for_strategy("buy_low_sell_high").name == "buy_low_sell_high"
        assert codec_for_strategy("moving_average_scalper").name == "moving_average_scalper"
        assert codec_for_strategy("multi_index_momentum").name == "multi_strategy"
        assert codec_for_strategy("support_resistance_consolidation").name == "multi_strategy"
        assert codec_for_strategy("rsi_threshold").name == "default"

    def test_unknown_codec(self):
        with pytest.raises(ConfigurationError):
            get_codec("nope")
