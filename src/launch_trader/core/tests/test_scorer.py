"""
Tests for window scoring.

These tests verify:
- The composite score formula on a concrete case
- Each hard gate independently blocks a buy
- Both concentration policies (upper bound only, and range)
"""
import pytest

from launch_trader.core.scorer import ScoreConfig, Scorer, WindowMetrics


def metrics(buys=12, sells=0, unique=10, ratio=5.0, whale=0.10, liquidity=30.0):
    return WindowMetrics(
        buys=buys,
        sells=sells,
        unique_buyers=unique,
        ratio=ratio,
        whale_share=whale,
        liquidity=liquidity,
    )


@pytest.fixture
def scorer():
    return Scorer(ScoreConfig(
        min_buys=12,
        min_unique_buyers=10,
        min_buy_sell_ratio=4.0,
        min_liquidity=1.0,
        max_liquidity=80.0,
        max_whale_share=0.35,
        min_score=0.75,
    ))


class TestCompositeScore:
    """Tests for the weighted score."""

    def test_concrete_case(self, scorer):
        result = scorer.evaluate(metrics())

        expected = 0.25 + 0.25 + 0.20 + 0.20 * (1 - 0.10 / 0.35) + 0.10
        assert result.score == pytest.approx(expected)
        assert result.score == pytest.approx(0.9429, abs=1e-4)
        assert result.gates_passed
        assert result.should_buy

    def test_components_are_capped(self, scorer):
        result = scorer.evaluate(metrics(buys=100, unique=80, ratio=50.0, whale=0.0))

        assert result.score == pytest.approx(1.0)

    def test_liquidity_out_of_range_drops_its_weight(self, scorer):
        in_range = scorer.evaluate(metrics()).score
        out_of_range = scorer.evaluate(metrics(liquidity=120.0)).score

        assert in_range - out_of_range == pytest.approx(0.10)

    def test_gates_pass_but_score_too_low(self):
        scorer = Scorer(ScoreConfig(max_whale_share=0.35, min_score=0.95))

        result = scorer.evaluate(metrics(whale=0.30))

        assert result.gates_passed
        assert not result.score_ok
        assert not result.should_buy


class TestHardGates:
    """Each gate blocks the buy on its own."""

    @pytest.mark.parametrize("overrides,gate", [
        ({"buys": 11}, "buys"),
        ({"unique": 9}, "unique"),
        ({"ratio": 3.9}, "ratio"),
        ({"liquidity": 0.5}, "liquidity"),
        ({"liquidity": 80.5}, "liquidity"),
        ({"whale": 0.36}, "whale"),
    ])
    def test_failed_gate_blocks_buy(self, scorer, overrides, gate):
        result = scorer.evaluate(metrics(**overrides))

        assert not result.gates_passed
        assert not result.should_buy
        assert any(reason.startswith(gate) for reason in result.failed_gates)

    def test_liquidity_bounds_are_inclusive(self, scorer):
        assert scorer.evaluate(metrics(liquidity=1.0)).liquidity_ok
        assert scorer.evaluate(metrics(liquidity=80.0)).liquidity_ok

    def test_minimum_concentration_policy(self):
        scorer = Scorer(ScoreConfig(min_whale_share=0.15, max_whale_share=0.35))

        assert not scorer.evaluate(metrics(whale=0.10)).whale_ok
        assert scorer.evaluate(metrics(whale=0.20)).whale_ok
        assert not scorer.evaluate(metrics(whale=0.40)).whale_ok


class TestConfigValidation:
    """Tests for ScoreConfig.validate()."""

    def test_default_config_is_valid(self):
        assert ScoreConfig().validate() == []

    def test_rejects_inverted_liquidity_bounds(self):
        with pytest.raises(ValueError):
            Scorer(ScoreConfig(min_liquidity=90.0, max_liquidity=80.0))

    def test_rejects_zero_thresholds(self):
        problems = ScoreConfig(min_buys=0, min_buy_sell_ratio=0).validate()

        assert len(problems) == 2
