"""
Order-flow scoring for observation windows.

A window passes when every hard gate passes AND the composite score
reaches min_score. The composite score is a weighted, normalized
combination of the same signals, used as a confidence filter on top of
the gates:

    score = 0.25 * min(1, buys / min_buys)
          + 0.25 * min(1, unique_buyers / min_unique)
          + 0.20 * min(1, ratio / min_ratio)
          + 0.20 * (1 - min(1, whale_share / max_whale))
          + 0.10 * (1 if liquidity in range else 0)

This is an advisory heuristic, not a trading signal with any guarantee.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from .window_tracker import ObservationWindow

logger = logging.getLogger(__name__)

WEIGHT_BUYS = 0.25
WEIGHT_UNIQUE = 0.25
WEIGHT_RATIO = 0.20
WEIGHT_WHALE = 0.20
WEIGHT_LIQUIDITY = 0.10


@dataclass
class ScoreConfig:
    """Gate thresholds and the minimum composite score."""

    min_buys: int = 12
    min_unique_buyers: int = 10
    min_buy_sell_ratio: float = 4.0
    min_liquidity: float = 1.0
    max_liquidity: float = 80.0
    # None disables the lower concentration bound
    min_whale_share: Optional[float] = None
    max_whale_share: float = 0.35
    min_score: float = 0.75

    def validate(self) -> list[str]:
        """Return a list of configuration problems (empty if valid)."""
        problems = []
        if self.min_buys <= 0:
            problems.append("min_buys must be positive")
        if self.min_unique_buyers <= 0:
            problems.append("min_unique_buyers must be positive")
        if self.min_buy_sell_ratio <= 0:
            problems.append("min_buy_sell_ratio must be positive")
        if self.max_whale_share <= 0:
            problems.append("max_whale_share must be positive")
        if self.min_liquidity > self.max_liquidity:
            problems.append("min_liquidity must not exceed max_liquidity")
        if self.min_whale_share is not None and self.min_whale_share > self.max_whale_share:
            problems.append("min_whale_share must not exceed max_whale_share")
        if not 0 <= self.min_score <= 1:
            problems.append("min_score must be within [0, 1]")
        return problems


@dataclass(frozen=True)
class WindowMetrics:
    """Inputs to the scorer, taken from a closed window."""

    buys: int
    sells: int
    unique_buyers: int
    ratio: float
    whale_share: float
    liquidity: float

    @classmethod
    def from_window(cls, window: ObservationWindow) -> "WindowMetrics":
        return cls(
            buys=window.buy_count,
            sells=window.sell_count,
            unique_buyers=window.unique_buyers,
            ratio=window.buy_sell_ratio,
            whale_share=window.whale_share,
            liquidity=window.last_known_liquidity,
        )


@dataclass(frozen=True)
class ScoreResult:
    """Outcome of scoring one window."""

    buys_ok: bool
    unique_ok: bool
    ratio_ok: bool
    liquidity_ok: bool
    whale_ok: bool
    score: float
    score_ok: bool
    failed_gates: tuple[str, ...] = field(default_factory=tuple)

    @property
    def gates_passed(self) -> bool:
        return self.buys_ok and self.unique_ok and self.ratio_ok and self.liquidity_ok and self.whale_ok

    @property
    def should_buy(self) -> bool:
        """Gates and score both pass. The risk throttle is checked separately."""
        return self.gates_passed and self.score_ok


class Scorer:
    """
    Evaluates window metrics against hard gates and the composite score.

    Usage:
        scorer = Scorer(ScoreConfig(min_buys=12, min_unique_buyers=10))
        result = scorer.evaluate(WindowMetrics.from_window(window))
        if result.should_buy:
            ...
    """

    def __init__(self, config: Optional[ScoreConfig] = None) -> None:
        self._config = config or ScoreConfig()
        problems = self._config.validate()
        if problems:
            raise ValueError(f"Invalid score config: {'; '.join(problems)}")

    @property
    def config(self) -> ScoreConfig:
        return self._config

    def liquidity_in_range(self, liquidity: float) -> bool:
        return self._config.min_liquidity <= liquidity <= self._config.max_liquidity

    def whale_share_ok(self, whale_share: float) -> bool:
        cfg = self._config
        if cfg.min_whale_share is not None:
            return cfg.min_whale_share <= whale_share <= cfg.max_whale_share
        return whale_share <= cfg.max_whale_share

    def composite_score(self, m: WindowMetrics) -> float:
        """Weighted score in [0, 1]."""
        cfg = self._config
        score = (
            WEIGHT_BUYS * min(1.0, m.buys / cfg.min_buys)
            + WEIGHT_UNIQUE * min(1.0, m.unique_buyers / cfg.min_unique_buyers)
            + WEIGHT_RATIO * min(1.0, m.ratio / cfg.min_buy_sell_ratio)
            + WEIGHT_WHALE * (1.0 - min(1.0, m.whale_share / cfg.max_whale_share))
            + WEIGHT_LIQUIDITY * (1.0 if self.liquidity_in_range(m.liquidity) else 0.0)
        )
        return max(0.0, min(1.0, score))

    def evaluate(self, metrics: WindowMetrics) -> ScoreResult:
        """
        Score a window's metrics.

        Args:
            metrics: Aggregates taken from a closed window

        Returns:
            ScoreResult with each gate, the score and the failed gate names
        """
        cfg = self._config
        buys_ok = metrics.buys >= cfg.min_buys
        unique_ok = metrics.unique_buyers >= cfg.min_unique_buyers
        ratio_ok = metrics.ratio >= cfg.min_buy_sell_ratio
        liquidity_ok = self.liquidity_in_range(metrics.liquidity)
        whale_ok = self.whale_share_ok(metrics.whale_share)

        failed = []
        if not buys_ok:
            failed.append(f"buys {metrics.buys} < {cfg.min_buys}")
        if not unique_ok:
            failed.append(f"unique {metrics.unique_buyers} < {cfg.min_unique_buyers}")
        if not ratio_ok:
            failed.append(f"ratio {metrics.ratio:.2f} < {cfg.min_buy_sell_ratio}")
        if not liquidity_ok:
            failed.append(
                f"liquidity {metrics.liquidity:.3f} outside "
                f"[{cfg.min_liquidity}, {cfg.max_liquidity}]"
            )
        if not whale_ok:
            failed.append(f"whale share {metrics.whale_share:.2f}")

        score = self.composite_score(metrics)

        return ScoreResult(
            buys_ok=buys_ok,
            unique_ok=unique_ok,
            ratio_ok=ratio_ok,
            liquidity_ok=liquidity_ok,
            whale_ok=whale_ok,
            score=score,
            score_ok=score >= cfg.min_score,
            failed_gates=tuple(failed),
        )
