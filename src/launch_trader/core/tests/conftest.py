"""
Core layer test fixtures.

The engine is driven with a fake clock and a mocked submitter; nothing in
these tests touches the network.
"""
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from launch_trader.core import (
    EngineConfig,
    RiskThrottle,
    ScoreConfig,
    Scorer,
    ThrottleConfig,
    TradingEngine,
    WindowTracker,
)
from launch_trader.execution import ExitConfig, PositionManager
from launch_trader.ingestion.models import AssetCreated, TradeObserved, TradeSide

OWN_KEY = "OperatorKey"


class FakeClock:
    """Settable epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


def buy(asset, trader, qty=1000.0, quote=30.0, tokens=1_000_000_000.0):
    return TradeObserved(
        asset=asset,
        side=TradeSide.BUY,
        trader=trader,
        token_amount=qty,
        quote_reserve=quote,
        token_reserve=tokens,
    )


def sell(asset, trader, qty=100.0, quote=30.0, tokens=1_000_000_000.0):
    return TradeObserved(
        asset=asset,
        side=TradeSide.SELL,
        trader=trader,
        token_amount=qty,
        quote_reserve=quote,
        token_reserve=tokens,
    )


def created(asset, quote=30.0, tokens=1_000_000_000.0):
    return AssetCreated(asset=asset, creator="Creator", quote_reserve=quote, token_reserve=tokens)


def qualifying_flow(asset):
    """12 buys from 10 distinct addresses, no sells, liquidity in range."""
    traders = [f"buyer{i}" for i in range(10)] + ["buyer0", "buyer1"]
    return [buy(asset, trader) for trader in traders]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mock_submitter():
    """Submitter that confirms every trade."""
    submitter = AsyncMock()
    submitter.reports_fills = True
    submitter.submit = AsyncMock(side_effect=lambda request: f"sig_{request.action.value}_{request.asset}")
    return submitter


@pytest.fixture
def engine_factory(clock, mock_submitter):
    """Build an engine with sensible test defaults."""

    def build(
        submitter=None,
        window_seconds=20.0,
        cooldown_seconds=60.0,
        max_buys_per_day=None,
        exit_config=None,
        balance_manager=None,
    ):
        return TradingEngine(
            config=EngineConfig(
                buy_amount=Decimal("0.005"),
                slippage_bps=1500,
                priority_fee=Decimal("0.0001"),
                public_key=OWN_KEY,
                dry_run=False,
            ),
            window_tracker=WindowTracker(window_seconds),
            scorer=Scorer(ScoreConfig()),
            throttle=RiskThrottle(
                ThrottleConfig(cooldown_seconds=cooldown_seconds, max_buys_per_day=max_buys_per_day)
            ),
            position_manager=PositionManager(
                exit_config or ExitConfig(take_profit_pct=Decimal("0.5"), trail_pct=Decimal("0.12"))
            ),
            submitter=submitter or mock_submitter,
            balance_manager=balance_manager,
            clock=clock,
        )

    return build


@pytest.fixture
def flow():
    """Event builders: flow.buy, flow.sell, flow.created, flow.qualifying."""
    return SimpleNamespace(buy=buy, sell=sell, created=created, qualifying=qualifying_flow)
