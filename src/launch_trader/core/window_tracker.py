"""
Observation windows for newly created assets.

Each new asset gets one window of fixed length during which buy/sell flow
is aggregated. The window is evaluated exactly once, at expiry, and is
removed from tracking at that moment. Assets that were already evaluated
are remembered so a redelivered creation event cannot open a second window.
"""
from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Optional

from launch_trader.ingestion.models import TradeObserved, TradeSide

logger = logging.getLogger(__name__)


@dataclass
class BuyerStats:
    """Aggregated buys of one address inside a window."""

    token_qty: float = 0.0
    estimated_quote_value: float = 0.0


@dataclass
class ObservationWindow:
    """Order-flow aggregates for one asset."""

    asset: str
    start_time: float
    expiry_deadline: float
    buy_count: int = 0
    sell_count: int = 0
    buyers: Dict[str, BuyerStats] = field(default_factory=dict)
    last_known_liquidity: float = 0.0
    last_price: Optional[float] = None

    @property
    def unique_buyers(self) -> int:
        return len(self.buyers)

    @property
    def total_bought_qty(self) -> float:
        return sum(b.token_qty for b in self.buyers.values())

    @property
    def whale_share(self) -> float:
        """Share of bought quantity held by the single largest buyer."""
        total = self.total_bought_qty
        if total <= 0:
            return 0.0
        return max(b.token_qty for b in self.buyers.values()) / total

    @property
    def buy_sell_ratio(self) -> float:
        return self.buy_count / max(1, self.sell_count)

    def is_expired(self, now: float) -> bool:
        return now > self.expiry_deadline


class WindowTracker:
    """
    Maintains at most one live observation window per asset.

    Usage:
        tracker = WindowTracker(window_seconds=20)

        window = tracker.open("mint_abc", now)
        tracker.observe(trade_event, now)

        # At expiry (driven by the scheduler)
        window = tracker.close("mint_abc")
        result = scorer.evaluate(window)
    """

    def __init__(self, window_seconds: float, max_remembered: int = 10_000) -> None:
        """
        Args:
            window_seconds: Length of each observation window
            max_remembered: How many evaluated assets to remember for
                duplicate creation events
        """
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {window_seconds}")
        self._window_seconds = window_seconds
        self._windows: Dict[str, ObservationWindow] = {}
        self._closed: "OrderedDict[str, None]" = OrderedDict()
        self._max_remembered = max_remembered

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    def __contains__(self, asset: str) -> bool:
        return asset in self._windows

    def __len__(self) -> int:
        return len(self._windows)

    def get(self, asset: str) -> Optional[ObservationWindow]:
        return self._windows.get(asset)

    def was_evaluated(self, asset: str) -> bool:
        """Whether this asset already had its window closed in this process."""
        return asset in self._closed

    def open(
        self,
        asset: str,
        now: float,
        liquidity: Optional[float] = None,
        price: Optional[float] = None,
    ) -> Optional[ObservationWindow]:
        """
        Open a window for a newly created asset.

        Returns:
            The new window, or None if a window exists or the asset was
            already evaluated
        """
        if asset in self._windows or asset in self._closed:
            return None

        window = ObservationWindow(
            asset=asset,
            start_time=now,
            expiry_deadline=now + self._window_seconds,
        )
        if liquidity is not None and liquidity > 0:
            window.last_known_liquidity = liquidity
        if price is not None and price > 0:
            window.last_price = price

        self._windows[asset] = window
        logger.debug(f"Window opened for {asset} (expires in {self._window_seconds}s)")
        return window

    def observe(self, event: TradeObserved, now: float) -> bool:
        """
        Fold a trade into the asset's window.

        No-op if there is no window or it has already expired.

        Returns:
            True if the event was aggregated
        """
        window = self._windows.get(event.asset)
        if window is None or window.is_expired(now):
            return False

        price = event.price

        if event.side == TradeSide.BUY:
            window.buy_count += 1
            if event.trader:
                buyer = window.buyers.setdefault(event.trader, BuyerStats())
                qty = event.token_amount or 0.0
                buyer.token_qty += qty
                if price is not None:
                    buyer.estimated_quote_value += qty * price
        else:
            window.sell_count += 1

        if event.quote_reserve is not None and event.quote_reserve > 0:
            window.last_known_liquidity = event.quote_reserve
        if price is not None:
            window.last_price = price

        return True

    def close(self, asset: str) -> Optional[ObservationWindow]:
        """
        Remove and return the window for evaluation.

        Only the first call for an asset returns a window; the asset is
        remembered so it cannot be reopened.
        """
        window = self._windows.pop(asset, None)
        if window is not None:
            self._remember(asset)
        return window

    def discard(self, asset: str) -> bool:
        """Tear a window down without evaluating it."""
        window = self._windows.pop(asset, None)
        if window is None:
            return False
        self._remember(asset)
        return True

    def _remember(self, asset: str) -> None:
        self._closed[asset] = None
        self._closed.move_to_end(asset)
        while len(self._closed) > self._max_remembered:
            self._closed.popitem(last=False)
