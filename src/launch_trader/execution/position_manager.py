"""
Position Manager - owns open positions and runs the exit state machine.

Lifecycle of a position:

    OPENING  buy submitted, confirmation pending
    OPEN     buy confirmed; quantity known, or pending the first fill
    EXITING  sell submitted
    CLOSED   sell confirmed; the position is removed

Exit rules are evaluated on every price tick in fixed priority order, and
at most one exit is signalled per tick:

    1. Take-profit     value >= entry * (1 + take_profit_pct)
    2. Trailing-stop   only after take-profit was seen; value <= peak * (1 - trail_pct)
    3. Stop-loss       optional; value <= entry * (1 - stop_loss_pct)
    4. Time-to-live    held >= max_hold_seconds and value < entry * (1 + min_ttl_profit_pct)

All bookkeeping here is synchronous; the engine performs the actual sells.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Deque, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

Number = Union[Decimal, float, int, str]


def _dec(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class PositionState(str, Enum):
    """Position lifecycle states."""
    OPENING = "opening"
    OPEN = "open"
    EXITING = "exiting"
    CLOSED = "closed"


class ExitReason(str, Enum):
    """Why a position was exited."""
    TAKE_PROFIT = "take_profit"
    TRAILING_STOP = "trailing_stop"
    STOP_LOSS = "stop_loss"
    TIME_TO_LIVE = "time_to_live"


@dataclass
class ExitConfig:
    """Configuration for exit rules. Percentages are fractions (0.5 = 50%)."""

    take_profit_pct: Decimal = Decimal("0.50")
    trail_pct: Optional[Decimal] = None  # None disables the trailing stop
    stop_loss_pct: Optional[Decimal] = None  # None disables the stop-loss
    max_hold_seconds: Optional[float] = 420.0  # None disables the TTL exit
    min_ttl_profit_pct: Decimal = Decimal("0.05")

    # Used to estimate quantity when the venue reports no fills
    assumed_fee_fraction: Decimal = Decimal("0.01")

    def validate(self) -> List[str]:
        problems = []
        if self.take_profit_pct <= 0:
            problems.append("take_profit_pct must be positive")
        if self.trail_pct is not None and not (0 < self.trail_pct < 1):
            problems.append("trail_pct must be between 0 and 1")
        if self.stop_loss_pct is not None and not (0 < self.stop_loss_pct < 1):
            problems.append("stop_loss_pct must be between 0 and 1")
        if self.max_hold_seconds is not None and self.max_hold_seconds <= 0:
            problems.append("max_hold_seconds must be positive")
        if not (0 <= self.assumed_fee_fraction < 1):
            problems.append("assumed_fee_fraction must be in [0, 1)")
        return problems


@dataclass
class Position:
    """A position in one asset."""

    asset: str
    state: PositionState = PositionState.OPENING
    entry_cost: Decimal = Decimal("0")  # Quote spent, fees included
    token_qty: Decimal = Decimal("0")  # 0 until known
    peak_exit_value: Decimal = Decimal("0")
    take_profit_seen: bool = False
    opened_at: Optional[float] = None
    venue: str = "auto"
    buy_signature: Optional[str] = None
    exit_reason: Optional[ExitReason] = None
    last_exit_value: Optional[Decimal] = None

    # First fill seen before the buy confirmation arrived
    pending_fill_qty: Optional[Decimal] = None

    @property
    def quantity_known(self) -> bool:
        return self.token_qty > 0

    def age(self, now: float) -> float:
        if self.opened_at is None:
            return 0.0
        return max(0.0, now - self.opened_at)


@dataclass(frozen=True)
class ExitRecord:
    """A closed position."""

    asset: str
    reason: Optional[ExitReason]
    entry_cost: Decimal
    exit_value: Optional[Decimal]
    hold_seconds: float
    closed_at: float
    signature: Optional[str] = None

    @property
    def pnl(self) -> Optional[Decimal]:
        if self.exit_value is None:
            return None
        return self.exit_value - self.entry_cost


class PositionManager:
    """
    Tracks positions per asset and decides exits on price ticks.

    Usage:
        manager = PositionManager(ExitConfig(take_profit_pct=Decimal("0.5")))

        manager.begin_opening(asset)
        manager.on_buy_confirmed(asset, spend=Decimal("0.005"), now=now)
        manager.on_fill_observed(asset, Decimal("182000"))

        reason = manager.on_price_tick(asset, price, now)
        if reason:
            ... submit sell ...
            manager.on_sell_confirmed(asset, now)   # or on_sell_failed(asset)
    """

    def __init__(self, config: Optional[ExitConfig] = None, max_history: int = 500) -> None:
        self._config = config or ExitConfig()
        problems = self._config.validate()
        if problems:
            raise ValueError(f"Invalid exit config: {'; '.join(problems)}")
        self._positions: Dict[str, Position] = {}
        self._history: Deque[ExitRecord] = deque(maxlen=max_history)

    @property
    def config(self) -> ExitConfig:
        return self._config

    @property
    def history(self) -> List[ExitRecord]:
        return list(self._history)

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, asset: str) -> bool:
        return asset in self._positions

    def get(self, asset: str) -> Optional[Position]:
        return self._positions.get(asset)

    def open_assets(self) -> List[str]:
        """Assets whose positions are confirmed and not yet closed."""
        return [
            asset
            for asset, position in self._positions.items()
            if position.state in (PositionState.OPEN, PositionState.EXITING)
        ]

    # =========================================================================
    # Opening
    # =========================================================================

    def begin_opening(self, asset: str, venue: str = "auto") -> Optional[Position]:
        """Record that a buy was submitted. Returns None if a position exists."""
        if asset in self._positions:
            logger.warning(f"Position already exists for {asset}, not opening another")
            return None
        position = Position(asset=asset, venue=venue)
        self._positions[asset] = position
        return position

    def on_buy_failed(self, asset: str) -> None:
        position = self._positions.get(asset)
        if position is not None and position.state == PositionState.OPENING:
            del self._positions[asset]
            logger.info(f"Buy failed for {asset}, discarding opening position")

    def on_buy_confirmed(
        self,
        asset: str,
        spend: Number,
        now: float,
        entry_price: Optional[Number] = None,
        signature: Optional[str] = None,
    ) -> Position:
        """
        Move a position to OPEN.

        Args:
            asset: Asset bought
            spend: Quote spent including fees
            now: Confirmation time
            entry_price: When given and no fill is known, the quantity is
                estimated as spend * (1 - fee) / entry_price. Pass it only
                for venues that never report fills.
            signature: Buy confirmation signature
        """
        position = self._positions.get(asset)
        if position is None:
            position = Position(asset=asset)
            self._positions[asset] = position
        elif position.state != PositionState.OPENING:
            logger.warning(f"Buy confirmation for {asset} in state {position.state.value}, ignoring")
            return position

        position.state = PositionState.OPEN
        position.entry_cost = _dec(spend)
        position.token_qty = Decimal("0")
        position.peak_exit_value = Decimal("0")
        position.take_profit_seen = False
        position.opened_at = now
        position.buy_signature = signature

        if position.pending_fill_qty is not None:
            position.token_qty = position.pending_fill_qty
            position.pending_fill_qty = None
        elif entry_price is not None and _dec(entry_price) > 0:
            net_spend = position.entry_cost * (1 - self._config.assumed_fee_fraction)
            position.token_qty = net_spend / _dec(entry_price)

        logger.info(
            f"Position OPEN {asset}: cost={position.entry_cost} qty={position.token_qty}"
        )
        return position

    def on_fill_observed(self, asset: str, qty: Number) -> bool:
        """
        Record the quantity from an own buy fill.

        Only the first nonzero quantity counts; later fills are ignored.

        Returns:
            True if this call set (or buffered) the quantity
        """
        quantity = _dec(qty)
        position = self._positions.get(asset)
        if position is None or quantity <= 0:
            return False

        if position.state == PositionState.OPENING:
            if position.pending_fill_qty is None:
                position.pending_fill_qty = quantity
                return True
            return False

        if position.quantity_known:
            return False

        position.token_qty = quantity
        logger.info(f"Fill observed for {asset}: qty={quantity}")
        return True

    def estimate_quantity(self, asset: str, price: Number) -> bool:
        """
        Estimate the quantity of an open position from a price.

        For venues that never report fills and had no entry price at
        confirmation. No-op once a quantity is known.
        """
        position = self._positions.get(asset)
        price = _dec(price)
        if position is None or position.state != PositionState.OPEN:
            return False
        if position.quantity_known or price <= 0:
            return False
        net_spend = position.entry_cost * (1 - self._config.assumed_fee_fraction)
        position.token_qty = net_spend / price
        logger.info(f"Estimated quantity for {asset}: qty={position.token_qty:.2f}")
        return True

    # =========================================================================
    # Exit evaluation
    # =========================================================================

    def on_price_tick(self, asset: str, price: Number, now: float) -> Optional[ExitReason]:
        """
        Apply a price tick to an open position.

        Returns:
            The exit reason when a sell should be submitted; the position
            is moved to EXITING before returning.
        """
        position = self._positions.get(asset)
        if position is None or position.state != PositionState.OPEN:
            return None

        price = _dec(price)
        if not position.quantity_known or price <= 0:
            return None

        exit_value = price * position.token_qty
        position.last_exit_value = exit_value
        if exit_value > position.peak_exit_value:
            position.peak_exit_value = exit_value

        reason = self.evaluate_exit(position, exit_value, now)
        if reason is None:
            return None

        position.state = PositionState.EXITING
        position.exit_reason = reason
        logger.info(
            f"EXIT {reason.value} {asset}: value={exit_value:.6f} "
            f"entry={position.entry_cost} peak={position.peak_exit_value:.6f} "
            f"age={position.age(now):.0f}s"
        )
        return reason

    def evaluate_exit(
        self,
        position: Position,
        exit_value: Decimal,
        now: float,
    ) -> Optional[ExitReason]:
        """Evaluate the exit rules in priority order."""
        config = self._config
        entry = position.entry_cost

        if exit_value >= entry * (1 + config.take_profit_pct):
            position.take_profit_seen = True
            return ExitReason.TAKE_PROFIT

        if position.take_profit_seen and config.trail_pct is not None:
            if exit_value <= position.peak_exit_value * (1 - config.trail_pct):
                return ExitReason.TRAILING_STOP

        if config.stop_loss_pct is not None:
            if exit_value <= entry * (1 - config.stop_loss_pct):
                return ExitReason.STOP_LOSS

        if config.max_hold_seconds is not None:
            if (
                position.age(now) >= config.max_hold_seconds
                and exit_value < entry * (1 + config.min_ttl_profit_pct)
            ):
                return ExitReason.TIME_TO_LIVE

        return None

    # =========================================================================
    # Closing
    # =========================================================================

    def on_sell_failed(self, asset: str) -> None:
        """Return an exiting position to OPEN so the next tick re-evaluates it."""
        position = self._positions.get(asset)
        if position is not None and position.state == PositionState.EXITING:
            position.state = PositionState.OPEN
            position.exit_reason = None
            logger.warning(f"Sell failed for {asset}, position back to OPEN")

    def on_sell_confirmed(
        self,
        asset: str,
        now: float,
        signature: Optional[str] = None,
    ) -> Optional[ExitRecord]:
        """Close and remove a position."""
        position = self._positions.get(asset)
        if position is None:
            return None
        if position.state == PositionState.OPENING:
            logger.warning(f"Sell confirmation for {asset} before buy confirmation, ignoring")
            return None

        del self._positions[asset]
        position.state = PositionState.CLOSED

        record = ExitRecord(
            asset=asset,
            reason=position.exit_reason,
            entry_cost=position.entry_cost,
            exit_value=position.last_exit_value,
            hold_seconds=position.age(now),
            closed_at=now,
            signature=signature,
        )
        self._history.append(record)
        logger.info(
            f"Position CLOSED {asset}: reason={record.reason.value if record.reason else 'external'} "
            f"pnl={record.pnl} held={record.hold_seconds:.0f}s"
        )
        return record
