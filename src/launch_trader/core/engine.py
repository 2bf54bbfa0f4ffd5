"""
Trading Engine - Main orchestrator for the launch trader.

The engine coordinates all components:
1. Receives typed events from ingestion
2. Opens an observation window per new asset and feeds trades into it
3. Scores each window exactly once, at expiry
4. Checks the risk throttle and submits buys
5. Routes own fills and price ticks to the position manager
6. Submits sells when an exit rule fires

Event handling is synchronous bookkeeping. Every network operation runs as
a tracked task, so a burst of events never waits on a submission.

Critical Gotchas:
    - Redelivered creation events must not open a second window
    - A per-asset "submission in flight" marker is set before the buy task
      is created, so no duplicate buy can start while one is pending
    - Nothing is assumed bought or sold without a confirmation signature
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, Protocol, Set

from launch_trader.execution.balance_manager import BalanceManager, PreSubmitValidationError
from launch_trader.execution.position_manager import ExitReason, PositionManager
from launch_trader.execution.submitter import DryRunSubmitter, TradeRequest
from launch_trader.ingestion.models import AssetCreated, StreamEvent, TradeObserved, TradeSide

from .risk_throttle import RiskThrottle
from .scheduler import WindowScheduler
from .scorer import Scorer, WindowMetrics
from .window_tracker import WindowTracker

logger = logging.getLogger(__name__)


class Submitter(Protocol):
    """What the engine needs from a trade submitter."""

    reports_fills: bool

    async def submit(self, request: TradeRequest) -> Optional[str]: ...


class StreamSubscriber(Protocol):
    """Per-asset trade feed subscriptions (the stream client)."""

    async def subscribe_assets(self, assets: list[str]) -> None: ...

    async def unsubscribe_assets(self, assets: list[str]) -> None: ...


@dataclass
class EngineConfig:
    """Configuration for the trading engine."""

    # Trade sizing
    buy_amount: Decimal = Decimal("0.005")
    slippage_bps: int = 1500
    priority_fee: Decimal = Decimal("0.00005")
    venue_hint: str = "auto"

    # Operator account, used to recognise own fills
    public_key: Optional[str] = None

    # Mode
    dry_run: bool = True  # If True, trades go through DryRunSubmitter

    # Subscribe to each asset's trade feed while it is watched or held
    subscribe_asset_trades: bool = True

    # Shutdown
    drain_timeout: float = 10.0


@dataclass
class EngineStats:
    """Runtime statistics for the engine."""

    events_processed: int = 0
    windows_opened: int = 0
    windows_evaluated: int = 0
    windows_discarded: int = 0
    gate_rejections: int = 0
    score_rejections: int = 0
    throttle_rejections: int = 0
    buys_submitted: int = 0
    buys_confirmed: int = 0
    buys_failed: int = 0
    buys_aborted: int = 0
    sells_submitted: int = 0
    sells_confirmed: int = 0
    sells_failed: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class TradingEngine:
    """
    Main trading engine orchestrator.

    Coordinates the flow: events -> windows -> scorer -> throttle -> submitter
    -> positions -> (price ticks) -> submitter

    Usage:
        engine = TradingEngine(
            config=EngineConfig(dry_run=True),
            window_tracker=WindowTracker(window_seconds=20),
            scorer=Scorer(ScoreConfig()),
            throttle=RiskThrottle(ThrottleConfig(cooldown_seconds=60)),
            position_manager=PositionManager(ExitConfig()),
        )

        await engine.start()

        # Feed events from ingestion (synchronous)
        engine.process_event(event)

        await engine.stop()
    """

    def __init__(
        self,
        config: EngineConfig,
        window_tracker: WindowTracker,
        scorer: Scorer,
        throttle: RiskThrottle,
        position_manager: PositionManager,
        submitter: Optional[Submitter] = None,
        balance_manager: Optional[BalanceManager] = None,
        scheduler: Optional[WindowScheduler] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the trading engine.

        Args:
            config: Engine configuration
            window_tracker: Observation windows
            scorer: Window scorer
            throttle: Global buy throttle
            position_manager: Position lifecycle and exit rules
            submitter: Trade submitter (DryRunSubmitter is used when omitted
                in dry-run mode)
            balance_manager: Optional pre-flight balance check for buys
            scheduler: Window expiry timers
            clock: Returns the current time in epoch seconds
        """
        if submitter is None:
            if not config.dry_run:
                raise ValueError("A live engine requires a trade submitter")
            submitter = DryRunSubmitter()

        self.config = config
        self._windows = window_tracker
        self._scorer = scorer
        self._throttle = throttle
        self._positions = position_manager
        self._submitter = submitter
        self._balance_manager = balance_manager
        self._scheduler = scheduler or WindowScheduler()
        self._clock = clock
        self._stream: Optional[StreamSubscriber] = None

        # State
        self._is_running = False
        self._stats = EngineStats()
        self._in_flight: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        """Whether the engine is currently running."""
        return self._is_running

    @property
    def stats(self) -> EngineStats:
        """Current engine statistics."""
        return self._stats

    @property
    def windows(self) -> WindowTracker:
        return self._windows

    @property
    def positions(self) -> PositionManager:
        return self._positions

    @property
    def throttle(self) -> RiskThrottle:
        return self._throttle

    @property
    def scheduler(self) -> WindowScheduler:
        return self._scheduler

    @property
    def submitter(self) -> Submitter:
        return self._submitter

    @property
    def in_flight(self) -> Set[str]:
        """Assets with a buy submission in flight."""
        return set(self._in_flight)

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def attach_stream(self, stream: Optional[StreamSubscriber]) -> None:
        """Use `stream` for per-asset trade subscriptions."""
        self._stream = stream

    async def start(self) -> None:
        """Start the trading engine."""
        if self._is_running:
            logger.warning("Engine already running")
            return

        logger.info(f"Mode: {'DRY RUN' if self.config.dry_run else 'LIVE'}")
        logger.info(
            f"Buy size={self.config.buy_amount} slippage={self.config.slippage_bps}bps "
            f"priority_fee={self.config.priority_fee} window={self._windows.window_seconds}s"
        )
        self._is_running = True
        logger.info("Trading engine started")

    async def stop(self, drain_timeout: Optional[float] = None) -> None:
        """
        Stop the trading engine.

        Cancels window timers, then waits up to `drain_timeout` seconds for
        in-flight submissions before cancelling whatever is left.
        """
        if not self._is_running and not self._tasks:
            return

        logger.info("Stopping trading engine...")
        self._is_running = False
        self._scheduler.cancel_all()

        timeout = self.config.drain_timeout if drain_timeout is None else drain_timeout
        pending = list(self._tasks)
        if pending:
            logger.info(f"Draining {len(pending)} in-flight tasks (timeout={timeout}s)")
            _, not_done = await asyncio.wait(pending, timeout=timeout)
            for task in not_done:
                task.cancel()
            if not_done:
                logger.warning(f"Cancelled {len(not_done)} tasks that did not finish in time")
                await asyncio.gather(*not_done, return_exceptions=True)

        logger.info("Trading engine stopped")

    # =========================================================================
    # Event handling
    # =========================================================================

    async def handle_stream_event(self, event: StreamEvent) -> None:
        """Stream callback adapter."""
        self.process_event(event)

    def process_event(self, event: StreamEvent, now: Optional[float] = None) -> None:
        """
        Process an incoming event.

        Synchronous: never suspends. Failures are logged and counted.

        Args:
            event: Typed event from ingestion
            now: Event time (defaults to the engine clock)
        """
        if not self._is_running:
            return

        self._stats.events_processed += 1
        if now is None:
            now = self._clock()

        try:
            if isinstance(event, AssetCreated):
                self._on_asset_created(event, now)
            elif isinstance(event, TradeObserved):
                self._on_trade(event, now)
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Error processing event for {getattr(event, 'asset', '?')}: {e}", exc_info=True)

    def _on_asset_created(self, event: AssetCreated, now: float) -> None:
        asset = event.asset
        if self._windows.was_evaluated(asset) or asset in self._positions:
            logger.debug(f"Ignoring repeated creation event for {asset}")
            return

        window = self._windows.open(
            asset,
            now,
            liquidity=event.quote_reserve,
            price=event.price,
        )
        if window is None:
            return

        self._stats.windows_opened += 1
        self._scheduler.schedule(asset, self._windows.window_seconds, self.on_window_expired)
        self._subscribe(asset)
        logger.info(f"Watching {asset} for {self._windows.window_seconds}s")

    def _on_trade(self, event: TradeObserved, now: float) -> None:
        if event.is_own(self.config.public_key):
            self._on_own_trade(event, now)
            return

        self._windows.observe(event, now)

        price = event.price
        if price is not None and event.asset in self._positions:
            self.on_price_tick(event.asset, price, now)

    def _on_own_trade(self, event: TradeObserved, now: float) -> None:
        asset = event.asset
        if event.side == TradeSide.BUY:
            if event.token_amount:
                self._positions.on_fill_observed(asset, Decimal(str(event.token_amount)))
            return

        record = self._positions.on_sell_confirmed(asset, now, signature=event.signature)
        if record is not None:
            logger.info(f"Own sell fill closed {asset}")
            self._unsubscribe(asset)

    # =========================================================================
    # Window evaluation
    # =========================================================================

    def on_window_expired(self, asset: str) -> None:
        """Evaluate a window at its deadline. Runs once per asset."""
        window = self._windows.close(asset)
        if window is None:
            return

        now = self._clock()
        self._stats.windows_evaluated += 1

        metrics = WindowMetrics.from_window(window)
        result = self._scorer.evaluate(metrics)
        logger.info(
            f"Window {asset}: buys={metrics.buys} sells={metrics.sells} "
            f"unique={metrics.unique_buyers} ratio={metrics.ratio:.2f} "
            f"whale={metrics.whale_share:.2f} liq={metrics.liquidity:.3f} "
            f"score={result.score:.4f}"
        )

        if not result.gates_passed:
            self._stats.gate_rejections += 1
            logger.info(f"Skip {asset}: {', '.join(result.failed_gates)}")
            self._unsubscribe(asset)
            return

        if not result.score_ok:
            self._stats.score_rejections += 1
            logger.info(
                f"Skip {asset}: score {result.score:.4f} < {self._scorer.config.min_score}"
            )
            self._unsubscribe(asset)
            return

        if asset in self._in_flight or asset in self._positions:
            logger.info(f"Skip {asset}: buy already in flight or position held")
            return

        if not self._throttle.admit(now):
            self._stats.throttle_rejections += 1
            self._unsubscribe(asset)
            return

        self._start_buy(asset, window.last_price, admitted_at=now)

    def discard_window(self, asset: str) -> bool:
        """Tear a window down early, without evaluation."""
        self._scheduler.cancel(asset)
        discarded = self._windows.discard(asset)
        if discarded:
            self._stats.windows_discarded += 1
            self._unsubscribe(asset)
            logger.info(f"Discarded window for {asset}")
        return discarded

    # =========================================================================
    # Buys
    # =========================================================================

    def _start_buy(self, asset: str, entry_price: Optional[float], admitted_at: float) -> None:
        # Marker is set before any suspension point
        self._in_flight.add(asset)
        self._positions.begin_opening(asset, venue=self.config.venue_hint)
        self._stats.buys_submitted += 1
        logger.info(f"BUY {asset}: {self.config.buy_amount}")
        self._spawn(self._execute_buy(asset, entry_price, admitted_at), name=f"buy:{asset}")

    async def _execute_buy(
        self, asset: str, entry_price: Optional[float], admitted_at: float
    ) -> None:
        try:
            if self._balance_manager is not None:
                try:
                    await self._balance_manager.check_buy(
                        self.config.buy_amount,
                        self.config.priority_fee,
                    )
                except PreSubmitValidationError as e:
                    self._stats.buys_aborted += 1
                    logger.warning(f"Buy aborted for {asset}: {e}")
                    self._throttle.release(admitted_at)
                    self._positions.on_buy_failed(asset)
                    self._unsubscribe(asset)
                    return

            self._throttle.confirm(admitted_at)
            request = TradeRequest.buy(
                asset=asset,
                amount=self.config.buy_amount,
                slippage_bps=self.config.slippage_bps,
                priority_fee=self.config.priority_fee,
                public_key=self.config.public_key,
                venue_hint=self.config.venue_hint,
            )
            signature = await self._submitter.submit(request)

            if signature is None:
                self._stats.buys_failed += 1
                self._positions.on_buy_failed(asset)
                self._unsubscribe(asset)
                return

            self._stats.buys_confirmed += 1
            estimate_price = None if self._submitter.reports_fills else entry_price
            self._positions.on_buy_confirmed(
                asset,
                spend=self.config.buy_amount + self.config.priority_fee,
                now=self._clock(),
                entry_price=estimate_price,
                signature=signature,
            )
        finally:
            self._in_flight.discard(asset)

    # =========================================================================
    # Exits
    # =========================================================================

    def on_price_tick(self, asset: str, price: Any, now: Optional[float] = None) -> Optional[ExitReason]:
        """
        Apply a price tick to a held position, submitting a sell on exit.

        Returns:
            The exit reason if a sell was started
        """
        if now is None:
            now = self._clock()

        if not self._submitter.reports_fills:
            self._positions.estimate_quantity(asset, price)

        reason = self._positions.on_price_tick(asset, price, now)
        if reason is None:
            return None

        self._stats.sells_submitted += 1
        self._spawn(self._execute_sell(asset, reason), name=f"sell:{asset}")
        return reason

    async def _execute_sell(self, asset: str, reason: ExitReason) -> None:
        request = TradeRequest.sell_all(
            asset=asset,
            slippage_bps=self.config.slippage_bps,
            priority_fee=self.config.priority_fee,
            public_key=self.config.public_key,
            venue_hint=self.config.venue_hint,
        )
        signature = await self._submitter.submit(request)

        if signature is None:
            self._stats.sells_failed += 1
            self._positions.on_sell_failed(asset)
            return

        self._stats.sells_confirmed += 1
        self._positions.on_sell_confirmed(asset, self._clock(), signature=signature)
        self._unsubscribe(asset)
        logger.info(f"SELL {asset} ({reason.value}) sig={signature}")

    # =========================================================================
    # Tasks
    # =========================================================================

    def _spawn(self, coro: Awaitable[None], name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._guarded(coro, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guarded(self, coro: Awaitable[None], name: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Task {name} failed: {e}", exc_info=True)

    def _subscribe(self, asset: str) -> None:
        if self._stream is not None and self.config.subscribe_asset_trades:
            self._spawn(self._stream.subscribe_assets([asset]), name=f"subscribe:{asset}")

    def _unsubscribe(self, asset: str) -> None:
        if self._stream is not None and self.config.subscribe_asset_trades:
            self._spawn(self._stream.unsubscribe_assets([asset]), name=f"unsubscribe:{asset}")
