"""
BackgroundTasksManager - Manages async background tasks.

Handles periodic tasks like:
- Market snapshot polling for held positions (feeds price ticks)
- Risk throttle period rollover
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, List, Optional

if TYPE_CHECKING:
    from launch_trader.core.engine import TradingEngine
    from launch_trader.ingestion.snapshot_client import MarketSnapshotClient

logger = logging.getLogger(__name__)


@dataclass
class BackgroundTaskConfig:
    """Configuration for background tasks."""

    # Snapshot polling for open positions
    snapshot_poll_interval_seconds: float = 5.0
    snapshot_poll_enabled: bool = True

    # Throttle day rollover
    throttle_roll_interval_seconds: float = 60.0
    throttle_roll_enabled: bool = True


class BackgroundTasksManager:
    """
    Manages background async tasks for the launch trader.

    Loops log and continue on failure. The manager handles graceful
    shutdown.

    Usage:
        manager = BackgroundTasksManager(
            engine=trading_engine,
            snapshot_client=MarketSnapshotClient(),
            config=BackgroundTaskConfig(),
        )
        await manager.start()
        # ... bot runs ...
        await manager.stop()
    """

    def __init__(
        self,
        engine: "TradingEngine",
        snapshot_client: Optional["MarketSnapshotClient"] = None,
        config: Optional[BackgroundTaskConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """
        Initialize the background tasks manager.

        Args:
            engine: TradingEngine whose positions and throttle are maintained
            snapshot_client: Client used to poll prices of held assets
            config: Task configuration
            clock: Epoch-seconds clock (defaults to time.time)
        """
        self._engine = engine
        self._snapshot_client = snapshot_client
        self._config = config or BackgroundTaskConfig()
        self._clock = clock or time.time

        self._running = False
        self._tasks: List[asyncio.Task] = []
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        """Whether the manager is running."""
        return self._running

    async def start(self) -> None:
        """Start all background tasks."""
        if self._running:
            logger.warning("BackgroundTasksManager already running")
            return

        logger.info("Starting background tasks...")
        self._running = True
        self._stop_event.clear()

        if self._config.snapshot_poll_enabled and self._snapshot_client:
            task = asyncio.create_task(
                self._snapshot_poll_loop(),
                name="snapshot_poll",
            )
            self._tasks.append(task)
            logger.info(
                f"Started snapshot poll task "
                f"(interval={self._config.snapshot_poll_interval_seconds}s)"
            )

        if self._config.throttle_roll_enabled:
            task = asyncio.create_task(
                self._throttle_roll_loop(),
                name="throttle_roll",
            )
            self._tasks.append(task)
            logger.info(
                f"Started throttle rollover task "
                f"(interval={self._config.throttle_roll_interval_seconds}s)"
            )

        logger.info(f"Background tasks started: {len(self._tasks)} tasks")

    async def stop(self) -> None:
        """Stop all background tasks gracefully."""
        if not self._running:
            return

        logger.info("Stopping background tasks...")
        self._running = False
        self._stop_event.set()

        for task in self._tasks:
            if not task.done():
                task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        self._tasks.clear()
        logger.info("Background tasks stopped")

    async def _wait_interval(self, interval: float) -> bool:
        """Sleep for `interval` or until stop. Returns False if stopping."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            return False
        except asyncio.TimeoutError:
            return self._running

    async def _snapshot_poll_loop(self) -> None:
        """Periodically poll snapshots of held assets and feed price ticks."""
        interval = self._config.snapshot_poll_interval_seconds

        while self._running:
            try:
                if not await self._wait_interval(interval):
                    break
                await self.poll_positions_once()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in snapshot poll: {e}")
                await asyncio.sleep(1)

    async def poll_positions_once(self) -> int:
        """
        Poll snapshots for all held assets once.

        Returns:
            Number of price ticks delivered
        """
        assets = self._engine.positions.open_assets()
        if not assets or self._snapshot_client is None:
            return 0

        snapshots = await self._snapshot_client.get_snapshots(assets)
        now = self._clock()
        delivered = 0
        for asset, snapshot in snapshots.items():
            self._engine.on_price_tick(asset, snapshot.price_in_quote_asset, now)
            delivered += 1

        if delivered:
            logger.debug(f"Snapshot poll: {delivered}/{len(assets)} prices")
        return delivered

    async def _throttle_roll_loop(self) -> None:
        """Roll the throttle's daily period even on days without buys."""
        interval = self._config.throttle_roll_interval_seconds

        while self._running:
            try:
                if not await self._wait_interval(interval):
                    break
                self._engine.throttle.roll_period(self._clock())

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in throttle rollover: {e}")
                await asyncio.sleep(1)
