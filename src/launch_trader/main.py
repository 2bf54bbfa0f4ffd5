"""
Launch Trader - Main Entry Point

Usage:
    python -m launch_trader.main [--dry-run] [--mode live|delegated] [--log-level LEVEL]

Configuration:
    The bot reads configuration from:
    1. A .env file in the working directory (if present)
    2. Environment variables
    3. Command line arguments

Environment Variables:
    RPC_URL               Solana RPC endpoint (default: mainnet-beta)
    PUBLIC_KEY            Operator wallet address (own fills are matched on it)
    WALLET_PRIVATE_KEY    Base58 secret key (self-signed mode only)
    USE_LIGHTNING         "true" selects the delegated mode (default: false)
    PP_API_KEY            Execution API key (delegated mode only)
    TRADE_URL             Comma-separated execution endpoint override
    WS_URL                Launch stream URL
    SNAPSHOT_URL          Market snapshot API base URL
    DRY_RUN               "true" for paper trading (default: true)
    BUY_SOL               Buy size in SOL (default: 0.005)
    SLIPPAGE              Slippage tolerance in percent (default: 15)
    PRIORITY_FEE          Priority fee in SOL (default: 0)
    TAKE_PROFIT_PCT       Take-profit in percent (default: 50)
    STOP_LOSS_PCT         Stop-loss in percent (default: disabled)
    TRAIL_PCT             Trailing stop in percent (default: disabled)
    WINDOW_SECONDS        Observation window length (default: 20)
    MIN_BUYS              Minimum buys in a window (default: 12)
    MIN_UNIQUE_BUYERS     Minimum distinct buyers (default: 10)
    MIN_BUY_SELL_RATIO    Minimum buys / max(1, sells) (default: 4)
    MIN_LIQUIDITY_SOL     Minimum quote reserve (default: 1)
    MAX_LIQUIDITY_SOL     Maximum quote reserve (default: 80)
    MIN_WHALE_SHARE       Minimum largest-buyer share, 0-1 (default: disabled)
    MAX_WHALE_SHARE       Maximum largest-buyer share, 0-1 (default: 0.35)
    MIN_SCORE             Minimum composite score, 0-1 (default: 0.75)
    COOLDOWN_SECONDS      Minimum seconds between buys (default: 60)
    MAX_BUYS_PER_DAY      Daily buy cap (default: unlimited)
    MAX_HOLD_SECONDS      Hold time before the TTL exit (default: 420)
    MIN_TTL_PROFIT_PCT    Profit in percent that avoids the TTL exit (default: 5)
    FEE_FRACTION          Fee fraction for quantity estimates (default: 0.01)
    SNAPSHOT_POLL_SECONDS Price polling interval for positions (default: 5)
    LOG_LEVEL             Logging level (DEBUG/INFO/WARNING/ERROR)

Live Mode Requirements:
    live (self-signed): PUBLIC_KEY and WALLET_PRIVATE_KEY
    delegated:          PUBLIC_KEY and PP_API_KEY
    The bot refuses to start if any requirement is missing.
"""

from __future__ import annotations

import argparse
import asyncio
import atexit
import fcntl
import logging
import os
import signal
import sys
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Generator, List, Optional

from launch_trader.core.scorer import ScoreConfig
from launch_trader.execution.position_manager import ExitConfig

# Configure logging before imports
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# Default PID file location
DEFAULT_PID_FILE = "/tmp/launch-trader.pid"

SELF_SIGNED_ENDPOINTS = [
    "https://pumpportal.fun/api/trade-local",
    "https://www.pumpportal.fun/api/trade-local",
]
DELEGATED_ENDPOINTS = ["https://pumpportal.fun/api/trade"]

MODES = ("live", "delegated")


class SingletonBotError(Exception):
    """Raised when another bot instance is already running."""
    pass


@contextmanager
def singleton_lock(pid_file: str = DEFAULT_PID_FILE) -> Generator[None, None, None]:
    """
    Context manager that ensures only one bot instance trades a wallet.

    Uses file locking (fcntl.LOCK_EX | fcntl.LOCK_NB) to prevent multiple instances.

    Args:
        pid_file: Path to the PID file

    Raises:
        SingletonBotError: If another instance is already running
    """
    pid_path = Path(pid_file)

    # Read existing PID before opening
    existing_pid = None
    try:
        existing_pid = pid_path.read_text().strip()
    except FileNotFoundError:
        pass

    fp = open(pid_path, "a+")

    try:
        fcntl.flock(fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        fp.close()
        if existing_pid:
            raise SingletonBotError(
                f"Another bot instance is already running (PID: {existing_pid}). "
                f"Kill it with: kill {existing_pid}"
            )
        raise SingletonBotError(
            "Another bot instance is already running. "
            "Check for existing processes: ps aux | grep launch_trader"
        )

    # We have the lock - now truncate and write our PID
    fp.seek(0)
    fp.truncate()
    fp.write(str(os.getpid()))
    fp.flush()

    def cleanup():
        try:
            fcntl.flock(fp.fileno(), fcntl.LOCK_UN)
            fp.close()
            pid_path.unlink(missing_ok=True)
        except OSError:
            pass

    atexit.register(cleanup)

    try:
        logger.info(f"Acquired singleton lock (PID: {os.getpid()}, file: {pid_file})")
        yield
    finally:
        cleanup()
        atexit.unregister(cleanup)


# =============================================================================
# Configuration
# =============================================================================


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() == "true"


def _env_optional(name: str) -> Optional[str]:
    value = os.environ.get(name, "").strip()
    return value or None


def _env_percent(name: str, default: Optional[str]) -> Optional[Decimal]:
    """Read a percentage and return it as a fraction (50 -> 0.5)."""
    raw = _env_optional(name) or default
    if raw is None:
        return None
    return Decimal(raw) / 100


@dataclass
class BotConfig:
    """Complete bot configuration."""

    # Wallet and RPC
    rpc_url: str = "https://api.mainnet-beta.solana.com"
    public_key: Optional[str] = None
    private_key: Optional[str] = None

    # Execution
    mode: str = "live"  # "live" (self-signed) or "delegated"
    api_key: Optional[str] = None
    trade_urls: List[str] = field(default_factory=list)

    # Ingestion
    websocket_url: str = "wss://pumpportal.fun/api/data"
    snapshot_url: str = "https://api.dexscreener.com"
    snapshot_poll_seconds: float = 5.0

    # Trading parameters
    dry_run: bool = True
    buy_amount: Decimal = Decimal("0.005")
    slippage_pct: Decimal = Decimal("15")
    priority_fee: Decimal = Decimal("0")

    # Exits (fractions)
    take_profit_pct: Decimal = Decimal("0.50")
    stop_loss_pct: Optional[Decimal] = None
    trail_pct: Optional[Decimal] = None
    max_hold_seconds: float = 420.0
    min_ttl_profit_pct: Decimal = Decimal("0.05")
    fee_fraction: Decimal = Decimal("0.01")

    # Observation and scoring
    window_seconds: float = 20.0
    min_buys: int = 12
    min_unique_buyers: int = 10
    min_buy_sell_ratio: float = 4.0
    min_liquidity: float = 1.0
    max_liquidity: float = 80.0
    min_whale_share: Optional[float] = None
    max_whale_share: float = 0.35
    min_score: float = 0.75

    # Risk throttle
    cooldown_seconds: float = 60.0
    max_buys_per_day: Optional[int] = None

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "BotConfig":
        """Load configuration from environment variables."""
        min_whale = _env_optional("MIN_WHALE_SHARE")
        max_buys_per_day = _env_optional("MAX_BUYS_PER_DAY")
        trade_urls = [u.strip() for u in os.environ.get("TRADE_URL", "").split(",") if u.strip()]

        return cls(
            rpc_url=os.environ.get("RPC_URL", "https://api.mainnet-beta.solana.com"),
            public_key=_env_optional("PUBLIC_KEY"),
            private_key=_env_optional("WALLET_PRIVATE_KEY"),
            mode="delegated" if _env_bool("USE_LIGHTNING") else "live",
            api_key=_env_optional("PP_API_KEY"),
            trade_urls=trade_urls,
            websocket_url=os.environ.get("WS_URL", "wss://pumpportal.fun/api/data"),
            snapshot_url=os.environ.get("SNAPSHOT_URL", "https://api.dexscreener.com"),
            snapshot_poll_seconds=float(os.environ.get("SNAPSHOT_POLL_SECONDS", "5")),
            dry_run=_env_bool("DRY_RUN", "true"),
            buy_amount=Decimal(os.environ.get("BUY_SOL", "0.005")),
            slippage_pct=Decimal(os.environ.get("SLIPPAGE", "15")),
            priority_fee=Decimal(os.environ.get("PRIORITY_FEE", "0")),
            take_profit_pct=_env_percent("TAKE_PROFIT_PCT", "50"),
            stop_loss_pct=_env_percent("STOP_LOSS_PCT", None),
            trail_pct=_env_percent("TRAIL_PCT", None),
            max_hold_seconds=float(os.environ.get("MAX_HOLD_SECONDS", "420")),
            min_ttl_profit_pct=_env_percent("MIN_TTL_PROFIT_PCT", "5"),
            fee_fraction=Decimal(os.environ.get("FEE_FRACTION", "0.01")),
            window_seconds=float(os.environ.get("WINDOW_SECONDS", "20")),
            min_buys=int(os.environ.get("MIN_BUYS", "12")),
            min_unique_buyers=int(os.environ.get("MIN_UNIQUE_BUYERS", "10")),
            min_buy_sell_ratio=float(os.environ.get("MIN_BUY_SELL_RATIO", "4")),
            min_liquidity=float(os.environ.get("MIN_LIQUIDITY_SOL", "1")),
            max_liquidity=float(os.environ.get("MAX_LIQUIDITY_SOL", "80")),
            min_whale_share=float(min_whale) if min_whale else None,
            max_whale_share=float(os.environ.get("MAX_WHALE_SHARE", "0.35")),
            min_score=float(os.environ.get("MIN_SCORE", "0.75")),
            cooldown_seconds=float(os.environ.get("COOLDOWN_SECONDS", "60")),
            max_buys_per_day=int(max_buys_per_day) if max_buys_per_day else None,
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )

    @property
    def slippage_bps(self) -> int:
        return int(self.slippage_pct * 100)

    @property
    def endpoints(self) -> List[str]:
        if self.trade_urls:
            return list(self.trade_urls)
        return list(DELEGATED_ENDPOINTS if self.mode == "delegated" else SELF_SIGNED_ENDPOINTS)

    def score_config(self) -> ScoreConfig:
        return ScoreConfig(
            min_buys=self.min_buys,
            min_unique_buyers=self.min_unique_buyers,
            min_buy_sell_ratio=self.min_buy_sell_ratio,
            min_liquidity=self.min_liquidity,
            max_liquidity=self.max_liquidity,
            min_whale_share=self.min_whale_share,
            max_whale_share=self.max_whale_share,
            min_score=self.min_score,
        )

    def exit_config(self) -> ExitConfig:
        return ExitConfig(
            take_profit_pct=self.take_profit_pct,
            trail_pct=self.trail_pct,
            stop_loss_pct=self.stop_loss_pct,
            max_hold_seconds=self.max_hold_seconds,
            min_ttl_profit_pct=self.min_ttl_profit_pct,
            assumed_fee_fraction=self.fee_fraction,
        )

    def validate(self) -> List[str]:
        """Return a list of configuration problems (empty if valid)."""
        problems = []

        if self.mode not in MODES:
            problems.append(f"Unknown mode '{self.mode}' (expected one of {', '.join(MODES)})")

        if not self.dry_run:
            if not self.public_key:
                problems.append("PUBLIC_KEY is required for live trading")
            if self.mode == "live" and not self.private_key:
                problems.append("WALLET_PRIVATE_KEY is required in self-signed mode")
            if self.mode == "delegated" and not self.api_key:
                problems.append("PP_API_KEY is required in delegated mode")

        if self.buy_amount <= 0:
            problems.append("BUY_SOL must be positive")
        if self.slippage_pct <= 0:
            problems.append("SLIPPAGE must be positive")
        if self.priority_fee < 0:
            problems.append("PRIORITY_FEE must not be negative")
        if self.window_seconds <= 0:
            problems.append("WINDOW_SECONDS must be positive")
        if self.cooldown_seconds < 0:
            problems.append("COOLDOWN_SECONDS must not be negative")
        if self.max_buys_per_day is not None and self.max_buys_per_day <= 0:
            problems.append("MAX_BUYS_PER_DAY must be positive")
        if self.snapshot_poll_seconds <= 0:
            problems.append("SNAPSHOT_POLL_SECONDS must be positive")

        problems.extend(self.score_config().validate())
        problems.extend(self.exit_config().validate())
        return problems

    def describe_secrets(self) -> str:
        """Which secrets are present, without their values."""
        def present(value: Optional[str]) -> str:
            return "set" if value else "missing"

        return (
            f"PUBLIC_KEY={present(self.public_key)} "
            f"WALLET_PRIVATE_KEY={present(self.private_key)} "
            f"PP_API_KEY={present(self.api_key)}"
        )


# =============================================================================
# Bot
# =============================================================================


class TradingBot:
    """
    Main trading bot orchestrator.

    Manages the lifecycle of all components:
    - Trade submitter (signer, balance checks)
    - Trading engine (windows, scoring, positions)
    - Launch stream (WebSocket)
    - Background tasks (snapshot polling, throttle rollover)
    """

    def __init__(self, config: BotConfig):
        self.config = config
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._started_at: Optional[datetime] = None

        # Components (initialized on start)
        self._signer = None
        self._submitter = None
        self._balance_manager = None
        self._engine = None
        self._stream = None
        self._snapshot_client = None
        self._background_tasks = None

    @property
    def engine(self):
        return self._engine

    async def start(self) -> None:
        """Start the trading bot and run until shutdown."""
        logger.info("=" * 60)
        logger.info("LAUNCH TRADER")
        logger.info("=" * 60)
        logger.info(f"Mode: {self.config.mode.upper()}")
        logger.info(f"Trading: {'DRY RUN' if self.config.dry_run else 'LIVE'}")
        logger.info(f"Secrets: {self.config.describe_secrets()}")
        logger.info("=" * 60)

        self._running = True
        self._started_at = datetime.now(timezone.utc)
        self._shutdown_event.clear()

        # Setup signal handlers FIRST to catch early signals
        self._setup_signal_handlers()

        try:
            await self._init_execution()

            # Initialize engine BEFORE ingestion so we don't lose early events
            await self._init_engine()

            if self._shutdown_event.is_set():
                logger.info("Shutdown requested during startup")
                return

            await self._init_ingestion()
            await self._init_background_tasks()

            logger.info("=" * 60)
            logger.info("Bot started successfully")
            logger.info("Press Ctrl+C to stop")
            logger.info("=" * 60)

            await self._run_loop()

        except Exception as e:
            logger.exception(f"Fatal error: {e}")
            raise
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop the trading bot gracefully."""
        if not self._running:
            return

        logger.info("Shutting down...")
        self._running = False
        self._shutdown_event.set()

        # Stop components in reverse order
        if self._stream:
            try:
                await self._stream.stop()
            except Exception as e:
                logger.warning(f"Error stopping stream: {e}")

        if self._background_tasks:
            try:
                await self._background_tasks.stop()
            except Exception as e:
                logger.warning(f"Error stopping background tasks: {e}")

        if self._engine:
            try:
                await self._engine.stop()
            except Exception as e:
                logger.warning(f"Error stopping engine: {e}")

        if self._submitter:
            try:
                await self._submitter.close()
            except Exception as e:
                logger.warning(f"Error closing submitter: {e}")

        if self._snapshot_client:
            try:
                await self._snapshot_client.close()
            except Exception as e:
                logger.warning(f"Error closing snapshot client: {e}")

        if self._signer:
            try:
                await self._signer.close()
            except Exception as e:
                logger.warning(f"Error closing RPC client: {e}")

        logger.info("Shutdown complete")

    def request_shutdown(self, reason: str = "manual") -> None:
        """Request a graceful shutdown."""
        if not self._running:
            return
        logger.warning(f"Shutdown requested: {reason}")
        self._shutdown_event.set()

    async def _init_execution(self) -> None:
        """Build the trade submitter for the configured mode."""
        from launch_trader.execution import (
            BalanceManager,
            DryRunSubmitter,
            SolanaSigner,
            TradeSubmitter,
        )

        if self.config.dry_run:
            self._submitter = DryRunSubmitter()
            logger.info("Execution: dry run (no trades will be sent)")
            return

        endpoints = self.config.endpoints
        if self.config.mode == "delegated":
            self._submitter = TradeSubmitter.delegated(endpoints, self.config.api_key)
            logger.info(f"Execution: delegated via {endpoints}")
            return

        self._signer = SolanaSigner.from_secret(self.config.private_key, self.config.rpc_url)
        if self._signer.public_key != self.config.public_key:
            logger.warning(
                f"PUBLIC_KEY does not match the signing key ({self._signer.public_key}); "
                f"own fills are matched on PUBLIC_KEY"
            )
        self._submitter = TradeSubmitter.self_signed(endpoints, self._signer)
        self._balance_manager = BalanceManager(self._signer.client, self.config.public_key)
        logger.info(f"Execution: self-signed via {endpoints}")

        # Startup balance is informational only
        try:
            await self._balance_manager.get_balance()
        except Exception as e:
            logger.warning(f"Initial balance check failed: {e}")

    async def _init_engine(self) -> None:
        """Initialize the trading engine."""
        from launch_trader.core import (
            EngineConfig,
            RiskThrottle,
            Scorer,
            ThrottleConfig,
            TradingEngine,
            WindowTracker,
        )
        from launch_trader.execution import PositionManager

        engine_config = EngineConfig(
            buy_amount=self.config.buy_amount,
            slippage_bps=self.config.slippage_bps,
            priority_fee=self.config.priority_fee,
            public_key=self.config.public_key,
            dry_run=self.config.dry_run,
        )
        self._engine = TradingEngine(
            config=engine_config,
            window_tracker=WindowTracker(self.config.window_seconds),
            scorer=Scorer(self.config.score_config()),
            throttle=RiskThrottle(
                ThrottleConfig(
                    cooldown_seconds=self.config.cooldown_seconds,
                    max_buys_per_day=self.config.max_buys_per_day,
                )
            ),
            position_manager=PositionManager(self.config.exit_config()),
            submitter=self._submitter,
            balance_manager=self._balance_manager,
        )
        await self._engine.start()

    async def _init_ingestion(self) -> None:
        """Start the launch stream task and wire it to the engine."""
        from launch_trader.ingestion import LaunchStreamWebSocket, MarketSnapshotClient

        self._stream = LaunchStreamWebSocket(
            on_event=self._engine.handle_stream_event,
            account=self.config.public_key,
            url=self.config.websocket_url,
        )
        self._engine.attach_stream(self._stream)
        await self._stream.start()

        self._snapshot_client = MarketSnapshotClient(base_url=self.config.snapshot_url)

    async def _init_background_tasks(self) -> None:
        """Start snapshot polling and throttle rollover loops."""
        from launch_trader.core import BackgroundTaskConfig, BackgroundTasksManager

        self._background_tasks = BackgroundTasksManager(
            engine=self._engine,
            snapshot_client=self._snapshot_client,
            config=BackgroundTaskConfig(
                snapshot_poll_interval_seconds=self.config.snapshot_poll_seconds,
            ),
        )
        await self._background_tasks.start()

    async def _run_loop(self) -> None:
        """Main run loop: log stats until shutdown."""
        stats_interval = 60  # seconds

        while self._running:
            try:
                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(),
                        timeout=stats_interval,
                    )
                    break  # Shutdown requested
                except asyncio.TimeoutError:
                    pass

                if self._engine:
                    stats = self._engine.stats
                    logger.info(
                        f"Stats: events={stats.events_processed}, "
                        f"windows={stats.windows_evaluated}/{stats.windows_opened}, "
                        f"buys={stats.buys_confirmed}/{stats.buys_submitted}, "
                        f"sells={stats.sells_confirmed}/{stats.sells_submitted}, "
                        f"open={len(self._engine.positions)}, errors={stats.errors}"
                    )

            except Exception as e:
                logger.error(f"Error in main loop: {e}")
                await asyncio.sleep(5)

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def handle_signal(sig):
            logger.info(f"Received signal {sig}")
            self._shutdown_event.set()

        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass


def load_env_file(path: str = ".env") -> None:
    """Load environment variables from .env file if it exists."""
    env_path = Path(path)
    if env_path.exists():
        logger.info(f"Loading environment from {env_path}")
        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, _, value = line.partition("=")
                    value = value.strip().strip('"').strip("'")
                    os.environ.setdefault(key.strip(), value)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Launch Trader",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run in paper trading mode (no real trades)",
    )
    parser.add_argument(
        "--mode",
        choices=list(MODES),
        help="Execution mode: live (self-signed) or delegated (default: from USE_LIGHTNING)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> BotConfig:
    """Load configuration and apply command line overrides."""
    config = BotConfig.from_env()
    if args.dry_run:
        config.dry_run = True
    if args.mode:
        config.mode = args.mode
    if args.log_level:
        config.log_level = args.log_level
    return config


async def main_async(args: argparse.Namespace) -> int:
    """Async main function."""
    config = build_config(args)

    problems = config.validate()
    if problems:
        for problem in problems:
            logger.error(f"Config: {problem}")
        logger.error("Refusing to start; see the environment variables in --help")
        return 1

    bot = TradingBot(config)

    try:
        await bot.start()
        return 0
    except KeyboardInterrupt:
        logger.info("Shutdown requested")
        return 0
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1


def main() -> int:
    """Main entry point."""
    load_env_file()

    args = parse_args()

    if args.log_level:
        logging.getLogger().setLevel(getattr(logging, args.log_level))

    # Ensure only one bot instance trades the wallet
    try:
        with singleton_lock():
            try:
                return asyncio.run(main_async(args))
            except KeyboardInterrupt:
                return 0
    except SingletonBotError as e:
        logger.error(str(e))
        print(f"\n{e}\n", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
