"""
Core Layer - Observation, scoring and orchestration.

This module provides:
    - TradingEngine: Main orchestrator (events -> windows -> scorer -> execution)
    - EngineConfig: Configuration for the trading engine
    - EngineStats: Runtime statistics
    - WindowTracker: One observation window per new asset
    - ObservationWindow: Order-flow aggregates for one asset
    - Scorer: Hard gates plus composite confidence score
    - ScoreConfig / ScoreResult / WindowMetrics: Scoring inputs and outputs
    - RiskThrottle: Global cooldown and daily buy quota
    - WindowScheduler: Cancellable window expiry timers
    - BackgroundTasksManager: Snapshot polling and throttle rollover loops

Data Flow:
    1. WebSocket delivers a creation event; a window opens
    2. Trades on the asset are aggregated until expiry
    3. The scorer evaluates the window exactly once
    4. The throttle admits or rejects the buy
    5. Price ticks drive the exit state machine of held positions
"""

# Engine
from .engine import TradingEngine, EngineConfig, EngineStats

# Observation windows
from .window_tracker import WindowTracker, ObservationWindow, BuyerStats

# Scoring
from .scorer import Scorer, ScoreConfig, ScoreResult, WindowMetrics

# Risk throttle
from .risk_throttle import RiskThrottle, ThrottleConfig, ThrottleState

# Timers
from .scheduler import WindowScheduler

# Background tasks
from .background_tasks import BackgroundTasksManager, BackgroundTaskConfig

__all__ = [
    # Engine
    "TradingEngine",
    "EngineConfig",
    "EngineStats",
    # Observation windows
    "WindowTracker",
    "ObservationWindow",
    "BuyerStats",
    # Scoring
    "Scorer",
    "ScoreConfig",
    "ScoreResult",
    "WindowMetrics",
    # Risk throttle
    "RiskThrottle",
    "ThrottleConfig",
    "ThrottleState",
    # Timers
    "WindowScheduler",
    # Background tasks
    "BackgroundTasksManager",
    "BackgroundTaskConfig",
]
