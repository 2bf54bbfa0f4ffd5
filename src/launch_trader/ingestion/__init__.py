"""
Ingestion Layer - Launch stream and market snapshot data.

This module provides:
    - LaunchStreamWebSocket: Resilient stream client with subscription handshake
    - AssetCreated / TradeObserved: Typed stream events validated at ingress
    - parse_stream_message: Raw message -> typed event (or None)
    - MarketSnapshotClient: Polling client for pair price/liquidity snapshots
    - MarketSnapshot: Validated snapshot of one trading pair
"""

from .models import (
    AssetCreated,
    MarketSnapshot,
    StreamEvent,
    TradeObserved,
    TradeSide,
    parse_stream_message,
    price_from_reserves,
)
from .snapshot_client import MarketSnapshotClient, RateLimitError, SnapshotAPIError
from .websocket import LaunchStreamWebSocket, WebSocketState

__all__ = [
    # Models
    "AssetCreated",
    "MarketSnapshot",
    "StreamEvent",
    "TradeObserved",
    "TradeSide",
    "parse_stream_message",
    "price_from_reserves",
    # Clients
    "LaunchStreamWebSocket",
    "WebSocketState",
    "MarketSnapshotClient",
    "RateLimitError",
    "SnapshotAPIError",
]
