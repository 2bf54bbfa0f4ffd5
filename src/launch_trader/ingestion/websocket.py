"""
WebSocket client for the real-time token launch stream.

Features:
    - Auto-reconnect with a fixed backoff
    - Heartbeat monitoring (detect stale connections)
    - Subscription handshake: new tokens + the operator's own account
    - Per-asset trade subscriptions that persist across reconnects
    - State change callbacks

Reconnects never touch engine state: windows and positions live in the
engine and survive any number of reconnects.
"""

from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional, Set

import websockets
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    ConnectionClosedOK,
)

from .models import StreamEvent, parse_stream_message

logger = logging.getLogger(__name__)


class WebSocketState(str, Enum):
    """WebSocket connection state."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    STOPPING = "stopping"


# Type aliases for callbacks
EventCallback = Callable[[StreamEvent], Awaitable[None]]
StateCallback = Callable[[WebSocketState], Awaitable[None]]
ErrorCallback = Callable[[Exception], Awaitable[None]]


class LaunchStreamWebSocket:
    """
    Resilient WebSocket client for token launch events.

    On every (re)connect the client subscribes to asset creation events,
    to trades made by the operator's own account, and to the trade feed of
    every asset currently tracked through subscribe_assets().

    Usage:
        async def handle(event: StreamEvent):
            engine.process_event(event)

        ws = LaunchStreamWebSocket(on_event=handle, account="MyPubkey...")
        await ws.start()

        await ws.subscribe_assets(["mint_1"])
        ...
        await ws.stop()
    """

    WS_URL = "wss://pumpportal.fun/api/data"

    def __init__(
        self,
        on_event: EventCallback,
        account: Optional[str] = None,
        on_state_change: Optional[StateCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        heartbeat_timeout: float = 60.0,
        reconnect_delay: float = 1.0,
        url: Optional[str] = None,
    ):
        """
        Initialize the WebSocket client.

        Args:
            on_event: Callback for parsed stream events (required)
            account: Operator public key whose trades should be streamed
            on_state_change: Optional callback for connection state changes
            on_error: Optional callback for errors
            heartbeat_timeout: Seconds without message before reconnect
            reconnect_delay: Fixed delay before each reconnect attempt
            url: Optional WebSocket URL override
        """
        self._on_event = on_event
        self._account = account
        self._on_state_change = on_state_change
        self._on_error = on_error
        self._url = url or self.WS_URL

        self._heartbeat_timeout = heartbeat_timeout
        self._reconnect_delay = reconnect_delay

        # Connection state
        self._state = WebSocketState.DISCONNECTED
        self._ws = None
        self._subscribed_assets: Set[str] = set()

        self._reconnect_count = 0

        # Tasks
        self._run_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

        # Heartbeat tracking
        self._last_message_time: Optional[float] = None

    @property
    def state(self) -> WebSocketState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Whether currently connected."""
        return self._state == WebSocketState.CONNECTED

    @property
    def subscribed_assets(self) -> Set[str]:
        """Assets whose trade feed is currently subscribed."""
        return self._subscribed_assets.copy()

    @property
    def reconnect_count(self) -> int:
        """Number of reconnection attempts since start."""
        return self._reconnect_count

    @property
    def last_message_time(self) -> Optional[float]:
        """Event loop time of the last received message."""
        return self._last_message_time

    async def _set_state(self, state: WebSocketState) -> None:
        """Update state and notify callback."""
        if self._state != state:
            old_state = self._state
            self._state = state
            logger.info(f"WebSocket state: {old_state.value} -> {state.value}")

            if self._on_state_change:
                try:
                    await self._on_state_change(state)
                except Exception as e:
                    logger.error(f"Error in state change callback: {e}")

    async def start(self) -> None:
        """
        Start the WebSocket client.

        Launches the connection task and returns without waiting for the
        feed to answer. The task connects, performs the subscription
        handshake and receives messages, reconnecting after every failure
        until stop() is called.
        """
        if self._state != WebSocketState.DISCONNECTED:
            logger.warning(f"Cannot start: already in state {self._state.value}")
            return

        self._stop_event.clear()
        await self._set_state(WebSocketState.CONNECTING)
        self._run_task = asyncio.create_task(self._run(), name="launch_stream")

    async def stop(self) -> None:
        """Stop the WebSocket client and close the connection."""
        if self._state == WebSocketState.DISCONNECTED:
            return

        logger.info("Stopping WebSocket client...")
        await self._set_state(WebSocketState.STOPPING)
        self._stop_event.set()

        if self._run_task:
            self._run_task.cancel()
            try:
                await self._run_task
            except asyncio.CancelledError:
                pass
            self._run_task = None

        await self._close_socket()

        await self._set_state(WebSocketState.DISCONNECTED)
        logger.info("WebSocket client stopped")

    async def _run(self) -> None:
        """Connect, receive, and reconnect after a fixed delay until stopped."""
        while not self._stop_event.is_set():
            if await self._connect():
                await self._receive_loop()

            if not await self._wait_before_reconnect():
                break

    async def _connect(self) -> bool:
        """
        Establish the connection and send the subscription handshake.

        Returns:
            True if connected, False if the attempt failed
        """
        await self._set_state(WebSocketState.CONNECTING)

        try:
            self._ws = await websockets.connect(
                self._url,
                ping_interval=20,
                ping_timeout=10,
                close_timeout=5,
                compression=None,
            )

            self._last_message_time = asyncio.get_running_loop().time()

            await self._set_state(WebSocketState.CONNECTED)
            logger.info(f"Connected to {self._url}")

            await self._send_handshake()
            return True

        except asyncio.CancelledError:
            raise

        except Exception as e:
            logger.error(f"Failed to connect: {e}")
            await self._close_socket()
            await self._report_error(e)
            return False

    async def _report_error(self, error: Exception) -> None:
        if self._on_error:
            try:
                await self._on_error(error)
            except Exception as e:
                logger.error(f"Error in error callback: {e}")

    async def _close_socket(self) -> None:
        if self._ws:
            try:
                await self._ws.close()
            except Exception as e:
                logger.debug(f"Error closing socket: {e}")
            self._ws = None

    async def _send_handshake(self) -> None:
        """Subscribe to new tokens, our own trades and tracked assets."""
        await self._send({"method": "subscribeNewToken"})
        if self._account:
            await self._send({"method": "subscribeAccountTrade", "keys": [self._account]})
        if self._subscribed_assets:
            await self._send({
                "method": "subscribeTokenTrade",
                "keys": sorted(self._subscribed_assets),
            })

    async def _receive_loop(self) -> None:
        """Receive messages until the connection drops or goes silent."""
        try:
            while not self._stop_event.is_set() and self._ws:
                try:
                    message = await asyncio.wait_for(
                        self._ws.recv(),
                        timeout=self._heartbeat_timeout,
                    )
                    self._last_message_time = asyncio.get_running_loop().time()
                    await self._handle_message(message)

                except asyncio.TimeoutError:
                    logger.warning(
                        f"No message received in {self._heartbeat_timeout}s, reconnecting..."
                    )
                    break

                except ConnectionClosedOK:
                    logger.info("WebSocket closed normally")
                    break

                except ConnectionClosedError as e:
                    logger.warning(f"WebSocket closed with error: {e}")
                    break

                except ConnectionClosed as e:
                    logger.warning(f"WebSocket connection closed: {e}")
                    break

        except asyncio.CancelledError:
            logger.debug("Receive loop cancelled")
            raise

        except Exception as e:
            logger.error(f"Error in receive loop: {e}")
            await self._report_error(e)

        await self._close_socket()

    async def _wait_before_reconnect(self) -> bool:
        """
        Wait the fixed backoff delay before the next connection attempt.

        Returns:
            False if the client is stopping
        """
        if self._stop_event.is_set():
            return False

        self._reconnect_count += 1
        await self._set_state(WebSocketState.RECONNECTING)

        logger.info(
            f"Reconnecting in {self._reconnect_delay:.1f}s "
            f"(attempt #{self._reconnect_count})..."
        )
        await asyncio.sleep(self._reconnect_delay)

        return not self._stop_event.is_set()

    async def _handle_message(self, raw_message) -> None:
        """Parse and dispatch a WebSocket message."""
        try:
            if not raw_message or not str(raw_message).strip():
                return

            data = json.loads(raw_message)

            # Subscription acknowledgements carry a "message" and no mint
            if isinstance(data, dict) and "message" in data and "mint" not in data:
                logger.debug(f"Stream notice: {data.get('message')}")
                return

            if isinstance(data, dict) and "errors" in data:
                logger.error(f"Stream error message: {data}")
                return

            event = parse_stream_message(data)
            if event is None:
                logger.debug(f"Ignoring unrecognized message: {str(data)[:200]}")
                return

            await self._on_event(event)

        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse message: {e}")

        except Exception as e:
            logger.error(f"Error handling message: {e}")
            if self._on_error:
                await self._on_error(e)

    async def subscribe_assets(self, assets: list[str]) -> None:
        """
        Subscribe to the trade feed of the given assets.

        Subscriptions persist across reconnections.
        """
        new_assets = set(assets) - self._subscribed_assets
        if not new_assets:
            return

        self._subscribed_assets.update(new_assets)

        if self.is_connected:
            await self._send({"method": "subscribeTokenTrade", "keys": sorted(new_assets)})

    async def unsubscribe_assets(self, assets: list[str]) -> None:
        """Stop streaming trades for the given assets."""
        to_remove = set(assets) & self._subscribed_assets
        if not to_remove:
            return

        self._subscribed_assets -= to_remove

        if self.is_connected:
            await self._send({"method": "unsubscribeTokenTrade", "keys": sorted(to_remove)})

    async def _send(self, message: dict) -> None:
        """Send a JSON message if connected."""
        if not self._ws:
            return

        try:
            await self._ws.send(json.dumps(message))
            logger.debug(f"Sent {message.get('method')}")
        except Exception as e:
            logger.error(f"Failed to send {message.get('method')}: {e}")
