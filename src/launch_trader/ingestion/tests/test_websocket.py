"""
Tests for the launch stream WebSocket client.

These tests verify:
- Message dispatch to typed events
- Subscription acknowledgements and errors are not dispatched
- Handshake subscribes to new tokens, own account and tracked assets
- Per-asset subscriptions persist and are re-sent after reconnect
- Reconnect uses the fixed backoff and never gives up while the feed is down
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from websockets.exceptions import ConnectionClosedError

from launch_trader.ingestion.models import AssetCreated, TradeObserved
from launch_trader.ingestion.websocket import LaunchStreamWebSocket, WebSocketState


def _sent_methods(ws_mock):
    return [json.loads(call.args[0]) for call in ws_mock.send.call_args_list]


class TestMessageHandling:
    """Tests for _handle_message."""

    @pytest.fixture
    def websocket(self):
        """Create a WebSocket client with mocked callback."""
        callback = AsyncMock()
        return LaunchStreamWebSocket(on_event=callback, account="MyKey")

    @pytest.mark.asyncio
    async def test_dispatches_create_event(self, websocket, create_message):
        await websocket._handle_message(json.dumps(create_message))

        websocket._on_event.assert_called_once()
        event = websocket._on_event.call_args[0][0]
        assert isinstance(event, AssetCreated)
        assert event.asset == "MintAAA111"

    @pytest.mark.asyncio
    async def test_dispatches_trade_event(self, websocket, buy_message):
        await websocket._handle_message(json.dumps(buy_message))

        event = websocket._on_event.call_args[0][0]
        assert isinstance(event, TradeObserved)

    @pytest.mark.asyncio
    async def test_subscription_ack_is_not_dispatched(self, websocket):
        await websocket._handle_message(json.dumps({"message": "Successfully subscribed to token creation events."}))

        websocket._on_event.assert_not_called()

    @pytest.mark.asyncio
    async def test_error_message_is_not_dispatched(self, websocket):
        await websocket._handle_message(json.dumps({"errors": "Invalid key"}))

        websocket._on_event.assert_not_called()

    @pytest.mark.asyncio
    async def test_unrecognized_shape_is_not_dispatched(self, websocket):
        await websocket._handle_message(json.dumps({"mint": "X", "txType": "migrate"}))

        websocket._on_event.assert_not_called()

    @pytest.mark.asyncio
    async def test_handles_invalid_json_gracefully(self, websocket):
        await websocket._handle_message("not valid json{")

        websocket._on_event.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_message_is_ignored(self, websocket):
        await websocket._handle_message("   ")

        websocket._on_event.assert_not_called()

    @pytest.mark.asyncio
    async def test_callback_error_reaches_error_callback(self, create_message):
        on_error = AsyncMock()
        ws = LaunchStreamWebSocket(
            on_event=AsyncMock(side_effect=RuntimeError("boom")),
            on_error=on_error,
        )

        await ws._handle_message(json.dumps(create_message))

        on_error.assert_called_once()


class TestSubscriptions:
    """Tests for the handshake and per-asset subscriptions."""

    @pytest.mark.asyncio
    async def test_handshake_subscribes_new_tokens_and_account(self):
        ws = LaunchStreamWebSocket(on_event=AsyncMock(), account="MyKey")
        ws._ws = AsyncMock()

        await ws._send_handshake()

        assert _sent_methods(ws._ws) == [
            {"method": "subscribeNewToken"},
            {"method": "subscribeAccountTrade", "keys": ["MyKey"]},
        ]

    @pytest.mark.asyncio
    async def test_handshake_without_account(self):
        ws = LaunchStreamWebSocket(on_event=AsyncMock())
        ws._ws = AsyncMock()

        await ws._send_handshake()

        assert _sent_methods(ws._ws) == [{"method": "subscribeNewToken"}]

    @pytest.mark.asyncio
    async def test_subscribe_while_disconnected_is_sent_on_handshake(self):
        ws = LaunchStreamWebSocket(on_event=AsyncMock())

        await ws.subscribe_assets(["MintB", "MintA"])
        assert ws.subscribed_assets == {"MintA", "MintB"}

        ws._ws = AsyncMock()
        await ws._send_handshake()

        assert _sent_methods(ws._ws)[-1] == {
            "method": "subscribeTokenTrade",
            "keys": ["MintA", "MintB"],
        }

    @pytest.mark.asyncio
    async def test_subscribe_and_unsubscribe_while_connected(self):
        ws = LaunchStreamWebSocket(on_event=AsyncMock())
        ws._ws = AsyncMock()
        ws._state = WebSocketState.CONNECTED

        await ws.subscribe_assets(["MintA"])
        await ws.subscribe_assets(["MintA"])  # already subscribed
        await ws.unsubscribe_assets(["MintA"])

        assert _sent_methods(ws._ws) == [
            {"method": "subscribeTokenTrade", "keys": ["MintA"]},
            {"method": "unsubscribeTokenTrade", "keys": ["MintA"]},
        ]
        assert ws.subscribed_assets == set()


class TestReconnect:
    """Tests for reconnect behaviour."""

    @pytest.mark.asyncio
    async def test_reconnect_uses_fixed_delay(self):
        ws = LaunchStreamWebSocket(on_event=AsyncMock(), reconnect_delay=1.0)

        with patch("launch_trader.ingestion.websocket.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await ws._wait_before_reconnect() is True
            assert await ws._wait_before_reconnect() is True

        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 1.0]
        assert ws.reconnect_count == 2
        assert ws.state == WebSocketState.RECONNECTING

    @pytest.mark.asyncio
    async def test_no_reconnect_after_stop(self):
        ws = LaunchStreamWebSocket(on_event=AsyncMock())
        ws._stop_event.set()

        assert await ws._wait_before_reconnect() is False
        assert ws.reconnect_count == 0

    @pytest.mark.asyncio
    async def test_start_returns_while_feed_is_down(self):
        ws = LaunchStreamWebSocket(on_event=AsyncMock(), reconnect_delay=0)
        connect = AsyncMock(side_effect=OSError("connection refused"))

        with patch("launch_trader.ingestion.websocket.websockets.connect", new=connect):
            await ws.start()
            assert ws._run_task is not None and not ws._run_task.done()

            async def wait_for_attempts(count):
                while connect.await_count < count:
                    await asyncio.sleep(0)

            await asyncio.wait_for(wait_for_attempts(3000), timeout=30)

            # Still retrying after thousands of consecutive failures
            assert not ws._run_task.done()
            assert ws.reconnect_count >= 2999
            assert ws.state in (WebSocketState.CONNECTING, WebSocketState.RECONNECTING)

            await ws.stop()

        assert ws.state == WebSocketState.DISCONNECTED
        assert ws._run_task is None

    @pytest.mark.asyncio
    async def test_reconnects_and_resubscribes_after_disconnect(self):
        first, second = AsyncMock(), AsyncMock()
        first.recv = AsyncMock(side_effect=ConnectionClosedError(None, None))
        async def hang():
            await asyncio.Event().wait()

        second.recv = AsyncMock(side_effect=hang)
        connect = AsyncMock(side_effect=[first, second])
        ws = LaunchStreamWebSocket(on_event=AsyncMock(), account="MyKey", reconnect_delay=0)
        await ws.subscribe_assets(["MintA"])

        with patch("launch_trader.ingestion.websocket.websockets.connect", new=connect):
            await ws.start()

            async def wait_until_connected_twice():
                while connect.await_count < 2 or not ws.is_connected:
                    await asyncio.sleep(0)

            await asyncio.wait_for(wait_until_connected_twice(), timeout=5)
            await ws.stop()

        assert ws.reconnect_count == 1
        first.close.assert_awaited()
        assert {"method": "subscribeTokenTrade", "keys": ["MintA"]} in _sent_methods(second)

    @pytest.mark.asyncio
    async def test_failing_error_callback_does_not_stop_retries(self):
        ws = LaunchStreamWebSocket(
            on_event=AsyncMock(),
            on_error=AsyncMock(side_effect=RuntimeError("callback broke")),
            reconnect_delay=0,
        )
        connect = AsyncMock(side_effect=OSError("down"))

        with patch("launch_trader.ingestion.websocket.websockets.connect", new=connect):
            await ws.start()

            async def wait_for_attempts(count):
                while connect.await_count < count:
                    await asyncio.sleep(0)

            await asyncio.wait_for(wait_for_attempts(5), timeout=5)
            assert not ws._run_task.done()
            await ws.stop()

    @pytest.mark.asyncio
    async def test_state_change_callback(self):
        on_state = AsyncMock()
        ws = LaunchStreamWebSocket(on_event=AsyncMock(), on_state_change=on_state)

        await ws._set_state(WebSocketState.CONNECTING)
        await ws._set_state(WebSocketState.CONNECTING)

        on_state.assert_called_once_with(WebSocketState.CONNECTING)
