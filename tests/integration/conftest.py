"""
Integration test fixtures.

These fixtures assemble the full pipeline: launch feed parser -> engine
-> delegated submitter, with the execution service faked at the HTTP
layer.
"""
import asyncio
import json
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
from launch_trader.execution import ExitConfig, HttpResponse, PositionManager, TradeSubmitter
from launch_trader.ingestion import LaunchStreamWebSocket

# Mark all tests in this directory as integration tests
pytestmark = pytest.mark.integration

WINDOW_SECONDS = 0.05


@pytest.fixture
def execution_service():
    """Fake execution API: answers every trade with a signature and records payloads."""
    payloads = []

    async def post(url, payload, encoding, params=None):
        payloads.append(payload)
        body = json.dumps({"signature": f"sig_{payload['action']}_{payload['mint']}"})
        return HttpResponse(status=200, body=body.encode(), content_type="application/json")

    return SimpleNamespace(post=AsyncMock(side_effect=post), payloads=payloads)


@pytest.fixture
async def pipeline(execution_service, own_key):
    """
    Running engine fed by the launch stream's message handler.

    The stream is never connected; messages are pushed through
    pipeline.push(raw) and subscriptions are recorded but not sent.
    """
    submitter = TradeSubmitter.delegated(["https://execution.example/api/trade"], "test-key")
    submitter._post = execution_service.post

    engine = TradingEngine(
        config=EngineConfig(
            buy_amount=Decimal("0.005"),
            slippage_bps=1500,
            priority_fee=Decimal("0.0001"),
            public_key=own_key,
            dry_run=False,
        ),
        window_tracker=WindowTracker(WINDOW_SECONDS),
        scorer=Scorer(ScoreConfig()),
        throttle=RiskThrottle(ThrottleConfig(cooldown_seconds=0)),
        position_manager=PositionManager(
            ExitConfig(take_profit_pct=Decimal("0.5"), trail_pct=Decimal("0.12"))
        ),
        submitter=submitter,
    )
    stream = LaunchStreamWebSocket(on_event=engine.handle_stream_event, account=own_key)
    engine.attach_stream(stream)
    await engine.start()

    async def push(*messages):
        for raw in messages:
            await stream._handle_message(raw)

    async def settle():
        """Let window timers fire and in-flight trades finish."""
        await asyncio.sleep(WINDOW_SECONDS * 3)
        while engine._tasks:
            await asyncio.gather(*list(engine._tasks), return_exceptions=True)

    yield SimpleNamespace(engine=engine, stream=stream, push=push, settle=settle)

    await engine.stop(drain_timeout=1.0)
