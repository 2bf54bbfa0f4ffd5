"""
End-to-end flow: launch feed -> observation window -> buy -> exit.

These tests verify:
1. A qualifying launch produces exactly one buy and, on a take-profit
   move, exactly one sell
2. A launch that fails its gates never reaches the execution service
3. Repeated creation events do not re-open an evaluated asset
"""
from decimal import Decimal

import pytest

from launch_trader.execution import ExitReason, PositionState

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]


def actions_for(execution_service, mint):
    return [p["action"] for p in execution_service.payloads if p["mint"] == mint]


class TestLaunchToExit:
    """Full lifecycle through the real parser, engine and submitter."""

    async def test_qualifying_launch_buys_then_takes_profit(self, pipeline, feed, execution_service, own_key):
        await pipeline.push(feed.create("MintWin"), *feed.qualifying("MintWin"))
        await pipeline.settle()

        assert actions_for(execution_service, "MintWin") == ["buy"]
        position = pipeline.engine.positions.get("MintWin")
        assert position.state == PositionState.OPEN
        assert position.entry_cost == Decimal("0.0051")

        # Own fill reports the quantity bought
        await pipeline.push(feed.trade("MintWin", "buy", own_key, qty=170_000.0))
        assert position.token_qty == Decimal("170000.0")

        # Price 5e-8 puts the position at 0.0085, above the 0.00765 take-profit
        await pipeline.push(
            feed.trade("MintWin", "buy", "lateBuyer", sol=50.0),
            feed.trade("MintWin", "buy", "lateBuyer2", sol=60.0),
            feed.trade("MintWin", "buy", "lateBuyer3", sol=70.0),
        )
        await pipeline.settle()

        assert actions_for(execution_service, "MintWin") == ["buy", "sell"]
        sell = execution_service.payloads[-1]
        assert sell["amount"] == "100%"
        assert sell["skipPreflight"] == "true"
        assert "MintWin" not in pipeline.engine.positions
        record = pipeline.engine.positions.history[-1]
        assert record.reason == ExitReason.TAKE_PROFIT
        assert record.pnl > 0
        assert "MintWin" not in pipeline.stream.subscribed_assets

    async def test_failing_launch_never_trades(self, pipeline, feed, execution_service):
        await pipeline.push(
            feed.create("MintWin"),
            feed.create("MintLose"),
            feed.trade("MintLose", "buy", "buyerA"),
            feed.trade("MintLose", "sell", "sellerA", qty=900.0),
            feed.trade("MintLose", "sell", "sellerB", qty=900.0),
            *feed.qualifying("MintWin"),
        )
        await pipeline.settle()

        assert actions_for(execution_service, "MintLose") == []
        assert actions_for(execution_service, "MintWin") == ["buy"]
        assert pipeline.engine.stats.windows_evaluated == 2
        assert pipeline.engine.stats.gate_rejections == 1
        assert "MintLose" not in pipeline.stream.subscribed_assets

    async def test_repeated_creation_is_ignored(self, pipeline, feed, execution_service):
        await pipeline.push(feed.create("MintWin"), *feed.qualifying("MintWin"))
        await pipeline.settle()

        await pipeline.push(feed.create("MintWin"), *feed.qualifying("MintWin"))
        await pipeline.settle()

        assert actions_for(execution_service, "MintWin") == ["buy"]
        assert pipeline.engine.stats.windows_opened == 1
