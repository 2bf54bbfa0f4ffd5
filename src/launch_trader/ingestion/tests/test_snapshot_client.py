"""
Tests for the market snapshot client.

HTTP is faked by stubbing _request; retry behaviour is tested against a
mocked aiohttp session.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from launch_trader.ingestion.snapshot_client import MarketSnapshotClient, SnapshotAPIError


def _pair(asset, liquidity, price="0.00003", pair_address=None):
    return {
        "dexId": "pumpswap",
        "pairAddress": pair_address or f"pair_{asset}_{liquidity}",
        "baseToken": {"address": asset},
        "priceNative": price,
        "liquidity": {"quote": liquidity},
        "txns": {"m5": {"buys": 1, "sells": 0}},
    }


class _FakeResponse:
    def __init__(self, status, payload=None, text=""):
        self.status = status
        self._payload = payload
        self._text = text

    async def json(self, content_type=None):
        return self._payload

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class TestGetSnapshots:
    """Tests for get_snapshots()."""

    @pytest.mark.asyncio
    async def test_picks_most_liquid_pair(self):
        client = MarketSnapshotClient()
        client._request = AsyncMock(return_value={
            "pairs": [
                _pair("MintA", 5.0, price="0.00001"),
                _pair("MintA", 40.0, price="0.00002"),
                _pair("MintB", 12.0),
            ]
        })

        snapshots = await client.get_snapshots(["MintA", "MintB"])

        assert snapshots["MintA"].liquidity_quote == 40.0
        assert snapshots["MintA"].price_in_quote_asset == pytest.approx(0.00002)
        assert set(snapshots) == {"MintA", "MintB"}

    @pytest.mark.asyncio
    async def test_skips_invalid_pairs_and_unrequested_assets(self):
        client = MarketSnapshotClient()
        bad = _pair("MintA", 50.0)
        bad["priceNative"] = None
        client._request = AsyncMock(return_value={
            "pairs": [bad, _pair("MintA", 3.0), _pair("Stranger", 99.0)]
        })

        snapshots = await client.get_snapshots(["MintA"])

        assert list(snapshots) == ["MintA"]
        assert snapshots["MintA"].liquidity_quote == 3.0

    @pytest.mark.asyncio
    async def test_null_pairs(self):
        client = MarketSnapshotClient()
        client._request = AsyncMock(return_value={"pairs": None})

        assert await client.get_snapshot("MintA") is None

    @pytest.mark.asyncio
    async def test_chunks_large_requests(self):
        client = MarketSnapshotClient(base_url="https://example.test/")
        client._request = AsyncMock(return_value={"pairs": []})
        assets = [f"Mint{i}" for i in range(45)]

        await client.get_snapshots(assets)

        urls = [c.args[1] for c in client._request.call_args_list]
        assert len(urls) == 2
        assert urls[0].startswith("https://example.test/latest/dex/tokens/Mint0,")
        assert urls[1].endswith("Mint44")


class TestRequestRetries:
    """Tests for _request() retry policy."""

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        session = MagicMock()
        session.request = MagicMock(side_effect=[
            _FakeResponse(503, text="unavailable"),
            _FakeResponse(200, payload={"pairs": []}),
        ])
        client = MarketSnapshotClient(session=session, retry_delay=0.01)

        with patch("launch_trader.ingestion.snapshot_client.asyncio.sleep", new=AsyncMock()):
            data = await client._request("GET", "https://example.test")

        assert data == {"pairs": []}
        assert session.request.call_count == 2

    @pytest.mark.asyncio
    async def test_does_not_retry_client_errors(self):
        session = MagicMock()
        session.request = MagicMock(return_value=_FakeResponse(404, text="not found"))
        client = MarketSnapshotClient(session=session)

        with pytest.raises(SnapshotAPIError) as exc_info:
            await client._request("GET", "https://example.test")

        assert exc_info.value.status_code == 404
        assert session.request.call_count == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        session = MagicMock()
        session.request = MagicMock(return_value=_FakeResponse(500, text="boom"))
        client = MarketSnapshotClient(session=session, max_retries=3)

        with patch("launch_trader.ingestion.snapshot_client.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(SnapshotAPIError):
                await client._request("GET", "https://example.test")

        assert session.request.call_count == 3
