"""
REST client for market snapshots.

Polls a DexScreener-compatible API for pair data (price, 5m flow,
liquidity) of tokens we hold. This is the alternate price source used
when the launch stream goes quiet for an asset, e.g. after it migrates
off the bonding curve.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional

import aiohttp
from pydantic import ValidationError

from .models import MarketSnapshot

logger = logging.getLogger(__name__)


class SnapshotAPIError(Exception):
    """Base exception for snapshot API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(SnapshotAPIError):
    """Rate limit exceeded."""
    pass


class MarketSnapshotClient:
    """
    Async REST client for market snapshots.

    Features:
        - Rate limiting to avoid API throttling
        - Automatic retries with exponential backoff (5xx, timeouts)
        - No retries for 4xx client errors
        - Picks the most liquid pair per asset

    Usage:
        async with MarketSnapshotClient() as client:
            snapshots = await client.get_snapshots(["mint_1", "mint_2"])
            price = snapshots["mint_1"].price_in_quote_asset
    """

    BASE_URL = "https://api.dexscreener.com"

    # The tokens endpoint accepts at most 30 comma separated addresses
    MAX_ASSETS_PER_REQUEST = 30

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        base_url: Optional[str] = None,
        rate_limit: float = 5.0,  # requests per second
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        """
        Initialize the snapshot client.

        Args:
            session: Optional aiohttp session (created if not provided)
            base_url: API base URL override
            rate_limit: Maximum requests per second
            timeout: Request timeout in seconds
            max_retries: Number of attempts for failed requests
            retry_delay: Base delay between retries (exponential backoff)
        """
        self._session = session
        self._owns_session = session is None
        self._base_url = (base_url or self.BASE_URL).rstrip("/")
        self._rate_limit = rate_limit
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._max_retries = max_retries
        self._retry_delay = retry_delay

        self._request_times: list[float] = []
        self._rate_lock = asyncio.Lock()

    async def __aenter__(self) -> "MarketSnapshotClient":
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the client session."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    async def _rate_limit_wait(self) -> None:
        """Wait if necessary to respect rate limits."""
        async with self._rate_lock:
            now = time.time()
            self._request_times = [t for t in self._request_times if now - t < 1.0]

            if len(self._request_times) >= self._rate_limit:
                wait_time = 1.0 - (now - self._request_times[0])
                if wait_time > 0:
                    await asyncio.sleep(wait_time)

            self._request_times.append(time.time())

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        """
        Make an HTTP request with rate limiting and retries.

        Returns:
            Parsed JSON response

        Raises:
            SnapshotAPIError: On API errors after retries
            asyncio.CancelledError: When the task is cancelled
        """
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True

        last_error: Optional[Exception] = None

        for attempt in range(self._max_retries):
            try:
                await self._rate_limit_wait()

                async with self._session.request(method, url, **kwargs) as response:
                    if response.status == 429:
                        raise RateLimitError("Rate limit exceeded", status_code=429)

                    if 400 <= response.status < 500:
                        text = await response.text()
                        raise SnapshotAPIError(
                            f"API error: {response.status} - {text}",
                            status_code=response.status,
                        )

                    if response.status >= 500:
                        text = await response.text()
                        raise SnapshotAPIError(
                            f"Server error: {response.status} - {text}",
                            status_code=response.status,
                        )

                    return await response.json(content_type=None)

            except RateLimitError:
                delay = self._retry_delay * (2 ** attempt) * 2
                logger.warning(f"Rate limited, waiting {delay}s before retry")
                await asyncio.sleep(delay)
                last_error = RateLimitError("Rate limit exceeded", status_code=429)

            except SnapshotAPIError as e:
                if e.status_code and e.status_code >= 500:
                    delay = self._retry_delay * (2 ** attempt)
                    logger.warning(
                        f"Server error {e.status_code}, retry {attempt + 1}/{self._max_retries}"
                    )
                    await asyncio.sleep(delay)
                    last_error = e
                else:
                    raise

            except asyncio.TimeoutError:
                delay = self._retry_delay * (2 ** attempt)
                logger.warning(f"Request timeout, retry {attempt + 1}/{self._max_retries}")
                await asyncio.sleep(delay)
                last_error = SnapshotAPIError("Request timed out")

            except aiohttp.ClientError as e:
                delay = self._retry_delay * (2 ** attempt)
                logger.warning(f"Request failed: {e}, retry {attempt + 1}/{self._max_retries}")
                await asyncio.sleep(delay)
                last_error = SnapshotAPIError(str(e))

        raise last_error or SnapshotAPIError("Request failed after retries")

    async def get_snapshots(self, assets: list[str]) -> dict[str, MarketSnapshot]:
        """
        Fetch the most liquid pair snapshot for each asset.

        Assets without any valid pair are absent from the result.

        Args:
            assets: Token identifiers

        Returns:
            Mapping of asset -> MarketSnapshot
        """
        result: dict[str, MarketSnapshot] = {}
        unique = list(dict.fromkeys(assets))

        for start in range(0, len(unique), self.MAX_ASSETS_PER_REQUEST):
            chunk = unique[start:start + self.MAX_ASSETS_PER_REQUEST]
            url = f"{self._base_url}/latest/dex/tokens/{','.join(chunk)}"
            data = await self._request("GET", url)

            for snapshot in self._parse_pairs(data):
                if snapshot.asset not in chunk:
                    continue
                current = result.get(snapshot.asset)
                if current is None or snapshot.liquidity_quote > current.liquidity_quote:
                    result[snapshot.asset] = snapshot

        return result

    async def get_snapshot(self, asset: str) -> Optional[MarketSnapshot]:
        """Fetch the most liquid pair snapshot for a single asset."""
        snapshots = await self.get_snapshots([asset])
        return snapshots.get(asset)

    def _parse_pairs(self, data: Any) -> list[MarketSnapshot]:
        """Validate every pair in a response, skipping invalid ones."""
        if not isinstance(data, dict):
            return []

        pairs = data.get("pairs") or []
        snapshots = []
        for pair in pairs:
            if not isinstance(pair, dict):
                continue
            try:
                snapshots.append(MarketSnapshot.from_pair(pair))
            except ValidationError as e:
                logger.debug(f"Skipping invalid pair {pair.get('pairAddress')}: {e}")
        return snapshots
