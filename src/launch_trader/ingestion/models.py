"""
Data models for the ingestion layer.

These models represent data structures for:
- Asset creation events from the launch stream
- Trade events (other traders and our own fills) from the launch stream
- Market snapshots from the polling API

The stream sends loosely shaped JSON. Every message is validated at ingress
and converted into one of a closed set of frozen dataclasses; anything that
does not fit is dropped by parse_stream_message() instead of propagating
missing fields into the engine.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class TradeSide(str, Enum):
    """Side of a trade."""
    BUY = "buy"
    SELL = "sell"


def _to_float(value: Any) -> Optional[float]:
    """Coerce a numeric-ish field to float, None when absent or invalid."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class AssetCreated:
    """
    A newly launched token.

    Attributes:
        asset: Token identifier (mint address)
        creator: Address that created the token, if reported
        quote_reserve: Quote-asset (SOL) reserve at creation, if reported
        token_reserve: Token reserve at creation, if reported
    """
    asset: str
    creator: Optional[str] = None
    quote_reserve: Optional[float] = None
    token_reserve: Optional[float] = None

    @property
    def price(self) -> Optional[float]:
        return price_from_reserves(self.quote_reserve, self.token_reserve)


@dataclass(frozen=True)
class TradeObserved:
    """
    A trade on a launched token.

    Attributes:
        asset: Token identifier (mint address)
        side: BUY or SELL
        trader: Address of the trader, if reported
        token_amount: Token quantity exchanged, if reported
        quote_reserve: Quote-asset reserve after the trade
        token_reserve: Token reserve after the trade
        signature: Transaction signature, if reported
    """
    asset: str
    side: TradeSide
    trader: Optional[str] = None
    token_amount: Optional[float] = None
    quote_reserve: Optional[float] = None
    token_reserve: Optional[float] = None
    signature: Optional[str] = None

    @property
    def price(self) -> Optional[float]:
        """Quote asset per token implied by the reported reserves."""
        return price_from_reserves(self.quote_reserve, self.token_reserve)

    def is_own(self, pubkey: Optional[str]) -> bool:
        """Whether this trade was made by the operator's account."""
        return bool(pubkey) and self.trader == pubkey


StreamEvent = Union[AssetCreated, TradeObserved]


def price_from_reserves(
    quote_reserve: Optional[float],
    token_reserve: Optional[float],
) -> Optional[float]:
    """
    Compute the spot price from bonding-curve reserves.

    Returns:
        quote_reserve / token_reserve, or None unless both are positive
    """
    if quote_reserve is None or token_reserve is None:
        return None
    if quote_reserve <= 0 or token_reserve <= 0:
        return None
    return quote_reserve / token_reserve


def parse_stream_message(data: Any) -> Optional[StreamEvent]:
    """
    Convert a decoded stream message into a typed event.

    Accepts both the launch feed's field names (mint, txType,
    traderPublicKey, vSolInBondingCurve, vTokensInBondingCurve) and the
    generic names (asset, kind, trader, quoteReserve, tokenReserve).

    Args:
        data: Decoded JSON message

    Returns:
        AssetCreated or TradeObserved, or None for unrecognized shapes
    """
    if not isinstance(data, dict):
        return None

    asset = data.get("mint") or data.get("asset")
    if not asset or not isinstance(asset, str):
        return None

    kind = data.get("txType") or data.get("kind")
    if not isinstance(kind, str):
        return None
    kind = kind.lower()

    quote_reserve = _to_float(
        data.get("vSolInBondingCurve", data.get("quoteReserve"))
    )
    token_reserve = _to_float(
        data.get("vTokensInBondingCurve", data.get("tokenReserve"))
    )

    if kind == "create":
        return AssetCreated(
            asset=asset,
            creator=data.get("traderPublicKey") or data.get("trader"),
            quote_reserve=quote_reserve,
            token_reserve=token_reserve,
        )

    if kind in (TradeSide.BUY.value, TradeSide.SELL.value):
        amount = _to_float(data.get("tokenAmount", data.get("tokenQty")))
        if amount is None:
            amount = _to_float(data.get("newTokenBalance"))
        if amount is not None and amount < 0:
            return None

        trader = data.get("traderPublicKey") or data.get("trader")
        return TradeObserved(
            asset=asset,
            side=TradeSide(kind),
            trader=trader if isinstance(trader, str) else None,
            token_amount=amount,
            quote_reserve=quote_reserve,
            token_reserve=token_reserve,
            signature=data.get("signature"),
        )

    logger.debug(f"Unknown stream message kind '{kind}' for {asset}")
    return None


# =============================================================================
# MARKET SNAPSHOTS
# =============================================================================


class MarketSnapshot(BaseModel):
    """
    Market state for one trading pair from the polling API.

    Field names follow the logical snapshot shape; aliases accept the
    DexScreener pair payload directly via MarketSnapshot.from_pair().
    """

    model_config = ConfigDict(frozen=True)

    asset: str = Field(min_length=1)
    pair_address: str
    venue_id: str
    price_in_quote_asset: float = Field(gt=0)
    price_change_pct_5m: float = 0.0
    volume_quote_5m: float = 0.0
    buy_count_5m: int = 0
    sell_count_5m: int = 0
    liquidity_quote: float = 0.0

    @classmethod
    def from_pair(cls, pair: dict[str, Any]) -> "MarketSnapshot":
        """
        Build a snapshot from a DexScreener-style pair object.

        Raises:
            pydantic.ValidationError: If required fields are missing or invalid
        """
        base = pair.get("baseToken") or {}
        txns_5m = (pair.get("txns") or {}).get("m5") or {}
        return cls(
            asset=base.get("address", ""),
            pair_address=pair.get("pairAddress", ""),
            venue_id=pair.get("dexId", ""),
            price_in_quote_asset=pair.get("priceNative") or 0,
            price_change_pct_5m=(pair.get("priceChange") or {}).get("m5") or 0,
            volume_quote_5m=(pair.get("volume") or {}).get("m5") or 0,
            buy_count_5m=txns_5m.get("buys") or 0,
            sell_count_5m=txns_5m.get("sells") or 0,
            liquidity_quote=(pair.get("liquidity") or {}).get("quote") or 0,
        )
