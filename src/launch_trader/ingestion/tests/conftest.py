"""
Test fixtures for ingestion layer.

IMPORTANT: All external API calls must be mocked.
Never hit the real stream or snapshot APIs in tests.
"""

import pytest


# =============================================================================
# Raw Message Fixtures
# =============================================================================


@pytest.fixture
def create_message():
    """A creation message as the launch feed sends it."""
    return {
        "signature": "sig_create",
        "mint": "MintAAA111",
        "traderPublicKey": "CreatorXYZ",
        "txType": "create",
        "initialBuy": 60735849.056603,
        "vTokensInBondingCurve": 1012264150.943397,
        "vSolInBondingCurve": 31.799999999999997,
        "marketCapSol": 31.414725069897433,
    }


@pytest.fixture
def buy_message():
    """A buy trade message as the launch feed sends it."""
    return {
        "signature": "sig_buy",
        "mint": "MintAAA111",
        "traderPublicKey": "BuyerOne",
        "txType": "buy",
        "tokenAmount": 1500000.0,
        "newTokenBalance": 1500000.0,
        "vTokensInBondingCurve": 1000000000.0,
        "vSolInBondingCurve": 32.0,
    }


@pytest.fixture
def sample_pair():
    """A DexScreener-style pair object."""
    return {
        "chainId": "solana",
        "dexId": "pumpswap",
        "pairAddress": "PairAAA",
        "baseToken": {"address": "MintAAA111", "symbol": "AAA"},
        "quoteToken": {"address": "So11111111111111111111111111111111111111112", "symbol": "SOL"},
        "priceNative": "0.0000321",
        "priceChange": {"m5": 12.5},
        "volume": {"m5": 44.2},
        "txns": {"m5": {"buys": 40, "sells": 7}},
        "liquidity": {"usd": 9000, "quote": 30.5},
    }
