"""
Shared test fixtures for integration tests.

This file provides fixtures that span multiple components,
unlike component-specific fixtures in src/launch_trader/{component}/tests/conftest.py
"""
import json
from types import SimpleNamespace

import pytest

OWN_KEY = "OperatorKey"


# =============================================================================
# Launch feed messages
# =============================================================================


@pytest.fixture
def own_key():
    """The operator's wallet address."""
    return OWN_KEY


@pytest.fixture
def feed():
    """
    Raw launch feed messages, as JSON strings.

    feed.create(mint), feed.trade(mint, side, trader, qty, sol=30.0),
    feed.qualifying(mint) -> 12 buys from 10 distinct traders.
    """

    def create(mint, sol=30.0, tokens=1_000_000_000.0):
        return json.dumps({
            "signature": f"sig_create_{mint}",
            "mint": mint,
            "traderPublicKey": "Creator",
            "txType": "create",
            "vSolInBondingCurve": sol,
            "vTokensInBondingCurve": tokens,
        })

    def trade(mint, side, trader, qty=1000.0, sol=30.0, tokens=1_000_000_000.0):
        return json.dumps({
            "signature": f"sig_{side}_{mint}_{trader}",
            "mint": mint,
            "traderPublicKey": trader,
            "txType": side,
            "tokenAmount": qty,
            "vSolInBondingCurve": sol,
            "vTokensInBondingCurve": tokens,
        })

    def qualifying(mint):
        traders = [f"buyer{i}" for i in range(10)] + ["buyer0", "buyer1"]
        return [trade(mint, "buy", trader) for trader in traders]

    return SimpleNamespace(create=create, trade=trade, qualifying=qualifying)
