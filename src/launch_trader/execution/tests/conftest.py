"""
Test fixtures for execution layer.

IMPORTANT: All external API calls must be mocked.
Never hit a real execution service or RPC node in tests.
"""
import base64
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from launch_trader.execution import HttpResponse


# =============================================================================
# Transactions
# =============================================================================


@pytest.fixture
def keypair():
    return Keypair()


@pytest.fixture
def unsigned_tx_bytes(keypair):
    """A serialized, unsigned versioned transaction paid by `keypair`."""
    message = MessageV0.try_compile(keypair.pubkey(), [], [], Hash.default())
    tx = VersionedTransaction.populate(message, [Signature.default()])
    return bytes(tx)


# =============================================================================
# Execution service responses
# =============================================================================


@pytest.fixture
def responses():
    """Builders for HttpResponse objects: responses.raw / .json / .status."""

    def raw(body, status=200):
        return HttpResponse(status=status, body=body, content_type="application/octet-stream")

    def as_json(payload, status=200):
        return HttpResponse(
            status=status,
            body=json.dumps(payload).encode(),
            content_type="application/json",
        )

    def b64(data):
        return base64.b64encode(data).decode()

    return SimpleNamespace(raw=raw, json=as_json, b64=b64)


@pytest.fixture
def sender():
    """Transaction sender that signs and broadcasts successfully."""
    mock = MagicMock()
    mock.sign_and_send = AsyncMock(return_value="sig_local")
    return mock


@pytest.fixture
def rpc_client():
    """solana AsyncClient stand-in."""
    client = MagicMock()
    client.get_balance = AsyncMock(return_value=SimpleNamespace(value=50_000_000))
    client.send_raw_transaction = AsyncMock(return_value=SimpleNamespace(value="5igSig"))
    client.close = AsyncMock()
    return client
