"""
Local transaction signing and broadcast.

Used by the self-signed submission mode: the execution service builds an
unsigned transaction, we sign it with the held key and broadcast it to a
Solana RPC endpoint ourselves.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException
from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

try:
    from solana.rpc.models import TxOpts
except ImportError:  # solana < 0.40
    from solana.rpc.types import TxOpts

from .errors import MalformedResponseError, NoConfirmationError, TransientNetworkError

logger = logging.getLogger(__name__)


def looks_like_transaction(raw: bytes) -> bool:
    """Whether `raw` deserializes as a versioned transaction."""
    if not raw:
        return False
    try:
        VersionedTransaction.from_bytes(raw)
    except Exception:
        return False
    return True


class SolanaSigner:
    """
    Signs versioned transactions with a local keypair and broadcasts them.

    Usage:
        signer = SolanaSigner.from_secret(secret_b58, rpc_url)
        signature = await signer.sign_and_send(unsigned_tx_bytes)
        await signer.close()
    """

    def __init__(
        self,
        keypair: Keypair,
        client: Any,
        max_retries: int = 3,
        skip_preflight: bool = True,
    ) -> None:
        """
        Args:
            keypair: Signing keypair
            client: solana AsyncClient used for broadcast
            max_retries: RPC-side resend attempts for each broadcast
            skip_preflight: Skip RPC simulation before broadcast
        """
        self._keypair = keypair
        self._client = client
        self._max_retries = max_retries
        self._skip_preflight = skip_preflight

    @classmethod
    def from_secret(
        cls,
        secret_key_b58: str,
        rpc_url: str,
        max_retries: int = 3,
    ) -> "SolanaSigner":
        """Build a signer from a base58 secret key and an RPC URL."""
        keypair = Keypair.from_base58_string(secret_key_b58.strip())
        client = AsyncClient(rpc_url, commitment=Confirmed)
        return cls(keypair, client, max_retries=max_retries)

    @property
    def public_key(self) -> str:
        return str(self._keypair.pubkey())

    @property
    def client(self) -> Any:
        return self._client

    def sign(self, raw: bytes) -> VersionedTransaction:
        """
        Deserialize an unsigned transaction and sign it.

        Raises:
            MalformedResponseError: If `raw` is not a valid transaction
        """
        try:
            unsigned = VersionedTransaction.from_bytes(raw)
        except Exception as e:
            raise MalformedResponseError(f"Invalid transaction bytes: {e}") from e
        return VersionedTransaction(unsigned.message, [self._keypair])

    async def sign_and_send(self, raw: bytes) -> str:
        """
        Sign and broadcast a transaction.

        Returns:
            The transaction signature

        Raises:
            MalformedResponseError: If `raw` is not a valid transaction
            TransientNetworkError: If the RPC call fails
            NoConfirmationError: If the RPC returned no signature
        """
        signed = self.sign(raw)
        opts = TxOpts(skip_preflight=self._skip_preflight, max_retries=self._max_retries)
        try:
            response = await self._client.send_raw_transaction(bytes(signed), opts=opts)
        except (SolanaRpcException, RPCException, OSError) as e:
            raise TransientNetworkError(f"Broadcast failed: {e}") from e

        signature: Optional[Any] = getattr(response, "value", None)
        if not signature:
            raise NoConfirmationError("RPC returned no signature")
        return str(signature)

    async def close(self) -> None:
        """Close the RPC client."""
        await self._client.close()
