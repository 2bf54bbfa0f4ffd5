"""
Balance Manager for pre-flight buy checks.

Before a self-signed buy we make sure the wallet can pay for the buy
amount, the priority fee and a small cushion for network fees. A failed
check aborts the buy with no retry and no side effects.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from solana.exceptions import SolanaRpcException
from solana.rpc.core import RPCException
from solders.pubkey import Pubkey

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = Decimal(1_000_000_000)


class PreSubmitValidationError(Exception):
    """
    Base class for errors that occur BEFORE trade submission.

    Nothing was sent, so the caller can drop the attempt cleanly.
    """

    pass


class InsufficientFundsError(PreSubmitValidationError):
    """Raised when the wallet balance does not cover a buy."""

    def __init__(self, required: Decimal, available: Decimal):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient balance: required {required}, available {available}"
        )


class BalanceUnavailableError(PreSubmitValidationError):
    """Raised when the wallet balance could not be fetched."""


@dataclass
class BalanceConfig:
    """Configuration for the pre-flight balance check."""

    # Covers signature and account rent fees on top of amount + priority fee
    fee_cushion: Decimal = Decimal("0.002")


class BalanceManager:
    """
    Reads the wallet's SOL balance and validates buys against it.

    Usage:
        manager = BalanceManager(rpc_client, public_key)
        await manager.check_buy(Decimal("0.005"), Decimal("0.0001"))
    """

    def __init__(
        self,
        rpc_client: Any,
        public_key: str,
        config: Optional[BalanceConfig] = None,
    ) -> None:
        """
        Args:
            rpc_client: solana AsyncClient (or compatible) for balance queries
            public_key: Wallet address to check
            config: Balance configuration
        """
        self._client = rpc_client
        self._public_key = public_key
        self._config = config or BalanceConfig()
        self._last_balance: Optional[Decimal] = None

    @property
    def last_balance(self) -> Optional[Decimal]:
        """Balance seen by the most recent successful fetch."""
        return self._last_balance

    async def get_balance(self) -> Decimal:
        """
        Fetch the wallet balance in SOL.

        Raises:
            BalanceUnavailableError: If the RPC call fails
        """
        try:
            response = await self._client.get_balance(Pubkey.from_string(self._public_key))
        except (SolanaRpcException, RPCException, OSError) as e:
            logger.error(f"Balance fetch failed: {e}")
            raise BalanceUnavailableError(f"Balance fetch failed: {e}") from e

        balance = Decimal(response.value) / LAMPORTS_PER_SOL
        self._last_balance = balance
        logger.info(f"Balance: {balance:.6f} SOL | addr={self._public_key}")
        return balance

    async def check_buy(self, amount: Decimal, priority_fee: Decimal) -> Decimal:
        """
        Verify the wallet can afford a buy.

        Args:
            amount: Quote amount to spend
            priority_fee: Priority fee attached to the trade

        Returns:
            The fetched balance

        Raises:
            InsufficientFundsError: If balance < amount + fee + cushion
            BalanceUnavailableError: If the balance could not be fetched
        """
        required = amount + priority_fee + self._config.fee_cushion
        balance = await self.get_balance()
        if balance < required:
            logger.warning(
                f"Skipping buy: low balance (have={balance:.4f}, need~{required:.4f})"
            )
            raise InsufficientFundsError(required, balance)
        return balance
