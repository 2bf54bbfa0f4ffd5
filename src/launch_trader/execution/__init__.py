"""
Execution Layer - Trade submission and position management.

This module provides:
    - TradeSubmitter: Submits trades with strategy/endpoint fallback (use this!)
    - DryRunSubmitter: Paper-trading stand-in with the same contract
    - TradeRequest: Buy/sell request and its wire payload
    - SolanaSigner: Local signing and broadcast for the self-signed mode
    - BalanceManager: Pre-flight balance check before buys
    - PositionManager: Position lifecycle and exit state machine
    - ExitConfig / ExitReason: Exit rule configuration and outcomes
    - Exceptions: SubmissionError family, PreSubmitValidationError family

Exit Rule Priority:
    take-profit > trailing-stop > stop-loss > time-to-live

Usage:
    from launch_trader.execution import TradeSubmitter, TradeRequest

    submitter = TradeSubmitter.delegated(endpoints, api_key)
    signature = await submitter.submit(TradeRequest.buy(asset, amount, 1500, fee))
"""

# Submission errors
from .errors import (
    SubmissionError,
    TransientNetworkError,
    MalformedResponseError,
    UndecodableBodyError,
    NoConfirmationError,
)

# Trade submission
from .submitter import (
    TradeSubmitter,
    DryRunSubmitter,
    TradeRequest,
    TradeAction,
    HttpResponse,
    SubmissionMode,
    SubmissionStrategy,
    LocalBuildStrategy,
    DelegatedStrategy,
    extract_transaction_bytes,
    extract_signature,
)

# Local signing
from .signer import SolanaSigner, looks_like_transaction

# Balance checks
from .balance_manager import (
    BalanceManager,
    BalanceConfig,
    PreSubmitValidationError,
    InsufficientFundsError,
    BalanceUnavailableError,
)

# Positions and exits
from .position_manager import (
    PositionManager,
    Position,
    PositionState,
    ExitConfig,
    ExitReason,
    ExitRecord,
)

__all__ = [
    # Submission errors
    "SubmissionError",
    "TransientNetworkError",
    "MalformedResponseError",
    "UndecodableBodyError",
    "NoConfirmationError",
    # Trade submission
    "TradeSubmitter",
    "DryRunSubmitter",
    "TradeRequest",
    "TradeAction",
    "HttpResponse",
    "SubmissionMode",
    "SubmissionStrategy",
    "LocalBuildStrategy",
    "DelegatedStrategy",
    "extract_transaction_bytes",
    "extract_signature",
    # Local signing
    "SolanaSigner",
    "looks_like_transaction",
    # Balance checks
    "BalanceManager",
    "BalanceConfig",
    "PreSubmitValidationError",
    "InsufficientFundsError",
    "BalanceUnavailableError",
    # Positions and exits
    "PositionManager",
    "Position",
    "PositionState",
    "ExitConfig",
    "ExitReason",
    "ExitRecord",
]
