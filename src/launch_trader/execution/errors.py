"""
Trade submission errors.

These never escape TradeSubmitter.submit(); they drive its retry and
fallback decisions and end up in the logs.
"""
from __future__ import annotations

from typing import Optional


class SubmissionError(Exception):
    """Base class for failures while submitting a trade."""


class TransientNetworkError(SubmissionError):
    """Connection failure or non-2xx status. Retried with backoff."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(SubmissionError):
    """Response body is unusable (missing fields, bad base64, bad transaction)."""


class UndecodableBodyError(MalformedResponseError):
    """Body is neither a raw transaction nor JSON; the request is re-sent form-encoded."""


class NoConfirmationError(SubmissionError):
    """The service or RPC answered without a signature. Retried with backoff."""
