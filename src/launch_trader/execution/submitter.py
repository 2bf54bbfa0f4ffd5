"""
Trade Submitter - turns a buy/sell decision into a confirmed execution.

Two operating modes share one contract, submit(request) -> signature | None:

    Self-signed: the execution service builds an unsigned transaction,
        we decode it (raw bytes, or base64 inside JSON), sign it locally
        and broadcast it ourselves.
    Delegated: the execution service builds, signs and broadcasts on our
        behalf using an API key, and answers with the signature.

Each mode is an ordered list of submission strategies (JSON request,
then the same request form-encoded). For every endpoint we make a bounded
number of attempts with increasing backoff; the first usable signature
short-circuits everything else. Exhausting all endpoints returns None.

submit() is the single source of truth for "did this trade go through":
it never raises except on task cancellation.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence, Union

import aiohttp

from .errors import (
    MalformedResponseError,
    SubmissionError,
    TransientNetworkError,
    UndecodableBodyError,
)

logger = logging.getLogger(__name__)


class TradeAction(str, Enum):
    """Trade direction."""
    BUY = "buy"
    SELL = "sell"


SELL_ALL = "100%"

COMMON_HEADERS = {
    "accept": "*/*",
    "user-agent": "launch-trader/1.0",
    "origin": "https://pump.fun",
    "referer": "https://pump.fun/",
}

TRANSACTION_FIELDS = ("transaction", "tx", "data")
SIGNATURE_FIELDS = ("signature", "txSig")


@dataclass(frozen=True)
class TradeRequest:
    """
    A trade to submit.

    amount is quote-denominated for buys and a percentage string of the
    holding (normally "100%") for full exits.
    """

    action: TradeAction
    asset: str
    amount: Union[Decimal, str]
    slippage_bps: int
    priority_fee: Decimal
    venue_hint: str = "auto"
    public_key: Optional[str] = None

    @classmethod
    def buy(
        cls,
        asset: str,
        amount: Decimal,
        slippage_bps: int,
        priority_fee: Decimal,
        public_key: Optional[str] = None,
        venue_hint: str = "auto",
    ) -> "TradeRequest":
        return cls(
            action=TradeAction.BUY,
            asset=asset,
            amount=amount,
            slippage_bps=slippage_bps,
            priority_fee=priority_fee,
            venue_hint=venue_hint,
            public_key=public_key,
        )

    @classmethod
    def sell_all(
        cls,
        asset: str,
        slippage_bps: int,
        priority_fee: Decimal,
        public_key: Optional[str] = None,
        venue_hint: str = "auto",
    ) -> "TradeRequest":
        return cls(
            action=TradeAction.SELL,
            asset=asset,
            amount=SELL_ALL,
            slippage_bps=slippage_bps,
            priority_fee=priority_fee,
            venue_hint=venue_hint,
            public_key=public_key,
        )

    @property
    def denominated_in_quote(self) -> bool:
        return not (isinstance(self.amount, str) and self.amount.endswith("%"))

    def to_payload(self) -> dict[str, Any]:
        """Execution-service request body."""
        payload: dict[str, Any] = {
            "action": self.action.value,
            "mint": self.asset,
            "amount": self.amount if isinstance(self.amount, str) else float(self.amount),
            "denominatedInSol": "true" if self.denominated_in_quote else "false",
            # The service takes slippage in percent
            "slippage": self.slippage_bps / 100,
            "priorityFee": float(self.priority_fee),
            "pool": self.venue_hint or "auto",
        }
        if self.public_key:
            payload["publicKey"] = self.public_key
        return payload


@dataclass(frozen=True)
class HttpResponse:
    """The parts of an HTTP response the strategies look at."""

    status: int
    body: bytes
    content_type: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


PostFunc = Callable[[str, dict, str, Optional[dict]], Awaitable[HttpResponse]]


class TransactionSender(Protocol):
    """Signs and broadcasts an unsigned transaction."""

    async def sign_and_send(self, raw: bytes) -> str: ...


# =============================================================================
# Response decoding
# =============================================================================


def extract_transaction_bytes(
    body: bytes,
    is_transaction: Callable[[bytes], bool],
) -> bytes:
    """
    Pull unsigned transaction bytes out of a build-endpoint response.

    Tried in order: the raw body as a serialized transaction, then a JSON
    object carrying base64 under one of TRANSACTION_FIELDS.

    Raises:
        UndecodableBodyError: Body is empty or neither a transaction nor JSON
        MalformedResponseError: JSON without a usable transaction field
    """
    if not body:
        raise UndecodableBodyError("Empty response body")

    if is_transaction(body):
        return body

    try:
        data = json.loads(body)
    except ValueError as e:
        raise UndecodableBodyError(f"Body is not a transaction or JSON ({len(body)} bytes)") from e

    if isinstance(data, dict):
        for name in TRANSACTION_FIELDS:
            encoded = data.get(name)
            if not isinstance(encoded, str) or not encoded:
                continue
            try:
                raw = base64.b64decode(encoded, validate=True)
            except (binascii.Error, ValueError) as e:
                raise MalformedResponseError(f"Invalid base64 in '{name}'") from e
            if raw:
                return raw

    raise MalformedResponseError(f"No transaction field in response: {str(data)[:200]}")


def extract_signature(body: bytes) -> str:
    """
    Read the signature from a delegated-execution JSON response.

    Raises:
        MalformedResponseError: Body is not JSON or carries no signature
    """
    try:
        data = json.loads(body) if body else None
    except ValueError as e:
        raise MalformedResponseError("Response is not JSON") from e

    if isinstance(data, dict):
        for name in SIGNATURE_FIELDS:
            signature = data.get(name)
            if isinstance(signature, str) and signature:
                return signature

    raise MalformedResponseError(f"No signature in response: {str(data)[:200]}")


# =============================================================================
# Strategies
# =============================================================================


class SubmissionStrategy:
    """
    One way of submitting a trade to an endpoint.

    falls_back_on lists the MalformedResponseError types after which the
    next strategy in the mode is tried against the same endpoint.
    """

    name: str = "strategy"
    encoding: str = "json"
    falls_back_on: tuple[type[MalformedResponseError], ...] = ()

    async def run(self, post: PostFunc, endpoint: str, request: TradeRequest) -> str:
        raise NotImplementedError


class LocalBuildStrategy(SubmissionStrategy):
    """Fetch an unsigned transaction, sign it locally and broadcast it."""

    def __init__(
        self,
        sender: TransactionSender,
        encoding: str = "json",
        is_transaction: Optional[Callable[[bytes], bool]] = None,
    ) -> None:
        if is_transaction is None:
            from .signer import looks_like_transaction
            is_transaction = looks_like_transaction
        self._sender = sender
        self._is_transaction = is_transaction
        self.encoding = encoding
        self.name = f"local-{encoding}"
        # Only an unparseable body warrants re-sending the request form-encoded
        self.falls_back_on = (UndecodableBodyError,)

    async def run(self, post: PostFunc, endpoint: str, request: TradeRequest) -> str:
        response = await post(endpoint, request.to_payload(), self.encoding, None)
        if not response.ok:
            raise TransientNetworkError(
                f"Build endpoint returned {response.status}",
                status_code=response.status,
            )
        raw = extract_transaction_bytes(response.body, self._is_transaction)
        return await self._sender.sign_and_send(raw)


class DelegatedStrategy(SubmissionStrategy):
    """Ask the execution service to sign and broadcast for us."""

    def __init__(self, api_key: str, encoding: str = "json") -> None:
        self._api_key = api_key
        self.encoding = encoding
        self.name = f"delegated-{encoding}"
        # A missing signature is retried once form-encoded
        self.falls_back_on = (MalformedResponseError,)

    async def run(self, post: PostFunc, endpoint: str, request: TradeRequest) -> str:
        payload = request.to_payload()
        payload.pop("publicKey", None)
        payload["skipPreflight"] = "true"

        response = await post(endpoint, payload, self.encoding, {"api-key": self._api_key})
        if not response.ok:
            raise TransientNetworkError(
                f"Execution API returned {response.status}: {response.body[:200]!r}",
                status_code=response.status,
            )
        return extract_signature(response.body)


@dataclass
class SubmissionMode:
    """Ordered strategies plus endpoint/retry policy for one operating mode."""

    name: str
    strategies: Sequence[SubmissionStrategy]
    endpoints: Sequence[str]
    max_attempts: int = 2
    backoff_seconds: float = 0.25
    attempt_timeout: float = 15.0
    reports_fills: bool = True

    def __post_init__(self) -> None:
        if not self.strategies:
            raise ValueError("A submission mode needs at least one strategy")
        if not self.endpoints:
            raise ValueError("A submission mode needs at least one endpoint")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")


# =============================================================================
# Submitter
# =============================================================================


class TradeSubmitter:
    """
    Submits trades with endpoint fallback, bounded retries and backoff.

    Usage:
        submitter = TradeSubmitter.self_signed(endpoints, signer)
        signature = await submitter.submit(TradeRequest.buy(...))
        if signature is None:
            # nothing was confirmed; do not assume a position exists
            ...
        await submitter.close()
    """

    def __init__(
        self,
        mode: SubmissionMode,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._mode = mode
        self._session = session
        self._owns_session = session is None

    @classmethod
    def self_signed(
        cls,
        endpoints: Sequence[str],
        sender: TransactionSender,
        max_attempts: int = 2,
        backoff_seconds: float = 0.25,
        attempt_timeout: float = 15.0,
        is_transaction: Optional[Callable[[bytes], bool]] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> "TradeSubmitter":
        mode = SubmissionMode(
            name="self-signed",
            strategies=[
                LocalBuildStrategy(sender, "json", is_transaction),
                LocalBuildStrategy(sender, "form", is_transaction),
            ],
            endpoints=list(endpoints),
            max_attempts=max_attempts,
            backoff_seconds=backoff_seconds,
            attempt_timeout=attempt_timeout,
        )
        return cls(mode, session=session)

    @classmethod
    def delegated(
        cls,
        endpoints: Sequence[str],
        api_key: str,
        max_attempts: int = 3,
        backoff_seconds: float = 0.30,
        attempt_timeout: float = 15.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> "TradeSubmitter":
        mode = SubmissionMode(
            name="delegated",
            strategies=[
                DelegatedStrategy(api_key, "json"),
                DelegatedStrategy(api_key, "form"),
            ],
            endpoints=list(endpoints),
            max_attempts=max_attempts,
            backoff_seconds=backoff_seconds,
            attempt_timeout=attempt_timeout,
        )
        return cls(mode, session=session)

    @property
    def mode(self) -> SubmissionMode:
        return self._mode

    @property
    def reports_fills(self) -> bool:
        """Whether own fills for these trades will show up on the stream."""
        return self._mode.reports_fills

    async def close(self) -> None:
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    async def _post(
        self,
        url: str,
        payload: dict,
        encoding: str,
        params: Optional[dict] = None,
    ) -> HttpResponse:
        """
        POST a payload JSON- or form-encoded.

        Raises:
            TransientNetworkError: On connection-level failures
        """
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        kwargs: dict[str, Any] = {"headers": dict(COMMON_HEADERS), "params": params}
        if encoding == "form":
            kwargs["data"] = {k: str(v) for k, v in payload.items()}
        else:
            kwargs["json"] = payload

        try:
            async with self._session.post(url, **kwargs) as response:
                body = await response.read()
                return HttpResponse(
                    status=response.status,
                    body=body,
                    content_type=response.headers.get("content-type", ""),
                )
        except aiohttp.ClientError as e:
            raise TransientNetworkError(f"{type(e).__name__}: {e}") from e

    async def _attempt(self, endpoint: str, request: TradeRequest) -> str:
        """Run the mode's strategies in order against one endpoint."""
        strategies = list(self._mode.strategies)
        for index, strategy in enumerate(strategies):
            try:
                return await strategy.run(self._post, endpoint, request)
            except MalformedResponseError as e:
                has_next = index + 1 < len(strategies)
                if has_next and isinstance(e, strategy.falls_back_on):
                    logger.debug(f"{strategy.name} unusable at {endpoint} ({e}), trying next encoding")
                    continue
                raise
        raise MalformedResponseError("No strategy produced a result")

    async def submit(self, request: TradeRequest) -> Optional[str]:
        """
        Submit a trade.

        Returns:
            The confirmation signature, or None if every endpoint and
            attempt failed. Never raises except on cancellation.
        """
        mode = self._mode
        for endpoint in mode.endpoints:
            for attempt in range(1, mode.max_attempts + 1):
                try:
                    signature = await asyncio.wait_for(
                        self._attempt(endpoint, request),
                        timeout=mode.attempt_timeout,
                    )
                    logger.info(
                        f"TRADE OK [{mode.name}] {request.action.value} "
                        f"asset={request.asset} sig={signature}"
                    )
                    return signature

                except MalformedResponseError as e:
                    logger.warning(
                        f"[{mode.name}] {endpoint} attempt {attempt}: malformed response: {e}"
                    )
                    break

                except asyncio.TimeoutError:
                    logger.warning(
                        f"[{mode.name}] {endpoint} attempt {attempt}: "
                        f"no result within {mode.attempt_timeout}s"
                    )

                except SubmissionError as e:
                    logger.warning(
                        f"[{mode.name}] {endpoint} attempt {attempt}: "
                        f"{type(e).__name__}: {e}"
                    )

                except asyncio.CancelledError:
                    raise

                except Exception as e:
                    logger.error(
                        f"[{mode.name}] {endpoint} attempt {attempt}: unexpected error: {e}",
                        exc_info=True,
                    )

                if attempt < mode.max_attempts:
                    await asyncio.sleep(mode.backoff_seconds * attempt)

        logger.error(
            f"TRADE FAILED [{mode.name}] {request.action.value} asset={request.asset}: "
            f"all endpoints exhausted"
        )
        return None


class DryRunSubmitter:
    """
    Paper-trading stand-in with the TradeSubmitter contract.

    Every request is logged and confirmed with a synthetic signature. No
    fills will be streamed for these trades.
    """

    reports_fills = False

    def __init__(self) -> None:
        self.requests: list[TradeRequest] = []

    async def submit(self, request: TradeRequest) -> Optional[str]:
        self.requests.append(request)
        signature = f"dry-run-{uuid.uuid4().hex[:16]}"
        logger.info(
            f"DRY RUN: Would {request.action.value} {request.amount} of {request.asset} "
            f"(sig={signature})"
        )
        return signature

    async def close(self) -> None:
        return None
