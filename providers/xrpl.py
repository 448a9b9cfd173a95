"""JSON-RPC client for public XRP Ledger servers.

Public XRPL endpoints are shared and rate limited, so every query goes through
a small amount of failure handling:

* the account address is validated locally before anything touches the
  network;
* account info and trust line queries are attempted up to three times with
  exponential backoff (1s, then 2s);
* a non-2xx response moves the client on to the next configured server.  The
  move is permanent for the lifetime of the :class:`RpcClient` instance.

Only three read-only methods are used: ``account_info``, ``account_lines`` and
``account_nfts``.  Results are returned as small dataclasses.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Sequence, TypeVar

import httpx

from diagnostics import LoggingObserver, Observer
from errors import (
    ApiError,
    InvalidAddress,
    MalformedResponse,
    NetworkError,
    RpcError,
    ServerError,
)

DEFAULT_SERVERS = (
    "https://xrplcluster.com",
    "https://s1.ripple.com:51234",
    "https://s2.ripple.com:51234",
)
DEFAULT_TIMEOUT = 10.0

DROPS_PER_XRP = Decimal(1_000_000)
BASE_RESERVE = Decimal("1")  # XRP
OWNER_RESERVE = Decimal("0.2")  # XRP per owned ledger object

_ADDRESS_RE = re.compile(r"r[1-9A-HJ-NP-Za-km-z]{24,34}")

T = TypeVar("T")


def is_valid_address(address: Any) -> bool:
    """Return ``True`` if ``address`` looks like a classic XRPL address.

    The body uses the base58 alphabet of the ledger, which leaves out ``0``,
    ``O``, ``I`` and ``l``.  No checksum is verified.
    """

    return isinstance(address, str) and _ADDRESS_RE.fullmatch(address) is not None


def _as_mapping(data: Any) -> Mapping[str, Any]:
    return data if isinstance(data, Mapping) else {}


def _read_str(data: Mapping[str, Any], key: str, default: str = "") -> str:
    value = data.get(key)
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return default


def _read_int(data: Mapping[str, Any], key: str, default: int = 0) -> int:
    value = data.get(key)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return default


@dataclass(frozen=True)
class AccountInfo:
    """Snapshot of an account root entry from a validated ledger."""

    address: str
    balance: str  # drops
    owner_count: int = 0
    sequence: int = 0
    flags: int = 0
    previous_txn_id: str | None = None
    previous_txn_lgr_seq: int | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "AccountInfo":
        payload = _as_mapping(data)
        return cls(
            address=_read_str(payload, "Account"),
            balance=_read_str(payload, "Balance", "0"),
            owner_count=_read_int(payload, "OwnerCount"),
            sequence=_read_int(payload, "Sequence"),
            flags=_read_int(payload, "Flags"),
            previous_txn_id=_read_str(payload, "PreviousTxnID") or None,
            previous_txn_lgr_seq=_read_int(payload, "PreviousTxnLgrSeq") or None,
        )

    @property
    def xrp_balance(self) -> Decimal:
        try:
            return Decimal(self.balance) / DROPS_PER_XRP
        except ArithmeticError:
            return Decimal(0)

    @property
    def reserve(self) -> Decimal:
        """XRP locked by the base reserve plus one owner reserve per object."""

        return BASE_RESERVE + OWNER_RESERVE * self.owner_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "balance": self.balance,
            "xrp_balance": str(self.xrp_balance),
            "reserve": str(self.reserve),
            "owner_count": self.owner_count,
            "sequence": self.sequence,
            "flags": self.flags,
            "previous_txn_id": self.previous_txn_id,
            "previous_txn_lgr_seq": self.previous_txn_lgr_seq,
        }


@dataclass(frozen=True)
class TrustLine:
    """One issuer/currency relationship held by an account.

    ``account`` is the counterparty of the line, i.e. the token issuer when
    the monitored wallet holds the token.
    """

    account: str
    balance: str
    currency: str
    limit: str = "0"
    limit_peer: str = "0"
    quality_in: int = 0
    quality_out: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "TrustLine":
        payload = _as_mapping(data)
        return cls(
            account=_read_str(payload, "account"),
            balance=_read_str(payload, "balance", "0"),
            currency=_read_str(payload, "currency"),
            limit=_read_str(payload, "limit", "0"),
            limit_peer=_read_str(payload, "limit_peer", "0"),
            quality_in=_read_int(payload, "quality_in"),
            quality_out=_read_int(payload, "quality_out"),
        )

    @property
    def issuer(self) -> str:
        return self.account

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account": self.account,
            "balance": self.balance,
            "currency": self.currency,
            "limit": self.limit,
            "limit_peer": self.limit_peer,
            "quality_in": self.quality_in,
            "quality_out": self.quality_out,
        }


@dataclass(frozen=True)
class NFToken:
    flags: int
    issuer: str
    token_id: str
    taxon: int
    serial: int
    uri: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "NFToken":
        payload = _as_mapping(data)
        return cls(
            flags=_read_int(payload, "Flags"),
            issuer=_read_str(payload, "Issuer"),
            token_id=_read_str(payload, "NFTokenID"),
            taxon=_read_int(payload, "NFTokenTaxon"),
            serial=_read_int(payload, "nft_serial"),
            uri=_read_str(payload, "URI") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flags": self.flags,
            "issuer": self.issuer,
            "token_id": self.token_id,
            "taxon": self.taxon,
            "serial": self.serial,
            "uri": self.uri,
        }


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay: float = 1.0  # seconds

    def delay(self, failed_attempts: int) -> float:
        """Wait before the next attempt after ``failed_attempts`` failures."""

        return self.initial_delay * 2 ** (failed_attempts - 1)


class FailurePolicy(enum.Enum):
    PROPAGATE = "propagate"
    DEGRADE_TO_EMPTY = "degrade"


class RpcClient:
    """Query XRPL servers in order of preference.

    Parameters
    ----------
    servers:
        Candidate JSON-RPC URLs, most preferred first.
    timeout:
        Per-attempt transport timeout in seconds.
    retry:
        Attempt budget and backoff for account info and trust line queries.
    http:
        Optional :class:`httpx.AsyncClient`.  When omitted the client creates
        its own and closes it in :meth:`aclose`.
    sleep:
        Coroutine used for backoff waits.
    """

    def __init__(
        self,
        servers: Sequence[str] = DEFAULT_SERVERS,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        retry: RetryPolicy | None = None,
        observer: Observer | None = None,
        http: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if not servers:
            raise ValueError("at least one XRPL server is required")
        self.servers: List[str] = list(servers)
        self.server_index = 0
        self.timeout = timeout
        self.retry = retry or RetryPolicy()
        self.observer = observer or LoggingObserver(logging.getLogger(__name__))
        self._http = http
        self._owns_http = http is None
        self._sleep = sleep

    @property
    def current_server(self) -> str:
        return self.servers[self.server_index]

    async def __aenter__(self) -> "RpcClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout)
        return self._http

    def _advance_server(self) -> None:
        if self.server_index < len(self.servers) - 1:
            self.server_index += 1
            self.observer.emit("rpc.failover", logging.WARNING, server=self.current_server)

    async def request(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Send one JSON-RPC call and return the ``result`` object.

        No retries happen here.  A non-2xx status advances the server cursor
        before :class:`ServerError` is raised.
        """

        server = self.current_server
        self.observer.emit("rpc.request", logging.DEBUG, server=server, method=method)
        try:
            resp = await self._client().post(
                server,
                json={"method": method, "params": [params]},
                timeout=self.timeout,
            )
        except httpx.TransportError as exc:
            self.observer.emit("rpc.error", logging.ERROR, server=server, method=method, kind="network")
            raise NetworkError(server, str(exc)) from exc

        if not resp.is_success:
            self.observer.emit(
                "rpc.error", logging.ERROR, server=server, method=method, status=resp.status_code
            )
            self._advance_server()
            raise ServerError(server, resp.status_code, resp.reason_phrase)

        try:
            data = resp.json()
        except ValueError as exc:
            raise MalformedResponse(server, "response body is not JSON") from exc

        result = data.get("result") if isinstance(data, dict) else None
        if isinstance(result, dict) and result.get("error"):
            error = str(result["error"])
            message = result.get("error_message")
            self.observer.emit("rpc.error", logging.ERROR, server=server, method=method, error=error)
            raise ApiError(server, error, str(message) if message else None)
        if not isinstance(result, dict):
            raise MalformedResponse(server, "no result field")

        self.observer.emit("rpc.ok", logging.DEBUG, server=server, method=method)
        return result

    async def _with_retry(self, call: Callable[[], Awaitable[T]]) -> T:
        attempts = max(1, self.retry.max_attempts)
        for attempt in range(1, attempts):
            try:
                return await call()
            except RpcError as exc:
                delay = self.retry.delay(attempt)
                self.observer.emit(
                    "rpc.retry",
                    logging.WARNING,
                    attempt=attempt,
                    of=attempts,
                    delay=delay,
                    error=exc.message,
                )
                await self._sleep(delay)
        return await call()

    def _require_address(self, address: str) -> None:
        if not is_valid_address(address):
            self.observer.emit("rpc.invalid_address", logging.ERROR, address=address)
            raise InvalidAddress(address)

    async def fetch_account_info(self, address: str) -> AccountInfo:
        self._require_address(address)

        async def call() -> AccountInfo:
            result = await self.request(
                "account_info", {"account": address, "ledger_index": "validated"}
            )
            data = result.get("account_data")
            if not isinstance(data, dict):
                raise MalformedResponse(self.current_server, "missing account_data field")
            return AccountInfo.from_dict(data)

        return await self._with_retry(call)

    async def fetch_account_lines(self, address: str) -> List[TrustLine]:
        self._require_address(address)

        async def call() -> List[TrustLine]:
            result = await self.request(
                "account_lines", {"account": address, "ledger_index": "validated"}
            )
            lines = result.get("lines")
            if lines is None:
                return []
            if not isinstance(lines, list):
                raise MalformedResponse(self.current_server, "lines field is not a list")
            return [TrustLine.from_dict(it) for it in lines if isinstance(it, dict)]

        lines = await self._with_retry(call)
        self.observer.emit("rpc.lines", logging.INFO, address=address, count=len(lines))
        return lines

    async def fetch_account_nfts(
        self,
        address: str,
        on_failure: FailurePolicy = FailurePolicy.DEGRADE_TO_EMPTY,
    ) -> List[NFToken]:
        """Return the NFTs owned by ``address``.

        An account without an NFT directory is reported by the ledger as an
        error, so by default any request failure yields an empty list.  Pass
        ``FailurePolicy.PROPAGATE`` to see the error instead.  The request is
        made once, without retries.
        """

        self._require_address(address)
        try:
            result = await self.request(
                "account_nfts", {"account": address, "ledger_index": "validated"}
            )
            nfts = result.get("account_nfts")
            if nfts is None:
                nfts = []
            elif not isinstance(nfts, list):
                raise MalformedResponse(self.current_server, "account_nfts field is not a list")
        except RpcError as exc:
            if on_failure is FailurePolicy.PROPAGATE:
                raise
            self.observer.emit("rpc.nfts_degraded", logging.WARNING, address=address, error=exc.message)
            return []
        return [NFToken.from_dict(it) for it in nfts if isinstance(it, dict)]
