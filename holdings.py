"""Aggregate whitelisted token holdings across the monitored wallets.

This module sits between the ledger client and whatever renders the data.
It walks the wallets listed in ``settings.json`` one at a time, fetches their
trust lines and keeps the lines that pass the whitelist.

A failure on one wallet never hides the data from the others: every view
returned here carries the successful results together with a list of
per-wallet errors, and the caller decides how to show both.

The three entry points mirror the screens of the monitor:

* :func:`load_tokens` - every whitelisted token held by any monitored wallet;
* :func:`token_holdings` - which wallets hold one particular token;
* :func:`wallet_details` - balance, trust lines and NFTs of one wallet.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from currency import decode
from diagnostics import LoggingObserver, Observer
from errors import InvalidAddress, RpcError
from providers.xrpl import AccountInfo, NFToken, RpcClient, TrustLine, is_valid_address
from settings import Wallet
from whitelist import TokenConfig, WhitelistMatcher, currencies_match

_default_observer = LoggingObserver(logging.getLogger(__name__))


def _to_decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        return Decimal(0)


@dataclass(frozen=True)
class WalletError:
    wallet: str
    address: str
    error: str

    def to_dict(self) -> Dict[str, str]:
        return {"wallet": self.wallet, "address": self.address, "error": self.error}


@dataclass(frozen=True)
class HeldToken:
    """A whitelisted trust line found in one monitored wallet."""

    currency: str  # readable form
    raw_currency: str
    issuer: str
    balance: str
    limit: str
    wallet: str
    address: str
    name: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currency": self.currency,
            "raw_currency": self.raw_currency,
            "issuer": self.issuer,
            "balance": self.balance,
            "limit": self.limit,
            "wallet": self.wallet,
            "address": self.address,
            "name": self.name,
        }


@dataclass
class TokenListView:
    tokens: List[HeldToken] = field(default_factory=list)
    errors: List[WalletError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tokens": [t.to_dict() for t in self.tokens],
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass(frozen=True)
class WalletHolding:
    address: str
    name: str
    balance: str

    def to_dict(self) -> Dict[str, str]:
        return {"address": self.address, "name": self.name, "balance": self.balance}


@dataclass
class TokenHoldingsView:
    token: TokenConfig
    holdings: List[WalletHolding] = field(default_factory=list)
    errors: List[WalletError] = field(default_factory=list)

    @property
    def total_balance(self) -> Decimal:
        return sum((_to_decimal(h.balance) for h in self.holdings), Decimal(0))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token.to_dict(),
            "holdings": [h.to_dict() for h in self.holdings],
            "total_balance": str(self.total_balance),
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class WalletDetails:
    address: str
    label: str
    info: AccountInfo
    lines: List[TrustLine]
    nfts: List[NFToken]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "label": self.label,
            "account": self.info.to_dict(),
            "lines": [
                {**line.to_dict(), "display_currency": decode(line.currency)} for line in self.lines
            ],
            "nfts": [n.to_dict() for n in self.nfts],
        }


def _split_wallets(
    wallets: Iterable[Wallet], observer: Observer
) -> Tuple[List[Wallet], List[WalletError]]:
    """Separate wallets with valid addresses from the rest.

    Invalid wallets are turned into errors up front so no request is made for
    them.
    """

    valid: List[Wallet] = []
    errors: List[WalletError] = []
    for wallet in wallets:
        if is_valid_address(wallet.address):
            valid.append(wallet)
            continue
        observer.emit("holdings.invalid_wallet", logging.ERROR, wallet=wallet.name, address=wallet.address)
        errors.append(WalletError(wallet.name, wallet.address, InvalidAddress(wallet.address).message))
    return valid, errors


async def load_tokens(
    client: RpcClient,
    tokens: Sequence[TokenConfig],
    wallets: Sequence[Wallet],
    observer: Observer | None = None,
) -> TokenListView:
    """Return every whitelisted token held by the monitored wallets."""

    observer = observer or _default_observer
    matcher = WhitelistMatcher(tokens, observer=observer)
    valid, errors = _split_wallets(wallets, observer)
    view = TokenListView(errors=errors)

    for wallet in valid:
        try:
            lines = await client.fetch_account_lines(wallet.address)
        except RpcError as exc:
            observer.emit("holdings.wallet_failed", logging.ERROR, wallet=wallet.name, error=exc.message)
            view.errors.append(WalletError(wallet.name, wallet.address, exc.message))
            continue

        kept = 0
        for line in lines:
            token = matcher.match(line.currency, line.account)
            if token is None:
                continue
            kept += 1
            currency = decode(line.currency)
            view.tokens.append(
                HeldToken(
                    currency=currency,
                    raw_currency=line.currency,
                    issuer=line.account,
                    balance=line.balance,
                    limit=line.limit,
                    wallet=wallet.name,
                    address=wallet.address,
                    name=token.display_name,
                )
            )
        observer.emit("holdings.filtered", wallet=wallet.name, lines=len(lines), whitelisted=kept)

    return view


async def token_holdings(
    client: RpcClient,
    token: TokenConfig,
    wallets: Sequence[Wallet],
    observer: Observer | None = None,
) -> TokenHoldingsView:
    """Return the monitored wallets that hold ``token`` and their balances."""

    observer = observer or _default_observer
    valid, errors = _split_wallets(wallets, observer)
    view = TokenHoldingsView(token=token, errors=errors)
    issuer = token.issuer.strip().lower()

    for wallet in valid:
        try:
            lines = await client.fetch_account_lines(wallet.address)
        except RpcError as exc:
            observer.emit("holdings.wallet_failed", logging.ERROR, wallet=wallet.name, error=exc.message)
            view.errors.append(WalletError(wallet.name, wallet.address, exc.message))
            continue

        line = next(
            (
                ln
                for ln in lines
                if ln.account.strip().lower() == issuer and currencies_match(ln.currency, token.currency)
            ),
            None,
        )
        if line is not None:
            view.holdings.append(WalletHolding(wallet.address, wallet.name, line.balance))

    return view


async def wallet_details(
    client: RpcClient,
    address: str,
    wallets: Sequence[Wallet] = (),
) -> WalletDetails:
    """Fetch account info, trust lines and NFTs for one wallet.

    Raises :class:`InvalidAddress` before any request when ``address`` is not
    a valid XRPL address.  NFT failures degrade to an empty list.
    """

    if not is_valid_address(address):
        raise InvalidAddress(address)

    info = await client.fetch_account_info(address)
    lines = await client.fetch_account_lines(address)
    nfts = await client.fetch_account_nfts(address)
    label = next((w.name for w in wallets if w.address == address), address)
    return WalletDetails(address=address, label=label, info=info, lines=lines, nfts=nfts)
