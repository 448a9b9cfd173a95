"""FastAPI application serving XRPL token monitoring data.

The server exposes the aggregated token views and the whitelist editor to a
front-end.  Nothing is cached between requests: every view endpoint queries
the ledger when it is called.  Settings come from ``settings.json`` (falling
back to ``settings.example.json``).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from fastapi import Body, FastAPI, Request
from fastapi.responses import JSONResponse

from diagnostics import init_logging
from errors import (
    DuplicateToken,
    InvalidAddress,
    MonitorError,
    PersistenceError,
    RpcError,
    TokenNotFound,
)
from holdings import load_tokens, token_holdings, wallet_details
from providers.xrpl import RpcClient, is_valid_address
from settings import Settings, load_settings
from whitelist import TokenConfig, WhitelistStore

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (InvalidAddress, 400),
    (DuplicateToken, 409),
    (TokenNotFound, 404),
    (PersistenceError, 500),
    (RpcError, 502),
)


def _status_for(exc: MonitorError) -> int:
    for cls, status in _STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return status
    return 500


def _error_body(message: str, kind: str) -> Dict[str, str]:
    return {"error": message, "type": kind}


def _token_from_body(data: Any) -> TokenConfig:
    """Parse a whitelist entry from a JSON body; raises ``ValueError``."""

    if not isinstance(data, dict):
        raise ValueError("request body must be a JSON object")
    return TokenConfig.from_dict(data)


def create_app(
    settings: Settings | None = None,
    *,
    client: RpcClient | None = None,
    store: WhitelistStore | None = None,
) -> FastAPI:
    settings = settings or load_settings()
    init_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.client.aclose()

    app = FastAPI(title="XRPL Token Monitor", lifespan=lifespan)
    app.state.settings = settings
    app.state.client = client or RpcClient(
        settings.servers,
        timeout=settings.request_timeout_sec,
        retry=settings.retry,
    )
    app.state.store = store or WhitelistStore(settings.storage_path, settings.default_tokens)

    @app.exception_handler(MonitorError)
    async def monitor_error_handler(request: Request, exc: MonitorError) -> JSONResponse:
        status = _status_for(exc)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=status, content=_error_body(exc.message, type(exc).__name__))

    # -----------------------------------------------------------------------
    # Views

    @app.get("/tokens")
    async def tokens() -> Dict[str, Any]:
        """Whitelisted tokens across all monitored wallets, plus wallet errors."""

        view = await load_tokens(app.state.client, app.state.store.load(), settings.wallets)
        return view.to_dict()

    @app.get("/tokens/{currency}/{issuer}/holdings")
    async def holdings_for_token(currency: str, issuer: str) -> Dict[str, Any]:
        """Balances of one token in every monitored wallet."""

        if not is_valid_address(issuer):
            raise InvalidAddress(issuer)
        configured = next(
            (t for t in app.state.store.load() if t.key == (currency, issuer)),
            TokenConfig(currency=currency, issuer=issuer),
        )
        view = await token_holdings(app.state.client, configured, settings.wallets)
        return view.to_dict()

    @app.get("/wallets/{address}")
    async def wallet(address: str) -> Dict[str, Any]:
        details = await wallet_details(app.state.client, address, settings.wallets)
        return details.to_dict()

    # -----------------------------------------------------------------------
    # Whitelist editor

    @app.get("/whitelist")
    def get_whitelist() -> Dict[str, Any]:
        return {"tokens": [t.to_dict() for t in app.state.store.load()]}

    @app.post("/whitelist", status_code=201)
    def add_token(body: Any = Body(...)) -> Any:
        try:
            token = _token_from_body(body)
        except ValueError as exc:
            return JSONResponse(_error_body(str(exc), "ValueError"), status_code=400)
        app.state.store.add(token)
        return token.to_dict()

    @app.put("/whitelist/{currency}/{issuer}")
    def update_token(currency: str, issuer: str, body: Any = Body(...)) -> Any:
        try:
            token = _token_from_body(body)
        except ValueError as exc:
            return JSONResponse(_error_body(str(exc), "ValueError"), status_code=400)
        app.state.store.update(currency, issuer, token)
        return token.to_dict()

    @app.delete("/whitelist/{currency}/{issuer}")
    def remove_token(currency: str, issuer: str) -> Dict[str, str]:
        app.state.store.remove(currency, issuer)
        return {"status": "ok"}

    # -----------------------------------------------------------------------
    # Settings

    @app.get("/settings")
    def get_settings() -> Dict[str, Any]:
        """Return the effective settings."""

        return settings.to_dict()

    return app


app = create_app()
