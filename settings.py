"""Runtime settings loaded from ``settings.json``.

When ``settings.json`` does not exist the bundled ``settings.example.json`` is
used instead.  Missing keys and values of the wrong type fall back to the
defaults below, so a partial settings file is always usable.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Tuple

from providers.xrpl import DEFAULT_SERVERS, DEFAULT_TIMEOUT, RetryPolicy, is_valid_address
from whitelist import DEFAULT_STORAGE_PATH, DEFAULT_TOKENS, TokenConfig

BASE_DIR = Path(__file__).resolve().parent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Wallet:
    address: str
    name: str

    def to_dict(self) -> Dict[str, str]:
        return {"address": self.address, "name": self.name}


DEFAULT_WALLETS: Tuple[Wallet, ...] = (
    Wallet(address="rdRvw4pKmEtSnz3cjXBL6HLJJmejtkoQ4", name="Issuer Wallet"),
    Wallet(address="rw3DPxgusRrvdsbXSjHdXD14ogkNidTTRx", name="Project Dev Wallet"),
)


@dataclass(frozen=True)
class Settings:
    servers: Tuple[str, ...] = DEFAULT_SERVERS
    wallets: Tuple[Wallet, ...] = DEFAULT_WALLETS
    request_timeout_sec: float = DEFAULT_TIMEOUT
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    storage_path: Path = BASE_DIR / DEFAULT_STORAGE_PATH
    default_tokens: Tuple[TokenConfig, ...] = DEFAULT_TOKENS
    log_level: str = "INFO"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "servers": list(self.servers),
            "wallets": [w.to_dict() for w in self.wallets],
            "request_timeout_sec": self.request_timeout_sec,
            "retry": {
                "max_attempts": self.retry.max_attempts,
                "initial_delay_sec": self.retry.initial_delay,
            },
            "storage_path": str(self.storage_path),
            "default_tokens": [t.to_dict() for t in self.default_tokens],
            "log_level": self.log_level,
        }


def settings_path() -> Path:
    p = BASE_DIR / "settings.json"
    if not p.exists():
        p = BASE_DIR / "settings.example.json"
    return p


def _number(value: Any, default: float) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        return float(value)
    return default


def _servers(value: Any) -> Tuple[str, ...]:
    if not isinstance(value, list):
        return DEFAULT_SERVERS
    servers = tuple(s.strip() for s in value if isinstance(s, str) and s.strip())
    return servers or DEFAULT_SERVERS


def _wallets(value: Any) -> Tuple[Wallet, ...]:
    if not isinstance(value, list):
        return DEFAULT_WALLETS
    wallets: List[Wallet] = []
    for item in value:
        if not isinstance(item, Mapping):
            continue
        addr = item.get("address")
        if not isinstance(addr, str):
            continue
        # invalid addresses are kept so the aggregator can report them per wallet
        name = item.get("name")
        wallets.append(Wallet(address=addr, name=name if isinstance(name, str) and name else addr))
    return tuple(wallets)


def _tokens(value: Any) -> Tuple[TokenConfig, ...]:
    if not isinstance(value, list):
        return DEFAULT_TOKENS
    tokens: List[TokenConfig] = []
    for item in value:
        if not isinstance(item, Mapping):
            raise ValueError("default_tokens entries must be objects")
        token = TokenConfig.from_dict(item)
        if not is_valid_address(token.issuer):
            raise ValueError(f"default token issuer is not a valid XRPL address: {token.issuer}")
        tokens.append(token)
    return tuple(tokens)


def _retry(value: Any) -> RetryPolicy:
    cfg = value if isinstance(value, Mapping) else {}
    attempts = cfg.get("max_attempts")
    if not isinstance(attempts, int) or isinstance(attempts, bool) or attempts < 1:
        attempts = RetryPolicy.max_attempts
    return RetryPolicy(
        max_attempts=attempts,
        initial_delay=_number(cfg.get("initial_delay_sec"), RetryPolicy.initial_delay),
    )


def load_settings(path: str | Path | None = None) -> Settings:
    """Read settings from ``path`` (default: :func:`settings_path`).

    A relative ``storage_path`` is resolved against the settings file's
    directory.  Raises :class:`ValueError` when ``default_tokens`` holds an
    entry without a valid issuer.
    """

    cfg_path = Path(path) if path is not None else settings_path()
    try:
        cfg = json.loads(cfg_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.warning("settings file %s not found, using defaults", cfg_path)
        cfg = {}
    if not isinstance(cfg, dict):
        raise ValueError(f"{cfg_path} does not hold a JSON object")

    storage = cfg.get("storage_path")
    storage_path = Path(storage) if isinstance(storage, str) and storage else Path(DEFAULT_STORAGE_PATH)
    if not storage_path.is_absolute():
        storage_path = cfg_path.resolve().parent / storage_path

    level = cfg.get("log_level")
    return Settings(
        servers=_servers(cfg.get("servers")),
        wallets=_wallets(cfg.get("wallets")),
        request_timeout_sec=_number(cfg.get("request_timeout_sec"), DEFAULT_TIMEOUT),
        retry=_retry(cfg.get("retry")),
        storage_path=storage_path,
        default_tokens=_tokens(cfg.get("default_tokens")),
        log_level=level.upper() if isinstance(level, str) and level else "INFO",
    )
