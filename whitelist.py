"""User maintained list of tokens to monitor.

The list is kept as JSON under a fixed namespace key inside a small storage
file, so several components can share one file the way browser local storage
is shared.  Each entry is identified by its ``(currency, issuer)`` pair.

:class:`WhitelistStore` owns the persisted list.  :class:`WhitelistMatcher`
works on a snapshot returned by :meth:`WhitelistStore.load` and decides which
trust lines seen on the ledger belong to the whitelist.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Set, Tuple

from currency import decode, encode, is_hex_code
from diagnostics import LoggingObserver, Observer
from errors import DuplicateToken, InvalidAddress, PersistenceError, TokenNotFound
from providers.xrpl import is_valid_address

STORAGE_KEY = "xrpl_token_config"
# Default keys the user removed; the forward-merge does not bring them back.
REMOVED_KEY = "xrpl_token_config_removed"
DEFAULT_STORAGE_PATH = "data/storage.json"


@dataclass(frozen=True)
class TokenConfig:
    currency: str
    issuer: str
    custom_name: str | None = None

    @property
    def key(self) -> Tuple[str, str]:
        return self.currency, self.issuer

    @property
    def display_name(self) -> str:
        return self.custom_name or decode(self.currency)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TokenConfig":
        """Build an entry from its stored form.

        Raises :class:`ValueError` when ``currency`` or ``issuer`` is missing.
        """

        currency = data.get("currency")
        issuer = data.get("issuer")
        if not isinstance(currency, str) or not isinstance(issuer, str):
            raise ValueError("token entry needs string currency and issuer")
        name = data.get("customName", data.get("custom_name"))
        return cls(currency=currency, issuer=issuer, custom_name=name if isinstance(name, str) else None)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"currency": self.currency, "issuer": self.issuer}
        if self.custom_name is not None:
            out["customName"] = self.custom_name
        return out


# Seed list written on first run.  Deployments override it with
# ``default_tokens`` in settings.json.
DEFAULT_TOKENS: Tuple[TokenConfig, ...] = (
    TokenConfig(
        currency="534F4C4F00000000000000000000000000000000",
        issuer="rsoLo2S1kiGeCcn6hCUXVrCpGMWLrRrLZz",
        custom_name="Sologenic",
    ),
    TokenConfig(
        currency="CSC",
        issuer="rCSCManTZ8ME9EoLrSHHYKW8PPwWMgkwr",
        custom_name="CasinoCoin",
    ),
)


class WhitelistStore:
    """Persisted, ordered collection of :class:`TokenConfig` entries.

    No two entries share a ``(currency, issuer)`` key.  Keys are compared as
    exact strings here; the looser comparison used for matching trust lines
    lives in :class:`WhitelistMatcher`.
    """

    def __init__(
        self,
        path: str | Path = DEFAULT_STORAGE_PATH,
        defaults: Sequence[TokenConfig] = DEFAULT_TOKENS,
        observer: Observer | None = None,
    ) -> None:
        self.path = Path(path)
        self.defaults: Tuple[TokenConfig, ...] = tuple(defaults)
        self.observer = observer or LoggingObserver(logging.getLogger(__name__))

    # ------------------------------------------------------------------
    # storage helpers

    def _read_storage(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        doc = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(doc, dict):
            raise ValueError("storage file does not hold a JSON object")
        return doc

    def _read_tokens(self) -> List[TokenConfig] | None:
        """Return the stored list, ``None`` if nothing is stored yet."""

        doc = self._read_storage()
        if STORAGE_KEY not in doc:
            return None
        raw = doc[STORAGE_KEY]
        if not isinstance(raw, list):
            raise ValueError(f"{STORAGE_KEY} is not a list")
        tokens = []
        for item in raw:
            if not isinstance(item, Mapping):
                raise ValueError(f"{STORAGE_KEY} holds a non-object entry")
            tokens.append(TokenConfig.from_dict(item))
        return tokens

    def _read_removed(self) -> Set[Tuple[str, str]]:
        raw = self._read_storage().get(REMOVED_KEY, [])
        if not isinstance(raw, list):
            raise ValueError(f"{REMOVED_KEY} is not a list")
        removed = set()
        for item in raw:
            if not isinstance(item, Mapping):
                raise ValueError(f"{REMOVED_KEY} holds a non-object entry")
            currency, issuer = item.get("currency"), item.get("issuer")
            if not isinstance(currency, str) or not isinstance(issuer, str):
                raise ValueError(f"{REMOVED_KEY} entry needs string currency and issuer")
            removed.add((currency, issuer))
        return removed

    def _removed_for_write(self) -> Set[Tuple[str, str]]:
        try:
            return self._read_removed()
        except (OSError, ValueError):
            return set()

    def _save_during_load(self, tokens: List[TokenConfig], event: str, **fields: Any) -> None:
        try:
            self.save(tokens)
        except PersistenceError as exc:
            self.observer.emit("whitelist.save_failed", logging.ERROR, error=exc.message)
            return
        self.observer.emit(event, logging.INFO, **fields)

    # ------------------------------------------------------------------
    # public API

    def load(self) -> List[TokenConfig]:
        """Return the whitelist, seeding or forward-merging defaults.

        Storage that cannot be parsed is left untouched on disk and the
        default list is returned.
        """

        try:
            tokens = self._read_tokens()
            removed = self._read_removed()
        except (OSError, ValueError) as exc:
            self.observer.emit("whitelist.load_failed", logging.ERROR, path=self.path, error=exc)
            return list(self.defaults)

        if tokens is None:
            tokens = list(self.defaults)
            self._save_during_load(tokens, "whitelist.seeded", count=len(tokens))
            return tokens

        if len(tokens) < len(self.defaults):
            present = {t.key for t in tokens}
            missing = [d for d in self.defaults if d.key not in present and d.key not in removed]
            if missing:
                tokens.extend(missing)
                self._save_during_load(tokens, "whitelist.merged", added=len(missing))
        return tokens

    def save(
        self,
        tokens: Iterable[TokenConfig],
        removed: Iterable[Tuple[str, str]] | None = None,
    ) -> None:
        """Replace the stored list in a single write.

        ``removed`` replaces the set of default keys the merge must skip;
        when omitted the stored set is kept.
        """

        try:
            doc = self._read_storage()
        except (OSError, ValueError):
            doc = {}
        doc[STORAGE_KEY] = [t.to_dict() for t in tokens]
        if removed is not None:
            keys = sorted(removed)
            if keys:
                doc[REMOVED_KEY] = [{"currency": c, "issuer": i} for c, i in keys]
            else:
                doc.pop(REMOVED_KEY, None)

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(doc, fh, ensure_ascii=False, indent=2)
                os.replace(tmp, self.path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except OSError as exc:
            raise PersistenceError(str(self.path), str(exc)) from exc

    def add(self, token: TokenConfig) -> None:
        if not is_valid_address(token.issuer):
            raise InvalidAddress(token.issuer)
        tokens = self.load()
        if any(t.key == token.key for t in tokens):
            raise DuplicateToken(token.currency, token.issuer)
        tokens.append(token)
        removed = self._removed_for_write()
        removed.discard(token.key)
        self.save(tokens, removed)
        self.observer.emit("whitelist.added", currency=token.currency, issuer=token.issuer)

    def remove(self, currency: str, issuer: str) -> None:
        """Drop every entry with key ``(currency, issuer)``; unknown keys are fine.

        Removing a default entry also keeps the forward-merge from adding it
        back on a later :meth:`load`.
        """

        key = (currency, issuer)
        tokens = [t for t in self.load() if t.key != key]
        removed = self._removed_for_write()
        if key in {d.key for d in self.defaults}:
            removed.add(key)
        self.save(tokens, removed)
        self.observer.emit("whitelist.removed", currency=currency, issuer=issuer)

    def update(self, old_currency: str, old_issuer: str, new_token: TokenConfig) -> None:
        """Replace the entry keyed ``(old_currency, old_issuer)`` in place."""

        if not is_valid_address(new_token.issuer):
            raise InvalidAddress(new_token.issuer)
        tokens = self.load()
        index = next((i for i, t in enumerate(tokens) if t.key == (old_currency, old_issuer)), None)
        if index is None:
            raise TokenNotFound(old_currency, old_issuer)
        if any(i != index and t.key == new_token.key for i, t in enumerate(tokens)):
            raise DuplicateToken(new_token.currency, new_token.issuer)
        tokens[index] = new_token
        removed = self._removed_for_write()
        removed.discard(new_token.key)
        old_key = (old_currency, old_issuer)
        if old_key != new_token.key and old_key in {d.key for d in self.defaults}:
            removed.add(old_key)
        self.save(tokens, removed)
        self.observer.emit(
            "whitelist.updated", currency=new_token.currency, issuer=new_token.issuer
        )


# ---------------------------------------------------------------------------
# Matching


def _norm_issuer(issuer: str) -> str:
    return issuer.strip().lower()


def currencies_match(observed: str, configured: str) -> bool:
    """Compare two currency codes, either of which may be hex encoded.

    Plain codes compare case-insensitively.  A 40-character hex code matches
    a plain code when it decodes to it or when the plain code encodes to it.
    """

    if observed.lower() == configured.lower():
        return True
    for hexed, plain in ((observed, configured), (configured, observed)):
        if not is_hex_code(hexed):
            continue
        if decode(hexed).lower() == plain.lower():
            return True
        if hexed.lower() == encode(plain).lower():
            return True
    return False


class WhitelistMatcher:
    """Decide whitelist membership for ``(currency, issuer)`` pairs."""

    def __init__(self, tokens: Iterable[TokenConfig], observer: Observer | None = None) -> None:
        self.tokens: List[TokenConfig] = list(tokens)
        self._issuers = [_norm_issuer(t.issuer) for t in self.tokens]
        self.observer = observer or LoggingObserver(logging.getLogger(__name__))

    def match(self, currency: str, issuer: str) -> TokenConfig | None:
        """Return the first whitelist entry matching the pair, if any."""

        wanted = _norm_issuer(issuer)
        for token, token_issuer in zip(self.tokens, self._issuers):
            if token_issuer != wanted:
                continue
            if currencies_match(currency, token.currency):
                self.observer.emit("match.hit", logging.DEBUG, currency=currency, issuer=issuer)
                return token
        self.observer.emit("match.miss", logging.DEBUG, currency=currency, issuer=issuer)
        return None

    def is_whitelisted(self, currency: str, issuer: str) -> bool:
        return self.match(currency, issuer) is not None
