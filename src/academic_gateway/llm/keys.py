"""Credential pools: one or more API keys per provider.

Keys are looked up on every request from, in priority order:

1. the per-session override store (user settings),
2. process configuration (``Settings`` / environment).

The first non-empty source wins; sources are never merged.
"""

from __future__ import annotations

import random
import re
import threading
from collections.abc import Callable, Sequence

from pydantic import SecretStr

from academic_gateway.config import Settings
from academic_gateway.errors import ConfigurationError
from academic_gateway.llm.schemas import Provider

_KEY_SPLIT_RE = re.compile(r"[,\n]")

SETTINGS_KEY_FIELDS: dict[str, Callable[[Settings], SecretStr | None]] = {
    Provider.GEMINI: lambda s: s.gemini_api_key or s.api_key,
    Provider.GROQ: lambda s: s.groq_api_key,
    Provider.OPENROUTER: lambda s: s.openrouter_api_key,
}


def parse_keys(raw: str | None) -> list[str]:
    """Split a comma/newline-delimited credential string.

    >>> parse_keys("a, b,\\nc")
    ['a', 'b', 'c']
    """
    if not raw:
        return []
    return [k.strip() for k in _KEY_SPLIT_RE.split(raw) if k.strip()]


def mask_key(key: str) -> str:
    """Mask a credential for logs: only the last 4 characters survive."""
    if len(key) > 8:
        return f"...{key[-4:]}"
    return "***"


class KeyPool:
    """Per-session view of the credentials of every provider.

    Random selection and shuffling use the injected ``random.Random``
    so tests can seed them. The round-robin cursor used by streaming
    chat is owned by the instance and guarded by a lock, so two chat
    turns in flight for one session never skip or repeat a key.
    """

    def __init__(
        self,
        settings: Settings,
        overrides: dict[str, str] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._settings = settings
        self._overrides: dict[str, str] = dict(overrides or {})
        self._rng = rng or random.Random()
        self._cursors: dict[str, int] = {}
        self._lock = threading.Lock()

    # -- sources --------------------------------------------------------

    def set_override(self, provider: str, raw: str) -> None:
        """Store user-supplied keys; takes effect on the next request."""
        self._overrides[provider] = raw

    def clear_override(self, provider: str) -> None:
        self._overrides.pop(provider, None)

    def load_keys(self, provider: str) -> list[str]:
        """Ordered keys for ``provider`` from the first non-empty source."""
        keys = parse_keys(self._overrides.get(provider))
        if keys:
            return keys

        getter = SETTINGS_KEY_FIELDS.get(provider)
        secret = getter(self._settings) if getter is not None else None
        if secret is None:
            return []
        return parse_keys(secret.get_secret_value())

    def require_keys(self, provider: str) -> list[str]:
        """Like load_keys(), but an empty pool is a ConfigurationError."""
        keys = self.load_keys(provider)
        if not keys:
            raise ConfigurationError(provider)
        return keys

    def has_keys(self, provider: str) -> bool:
        return bool(self.load_keys(provider))

    # -- selection ------------------------------------------------------

    def pick_random(self, provider: str) -> str | None:
        """Uniform random key, None when the pool is empty."""
        keys = self.load_keys(provider)
        if not keys:
            return None
        return self._rng.choice(keys)

    def shuffle(self, keys: Sequence[str]) -> list[str]:
        """Fisher-Yates shuffle of a copy of ``keys``."""
        shuffled = list(keys)
        for i in range(len(shuffled) - 1, 0, -1):
            j = self._rng.randint(0, i)
            shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
        return shuffled

    # -- round robin ----------------------------------------------------

    def current(self, provider: str) -> str:
        """Key under the round-robin cursor.

        Raises:
            ConfigurationError: if the pool is empty.
        """
        keys = self.require_keys(provider)
        with self._lock:
            cursor = self._cursors.get(provider, 0)
        return keys[cursor % len(keys)]

    def rotate(self, provider: str, from_key: str | None = None) -> str:
        """Advance the cursor and return the newly selected key.

        With ``from_key`` the cursor only moves if it still points at
        that key; when a concurrent turn already rotated away from it,
        the current key is returned unchanged.
        """
        keys = self.require_keys(provider)
        with self._lock:
            cursor = self._cursors.get(provider, 0) % len(keys)
            if from_key is None or keys[cursor] == from_key:
                cursor = (cursor + 1) % len(keys)
                self._cursors[provider] = cursor
        return keys[cursor]
