"""Cache clé/valeur en mémoire avec expiration (TTL).

Instancié et injecté par le service appelant (jamais un singleton de module). Utilisé pour
mémoriser les longitudes d'éphémérides, identiques pour tous les utilisateurs à un instant donné.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Hashable
from typing import Any


class TTLCache:
    """Cache borné avec expiration par entrée."""

    def __init__(
        self,
        ttl_seconds: float = 3600.0,
        max_entries: int = 100_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._vals: dict[Hashable, Any] = {}
        self._exp: dict[Hashable, float] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Any | None:
        """Retourne la valeur si présente et non expirée, sinon None."""
        with self._lock:
            exp = self._exp.get(key)
            if exp is None:
                return None
            if exp <= self._clock():
                self._exp.pop(key, None)
                self._vals.pop(key, None)
                return None
            return self._vals[key]

    def set(self, key: Hashable, value: Any, ttl: float | None = None) -> None:
        """Stocke `value` pour `ttl` secondes (TTL par défaut sinon)."""
        now = self._clock()
        with self._lock:
            if key not in self._vals and len(self._vals) >= self.max_entries:
                self._purge(now)
                if len(self._vals) >= self.max_entries:
                    # Éviction de l'entrée la plus proche de l'expiration
                    oldest = min(self._exp, key=self._exp.__getitem__)
                    self._exp.pop(oldest, None)
                    self._vals.pop(oldest, None)
            self._vals[key] = value
            self._exp[key] = now + (self.ttl_seconds if ttl is None else ttl)

    def get_or_set(self, key: Hashable, factory: Callable[[], Any]) -> Any:
        """Retourne la valeur en cache, ou la calcule via `factory` et la mémorise."""
        cached = self.get(key)
        if cached is not None:
            return cached
        value = factory()
        self.set(key, value)
        return value

    def __len__(self) -> int:
        return len(self._vals)

    def _purge(self, now: float) -> None:
        expired = [k for k, exp in self._exp.items() if exp <= now]
        for k in expired:
            self._exp.pop(k, None)
            self._vals.pop(k, None)
