"""
auth/blacklist.py -- Store of tokens invalidated before their natural expiry.

Pattern: Protocol + in-memory implementation. TokenService depends only on
the TokenBlacklist protocol, so a multi-instance deployment can swap in a
shared store (Redis, a DB table) without touching the token code. The
in-memory store is owned by whoever builds it (api/main.py lifespan, or a
test) and injected -- there is no module-level instance.

Concurrency:
  FastAPI runs sync dependencies in a threadpool, so add() and contains() can
  race across worker threads. A single threading.Lock guards the dict: once
  add() returns, every later contains() from any thread sees the entry.

Expiry:
  Entries carry the token's own expiry (epoch seconds). They are dropped
  (a) opportunistically at the start of every contains(), and (b) by the
  periodic purge loop in api/main.py calling purge_expired(). Either way the
  dict never holds a token that could no longer be replayed.

Durability: none. A restart clears the blacklist and any logged-out token
that has not yet expired becomes valid again.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger("keystone.auth.blacklist")


class TokenBlacklist(Protocol):
    def add(self, token: str, expires_at: float) -> None: ...

    def contains(self, token: str) -> bool: ...

    def purge_expired(self) -> int: ...

    def __len__(self) -> int: ...


class InMemoryTokenBlacklist:
    """Process-local blacklist: token value -> expiry timestamp.

    Usage:
        blacklist = InMemoryTokenBlacklist()
        blacklist.add(token, expires_at=time.time() + 3600)
        blacklist.contains(token)   # True until expiry
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: dict[str, float] = {}
        self._lock = threading.Lock()

    def add(self, token: str, expires_at: float) -> None:
        """Blacklist token until expires_at.

        Re-adding an existing token keeps the later of the two expiries, so a
        second invalidation can never shorten the first one's window.
        """
        with self._lock:
            current = self._entries.get(token)
            if current is None or expires_at > current:
                self._entries[token] = expires_at

    def contains(self, token: str) -> bool:
        """Return True if token is blacklisted and its entry has not expired."""
        with self._lock:
            self._purge_locked()
            return token in self._entries

    def purge_expired(self) -> int:
        """Drop every entry whose expiry has passed. Returns the number removed."""
        with self._lock:
            removed = self._purge_locked()
        if removed:
            logger.debug("Purged %d expired blacklist entries", removed)
        return removed

    def _purge_locked(self) -> int:
        now = self._clock()
        expired = [token for token, expires_at in self._entries.items() if now >= expires_at]
        for token in expired:
            del self._entries[token]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
