"""
keyrack Daemon — Key Store
===========================
In-memory slug -> KeyGrant map for one daemon process.

Expiry is enforced on read: any read that meets an expired grant deletes it
first, so a caller never observes a grant past its TTL. sweep() exists only
to bound memory; it is not needed for correctness.

Import from: keyrack.daemon.store
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional

from keyrack.core.types import KeyGrant

__all__ = ['DaemonKeyStore', 'now_ms']

logger = logging.getLogger("keyrack.daemon.store")


def now_ms(clock: Callable[[], float] = time.time) -> int:
    return int(clock() * 1000)


class DaemonKeyStore:
    """TTL-enforcing grant store.

    Thread-safe. All public methods acquire self._lock; locked() lets a
    command hold it across several calls so the command is atomic.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._grants: Dict[str, KeyGrant] = {}
        self._lock = threading.RLock()

    def now(self) -> int:
        """Current time in epoch milliseconds, per this store's clock."""
        return now_ms(self._clock)

    @contextmanager
    def locked(self) -> Iterator['DaemonKeyStore']:
        with self._lock:
            yield self

    def _expired(self, grant: KeyGrant, now: int) -> bool:
        return grant.expires_at is not None and now >= grant.expires_at

    # -----------------------------------------------------------------
    # Operations
    # -----------------------------------------------------------------

    def set(self, grant: KeyGrant) -> None:
        """Store ``grant``, replacing any prior grant for its slug."""
        with self._lock:
            self._grants[grant.slug] = grant

    def get(self, slug: str) -> Optional[KeyGrant]:
        """Grant for ``slug``, or None if absent or expired (expired ones are purged)."""
        with self._lock:
            grant = self._grants.get(slug)
            if grant is None:
                return None
            if self._expired(grant, self.now()):
                del self._grants[slug]
                logger.debug("Purged expired grant %s on read", slug)
                return None
            return grant

    def entries(self, env: Optional[str] = None) -> List[KeyGrant]:
        """All live grants, optionally only those for ``env``."""
        with self._lock:
            self.sweep()
            grants = list(self._grants.values())
        if env is not None:
            grants = [g for g in grants if g.env == env]
        return grants

    def delete(self, slug: str) -> bool:
        with self._lock:
            return self._grants.pop(slug, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._grants.clear()

    def size(self) -> int:
        """Number of stored grants, expired-but-unread ones included."""
        with self._lock:
            return len(self._grants)

    def sweep(self) -> List[str]:
        """Delete every expired grant. Returns the purged slugs."""
        with self._lock:
            now = self.now()
            expired = [slug for slug, g in self._grants.items() if self._expired(g, now)]
            for slug in expired:
                del self._grants[slug]
        if expired:
            logger.debug("Purged %d expired grants", len(expired))
        return expired
