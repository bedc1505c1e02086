"""
keyrack Vaults — Adapter Contract
==================================
Every vault backend is used through this one interface. The orchestrator
never knows how a backend stores or fetches a secret.

Import from: keyrack.vaults.base
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

__all__ = ['VaultAdapter']


class VaultAdapter(ABC):
    """Abstract vault adapter. Subclasses implement get/set/delete.

    A vault that needs no unlocking reports itself unlocked and treats
    unlock()/relock() as no-ops.
    """

    name: str = ""

    def is_unlocked(self, exid: Optional[str] = None) -> bool:
        return True

    def unlock(self, passphrase: Optional[str] = None, exid: Optional[str] = None) -> None:
        """Make get() possible. May block on interactive input."""
        return None

    @abstractmethod
    def get(self, slug: str, exid: Optional[str] = None) -> Optional[str]:
        """Secret for ``slug``, or None when the vault holds no value."""
        pass

    @abstractmethod
    def set(self, slug: str, value: str, exid: Optional[str] = None,
            expires_at: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def delete(self, slug: str, exid: Optional[str] = None) -> bool:
        """Remove ``slug``. Returns False when it was not stored."""
        pass

    def relock(self, slug: Optional[str] = None) -> None:
        """Forget any unlocked state (for ``slug``, or everything)."""
        return None
