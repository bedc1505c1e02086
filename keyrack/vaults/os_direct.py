#!/usr/bin/env python3
"""
keyrack Vaults — os.direct
===========================
Plaintext JSON vault, one file per owner, readable only by the current user:

    <vault_dir>/os.direct/owner=<owner>/keyrack.direct.json

    {"acme.prod.DB_PASSWORD": {"value": "...", "expiresAt": 1700000000000}}

Entries past ``expiresAt`` (epoch ms) read as absent.

Import from: keyrack.vaults.os_direct
"""

import json
import os
import time
import logging
import threading
from pathlib import Path
from typing import Callable, Dict, Optional

from keyrack.core.constants import VAULT_OS_DIRECT
from keyrack.core.types import ConfigurationError
from keyrack.vaults.base import VaultAdapter

logger = logging.getLogger("keyrack.vaults.os_direct")

DIRECT_FILE_MODE = 0o600


class OsDirectVault(VaultAdapter):
    """Thread-safe plaintext file vault."""

    name = VAULT_OS_DIRECT

    def __init__(self, vault_dir: Path, owner: Optional[str] = None,
                 clock: Callable[[], float] = time.time):
        self.path = (Path(vault_dir) / VAULT_OS_DIRECT /
                     f"owner={owner or 'default'}" / "keyrack.direct.json")
        self._clock = clock
        self.lock = threading.Lock()

    def _read(self) -> Dict[str, dict]:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text(encoding='utf-8'))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"os.direct vault file is unreadable: {e}",
                fix=f"repair or remove {self.path}",
            ) from e

    def _write(self, entries: Dict[str, dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix('.tmp')
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, DIRECT_FILE_MODE)
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(json.dumps(entries, indent=2))
        tmp.replace(self.path)

    def get(self, slug: str, exid: Optional[str] = None) -> Optional[str]:
        with self.lock:
            entry = self._read().get(slug)
        if entry is None:
            return None
        expires_at = entry.get('expiresAt')
        if expires_at is not None and int(self._clock() * 1000) >= expires_at:
            logger.debug("os.direct entry %s expired", slug)
            return None
        return entry.get('value')

    def set(self, slug: str, value: str, exid: Optional[str] = None,
            expires_at: Optional[int] = None) -> None:
        with self.lock:
            entries = self._read()
            entries[slug] = {'value': value, 'expiresAt': expires_at}
            self._write(entries)
        logger.info("os.direct stored %s", slug)

    def delete(self, slug: str, exid: Optional[str] = None) -> bool:
        with self.lock:
            entries = self._read()
            if slug not in entries:
                return False
            del entries[slug]
            self._write(entries)
        return True


__all__ = ['OsDirectVault']
