#!/usr/bin/env python3
"""
keyrack Core Manifest — Host Manifest Store
============================================
Thread-safe persistent storage for per-host vault assignments
(``slug -> KeyHost``). One JSON file per owner, written atomically and
readable only by the current user.

Import from: keyrack.core.manifest.host
"""

import json
import os
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from keyrack.core.types import ConfigurationError, HostManifest, KeyHost
from keyrack.core.version import HOST_MANIFEST_SCHEMA_VERSION

logger = logging.getLogger("keyrack.core.manifest.host")

HOST_MANIFEST_FILE_MODE = 0o600


class HostManifestStore:
    """Thread-safe persistent storage for one owner's host manifest."""

    def __init__(self, path: Path, owner: Optional[str] = None):
        self.path = Path(path)
        self.owner = owner
        self.lock = threading.Lock()
        self._manifest = HostManifest(owner=owner)
        self._load()

    def _load(self):
        """Load host assignments from disk."""
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding='utf-8'))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"host manifest is unreadable: {e}",
                fix=f"repair or remove {self.path}",
            ) from e
        self._manifest = HostManifest.from_dict(data)
        self._manifest.owner = self.owner
        logger.info("Loaded %d host key assignments from %s",
                    len(self._manifest.hosts), self.path)

    def _save(self):
        """Atomically save host assignments to disk (mode 0600)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = self._manifest.to_dict()
        data['schema'] = HOST_MANIFEST_SCHEMA_VERSION
        tmp = self.path.with_suffix('.tmp')
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, HOST_MANIFEST_FILE_MODE)
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(json.dumps(data, indent=2))
        tmp.replace(self.path)

    def initialize(self) -> str:
        """Write an empty manifest if none exists. Returns 'created' or 'found'."""
        with self.lock:
            if self.path.exists():
                return 'found'
            self._save()
        logger.info("Created host manifest %s", self.path)
        return 'created'

    @property
    def manifest(self) -> HostManifest:
        """Snapshot of the current host manifest."""
        with self.lock:
            return HostManifest(owner=self._manifest.owner,
                                hosts=dict(self._manifest.hosts))

    def get(self, slug: str) -> Optional[KeyHost]:
        with self.lock:
            return self._manifest.hosts.get(slug)

    def entries(self, env: Optional[str] = None) -> List[KeyHost]:
        with self.lock:
            hosts = list(self._manifest.hosts.values())
        if env is not None:
            hosts = [h for h in hosts if h.env == env]
        return hosts

    def upsert(self, host: KeyHost) -> KeyHost:
        """Insert or replace the assignment for ``host.slug``."""
        with self.lock:
            prior = self._manifest.hosts.get(host.slug)
            if prior is not None:
                host.created_at = prior.created_at
            host.updated_at = datetime.now().isoformat()
            self._manifest.hosts[host.slug] = host
            self._save()
        logger.info("Host key %s assigned to vault %s", host.slug, host.vault)
        return host

    def remove(self, slug: str) -> bool:
        with self.lock:
            if slug not in self._manifest.hosts:
                return False
            del self._manifest.hosts[slug]
            self._save()
        logger.info("Host key %s removed", slug)
        return True


__all__ = ['HostManifestStore']
