"""
keyrack Configuration — KeyrackConfig
=====================================
Central configuration dataclass with defaults for the daemon, the vaults,
and the unlock orchestrator.

Import from: keyrack.core.config
"""

import os
from pathlib import Path
from typing import Optional
from dataclasses import dataclass, field

from keyrack.core.constants import (
    DEFAULT_UNLOCK_DURATION, DEFAULT_SUDO_UNLOCK_DURATION,
    HOME_ENV_VAR, MAX_REQUEST_BYTES,
)


@dataclass
class KeyrackConfig:
    home: Path = field(default_factory=lambda: Path(
        os.environ.get(HOME_ENV_VAR, str(Path.home() / '.keyrack'))))
    log_dir: Path = None
    vault_dir: Path = None

    default_duration: str = DEFAULT_UNLOCK_DURATION
    sudo_duration: str = DEFAULT_SUDO_UNLOCK_DURATION

    # Daemon client
    connect_timeout: float = 2.0
    spawn_timeout: float = 5.0
    spawn_poll_interval: float = 0.05

    # Daemon server
    max_request_bytes: int = MAX_REQUEST_BYTES
    request_timeout: float = 5.0  # per-connection socket read/write timeout
    sweep_interval: float = 300.0  # seconds; 0 disables the background sweep
    audit_enabled: bool = True

    def __post_init__(self):
        self.home = Path(self.home)
        if self.log_dir is None:
            self.log_dir = self.home / "logs"
        if self.vault_dir is None:
            self.vault_dir = self.home / "vault"

    def host_manifest_path(self, owner: Optional[str] = None) -> Path:
        """Location of the host manifest for ``owner``."""
        return self.home / f"owner={owner or 'default'}" / "keyrack.host.json"


__all__ = ['KeyrackConfig']
