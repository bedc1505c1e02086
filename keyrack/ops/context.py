"""
keyrack Ops — Context
======================
Everything an operation needs, wired once per invocation. Operations take a
KeyrackContext instead of reaching for ambient state, so tests can hand them
fakes for the daemon, the vaults, and the clock.

Import from: keyrack.ops.context
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Union

from keyrack.core.config import KeyrackConfig
from keyrack.core.manifest import HostManifestStore, load_repo_manifest
from keyrack.core.mechanisms import MechanismAdapter, build_mechanism_adapters
from keyrack.core.session import SessionContext, socket_path_for
from keyrack.core.types import BadRequestError, RepoManifest
from keyrack.daemon.client import DaemonClient
from keyrack.vaults import VaultAdapter, build_vault_adapters

__all__ = ['KeyrackContext', 'find_repo_root']


def find_repo_root(start: Union[str, Path, None] = None) -> Optional[Path]:
    """Nearest ancestor of ``start`` (default cwd) holding a ``.git`` entry."""
    current = Path(start or os.getcwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / '.git').exists():
            return candidate
    return None


@dataclass
class KeyrackContext:
    config: KeyrackConfig
    session: SessionContext
    host_store: HostManifestStore
    vaults: Dict[str, VaultAdapter]
    daemon: DaemonClient
    repo_manifest: Optional[RepoManifest] = None
    repo_root: Optional[Path] = None
    owner: Optional[str] = None
    mechanisms: Dict[str, MechanismAdapter] = field(default_factory=build_mechanism_adapters)
    clock: Callable[[], float] = time.time
    environ: Mapping[str, str] = field(default_factory=lambda: os.environ)

    def require_repo_manifest(self) -> RepoManifest:
        if self.repo_manifest is None:
            raise BadRequestError(
                "no keyrack manifest found in repo",
                fix="create .agent/keyrack.yml declaring the keys this repo requires",
            )
        return self.repo_manifest

    @classmethod
    def build(cls, *, config: Optional[KeyrackConfig] = None,
              owner: Optional[str] = None,
              repo_root: Union[str, Path, None] = None,
              session: Optional[SessionContext] = None) -> 'KeyrackContext':
        """Wire the default collaborators for the running process."""
        config = config or KeyrackConfig()
        session = session or SessionContext.current()
        daemon = DaemonClient(socket_path_for(session, owner), config)

        root = Path(repo_root) if repo_root else find_repo_root()
        repo_manifest = load_repo_manifest(root) if root else None

        return cls(
            config=config,
            session=session,
            host_store=HostManifestStore(config.host_manifest_path(owner), owner),
            vaults=build_vault_adapters(config, owner, session, daemon),
            daemon=daemon,
            repo_manifest=repo_manifest,
            repo_root=root,
            owner=owner,
        )
