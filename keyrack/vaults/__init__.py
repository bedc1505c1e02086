"""
Vault Layer — Storage backends behind one adapter contract.

Adapters:
- OsEnvvarVault (os.envvar): read-only, process environment
- OsDirectVault (os.direct): plaintext JSON file
- OsSecureVault (os.secure): passphrase-encrypted files
- OsDaemonVault (os.daemon): daemon memory only
"""

from typing import Dict, Optional

from keyrack.core.config import KeyrackConfig
from keyrack.core.session import SessionContext
from keyrack.daemon.client import DaemonClient
from keyrack.vaults.base import VaultAdapter
from keyrack.vaults.os_envvar import OsEnvvarVault
from keyrack.vaults.os_direct import OsDirectVault
from keyrack.vaults.os_secure import OsSecureVault
from keyrack.vaults.os_daemon import OsDaemonVault


def build_vault_adapters(config: KeyrackConfig, owner: Optional[str],
                         session: SessionContext,
                         daemon: DaemonClient) -> Dict[str, VaultAdapter]:
    """Registry of every vault this build supports, keyed by vault name."""
    adapters = [
        OsEnvvarVault(),
        OsDirectVault(config.vault_dir, owner),
        OsSecureVault(config.vault_dir, owner),
        OsDaemonVault(daemon, session),
    ]
    return {adapter.name: adapter for adapter in adapters}


__all__ = [
    'VaultAdapter',
    'OsEnvvarVault',
    'OsDirectVault',
    'OsSecureVault',
    'OsDaemonVault',
    'build_vault_adapters',
]
