"""
keyrack Vaults — os.envvar
===========================
Read-only vault backed by the process environment. The variable read is the
key's bare name (``acme.prod.DB_PASSWORD`` -> ``$DB_PASSWORD``).

Import from: keyrack.vaults.os_envvar
"""

from __future__ import annotations

import os
from typing import MutableMapping, Optional

from keyrack.core.constants import VAULT_OS_ENVVAR
from keyrack.core.manifest.slugs import slug_name
from keyrack.core.types import BadRequestError
from keyrack.vaults.base import VaultAdapter

__all__ = ['OsEnvvarVault']


class OsEnvvarVault(VaultAdapter):
    name = VAULT_OS_ENVVAR

    def __init__(self, environ: Optional[MutableMapping[str, str]] = None):
        self.environ = os.environ if environ is None else environ

    def get(self, slug: str, exid: Optional[str] = None) -> Optional[str]:
        value = self.environ.get(slug_name(slug))
        return value or None

    def set(self, slug: str, value: str, exid: Optional[str] = None,
            expires_at: Optional[int] = None) -> None:
        raise BadRequestError(
            "os.envvar vault is read-only",
            fix=f"export {slug_name(slug)}=... in your shell instead",
        )

    def delete(self, slug: str, exid: Optional[str] = None) -> bool:
        # Nothing is stored by keyrack; the shell owns the variable
        return False
