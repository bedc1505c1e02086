"""
Operations Layer — What the CLI calls.

- unlock_keys   : vaults -> daemon, one batch
- get_key_grant : envvar, then daemon, then host vault
- set_key / set_key_host / del_key_host : host manifest edits
- relock_keys / status_keys : daemon housekeeping
- init_keyrack  : findsert host and repo manifests
"""

from keyrack.ops.context import KeyrackContext, find_repo_root
from keyrack.ops.grant import get_key_grant, get_key_grants
from keyrack.ops.init import init_keyrack
from keyrack.ops.host import (
    del_key_host, relock_keys, set_key, set_key_host, status_keys,
)
from keyrack.ops.unlock import repo_slugs, sudo_slugs, unlock_keys

__all__ = [
    'KeyrackContext',
    'find_repo_root',
    'get_key_grant',
    'get_key_grants',
    'set_key',
    'set_key_host',
    'del_key_host',
    'relock_keys',
    'status_keys',
    'init_keyrack',
    'unlock_keys',
    'sudo_slugs',
    'repo_slugs',
]
