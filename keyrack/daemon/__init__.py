"""
Daemon Layer — Per-session in-memory credential cache.

Classes:
- DaemonKeyStore: TTL-enforcing slug -> grant map (lazy purge on read)
- KeyrackDaemonServer: Session-gated unix socket server
- DaemonClient: Request/response client with soft-fail reads and spawn-on-demand
"""

from keyrack.daemon.store import DaemonKeyStore
from keyrack.daemon.server import KeyrackDaemonServer, run_daemon
from keyrack.daemon.client import DaemonClient, spawn_daemon

__all__ = [
    'DaemonKeyStore',
    'KeyrackDaemonServer',
    'run_daemon',
    'DaemonClient',
    'spawn_daemon',
]
