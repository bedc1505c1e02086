"""
keyrack — Local credential broker.

Resolves, grades, caches, and revokes the secrets development tooling needs.
Unlocked credentials live only in a per-login-session daemon, under a TTL.

Layers:
- keyrack.core   : grading lattice, manifests, sessions, shared types
- keyrack.daemon : in-memory key store, unix-socket server and client
- keyrack.vaults : storage backends behind one adapter contract
- keyrack.ops    : unlock, grant, relock, and host-manifest operations
- keyrack.cli    : command-line entry point
"""

from keyrack.core.version import __version__

__all__ = ['__version__']
