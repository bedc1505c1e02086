#!/usr/bin/env python3
"""
keyrack Core — Session Boundary
================================
The daemon trusts only peers in its owner's interactive login session.

- SessionContext: explicit (session id, uid, runtime dir) value; nothing
  below reads process state ad hoc
- login_session_id: session id of an arbitrary pid
- socket_path_for / pid_path_for: deterministic per (session, owner)
- PeerSessionVerifier: per-connection SO_PEERCRED check

Import from: keyrack.core.session
"""

from __future__ import annotations

import logging
import os
import socket
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Optional

import psutil

from keyrack.core.constants import (
    SESSION_ID_ENV_VAR, SOCKET_PREFIX, UNSET_AUDIT_SESSION_ID,
)
from keyrack.core.types import SessionMismatchError

__all__ = [
    'SessionContext', 'PeerCredentials', 'PeerSessionVerifier',
    'login_session_id', 'default_runtime_dir', 'socket_path_for',
    'pid_path_for', 'read_peer_credentials', 'describe_process',
]

logger = logging.getLogger("keyrack.core.session")


# =============================================================================
# SESSION IDENTITY
# =============================================================================

def login_session_id(pid: int) -> str:
    """Session id of ``pid``.

    Prefers the kernel audit login session (survives setsid), falling back
    to the POSIX session id.
    """
    try:
        raw = Path(f"/proc/{pid}/sessionid").read_text().strip()
    except OSError:
        raw = ""
    if raw and raw != UNSET_AUDIT_SESSION_ID:
        return raw
    return str(os.getsid(pid))


def default_runtime_dir(uid: int, environ: Optional[Mapping[str, str]] = None) -> Path:
    environ = os.environ if environ is None else environ
    runtime = environ.get('XDG_RUNTIME_DIR')
    if runtime:
        return Path(runtime)
    return Path(f"/run/user/{uid}")


@dataclass(frozen=True)
class SessionContext:
    """Who a daemon belongs to, and where its socket lives."""
    session_id: str
    uid: int
    runtime_dir: Path

    @classmethod
    def current(cls, environ: Optional[Mapping[str, str]] = None) -> 'SessionContext':
        """Context of the running process.

        A daemon reads the session id its spawner injected into its
        environment, since detaching moved it into a new POSIX session.
        """
        environ = os.environ if environ is None else environ
        uid = os.getuid()
        session_id = environ.get(SESSION_ID_ENV_VAR) or login_session_id(os.getpid())
        return cls(session_id=session_id, uid=uid,
                   runtime_dir=default_runtime_dir(uid, environ))


def socket_path_for(context: SessionContext, owner: Optional[str] = None) -> Path:
    """``<runtime>/keyrack.<session>[.<owner>].sock``"""
    name = f"{SOCKET_PREFIX}.{context.session_id}"
    if owner:
        name += f".{owner}"
    return context.runtime_dir / f"{name}.sock"


def pid_path_for(socket_path: Path) -> Path:
    return Path(socket_path).with_suffix('.pid')


# =============================================================================
# PEER CREDENTIALS
# =============================================================================

@dataclass(frozen=True)
class PeerCredentials:
    pid: int
    uid: int
    gid: int


def read_peer_credentials(sock: socket.socket) -> PeerCredentials:
    """Peer (pid, uid, gid) of a connected unix socket.

    Raises:
        SessionMismatchError: when the platform exposes no peer credentials.
    """
    if not hasattr(socket, 'SO_PEERCRED'):
        raise SessionMismatchError("peer credentials unavailable on this platform")
    raw = sock.getsockopt(socket.SOL_SOCKET, socket.SO_PEERCRED, struct.calcsize('3i'))
    pid, uid, gid = struct.unpack('3i', raw)
    return PeerCredentials(pid=pid, uid=uid, gid=gid)


def describe_process(pid: int) -> str:
    """``name[pid]`` for log lines; falls back to the bare pid."""
    try:
        return f"{psutil.Process(pid).name()}[{pid}]"
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return f"[{pid}]"


class PeerSessionVerifier:
    """Rejects peers outside the daemon owner's login session.

    Runs on every request. ``credentials_reader`` and ``session_resolver``
    are injectable so the check can be exercised without a real OS session.
    """

    def __init__(self, context: SessionContext, *,
                 credentials_reader: Callable[[socket.socket], PeerCredentials] = read_peer_credentials,
                 session_resolver: Callable[[int], str] = login_session_id):
        self.context = context
        self._read_credentials = credentials_reader
        self._resolve_session = session_resolver

    def verify(self, sock: socket.socket) -> PeerCredentials:
        """Return the peer's credentials, or raise SessionMismatchError."""
        try:
            peer = self._read_credentials(sock)
        except OSError as e:
            raise SessionMismatchError(f"cannot read peer credentials: {e}") from e

        if peer.uid != self.context.uid:
            raise SessionMismatchError(
                f"peer uid {peer.uid} does not own this daemon",
                details={'peer_pid': peer.pid},
            )

        try:
            peer_session = self._resolve_session(peer.pid)
        except (OSError, psutil.Error) as e:
            raise SessionMismatchError(
                f"cannot read session of peer pid {peer.pid}: {e}",
                details={'peer_pid': peer.pid},
            ) from e

        if peer_session != self.context.session_id:
            raise SessionMismatchError(
                "peer is outside the daemon owner's login session",
                details={'peer_pid': peer.pid, 'peer_session': peer_session},
            )
        return peer
