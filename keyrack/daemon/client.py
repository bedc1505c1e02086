#!/usr/bin/env python3
"""
keyrack Daemon — Client
========================
Talks to the daemon over its unix socket, one request per connection.

Reads (get/status/relock) soft-fail: an unreachable daemon means nothing is
unlocked yet, so they return None instead of raising. unlock() is the only
call that requires a daemon, and ensure_running() spawns one on demand.

Import from: keyrack.daemon.client
"""

from __future__ import annotations

import json
import logging
import os
import socket
import subprocess
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import psutil

from keyrack.core.config import KeyrackConfig
from keyrack.core.constants import RECV_CHUNK_SIZE, SESSION_ID_ENV_VAR
from keyrack.core.session import SessionContext
from keyrack.core.types import DaemonUnavailableError, KeyGrant, ProtocolError
from keyrack.daemon.commands import (
    COMMAND_GET, COMMAND_RELOCK, COMMAND_STATUS, COMMAND_UNLOCK,
)
from keyrack.daemon.server import read_daemon_pid

__all__ = ['DaemonClient', 'spawn_daemon']

logger = logging.getLogger("keyrack.daemon.client")


def spawn_daemon(socket_path: Path, session: SessionContext,
                 config: Optional[KeyrackConfig] = None) -> subprocess.Popen:
    """Start a detached daemon process for ``socket_path``.

    The spawner's session id travels in the daemon's environment; the daemon
    runs in a new POSIX session and could not derive it itself.
    """
    env = dict(os.environ)
    env[SESSION_ID_ENV_VAR] = session.session_id
    if config is not None:
        env.setdefault('KEYRACK_HOME', str(config.home))
    cmd = [sys.executable, '-m', 'keyrack', 'daemon', '--socket', str(socket_path)]
    logger.info("Spawning keyrack daemon at %s", socket_path)
    return subprocess.Popen(
        cmd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
        close_fds=True,
        env=env,
    )


class DaemonClient:
    """Request/response client for one daemon socket."""

    def __init__(self, socket_path: Path, config: Optional[KeyrackConfig] = None):
        self.socket_path = Path(socket_path)
        self.config = config or KeyrackConfig()

    # -----------------------------------------------------------------
    # Transport
    # -----------------------------------------------------------------

    def _connect(self) -> socket.socket:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(self.config.connect_timeout)
        try:
            sock.connect(str(self.socket_path))
        except OSError as e:
            sock.close()
            raise DaemonUnavailableError(
                f"keyrack daemon unreachable at {self.socket_path}: {e}") from e
        return sock

    def is_reachable(self) -> bool:
        try:
            self._connect().close()
        except DaemonUnavailableError:
            return False
        return True

    def request(self, command: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        """Send one command and return its ``data``.

        Raises:
            DaemonUnavailableError: if the socket cannot be reached.
            ProtocolError: if the daemon answers with a failure or garbage.
        """
        sock = self._connect()
        try:
            sock.sendall(json.dumps({'command': command, 'payload': payload or {}}).encode('utf-8'))
            sock.shutdown(socket.SHUT_WR)
            chunks = []
            while True:
                chunk = sock.recv(RECV_CHUNK_SIZE)
                if not chunk:
                    break
                chunks.append(chunk)
        except OSError as e:
            raise DaemonUnavailableError(f"keyrack daemon connection failed: {e}") from e
        finally:
            sock.close()

        try:
            response = json.loads(b''.join(chunks))
        except ValueError as e:
            raise ProtocolError(f"malformed daemon response: {e}") from e
        if not isinstance(response, dict):
            raise ProtocolError("malformed daemon response: not an object")
        if not response.get('success'):
            raise ProtocolError(f"daemon rejected {command}: {response.get('error')}")
        return response.get('data')

    def _soft_request(self, command: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        try:
            return self.request(command, payload)
        except DaemonUnavailableError as e:
            logger.debug("%s skipped: %s", command, e.message)
            return None

    # -----------------------------------------------------------------
    # Commands
    # -----------------------------------------------------------------

    def unlock(self, grants: List[KeyGrant]) -> List[str]:
        data = self.request(COMMAND_UNLOCK, {'keys': [g.to_dict() for g in grants]})
        return list(data.get('unlocked', []))

    def get(self, slugs: List[str], org: Optional[str] = None,
            env: Optional[str] = None) -> Optional[List[KeyGrant]]:
        payload: Dict[str, Any] = {'slugs': list(slugs)}
        if org is not None:
            payload['org'] = org
        if env is not None:
            payload['env'] = env
        data = self._soft_request(COMMAND_GET, payload)
        if data is None:
            return None
        return [KeyGrant.from_dict(item) for item in data.get('keys', [])]

    def status(self) -> Optional[List[Dict[str, Any]]]:
        data = self._soft_request(COMMAND_STATUS)
        if data is None:
            return None
        return list(data.get('keys', []))

    def relock(self, slugs: Optional[List[str]] = None,
               env: Optional[str] = None) -> Optional[List[str]]:
        payload: Dict[str, Any] = {}
        if slugs is not None:
            payload['slugs'] = list(slugs)
        if env is not None:
            payload['env'] = env
        data = self._soft_request(COMMAND_RELOCK, payload)
        if data is None:
            return None
        return list(data.get('relocked', []))

    # -----------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------

    def _terminate_hung_daemon(self) -> None:
        pid = read_daemon_pid(self.socket_path)
        if pid is None:
            return
        logger.warning("Daemon pid %d holds %s but does not answer; terminating",
                       pid, self.socket_path)
        try:
            proc = psutil.Process(pid)
            proc.terminate()
            proc.wait(timeout=self.config.spawn_timeout)
        except psutil.NoSuchProcess:
            pass
        except psutil.TimeoutExpired:
            proc.kill()

    def ensure_running(self, session: SessionContext) -> bool:
        """Spawn a daemon unless one already answers. Returns True if spawned."""
        if self.is_reachable():
            return False

        self._terminate_hung_daemon()
        proc = spawn_daemon(self.socket_path, session, self.config)

        deadline = time.monotonic() + self.config.spawn_timeout
        while time.monotonic() < deadline:
            if self.is_reachable():
                logger.info("keyrack daemon started (pid %d)", proc.pid)
                return True
            if proc.poll() is not None:
                raise DaemonUnavailableError(
                    f"keyrack daemon exited during startup (code {proc.returncode})",
                    fix=f"run: {sys.executable} -m keyrack daemon --socket {self.socket_path}",
                )
            time.sleep(self.config.spawn_poll_interval)

        raise DaemonUnavailableError(
            f"keyrack daemon did not start within {self.config.spawn_timeout}s",
        )
