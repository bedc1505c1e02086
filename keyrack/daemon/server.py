#!/usr/bin/env python3
"""
keyrack Daemon — Unix Socket Server
====================================
One listener per (login session, owner). Each connection carries exactly one
request:

    read one JSON document -> verify peer session -> dispatch -> reply -> close

The socket file is created owner-only (0600). Every connection is verified,
since peer credentials are per connection.

Usage:
    server = KeyrackDaemonServer(socket_path, verifier=PeerSessionVerifier(ctx))
    server.start()        # background thread
    ...
    server.stop()

    run_daemon(socket_path, ctx, config)   # foreground, with pid file + signals

Import from: keyrack.daemon.server
"""

from __future__ import annotations

import json
import logging
import os
import signal
import socket
import threading
from pathlib import Path
from socketserver import BaseRequestHandler, ThreadingMixIn, UnixStreamServer
from typing import Any, Dict, Optional

import psutil

from keyrack.core.config import KeyrackConfig
from keyrack.core.constants import (
    MAX_REQUEST_BYTES, RECV_CHUNK_SIZE, SOCKET_FILE_MODE, SOCKET_UMASK,
)
from keyrack.core.audit import AuditLogger
from keyrack.core.session import (
    PeerSessionVerifier, SessionContext, describe_process, pid_path_for,
)
from keyrack.core.types import (
    AuditSeverity, DaemonUnavailableError, ProtocolError, SessionMismatchError,
)
from keyrack.daemon.commands import (
    COMMAND_RELOCK, COMMAND_UNLOCK, dispatch_command, failure,
)
from keyrack.daemon.store import DaemonKeyStore

__all__ = [
    'ThreadedUnixStreamServer', 'KeyrackDaemonServer', 'run_daemon',
    'read_json_document',
]

logger = logging.getLogger("keyrack.daemon.server")


class ThreadedUnixStreamServer(ThreadingMixIn, UnixStreamServer):
    """Unix stream server that handles each connection in a separate thread."""
    daemon_threads = True


def read_json_document(sock: socket.socket, max_bytes: int = MAX_REQUEST_BYTES) -> Any:
    """Read until one complete JSON document has arrived, or EOF.

    Raises:
        ProtocolError: on oversize, empty, or malformed input.
    """
    buf = b''
    while True:
        chunk = sock.recv(RECV_CHUNK_SIZE)
        if not chunk:
            break
        buf += chunk
        if len(buf) > max_bytes:
            raise ProtocolError(f"request exceeds {max_bytes} bytes")
        try:
            return json.loads(buf)
        except ValueError:
            continue
    if not buf:
        raise ProtocolError("empty request")
    try:
        return json.loads(buf)
    except ValueError as e:
        raise ProtocolError(f"invalid JSON: {e}") from e


class KeyrackDaemonServer:
    """Session-gated key store server on a unix socket."""

    def __init__(self, socket_path: Path, *,
                 verifier: PeerSessionVerifier,
                 store: Optional[DaemonKeyStore] = None,
                 audit: Optional[AuditLogger] = None,
                 config: Optional[KeyrackConfig] = None):
        self.socket_path = Path(socket_path)
        self.verifier = verifier
        self.store = store or DaemonKeyStore()
        self.audit = audit
        self.config = config or KeyrackConfig()
        self._server: Optional[ThreadedUnixStreamServer] = None
        self._thread: Optional[threading.Thread] = None
        self._sweep_stop = threading.Event()
        self._sweep_thread: Optional[threading.Thread] = None
        self._serving = False

    # -----------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------

    def bind(self) -> None:
        """Create the listening socket with owner-only permissions."""
        self._clear_stale_socket()
        self.socket_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        previous_umask = os.umask(SOCKET_UMASK)
        try:
            self._server = ThreadedUnixStreamServer(
                str(self.socket_path), self._create_handler_class())
        finally:
            os.umask(previous_umask)
        os.chmod(self.socket_path, SOCKET_FILE_MODE)
        logger.info("Daemon listening on %s", self.socket_path)

    def _clear_stale_socket(self) -> None:
        if not self.socket_path.exists():
            return
        conn = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            conn.settimeout(0.5)
            conn.connect(str(self.socket_path))
        except OSError:
            logger.info("Removing stale socket %s", self.socket_path)
            self.socket_path.unlink()
            return
        finally:
            conn.close()
        raise DaemonUnavailableError(
            f"a daemon is already listening on {self.socket_path}")

    def start(self) -> None:
        """Bind and serve in a background thread."""
        if self._server is None:
            self.bind()
        self._serving = True
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="keyrack-daemon",
            daemon=True,
        )
        self._thread.start()
        self._start_sweeper()

    def serve_forever(self) -> None:
        """Bind and serve on the calling thread until stop()."""
        if self._server is None:
            self.bind()
        self._start_sweeper()
        self._serving = True
        try:
            self._server.serve_forever()
        finally:
            self._serving = False

    def stop(self) -> None:
        self._sweep_stop.set()
        server, self._server = self._server, None
        if server:
            if self._serving:
                server.shutdown()
            server.server_close()
        self._serving = False
        self.socket_path.unlink(missing_ok=True)
        logger.info("Daemon stopped")

    def _start_sweeper(self) -> None:
        interval = self.config.sweep_interval
        if not interval or self._sweep_thread is not None:
            return
        self._sweep_thread = threading.Thread(
            target=self._sweep_loop, args=(interval,),
            name="keyrack-sweep", daemon=True,
        )
        self._sweep_thread.start()

    def _sweep_loop(self, interval: float) -> None:
        while not self._sweep_stop.wait(interval):
            self.store.sweep()

    # -----------------------------------------------------------------
    # Request handling
    # -----------------------------------------------------------------

    def handle_connection(self, conn: socket.socket) -> Dict[str, Any]:
        """Read, verify, and dispatch one request. Returns the response envelope."""
        request: Any = None
        read_error: Optional[str] = None
        try:
            request = read_json_document(conn, self.config.max_request_bytes)
        except ProtocolError as e:
            read_error = e.message

        command = request.get('command') if isinstance(request, dict) else None

        try:
            peer = self.verifier.verify(conn)
        except SessionMismatchError as e:
            if self.audit:
                self.audit.log_rejected(str(command), str(e.details.get('peer_pid', '?')),
                                        e.message)
            else:
                logger.warning("Rejected %s: %s", command, e.message)
            return failure(f"session verification failed: {e.message}")

        if read_error is not None:
            return failure(read_error)

        response = dispatch_command(request, self.store)
        if response.get('success') and command in (COMMAND_UNLOCK, COMMAND_RELOCK):
            self._audit_mutation(command, response['data'], peer.pid)
        return response

    def _audit_mutation(self, command: str, data: Dict[str, Any], peer_pid: int) -> None:
        slugs = data.get('unlocked') if command == COMMAND_UNLOCK else data.get('relocked')
        if self.audit:
            self.audit.log_event(
                'keys_unlocked' if command == COMMAND_UNLOCK else 'keys_relocked',
                AuditSeverity.INFO,
                {'slugs': slugs, 'peer': describe_process(peer_pid)},
            )

    def _create_handler_class(self):
        """Create the request handler class with closure over server state."""
        daemon = self

        class DaemonRequestHandler(BaseRequestHandler):
            """One request per connection."""

            def handle(self):
                self.request.settimeout(daemon.config.request_timeout)
                try:
                    response = daemon.handle_connection(self.request)
                    self.request.sendall(json.dumps(response).encode('utf-8'))
                except OSError as e:
                    # Client went away; the response is discarded
                    logger.debug("Connection dropped: %s", e)

        return DaemonRequestHandler


# =============================================================================
# FOREGROUND DAEMON
# =============================================================================

def _write_pid_file(pid_path: Path) -> None:
    pid_path.write_text(str(os.getpid()), encoding='utf-8')
    os.chmod(pid_path, SOCKET_FILE_MODE)


def _remove_pid_file(pid_path: Path) -> None:
    try:
        if pid_path.exists() and pid_path.read_text().strip() == str(os.getpid()):
            pid_path.unlink()
    except OSError as e:
        logger.warning("Could not remove pid file %s: %s", pid_path, e)


# psutil derives create_time from boot time, which can drift by up to a second
PID_CLOCK_SLACK = 1.0


def _is_daemon_process(pid: int, socket_path: Path, written_at: float) -> bool:
    """True if ``pid`` is a keyrack daemon serving ``socket_path``.

    A process started after the pid file was written has reused the pid.
    """
    try:
        proc = psutil.Process(pid)
        cmdline = proc.cmdline()
        started = proc.create_time()
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return False
    if started > written_at + PID_CLOCK_SLACK:
        return False
    return 'keyrack' in cmdline and 'daemon' in cmdline and str(socket_path) in cmdline


def read_daemon_pid(socket_path: Path) -> Optional[int]:
    """Pid of the keyrack daemon recorded for ``socket_path``.

    A pid file naming a dead process, or a pid now owned by another program,
    is stale: it is removed and None is returned.
    """
    pid_path = pid_path_for(socket_path)
    try:
        pid = int(pid_path.read_text().strip())
        written_at = pid_path.stat().st_mtime
    except (OSError, ValueError):
        return None
    if _is_daemon_process(pid, Path(socket_path), written_at):
        return pid

    logger.info("Removing stale pid file %s (pid %d is not a keyrack daemon)", pid_path, pid)
    try:
        pid_path.unlink()
    except OSError as e:
        logger.warning("Could not remove pid file %s: %s", pid_path, e)
    return None


def run_daemon(socket_path: Path, context: SessionContext,
               config: Optional[KeyrackConfig] = None) -> None:
    """Run a daemon in the foreground until SIGTERM/SIGINT."""
    config = config or KeyrackConfig()
    socket_path = Path(socket_path)
    pid_path = pid_path_for(socket_path)
    audit = AuditLogger(config.log_dir) if config.audit_enabled else None

    server = KeyrackDaemonServer(
        socket_path,
        verifier=PeerSessionVerifier(context),
        audit=audit,
        config=config,
    )
    server.bind()
    _write_pid_file(pid_path)

    def _terminate(signum, frame):
        logger.info("Received signal %d, shutting down", signum)
        # shutdown() blocks until serve_forever returns, so not on this thread
        threading.Thread(target=server.stop, daemon=True).start()

    signal.signal(signal.SIGTERM, _terminate)
    signal.signal(signal.SIGINT, _terminate)

    if audit:
        audit.log_event('daemon_started', AuditSeverity.INFO,
                        {'socket': str(socket_path), 'pid': os.getpid()})
    try:
        server.serve_forever()
    finally:
        _remove_pid_file(pid_path)
        socket_path.unlink(missing_ok=True)
        if audit:
            audit.log_event('daemon_stopped', AuditSeverity.INFO, {'pid': os.getpid()})
