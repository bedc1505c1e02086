"""
keyrack — Session Boundary Tests
=================================

Covers session id resolution, socket path derivation, and the per-connection
peer verifier (uid and login-session checks).

Run with:  pytest tests/test_session.py -v
"""

import os
import socket
from pathlib import Path
from unittest.mock import MagicMock, patch

import psutil
import pytest

from keyrack.core.session import (
    PeerCredentials, PeerSessionVerifier, SessionContext, default_runtime_dir,
    describe_process, login_session_id, pid_path_for, read_peer_credentials,
    socket_path_for,
)
from keyrack.core.types import SessionMismatchError


@pytest.fixture
def owner_context(tmp_path):
    return SessionContext(session_id="7", uid=1000, runtime_dir=tmp_path)


def _verifier(context, pid=555, uid=1000, session="7"):
    return PeerSessionVerifier(
        context,
        credentials_reader=lambda sock: PeerCredentials(pid=pid, uid=uid, gid=uid),
        session_resolver=lambda p: session,
    )


# ---------------------------------------------------------------------------
# Identity and paths
# ---------------------------------------------------------------------------

class TestSessionIdentity:

    def test_audit_session_preferred(self):
        with patch("keyrack.core.session.Path.read_text", return_value="12\n"):
            assert login_session_id(1) == "12"

    def test_unset_audit_session_falls_back_to_getsid(self):
        with patch("keyrack.core.session.Path.read_text", return_value="4294967295"), \
                patch("keyrack.core.session.os.getsid", return_value=321):
            assert login_session_id(1) == "321"

    def test_missing_proc_falls_back_to_getsid(self):
        with patch("keyrack.core.session.Path.read_text", side_effect=OSError("no proc")), \
                patch("keyrack.core.session.os.getsid", return_value=99):
            assert login_session_id(1) == "99"

    def test_current_reads_injected_session(self):
        context = SessionContext.current({'KEYRACK_SESSION_ID': "abc", 'XDG_RUNTIME_DIR': "/run/x"})
        assert context.session_id == "abc"
        assert context.uid == os.getuid()
        assert context.runtime_dir == Path("/run/x")

    def test_runtime_dir_default(self):
        assert default_runtime_dir(1000, {}) == Path("/run/user/1000")

    def test_socket_path_per_session_and_owner(self, owner_context, tmp_path):
        assert socket_path_for(owner_context) == tmp_path / "keyrack.7.sock"
        assert socket_path_for(owner_context, "ci") == tmp_path / "keyrack.7.ci.sock"
        other = SessionContext(session_id="8", uid=1000, runtime_dir=tmp_path)
        assert socket_path_for(other) != socket_path_for(owner_context)

    def test_pid_path(self, tmp_path):
        assert pid_path_for(tmp_path / "keyrack.7.sock") == tmp_path / "keyrack.7.pid"


# ---------------------------------------------------------------------------
# Peer verification
# ---------------------------------------------------------------------------

class TestPeerSessionVerifier:

    def test_same_session_accepted(self, owner_context):
        peer = _verifier(owner_context).verify(MagicMock())
        assert peer.pid == 555

    def test_other_session_rejected(self, owner_context):
        with pytest.raises(SessionMismatchError, match="outside the daemon owner's login session"):
            _verifier(owner_context, session="8").verify(MagicMock())

    def test_other_uid_rejected(self, owner_context):
        with pytest.raises(SessionMismatchError, match="uid 0") as exc:
            _verifier(owner_context, uid=0).verify(MagicMock())
        assert exc.value.details['peer_pid'] == 555

    def test_unreadable_peer_session_rejected(self, owner_context):
        def vanished(pid):
            raise psutil.NoSuchProcess(pid)

        verifier = PeerSessionVerifier(
            owner_context,
            credentials_reader=lambda sock: PeerCredentials(pid=555, uid=1000, gid=1000),
            session_resolver=vanished,
        )
        with pytest.raises(SessionMismatchError, match="cannot read session"):
            verifier.verify(MagicMock())

    def test_unreadable_credentials_rejected(self, owner_context):
        def broken(sock):
            raise OSError("bad fd")

        verifier = PeerSessionVerifier(owner_context, credentials_reader=broken)
        with pytest.raises(SessionMismatchError, match="cannot read peer credentials"):
            verifier.verify(MagicMock())

    @pytest.mark.skipif(not hasattr(socket, 'SO_PEERCRED'), reason="needs SO_PEERCRED")
    def test_real_peer_credentials(self):
        left, right = socket.socketpair(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            creds = read_peer_credentials(left)
        finally:
            left.close()
            right.close()
        assert creds.pid == os.getpid()
        assert creds.uid == os.getuid()

    def test_describe_process(self):
        assert describe_process(os.getpid()).endswith(f"[{os.getpid()}]")
        with patch("keyrack.core.session.psutil.Process", side_effect=psutil.NoSuchProcess(1)):
            assert describe_process(1) == "[1]"
