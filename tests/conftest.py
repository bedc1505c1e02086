"""
Shared pytest fixtures for the keyrack test suite.

Provides a controllable clock, a temp KeyrackConfig, an in-process daemon
client backed by a real DaemonKeyStore, and a fully wired KeyrackContext,
so operation tests run without spawning processes or touching $HOME.
"""

import os
import json
import shutil
import tempfile
from pathlib import Path

import pytest

from keyrack.core.config import KeyrackConfig
from keyrack.core.constants import PASSPHRASE_ENV_VAR
from keyrack.core.manifest.host import HostManifestStore
from keyrack.core.manifest.hydrate import hydrate_repo_manifest
from keyrack.core.manifest.loader import parse_manifest_document
from keyrack.core.mechanisms import build_mechanism_adapters
from keyrack.core.session import SessionContext
from keyrack.core.types import (
    DaemonUnavailableError, Duration, Grade, KeyGrant, Protection, ProtocolError,
)
from keyrack.daemon.client import DaemonClient
from keyrack.daemon.commands import dispatch_command
from keyrack.daemon.store import DaemonKeyStore
from keyrack.ops.context import KeyrackContext
from keyrack.vaults import OsDaemonVault, OsDirectVault, OsEnvvarVault, OsSecureVault

NOW_SECONDS = 1_700_000_000.0
NOW_MS = int(NOW_SECONDS * 1000)

TEST_PASSPHRASE = "correct horse battery staple"

STANDARD_MANIFEST = {
    'org': 'acme',
    'env.all': ['SHARED_TOKEN'],
    'env.prod': [{'DB_PASSWORD': 'encrypted'}, 'AWS_PROFILE'],
    'env.test': ['AWS_PROFILE'],
}


class FakeClock:
    """Callable clock (epoch seconds) that only moves when told to."""

    def __init__(self, start: float = NOW_SECONDS):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InProcessDaemonClient(DaemonClient):
    """DaemonClient that dispatches into a local store instead of a socket.

    Requests still pass through JSON so wire-shape mistakes surface.
    """

    def __init__(self, store: DaemonKeyStore, config: KeyrackConfig):
        super().__init__(Path("/nonexistent/keyrack.test.sock"), config)
        self.store = store
        self.running = False
        self.spawned = 0
        self.requests = []

    def is_reachable(self) -> bool:
        return self.running

    def ensure_running(self, session) -> bool:
        if self.running:
            return False
        self.running = True
        self.spawned += 1
        return True

    def request(self, command, payload=None):
        if not self.running:
            raise DaemonUnavailableError("keyrack daemon unreachable (test)")
        wire = json.loads(json.dumps({'command': command, 'payload': payload or {}}))
        self.requests.append(wire)
        response = json.loads(json.dumps(dispatch_command(wire, self.store)))
        if not response.get('success'):
            raise ProtocolError(f"daemon rejected {command}: {response.get('error')}")
        return response.get('data')


# ---------------------------------------------------------------------------
# Config / clock fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    """A KeyrackConfig rooted in the pytest temp dir, with no background sweep."""
    return KeyrackConfig(home=tmp_path / "keyrack-home", sweep_interval=0)


@pytest.fixture
def session(tmp_path):
    return SessionContext(session_id="4242", uid=os.getuid(), runtime_dir=tmp_path / "run")


@pytest.fixture
def short_tmp():
    """A short temp dir for unix sockets (sun_path is limited to ~108 bytes)."""
    path = Path(tempfile.mkdtemp(prefix="kr-", dir="/tmp"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


# ---------------------------------------------------------------------------
# Grant fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def make_grant():
    """Factory for KeyGrants with sensible defaults."""

    def _make(slug="acme.prod.DB_PASSWORD", secret="s3cret", expires_at=None,
              vault="os.secure", mech="PERMANENT_VIA_REPLICA", env=None, org=None):
        parts = slug.split('.')
        return KeyGrant(
            slug=slug,
            secret=secret,
            grade=Grade(Protection.ENCRYPTED, Duration.PERMANENT),
            vault=vault,
            mech=mech,
            env=env or parts[1],
            org=org or parts[0],
            expires_at=expires_at,
        )

    return _make


@pytest.fixture
def store(clock):
    return DaemonKeyStore(clock=clock)


# ---------------------------------------------------------------------------
# Manifest / context fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def repo_manifest(tmp_path):
    """The standard acme manifest, hydrated."""
    explicit = parse_manifest_document(STANDARD_MANIFEST, tmp_path / ".agent/keyrack.yml")
    return hydrate_repo_manifest(
        explicit, manifest_path=tmp_path / ".agent/keyrack.yml", repo_root=tmp_path,
    ).manifest


@pytest.fixture
def daemon(store, config):
    return InProcessDaemonClient(store, config)


@pytest.fixture
def process_env():
    """Stand-in for os.environ seen by the os.envvar vault."""
    return {}


@pytest.fixture
def vaults(config, clock, session, daemon, process_env):
    return {
        'os.envvar': OsEnvvarVault(environ=process_env),
        'os.direct': OsDirectVault(config.vault_dir, None, clock=clock),
        'os.secure': OsSecureVault(
            config.vault_dir, None,
            environ={PASSPHRASE_ENV_VAR: TEST_PASSPHRASE},
            prompt=lambda _: pytest.fail("unexpected passphrase prompt"),
        ),
        'os.daemon': OsDaemonVault(daemon, session, clock=clock),
    }


@pytest.fixture
def context(config, session, daemon, vaults, repo_manifest, clock, process_env):
    """A fully wired KeyrackContext with an in-process daemon."""
    return KeyrackContext(
        config=config,
        session=session,
        host_store=HostManifestStore(config.host_manifest_path(None)),
        vaults=vaults,
        daemon=daemon,
        repo_manifest=repo_manifest,
        mechanisms=build_mechanism_adapters(),
        clock=clock,
        environ=process_env,
    )
