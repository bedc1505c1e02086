"""
keyrack — CLI Tests
====================

Drives ``keyrack.cli.main`` with a prebuilt context and checks output and
exit codes (0 granted/ok, 2 locked, 1 everything else).

Run with:  pytest tests/test_cli.py -v
"""

import io
import json

import pytest

from keyrack.cli import (
    EXIT_FAILURE, EXIT_LOCKED, EXIT_OK, attempt_to_dict, build_parser,
    exit_code_for_attempt, main,
)
from keyrack.core.types import KeyHost

from conftest import TEST_PASSPHRASE


@pytest.fixture
def run(context):
    """Run the CLI against the test context; returns the exit code."""
    owners = []

    def _run(*argv):
        def factory(owner=None):
            owners.append(owner)
            return context
        return main(list(argv), context_factory=factory)

    _run.owners = owners
    return _run


def _assign(context, slug, vault, secret=None):
    parts = slug.split('.')
    context.host_store.upsert(KeyHost(
        slug=slug, vault=vault, mech="PERMANENT_VIA_REPLICA", env=parts[1], org=parts[0],
    ))
    if secret is not None:
        adapter = context.vaults[vault]
        if not adapter.is_unlocked():
            adapter.unlock(TEST_PASSPHRASE)
        adapter.set(slug, secret)


# =========================================================================
# PARSER
# =========================================================================

class TestParser:

    def test_no_command_prints_help(self, run, capsys):
        assert run() == EXIT_FAILURE
        assert "usage: keyrack" in capsys.readouterr().out

    def test_owner_aliases(self):
        parser = build_parser()
        assert parser.parse_args(['status', '--for', 'ci']).owner == 'ci'
        assert parser.parse_args(['unlock', '--owner', 'ci']).owner == 'ci'

    def test_set_defaults(self):
        args = build_parser().parse_args(['set', '--key', 'X', '--vault', 'os.direct'])
        assert args.env == 'all'
        assert args.org == '@this'
        assert args.mech == 'PERMANENT_VIA_REPLICA'

    def test_owner_passed_to_context_factory(self, run):
        run('status', '--for', 'ci-bot')
        assert run.owners == ['ci-bot']


# =========================================================================
# GET
# =========================================================================

class TestGetCommand:

    def test_granted_prints_secret(self, run, context, capsys):
        _assign(context, "acme.test.AWS_PROFILE", "os.direct", "dev")
        assert run('get', '--key', 'AWS_PROFILE', '--env', 'test') == EXIT_OK
        assert capsys.readouterr().out == "dev\n"

    def test_locked_exit_code(self, run, context, capsys):
        _assign(context, "acme.prod.DB_PASSWORD", "os.secure", "db-pass")
        context.vaults["os.secure"].relock()
        assert run('get', '--key', 'DB_PASSWORD') == EXIT_LOCKED
        err = capsys.readouterr().err
        assert err.startswith("locked:")
        assert "keyrack unlock --env prod --key DB_PASSWORD" in err

    def test_absent_exit_code(self, run, capsys):
        assert run('get', '--key', 'DB_PASSWORD') == EXIT_FAILURE
        assert capsys.readouterr().err.startswith("absent:")

    def test_blocked_lists_reasons(self, run, context, capsys):
        _assign(context, "acme.prod.DB_PASSWORD", "os.direct", "db-pass")
        assert run('get', '--key', 'DB_PASSWORD') == EXIT_FAILURE
        err = capsys.readouterr().err
        assert "blocked: acme.prod.DB_PASSWORD" in err
        assert "  - requires encrypted protection" in err

    def test_json_output(self, run, context, capsys):
        _assign(context, "acme.test.AWS_PROFILE", "os.direct", "dev")
        assert run('get', '--key', 'AWS_PROFILE', '--env', 'test', '--json') == EXIT_OK
        data = json.loads(capsys.readouterr().out)
        assert data['status'] == 'granted'
        assert data['grant']['slug'] == 'acme.test.AWS_PROFILE'
        assert data['grant']['source'] == {'vault': 'os.direct', 'mech': 'PERMANENT_VIA_REPLICA'}

    def test_ambiguous_is_an_error(self, run, capsys):
        assert run('get', '--key', 'AWS_PROFILE') == EXIT_FAILURE
        err = capsys.readouterr().err
        assert "error: key 'AWS_PROFILE' found in multiple envs" in err
        assert "fix:" in err


class TestAttemptHelpers:

    def test_unknown_variant_rejected(self):
        with pytest.raises(TypeError):
            exit_code_for_attempt(object())
        with pytest.raises(TypeError):
            attempt_to_dict(object())


# =========================================================================
# UNLOCK / STATUS / RELOCK
# =========================================================================

class TestDaemonCommands:

    def test_unlock_then_status(self, run, context, capsys):
        _assign(context, "acme.prod.AWS_PROFILE", "os.direct", "dev")
        assert run('unlock', '--env', 'prod') == EXIT_OK
        assert "unlocked acme.prod.AWS_PROFILE (plaintext/permanent, os.direct)" in capsys.readouterr().out

        assert run('status') == EXIT_OK
        out = capsys.readouterr().out
        assert "acme.prod.AWS_PROFILE" in out
        assert "9h00m" in out

    def test_unlock_nothing_configured(self, run, capsys):
        assert run('unlock', '--env', 'prod') == EXIT_OK
        assert "no keys unlocked" in capsys.readouterr().out

    def test_sudo_without_key(self, run, capsys):
        assert run('unlock', '--env', 'sudo') == EXIT_FAILURE
        err = capsys.readouterr().err
        assert "error: sudo credentials require --key flag" in err
        assert "  fix: run: keyrack unlock --env sudo --key <KEY>" in err

    def test_status_without_daemon(self, run, capsys):
        assert run('status') == EXIT_OK
        assert capsys.readouterr().out == "daemon not running\n"

    def test_status_json_without_daemon(self, run, capsys):
        assert run('status', '--json') == EXIT_OK
        assert json.loads(capsys.readouterr().out) == {'running': False, 'keys': []}

    def test_status_json_never_expiring_is_null(self, run, daemon, store, make_grant, capsys):
        daemon.running = True
        store.set(make_grant(expires_at=None))

        assert run('status', '--json') == EXIT_OK

        def reject(token):
            raise AssertionError(f"non-standard JSON constant {token}")

        data = json.loads(capsys.readouterr().out, parse_constant=reject)
        assert data['running'] is True
        [entry] = data['keys']
        assert entry['slug'] == 'acme.prod.DB_PASSWORD'
        assert entry['expiresAt'] is None
        assert entry['ttlLeftMs'] is None

    def test_relock_by_key(self, run, context, store, capsys):
        _assign(context, "acme.prod.AWS_PROFILE", "os.direct", "dev")
        run('unlock', '--env', 'prod')
        capsys.readouterr()

        assert run('relock', '--key', 'AWS_PROFILE', '--env', 'prod') == EXIT_OK
        assert "relocked 1 keys" in capsys.readouterr().out
        assert store.size() == 0


# =========================================================================
# SET / DEL
# =========================================================================

class TestHostCommands:

    def test_set_reads_secret_from_stdin(self, run, context, monkeypatch, capsys):
        monkeypatch.setattr('sys.stdin', io.StringIO("dev\n"))
        assert run('set', '--key', 'AWS_PROFILE', '--env', 'test', '--vault', 'os.direct') == EXIT_OK
        assert "set acme.test.AWS_PROFILE -> os.direct" in capsys.readouterr().out
        assert context.vaults["os.direct"].get("acme.test.AWS_PROFILE") == "dev"

    def test_set_envvar_skips_secret(self, run, context, monkeypatch):
        monkeypatch.setattr('keyrack.cli._read_secret',
                            lambda slug: pytest.fail("secret should not be read"))
        assert run('set', '--key', 'AWS_PROFILE', '--env', 'test', '--vault', 'os.envvar') == EXIT_OK
        assert context.host_store.get("acme.test.AWS_PROFILE").vault == "os.envvar"

    def test_set_refuses_weaker_vault(self, run, context, monkeypatch, capsys):
        monkeypatch.setattr('sys.stdin', io.StringIO("db-pass\n"))
        assert run('set', '--key', 'DB_PASSWORD', '--env', 'prod', '--vault', 'os.direct') == EXIT_FAILURE
        assert "does not satisfy acme.prod.DB_PASSWORD" in capsys.readouterr().err

    def test_del(self, run, context, capsys):
        _assign(context, "acme.test.AWS_PROFILE", "os.direct", "dev")
        assert run('del', '--key', 'AWS_PROFILE', '--env', 'test') == EXIT_OK
        assert capsys.readouterr().out == "deleted: acme.test.AWS_PROFILE\n"
        assert run('del', '--key', 'AWS_PROFILE', '--env', 'test') == EXIT_FAILURE
        assert capsys.readouterr().out == "not_found: acme.test.AWS_PROFILE\n"


# =========================================================================
# INIT
# =========================================================================

class TestInitCommand:

    def test_init_creates_host_and_repo_manifests(self, run, context, tmp_path, capsys):
        context.repo_root = tmp_path / "repo"
        context.repo_root.mkdir()

        assert run('init', '--org', 'acme') == EXIT_OK
        out = capsys.readouterr().out
        assert f"host manifest created: {context.host_store.path}" in out
        assert "repo manifest created:" in out
        assert "(org acme)" in out

    def test_init_json_is_idempotent(self, run, context, capsys):
        run('init')
        capsys.readouterr()

        assert run('init', '--json') == EXIT_OK
        data = json.loads(capsys.readouterr().out)
        assert data['host']['effect'] == 'found'
        assert data['repo'] is None

    def test_init_org_without_repo_fails(self, run, capsys):
        assert run('init', '--org', 'acme') == EXIT_FAILURE
        assert "requires a git repo" in capsys.readouterr().err
