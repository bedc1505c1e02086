#!/usr/bin/env python3
"""
keyrack CLI
===========

Command-line interface for the credential broker:
  - unlock: pull secrets from vaults into the session daemon
  - get:    request a grant for one key
  - status: list what the daemon holds
  - relock: drop grants from the daemon
  - set:    assign a key to a vault on this host
  - del:    forget a key on this host
  - init:   create the host manifest (and repo manifest with --org)
  - daemon: run the session daemon (spawned automatically)

Usage:
  keyrack unlock --env prod                    # unlock everything for prod
  keyrack unlock --env sudo --key GH_ADMIN     # sudo keys one at a time
  keyrack get --key DB_PASSWORD --env prod     # print the secret
  keyrack get --key DB_PASSWORD --json         # print the whole attempt
  keyrack status                               # unlocked keys and TTLs
  keyrack relock --env sudo                    # drop sudo grants
  keyrack set --key DB_PASSWORD --env prod --vault os.secure
  keyrack del --key DB_PASSWORD --env prod
  keyrack init --org acme                      # first-run setup

Exit codes: 0 success or granted, 2 locked, 1 anything else.
"""

import os
import sys
import json
import getpass
import logging
import argparse
from typing import Callable, List, Optional

from keyrack.core.config import KeyrackConfig
from keyrack.core.constants import (
    DEFAULT_MECH, ENV_ALL, ORG_THIS, SESSION_ID_ENV_VAR, VAULT_OS_ENVVAR,
)
from keyrack.core.durations import format_duration_ms
from keyrack.core.grades import format_grade
from keyrack.core.manifest.slugs import resolve_slug
from keyrack.core.session import SessionContext
from keyrack.core.types import (
    GrantAttempt, GrantAttemptAbsent, GrantAttemptBlocked, GrantAttemptGranted,
    GrantAttemptLocked, Grade, KeyrackError,
)
from keyrack.core.version import __version__
from keyrack.ops.context import KeyrackContext
from keyrack.ops.grant import get_key_grant
from keyrack.ops.host import del_key_host, relock_keys, set_key, status_keys
from keyrack.ops.init import init_keyrack
from keyrack.ops.unlock import unlock_keys

logger = logging.getLogger("keyrack.cli")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_LOCKED = 2

ContextFactory = Callable[..., KeyrackContext]


# =============================================================================
# OUTPUT HELPERS
# =============================================================================

def _err(text: str):
    print(text, file=sys.stderr)


def _report_error(e: KeyrackError):
    _err(f"error: {e.message}")
    if e.fix:
        _err(f"  fix: {e.fix}")


def attempt_to_dict(attempt: GrantAttempt) -> dict:
    if isinstance(attempt, GrantAttemptGranted):
        return {'status': attempt.status, 'grant': attempt.grant.to_dict()}
    if isinstance(attempt, GrantAttemptBlocked):
        return {'status': attempt.status, 'slug': attempt.slug,
                'reasons': list(attempt.reasons), 'fix': attempt.fix}
    if isinstance(attempt, (GrantAttemptAbsent, GrantAttemptLocked)):
        return {'status': attempt.status, 'slug': attempt.slug,
                'message': attempt.message, 'fix': attempt.fix}
    raise TypeError(f"unknown grant attempt: {attempt!r}")


def exit_code_for_attempt(attempt: GrantAttempt) -> int:
    if isinstance(attempt, GrantAttemptGranted):
        return EXIT_OK
    if isinstance(attempt, GrantAttemptLocked):
        return EXIT_LOCKED
    if isinstance(attempt, (GrantAttemptAbsent, GrantAttemptBlocked)):
        return EXIT_FAILURE
    raise TypeError(f"unknown grant attempt: {attempt!r}")


def _read_secret(slug: str) -> Optional[str]:
    """Secret for ``set``: piped stdin, or an interactive prompt."""
    if not sys.stdin.isatty():
        return sys.stdin.read().rstrip('\n') or None
    return getpass.getpass(f"secret for {slug}: ") or None


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_unlock(args, context: KeyrackContext) -> int:
    """Unlock keys into the session daemon."""
    result = unlock_keys(context, env=args.env, key=args.key, duration=args.duration)
    for warning in result.warnings:
        _err(f"warning: {warning}")
    if not result.unlocked:
        print("no keys unlocked")
        return EXIT_OK
    for grant in result.unlocked:
        print(f"unlocked {grant.slug} ({format_grade(grant.grade)}, {grant.vault})")
    return EXIT_OK


def cmd_get(args, context: KeyrackContext) -> int:
    """Request a grant for one key."""
    attempt = get_key_grant(context, args.key, env=args.env,
                            allow_unlock=args.allow_unlock)
    if args.json:
        print(json.dumps(attempt_to_dict(attempt), indent=2))
    elif isinstance(attempt, GrantAttemptGranted):
        print(attempt.grant.secret)
    elif isinstance(attempt, GrantAttemptBlocked):
        _err(f"{attempt.status}: {attempt.slug}")
        for reason in attempt.reasons:
            _err(f"  - {reason}")
        if attempt.fix:
            _err(f"  fix: {attempt.fix}")
    else:
        _err(f"{attempt.status}: {attempt.message}")
        if attempt.fix:
            _err(f"  fix: {attempt.fix}")
    return exit_code_for_attempt(attempt)


def _status_entry_for_json(entry: dict) -> dict:
    # Infinity is a daemon wire extension; CLI JSON stays strict
    ttl = entry.get('ttlLeftMs')
    return dict(entry, ttlLeftMs=None if ttl == float('inf') else ttl)


def cmd_status(args, context: KeyrackContext) -> int:
    """List grants held by the daemon."""
    keys = status_keys(context)
    if args.json:
        entries = [_status_entry_for_json(e) for e in keys or []]
        print(json.dumps({'running': keys is not None, 'keys': entries},
                         indent=2, allow_nan=False))
        return EXIT_OK
    if keys is None:
        print("daemon not running")
        return EXIT_OK
    if not keys:
        print("no keys unlocked")
        return EXIT_OK
    for entry in keys:
        grade = format_grade(Grade.from_dict(entry['grade']))
        ttl = format_duration_ms(entry['ttlLeftMs'])
        print(f"  {entry['slug']:<40} {grade:<22} {entry['source']['vault']:<12} {ttl}")
    return EXIT_OK


def cmd_relock(args, context: KeyrackContext) -> int:
    """Drop grants from the daemon."""
    slugs = None
    if args.key:
        slugs = [resolve_slug(args.key, args.env, context.repo_manifest).slug]
    relocked = relock_keys(context, slugs=slugs, env=None if slugs else args.env)
    print(f"relocked {len(relocked)} keys")
    for slug in relocked:
        print(f"  {slug}")
    return EXIT_OK


def cmd_set(args, context: KeyrackContext) -> int:
    """Assign a key to a vault on this host."""
    secret = None
    if args.vault != VAULT_OS_ENVVAR:
        secret = _read_secret(args.key)
    hosts = set_key(
        context, key=args.key, env=args.env, vault=args.vault, mech=args.mech,
        org=args.org, max_duration=args.max_duration, exid=args.exid, secret=secret,
    )
    for host in hosts:
        print(f"set {host.slug} -> {host.vault} ({host.mech})")
    return EXIT_OK


def cmd_del(args, context: KeyrackContext) -> int:
    """Forget a key on this host."""
    slug = resolve_slug(args.key, args.env, context.repo_manifest).slug
    effect = del_key_host(context, slug)
    print(f"{effect}: {slug}")
    return EXIT_OK if effect == 'deleted' else EXIT_FAILURE


def cmd_init(args, context: KeyrackContext) -> int:
    """Findsert the host manifest and, in a repo, the repo manifest."""
    result = init_keyrack(context, org=args.org)
    if args.json:
        print(json.dumps(result, indent=2))
        return EXIT_OK
    host = result['host']
    print(f"host manifest {host['effect']}: {host['manifestPath']}")
    repo = result['repo']
    if repo is not None:
        print(f"repo manifest {repo['effect']}: {repo['manifestPath']} (org {repo['org']})")
    return EXIT_OK


def cmd_daemon(args) -> int:
    """Run the session daemon in the foreground."""
    from keyrack.daemon.server import run_daemon

    environ = dict(os.environ)
    if args.session_id:
        environ[SESSION_ID_ENV_VAR] = args.session_id
    run_daemon(args.socket, SessionContext.current(environ), KeyrackConfig())
    return EXIT_OK


# =============================================================================
# ARGUMENT PARSER
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='keyrack',
        description='keyrack: session-scoped credential broker',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  keyrack unlock --env prod
  keyrack get --key DB_PASSWORD --env prod
  keyrack relock --env sudo
        """
    )
    parser.add_argument('--version', action='version', version=f"keyrack {__version__}")
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')

    sub = parser.add_subparsers(dest='command')

    # unlock
    unlock_p = sub.add_parser('unlock', help='Unlock keys into the session daemon')
    unlock_p.add_argument('--env', help='Target env (sudo for host-only keys)')
    unlock_p.add_argument('--key', help='Unlock only this key')
    unlock_p.add_argument('--duration', help='Grant lifetime, e.g. 30m or 9h')
    unlock_p.add_argument('--owner', '--for', dest='owner', help='Owner identity')

    # get
    get_p = sub.add_parser('get', help='Request a grant for one key')
    get_p.add_argument('--key', required=True, help='Key name or full slug')
    get_p.add_argument('--env', help='Env to disambiguate a bare key name')
    get_p.add_argument('--json', action='store_true', help='Print the attempt as JSON')
    get_p.add_argument('--owner', '--for', dest='owner', help='Owner identity')
    get_p.add_argument('--allow-unlock', action='store_true',
                       help='Unlock the vault if it is locked')

    # status
    status_p = sub.add_parser('status', help='List unlocked keys')
    status_p.add_argument('--json', action='store_true', help='Print as JSON')
    status_p.add_argument('--for', '--owner', dest='owner', help='Owner identity')

    # relock
    relock_p = sub.add_parser('relock', help='Drop grants from the daemon')
    relock_p.add_argument('--env', help='Relock only this env')
    relock_p.add_argument('--key', help='Relock only this key')
    relock_p.add_argument('--for', '--owner', dest='owner', help='Owner identity')

    # set
    set_p = sub.add_parser('set', help='Assign a key to a vault on this host')
    set_p.add_argument('--key', required=True, help='Key name')
    set_p.add_argument('--env', default=ENV_ALL, help='Env (default: all)')
    set_p.add_argument('--vault', required=True, help='Vault, e.g. os.secure')
    set_p.add_argument('--mech', default=DEFAULT_MECH, help='Grant mechanism')
    set_p.add_argument('--org', default=ORG_THIS, help='@this or @all')
    set_p.add_argument('--max-duration', dest='max_duration', help='Cap on unlock TTL')
    set_p.add_argument('--exid', help='External id within the vault')
    set_p.add_argument('--for', '--owner', dest='owner', help='Owner identity')

    # del
    del_p = sub.add_parser('del', help='Forget a key on this host')
    del_p.add_argument('--key', required=True, help='Key name or full slug')
    del_p.add_argument('--env', help='Env to disambiguate a bare key name')
    del_p.add_argument('--for', '--owner', dest='owner', help='Owner identity')

    # init
    init_p = sub.add_parser('init', help='Create the host manifest (and repo manifest)')
    init_p.add_argument('--org', help='Org for a new .agent/keyrack.yml')
    init_p.add_argument('--json', action='store_true', help='Print as JSON')
    init_p.add_argument('--for', '--owner', dest='owner', help='Owner identity')

    # daemon (internal)
    daemon_p = sub.add_parser('daemon', help='Run the session daemon (internal)')
    daemon_p.add_argument('--socket', required=True, help='Socket path')
    daemon_p.add_argument('--session-id', dest='session_id', help='Login session id')

    return parser


# =============================================================================
# MAIN
# =============================================================================

def main(argv: Optional[List[str]] = None,
         context_factory: ContextFactory = KeyrackContext.build) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='[%(asctime)s] %(levelname)s %(name)s: %(message)s')

    dispatch = {
        'unlock': cmd_unlock,
        'get': cmd_get,
        'status': cmd_status,
        'relock': cmd_relock,
        'set': cmd_set,
        'del': cmd_del,
        'init': cmd_init,
    }

    if not args.command:
        parser.print_help()
        return EXIT_FAILURE

    try:
        if args.command == 'daemon':
            return cmd_daemon(args)
        context = context_factory(owner=args.owner)
        return dispatch[args.command](args, context)
    except KeyrackError as e:
        logger.debug("%s failed", args.command, exc_info=True)
        _report_error(e)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        _err("interrupted")
        return EXIT_FAILURE


if __name__ == '__main__':
    sys.exit(main())
