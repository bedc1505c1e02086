"""
keyrack Ops — Host
===================
Per-host configuration and daemon housekeeping:

- set_key / set_key_host: assign a key to a vault (optionally storing it)
- del_key_host: forget a key on this host
- relock_keys: drop grants from the daemon
- status_keys: what the daemon currently holds

Import from: keyrack.ops.host
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from keyrack.core.constants import ENV_ALL, ORG_ALL, ORG_THIS
from keyrack.core.durations import parse_duration
from keyrack.core.grades import (
    assert_grade_protected, format_grade, infer_grade, unmet_grade_requirements,
)
from keyrack.core.manifest.slugs import slug_name
from keyrack.core.types import BadRequestError, ConfigurationError, KeyHost
from keyrack.ops.context import KeyrackContext

__all__ = ['set_key', 'set_key_host', 'del_key_host', 'relock_keys', 'status_keys']

logger = logging.getLogger("keyrack.ops.host")


# =============================================================================
# SET
# =============================================================================

def _resolve_org(context: KeyrackContext, org: str) -> str:
    if org not in (ORG_THIS, ORG_ALL):
        raise BadRequestError(
            "org must be @this or @all",
            fix="use @this for same-org credentials, @all for cross-org",
            details={'org': org},
        )
    if org == ORG_ALL:
        return ORG_ALL
    if context.repo_manifest is None:
        raise BadRequestError(
            "@this requires repo manifest to resolve org",
            fix="run from a repo with .agent/keyrack.yml or use --org @all",
        )
    return context.repo_manifest.org


def _target_slugs(context: KeyrackContext, key: str, env: str, org: str) -> List[str]:
    """Slugs a ``set`` touches. env=all expands to every env declaring ``key``."""
    repo = context.repo_manifest
    if repo is not None and key in repo.keys:
        return [key]
    if env == ENV_ALL and repo is not None:
        expanded = [s for s in repo.keys if slug_name(s) == key]
        if expanded:
            return expanded
    prefix = repo.org if repo is not None else org
    return [f"{prefix}.{env}.{key}"]


def set_key_host(context: KeyrackContext, *, slug: str, vault: str, mech: str,
                 env: str = ENV_ALL, org: str = ORG_THIS,
                 max_duration: Optional[str] = None, exid: Optional[str] = None,
                 secret: Optional[str] = None) -> KeyHost:
    """Assign ``slug`` to ``vault``/``mech`` on this host.

    Raises:
        BadRequestError: bad org or max duration.
        GradeDegradationError: the new assignment is weaker than the old one.
        ConfigurationError: no adapter for ``vault``.
    """
    resolved_org = _resolve_org(context, org)
    if max_duration is not None:
        parse_duration(max_duration)

    adapter = context.vaults.get(vault)
    if adapter is None:
        raise ConfigurationError(f"vault adapter not found: {vault}",
                                 details={'slug': slug, 'vault': vault})

    grade = infer_grade(vault, mech)
    prior = context.host_store.get(slug)
    if prior is not None:
        assert_grade_protected(infer_grade(prior.vault, prior.mech), grade)

    spec = context.repo_manifest.keys.get(slug) if context.repo_manifest else None
    unmet = unmet_grade_requirements(grade, spec.grade if spec else None)
    if unmet:
        raise BadRequestError(
            f"vault {vault} with mech {mech} ({format_grade(grade)}) does not "
            f"satisfy {slug}: {'; '.join(unmet)}",
            fix="choose a stricter vault or mech",
            details={'slug': slug, 'reasons': unmet},
        )

    if secret:
        if not adapter.is_unlocked(exid):
            adapter.unlock(None, exid)
        adapter.set(slug, secret, exid)

    host = KeyHost(
        slug=slug, vault=vault, mech=mech, env=env, org=resolved_org,
        exid=exid, max_duration=max_duration,
    )
    return context.host_store.upsert(host)


def set_key(context: KeyrackContext, *, key: str, vault: str, mech: str,
            env: str = ENV_ALL, org: str = ORG_THIS,
            max_duration: Optional[str] = None, exid: Optional[str] = None,
            secret: Optional[str] = None) -> List[KeyHost]:
    """CLI-level set: expand ``key`` into slugs, then set each one."""
    resolved_org = _resolve_org(context, org)
    results = []
    for slug in _target_slugs(context, key, env, resolved_org):
        slug_env = slug.split('.')[1]
        results.append(set_key_host(
            context, slug=slug, vault=vault, mech=mech, env=slug_env, org=org,
            max_duration=max_duration, exid=exid, secret=secret,
        ))
    return results


# =============================================================================
# DELETE / RELOCK / STATUS
# =============================================================================

def del_key_host(context: KeyrackContext, slug: str) -> str:
    """Remove ``slug`` from its vault, the daemon, and the host manifest.

    Returns ``"deleted"`` or ``"not_found"``; deleting twice is harmless.
    """
    host = context.host_store.get(slug)
    if host is None:
        return 'not_found'

    adapter = context.vaults.get(host.vault)
    if adapter is None:
        raise ConfigurationError(f"vault adapter not found: {host.vault}",
                                 details={'slug': slug, 'vault': host.vault})
    adapter.delete(slug, host.exid)
    context.daemon.relock(slugs=[slug])
    context.host_store.remove(slug)
    return 'deleted'


def relock_keys(context: KeyrackContext, slugs: Optional[List[str]] = None,
                env: Optional[str] = None) -> List[str]:
    """Drop grants from the daemon. Returns the slugs actually removed."""
    relocked = context.daemon.relock(slugs=slugs, env=env)
    if relocked is None:
        logger.info("Daemon not running; nothing to relock")
        return []

    for slug in relocked:
        host = context.host_store.get(slug)
        adapter = context.vaults.get(host.vault) if host else None
        if adapter is not None:
            adapter.relock(slug)
    return relocked


def status_keys(context: KeyrackContext) -> Optional[List[Dict[str, Any]]]:
    return context.daemon.status()
