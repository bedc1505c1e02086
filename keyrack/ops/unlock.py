"""
keyrack Ops — Unlock
=====================
Pulls secrets out of vaults and pushes them into the daemon as grants.

1. Pick the slugs: sudo keys come from the host manifest only and need an
   explicit key; everything else comes from the repo manifest for the
   target env, optionally narrowed to one key.
2. Make sure a daemon is running for (session, owner).
3. For each slug the host has assigned to a vault: unlock the vault if
   needed, read the secret, grade it, and cap its TTL at maxDuration.
4. Send all grants in one UNLOCK batch.

Any configuration error aborts the whole batch; a partial credential set is
never sent.

Import from: keyrack.ops.unlock
"""

from __future__ import annotations

import logging
from typing import List, Optional

from keyrack.core.constants import ENV_SUDO
from keyrack.core.durations import parse_duration
from keyrack.core.grades import infer_grade, unrecognized_grade_inputs
from keyrack.core.manifest.slugs import (
    resolve_target_env, slug_name, slugs_for_env,
)
from keyrack.core.types import (
    BadRequestError, ConfigurationError, HostManifest, InconsistentStateError,
    KeyGrant, RepoManifest, UnlockResult,
)
from keyrack.daemon.store import now_ms
from keyrack.ops.context import KeyrackContext

__all__ = ['unlock_keys', 'sudo_slugs', 'repo_slugs']

logger = logging.getLogger("keyrack.ops.unlock")


# =============================================================================
# SLUG SELECTION
# =============================================================================

def sudo_slugs(host_manifest: HostManifest, key: Optional[str]) -> List[str]:
    """Host-manifest slugs in the sudo env matching ``key`` (full slug or bare name)."""
    if not key:
        raise BadRequestError(
            "sudo credentials require --key flag",
            fix="run: keyrack unlock --env sudo --key <KEY>",
        )

    is_full_slug = '.' in key and key in host_manifest.hosts
    matched = []
    for slug in host_manifest.hosts:
        parts = slug.split('.')
        if len(parts) < 3 or parts[1] != ENV_SUDO:
            continue
        if (slug == key) if is_full_slug else (slug_name(slug) == key):
            matched.append(slug)

    if not matched:
        raise BadRequestError(
            f"sudo key not found: {key}",
            fix=f"run: keyrack set --key {key} --env sudo --vault <vault> --mech <mech>",
        )
    return matched


def repo_slugs(repo_manifest: RepoManifest, env: Optional[str],
               key: Optional[str]) -> List[str]:
    """Repo-manifest slugs for the target env, narrowed to ``key`` if given."""
    target_env = resolve_target_env(repo_manifest, env)
    slugs = slugs_for_env(repo_manifest, target_env)
    if key:
        slugs = [s for s in slugs if s == key or s.endswith(f".{key}")]
    return slugs


# =============================================================================
# UNLOCK
# =============================================================================

def unlock_keys(context: KeyrackContext, *, env: Optional[str] = None,
                key: Optional[str] = None, duration: Optional[str] = None,
                passphrase: Optional[str] = None) -> UnlockResult:
    """Unlock the selected keys into the daemon for ``context.owner``.

    Raises:
        BadRequestError: bad duration, sudo without key, unknown sudo key,
            missing repo manifest, or env not resolvable.
        ConfigurationError: the host assigns a vault this build lacks.
        InconsistentStateError: the host assigns a key its vault does not hold.
        DaemonUnavailableError: no daemon could be reached or started.
    """
    is_sudo = env == ENV_SUDO
    default = context.config.sudo_duration if is_sudo else context.config.default_duration
    requested_ms = parse_duration(duration or default)

    host_manifest = context.host_store.manifest
    repo_manifest = None
    if is_sudo:
        slugs = sudo_slugs(host_manifest, key)
    else:
        repo_manifest = context.require_repo_manifest()
        slugs = repo_slugs(repo_manifest, env, key)

    context.daemon.ensure_running(context.session)

    result = UnlockResult()
    for slug in slugs:
        host = host_manifest.hosts.get(slug)
        if host is None:
            logger.debug("Skipping %s: not configured on this host", slug)
            continue
        if repo_manifest is not None and slug not in repo_manifest.keys:
            continue

        adapter = context.vaults.get(host.vault)
        if adapter is None:
            raise ConfigurationError(
                f"vault adapter not found: {host.vault}",
                fix=f"re-run: keyrack set --key {slug_name(slug)} --env {host.env} "
                    f"--vault <supported vault>",
                details={'slug': slug, 'vault': host.vault},
            )

        if not adapter.is_unlocked(host.exid):
            adapter.unlock(passphrase, host.exid)

        secret = adapter.get(slug, host.exid)
        if secret is None:
            raise InconsistentStateError(
                "vault file absent for key that exists in manifest",
                fix=f"re-run: keyrack set --key {slug_name(slug)} --env {host.env} "
                    f"--vault {host.vault}",
                details={'slug': slug, 'vault': host.vault, 'env': host.env},
            )

        grade = infer_grade(host.vault, host.mech)
        for smell in unrecognized_grade_inputs(host.vault, host.mech):
            logger.warning("Grade fallback for %s: %s", slug, smell)

        ttl_ms = requested_ms
        if host.max_duration:
            cap_ms = parse_duration(host.max_duration)
            if requested_ms > cap_ms:
                ttl_ms = cap_ms
                warning = f"duration capped to {host.max_duration} for key {slug} (maxDuration limit)"
                logger.warning(warning)
                result.warnings.append(warning)

        slug_org, slug_env = slug.split('.')[:2]
        result.unlocked.append(KeyGrant(
            slug=slug,
            secret=secret,
            grade=grade,
            vault=host.vault,
            mech=host.mech,
            env=host.env or slug_env,
            org=host.org or slug_org,
            expires_at=now_ms(context.clock) + ttl_ms,
        ))

    if result.unlocked:
        context.daemon.unlock(result.unlocked)
    logger.info("Unlocked %d keys (env=%s)", len(result.unlocked), env or 'auto')
    return result
