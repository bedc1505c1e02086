"""
keyrack Ops — Grant
====================
Produces a GrantAttempt for one key. Sources are tried in order:

1. os.envvar   (passthrough for CI and explicit shell exports)
2. the daemon  (anything unlocked earlier in this login session)
3. the host vault assigned by the host manifest

"Not configured", "vault locked", and "firewall said no" are ordinary
outcomes returned as absent/locked/blocked, never raised.

Import from: keyrack.ops.grant
"""

from __future__ import annotations

import logging
from typing import List, Optional

from keyrack.core.constants import VAULT_OS_ENVVAR
from keyrack.core.grades import (
    infer_grade, unmet_grade_requirements, unrecognized_grade_inputs,
)
from keyrack.core.manifest.slugs import resolve_slug, split_slug
from keyrack.core.types import (
    ConfigurationError, GrantAttempt, GrantAttemptAbsent, GrantAttemptBlocked,
    GrantAttemptGranted, GrantAttemptLocked, KeyGrant,
)
from keyrack.ops.context import KeyrackContext

__all__ = ['get_key_grant', 'get_key_grants']

logger = logging.getLogger("keyrack.ops.grant")


def get_key_grant(context: KeyrackContext, key: str, *, env: Optional[str] = None,
                  allow_unlock: bool = False,
                  passphrase: Optional[str] = None) -> GrantAttempt:
    """Try to grant ``key`` (full slug or bare name).

    Raises:
        AmbiguousSlugError: bare name declared under several envs.
        ConfigurationError: mech or vault named by config is unsupported.
    """
    repo = context.repo_manifest
    slug = resolve_slug(key, env, repo).slug
    spec = repo.keys.get(slug) if repo else None
    host = context.host_store.get(slug)

    if spec is None and host is None:
        parts = slug.split('.')
        name = parts[-1]
        return GrantAttemptAbsent(
            slug=slug,
            message=f"key '{slug}' not found in repo manifest",
            fix=(f"add '{name}' to env.{parts[1]} in .agent/keyrack.yml"
                 if len(parts) >= 3 else f"add '{name}' to .agent/keyrack.yml"),
        )

    org, slug_env, name = split_slug(slug)
    mech = spec.mech if spec else host.mech
    mech_adapter = context.mechanisms.get(mech)
    if mech_adapter is None:
        raise ConfigurationError(f"mechanism adapter not found: {mech}",
                                 details={'slug': slug, 'mech': mech})

    # 1. process environment
    envvar = context.vaults.get(VAULT_OS_ENVVAR)
    env_value = envvar.get(slug) if envvar else None
    if env_value is not None:
        reasons = mech_adapter.validate(env_value)
        if reasons:
            return GrantAttemptBlocked(
                slug=slug, reasons=reasons,
                fix="update the env var to a short-lived or properly formatted value",
            )
        return GrantAttemptGranted(grant=KeyGrant(
            slug=slug, secret=env_value,
            grade=infer_grade(VAULT_OS_ENVVAR, mech),
            vault=VAULT_OS_ENVVAR, mech=mech, env=slug_env, org=org,
        ))

    # 2. daemon session cache
    cached = context.daemon.get([slug], org=org, env=slug_env) or []
    for grant in cached:
        if grant.slug == slug:
            return GrantAttemptGranted(grant=grant)

    # 3. host vault
    if host is None:
        return GrantAttemptAbsent(
            slug=slug,
            message=f"key '{slug}' not configured on this host",
            fix=f"run: keyrack set --key {name} --env {slug_env} --mech {mech} --vault <vault>",
        )

    adapter = context.vaults.get(host.vault)
    if adapter is None:
        raise ConfigurationError(f"vault adapter not found: {host.vault}",
                                 details={'slug': slug, 'vault': host.vault})

    if not adapter.is_unlocked(host.exid):
        if not allow_unlock:
            return GrantAttemptLocked(
                slug=slug,
                message=f"vault '{host.vault}' is locked",
                fix=f"run: keyrack unlock --env {slug_env} --key {name}",
            )
        adapter.unlock(passphrase, host.exid)

    value = adapter.get(slug, host.exid)
    if value is None:
        return GrantAttemptAbsent(
            slug=slug,
            message=f"credential not found in vault '{host.vault}'",
            fix=f"store it via: keyrack set --key {name} --env {slug_env} "
                f"--mech {host.mech} --vault {host.vault}",
        )

    grade = infer_grade(host.vault, host.mech)
    for smell in unrecognized_grade_inputs(host.vault, host.mech):
        logger.warning("Grade fallback for %s: %s", slug, smell)

    reasons = unmet_grade_requirements(grade, spec.grade if spec else None)
    reasons += mech_adapter.validate(value)
    if reasons:
        return GrantAttemptBlocked(
            slug=slug, reasons=reasons,
            fix="store a credential whose vault and mech satisfy the manifest",
        )

    return GrantAttemptGranted(grant=KeyGrant(
        slug=slug, secret=value, grade=grade,
        vault=host.vault, mech=host.mech,
        env=host.env or slug_env, org=host.org or org,
    ))


def get_key_grants(context: KeyrackContext, keys: List[str], *,
                   env: Optional[str] = None,
                   allow_unlock: bool = False) -> List[GrantAttempt]:
    return [get_key_grant(context, key, env=env, allow_unlock=allow_unlock) for key in keys]
