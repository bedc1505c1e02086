"""
keyrack Core Manifest — Slug Resolution
========================================
Slugs are ``org.env.NAME``. Callers may pass a full slug or a bare key name;
this module turns either into a canonical slug, and picks the target env
for bulk operations.

Import from: keyrack.core.manifest.slugs
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

from keyrack.core.constants import ENV_ALL
from keyrack.core.types import AmbiguousSlugError, BadRequestError, RepoManifest

__all__ = [
    'ResolvedSlug', 'split_slug', 'slug_name', 'resolve_slug',
    'resolve_target_env', 'slugs_for_env',
]


@dataclass(frozen=True)
class ResolvedSlug:
    slug: str
    env: Optional[str] = None


def split_slug(slug: str) -> Tuple[str, str, str]:
    """Split ``org.env.NAME`` into its parts. NAME may itself contain dots."""
    parts = slug.split('.')
    if len(parts) < 3:
        raise BadRequestError(
            f"invalid key slug '{slug}'",
            fix="use the form org.env.KEY_NAME",
        )
    return parts[0], parts[1], '.'.join(parts[2:])


def slug_name(slug: str) -> str:
    """Bare key name of a slug; a bare name is returned unchanged."""
    parts = slug.split('.')
    return '.'.join(parts[2:]) if len(parts) >= 3 else slug


def _is_full_slug(key: str, manifest: RepoManifest) -> bool:
    if key in manifest.keys:
        return True
    parts = key.split('.')
    return len(parts) >= 3 and parts[0] == manifest.org


def _envs_declaring(name: str, manifest: RepoManifest) -> List[str]:
    envs: List[str] = []
    for slug, spec in manifest.keys.items():
        if slug_name(slug) == name and spec.env not in envs:
            envs.append(spec.env)
    return envs


def resolve_slug(key: str, env: Optional[str] = None,
                 manifest: Optional[RepoManifest] = None) -> ResolvedSlug:
    """Resolve a full slug or bare key name to a canonical slug.

    - No manifest, or already a full slug: returned unchanged.
    - Bare name with env: ``org.env.NAME``.
    - Bare name under exactly one env: that env is inferred.
    - Bare name under several envs: AmbiguousSlugError.
    - Bare name nowhere: returned unchanged so the consumer reports it.
    """
    if manifest is None or _is_full_slug(key, manifest):
        return ResolvedSlug(slug=key, env=env)

    if env:
        return ResolvedSlug(slug=f"{manifest.org}.{env}.{key}", env=env)

    envs = _envs_declaring(key, manifest)
    if not envs:
        return ResolvedSlug(slug=key, env=None)
    if len(envs) == 1:
        return ResolvedSlug(slug=f"{manifest.org}.{envs[0]}.{key}", env=envs[0])

    raise AmbiguousSlugError(
        f"key '{key}' found in multiple envs: {', '.join(envs)}. "
        f"specify --env to disambiguate.",
        fix=f"pass --env <{'|'.join(envs)}>",
        details={'key': key, 'envs': envs},
    )


def resolve_target_env(manifest: RepoManifest, env: Optional[str] = None) -> str:
    """Pick the env a bulk operation targets.

    An explicit env must be declared (or be ``all``). Without one, a manifest
    that declares envs requires the caller to choose; otherwise ``all`` is used.
    """
    if env:
        if env != ENV_ALL and env not in manifest.envs:
            declared = ', '.join(manifest.envs) or '(none)'
            raise BadRequestError(
                f"env '{env}' is not declared in the keyrack manifest "
                f"(declared: {declared})",
                fix=f"declare env.{env} in the manifest, or pass one of: "
                    f"{', '.join(manifest.envs + [ENV_ALL])}",
            )
        return env

    if manifest.envs:
        raise BadRequestError(
            f"--env is required: manifest declares envs: {', '.join(manifest.envs)}",
            fix=f"pass --env <{'|'.join(manifest.envs)}>",
        )
    return ENV_ALL


def slugs_for_env(manifest: RepoManifest, env: str) -> List[str]:
    """Slugs the manifest requires for ``env``, in declaration order."""
    return [slug for slug, spec in manifest.keys.items() if spec.env == env]
