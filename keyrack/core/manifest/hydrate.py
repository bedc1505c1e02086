"""
keyrack Core Manifest — Hydration
==================================
Turns a ManifestExplicit into a flat RepoManifest:

1. Each ``extends`` entry is loaded, hydrated recursively, and merged in
   order. Later entries override earlier ones on slug collision.
2. The manifest's own keys are merged last, so the root always wins.
3. ``env.all`` entries become ``org.all.NAME`` and are also expanded into
   every declared env of the same level, unless that env redeclares NAME.
4. Grade shorthand (``encrypted``, ``ephemeral``, ``encrypted,ephemeral``)
   is parsed into a GradeRequirement.

All file access goes through the ``loader`` collaborator.

Import from: keyrack.core.manifest.hydrate
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from keyrack.core.constants import DEFAULT_MECH, ENV_ALL
from keyrack.core.manifest.loader import (
    ENV_SECTION_PREFIX, ManifestExplicit, load_manifest_explicit,
)
from keyrack.core.types import (
    BadRequestError, CircularExtendsError, Duration, GradeRequirement,
    KeySpec, Protection, RepoManifest,
)

__all__ = ['HydratedManifest', 'hydrate_repo_manifest', 'parse_grade_shorthand']

logger = logging.getLogger("keyrack.core.manifest.hydrate")

ManifestLoader = Callable[[Union[str, Path]], Optional[ManifestExplicit]]

ENV_ALL_SECTION = ENV_SECTION_PREFIX + ENV_ALL

_PROTECTION_VALUES = {p.value for p in Protection}
_DURATION_VALUES = {d.value for d in Duration}


@dataclass
class HydratedManifest:
    """Hydration output: the flattened manifest plus the extends chain walked."""
    manifest: RepoManifest
    extends_chain: List[str] = field(default_factory=list)


# =============================================================================
# ENTRY PARSING
# =============================================================================

def parse_grade_shorthand(shorthand: Any) -> Optional[GradeRequirement]:
    """Parse ``"encrypted,ephemeral"`` style shorthand. Empty -> None."""
    if shorthand is None or shorthand == "":
        return None
    if not isinstance(shorthand, str):
        raise BadRequestError(f"grade shorthand must be a string, got {shorthand!r}")

    protection = None
    duration = None
    for token in (t.strip() for t in shorthand.split(',')):
        if not token:
            continue
        if token in _PROTECTION_VALUES:
            protection = Protection(token)
        elif token in _DURATION_VALUES:
            duration = Duration(token)
        else:
            raise BadRequestError(
                f"unknown grade shorthand '{token}'",
                fix="use a protection (reference, encrypted, plaintext) and/or "
                    "a duration (transient, ephemeral, permanent), comma separated",
            )
    if protection is None and duration is None:
        return None
    return GradeRequirement(protection=protection, duration=duration)


def _parse_entry(entry: Any) -> Tuple[str, Optional[GradeRequirement]]:
    if isinstance(entry, str):
        if not entry:
            raise BadRequestError("empty key entry in keyrack manifest")
        return entry, None
    if isinstance(entry, dict):
        if len(entry) != 1:
            raise BadRequestError(
                "key entry must map exactly one key name to its grade",
                details={'entry': list(entry)},
            )
        name, shorthand = next(iter(entry.items()))
        if not isinstance(name, str) or not name:
            raise BadRequestError("empty key entry in keyrack manifest")
        return name, parse_grade_shorthand(shorthand)
    raise BadRequestError("invalid key entry in keyrack manifest",
                          details={'entry': repr(entry)})


def _declared_envs(explicit: ManifestExplicit) -> List[str]:
    return [section[len(ENV_SECTION_PREFIX):] for section in explicit.env_sections
            if section != ENV_ALL_SECTION]


def _spec(org: str, env: str, name: str, grade: Optional[GradeRequirement]) -> KeySpec:
    return KeySpec(slug=f"{org}.{env}.{name}", name=name, env=env,
                   mech=DEFAULT_MECH, grade=grade)


def extract_level_keys(explicit: ManifestExplicit) -> Dict[str, KeySpec]:
    """Keys declared by one manifest level, with env.all expansion applied."""
    org = explicit.org
    keys: Dict[str, KeySpec] = {}

    all_entries = [_parse_entry(e) for e in explicit.env_sections.get(ENV_ALL_SECTION, [])]
    for name, grade in all_entries:
        spec = _spec(org, ENV_ALL, name, grade)
        keys[spec.slug] = spec

    for env in _declared_envs(explicit):
        for name, grade in all_entries:
            spec = _spec(org, env, name, grade)
            keys[spec.slug] = spec
        # env-specific entries beat the env.all expansion
        for entry in explicit.env_sections.get(ENV_SECTION_PREFIX + env, []):
            name, grade = _parse_entry(entry)
            spec = _spec(org, env, name, grade)
            keys[spec.slug] = spec

    return keys


def _rebase(keys: Dict[str, KeySpec], org: str) -> Dict[str, KeySpec]:
    """Re-slug inherited keys under the inheriting manifest's org."""
    rebased: Dict[str, KeySpec] = {}
    for spec in keys.values():
        slug = f"{org}.{spec.env}.{spec.name}"
        rebased[slug] = dataclasses.replace(spec, slug=slug)
    return rebased


# =============================================================================
# HYDRATION
# =============================================================================

def _normalize(path: Union[str, Path]) -> str:
    return os.path.normpath(os.path.abspath(str(path)))


def hydrate_repo_manifest(explicit: ManifestExplicit, *,
                          manifest_path: Union[str, Path],
                          repo_root: Union[str, Path],
                          loader: ManifestLoader = load_manifest_explicit,
                          _ancestors: Optional[List[str]] = None) -> HydratedManifest:
    """Hydrate ``explicit`` into a flat RepoManifest, following ``extends``.

    Args:
        explicit: The manifest as loaded.
        manifest_path: Where ``explicit`` was loaded from (used for cycle detection).
        repo_root: Base directory ``extends`` paths are resolved against.
        loader: Loads an extended manifest; returns None when absent.

    Raises:
        CircularExtendsError: if the extends graph loops back to an ancestor.
        BadRequestError: if an extended manifest is missing or malformed.
    """
    current = _normalize(manifest_path)
    ancestors = list(_ancestors or [])
    if current in ancestors:
        chain = ancestors[ancestors.index(current):] + [current]
        raise CircularExtendsError(
            "circular extends detected in keyrack chain: " + " -> ".join(chain),
            fix="remove one of the extends entries that forms the cycle",
            details={'chain': chain},
        )
    ancestors.append(current)

    merged: Dict[str, KeySpec] = {}
    inherited_envs: List[str] = []
    extends_chain: List[str] = []

    for entry in explicit.extends:
        extended_path = _normalize(Path(repo_root) / entry)
        extended_explicit = loader(extended_path)
        if extended_explicit is None:
            raise BadRequestError(
                f"extended keyrack not found: {entry}",
                fix=f"create {extended_path} or remove it from extends",
                details={'path': entry, 'absolute_path': extended_path, 'from': current},
            )
        extended = hydrate_repo_manifest(
            extended_explicit,
            manifest_path=extended_path,
            repo_root=repo_root,
            loader=loader,
            _ancestors=ancestors,
        )
        # last extends entry wins on collision
        merged.update(_rebase(extended.manifest.keys, explicit.org))
        inherited_envs.extend(extended.manifest.envs)
        extends_chain.append(entry)
        extends_chain.extend(extended.extends_chain)

    # root wins over everything it extends
    merged.update(extract_level_keys(explicit))

    envs = _declared_envs(explicit)
    for env in inherited_envs:
        if env not in envs:
            envs.append(env)

    logger.debug("Hydrated keyrack manifest %s: %d keys, %d extends",
                 current, len(merged), len(extends_chain))

    manifest = RepoManifest(
        org=explicit.org,
        envs=envs,
        keys=merged,
        extends=extends_chain or None,
    )
    return HydratedManifest(manifest=manifest, extends_chain=extends_chain)
