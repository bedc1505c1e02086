"""
keyrack Core Manifest — Loader
===============================
Reads a repo manifest YAML file into a ManifestExplicit without resolving
``extends``. This is the only place manifest files are read.

Expected document shape::

    org: acme
    extends:
      - .agent/keyrack.shared.yml
    env.all:
      - AWS_PROFILE
    env.prod:
      - DB_PASSWORD: encrypted
      - GITHUB_TOKEN: encrypted,ephemeral
    env.test: null

Import from: keyrack.core.manifest.loader
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from keyrack.core.types import BadRequestError, RepoManifest
from keyrack.core.version import REPO_MANIFEST_RELPATH

__all__ = ['ManifestExplicit', 'load_manifest_explicit', 'load_repo_manifest']

logger = logging.getLogger("keyrack.core.manifest.loader")

ENV_SECTION_PREFIX = "env."


@dataclass
class ManifestExplicit:
    """A manifest document as written, before extends resolution.

    ``env_sections`` maps section names (``env.prod``) to their raw entries,
    in document order.
    """
    org: str
    extends: List[str] = field(default_factory=list)
    env_sections: Dict[str, List[Any]] = field(default_factory=dict)


def _schema_error(path: Path, problem: str) -> BadRequestError:
    return BadRequestError(
        f"keyrack manifest has invalid schema: {problem}",
        fix=f"edit {path}",
        details={'path': str(path)},
    )


def parse_manifest_document(data: Any, path: Union[str, Path]) -> ManifestExplicit:
    """Validate a parsed YAML document and build a ManifestExplicit."""
    path = Path(path)
    if not isinstance(data, dict):
        raise _schema_error(path, "document must be a mapping")

    org = data.get('org')
    if not isinstance(org, str) or not org:
        raise _schema_error(path, "'org' must be a non-empty string")
    if '.' in org:
        raise _schema_error(path, "'org' must not contain '.'")

    extends = data.get('extends') or []
    if not isinstance(extends, list) or not all(isinstance(e, str) for e in extends):
        raise _schema_error(path, "'extends' must be a list of paths")

    env_sections: Dict[str, List[Any]] = {}
    for key, entries in data.items():
        if not isinstance(key, str) or not key.startswith(ENV_SECTION_PREFIX):
            continue
        if not key[len(ENV_SECTION_PREFIX):] or '.' in key[len(ENV_SECTION_PREFIX):]:
            raise _schema_error(path, f"invalid env section name '{key}'")
        # null means declared but empty
        if entries is None:
            env_sections[key] = []
        elif isinstance(entries, list):
            env_sections[key] = entries
        else:
            raise _schema_error(path, f"'{key}' must be a list")

    return ManifestExplicit(org=org, extends=list(extends), env_sections=env_sections)


def load_manifest_explicit(path: Union[str, Path]) -> Optional[ManifestExplicit]:
    """Load a manifest file. Returns None when the file does not exist."""
    path = Path(path)
    if not path.exists():
        return None

    content = path.read_text(encoding='utf-8')
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise BadRequestError(
            "keyrack manifest has invalid yaml",
            fix=f"edit {path}",
            details={'path': str(path), 'cause': str(e)},
        ) from e

    logger.debug("Loaded keyrack manifest %s", path)
    return parse_manifest_document(data, path)


def load_repo_manifest(repo_root: Union[str, Path]) -> Optional[RepoManifest]:
    """Load and hydrate ``<repo_root>/.agent/keyrack.yml``, or None if absent."""
    # Imported here to keep loader <-> hydrate free of an import cycle
    from keyrack.core.manifest.hydrate import hydrate_repo_manifest

    repo_root = Path(repo_root)
    manifest_path = repo_root / REPO_MANIFEST_RELPATH
    explicit = load_manifest_explicit(manifest_path)
    if explicit is None:
        return None
    return hydrate_repo_manifest(
        explicit, manifest_path=manifest_path, repo_root=repo_root,
    ).manifest
