"""
keyrack Ops — Init
===================
First-run setup. Findserts the owner's host manifest and, inside a git repo,
the repo manifest ``.agent/keyrack.yml``. Both halves are idempotent: an
existing file is reported as ``found`` and left untouched.

Import from: keyrack.ops.init
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import yaml

from keyrack.core.manifest.loader import load_manifest_explicit, parse_manifest_document
from keyrack.core.types import BadRequestError
from keyrack.core.version import REPO_MANIFEST_RELPATH
from keyrack.ops.context import KeyrackContext

__all__ = ['init_keyrack']

logger = logging.getLogger("keyrack.ops.init")


def _init_repo_manifest(context: KeyrackContext, org: Optional[str]) -> Optional[Dict[str, Any]]:
    if context.repo_root is None:
        if org is not None:
            raise BadRequestError(
                "--org requires a git repo to write the repo manifest into",
                fix="run keyrack init from inside the repo",
            )
        return None

    path = context.repo_root / REPO_MANIFEST_RELPATH
    explicit = load_manifest_explicit(path)
    if explicit is not None:
        if org is not None and org != explicit.org:
            raise BadRequestError(
                f"repo manifest already declares org '{explicit.org}'",
                fix=f"edit {path} to change the org",
                details={'path': str(path), 'org': org},
            )
        return {'manifestPath': str(path), 'org': explicit.org, 'effect': 'found'}

    if org is None:
        return None

    document = {'org': org}
    parse_manifest_document(document, path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(document, default_flow_style=False, sort_keys=False),
                    encoding='utf-8')
    logger.info("Created repo manifest %s for org %s", path, org)
    return {'manifestPath': str(path), 'org': org, 'effect': 'created'}


def init_keyrack(context: KeyrackContext, org: Optional[str] = None) -> Dict[str, Any]:
    """Findsert the host manifest, and the repo manifest when in a repo.

    The repo half is skipped (``repo: None``) outside a git repo, or when no
    manifest exists yet and no ``org`` was given.
    """
    # Repo half first; a rejected org leaves the host manifest untouched
    repo = _init_repo_manifest(context, org)
    host_effect = context.host_store.initialize()
    return {
        'host': {
            'owner': context.owner,
            'manifestPath': str(context.host_store.path),
            'effect': host_effect,
        },
        'repo': repo,
    }
