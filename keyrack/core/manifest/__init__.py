"""
Manifest Layer — Repo manifest resolution and host manifest storage.

Modules:
- loader: YAML manifest file -> ManifestExplicit
- hydrate: ManifestExplicit -> RepoManifest (extends, env.all, grade shorthand)
- slugs: slug resolution, target env rule, per-env slug sets
- host: HostManifestStore (per-owner JSON host assignments)
"""

from keyrack.core.manifest.loader import (
    ManifestExplicit, load_manifest_explicit, load_repo_manifest,
)
from keyrack.core.manifest.hydrate import (
    HydratedManifest, hydrate_repo_manifest, parse_grade_shorthand,
)
from keyrack.core.manifest.slugs import (
    ResolvedSlug, resolve_slug, resolve_target_env, slugs_for_env,
    split_slug,
)
from keyrack.core.manifest.host import HostManifestStore

__all__ = [
    'ManifestExplicit', 'load_manifest_explicit', 'load_repo_manifest',
    'HydratedManifest', 'hydrate_repo_manifest', 'parse_grade_shorthand',
    'ResolvedSlug', 'resolve_slug', 'resolve_target_env', 'slugs_for_env',
    'split_slug',
    'HostManifestStore',
]
