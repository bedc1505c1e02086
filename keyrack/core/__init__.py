"""
keyrack Core — Grading, Manifests, Sessions

Everything the daemon, the vaults, and the orchestrator share. No module in
this layer talks to the daemon or to a vault.

Submodules:
- version    : Version constants (single source of truth)
- types      : Shared enums, dataclasses, exceptions
- config     : KeyrackConfig
- constants  : Vault, mech, env, and socket constants
- durations  : Duration string parsing
- grades     : Grading lattice
- mechanisms : Mechanism firewall
- session    : SessionContext, socket paths, peer verification
- manifest/  : Repo manifest loading/hydration, slug resolution, host manifest
- audit/     : Tamper-evident audit log, secret redaction

Quick imports:
    from keyrack.core import infer_grade, resolve_slug, SessionContext
    from keyrack.core.version import __version__
"""

from keyrack.core.version import __version__, PROTOCOL_VERSION

from keyrack.core.types import (
    # Exceptions
    KeyrackError,
    BadRequestError,
    AmbiguousSlugError,
    CircularExtendsError,
    GradeDegradationError,
    ConfigurationError,
    InconsistentStateError,
    SessionMismatchError,
    DaemonUnavailableError,
    ProtocolError,
    # Enums
    AuditSeverity,
    Protection,
    Duration,
    # Dataclasses
    Grade,
    GradeRequirement,
    GradeChange,
    KeySpec,
    RepoManifest,
    KeyHost,
    HostManifest,
    KeyGrant,
    GrantAttempt,
    GrantAttemptGranted,
    GrantAttemptAbsent,
    GrantAttemptLocked,
    GrantAttemptBlocked,
    UnlockResult,
)

from keyrack.core.config import KeyrackConfig
from keyrack.core.durations import parse_duration
from keyrack.core.grades import (
    infer_grade, unrecognized_grade_inputs,
    detect_grade_change, assert_grade_protected, unmet_grade_requirements,
)
from keyrack.core.session import SessionContext, socket_path_for
from keyrack.core.manifest import (
    resolve_slug, resolve_target_env, slugs_for_env,
    hydrate_repo_manifest, load_repo_manifest,
)

__all__ = [
    '__version__', 'PROTOCOL_VERSION',
    'KeyrackError', 'BadRequestError', 'AmbiguousSlugError',
    'CircularExtendsError', 'GradeDegradationError', 'ConfigurationError',
    'InconsistentStateError', 'SessionMismatchError',
    'DaemonUnavailableError', 'ProtocolError',
    'AuditSeverity', 'Protection', 'Duration',
    'Grade', 'GradeRequirement', 'GradeChange', 'KeySpec', 'RepoManifest',
    'KeyHost', 'HostManifest', 'KeyGrant', 'GrantAttempt',
    'GrantAttemptGranted', 'GrantAttemptAbsent', 'GrantAttemptLocked',
    'GrantAttemptBlocked', 'UnlockResult',
    'KeyrackConfig', 'parse_duration',
    'infer_grade', 'unrecognized_grade_inputs', 'detect_grade_change',
    'assert_grade_protected', 'unmet_grade_requirements',
    'SessionContext', 'socket_path_for',
    'resolve_slug', 'resolve_target_env', 'slugs_for_env',
    'hydrate_repo_manifest', 'load_repo_manifest',
]
