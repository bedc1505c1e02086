"""
keyrack Core Types — Shared enums, dataclasses, and exceptions.

This module centralizes all type definitions used across the keyrack codebase.
All layers (Core, Daemon, Vaults, Ops, CLI) import types from here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union


# =============================================================================
# EXCEPTIONS
# =============================================================================

class KeyrackError(Exception):
    """Base exception for all keyrack errors.

    Carries an optional human-actionable ``fix`` hint and a ``details`` dict
    that the CLI and audit log render alongside the message.
    """

    def __init__(self, message: str, *, fix: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.fix = fix
        self.details = details or {}


class BadRequestError(KeyrackError):
    """Raised when caller input is invalid. Never retried."""
    pass


class AmbiguousSlugError(BadRequestError):
    """Raised when a bare key name matches more than one env."""
    pass


class CircularExtendsError(BadRequestError):
    """Raised when a manifest extends chain loops back on itself."""
    pass


class GradeDegradationError(BadRequestError):
    """Raised when a change would weaken a key's protection or duration."""
    pass


class ConfigurationError(KeyrackError):
    """Raised when the host manifest references a capability this build lacks."""
    pass


class InconsistentStateError(KeyrackError):
    """Raised when the host manifest and a vault disagree about a key."""
    pass


class SessionMismatchError(KeyrackError):
    """Raised when a daemon peer is outside the daemon owner's login session."""
    pass


class DaemonUnavailableError(KeyrackError):
    """Raised when the daemon cannot be reached or started."""
    pass


class ProtocolError(KeyrackError):
    """Raised when the daemon rejects a request or answers malformed data."""
    pass


# =============================================================================
# ENUMS (grading lattice)
# =============================================================================

_PROTECTION_RANK = {'reference': 0, 'encrypted': 1, 'plaintext': 2}
_DURATION_RANK = {'transient': 0, 'ephemeral': 1, 'permanent': 2}


class _RankedEnum(Enum):
    """Enum ordered by strictness. Lower rank = stricter."""

    @property
    def rank(self) -> int:
        raise NotImplementedError

    def __lt__(self, other):
        if not isinstance(other, self.__class__):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, self.__class__):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, self.__class__):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, self.__class__):
            return NotImplemented
        return self.rank >= other.rank


class Protection(_RankedEnum):
    """How a secret is protected at rest.

    Ordered: REFERENCE < ENCRYPTED < PLAINTEXT (lower is stricter).
    """
    REFERENCE = "reference"   # Vault holds a pointer, never the secret
    ENCRYPTED = "encrypted"   # Secret at rest only in encrypted form
    PLAINTEXT = "plaintext"   # Secret readable by anything running as the user

    @property
    def rank(self) -> int:
        return _PROTECTION_RANK[self.value]


class Duration(_RankedEnum):
    """How long a secret may live.

    Ordered: TRANSIENT < EPHEMERAL < PERMANENT (lower is stricter).
    """
    TRANSIENT = "transient"   # Dies with the daemon process
    EPHEMERAL = "ephemeral"   # Short-lived, issued per session
    PERMANENT = "permanent"   # Valid until rotated by hand

    @property
    def rank(self) -> int:
        return _DURATION_RANK[self.value]


# =============================================================================
# ENUMS (audit)
# =============================================================================

class AuditSeverity(Enum):
    """Severity levels for audit log entries."""
    INFO = "info"
    WARNING = "warning"
    HIGH = "high"
    CRITICAL = "critical"


# =============================================================================
# GRADES
# =============================================================================

@dataclass(frozen=True)
class Grade:
    """(protection, duration) pair describing how safely and how long a grant may exist."""
    protection: Protection
    duration: Duration

    def to_dict(self) -> dict:
        return {'protection': self.protection.value, 'duration': self.duration.value}

    @classmethod
    def from_dict(cls, d: dict) -> 'Grade':
        return cls(protection=Protection(d['protection']),
                   duration=Duration(d['duration']))


@dataclass(frozen=True)
class GradeRequirement:
    """Partial grade declared by a repo manifest. None means "no requirement"."""
    protection: Optional[Protection] = None
    duration: Optional[Duration] = None

    def to_dict(self) -> dict:
        return {
            'protection': self.protection.value if self.protection else None,
            'duration': self.duration.value if self.duration else None,
        }


@dataclass(frozen=True)
class GradeChange:
    """Result of comparing a source grade against a target grade."""
    degrades: bool
    reason: Optional[str] = None


# =============================================================================
# MANIFESTS
# =============================================================================

@dataclass(frozen=True)
class KeySpec:
    """A credential requirement declared by a repo manifest."""
    slug: str
    name: str
    env: str
    mech: str
    grade: Optional[GradeRequirement] = None


@dataclass
class RepoManifest:
    """Flattened, hydrated repo manifest.

    Every key's slug is prefixed by ``org`` and carries an env from
    ``envs`` or the synthetic ``all`` env.
    """
    org: str
    envs: List[str] = field(default_factory=list)
    keys: Dict[str, KeySpec] = field(default_factory=dict)
    extends: Optional[List[str]] = None


@dataclass
class KeyHost:
    """How this host satisfies one requirement."""
    slug: str
    vault: str
    mech: str
    env: str
    org: str
    exid: Optional[str] = None
    max_duration: Optional[str] = None
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    updated_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict:
        """Serialize to JSON-safe dictionary."""
        return {
            'slug': self.slug,
            'vault': self.vault,
            'mech': self.mech,
            'env': self.env,
            'org': self.org,
            'exid': self.exid,
            'maxDuration': self.max_duration,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> 'KeyHost':
        """Deserialize from dictionary."""
        now = datetime.now().isoformat()
        return cls(
            slug=d['slug'],
            vault=d['vault'],
            mech=d['mech'],
            env=d['env'],
            org=d['org'],
            exid=d.get('exid'),
            max_duration=d.get('maxDuration'),
            created_at=d.get('createdAt', now),
            updated_at=d.get('updatedAt', now),
        )


@dataclass
class HostManifest:
    """Per-machine record of vault assignments, keyed by slug."""
    owner: Optional[str] = None
    hosts: Dict[str, KeyHost] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'owner': self.owner,
            'hosts': {slug: host.to_dict() for slug, host in self.hosts.items()},
        }

    @classmethod
    def from_dict(cls, d: dict) -> 'HostManifest':
        return cls(
            owner=d.get('owner'),
            hosts={slug: KeyHost.from_dict(h) for slug, h in (d.get('hosts') or {}).items()},
        )


# =============================================================================
# GRANTS
# =============================================================================

@dataclass
class KeyGrant:
    """A live, unlocked credential. The only entity ever held in daemon memory.

    ``expires_at`` is epoch milliseconds; None means the grant never expires.
    """
    slug: str
    secret: str
    grade: Grade
    vault: str
    mech: str
    env: str
    org: str
    expires_at: Optional[int] = None

    def __repr__(self) -> str:
        # Keep secrets out of tracebacks and log lines
        return (f"KeyGrant(slug={self.slug!r}, vault={self.vault!r}, "
                f"env={self.env!r}, org={self.org!r}, expires_at={self.expires_at!r})")

    def to_dict(self) -> dict:
        """Serialize to the daemon wire shape."""
        return {
            'slug': self.slug,
            'key': {'secret': self.secret, 'grade': self.grade.to_dict()},
            'source': {'vault': self.vault, 'mech': self.mech},
            'env': self.env,
            'org': self.org,
            'expiresAt': self.expires_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> 'KeyGrant':
        """Deserialize from the daemon wire shape."""
        return cls(
            slug=d['slug'],
            secret=d['key']['secret'],
            grade=Grade.from_dict(d['key']['grade']),
            vault=d['source']['vault'],
            mech=d['source']['mech'],
            env=d['env'],
            org=d['org'],
            expires_at=d.get('expiresAt'),
        )


@dataclass(frozen=True)
class GrantAttemptGranted:
    grant: KeyGrant
    status = "granted"


@dataclass(frozen=True)
class GrantAttemptAbsent:
    slug: str
    message: str
    fix: Optional[str] = None
    status = "absent"


@dataclass(frozen=True)
class GrantAttemptLocked:
    slug: str
    message: str
    fix: Optional[str] = None
    status = "locked"


@dataclass(frozen=True)
class GrantAttemptBlocked:
    slug: str
    reasons: List[str]
    fix: Optional[str] = None
    status = "blocked"


GrantAttempt = Union[
    GrantAttemptGranted, GrantAttemptAbsent, GrantAttemptLocked, GrantAttemptBlocked,
]


@dataclass
class UnlockResult:
    """Outcome of one unlock batch."""
    unlocked: List[KeyGrant] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def slugs(self) -> List[str]:
        return [grant.slug for grant in self.unlocked]


__all__ = [
    # Exceptions
    'KeyrackError', 'BadRequestError', 'AmbiguousSlugError',
    'CircularExtendsError', 'GradeDegradationError', 'ConfigurationError',
    'InconsistentStateError', 'SessionMismatchError',
    'DaemonUnavailableError', 'ProtocolError',
    # Grading
    'AuditSeverity', 'Protection', 'Duration', 'Grade', 'GradeRequirement', 'GradeChange',
    # Manifests
    'KeySpec', 'RepoManifest', 'KeyHost', 'HostManifest',
    # Grants
    'KeyGrant', 'GrantAttempt', 'GrantAttemptGranted', 'GrantAttemptAbsent',
    'GrantAttemptLocked', 'GrantAttemptBlocked', 'UnlockResult',
]
