"""
keyrack Core — Grading Lattice
===============================
Maps (vault, mech) to a Grade and guards against silent degradation:

- infer_grade: protection from the vault, duration from the mech
- detect_grade_change / assert_grade_protected: compare two grades
- unmet_grade_requirements: check an actual grade against a manifest's shorthand

Pure functions. No state, no I/O.

Import from: keyrack.core.grades
"""

from __future__ import annotations

from typing import Dict, List, Optional

from keyrack.core.constants import (
    VAULT_OS_ENVVAR, VAULT_OS_DIRECT, VAULT_OS_SECURE, VAULT_OS_DAEMON,
    VAULT_1PASSWORD, VAULT_AWS_IAM_SSO,
    MECH_PERMANENT_VIA_REPLICA, MECH_EPHEMERAL_VIA_GITHUB_APP,
    MECH_EPHEMERAL_VIA_AWS_SSO, MECH_EPHEMERAL_VIA_GITHUB_OIDC,
    MECH_REPLICA, MECH_GITHUB_APP, MECH_AWS_SSO,
)
from keyrack.core.types import (
    Duration, Grade, GradeChange, GradeDegradationError, GradeRequirement,
    Protection,
)

__all__ = [
    'VAULT_PROTECTION', 'MECH_DURATION', 'DAEMON_MEMORY_VAULTS',
    'infer_grade', 'unrecognized_grade_inputs',
    'detect_grade_change', 'assert_grade_protected',
    'unmet_grade_requirements', 'format_grade',
]


# =============================================================================
# LATTICE TABLES
# =============================================================================

VAULT_PROTECTION: Dict[str, Protection] = {
    VAULT_OS_ENVVAR: Protection.PLAINTEXT,
    VAULT_OS_DIRECT: Protection.PLAINTEXT,
    VAULT_OS_SECURE: Protection.ENCRYPTED,
    VAULT_OS_DAEMON: Protection.ENCRYPTED,
    VAULT_1PASSWORD: Protection.ENCRYPTED,
    VAULT_AWS_IAM_SSO: Protection.REFERENCE,
}

MECH_DURATION: Dict[str, Duration] = {
    MECH_PERMANENT_VIA_REPLICA: Duration.PERMANENT,
    MECH_EPHEMERAL_VIA_GITHUB_APP: Duration.EPHEMERAL,
    MECH_EPHEMERAL_VIA_AWS_SSO: Duration.EPHEMERAL,
    MECH_EPHEMERAL_VIA_GITHUB_OIDC: Duration.EPHEMERAL,
    MECH_REPLICA: Duration.PERMANENT,
    MECH_GITHUB_APP: Duration.EPHEMERAL,
    MECH_AWS_SSO: Duration.EPHEMERAL,
}

# Vaults whose values live only in daemon memory; they cannot outlive it
DAEMON_MEMORY_VAULTS = frozenset({VAULT_OS_DAEMON})

_FALLBACK_PROTECTION = Protection.PLAINTEXT
_FALLBACK_DURATION = Duration.PERMANENT


# =============================================================================
# INFERENCE
# =============================================================================

def infer_grade(vault: str, mech: str) -> Grade:
    """Infer the grade a key gets from its vault and mechanism.

    Unknown inputs fall back to plaintext/permanent. Callers should check
    unrecognized_grade_inputs() and log what it returns.
    """
    protection = VAULT_PROTECTION.get(vault, _FALLBACK_PROTECTION)
    if vault in DAEMON_MEMORY_VAULTS:
        duration = Duration.TRANSIENT
    else:
        duration = MECH_DURATION.get(mech, _FALLBACK_DURATION)
    return Grade(protection=protection, duration=duration)


def unrecognized_grade_inputs(vault: str, mech: str) -> List[str]:
    """Describe any inputs infer_grade had to guess for."""
    smells = []
    if vault not in VAULT_PROTECTION:
        smells.append(f"unrecognized vault '{vault}'; assumed "
                      f"{_FALLBACK_PROTECTION.value} protection")
    if vault not in DAEMON_MEMORY_VAULTS and mech not in MECH_DURATION:
        smells.append(f"unrecognized mech '{mech}'; assumed "
                      f"{_FALLBACK_DURATION.value} duration")
    return smells


def format_grade(grade: Grade) -> str:
    return f"{grade.protection.value}/{grade.duration.value}"


# =============================================================================
# CHANGE DETECTION
# =============================================================================

def detect_grade_change(source: Grade, target: Grade) -> GradeChange:
    """Compare two grades.

    A change degrades when the target is weaker (higher rank) on either axis.
    Protection is reported first since it is the stronger guarantee.
    """
    if target.protection > source.protection:
        return GradeChange(
            degrades=True,
            reason=(f"protection downgrade: {source.protection.value} -> "
                    f"{target.protection.value}"),
        )
    if target.duration > source.duration:
        return GradeChange(
            degrades=True,
            reason=(f"duration downgrade: {source.duration.value} -> "
                    f"{target.duration.value}"),
        )

    upgrades = []
    if target.protection < source.protection:
        upgrades.append(f"protection upgrade: {source.protection.value} -> "
                        f"{target.protection.value}")
    if target.duration < source.duration:
        upgrades.append(f"duration upgrade: {source.duration.value} -> "
                        f"{target.duration.value}")
    return GradeChange(degrades=False, reason="; ".join(upgrades) or None)


def assert_grade_protected(source: Grade, target: Grade) -> None:
    """Raise GradeDegradationError if moving from source to target degrades."""
    change = detect_grade_change(source, target)
    if change.degrades:
        raise GradeDegradationError(
            f"grade degradation forbidden: {change.reason}",
            fix="choose a vault and mech at least as strict as the current one",
            details={'source': source.to_dict(), 'target': target.to_dict()},
        )


def unmet_grade_requirements(actual: Grade,
                             required: Optional[GradeRequirement]) -> List[str]:
    """List the ways ``actual`` falls short of ``required``. Empty when satisfied."""
    if required is None:
        return []
    reasons = []
    if required.protection is not None and actual.protection > required.protection:
        reasons.append(f"requires {required.protection.value} protection, "
                       f"vault provides {actual.protection.value}")
    if required.duration is not None and actual.duration > required.duration:
        reasons.append(f"requires {required.duration.value} duration, "
                       f"mech provides {actual.duration.value}")
    return reasons
