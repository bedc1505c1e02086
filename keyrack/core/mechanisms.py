#!/usr/bin/env python3
"""
keyrack Core — Mechanism Firewall
==================================
Validates secrets against the mechanism a key claims to use:
- Replica: passthrough, but rejects known long-lived token formats
- Ephemeral (GitHub App, AWS SSO, GitHub OIDC): passthrough

A non-empty list from validate() means the grant must be blocked.

Import from: keyrack.core.mechanisms
"""

import re
from typing import Dict, List, Optional

from keyrack.core.constants import (
    MECH_PERMANENT_VIA_REPLICA, MECH_REPLICA,
    MECH_EPHEMERAL_VIA_GITHUB_APP, MECH_EPHEMERAL_VIA_AWS_SSO,
    MECH_EPHEMERAL_VIA_GITHUB_OIDC, MECH_GITHUB_APP, MECH_AWS_SSO,
)


class MechanismAdapter:
    """Passthrough mechanism. Accepts any non-empty value."""

    def __init__(self, name: str):
        self.name = name

    def validate(self, secret: Optional[str]) -> List[str]:
        if not secret:
            return ['no value to validate']
        return []


class ReplicaMechanism(MechanismAdapter):
    """Replica mechanism: blocks long-lived credentials."""

    LONG_LIVED_PATTERNS = [
        (r'^ghp_[a-zA-Z0-9]{36}$', 'github classic pat (ghp_*)'),
        (r'^gho_[a-zA-Z0-9]{36}$', 'github oauth token (gho_*)'),
        (r'^ghu_[a-zA-Z0-9]{36}$', 'github user-to-server token (ghu_*)'),
        (r'^ghs_[a-zA-Z0-9]{36}$', 'github server-to-server token (ghs_*)'),
        (r'^ghr_[a-zA-Z0-9]{36}$', 'github refresh token (ghr_*)'),
        (r'^AKIA[A-Z0-9]{16}$', 'aws long-lived access key (AKIA*)'),
    ]

    def __init__(self, name: str = MECH_PERMANENT_VIA_REPLICA):
        super().__init__(name)
        self.compiled = [(re.compile(p), label) for p, label in self.LONG_LIVED_PATTERNS]

    def detect_long_lived(self, secret: str) -> Optional[str]:
        for pattern, label in self.compiled:
            if pattern.match(secret):
                return label
        return None

    def validate(self, secret: Optional[str]) -> List[str]:
        reasons = super().validate(secret)
        if reasons:
            return reasons
        matched = self.detect_long_lived(secret)
        if matched:
            return [f"replica mechanism rejects long-lived tokens: detected {matched}"]
        return []


def build_mechanism_adapters() -> Dict[str, MechanismAdapter]:
    """Registry of every mechanism this build understands."""
    adapters: Dict[str, MechanismAdapter] = {
        MECH_PERMANENT_VIA_REPLICA: ReplicaMechanism(MECH_PERMANENT_VIA_REPLICA),
        MECH_REPLICA: ReplicaMechanism(MECH_REPLICA),
    }
    for name in (MECH_EPHEMERAL_VIA_GITHUB_APP, MECH_EPHEMERAL_VIA_AWS_SSO,
                 MECH_EPHEMERAL_VIA_GITHUB_OIDC, MECH_GITHUB_APP, MECH_AWS_SSO):
        adapters[name] = MechanismAdapter(name)
    return adapters


__all__ = ['MechanismAdapter', 'ReplicaMechanism', 'build_mechanism_adapters']
