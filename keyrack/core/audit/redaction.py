#!/usr/bin/env python3
"""
keyrack Core Audit — Secret Redactor
=====================================
Masks credential-shaped text before it is written to a log:
- GitHub tokens, AWS access keys
- Bearer tokens, key=value secrets
- Private key blocks

Import from: keyrack.core.audit.redaction
"""

import re


class SecretRedactor:
    """Redacts credential-shaped text for safe logging."""

    REDACTION_PATTERNS = [
        (r'\bgh[pousr]_[A-Za-z0-9]{20,}\b', '[REDACTED GITHUB TOKEN]'),
        (r'\bAKIA[A-Z0-9]{16}\b', '[REDACTED AWS KEY]'),
        (r'(?i)(bearer)\s+([A-Za-z0-9._-]{20,})', r'\1 [REDACTED]'),
        (r'(?i)(password|passphrase|secret|token|api[_-]?key)\s*[:=]\s*["\']?([^\s"\']{4,})["\']?',
         r'\1: [REDACTED]'),
        (r'-----BEGIN[^-]+PRIVATE KEY-----[\s\S]*?-----END[^-]+PRIVATE KEY-----',
         '[REDACTED PRIVATE KEY]'),
    ]

    def __init__(self):
        self.compiled = [(re.compile(p, re.M), r) for p, r in self.REDACTION_PATTERNS]

    def redact(self, text: str) -> str:
        for pattern, replacement in self.compiled:
            text = pattern.sub(replacement, text)
        return text


_default_redactor = SecretRedactor()


def redact_secrets(text: str) -> str:
    """Redact with the module-level redactor."""
    return _default_redactor.redact(text)


__all__ = ['SecretRedactor', 'redact_secrets']
