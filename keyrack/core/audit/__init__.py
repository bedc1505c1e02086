"""
Audit Layer — Tamper-evident daemon event logging and secret redaction.

Classes:
- AuditLogger: Chain-hashed JSONL event log
- SecretRedactor: Masks token-like text before it reaches a log line
"""

from keyrack.core.audit.logger import AuditLogger
from keyrack.core.audit.redaction import SecretRedactor, redact_secrets

__all__ = [
    'AuditLogger',
    'SecretRedactor',
    'redact_secrets',
]
