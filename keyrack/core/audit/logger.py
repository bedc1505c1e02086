#!/usr/bin/env python3
"""
keyrack Core Audit — Audit Logger
==================================
Tamper-evident logging for the daemon with:
- Chain hashing for integrity
- Secret redaction on every string detail
- Separate files for events and rejected peers

Never receives secret values; grants are described by slug only.

Import from: keyrack.core.audit.logger
"""

import json
import hashlib
import secrets
import logging
import threading
from pathlib import Path
from datetime import datetime
from typing import Dict, List

from keyrack.core.types import AuditSeverity
from keyrack.core.constants import AUDIT_SESSION_TAG_BYTES
from keyrack.core.audit.redaction import redact_secrets

logger = logging.getLogger("keyrack.core.audit.logger")


class AuditLogger:
    """Chain-hashed JSONL audit log. Thread-safe."""

    def __init__(self, log_dir: Path):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.main_log = self.log_dir / "daemon_events.log"
        self.rejected_log = self.log_dir / "rejected.log"

        self.session_tag = secrets.token_hex(AUDIT_SESSION_TAG_BYTES)
        self.entry_counter = 0
        # One chain per file
        self.previous_hashes: Dict[Path, str] = {}
        self._lock = threading.Lock()

    def _chain_hash(self, log_file: Path, entry: str) -> str:
        previous = self.previous_hashes.get(log_file, "0" * 64)
        return hashlib.sha256(f"{previous}:{entry}".encode()).hexdigest()

    def _write(self, log_file: Path, entry: Dict):
        with self._lock:
            self.entry_counter += 1
            entry.update({
                'timestamp': datetime.now().isoformat(),
                'session_tag': self.session_tag,
                'sequence': self.entry_counter,
            })
            entry_str = json.dumps(entry, sort_keys=True)
            entry['chain_hash'] = self._chain_hash(log_file, entry_str)
            self.previous_hashes[log_file] = entry['chain_hash']

            with open(log_file, 'a', encoding='utf-8') as f:
                f.write(json.dumps(entry) + '\n')

    def log_event(self, event: str, severity: AuditSeverity, details: Dict = None) -> None:
        if details:
            details = {k: redact_secrets(v) if isinstance(v, str) else v
                       for k, v in details.items()}

        self._write(self.main_log, {'event': event, 'severity': severity.value,
                                    'details': details or {}})

        if severity in (AuditSeverity.HIGH, AuditSeverity.CRITICAL):
            logger.warning("[%s] %s", severity.value.upper(), event)

    def log_rejected(self, command: str, peer: str, reason: str) -> None:
        self._write(self.rejected_log, {'command': command, 'peer': redact_secrets(peer[:200]),
                                        'reason': redact_secrets(reason)})
        logger.warning("REJECTED: %s | %s", command, reason)

    def verify_chain(self, log_file: Path = None) -> List[int]:
        """Return the sequence numbers of entries whose chain hash does not verify."""
        log_file = Path(log_file or self.main_log)
        broken = []
        previous = "0" * 64
        tag = None
        if not log_file.exists():
            return broken
        for line in log_file.read_text(encoding='utf-8').splitlines():
            if not line.strip():
                continue
            entry = json.loads(line)
            # Each daemon process starts its own chain
            if entry.get('session_tag') != tag:
                tag = entry.get('session_tag')
                previous = "0" * 64
            recorded = entry.pop('chain_hash', None)
            expected = hashlib.sha256(
                f"{previous}:{json.dumps(entry, sort_keys=True)}".encode()).hexdigest()
            if recorded != expected:
                broken.append(entry.get('sequence'))
            previous = recorded or expected
        return broken


__all__ = ['AuditLogger']
