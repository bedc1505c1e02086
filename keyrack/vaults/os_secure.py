#!/usr/bin/env python3
"""
keyrack Vaults — os.secure
===========================
Passphrase-encrypted file vault. One file per slug:

    <vault_dir>/os.secure/owner=<owner>/<sha256(slug)[:16]>.enc

File layout is ``salt || fernet_token``; the Fernet key is derived from the
passphrase with Scrypt and the per-file salt. The passphrase is held in
memory only between unlock() and relock().

Passphrase sources, in order: unlock() argument, $KEYRACK_PASSPHRASE,
interactive prompt.

Import from: keyrack.vaults.os_secure
"""

import base64
import getpass
import hashlib
import os
import logging
import threading
from pathlib import Path
from typing import Callable, Mapping, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from keyrack.core.constants import (
    PASSPHRASE_ENV_VAR, SCRYPT_N, SCRYPT_P, SCRYPT_R,
    SECURE_VAULT_SALT_BYTES, SECURE_VAULT_SLUG_HASH_CHARS, VAULT_OS_SECURE,
)
from keyrack.core.types import BadRequestError
from keyrack.vaults.base import VaultAdapter

logger = logging.getLogger("keyrack.vaults.os_secure")

SECURE_FILE_MODE = 0o600


def _derive_fernet(passphrase: str, salt: bytes) -> Fernet:
    kdf = Scrypt(salt=salt, length=32, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    key = kdf.derive(passphrase.encode('utf-8'))
    return Fernet(base64.urlsafe_b64encode(key))


class OsSecureVault(VaultAdapter):
    """Thread-safe passphrase-encrypted vault."""

    name = VAULT_OS_SECURE

    def __init__(self, vault_dir: Path, owner: Optional[str] = None, *,
                 environ: Optional[Mapping[str, str]] = None,
                 prompt: Callable[[str], str] = getpass.getpass):
        self.directory = Path(vault_dir) / VAULT_OS_SECURE / f"owner={owner or 'default'}"
        self.environ = os.environ if environ is None else environ
        self._prompt = prompt
        self._passphrase: Optional[str] = None
        self.lock = threading.Lock()

    def _path_for(self, slug: str) -> Path:
        digest = hashlib.sha256(slug.encode('utf-8')).hexdigest()
        return self.directory / f"{digest[:SECURE_VAULT_SLUG_HASH_CHARS]}.enc"

    def _require_passphrase(self) -> str:
        if self._passphrase is None:
            raise BadRequestError(
                "os.secure vault is locked",
                fix="run: keyrack unlock",
            )
        return self._passphrase

    def _decrypt(self, blob: bytes, passphrase: str) -> str:
        salt, token = blob[:SECURE_VAULT_SALT_BYTES], blob[SECURE_VAULT_SALT_BYTES:]
        try:
            return _derive_fernet(passphrase, salt).decrypt(token).decode('utf-8')
        except InvalidToken as e:
            raise BadRequestError(
                "os.secure passphrase rejected",
                fix=f"check the passphrase, or ${PASSPHRASE_ENV_VAR}",
            ) from e

    # -----------------------------------------------------------------
    # Adapter contract
    # -----------------------------------------------------------------

    def is_unlocked(self, exid: Optional[str] = None) -> bool:
        return self._passphrase is not None

    def unlock(self, passphrase: Optional[str] = None, exid: Optional[str] = None) -> None:
        passphrase = (passphrase or self.environ.get(PASSPHRASE_ENV_VAR)
                      or self._prompt("keyrack os.secure passphrase: "))
        if not passphrase:
            raise BadRequestError("os.secure requires a passphrase",
                                  fix=f"set ${PASSPHRASE_ENV_VAR} or enter one when prompted")

        # Check the passphrase against any one stored file
        if self.directory.exists():
            existing = next(iter(sorted(self.directory.glob("*.enc"))), None)
            if existing is not None:
                self._decrypt(existing.read_bytes(), passphrase)

        with self.lock:
            self._passphrase = passphrase
        logger.info("os.secure vault unlocked")

    def get(self, slug: str, exid: Optional[str] = None) -> Optional[str]:
        passphrase = self._require_passphrase()
        path = self._path_for(slug)
        if not path.exists():
            return None
        return self._decrypt(path.read_bytes(), passphrase)

    def set(self, slug: str, value: str, exid: Optional[str] = None,
            expires_at: Optional[int] = None) -> None:
        passphrase = self._require_passphrase()
        salt = os.urandom(SECURE_VAULT_SALT_BYTES)
        token = _derive_fernet(passphrase, salt).encrypt(value.encode('utf-8'))

        path = self._path_for(slug)
        with self.lock:
            self.directory.mkdir(parents=True, exist_ok=True, mode=0o700)
            tmp = path.with_suffix('.tmp')
            fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, SECURE_FILE_MODE)
            with os.fdopen(fd, 'wb') as f:
                f.write(salt + token)
            tmp.replace(path)
        logger.info("os.secure stored %s", slug)

    def delete(self, slug: str, exid: Optional[str] = None) -> bool:
        path = self._path_for(slug)
        with self.lock:
            if not path.exists():
                return False
            path.unlink()
        return True

    def relock(self, slug: Optional[str] = None) -> None:
        # One passphrase covers every slug, so any relock forgets it
        with self.lock:
            self._passphrase = None


__all__ = ['OsSecureVault']
