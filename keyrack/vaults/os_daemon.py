"""
keyrack Vaults — os.daemon
===========================
Keeps values only in daemon memory; they die with the login session.
Unlocked whenever the daemon answers, since the daemon verifies every caller.

Import from: keyrack.vaults.os_daemon
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from keyrack.core.constants import MECH_PERMANENT_VIA_REPLICA, VAULT_OS_DAEMON
from keyrack.core.durations import parse_duration
from keyrack.core.grades import infer_grade
from keyrack.core.manifest.slugs import split_slug
from keyrack.core.session import SessionContext
from keyrack.core.types import BadRequestError, KeyGrant
from keyrack.daemon.client import DaemonClient
from keyrack.daemon.store import now_ms
from keyrack.vaults.base import VaultAdapter

__all__ = ['OsDaemonVault']

logger = logging.getLogger("keyrack.vaults.os_daemon")


class OsDaemonVault(VaultAdapter):
    name = VAULT_OS_DAEMON

    def __init__(self, client: DaemonClient, session: SessionContext,
                 clock: Optional[Callable[[], float]] = None):
        self.client = client
        self.session = session
        self._clock = clock

    def is_unlocked(self, exid: Optional[str] = None) -> bool:
        return self.client.is_reachable()

    def get(self, slug: str, exid: Optional[str] = None) -> Optional[str]:
        grants = self.client.get([slug])
        if not grants:
            return None
        for grant in grants:
            if grant.slug == slug:
                return grant.secret
        return None

    def set(self, slug: str, value: str, exid: Optional[str] = None,
            expires_at: Optional[int] = None) -> None:
        if not value:
            raise BadRequestError("os.daemon vault requires a secret value")
        org, env, _ = split_slug(slug)
        if expires_at is None:
            now = now_ms(self._clock) if self._clock else now_ms()
            expires_at = now + parse_duration(self.client.config.default_duration)

        self.client.ensure_running(self.session)
        self.client.unlock([KeyGrant(
            slug=slug,
            secret=value,
            grade=infer_grade(VAULT_OS_DAEMON, MECH_PERMANENT_VIA_REPLICA),
            vault=VAULT_OS_DAEMON,
            mech=MECH_PERMANENT_VIA_REPLICA,
            env=env,
            org=org,
            expires_at=expires_at,
        )])
        logger.info("os.daemon stored %s", slug)

    def delete(self, slug: str, exid: Optional[str] = None) -> bool:
        relocked = self.client.relock(slugs=[slug])
        return bool(relocked)
