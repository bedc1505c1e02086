"""
keyrack Daemon — Command Handlers
==================================
One handler per wire command. Each runs under the store lock, so a command
is a single atomic unit against the store.

    UNLOCK {keys: [grant]}            -> {unlocked: [slug]}
    GET    {slugs, org?, env?}        -> {keys: [grant]}
    STATUS {}                         -> {keys: [status entry]}
    RELOCK {slugs?, env?}             -> {relocked: [slug]}

Import from: keyrack.daemon.commands
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from keyrack.core.constants import ORG_ALL
from keyrack.core.types import BadRequestError, KeyGrant
from keyrack.daemon.store import DaemonKeyStore

__all__ = [
    'COMMAND_UNLOCK', 'COMMAND_GET', 'COMMAND_STATUS', 'COMMAND_RELOCK',
    'COMMAND_HANDLERS', 'dispatch_command', 'failure', 'success',
]

logger = logging.getLogger("keyrack.daemon.commands")

COMMAND_UNLOCK = "UNLOCK"
COMMAND_GET = "GET"
COMMAND_STATUS = "STATUS"
COMMAND_RELOCK = "RELOCK"

Payload = Dict[str, Any]


def success(data: Any = None) -> Dict[str, Any]:
    return {'success': True, 'data': data}


def failure(error: str) -> Dict[str, Any]:
    return {'success': False, 'error': error}


def _string_list(payload: Payload, field: str, required: bool = False) -> Optional[List[str]]:
    value = payload.get(field)
    if value is None:
        if required:
            raise BadRequestError(f"payload.{field} is required")
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise BadRequestError(f"payload.{field} must be a list of strings")
    return value


def _optional_string(payload: Payload, field: str) -> Optional[str]:
    value = payload.get(field)
    if value is not None and not isinstance(value, str):
        raise BadRequestError(f"payload.{field} must be a string")
    return value


# =============================================================================
# HANDLERS
# =============================================================================

def _parse_grant(item: Any) -> KeyGrant:
    """Wire grant -> KeyGrant, refusing anything the store could not compare."""
    try:
        grant = KeyGrant.from_dict(item)
    except (KeyError, TypeError, ValueError) as e:
        raise BadRequestError(f"malformed grant in payload.keys: {e}") from e

    for field in ('slug', 'secret', 'vault', 'mech', 'env', 'org'):
        if not isinstance(getattr(grant, field), str):
            raise BadRequestError(f"malformed grant in payload.keys: {field} must be a string")
    parts = grant.slug.split('.')
    if len(parts) < 3 or not all(parts):
        raise BadRequestError(
            f"malformed grant in payload.keys: slug {grant.slug!r} is not org.env.NAME")
    expires_at = grant.expires_at
    if expires_at is not None and (isinstance(expires_at, bool) or not isinstance(expires_at, int)):
        raise BadRequestError(
            "malformed grant in payload.keys: expiresAt must be epoch ms or null")
    return grant


def handle_unlock(payload: Payload, store: DaemonKeyStore) -> Dict[str, Any]:
    raw = payload.get('keys')
    if not isinstance(raw, list):
        raise BadRequestError("payload.keys must be a list of grants")
    grants = [_parse_grant(item) for item in raw]

    with store.locked():
        for grant in grants:
            store.set(grant)
    logger.info("Unlocked %d grants", len(grants))
    return {'unlocked': [g.slug for g in grants]}


def _org_matches(grant: KeyGrant, org: Optional[str]) -> bool:
    return org is None or grant.org == org or grant.org == ORG_ALL


def handle_get(payload: Payload, store: DaemonKeyStore) -> Dict[str, Any]:
    slugs = _string_list(payload, 'slugs', required=True)
    org = _optional_string(payload, 'org')
    env = _optional_string(payload, 'env')

    found = []
    with store.locked():
        for slug in slugs:
            grant = store.get(slug)
            if grant is None:
                continue
            if not _org_matches(grant, org):
                continue
            if env is not None and grant.env != env:
                continue
            found.append(grant.to_dict())
    return {'keys': found}


def handle_status(payload: Payload, store: DaemonKeyStore) -> Dict[str, Any]:
    with store.locked():
        now = store.now()
        grants = store.entries()
    keys = []
    for grant in grants:
        if grant.expires_at is None:
            ttl_left = float('inf')
        else:
            ttl_left = max(0, grant.expires_at - now)
        keys.append({
            'slug': grant.slug,
            'env': grant.env,
            'org': grant.org,
            'grade': grant.grade.to_dict(),
            'source': {'vault': grant.vault, 'mech': grant.mech},
            'expiresAt': grant.expires_at,
            'ttlLeftMs': ttl_left,
        })
    return {'keys': keys}


def handle_relock(payload: Payload, store: DaemonKeyStore) -> Dict[str, Any]:
    slugs = _string_list(payload, 'slugs')
    env = _optional_string(payload, 'env')

    relocked: List[str] = []
    with store.locked():
        if slugs is not None:
            relocked = [slug for slug in slugs if store.delete(slug)]
        elif env is not None:
            for grant in store.entries(env):
                if store.delete(grant.slug):
                    relocked.append(grant.slug)
        else:
            relocked = [grant.slug for grant in store.entries()]
            store.clear()
    logger.info("Relocked %d grants", len(relocked))
    return {'relocked': relocked}


COMMAND_HANDLERS: Dict[str, Callable[[Payload, DaemonKeyStore], Dict[str, Any]]] = {
    COMMAND_UNLOCK: handle_unlock,
    COMMAND_GET: handle_get,
    COMMAND_STATUS: handle_status,
    COMMAND_RELOCK: handle_relock,
}


def dispatch_command(request: Any, store: DaemonKeyStore) -> Dict[str, Any]:
    """Run one request against ``store``. Always returns a response envelope."""
    if not isinstance(request, dict):
        return failure("request must be a JSON object")

    command = request.get('command')
    handler = COMMAND_HANDLERS.get(command) if isinstance(command, str) else None
    if handler is None:
        return failure(f"unknown command: {command}")

    payload = request.get('payload')
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        return failure("payload must be a JSON object")

    try:
        return success(handler(payload, store))
    except BadRequestError as e:
        return failure(e.message)
