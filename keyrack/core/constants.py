"""
keyrack Core Constants
======================
Shared constants used across the keyrack codebase.

Import from: keyrack.core.constants
"""

import re

# =============================================================================
# ENVIRONMENTS
# =============================================================================

# Synthetic env whose keys are visible everywhere and expanded into every
# declared env of the same manifest level
ENV_ALL = "all"

# Host-only tier; never declared in a shareable repo manifest
ENV_SUDO = "sudo"

# Host org wildcards accepted by `set`
ORG_THIS = "@this"
ORG_ALL = "@all"


# =============================================================================
# VAULTS
# =============================================================================

VAULT_OS_ENVVAR = "os.envvar"
VAULT_OS_DIRECT = "os.direct"
VAULT_OS_SECURE = "os.secure"
VAULT_OS_DAEMON = "os.daemon"
VAULT_1PASSWORD = "1password"
VAULT_AWS_IAM_SSO = "aws.iam.sso"


# =============================================================================
# MECHANISMS
# =============================================================================

MECH_PERMANENT_VIA_REPLICA = "PERMANENT_VIA_REPLICA"
MECH_EPHEMERAL_VIA_GITHUB_APP = "EPHEMERAL_VIA_GITHUB_APP"
MECH_EPHEMERAL_VIA_AWS_SSO = "EPHEMERAL_VIA_AWS_SSO"
MECH_EPHEMERAL_VIA_GITHUB_OIDC = "EPHEMERAL_VIA_GITHUB_OIDC"

# Legacy aliases still found in older host manifests
MECH_REPLICA = "REPLICA"
MECH_GITHUB_APP = "GITHUB_APP"
MECH_AWS_SSO = "AWS_SSO"

DEFAULT_MECH = MECH_PERMANENT_VIA_REPLICA


# =============================================================================
# DURATIONS
# =============================================================================

DURATION_PATTERN = re.compile(r'^(\d+)(h|m|s)$')

DURATION_UNIT_MS = {
    'h': 60 * 60 * 1000,
    'm': 60 * 1000,
    's': 1000,
}

DEFAULT_UNLOCK_DURATION = "9h"
DEFAULT_SUDO_UNLOCK_DURATION = "30m"


# =============================================================================
# DAEMON / SOCKET
# =============================================================================

SOCKET_FILE_MODE = 0o600
SOCKET_UMASK = 0o177
SOCKET_PREFIX = "keyrack"

# Requests larger than this are refused before parsing
MAX_REQUEST_BYTES = 1_000_000
RECV_CHUNK_SIZE = 65536

# /proc/<pid>/sessionid value meaning "no audit login session"
UNSET_AUDIT_SESSION_ID = "4294967295"

# Environment variable carrying the spawner's session id into the daemon
SESSION_ID_ENV_VAR = "KEYRACK_SESSION_ID"
PASSPHRASE_ENV_VAR = "KEYRACK_PASSPHRASE"
HOME_ENV_VAR = "KEYRACK_HOME"

# Audit log session tag length (bytes -> hex chars = 2x)
AUDIT_SESSION_TAG_BYTES = 8


# =============================================================================
# VAULT STORAGE
# =============================================================================

SECURE_VAULT_SALT_BYTES = 16
SECURE_VAULT_SLUG_HASH_CHARS = 16

# Scrypt parameters for os.secure key derivation
SCRYPT_N = 2 ** 15
SCRYPT_R = 8
SCRYPT_P = 1


__all__ = [
    'ENV_ALL', 'ENV_SUDO', 'ORG_THIS', 'ORG_ALL',
    'VAULT_OS_ENVVAR', 'VAULT_OS_DIRECT', 'VAULT_OS_SECURE', 'VAULT_OS_DAEMON',
    'VAULT_1PASSWORD', 'VAULT_AWS_IAM_SSO',
    'MECH_PERMANENT_VIA_REPLICA', 'MECH_EPHEMERAL_VIA_GITHUB_APP',
    'MECH_EPHEMERAL_VIA_AWS_SSO', 'MECH_EPHEMERAL_VIA_GITHUB_OIDC',
    'MECH_REPLICA', 'MECH_GITHUB_APP', 'MECH_AWS_SSO', 'DEFAULT_MECH',
    'DURATION_PATTERN', 'DURATION_UNIT_MS',
    'DEFAULT_UNLOCK_DURATION', 'DEFAULT_SUDO_UNLOCK_DURATION',
    'SOCKET_FILE_MODE', 'SOCKET_UMASK', 'SOCKET_PREFIX',
    'MAX_REQUEST_BYTES', 'RECV_CHUNK_SIZE', 'UNSET_AUDIT_SESSION_ID',
    'SESSION_ID_ENV_VAR', 'PASSPHRASE_ENV_VAR', 'HOME_ENV_VAR',
    'AUDIT_SESSION_TAG_BYTES',
    'SECURE_VAULT_SALT_BYTES', 'SECURE_VAULT_SLUG_HASH_CHARS',
    'SCRYPT_N', 'SCRYPT_R', 'SCRYPT_P',
]
