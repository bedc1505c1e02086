"""
keyrack Core — Version Constants

Single source of truth for all version-related values.

Usage:
    from keyrack.core.version import __version__, PROTOCOL_VERSION
"""

# =============================================================================
# PACKAGE VERSION
# =============================================================================

__version__ = "1.0.0"


# =============================================================================
# WIRE PROTOCOL
# =============================================================================

# Daemon socket protocol revision. Only increment when the request or
# response envelope changes shape.
PROTOCOL_VERSION = "1"


# =============================================================================
# MANIFEST SCHEMA
# =============================================================================

# Repo manifest location, relative to the repository root
REPO_MANIFEST_RELPATH = ".agent/keyrack.yml"

# Host manifest schema revision (tracks keyrack.host.json structure)
HOST_MANIFEST_SCHEMA_VERSION = "1"
