"""
keyrack Core — Duration Strings
================================
Parses ``<n>h`` / ``<n>m`` / ``<n>s`` duration strings into milliseconds.

Import from: keyrack.core.durations
"""

from __future__ import annotations

from keyrack.core.constants import DURATION_PATTERN, DURATION_UNIT_MS
from keyrack.core.types import BadRequestError

__all__ = ['parse_duration', 'format_duration_ms']


def parse_duration(text: str) -> int:
    """Parse a duration string like ``9h``, ``30m``, or ``45s`` into milliseconds.

    Raises:
        BadRequestError: if the string does not match ``^(\\d+)(h|m|s)$``.
    """
    match = DURATION_PATTERN.match(text or "")
    if not match:
        raise BadRequestError(
            f"invalid duration format: {text!r}",
            fix="use a number followed by h, m, or s (e.g. 9h, 30m, 45s)",
        )
    value, unit = match.groups()
    return int(value) * DURATION_UNIT_MS[unit]


def format_duration_ms(ms: float) -> str:
    """Human-readable rendering for status output."""
    if ms == float('inf'):
        return "never"
    seconds = int(ms // 1000)
    hours, rem = divmod(seconds, 3600)
    minutes, seconds = divmod(rem, 60)
    if hours:
        return f"{hours}h{minutes:02d}m"
    if minutes:
        return f"{minutes}m{seconds:02d}s"
    return f"{seconds}s"
