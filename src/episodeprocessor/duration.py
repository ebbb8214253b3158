"""
Timestamp helpers: (hh:)(mm:)ss(.ms) text to seconds and back.
"""

import re
from typing import Union

from .errors import FormatError


HOUR = 60 * 60
MINUTE = 60

SKIP = 'skip'

_NUMBER_RE = re.compile(r'^(?:\d+(?:\.\d*)?|\.\d+)$')


def parse_duration(duration: Union[str, int, float]) -> float:
    """
    Parse duration string into seconds.

    Args:
        duration: Text such as "01:02:03.5", "05:04" or "42".

    Returns:
        Number of seconds.

    Raises:
        FormatError: On more than 3 components or a non-numeric component.
    """
    if isinstance(duration, bool):
        raise FormatError(f"Invalid duration {duration!r}")
    if isinstance(duration, (int, float)):
        return float(duration)

    parts = str(duration).strip().split(':')
    if len(parts) > 3:
        raise FormatError(f"Invalid duration (too many :) {duration}")

    total = 0.0
    for part in parts:
        part = part.strip()
        if not _NUMBER_RE.match(part):
            raise FormatError(f"Invalid duration component {part!r} in {duration}")
        total = total * 60 + float(part)
    return total


def format_duration(duration: float) -> str:
    """Format seconds as HH:MM:SS.mmm (milliseconds truncated)."""
    # Round away float noise first so 1.005 stays 1005 ms
    total_ms = int(round(abs(duration) * 1000, 6))

    hours, rest = divmod(total_ms, HOUR * 1000)
    minutes, rest = divmod(rest, MINUTE * 1000)
    seconds, ms = divmod(rest, 1000)

    return f"{hours:02d}:{minutes:02d}:{seconds:02d}.{ms:03d}"


def parse_cut(value: Union[str, int, float]) -> Union[str, float]:
    """Parse a cut point, keeping the skip marker as-is."""
    if isinstance(value, str) and value.strip().lower() == SKIP:
        return SKIP
    return parse_duration(value)
