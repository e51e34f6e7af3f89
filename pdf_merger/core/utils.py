"""Shared utility functions for the PDF merge service.

Contains:
- env_int / env_float: environment parsing with defaults
- new_token: cryptographically strong hex identifiers
- format_file_size: human readable sizes
- short_id: shortened identifiers for log lines
"""

import logging
import os
import re
import secrets

logger = logging.getLogger(__name__)

_HEX_RE_CACHE: dict[int, "re.Pattern[str]"] = {}


def env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("[settings] Invalid %s=%s; using %s", name, raw, default)
        return default


def env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("[settings] Invalid %s=%s; using %s", name, raw, default)
        return default


def new_token(num_bytes: int) -> str:
    """Return ``num_bytes`` of randomness from ``secrets`` as lowercase hex."""
    return secrets.token_hex(num_bytes)


def is_hex_token(value: object, length: int) -> bool:
    """True if ``value`` is exactly ``length`` lowercase hex characters."""
    if not isinstance(value, str):
        return False
    pattern = _HEX_RE_CACHE.get(length)
    if pattern is None:
        pattern = re.compile(rf"^[a-f0-9]{{{length}}}$")
        _HEX_RE_CACHE[length] = pattern
    return bool(pattern.match(value))


def short_id(value: str, width: int = 8) -> str:
    return (value or "")[:width]


def format_file_size(size_bytes: int) -> str:
    """Format a byte count the way the upload widget displays it.

    >>> format_file_size(1536)
    '1.5 KB'
    """
    units = ["B", "KB", "MB", "GB"]
    size = float(size_bytes)
    idx = 0
    while size >= 1024 and idx < len(units) - 1:
        size /= 1024
        idx += 1
    rounded = round(size, 2)
    if rounded == int(rounded):
        rounded = int(rounded)
    return f"{rounded} {units[idx]}"
