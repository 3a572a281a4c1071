"""
Prometheus duration grammar.

Durations are stored as integer milliseconds, the same resolution the
remote rules engine uses. Accepted units, largest first: y, w, d, h, m, s, ms.
Each unit may appear at most once and in that order ("1h30m", "2d", "500ms").
"0" is accepted as a zero duration; the empty string is not.
"""

from __future__ import annotations

import re

from .errors import TranslationError

_MS = 1
_S = 1000 * _MS
_M = 60 * _S
_H = 60 * _M
_D = 24 * _H
_W = 7 * _D
_Y = 365 * _D

_UNITS = (
    ("y", _Y),
    ("w", _W),
    ("d", _D),
    ("h", _H),
    ("m", _M),
    ("s", _S),
    ("ms", _MS),
)

_DURATION_RE = re.compile(
    r"^(?:(?P<y>[0-9]+)y)?"
    r"(?:(?P<w>[0-9]+)w)?"
    r"(?:(?P<d>[0-9]+)d)?"
    r"(?:(?P<h>[0-9]+)h)?"
    r"(?:(?P<m>[0-9]+)m)?"
    r"(?:(?P<s>[0-9]+)s)?"
    r"(?:(?P<ms>[0-9]+)ms)?$"
)

# int64 nanoseconds overflow guard, as enforced by the remote parser
_MAX_MS = (2 ** 63 - 1) // 1_000_000


def parse_duration(text: str) -> int:
    """Parse a duration string into milliseconds.

    Raises:
        TranslationError: if the string does not follow the grammar.
    """
    if not isinstance(text, str):
        raise TranslationError(f"duration must be a string, got {type(text).__name__}")
    if text == "0":
        return 0
    if text == "":
        raise TranslationError("empty duration string")
    m = _DURATION_RE.match(text)
    if not m:
        raise TranslationError(f"not a valid duration string: {text!r}")

    total = 0
    for unit, mult in _UNITS:
        value = m.group(unit)
        if value:
            total += int(value) * mult
    if total > _MAX_MS:
        raise TranslationError(f"duration out of range: {text!r}")
    return total


def format_duration(ms: int) -> str:
    """Render milliseconds in canonical form (90 minutes -> "1h30m", 0 -> "0s")."""
    if ms == 0:
        return "0s"
    out = ""
    rest = int(ms)
    for unit, mult in _UNITS:
        # years and weeks only when they divide the value exactly
        if unit in ("y", "w") and rest % mult != 0:
            continue
        value = rest // mult
        if value > 0:
            out += f"{value}{unit}"
            rest -= value * mult
    return out
