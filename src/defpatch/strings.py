"""String helpers shared by the formula parser and runtime."""

import math
import re

_ESCAPE = re.compile(
    r"\\(?:"
    r"(?P<simple>[abfnrtv?\"'\\])"
    r"|(?P<octal>[0-3]?[0-7]{1,2})"
    r"|x(?P<hex>[0-9a-fA-F]{1,4})"
    r"|u(?P<u16>[0-9a-fA-F]{4})"
    r"|U(?P<u32>[0-9a-fA-F]{8})"
    r"|(?P<other>.)"
    r")",
    re.DOTALL,
)

_SIMPLE_ESCAPES = {
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "v": "\v",
    "?": "?",
    '"': '"',
    "'": "'",
    "\\": "\\",
}


def _decode(m: re.Match) -> str:
    if m.group("simple"):
        return _SIMPLE_ESCAPES[m.group("simple")]
    if m.group("octal"):
        return chr(int(m.group("octal"), 8))
    for group in ("hex", "u16", "u32"):
        if m.group(group):
            # chr() raises ValueError past U+10FFFF
            return chr(int(m.group(group), 16))
    return m.group("other")


def unescape(text: str) -> str:
    """Decode C-style escape sequences.

    Unknown escapes yield the escaped character itself. Raises ``ValueError``
    for code points outside the Unicode range.
    """
    if "\\" not in text:
        return text
    return _ESCAPE.sub(_decode, text)


def format_number(value: float) -> str:
    """Render a number the way formulas print it: ``14`` rather than ``14.0``."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value.is_integer() and abs(value) < 1e16:
        return str(int(value))
    return repr(value)
