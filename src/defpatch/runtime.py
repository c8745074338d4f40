"""Runtime support for compiled formulas: coercions, builtins and caches."""

import math
import re
import threading
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any

import numpy as np
from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from .errors import FormulaEvaluationError
from .strings import format_number

MAX_REPEAT_LENGTH = 2048


# ---------------------------------------------------------------------------
# Coercions
# ---------------------------------------------------------------------------


def is_number(value: Any) -> bool:
    if isinstance(value, bool | np.bool_):
        return False
    return isinstance(value, int | float | np.number)


def to_number(value: Any) -> float:
    if value is None:
        return 0.0
    if isinstance(value, bool | np.bool_):
        return 1.0 if value else 0.0
    if is_number(value):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            raise FormulaEvaluationError(f"cannot convert {value!r} to a number") from None
    if isinstance(value, Enum):
        return to_number(value.value)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise FormulaEvaluationError(
            f"cannot convert {type_name(value)} to a number"
        ) from None


def to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool | np.bool_):
        return "true" if value else "false"
    if is_number(value):
        return format_number(float(value))
    if isinstance(value, Enum):
        return value.name
    return str(value)


def to_bool(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool | np.bool_):
        return bool(value)
    if is_number(value):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
        raise FormulaEvaluationError(f"cannot convert {value!r} to a boolean")
    return True


def to_version(value: Any) -> Version:
    if isinstance(value, Version):
        return value
    text = format_number(float(value)) if is_number(value) else to_text(value)
    try:
        return Version(text.strip())
    except InvalidVersion:
        raise FormulaEvaluationError(f"cannot convert {text!r} to a version") from None


def type_name(value: Any) -> str:
    """Friendly category name, as returned by ``type()`` in formulas."""
    if value is None:
        return "null"
    if isinstance(value, str):
        return "text"
    if isinstance(value, bool | np.bool_):
        return "boolean"
    if is_number(value):
        return "number"
    if isinstance(value, tuple):
        return "(" + ", ".join(type_name(item) for item in value) + ")"
    return type(value).__name__


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------


def _ieee(fn):
    def apply(*args: float) -> float:
        with np.errstate(all="ignore"):
            return float(fn(*(np.float64(a) for a in args)))

    apply.__name__ = getattr(fn, "__name__", "apply")
    return apply


divide = _ieee(np.divide)
modulo = _ieee(np.fmod)
power = _ieee(np.power)


def _round_away(x):
    return np.copysign(np.floor(np.abs(x) + 0.5), x)


MATH = {
    "abs": _ieee(np.abs),
    "sin": _ieee(np.sin),
    "cos": _ieee(np.cos),
    "asin": _ieee(np.arcsin),
    "acos": _ieee(np.arccos),
    "tan": _ieee(np.tan),
    "atan2": _ieee(np.arctan2),
    "pow": power,
    "sqrt": _ieee(np.sqrt),
    "exp": _ieee(np.exp),
    "log": _ieee(np.log),
    "round": _ieee(_round_away),
    "floor": _ieee(np.floor),
    "ceil": _ieee(np.ceil),
    "ceiling": _ieee(np.ceil),
    "trunc": _ieee(np.trunc),
}


def compare(op: str, left: Any, right: Any) -> bool:
    """Ordered comparison; versions compare as versions, all else as numbers."""
    if isinstance(left, Version) or isinstance(right, Version):
        a, b = to_version(left), to_version(right)
    else:
        a, b = to_number(left), to_number(right)
    match op:
        case ">":
            return a > b
        case "<":
            return a < b
        case ">=":
            return a >= b
        case "<=":
            return a <= b
    raise ValueError(f"unknown comparison: {op}")


def equals(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    if isinstance(left, Version) or isinstance(right, Version):
        return to_version(left) == to_version(right)
    if isinstance(left, bool | np.bool_) and isinstance(right, bool | np.bool_):
        return bool(left) == bool(right)
    if isinstance(left, str) or isinstance(right, str):
        return to_text(left) == to_text(right)
    if isinstance(left, Enum) or isinstance(right, Enum):
        return to_text(left) == to_text(right)
    if (is_number(left) or isinstance(left, bool | np.bool_)) and (
        is_number(right) or isinstance(right, bool | np.bool_)
    ):
        return to_number(left) == to_number(right)
    return bool(left == right)


def contains(container: Any, item: Any) -> bool:
    if container is None:
        return False
    if isinstance(container, str):
        return to_text(item) in container
    if isinstance(container, Mapping):
        return item in container
    if isinstance(container, Iterable):
        return any(equals(element, item) for element in container)
    raise FormulaEvaluationError(f"{type_name(container)} is not a container")


def count(value: Any) -> float:
    if value is None:
        return 0.0
    try:
        return float(len(value))
    except TypeError:
        raise FormulaEvaluationError(f"{type_name(value)} has no count") from None


def member(obj: Any, name: str) -> Any:
    if obj is None:
        raise FormulaEvaluationError(f"cannot read {name} of null")
    if isinstance(obj, Mapping):
        try:
            return obj[name]
        except KeyError:
            raise FormulaEvaluationError(f"{name} not found") from None
    try:
        return getattr(obj, name)
    except AttributeError:
        raise FormulaEvaluationError(f"{type_name(obj)} has no member {name}") from None


def repeat(text: str, times: float) -> str:
    if math.isnan(times) or times < 0:
        raise FormulaEvaluationError(f"cannot repeat {format_number(times)} times")
    n = int(times)
    if len(text) * n > MAX_REPEAT_LENGTH:
        raise FormulaEvaluationError(
            f"repeat result would exceed {MAX_REPEAT_LENGTH} characters"
        )
    return text * n


# ---------------------------------------------------------------------------
# Regular expressions
# ---------------------------------------------------------------------------

_REGEX_CACHE: dict[str, re.Pattern] = {}
_REGEX_LOCK = threading.Lock()


def regex(pattern: str) -> re.Pattern:
    """Compiled pattern for ``pattern``, shared process-wide and never evicted."""
    with _REGEX_LOCK:
        compiled = _REGEX_CACHE.get(pattern)
        if compiled is None:
            try:
                compiled = re.compile(pattern)
            except re.error as exc:
                raise FormulaEvaluationError(f"invalid pattern {pattern!r}: {exc}") from None
            _REGEX_CACHE[pattern] = compiled
        return compiled


_GROUP_REF = re.compile(r"\$(?:(\d+)|\{(\w+)\}|(\$))|(\\)")


def _substitution(replacement: str) -> str:
    """Translate ``$1`` / ``${name}`` group references to ``re.sub`` syntax."""

    def convert(m: re.Match) -> str:
        if m.group(1) is not None:
            return rf"\g<{m.group(1)}>"
        if m.group(2) is not None:
            return rf"\g<{m.group(2)}>"
        if m.group(3) is not None:
            return "$"
        return r"\\"

    return _GROUP_REF.sub(convert, replacement)


def matches(text: str, pattern: str) -> bool:
    return regex(pattern).search(text) is not None


def replace(text: str, pattern: str, replacement: str) -> str:
    try:
        return regex(pattern).sub(_substitution(replacement), text)
    except (re.error, IndexError) as exc:
        raise FormulaEvaluationError(f"invalid replacement {replacement!r}: {exc}") from None


# ---------------------------------------------------------------------------
# Versions
# ---------------------------------------------------------------------------

_INTERVAL = re.compile(r"^\s*([\[(])\s*([^,\s\])]*)\s*(?:(,)\s*([^,\s\])]*)\s*)?([\])])\s*$")


def version_in_range(version: Version, spec: str) -> bool:
    """Test ``version`` against an interval such as ``[1.0,2.0)``.

    A bare version means "at least this version"; anything else is tried as a
    PEP 440 specifier set. Unparseable ranges never match.
    """
    spec = spec.strip()
    try:
        if m := _INTERVAL.match(spec):
            opening, low, comma, high, closing = m.groups()
            if comma is None:
                # "[1.0]" is an exact match
                if opening != "[" or closing != "]" or not low:
                    return False
                return version == Version(low)
            if low:
                bound = Version(low)
                if version < bound or (opening == "(" and version == bound):
                    return False
            if high:
                bound = Version(high)
                if version > bound or (closing == ")" and version == bound):
                    return False
            return True
        try:
            return version >= Version(spec)
        except InvalidVersion:
            return SpecifierSet(spec).contains(version, prereleases=True)
    except (InvalidVersion, InvalidSpecifier):
        return False
