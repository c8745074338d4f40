"""Record shape descriptors.

``describe(cls)`` inspects a record type once and caches, for each annotated
field, one of a closed set of value shapes. The patcher dispatches on these
instead of re-inspecting types for every field it visits.

Supported record types are plain annotated classes, dataclasses and pydantic
models. Field types map to shapes as follows:

    bool, int, float, numpy scalar types        -> SCALAR
    str                                         -> TEXT
    Enum subclasses                             -> ENUM
    list[X], list subclasses of list[X]         -> LIST
    numpy.typing.NDArray[dtype], numpy.ndarray  -> LIST (fixed)
    other classes                               -> NESTED
    everything else                             -> UNSUPPORTED

``Optional[X]`` is treated as ``X``.
"""

import dataclasses
import functools
import types
import typing
from collections.abc import MutableSequence, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any

import numpy as np

from .errors import RegistryError, TypeMismatch
from .runtime import to_bool, to_number

# Classes that are never treated as nested records.
_OPAQUE = (Decimal, datetime, date, time, timedelta, bytes, bytearray, complex, dict, set, tuple)


class ShapeKind(str, Enum):
    SCALAR = "scalar"
    TEXT = "text"
    ENUM = "enum"
    NESTED = "nested"
    LIST = "list"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class ValueShape:
    kind: ShapeKind
    type: Any
    item: "ValueShape | None" = None
    fixed: bool = False  # numpy array: grows by reallocation only

    @property
    def name(self) -> str:
        return getattr(self.type, "__name__", str(self.type))


@dataclass(frozen=True)
class RecordShape:
    type: type
    fields: dict[str, ValueShape] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.type.__name__

    def identity_field(self, explicit: str | None = None) -> str:
        """Name of the identity field: ``explicit``, else the first field ending in "Id"."""
        if explicit:
            if explicit not in self.fields:
                raise RegistryError(f"{self.name} has no identity field {explicit}")
            return explicit
        name = self.find_identity_field()
        if name is None:
            raise RegistryError(f"cannot discover the identity field of {self.name}")
        return name

    def find_identity_field(self) -> str | None:
        for name in self.fields:
            if name.endswith("Id"):
                return name
        return None

    def new(self, _building: frozenset = frozenset()) -> Any:
        """Construct a default instance with empty list and nested record fields."""
        try:
            instance = self.type()
        except Exception as exc:
            raise TypeMismatch(f"cannot construct a default {self.name}: {exc}") from exc
        return self.prepopulate(instance, _building | {self.type})

    def prepopulate(self, instance: Any, _building: frozenset = frozenset()) -> Any:
        for name, shape in self.fields.items():
            if getattr(instance, name, None) is not None:
                continue
            if shape.kind == ShapeKind.LIST:
                setattr(instance, name, new_container(shape))
            elif shape.kind == ShapeKind.NESTED and shape.type not in _building:
                try:
                    setattr(instance, name, describe(shape.type).new(_building))
                except (RegistryError, TypeMismatch):
                    # no default constructor: left unset until a patch names it
                    continue
        return instance


def new_container(shape: ValueShape) -> Any:
    if shape.fixed:
        return np.zeros(0, dtype=shape.item.type if shape.item else np.float64)
    return shape.type()


def _unwrap_optional(tp: Any) -> Any:
    origin = typing.get_origin(tp)
    if origin is typing.Annotated:
        return _unwrap_optional(typing.get_args(tp)[0])
    if origin is typing.Union or origin is types.UnionType:
        args = [a for a in typing.get_args(tp) if a is not type(None)]
        if len(args) == 1:
            return _unwrap_optional(args[0])
    return tp


def _list_item(tp: Any) -> Any | None:
    """Item type of a list subclass declared as ``class Foo(list[Bar])``."""
    for cls in getattr(tp, "__mro__", ()):
        for base in getattr(cls, "__orig_bases__", ()):
            if typing.get_origin(base) in (list, MutableSequence) and typing.get_args(base):
                return typing.get_args(base)[0]
    return None


def _is_class(tp: Any) -> bool:
    # list[int] and friends pass isinstance(tp, type) on older interpreters
    return isinstance(tp, type) and typing.get_origin(tp) is None


def _is_scalar_type(tp: Any) -> bool:
    if tp in (bool, int, float):
        return True
    return _is_class(tp) and issubclass(tp, np.number | np.bool_)


def shape_of(tp: Any) -> ValueShape:
    """Derive the value shape of a field annotation."""
    tp = _unwrap_optional(tp)
    origin = typing.get_origin(tp)

    if _is_scalar_type(tp):
        return ValueShape(ShapeKind.SCALAR, tp)
    if tp is str:
        return ValueShape(ShapeKind.TEXT, str)
    if _is_class(tp) and issubclass(tp, Enum):
        return ValueShape(ShapeKind.ENUM, tp)

    if origin in (list, MutableSequence, Sequence):
        args = typing.get_args(tp)
        item = shape_of(args[0]) if args else ValueShape(ShapeKind.UNSUPPORTED, Any)
        return ValueShape(ShapeKind.LIST, list, item)

    if origin is np.ndarray or tp is np.ndarray:
        # NDArray[np.float32] is ndarray[Any, dtype[float32]]
        scalar = np.float64
        args = typing.get_args(tp)
        if len(args) == 2 and typing.get_args(args[1]):
            scalar = typing.get_args(args[1])[0]
        item = shape_of(scalar)
        if item.kind != ShapeKind.SCALAR:
            return ValueShape(ShapeKind.UNSUPPORTED, tp)
        return ValueShape(ShapeKind.LIST, np.ndarray, item, fixed=True)

    if _is_class(tp) and issubclass(tp, list):
        item_tp = _list_item(tp)
        item = shape_of(item_tp) if item_tp is not None else ValueShape(ShapeKind.UNSUPPORTED, Any)
        return ValueShape(ShapeKind.LIST, tp, item)

    if _is_class(tp) and tp is not Any and not issubclass(tp, _OPAQUE):
        return ValueShape(ShapeKind.NESTED, tp)

    return ValueShape(ShapeKind.UNSUPPORTED, tp)


def _annotations(cls: type) -> dict[str, Any]:
    if hasattr(cls, "model_fields"):  # pydantic
        return {name: info.annotation for name, info in cls.model_fields.items()}

    hints = typing.get_type_hints(cls)
    if dataclasses.is_dataclass(cls):
        return {f.name: hints.get(f.name, f.type) for f in dataclasses.fields(cls)}
    return {
        name: hint
        for name, hint in hints.items()
        if not name.startswith("_") and typing.get_origin(hint) is not typing.ClassVar
    }


@functools.cache
def describe(cls: type) -> RecordShape:
    """Shape of a record type, computed once per type."""
    try:
        annotations = _annotations(cls)
    except (NameError, TypeError) as exc:
        raise RegistryError(f"cannot inspect the fields of {cls!r}: {exc}") from exc
    return RecordShape(cls, {name: shape_of(tp) for name, tp in annotations.items()})


def coerce_scalar(value: Any, tp: Any) -> Any:
    """Convert a formula result or literal to the scalar type ``tp``.

    Integers round half to even. Values outside a fixed-width integer type's
    range raise ``TypeMismatch``.
    """
    if tp is bool or tp is np.bool_:
        return tp(to_bool(value))
    number = to_number(value)
    if tp is float:
        return number
    if isinstance(tp, type) and issubclass(tp, np.floating):
        return tp(number)
    if not np.isfinite(number):
        raise TypeMismatch(f"{number} is not a valid {tp.__name__}")
    rounded = round(number)
    if isinstance(tp, type) and issubclass(tp, np.integer):
        info = np.iinfo(tp)
        if not info.min <= rounded <= info.max:
            raise TypeMismatch(f"{rounded} is out of range for {tp.__name__}")
    return tp(rounded)


def parse_enum(tp: type[Enum], text: str) -> Enum:
    """Case-insensitive member lookup by name, falling back to integer value."""
    wanted = text.strip()
    for member in tp:
        if member.name.lower() == wanted.lower():
            return member
    try:
        return tp(int(float(wanted)))
    except ValueError:
        raise TypeMismatch(f"{text!r} is not a {tp.__name__}") from None
