"""Object and collection patcher.

Applies a mapping node to a record field by field, dispatching on the cached
value shape of each field (see ``shapes``). A field name prefixed with ``$``
marks its value as a formula; the field's current value is bound as
``value`` while it is evaluated, next to the record bindings (``def``,
``collection``, ``item``) of the instruction being applied.

List-typed fields accept either a sequence (patched position by position) or
a mapping whose keys are positions, ``$add`` (append new elements) or a
parenthesised formula selecting elements to patch:

    Resources:
      0: { Amount: 5 }
      $add: [ { Amount: 1 } ]
      (item.Amount > 10): { Amount: 10 }
"""

import re
from collections.abc import Iterator, Mapping, MutableSequence
from contextlib import contextmanager
from typing import Any

import numpy as np

from .diagnostics import Diagnostics
from .documents import MappingNode, Node, ScalarNode, SequenceNode
from .errors import FormulaError, StructuralError, TypeMismatch
from .instructions import is_delete
from .runtime import to_bool, to_text
from .scope import Scope
from .shapes import (
    ShapeKind,
    ValueShape,
    coerce_scalar,
    describe,
    new_container,
    parse_enum,
    shape_of,
)

_SUBEXPRESSION = re.compile(r'{{((?:"(?:[^"\\]|\\.)*"|[^"])*?)}}', re.DOTALL)


class ObjectPatcher:
    """Type-directed recursive setter shared by all mutating instructions."""

    def __init__(
        self,
        scope: Scope,
        diagnostics: Diagnostics | None = None,
        identity_fields: Mapping[type, str] | None = None,
    ):
        self.scope = scope
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        # definition types and their identity fields
        self.identity_fields: dict[type, str] = dict(identity_fields or {})
        self.bindings: dict[str, Any] = {}

    @contextmanager
    def bound(self, bindings: Mapping[str, Any]) -> Iterator[None]:
        """Make ``bindings`` visible to every formula evaluated inside the block."""
        saved = self.bindings
        self.bindings = {**saved, **bindings}
        try:
            yield
        finally:
            self.bindings = saved

    def evaluate(self, text: str, current: Any) -> Any:
        return self.scope.evaluate(text, {**self.bindings, "value": current})

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def patch_object(
        self,
        record_type: type,
        instance: Any,
        mapping: MappingNode,
        element_index: int | None = None,
    ) -> Any:
        """Apply ``mapping`` to ``instance`` and return it.

        ``element_index`` is the position of a record being added to a
        collection. When the record is a definition type, its ``$``-prefixed
        identity field then stores that position in the shared variable it
        names.
        """
        shape = describe(record_type)
        identity = self.identity_fields.get(record_type) if element_index is not None else None

        for key, node in mapping.entries:
            name = key.text
            formula = name.startswith("$")
            if formula:
                name = name[1:]

            field = shape.fields.get(name)
            if field is None:
                if name == shape.name and len(mapping) == 1 and isinstance(node, MappingNode):
                    # legacy layout: { TypeName: { ...fields } }
                    return self.patch_object(record_type, instance, node, element_index)
                raise TypeMismatch(f"{shape.name} has no field {name}", key.mark)

            if formula and name == identity and isinstance(node, ScalarNode):
                self.scope.store.set(node.text, element_index)
                if field.kind == ShapeKind.SCALAR:
                    self._assign(instance, name, coerce_scalar(element_index, field.type), key)
                else:
                    self._assign(instance, name, str(element_index), key)
                continue

            try:
                value = self.patch_value(field, getattr(instance, name, None), node, formula)
            except (FormulaError, TypeMismatch) as exc:
                if exc.mark is None:
                    exc.msg = f"{shape.name}.{name}: {exc.msg}"
                raise exc.at(node.mark)
            self._assign(instance, name, value, key)

        return instance

    def _assign(self, instance: Any, name: str, value: Any, key: ScalarNode) -> None:
        try:
            setattr(instance, name, value)
        except (AttributeError, TypeError, ValueError) as exc:
            raise TypeMismatch(
                f"cannot set {type(instance).__name__}.{name}: {exc}", key.mark
            ) from exc

    def new_record(self, record_type: type) -> Any:
        return describe(record_type).new()

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------

    def patch_value(self, shape: ValueShape, current: Any, node: Node, formula: bool) -> Any:
        match shape.kind:
            case ShapeKind.LIST:
                if is_delete(node):
                    return None
                return self.patch_collection(shape, current, node)
            case ShapeKind.SCALAR:
                return self._scalar(shape, current, node, formula)
            case ShapeKind.TEXT:
                return self._text(current, node, formula)
            case ShapeKind.ENUM:
                return self._enum(shape, current, node, formula)
            case ShapeKind.NESTED:
                if is_delete(node):
                    return None
                if not isinstance(node, MappingNode):
                    raise TypeMismatch(f"expected a mapping for {shape.name}", node.mark)
                if current is None:
                    current = self.new_record(shape.type)
                return self.patch_object(shape.type, current, node)
        raise TypeMismatch(f"cannot patch a field of type {shape.name}", node.mark)

    def _scalar_text(self, node: Node, shape: ValueShape) -> ScalarNode:
        if not isinstance(node, ScalarNode):
            raise TypeMismatch(f"expected a scalar for {shape.name}", node.mark)
        return node

    def _scalar(self, shape: ValueShape, current: Any, node: Node, formula: bool) -> Any:
        node = self._scalar_text(node, shape)
        value: Any = node.value
        if node.value is not None:
            try:
                value = self.evaluate(node.value, current)
            except FormulaError:
                if formula:
                    raise
                value = node.value
        try:
            return coerce_scalar(value, shape.type)
        except (FormulaError, TypeMismatch) as exc:
            raise TypeMismatch(f"cannot convert {node.text!r} to {shape.name}: {exc.msg}") from exc

    def _text(self, current: Any, node: Node, formula: bool) -> str | None:
        node = self._scalar_text(node, ValueShape(ShapeKind.TEXT, str))
        if not formula:
            return node.value
        return to_text(self.evaluate(node.text, current))

    def _enum(self, shape: ValueShape, current: Any, node: Node, formula: bool) -> Any:
        node = self._scalar_text(node, shape)
        text = node.text
        if formula:
            name = current.name if current is not None else None
            text = to_text(self.evaluate(text, name))
        return parse_enum(shape.type, text)

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def patch_collection(self, shape: ValueShape, current: Any, node: Node) -> Any:
        """Patch a list field and return it.

        Fixed arrays grow by reallocation, so the returned object may differ
        from ``current``; callers store it back.
        """
        items = current if current is not None else new_container(shape)

        match node:
            case SequenceNode(items=nodes):
                for index, item in enumerate(nodes):
                    items = self._patch_at(shape, items, index, item)

            case MappingNode(entries=entries):
                for key, value in entries:
                    items = self._patch_key(shape, items, key, value)

            case _:
                raise TypeMismatch(f"expected a sequence or mapping for {shape.name}", node.mark)

        return items

    def _patch_key(self, shape: ValueShape, items: Any, key: ScalarNode, node: Node) -> Any:
        text = key.text.strip()

        if text == "$add":
            if not isinstance(node, SequenceNode):
                raise StructuralError("$add expects a sequence", node.mark)
            for item in node.items:
                items = self._patch_at(shape, items, len(items), item)
            return items

        if text.startswith("(") and text.endswith(")"):
            predicate = text[1:-1]
            for index in range(len(items)):
                bindings = {
                    **self.bindings,
                    "item": items[index],
                    "value": float(index),
                    "collection": items,
                }
                try:
                    selected = to_bool(self.scope.evaluate(predicate, bindings))
                except FormulaError as exc:
                    raise exc.at(key.mark)
                if selected:
                    items = self._patch_at(shape, items, index, node)
            return items

        try:
            index = int(text)
        except ValueError:
            raise StructuralError(f"invalid collection key {text!r}", key.mark) from None
        return self._patch_at(shape, items, index, node)

    def _patch_at(self, shape: ValueShape, items: Any, index: int, node: Node) -> Any:
        length = len(items)
        if index < 0:
            raise StructuralError(f"negative index {index}", node.mark)

        if index >= length:
            if shape.fixed:
                grown = np.zeros(index + 1, dtype=items.dtype)
                grown[:length] = items
                items = grown
            elif index > length:
                raise StructuralError(
                    f"index {index} is past the end of a {length}-element list", node.mark
                )
            else:
                value = self.patch_element(shape.item, self._default(shape.item), node, index)
                items.append(value)
                return items

        items[index] = self.patch_element(shape.item, items[index], node, index)
        return items

    def _default(self, shape: ValueShape) -> Any:
        match shape.kind:
            case ShapeKind.SCALAR:
                return shape.type(0)
            case ShapeKind.NESTED:
                return self.new_record(shape.type)
            case ShapeKind.LIST:
                return new_container(shape)
        return None

    def patch_element(self, shape: ValueShape, current: Any, node: Node, index: int) -> Any:
        if is_delete(node):
            return shape.type(0) if shape.kind == ShapeKind.SCALAR else None

        match shape.kind:
            case ShapeKind.SCALAR:
                return self._scalar(shape, current, node, formula=False)
            case ShapeKind.TEXT:
                text = self._scalar_text(node, shape)
                if text.value is None:
                    return None
                return self.expand(text.value, current, text)
            case ShapeKind.ENUM:
                return self._enum(shape, current, node, formula=False)
            case ShapeKind.NESTED:
                if not isinstance(node, MappingNode):
                    raise TypeMismatch(f"expected a mapping for {shape.name}", node.mark)
                if len(node) == 1 and node.keys()[0] == shape.name:
                    inner = node.entries[0][1]
                    if isinstance(inner, MappingNode):
                        node = inner
                if current is None:
                    current = self.new_record(shape.type)
                return self.patch_object(shape.type, current, node, element_index=index)
            case ShapeKind.LIST:
                return self.patch_collection(shape, current, node)
        raise TypeMismatch(f"cannot patch an element of type {shape.name}", node.mark)

    def expand(self, text: str, current: Any, node: ScalarNode) -> str:
        """Replace each ``{{formula}}`` in ``text`` with its result.

        A sub-expression that fails renders as empty text and is reported as
        a warning.
        """

        def substitute(m: re.Match) -> str:
            try:
                return to_text(self.evaluate(m.group(1), current))
            except FormulaError as exc:
                self.diagnostics.warning(
                    f"sub-expression {m.group(1)!r} failed: {exc.msg}", node.mark
                )
                return ""

        return _SUBEXPRESSION.sub(substitute, text)


def patch_object(
    record_type: type,
    instance: Any,
    mapping: MappingNode,
    scope: Scope | None = None,
    bindings: Mapping[str, Any] | None = None,
) -> Any:
    """Apply ``mapping`` to ``instance`` using a default scope."""
    patcher = ObjectPatcher(scope or Scope())
    with patcher.bound(bindings or {}):
        return patcher.patch_object(record_type, instance, mapping)


def patch_collection(
    items: MutableSequence,
    item_type: Any,
    node: Node,
    scope: Scope | None = None,
    bindings: Mapping[str, Any] | None = None,
) -> Any:
    """Patch a standalone list whose elements are ``item_type``."""
    shape = shape_of(list[item_type])
    patcher = ObjectPatcher(scope or Scope())
    with patcher.bound(bindings or {}):
        return patcher.patch_collection(shape, items, node)
