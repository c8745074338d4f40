"""Patch interpreter: applies instruction lists to definition collections.

Each instruction runs on its own. An authoring error (bad formula, wrong
field type, missing target, malformed shape) is reported with its document
position and only that instruction is skipped. Indexed collections have
their identity index rebuilt once, after the whole batch, whatever happened
inside it.
"""

import copy
from collections.abc import Iterable, Mapping, MutableSequence
from dataclasses import dataclass
from typing import Any

from .definitions import is_indexed, locate, next_free_id
from .diagnostics import Diagnostics
from .documents import MappingNode, Node, ScalarNode, SequenceNode
from .errors import (
    FormulaError,
    IdentityConflict,
    PatchError,
    StructuralError,
    TypeMismatch,
)
from .instructions import Instruction, InstructionKind, is_delete, read_instruction
from .logging import get_logger
from .patcher import ObjectPatcher
from .runtime import to_bool, to_number, to_text
from .scope import Scope, SharedVariables
from .shapes import RecordShape, ShapeKind, coerce_scalar, describe

logger = get_logger(__name__)

WHERE = "$where"


@dataclass
class PatchOutcome:
    """Counts for one batch; ``aborted`` is set when a test failed."""

    applied: int = 0
    skipped: int = 0
    aborted: bool = False


@dataclass
class _Target:
    """The collection a batch runs against."""

    record_type: type
    shape: RecordShape
    collection: MutableSequence
    id_field: str

    @property
    def indexed(self) -> bool:
        return is_indexed(self.collection)


class PatchInterpreter:
    """Runs patch instructions against collections and dynamic records."""

    def __init__(
        self,
        store: SharedVariables | None = None,
        globals_: dict[str, Any] | None = None,
        diagnostics: Diagnostics | None = None,
        identity_fields: Mapping[type, str] | None = None,
    ):
        self.scope = Scope(store, globals_)
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        self.patcher = ObjectPatcher(self.scope, self.diagnostics, identity_fields)

    @property
    def store(self) -> SharedVariables:
        return self.scope.store

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def patch_definitions(
        self,
        record_type: type,
        collection: MutableSequence,
        instructions: Iterable[Node],
        id_field: str | None = None,
    ) -> PatchOutcome:
        """Apply ``instructions`` to ``collection`` in order."""
        shape = describe(record_type)
        target = _Target(record_type, shape, collection, shape.identity_field(id_field))
        self.patcher.identity_fields.setdefault(record_type, target.id_field)
        outcome = PatchOutcome()
        try:
            self._run(instructions, outcome, lambda ins: self._dispatch(target, ins))
        finally:
            if target.indexed:
                try:
                    collection.rebuild_indexes()
                except Exception as exc:
                    self.diagnostics.unhandled(exc, type_name=shape.name)
        return outcome

    def patch_dynamic_definition(
        self,
        record_type: type,
        record: Any,
        instructions: Iterable[Node],
    ) -> PatchOutcome:
        """Apply ``instructions`` to a single non-list definition record."""
        outcome = PatchOutcome()
        self._run(
            instructions,
            outcome,
            lambda ins: self._dispatch_dynamic(record_type, record, ins),
        )
        return outcome

    def _run(self, instructions, outcome: PatchOutcome, dispatch) -> None:
        if isinstance(instructions, SequenceNode):
            instructions = instructions.items
        for node in instructions:
            instruction = None
            try:
                instruction = read_instruction(node)
                passed = dispatch(instruction)
            except (FormulaError, PatchError) as exc:
                exc.at(node.mark)
                outcome.skipped += 1
                kind = instruction.kind.value if instruction else None
                self.diagnostics.report(exc, instruction=kind)
                continue

            outcome.applied += 1
            mark = instruction.mark
            logger.info(
                "instruction_applied",
                instruction=instruction.kind.value,
                source=mark.source,
                line=mark.line,
                column=mark.column,
            )
            if passed is False:
                outcome.aborted = True
                self.diagnostics.warning("test failed, skipping the rest of the document", mark)
                break

    def _dispatch(self, target: _Target, ins: Instruction) -> bool | None:
        match ins.kind:
            case InstructionKind.STATE:
                self.state(ins)
            case InstructionKind.ADD:
                self.add(target, ins)
            case InstructionKind.TEMPLATE:
                self.template(target, ins)
            case InstructionKind.UPDATE:
                self.update(target, ins)
            case InstructionKind.UPDATE_ALL:
                self.update_all(target, ins)
            case InstructionKind.REMOVE:
                self.remove(target, ins)
            case InstructionKind.REMOVE_ALL:
                self.remove_all(target, ins)
            case InstructionKind.TEST:
                return self.test(ins)
        return None

    def _dispatch_dynamic(self, record_type: type, record: Any, ins: Instruction) -> bool | None:
        match ins.kind:
            case InstructionKind.STATE:
                self.state(ins)
            case InstructionKind.TEST:
                return self.test(ins)
            case InstructionKind.UPDATE:
                mapping = ins.mapping()
                bindings = {"item": record, "def": record}
                if self._where(mapping, bindings):
                    with self.patcher.bound(bindings):
                        self.patcher.patch_object(record_type, record, mapping.without(WHERE))
            case _:
                raise StructuralError(
                    f"{ins.kind.value} is not supported for dynamic definitions", ins.mark
                )
        return None

    # ------------------------------------------------------------------
    # Instructions
    # ------------------------------------------------------------------

    def state(self, ins: Instruction) -> None:
        """Set, update or delete shared variables."""
        for key, node in ins.mapping().entries:
            name = key.text.removeprefix("$")
            if is_delete(node):
                if not self.store.try_remove(name):
                    raise IdentityConflict(f"cannot delete {name}: it is not set", node.mark)
                continue
            if not isinstance(node, ScalarNode):
                raise StructuralError(f"state {name} expects a formula", node.mark)
            text = node.text
            self.store.add_or_update(
                name,
                lambda: self.scope.evaluate(text, {"value": None}),
                lambda old: self.scope.evaluate(text, {"value": old}),
            )

    def add(self, target: _Target, ins: Instruction) -> Any:
        mapping = ins.mapping()
        identity = self._new_identity(target, mapping)
        record = target.shape.new()
        setattr(record, target.id_field, identity)
        slot = self._free_slot(target, identity, ins)
        rest = mapping.without(target.id_field, "$" + target.id_field)
        self._patch_record(target, record, rest)
        self._place(target, record, slot)
        return record

    def template(self, target: _Target, ins: Instruction) -> Any:
        """Clone an existing definition under a new identity, then patch it."""
        mapping = ins.mapping()
        source_node = mapping.get(target.id_field)
        if source_node is None:
            raise StructuralError(f"template requires {target.id_field}", ins.mark)
        source_id = self._identity_value(target, source_node)
        index = locate(target.collection, target.id_field, source_id)
        if index < 0:
            raise IdentityConflict(f"no {target.shape.name} with {target.id_field} {source_id}")

        new_node = mapping.get("$" + target.id_field)
        if not isinstance(new_node, ScalarNode):
            raise StructuralError(f"template requires ${target.id_field}", ins.mark)
        try:
            identity = self._convert_identity(target, int(new_node.text))
        except ValueError:
            identity = self._allocate(target, new_node.text)

        record = copy.deepcopy(target.collection[index])
        setattr(record, target.id_field, identity)
        slot = self._free_slot(target, identity, ins)
        rest = mapping.without(target.id_field, "$" + target.id_field)
        self._patch_record(target, record, rest)
        self._place(target, record, slot)
        return record

    def update(self, target: _Target, ins: Instruction) -> Any:
        mapping = ins.mapping()
        index = self._find(target, mapping, ins)
        record = target.collection[index]
        rest = mapping.without(target.id_field, "$" + target.id_field)
        self._patch_record(target, record, rest)
        logger.debug(
            "definition_updated",
            type_name=target.shape.name,
            identity=getattr(record, target.id_field),
        )
        return record

    def update_all(self, target: _Target, ins: Instruction) -> int:
        mapping = ins.mapping()
        if mapping.get(WHERE) is None:
            raise StructuralError("update-all requires $where", ins.mark)
        rest = mapping.without(WHERE)
        patched = 0
        for index in self._select(target, mapping.get(WHERE)):
            self._patch_record(target, target.collection[index], rest)
            patched += 1
        return patched

    def remove(self, target: _Target, ins: Instruction) -> None:
        payload = ins.payload
        if isinstance(payload, ScalarNode):
            identity = self._scalar_identity(target, payload)
            index = self._locate_or_fail(target, identity)
        else:
            index = self._find(target, ins.mapping(), ins)
        self._remove_at(target, index)

    def remove_all(self, target: _Target, ins: Instruction) -> int:
        payload = ins.payload
        if isinstance(payload, MappingNode):
            predicate = payload.get(WHERE)
            if predicate is None:
                raise StructuralError("remove-all requires $where", ins.mark)
        else:
            predicate = payload
        indices = self._select(target, predicate)
        for index in reversed(indices):
            self._remove_at(target, index)
        return len(indices)

    def test(self, ins: Instruction) -> bool:
        """Evaluate each condition; the first false or failing one stops the document."""
        match ins.payload:
            case SequenceNode(items=items):
                conditions = items
            case ScalarNode() as node:
                conditions = (node,)
            case _:
                raise StructuralError("test expects a formula or a list of formulas", ins.mark)

        for node in conditions:
            if not isinstance(node, ScalarNode):
                raise StructuralError("test conditions must be formulas", node.mark)
            try:
                passed = to_bool(self.scope.evaluate(node.text))
            except FormulaError as exc:
                self.diagnostics.report(exc.at(node.mark), instruction="test")
                return False
            if not passed:
                self.diagnostics.info(f"test {node.text!r} is false", node.mark)
                return False
        return True

    def _patch_record(self, target: _Target, record: Any, mapping: MappingNode) -> None:
        bindings = {"item": record, "def": record, "collection": target.collection}
        with self.patcher.bound(bindings):
            self.patcher.patch_object(target.record_type, record, mapping)

    # ------------------------------------------------------------------
    # Identities
    # ------------------------------------------------------------------

    def _convert_identity(self, target: _Target, value: Any) -> Any:
        shape = target.shape.fields[target.id_field]
        try:
            if shape.kind == ShapeKind.SCALAR:
                return coerce_scalar(value, shape.type)
            if shape.kind == ShapeKind.TEXT:
                return to_text(value)
        except (FormulaError, TypeMismatch) as exc:
            raise TypeMismatch(f"invalid {target.id_field} {value!r}: {exc.msg}") from exc
        return value

    def _identity_value(self, target: _Target, node: Node) -> Any:
        """Literal or formula identity; formulas that fail fall back to the text."""
        if not isinstance(node, ScalarNode):
            raise StructuralError(f"{target.id_field} must be a scalar", node.mark)
        try:
            value = self.scope.evaluate(node.text)
        except FormulaError:
            value = node.text
        return self._convert_identity(target, value)

    def _scalar_identity(self, target: _Target, node: ScalarNode) -> Any:
        """Identity from a bare scalar, where ``$name`` reads a shared variable."""
        text = node.text.strip()
        if text.startswith("$"):
            return self._variable_identity(target, text[1:], node)
        return self._identity_value(target, node)

    def _variable_identity(self, target: _Target, name: str, node: Node) -> Any:
        try:
            value = self.store[name]
        except KeyError:
            raise IdentityConflict(f"shared variable {name} is not set", node.mark) from None
        return self._convert_identity(target, value)

    def _allocate(self, target: _Target, name: str) -> Any:
        """Get ``name`` from the store, allocating the next free identity if unset."""
        value = self.store.get_or_add(
            name, lambda: next_free_id(target.collection, target.id_field)
        )
        return self._convert_identity(target, value)

    def _new_identity(self, target: _Target, mapping: MappingNode) -> Any:
        indirect = mapping.get("$" + target.id_field)
        if indirect is not None:
            if not isinstance(indirect, ScalarNode):
                raise StructuralError(f"${target.id_field} must name a variable", indirect.mark)
            return self._allocate(target, indirect.text.strip())
        direct = mapping.get(target.id_field)
        if direct is None:
            raise StructuralError(f"add requires {target.id_field} or ${target.id_field}", mapping.mark)
        return self._identity_value(target, direct)

    def _find(self, target: _Target, mapping: MappingNode, ins: Instruction) -> int:
        indirect = mapping.get("$" + target.id_field)
        if indirect is not None:
            if not isinstance(indirect, ScalarNode):
                raise StructuralError(f"${target.id_field} must name a variable", indirect.mark)
            identity = self._variable_identity(target, indirect.text.strip(), indirect)
        else:
            direct = mapping.get(target.id_field)
            if direct is None:
                raise StructuralError(
                    f"{ins.kind.value} requires {target.id_field} or ${target.id_field}", ins.mark
                )
            identity = self._identity_value(target, direct)
        return self._locate_or_fail(target, identity)

    def _locate_or_fail(self, target: _Target, identity: Any) -> int:
        index = locate(target.collection, target.id_field, identity)
        if index < 0:
            raise IdentityConflict(f"no {target.shape.name} with {target.id_field} {identity}")
        return index

    # ------------------------------------------------------------------
    # Placement and selection
    # ------------------------------------------------------------------

    def _free_slot(self, target: _Target, identity: Any, ins: Instruction) -> int | None:
        """Slot a new record goes into: a reusable tombstone, or None to append.

        Raises ``IdentityConflict`` when an indexed collection already holds a
        live record with ``identity``.
        """
        if not target.indexed:
            return None
        if locate(target.collection, target.id_field, identity) >= 0:
            raise IdentityConflict(
                f"{target.shape.name} {identity} already exists", ins.mark
            )
        index = target.collection.get_index(identity)
        if index < 0 and isinstance(identity, int) and 0 <= identity < len(target.collection):
            index = identity
        if 0 <= index < len(target.collection) and target.collection[index] is None:
            return index
        return None

    def _place(self, target: _Target, record: Any, slot: int | None) -> None:
        if slot is None:
            target.collection.append(record)
        else:
            target.collection[slot] = record

    def _remove_at(self, target: _Target, index: int) -> None:
        if target.indexed:
            target.collection.tombstone(index)
        else:
            del target.collection[index]

    def _where(self, mapping: MappingNode, bindings: dict[str, Any]) -> bool:
        predicate = mapping.get(WHERE)
        if not isinstance(predicate, ScalarNode):
            raise StructuralError("$where is required", mapping.mark)
        try:
            return to_bool(self.scope.evaluate(predicate.text, bindings))
        except FormulaError as exc:
            raise exc.at(predicate.mark)

    def _select(self, target: _Target, predicate: Node) -> list[int]:
        """Positions of live records for which ``predicate`` is true."""
        if not isinstance(predicate, ScalarNode):
            raise StructuralError("a predicate must be a formula", predicate.mark)
        selected = []
        for index, record in enumerate(list(target.collection)):
            if record is None:
                continue
            identity = getattr(record, target.id_field, None)
            try:
                value = to_number(identity)
            except FormulaError:
                value = identity
            bindings = {
                "item": record,
                "def": record,
                "value": value,
                "collection": target.collection,
            }
            try:
                if to_bool(self.scope.evaluate(predicate.text, bindings)):
                    selected.append(index)
            except FormulaError as exc:
                raise exc.at(predicate.mark)
        return selected


def patch_definitions(
    record_type: type,
    collection: MutableSequence,
    instructions: Iterable[Node],
    id_field: str | None = None,
    diagnostics: Diagnostics | None = None,
) -> PatchOutcome:
    """Patch ``collection`` with the process-wide store and globals."""
    return PatchInterpreter(diagnostics=diagnostics).patch_definitions(
        record_type, collection, instructions, id_field
    )


def patch_dynamic_definition(
    record_type: type,
    record: Any,
    instructions: Iterable[Node],
    diagnostics: Diagnostics | None = None,
) -> PatchOutcome:
    """Patch a single non-list record with the process-wide store and globals."""
    return PatchInterpreter(diagnostics=diagnostics).patch_dynamic_definition(
        record_type, record, instructions
    )
