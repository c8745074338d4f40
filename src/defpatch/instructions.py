"""Patch instructions: single-key mappings such as ``{add: {...}}``."""

from dataclasses import dataclass
from enum import Enum

from .documents import Mark, MappingNode, Node, ScalarNode
from .errors import StructuralError

DELETE = "delete()"


class InstructionKind(str, Enum):
    STATE = "state"
    ADD = "add"
    TEMPLATE = "template"
    UPDATE = "update"
    UPDATE_ALL = "update-all"
    REMOVE = "remove"
    REMOVE_ALL = "remove-all"
    TEST = "test"


@dataclass(frozen=True)
class Instruction:
    kind: InstructionKind
    payload: Node
    mark: Mark

    def mapping(self) -> MappingNode:
        """The payload, which must be a mapping for this instruction."""
        if not isinstance(self.payload, MappingNode):
            raise StructuralError(f"{self.kind.value} expects a mapping", self.payload.mark)
        return self.payload


def read_instruction(node: Node) -> Instruction:
    """Read one instruction node; malformed shapes raise ``StructuralError``."""
    if not isinstance(node, MappingNode):
        raise StructuralError("an instruction must be a single-key mapping", node.mark)
    if len(node) != 1:
        keys = ", ".join(node.keys()) or "nothing"
        raise StructuralError(f"an instruction must have exactly one key, got {keys}", node.mark)
    key, payload = node.entries[0]
    try:
        kind = InstructionKind(key.text.strip().lower())
    except ValueError:
        raise StructuralError(f"unknown instruction {key.text!r}", key.mark) from None
    return Instruction(kind, payload, key.mark)


def is_delete(node: Node | None) -> bool:
    """True for the ``delete()`` sentinel scalar."""
    return (
        isinstance(node, ScalarNode)
        and node.value is not None
        and node.value.strip().lower() == DELETE
    )
