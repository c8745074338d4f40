"""Patch document model.

Documents are read with PyYAML's composer so every node keeps its source
position. Only three node kinds are used downstream: scalars, sequences and
mappings. Nodes are immutable, so applying a document never alters it.

Example document::

    ResourceDefinition:
      - add: { Id: 10, Name: Foo }
      - update: { Id: 10, $Name: '"Foo" .. "Bar"' }
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from .errors import StructuralError


@dataclass(frozen=True)
class Mark:
    """1-based source position of a node."""

    source: str
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.source}:{self.line}:{self.column}"


@dataclass(frozen=True)
class ScalarNode:
    value: str | None  # None for YAML null
    mark: Mark
    tag: str = "str"  # resolved YAML tag: str, int, float, bool, null

    @property
    def text(self) -> str:
        return "" if self.value is None else self.value


@dataclass(frozen=True)
class SequenceNode:
    items: tuple[Node, ...]
    mark: Mark

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class MappingNode:
    entries: tuple[tuple[ScalarNode, Node], ...]
    mark: Mark

    def __len__(self) -> int:
        return len(self.entries)

    def keys(self) -> list[str]:
        return [key.text for key, _ in self.entries]

    def get(self, key: str) -> Node | None:
        for k, value in self.entries:
            if k.text == key:
                return value
        return None

    def key_node(self, key: str) -> ScalarNode | None:
        for k, _ in self.entries:
            if k.text == key:
                return k
        return None

    def without(self, *keys: str) -> MappingNode:
        entries = tuple((k, v) for k, v in self.entries if k.text not in keys)
        return MappingNode(entries, self.mark)


Node = ScalarNode | SequenceNode | MappingNode


@dataclass(frozen=True)
class Document:
    """One YAML document: definition-type keys with their instruction lists."""

    source: str
    sections: tuple[tuple[ScalarNode, Node], ...]


def _mark(node: yaml.Node, source: str) -> Mark:
    return Mark(source, node.start_mark.line + 1, node.start_mark.column + 1)


def convert(node: yaml.Node, source: str) -> Node:
    """Convert a composed PyYAML node into the patch node model."""
    mark = _mark(node, source)
    if isinstance(node, yaml.ScalarNode):
        tag = node.tag.rsplit(":", 1)[-1]
        return ScalarNode(None if tag == "null" else node.value, mark, tag)
    if isinstance(node, yaml.SequenceNode):
        return SequenceNode(tuple(convert(item, source) for item in node.value), mark)
    if isinstance(node, yaml.MappingNode):
        entries = []
        for key, value in node.value:
            key = convert(key, source)
            if not isinstance(key, ScalarNode):
                raise StructuralError("mapping keys must be scalars", key.mark)
            entries.append((key, convert(value, source)))
        return MappingNode(tuple(entries), mark)
    raise StructuralError(f"unsupported node {node.id}", mark)


def _sections(root: Node) -> tuple[tuple[ScalarNode, Node], ...]:
    match root:
        case MappingNode(entries=entries):
            return entries
        case SequenceNode(items=items):
            sections: list[tuple[ScalarNode, Node]] = []
            for item in items:
                if not isinstance(item, MappingNode):
                    raise StructuralError("expected a mapping of definition types", item.mark)
                sections.extend(item.entries)
            return tuple(sections)
        case ScalarNode(value=None):
            return ()
    raise StructuralError("expected a mapping of definition types", root.mark)


def load_documents(text: str, source: str = "<string>") -> list[Document]:
    """Parse a YAML stream into documents.

    Raises ``StructuralError`` for YAML syntax errors and for document roots
    that are neither a mapping nor a sequence of mappings.
    """
    try:
        roots = list(yaml.compose_all(text, Loader=yaml.SafeLoader))
    except yaml.MarkedYAMLError as exc:
        mark = None
        if exc.problem_mark is not None:
            mark = Mark(source, exc.problem_mark.line + 1, exc.problem_mark.column + 1)
        raise StructuralError(f"invalid YAML: {exc.problem}", mark) from exc
    except yaml.YAMLError as exc:
        raise StructuralError(f"invalid YAML: {exc}") from exc

    documents = []
    for root in roots:
        if root is None:
            continue
        documents.append(Document(source, _sections(convert(root, source))))
    return documents


def load_file(path: str | Path) -> list[Document]:
    path = Path(path)
    return load_documents(path.read_text(encoding="utf-8"), str(path))
