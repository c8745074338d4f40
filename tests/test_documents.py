"""Tests for YAML document loading and instruction reading."""

import pytest

from defpatch import (
    InstructionKind,
    MappingNode,
    ScalarNode,
    SequenceNode,
    StructuralError,
    load_documents,
    load_file,
    read_instruction,
)
from defpatch.instructions import is_delete

DOC = """\
Resource:
  - add: { Id: 10, Name: Foo }
  - update:
      Id: 10
      $Name: '"Foo" .. "Bar"'
"""


class TestLoadDocuments:
    def test_sections(self):
        [doc] = load_documents(DOC, "mod.yml")
        [(key, body)] = doc.sections
        assert key.text == "Resource"
        assert isinstance(body, SequenceNode)
        assert len(body) == 2

    def test_marks_are_one_based(self):
        [doc] = load_documents(DOC, "mod.yml")
        _, body = doc.sections[0]
        update = body.items[1]
        assert str(update.mark) == "mod.yml:3:5"

    def test_scalars_keep_text_and_tag(self):
        [doc] = load_documents(DOC)
        add = doc.sections[0][1].items[0].get("add")
        assert isinstance(add, MappingNode)
        assert add.get("Id") == ScalarNode("10", add.get("Id").mark, "int")
        assert add.keys() == ["Id", "Name"]

    def test_null_scalar(self, node):
        value = node("x: ~").get("x")
        assert value.value is None
        assert value.text == ""

    def test_multiple_documents(self):
        docs = load_documents("A: []\n---\nB: []\n")
        assert [d.sections[0][0].text for d in docs] == ["A", "B"]

    def test_sequence_root(self):
        [doc] = load_documents("- A: []\n- B: []\n")
        assert [k.text for k, _ in doc.sections] == ["A", "B"]

    def test_empty_document(self):
        assert load_documents("") == []
        assert load_documents("---\n~\n")[0].sections == ()

    def test_scalar_root(self):
        with pytest.raises(StructuralError, match="mapping of definition types"):
            load_documents("just text")

    def test_invalid_yaml(self):
        with pytest.raises(StructuralError, match="invalid YAML") as exc:
            load_documents("A: [1, 2\n", "bad.yml")
        assert exc.value.mark.source == "bad.yml"

    def test_load_file(self, tmp_path):
        path = tmp_path / "patch.yaml"
        path.write_text(DOC, encoding="utf-8")
        [doc] = load_file(path)
        assert doc.source == str(path)

    def test_without(self, node):
        mapping = node("{Id: 1, Name: a, $where: x}")
        assert mapping.without("Id", "$where").keys() == ["Name"]


class TestReadInstruction:
    def test_kinds(self, node):
        assert read_instruction(node("{update-all: {}}")).kind is InstructionKind.UPDATE_ALL
        assert read_instruction(node("{Remove: 3}")).kind is InstructionKind.REMOVE

    def test_mark_points_at_key(self, node):
        instruction = read_instruction(node("\n  add: {Id: 1}"))
        assert (instruction.mark.line, instruction.mark.column) == (2, 3)

    def test_not_a_mapping(self, node):
        with pytest.raises(StructuralError, match="single-key mapping"):
            read_instruction(node("add"))

    def test_several_keys(self, node):
        with pytest.raises(StructuralError, match="exactly one key, got add, update"):
            read_instruction(node("{add: {}, update: {}}"))

    def test_unknown_kind(self, node):
        with pytest.raises(StructuralError, match="unknown instruction 'insert'"):
            read_instruction(node("{insert: {}}"))

    def test_mapping_payload_required(self, node):
        instruction = read_instruction(node("{add: 3}"))
        with pytest.raises(StructuralError, match="add expects a mapping"):
            instruction.mapping()

    def test_is_delete(self, node):
        assert is_delete(node("Delete()"))
        assert not is_delete(node("'delete'"))
        assert not is_delete(node("[]"))
