"""Tests for the patch document checker and its CLI."""

import pytest

from defpatch.validate import main, validate_file

GOOD = """\
Resource:
  - state: { bonus: 2 }
  - add: { Id: 10, Name: Foo, Parts: { '(item.Amount > 1)': { $Amount: value / 2 } } }
  - update: { Id: 10, $Value: value * bonus }
  - update-all: { $where: item.Value > 3, Value: 3 }
  - remove: $victim
  - remove-all: value > 5
  - test: [ 'v("1.2") in versions "[1.0,2.0)"', 'true' ]
"""


def write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


class TestValidateFile:
    def test_clean_file(self, tmp_path):
        assert validate_file(write(tmp_path, "good.yml", GOOD)) == []

    def test_formula_syntax_errors(self, tmp_path):
        path = write(
            tmp_path,
            "bad.yml",
            "Resource:\n"
            "  - update: { Id: 1, $Value: value * }\n"
            "  - remove-all: { $where: '\"open' }\n",
        )
        errors = validate_file(path)
        assert len(errors) == 2
        assert errors[0].startswith(f"{path}:2:")
        assert "unexpected end of formula" in errors[0]
        assert "unterminated string" in errors[1]

    def test_predicate_keys_are_checked(self, tmp_path):
        path = write(tmp_path, "p.yml", "Resource:\n  - update: { Id: 1, Parts: { '(>)': {} } }\n")
        [error] = validate_file(path)
        assert "unexpected" in error

    def test_instruction_shapes(self, tmp_path):
        path = write(
            tmp_path,
            "shapes.yml",
            "Resource:\n"
            "  - insert: {}\n"
            "  - add: 3\n"
            "  - update-all: { Value: 1 }\n"
            "  - test: [ [1] ]\n",
        )
        errors = validate_file(path)
        assert len(errors) == 4
        assert "unknown instruction 'insert'" in errors[0]
        assert "add expects a mapping" in errors[1]
        assert "update-all requires $where" in errors[2]
        assert "test conditions must be formulas" in errors[3]

    def test_delete_is_not_a_formula(self, tmp_path):
        path = write(tmp_path, "d.yml", "Resource:\n  - state: { x: delete() }\n")
        assert validate_file(path) == []

    def test_section_must_be_a_list(self, tmp_path):
        [error] = validate_file(write(tmp_path, "s.yml", "Resource: 3\n"))
        assert "expects a list of instructions" in error

    def test_invalid_yaml(self, tmp_path):
        [error] = validate_file(write(tmp_path, "y.yml", "Resource: [\n"))
        assert "invalid YAML" in error


class TestMain:
    def test_no_arguments(self, capsys):
        with pytest.raises(SystemExit) as exc:
            main([])
        assert exc.value.code == 2
        assert "Usage" in capsys.readouterr().err

    def test_missing_path(self, tmp_path):
        with pytest.raises(SystemExit) as exc:
            main([str(tmp_path / "nope")])
        assert exc.value.code == 1

    def test_clean_directory(self, tmp_path, capsys):
        (tmp_path / "mod").mkdir()
        write(tmp_path / "mod", "a.yml", GOOD)
        write(tmp_path / "mod", "b.yaml", GOOD)
        with pytest.raises(SystemExit) as exc:
            main([str(tmp_path)])
        assert exc.value.code == 0
        out = capsys.readouterr().out
        assert "Checked 2 patch files" in out
        assert "All files pass validation" in out

    def test_errors(self, tmp_path, capsys):
        write(tmp_path, "bad.yml", "Resource:\n  - test: 1 +\n")
        with pytest.raises(SystemExit) as exc:
            main([str(tmp_path)])
        assert exc.value.code == 1
        assert "Found 1 errors" in capsys.readouterr().out
