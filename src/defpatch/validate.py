"""Static checks for patch documents.

Checks document and instruction shapes and the syntax of every formula,
without a registry or any definitions loaded. Symbols are not resolved, since
shared variables only exist while patches run.

CLI usage:
    python -m defpatch.validate <path> [<path> ...]
"""

import sys
from pathlib import Path

from .documents import MappingNode, Node, ScalarNode, SequenceNode, load_file
from .errors import DefpatchError, FormulaSyntaxError
from .instructions import InstructionKind, is_delete, read_instruction
from .parser import parse

PATTERNS = ("*.yml", "*.yaml")

# Mapping keys that are not field names.
_CONTROL_KEYS = {"$add", "$where"}


def _check_formula(text: str, node: Node, errors: list[str]) -> None:
    if is_delete(node):
        return
    try:
        parse(text)
    except FormulaSyntaxError as exc:
        errors.append(f"{node.mark}: {exc.msg}")


def _check_fields(node: Node, errors: list[str]) -> None:
    """Check formula-marked fields and list predicates, recursively."""
    match node:
        case MappingNode(entries=entries):
            for key, value in entries:
                name = key.text.strip()
                if name == "$where" and isinstance(value, ScalarNode):
                    _check_formula(value.text, value, errors)
                elif name.startswith("(") and name.endswith(")"):
                    _check_formula(name[1:-1], key, errors)
                    _check_fields(value, errors)
                elif name.startswith("$") and name not in _CONTROL_KEYS:
                    if isinstance(value, ScalarNode):
                        _check_formula(value.text, value, errors)
                    else:
                        _check_fields(value, errors)
                else:
                    _check_fields(value, errors)
        case SequenceNode(items=items):
            for item in items:
                _check_fields(item, errors)


def _check_instruction(node: Node, errors: list[str]) -> None:
    try:
        instruction = read_instruction(node)
    except DefpatchError as exc:
        errors.append(str(exc))
        return

    payload = instruction.payload
    match instruction.kind:
        case InstructionKind.STATE:
            if not isinstance(payload, MappingNode):
                errors.append(f"{payload.mark}: state expects a mapping")
                return
            for _, value in payload.entries:
                if isinstance(value, ScalarNode):
                    _check_formula(value.text, value, errors)
        case InstructionKind.TEST:
            conditions = payload.items if isinstance(payload, SequenceNode) else (payload,)
            for condition in conditions:
                if isinstance(condition, ScalarNode):
                    _check_formula(condition.text, condition, errors)
                else:
                    errors.append(f"{condition.mark}: test conditions must be formulas")
        case InstructionKind.UPDATE_ALL:
            if not isinstance(payload, MappingNode) or payload.get("$where") is None:
                errors.append(f"{payload.mark}: update-all requires $where")
            _check_fields(payload, errors)
        case InstructionKind.REMOVE_ALL:
            if isinstance(payload, ScalarNode):
                _check_formula(payload.text, payload, errors)
            elif not isinstance(payload, MappingNode) or payload.get("$where") is None:
                errors.append(f"{payload.mark}: remove-all requires $where")
            else:
                _check_fields(payload, errors)
        case InstructionKind.REMOVE if isinstance(payload, ScalarNode):
            pass
        case _:
            if not isinstance(payload, MappingNode):
                errors.append(f"{payload.mark}: {instruction.kind.value} expects a mapping")
                return
            _check_fields(payload, errors)


def validate_file(path: Path) -> list[str]:
    """Validate one patch file. Returns a list of error strings (empty means success)."""
    try:
        documents = load_file(path)
    except DefpatchError as exc:
        return [str(exc) if exc.mark else f"{path}: {exc}"]

    errors: list[str] = []
    for document in documents:
        for key, section in document.sections:
            if not isinstance(section, SequenceNode):
                errors.append(f"{section.mark}: {key.text} expects a list of instructions")
                continue
            for node in section.items:
                _check_instruction(node, errors)
    return errors


def iter_patch_files(path: Path) -> list[Path]:
    if path.is_file():
        return [path]
    found: set[Path] = set()
    for pattern in PATTERNS:
        found.update(path.rglob(pattern))
    return sorted(found)


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for ``python -m defpatch.validate``."""
    args = argv if argv is not None else sys.argv[1:]

    usage = "Usage: python -m defpatch.validate <path> [<path> ...]"

    if not args:
        print(usage, file=sys.stderr)
        sys.exit(2)

    files: list[Path] = []
    for arg in args:
        path = Path(arg)
        if not path.exists():
            print(f"Error: {path} not found", file=sys.stderr)
            sys.exit(1)
        files.extend(iter_patch_files(path))

    errors: list[str] = []
    for path in files:
        errors.extend(validate_file(path))

    print(f"Checked {len(files)} patch files")

    if errors:
        print(f"\nFound {len(errors)} errors:\n")
        for error in errors:
            print(f"  {error}")
        sys.exit(1)
    else:
        print("\nAll files pass validation")
        sys.exit(0)


if __name__ == "__main__":
    main()
