"""Exception hierarchy.

Authoring errors (``FormulaError`` and ``PatchError`` subclasses) are raised
where they are detected and caught at the instruction boundary, where they
are reported with their document position and only that instruction is
skipped. ``RegistryError`` marks a programmer-level contract violation and
aborts the whole pass for one definition type.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .documents import Mark


class DefpatchError(Exception):
    """Base class; ``mark`` locates the offending document node when known."""

    def __init__(self, msg: str, mark: Mark | None = None):
        super().__init__(msg)
        self.msg = msg
        self.mark = mark

    def at(self, mark: Mark | None) -> DefpatchError:
        """Attach ``mark`` unless a more precise one is already set."""
        if self.mark is None:
            self.mark = mark
        return self

    def __str__(self) -> str:
        if self.mark is None:
            return self.msg
        return f"{self.mark}: {self.msg}"


class FormulaError(DefpatchError):
    pass


class FormulaSyntaxError(FormulaError):
    """Unparseable formula text; ``start``/``end`` delimit the offending span."""

    def __init__(self, msg: str, text: str, start: int, end: int | None = None):
        self.text = text
        self.start = start
        self.end = end if end is not None else min(start + 1, len(text))
        super().__init__(f"col {start + 1}: {msg} in {text!r}")

    @property
    def span(self) -> str:
        return self.text[self.start : self.end]


class UnresolvedSymbol(FormulaError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name} not found")


class FormulaEvaluationError(FormulaError):
    pass


class PatchError(DefpatchError):
    pass


class TypeMismatch(PatchError):
    pass


class IdentityConflict(PatchError):
    pass


class StructuralError(PatchError):
    pass


class RegistryError(DefpatchError):
    pass
