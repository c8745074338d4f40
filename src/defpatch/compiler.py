"""Compiler: turns formula text into a zero-argument evaluator.

The parsed AST is walked once and folded into nested closures. Each closure
carries the static kind of its result so coercions are only inserted where
an operand's kind differs from what the operator needs.

Symbols are resolved when the formula is compiled: the leftmost identifier
of a path is looked up in ``scope`` (any mapping, usually a ``ChainMap`` of
lookup providers) and its current value captured. Member access along the
rest of the path happens at evaluation time.
"""

import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from packaging.version import Version

from . import ast, runtime
from .errors import DefpatchError, FormulaEvaluationError, UnresolvedSymbol
from .parser import parse


class Kind(Enum):
    NUMBER = "number"
    TEXT = "text"
    BOOLEAN = "boolean"
    VERSION = "version"
    ANY = "any"


@dataclass(frozen=True)
class Compiled:
    fn: Callable[[], Any]
    kind: Kind


CONVERTERS: dict[Kind, Callable[[Any], Any]] = {
    Kind.NUMBER: runtime.to_number,
    Kind.TEXT: runtime.to_text,
    Kind.BOOLEAN: runtime.to_bool,
    Kind.VERSION: runtime.to_version,
}


def kind_of(value: Any) -> Kind:
    # bool first: it is an int subclass
    if isinstance(value, bool):
        return Kind.BOOLEAN
    if isinstance(value, float):
        return Kind.NUMBER
    if isinstance(value, str):
        return Kind.TEXT
    if isinstance(value, Version):
        return Kind.VERSION
    return Kind.ANY


def _const(value: Any) -> Callable[[], Any]:
    return lambda: value


def _coerce(c: Compiled, kind: Kind) -> Callable[[], Any]:
    if c.kind is kind:
        return c.fn
    convert = CONVERTERS[kind]
    fn = c.fn
    return lambda: convert(fn())


class FormulaCompiler:
    """Compiles one AST against one scope."""

    def __init__(self, scope: Mapping[str, Any]):
        self.scope = scope

    def compile(self, expr: ast.Expr) -> Compiled:
        match expr:
            case ast.Literal(value=v):
                return Compiled(_const(v), kind_of(v))

            case ast.Symbol(path=[head, *rest]):
                try:
                    root = self.scope[head]
                except KeyError:
                    raise UnresolvedSymbol(head) from None
                if not rest:
                    return Compiled(_const(root), kind_of(root))
                return Compiled(self._member_path(root, rest), Kind.ANY)

            case ast.UnaryOp(op="not", operand=operand):
                fn = _coerce(self.compile(operand), Kind.BOOLEAN)
                return Compiled(lambda: not fn(), Kind.BOOLEAN)

            case ast.UnaryOp(op="-", operand=operand):
                fn = _coerce(self.compile(operand), Kind.NUMBER)
                return Compiled(lambda: -fn(), Kind.NUMBER)

            case ast.UnaryOp(op="+", operand=operand):
                return Compiled(_coerce(self.compile(operand), Kind.NUMBER), Kind.NUMBER)

            case ast.BinOp(op=op, left=left, right=right):
                return self._binop(op, self.compile(left), self.compile(right))

            case ast.Replace(subject=subject, pattern=pattern, replacement=replacement):
                s = _coerce(self.compile(subject), Kind.TEXT)
                p = _coerce(self.compile(pattern), Kind.TEXT)
                r = _coerce(self.compile(replacement), Kind.TEXT)
                return Compiled(lambda: runtime.replace(s(), p(), r()), Kind.TEXT)

            case ast.Call(func=func, args=args):
                return self._call(func, [self.compile(a) for a in args])

            case _:
                raise FormulaEvaluationError(f"unknown expr type: {type(expr)}")

    def _member_path(self, root: Any, names: list[str]) -> Callable[[], Any]:
        def fn() -> Any:
            value = root
            for name in names:
                value = runtime.member(value, name)
            return value

        return fn

    def _binop(self, op: str, left: Compiled, right: Compiled) -> Compiled:
        match op:
            case "+" | "-" | "*" | "/" | "%" | "^":
                a = _coerce(left, Kind.NUMBER)
                b = _coerce(right, Kind.NUMBER)
                return Compiled(_ARITHMETIC[op](a, b), Kind.NUMBER)

            case "..":
                a = _coerce(left, Kind.TEXT)
                b = _coerce(right, Kind.TEXT)
                return Compiled(lambda: a() + b(), Kind.TEXT)

            case ">" | "<" | ">=" | "<=":
                if left.kind is Kind.NUMBER and right.kind is Kind.NUMBER:
                    a, b = left.fn, right.fn
                    return Compiled(_NUMERIC_COMPARE[op](a, b), Kind.BOOLEAN)
                a, b = left.fn, right.fn
                return Compiled(lambda: runtime.compare(op, a(), b()), Kind.BOOLEAN)

            case "contains":
                a, b = left.fn, right.fn
                return Compiled(lambda: runtime.contains(a(), b()), Kind.BOOLEAN)

            case "starts" | "ends" | "matches":
                a = _coerce(left, Kind.TEXT)
                b = _coerce(right, Kind.TEXT)
                test = {
                    "starts": str.startswith,
                    "ends": str.endswith,
                    "matches": runtime.matches,
                }[op]
                return Compiled(lambda: test(a(), b()), Kind.BOOLEAN)

            case "repeat":
                a = _coerce(left, Kind.TEXT)
                b = _coerce(right, Kind.NUMBER)
                return Compiled(lambda: runtime.repeat(a(), b()), Kind.TEXT)

            case "versions":
                a = _coerce(left, Kind.VERSION)
                b = _coerce(right, Kind.TEXT)
                return Compiled(lambda: runtime.version_in_range(a(), b()), Kind.BOOLEAN)

            case "is":
                a, b = left.fn, right.fn
                if left.kind is right.kind and left.kind is not Kind.ANY:
                    return Compiled(lambda: a() == b(), Kind.BOOLEAN)
                return Compiled(lambda: runtime.equals(a(), b()), Kind.BOOLEAN)

            case "and":
                a = _coerce(left, Kind.BOOLEAN)
                b = _coerce(right, Kind.BOOLEAN)
                return Compiled(lambda: a() and b(), Kind.BOOLEAN)

            case "or":
                a = _coerce(left, Kind.BOOLEAN)
                b = _coerce(right, Kind.BOOLEAN)
                return Compiled(lambda: a() or b(), Kind.BOOLEAN)

            case _:
                raise FormulaEvaluationError(f"unknown op: {op}")

    def _call(self, func: str, args: list[Compiled]) -> Compiled:
        match func:
            case "num":
                return Compiled(_coerce(args[0], Kind.NUMBER), Kind.NUMBER)
            case "txt":
                return Compiled(_coerce(args[0], Kind.TEXT), Kind.TEXT)
            case "bool":
                return Compiled(_coerce(args[0], Kind.BOOLEAN), Kind.BOOLEAN)
            case "v":
                return Compiled(_coerce(args[0], Kind.VERSION), Kind.VERSION)
            case "type":
                fn = args[0].fn
                return Compiled(lambda: runtime.type_name(fn()), Kind.TEXT)
            case "count":
                fn = args[0].fn
                return Compiled(lambda: runtime.count(fn()), Kind.NUMBER)
            case "isinf" | "isnan":
                test = math.isinf if func == "isinf" else math.isnan
                fn = _coerce(args[0], Kind.NUMBER)
                return Compiled(lambda: test(fn()), Kind.BOOLEAN)
            case _ if func in runtime.MATH:
                math_fn = runtime.MATH[func]
                fns = [_coerce(a, Kind.NUMBER) for a in args]
                return Compiled(lambda: math_fn(*(f() for f in fns)), Kind.NUMBER)
            case _:
                raise FormulaEvaluationError(f"unknown function: {func}")


def _arith(fn: Callable[[float, float], float]):
    def build(a: Callable[[], float], b: Callable[[], float]) -> Callable[[], float]:
        return lambda: fn(a(), b())

    return build


_ARITHMETIC = {
    "+": _arith(lambda x, y: x + y),
    "-": _arith(lambda x, y: x - y),
    "*": _arith(lambda x, y: x * y),
    "/": _arith(runtime.divide),
    "%": _arith(runtime.modulo),
    "^": _arith(runtime.power),
}

_NUMERIC_COMPARE = {
    ">": _arith(lambda x, y: x > y),
    "<": _arith(lambda x, y: x < y),
    ">=": _arith(lambda x, y: x >= y),
    "<=": _arith(lambda x, y: x <= y),
}


def compile_formula(text: str, scope: Mapping[str, Any] | None = None) -> Callable[[], Any]:
    """Compile ``text`` against ``scope`` into a zero-argument evaluator.

    Raises ``FormulaSyntaxError`` or ``UnresolvedSymbol`` immediately. The
    evaluator raises ``FormulaEvaluationError`` for runtime failures.
    """
    compiled = FormulaCompiler(scope if scope is not None else {}).compile(parse(text))
    fn = compiled.fn

    def evaluate() -> Any:
        try:
            return fn()
        except DefpatchError:
            raise
        except Exception as exc:
            raise FormulaEvaluationError(f"{text!r}: {exc}") from exc

    return evaluate


def evaluate(text: str, scope: Mapping[str, Any] | None = None) -> Any:
    """Compile and run ``text`` once."""
    return compile_formula(text, scope)()
