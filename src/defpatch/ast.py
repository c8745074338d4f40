"""AST nodes for patch formulas."""

from typing import Annotated, Any
from typing import Literal as TypingLiteral

from pydantic import BaseModel, Field


# Expressions - using discriminated union for type safety
class Literal(BaseModel):
    type: TypingLiteral["literal"] = "literal"
    value: Any  # float, str, bool


class Symbol(BaseModel):
    """Symbol path (e.g., 'value' or 'def.Resources.Count').

    The first segment is looked up in the scope chain, the rest are member
    accesses applied at evaluation time.
    """

    type: TypingLiteral["symbol"] = "symbol"
    path: list[str]


class BinOp(BaseModel):
    type: TypingLiteral["binop"] = "binop"
    # ^ * / % repeat versions + - .. > < >= <= contains starts ends matches is and or
    op: str
    left: "Expr"
    right: "Expr"


class UnaryOp(BaseModel):
    type: TypingLiteral["unaryop"] = "unaryop"
    op: str  # -, +, not
    operand: "Expr"


class Call(BaseModel):
    """Builtin function call (e.g., round(x), txt(value))."""

    type: TypingLiteral["call"] = "call"
    func: str
    args: list["Expr"]


class Replace(BaseModel):
    """Regex substitution: ``subject replace pattern with replacement``."""

    type: TypingLiteral["replace"] = "replace"
    subject: "Expr"
    pattern: "Expr"
    replacement: "Expr"


# Expression union type
Expr = Annotated[
    Literal | Symbol | BinOp | UnaryOp | Call | Replace,
    Field(discriminator="type"),
]


# Rebuild models for forward references
BinOp.model_rebuild()
UnaryOp.model_rebuild()
Call.model_rebuild()
Replace.model_rebuild()
