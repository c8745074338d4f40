"""Token definitions and tokenizer for patch formulas.

Everything here is immutable and shared by every compilation.
"""

import math
import re
from dataclasses import dataclass

from .errors import FormulaSyntaxError


@dataclass(frozen=True)
class Token:
    type: str
    value: str
    start: int
    end: int


# Order matters: multi-word operators before identifiers, ">=" before ">".
TOKEN_PATTERNS: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"\s+"), "WS"),
    (re.compile(r"[0-9]*\.?[0-9]+(?:[eE][-+]?[0-9]+)?"), "NUMBER"),
    (re.compile(r'"(?:[^"\\]|\\.)*"', re.DOTALL), "STRING"),
    (re.compile(r"is\s+not\b", re.IGNORECASE), "IS_NOT"),
    (re.compile(r"and\s+not\b", re.IGNORECASE), "AND_NOT"),
    (re.compile(r"or\s+not\b", re.IGNORECASE), "OR_NOT"),
    (re.compile(r"in\s+versions\b", re.IGNORECASE), "IN_VERSIONS"),
    (re.compile(r"[A-Za-z_π][A-Za-z0-9_]*"), "IDENT"),
    (re.compile(r"\.\."), "CONCAT"),
    (re.compile(r">="), "GE"),
    (re.compile(r"<="), "LE"),
    (re.compile(r">"), "GT"),
    (re.compile(r"<"), "LT"),
    (re.compile(r"\+"), "PLUS"),
    (re.compile(r"-"), "MINUS"),
    (re.compile(r"\*"), "STAR"),
    (re.compile(r"/"), "SLASH"),
    (re.compile(r"%"), "PERCENT"),
    (re.compile(r"\^"), "CARET"),
    (re.compile(r"\("), "LPAREN"),
    (re.compile(r"\)"), "RPAREN"),
    (re.compile(r","), "COMMA"),
    (re.compile(r"\."), "DOT"),
)

# Identifiers that act as operators, matched case-insensitively.
KEYWORDS = frozenset(
    {
        "and",
        "or",
        "is",
        "contains",
        "starts",
        "ends",
        "matches",
        "replace",
        "with",
        "repeat",
    }
)

CONSTANTS = {
    "pi": math.pi,
    "π": math.pi,
    "e": math.e,
    "true": True,
    "false": False,
    "nan": math.nan,
    "inf": math.inf,
}

# name -> argument count
FUNCTIONS = {
    "abs": 1,
    "sin": 1,
    "cos": 1,
    "asin": 1,
    "acos": 1,
    "tan": 1,
    "atan2": 2,
    "pow": 2,
    "sqrt": 1,
    "exp": 1,
    "log": 1,
    "round": 1,
    "floor": 1,
    "ceil": 1,
    "ceiling": 1,
    "trunc": 1,
    "isinf": 1,
    "isnan": 1,
    "count": 1,
    "num": 1,
    "txt": 1,
    "bool": 1,
    "type": 1,
    "v": 1,
}


def tokenize(text: str) -> list[Token]:
    """Split formula text into tokens, dropping whitespace."""
    tokens: list[Token] = []
    pos = 0
    while pos < len(text):
        for pattern, ttype in TOKEN_PATTERNS:
            m = pattern.match(text, pos)
            if m:
                value = m.group(0)
                if ttype == "IDENT" and value.lower() in KEYWORDS:
                    ttype = value.upper()
                if ttype != "WS":
                    tokens.append(Token(ttype, value, pos, m.end()))
                pos = m.end()
                break
        else:
            if text[pos] == '"':
                raise FormulaSyntaxError("unterminated string", text, pos, len(text))
            raise FormulaSyntaxError(f"unexpected char {text[pos]!r}", text, pos)

    tokens.append(Token("EOF", "", len(text), len(text)))
    return tokens
