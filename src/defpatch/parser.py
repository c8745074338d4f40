"""Parser for patch formulas.

Grammar (loosest binding first):
    expr        = or_expr
    or_expr     = and_expr (("or" | "or not") and_expr)*
    and_expr    = is_expr (("and" | "and not") is_expr)*
    is_expr     = replace_expr (("is" | "is not") replace_expr)*
    replace_expr= cmp_expr ("replace" cmp_expr "with" cmp_expr)*
    cmp_expr    = add_expr ((">" | "<" | ">=" | "<=" | "contains" | "starts"
                             | "ends" | "matches") add_expr)*
    add_expr    = mul_expr (("+" | "-" | "..") mul_expr)*
    mul_expr    = unary (("*" | "/" | "%" | "repeat" | "in versions") unary)*
    unary       = ("-" | "+") unary | power
    power       = primary ("^" unary)?
    primary     = NUMBER | STRING | CONSTANT | call | path | "(" expr ")"
    call        = NAME "(" [expr ("," expr)*] ")"
    path        = NAME ("." NAME)*
"""

from functools import lru_cache

from . import ast
from .errors import FormulaSyntaxError
from .grammar import CONSTANTS, FUNCTIONS, Token, tokenize
from .strings import unescape


class Parser:
    """Recursive descent parser for a single formula."""

    def __init__(self, text: str, tokens: list[Token]):
        self.text = text
        self.tokens = tokens
        self.pos = 0

    def peek(self, offset: int = 0) -> Token:
        idx = self.pos + offset
        if idx >= len(self.tokens):
            return self.tokens[-1]
        return self.tokens[idx]

    def at(self, *types: str) -> bool:
        return self.peek().type in types

    def consume(self, ttype: str) -> Token:
        tok = self.peek()
        if tok.type != ttype:
            raise self.error(f"expected {ttype}, got {tok.type}", tok)
        self.pos += 1
        return tok

    def match(self, *types: str) -> Token | None:
        if self.at(*types):
            tok = self.peek()
            self.pos += 1
            return tok
        return None

    def error(self, msg: str, tok: Token) -> FormulaSyntaxError:
        end = tok.end if tok.end > tok.start else tok.start + 1
        return FormulaSyntaxError(msg, self.text, tok.start, end)

    def parse_formula(self) -> ast.Expr:
        if self.at("EOF"):
            raise self.error("empty formula", self.peek())
        expr = self.parse_or()
        tok = self.peek()
        if tok.type != "EOF":
            raise self.error(f"unexpected {tok.value!r}", tok)
        return expr

    def parse_or(self) -> ast.Expr:
        left = self.parse_and()
        while tok := self.match("OR", "OR_NOT"):
            right = self.parse_and()
            if tok.type == "OR_NOT":
                right = ast.UnaryOp(op="not", operand=right)
            left = ast.BinOp(op="or", left=left, right=right)
        return left

    def parse_and(self) -> ast.Expr:
        left = self.parse_is()
        while tok := self.match("AND", "AND_NOT"):
            right = self.parse_is()
            if tok.type == "AND_NOT":
                right = ast.UnaryOp(op="not", operand=right)
            left = ast.BinOp(op="and", left=left, right=right)
        return left

    def parse_is(self) -> ast.Expr:
        left = self.parse_replace()
        while tok := self.match("IS", "IS_NOT"):
            right = self.parse_replace()
            left = ast.BinOp(op="is", left=left, right=right)
            if tok.type == "IS_NOT":
                left = ast.UnaryOp(op="not", operand=left)
        return left

    def parse_replace(self) -> ast.Expr:
        subject = self.parse_cmp()
        while self.match("REPLACE"):
            pattern = self.parse_cmp()
            tok = self.peek()
            if not self.match("WITH"):
                raise self.error("expected 'with' after 'replace'", tok)
            replacement = self.parse_cmp()
            subject = ast.Replace(subject=subject, pattern=pattern, replacement=replacement)
        if self.at("WITH"):
            raise self.error("'with' without 'replace'", self.peek())
        return subject

    def parse_cmp(self) -> ast.Expr:
        left = self.parse_add()
        op_map = {
            "GT": ">",
            "LT": "<",
            "GE": ">=",
            "LE": "<=",
            "CONTAINS": "contains",
            "STARTS": "starts",
            "ENDS": "ends",
            "MATCHES": "matches",
        }
        while tok := self.match(*op_map):
            right = self.parse_add()
            left = ast.BinOp(op=op_map[tok.type], left=left, right=right)
        return left

    def parse_add(self) -> ast.Expr:
        left = self.parse_mul()
        op_map = {"PLUS": "+", "MINUS": "-", "CONCAT": ".."}
        while tok := self.match(*op_map):
            right = self.parse_mul()
            left = ast.BinOp(op=op_map[tok.type], left=left, right=right)
        return left

    def parse_mul(self) -> ast.Expr:
        left = self.parse_unary()
        op_map = {
            "STAR": "*",
            "SLASH": "/",
            "PERCENT": "%",
            "REPEAT": "repeat",
            "IN_VERSIONS": "versions",
        }
        while tok := self.match(*op_map):
            right = self.parse_unary()
            left = ast.BinOp(op=op_map[tok.type], left=left, right=right)
        return left

    def parse_unary(self) -> ast.Expr:
        if self.match("MINUS"):
            return ast.UnaryOp(op="-", operand=self.parse_unary())
        if self.match("PLUS"):
            return ast.UnaryOp(op="+", operand=self.parse_unary())
        return self.parse_power()

    def parse_power(self) -> ast.Expr:
        base = self.parse_primary()
        if self.match("CARET"):
            # right-associative, and binds tighter than a sign on its left
            return ast.BinOp(op="^", left=base, right=self.parse_unary())
        return base

    def parse_primary(self) -> ast.Expr:
        if tok := self.match("NUMBER"):
            return ast.Literal(value=float(tok.value))
        if tok := self.match("STRING"):
            try:
                return ast.Literal(value=unescape(tok.value[1:-1]))
            except ValueError as exc:
                raise self.error(f"invalid escape: {exc}", tok) from exc
        if self.at("IDENT"):
            return self.parse_name()
        if self.match("LPAREN"):
            expr = self.parse_or()
            self.consume("RPAREN")
            return expr

        tok = self.peek()
        if tok.type == "EOF":
            raise self.error("unexpected end of formula", tok)
        raise self.error(f"unexpected {tok.value!r}", tok)

    def parse_name(self) -> ast.Expr:
        """Parse a constant, function call or symbol path."""
        tok = self.consume("IDENT")
        name = tok.value
        lowered = name.lower()

        if self.at("LPAREN"):
            self.consume("LPAREN")
            args = []
            if not self.at("RPAREN"):
                args.append(self.parse_or())
                while self.match("COMMA"):
                    args.append(self.parse_or())
            self.consume("RPAREN")
            if lowered in FUNCTIONS:
                arity = FUNCTIONS[lowered]
                if len(args) != arity:
                    raise self.error(
                        f"{name}() takes {arity} argument(s), got {len(args)}", tok
                    )
                return ast.Call(func=lowered, args=args)
            if args:
                raise self.error(f"unknown function {name}()", tok)
            # "value()" reads the binding named "value"
            return ast.Symbol(path=[name])

        if lowered in CONSTANTS and not self.at("DOT"):
            return ast.Literal(value=CONSTANTS[lowered])

        path = [name]
        while self.match("DOT"):
            path.append(self.consume("IDENT").value)
        return ast.Symbol(path=path)


@lru_cache(maxsize=4096)
def parse(text: str) -> ast.Expr:
    """Parse formula text into an AST. Results are cached by text."""
    parser = Parser(text, tokenize(text))
    return parser.parse_formula()
