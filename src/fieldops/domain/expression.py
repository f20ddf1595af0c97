"""
Sandboxed boolean expressions for custom rollup logic.

Grammar (keywords are case-insensitive; ``&&``, ``||`` and ``!`` are
accepted as aliases)::

    expr     := and_expr ( OR and_expr )*
    and_expr := not_expr ( AND not_expr )*
    not_expr := NOT not_expr | atom
    atom     := NAME | TRUE | FALSE | "(" expr ")"

Names refer to reading ids. Nothing is ever handed to ``eval``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache


class ExpressionError(ValueError):
    """Raised when an expression cannot be parsed or evaluated."""


_TOKEN = re.compile(r"\s*(?:(\(|\))|(&&|\|\||!)|([A-Za-z_][A-Za-z0-9_.\-]*))")
_ALIASES = {"&&": "AND", "||": "OR", "!": "NOT"}
_KEYWORDS = {"AND", "OR", "NOT", "TRUE", "FALSE"}


@dataclass(frozen=True)
class Name:
    name: str


@dataclass(frozen=True)
class Literal:
    value: bool


@dataclass(frozen=True)
class Not:
    operand: Expr


@dataclass(frozen=True)
class And:
    left: Expr
    right: Expr


@dataclass(frozen=True)
class Or:
    left: Expr
    right: Expr


Expr = Name | Literal | Not | And | Or


def _tokenize(text: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        match = _TOKEN.match(text, pos)
        if match is None or match.end() == pos:
            raise ExpressionError(f"Unexpected character at position {pos}: {text[pos]!r}")
        paren, symbol, word = match.groups()
        if paren:
            tokens.append(("PAREN", paren))
        elif symbol:
            tokens.append(("OP", _ALIASES[symbol]))
        elif word.upper() in _KEYWORDS:
            upper = word.upper()
            tokens.append(("BOOL" if upper in ("TRUE", "FALSE") else "OP", upper))
        else:
            tokens.append(("NAME", word))
        pos = match.end()
    return tokens


class _Parser:
    def __init__(self, tokens: list[tuple[str, str]]):
        self._tokens = tokens
        self._pos = 0

    def _peek(self) -> tuple[str, str] | None:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _take(self) -> tuple[str, str]:
        token = self._peek()
        if token is None:
            raise ExpressionError("Unexpected end of expression")
        self._pos += 1
        return token

    def parse(self) -> Expr:
        if not self._tokens:
            raise ExpressionError("Empty expression")
        expr = self._or()
        if self._peek() is not None:
            raise ExpressionError(f"Unexpected token: {self._peek()[1]!r}")  # type: ignore[index]
        return expr

    def _or(self) -> Expr:
        expr = self._and()
        while self._peek() == ("OP", "OR"):
            self._take()
            expr = Or(expr, self._and())
        return expr

    def _and(self) -> Expr:
        expr = self._not()
        while self._peek() == ("OP", "AND"):
            self._take()
            expr = And(expr, self._not())
        return expr

    def _not(self) -> Expr:
        if self._peek() == ("OP", "NOT"):
            self._take()
            return Not(self._not())
        return self._atom()

    def _atom(self) -> Expr:
        kind, value = self._take()
        if kind == "NAME":
            return Name(value)
        if kind == "BOOL":
            return Literal(value == "TRUE")
        if (kind, value) == ("PAREN", "("):
            expr = self._or()
            if self._take() != ("PAREN", ")"):
                raise ExpressionError("Missing closing parenthesis")
            return expr
        raise ExpressionError(f"Unexpected token: {value!r}")


@lru_cache(maxsize=256)
def parse_expression(text: str) -> Expr:
    """Parse an expression into an immutable tree."""
    return _Parser(_tokenize(text)).parse()


def referenced_names(text: str) -> frozenset[str]:
    """Reading ids an expression refers to."""
    names: set[str] = set()

    def walk(expr: Expr) -> None:
        match expr:
            case Name(name):
                names.add(name)
            case Not(operand):
                walk(operand)
            case And(left, right) | Or(left, right):
                walk(left)
                walk(right)

    walk(parse_expression(text))
    return frozenset(names)


def _evaluate(expr: Expr, values: Mapping[str, bool | None]) -> bool:
    match expr:
        case Literal(value):
            return value
        case Name(name):
            if name not in values:
                raise ExpressionError(f"Unknown reading: {name}")
            value = values[name]
            if value is None:
                raise ExpressionError(f"Reading {name} has no result")
            return bool(value)
        case Not(operand):
            return not _evaluate(operand, values)
        case And(left, right):
            return _evaluate(left, values) and _evaluate(right, values)
        case Or(left, right):
            return _evaluate(left, values) or _evaluate(right, values)
    raise ExpressionError(f"Unsupported expression node: {expr!r}")


def evaluate_expression(text: str, values: Mapping[str, bool | None]) -> bool:
    """
    Evaluate ``text`` against reading results.

    Raises:
        ExpressionError: On a syntax error, an unknown name, or a reading
            without a result
    """
    return _evaluate(parse_expression(text), values)
