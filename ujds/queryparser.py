"""A tiny search-query language compiled to SQL over a JSON column."""

from __future__ import annotations

import enum
import string
from dataclasses import dataclass
from typing import NamedTuple

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_DIGITS = frozenset(string.digits)
_LETTERS = frozenset(string.ascii_letters)
_IDENTIFIER_CHARS = _DIGITS | _LETTERS
_OPERATOR_CHARS = frozenset("=<>!&|")

_COMPARE_OPERATORS = frozenset({"=", "==", "!=", ">", "<", ">=", "<="})
_LOGICAL_OPERATORS = frozenset({"&&", "||"})
_SQL_OPERATORS = {"=": "=", "==": "=", "&&": "AND", "||": "OR"}


class QuerySyntaxError(ValueError):
    """Raised when a search query cannot be parsed."""


class _Kind(enum.Enum):
    IDENTIFIER = enum.auto()
    LITERAL_ANY = enum.auto()
    LITERAL_INT = enum.auto()
    LITERAL_FLOAT = enum.auto()
    LITERAL_STRING = enum.auto()
    OPERATOR_COMPARE = enum.auto()
    OPERATOR_LOGICAL = enum.auto()

    def __str__(self) -> str:
        if self is _Kind.IDENTIFIER:
            return "identifier"
        if self is _Kind.OPERATOR_COMPARE:
            return "comparison operator"
        if self is _Kind.OPERATOR_LOGICAL:
            return "logical operator"
        return "literal"


_LITERALS = (_Kind.LITERAL_INT, _Kind.LITERAL_FLOAT, _Kind.LITERAL_STRING)


class _Token(NamedTuple):
    pos: int
    kind: _Kind
    value: str


class _TokenError(Exception):
    def __init__(self, message: str, pos: int) -> None:
        super().__init__(message)
        self.message = message
        self.pos = pos


def _parse_identifier(s: str, pos: int) -> _Token:
    chars: list[str] = []
    while pos < len(s):
        c = s[pos]
        if c in _IDENTIFIER_CHARS or c == "_":
            chars.append(c)
        elif c == ".":
            if not chars:
                raise _TokenError("identifier syntax error", pos)
            if chars[-1] == ".":
                raise _TokenError("identifier syntax error", pos + 1)
            chars.append(c)
        else:
            break
        pos += 1

    value = "".join(chars)
    if value.endswith("."):
        raise _TokenError("identifier syntax error", pos)
    if not value:
        raise _TokenError("identifier expected", pos)
    return _Token(pos, _Kind.IDENTIFIER, value)


def _parse_operator(s: str, pos: int) -> _Token:
    start = pos
    while pos < len(s) and s[pos] in _OPERATOR_CHARS:
        pos += 1
    value = s[start:pos]

    if not value:
        raise _TokenError("operator expected", pos)
    if value in _COMPARE_OPERATORS:
        return _Token(pos, _Kind.OPERATOR_COMPARE, value)
    if value in _LOGICAL_OPERATORS:
        return _Token(pos, _Kind.OPERATOR_LOGICAL, value)
    raise _TokenError(f"unknown operator '{value}'", pos)


def _parse_literal(s: str, pos: int) -> _Token:
    chars: list[str] = []
    quotes = 0
    non_numeric = 0
    stop = False

    while not stop and pos < len(s):
        c = s[pos]
        if c == '"':
            quotes += 1
            stop = quotes == 2
        elif c in _LETTERS or c == "_":
            chars.append(c)
            non_numeric += 1
        elif c in _DIGITS or c == ".":
            chars.append(c)
        elif quotes % 2:
            chars.append(c)
        else:
            stop = True
        pos += 1

    value = "".join(chars)
    if quotes or non_numeric:
        return _Token(pos, _Kind.LITERAL_STRING, value)

    if "." in value:
        try:
            float(value)
        except ValueError:
            raise _TokenError(f"parse float: invalid syntax {value!r}", pos) from None
        return _Token(pos, _Kind.LITERAL_FLOAT, value)

    try:
        number = int(value)
    except ValueError:
        raise _TokenError(f"parse int: invalid syntax {value!r}", pos) from None
    if not _INT64_MIN <= number <= _INT64_MAX:
        raise _TokenError(f"parse int: value out of range {value!r}", pos)
    return _Token(pos, _Kind.LITERAL_INT, value)


_NEXT_KIND = {
    _Kind.IDENTIFIER: (_parse_identifier, _Kind.OPERATOR_COMPARE),
    _Kind.OPERATOR_COMPARE: (_parse_operator, _Kind.LITERAL_ANY),
    _Kind.LITERAL_ANY: (_parse_literal, _Kind.OPERATOR_LOGICAL),
    _Kind.OPERATOR_LOGICAL: (_parse_operator, _Kind.IDENTIFIER),
}


def _tokenize(s: str) -> list[_Token]:
    tokens: list[_Token] = []
    expected = _Kind.IDENTIFIER
    pos = 0

    while True:
        while pos < len(s) and s[pos] == " ":
            pos += 1
        if pos >= len(s):
            break

        parser, expected_next = _NEXT_KIND[expected]
        try:
            token = parser(s, pos)
        except _TokenError as exc:
            raise QuerySyntaxError(f"{exc.message} at position {exc.pos}: {s[:exc.pos]}") from None

        tokens.append(token)
        pos = token.pos
        expected = expected_next

    return tokens


def _check_syntax(source: str, tokens: list[_Token]) -> None:
    complete = False
    expected: tuple[_Kind, ...] = (_Kind.IDENTIFIER,)

    for tok in tokens:
        if tok.kind not in expected:
            names = ", ".join(str(kind) for kind in expected)
            raise QuerySyntaxError(f"{names} expected: {source[:tok.pos]}")

        if tok.kind is _Kind.IDENTIFIER:
            expected = (_Kind.OPERATOR_COMPARE,)
            complete = False
        elif tok.kind is _Kind.OPERATOR_COMPARE:
            expected = _LITERALS
            complete = False
        elif tok.kind is _Kind.OPERATOR_LOGICAL:
            expected = (_Kind.IDENTIFIER,)
            complete = False
        else:
            expected = (_Kind.OPERATOR_LOGICAL,)
            complete = True

    if not complete:
        raise QuerySyntaxError("incomplete expression")


@dataclass(frozen=True)
class Query:
    """A parsed, syntactically valid search query."""

    tokens: tuple[_Token, ...]

    def to_sql(self, field_name: str, first_arg_index: int) -> str:
        """Render the query as an SQL condition with numbered placeholders."""
        parts: list[str] = []
        arg = first_arg_index

        for i, tok in enumerate(self.tokens):
            if tok.kind is _Kind.IDENTIFIER:
                parts.append(_format_identifier(field_name, tok, self.tokens[i + 2]))
            elif tok.kind in (_Kind.OPERATOR_COMPARE, _Kind.OPERATOR_LOGICAL):
                parts.append(_SQL_OPERATORS.get(tok.value, tok.value))
            elif tok.kind in (_Kind.LITERAL_INT, _Kind.LITERAL_FLOAT):
                parts.append(f"${arg}")
                arg += 1
            elif tok.kind is _Kind.LITERAL_STRING:
                parts.append(f"'\"' || ${arg} || '\"'")
                arg += 1

        return " ".join(parts)

    def args(self) -> list[int | float | str]:
        """Return the literal values in placeholder order."""
        result: list[int | float | str] = []
        for tok in self.tokens:
            if tok.kind is _Kind.LITERAL_INT:
                result.append(int(tok.value))
            elif tok.kind is _Kind.LITERAL_FLOAT:
                result.append(float(tok.value))
            elif tok.kind is _Kind.LITERAL_STRING:
                result.append(tok.value)
        return result


def _format_identifier(field_name: str, ident: _Token, arg: _Token) -> str:
    path = "->".join(f"'{part}'" for part in ident.value.split("."))
    result = f"({field_name}->{path})"
    casts = {
        _Kind.LITERAL_INT: "::int",
        _Kind.LITERAL_FLOAT: "::float",
        _Kind.LITERAL_STRING: "::text",
    }
    return result + casts.get(arg.kind, "")


def parse(s: str) -> Query:
    """Parse a search query, raising QuerySyntaxError when it is malformed."""
    tokens = _tokenize(s)
    _check_syntax(s, tokens)
    return Query(tuple(tokens))