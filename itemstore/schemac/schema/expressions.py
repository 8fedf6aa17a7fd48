"""
Symbol checking for field validation expressions.

Validation expressions are CEL-like boolean predicates evaluated by the
storage layer against a single field value, bound to ``this``:

    this.matches("[^@]+@[^@]+")
    size(this) > 0 && size(this) <= 280

The compiler never evaluates them. It only tokenizes the expression and
rejects identifiers it cannot resolve, so that a typo is caught at deploy
time instead of on the first write.

Pure functions with no I/O.
"""

from __future__ import annotations

import re
from typing import List

# Identifiers that may appear on their own ("in" is the membership operator)
KNOWN_SYMBOLS = frozenset({
    "in",
    "this",
    "true",
    "false",
    "null",
    "size",
    "int",
    "uint",
    "double",
    "string",
    "bytes",
    "duration",
    "timestamp",
})

# Identifiers that may appear after a '.'
KNOWN_METHODS = frozenset({
    "matches",
    "startsWith",
    "endsWith",
    "contains",
    "size",
})

_TOKEN_RE = re.compile(
    r"""
    (?P<space>\s+)
    | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    | (?P<number>\d+(?:\.\d+)?[uU]?)
    | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
    | (?P<op>&&|\|\||==|!=|<=|>=|[-+*/%<>!?:.,()\[\]])
    """,
    re.VERBOSE,
)


class ExpressionError(ValueError):
    """Validation expression could not be checked."""


def tokenize(expression: str) -> List[tuple[str, str]]:
    """Split an expression into (kind, text) tokens, dropping whitespace.

    Raises:
        ExpressionError: On an unterminated string or an unexpected character
    """
    tokens: List[tuple[str, str]] = []
    pos = 0
    while pos < len(expression):
        match = _TOKEN_RE.match(expression, pos)
        if match is None:
            if expression[pos] in "\"'":
                raise ExpressionError(f"unterminated string at offset {pos}")
            raise ExpressionError(f"unexpected character {expression[pos]!r} at offset {pos}")
        kind = match.lastgroup or ""
        if kind != "space":
            tokens.append((kind, match.group()))
        pos = match.end()
    return tokens


def undefined_symbols(expression: str) -> List[str]:
    """Return the identifiers in an expression that do not resolve.

    Args:
        expression: Validation expression source

    Returns:
        Undefined identifiers in order of first appearance

    Raises:
        ExpressionError: If the expression cannot be tokenized or its
            parentheses do not balance
    """
    if not expression.strip():
        raise ExpressionError("expression is empty")

    tokens = tokenize(expression)
    depth = 0
    undefined: List[str] = []
    previous = ""
    for kind, text in tokens:
        if text in ("(", "["):
            depth += 1
        elif text in (")", "]"):
            depth -= 1
            if depth < 0:
                raise ExpressionError("unbalanced parentheses")
        elif kind == "ident":
            known = KNOWN_METHODS if previous == "." else KNOWN_SYMBOLS
            if text not in known and text not in undefined:
                undefined.append(text)
        previous = text
    if depth != 0:
        raise ExpressionError("unbalanced parentheses")
    return undefined
