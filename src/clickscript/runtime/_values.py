"""Value system for the interpreter.

Script variables are dynamically typed: strings, numbers, booleans and
found-coordinate pairs. This module provides the text form of values,
literal parsing, argument splitting and color handling.
"""

from __future__ import annotations

import ast
import operator
import re
from typing import Union


class ScriptError(Exception):
    """Runtime error while interpreting a script line."""


Value = Union[str, int, float, bool, tuple[int, int]]

RESULT_KEY = "result"
EXIT_NAME = "EXIT"

DECLARATION_PREFIXES = ("val ", "var ", "int ", "float ", "string ")

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_]\w*$")
_NUMBER_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")
_INTEGER_RE = re.compile(r"^[+-]?\d+$")
_CALL_RE = re.compile(r"^(\w+)\s*\(")


# ---------------------------------------------------------------------------
# Text form
# ---------------------------------------------------------------------------

def format_value(value: object) -> str:
    """Render a value the way scripts see it.

    - booleans -> ``true``/``false``
    - coordinate pairs -> ``(x, y)``
    - None -> empty string
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, tuple):
        return "(" + ", ".join(format_value(v) for v in value) + ")"
    return str(value)


def is_true(value: object) -> bool:
    """Truthiness of a stored value: its text form reads ``true``."""
    return format_value(value).strip().lower() == "true"


# ---------------------------------------------------------------------------
# Literal parsing
# ---------------------------------------------------------------------------

def is_identifier(text: str) -> bool:
    return bool(_IDENTIFIER_RE.match(text))


def parse_number(text: str) -> float | None:
    """Parse a decimal literal; None when *text* is not a number."""
    text = text.strip()
    if not _NUMBER_RE.match(text):
        return None
    return float(text)


def parse_integer(text: str) -> int | None:
    text = text.strip()
    if not _INTEGER_RE.match(text):
        return None
    return int(text)


def strip_quotes(text: str) -> str:
    """Remove one pair of surrounding double or single quotes."""
    text = text.strip()
    if is_quoted(text):
        return text[1:-1]
    return text


def is_quoted(text: str) -> bool:
    """True when *text* is a single string literal.

    The opening quote must close at the last character, so ``"a" + "b"``
    and ``"a", "b"`` are not quoted.
    """
    text = text.strip()
    if len(text) < 2 or text[0] not in "\"'":
        return False
    return text.find(text[0], 1) == len(text) - 1


def strip_declaration(name: str) -> str:
    """Drop a cosmetic ``val``/``var``/``int``/``float``/``string`` prefix."""
    name = name.strip()
    for prefix in DECLARATION_PREFIXES:
        if name.startswith(prefix):
            return name[len(prefix):].strip()
    return name


def strip_outer_parens(text: str) -> str:
    """Strip parentheses that enclose the whole of *text*.

    ``(a) && (b)`` is left alone since its first and last parentheses
    are not a pair.
    """
    text = text.strip()
    while text.startswith("(") and _matching_paren(text, 0) == len(text) - 1:
        text = text[1:-1].strip()
    return text


def _matching_paren(text: str, start: int) -> int:
    depth = 0
    quote: str | None = None
    for i in range(start, len(text)):
        ch = text[i]
        if quote is not None:
            if ch == quote:
                quote = None
        elif ch in "\"'":
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i
    return -1


def parse_call(text: str) -> tuple[str, str] | None:
    """Split ``name(args)`` into the name and the raw argument text.

    None unless the parenthesis opened after the name closes at the very
    end, so ``a(1) + b(2)`` is not a call.
    """
    text = text.strip()
    m = _CALL_RE.match(text)
    if m is None or _matching_paren(text, m.end() - 1) != len(text) - 1:
        return None
    return m.group(1), text[m.end():-1]


def split_args(text: str) -> list[str]:
    """Split a call's argument text on top-level commas.

    Commas inside quotes or nested parentheses do not split.
    """
    if not text.strip():
        return []
    args: list[str] = []
    buf: list[str] = []
    depth = 0
    quote: str | None = None
    for ch in text:
        if quote is not None:
            if ch == quote:
                quote = None
        elif ch in "\"'":
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == "," and depth == 0:
            args.append("".join(buf).strip())
            buf.clear()
            continue
        buf.append(ch)
    args.append("".join(buf).strip())
    return args


# ---------------------------------------------------------------------------
# Arithmetic folding
# ---------------------------------------------------------------------------

_ARITHMETIC_TEXT_RE = re.compile(r"^[\d\s.+\-*/%()eE]+$")
_HAS_OPERATOR_RE = re.compile(r"[+\-*/%]")

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
}

_UNARY_OPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


def fold_arithmetic(text: str) -> int | float | None:
    """Evaluate *text* if it is a plain arithmetic expression over numbers.

    Returns None for anything else (including division by zero), so the
    caller keeps the text as a string.
    """
    text = text.strip()
    if not _ARITHMETIC_TEXT_RE.match(text) or not _HAS_OPERATOR_RE.search(text):
        return None
    try:
        tree = ast.parse(text, mode="eval")
    except SyntaxError:
        return None
    try:
        result = _fold(tree.body)
    except (ArithmeticError, ValueError):
        return None
    if isinstance(result, float) and result.is_integer() and "." not in text:
        return int(result)
    return result


def _fold(node: ast.expr) -> int | float:
    if isinstance(node, ast.Constant) and type(node.value) in (int, float):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        return _BINARY_OPS[type(node.op)](_fold(node.left), _fold(node.right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_fold(node.operand))
    raise ValueError(f"not arithmetic: {ast.dump(node)}")


# ---------------------------------------------------------------------------
# Colors
# ---------------------------------------------------------------------------

COLOR_MASK = 0xFFFFFFFF
_OPAQUE = 0xFF000000
_HEX_RE = re.compile(r"^#([0-9A-Fa-f]{6}|[0-9A-Fa-f]{8})$")


def parse_color(text: str) -> int | None:
    """Parse ``#RRGGBB``, ``#AARRGGBB`` or a packed integer color.

    ``#RRGGBB`` is opaque, so ``#FF0000`` is ``0xFFFF0000``. Packed
    integers may be signed (``-65536``) or unsigned; the result is always
    the unsigned 32-bit form.
    """
    text = strip_quotes(text)
    m = _HEX_RE.match(text)
    if m:
        digits = m.group(1)
        value = int(digits, 16)
        return value | _OPAQUE if len(digits) == 6 else value
    value = parse_integer(text)
    if value is None or not -(1 << 31) <= value <= COLOR_MASK:
        return None
    return value & COLOR_MASK


def color_channels(color: int) -> tuple[int, int, int]:
    return (color >> 16) & 0xFF, (color >> 8) & 0xFF, color & 0xFF


def colors_match(actual: int, expected: int, tolerance: int = 0) -> bool:
    """Exact match at tolerance 0, otherwise per-channel RGB distance."""
    if tolerance == 0:
        return (actual & COLOR_MASK) == (expected & COLOR_MASK)
    return all(
        abs(a - e) <= tolerance
        for a, e in zip(color_channels(actual), color_channels(expected))
    )


def color_to_hex(color: int) -> str:
    return f"#{color & 0xFFFFFF:06X}"
