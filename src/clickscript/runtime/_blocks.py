"""Brace-balanced block discovery and the function pre-scan."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Sequence

from clickscript.model.script import FunctionDef

logger = logging.getLogger(__name__)

_FUNCTION_DEF_RE = re.compile(r"^fun\s+(\w+)\s*\((.*)\)\s*\{\s*$")
_ELSE_RE = re.compile(r"^\}?\s*else\b")


def _brace_deltas(line: str) -> Iterator[int]:
    """Yield +1/-1 for each block brace in *line*.

    Braces inside quotes and ``${name}`` interpolations are skipped.
    """
    quote: str | None = None
    interpolation = 0
    prev = ""
    for ch in line:
        if quote is not None:
            if ch == quote:
                quote = None
        elif ch in "\"'":
            quote = ch
        elif ch == "{":
            if prev == "$":
                interpolation += 1
            else:
                yield 1
        elif ch == "}":
            if interpolation:
                interpolation -= 1
            else:
                yield -1
        prev = ch


def find_block_end(lines: Sequence[str], start: int) -> int:
    """Index of the line closing the block opened on ``lines[start]``.

    Counting begins at the first ``{`` of the start line, so ``} else {``
    works as a start line. Comment lines are not counted. A block that
    never closes ends at the last line.
    """
    depth = 0
    for index in range(start, len(lines)):
        line = lines[index]
        if line.lstrip().startswith("//"):
            continue
        for delta in _brace_deltas(line):
            if index == start and depth == 0 and delta < 0:
                continue
            depth += delta
            if depth == 0 and index > start:
                return index
    return len(lines) - 1


def find_else(lines: Sequence[str], if_end: int) -> int | None:
    """Index of the ``else`` header following a block closed at *if_end*.

    Either the closing line itself (``} else {``) or the next line.
    """
    if 0 <= if_end < len(lines):
        current = lines[if_end].strip()
        if current.startswith("}") and _ELSE_RE.match(current):
            return if_end
    following = if_end + 1
    if following < len(lines) and _ELSE_RE.match(lines[following].strip()):
        return following
    return None


def else_header(line: str) -> str:
    """The part of an else line after ``else``: ``{`` or ``if (...) {``."""
    return _ELSE_RE.sub("", line.strip(), count=1).strip()


def is_function_header(line: str) -> bool:
    return _FUNCTION_DEF_RE.match(line.strip()) is not None


def collect_functions(lines: Sequence[str]) -> dict[str, FunctionDef]:
    """Pre-scan *lines* for ``fun name(params) {`` definitions.

    Bodies are skipped once captured. A later definition replaces an
    earlier one with the same name.
    """
    functions: dict[str, FunctionDef] = {}
    index = 0
    while index < len(lines):
        m = _FUNCTION_DEF_RE.match(lines[index].strip())
        if m is not None:
            name, raw_params = m.groups()
            params = tuple(p.strip() for p in raw_params.split(",") if p.strip())
            end = find_block_end(lines, index)
            if name in functions:
                logger.debug("Function %r redefined at line index %d", name, index)
            functions[name] = FunctionDef(
                name=name,
                params=params,
                body=tuple(lines[index + 1:end]),
                first_line=index + 1,
            )
            index = end
        index += 1
    return functions
