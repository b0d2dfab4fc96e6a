"""Script text model.

A script is stored as a tuple of normalized lines, each holding a single
statement or block delimiter, plus the source line each one came from.
"""

from __future__ import annotations

from typing import Self

from pydantic import BaseModel, ConfigDict, model_validator


def split_statements(line: str) -> list[str]:
    """Split one source line into single-statement lines.

    - ``;`` outside string literals separates statements
    - text after a block-opening ``{`` starts a new line
    - a ``}`` is moved onto its own line unless ``else`` follows it
    - braces inside quotes and ``${name}`` interpolations are left alone
    - ``//`` outside quotes ends the line; the rest is a comment

    Comment lines are returned verbatim.
    """
    stripped = line.strip()
    if not stripped or stripped.startswith("//"):
        return [stripped]

    parts: list[str] = []
    buf: list[str] = []
    quote: str | None = None
    interpolation = 0

    def flush() -> None:
        text = "".join(buf).strip()
        if text:
            parts.append(text)
        buf.clear()

    for i, ch in enumerate(stripped):
        if quote is not None:
            buf.append(ch)
            if ch == quote:
                quote = None
        elif ch in "\"'":
            quote = ch
            buf.append(ch)
        elif ch == "/" and stripped[i + 1:i + 2] == "/":
            break
        elif ch == ";":
            flush()
        elif ch == "{":
            buf.append(ch)
            if i > 0 and stripped[i - 1] == "$":
                interpolation += 1
            else:
                flush()
        elif ch == "}":
            if interpolation:
                interpolation -= 1
                buf.append(ch)
                continue
            flush()
            buf.append(ch)
            if not stripped[i + 1:].lstrip().startswith("else"):
                flush()
        else:
            buf.append(ch)

    flush()
    return parts or [""]


class Script(BaseModel):
    """An immutable, normalized script.

    ``line_numbers[i]`` is the 1-based source line of ``lines[i]``.
    """

    model_config = ConfigDict(frozen=True)

    lines: tuple[str, ...] = ()
    line_numbers: tuple[int, ...] = ()

    @model_validator(mode="after")
    def _lengths_match(self) -> Self:
        if len(self.lines) != len(self.line_numbers):
            raise ValueError(
                f"lines ({len(self.lines)}) and line_numbers "
                f"({len(self.line_numbers)}) must have the same length"
            )
        return self

    @classmethod
    def from_text(cls, text: str) -> Script:
        lines: list[str] = []
        numbers: list[int] = []
        for number, raw in enumerate(text.splitlines(), start=1):
            for statement in split_statements(raw):
                lines.append(statement)
                numbers.append(number)
        return cls(lines=tuple(lines), line_numbers=tuple(numbers))

    def source_line(self, index: int) -> int:
        """Source line number for a normalized line index."""
        if 0 <= index < len(self.line_numbers):
            return self.line_numbers[index]
        return index + 1


class FunctionDef(BaseModel):
    """A user-defined function collected by the pre-scan.

    *first_line* is the script index of the first body line.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    params: tuple[str, ...] = ()
    body: tuple[str, ...] = ()
    first_line: int = 0
