"""Line-range interpreter for normalized scripts."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from typing import NamedTuple

from clickscript.model.script import FunctionDef, Script

from ._blocks import else_header, find_block_end, find_else, is_function_header
from ._builtins import BuiltinCommands
from ._cancellation import CancellationToken
from ._evaluator import ExpressionEvaluator
from ._values import (
    EXIT_NAME,
    RESULT_KEY,
    ScriptError,
    is_identifier,
    is_true,
    parse_call,
    split_args,
    strip_declaration,
)
from ._variables import VariableStore

logger = logging.getLogger(__name__)

_BLOCK_HEADER_RE = re.compile(r"^(while|if)\b\s*(.*?)\s*\{$")
_EXIT_RE = re.compile(r"^EXIT\s*=\s*true$")
_CALL_PREFIX_RE = re.compile(r"^(?:\w+\s*=\s*)?(\w+)\s*\(")
_ASSIGNMENT_RE = re.compile(
    r"^(?:(?:val|var|int|float|string)\s+)?(\w+)\s*=(?!=)\s*(.*)$"
)


# ---------------------------------------------------------------------------
# Private signal exception for break/continue
# ---------------------------------------------------------------------------

class _LoopSignal(Exception):
    """Raised by ``break`` and ``continue``; ends the nearest ``while``."""

    def __init__(self, keyword: str):
        super().__init__(keyword)
        self.keyword = keyword


class _Cursor(NamedTuple):
    """A line being executed and where it sits in the script."""

    lines: Sequence[str]
    index: int
    offset: int

    @property
    def text(self) -> str:
        return self.lines[self.index].strip()


def _classify(text: str) -> str:
    if not text or text.startswith("//") or text.startswith("}") or text == "{":
        return "empty"
    header = _BLOCK_HEADER_RE.match(text)
    if header is not None:
        return header.group(1)
    if text in ("break", "continue", "return"):
        return text
    if is_function_header(text):
        return "function_def"
    if _EXIT_RE.match(text):
        return "exit"
    return "statement"


# ---------------------------------------------------------------------------
# ExecutionEngine
# ---------------------------------------------------------------------------

class ExecutionEngine:
    """Recursive interpreter for one run of a script.

    Parameters
    ----------
    script : Script
        The normalized script; used for diagnostics line numbers.
    functions : dict[str, FunctionDef]
        Registry built by the pre-scan.
    variables : VariableStore
        The run's variables.
    evaluator : ExpressionEvaluator
        Conditions and assignment expressions.
    commands : BuiltinCommands
        The built-in command table.
    token : CancellationToken
        Checked before every line and every loop iteration.
    emit : callable
        Writes one line to the run's log stream.
    """

    def __init__(
        self,
        script: Script,
        functions: dict[str, FunctionDef],
        variables: VariableStore,
        evaluator: ExpressionEvaluator,
        commands: BuiltinCommands,
        token: CancellationToken,
        emit: Callable[[str], None],
    ) -> None:
        self.script = script
        self.functions = functions
        self.variables = variables
        self.evaluator = evaluator
        self.commands = commands
        self.token = token
        self.emit = emit

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    def run(self) -> None:
        """Execute the whole script."""
        try:
            self.execute_block(self.script.lines, 0)
        except _LoopSignal as signal:
            logger.debug("%r outside a loop ended the run", signal.keyword)

    def execute_block(self, lines: Sequence[str], offset: int) -> None:
        """Execute *lines*, which start at script index *offset*.

        A failing line is reported with its source line number and the
        block carries on with the next one.
        """
        index = 0
        while index < len(lines):
            if self.token.cancelled:
                return
            cursor = _Cursor(lines, index, offset)
            try:
                index = self._exec_line(cursor)
            except _LoopSignal:
                raise
            except Exception as exc:
                number = self.script.source_line(offset + index)
                self.emit(f"Error on line {number}: {exc}")
                logger.warning("Error on line %d: %s", number, exc, exc_info=True)
                index = self._statement_end(cursor)
            index += 1

    # -----------------------------------------------------------------------
    # Line dispatch
    # -----------------------------------------------------------------------

    def _exec_line(self, cursor: _Cursor) -> int:
        """Execute the line at *cursor*; return the last index it consumed."""
        handler = self._LINE_DISPATCH[_classify(cursor.text)]
        return handler(self, cursor)

    def _exec_empty(self, cursor: _Cursor) -> int:
        return cursor.index

    def _exec_while(self, cursor: _Cursor) -> int:
        condition = _BLOCK_HEADER_RE.match(cursor.text).group(2)
        end = find_block_end(cursor.lines, cursor.index)
        body = cursor.lines[cursor.index + 1:end]
        body_offset = cursor.offset + cursor.index + 1
        try:
            while not self.token.cancelled and self._loop_condition(condition):
                self.execute_block(body, body_offset)
        except _LoopSignal:
            pass
        return end

    def _loop_condition(self, condition: str) -> bool:
        content = condition.strip()
        if content.startswith("(") and content.endswith(")"):
            content = content[1:-1].strip()
        if content == "!" + EXIT_NAME:
            return not self.token.cancelled
        if content == "true":
            return True
        if content == "false":
            return False
        return self.evaluator.evaluate_condition(condition)

    def _exec_if(self, cursor: _Cursor) -> int:
        """Run exactly one branch of an ``if``/``else if``/``else`` chain."""
        lines = cursor.lines
        start, header = cursor.index, cursor.text
        taken = False
        while True:
            end = find_block_end(lines, start)
            if not taken and self._branch_applies(header):
                taken = True
                self.execute_block(lines[start + 1:end], cursor.offset + start + 1)
            else_index = find_else(lines, end)
            if else_index is None or self.token.cancelled:
                return self._chain_end(lines, end)
            start, header = else_index, else_header(lines[else_index])

    def _branch_applies(self, header: str) -> bool:
        m = _BLOCK_HEADER_RE.match(header)
        if m is None or m.group(1) != "if":
            return True
        return self.evaluator.evaluate_condition(m.group(2))

    @staticmethod
    def _chain_end(lines: Sequence[str], end: int) -> int:
        else_index = find_else(lines, end)
        while else_index is not None:
            end = find_block_end(lines, else_index)
            else_index = find_else(lines, end)
        return end

    def _statement_end(self, cursor: _Cursor) -> int:
        """Last index of the statement at *cursor*, including any block."""
        if not cursor.text.endswith("{"):
            return cursor.index
        return self._chain_end(cursor.lines, find_block_end(cursor.lines, cursor.index))

    def _exec_break(self, cursor: _Cursor) -> int:
        raise _LoopSignal(cursor.text)

    def _exec_return(self, cursor: _Cursor) -> int:
        # Ends the whole run, not only the enclosing function
        self.token.cancel()
        return cursor.index

    def _exec_function_def(self, cursor: _Cursor) -> int:
        return find_block_end(cursor.lines, cursor.index)

    def _exec_exit(self, cursor: _Cursor) -> int:
        self.token.cancel()
        return cursor.index

    def _exec_statement(self, cursor: _Cursor) -> int:
        self._dispatch(cursor.text)
        return cursor.index

    # Line dispatch table
    _LINE_DISPATCH: dict[str, Callable[[ExecutionEngine, _Cursor], int]] = {
        "empty": _exec_empty,
        "while": _exec_while,
        "if": _exec_if,
        "break": _exec_break,
        "continue": _exec_break,
        "return": _exec_return,
        "function_def": _exec_function_def,
        "exit": _exec_exit,
        "statement": _exec_statement,
    }

    # -----------------------------------------------------------------------
    # Statements
    # -----------------------------------------------------------------------

    def _dispatch(self, text: str) -> None:
        """Route one statement: built-in, user function, then assignment."""
        target: str | None = None
        call = parse_call(text)
        assignment = _ASSIGNMENT_RE.match(text)
        if call is None and assignment is not None:
            target = assignment.group(1)
            call = parse_call(assignment.group(2))

        if call is not None:
            name, raw_args = call
            if BuiltinCommands.is_builtin(name):
                self._call_builtin(name, raw_args, target)
                return
            function = self.functions.get(name)
            if function is not None:
                self._call_function(function, raw_args, target)
                return

        if assignment is not None and "==" not in text and "!=" not in text:
            self._assign(assignment.group(1), assignment.group(2))
            return
        prefix = _CALL_PREFIX_RE.match(strip_declaration(text))
        if prefix is not None and BuiltinCommands.is_builtin(prefix.group(1)):
            self.emit(f"Warning: Malformed call: {text}")
            logger.warning("Malformed call to %s(): %s", prefix.group(1), text)
            return
        logger.debug("Ignoring unrecognized statement: %s", text)

    def _call_builtin(self, name: str, raw_args: str, target: str | None) -> None:
        value = self.commands.call(name, raw_args)
        if target is None:
            return
        if not BuiltinCommands.binds_result(name):
            logger.debug("%s() does not return a value; %r left unchanged", name, target)
            return
        if value is not None:
            self._assign_value(target, value)

    def _call_function(
        self, function: FunctionDef, raw_args: str, target: str | None,
    ) -> None:
        args = split_args(raw_args)
        if len(args) != len(function.params):
            logger.debug(
                "%s() declares %d parameters, called with %d",
                function.name, len(function.params), len(args),
            )
        bindings = {
            param: self.evaluator.resolve_string(arg)
            for param, arg in zip(function.params, args)
        }
        self.variables.push_frame(bindings)
        try:
            self.execute_block(function.body, function.first_line)
        except _LoopSignal:
            pass
        finally:
            frame = self.variables.pop_frame()
        result = frame.get(RESULT_KEY)
        if target is not None and result is not None:
            self._assign_value(target, result)

    def _assign(self, target: str, expression: str) -> None:
        self._assign_value(target, self.evaluator.evaluate_expression(expression))

    def _assign_value(self, target: str, value: object) -> None:
        if not is_identifier(target):
            raise ScriptError(f"Invalid variable name: {target!r}")
        if target == EXIT_NAME:
            if is_true(value):
                self.token.cancel()
            return
        self.variables.set(target, value)
