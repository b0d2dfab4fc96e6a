"""Condition and expression evaluation.

Conditions are evaluated textually rather than parsed into a tree:
``&&`` is split first, then ``||``, then a single comparison. Precedence
beyond that is not modelled.
"""

from __future__ import annotations

import operator
import random
import re
from collections.abc import Callable, Mapping

from ._cancellation import CancellationToken
from ._values import (
    EXIT_NAME,
    ScriptError,
    Value,
    fold_arithmetic,
    format_value,
    is_quoted,
    is_true,
    parse_call,
    parse_number,
    split_args,
    strip_outer_parens,
    strip_quotes,
)
from ._variables import VariableStore

# Order matters: ">=" and "<=" must be tried before ">" and "<".
_COMPARATORS: tuple[tuple[str, Callable[[object, object], bool], bool], ...] = (
    (">=", operator.ge, True),
    ("<=", operator.le, True),
    ("!=", operator.ne, False),
    ("==", operator.eq, False),
    (">", operator.gt, True),
    ("<", operator.lt, True),
)

_RANDOM_RE = re.compile(r"random\(([^()]*)\)")
_GET_COLOR_RE = re.compile(r"getColor\(([^()]*)\)")
_INTERPOLATION_RE = re.compile(r"\$\{(\w+)\}|\$(\w+)")

ValueFunction = Callable[[str], Value | None]


class ExpressionEvaluator:
    """Resolves operands, conditions and assignment expressions.

    Parameters
    ----------
    variables : VariableStore
        The run's variables.
    token : CancellationToken
        Read by the ``EXIT`` condition.
    rng : random.Random, optional
        Source for ``random(min, max)``.
    """

    def __init__(
        self,
        variables: VariableStore,
        token: CancellationToken,
        rng: random.Random | None = None,
    ) -> None:
        self.variables = variables
        self.token = token
        self.rng = rng or random.Random()
        self._functions: dict[str, ValueFunction] = {}

    def bind_functions(self, functions: Mapping[str, ValueFunction]) -> None:
        """Register value-returning calls usable as operands.

        Each function receives the raw argument text of the call.
        """
        self._functions.update(functions)

    # -----------------------------------------------------------------------
    # Conditions
    # -----------------------------------------------------------------------

    def evaluate_condition(self, text: str) -> bool:
        content = strip_outer_parens(text)
        if not content:
            return False
        if "&&" in content:
            return all(self._simple_condition(p) for p in content.split("&&"))
        if "||" in content:
            return any(self._simple_condition(p) for p in content.split("||"))
        return self._simple_condition(content)

    def _simple_condition(self, text: str) -> bool:
        content = strip_outer_parens(text)

        if content.startswith("!") and not content.startswith("!="):
            return not self._simple_condition(content[1:])

        if content == "true":
            return True
        if content == "false":
            return False
        if content == EXIT_NAME:
            return self.token.cancelled

        for symbol, compare, numeric in _COMPARATORS:
            if symbol in content:
                left, right = content.split(symbol, 1)
                if numeric:
                    return compare(self.resolve_value(left), self.resolve_value(right))
                return compare(self.resolve_string(left), self.resolve_string(right))

        found, value = self._call_function(content)
        if found:
            return is_true(value)
        if content in self.variables:
            return is_true(self.variables.get(content))
        return False

    # -----------------------------------------------------------------------
    # Operands
    # -----------------------------------------------------------------------

    def resolve_number(self, text: str) -> float | None:
        """Numeric value of an operand, or None when it has none."""
        text = text.strip()
        found, value = self._call_function(text)
        if found:
            return parse_number(format_value(value))
        number = parse_number(strip_quotes(text))
        if number is not None:
            return number
        if text in self.variables:
            return parse_number(format_value(self.variables.get(text)))
        return None

    def resolve_value(self, text: str) -> float:
        """Numeric value of an operand; unresolvable operands are 0."""
        m = _RANDOM_RE.search(text)
        if m is not None:
            return float(self.draw_random(m.group(1)))
        number = self.resolve_number(text)
        return 0.0 if number is None else number

    def resolve_string(self, text: str) -> str:
        """Text value of an operand.

        Quoted operands are literals; bare names are looked up.
        """
        text = text.strip()
        if is_quoted(text):
            return strip_quotes(text)
        found, value = self._call_function(text)
        if found:
            return format_value(value)
        if text in self.variables:
            return format_value(self.variables.get(text))
        return text

    def draw_random(self, raw_args: str) -> int:
        """Uniform integer in ``[min, max]`` from ``random(min, max)`` arguments."""
        args = split_args(raw_args)
        if len(args) != 2:
            raise ScriptError(f"random() takes 2 arguments, got {len(args)}")
        bounds = [self.resolve_number(a) for a in args]
        if any(b is None or not b.is_integer() for b in bounds):
            raise ScriptError(f"random() bounds must be integers: {raw_args!r}")
        low, high = int(bounds[0]), int(bounds[1])
        if low > high:
            raise ScriptError(f"random() min {low} is greater than max {high}")
        return self.rng.randint(low, high)

    def _call_function(self, text: str) -> tuple[bool, Value | None]:
        call = parse_call(text)
        if call is None:
            return False, None
        name, raw_args = call
        if name == "random":
            return True, self.draw_random(raw_args)
        function = self._functions.get(name)
        if function is None:
            return False, None
        return True, function(raw_args)

    # -----------------------------------------------------------------------
    # Assignment expressions
    # -----------------------------------------------------------------------

    def evaluate_expression(self, text: str) -> Value:
        """Value of an assignment's right-hand side.

        Known variable names are substituted textually, longest first. A
        name that occurs inside another word is substituted as well.
        """
        text = text.strip().rstrip(";").strip()
        if is_quoted(text):
            return strip_quotes(text)

        result = _RANDOM_RE.sub(lambda m: str(self.draw_random(m.group(1))), text)
        get_color = self._functions.get("getColor")
        if get_color is not None:
            result = _GET_COLOR_RE.sub(
                lambda m: format_value(get_color(m.group(1))), result,
            )

        for name in sorted(self.variables.names(), key=len, reverse=True):
            if name in result:
                result = result.replace(name, format_value(self.variables.get(name)))

        folded = fold_arithmetic(result)
        if folded is not None:
            return folded
        return result

    def interpolate(self, text: str) -> str:
        """Replace ``${name}`` and ``$name`` with variable values.

        Unknown names are left as written.
        """
        def substitute(m: re.Match[str]) -> str:
            name = m.group(1) or m.group(2)
            if name in self.variables:
                return format_value(self.variables.get(name))
            return m.group(0)

        return _INTERPOLATION_RE.sub(substitute, text)
