"""Built-in script commands.

Every built-in is an entry in ``BuiltinCommands.BUILTINS``: a handler, the
argument counts it accepts and whether a call may bind a result
(``x = getColor(10, 20)``). Handlers parse and validate their own
arguments. A rejected argument logs a warning line and skips the gateway
call; it never aborts the run.
"""

from __future__ import annotations

import concurrent.futures
import logging
from collections.abc import Callable
from pathlib import Path
from typing import NamedTuple

from clickscript.model.gateway import ActionGateway, GlobalAction, ScreenRegion

from ._cancellation import CancellationToken, await_future, poll_until, sleep_ms
from ._evaluator import ExpressionEvaluator, ValueFunction
from ._ocr import RecognizerHandle, RecognizerUnavailable
from ._settings import EngineSettings
from ._values import (
    COLOR_MASK,
    Value,
    color_to_hex,
    colors_match,
    format_value,
    is_quoted,
    parse_color,
    split_args,
    strip_quotes,
)
from ._variables import SharedVariables

logger = logging.getLogger(__name__)


class _Rejected(Exception):
    """An argument failed validation or the gateway cannot act."""


class Builtin(NamedTuple):
    handler: Callable[[BuiltinCommands, list[str]], Value | None]
    # None: the whole argument text is one text argument
    arities: tuple[int, ...] | None
    binds_result: bool = False


class BuiltinCommands:
    """Handlers for the fixed command catalogue.

    Parameters
    ----------
    gateway : ActionGateway
        Performs the device actions.
    evaluator : ExpressionEvaluator
        Resolves arguments that name variables or value calls.
    shared : SharedVariables
        Store behind ``setVar``/``getVar``/``incVar``/``decVar``.
    token : CancellationToken
        The run's stop signal, observed by every wait.
    settings : EngineSettings
        Screen bounds, timing budgets and defaults.
    recognizer : RecognizerHandle
        The run's text-recognition session.
    emit : callable
        Writes one line to the run's log stream.
    """

    def __init__(
        self,
        gateway: ActionGateway,
        evaluator: ExpressionEvaluator,
        shared: SharedVariables,
        token: CancellationToken,
        settings: EngineSettings,
        recognizer: RecognizerHandle,
        emit: Callable[[str], None],
    ) -> None:
        self.gateway = gateway
        self.evaluator = evaluator
        self.shared = shared
        self.token = token
        self.settings = settings
        self.recognizer = recognizer
        self.emit = emit

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    @classmethod
    def is_builtin(cls, name: str) -> bool:
        return name in cls.BUILTINS

    @classmethod
    def binds_result(cls, name: str) -> bool:
        builtin = cls.BUILTINS.get(name)
        return builtin is not None and builtin.binds_result

    def call(self, name: str, raw_args: str) -> Value | None:
        """Run built-in *name* with the raw text between its parentheses.

        Returns the command's value, or None when it has none, was
        rejected, or found nothing.
        """
        builtin = self.BUILTINS[name]
        if self.token.cancelled:
            return None
        if builtin.arities is None:
            args = [raw_args.strip()]
        else:
            args = split_args(raw_args)
            if len(args) not in builtin.arities:
                expected = " or ".join(str(n) for n in builtin.arities)
                self._warn(f"{name}() takes {expected} arguments, got {len(args)}")
                return None
        try:
            return builtin.handler(self, args)
        except _Rejected as exc:
            self._warn(str(exc))
            return None

    def value_functions(self) -> dict[str, ValueFunction]:
        """Built-ins usable as operands in conditions and expressions."""
        return {
            name: (lambda raw, name=name: self.call(name, raw))
            for name in ("getVar", "getColor", "compareColor")
        }

    def sleep(self, ms: int) -> None:
        if ms < 0:
            self._warn(f"Invalid delay: {ms} (must be >= 0)")
            return
        sleep_ms(self.token, ms, self.settings.sleep_slice_ms)

    def read_text(self, x1: int, y1: int, x2: int, y2: int) -> str:
        """Recognize the text inside a screen rectangle.

        Errors and timeouts are logged and yield an empty string.
        """
        if x1 >= x2 or y1 >= y2:
            self.emit("OCR Error: Invalid coordinates")
            return ""
        width, height = self.settings.screen_width, self.settings.screen_height
        left = min(max(x1, 0), width - 1)
        top = min(max(y1, 0), height - 1)
        region = ScreenRegion(
            left=left,
            top=top,
            right=left + min(max(x2 - x1, 1), width - left),
            bottom=top + min(max(y2 - y1, 1), height - top),
        )
        try:
            future = self.recognizer.submit(region)
        except RecognizerUnavailable:
            self.emit("OCR Error: TextRecognizer not initialized")
            return ""
        try:
            result = await_future(
                self.token, future,
                self.settings.ocr_timeout_ms, self.settings.sleep_slice_ms,
            )
        except concurrent.futures.TimeoutError:
            self.emit("OCR Timeout")
            return ""
        except Exception as exc:
            self.emit(f"OCR Error: {exc}")
            logger.warning("Text recognition failed", exc_info=True)
            return ""
        if result is None:
            return ""
        return result.text.replace("\n", " ").strip()

    # -----------------------------------------------------------------------
    # Argument parsing
    # -----------------------------------------------------------------------

    def _warn(self, message: str) -> None:
        self.emit(f"Warning: {message}")
        logger.warning(message)

    def _number(self, arg: str, what: str) -> float:
        number = self.evaluator.resolve_number(arg)
        if number is None:
            raise _Rejected(f"Invalid {what}: {arg}")
        return number

    def _int(self, arg: str, what: str) -> int:
        number = self._number(arg, what)
        if not number.is_integer():
            raise _Rejected(f"Invalid {what}: {arg} (must be a whole number)")
        return int(number)

    def _duration(self, arg: str | None, default: int, what: str = "delay") -> int:
        if arg is None:
            return default
        return self._int(arg, what)

    def _point(self, x_arg: str, y_arg: str, factor: float = 1.0) -> tuple[float, float]:
        x = self._number(x_arg, "coordinate")
        y = self._number(y_arg, "coordinate")
        max_x = self.settings.screen_width * factor
        max_y = self.settings.screen_height * factor
        if not (0 <= x < max_x and 0 <= y < max_y):
            raise _Rejected(f"Coordinates off screen: ({int(x)}, {int(y)})")
        return x, y

    def _color(self, arg: str) -> int:
        color = parse_color(arg)
        if color is None and arg.strip() in self.evaluator.variables:
            color = parse_color(format_value(self.evaluator.variables.get(arg.strip())))
        if color is None:
            raise _Rejected(f"Invalid color: {arg}")
        return color

    def _text(self, arg: str) -> str:
        """Text argument: quoted literals are interpolated, names looked up."""
        if is_quoted(arg):
            return self.evaluator.interpolate(strip_quotes(arg))
        if arg.strip() in self.evaluator.variables:
            return self.evaluator.resolve_string(arg)
        return self.evaluator.interpolate(self.evaluator.resolve_string(arg))

    def _require_ready(self) -> None:
        if not self.gateway.is_ready():
            raise _Rejected("Accessibility service unavailable")

    def _pixel(self, x: int, y: int) -> int:
        color = self.gateway.get_pixel(x, y)
        return 0 if color is None else color & COLOR_MASK

    @staticmethod
    def _optional(args: list[str], index: int) -> str | None:
        return args[index] if len(args) > index else None

    # -----------------------------------------------------------------------
    # Gestures
    # -----------------------------------------------------------------------

    def _click(self, args: list[str]) -> None:
        x, y = self._point(args[0], args[1])
        self._require_ready()
        self.gateway.click(x, y)
        self.emit(f"Click: {int(x)}, {int(y)}")

    def _long_click(self, args: list[str]) -> None:
        x, y = self._point(args[0], args[1])
        duration = self._duration(
            self._optional(args, 2), self.settings.long_click_ms, "duration",
        )
        if duration < 0:
            raise _Rejected(f"Invalid duration: {duration}ms (must be >= 0)")
        self._require_ready()
        self.gateway.long_click(x, y, duration)
        self.emit(f"LongClick: {int(x)}, {int(y)} ({duration}ms)")

    def _swipe(self, args: list[str]) -> None:
        factor = self.settings.gesture_bounds_factor
        x1, y1 = self._point(args[0], args[1], factor)
        x2, y2 = self._point(args[2], args[3], factor)
        duration = self._duration(
            self._optional(args, 4), self.settings.swipe_ms, "duration",
        )
        if duration <= 0:
            raise _Rejected(f"Invalid swipe duration: {duration}ms (must be > 0)")
        self._require_ready()
        self.gateway.swipe(x1, y1, x2, y2, duration)
        self.emit(f"Swipe: ({int(x1)},{int(y1)}) -> ({int(x2)},{int(y2)})")

    def _tap(self, args: list[str]) -> None:
        x, y = self._point(args[0], args[1])
        count = self._int(args[2], "tap count")
        if count <= 0:
            raise _Rejected(f"Invalid tap count: {count} (must be > 0)")
        delay = self._duration(self._optional(args, 3), self.settings.tap_delay_ms)
        if delay < 0:
            raise _Rejected(f"Invalid tap delay: {delay}ms (must be >= 0)")
        self._require_ready()
        for i in range(count):
            if self.token.cancelled:
                return
            self.gateway.click(x, y)
            if i < count - 1:
                self.sleep(delay)
        self.emit(f"Tap: {int(x)}, {int(y)} x{count}")

    def _global_action(self, action: GlobalAction) -> None:
        self._require_ready()
        self.gateway.perform_global_action(action)
        self.emit(action.name.capitalize())

    def _back(self, args: list[str]) -> None:
        self._global_action(GlobalAction.BACK)

    def _home(self, args: list[str]) -> None:
        self._global_action(GlobalAction.HOME)

    def _recents(self, args: list[str]) -> None:
        self._global_action(GlobalAction.RECENTS)

    # -----------------------------------------------------------------------
    # Timing and output
    # -----------------------------------------------------------------------

    def _sleep(self, args: list[str]) -> None:
        self.sleep(self._int(args[0], "delay"))

    def _log(self, args: list[str]) -> None:
        self.emit(self._text(args[0]))

    def _toast(self, args: list[str]) -> None:
        text = self._text(args[0])
        self.gateway.show_toast(text)
        self.emit(f"Toast: {text}")

    def _send_telegram(self, args: list[str]) -> None:
        text = self._text(args[0])
        self.gateway.send_message(text)
        self.emit(f"TG: {text}")

    def _push_to_clipboard(self, args: list[str]) -> None:
        text = self._text(args[0])
        self.gateway.set_clipboard(text)
        self.emit(f"Clipboard: {text}")

    def _vibrate(self, args: list[str]) -> None:
        duration = self._int(args[0], "duration")
        if duration < 0:
            raise _Rejected(f"Invalid duration: {duration}ms (must be >= 0)")
        try:
            self.gateway.vibrate(duration)
        except Exception as exc:
            self.emit(f"Vibrate error: {exc}")
            logger.warning("Vibration failed", exc_info=True)
            return
        self.emit(f"Vibrate: {duration}ms")

    # -----------------------------------------------------------------------
    # Shared variables
    # -----------------------------------------------------------------------

    def _set_var(self, args: list[str]) -> None:
        key, value = self._text(args[0]), self._text(args[1])
        self.shared.set(key, value)
        self.emit(f"SetVar: {key} = {value}")

    def _get_var(self, args: list[str]) -> str:
        key = self._text(args[0])
        value = self.shared.get_string(key)
        self.emit(f"GetVar: {key} = {value}")
        return value

    def _inc_var(self, args: list[str]) -> int:
        key = self._text(args[0])
        value = self.shared.increment(key)
        self.emit(f"IncVar: {key} = {value}")
        return value

    def _dec_var(self, args: list[str]) -> int:
        key = self._text(args[0])
        value = self.shared.decrement(key)
        self.emit(f"DecVar: {key} = {value}")
        return value

    def _random(self, args: list[str]) -> int:
        value = self.evaluator.draw_random(", ".join(args))
        self.emit(f"Random: {value}")
        return value

    # -----------------------------------------------------------------------
    # Screen sensing
    # -----------------------------------------------------------------------

    def _get_color(self, args: list[str]) -> int:
        x, y = self._int(args[0], "coordinate"), self._int(args[1], "coordinate")
        color = self._pixel(x, y)
        self.emit(f"Color({x},{y}): {color} ({color_to_hex(color)})")
        return color

    def _compare_color(self, args: list[str]) -> bool:
        x, y = self._int(args[0], "coordinate"), self._int(args[1], "coordinate")
        target = self._color(args[2])
        tolerance = self._int(args[3], "tolerance") if len(args) > 3 else 0
        if tolerance < 0:
            raise _Rejected(f"Invalid tolerance: {tolerance} (must be >= 0)")
        current = self._pixel(x, y)
        matched = colors_match(current, target, tolerance)
        symbol = "==" if matched else "!="
        self.emit(
            f"CompareColor: ({x},{y}) {color_to_hex(current)} {symbol} {color_to_hex(target)}"
        )
        return matched

    def _wait_for_color(self, args: list[str]) -> bool:
        x, y = self._int(args[0], "coordinate"), self._int(args[1], "coordinate")
        target = self._color(args[2])
        timeout = self._int(args[3], "timeout")
        tolerance = self._int(args[4], "tolerance") if len(args) > 4 else 0
        if timeout < 0:
            raise _Rejected(f"Invalid timeout: {timeout}ms (must be >= 0)")
        self.emit(f"WaitForColor: ({x},{y}) = {color_to_hex(target)}, timeout={timeout}ms")

        def probe() -> bool | None:
            return True if colors_match(self._pixel(x, y), target, tolerance) else None

        found = poll_until(
            self.token, probe, timeout,
            self.settings.color_poll_ms, self.settings.sleep_slice_ms,
        )
        if found.value:
            self.emit(f"WaitForColor: Found! ({found.elapsed_ms}ms)")
            return True
        if found.timed_out:
            self.emit("WaitForColor: Timeout!")
        return False

    def _wait_for_text(self, args: list[str]) -> bool:
        x1, y1, x2, y2 = (self._int(a, "coordinate") for a in args[:4])
        target = self._text(args[4])
        timeout = self._int(args[5], "timeout")
        if timeout < 0:
            raise _Rejected(f"Invalid timeout: {timeout}ms (must be >= 0)")
        self.emit(f"WaitForText: '{target}', timeout={timeout}ms")

        def probe() -> bool | None:
            text = self.read_text(x1, y1, x2, y2)
            return True if target.lower() in text.lower() else None

        found = poll_until(
            self.token, probe, timeout,
            self.settings.text_poll_ms, self.settings.sleep_slice_ms,
        )
        if found.value:
            self.emit(f"WaitForText: Found! ({found.elapsed_ms}ms)")
            return True
        if found.timed_out:
            self.emit("WaitForText: Timeout!")
        return False

    def _get_text(self, args: list[str]) -> str:
        x1, y1, x2, y2 = (self._int(a, "coordinate") for a in args)
        text = self.read_text(x1, y1, x2, y2)
        self.emit(f"OCR: {text}")
        return text

    def _locate_text(self, target: str) -> tuple[int, int] | None:
        """One full-screen recognition pass looking for *target*."""
        future = self.recognizer.submit(None)
        try:
            result = await_future(
                self.token, future,
                self.settings.find_text_ocr_timeout_ms, self.settings.sleep_slice_ms,
            )
        except concurrent.futures.TimeoutError:
            return None
        except Exception as exc:
            self.emit(f"FindText error: {exc}")
            logger.error("Error in findText", exc_info=True)
            return None
        if result is None:
            return None
        needle = target.lower()
        for block in result.blocks:
            if needle in block.text.lower():
                return block.bounds.center if block.bounds is not None else None
        return None

    def _find_text(self, args: list[str]) -> tuple[int, int] | None:
        target = self._text(args[0])
        timeout = self._duration(
            self._optional(args, 1), self.settings.find_text_timeout_ms, "timeout",
        )
        if timeout < 0:
            raise _Rejected(f"Invalid timeout: {timeout}ms (must be >= 0)")
        self.emit(f"FindText: searching for '{target}'...")
        try:
            found = poll_until(
                self.token, lambda: self._locate_text(target), timeout,
                self.settings.text_poll_ms, self.settings.sleep_slice_ms,
            )
        except RecognizerUnavailable:
            self.emit("FindText: TextRecognizer not initialized")
            return None
        if found.value is not None:
            x, y = found.value
            self.emit(f"FindText: found at ({x}, {y}) in {found.elapsed_ms}ms")
            return found.value
        if found.timed_out:
            self.emit(f"FindText: timeout after {timeout}ms")
        return None

    def _find_image(self, args: list[str]) -> tuple[int, int] | None:
        path = self._text(args[0])
        threshold = self.settings.find_image_threshold
        if len(args) > 1:
            threshold = self._number(args[1], "threshold")
            if not 0.0 <= threshold <= 1.0:
                raise _Rejected(f"Invalid threshold: {threshold} (must be 0.0 to 1.0)")
        self.emit(f"FindImage: searching for '{path}' (threshold: {threshold})...")
        template = Path(path)
        if not template.is_file():
            self.emit(f"FindImage: template file not found: {path}")
            return None
        try:
            match = self.gateway.find_image(template, threshold)
        except Exception as exc:
            self.emit(f"FindImage error: {exc}")
            logger.error("Error in findImage", exc_info=True)
            return None
        if match is None:
            self.emit("FindImage: not found (no matches above threshold)")
            return None
        x, y = match.center
        self.emit(f"FindImage: found at ({x}, {y}) with confidence {match.confidence}")
        return x, y

    # Command table
    BUILTINS: dict[str, Builtin] = {
        "click": Builtin(_click, (2,)),
        "longClick": Builtin(_long_click, (2, 3)),
        "swipe": Builtin(_swipe, (4, 5)),
        "tap": Builtin(_tap, (3, 4)),
        "back": Builtin(_back, (0,)),
        "home": Builtin(_home, (0,)),
        "recents": Builtin(_recents, (0,)),
        "sleep": Builtin(_sleep, (1,)),
        "log": Builtin(_log, None),
        "toast": Builtin(_toast, None),
        "sendTelegram": Builtin(_send_telegram, None),
        "pushToCb": Builtin(_push_to_clipboard, None),
        "vibrate": Builtin(_vibrate, (1,)),
        "setVar": Builtin(_set_var, (2,)),
        "getVar": Builtin(_get_var, (1,), True),
        "incVar": Builtin(_inc_var, (1,)),
        "decVar": Builtin(_dec_var, (1,)),
        "random": Builtin(_random, (2,), True),
        "getColor": Builtin(_get_color, (2,), True),
        "compareColor": Builtin(_compare_color, (3, 4), True),
        "waitForColor": Builtin(_wait_for_color, (4, 5), True),
        "waitForText": Builtin(_wait_for_text, (6,), True),
        "getText": Builtin(_get_text, (4,), True),
        "findText": Builtin(_find_text, (1, 2), True),
        "findImage": Builtin(_find_image, (1, 2), True),
    }
