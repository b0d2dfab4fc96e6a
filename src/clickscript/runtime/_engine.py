"""ScriptEngine: the user-facing object for running scripts."""

from __future__ import annotations

import logging
import random
import threading
from collections.abc import Callable

from clickscript.model.gateway import ActionGateway
from clickscript.model.script import FunctionDef, Script

from ._blocks import collect_functions
from ._builtins import BuiltinCommands
from ._cancellation import CancellationToken
from ._evaluator import ExpressionEvaluator
from ._executor import ExecutionEngine
from ._ocr import RecognizerHandle
from ._settings import EngineSettings
from ._variables import SharedVariables, VariableStore

logger = logging.getLogger(__name__)


class ScriptEngine:
    """Runs scripts against an ``ActionGateway``.

    ``execute`` blocks until the script finishes or is cancelled; script
    failures are reported on the log stream and through ``logging``. One
    run at a time: ``execute`` and ``start`` raise ``RuntimeError`` while
    another run is in progress. ``cancel`` and ``close`` may be called from any thread.

    Parameters
    ----------
    gateway : ActionGateway
        Performs device actions and sensing.
    on_log : callable, optional
        Receives one human-readable line per action or diagnostic.
    settings : EngineSettings, optional
        Screen bounds, timing budgets and command defaults.
    shared_variables : SharedVariables, optional
        Store behind ``setVar``/``getVar``; kept across runs.
    interrupt : threading.Event, optional
        Host-level stop signal observed by every run.
    rng : random.Random, optional
        Source for ``random(min, max)``.
    """

    def __init__(
        self,
        gateway: ActionGateway,
        on_log: Callable[[str], None] | None = None,
        *,
        settings: EngineSettings | None = None,
        shared_variables: SharedVariables | None = None,
        interrupt: threading.Event | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.gateway = gateway
        self.settings = settings or EngineSettings()
        self.shared_variables = (
            shared_variables if shared_variables is not None else SharedVariables()
        )
        self._on_log = on_log
        self._interrupt = interrupt
        self._rng = rng or random.Random()
        self._variables = VariableStore(self.settings.max_call_depth)
        self._functions: dict[str, FunctionDef] = {}
        self._token = CancellationToken(interrupt)
        self._recognizer = RecognizerHandle(gateway.create_text_recognizer)
        self._thread: threading.Thread | None = None
        self._run_lock = threading.Lock()

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    @property
    def variables(self) -> dict[str, object]:
        """Variables left by the most recent run."""
        return self._variables.snapshot()

    @property
    def functions(self) -> dict[str, FunctionDef]:
        return dict(self._functions)

    @property
    def exit_requested(self) -> bool:
        return self._token.cancelled

    def execute(self, text: str) -> None:
        """Run *text* to completion or cancellation on the calling thread."""
        self._claim()
        self._token = CancellationToken(self._interrupt)
        self._run(text, self._token)

    def start(self, text: str) -> None:
        """Run *text* on a daemon worker thread."""
        self._claim()
        token = self._token = CancellationToken(self._interrupt)
        self._thread = threading.Thread(
            target=self._run, args=(text, token), name="clickscript-run", daemon=True,
        )
        self._thread.start()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for a ``start``-ed run. Returns True once it has finished."""
        if self._thread is not None:
            self._thread.join(timeout)
        return not self.is_running()

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def cancel(self) -> None:
        """Request the current run to stop (``EXIT = true``)."""
        self._token.cancel()

    def close(self) -> None:
        """Release the text-recognition session. Safe to call repeatedly."""
        self._recognizer.close()

    def __enter__(self) -> ScriptEngine:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cancel()
        self.join()
        self.close()

    # -----------------------------------------------------------------------
    # Run
    # -----------------------------------------------------------------------

    def _claim(self) -> None:
        if not self._run_lock.acquire(blocking=False):
            raise RuntimeError("a script is already running")

    def _run(self, text: str, token: CancellationToken) -> None:
        try:
            self._variables.clear()
            self._functions = {}
            script = Script.from_text(text)
            self._functions = collect_functions(script.lines)
            logger.info(
                "Running script: %d lines, %d functions",
                len(script.lines), len(self._functions),
            )
            evaluator = ExpressionEvaluator(self._variables, token, self._rng)
            commands = BuiltinCommands(
                self.gateway, evaluator, self.shared_variables, token,
                self.settings, self._recognizer, self._emit,
            )
            evaluator.bind_functions(commands.value_functions())
            ExecutionEngine(
                script, self._functions, self._variables, evaluator,
                commands, token, self._emit,
            ).run()
            logger.info("Script %s", "cancelled" if token.cancelled else "finished")
        except Exception as exc:
            self._emit(f"Critical error: {exc}")
            logger.exception("Script execution aborted")
        finally:
            self.close()
            self._run_lock.release()

    def _emit(self, line: str) -> None:
        logger.info("%s", line)
        if self._on_log is None:
            return
        try:
            self._on_log(line)
        except Exception:
            logger.exception("Log callback failed")


def run_script(
    text: str, gateway: ActionGateway, **kwargs: object,
) -> ScriptEngine:
    """Run *text* once and return the engine for inspection.

    Keyword arguments are passed to ``ScriptEngine``.
    """
    engine = ScriptEngine(gateway, **kwargs)
    engine.execute(text)
    return engine
