"""Shared text-recognition session for a run.

The session is created on first use and may be closed from another
thread while the worker is mid-query. All access goes through one lock;
the lock is never held while waiting for a result.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future

from clickscript.model.gateway import RecognizedText, ScreenRegion, TextRecognizer

from ._values import ScriptError

logger = logging.getLogger(__name__)


class RecognizerUnavailable(ScriptError):
    """The text recognizer could not be created."""


class RecognizerHandle:
    """Lazily created, lock-guarded ``TextRecognizer``.

    Parameters
    ----------
    factory : callable
        Creates a recognizer; may return None or raise when unavailable.
    """

    def __init__(self, factory: Callable[[], TextRecognizer | None]) -> None:
        self._factory = factory
        self._lock = threading.Lock()
        self._recognizer: TextRecognizer | None = None

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._recognizer is not None

    def submit(self, region: ScreenRegion | None) -> Future[RecognizedText]:
        """Start recognition on the live session, creating it if needed."""
        with self._lock:
            if self._recognizer is None:
                self._recognizer = self._create()
            return self._recognizer.process(region)

    def _create(self) -> TextRecognizer:
        try:
            recognizer = self._factory()
        except Exception as exc:
            logger.error("Failed to initialize text recognizer: %s", exc, exc_info=True)
            raise RecognizerUnavailable("text recognizer not initialized") from exc
        if recognizer is None:
            logger.error("Failed to initialize text recognizer: factory returned None")
            raise RecognizerUnavailable("text recognizer not initialized")
        return recognizer

    def close(self) -> None:
        """Close the session if one is open. Safe to call repeatedly."""
        with self._lock:
            recognizer, self._recognizer = self._recognizer, None
            if recognizer is None:
                return
            try:
                recognizer.close()
            except Exception:
                logger.warning("Text recognizer failed to close cleanly", exc_info=True)
