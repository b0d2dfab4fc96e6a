"""Cooperative cancellation and interruptible waiting.

Every suspension point of a run (sleeps, polling waits, waits on an
asynchronous recognition result) goes through this module so that a
cancel request from another thread is observed promptly.
"""

from __future__ import annotations

import concurrent.futures
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from typing import NamedTuple, TypeVar

T = TypeVar("T")


class CancellationToken:
    """Stop signal for one run (the script's ``EXIT`` flag).

    Parameters
    ----------
    interrupt : threading.Event, optional
        Host-level interrupt observed alongside the token. The token never
        clears it.
    """

    def __init__(self, interrupt: threading.Event | None = None) -> None:
        self._event = threading.Event()
        self._interrupt = interrupt

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._interrupt is not None and self._interrupt.is_set()

    def wait(self, seconds: float) -> bool:
        """Block for up to *seconds*; return early when cancelled.

        A host interrupt is only noticed at the end of the wait.
        """
        self._event.wait(seconds)
        return self.cancelled


def sleep_ms(token: CancellationToken, ms: int, slice_ms: int) -> bool:
    """Sleep for *ms* in slices of at most *slice_ms*.

    Returns True if the full duration elapsed, False if cancelled first.
    """
    if ms <= 0:
        return not token.cancelled
    deadline = time.monotonic() + ms / 1000
    while not token.cancelled:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return True
        token.wait(min(remaining, slice_ms / 1000))
    return False


class PollResult(NamedTuple):
    value: object
    elapsed_ms: int
    timed_out: bool


def poll_until(
    token: CancellationToken,
    probe: Callable[[], T | None],
    timeout_ms: int,
    interval_ms: int,
    slice_ms: int,
) -> PollResult:
    """Call *probe* until it returns a value, time runs out, or cancellation.

    The elapsed budget is checked before each probe, so a zero timeout
    never probes.
    """
    start = time.monotonic()
    elapsed_ms = 0
    while not token.cancelled:
        elapsed_ms = int((time.monotonic() - start) * 1000)
        if elapsed_ms >= timeout_ms:
            return PollResult(None, elapsed_ms, True)
        value = probe()
        if value is not None:
            return PollResult(value, elapsed_ms, False)
        sleep_ms(token, interval_ms, slice_ms)
    return PollResult(None, elapsed_ms, False)


def await_future(
    token: CancellationToken,
    future: Future[T],
    timeout_ms: int,
    slice_ms: int,
) -> T | None:
    """Wait at most *timeout_ms* for *future*, in cancellable slices.

    Returns the result, or None when the run was cancelled first.
    Raises ``concurrent.futures.TimeoutError`` when the budget runs out
    and re-raises whatever the future failed with.
    """
    deadline = time.monotonic() + timeout_ms / 1000
    while True:
        if future.done():
            return future.result()
        if token.cancelled:
            future.cancel()
            return None
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise concurrent.futures.TimeoutError(
                f"no result within {timeout_ms}ms"
            )
        concurrent.futures.wait([future], timeout=min(remaining, slice_ms / 1000))
