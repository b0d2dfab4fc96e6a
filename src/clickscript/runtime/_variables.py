"""Variable storage.

``VariableStore`` holds the per-run variables as a stack of call frames.
``SharedVariables`` is the cross-run store behind ``setVar``/``getVar``.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from pathlib import Path

from pydantic import TypeAdapter

from ._values import ScriptError, Value, format_value, parse_integer


class VariableStore:
    """Per-run variables, one frame per active function call.

    A call frame starts as a copy of its caller's frame plus the bound
    parameters. Popping it leaves the caller's frame exactly as it was;
    whatever the callee wants to hand back travels in the popped mapping.

    Parameters
    ----------
    max_depth : int
        Maximum number of nested call frames.
    """

    def __init__(self, max_depth: int = 64) -> None:
        self._frames: list[dict[str, Value]] = [{}]
        self._max_depth = max_depth

    def clear(self) -> None:
        self._frames = [{}]

    @property
    def depth(self) -> int:
        """Number of active call frames above the script's own frame."""
        return len(self._frames) - 1

    def get(self, name: str, default: Value | None = None) -> Value | None:
        return self._frames[-1].get(name, default)

    def set(self, name: str, value: Value) -> None:
        self._frames[-1][name] = value

    def names(self) -> list[str]:
        return list(self._frames[-1])

    def snapshot(self) -> dict[str, Value]:
        return dict(self._frames[-1])

    def __contains__(self, name: object) -> bool:
        return name in self._frames[-1]

    def __len__(self) -> int:
        return len(self._frames[-1])

    def push_frame(self, bindings: Mapping[str, Value]) -> None:
        if self.depth >= self._max_depth:
            raise ScriptError(f"Maximum call depth ({self._max_depth}) exceeded")
        frame = dict(self._frames[-1])
        frame.update(bindings)
        self._frames.append(frame)

    def pop_frame(self) -> dict[str, Value]:
        if len(self._frames) == 1:
            raise ScriptError("No call frame to pop")
        return self._frames.pop()


_SNAPSHOT = TypeAdapter(dict[str, str])


class SharedVariables:
    """Thread-safe name -> value store that outlives a single run.

    Values are kept as given; ``save`` writes their text form.
    """

    def __init__(self, initial: Mapping[str, Value] | None = None) -> None:
        self._lock = threading.RLock()
        self._values: dict[str, Value] = dict(initial or {})

    def get(self, key: str) -> Value | None:
        with self._lock:
            return self._values.get(key)

    def get_string(self, key: str, default: str = "") -> str:
        value = self.get(key)
        return default if value is None else format_value(value)

    def get_int(self, key: str, default: int = 0) -> int:
        parsed = parse_integer(self.get_string(key))
        return default if parsed is None else parsed

    def set(self, key: str, value: Value) -> None:
        with self._lock:
            self._values[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._values.clear()

    def as_dict(self) -> dict[str, Value]:
        with self._lock:
            return dict(self._values)

    def increment(self, key: str, amount: int = 1) -> int:
        with self._lock:
            value = self.get_int(key) + amount
            self._values[key] = value
            return value

    def decrement(self, key: str, amount: int = 1) -> int:
        return self.increment(key, -amount)

    # -----------------------------------------------------------------------
    # Persistence
    # -----------------------------------------------------------------------

    @classmethod
    def load(cls, path: str | Path) -> SharedVariables:
        """Load a JSON object of string values written by ``save``."""
        return cls(_SNAPSHOT.validate_json(Path(path).read_bytes()))

    def save(self, path: str | Path) -> None:
        data = {k: format_value(v) for k, v in self.as_dict().items()}
        Path(path).write_bytes(_SNAPSHOT.dump_json(data, indent=2))
