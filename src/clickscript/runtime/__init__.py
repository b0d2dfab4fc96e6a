"""clickscript runtime: interpreter for line-based automation scripts.

Entry point::

    from clickscript.runtime import ScriptEngine

    engine = ScriptEngine(my_gateway, on_log=print)
    engine.execute('click(540, 960)\\nsleep(500)\\nlog("done")')

    engine.start(long_running_script)   # on a worker thread
    engine.cancel()
    engine.join()
"""

from __future__ import annotations

from ._engine import ScriptEngine, run_script
from ._settings import EngineSettings
from ._values import ScriptError, Value
from ._variables import SharedVariables

__all__ = [
    "EngineSettings",
    "ScriptEngine",
    "ScriptError",
    "SharedVariables",
    "Value",
    "run_script",
]
