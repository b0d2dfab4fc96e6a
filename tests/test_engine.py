"""End-to-end tests for ScriptEngine."""

import logging
import threading
import time

import pytest

from conftest import FAST_SETTINGS, FakeRecognizer, RecordingGateway, make_engine, run

from clickscript.model.gateway import RecognizedText
from clickscript.runtime import ScriptEngine, SharedVariables, run_script


class TestScenarios:
    def test_counter_loop_stops_after_three_increments(self):
        engine, _, log = run(
            'setVar("n","0")\n'
            'while (true) { incVar("n"); if (getVar("n") == "3") { break } }'
        )
        assert engine.shared_variables.get_int("n") == 3
        assert [line for line in log if line.startswith("IncVar")] == [
            "IncVar: n = 1",
            "IncVar: n = 2",
            "IncVar: n = 3",
        ]

    def test_click_sleep_log(self):
        gateway = RecordingGateway()
        log = []
        engine = ScriptEngine(gateway, on_log=log.append)
        start = time.monotonic()
        engine.execute('click(10,10)\nsleep(50)\nlog("done")')
        assert time.monotonic() - start >= 0.045
        assert gateway.actions == [("click", 10.0, 10.0)]
        assert log.count("done") == 1


class TestLifecycle:
    def test_cancel_during_long_sleep(self):
        engine, _, log = make_engine()
        engine.start('sleep(100000)\nlog("after")')
        time.sleep(0.05)
        start = time.monotonic()
        engine.cancel()
        assert engine.join(timeout=2.0)
        assert time.monotonic() - start < 1.0
        assert "after" not in log
        assert engine.exit_requested

    def test_host_interrupt(self):
        interrupt = threading.Event()
        engine, _, log = make_engine(interrupt=interrupt)
        threading.Timer(0.05, interrupt.set).start()
        engine.execute('sleep(100000)\nlog("after")')
        assert log == []
        assert engine.exit_requested

    def test_start_while_running(self):
        engine, _, _ = make_engine()
        engine.start("sleep(100000)")
        try:
            with pytest.raises(RuntimeError, match="already running"):
                engine.start("log(1)")
        finally:
            engine.cancel()
            engine.join(timeout=2.0)

    def test_execute_while_started_run_is_refused(self):
        engine, gateway, _ = make_engine()
        engine.start("while (true) {\nsleep(10)\n}")
        try:
            with pytest.raises(RuntimeError, match="already running"):
                engine.execute("click(1, 1)")
        finally:
            engine.cancel()
            finished = engine.join(timeout=2.0)
        assert finished
        assert gateway.clicks == []

    def test_run_allowed_after_worker_finishes(self):
        engine, gateway, _ = make_engine()
        engine.start("click(1, 1)")
        assert engine.join(timeout=2.0)
        engine.execute("click(2, 2)")
        assert len(gateway.clicks) == 2

    def test_context_manager_stops_worker(self):
        with ScriptEngine(RecordingGateway(), settings=FAST_SETTINGS) as engine:
            engine.start("sleep(100000)")
            assert engine.is_running()
        assert not engine.is_running()

    def test_new_run_resets_cancellation(self):
        engine, gateway, _ = make_engine()
        engine.execute("EXIT = true")
        engine.execute("click(1, 1)")
        assert len(gateway.clicks) == 1

    def test_variables_reset_between_runs(self):
        engine, _, log = make_engine()
        engine.execute("x = 1")
        engine.execute('log("x=$x")')
        assert log == ["x=$x"]

    def test_shared_variables_survive_runs(self):
        shared = SharedVariables()
        engine, _, log = make_engine(shared_variables=shared)
        engine.execute('setVar("k", "v")')
        engine.execute('x = getVar("k")')
        assert engine.variables["x"] == "v"
        assert shared.get("k") == "v"

    def test_close_is_idempotent(self):
        recognizer = FakeRecognizer([RecognizedText(text="x")])
        engine, _, _ = make_engine(RecordingGateway(recognizer=recognizer))
        engine.close()
        engine.execute("t = getText(0, 0, 10, 10)")
        engine.close()
        engine.close()
        assert recognizer.closed == 1

    def test_close_during_run(self):
        recognizer = FakeRecognizer([RecognizedText(text="x")])
        engine, _, log = make_engine(RecordingGateway(recognizer=recognizer))
        engine.start("while (true) {\nt = getText(0, 0, 10, 10)\n}")
        for _ in range(5):
            time.sleep(0.01)
            engine.close()
        engine.cancel()
        assert engine.join(timeout=2.0)
        assert not any(line.startswith(("Error", "Critical")) for line in log)


class TestFailures:
    def test_execute_never_raises(self):
        engine, _, log = make_engine()
        engine.execute(None)
        assert log[0].startswith("Critical error:")

    def test_critical_error_logged(self, caplog):
        engine, _, _ = make_engine()
        with caplog.at_level(logging.ERROR, logger="clickscript"):
            engine.execute(None)
        assert any(r.getMessage() == "Script execution aborted" for r in caplog.records)

    def test_log_callback_failure_isolated(self, caplog):
        gateway = RecordingGateway()

        def broken(line):
            raise ValueError("sink closed")

        engine = ScriptEngine(gateway, on_log=broken, settings=FAST_SETTINGS)
        with caplog.at_level(logging.ERROR, logger="clickscript"):
            engine.execute("click(1, 1)\nclick(2, 2)")
        assert len(gateway.clicks) == 2
        assert any(r.getMessage() == "Log callback failed" for r in caplog.records)

    def test_per_line_error_logged_with_traceback(self, caplog):
        gateway = RecordingGateway()
        gateway.click_error = RuntimeError("boom")
        with caplog.at_level(logging.WARNING, logger="clickscript"):
            run("click(1, 1)", gateway)
        records = [r for r in caplog.records if "Error on line 1" in r.getMessage()]
        assert records
        assert records[0].exc_info is not None


class TestRunScript:
    def test_returns_engine(self):
        gateway = RecordingGateway()
        engine = run_script("x = 2 * 3", gateway, settings=FAST_SETTINGS)
        assert engine.variables["x"] == 6
        assert list(engine.functions) == []

    def test_functions_exposed(self):
        engine = run_script("fun f() {\n}", RecordingGateway())
        assert list(engine.functions) == ["f"]

    def test_screen_size_from_settings(self):
        settings = FAST_SETTINGS.model_copy(update={"screen_width": 720})
        _, gateway, log = run("click(800, 10)", settings=settings)
        assert gateway.actions == []
        assert log == ["Warning: Coordinates off screen: (800, 10)"]
