"""Tests for control flow, functions and per-line error handling."""

import pytest

from conftest import FAST_SETTINGS, RecordingGateway, run


# ---------------------------------------------------------------------------
# while
# ---------------------------------------------------------------------------

class TestWhile:
    def test_false_runs_zero_times(self):
        _, gateway, _ = run("""
            while (false) {
                click(1, 1)
            }
        """)
        assert gateway.clicks == []

    def test_counter_loop(self):
        engine, gateway, _ = run("""
            i = 0
            while (i < 3) {
                click(1, 1)
                i = i + 1
            }
        """)
        assert len(gateway.clicks) == 3
        assert engine.variables["i"] == 3

    def test_not_exit_loop(self):
        _, gateway, _ = run("""
            while (!EXIT) {
                click(1, 1)
                EXIT = true
            }
        """)
        assert len(gateway.clicks) == 1

    def test_inline_loop(self):
        engine, _, _ = run("n = 0\nwhile (n < 4) { n = n + 1 }")
        assert engine.variables["n"] == 4

    def test_break(self):
        _, gateway, log = run("""
            while (true) {
                click(1, 1)
                break
                click(2, 2)
            }
            log("after")
        """)
        assert gateway.clicks == [("click", 1.0, 1.0)]
        assert log[-1] == "after"

    def test_break_inside_if_ends_loop(self):
        _, _, log = run("""
            n = 0
            while (true) {
                n = n + 1
                if (n >= 3) {
                    break
                }
            }
            log("n=$n")
        """)
        assert log == ["n=3"]

    def test_break_only_ends_innermost_loop(self):
        _, gateway, _ = run("""
            i = 0
            while (i < 2) {
                i = i + 1
                while (true) {
                    break
                }
                click(1, 1)
            }
        """)
        assert len(gateway.clicks) == 2

    def test_continue_ends_loop_like_break(self):
        # continue does not resume the loop: it ends it, same as break
        engine, gateway, _ = run("""
            n = 0
            while (n < 5) {
                n = n + 1
                if (n == 2) {
                    continue
                }
                click(1, 1)
            }
        """)
        assert len(gateway.clicks) == 1
        assert engine.variables["n"] == 2


# ---------------------------------------------------------------------------
# if / else
# ---------------------------------------------------------------------------

class TestIf:
    @pytest.mark.parametrize("condition,expected", [("true", ["A"]), ("false", ["B"])])
    def test_exactly_one_branch(self, condition, expected):
        _, _, log = run(f"""
            if ({condition}) {{
                log("A")
            }} else {{
                log("B")
            }}
        """)
        assert log == expected

    def test_else_on_next_line(self):
        _, _, log = run("""
            if (false) {
                log("A")
            }
            else {
                log("B")
            }
            log("C")
        """)
        assert log == ["B", "C"]

    def test_if_without_else(self):
        _, _, log = run("""
            if (false) {
                log("A")
            }
            log("C")
        """)
        assert log == ["C"]

    @pytest.mark.parametrize("x,expected", [("1", "one"), ("2", "two"), ("3", "other")])
    def test_else_if_chain(self, x, expected):
        _, _, log = run(f"""
            x = {x}
            if (x == 1) {{
                log("one")
            }} else if (x == 2) {{
                log("two")
            }} else {{
                log("other")
            }}
            log("end")
        """)
        assert log == [expected, "end"]

    def test_single_line_if_else(self):
        _, _, log = run('if (1 > 2) { log("A") } else { log("B") }')
        assert log == ["B"]

    def test_nested_if(self):
        _, _, log = run("""
            if (true) {
                if (false) {
                    log("inner")
                } else {
                    log("inner-else")
                }
                log("outer")
            }
        """)
        assert log == ["inner-else", "outer"]

    def test_brace_in_string_does_not_close_block(self):
        _, _, log = run("""
            if (true) {
                log("}")
            }
            log("after")
        """)
        assert log == ["}", "after"]


# ---------------------------------------------------------------------------
# Functions
# ---------------------------------------------------------------------------

class TestFunctions:
    def test_locals_do_not_leak(self):
        _, _, log = run("""
            x = "outer"
            fun f(a) {
                x = "inner"
                y = a
            }
            f(1)
            log(x)
            log("y=$y")
        """)
        assert log == ["outer", "y=$y"]

    def test_result_propagates_to_target(self):
        engine, _, log = run("""
            fun add(a, b) {
                result = a + b
            }
            y = add(2, 3)
            log("y=$y")
        """)
        assert log == ["y=5"]
        assert "result" not in engine.variables

    def test_no_result_leaves_target_unset(self):
        engine, _, _ = run("""
            fun f() {
                z = 1
            }
            y = f()
        """)
        assert "y" not in engine.variables
        assert "z" not in engine.variables

    def test_forward_reference(self):
        _, _, log = run("""
            greet()
            fun greet() {
                log("hi")
            }
        """)
        assert log == ["hi"]

    def test_arguments_resolved_from_variables(self):
        _, _, log = run("""
            name = "bob"
            fun hello(who) {
                log("hi $who")
            }
            hello(name)
        """)
        assert log == ["hi bob"]

    def test_return_ends_whole_run(self):
        # return cancels the run, not only the function
        engine, _, log = run("""
            fun f() {
                log("in")
                return
                log("unreachable")
            }
            f()
            log("after")
        """)
        assert log == ["in"]
        assert engine.exit_requested

    def test_break_outside_loop_ends_function_body(self):
        _, _, log = run("""
            fun f() {
                log("in")
                break
                log("skipped")
            }
            f()
            log("after")
        """)
        assert log == ["in", "after"]

    def test_call_depth_limit(self):
        settings = FAST_SETTINGS.model_copy(update={"max_call_depth": 5})
        _, _, log = run("""
            fun f() {
                f()
            }
            f()
            log("survived")
        """, settings=settings)
        assert log == ["Error on line 2: Maximum call depth (5) exceeded", "survived"]

    def test_builtin_name_not_overridden(self):
        _, gateway, _ = run("""
            fun click(x, y) {
                log("user click")
            }
            click(1, 1)
        """)
        assert gateway.clicks == [("click", 1.0, 1.0)]


# ---------------------------------------------------------------------------
# Statements and errors
# ---------------------------------------------------------------------------

class TestStatements:
    def test_exit_assignment_stops_run(self):
        _, _, log = run("""
            log("a")
            EXIT = true
            log("b")
        """)
        assert log == ["a"]

    def test_declaration_prefix_stripped(self):
        engine, _, _ = run("""
            val x = 5
            string name = "bob"
        """)
        assert engine.variables == {"x": "5", "name": "bob"}

    def test_comments_and_blank_lines_ignored(self):
        _, _, log = run("""
            // click(1, 1)

            log("ok")
        """)
        assert log == ["ok"]

    def test_unknown_statement_is_noop(self):
        _, _, log = run("""
            frobnicate(1)
            log("ok")
        """)
        assert log == ["ok"]

    def test_bad_line_does_not_abort(self):
        _, _, log = run("""
            random(5, 1)
            log("next")
        """)
        assert log == ["Error on line 1: random() min 5 is greater than max 1", "next"]

    def test_error_line_number_for_inline_statement(self):
        _, _, log = run('log("a"); random(2, 1)')
        assert log == ["a", "Error on line 1: random() min 2 is greater than max 1"]

    def test_error_line_number_inside_function(self):
        _, _, log = run("""
            fun f() {
                log("x")
                random(9, 1)
            }
            f()
        """)
        assert log == ["x", "Error on line 3: random() min 9 is greater than max 1"]

    def test_gateway_error_reported(self):
        gateway = RecordingGateway()
        gateway.click_error = RuntimeError("boom")
        _, _, log = run("""
            click(1, 1)
            log("next")
        """, gateway)
        assert log == ["Error on line 1: boom", "next"]

    def test_break_at_top_level_ends_run(self):
        _, _, log = run("""
            log("a")
            break
            log("b")
        """)
        assert log == ["a"]

    def test_trailing_comment_ignored(self):
        _, gateway, log = run("""
            click(10, 10) // tap the button
            log("a // b") // keep the slashes in strings
        """)
        assert gateway.clicks == [("click", 10.0, 10.0)]
        assert log == ["Click: 10, 10", "a // b"]

    def test_malformed_builtin_call_warns(self):
        _, gateway, log = run("""
            click(10, 10) extra
            sleep(5
            log("next")
        """)
        assert gateway.clicks == []
        assert log == [
            "Warning: Malformed call: click(10, 10) extra",
            "Warning: Malformed call: sleep(5",
            "next",
        ]

    def test_adjacent_string_literals_not_merged(self):
        engine, _, log = run("""
            x = "a" + "b"
            log("a", "b")
        """)
        assert engine.variables["x"] == '"a" + "b"'
        assert log == ['"a", "b"']
