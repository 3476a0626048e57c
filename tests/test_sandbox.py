"""
Tests for sandboxed expression evaluation.
"""

import math

import pytest
from asteval import Interpreter

from notebook_rx.sandbox import (
    INTERPRETER_DEFAULT,
    CompiledExpression,
    compile_expression,
    safe_eval,
    sandbox_builtins,
)


class TestCompileExpression:
    """Test cases for compile_expression()."""

    def test_arguments_bind_in_order(self):
        fn = compile_expression(["a", "b"], "a - b")
        assert fn(5, 3) == 2

    def test_no_dependencies(self):
        fn = compile_expression([], "1 + 2")
        assert fn() == 3

    def test_reusable(self):
        fn = compile_expression(["x"], "x * 2")
        assert fn(1) == 2
        assert fn(21) == 42

    def test_sandbox_builtins_available(self):
        fn = compile_expression(["values"], "sum(values) + len(values)")
        assert fn([1, 2, 3]) == 9

    def test_comprehension(self):
        fn = compile_expression(["values"], "[v * v for v in values]")
        assert fn([1, 2, 3]) == [1, 4, 9]

    def test_attribute_call_on_argument(self):
        fn = compile_expression(["text"], "text.upper()")
        assert fn("abc") == "ABC"

    def test_syntax_error_at_compile_time(self):
        with pytest.raises(SyntaxError):
            compile_expression([], "1 +")

    def test_runtime_error_keeps_type(self):
        fn = compile_expression([], "1 / 0")
        with pytest.raises(ZeroDivisionError):
            fn()

    def test_error_message_is_single_line(self):
        fn = compile_expression(["d"], "d['missing']")
        with pytest.raises(KeyError) as exc_info:
            fn({})
        assert "\n" not in str(exc_info.value)

    def test_wrong_argument_count(self):
        fn = compile_expression(["a"], "a")
        with pytest.raises(TypeError):
            fn()

    def test_statement_length_limit(self):
        with pytest.raises(Exception):
            compile_expression([], "1 + " * 20 + "1", max_statement_length=10)

    def test_print_is_captured(self):
        fn = compile_expression(["x"], "print(x)")
        fn("hello")
        assert "hello" in fn.printed

    def test_repr(self):
        fn = CompiledExpression(["a", "b"], "a + b")
        assert repr(fn) == "CompiledExpression((a, b) => a + b)"


class TestSafeEval:
    """Test cases for safe_eval()."""

    def test_with_variables(self):
        assert safe_eval("x + y", {"x": 1, "y": 2}) == 3

    def test_without_variables(self):
        assert safe_eval("max(3, 7)") == 7

    def test_no_host_builtins(self):
        with pytest.raises(Exception):
            safe_eval("__import__('os')")


class TestSandboxBuiltins:
    """Test cases for sandbox_builtins() and INTERPRETER_DEFAULT."""

    def test_plain_values(self):
        builtins = sandbox_builtins()

        assert builtins["len"] is len
        assert builtins["e"] == math.e

    def test_excludes_stdlib_bindings(self):
        builtins = sandbox_builtins()

        assert "Generators" not in builtins
        assert "Inputs" not in builtins

    def test_print_is_interpreter_bound(self):
        assert sandbox_builtins()["print"] is INTERPRETER_DEFAULT

    def test_argument_overrides_builtin(self):
        fn = compile_expression(["e"], "e + 1")
        assert fn(10) == 11

    def test_default_restores_own_binding(self):
        fn = compile_expression(["print", "x"], "print(x)")

        fn(INTERPRETER_DEFAULT, "hello")

        assert "hello" in fn.printed

    def test_default_after_override(self):
        fn = compile_expression(["max"], "max(1, 2)")

        assert fn(min) == 1
        assert fn(INTERPRETER_DEFAULT) == 2


class TestCompileOnce:
    def test_body_is_not_parsed_again(self, monkeypatch):
        fn = compile_expression(["x"], "x + 1")
        calls = []
        parse = Interpreter.parse

        def counting_parse(self, text):
            calls.append(text)
            return parse(self, text)

        monkeypatch.setattr(Interpreter, "parse", counting_parse)

        assert [fn(1), fn(2), fn(3)] == [2, 3, 4]
        assert calls == []

    def test_error_then_success(self):
        fn = compile_expression(["d"], "d['k']")

        with pytest.raises(KeyError):
            fn({})
        assert fn({"k": 1}) == 1
