"""
Tests for Runtime, Module and Variable.
"""

import pytest

from notebook_rx.errors import (
    CircularDefinitionError,
    DuplicateDefinitionError,
    EvaluationError,
    RuntimeDisposedError,
    UndefinedNameError,
    UseAfterDeleteError,
)
from notebook_rx.observers import Fulfilled, ObserverSet, Rejected
from notebook_rx.runtime import Runtime
from notebook_rx.stdlib import Generators, Stream


def value_of(variable):
    assert isinstance(variable.state, Fulfilled), variable.state
    return variable.state.value


def error_of(variable):
    assert isinstance(variable.state, Rejected), variable.state
    return variable.state.error


class TestPropagation:
    """Test cases for dependency propagation."""

    def test_define_computes_value(self, module):
        a = module.define("a", [], lambda: 1)
        assert value_of(a) == 1

    def test_dependent_recomputes(self, module):
        a = module.define("a", [], lambda: 1)
        b = module.define("b", ["a"], lambda a: a + 1)
        assert value_of(b) == 2

        a.define("a", [], lambda: 10)
        assert value_of(b) == 11

    def test_definition_order_does_not_matter(self, module):
        b = module.define("b", ["a"], lambda a: a * 2)
        assert isinstance(error_of(b), UndefinedNameError)

        module.define("a", [], lambda: 21)
        assert value_of(b) == 42

    def test_diamond_computes_each_once(self, module):
        calls = []
        a = module.define("a", [], lambda: 1)
        module.define("b", ["a"], lambda a: a + 1)
        module.define("c", ["a"], lambda a: a + 2)

        def total(b, c):
            calls.append((b, c))
            return b + c

        d = module.define("d", ["b", "c"], total)
        calls.clear()

        a.define("a", [], lambda: 2)

        assert value_of(d) == 7
        assert calls == [(3, 4)]

    def test_observer_sees_pending_then_value(self, module):
        events = []

        class Recorder:
            def pending(self):
                events.append("pending")

            def fulfilled(self, value):
                events.append(value)

            def rejected(self, error):
                events.append(error)

        a = module.define("a", [], lambda: 1)
        module.define("b", ["a"], lambda a: a * 3, observer=Recorder())
        events.clear()

        a.define("a", [], lambda: 2)

        assert events == ["pending", 6]

    def test_renaming_variable_breaks_dependents(self, module):
        a = module.define("a", [], lambda: 1)
        b = module.define("b", ["a"], lambda a: a)

        a.define("z", [], lambda: 1)

        assert isinstance(error_of(b), UndefinedNameError)

    def test_graph_changes_during_propagation(self, module):
        created = []

        class DefineOnce:
            def pending(self):
                pass

            def fulfilled(self, value):
                if not created:
                    created.append(module.define("c", ["a"], lambda a: a + 100))

            def rejected(self, error):
                pass

        module.define("a", [], lambda: 1, observer=DefineOnce())

        assert value_of(created[0]) == 101


class TestErrors:
    """Test cases for rejected variables."""

    def test_undefined_name(self, module):
        v = module.define("v", ["missing"], lambda m: m)
        error = error_of(v)
        assert isinstance(error, UndefinedNameError)
        assert "missing" in str(error)

    def test_definition_error_is_wrapped(self, module):
        def fail():
            raise ValueError("bad value")

        v = module.define("v", [], fail)
        error = error_of(v)

        assert isinstance(error, EvaluationError)
        assert isinstance(error.__cause__, ValueError)
        assert error.name == "v"
        assert "bad value" in str(error)

    def test_error_propagates_to_dependents(self, module):
        def fail():
            raise ValueError("bad value")

        module.define("a", [], fail)
        b = module.define("b", ["a"], lambda a: a)

        assert isinstance(error_of(b), EvaluationError)

    def test_recovers_when_input_is_fixed(self, module):
        def fail():
            raise ValueError("bad value")

        a = module.define("a", [], fail)
        b = module.define("b", ["a"], lambda a: a + 1)

        a.define("a", [], lambda: 1)

        assert value_of(b) == 2

    def test_duplicate_definition(self, module):
        first = module.define("d", [], lambda: 1)
        second = module.define("d", [], lambda: 2)

        assert isinstance(error_of(first), DuplicateDefinitionError)
        assert isinstance(error_of(second), DuplicateDefinitionError)

    def test_duplicate_resolved_by_delete(self, module):
        first = module.define("d", [], lambda: 1)
        second = module.define("d", [], lambda: 2)

        second.delete()

        assert value_of(first) == 1

    def test_circular_definition(self, module):
        x = module.define("x", ["y"], lambda y: y)
        y = module.define("y", ["x"], lambda x: x)

        assert isinstance(error_of(x), CircularDefinitionError)
        assert isinstance(error_of(y), CircularDefinitionError)

    def test_self_reference(self, module):
        x = module.define("x", ["x"], lambda x: x)
        assert isinstance(error_of(x), CircularDefinitionError)

    def test_cycle_broken_by_redefinition(self, module):
        x = module.define("x", ["y"], lambda y: y + 1)
        y = module.define("y", ["x"], lambda x: x)

        y.define("y", [], lambda: 1)

        assert value_of(x) == 2


class TestVariableLifecycle:
    """Test cases for deleting variables."""

    def test_define_after_delete_raises(self, module):
        v = module.define("v", [], lambda: 1)
        v.delete()

        with pytest.raises(UseAfterDeleteError):
            v.define("v", [], lambda: 2)
        with pytest.raises(UseAfterDeleteError):
            v.delete()

    def test_delete_rejects_dependents(self, module):
        a = module.define("a", [], lambda: 1)
        b = module.define("b", ["a"], lambda a: a)

        a.delete()

        assert isinstance(error_of(b), UndefinedNameError)
        assert "a" not in module.names()

    def test_delete_stops_observer(self, module):
        observers = ObserverSet()
        seen = []
        observers.add_observer(seen.append)
        a = module.define("a", [], lambda: 1)
        b = module.define("b", ["a"], lambda a: a, observer=observers)
        seen.clear()

        b.delete()
        a.define("a", [], lambda: 2)

        assert seen == []

    def test_remove_variable(self, module):
        module.define("a", [], lambda: 1)
        assert module.remove_variable("a") is True
        assert module.remove_variable("a") is False

    def test_names(self, module):
        module.define("a", [], lambda: 1)
        module.define(None, [], lambda: 2)
        module.define("b", [], lambda: 3)

        assert module.names() == ["a", "b"]


class TestModuleValue:
    """Test cases for Module.value()."""

    @pytest.mark.asyncio
    async def test_value(self, module):
        module.define("a", [], lambda: 1)
        module.define("b", ["a"], lambda a: a + 1)

        assert await module.value("b") == 2

    @pytest.mark.asyncio
    async def test_value_undefined(self, module):
        with pytest.raises(UndefinedNameError):
            await module.value("nope")

    @pytest.mark.asyncio
    async def test_value_rejected(self, module):
        module.define("x", ["x"], lambda x: x)
        with pytest.raises(CircularDefinitionError):
            await module.value("x")

    @pytest.mark.asyncio
    async def test_value_builtin(self, module):
        assert await module.value("Generators") is Generators


class TestBuiltins:
    """Test cases for runtime builtins."""

    def test_extra_builtins(self):
        runtime = Runtime(builtins={"k": 3})
        module = runtime.module()

        v = module.define("v", ["k"], lambda k: k + 1)

        assert value_of(v) == 4
        runtime.dispose()

    def test_module_definition_shadows_builtin(self):
        runtime = Runtime(builtins={"k": 3})
        module = runtime.module()
        module.define("k", [], lambda: 10)

        v = module.define("v", ["k"], lambda k: k)

        assert value_of(v) == 10
        runtime.dispose()

    def test_sandbox_names_are_fallback_builtins(self, runtime):
        module = runtime.module()
        v = module.define("v", ["len", "items"], lambda len_, items: len_(items))
        module.define("items", [], lambda: [1, 2])

        assert runtime.builtins["len"] is len
        assert value_of(v) == 2

    def test_module_definition_shadows_sandbox_name(self, runtime):
        module = runtime.module()
        e = module.define("e", [], lambda: 10)
        v = module.define("v", ["e"], lambda e: e + 1)

        assert value_of(v) == 11

        e.define("e", [], lambda: 20)
        assert value_of(v) == 21

    def test_extra_builtins_override_sandbox_names(self):
        runtime = Runtime(builtins={"sum": "user"})

        assert runtime.builtins["sum"] == "user"
        assert "Generators" in runtime.builtins
        runtime.dispose()

    def test_builtins_are_read_only(self, runtime):
        with pytest.raises(TypeError):
            runtime.builtins["x"] = 1


class TestImports:
    """Test cases for importing variables across modules."""

    def test_import_with_alias(self, runtime):
        source = runtime.module()
        target = runtime.module()
        a = source.define("a", [], lambda: 1)

        local = target.import_("a", "alias", source)
        user = target.define("u", ["alias"], lambda alias: alias + 1)

        assert local.name == "alias"
        assert value_of(user) == 2

        a.define("a", [], lambda: 5)
        assert value_of(user) == 6

    def test_import_missing_name(self, runtime):
        source = runtime.module()
        target = runtime.module()

        local = target.import_("nope", None, source)

        assert isinstance(error_of(local), UndefinedNameError)

    def test_import_ignores_builtins(self, runtime):
        source = runtime.module()
        target = runtime.module()

        local = target.import_("Generators", None, source)

        assert isinstance(error_of(local), UndefinedNameError)

    def test_disposing_source_module(self, runtime):
        source = runtime.module()
        target = runtime.module()
        source.define("a", [], lambda: 1)
        local = target.import_("a", None, source)

        source.dispose()

        assert isinstance(error_of(local), UndefinedNameError)
        assert source not in runtime.modules


class TestStreams:
    """Test cases for variables following streams."""

    def test_stream_pushes_propagate(self, module):
        stream = Stream(1)
        s = module.define("s", [], lambda: stream)
        t = module.define("t", ["s"], lambda s: s * 10)

        assert value_of(s) == 1
        assert value_of(t) == 10

        stream.push(2)

        assert value_of(s) == 2
        assert value_of(t) == 20

    def test_redefinition_unsubscribes(self, module):
        stream = Stream(1)
        s = module.define("s", [], lambda: stream)
        assert stream.subscriber_count == 1

        s.define("s", [], lambda: 0)
        stream.push(5)

        assert stream.subscriber_count == 0
        assert value_of(s) == 0

    def test_delete_unsubscribes(self, module):
        stream = Stream(1)
        s = module.define("s", [], lambda: stream)

        s.delete()

        assert stream.subscriber_count == 0

    def test_generators_input_follows_view(self, module):
        from notebook_rx.stdlib import Inputs

        view = Inputs.number(3)
        module.define("view", [], lambda: view)
        n = module.define("n", ["view", "Generators"], lambda view, g: g.input(view))

        assert value_of(n) == 3
        view.set_value(4)
        assert value_of(n) == 4


class TestDispose:
    """Test cases for Runtime.dispose()."""

    def test_module_after_dispose_raises(self):
        runtime = Runtime()
        runtime.dispose()

        with pytest.raises(RuntimeDisposedError):
            runtime.module()

    def test_dispose_is_idempotent(self):
        runtime = Runtime()
        module = runtime.module()
        module.define("a", [], lambda: 1)

        runtime.dispose()
        runtime.dispose()

        assert runtime.disposed
        assert module.disposed

    def test_variable_on_disposed_module_raises(self):
        runtime = Runtime()
        module = runtime.module()
        runtime.dispose()

        with pytest.raises(RuntimeDisposedError):
            module.variable()
