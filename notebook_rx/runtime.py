"""
Runtime: the reactive dataflow graph.

A Runtime owns Modules; a Module owns Variables. A Variable is either
defined by a callable over named dependencies or imported from a variable
of another module. Whenever a variable changes, it and every variable that
transitively depends on it (in any module of the runtime) are marked
pending and recomputed in dependency order, synchronously. Each variable
reports its new state to its observer.
"""

import asyncio
import itertools
import logging
from collections import deque
from types import MappingProxyType
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional, Sequence

from notebook_rx.errors import (
    CircularDefinitionError,
    DuplicateDefinitionError,
    EvaluationError,
    NotebookError,
    RuntimeDisposedError,
    UndefinedNameError,
    UseAfterDeleteError,
)
from notebook_rx.observers import PENDING, Fulfilled, Observer, Rejected, State
from notebook_rx.sandbox import sandbox_builtins
from notebook_rx.stdlib import Stream, library

logger = logging.getLogger(__name__)

_variable_ids = itertools.count(1)


class _StillPending(Exception):
    """An input has no value yet."""


class Variable:
    """
    One reactive binding inside a Module.

    Variables are created through Module.variable() and stay owned by
    their module until delete() is called. Redefining a variable keeps its
    observer, so subscribers never need to resubscribe.
    """

    def __init__(self, module: "Module", observer: Optional[Observer] = None):
        self._id = next(_variable_ids)
        self._module = module
        self._observer = observer
        self._name: Optional[str] = None
        self._dependencies: tuple[str, ...] = ()
        self._definition: Optional[Callable[..., Any]] = None
        self._source: Optional[tuple["Module", str]] = None
        self._state: State = PENDING
        self._deleted = False
        self._stream: Optional[Stream] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._waiters: list[asyncio.Future] = []

    @property
    def id(self) -> int:
        return self._id

    @property
    def name(self) -> Optional[str]:
        return self._name

    @property
    def dependencies(self) -> tuple[str, ...]:
        return self._dependencies

    @property
    def module(self) -> "Module":
        return self._module

    @property
    def observer(self) -> Optional[Observer]:
        return self._observer

    @property
    def state(self) -> State:
        return self._state

    @property
    def deleted(self) -> bool:
        return self._deleted

    @property
    def is_defined(self) -> bool:
        return self._definition is not None or self._source is not None

    @property
    def is_import(self) -> bool:
        return self._source is not None

    def define(
        self,
        name: Optional[str],
        dependencies: Sequence[str],
        definition: Callable[..., Any],
    ) -> "Variable":
        """
        (Re)bind this variable to a definition over named dependencies.

        Args:
            name: Name other variables refer to, or None for an anonymous variable
            dependencies: Names passed positionally to the definition
            definition: Callable computing the value

        Returns:
            self
        """
        self._check_live()
        old_name = self._name
        self._name = name
        self._dependencies = tuple(dependencies)
        self._definition = definition
        self._source = None
        logger.debug("define %s(%s)", name or f"#{self._id}", ", ".join(self._dependencies))
        self._module._runtime._changed(self._module, (old_name, name), self)
        return self

    def import_(self, name: str, alias: Optional[str] = None, module: Optional["Module"] = None) -> "Variable":
        """
        Bind this variable to the variable called `name` in another module.

        Args:
            name: Name of the variable in the source module
            alias: Local name (defaults to `name`)
            module: Source module
        """
        self._check_live()
        if module is None:
            raise ValueError("import_ requires a source module")
        old_name = self._name
        self._name = alias or name
        self._dependencies = ()
        self._definition = None
        self._source = (module, name)
        logger.debug("import %s as %s", name, self._name)
        self._module._runtime._changed(self._module, (old_name, self._name), self)
        return self

    def delete(self) -> None:
        """Release the binding; dependents see the name disappear."""
        self._check_live()
        name = self._name
        self._release(UseAfterDeleteError(f"variable {name or self._id} was deleted"))
        self._module._variables.remove(self)
        self._module._runtime._changed(self._module, (name,))

    def _check_live(self) -> None:
        if self._deleted:
            raise UseAfterDeleteError(f"variable {self._name or self._id} has been deleted")

    def _release(self, reason: Optional[BaseException] = None) -> None:
        self._deleted = True
        self._detach_stream()
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if waiter.done():
                continue
            if reason is None:
                waiter.cancel()
            else:
                waiter.set_exception(reason)

    def _inputs(self) -> list[tuple["Module", str, bool]]:
        """(module, name, allow_builtins) for everything this variable reads."""
        if self._source is not None:
            module, name = self._source
            return [(module, name, False)]
        return [(self._module, dependency, True) for dependency in self._dependencies]

    def _reads(self, module: "Module", name: str) -> bool:
        return any(m is module and n == name for m, n, _ in self._inputs())

    def _compute(self) -> None:
        self._detach_stream()
        if not self.is_defined:
            return

        runtime = self._module._runtime
        if self._name is not None and len(self._module._definers(self._name)) > 1:
            self._reject(DuplicateDefinitionError(self._name))
            return

        try:
            args = [runtime._resolve(module, name, builtins) for module, name, builtins in self._inputs()]
        except _StillPending:
            return
        except Exception as e:
            self._reject(e)
            return

        if self._source is not None:
            value = args[0]
        else:
            try:
                value = self._definition(*args)
            except NotebookError as e:
                self._reject(e)
                return
            except Exception as e:
                error = EvaluationError(str(e) or type(e).__name__, self._name)
                error.__cause__ = e
                self._reject(error)
                return

        if isinstance(value, Stream):
            self._attach_stream(value)
            value = value.value
        self._fulfill(value)

    def _attach_stream(self, stream: Stream) -> None:
        self._stream = stream
        self._unsubscribe = stream.subscribe(
            lambda value: self._module._runtime._push(self, stream, value)
        )

    def _detach_stream(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
        self._unsubscribe = None
        self._stream = None

    def _mark_pending(self) -> None:
        self._state = PENDING
        self._notify("pending")

    def _fulfill(self, value: Any) -> None:
        self._state = Fulfilled(value)
        self._notify("fulfilled", value)
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(value)

    def _reject(self, error: BaseException) -> None:
        logger.debug("%s rejected: %s", self._name or f"#{self._id}", error)
        self._state = Rejected(error)
        self._notify("rejected", error)
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(error)

    def _notify(self, method: str, *args: Any) -> None:
        if self._observer is None:
            return
        try:
            getattr(self._observer, method)(*args)
        except Exception as e:
            logger.warning("Observer of %s failed: %s", self._name or f"#{self._id}", e)

    async def _wait(self) -> Any:
        if isinstance(self._state, Fulfilled):
            return self._state.value
        if isinstance(self._state, Rejected):
            raise self._state.error
        future = asyncio.get_running_loop().create_future()
        self._waiters.append(future)
        return await future

    def __repr__(self) -> str:
        kind = "import" if self.is_import else "define"
        return f"<Variable #{self._id} {self._name!r} {kind} {type(self._state).__name__}>"


class Module:
    """A namespace of variables sharing the runtime's builtins."""

    def __init__(self, runtime: "Runtime"):
        self._runtime = runtime
        self._variables: list[Variable] = []
        self._disposed = False

    @property
    def runtime(self) -> "Runtime":
        return self._runtime

    @property
    def variables(self) -> tuple[Variable, ...]:
        return tuple(self._variables)

    @property
    def disposed(self) -> bool:
        return self._disposed

    def variable(self, observer: Optional[Observer] = None) -> Variable:
        """Allocate a new, undefined variable."""
        if self._disposed:
            raise RuntimeDisposedError("module has been disposed")
        variable = Variable(self, observer)
        self._variables.append(variable)
        return variable

    def define(
        self,
        name: Optional[str],
        dependencies: Sequence[str],
        definition: Callable[..., Any],
        observer: Optional[Observer] = None,
    ) -> Variable:
        return self.variable(observer).define(name, dependencies, definition)

    def import_(
        self,
        name: str,
        alias: Optional[str],
        module: "Module",
        observer: Optional[Observer] = None,
    ) -> Variable:
        return self.variable(observer).import_(name, alias, module)

    async def value(self, name: str) -> Any:
        """
        Resolve a named variable's value.

        Waits while the variable is pending. Raises the variable's error if
        it is rejected, and UndefinedNameError if nothing defines the name.
        """
        definers = self._definers(name)
        if len(definers) > 1:
            raise DuplicateDefinitionError(name)
        if definers:
            return await definers[0]._wait()
        if name in self._runtime._builtins:
            return self._runtime._builtins[name]
        raise UndefinedNameError(name)

    def remove_variable(self, name: str) -> bool:
        """Delete every variable bound to `name`."""
        removed = False
        for variable in self._definers(name):
            variable.delete()
            removed = True
        return removed

    def names(self) -> list[str]:
        seen: list[str] = []
        for variable in self._variables:
            if variable.is_defined and variable.name is not None and variable.name not in seen:
                seen.append(variable.name)
        return seen

    def dispose(self) -> None:
        """Delete every variable; importers in other modules lose their source."""
        if self._disposed:
            return
        names = set(self.names())
        for variable in self._variables:
            variable._release()
        self._variables.clear()
        self._disposed = True
        self._runtime._forget(self, names)

    def _definers(self, name: str) -> list[Variable]:
        return [v for v in self._variables if v._name == name and v.is_defined]


class Runtime:
    """
    Top-level owner of modules.

    Every module created by a runtime shares its builtins: the sandbox's
    own names (len, sum, e, ...), overridden by the standard library
    (Generators, Inputs), overridden in turn by any extra bindings passed
    in. A module's own definitions always take precedence over builtins.
    """

    def __init__(self, builtins: Optional[Mapping[str, Any]] = None):
        self._builtins: dict[str, Any] = sandbox_builtins()
        self._builtins.update(library())
        if builtins:
            self._builtins.update(builtins)
        self._modules: list[Module] = []
        self._disposed = False
        self._propagating = False
        self._queue: deque = deque()

    @property
    def builtins(self) -> Mapping[str, Any]:
        return MappingProxyType(self._builtins)

    @property
    def modules(self) -> tuple[Module, ...]:
        return tuple(self._modules)

    @property
    def disposed(self) -> bool:
        return self._disposed

    def module(self) -> Module:
        """Create a module sharing this runtime's builtins."""
        if self._disposed:
            raise RuntimeDisposedError("runtime has been disposed")
        module = Module(self)
        self._modules.append(module)
        return module

    def dispose(self) -> None:
        """Tear down every module and cancel pending value() calls."""
        if self._disposed:
            return
        self._disposed = True
        self._queue.clear()
        for module in self._modules:
            for variable in module._variables:
                variable._release()
            module._variables.clear()
            module._disposed = True
        self._modules.clear()
        logger.debug("runtime disposed")

    def _iter_variables(self) -> Iterator[Variable]:
        for module in self._modules:
            yield from module._variables

    def _dependents(self, module: Module, name: str) -> list[Variable]:
        return [v for v in self._iter_variables() if v._reads(module, name)]

    def _resolve(self, module: Module, name: str, builtins: bool = True) -> Any:
        definers = module._definers(name)
        if len(definers) > 1:
            raise DuplicateDefinitionError(name)
        if definers:
            state = definers[0]._state
            if isinstance(state, Fulfilled):
                return state.value
            if isinstance(state, Rejected):
                raise state.error
            raise _StillPending(name)
        if builtins and name in self._builtins:
            return self._builtins[name]
        raise UndefinedNameError(name)

    def _changed(self, module: Module, names: Iterable[Optional[str]], variable: Optional[Variable] = None) -> None:
        roots: list[Variable] = [variable] if variable is not None else []
        for name in set(names):
            if name is None:
                continue
            roots.extend(module._definers(name))
            roots.extend(self._dependents(module, name))
        self._enqueue(("compute", roots))

    def _forget(self, module: Module, names: Iterable[str]) -> None:
        if module in self._modules:
            self._modules.remove(module)
        roots: list[Variable] = []
        for name in names:
            roots.extend(self._dependents(module, name))
        self._enqueue(("compute", roots))

    def _push(self, variable: Variable, stream: Stream, value: Any) -> None:
        self._enqueue(("push", variable, stream, value))

    def _enqueue(self, item: tuple) -> None:
        if self._disposed:
            return
        self._queue.append(item)
        if self._propagating:
            return
        self._propagating = True
        try:
            while self._queue:
                item = self._queue.popleft()
                if item[0] == "push":
                    self._apply_push(*item[1:])
                else:
                    self._recompute(item[1])
        finally:
            self._propagating = False

    def _apply_push(self, variable: Variable, stream: Stream, value: Any) -> None:
        if variable._deleted or variable._stream is not stream:
            return
        variable._fulfill(value)
        if variable._name is not None:
            self._recompute(self._dependents(variable._module, variable._name))

    def _recompute(self, roots: Iterable[Variable]) -> None:
        dirty: dict[int, Variable] = {}
        stack = [v for v in roots if not v._deleted]
        while stack:
            variable = stack.pop()
            if variable._id in dirty:
                continue
            dirty[variable._id] = variable
            if variable._name is not None:
                stack.extend(self._dependents(variable._module, variable._name))
        if not dirty:
            return

        for variable in dirty.values():
            variable._mark_pending()

        ordered, cyclic = self._sort(dirty)
        for variable in ordered:
            if not variable._deleted:
                variable._compute()
        for variable in cyclic:
            if not variable._deleted:
                variable._reject(CircularDefinitionError(variable._name))

    def _sort(self, dirty: dict[int, Variable]) -> tuple[list[Variable], list[Variable]]:
        """Order dirty variables so inputs come first; leftovers form cycles."""
        indegree = {key: 0 for key in dirty}
        edges: dict[int, list[int]] = {key: [] for key in dirty}
        for key, variable in dirty.items():
            for module, name, _ in variable._inputs():
                for upstream in module._definers(name):
                    if upstream._id in dirty:
                        edges[upstream._id].append(key)
                        indegree[key] += 1

        ready = deque(key for key, count in indegree.items() if count == 0)
        ordered: list[Variable] = []
        while ready:
            key = ready.popleft()
            ordered.append(dirty[key])
            for downstream in edges[key]:
                indegree[downstream] -= 1
                if indegree[downstream] == 0:
                    ready.append(downstream)

        cyclic = [dirty[key] for key, count in indegree.items() if count > 0]
        return ordered, cyclic
