"""
Cell: one editable notebook entry mapped onto reactive variables.

Executing a cell parses its source and (re)binds one or more variables in
the notebook's module. Bindings that disappear from the new parse result
are disposed before new ones are defined, so no stale variable survives a
change in the cell's shape.
"""

import html
import logging
import weakref
from dataclasses import dataclass, replace
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping, Optional, Sequence, Union

from notebook_rx.config import EngineConfig
from notebook_rx.errors import ImportLoadError, NotebookError, ParseError
from notebook_rx.inspector import to_html
from notebook_rx.observers import Fulfilled, ObserverSet, Pending, Rejected
from notebook_rx.parser import Assignment, Import, ImportName, ParseException, Parser, ParseResult, PythonParser
from notebook_rx.runtime import Module, Variable
from notebook_rx.sandbox import compile_expression
from notebook_rx.templates import compile_template, render_html, render_markdown
from notebook_rx.utils import sanitize_variable_name

if TYPE_CHECKING:
    from notebook_rx.notebook import Notebook

logger = logging.getLogger(__name__)


class CellKind(str, Enum):
    """Kind of notebook cell."""
    CODE = "code"
    MARKDOWN = "markdown"
    HTML = "html"


@dataclass
class VariableBinding:
    """A cell-owned variable and the observers following it."""
    observers: ObserverSet
    variable: Variable


@dataclass
class Definition:
    """A variable to define: body is expression source or a ready callable."""
    name: Optional[str]
    dependencies: list[str]
    body: Union[str, Callable[..., Any]]


@dataclass(frozen=True)
class Single:
    """The cell's output is one bound variable."""
    name: str


@dataclass(frozen=True)
class Combined:
    """The cell's output is a synthetic variable listing several bound names."""
    name: str
    names: tuple[str, ...]


CellOutput = Union[Single, Combined]

ImportResolver = Callable[[str], Awaitable[Any]]


def assignment_definitions(assignment: Assignment, cell_name: str) -> list[Definition]:
    """
    Variables an assignment produces.

    A view assignment produces two: the cell-named view itself and the
    user-named value read from it through Generators.input.
    """
    if assignment.viewof and assignment.name is not None:
        return [
            Definition(cell_name, list(assignment.dependencies), assignment.body),
            Definition(assignment.name, [cell_name, "Generators"], f"Generators.input({cell_name})"),
        ]
    return [Definition(assignment.name or cell_name, list(assignment.dependencies), assignment.body)]


class Cell:
    """
    A reactive notebook cell.

    Lifecycle: created → execute() → bound → ok | error. execute() may be
    called again at any time; it replaces the cell's bindings in place.
    """

    def __init__(
        self,
        id: str,
        kind: Union[CellKind, str],
        value: str,
        module: Module,
        notebook: Optional["Notebook"] = None,
        parser: Optional[Parser] = None,
        resolve_import: Optional[ImportResolver] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.id = id
        self.kind = CellKind(kind)
        self.value = value
        self.module = module
        self.config = config or EngineConfig()
        self.is_focused = False
        self.is_closed = self.config.cells_closed
        self.parse_result: Optional[ParseResult] = None

        self._notebook_ref = weakref.ref(notebook) if notebook is not None else None
        self._parser = parser
        self._resolve_import = resolve_import
        self._error: Optional[BaseException] = None
        self._variables: dict[str, VariableBinding] = {}
        self._synthetic: set[str] = set()
        self._combined: Optional[tuple[str, ...]] = None
        self._output: Optional[CellOutput] = None
        self._executed = False

    @property
    def name(self) -> str:
        """Variable name used for this cell's anonymous and synthetic bindings."""
        return sanitize_variable_name(self.id)

    @property
    def notebook(self) -> Optional["Notebook"]:
        return self._notebook_ref() if self._notebook_ref is not None else None

    @property
    def parser(self) -> Parser:
        if self._parser is not None:
            return self._parser
        notebook = self.notebook
        if notebook is not None:
            return notebook.parser
        self._parser = PythonParser()
        return self._parser

    @property
    def variables(self) -> Mapping[str, VariableBinding]:
        return MappingProxyType(self._variables)

    @property
    def has_error(self) -> bool:
        return self.get_error() is not None

    @property
    def status(self) -> str:
        """One of "pending", "ok" or "error"."""
        if self.get_error() is not None:
            return "error"
        binding = self._output_binding()
        if binding is None:
            return "ok" if self._executed and not self._variables else "pending"
        if isinstance(binding.variable.state, Fulfilled):
            return "ok"
        return "pending"

    async def execute(self) -> None:
        """Parse the source and (re)bind this cell's variables."""
        self._executed = True
        self._error = None
        try:
            await _EXECUTORS[self.kind](self)
        except Exception as e:
            self.handle_error(e)

    def handle_error(self, error: Any) -> None:
        if not isinstance(error, BaseException):
            error = NotebookError(str(error))
        logger.debug("cell %s error: %s", self.id, error)
        self._error = error

    async def resolve_import(self, urn: str) -> Module:
        """Resolve an import urn to the runtime module holding its variables."""
        if self._resolve_import is not None:
            resolved = await self._resolve_import(urn)
        else:
            notebook = self.notebook
            if notebook is None:
                raise ImportLoadError(urn, "cell is not attached to a notebook")
            resolved = await notebook.get_module(urn)
        return getattr(resolved, "runtime_module", resolved)

    def assign_variables(self, definitions: Sequence[Definition]) -> None:
        """
        Bind the cell to a set of definitions.

        Names no longer produced are disposed first; existing names are
        redefined in place so their observers keep receiving values.
        """
        synthetic = {self.name}
        named: list[Definition] = []
        for idx, definition in enumerate(definitions):
            if definition.name is None:
                definition = replace(definition, name=f"{self.name}_{idx}")
                synthetic.add(definition.name)
            named.append(definition)
        definitions = named

        compiled = []
        for definition in definitions:
            if callable(definition.body):
                function = definition.body
            else:
                function = compile_expression(
                    definition.dependencies,
                    definition.body,
                    self.config.max_statement_length,
                )
            compiled.append((definition, function))

        self._invalidate_output()
        self._combined = None
        self._drop_bindings({d.name for d in definitions})
        self._synthetic = {d.name for d in definitions if d.name in synthetic}

        for definition, function in compiled:
            binding = self._binding(definition.name)
            binding.variable.define(definition.name, definition.dependencies, function)

    def import_variables(self, names: Sequence[ImportName], module: Module) -> None:
        """
        Bind the cell to variables of another module.

        Importing more than one name also defines a cell-named variable
        listing all imported values; it becomes the cell's output.
        """
        names = list(names)
        local_names = [n.local_name for n in names]
        keep = set(local_names)
        if len(names) > 1:
            keep.add(self.name)

        self._invalidate_output()
        self._drop_bindings(keep)
        self._synthetic = set()
        self._combined = None

        for name in names:
            binding = self._binding(name.local_name)
            binding.variable.import_(name.name, name.alias, module)

        if len(names) > 1:
            binding = self._binding(self.name)
            binding.variable.define(self.name, local_names, lambda *values: list(values))
            self._synthetic = {self.name}
            self._combined = tuple(local_names)

    @property
    def output(self) -> Optional[CellOutput]:
        """The cell's canonical output; cached until the bindings change."""
        if self._output is None and self._variables:
            if len(self._variables) == 1:
                self._output = Single(next(iter(self._variables)))
            elif self._combined is not None:
                self._output = Combined(self.name, self._combined)
            elif self.name in self._variables:
                self._output = Single(self.name)
        return self._output

    def default_observers(self) -> ObserverSet:
        binding = self._output_binding()
        if binding is None:
            raise NotebookError(f"No variable binding found for cell {self.id}")
        return binding.observers

    def names(self) -> list[str]:
        """User-visible names this cell binds."""
        return [name for name in self._variables if name not in self._synthetic]

    def get_value(self) -> Any:
        binding = self._output_binding()
        if binding is None:
            return None
        state = binding.variable.state
        return state.value if isinstance(state, Fulfilled) else None

    def get_error(self) -> Optional[BaseException]:
        if self._error is not None:
            return self._error
        bindings = list(self._variables.values())
        primary = self._output_binding()
        if primary is not None:
            bindings.insert(0, primary)
        for binding in bindings:
            state = binding.variable.state
            if isinstance(state, Rejected):
                return state.error
        return None

    def get_html(self) -> Optional[str]:
        error = self.get_error()
        if error is not None:
            return f'<div class="error">{html.escape(str(error))}</div>'
        binding = self._output_binding()
        if binding is None or isinstance(binding.variable.state, Pending):
            return None
        value = binding.variable.state.value
        if self.kind in (CellKind.MARKDOWN, CellKind.HTML):
            return value
        return to_html(value)

    def dispose(self) -> None:
        """Delete every bound variable and clear observers. Idempotent."""
        for binding in self._variables.values():
            binding.observers.clear()
            if not binding.variable.deleted:
                binding.variable.delete()
        self._variables.clear()
        self._synthetic = set()
        self._combined = None
        self._invalidate_output()

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "value": self.value,
            "is_focused": self.is_focused,
            "is_closed": self.is_closed,
        }

    def _binding(self, name: str) -> VariableBinding:
        binding = self._variables.get(name)
        if binding is None:
            observers = ObserverSet(on_error=self.handle_error)
            binding = VariableBinding(observers, self.module.variable(observers))
            self._variables[name] = binding
        return binding

    def _drop_bindings(self, keep: set) -> None:
        for name in list(self._variables):
            if name not in keep:
                binding = self._variables.pop(name)
                binding.observers.clear()
                if not binding.variable.deleted:
                    binding.variable.delete()

    def _invalidate_output(self) -> None:
        self._output = None

    def _output_binding(self) -> Optional[VariableBinding]:
        output = self.output
        if output is None:
            return None
        return self._variables.get(output.name)

    def __repr__(self) -> str:
        return f"<Cell {self.id} {self.kind.value} {self.status}>"


async def execute_code(cell: Cell) -> None:
    result = cell.parser.parse(cell.value)
    cell.parse_result = result

    if isinstance(result, ParseException):
        error = ParseError(str(result.exception), cell.value)
        error.__cause__ = result.exception
        cell.handle_error(error)
    elif isinstance(result, Assignment):
        cell.assign_variables(assignment_definitions(result, cell.name))
    elif isinstance(result, Import):
        module = await cell.resolve_import(result.urn)
        cell.import_variables(result.names, module)
    else:
        cell.handle_error(ParseError(f"Unknown statement: {result!r}", cell.value))


async def execute_markdown(cell: Cell) -> None:
    preset = cell.config.markdown_preset
    _execute_template(cell, lambda text: render_markdown(text, preset))


async def execute_html(cell: Cell) -> None:
    _execute_template(cell, render_html)


def _execute_template(cell: Cell, render: Callable[[str], str]) -> None:
    cell.parse_result = None
    definition = compile_template(cell.value, cell.parser, render, cell.config.max_statement_length)
    cell.assign_variables([Definition(cell.name, definition.dependencies, definition)])


_EXECUTORS = {
    CellKind.CODE: execute_code,
    CellKind.MARKDOWN: execute_markdown,
    CellKind.HTML: execute_html,
}
