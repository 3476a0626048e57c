"""
ImportedModuleRegistry: load other notebooks as modules of the runtime.

Imported notebooks are fetched through a NotebookLoader, and their code
cells are bound into a fresh Module of the importing notebook's runtime.
Modules are cached by notebook id; a notebook that (transitively) imports
itself fails with CircularImportError instead of recursing forever.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from notebook_rx.cell import CellKind, assignment_definitions
from notebook_rx.config import EngineConfig
from notebook_rx.errors import CircularImportError, ImportLoadError, ParseError
from notebook_rx.loader import CellData, NotebookData, NotebookLoader
from notebook_rx.parser import Assignment, Import, ParseException, Parser, PythonParser
from notebook_rx.runtime import Module, Runtime
from notebook_rx.sandbox import compile_expression
from notebook_rx.utils import sanitize_variable_name

logger = logging.getLogger(__name__)


@dataclass
class ImportedCell:
    """A code cell of an imported notebook and the names it binds."""
    id: str
    names: list[str] = field(default_factory=list)


@dataclass
class ImportedModule:
    """A loaded notebook: its runtime module, source data and bound cells."""
    notebook_id: str
    module: Module
    data: NotebookData
    cells: list[ImportedCell] = field(default_factory=list)

    @property
    def runtime_module(self) -> Module:
        return self.module

    def names(self) -> list[str]:
        return [name for cell in self.cells for name in cell.names]


class ImportedModuleRegistry:
    """
    Cache of imported notebooks, keyed by notebook id.

    Args:
        runtime: Runtime that owns the imported modules
        loader: Source of notebook data
        parser: Parser for imported code cells
        config: Engine settings
    """

    def __init__(
        self,
        runtime: Runtime,
        loader: NotebookLoader,
        parser: Optional[Parser] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.runtime = runtime
        self.loader = loader
        self.parser = parser or PythonParser()
        self.config = config or EngineConfig()
        self._modules: dict[str, ImportedModule] = {}
        self._loading: set[str] = set()

    def __contains__(self, name: str) -> bool:
        return name in self._modules

    def __len__(self) -> int:
        return len(self._modules)

    @property
    def loading(self) -> frozenset:
        return frozenset(self._loading)

    async def get_module(self, name: str) -> ImportedModule:
        """
        Return the module for notebook `name`, loading it on first use.

        Raises:
            CircularImportError: `name` is already being loaded further up
                the import chain
            ImportLoadError: fetching or binding the notebook failed
        """
        cached = self._modules.get(name)
        if cached is not None:
            return cached
        if name in self._loading:
            raise CircularImportError(name)

        self._loading.add(name)
        try:
            imported = await self._load(name)
        finally:
            self._loading.discard(name)

        self._modules[name] = imported
        return imported

    def dispose(self) -> None:
        """Dispose every cached module and forget them."""
        for imported in self._modules.values():
            imported.module.dispose()
        self._modules.clear()
        self._loading.clear()

    async def _load(self, name: str) -> ImportedModule:
        logger.info("Loading notebook %s", name)
        try:
            data = await self.loader.fetch(name)
        except Exception as e:
            raise ImportLoadError(name, str(e)) from e

        module = self.runtime.module()
        cells: list[ImportedCell] = []
        try:
            for cell in data.cells:
                if CellKind(cell.kind) is not CellKind.CODE:
                    logger.info("Skipping %s cell %s of %s", cell.kind, cell.id, name)
                    continue
                cells.append(await self._bind_cell(name, module, cell))
        except CircularImportError:
            module.dispose()
            raise
        except Exception as e:
            module.dispose()
            raise ImportLoadError(name, str(e)) from e

        logger.info("Loaded notebook %s (%d code cells)", name, len(cells))
        return ImportedModule(name, module, data, cells)

    async def _bind_cell(self, name: str, module: Module, cell: CellData) -> ImportedCell:
        result = self.parser.parse(cell.value)

        if isinstance(result, ParseException):
            raise ParseError(f"cell {cell.id}: {result.exception}", cell.value) from result.exception

        if isinstance(result, Assignment):
            imported = ImportedCell(cell.id)
            cell_name = sanitize_variable_name(cell.id)
            for definition in assignment_definitions(result, cell_name):
                function = compile_expression(
                    definition.dependencies,
                    definition.body,
                    self.config.max_statement_length,
                )
                module.define(definition.name, definition.dependencies, function)
                if definition.name != cell_name:
                    imported.names.append(definition.name)
            return imported

        if isinstance(result, Import):
            source = await self.get_module(result.urn)
            imported = ImportedCell(cell.id)
            for import_name in result.names:
                module.import_(import_name.name, import_name.alias, source.module)
                imported.names.append(import_name.local_name)
            return imported

        raise ParseError(f"Unknown statement in cell {cell.id}", cell.value)
