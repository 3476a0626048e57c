"""
Notebook: an ordered collection of reactive cells sharing one module.

Every cell of a notebook binds its variables in the same runtime Module,
so cells can refer to each other's names regardless of their order.
Mutations bump `version` and `updated_at`; async mutations are serialized
so that overlapping edits never interleave a cell's re-execution.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict

from notebook_rx.cell import Cell, CellKind
from notebook_rx.config import EngineConfig
from notebook_rx.errors import DuplicateCellError
from notebook_rx.imports import ImportedModule, ImportedModuleRegistry
from notebook_rx.loader import DirectoryNotebookLoader, InMemoryNotebookLoader, NotebookData, NotebookLoader
from notebook_rx.parser import Parser, PythonParser
from notebook_rx.runtime import Runtime
from notebook_rx.utils import generate_cell_id, notebook_table

logger = logging.getLogger(__name__)


class CellUpdate(BaseModel):
    """Fields of a cell that update_cell() may change."""
    model_config = ConfigDict(extra="forbid")

    kind: Optional[CellKind] = None
    value: Optional[str] = None
    is_closed: Optional[bool] = None


class Notebook:
    """
    A reactive notebook.

    Args:
        title: Notebook title
        description: Free-form description
        runtime: Runtime to bind cells in (a new one by default)
        loader: Source of imported notebooks
        parser: Parser for code cells
        config: Engine settings
    """

    def __init__(
        self,
        title: str = "Untitled Notebook",
        description: str = "",
        runtime: Optional[Runtime] = None,
        loader: Optional[NotebookLoader] = None,
        parser: Optional[Parser] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.title = title
        self.description = description
        self.config = config or EngineConfig()
        self.parser = parser or PythonParser()
        self.runtime = runtime or Runtime()
        self.module = self.runtime.module()

        if loader is None:
            if self.config.notebooks_dir is not None:
                loader = DirectoryNotebookLoader(self.config.notebooks_dir)
            else:
                loader = InMemoryNotebookLoader()
        self.loader = loader
        self.registry = ImportedModuleRegistry(self.runtime, loader, self.parser, self.config)

        self.cells: list[Cell] = []
        self.version = 0
        self.created_at = datetime.now()
        self.updated_at = self.created_at
        self._lock = asyncio.Lock()
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def focused_cell(self) -> Optional[Cell]:
        return next((cell for cell in self.cells if cell.is_focused), None)

    @property
    def open_cells(self) -> list[Cell]:
        return [cell for cell in self.cells if not cell.is_closed]

    @property
    def closed_cells(self) -> list[Cell]:
        return [cell for cell in self.cells if cell.is_closed]

    def __len__(self) -> int:
        return len(self.cells)

    def __rich__(self):
        return notebook_table(self)

    def get_cell(self, cell_id: str) -> Optional[Cell]:
        return next((cell for cell in self.cells if cell.id == cell_id), None)

    def get_cell_index(self, cell_id: str) -> int:
        """Index of the cell, or -1 if there is none with that id."""
        for index, cell in enumerate(self.cells):
            if cell.id == cell_id:
                return index
        return -1

    async def add_cell(
        self,
        id: Optional[str] = None,
        kind: Union[CellKind, str] = CellKind.CODE,
        value: str = "",
        position: Optional[int] = None,
        focus: bool = False,
    ) -> Cell:
        """
        Create, insert and execute a cell.

        Args:
            id: Cell id (generated if omitted)
            kind: Cell kind
            value: Cell source
            position: Index to insert before; clamped into [0, len]. Appends by default.
            focus: Whether to focus the new cell

        Returns:
            The new cell

        Raises:
            DuplicateCellError: a cell with this id already exists
        """
        cell_id = id or generate_cell_id()
        async with self._lock:
            if self.get_cell(cell_id) is not None:
                raise DuplicateCellError(f"Cell already exists: {cell_id}")

            cell = self._new_cell(cell_id, kind, value)
            if position is None:
                index = len(self.cells)
            else:
                index = max(0, min(position, len(self.cells)))
            self.cells.insert(index, cell)
            if focus:
                self._focus(cell)
            self._touch()
            logger.debug("added cell %s at %d", cell_id, index)

            await cell.execute()
            return cell

    def remove_cell(self, cell_id: str) -> bool:
        """Detach and dispose a cell."""
        index = self.get_cell_index(cell_id)
        if index < 0:
            return False
        cell = self.cells.pop(index)
        cell.dispose()
        self._touch()
        logger.debug("removed cell %s", cell_id)
        return True

    async def update_cell(self, cell_id: str, **updates) -> bool:
        """
        Update a cell's kind, value or closed flag.

        The cell is re-executed only if its value or kind changed.

        Raises:
            pydantic.ValidationError: unknown keys or invalid values
        """
        update = CellUpdate(**updates)
        async with self._lock:
            cell = self.get_cell(cell_id)
            if cell is None:
                return False

            rerun = False
            if update.kind is not None and update.kind is not cell.kind:
                cell.kind = update.kind
                rerun = True
            if update.value is not None and update.value != cell.value:
                cell.value = update.value
                rerun = True
            if update.is_closed is not None:
                cell.is_closed = update.is_closed
            self._touch()

            if rerun:
                await cell.execute()
            return True

    async def move_cell(self, cell_id: str, new_index: int) -> bool:
        """Move a cell to new_index, which must lie in [0, len)."""
        async with self._lock:
            index = self.get_cell_index(cell_id)
            if index < 0 or not 0 <= new_index < len(self.cells):
                return False
            if index == new_index:
                return True
            cell = self.cells.pop(index)
            self.cells.insert(new_index, cell)
            self._touch()
            return True

    async def move_cell_up(self, cell_id: str) -> bool:
        index = self.get_cell_index(cell_id)
        if index <= 0:
            return False
        return await self.move_cell(cell_id, index - 1)

    async def move_cell_down(self, cell_id: str) -> bool:
        index = self.get_cell_index(cell_id)
        if index < 0 or index >= len(self.cells) - 1:
            return False
        return await self.move_cell(cell_id, index + 1)

    async def duplicate_cell(self, cell_id: str, new_id: Optional[str] = None) -> Optional[Cell]:
        """
        Insert a copy of a cell right after it and execute the copy.

        Returns:
            The new cell, or None if cell_id is unknown
        """
        async with self._lock:
            index = self.get_cell_index(cell_id)
            if index < 0:
                return None
            source = self.cells[index]
            copy_id = new_id or generate_cell_id()
            if self.get_cell(copy_id) is not None:
                raise DuplicateCellError(f"Cell already exists: {copy_id}")

            cell = self._new_cell(copy_id, source.kind, source.value)
            cell.is_closed = source.is_closed
            self.cells.insert(index + 1, cell)
            self._touch()

            await cell.execute()
            return cell

    def set_focus(self, cell_id: str) -> bool:
        cell = self.get_cell(cell_id)
        if cell is None:
            return False
        self._focus(cell)
        self._touch()
        return True

    def clear_focus(self) -> None:
        for cell in self.cells:
            cell.is_focused = False
        self._touch()

    def toggle_closed(self, cell_id: str) -> bool:
        cell = self.get_cell(cell_id)
        if cell is None:
            return False
        cell.is_closed = not cell.is_closed
        self._touch()
        return True

    async def run_cell(self, cell_id: str) -> bool:
        """Re-execute one cell."""
        async with self._lock:
            cell = self.get_cell(cell_id)
            if cell is None:
                return False
            await cell.execute()
            return True

    async def run_all_cells(self) -> None:
        """Re-execute every cell in notebook order."""
        async with self._lock:
            for cell in list(self.cells):
                await cell.execute()

    def update_metadata(self, title: Optional[str] = None, description: Optional[str] = None) -> None:
        if title is not None:
            self.title = title
        if description is not None:
            self.description = description
        self._touch()

    async def get_module(self, urn: str) -> ImportedModule:
        """Resolve an import urn through the notebook's registry."""
        return await self.registry.get_module(urn)

    def validate(self) -> tuple[bool, list[str]]:
        """
        Check the notebook's structural invariants.

        Returns:
            Tuple of (is_valid, list of problems)
        """
        errors = []
        seen = set()
        for cell in self.cells:
            if cell.id in seen:
                errors.append(f"Duplicate cell id: {cell.id}")
            seen.add(cell.id)
            if not isinstance(cell.kind, CellKind):
                errors.append(f"Invalid cell kind for {cell.id}: {cell.kind!r}")

        focused = [cell.id for cell in self.cells if cell.is_focused]
        if len(focused) > 1:
            errors.append(f"Multiple focused cells: {', '.join(focused)}")

        return (not errors, errors)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "title": self.title,
            "description": self.description,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "cells": [cell.to_dict() for cell in self.cells],
        }

    @classmethod
    async def from_data(cls, data: Union[NotebookData, dict], **kwargs) -> "Notebook":
        """
        Build a notebook from stored data and execute its cells in order.

        Args:
            data: Notebook data (or a dict of the same shape)
            **kwargs: Passed to the Notebook constructor

        Returns:
            The populated notebook
        """
        if not isinstance(data, NotebookData):
            data = NotebookData.model_validate(data)
        notebook = cls(title=data.title, description=data.description, **kwargs)
        for cell in data.cells:
            await notebook.add_cell(cell.id, cell.kind, cell.value)
        return notebook

    def dispose(self) -> None:
        """Dispose cells, the import registry, then the runtime. Idempotent."""
        if self._disposed:
            return
        self._disposed = True
        for cell in self.cells:
            cell.dispose()
        self.registry.dispose()
        self.runtime.dispose()
        logger.debug("notebook %r disposed", self.title)

    def _new_cell(self, cell_id: str, kind: Union[CellKind, str], value: str) -> Cell:
        return Cell(cell_id, kind, value, self.module, self, config=self.config)

    def _focus(self, cell: Cell) -> None:
        for other in self.cells:
            other.is_focused = other is cell

    def _touch(self) -> None:
        self.version += 1
        self.updated_at = datetime.now()

    def __repr__(self) -> str:
        return f"<Notebook {self.title!r} cells={len(self.cells)} v{self.version}>"
