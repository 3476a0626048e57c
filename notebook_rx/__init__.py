"""
notebook-rx: A reactive notebook engine.

This package provides a notebook system where:
- Cells declare named values computed from other cells' values
- Changing a cell recomputes every dependent cell, in dependency order
- Notebooks can import values from other notebooks
"""

from notebook_rx.cell import Cell, CellKind, Combined, Single
from notebook_rx.config import EngineConfig
from notebook_rx.errors import (
    CircularDefinitionError,
    CircularImportError,
    DuplicateCellError,
    DuplicateDefinitionError,
    EvaluationError,
    ImportLoadError,
    NotebookError,
    NotebookNotFoundError,
    ParseError,
    RuntimeDisposedError,
    UndefinedNameError,
    UseAfterDeleteError,
)
from notebook_rx.imports import ImportedCell, ImportedModule, ImportedModuleRegistry
from notebook_rx.inspector import Inspector
from notebook_rx.loader import CellData, DirectoryNotebookLoader, InMemoryNotebookLoader, NotebookData
from notebook_rx.notebook import CellUpdate, Notebook
from notebook_rx.observers import ObserverSet
from notebook_rx.parser import PythonParser
from notebook_rx.runtime import Module, Runtime, Variable

__version__ = "0.1.0"
__all__ = [
    "Notebook",
    "CellUpdate",
    "Cell",
    "CellKind",
    "Single",
    "Combined",
    "Runtime",
    "Module",
    "Variable",
    "ObserverSet",
    "Inspector",
    "PythonParser",
    "ImportedModuleRegistry",
    "ImportedModule",
    "ImportedCell",
    "CellData",
    "NotebookData",
    "InMemoryNotebookLoader",
    "DirectoryNotebookLoader",
    "EngineConfig",
    "NotebookError",
    "ParseError",
    "EvaluationError",
    "UndefinedNameError",
    "DuplicateDefinitionError",
    "CircularDefinitionError",
    "UseAfterDeleteError",
    "RuntimeDisposedError",
    "CircularImportError",
    "ImportLoadError",
    "NotebookNotFoundError",
    "DuplicateCellError",
]
