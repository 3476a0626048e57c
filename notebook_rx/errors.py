"""
Error hierarchy for notebook-rx.

All engine errors inherit from NotebookError so callers can catch them
in one place.
"""

from typing import Optional


class NotebookError(Exception):
    """Base error for all notebook-rx operations."""


class ParseError(NotebookError):
    """The parser rejected a cell's source text."""

    def __init__(self, message: str, source: str = ""):
        super().__init__(message)
        self.source = source


class EvaluationError(NotebookError):
    """A variable's definition raised while computing its value."""

    def __init__(self, message: str, name: Optional[str] = None):
        super().__init__(message)
        self.name = name


class UndefinedNameError(EvaluationError):
    """A dependency could not be resolved in the module or its builtins."""

    def __init__(self, name: str):
        super().__init__(f"{name} is not defined", name)


class DuplicateDefinitionError(EvaluationError):
    """More than one variable in a module defines the same name."""

    def __init__(self, name: str):
        super().__init__(f"{name} is defined more than once", name)


class CircularDefinitionError(EvaluationError):
    """Variables depend on each other."""

    def __init__(self, name: Optional[str] = None):
        label = name or "variable"
        super().__init__(f"circular definition: {label}", name)


class UseAfterDeleteError(NotebookError):
    """An operation was attempted on a deleted variable."""


class RuntimeDisposedError(NotebookError):
    """The runtime has been disposed."""


class CircularImportError(NotebookError):
    """A notebook import chain leads back to a notebook still being loaded."""

    def __init__(self, notebook_id: str):
        super().__init__(
            f'Circular import detected: notebook "{notebook_id}" is already being loaded'
        )
        self.notebook_id = notebook_id


class ImportLoadError(NotebookError):
    """Loading an imported notebook failed."""

    def __init__(self, notebook_id: str, reason: str):
        super().__init__(f'Failed to load notebook "{notebook_id}": {reason}')
        self.notebook_id = notebook_id


class NotebookNotFoundError(NotebookError):
    """The loader has no notebook with the requested id."""


class DuplicateCellError(NotebookError):
    """A cell with the same id already exists in the notebook."""
