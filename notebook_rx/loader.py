"""
Notebook loaders: fetch other notebooks by id for cross-notebook imports.
"""

import json
from pathlib import Path
from typing import Mapping, Optional, Protocol, Union

from pydantic import BaseModel, Field

from notebook_rx.errors import NotebookNotFoundError


class CellData(BaseModel):
    """A cell as stored or fetched, before it is executed."""
    id: str
    kind: str = "code"
    value: str = ""


class NotebookData(BaseModel):
    """A fetched notebook."""
    title: str = "Untitled Notebook"
    description: str = ""
    cells: list[CellData] = Field(default_factory=list)


class NotebookLoader(Protocol):
    async def fetch(self, notebook_id: str) -> NotebookData: ...


class InMemoryNotebookLoader:
    """Serves notebooks from a mapping of id to notebook data."""

    def __init__(self, notebooks: Optional[Mapping[str, Union[NotebookData, dict]]] = None):
        self._notebooks: dict[str, NotebookData] = {}
        for notebook_id, data in (notebooks or {}).items():
            self.add(notebook_id, data)

    def add(self, notebook_id: str, data: Union[NotebookData, dict]) -> None:
        if not isinstance(data, NotebookData):
            data = NotebookData.model_validate(data)
        self._notebooks[notebook_id] = data

    async def fetch(self, notebook_id: str) -> NotebookData:
        try:
            return self._notebooks[notebook_id]
        except KeyError:
            raise NotebookNotFoundError(f"Notebook not found: {notebook_id}") from None


class DirectoryNotebookLoader:
    """
    Reads notebooks from <directory>/<id>.json.

    Each file holds {"title", "description", "cells": [{"id", "kind", "value"}]}.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def path_for(self, notebook_id: str) -> Path:
        path = (self.directory / f"{notebook_id}.json").resolve()
        if path.parent != self.directory.resolve():
            raise NotebookNotFoundError(f"Invalid notebook id: {notebook_id}")
        return path

    async def fetch(self, notebook_id: str) -> NotebookData:
        path = self.path_for(notebook_id)
        if not path.is_file():
            raise NotebookNotFoundError(f"Notebook not found: {notebook_id}")
        with open(path, "r") as f:
            data = json.load(f)
        return NotebookData.model_validate(data)
