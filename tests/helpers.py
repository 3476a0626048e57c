"""Helpers shared by test modules."""

from notebook_rx import InMemoryNotebookLoader


class CountingLoader(InMemoryNotebookLoader):
    """In-memory loader that records every fetch."""

    def __init__(self, notebooks=None):
        super().__init__(notebooks)
        self.fetches = []

    async def fetch(self, notebook_id):
        self.fetches.append(notebook_id)
        return await super().fetch(notebook_id)


def code_notebook(*sources):
    """Notebook data with one code cell per source string."""
    return {
        "cells": [
            {"id": f"c{index}", "kind": "code", "value": source}
            for index, source in enumerate(sources)
        ]
    }
