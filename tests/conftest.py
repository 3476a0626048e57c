"""Pytest fixtures shared across all test modules."""

import pytest

from helpers import CountingLoader
from notebook_rx import Notebook, Runtime


@pytest.fixture
def runtime():
    rt = Runtime()
    yield rt
    rt.dispose()


@pytest.fixture
def module(runtime):
    return runtime.module()


@pytest.fixture
def loader():
    return CountingLoader()


@pytest.fixture
def notebook(loader):
    nb = Notebook(title="Test", loader=loader)
    yield nb
    nb.dispose()
