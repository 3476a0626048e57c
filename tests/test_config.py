"""
Tests for EngineConfig.
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from notebook_rx import Cell, EngineConfig, Runtime


class TestEngineConfig:
    def test_defaults(self):
        config = EngineConfig()

        assert config.notebooks_dir is None
        assert config.markdown_preset == "commonmark"
        assert config.cells_closed is True
        assert config.max_statement_length == 50000

    def test_from_env(self):
        config = EngineConfig.from_env({
            "NOTEBOOK_RX_NOTEBOOKS_DIR": "/tmp/notebooks",
            "NOTEBOOK_RX_CELLS_CLOSED": "false",
            "NOTEBOOK_RX_MAX_STATEMENT_LENGTH": "100",
            "UNRELATED": "x",
        })

        assert config.notebooks_dir == Path("/tmp/notebooks")
        assert config.cells_closed is False
        assert config.max_statement_length == 100

    def test_from_env_ignores_empty_values(self):
        config = EngineConfig.from_env({"NOTEBOOK_RX_MARKDOWN_PRESET": ""})
        assert config.markdown_preset == "commonmark"

    def test_from_env_reads_os_environ(self, monkeypatch):
        monkeypatch.setenv("NOTEBOOK_RX_MARKDOWN_PRESET", "gfm-like")
        assert EngineConfig.from_env().markdown_preset == "gfm-like"

    def test_invalid_value(self):
        with pytest.raises(ValidationError):
            EngineConfig.from_env({"NOTEBOOK_RX_MAX_STATEMENT_LENGTH": "0"})


class TestConfigInCells:
    def test_cells_closed_default(self):
        runtime = Runtime()
        module = runtime.module()

        assert Cell("a", "code", "", module).is_closed is True
        assert Cell("b", "code", "", module, config=EngineConfig(cells_closed=False)).is_closed is False
        runtime.dispose()

    @pytest.mark.asyncio
    async def test_statement_length_limit_fails_cell(self):
        runtime = Runtime()
        module = runtime.module()
        cell = Cell("a", "code", "x = " + " + ".join(["1"] * 50), module,
                    config=EngineConfig(max_statement_length=20))

        await cell.execute()

        assert cell.has_error
        runtime.dispose()
