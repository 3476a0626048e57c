"""
EngineConfig: notebook engine settings.

Settings come from keyword arguments or, through from_env(), from
NOTEBOOK_RX_* environment variables.
"""

import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field

ENV_PREFIX = "NOTEBOOK_RX_"


class EngineConfig(BaseModel):
    """Settings shared by a notebook, its cells and its import registry."""

    notebooks_dir: Optional[Path] = None
    markdown_preset: str = "commonmark"
    cells_closed: bool = True
    max_statement_length: int = Field(default=50000, gt=0)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """
        Build a config from NOTEBOOK_RX_* variables.

        Args:
            environ: Mapping to read instead of os.environ

        Returns:
            EngineConfig with unset variables left at their defaults
        """
        environ = os.environ if environ is None else environ
        values = {}
        for field_name in cls.model_fields:
            raw = environ.get(ENV_PREFIX + field_name.upper())
            if raw is not None and raw != "":
                values[field_name] = raw
        return cls(**values)
