"""
Utility functions for notebook-rx.
"""

import re
import uuid
from datetime import datetime

from rich.table import Table
from rich.text import Text

from notebook_rx.inspector import plain_text


def sanitize_variable_name(name: str) -> str:
    """
    Sanitize a name to be a valid identifier.

    Cell ids become variable names (anonymous and view cells are bound
    under their cell's name), so they must be usable inside expressions.

    Args:
        name: Name to sanitize

    Returns:
        Sanitized variable name
    """
    sanitized = re.sub(r"[^a-zA-Z0-9_]", "_", name)

    if sanitized and sanitized[0].isdigit():
        sanitized = "_" + sanitized

    return sanitized or "_var"


def generate_cell_id() -> str:
    """Generate a fresh cell id."""
    return f"cell_{datetime.now().strftime('%Y%m%d%H%M%S%f')}_{uuid.uuid4().hex[:8]}"


def get_cell_type_icon(kind) -> str:
    """Get a short label for the cell kind."""
    if hasattr(kind, "value"):
        kind = kind.value
    return {"code": "py", "markdown": "md", "html": "html"}.get(kind, "??")


def get_cell_status(cell) -> tuple[str, str]:
    """
    Get status indicator and style for a cell.

    Returns:
        Tuple of (indicator_string, rich_style)
    """
    status = cell.status
    if status == "error":
        return ("err", "red")
    if status == "ok":
        return ("ok", "green")
    return ("--", "dim")


def truncate_text(text: str, max_length: int = 100) -> str:
    """Truncate text to max_length, adding ellipsis if needed."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def format_cell_output(cell) -> str:
    """Plain-text form of a cell's current output."""
    error = cell.get_error()
    if error is not None:
        return f"{type(error).__name__}: {error}"
    if cell.status == "pending":
        return "pending"
    return plain_text(cell.get_value())


def format_rich_cell(cell):
    """
    Format a cell's current output as a Rich renderable.

    Args:
        cell: Cell to format

    Returns:
        Rich Text for console display
    """
    error = cell.get_error()
    if error is not None:
        error_text = Text()
        error_text.append(type(error).__name__, style="bold red")
        error_text.append(f": {error}", style="red")
        return error_text
    if cell.status == "pending":
        return Text("pending", style="dim")
    return Text(truncate_text(format_cell_output(cell), 200), style="cyan")


def notebook_table(notebook) -> Table:
    """Summarize a notebook as a Rich table, one row per cell."""
    table = Table(title=notebook.title)
    table.add_column("#", justify="right", style="dim")
    table.add_column("kind")
    table.add_column("names")
    table.add_column("status")
    table.add_column("output")

    for index, cell in enumerate(notebook.cells):
        indicator, style = get_cell_status(cell)
        table.add_row(
            str(index),
            get_cell_type_icon(cell.kind),
            ", ".join(cell.names()),
            Text(indicator, style=style),
            format_rich_cell(cell),
        )
    return table
