"""
Inspector: display representations of variable values and states.

Values are shown through the IPython display protocol: any _repr_*_ method
a value defines gives one display form, keyed by MIME type. Values with no
such method are shown as IPython's pretty-printed text.
"""

import html
from typing import Any, Optional

from IPython.lib.pretty import pretty

from notebook_rx.observers import Fulfilled, Pending, Rejected, State

# In order of preference for the plain-text fallback.
DISPLAY_METHODS = {
    "text/html": "_repr_html_",
    "text/markdown": "_repr_markdown_",
    "application/json": "_repr_json_",
    "text/latex": "_repr_latex_",
    "image/svg+xml": "_repr_svg_",
}


def display_forms(obj: Any) -> dict[str, Any]:
    """
    Rich display forms a value offers, keyed by MIME type.

    Methods returning None are skipped, as IPython does.
    """
    forms = {}
    for mime_type, method_name in DISPLAY_METHODS.items():
        method = getattr(obj, method_name, None)
        form = method() if callable(method) else None
        if form is not None:
            forms[mime_type] = form
    return forms


def plain_text(obj: Any) -> str:
    """The most preferred rich form as text, else the pretty-printed value."""
    forms = display_forms(obj)
    if forms:
        return str(next(iter(forms.values())))
    return pretty(obj)


def to_html(obj: Any) -> str:
    """HTML for a value: its own _repr_html_, else escaped plain text."""
    if isinstance(obj, str):
        return f"<span>{html.escape(obj)}</span>"
    forms = display_forms(obj)
    if "text/html" in forms:
        return forms["text/html"]
    return f"<pre>{html.escape(plain_text(obj))}</pre>"


class Inspector:
    """
    Observer that keeps the display form of the latest state.

    Attach one to a cell's ObserverSet to follow its canonical output.
    """

    def __init__(self, name: Optional[str] = None):
        self.name = name
        self.state: State = Pending()
        self.html: Optional[str] = None

    def pending(self) -> None:
        self.state = Pending()

    def fulfilled(self, value: Any) -> None:
        self.state = Fulfilled(value)
        self.html = to_html(value)

    def rejected(self, error: BaseException) -> None:
        self.state = Rejected(error)
        label = f"{self.name}: " if self.name else ""
        self.html = f'<div class="error">{html.escape(label + str(error))}</div>'

    @property
    def text(self) -> str:
        if isinstance(self.state, Fulfilled):
            return plain_text(self.state.value)
        if isinstance(self.state, Rejected):
            return f"{type(self.state.error).__name__}: {self.state.error}"
        return "pending"
