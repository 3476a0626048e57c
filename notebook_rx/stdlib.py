"""
Standard library bindings shared by every module of a runtime.

Provides the reserved input-adaptor (Generators.input), a small set of
interactive input views (Inputs) and Stream, the push-based value source
a variable follows after its definition has run.
"""

import html
import itertools
from typing import Any, Callable, Optional


class Stream:
    """
    A value that changes over time.

    A variable whose definition returns a Stream is fulfilled with the
    stream's current value and fulfilled again every time the stream
    pushes, until the variable is redefined or deleted.
    """

    def __init__(self, value: Any = None):
        self._value = value
        self._subscribers: dict[int, Callable[[Any], None]] = {}
        self._ids = itertools.count()

    @property
    def value(self) -> Any:
        return self._value

    def push(self, value: Any) -> None:
        self._value = value
        for callback in list(self._subscribers.values()):
            callback(value)

    def subscribe(self, callback: Callable[[Any], None]) -> Callable[[], None]:
        """Follow pushes. Returns a function that unsubscribes."""
        key = next(self._ids)
        self._subscribers[key] = callback

        def unsubscribe() -> None:
            self._subscribers.pop(key, None)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def __repr__(self) -> str:
        return f"Stream({self._value!r})"


class InputView:
    """
    An interactive input: what the cell displays differs from what it emits.

    The view itself is the displayed value; Generators.input(view) emits the
    view's current value and follows set_value() calls.
    """

    def __init__(self, kind: str, value: Any = None, label: Optional[str] = None, **options: Any):
        self.kind = kind
        self.label = label
        self.options = options
        self.stream = Stream(value)

    @property
    def value(self) -> Any:
        return self.stream.value

    def set_value(self, value: Any) -> None:
        """Simulate user input."""
        self.stream.push(value)

    def _repr_html_(self) -> str:
        attrs = [f'type="{html.escape(self.kind)}"', f'value="{html.escape(str(self.value))}"']
        for key, option in self.options.items():
            if option is not None and not isinstance(option, (list, tuple)):
                attrs.append(f'{html.escape(key)}="{html.escape(str(option))}"')
        field = f"<input {' '.join(attrs)}>"
        if self.label:
            return f"<label>{html.escape(self.label)} {field}</label>"
        return field

    def __repr__(self) -> str:
        return f"InputView({self.kind!r}, value={self.value!r})"


class _Generators:
    """Adaptors that turn values into streams."""

    def input(self, view: Any) -> Any:
        """Emit a view's current value, following later input."""
        stream = getattr(view, "stream", None)
        if isinstance(stream, Stream):
            return stream
        return view

    def stream(self, value: Any = None) -> Stream:
        return Stream(value)


class _Inputs:
    """Factories for interactive input views."""

    def range(self, extent=(0, 1), value=None, step=None, label=None) -> InputView:
        lo, hi = extent
        if value is None:
            value = (lo + hi) / 2
        return InputView("range", value, label, min=lo, max=hi, step=step)

    def number(self, value=0, label=None) -> InputView:
        return InputView("number", value, label)

    def text(self, value="", label=None, placeholder=None) -> InputView:
        return InputView("text", value, label, placeholder=placeholder)

    def checkbox(self, value=False, label=None) -> InputView:
        return InputView("checkbox", value, label)

    def select(self, options, value=None, label=None) -> InputView:
        options = list(options)
        if value is None and options:
            value = options[0]
        return InputView("select", value, label, choices=options)

    def radio(self, options, value=None, label=None) -> InputView:
        options = list(options)
        return InputView("radio", value, label, choices=options)


Generators = _Generators()
Inputs = _Inputs()


def library() -> dict[str, Any]:
    """The builtin bindings every module starts with."""
    return {
        "Generators": Generators,
        "Inputs": Inputs,
    }
