"""
Observers: variable states and the fan-out ObserverSet.

A variable reports every state change to a single observer. ObserverSet
is that observer for cells: it fans each notification out to any number
of subscribers and remembers the last fulfilled value so late subscribers
see it immediately.
"""

import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Pending:
    """The variable is waiting to be (re)computed."""


@dataclass(frozen=True)
class Fulfilled:
    """The variable holds a value."""
    value: Any


@dataclass(frozen=True)
class Rejected:
    """The variable's definition failed."""
    error: BaseException


State = Union[Pending, Fulfilled, Rejected]

PENDING = Pending()


class Observer(Protocol):
    """Anything that can follow a variable's state."""

    def pending(self) -> None: ...

    def fulfilled(self, value: Any) -> None: ...

    def rejected(self, error: BaseException) -> None: ...


class CallbackObserver:
    """Adapts a plain callable into an observer that only sees values."""

    def __init__(self, callback: Callable[[Any], None]):
        self.callback = callback

    def pending(self) -> None:
        pass

    def fulfilled(self, value: Any) -> None:
        self.callback(value)

    def rejected(self, error: BaseException) -> None:
        pass


_UNSET = object()


class ObserverSet:
    """
    Fan-out broadcaster that replays the last fulfilled value.

    Subscribers are kept in subscription order. Only fulfilment is cached;
    pending and rejected notifications reach current subscribers and are
    then forgotten.
    """

    def __init__(self, on_error: Optional[Callable[[BaseException], None]] = None):
        """
        Args:
            on_error: Called with any exception a subscriber raises
        """
        self._last_value: Any = _UNSET
        self._observers: dict[int, Observer] = {}
        self._ids = itertools.count(1)
        self.on_error = on_error

    @property
    def has_value(self) -> bool:
        return self._last_value is not _UNSET

    @property
    def last_value(self) -> Any:
        """The last fulfilled value, or None if there has been none."""
        return None if self._last_value is _UNSET else self._last_value

    def __len__(self) -> int:
        return len(self._observers)

    def add_observer(self, observer: Union[Observer, Callable[[Any], None]]) -> int:
        """
        Subscribe an observer.

        A plain callable is treated as a fulfilled-only observer. If a value
        has already been fulfilled it is delivered synchronously before this
        method returns.

        Returns:
            Handle for remove_observer()
        """
        if not hasattr(observer, "fulfilled"):
            observer = CallbackObserver(observer)
        handle = next(self._ids)
        self._observers[handle] = observer

        if self._last_value is not _UNSET:
            self._notify(observer, "fulfilled", self._last_value)

        return handle

    def remove_observer(self, handle: int) -> None:
        self._observers.pop(handle, None)

    def clear(self) -> None:
        """Drop every subscriber."""
        self._observers.clear()

    def pending(self) -> None:
        for observer in list(self._observers.values()):
            self._notify(observer, "pending")

    def fulfilled(self, value: Any) -> None:
        self._last_value = value
        for observer in list(self._observers.values()):
            self._notify(observer, "fulfilled", value)

    def rejected(self, error: BaseException) -> None:
        for observer in list(self._observers.values()):
            self._notify(observer, "rejected", error)

    def _notify(self, observer: Observer, method: str, *args: Any) -> None:
        try:
            getattr(observer, method)(*args)
        except Exception as e:
            logger.warning("Observer error during %s: %s", method, e)
            if self.on_error is not None:
                self.on_error(e)
