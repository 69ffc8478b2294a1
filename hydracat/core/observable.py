"""
Observable
==========
Minimal publish/subscribe holder. Listeners receive (previous, current)
synchronously on every change; subscribe() returns an unsubscribe
callable. A listener that raises is logged and does not stop the others.
"""

from __future__ import annotations

import logging
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
Listener = Callable[[T, T], None]


class Observable(Generic[T]):

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._listeners: list[Listener] = []

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T, *, force: bool = False) -> None:
        """Publish value. Unchanged values are not re-published unless forced."""
        previous = self._value
        if previous == value and not force:
            return
        self._value = value
        for listener in list(self._listeners):
            try:
                listener(previous, value)
            except Exception:
                logger.exception("Observable listener failed")

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
