"""
Minimal publish/subscribe channel.

One ``Emitter`` per event kind. Producers get ``fire``; consumers get
``subscribe``, which returns a callable that removes the listener again.
"""

import logging
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Emitter(Generic[T]):
    """Synchronous event channel.

    Listeners run in subscription order. A listener that raises is logged
    and does not prevent delivery to the others.
    """

    def __init__(self, name: str = "event"):
        self._name = name
        self._listeners: list[Callable[[T], None]] = []

    def subscribe(self, listener: Callable[[T], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def fire(self, event: T) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning("Error in %s listener: %s", self._name, e)

    @property
    def has_listeners(self) -> bool:
        return bool(self._listeners)

    def dispose(self) -> None:
        self._listeners.clear()
