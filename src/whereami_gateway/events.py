"""
Publish/subscribe event bus used by the gateway client.

Observers subscribe to event names listed in ``whereami_gateway.contract``
(``waypoints_loaded``, ``tag_add_failed``, ``request_succeeded`` ...).
Handlers run synchronously in subscription order; a handler that raises is
logged and does not prevent delivery to the remaining handlers.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, DefaultDict, Iterable, List, Optional

from .contract import event_names

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]


class EventBus:
    def __init__(self, names: Optional[Iterable[str]] = None):
        self._names = frozenset(names if names is not None else event_names())
        self._handlers: DefaultDict[str, List[Handler]] = defaultdict(list)
        self._wildcard: List[Handler] = []

    @property
    def names(self) -> frozenset:
        return self._names

    def subscribe(self, name: str, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``name``; returns a callable that unsubscribes it."""
        if name not in self._names:
            raise ValueError(f"Unknown event: {name}")
        self._handlers[name].append(handler)
        return lambda: self.unsubscribe(name, handler)

    def subscribe_all(self, handler: Handler) -> Callable[[], None]:
        """Register a wildcard observer called as ``handler(name, *args)``."""
        self._wildcard.append(handler)
        return lambda: self._discard(self._wildcard, handler)

    def unsubscribe(self, name: str, handler: Handler) -> None:
        self._discard(self._handlers.get(name, []), handler)

    @staticmethod
    def _discard(handlers: List[Handler], handler: Handler) -> None:
        try:
            handlers.remove(handler)
        except ValueError:
            pass

    def emit(self, name: str, *args: Any) -> None:
        if name not in self._names:
            raise ValueError(f"Unknown event: {name}")
        logger.debug("emit %s", name)
        for handler in list(self._handlers.get(name, [])):
            self._dispatch(name, handler, args)
        for handler in list(self._wildcard):
            self._dispatch(name, handler, (name, *args))

    @staticmethod
    def _dispatch(name: str, handler: Handler, args: tuple) -> None:
        try:
            handler(*args)
        except Exception:
            logger.exception("Event handler for %s failed", name)

    def clear(self) -> None:
        self._handlers.clear()
        self._wildcard.clear()


__all__ = ["EventBus", "Handler"]
