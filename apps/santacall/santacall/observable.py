"""Published state for the stores, marshalled onto the UI event loop."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Subscriber = Callable[["ObservableStore", Dict[str, Any]], None]


class MainDispatcher:
    """Runs state mutations on the loop that renders the screens.

    Calls made on the bound loop's thread apply inline; calls from any other
    thread are handed over with ``call_soon_threadsafe``. An unbound
    dispatcher applies everything inline.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def dispatch(self, fn: Callable[..., None], *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            fn(*args)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            fn(*args)
        else:
            loop.call_soon_threadsafe(fn, *args)


class ObservableStore:
    """Base for stores whose attributes are observed by the view layer."""

    def __init__(self, dispatcher: Optional[MainDispatcher] = None) -> None:
        self.dispatcher = dispatcher or MainDispatcher()
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, **changes: Any) -> None:
        self.dispatcher.dispatch(self._apply, changes)

    def _apply(self, changes: Dict[str, Any]) -> None:
        changed: Dict[str, Any] = {}
        for name, value in changes.items():
            previous = getattr(self, name)
            setattr(self, name, value)
            if previous != value:
                changed[name] = value
        if not changed:
            return
        for callback in list(self._subscribers):
            try:
                callback(self, changed)
            except Exception:
                logger.exception(
                    "State subscriber failed",
                    extra={"store": type(self).__name__, "fields": sorted(changed)},
                )
