"""
Named timers owned by a single session generation.
"""

import asyncio
from typing import Any, Callable, Optional


class TimerSet:
    """`loop.call_later` handles keyed by name.

    Arming a name that is already armed replaces the old handle. Once
    `cancel_all()` has run the set is closed and refuses new timers, so a
    retired generation cannot schedule anything after its retirement.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._handles: dict[str, asyncio.TimerHandle] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def arm(self, name: str, delay: float, callback: Callable[..., Any], *args: Any) -> bool:
        if self._closed:
            return False
        self.cancel(name)
        loop = self._loop or asyncio.get_running_loop()

        def fire() -> None:
            self._handles.pop(name, None)
            callback(*args)

        self._handles[name] = loop.call_later(delay, fire)
        return True

    def cancel(self, name: str) -> None:
        handle = self._handles.pop(name, None)
        if handle:
            handle.cancel()

    def cancel_all(self) -> None:
        self._closed = True
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()

    def __contains__(self, name: str) -> bool:
        return name in self._handles

    def __len__(self) -> int:
        return len(self._handles)
