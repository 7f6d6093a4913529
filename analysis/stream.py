from __future__ import annotations

import threading
from typing import Generic, Iterator, Optional, TypeVar

T = TypeVar("T")


class FrameSlot(Generic[T]):
    """
    Capacity-1 handoff between a producer (camera) and a single consumer (tracker).

    put() never blocks: a newer item overwrites one that was not taken yet, and the
    overwritten item is counted in `dropped`. take() blocks until an item is available,
    the timeout expires (None) or the slot is closed (None).
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._item: Optional[T] = None
        self._has_item = False
        self._closed = False
        self.dropped = 0

    def put(self, item: T) -> None:
        with self._cond:
            if self._closed:
                return
            if self._has_item:
                self.dropped += 1
            self._item = item
            self._has_item = True
            self._cond.notify()

    def take(self, timeout: Optional[float] = None) -> Optional[T]:
        with self._cond:
            if not self._cond.wait_for(lambda: self._has_item or self._closed, timeout=timeout):
                return None
            if not self._has_item:
                return None
            item = self._item
            self._item = None
            self._has_item = False
            return item

    def __iter__(self) -> Iterator[T]:
        """Yield items as they arrive until the slot is closed."""
        while True:
            item = self.take()
            if item is None:
                return
            yield item

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        return self._closed
