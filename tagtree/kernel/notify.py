"""
TagTree Kernel — Change Notification

A version counter plus listener list. Consumers subscribe and re-read the
tree when notified.

Inside batch() notifications are deferred; nested batches coalesce, and one
notification goes out when the outermost batch completes. A batch that
raises sends nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)

Listener = Callable[[], None]


class ChangeNotifier:
    def __init__(self) -> None:
        self.version = 0
        self._listeners: list[Listener] = []
        self._batch_depth = 0
        self._pending = False

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        self._listeners.remove(listener)

    @property
    def in_batch(self) -> bool:
        return self._batch_depth > 0

    def notify_listeners(self) -> None:
        if self._batch_depth:
            self._pending = True
            return
        self.version += 1
        logger.debug("notify: version %d to %d listeners", self.version, len(self._listeners))
        for listener in list(self._listeners):
            listener()

    @contextmanager
    def batch(self) -> Iterator[ChangeNotifier]:
        self._batch_depth += 1
        try:
            yield self
        except BaseException:
            if self._batch_depth == 1:
                self._pending = False
            raise
        finally:
            self._batch_depth -= 1
        if self._batch_depth == 0 and self._pending:
            self._pending = False
            self.notify_listeners()
