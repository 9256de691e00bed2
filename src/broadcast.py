"""
Broadcast channel for asyncio consumers.

Lines are fanned out to every current subscriber. Nothing is buffered for
absent listeners and late subscribers get no backlog.
"""

import asyncio
import logging
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

_CLOSED = object()


class _Failure:
    def __init__(self, error: BaseException):
        self.error = error


class LogSubscription:
    """A single listener on a BroadcastStream.

    Iterate with ``async for``. Iteration ends when the stream closes and
    raises if an error was published.
    """

    def __init__(self, stream: 'BroadcastStream'):
        self._stream = stream
        self._queue: asyncio.Queue = asyncio.Queue()
        self._done = False
        self.cancelled = False

    def _deliver(self, item) -> None:
        if not self._done:
            self._queue.put_nowait(item)

    @property
    def pending(self) -> int:
        """Number of items delivered but not yet consumed."""
        return self._queue.qsize()

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        if self._done and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._done = True
            raise StopAsyncIteration
        if isinstance(item, _Failure):
            self._done = True
            raise item.error
        return item

    def cancel(self) -> None:
        """Stop listening. Cancelling the last listener fires the cancel hook."""
        if self.cancelled:
            return
        self.cancelled = True
        # Wake a consumer already waiting in `__anext__`.
        self._queue.put_nowait(_CLOSED)
        self._done = True
        self._stream._remove(self)


class BroadcastStream:
    """Multi-subscriber stream with lazy start.

    `on_listen` runs when the first listener attaches and `on_cancel` when
    the last listener cancels.
    """

    def __init__(self, on_listen: Optional[Callable[[], None]] = None,
                 on_cancel: Optional[Callable[[], None]] = None):
        self.on_listen = on_listen
        self.on_cancel = on_cancel
        self._subscriptions: List[LogSubscription] = []
        self.is_closed = False

    @property
    def has_listener(self) -> bool:
        return bool(self._subscriptions)

    def listen(self) -> LogSubscription:
        subscription = LogSubscription(self)
        if self.is_closed:
            subscription._deliver(_CLOSED)
            return subscription
        first = not self._subscriptions
        self._subscriptions.append(subscription)
        if first and self.on_listen is not None:
            try:
                self.on_listen()
            except Exception:
                self._subscriptions.remove(subscription)
                raise
        return subscription

    def add(self, line: str) -> None:
        if self.is_closed:
            return
        for subscription in list(self._subscriptions):
            subscription._deliver(line)

    def add_error(self, error: BaseException) -> None:
        if self.is_closed:
            return
        logger.debug("Publishing error to %d listener(s): %s", len(self._subscriptions), error)
        for subscription in list(self._subscriptions):
            subscription._deliver(_Failure(error))

    def close(self) -> None:
        if self.is_closed:
            return
        self.is_closed = True
        for subscription in list(self._subscriptions):
            subscription._deliver(_CLOSED)

    def _remove(self, subscription: LogSubscription) -> None:
        if subscription not in self._subscriptions:
            return
        self._subscriptions.remove(subscription)
        if not self._subscriptions and self.on_cancel is not None:
            self.on_cancel()
