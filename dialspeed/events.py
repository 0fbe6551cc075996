"""
Outbound event channels.

A channel fans published items out to plain callbacks and to async
iterators.  Callbacks run synchronously inside ``publish``; iterators are
fed through per-subscriber ``asyncio.Queue`` objects.

    channel = EventChannel("pipeline")
    unsubscribe = channel.subscribe(print)
    async for event in channel.stream():
        ...
"""
from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Any, Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


class Subscription(Generic[T]):
    """Async iterator over a channel; registered as soon as it is created."""

    def __init__(self, channel: EventChannel[T]) -> None:
        self._channel = channel
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        channel._streams.append(self)

    def _push(self, item: Any) -> None:
        self._queue.put_nowait(item)

    def __aiter__(self) -> Subscription[T]:
        return self

    async def __anext__(self) -> T:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self.close()
            raise StopAsyncIteration
        return item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._channel._streams.remove(self)
        except ValueError:
            pass


class EventChannel(Generic[T]):
    """Single-producer, multi-consumer event fan-out."""

    def __init__(self, name: str = "events") -> None:
        self.name = name
        self._callbacks: List[Callable[[], Optional[Callable[[T], None]]]] = []
        self._streams: List[Subscription[T]] = []

    # -- Subscribing --------------------------------------------------------

    def subscribe(self, callback: Callable[[T], None], *, weak: bool = False) -> Callable[[], None]:
        """
        Register *callback*; returns an unsubscribe function.

        With ``weak=True`` a bound method is held through ``WeakMethod`` so
        the channel never keeps its owner alive.  Plain functions are
        always held strongly.
        """
        if weak and hasattr(callback, "__self__"):
            ref: Callable[[], Optional[Callable[[T], None]]] = weakref.WeakMethod(callback)  # type: ignore[arg-type]
        else:
            def ref(cb: Callable[[T], None] = callback) -> Callable[[T], None]:
                return cb

        self._callbacks.append(ref)

        def _unsubscribe() -> None:
            try:
                self._callbacks.remove(ref)
            except ValueError:
                pass

        return _unsubscribe

    def stream(self) -> Subscription[T]:
        return Subscription(self)

    @property
    def subscriber_count(self) -> int:
        return len(self._live_callbacks()) + len(self._streams)

    # -- Publishing ---------------------------------------------------------

    def publish(self, item: T) -> None:
        for callback in self._live_callbacks():
            try:
                callback(item)
            except Exception:
                logger.exception("Subscriber of %s channel failed", self.name)
        for sub in list(self._streams):
            sub._push(item)

    def close(self) -> None:
        """End every open stream; callbacks stay registered."""
        for sub in list(self._streams):
            sub._push(_CLOSED)

    # -- Internals ----------------------------------------------------------

    def _live_callbacks(self) -> List[Callable[[T], None]]:
        live = []
        for ref in list(self._callbacks):
            callback = ref()
            if callback is None:
                self._callbacks.remove(ref)
                continue
            live.append(callback)
        return live
