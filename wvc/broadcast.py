"""
broadcast.py
============
Difusión interna en memoria (fan-out) sobre asyncio.Queue.

Semántica:
    - replay del último elemento: un suscriptor tardío recibe de inmediato
      el valor más reciente, nunca el historial.
    - buffer acotado por suscriptor: si está lleno se descarta el elemento
      más antiguo (se prefiere frescura a completitud).

publish() es síncrono y debe invocarse desde el hilo del event loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


class Subscription(Generic[T]):
    """Cola de un suscriptor. Iterable con `async for`."""

    def __init__(self, owner: "Broadcast[T]", maxsize: int) -> None:
        self._owner  = owner
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        return self._queue.qsize()

    def _offer(self, item: object) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(item)

    async def get(self) -> T:
        """Espera el siguiente elemento. Lanza StopAsyncIteration si se cerró."""
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._closed = True
            raise StopAsyncIteration
        return item

    def get_nowait(self) -> Optional[T]:
        if self._queue.empty():
            return None
        item = self._queue.get_nowait()
        if item is _CLOSED:
            self._closed = True
            return None
        return item

    def close(self) -> None:
        if self._closed:
            return
        self._owner._detach(self)
        self._offer(_CLOSED)

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        return await self.get()


class Broadcast(Generic[T]):

    def __init__(self, buffer_size: int = 16, replay: bool = True) -> None:
        if buffer_size < 1:
            raise ValueError("buffer_size debe ser >= 1")
        self._buffer_size = buffer_size
        self._replay      = replay
        self._latest: Optional[T] = None
        self._has_latest  = False
        self._subs: list[Subscription[T]] = []

    @property
    def latest(self) -> Optional[T]:
        return self._latest

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)

    def publish(self, item: T) -> None:
        self._latest     = item
        self._has_latest = True
        for sub in list(self._subs):
            sub._offer(item)

    def subscribe(self) -> Subscription[T]:
        sub: Subscription[T] = Subscription(self, self._buffer_size)
        if self._replay and self._has_latest:
            sub._offer(self._latest)
        self._subs.append(sub)
        return sub

    def close(self) -> None:
        for sub in list(self._subs):
            sub.close()

    def _detach(self, sub: Subscription[T]) -> None:
        if sub in self._subs:
            self._subs.remove(sub)
