"""A queue receiver that can hold back one message for later."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")
U = TypeVar("U")

#: Put this into the queue to signal that no more messages will follow.
CLOSED = object()


class SlotOccupiedError(Exception):
    """A message was pushed back while another one was already held."""

    def __init__(self, msg: object) -> None:
        super().__init__("a pushed back message is already waiting")
        self.msg = msg


class PeekableReceiver(Generic[T]):
    """Wraps an :class:`asyncio.Queue` and allows pushing one message back.

    The sender signals the end of the stream by putting :data:`CLOSED`
    into the queue; from then on :meth:`recv` returns ``None``.
    """

    def __init__(self, queue: "asyncio.Queue[T]") -> None:
        self._queue = queue
        self._held: Optional[T] = None
        self._has_held = False
        self._closed = False

    async def recv(self) -> Optional[T]:
        """The next message, or ``None`` once the sender has closed."""
        if self._has_held:
            msg, self._held, self._has_held = self._held, None, False
            return msg
        if self._closed:
            return None
        msg = await self._queue.get()
        if msg is CLOSED:
            self._closed = True
            return None
        return msg

    async def extract(
        self,
        predicate: Callable[[T], Optional[U]],
        timeout: Awaitable[object],
    ) -> Optional[U]:
        """Receive the next message if ``predicate`` accepts it.

        ``predicate`` returns the converted message, or ``None`` to reject it;
        a rejected message is held back for the next :meth:`recv`. Returns
        ``None`` if ``timeout`` completes first or the sender has closed.
        Pass the same future as ``timeout`` to share one deadline between calls.
        """
        if self._has_held or self._closed:
            msg = await self.recv()
        else:
            deadline = asyncio.ensure_future(timeout)
            if deadline.done() and self._queue.empty():
                return None
            receiving = asyncio.ensure_future(self.recv())
            await asyncio.wait({receiving, deadline}, return_when=asyncio.FIRST_COMPLETED)
            if not receiving.done():
                receiving.cancel()
                try:
                    await receiving
                except asyncio.CancelledError:
                    pass
                return None
            msg = receiving.result()
        if msg is None:
            return None
        converted = predicate(msg)
        if converted is None:
            self._held, self._has_held = msg, True
            return None
        return converted

    def push_back(self, msg: T) -> None:
        """Hold ``msg`` back so that it is the next message received."""
        if self._has_held:
            raise SlotOccupiedError(msg)
        self._held, self._has_held = msg, True