"""Delivery primitives between the companion and the controller.

A :class:`SyncLink` offers two ways to move an encoded envelope:

* ``send`` -- ephemeral.  Delivered only while the peer is reachable; raises
  :class:`TransportUnreachableError` otherwise.  Never retried or queued.
* ``update_context`` -- replicated latest-value slot.  Each write replaces
  any value the peer has not read yet and is delivered once the peer becomes
  reachable.  ``received_context`` returns the last value written by the
  peer at any time.

Inbound data of both kinds is consumed through the async iterator returned
by ``messages()``.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Protocol

from smartwake import config
from smartwake.exceptions import TransportUnreachableError

logger = config.get_logger()


class SyncLink(Protocol):
    def is_reachable(self) -> bool: ...

    def send(self, data: bytes) -> None: ...

    def update_context(self, data: bytes) -> None: ...

    def received_context(self) -> bytes | None: ...

    def messages(self) -> AsyncIterator[bytes]: ...


class _Channel:
    """Reachability flag shared by both ends of a loopback pair."""

    def __init__(self) -> None:
        self.reachable = True
        self.ends: list[LoopbackLink] = []


class LoopbackLink:
    """In-memory :class:`SyncLink`; create connected ends with :meth:`pair`."""

    def __init__(self, name: str, channel: _Channel) -> None:
        self.name = name
        self._channel = channel
        self._peer: LoopbackLink | None = None
        self._inbox: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._context: bytes | None = None
        self._pending_context: bytes | None = None
        self.sent: list[bytes] = []

    @classmethod
    def pair(cls, first: str = "companion", second: str = "controller") -> tuple[LoopbackLink, LoopbackLink]:
        channel = _Channel()
        a, b = cls(first, channel), cls(second, channel)
        a._peer, b._peer = b, a
        channel.ends = [a, b]
        return a, b

    # -- reachability ------------------------------------------------------

    def is_reachable(self) -> bool:
        return self._channel.reachable

    def set_reachable(self, reachable: bool) -> None:
        """Toggle connectivity for both ends; reconnecting flushes contexts."""
        self._channel.reachable = reachable
        if reachable:
            for end in self._channel.ends:
                end._flush_context()

    # -- outbound ----------------------------------------------------------

    def send(self, data: bytes) -> None:
        if not self.is_reachable() or self._peer is None:
            raise TransportUnreachableError(f"{self.name}: peer not reachable")
        self.sent.append(data)
        self._peer._deliver(data)

    def update_context(self, data: bytes) -> None:
        self._pending_context = data
        if self.is_reachable():
            self._flush_context()
        else:
            logger.debug("%s: context queued until peer is reachable", self.name)

    def _flush_context(self) -> None:
        if self._pending_context is None or self._peer is None:
            return
        data, self._pending_context = self._pending_context, None
        self._peer._context = data
        self._peer._deliver(data)

    # -- inbound -----------------------------------------------------------

    def received_context(self) -> bytes | None:
        return self._context

    def _deliver(self, data: bytes) -> None:
        self._inbox.put_nowait(data)

    def drain(self) -> list[bytes]:
        """Pop every inbound item without awaiting."""
        items = []
        while not self._inbox.empty():
            item = self._inbox.get_nowait()
            if item is not None:
                items.append(item)
        return items

    def close(self) -> None:
        """End the ``messages()`` iterator once queued items are consumed."""
        self._inbox.put_nowait(None)

    async def messages(self) -> AsyncIterator[bytes]:
        while True:
            item = await self._inbox.get()
            if item is None:
                return
            yield item

    def __repr__(self) -> str:
        state = "reachable" if self.is_reachable() else "unreachable"
        return f"LoopbackLink({self.name}, {state})"
