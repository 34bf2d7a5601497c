#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
TplinkSocket -- An abstract base class for the single UDP socket used by discovery, that can:

  1. Send TplinkDatagrams to the broadcast address or to individual devices
  2. Decode the responses and deliver them to any number of async subscribers

  A subscriber is an async iterator of (HostAndPort, TplinkDatagram) tuples that ends when the
  socket is closed.

  Subclasses must implement create_socket() to create and bind the low-level socket.
"""

from __future__ import annotations

import asyncio
from asyncio import Future
import socket
from abc import ABC, abstractmethod

from .internal_types import *
from .pkg_logging import logger
from .exceptions import TplinkDiscoveryError
from .datagram import TplinkDatagram

MAX_QUEUE_SIZE = 1000

class _TplinkSocketProtocol(asyncio.DatagramProtocol):
    """Forwards asyncio transport callbacks to the owning TplinkSocket."""

    tplink_socket: TplinkSocket

    def __init__(self, tplink_socket: TplinkSocket):
        self.tplink_socket = tplink_socket

    def datagram_received(self, data: bytes, addr: Tuple[str, int]):
        self.tplink_socket.datagram_received((addr[0], addr[1]), data)

    def error_received(self, exc: Exception):
        """Called when a send or receive operation raises an OSError.

        (Other than BlockingIOError or InterruptedError.)
        """
        self.tplink_socket.error_received(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self.tplink_socket.connection_lost(exc)

class TplinkDatagramSubscriber(
        AsyncContextManager['TplinkDatagramSubscriber'],
        AsyncIterable[Tuple[HostAndPort, TplinkDatagram]]
      ):
    """A queue of received datagrams, registered with a TplinkSocket for the duration of an
       "async with" block."""

    tplink_socket: TplinkSocket

    queue: asyncio.Queue[Optional[Tuple[HostAndPort, TplinkDatagram]]]
    """Received datagrams. None marks the end of the stream."""

    eos: bool = False
    """True once the socket has closed; no more datagrams are queued."""

    eos_exc: Optional[Exception] = None
    """The exception that closed the socket, raised to the reader at the end of the stream."""

    def __init__(self, tplink_socket: TplinkSocket, max_queue_size: int=MAX_QUEUE_SIZE):
        self.tplink_socket = tplink_socket
        self.queue = asyncio.Queue(max_queue_size)

    async def __aenter__(self) -> TplinkDatagramSubscriber:
        self.tplink_socket.add_subscriber(self)
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        self.tplink_socket.remove_subscriber(self)
        self.on_end_of_stream()
        return False

    async def receive(self) -> Optional[Tuple[HostAndPort, TplinkDatagram]]:
        """Returns the next received datagram, or None at the end of the stream. Raises the
           exception that closed the socket, if any, once the queue is drained."""
        result: Optional[Tuple[HostAndPort, TplinkDatagram]] = None
        if not (self.eos and self.queue.empty()):
            result = await self.queue.get()
        if result is None:
            if not self.eos_exc is None:
                raise self.eos_exc
        return result

    async def iter_datagrams(self) -> AsyncIterator[Tuple[HostAndPort, TplinkDatagram]]:
        while True:
            result = await self.receive()
            if result is None:
                break
            yield result

    def __aiter__(self) -> AsyncIterator[Tuple[HostAndPort, TplinkDatagram]]:
        return self.iter_datagrams()

    def on_datagram(self, addr: HostAndPort, datagram: TplinkDatagram) -> None:
        if not self.eos:
            try:
                self.queue.put_nowait((addr, datagram))
            except asyncio.QueueFull:
                logger.warning(f"Queue full, dropping datagram from {addr}: {datagram}")

    def on_end_of_stream(self, exc: Optional[Exception]=None) -> None:
        if not self.eos:
            self.eos = True
            self.eos_exc = exc
            try:
                self.queue.put_nowait(None)
            except asyncio.QueueFull:
                # the reader drains the queue and then sees eos
                pass

class TplinkSocket(ABC):
    """
    An abstract async UDP socket. See the module documentation.

    The socket lives from start() until final_result is set, by stop(), by a transport error,
    or by a subclass. The low-level socket is closed as soon as final_result is set, so its
    port may be bound again immediately.
    """

    sock: Optional[socket.socket] = None
    """The low-level socket, until it is closed."""

    transport: Optional[asyncio.DatagramTransport] = None
    """The asyncio transport for sock, until it is closed."""

    protocol: Optional[_TplinkSocketProtocol] = None

    bound_addr: Optional[HostAndPort] = None
    """The local address and port the socket is bound to, once started."""

    final_result: Future[None]
    """A future that is set when the socket is stopped."""

    datagram_subscribers: Set[TplinkDatagramSubscriber]

    def __init__(self) -> None:
        self.final_result = asyncio.get_running_loop().create_future()
        self.datagram_subscribers = set()

    @property
    def is_open(self) -> bool:
        """True if datagrams can currently be sent."""
        return not self.transport is None and not self.transport.is_closing()

    def add_subscriber(self, subscriber: TplinkDatagramSubscriber) -> None:
        self.datagram_subscribers.add(subscriber)
        if self.final_result.done():
            subscriber.on_end_of_stream()

    def remove_subscriber(self, subscriber: TplinkDatagramSubscriber) -> None:
        self.datagram_subscribers.discard(subscriber)

    @abstractmethod
    async def create_socket(self) -> socket.socket:
        """Creates and binds the low-level datagram socket. Must be overridden by subclasses."""
        raise NotImplementedError()

    async def finish_start(self) -> None:
        """Called after the socket is up and running.  Subclasses can override to do additional
           initialization."""
        pass

    async def start(self) -> None:
        try:
            loop = asyncio.get_running_loop()
            sock = await self.create_socket()
            self.sock = sock
            sockname = sock.getsockname()
            self.bound_addr = (sockname[0], sockname[1])
            untyped_transport, protocol = await loop.create_datagram_endpoint(
                lambda: _TplinkSocketProtocol(self),
                sock=sock
              )
            # asyncio datagram transports implement, but do not inherit from, asyncio.DatagramTransport
            self.transport = untyped_transport # type: ignore[assignment]
            self.protocol = protocol
            logger.debug(f"Created datagram endpoint on {self.bound_addr}")
            await self.finish_start()
        except BaseException as e:
            self.set_final_exception(e)
            try:
                await self.wait_for_done()
            except BaseException:
                # e is re-raised below
                pass
            raise

    def sendto(self, datagram: TplinkDatagram, addr: HostAndPort) -> None:
        logger.debug(f"Sending TplinkDatagram from {self.bound_addr} to {addr}: {datagram}")
        assert not self.transport is None
        self.transport.sendto(datagram.raw_data, addr)

    async def stop(self) -> None:
        """Stops the TplinkSocket. Safe to call more than once."""
        self.set_final_result()

    async def wait_for_dependents_done(self) -> None:
        """Called after final_result has been awaited.  Subclasses can override to do additional
           cleanup."""
        pass

    async def wait_for_done(self) -> None:
        try:
            await asyncio.shield(self.final_result)
        finally:
            await self.wait_for_dependents_done()

    async def stop_and_wait(self) -> None:
        await self.stop()
        await self.wait_for_done()

    def datagram_received(self, addr: HostAndPort, data: bytes) -> None:
        """Datagrams that cannot be decoded are logged and dropped."""
        try:
            datagram = TplinkDatagram(raw_data=data)
        except Exception as e:
            logger.warning(f"Error parsing datagram from {addr}, raw=[{data!r}]: {e}")
            return
        logger.debug(f"Received datagram from {addr}: {datagram}")
        for subscriber in list(self.datagram_subscribers):
            subscriber.on_datagram(addr, datagram)

    def error_received(self, exc: Exception) -> None:
        logger.error(f"UDP error on {self.bound_addr}: {exc}")
        self.set_final_exception(TplinkDiscoveryError(f"UDP error on {self.bound_addr}: {exc}"))

    def connection_lost(self, exc: Optional[Exception]) -> None:
        logger.debug(f"UDP socket on {self.bound_addr} closed, exc={exc}")
        if exc is None:
            self.set_final_result()
        else:
            self.set_final_exception(TplinkDiscoveryError(f"UDP socket on {self.bound_addr} lost: {exc}"))
        self.transport = None

    def _close(self, exc: Optional[Exception]) -> None:
        for subscriber in list(self.datagram_subscribers):
            subscriber.on_end_of_stream(exc)
        if not self.transport is None:
            self.transport.close()
            self.transport = None
        if not self.sock is None:
            self.sock.close()
            self.sock = None

    def set_final_exception(self, exc: BaseException) -> None:
        if not self.final_result.done():
            logger.debug(f"TplinkSocket: Setting final exception: {exc}")
            self.final_result.set_exception(exc)
            self._close(exc if isinstance(exc, Exception) else None)

    def set_final_result(self) -> None:
        if not self.final_result.done():
            logger.debug("TplinkSocket: Setting final result to success")
            self.final_result.set_result(None)
            self._close(None)
