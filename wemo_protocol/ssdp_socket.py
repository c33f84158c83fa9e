#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
SsdpSocket -- An abstract base class for an SSDP socket that can:

  1. Own one bound UDP socket per local interface address
  2. Receive and decode SsdpDatagrams from remote nodes and deliver them to any number of async subscribers
  3. Send SsdpDatagrams to a remote multicast or unicast address

  The subscriber interface is a simple async iterator that returns a sequence of
  (SsdpSocketBinding, HostAndPort, SsdpDatagram) tuples until the socket is closed.

  An error on one socket binding closes only that binding; it is recorded in
  SsdpSocket.errors and the remaining bindings keep running. The stream ends
  when every binding has been closed.

  Subclasses must implement add_socket_bindings() to create and bind the sockets.
"""

from __future__ import annotations


import asyncio
from asyncio import Future
import socket
from abc import ABC, abstractmethod

from .internal_types import *
from .pkg_logging import logger
from .exceptions import WemoError
from .ssdp_datagram import SsdpDatagram

MAX_QUEUE_SIZE = 1000

class SsdpSocketBinding:
    """
    An encapsulation of the binding of an SsdpSocket to a single low-level
    bound datagram socket. There is one instance of this class created for each
    low-level socket that is in use (typically one per network interface).
    """

    ssdp_socket: Optional[SsdpSocket] = None
    """The SsdpSocket that is bound to this low-level socket. """

    index: int = -1
    """The index of this socket binding within SsdpSocket. Set to -1 until this socket binding is added."""

    sock: Optional[socket.socket] = None
    """The low-level socket that is bound to this SsdpSocket."""

    _transport: Optional[asyncio.DatagramTransport] = None
    """The asyncio transport that is bound to this SsdpSocket."""

    unicast_addr: HostAndPort
    """The local ip address and port of this binding."""

    sockname: str
    """The name of the socket as it should be displayed in logs, etc"""

    closed: bool = False

    def __init__(self, sock: socket.socket, sockname: Optional[str]=None):
        self.sock = sock
        unicast_addr = sock.getsockname()
        assert isinstance(unicast_addr, tuple)
        self.unicast_addr = (unicast_addr[0], unicast_addr[1])
        self.sockname = str(self.unicast_addr) if sockname is None else sockname

    def attach_to_ssdp_socket(self, ssdp_socket: SsdpSocket, index: int) -> None:
        if self.index >= 0:
            raise WemoError(f"Attempt to reattach SsdpSocketBinding: {self}")
        self.ssdp_socket = ssdp_socket
        self.index = index

    @property
    def transport(self) -> Optional[asyncio.DatagramTransport]:
        return self._transport

    @transport.setter
    def transport(self, transport: Optional[asyncio.DatagramTransport]) -> None:
        if transport != self._transport:
            assert self._transport is None or transport is None
        self._transport = transport

    def sendto(self, datagram: SsdpDatagram, addr: HostAndPort) -> None:
        if self.closed or self.transport is None:
            raise WemoError(f"Cannot send on closed {self}")
        logger.debug(f"Sending SsdpDatagram via {self} to {addr}: {datagram}")
        self.transport.sendto(datagram.raw_data, addr)

    def close(self) -> None:
        """Close the transport and the low-level socket. Safe to call more than once."""
        self.closed = True
        transport = self._transport
        self._transport = None
        if transport is not None:
            try:
                transport.close()
            except Exception as e:
                logger.error(f"Error closing transport on {self}: {e}")
        if self.sock is not None:
            try:
                self.sock.close()
            except OSError as e:
                logger.error(f"Error closing socket on {self}: {e}")
            self.sock = None

    def __str__(self) -> str:
        return f"SsdpSocketBinding({self.index}: {self.sockname})"

    def __repr__(self) -> str:
        return str(self)

class _SsdpSocketProtocol(asyncio.DatagramProtocol):
    """An adapter between the asyncio transport and SsdpSocket. There is one instance of this class
       created for each low-level socket (typically one per network interface)."""
    socket_binding: SsdpSocketBinding

    def __init__(self, socket_binding: SsdpSocketBinding):
        self.socket_binding = socket_binding

    @property
    def ssdp_socket(self) -> SsdpSocket:
        assert self.socket_binding.ssdp_socket is not None
        return self.socket_binding.ssdp_socket

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        # asyncio datagram transports do not actually inherit from asyncio.DatagramTransport
        self.socket_binding.transport = transport # type: ignore[assignment]

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        self.ssdp_socket.datagram_received(self.socket_binding, (addr[0], addr[1]), data)

    def error_received(self, exc: Exception) -> None:
        """Called when a send or receive operation raises an OSError.

        (Other than BlockingIOError or InterruptedError.)
        """
        self.ssdp_socket.binding_failed(self.socket_binding, exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc is not None:
            self.ssdp_socket.binding_failed(self.socket_binding, exc)
        self.socket_binding.transport = None


class SsdpDatagramSubscriber(
        AsyncContextManager['SsdpDatagramSubscriber'],
        AsyncIterable[Tuple[SsdpSocketBinding, HostAndPort, SsdpDatagram]]
      ):
    ssdp_socket: SsdpSocket
    queue: asyncio.Queue[Optional[Tuple[SsdpSocketBinding, HostAndPort, SsdpDatagram]]]
    eos: bool = False

    def __init__(self, ssdp_socket: SsdpSocket, max_queue_size: int=MAX_QUEUE_SIZE):
        self.ssdp_socket = ssdp_socket
        self.queue = asyncio.Queue(max_queue_size)

    async def __aenter__(self) -> SsdpDatagramSubscriber:
        self.ssdp_socket.add_subscriber(self)
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        self.ssdp_socket.remove_subscriber(self)
        self.on_end_of_stream()
        return False

    async def iter_datagrams(self) -> AsyncIterator[Tuple[SsdpSocketBinding, HostAndPort, SsdpDatagram]]:
        while True:
            result = await self.receive()
            if result is None:
                break
            yield result

    def __aiter__(self) -> AsyncIterator[Tuple[SsdpSocketBinding, HostAndPort, SsdpDatagram]]:
        return self.iter_datagrams()

    async def receive(self) -> Optional[Tuple[SsdpSocketBinding, HostAndPort, SsdpDatagram]]:
        """Wait for the next datagram. Returns None at end of stream."""
        if self.eos and self.queue.empty():
            return None
        result = await self.queue.get()
        self.queue.task_done()
        return result

    def on_datagram(self, socket_binding: SsdpSocketBinding, addr: HostAndPort, datagram: SsdpDatagram) -> None:
        if not self.eos:
            try:
                self.queue.put_nowait((socket_binding, addr, datagram))
            except asyncio.QueueFull:
                logger.warning(f"Queue full, dropping datagram from {socket_binding} {addr}: {datagram}")

    def on_end_of_stream(self) -> None:
        if not self.eos:
            self.eos = True
            try:
                # wake up any waiting tasks
                self.queue.put_nowait(None)
            except asyncio.QueueFull:
                # queue is full so waiters will wake up soon
                pass

class SsdpSocket(AsyncContextManager['SsdpSocket'], ABC):
    """
    An abstract async SSDP socket. See the module docstring.
    """

    socket_bindings: List[SsdpSocketBinding]
    """A list of SsdpSocketBinding instances, one for each low-level socket that is in use."""

    datagram_subscribers: Set[SsdpDatagramSubscriber]
    """A set of subscribers that wish to receive SSDP Datagrams."""

    errors: List[str]
    """Human-readable descriptions of per-binding failures."""

    final_result: Future[None]
    """A future that is set when every binding has been closed."""

    def __init__(self) -> None:
        self.socket_bindings = []
        self.datagram_subscribers = set()
        self.errors = []
        self.final_result = Future()

    def add_subscriber(self, subscriber: SsdpDatagramSubscriber) -> None:
        self.datagram_subscribers.add(subscriber)
        if self.final_result.done():
            subscriber.on_end_of_stream()

    def remove_subscriber(self, subscriber: SsdpDatagramSubscriber) -> None:
        self.datagram_subscribers.discard(subscriber)

    def add_socket_binding(self, socket_binding: SsdpSocketBinding) -> None:
        i = len(self.socket_bindings)
        socket_binding.attach_to_ssdp_socket(self, i)
        self.socket_bindings.append(socket_binding)
        logger.debug(f"Added socket binding {i}: {socket_binding}")

    def record_error(self, msg: str) -> None:
        logger.info(msg)
        self.errors.append(msg)

    @property
    def open_bindings(self) -> List[SsdpSocketBinding]:
        return [b for b in self.socket_bindings if not b.closed]

    @abstractmethod
    async def add_socket_bindings(self) -> None:
        """Abstract method that creates and binds the sockets that will be used to receive
           and send datagrams (typically one per interface), and adds them with self.add_socket_binding().
           Must be overridden by subclasses."""
        raise NotImplementedError()

    async def finish_start(self) -> None:
        """Called after the socket is up and running.  Subclasses can override to do additional
           initialization."""
        pass

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            await self.add_socket_bindings()
            for socket_binding in self.socket_bindings:
                try:
                    await loop.create_datagram_endpoint(
                        lambda: _SsdpSocketProtocol(socket_binding),
                        sock=socket_binding.sock
                      )
                except OSError as e:
                    self.binding_failed(socket_binding, e)
            if len(self.open_bindings) == 0:
                raise WemoError("No usable datagram sockets: " + "; ".join(self.errors))
            await self.finish_start()
        except BaseException:
            self.close()
            raise

    def datagram_received(self, socket_binding: SsdpSocketBinding, addr: HostAndPort, data: bytes) -> None:
        """Called when some datagram is received."""
        try:
            datagram = SsdpDatagram(raw_data=data)
        except Exception as e:
            logger.warning(f"Error parsing datagram from {addr}, raw=[{data!r}]: {e}")
            return
        logger.debug(f"Received datagram from {socket_binding} {addr}: {datagram}")
        for subscriber in list(self.datagram_subscribers):
            subscriber.on_datagram(socket_binding, addr, datagram)

    def binding_failed(self, socket_binding: SsdpSocketBinding, exc: BaseException) -> None:
        """Close a single binding after a send/receive error. The stream ends when no bindings remain."""
        if socket_binding.closed:
            return
        self.record_error(f"Socket error on {socket_binding.unicast_addr[0]}: {exc}")
        socket_binding.close()
        if len(self.open_bindings) == 0:
            self.close()

    def close(self) -> None:
        """Close every binding and end the stream for all subscribers. Safe to call more than once."""
        for socket_binding in self.socket_bindings:
            socket_binding.close()
        for subscriber in list(self.datagram_subscribers):
            subscriber.on_end_of_stream()
        if not self.final_result.done():
            logger.debug("SsdpSocket: closed")
            self.final_result.set_result(None)

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        self.close()
        return False
