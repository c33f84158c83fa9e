# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
SsdpClient -- An SSDP client that can:

  1. Send an M-SEARCH request to a multicast UDP address (typically 239.255.255.250:1900)
     from one socket per local interface
  2. Re-send the request once, halfway through the wait time, to improve recall on lossy networks
  3. Receive and decode response SsdpDatagram's from remote nodes until the wait time elapses
"""

from __future__ import annotations


import asyncio
import socket
import sys
import time
import datetime

from .internal_types import *
from .pkg_logging import logger
from .constants import SSDP_MULTICAST_ADDRESS, SSDP_PORT, DEFAULT_DISCOVERY_TIMEOUT

from .ssdp_datagram import SsdpDatagram
from .ssdp_socket import SsdpSocket, SsdpSocketBinding, SsdpDatagramSubscriber
from .util import get_discovery_interface_addresses

class SsdpResponseInfo:
    socket_binding: SsdpSocketBinding
    """The socket binding on which the response was received"""

    src_addr: HostAndPort
    """The source address of the response"""

    datagram: SsdpDatagram
    """The response datagram"""

    monotonic_time: float
    """The value of time.monotonic() when the response was received."""

    utc_time: datetime.datetime
    """The UTC time at which the response was received."""

    def __init__(
            self,
            socket_binding: SsdpSocketBinding,
            src_addr: HostAndPort,
            datagram: SsdpDatagram,
          ) -> None:
        self.socket_binding = socket_binding
        self.src_addr = src_addr
        self.datagram = datagram
        self.monotonic_time = time.monotonic()
        self.utc_time = datetime.datetime.now(datetime.timezone.utc)

    @property
    def location(self) -> Optional[str]:
        return self.datagram.location

class SsdpSearchRequest(
        AsyncContextManager['SsdpSearchRequest'],
        AsyncIterable[SsdpResponseInfo]
      ):
    """An object that manages a single search request on an SsdpClient and all of the received responses
       within an AsyncContextManager/AsyncIterable interface."""

    ssdp_client: SsdpClient
    search_target: str
    response_wait_time: float
    resend: bool
    dg_subscriber: SsdpDatagramSubscriber
    end_time: float = 0.0
    _resend_handle: Optional[asyncio.TimerHandle] = None

    def __init__(
            self,
            ssdp_client: SsdpClient,
            search_target: str,
            response_wait_time: Optional[float]=None,
            resend: bool=True,
          ):
        """Create an async context manager/iterable that sends a multicast search request and returns the responses
        as they arrive.

        Parameters:
            ssdp_client:             The SsdpClient to send the search request and receive responses with.
            search_target:           The ST header to search for.
            response_wait_time:      The amount of time (in seconds) to wait for responses to come in. Defaults to
                                        ssdp_client.response_wait_time.
            resend:                  If True (the default), the request is sent again on every binding
                                        halfway through response_wait_time.

        Usage:
            async with SsdpSearchRequest(ssdp_client, target) as search_request:
                async for response in search_request:
                    print(response.location)
        """
        self.ssdp_client = ssdp_client
        self.search_target = search_target
        self.response_wait_time = ssdp_client.response_wait_time if response_wait_time is None else response_wait_time
        self.resend = resend
        self.dg_subscriber = SsdpDatagramSubscriber(self.ssdp_client)

    def _build_request(self) -> SsdpDatagram:
        return SsdpDatagram.build_m_search(
            self.search_target,
            multicast_address=self.ssdp_client.multicast_address,
            multicast_port=self.ssdp_client.multicast_port,
          )

    def send_request(self) -> None:
        """Send the search request on every open binding. A failing binding is closed and recorded;
           the others are unaffected."""
        search_datagram = self._build_request()
        dest = (self.ssdp_client.multicast_address, self.ssdp_client.multicast_port)
        for socket_binding in self.ssdp_client.open_bindings:
            try:
                socket_binding.sendto(search_datagram, dest)
            except OSError as e:
                self.ssdp_client.binding_failed(socket_binding, e)

    async def __aenter__(self) -> SsdpSearchRequest:
        # The subscriber must be started before the request is sent so that no responses are missed.
        await self.dg_subscriber.__aenter__()
        try:
            self.send_request()
            self.end_time = time.monotonic() + self.response_wait_time
            if self.resend:
                loop = asyncio.get_running_loop()
                self._resend_handle = loop.call_later(self.response_wait_time / 2.0, self.send_request)
        except BaseException as e:
            # __aexit__ is not called when __aenter__ raises
            await self.dg_subscriber.__aexit__(type(e), e, e.__traceback__)
            raise
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        if self._resend_handle is not None:
            self._resend_handle.cancel()
            self._resend_handle = None
        return await self.dg_subscriber.__aexit__(exc_type, exc, tb)

    async def iter_responses(self) -> AsyncIterator[SsdpResponseInfo]:
        while True:
            remaining_time = self.end_time - time.monotonic()
            if remaining_time <= 0.0:
                break
            try:
                resp_tuple = await asyncio.wait_for(self.dg_subscriber.receive(), remaining_time)
            except asyncio.TimeoutError:
                break
            if resp_tuple is None:
                # every binding failed; wait out the scan anyway so callers see a fixed duration
                remaining_time = self.end_time - time.monotonic()
                if remaining_time > 0.0:
                    await asyncio.sleep(remaining_time)
                break
            socket_binding, addr, datagram = resp_tuple
            status_code = datagram.status_code
            if status_code is None:
                # our own multicast query, or another client's, looped back
                logger.debug(f"Ignoring non-response datagram from {addr}: {datagram.statement_line}")
                continue
            if status_code != 200:
                logger.debug(f"Ignoring SSDP response with status {status_code} from {addr}")
                continue
            yield SsdpResponseInfo(socket_binding, addr, datagram)

    def __aiter__(self) -> AsyncIterator[SsdpResponseInfo]:
        return self.iter_responses()


class SsdpClient(SsdpSocket):
    """
    An SSDP client that sends M-SEARCH requests from every usable local interface and collects
    responses. Socket creation failures for individual addresses are recorded in `errors`
    rather than raised, as long as at least one socket could be bound.
    """
    response_wait_time: float
    """The amount of time (in seconds) to wait for all responses to come in."""

    multicast_address: str = SSDP_MULTICAST_ADDRESS
    """The multicast address to send requests to."""

    multicast_port: int = SSDP_PORT
    """The multicast port to send requests to."""

    bind_addresses: List[str]
    """The local IP addresses to bind to."""

    def __init__(
            self,
            response_wait_time: float=DEFAULT_DISCOVERY_TIMEOUT,
            multicast_address: str=SSDP_MULTICAST_ADDRESS,
            multicast_port: int=SSDP_PORT,
            bind_addresses: Optional[Iterable[str]]=None,
          ) -> None:
        super().__init__()
        self.response_wait_time = response_wait_time
        self.multicast_address = multicast_address
        self.multicast_port = multicast_port
        if bind_addresses is None:
            bind_addresses = get_discovery_interface_addresses()
        self.bind_addresses = list(bind_addresses)

    def _create_socket(self, bind_address: str) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if sys.platform not in ( 'win32', 'cygwin' ) and hasattr(socket, 'SO_REUSEPORT'):
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 2)
            if bind_address != "0.0.0.0":
                # route the multicast query out of this specific interface
                sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, socket.inet_aton(bind_address))
            sock.bind((bind_address, 0))
            sock.setblocking(False)
        except BaseException:
            sock.close()
            raise
        return sock

    async def add_socket_bindings(self) -> None:
        logger.debug(f"Creating socket bindings to {self.bind_addresses}")
        for bind_address in self.bind_addresses:
            try:
                sock = self._create_socket(bind_address)
            except OSError as e:
                self.record_error(f"Failed to create socket for {bind_address}: {e}")
                continue
            self.add_socket_binding(SsdpSocketBinding(sock))

    def search(
            self,
            search_target: str,
            response_wait_time: Optional[float]=None,
            resend: bool=True,
          ) -> SsdpSearchRequest:
        """Create an async context manager/iterable that sends a multicast search request and returns the responses
           as they arrive. See SsdpSearchRequest."""
        return SsdpSearchRequest(self, search_target, response_wait_time=response_wait_time, resend=resend)

    async def __aenter__(self) -> SsdpClient:
        await super().__aenter__()
        return self
