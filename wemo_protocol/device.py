#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
WemoDeviceClient -- a client that controls a single WeMo device:

  1. Read and set the on/off (binary) state
  2. Toggle the state
  3. Read and change the device's friendly name

Every action goes through one retrying executor. Attempts are sequential; after
a failed attempt the client sleeps retry_delay * (attempt + 1) seconds before
trying again, and raises DeviceOperationFailed once all attempts are used up.
"""

from __future__ import annotations

import asyncio
import aiohttp

from .internal_types import *
from .pkg_logging import logger
from .constants import (
    BASIC_EVENT_SERVICE,
    BASIC_EVENT_CONTROL_URL,
    DEFAULT_RETRY_COUNT,
    DEFAULT_RETRY_DELAY,
    DEFAULT_TIMEOUT,
  )
from .envelope import as_number, as_text, xml_escape
from .exceptions import WemoError, InvalidEnvelopeError, DeviceOperationFailed
from .models import WemoDevice, BinaryState, DeviceState
from .soap import SoapResponse, SoapRequestFunc, soap_request

SleepFunc = Callable[[float], Awaitable[None]]

def retry_backoff(base_delay: float, attempt: int) -> float:
    """Delay (in seconds) to wait after failed attempt number `attempt` (0-based)."""
    return base_delay * (attempt + 1)

class WemoDeviceClient:
    """Client for controlling a WeMo device over its basicevent service.

    Usage:
        client = WemoDeviceClient(device)
        state = await client.get_state()
        await client.set_state(True)
        new_state = await client.toggle()
    """

    device: WemoDevice
    retries: int
    retry_delay: float
    timeout: float
    session: Optional[aiohttp.ClientSession]

    def __init__(
            self,
            device: WemoDevice,
            retries: int=DEFAULT_RETRY_COUNT,
            retry_delay: float=DEFAULT_RETRY_DELAY,
            timeout: float=DEFAULT_TIMEOUT,
            session: Optional[aiohttp.ClientSession]=None,
            sleep: Optional[SleepFunc]=None,
            request: Optional[SoapRequestFunc]=None,
          ) -> None:
        """Create a client for a device.

        Parameters:
            device:       The device record to control.
            retries:      Number of retries after the first attempt. Defaults to 2.
            retry_delay:  Base delay between attempts, in seconds. Defaults to 0.5.
            timeout:      Deadline for each attempt, in seconds. Defaults to 10.
            session:      Optional aiohttp session to share between requests.
            sleep:        Coroutine used to wait between attempts. Defaults to asyncio.sleep.
            request:      Coroutine used to send SOAP requests. Defaults to soap_request.
        """
        if retries < 0:
            raise ValueError(f"retries must be >= 0, got {retries}")
        self.device = device
        self.retries = retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.session = session
        self._sleep: SleepFunc = asyncio.sleep if sleep is None else sleep
        self._request: SoapRequestFunc = soap_request if request is None else request
        self._basic_event_service = device.find_service("basicevent")

    def __str__(self) -> str:
        return f"WemoDeviceClient({self.device.name!r} @ {self.device.host}:{self.device.port})"

    def __repr__(self) -> str:
        return str(self)

    @property
    def info(self) -> WemoDevice:
        return self.device

    @property
    def id(self) -> str:
        return self.device.id

    @property
    def name(self) -> str:
        return self.device.name

    @property
    def host(self) -> str:
        return self.device.host

    @property
    def port(self) -> int:
        return self.device.port

    @property
    def control_url(self) -> str:
        """Control path of the basicevent service."""
        service = self._basic_event_service
        if service is None or service.control_url == "":
            return BASIC_EVENT_CONTROL_URL
        return service.control_url

    async def _execute_with_retry(
            self,
            action: str,
            body: Optional[str]=None,
            service_type: str=BASIC_EVENT_SERVICE,
            control_url: Optional[str]=None,
          ) -> Dict[str, Any]:
        """Send an action, retrying on failure. Returns the response payload.

        Raises DeviceOperationFailed, carrying the last failure as its cause, after
        retries + 1 failed attempts.
        """
        if control_url is None:
            control_url = self.control_url
        last_error: Optional[WemoError] = None
        attempts = self.retries + 1
        for attempt in range(attempts):
            try:
                response: SoapResponse = await self._request(
                    self.device.host,
                    self.device.port,
                    control_url,
                    service_type,
                    action,
                    body,
                    timeout=self.timeout,
                    session=self.session,
                  )
            except InvalidEnvelopeError as e:
                last_error = e
            else:
                if response.success:
                    return {} if response.data is None else response.data
                last_error = response.to_exception()
            logger.warning(f"{self}: {action} attempt {attempt + 1}/{attempts} failed: {last_error}")
            if attempt < attempts - 1:
                await self._sleep(retry_backoff(self.retry_delay, attempt))

        assert last_error is not None
        raise DeviceOperationFailed(
            self.device.id,
            action,
            last_error,
            msg=f"Failed to {action} after {attempts} attempts: {last_error}",
          ) from last_error

    async def get_binary_state(self) -> BinaryState:
        """Returns OFF, ON, or STANDBY (Insight devices only)."""
        response = await self._execute_with_retry("GetBinaryState")
        return BinaryState.normalize(as_number(response.get("BinaryState")))

    async def set_binary_state(self, state: BinaryState) -> None:
        """Set the binary state. Only OFF and ON can be set."""
        if state not in (BinaryState.OFF, BinaryState.ON):
            raise ValueError(f"Cannot set binary state to {state!r}")
        await self._execute_with_retry("SetBinaryState", f"<BinaryState>{int(state)}</BinaryState>")

    async def get_state(self) -> DeviceState:
        binary_state = await self.get_binary_state()
        # TODO: read brightness for Dimmer devices (GetBrightness on basicevent)
        return DeviceState(binary_state=binary_state)

    async def set_state(self, on: bool) -> None:
        await self.set_binary_state(BinaryState.ON if on else BinaryState.OFF)

    async def turn_on(self) -> None:
        await self.set_state(True)

    async def turn_off(self) -> None:
        await self.set_state(False)

    async def toggle(self) -> DeviceState:
        """Flip the device state and return the new state (the device is not re-queried).

        STANDBY counts as on, so a device in standby is switched off.
        """
        current = await self.get_binary_state()
        new_state = BinaryState.ON if current == BinaryState.OFF else BinaryState.OFF
        await self.set_binary_state(new_state)
        return DeviceState(binary_state=new_state)

    async def get_friendly_name(self) -> str:
        response = await self._execute_with_retry("GetFriendlyName")
        return as_text(response.get("FriendlyName")) or self.device.name

    async def set_friendly_name(self, name: str) -> None:
        await self._execute_with_retry("ChangeFriendlyName", f"<FriendlyName>{xml_escape(name)}</FriendlyName>")

    async def rename(self, name: str) -> None:
        await self.set_friendly_name(name)

    async def is_reachable(self) -> bool:
        """Returns True if the device answers a state query."""
        try:
            await self.get_binary_state()
        except DeviceOperationFailed as e:
            logger.debug(f"{self} is not reachable: {e}")
            return False
        return True

def create_device_client(device: WemoDevice, **kwargs: Any) -> WemoDeviceClient:
    return WemoDeviceClient(device, **kwargs)
