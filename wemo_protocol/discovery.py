#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
WeMo device discovery.

A scan sends an M-SEARCH for the basicevent service from every usable local
interface, collects the unique LOCATION URLs from the responses for the full
scan time, then fetches every description document concurrently and keeps the
ones whose manufacturer is Belkin. Failures of individual sockets or fetches
are collected in DiscoveryResult.errors; they never fail the whole scan.
"""

from __future__ import annotations

import asyncio
import math
import time
import aiohttp
from urllib.parse import urlparse

from .internal_types import *
from .pkg_logging import logger
from .constants import (
    WEMO_SEARCH_TARGET,
    WEMO_MANUFACTURER_MARKER,
    DEFAULT_DEVICE_PORT,
    DEFAULT_DISCOVERY_TIMEOUT,
    MIN_DISCOVERY_TIMEOUT,
    MAX_DISCOVERY_TIMEOUT,
    DEFAULT_DESCRIPTION_TIMEOUT,
    DEFAULT_DISCOVERY_COOLDOWN,
  )
from .envelope import parse_xml, children_to_dict, local_name, as_text
from .exceptions import WemoError, DiscoveryRateLimited, InvalidEnvelopeError
from .http_helper import device_session
from .models import WemoDevice, WemoDeviceType, WemoService, DiscoveryResult
from .ssdp_client import SsdpClient

DescriptionFetcher = Callable[[str], Awaitable[Optional[WemoDevice]]]
"""Fetches and parses the description document at a location URL. Returns None for
   documents that are not WeMo devices; raises WemoError on failure."""

class DiscoveryCooldown:
    """Enforces a minimum interval between discovery scans.

    The clock is injected so that callers (and tests) control time; one instance is
    shared by everything that may trigger a scan.
    """

    interval: float
    _clock: Callable[[], float]
    _last_scan: Optional[float] = None

    def __init__(self, interval: float=DEFAULT_DISCOVERY_COOLDOWN, clock: Optional[Callable[[], float]]=None):
        self.interval = interval
        self._clock = time.monotonic if clock is None else clock

    def remaining(self) -> float:
        """Seconds until the next scan is allowed (0.0 if allowed now)."""
        if self._last_scan is None:
            return 0.0
        return max(0.0, self.interval - (self._clock() - self._last_scan))

    def check(self) -> None:
        """Record a scan starting now, or raise DiscoveryRateLimited if it is too soon."""
        remaining = self.remaining()
        if remaining > 0.0:
            raise DiscoveryRateLimited(math.ceil(remaining))
        self._last_scan = self._clock()

def clamp_timeout(timeout: Optional[float]) -> float:
    if timeout is None:
        return DEFAULT_DISCOVERY_TIMEOUT
    return min(max(float(timeout), MIN_DISCOVERY_TIMEOUT), MAX_DISCOVERY_TIMEOUT)

def determine_device_type(device_type: str, model_name: str) -> WemoDeviceType:
    """Classify a device from its UPnP deviceType URN and model name. Rules are applied in order."""
    dtype = device_type.lower()
    model = model_name.lower()
    if "insight" in dtype:
        return WemoDeviceType.INSIGHT
    if "lightswitch" in dtype:
        return WemoDeviceType.LIGHT_SWITCH
    if "dimmer" in dtype:
        return WemoDeviceType.DIMMER
    if "sensor" in dtype or "motion" in dtype:
        return WemoDeviceType.MOTION
    if "bridge" in dtype:
        return WemoDeviceType.BULB
    if "mini" in model or "wss" in model:
        return WemoDeviceType.MINI
    if "controllee" in dtype or "socket" in dtype:
        return WemoDeviceType.SWITCH
    return WemoDeviceType.UNKNOWN

def parse_services(service_list: Any) -> Tuple[WemoService, ...]:
    """Convert a parsed <serviceList> into WemoService records. Handles a single service or many."""
    if not isinstance(service_list, Mapping):
        return ()
    services = service_list.get("service")
    if services is None:
        return ()
    if not isinstance(services, list):
        services = [services]
    result: List[WemoService] = []
    for svc in services:
        if not isinstance(svc, Mapping):
            continue
        result.append(WemoService(
            service_type=as_text(svc.get("serviceType")),
            service_id=as_text(svc.get("serviceId")),
            control_url=as_text(svc.get("controlURL")),
            event_sub_url=as_text(svc.get("eventSubURL")),
            scpd_url=as_text(svc.get("SCPDURL")),
          ))
    return tuple(result)

def parse_device_description(xml: Union[str, bytes], location_url: str) -> Optional[WemoDevice]:
    """Build a WemoDevice from a description document fetched from location_url.

    Returns None if the document has no root/device element or its manufacturer is not
    Belkin. Raises InvalidEnvelopeError if the document is not well-formed XML.
    """
    root = parse_xml(xml)
    if local_name(root.tag) != "root":
        return None
    device = children_to_dict(root).get("device")
    if not isinstance(device, Mapping):
        return None

    manufacturer = as_text(device.get("manufacturer"))
    if WEMO_MANUFACTURER_MARKER not in manufacturer.lower():
        logger.debug(f"Ignoring non-WeMo device at {location_url} (manufacturer={manufacturer!r})")
        return None

    url = urlparse(location_url)
    host = url.hostname or ""
    port = url.port or DEFAULT_DEVICE_PORT
    model_name = as_text(device.get("modelName"))

    return WemoDevice(
        id=as_text(device.get("UDN")) or f"wemo-{host}-{port}",
        name=as_text(device.get("friendlyName")) or "Unknown WeMo Device",
        device_type=determine_device_type(as_text(device.get("deviceType")), model_name),
        host=host,
        port=port,
        manufacturer=manufacturer,
        model=model_name,
        serial_number=as_text(device.get("serialNumber")),
        firmware_version=as_text(device.get("firmwareVersion")),
        mac_address=as_text(device.get("macAddress")),
        services=parse_services(device.get("serviceList")),
        setup_url=location_url,
      )

async def fetch_device_description(
        location_url: str,
        session: Optional[aiohttp.ClientSession]=None,
        timeout: float=DEFAULT_DESCRIPTION_TIMEOUT,
      ) -> Optional[WemoDevice]:
    """Fetch and parse a description document. Returns None for non-WeMo devices.

    Raises WemoError (with the location in the message) if the document cannot be fetched or parsed.
    """
    try:
        async with device_session(session, timeout) as s:
            async with s.get(location_url, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
                if response.status != 200:
                    raise WemoError(f"Fetching {location_url} returned HTTP {response.status}")
                xml = await response.read()
    except asyncio.TimeoutError as e:
        raise WemoError(f"Fetching {location_url} timed out after {timeout:g}s") from e
    except aiohttp.ClientError as e:
        raise WemoError(f"Fetching {location_url} failed: {e}") from e
    try:
        return parse_device_description(xml, location_url)
    except InvalidEnvelopeError as e:
        raise WemoError(f"Invalid device description at {location_url}: {e}") from e

async def resolve_locations(
        locations: Iterable[str],
        fetch: DescriptionFetcher,
      ) -> Tuple[List[WemoDevice], List[str]]:
    """Fetch every location concurrently, keep WeMo devices, and dedup them by id (first wins).

    Returns (devices, errors). A failed fetch is recorded in errors and does not affect the others.
    """
    location_list = list(locations)
    results = await asyncio.gather(*(fetch(url) for url in location_list), return_exceptions=True)
    devices: Dict[str, WemoDevice] = {}
    errors: List[str] = []
    for url, result in zip(location_list, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            logger.info(f"Could not read device description at {url}: {result}")
            errors.append(str(result))
            continue
        if result is None:
            continue
        if result.id not in devices:
            devices[result.id] = result
    return list(devices.values()), errors

async def collect_locations(
        timeout: float,
        errors: List[str],
        bind_addresses: Optional[Iterable[str]]=None,
        search_target: str=WEMO_SEARCH_TARGET,
      ) -> Set[str]:
    """Run the multicast part of a scan for `timeout` seconds and return the unique LOCATION URLs.
       Socket errors are appended to errors. The full timeout elapses even if no socket
       could be opened."""
    start_time = time.monotonic()
    locations: Set[str] = set()
    client = SsdpClient(response_wait_time=timeout, bind_addresses=bind_addresses)
    try:
        async with client:
            async with client.search(search_target) as search_request:
                async for info in search_request:
                    location = info.location
                    if location is not None and location not in locations:
                        logger.debug(f"Found location {location} from {info.src_addr[0]}")
                        locations.add(location)
    except WemoError as e:
        # per-address failures are already in client.errors
        if len(client.errors) == 0:
            errors.append(str(e))
        remaining = timeout - (time.monotonic() - start_time)
        if remaining > 0:
            logger.info(f"SSDP scan aborted ({e}); waiting out the remaining {remaining:.2f}s")
            await asyncio.sleep(remaining)
    finally:
        errors.extend(e for e in client.errors if e not in errors)
    return locations

async def discover_devices(
        timeout: Optional[float]=DEFAULT_DISCOVERY_TIMEOUT,
        session: Optional[aiohttp.ClientSession]=None,
        cooldown: Optional[DiscoveryCooldown]=None,
        bind_addresses: Optional[Iterable[str]]=None,
        description_timeout: float=DEFAULT_DESCRIPTION_TIMEOUT,
      ) -> DiscoveryResult:
    """Discover WeMo devices on the local network.

    Parameters:
        timeout:              Scan duration in seconds, clamped to [1, 30]. Defaults to 5. The call
                                 always waits for the full scan duration.
        session:              Optional aiohttp session used for description fetches.
        cooldown:             Optional DiscoveryCooldown; if given, DiscoveryRateLimited is raised
                                 when a scan is requested too soon after the previous one.
        bind_addresses:       Local addresses to send from. Defaults to every usable interface.
        description_timeout:  Timeout for each description fetch, in seconds.

    Returns a DiscoveryResult with the devices found, the scan duration, and any errors.
    """
    if cooldown is not None:
        cooldown.check()
    scan_time = clamp_timeout(timeout)
    start_time = time.monotonic()
    errors: List[str] = []

    locations = await collect_locations(scan_time, errors, bind_addresses=bind_addresses)
    logger.info(f"SSDP scan found {len(locations)} unique location(s)")

    async with device_session(session, description_timeout) as s:
        async def fetch(url: str) -> Optional[WemoDevice]:
            return await fetch_device_description(url, session=s, timeout=description_timeout)
        devices, fetch_errors = await resolve_locations(locations, fetch)
    errors.extend(fetch_errors)

    duration = time.monotonic() - start_time
    logger.info(f"Discovered {len(devices)} WeMo device(s) in {duration:.2f}s with {len(errors)} error(s)")
    return DiscoveryResult(devices=devices, duration=duration, errors=errors)

def setup_url_for_address(host: str, port: int=DEFAULT_DEVICE_PORT) -> str:
    """The conventional description-document URL for a device at a known address."""
    return f"http://{host}:{port}/setup.xml"

async def get_device_by_address(
        host: str,
        port: int=DEFAULT_DEVICE_PORT,
        session: Optional[aiohttp.ClientSession]=None,
        timeout: float=DEFAULT_DESCRIPTION_TIMEOUT,
      ) -> Optional[WemoDevice]:
    """Fetch a device's description directly, bypassing multicast. Returns None if the device
       cannot be reached or is not a WeMo device."""
    url = setup_url_for_address(host, port)
    try:
        return await fetch_device_description(url, session=session, timeout=timeout)
    except WemoError as e:
        logger.info(f"No WeMo device at {host}:{port}: {e}")
        return None
