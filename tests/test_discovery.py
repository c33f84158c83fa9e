"""Tests for device description parsing, classification, resolution and the discovery cooldown."""

from __future__ import annotations

import time

import pytest

from conftest import make_device

from wemo_protocol import discovery
from wemo_protocol.discovery import (
    DiscoveryCooldown,
    clamp_timeout,
    collect_locations,
    determine_device_type,
    discover_devices,
    parse_device_description,
    resolve_locations,
    setup_url_for_address,
)
from wemo_protocol.exceptions import DiscoveryRateLimited, InvalidEnvelopeError, WemoError
from wemo_protocol.models import WemoDeviceType
from wemo_protocol.ssdp_client import SsdpClient

SETUP_XML = """<?xml version="1.0"?>
<root xmlns="urn:Belkin:device-1-0">
  <specVersion><major>1</major><minor>0</minor></specVersion>
  <device>
    <deviceType>urn:Belkin:device:controllee:1</deviceType>
    <friendlyName>Living Room Lamp</friendlyName>
    <manufacturer>Belkin International Inc.</manufacturer>
    <manufacturerURL>http://www.belkin.com</manufacturerURL>
    <modelDescription>Belkin Plugin Socket 1.0</modelDescription>
    <modelName>Socket</modelName>
    <modelNumber>1.0</modelNumber>
    <serialNumber>221517K0101769</serialNumber>
    <UDN>uuid:Socket-1_0-221517K0101769</UDN>
    <macAddress>94103E123456</macAddress>
    <firmwareVersion>WeMo_WW_2.00.11057.PVT-OWRT-SNS</firmwareVersion>
    <binaryState>0</binaryState>
    <serviceList>
      <service>
        <serviceType>urn:Belkin:service:WiFiSetup:1</serviceType>
        <serviceId>urn:Belkin:serviceId:WiFiSetup1</serviceId>
        <controlURL>/upnp/control/WiFiSetup1</controlURL>
        <eventSubURL>/upnp/event/WiFiSetup1</eventSubURL>
        <SCPDURL>/setupservice.xml</SCPDURL>
      </service>
      <service>
        <serviceType>urn:Belkin:service:basicevent:1</serviceType>
        <serviceId>urn:Belkin:serviceId:basicevent1</serviceId>
        <controlURL>/upnp/control/basicevent1</controlURL>
        <eventSubURL>/upnp/event/basicevent1</eventSubURL>
        <SCPDURL>/eventservice.xml</SCPDURL>
      </service>
    </serviceList>
  </device>
</root>
"""

MINIMAL_XML = """<root><device>
  <manufacturer>Belkin</manufacturer>
  <deviceType>urn:Belkin:device:insight:1</deviceType>
  <serviceList><service><serviceType>urn:Belkin:service:insight:1</serviceType>
  <controlURL>/upnp/control/insight1</controlURL></service></serviceList>
</device></root>"""

OTHER_VENDOR_XML = """<root xmlns="urn:schemas-upnp-org:device-1-0"><device>
  <deviceType>urn:schemas-upnp-org:device:MediaRenderer:1</deviceType>
  <friendlyName>Living Room TV</friendlyName>
  <manufacturer>Samsung Electronics</manufacturer>
  <UDN>uuid:tv</UDN>
</device></root>"""


class TestParseDeviceDescription:
    def test_full_document(self):
        device = parse_device_description(SETUP_XML, "http://192.168.1.50:49153/setup.xml")
        assert device is not None
        assert device.id == "uuid:Socket-1_0-221517K0101769"
        assert device.name == "Living Room Lamp"
        assert device.device_type == WemoDeviceType.SWITCH
        assert device.host == "192.168.1.50"
        assert device.port == 49153
        assert device.manufacturer == "Belkin International Inc."
        assert device.model == "Socket"
        assert device.serial_number == "221517K0101769"
        assert device.firmware_version == "WeMo_WW_2.00.11057.PVT-OWRT-SNS"
        assert device.mac_address == "94103E123456"
        assert device.setup_url == "http://192.168.1.50:49153/setup.xml"
        assert [s.control_url for s in device.services] == ["/upnp/control/WiFiSetup1", "/upnp/control/basicevent1"]
        assert device.find_service("basicevent").scpd_url == "/eventservice.xml"

    def test_defaults_and_single_service(self):
        device = parse_device_description(MINIMAL_XML, "http://10.0.0.9/setup.xml")
        assert device is not None
        assert device.id == "wemo-10.0.0.9-49153"
        assert device.name == "Unknown WeMo Device"
        assert device.port == 49153
        assert device.device_type == WemoDeviceType.INSIGHT
        assert len(device.services) == 1
        assert device.services[0].control_url == "/upnp/control/insight1"

    def test_other_vendor_rejected(self):
        assert parse_device_description(OTHER_VENDOR_XML, "http://192.168.1.60:8080/desc.xml") is None

    def test_missing_device_element(self):
        assert parse_device_description("<root><specVersion/></root>", "http://h/setup.xml") is None

    def test_not_root(self):
        assert parse_device_description("<html/>", "http://h/setup.xml") is None

    def test_malformed(self):
        with pytest.raises(InvalidEnvelopeError):
            parse_device_description("<root><device>", "http://h/setup.xml")


class TestDetermineDeviceType:
    @pytest.mark.parametrize("device_type,model,expected", [
        ("urn:Belkin:device:insight:1", "Insight", WemoDeviceType.INSIGHT),
        ("urn:Belkin:device:lightswitch:1", "LightSwitch", WemoDeviceType.LIGHT_SWITCH),
        ("urn:Belkin:device:dimmer:1", "Dimmer", WemoDeviceType.DIMMER),
        ("urn:Belkin:device:sensor:1", "Sensor", WemoDeviceType.MOTION),
        ("urn:Belkin:device:NetCamSensor:1", "NetCam", WemoDeviceType.MOTION),
        ("urn:Belkin:device:bridge:1", "Bridge", WemoDeviceType.BULB),
        ("urn:Belkin:device:controllee:1", "Socket", WemoDeviceType.SWITCH),
        ("urn:Belkin:device:controllee:1", "WeMo Mini", WemoDeviceType.MINI),
        ("urn:Belkin:device:controllee:1", "WSS", WemoDeviceType.MINI),
        ("urn:Belkin:device:socket:1", "", WemoDeviceType.SWITCH),
        ("urn:Belkin:device:crockpot:1", "Crockpot", WemoDeviceType.UNKNOWN),
        ("", "", WemoDeviceType.UNKNOWN),
    ])
    def test_rules(self, device_type, model, expected):
        assert determine_device_type(device_type, model) == expected

    def test_device_type_rules_win_over_model(self):
        assert determine_device_type("urn:Belkin:device:insight:1", "Mini") == WemoDeviceType.INSIGHT


class TestResolveLocations:
    @pytest.mark.asyncio
    async def test_dedup_filter_and_errors(self):
        first = make_device(name="First")
        duplicate = make_device(name="Duplicate", host="192.168.1.99")
        other = make_device(id="uuid:Insight-1_0-2", name="Other")
        results = {
            "http://a/setup.xml": first,
            "http://b/setup.xml": None,
            "http://c/setup.xml": WemoError("Fetching http://c/setup.xml timed out after 5s"),
            "http://d/setup.xml": duplicate,
            "http://e/setup.xml": other,
        }

        async def fetch(url):
            result = results[url]
            if isinstance(result, Exception):
                raise result
            return result

        devices, errors = await resolve_locations(list(results), fetch)
        assert [d.name for d in devices] == ["First", "Other"]
        assert errors == ["Fetching http://c/setup.xml timed out after 5s"]

    @pytest.mark.asyncio
    async def test_empty(self):
        async def fetch(url):
            raise AssertionError("not called")

        assert await resolve_locations([], fetch) == ([], [])


class TestClampTimeout:
    def test_clamp(self):
        assert clamp_timeout(None) == 5.0
        assert clamp_timeout(0.1) == 1.0
        assert clamp_timeout(12) == 12.0
        assert clamp_timeout(120) == 30.0


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestDiscoveryCooldown:
    def test_first_scan_allowed(self):
        cooldown = DiscoveryCooldown(clock=FakeClock())
        cooldown.check()

    def test_second_scan_within_interval_rejected(self):
        clock = FakeClock()
        cooldown = DiscoveryCooldown(interval=5.0, clock=clock)
        cooldown.check()
        clock.now += 1.2
        with pytest.raises(DiscoveryRateLimited) as exc_info:
            cooldown.check()
        assert exc_info.value.retry_after == 4
        assert "Please wait 4 seconds" in str(exc_info.value)

    def test_scan_after_interval_allowed(self):
        clock = FakeClock()
        cooldown = DiscoveryCooldown(interval=5.0, clock=clock)
        cooldown.check()
        clock.now += 5.0
        cooldown.check()
        clock.now += 4.5
        with pytest.raises(DiscoveryRateLimited) as exc_info:
            cooldown.check()
        assert exc_info.value.retry_after == 1

    def test_rejected_scan_does_not_reset_timer(self):
        clock = FakeClock()
        cooldown = DiscoveryCooldown(interval=5.0, clock=clock)
        cooldown.check()
        clock.now += 3.0
        with pytest.raises(DiscoveryRateLimited):
            cooldown.check()
        clock.now += 2.0
        cooldown.check()


class TestDiscoverDevices:
    @pytest.mark.asyncio
    async def test_end_to_end_with_fakes(self, monkeypatch):
        scans = []

        async def collect_locations(timeout, errors, bind_addresses=None, search_target=None):
            scans.append(timeout)
            errors.append("Failed to create socket for 10.9.9.9: Cannot assign requested address")
            return {"http://192.168.1.50:49153/setup.xml", "http://192.168.1.60:8080/desc.xml"}

        async def fetch_device_description(url, session=None, timeout=None):
            if "49153" in url:
                return parse_device_description(SETUP_XML, url)
            return parse_device_description(OTHER_VENDOR_XML, url)

        monkeypatch.setattr(discovery, "collect_locations", collect_locations)
        monkeypatch.setattr(discovery, "fetch_device_description", fetch_device_description)

        result = await discover_devices(timeout=100, session=object())
        assert scans == [30.0]
        assert [d.id for d in result.devices] == ["uuid:Socket-1_0-221517K0101769"]
        assert result.errors == ["Failed to create socket for 10.9.9.9: Cannot assign requested address"]
        assert result.duration >= 0.0
        assert result.to_jsonable()["devices"][0]["name"] == "Living Room Lamp"

    @pytest.mark.asyncio
    async def test_cooldown_checked_before_scan(self, monkeypatch):
        async def collect_locations(timeout, errors, bind_addresses=None, search_target=None):
            raise AssertionError("scan should not start")

        monkeypatch.setattr(discovery, "collect_locations", collect_locations)
        clock = FakeClock()
        cooldown = DiscoveryCooldown(clock=clock)
        cooldown.check()
        with pytest.raises(DiscoveryRateLimited):
            await discover_devices(cooldown=cooldown)


class TestCollectLocations:
    @pytest.mark.asyncio
    async def test_no_usable_sockets_waits_out_scan(self, monkeypatch):
        def fail(self, bind_address):
            raise OSError("Cannot assign requested address")

        monkeypatch.setattr(SsdpClient, "_create_socket", fail)
        errors = []
        start = time.monotonic()
        locations = await collect_locations(0.3, errors, bind_addresses=["192.0.2.77"])
        elapsed = time.monotonic() - start
        assert locations == set()
        assert elapsed >= 0.25
        assert errors == ["Failed to create socket for 192.0.2.77: Cannot assign requested address"]

    @pytest.mark.asyncio
    async def test_no_bind_addresses_reports_summary(self):
        errors = []
        await collect_locations(0.1, errors, bind_addresses=[])
        assert errors == ["No usable datagram sockets: "]


def test_setup_url_for_address():
    assert setup_url_for_address("192.168.1.50") == "http://192.168.1.50:49153/setup.xml"
    assert setup_url_for_address("192.168.1.50", 49154) == "http://192.168.1.50:49154/setup.xml"
