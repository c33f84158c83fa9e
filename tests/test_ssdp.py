"""Tests for SSDP datagrams, interface selection and the search request loop."""

from __future__ import annotations

import asyncio
import socket
import time
from types import SimpleNamespace

import pytest

from wemo_protocol import util
from wemo_protocol.exceptions import WemoError
from wemo_protocol.ssdp_client import SsdpClient
from wemo_protocol.ssdp_datagram import SsdpDatagram
from wemo_protocol.ssdp_socket import SsdpSocketBinding

RESPONSE = (
    b"HTTP/1.1 200 OK\r\n"
    b"CACHE-CONTROL: max-age=86400\r\n"
    b"DATE: Fri, 01 Jan 2021 00:00:00 GMT\r\n"
    b"EXT:\r\n"
    b"LOCATION: http://192.168.1.50:49153/setup.xml\r\n"
    b"SERVER: Unspecified, UPnP/1.0, Unspecified\r\n"
    b"ST: urn:Belkin:service:basicevent:1\r\n"
    b"USN: uuid:Socket-1_0-221517K0101769::urn:Belkin:service:basicevent:1\r\n"
    b"\r\n"
)


class TestSsdpDatagram:
    def test_m_search_format(self):
        dg = SsdpDatagram.build_m_search("urn:Belkin:service:basicevent:1")
        assert dg.raw_data == (
            b"M-SEARCH * HTTP/1.1\r\n"
            b"HOST: 239.255.255.250:1900\r\n"
            b'MAN: "ssdp:discover"\r\n'
            b"MX: 3\r\n"
            b"ST: urn:Belkin:service:basicevent:1\r\n"
            b"\r\n"
        )
        assert dg.status_code is None

    def test_parse_response(self):
        dg = SsdpDatagram(raw_data=RESPONSE)
        assert dg.statement_line == "HTTP/1.1 200 OK"
        assert dg.status_code == 200
        assert dg.location == "http://192.168.1.50:49153/setup.xml"
        assert dg.search_target == "urn:Belkin:service:basicevent:1"
        assert dg.get_header("ext") == ""
        assert dg.body == b""

    def test_location_case_insensitive(self):
        dg = SsdpDatagram(raw_data=b"HTTP/1.1 200 OK\nlocation:   http://10.0.0.9:49154/setup.xml  \n\n")
        assert dg.location == "http://10.0.0.9:49154/setup.xml"
        assert dg.get_header("LoCaTiOn") == "http://10.0.0.9:49154/setup.xml"

    def test_missing_location(self):
        dg = SsdpDatagram(raw_data=b"HTTP/1.1 200 OK\r\nST: upnp:rootdevice\r\n\r\n")
        assert dg.location is None

    def test_non_200_status(self):
        dg = SsdpDatagram(raw_data=b"HTTP/1.1 404 Not Found\r\n\r\n")
        assert dg.status_code == 404

    def test_set_header_rebuilds(self):
        dg = SsdpDatagram("NOTIFY * HTTP/1.1", headers={"NT": "upnp:rootdevice"})
        dg.set_header("Location", "http://h/setup.xml")
        assert SsdpDatagram(raw_data=dg.raw_data).location == "http://h/setup.xml"
        dg.set_header("Location", None)
        assert dg.location is None

    def test_requires_statement_or_raw(self):
        with pytest.raises(ValueError):
            SsdpDatagram()


def fake_netifaces(interfaces, gateway_ifname=None):
    """Build a stand-in for the netifaces module from {ifname: [ipv4 addresses]}."""
    af_inet = 2

    def gateways():
        if gateway_ifname is None:
            return {}
        return {"default": {af_inet: ("192.168.1.1", gateway_ifname)}}

    def ifaddresses(ifname):
        return {af_inet: [{"addr": a, "netmask": "255.255.255.0"} for a in interfaces[ifname]]}

    return SimpleNamespace(
        AF_INET=af_inet,
        gateways=gateways,
        interfaces=lambda: list(interfaces),
        ifaddresses=ifaddresses,
    )


class TestInterfaceSelection:
    @pytest.mark.parametrize("ifname", [
        "docker0", "br-3f2a", "veth12ab", "vEthernet (WSL)", "VMware Network Adapter VMnet8",
        "vboxnet0", "tun0", "tap1", "utun3", "wg0", "zt5u4y", "tailscale0", "NordVPN",
    ])
    def test_virtual_names(self, ifname):
        assert util.is_virtual_interface_name(ifname)

    @pytest.mark.parametrize("ifname", ["eth0", "en0", "wlan0", "enp3s0", "Wi-Fi"])
    def test_physical_names(self, ifname):
        assert not util.is_virtual_interface_name(ifname)

    def test_filters_and_orders(self, monkeypatch):
        monkeypatch.setattr(util, "netifaces", fake_netifaces({
            "lo": ["127.0.0.1"],
            "docker0": ["172.17.0.1"],
            "wlan0": ["10.0.0.7"],
            "eth0": ["192.168.1.20"],
            "tailscale0": ["100.64.0.3"],
        }, gateway_ifname="eth0"))
        assert util.get_discovery_interface_addresses() == ["192.168.1.20", "10.0.0.7"]

    def test_falls_back_to_wildcard(self, monkeypatch):
        monkeypatch.setattr(util, "netifaces", fake_netifaces({
            "lo": ["127.0.0.1"],
            "docker0": ["172.17.0.1"],
        }))
        assert util.get_discovery_interface_addresses() == ["0.0.0.0"]

    def test_find_local_address_with_prefix(self, monkeypatch):
        monkeypatch.setattr(util, "netifaces", fake_netifaces({
            "eth0": ["10.22.220.5"],
            "wlan0": ["10.22.22.2"],
        }))
        assert util.find_local_address_with_prefix("10.22.22.") == "10.22.22.2"
        assert util.find_local_address_with_prefix("192.168.") is None


def response_datagram(location, status="200 OK"):
    return f"HTTP/1.1 {status}\r\nLOCATION: {location}\r\nST: urn:Belkin:service:basicevent:1\r\n\r\n".encode()


class TestSearchRequest:
    @pytest.mark.asyncio
    async def test_yields_only_success_responses_until_wait_time(self):
        client = SsdpClient(response_wait_time=0.3, bind_addresses=[])
        binding = SimpleNamespace(unicast_addr=("192.168.1.20", 50000))
        start = time.monotonic()
        locations = []
        async with client.search("urn:Belkin:service:basicevent:1") as search_request:
            client.datagram_received(binding, ("192.168.1.50", 1900), response_datagram("http://192.168.1.50:49153/setup.xml"))
            client.datagram_received(binding, ("192.168.1.51", 1900), response_datagram("http://x/", status="404 Not Found"))
            client.datagram_received(binding, ("192.168.1.20", 1900), SsdpDatagram.build_m_search("ssdp:all").raw_data)
            client.datagram_received(binding, ("192.168.1.52", 1900), response_datagram("http://192.168.1.52:49153/setup.xml"))
            async for info in search_request:
                locations.append(info.location)
                assert info.socket_binding is binding
        elapsed = time.monotonic() - start
        assert locations == ["http://192.168.1.50:49153/setup.xml", "http://192.168.1.52:49153/setup.xml"]
        assert elapsed >= 0.25

    @pytest.mark.asyncio
    async def test_resends_at_half_time(self, monkeypatch):
        client = SsdpClient(response_wait_time=0.2, bind_addresses=[])
        sends = []
        search_request = client.search("urn:Belkin:service:basicevent:1")
        monkeypatch.setattr(search_request, "send_request", lambda: sends.append(time.monotonic()))
        async with search_request:
            async for _ in search_request:
                pass
        assert len(sends) == 2
        assert 0.05 <= sends[1] - sends[0] <= 0.2

    @pytest.mark.asyncio
    async def test_unparseable_datagram_is_dropped(self):
        client = SsdpClient(response_wait_time=0.1, bind_addresses=[])
        binding = SimpleNamespace(unicast_addr=("192.168.1.20", 50000))
        async with client.search("urn:Belkin:service:basicevent:1") as search_request:
            client.datagram_received(binding, ("192.168.1.50", 1900), b"\xff\xfe garbage")
            results = [info async for info in search_request]
        assert results == []


class TestSocketBindings:
    @pytest.mark.asyncio
    async def test_binding_failure_closes_only_that_binding(self):
        client = SsdpClient(bind_addresses=[])
        first = SsdpSocketBinding(socket.socket(socket.AF_INET, socket.SOCK_DGRAM))
        second = SsdpSocketBinding(socket.socket(socket.AF_INET, socket.SOCK_DGRAM))
        client.add_socket_binding(first)
        client.add_socket_binding(second)
        try:
            client.binding_failed(first, OSError("Network is unreachable"))
            assert first.closed
            assert not second.closed
            assert client.open_bindings == [second]
            assert len(client.errors) == 1
            assert "Network is unreachable" in client.errors[0]
            assert not client.final_result.done()

            client.binding_failed(second, OSError("boom"))
            assert client.final_result.done()
            assert len(client.errors) == 2
        finally:
            client.close()

    @pytest.mark.asyncio
    async def test_closed_binding_refuses_to_send(self):
        binding = SsdpSocketBinding(socket.socket(socket.AF_INET, socket.SOCK_DGRAM))
        binding.close()
        with pytest.raises(WemoError):
            binding.sendto(SsdpDatagram.build_m_search("ssdp:all"), ("239.255.255.250", 1900))

    @pytest.mark.asyncio
    async def test_no_usable_sockets(self, monkeypatch):
        client = SsdpClient(bind_addresses=["192.0.2.1"])

        def fail(bind_address):
            raise OSError("Cannot assign requested address")

        monkeypatch.setattr(client, "_create_socket", fail)
        with pytest.raises(WemoError, match="No usable datagram sockets"):
            await client.start()
        assert client.errors == ["Failed to create socket for 192.0.2.1: Cannot assign requested address"]
