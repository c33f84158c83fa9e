"""Tests for WemoDeviceClient: state control, retries and naming."""

from __future__ import annotations

import pytest

from conftest import FakeRequest, failed_response, make_device

from wemo_protocol.device import WemoDeviceClient, create_device_client, retry_backoff
from wemo_protocol.exceptions import ConnectionFailedError, DeviceOperationFailed, InvalidEnvelopeError
from wemo_protocol.models import BinaryState, DeviceState


def client_for(device, request, sleep, **kwargs):
    return WemoDeviceClient(device, request=request, sleep=sleep, **kwargs)


class TestRetryBackoff:
    def test_linear(self):
        assert retry_backoff(0.5, 0) == 0.5
        assert retry_backoff(0.5, 1) == 1.0
        assert retry_backoff(0.5, 2) == 1.5


class TestBinaryState:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw,expected", [
        ("0", BinaryState.OFF),
        ("1", BinaryState.ON),
        ("8", BinaryState.STANDBY),
        ("5", BinaryState.ON),
        ({"#text": "8"}, BinaryState.STANDBY),
    ])
    async def test_get_binary_state_normalizes(self, device, fake_sleep, raw, expected):
        request = FakeRequest({"BinaryState": raw})
        client = client_for(device, request, fake_sleep)
        assert await client.get_binary_state() == expected

    @pytest.mark.asyncio
    async def test_request_details(self, device, fake_sleep):
        request = FakeRequest({"BinaryState": "1"})
        client = client_for(device, request, fake_sleep, timeout=4.0)
        await client.get_binary_state()
        call = request.calls[0]
        assert call["host"] == "192.168.1.50"
        assert call["port"] == 49153
        assert call["control_url"] == "/upnp/control/basicevent1"
        assert call["service_type"] == "urn:Belkin:service:basicevent:1"
        assert call["action"] == "GetBinaryState"
        assert call["timeout"] == 4.0

    @pytest.mark.asyncio
    async def test_fallback_control_url(self, fake_sleep):
        device = make_device(services=())
        request = FakeRequest({"BinaryState": "0"})
        client = client_for(device, request, fake_sleep)
        await client.get_binary_state()
        assert request.calls[0]["control_url"] == "/upnp/control/basicevent1"

    @pytest.mark.asyncio
    async def test_set_binary_state_body(self, device, fake_sleep):
        request = FakeRequest({"BinaryState": "1"})
        client = client_for(device, request, fake_sleep)
        await client.set_binary_state(BinaryState.ON)
        assert request.calls[0]["action"] == "SetBinaryState"
        assert request.calls[0]["body"] == "<BinaryState>1</BinaryState>"

    @pytest.mark.asyncio
    async def test_set_standby_rejected(self, device, fake_sleep):
        request = FakeRequest({})
        client = client_for(device, request, fake_sleep)
        with pytest.raises(ValueError):
            await client.set_binary_state(BinaryState.STANDBY)
        assert request.calls == []

    @pytest.mark.asyncio
    async def test_set_state(self, device, fake_sleep):
        request = FakeRequest({})
        client = client_for(device, request, fake_sleep)
        await client.set_state(False)
        await client.turn_on()
        await client.turn_off()
        assert [c["body"] for c in request.calls] == [
            "<BinaryState>0</BinaryState>",
            "<BinaryState>1</BinaryState>",
            "<BinaryState>0</BinaryState>",
        ]

    @pytest.mark.asyncio
    async def test_get_state(self, device, fake_sleep):
        client = client_for(device, FakeRequest({"BinaryState": "8"}), fake_sleep)
        state = await client.get_state()
        assert state == DeviceState(binary_state=BinaryState.STANDBY)
        assert state.is_on
        assert state.brightness is None


class TestRetry:
    @pytest.mark.asyncio
    async def test_succeeds_on_last_attempt(self, device, fake_sleep):
        request = FakeRequest(failed_response(), failed_response(), {"BinaryState": "1"})
        client = client_for(device, request, fake_sleep)
        assert await client.get_binary_state() == BinaryState.ON
        assert len(request.calls) == 3
        assert fake_sleep.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_exhausted_raises_after_exact_attempts(self, device, fake_sleep):
        request = FakeRequest(failed_response())
        client = client_for(device, request, fake_sleep)
        with pytest.raises(DeviceOperationFailed) as exc_info:
            await client.get_binary_state()
        assert len(request.calls) == 3
        assert fake_sleep.delays == [0.5, 1.0]
        exc = exc_info.value
        assert exc.device_id == device.id
        assert exc.operation == "GetBinaryState"
        assert isinstance(exc.cause, ConnectionFailedError)
        assert exc.__cause__ is exc.cause
        assert "after 3 attempts" in str(exc)

    @pytest.mark.asyncio
    async def test_custom_retry_count(self, device, fake_sleep):
        request = FakeRequest(failed_response())
        client = client_for(device, request, fake_sleep, retries=4, retry_delay=0.1)
        with pytest.raises(DeviceOperationFailed):
            await client.get_binary_state()
        assert len(request.calls) == 5
        assert fake_sleep.delays == pytest.approx([0.1, 0.2, 0.3, 0.4])

    @pytest.mark.asyncio
    async def test_no_retries(self, device, fake_sleep):
        request = FakeRequest(failed_response())
        client = client_for(device, request, fake_sleep, retries=0)
        with pytest.raises(DeviceOperationFailed):
            await client.get_binary_state()
        assert len(request.calls) == 1
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_invalid_envelope_is_retried(self, device, fake_sleep):
        request = FakeRequest(InvalidEnvelopeError("Invalid SOAP response: missing Envelope"), {"BinaryState": "0"})
        client = client_for(device, request, fake_sleep)
        assert await client.get_binary_state() == BinaryState.OFF
        assert len(request.calls) == 2

    def test_negative_retries_rejected(self, device):
        with pytest.raises(ValueError):
            WemoDeviceClient(device, retries=-1)


class TestToggle:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("current,expected", [
        ("0", BinaryState.ON),
        ("1", BinaryState.OFF),
        ("8", BinaryState.OFF),
    ])
    async def test_toggle(self, device, fake_sleep, current, expected):
        request = FakeRequest({"BinaryState": current}, {})
        client = client_for(device, request, fake_sleep)
        state = await client.toggle()
        assert state.binary_state == expected
        assert [c["action"] for c in request.calls] == ["GetBinaryState", "SetBinaryState"]
        assert request.calls[1]["body"] == f"<BinaryState>{int(expected)}</BinaryState>"


class TestFriendlyName:
    @pytest.mark.asyncio
    async def test_get(self, device, fake_sleep):
        client = client_for(device, FakeRequest({"FriendlyName": "Porch"}), fake_sleep)
        assert await client.get_friendly_name() == "Porch"

    @pytest.mark.asyncio
    async def test_get_falls_back_to_record_name(self, device, fake_sleep):
        client = client_for(device, FakeRequest({"FriendlyName": ""}), fake_sleep)
        assert await client.get_friendly_name() == "Living Room Lamp"

    @pytest.mark.asyncio
    async def test_set_escapes(self, device, fake_sleep):
        request = FakeRequest({})
        client = client_for(device, request, fake_sleep)
        await client.rename("Tom & Jerry's <Lamp>")
        assert request.calls[0]["action"] == "ChangeFriendlyName"
        assert request.calls[0]["body"] == "<FriendlyName>Tom &amp; Jerry&apos;s &lt;Lamp&gt;</FriendlyName>"


class TestReachable:
    @pytest.mark.asyncio
    async def test_reachable(self, device, fake_sleep):
        client = client_for(device, FakeRequest({"BinaryState": "1"}), fake_sleep)
        assert await client.is_reachable()

    @pytest.mark.asyncio
    async def test_unreachable_returns_false(self, device, fake_sleep):
        client = client_for(device, FakeRequest(failed_response()), fake_sleep)
        assert await client.is_reachable() is False


def test_create_device_client(device):
    client = create_device_client(device, retries=5)
    assert isinstance(client, WemoDeviceClient)
    assert client.retries == 5
    assert client.device is device
