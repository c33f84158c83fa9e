"""pytest configuration and shared fixtures for wemo_protocol tests."""

from __future__ import annotations

import pytest

from wemo_protocol.models import WemoDevice, WemoDeviceType, WemoService
from wemo_protocol.soap import SoapResponse, SoapErrorCode


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


def make_device(device_type=WemoDeviceType.SWITCH, services=None, **kwargs):
    if services is None:
        services = (
            WemoService(
                service_type="urn:Belkin:service:basicevent:1",
                service_id="urn:Belkin:serviceId:basicevent1",
                control_url="/upnp/control/basicevent1",
                event_sub_url="/upnp/event/basicevent1",
                scpd_url="/eventservice.xml",
            ),
        )
    values = dict(
        id="uuid:Socket-1_0-221517K0101769",
        name="Living Room Lamp",
        device_type=device_type,
        host="192.168.1.50",
        port=49153,
        manufacturer="Belkin International Inc.",
        model="Socket",
        serial_number="221517K0101769",
        firmware_version="WeMo_WW_2.00.11057.PVT-OWRT-SNS",
        mac_address="94103E123456",
        services=services,
        setup_url="http://192.168.1.50:49153/setup.xml",
    )
    values.update(kwargs)
    return WemoDevice(**values)


class FakeRequest:
    """Stands in for soap_request(); replays a scripted list of outcomes and records every call.

    An outcome is a SoapResponse, a dict (a successful payload) or an exception to raise.
    """

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def __call__(self, host, port, control_url, service_type, action, body=None, timeout=None, session=None):
        self.calls.append(dict(
            host=host, port=port, control_url=control_url, service_type=service_type,
            action=action, body=body, timeout=timeout,
        ))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, dict):
            return SoapResponse(success=True, data=outcome, status_code=200)
        return outcome


class FakeSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def failed_response(error="Connection failed: refused", kind=SoapErrorCode.CONNECTION_FAILED):
    return SoapResponse(success=False, error=error, error_kind=kind)


@pytest.fixture
def device():
    return make_device()


@pytest.fixture
def fake_sleep():
    return FakeSleep()
