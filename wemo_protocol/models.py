#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Value types shared by discovery and device control.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum

from .internal_types import *

class WemoDeviceType(Enum):
    """Supported WeMo device families. Each has different capabilities and endpoints."""
    SWITCH = "Switch"
    INSIGHT = "Insight"
    LIGHT_SWITCH = "LightSwitch"
    DIMMER = "Dimmer"
    MINI = "Mini"
    BULB = "Bulb"
    MOTION = "Motion"
    UNKNOWN = "Unknown"

class BinaryState(IntEnum):
    """The binary state reported by a device.

    STANDBY (on, but drawing less than the standby threshold) is only
    reported by Insight devices.
    """
    OFF = 0
    ON = 1
    STANDBY = 8

    @classmethod
    def normalize(cls, value: Union[int, float]) -> BinaryState:
        """Map a raw wire value to a BinaryState. Anything other than 0 or 8 is ON."""
        if value == 0:
            return cls.OFF
        if value == 8:
            return cls.STANDBY
        return cls.ON

@dataclass(frozen=True)
class WemoService:
    """A UPnP service endpoint exposed by a device."""
    service_type: str
    service_id: str = ""
    control_url: str = ""
    event_sub_url: str = ""
    scpd_url: str = ""

    def to_jsonable(self) -> JsonableDict:
        return {
            "serviceType": self.service_type,
            "serviceId": self.service_id,
            "controlURL": self.control_url,
            "eventSubURL": self.event_sub_url,
            "SCPDURL": self.scpd_url,
        }

@dataclass(frozen=True)
class WemoDevice:
    """A WeMo device as described by its description document. Never mutated;
       re-discovering a device produces a new record."""
    id: str
    name: str
    device_type: WemoDeviceType
    host: str
    port: int
    manufacturer: str = ""
    model: str = ""
    serial_number: str = ""
    firmware_version: str = ""
    mac_address: str = ""
    services: Tuple[WemoService, ...] = ()
    setup_url: str = ""

    def find_service(self, marker: str) -> Optional[WemoService]:
        """Returns the first service whose type contains marker (case-insensitive), or None."""
        marker = marker.lower()
        for service in self.services:
            if marker in service.service_type.lower():
                return service
        return None

    def to_jsonable(self) -> JsonableDict:
        return {
            "id": self.id,
            "name": self.name,
            "deviceType": self.device_type.value,
            "host": self.host,
            "port": self.port,
            "manufacturer": self.manufacturer,
            "model": self.model,
            "serialNumber": self.serial_number,
            "firmwareVersion": self.firmware_version,
            "macAddress": self.mac_address,
            "services": [s.to_jsonable() for s in self.services],
            "setupUrl": self.setup_url,
        }

@dataclass(frozen=True)
class DeviceState:
    """Current state of a device."""
    binary_state: BinaryState
    brightness: Optional[int] = None
    """Brightness (0-100) of dimmable devices. Not currently read from devices."""

    @property
    def is_on(self) -> bool:
        return self.binary_state != BinaryState.OFF

    def to_jsonable(self) -> JsonableDict:
        result: JsonableDict = {"binaryState": int(self.binary_state)}
        if self.brightness is not None:
            result["brightness"] = self.brightness
        return result

@dataclass
class DiscoveryResult:
    """Result of a discovery scan."""
    devices: List[WemoDevice] = field(default_factory=list)
    duration: float = 0.0
    """How long the scan took, in seconds."""
    errors: List[str] = field(default_factory=list)
    """Per-interface and per-device errors encountered during the scan."""

    def to_jsonable(self) -> JsonableDict:
        return {
            "devices": [d.to_jsonable() for d in self.devices],
            "duration": self.duration,
            "errors": list(self.errors),
        }
