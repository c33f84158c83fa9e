#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Power monitoring support for WeMo Insight switches.

GetInsightParams returns a single pipe-delimited record:

    state|lastChange|onFor|onToday|onTotal|timePeriod|averagePower|instantPower|todayEnergy|totalEnergy|standbyThreshold

Durations are in seconds, power in milliwatts and energy in milliwatt-minutes.
"""

from __future__ import annotations

from dataclasses import dataclass

from .internal_types import *
from .constants import INSIGHT_SERVICE, INSIGHT_CONTROL_URL, DEFAULT_STANDBY_THRESHOLD
from .envelope import as_text
from .exceptions import DeviceOperationFailed
from .models import WemoDevice, WemoDeviceType, BinaryState
from .device import WemoDeviceClient

MILLIWATTS_PER_WATT = 1000
MILLIWATT_MINUTES_PER_KWH = 60000

@dataclass(frozen=True)
class InsightParams:
    """Raw telemetry snapshot, in device units."""
    state: BinaryState
    last_change: int
    """Unix timestamp (seconds) of the last state change."""
    on_for: int
    on_today: int
    on_total: int
    time_period: int
    """Averaging window, in seconds."""
    average_power: int
    instant_power: int
    today_energy: int
    total_energy: int
    standby_threshold: int = DEFAULT_STANDBY_THRESHOLD

@dataclass(frozen=True)
class PowerData:
    """Human-friendly power summary derived from InsightParams."""
    is_on: bool
    is_standby: bool
    current_watts: float
    today_kwh: float
    total_kwh: float
    on_for_formatted: str
    on_today_formatted: str

    def to_jsonable(self) -> JsonableDict:
        return {
            "isOn": self.is_on,
            "isStandby": self.is_standby,
            "currentWatts": self.current_watts,
            "todayKwh": self.today_kwh,
            "totalKwh": self.total_kwh,
            "onForFormatted": self.on_for_formatted,
            "onTodayFormatted": self.on_today_formatted,
        }

def parse_insight_params(params: str) -> InsightParams:
    """Decode a GetInsightParams record. Missing, empty or non-numeric fields take their
       default (0, or 8000 mW for the standby threshold)."""
    parts = params.split("|")

    def get_value(index: int, default: int=0) -> int:
        if index >= len(parts):
            return default
        value = parts[index].strip()
        if value == "":
            return default
        try:
            return int(value, 10)
        except ValueError:
            return default

    return InsightParams(
        state=BinaryState.normalize(get_value(0)),
        last_change=get_value(1),
        on_for=get_value(2),
        on_today=get_value(3),
        on_total=get_value(4),
        time_period=get_value(5),
        average_power=get_value(6),
        instant_power=get_value(7),
        today_energy=get_value(8),
        total_energy=get_value(9),
        standby_threshold=get_value(10, DEFAULT_STANDBY_THRESHOLD),
      )

def format_duration(seconds: int) -> str:
    """Format a duration, e.g. "30s", "1m 30s", "2h", "1h 1m"."""
    if seconds < 60:
        return f"{seconds}s"
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}h {minutes}m" if minutes > 0 else f"{hours}h"
    return f"{minutes}m {secs}s" if secs > 0 else f"{minutes}m"

def convert_to_power_data(params: InsightParams) -> PowerData:
    return PowerData(
        is_on=params.state == BinaryState.ON,
        is_standby=params.state == BinaryState.STANDBY,
        current_watts=params.instant_power / MILLIWATTS_PER_WATT,
        today_kwh=params.today_energy / MILLIWATT_MINUTES_PER_KWH,
        total_kwh=params.total_energy / MILLIWATT_MINUTES_PER_KWH,
        on_for_formatted=format_duration(params.on_for),
        on_today_formatted=format_duration(params.on_today),
      )

class InsightDeviceClient(WemoDeviceClient):
    """A WemoDeviceClient that can also read Insight power telemetry.

    Usage:
        insight = InsightDeviceClient(device)
        power = await insight.get_power_data()
        print(f"{power.current_watts}W, {power.today_kwh}kWh today")
    """

    @property
    def insight_control_url(self) -> str:
        service = self.device.find_service("insight")
        if service is None or service.control_url == "":
            return INSIGHT_CONTROL_URL
        return service.control_url

    @property
    def is_insight_device(self) -> bool:
        return supports_insight(self.device)

    async def get_insight_params(self) -> InsightParams:
        """Read the raw telemetry record from the device."""
        response = await self._execute_with_retry(
            "GetInsightParams",
            service_type=INSIGHT_SERVICE,
            control_url=self.insight_control_url,
          )
        params = as_text(response.get("InsightParams"))
        if params == "":
            raise DeviceOperationFailed(self.device.id, "GetInsightParams", msg="No InsightParams in response")
        return parse_insight_params(params)

    async def get_power_data(self) -> PowerData:
        return convert_to_power_data(await self.get_insight_params())

def supports_insight(device: WemoDevice) -> bool:
    return device.device_type == WemoDeviceType.INSIGHT

def create_insight_client(device: WemoDevice, **kwargs: Any) -> InsightDeviceClient:
    return InsightDeviceClient(device, **kwargs)
