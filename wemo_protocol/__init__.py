# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Package wemo_protocol implements the local-network control protocol of Belkin WeMo smart plugs and switches.

WeMo devices are UPnP devices. They are found with SSDP (an M-SEARCH for the
basicevent service on 239.255.255.250:1900), described by an XML document at
the LOCATION URL of the response, and controlled with SOAP actions posted to
their service control URLs. Insight switches add power telemetry. A
factory-reset device can be joined to a home WiFi network by sending it
AES-encrypted credentials while connected to its own setup access point.

Nothing here talks to a cloud service; every request goes directly to a device
on the local network.
"""

from .version import __version__

from .internal_types import Jsonable, JsonableDict

from .exceptions import (
    WemoError,
    ConnectionFailedError,
    RequestTimeoutError,
    InvalidEnvelopeError,
    ProtocolFaultError,
    HttpError,
    DeviceOperationFailed,
    InvalidMacAddressError,
    DiscoveryRateLimited,
    WemoConfigError,
  )
from .models import WemoDevice, WemoDeviceType, WemoService, BinaryState, DeviceState, DiscoveryResult
from .envelope import build_soap_envelope, parse_soap_response, parse_soap_fault, SoapFault, xml_escape
from .soap import soap_request, SoapResponse, SoapErrorCode
from .device import WemoDeviceClient, create_device_client
from .insight import (
    InsightDeviceClient,
    InsightParams,
    PowerData,
    parse_insight_params,
    convert_to_power_data,
    format_duration,
    supports_insight,
    create_insight_client,
  )
from .ssdp_datagram import SsdpDatagram
from .ssdp_client import SsdpClient, SsdpSearchRequest, SsdpResponseInfo
from .discovery import (
    discover_devices,
    get_device_by_address,
    DiscoveryCooldown,
    determine_device_type,
    parse_device_description,
  )
from .provisioning import (
    AuthMode,
    CipherMode,
    EncryptionMethod,
    WifiConnectParams,
    WifiConnectResult,
    SetupDeviceInfo,
    SetupDetectionResult,
    AccessPoint,
    NetworkStatus,
    detect_setup_device,
    encrypt_wifi_password,
    send_wifi_connect_command,
    get_ap_list,
    get_network_status,
    close_setup,
  )
from .config import WemoConfig
from .util import CaseInsensitiveDict
from .constants import SSDP_MULTICAST_ADDRESS, SSDP_PORT, WEMO_SEARCH_TARGET

__all__ = [
    '__version__',
    'Jsonable', 'JsonableDict',
    'WemoError', 'ConnectionFailedError', 'RequestTimeoutError', 'InvalidEnvelopeError',
    'ProtocolFaultError', 'HttpError', 'DeviceOperationFailed', 'InvalidMacAddressError',
    'DiscoveryRateLimited', 'WemoConfigError',
    'WemoDevice', 'WemoDeviceType', 'WemoService', 'BinaryState', 'DeviceState', 'DiscoveryResult',
    'build_soap_envelope', 'parse_soap_response', 'parse_soap_fault', 'SoapFault', 'xml_escape',
    'soap_request', 'SoapResponse', 'SoapErrorCode',
    'WemoDeviceClient', 'create_device_client',
    'InsightDeviceClient', 'InsightParams', 'PowerData', 'parse_insight_params',
    'convert_to_power_data', 'format_duration', 'supports_insight', 'create_insight_client',
    'SsdpDatagram', 'SsdpClient', 'SsdpSearchRequest', 'SsdpResponseInfo',
    'discover_devices', 'get_device_by_address', 'DiscoveryCooldown',
    'determine_device_type', 'parse_device_description',
    'AuthMode', 'CipherMode', 'EncryptionMethod', 'WifiConnectParams', 'WifiConnectResult',
    'SetupDeviceInfo', 'SetupDetectionResult', 'AccessPoint', 'NetworkStatus',
    'detect_setup_device', 'encrypt_wifi_password', 'send_wifi_connect_command',
    'get_ap_list', 'get_network_status', 'close_setup',
    'WemoConfig',
    'CaseInsensitiveDict',
    'SSDP_MULTICAST_ADDRESS', 'SSDP_PORT', 'WEMO_SEARCH_TARGET',
]
