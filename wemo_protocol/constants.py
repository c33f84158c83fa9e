# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Constants used by this package"""

SSDP_MULTICAST_ADDRESS = "239.255.255.250"
"""The multicast address used by SSDP for UDP multicast."""

SSDP_PORT = 1900
"""The port number used by SSDP for UDP multicast."""

SSDP_MX = 3
"""The MX (maximum response delay, in seconds) header sent with M-SEARCH requests."""

WEMO_SEARCH_TARGET = "urn:Belkin:service:basicevent:1"
"""The SSDP search target. Every WeMo device type advertises this service URN."""

WEMO_MANUFACTURER_MARKER = "belkin"
"""Lowercase substring that a device description's manufacturer must contain."""

DEFAULT_DEVICE_PORT = 49153
"""The HTTP port most WeMo devices listen on when joined to a home network."""

DEFAULT_DISCOVERY_TIMEOUT = 5.0
"""Default duration (in seconds) of a discovery scan."""

MIN_DISCOVERY_TIMEOUT = 1.0
MAX_DISCOVERY_TIMEOUT = 30.0

DEFAULT_DESCRIPTION_TIMEOUT = 5.0
"""Timeout (in seconds) for fetching a single device description document."""

DEFAULT_DISCOVERY_COOLDOWN = 5.0
"""Minimum interval (in seconds) between two discovery scans."""

DEFAULT_TIMEOUT = 10.0
"""Default timeout (in seconds) for a single SOAP request attempt."""

DEFAULT_RETRY_COUNT = 2
DEFAULT_RETRY_DELAY = 0.5

SOAP_ENVELOPE_NAMESPACE = "http://schemas.xmlsoap.org/soap/envelope/"
SOAP_ENCODING_NAMESPACE = "http://schemas.xmlsoap.org/soap/encoding/"

BASIC_EVENT_SERVICE = "urn:Belkin:service:basicevent:1"
BASIC_EVENT_CONTROL_URL = "/upnp/control/basicevent1"

INSIGHT_SERVICE = "urn:Belkin:service:insight:1"
INSIGHT_CONTROL_URL = "/upnp/control/insight1"

DEFAULT_STANDBY_THRESHOLD = 8000
"""Standby power threshold (milliwatts) assumed when a device does not report one."""

WEMO_SETUP_SUBNET = "10.22.22"
"""Address prefix of the access point network exposed by a factory-reset device."""

WEMO_SETUP_DEVICE_IP = "10.22.22.1"
WEMO_SETUP_PORT = 49152
WEMO_SETUP_URL = f"http://{WEMO_SETUP_DEVICE_IP}:{WEMO_SETUP_PORT}/setup.xml"
WEMO_WIFI_SETUP_CONTROL_URL = "/upnp/control/WiFiSetup1"
WIFI_SETUP_SERVICE = "urn:Belkin:service:WiFiSetup:1"

PROVISIONING_ATTEMPTS = 2
PROVISIONING_RETRY_DELAY = 0.1
