#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Initial WiFi setup for new or factory-reset WeMo devices.

An unprovisioned device runs its own access point ("Wemo.<model>.<xxx>") on the
10.22.22.0/24 subnet and answers at 10.22.22.1:49152. While the local host is
joined to that network, this module can:

  1. Detect the device and read its serial number and MAC address from setup.xml
  2. List the access points the device can see (GetApList)
  3. Send the home network credentials (ConnectHomeNetwork), with the password
     AES-encrypted under a key derived from the device's MAC and serial
  4. Poll the join result (GetNetworkStatus) and close the setup session (CloseSetup)

The key derivation has changed across firmware generations, so the method is
selected by the caller. See EncryptionMethod.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import re
import aiohttp
from dataclasses import dataclass, field
from enum import Enum

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .internal_types import *
from .pkg_logging import logger
from .constants import (
    WEMO_SETUP_SUBNET,
    WEMO_SETUP_DEVICE_IP,
    WEMO_SETUP_PORT,
    WEMO_SETUP_URL,
    WEMO_WIFI_SETUP_CONTROL_URL,
    WIFI_SETUP_SERVICE,
    DEFAULT_DESCRIPTION_TIMEOUT,
    DEFAULT_TIMEOUT,
    PROVISIONING_ATTEMPTS,
    PROVISIONING_RETRY_DELAY,
  )
from .envelope import build_soap_envelope, children_to_dict, parse_xml, local_name, xml_escape, as_text, as_int
from .exceptions import WemoError, InvalidMacAddressError, InvalidEnvelopeError
from .http_helper import device_session
from .soap import SoapHttpReply, SoapRequestFunc, control_url_for, post_soap, soap_request
from .util import find_local_address_with_prefix

WIFI_KEY_MAGIC = "b3{8t;80dIN{ra83eC1s?M70?683@2Yf"
"""Suffix appended to the METHOD_1 keydata by METHOD_2 devices."""

WIFI_KEY_MAGIC_ALT = "Onboard$Application@Device&Information#Wemo"
"""Constant spliced into the middle of the METHOD_3 keydata."""

PAIRING_STATUS_PATTERN = re.compile(r"<PairingStatus>([^<]+)</PairingStatus>")

SETUP_NETWORK_PREFIX = WEMO_SETUP_SUBNET + "."

SoapPostFunc: TypeAlias = Callable[..., Awaitable[SoapHttpReply]]

class AuthMode(Enum):
    OPEN = "OPEN"
    WPA = "WPA"
    WPA2 = "WPA2"

class CipherMode(Enum):
    NONE = "NONE"
    TKIP = "TKIP"
    AES = "AES"

class EncryptionMethod(Enum):
    """Keydata layouts used by different firmware generations.

    METHOD_1:  mac[0:6] + serial + mac[6:12]
    METHOD_2:  METHOD_1 + WIFI_KEY_MAGIC. Used by most current devices.
    METHOD_3:  mac[0:3] + mac[9:12] + serial + WIFI_KEY_MAGIC_ALT + mac[6:9] + mac[3:6]
    """
    METHOD_1 = 1
    METHOD_2 = 2
    METHOD_3 = 3

def normalize_mac(mac: str) -> str:
    """Strip separators from a MAC address and upper-case it.

    Raises InvalidMacAddressError unless exactly 12 hex digits remain.
    """
    clean = re.sub(r"[^0-9A-Fa-f]", "", mac).upper()
    if len(clean) != 12:
        raise InvalidMacAddressError(f"Invalid MAC address {mac!r}: {len(clean)} hex digits, expected 12")
    return clean

def generate_keydata(mac: str, serial: str, method: EncryptionMethod=EncryptionMethod.METHOD_2) -> str:
    m = normalize_mac(mac)
    if method == EncryptionMethod.METHOD_1:
        return m[0:6] + serial + m[6:12]
    if method == EncryptionMethod.METHOD_2:
        return m[0:6] + serial + m[6:12] + WIFI_KEY_MAGIC
    if method == EncryptionMethod.METHOD_3:
        return m[0:3] + m[9:12] + serial + WIFI_KEY_MAGIC_ALT + m[6:9] + m[3:6]
    raise ValueError(f"Unknown encryption method: {method}")

def derive_key_and_iv(keydata: str) -> Tuple[bytes, bytes]:
    """Derive the AES-128 key and IV from keydata, the way `openssl enc -md md5` does when given
       keydata as the passphrase, keydata[:8] as the salt and keydata[:16] as the IV.

    Returns (key, iv).
    """
    data = keydata.encode('utf-8')
    if len(data) < 16:
        raise ValueError(f"Keydata is too short to derive an IV: {len(data)} bytes")
    salt = data[:8]
    iv = data[:16]
    key = hashlib.md5(data + salt).digest()
    return key, iv

def encrypt_wifi_password(
        password: str,
        mac: str,
        serial: str,
        method: EncryptionMethod=EncryptionMethod.METHOD_2,
        add_lengths: bool=True,
      ) -> str:
    """Encrypt a WiFi password for ConnectHomeNetwork.

    The password is encrypted with AES-128-CBC (PKCS#7 padding) and base64-encoded. If
    add_lengths is True, two 2-digit lowercase hex numbers are appended: the length of the
    base64 text and the length of the original password.

    Raises InvalidMacAddressError if mac is malformed. The result is deterministic for a
    given set of inputs.
    """
    key, iv = derive_key_and_iv(generate_keydata(mac, serial, method))
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    plaintext = padder.update(password.encode('utf-8')) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(plaintext) + encryptor.finalize()
    result = base64.b64encode(ciphertext).decode('ascii')
    if add_lengths:
        result += f"{len(result):02x}{len(password):02x}"
    return result

@dataclass
class WifiConnectParams:
    """Home network credentials to send to a device in setup mode.

    auth and encrypt may be given as enum members or their string values. mac is
    normalized on construction.
    """
    ssid: str
    password: str
    mac: str
    serial: str
    auth: AuthMode = AuthMode.WPA2
    encrypt: CipherMode = CipherMode.AES
    channel: int = 0
    """0 lets the device pick the channel."""
    method: EncryptionMethod = EncryptionMethod.METHOD_2
    add_lengths: bool = True

    def __post_init__(self) -> None:
        self.auth = AuthMode(self.auth)
        self.encrypt = CipherMode(self.encrypt)
        self.method = EncryptionMethod(self.method)
        self.mac = normalize_mac(self.mac)
        if self.ssid == "":
            raise ValueError("An SSID is required")
        if self.password == "" and self.auth != AuthMode.OPEN:
            raise ValueError(f"A password is required for {self.auth.value} networks")

@dataclass(frozen=True)
class SetupDeviceInfo:
    serial: str
    mac: str
    model: str
    name: str
    firmware_version: Optional[str] = None
    binary_state: Optional[int] = None

    def to_jsonable(self) -> JsonableDict:
        return {
            "serial": self.serial,
            "mac": self.mac,
            "model": self.model,
            "name": self.name,
            "firmwareVersion": self.firmware_version,
            "binaryState": self.binary_state,
        }

@dataclass(frozen=True)
class SetupDetectionResult:
    on_setup_network: bool
    device: Optional[SetupDeviceInfo] = None
    error: Optional[str] = None

    def to_jsonable(self) -> JsonableDict:
        return {
            "onSetupNetwork": self.on_setup_network,
            "device": None if self.device is None else self.device.to_jsonable(),
            "error": self.error,
        }

@dataclass
class ProvisioningAttempt:
    attempt: int
    status_code: Optional[int] = None
    response_text: Optional[str] = None
    error: Optional[str] = None

    def to_jsonable(self) -> JsonableDict:
        return {
            "attempt": self.attempt,
            "statusCode": self.status_code,
            "responseText": self.response_text,
            "error": self.error,
        }

@dataclass
class ProvisioningDiagnostics:
    """Everything an operator needs to debug a failed setup. Contains the request as sent,
       including the encrypted password."""
    request_xml: str
    method: EncryptionMethod
    add_lengths: bool
    encrypted_length: int
    attempts: List[ProvisioningAttempt] = field(default_factory=list)

    def to_jsonable(self) -> JsonableDict:
        return {
            "requestXml": self.request_xml,
            "method": self.method.value,
            "addLengths": self.add_lengths,
            "encryptedLength": self.encrypted_length,
            "attempts": [a.to_jsonable() for a in self.attempts],
        }

@dataclass
class WifiConnectResult:
    success: bool
    status: Optional[str] = None
    error: Optional[str] = None
    diagnostics: Optional[ProvisioningDiagnostics] = None

    def to_jsonable(self) -> JsonableDict:
        return {
            "success": self.success,
            "status": self.status,
            "error": self.error,
            "diagnostics": None if self.diagnostics is None else self.diagnostics.to_jsonable(),
        }

@dataclass(frozen=True)
class AccessPoint:
    """A network seen by the device, as reported by GetApList."""
    ssid: str
    channel: int
    signal: int
    auth: str
    encrypt: str

    @property
    def auth_mode(self) -> AuthMode:
        """The AuthMode to send in ConnectHomeNetwork for this network."""
        auth = self.auth.upper()
        if "WPA2" in auth:
            return AuthMode.WPA2
        if "WPA" in auth:
            return AuthMode.WPA
        return AuthMode.OPEN

    @property
    def cipher_mode(self) -> CipherMode:
        encrypt = self.encrypt.upper()
        if "AES" in encrypt:
            return CipherMode.AES
        if "TKIP" in encrypt:
            return CipherMode.TKIP
        return CipherMode.NONE

    def to_jsonable(self) -> JsonableDict:
        return {
            "ssid": self.ssid,
            "channel": self.channel,
            "signal": self.signal,
            "auth": self.auth,
            "encrypt": self.encrypt,
        }

NETWORK_STATUS_DESCRIPTIONS: Dict[int, str] = {
    0: "Not connected",
    1: "Connected",
    2: "Connection failed (check the password)",
    3: "Connecting",
}

@dataclass(frozen=True)
class NetworkStatus:
    code: int

    @property
    def description(self) -> str:
        return NETWORK_STATUS_DESCRIPTIONS.get(self.code, f"Unknown status {self.code}")

    @property
    def is_connected(self) -> bool:
        return self.code == 1

    def to_jsonable(self) -> JsonableDict:
        return { "code": self.code, "description": self.description }

def get_setup_network_local_ip() -> Optional[str]:
    """The local address on the device's setup network, or None if not joined to one."""
    return find_local_address_with_prefix(SETUP_NETWORK_PREFIX)

def is_on_setup_network() -> bool:
    return get_setup_network_local_ip() is not None

def parse_setup_device_info(xml: Union[str, bytes]) -> Optional[SetupDeviceInfo]:
    """Extract SetupDeviceInfo from setup.xml. Returns None if there is no root/device element.
       Raises InvalidEnvelopeError if xml is not well-formed."""
    root = parse_xml(xml)
    if local_name(root.tag) != "root":
        return None
    device = children_to_dict(root).get("device")
    if not isinstance(device, Mapping):
        return None
    firmware_version = as_text(device.get("firmwareVersion"))
    binary_state = device.get("binaryState")
    return SetupDeviceInfo(
        serial=as_text(device.get("serialNumber")),
        mac=as_text(device.get("macAddress")).replace(":", ""),
        model=as_text(device.get("modelName")),
        name=as_text(device.get("friendlyName")) or "Wemo Device",
        firmware_version=firmware_version or None,
        binary_state=None if binary_state is None else as_int(binary_state),
      )

async def fetch_setup_device_info(
        session: Optional[aiohttp.ClientSession]=None,
        timeout: float=DEFAULT_DESCRIPTION_TIMEOUT,
        url: str=WEMO_SETUP_URL,
      ) -> Optional[SetupDeviceInfo]:
    """Read the setup-mode device's setup.xml. Returns None if it cannot be fetched or parsed."""
    try:
        async with device_session(session, timeout) as s:
            async with s.get(url, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
                if response.status != 200:
                    logger.warning(f"Failed to fetch {url}: HTTP {response.status}")
                    return None
                xml = await response.read()
    except (asyncio.TimeoutError, aiohttp.ClientError) as e:
        logger.warning(f"Error fetching setup device info from {url}: {e!r}")
        return None
    try:
        info = parse_setup_device_info(xml)
    except InvalidEnvelopeError as e:
        logger.warning(f"Invalid setup.xml from {url}: {e}")
        return None
    if info is None:
        logger.warning(f"Invalid setup.xml from {url}: missing root/device")
    return info

async def detect_setup_device(session: Optional[aiohttp.ClientSession]=None) -> SetupDetectionResult:
    """Check whether the local host is on a device's setup network, and if so read the device info."""
    if not is_on_setup_network():
        return SetupDetectionResult(
            on_setup_network=False,
            error="Not connected to a Wemo device network. Please connect to a WiFi network starting with 'Wemo.'",
          )
    device = await fetch_setup_device_info(session=session)
    if device is None:
        return SetupDetectionResult(
            on_setup_network=True,
            error="Connected to Wemo network but could not read device info. The device may still be "
                  "starting up - please wait a moment and try again.",
          )
    return SetupDetectionResult(on_setup_network=True, device=device)

def build_connect_home_network_body(
        ssid: str,
        password: str,
        auth: AuthMode,
        encrypt: CipherMode,
        channel: int=0,
      ) -> str:
    """The inner XML of a ConnectHomeNetwork request. password must already be encrypted."""
    return (
        f"<ssid>{xml_escape(ssid)}</ssid>"
        f"<auth>{auth.value}</auth>"
        f"<password>{xml_escape(password)}</password>"
        f"<encrypt>{encrypt.value}</encrypt>"
        f"<channel>{int(channel)}</channel>"
      )

async def send_wifi_connect_command(
        params: WifiConnectParams,
        session: Optional[aiohttp.ClientSession]=None,
        sleep: Optional[Callable[[float], Awaitable[Any]]]=None,
        post: Optional[SoapPostFunc]=None,
        timeout: float=DEFAULT_TIMEOUT,
      ) -> WifiConnectResult:
    """Send ConnectHomeNetwork to the device in setup mode.

    The command is sent up to twice, 100ms apart; the first HTTP 2xx response wins. A
    successful result only means the device accepted the credentials; poll
    get_network_status() to find out whether it joined the network.
    """
    sleep = asyncio.sleep if sleep is None else sleep
    post = post_soap if post is None else post

    try:
        encrypted = encrypt_wifi_password(
            params.password, params.mac, params.serial, method=params.method, add_lengths=params.add_lengths)
    except ValueError as e:
        logger.warning(f"Cannot encrypt WiFi password with {params.method.name}: {e}")
        return WifiConnectResult(success=False, error=f"Failed to encrypt password: {e}")
    body = build_connect_home_network_body(
        params.ssid, encrypted, params.auth, params.encrypt, params.channel)
    request_xml = build_soap_envelope(WIFI_SETUP_SERVICE, "ConnectHomeNetwork", body)
    diagnostics = ProvisioningDiagnostics(
        request_xml=request_xml,
        method=params.method,
        add_lengths=params.add_lengths,
        encrypted_length=len(encrypted),
      )
    logger.debug(
        f"Sending ConnectHomeNetwork ssid={params.ssid!r} auth={params.auth.value} "
        f"encrypt={params.encrypt.value} channel={params.channel} method={params.method.name} "
        f"encrypted_length={len(encrypted)}"
      )
    url = control_url_for(WEMO_SETUP_DEVICE_IP, WEMO_SETUP_PORT, WEMO_WIFI_SETUP_CONTROL_URL)

    for attempt in range(PROVISIONING_ATTEMPTS):
        record = ProvisioningAttempt(attempt=attempt + 1)
        diagnostics.attempts.append(record)
        try:
            reply = await post(url, WIFI_SETUP_SERVICE, "ConnectHomeNetwork", request_xml, timeout=timeout, session=session)
        except WemoError as e:
            record.error = str(e)
            logger.warning(f"ConnectHomeNetwork attempt {attempt + 1} failed: {e}")
        else:
            record.status_code = reply.status
            record.response_text = reply.text
            if reply.ok:
                match = PAIRING_STATUS_PATTERN.search(reply.text)
                status = match.group(1) if match is not None else "Sent"
                logger.info(f"ConnectHomeNetwork accepted on attempt {attempt + 1}: {status}")
                return WifiConnectResult(success=True, status=status, diagnostics=diagnostics)
            record.error = f"HTTP {reply.status}: {reply.reason}"
            logger.warning(f"ConnectHomeNetwork attempt {attempt + 1} got HTTP {reply.status}")
        if attempt < PROVISIONING_ATTEMPTS - 1:
            await sleep(PROVISIONING_RETRY_DELAY)

    return WifiConnectResult(
        success=False,
        error=f"Failed to send setup command after {PROVISIONING_ATTEMPTS} attempts",
        diagnostics=diagnostics,
      )

def parse_ap_list(ap_list: str) -> List[AccessPoint]:
    """Parse the ApList text returned by GetApList.

    The first line is a page header ("Page:1/1/3$"); each further line is
    "ssid|channel|signal|auth/encrypt," and the SSID itself may contain "|".
    """
    result: List[AccessPoint] = []
    for line in ap_list.splitlines():
        line = line.strip().rstrip(",")
        if line == "" or line.startswith("Page:"):
            continue
        parts = line.rsplit("|", 3)
        if len(parts) != 4:
            logger.debug(f"Ignoring malformed ApList entry: {line!r}")
            continue
        ssid, channel, signal, security = parts
        auth, _, encrypt = security.partition("/")
        result.append(AccessPoint(
            ssid=ssid,
            channel=as_int(channel),
            signal=as_int(signal),
            auth=auth.strip(),
            encrypt=encrypt.strip(),
          ))
    return result

async def _setup_action(
        action: str,
        session: Optional[aiohttp.ClientSession]=None,
        request: Optional[SoapRequestFunc]=None,
        timeout: float=DEFAULT_TIMEOUT,
      ) -> Dict[str, Any]:
    request = soap_request if request is None else request
    response = await request(
        WEMO_SETUP_DEVICE_IP,
        WEMO_SETUP_PORT,
        WEMO_WIFI_SETUP_CONTROL_URL,
        WIFI_SETUP_SERVICE,
        action,
        None,
        timeout=timeout,
        session=session,
      )
    if not response.success:
        raise response.to_exception()
    return response.data or {}

async def get_ap_list(
        session: Optional[aiohttp.ClientSession]=None,
        request: Optional[SoapRequestFunc]=None,
        timeout: float=DEFAULT_TIMEOUT,
      ) -> List[AccessPoint]:
    """List the WiFi networks visible to the device in setup mode."""
    data = await _setup_action("GetApList", session=session, request=request, timeout=timeout)
    return parse_ap_list(as_text(data.get("ApList")))

async def get_network_status(
        session: Optional[aiohttp.ClientSession]=None,
        request: Optional[SoapRequestFunc]=None,
        timeout: float=DEFAULT_TIMEOUT,
      ) -> NetworkStatus:
    data = await _setup_action("GetNetworkStatus", session=session, request=request, timeout=timeout)
    return NetworkStatus(code=as_int(data.get("NetworkStatus")))

async def close_setup(
        session: Optional[aiohttp.ClientSession]=None,
        request: Optional[SoapRequestFunc]=None,
        timeout: float=DEFAULT_TIMEOUT,
      ) -> bool:
    """End the setup session. The device leaves AP mode and joins the configured network.
       Returns False if the device did not accept the request."""
    try:
        await _setup_action("CloseSetup", session=session, request=request, timeout=timeout)
    except WemoError as e:
        logger.warning(f"CloseSetup failed: {e}")
        return False
    return True
