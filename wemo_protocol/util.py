#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Simple utility functions used by this package
"""

from __future__ import annotations

from typing_extensions import SupportsIndex

import netifaces
import socket
from ipaddress import IPv4Address

from .internal_types import *

from email.parser import BytesHeaderParser
from email.message import Message as EmailParserMessage
from requests.structures import CaseInsensitiveDict

VIRTUAL_INTERFACE_PATTERNS: Tuple[str, ...] = (
    "virtual",
    "vethernet",
    "vmware",
    "vmnet",
    "vbox",
    "docker",
    "br-",
    "veth",
    "wsl",
    "loopback",
    "tun",
    "tap",
    "utun",
    "wg",
    "zt",
    "tailscale",
    "vpn",
  )
"""Lowercase substrings of interface names that identify hypervisor switches, container
   bridges, tunnels and VPN adapters. Multicast discovery is not attempted on these."""

WILDCARD_ADDRESS = "0.0.0.0"

def split_bytes_at_lf_or_crlf(data: bytes, maxsplit: SupportsIndex = -1) -> List[bytes]:
    """Split a byte string at LF or CRLF.

    If maxsplit is given, at most maxsplit splits are done.

    Returns a List[bytes] representing the delimiteds lines with the delimiters removed.
    """
    parts = data.split(b'\n', maxsplit)
    if len(parts) > 1:
        for i, part in enumerate(parts[:-1]):
            if part.endswith(b'\r'):
                parts[i] = part[:-1]
    return parts

def split_headers_and_body(data: bytes) -> Tuple[bytes, bytes]:
    """Spits a byte string with HTTP headers and an optional body into the headers and the body.

    A relaxed interpretation of '\n' as a line delimiter is accepted even though '\r\n' is required
    by the standard.

    Returns a Tuple[headers: bytes, body: bytes]. If there is no body, b'' is returned for the body.
    """
    delims = [b'\n\r\n', b'\n\n']
    first_i = -1
    first_nb = 0

    for delim in delims:
        i = data.find(delim)
        if i != -1:
            if first_i == -1 or i < first_i:
                first_i = i
                first_nb = len(delim)
    if first_i == -1:
        headers, body = data, b''
    else:
        headers, body = data[:first_i], data[first_i + first_nb:]
        if headers.endswith(b'\r'):
            headers = headers[:-1]

    return (headers, body)

def parse_http_headers(data: bytes) -> Tuple[CaseInsensitiveDict[str], bytes]:
    """Parse HTTP-style headers out of a byte string. Also returns the body of the message, if any.

    A relaxed interpretation of '\n' as a line delimiter is accepted even though '\r\n' is required
    by the standard. It is assumed that any preceding statement line (e.g., "HTTP/1.1 200 OK\r\n")
    has already been removed.

    Returns a tuple of (headers: CaseInsensitiveDict[str], body: bytes).
    """

    headers_data, body = split_headers_and_body(data)
    lines = split_bytes_at_lf_or_crlf(headers_data)
    headers_data = b''.join(line + b'\r\n' for line in lines if len(line) > 0)

    msg: EmailParserMessage = BytesHeaderParser().parsebytes(headers_data)
    headers: CaseInsensitiveDict[str] = CaseInsensitiveDict()
    for name, value in msg.items():
        headers[name] = str(value).strip()
    return (headers, body)

def encode_http_header(name: str, value: str) -> bytes:
    """Encodes a raw HTTP header name/value pair into a byte string terminated with '\r\n'."""
    return name.encode('utf-8') + b': ' + value.encode('utf-8') + b'\r\n'

def is_virtual_interface_name(ifname: str) -> bool:
    """Returns True if an interface name looks like a virtual, container, tunnel or VPN interface."""
    lower_name = ifname.lower()
    return any(pattern in lower_name for pattern in VIRTUAL_INTERFACE_PATTERNS)

def get_default_ip_gateway() -> Tuple[Optional[str], Optional[str]]:
    """Returns the (gateway_ip_address: str, gateway_interface_name: str) for the default IPv4 gateway,
       if any. Returns (None, None) if there is no default gateway."""
    gws = netifaces.gateways()
    if "default" in gws:
        default_gateway_infos = gws["default"]
        if netifaces.AF_INET in default_gateway_infos:
            gw_ip, gw_interface_name = default_gateway_infos[netifaces.AF_INET][:2]
            return (gw_ip, gw_interface_name)
    return (None, None)

def get_local_ip_addresses_and_interfaces(
        include_loopback: bool=False,
        exclude_virtual: bool=True,
    ) -> List[Tuple[str, str]]:
    """Returns a list of Tuple[ip_address: str, interface_name: str] for the IPv4 addresses of the
       local host. The result is sorted so that addresses on the default gateway interface come
       first, followed by other addresses, followed by loopback addresses (if included).

       If exclude_virtual is True, interfaces whose names match VIRTUAL_INTERFACE_PATTERNS
       are skipped.
    """
    result_with_priority: List[Tuple[int, str, str]] = []
    _, default_gateway_ifname = get_default_ip_gateway()
    for ifname in netifaces.interfaces():
        if exclude_virtual and is_virtual_interface_name(ifname):
            continue
        ifinfo = netifaces.ifaddresses(ifname)
        for addrinfo in ifinfo.get(netifaces.AF_INET, []):
            ip_str = addrinfo.get('addr')
            if not isinstance(ip_str, str):
                continue
            if IPv4Address(ip_str).is_loopback:
                if not include_loopback:
                    continue
                priority = 2
            elif ifname == default_gateway_ifname:
                priority = 0
            else:
                priority = 1
            result_with_priority.append((priority, ip_str, ifname))
    return [ (ip, ifname) for _, ip, ifname in sorted(result_with_priority)]

def get_local_ip_addresses(include_loopback: bool=False, exclude_virtual: bool=True) -> List[str]:
    """Returns a List[ip_address: str] for the IPv4 addresses of the local host, in the order
       described by get_local_ip_addresses_and_interfaces()."""
    return [ ip for ip, _ in get_local_ip_addresses_and_interfaces(
        include_loopback=include_loopback, exclude_virtual=exclude_virtual)]

def get_discovery_interface_addresses() -> List[str]:
    """Returns the local addresses that discovery sockets should be bound to: every non-loopback
       IPv4 address on a non-virtual interface, or the wildcard address if there are none."""
    addresses = get_local_ip_addresses(include_loopback=False, exclude_virtual=True)
    if len(addresses) == 0:
        addresses = [WILDCARD_ADDRESS]
    return addresses

def find_local_address_with_prefix(prefix: str) -> Optional[str]:
    """Returns the first local IPv4 address (on any interface) that starts with prefix, or None."""
    for ip, _ in get_local_ip_addresses_and_interfaces(include_loopback=True, exclude_virtual=False):
        if ip.startswith(prefix):
            return ip
    return None
