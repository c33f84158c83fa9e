#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Abstraction of a Datagram packet used in the SSDP protocol.
"""

from __future__ import annotations

from .internal_types import *

from .constants import SSDP_MULTICAST_ADDRESS, SSDP_PORT, SSDP_MX

from .util import (
    CaseInsensitiveDict,
    split_bytes_at_lf_or_crlf,
    parse_http_headers,
    encode_http_header,
)

class SsdpDatagram:
    """Wrapper for a raw SSDP datagram.

    This class provides parsing and formatting of the HTTP-like packets, and
    case-insensitive access to the headers. Header values are kept exactly as they
    appear on the wire (quoted strings are not unquoted). Headers are emitted in
    insertion order.
    """

    _raw_data: bytes
    """The raw UDP datagram contents"""

    _statement_line: str
    """The first line of the datagram; e.g., "HTTP/1.1 200 OK", "M-SEARCH * HTTP/1.1", etc."""

    _headers: CaseInsensitiveDict[str]
    """The headers as a CaseInsensitiveDict[str]."""

    _body: bytes
    """The body of the datagram, if any. If there is no body, b'' is returned."""

    def __init__(
            self,
            statement: Optional[str]=None,
            headers: Optional[Mapping[str, str]]=None,
            body: Optional[bytes]=None,
            raw_data: Optional[bytes]=None,
          ):
        self._headers = CaseInsensitiveDict()
        if raw_data is None:
            if statement is None:
                raise ValueError("Either statement or raw_data must be provided")
            self._statement_line = statement
            self._body = b'' if body is None else body
            if headers is not None:
                for name, value in headers.items():
                    self._headers[name] = value
            self._rebuild_raw_data()
        else:
            if not (statement is None and headers is None and body is None):
                raise ValueError("If raw_data is provided, statement, headers, and body must be None")
            self.raw_data = raw_data

    @classmethod
    def build_m_search(
            cls,
            search_target: str,
            multicast_address: str=SSDP_MULTICAST_ADDRESS,
            multicast_port: int=SSDP_PORT,
            mx: int=SSDP_MX,
          ) -> SsdpDatagram:
        """Build an M-SEARCH discovery request for a search target."""
        return cls(
            "M-SEARCH * HTTP/1.1",
            headers={
                "HOST": f"{multicast_address}:{multicast_port}",
                "MAN": '"ssdp:discover"',
                "MX": str(mx),
                "ST": search_target,
            },
          )

    def __str__(self) -> str:
        return f"SsdpDatagram('{self._statement_line}', headers={dict(self._headers)}, body={self._body!r})"

    def __repr__(self) -> str:
        return str(self)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, SsdpDatagram):
            return False
        return (self._statement_line == other._statement_line and
                self._headers == other._headers and
                self._body == other._body)

    @property
    def raw_data(self) -> bytes:
        """The raw UDP datagram contents"""
        return self._raw_data

    @raw_data.setter
    def raw_data(self, value: bytes) -> None:
        """Set the raw UDP datagram contents, and recompute headers."""
        assert isinstance(value, bytes)
        self._raw_data = value
        statement_and_remainder = split_bytes_at_lf_or_crlf(value, 1)
        self._statement_line = statement_and_remainder[0].decode('utf-8', errors='replace').strip()
        headers_and_body = b'' if len(statement_and_remainder) < 2 else statement_and_remainder[1]
        self._headers, self._body = parse_http_headers(headers_and_body)

    @property
    def statement_line(self) -> str:
        return self._statement_line

    @property
    def headers(self) -> CaseInsensitiveDict[str]:
        """The headers as a CaseInsensitiveDict[str]. Do not modify directly; use set_header()."""
        return self._headers

    @property
    def body(self) -> bytes:
        return self._body

    def get_header(self, name: str) -> Optional[str]:
        return self._headers.get(name)

    def set_header(self, name: str, value: Optional[str]) -> None:
        """Set a header value, or remove it if value is None. `name` is case-insensitive."""
        if value is None:
            self._headers.pop(name, None)
        else:
            self._headers[name] = value
        self._rebuild_raw_data()

    @property
    def location(self) -> Optional[str]:
        """The "LOCATION" header (the device description URL), or None if absent or empty."""
        result = self.get_header("LOCATION")
        if result is None:
            return None
        result = result.strip()
        return result if result != '' else None

    @property
    def search_target(self) -> Optional[str]:
        """The "ST" header, or None."""
        return self.get_header("ST")

    @property
    def status_code(self) -> Optional[int]:
        """The status code if this is a response datagram (e.g. "HTTP/1.1 200 OK"), else None."""
        parts = self._statement_line.split(None, 2)
        if len(parts) < 2 or not parts[0].upper().startswith("HTTP/"):
            return None
        try:
            return int(parts[1])
        except ValueError:
            return None

    def _rebuild_raw_data(self) -> None:
        """Rebuild the raw data from the statement line, headers, and body."""
        raw_data = self._statement_line.encode('utf-8') + b'\r\n'
        for k, v in self._headers.items():
            raw_data += encode_http_header(k, v)
        raw_data += b'\r\n'
        raw_data += self._body
        self._raw_data = raw_data
