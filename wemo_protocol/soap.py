#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
SOAP-over-HTTP transport for WeMo device control.

post_soap() performs the HTTP exchange and raises on transport failures.
soap_request() builds on it and reports every outcome as a SoapResponse, so
that callers can decide whether to retry. The only exception it lets through
is InvalidEnvelopeError, raised when a device answers 2xx with a document
that is not a SOAP envelope.
"""

from __future__ import annotations

import asyncio
import aiohttp
from dataclasses import dataclass, field
from enum import Enum

from .internal_types import *
from .pkg_logging import logger
from .constants import DEFAULT_TIMEOUT
from .envelope import build_soap_envelope, parse_soap_response, parse_soap_fault
from .exceptions import (
    WemoError,
    ConnectionFailedError,
    RequestTimeoutError,
    ProtocolFaultError,
    HttpError,
  )
from .http_helper import device_session

class SoapErrorCode(Enum):
    """Classification of a failed SOAP request."""
    CONNECTION_FAILED = "CONNECTION_FAILED"
    TIMEOUT = "TIMEOUT"
    INVALID_XML = "INVALID_XML"
    SOAP_FAULT = "SOAP_FAULT"
    HTTP_ERROR = "HTTP_ERROR"
    UNKNOWN = "UNKNOWN"

@dataclass
class SoapHttpReply:
    """The raw HTTP outcome of a SOAP POST."""
    status: int
    reason: str
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

@dataclass
class SoapResponse:
    """The outcome of a SOAP action request."""
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    error_kind: Optional[SoapErrorCode] = None
    raw_text: Optional[str] = field(default=None, repr=False)

    def to_exception(self) -> WemoError:
        """Build the exception that best describes a failed response."""
        msg = self.error or "Unknown error"
        if self.error_kind == SoapErrorCode.CONNECTION_FAILED:
            return ConnectionFailedError(msg)
        if self.error_kind == SoapErrorCode.TIMEOUT:
            return RequestTimeoutError(msg)
        if self.error_kind == SoapErrorCode.SOAP_FAULT:
            fault = None if self.raw_text is None else parse_soap_fault(self.raw_text)
            if fault is not None:
                return ProtocolFaultError(fault.fault_code, fault.fault_string, status_code=self.status_code)
        if self.error_kind in (SoapErrorCode.HTTP_ERROR, SoapErrorCode.SOAP_FAULT):
            return HttpError(msg, status_code=self.status_code)
        return WemoError(msg)

def soap_action_header(service_type: str, action: str) -> str:
    return f'"{service_type}#{action}"'

def control_url_for(host: str, port: int, control_path: str) -> str:
    if not control_path.startswith('/'):
        control_path = '/' + control_path
    return f"http://{host}:{port}{control_path}"

async def post_soap(
        url: str,
        service_type: str,
        action: str,
        envelope: str,
        timeout: float=DEFAULT_TIMEOUT,
        session: Optional[aiohttp.ClientSession]=None,
      ) -> SoapHttpReply:
    """POST a prebuilt SOAP envelope and return the HTTP status and body text.

    Raises:
        RequestTimeoutError:    The request did not complete within timeout seconds.
        ConnectionFailedError:  The connection was refused, or the host was unreachable.
        WemoError:              Any other HTTP client failure.
    """
    headers = {
        "Content-Type": 'text/xml; charset="utf-8"',
        "SOAPACTION": soap_action_header(service_type, action),
      }
    data = envelope.encode('utf-8')
    logger.debug(f"POST {url} SOAPACTION={headers['SOAPACTION']}")
    try:
        async with device_session(session, timeout) as s:
            async with s.post(
                    url,
                    data=data,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=timeout),
                  ) as response:
                text = await response.text()
                reply = SoapHttpReply(status=response.status, reason=response.reason or "", text=text)
    except asyncio.TimeoutError as e:
        raise RequestTimeoutError(f"Request timed out after {timeout:g}s") from e
    except aiohttp.ClientConnectorError as e:
        raise ConnectionFailedError(f"Connection failed: {e}") from e
    except aiohttp.ClientError as e:
        raise WemoError(f"HTTP request to {url} failed: {e}") from e
    except OSError as e:
        raise ConnectionFailedError(f"Connection failed: {e}") from e
    logger.debug(f"POST {url} -> HTTP {reply.status}")
    return reply

async def soap_request(
        host: str,
        port: int,
        control_url: str,
        service_type: str,
        action: str,
        body: Optional[str]=None,
        timeout: float=DEFAULT_TIMEOUT,
        session: Optional[aiohttp.ClientSession]=None,
      ) -> SoapResponse:
    """Send a SOAP action to a device and parse the response.

    Parameters:
        host, port:    Device address.
        control_url:   Control path of the target service (e.g., "/upnp/control/basicevent1").
        service_type:  Service type URN of the target service.
        action:        Action name.
        body:          Optional, already-escaped inner XML for the action element.
        timeout:       Deadline for this single attempt, in seconds.
        session:       Optional aiohttp session to reuse. If None, a short-lived session is used.

    Returns a SoapResponse. Transport errors, HTTP errors and SOAP faults are reported in the
    response rather than raised.
    """
    url = control_url_for(host, port, control_url)
    envelope = build_soap_envelope(service_type, action, body)
    try:
        reply = await post_soap(url, service_type, action, envelope, timeout=timeout, session=session)
    except RequestTimeoutError as e:
        return SoapResponse(success=False, error=str(e), error_kind=SoapErrorCode.TIMEOUT)
    except ConnectionFailedError as e:
        return SoapResponse(success=False, error=str(e), error_kind=SoapErrorCode.CONNECTION_FAILED)
    except WemoError as e:
        return SoapResponse(success=False, error=str(e), error_kind=SoapErrorCode.UNKNOWN)

    if not reply.ok:
        fault = parse_soap_fault(reply.text)
        if fault is not None:
            return SoapResponse(
                success=False,
                error=f"SOAP Fault: {fault.fault_string}",
                status_code=reply.status,
                error_kind=SoapErrorCode.SOAP_FAULT,
                raw_text=reply.text,
              )
        return SoapResponse(
            success=False,
            error=f"HTTP {reply.status}: {reply.reason}",
            status_code=reply.status,
            error_kind=SoapErrorCode.HTTP_ERROR,
            raw_text=reply.text,
          )

    data = parse_soap_response(reply.text, action)
    return SoapResponse(success=True, data=data, status_code=reply.status, raw_text=reply.text)

SoapRequestFunc = Callable[..., Awaitable[SoapResponse]]
"""The signature of soap_request(); injectable into clients for testing."""
