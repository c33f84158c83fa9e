#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Exceptions defined by this package"""

from __future__ import annotations

from typing import Optional

class WemoError(Exception):
    """Base class for all error exceptions defined by this package."""
    pass

class ConnectionFailedError(WemoError):
    """The device refused the connection, or was unreachable or unroutable."""
    pass

class RequestTimeoutError(WemoError):
    """A single request attempt exceeded its deadline."""
    pass

class InvalidEnvelopeError(WemoError):
    """An XML document was malformed or did not have the expected SOAP structure."""
    pass

class ProtocolFaultError(WemoError):
    """The device answered with a structured SOAP fault."""
    fault_code: str
    fault_string: str

    def __init__(self, fault_code: str, fault_string: str, status_code: Optional[int]=None):
        super().__init__(f"SOAP Fault: {fault_string}")
        self.fault_code = fault_code
        self.fault_string = fault_string
        self.status_code = status_code

class HttpError(WemoError):
    """The device answered with a non-success HTTP status and no parseable fault."""
    status_code: Optional[int]

    def __init__(self, msg: str, status_code: Optional[int]=None):
        super().__init__(msg)
        self.status_code = status_code

class DeviceOperationFailed(WemoError):
    """All attempts of a device control action failed."""
    device_id: str
    operation: str
    cause: Optional[BaseException]

    def __init__(self, device_id: str, operation: str, cause: Optional[BaseException]=None, msg: Optional[str]=None):
        if msg is None:
            msg = f"Failed to {operation} on device {device_id}"
            if cause is not None:
                msg += f": {cause}"
        super().__init__(msg)
        self.device_id = device_id
        self.operation = operation
        self.cause = cause

class InvalidMacAddressError(WemoError, ValueError):
    """A MAC address did not contain exactly 12 hex digits."""
    pass

class DiscoveryRateLimited(WemoError):
    """A discovery scan was requested before the cooldown interval elapsed."""
    retry_after: int

    def __init__(self, retry_after: int):
        super().__init__(f"Discovery rate limited. Please wait {retry_after} seconds before scanning again.")
        self.retry_after = retry_after

class WemoConfigError(WemoError):
    """A configuration value was missing or invalid."""
    pass
