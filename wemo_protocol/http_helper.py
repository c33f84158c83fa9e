#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
aiohttp session configuration for talking to WeMo devices on the local network.
"""

from __future__ import annotations

import aiohttp
from contextlib import asynccontextmanager

from .internal_types import *

def create_device_session(timeout_seconds: float) -> aiohttp.ClientSession:
    """Create an aiohttp session for local device connections (always plain HTTP).

    Devices have tiny HTTP stacks that misbehave with keep-alive, so connections
    are closed after every request.
    """
    connector = aiohttp.TCPConnector(
        limit_per_host=2,
        ssl=False,
        force_close=True,
        enable_cleanup_closed=True,
      )
    return aiohttp.ClientSession(
        connector=connector,
        timeout=aiohttp.ClientTimeout(total=timeout_seconds),
      )

@asynccontextmanager
async def device_session(
        session: Optional[aiohttp.ClientSession],
        timeout_seconds: float
      ) -> AsyncIterator[aiohttp.ClientSession]:
    """Yield the caller's session if one was provided; otherwise create a short-lived
       session that is closed on exit."""
    if session is not None:
        yield session
        return
    own_session = create_device_session(timeout_seconds)
    try:
        yield own_session
    finally:
        await own_session.close()
