#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Exceptions defined by this package"""

from __future__ import annotations

import asyncio

from .internal_types import *

class TplinkError(Exception):
    """Base class for all error exceptions defined by this package."""
    pass

class TplinkTransportError(TplinkError):
    """A socket-level failure on a single TCP or UDP operation."""
    pass

class TplinkTimeoutError(TplinkTransportError, asyncio.TimeoutError):
    """A request did not complete within its timeout."""
    pass

class TplinkConnectionError(TplinkTransportError):
    """The connection to a device was refused, reset, or could not be established."""
    pass

class TplinkProtocolError(TplinkError):
    """A device response could not be decoded, or did not have the expected shape."""

    response: Any
    """The parsed response, or the raw decoded text if it could not be parsed."""

    def __init__(self, msg: str, response: Any=None):
        super().__init__(msg)
        self.response = response

class TplinkResponseError(TplinkProtocolError):
    """A device response carried a non-zero err_code."""

    err_code: int

    def __init__(self, msg: str, response: Any=None, err_code: int=-1):
        super().__init__(msg, response)
        self.err_code = err_code

class TplinkDiscoveryError(TplinkError):
    """A failure that ends a discovery run (UDP bind or send failure), or an invalid request
       to start one."""
    pass
