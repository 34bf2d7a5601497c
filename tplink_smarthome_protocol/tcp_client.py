#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
The TCP request engine: one request, one connection, one response.

Each call opens a new connection, writes a single framed and obfuscated request, reads until the
device closes the connection, and parses the accumulated bytes as JSON. A single timeout governs
the whole exchange, from the start of the connection attempt until the response is complete.
There are no retries.
"""

from __future__ import annotations

import asyncio
import json
from enum import Enum

from .internal_types import *
from .pkg_logging import logger
from .constants import TPLINK_PORT, DEFAULT_TIMEOUT
from .crypto import encrypt_with_header, decrypt_with_header
from .exceptions import (
    TplinkTransportError,
    TplinkTimeoutError,
    TplinkConnectionError,
    TplinkProtocolError,
    TplinkResponseError,
  )

class RequestState(Enum):
    """The states of a single request attempt."""
    IDLE = 'idle'
    CONNECTING = 'connecting'
    SENDING = 'sending'
    RECEIVING = 'receiving'
    DONE = 'done'
    FAILED = 'failed'

def serialize_payload(payload: Union[str, Mapping[str, Jsonable]]) -> str:
    """Returns payload as JSON text. Strings are assumed to already be JSON."""
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, separators=(',', ':'))

def find_error_code(response: JsonableDict) -> Optional[int]:
    """Returns the first non-zero err_code in a response, or None if there is none.

    A response may carry err_code at the top level, or per method in the usual
    {"<module>": {"<method>": {"err_code": ...}}} structure.
    """
    candidates: List[Any] = [ response ]
    for module_result in response.values():
        if isinstance(module_result, dict):
            candidates.append(module_result)
            candidates.extend(v for v in module_result.values() if isinstance(v, dict))
    for candidate in candidates:
        err_code = candidate.get('err_code')
        if not err_code is None and err_code != 0:
            return err_code
    return None

def parse_response(data: bytes) -> JsonableDict:
    """Decodes and parses the complete bytes received from a device, raising TplinkProtocolError
       if they are not a JSON object, or TplinkResponseError if the device reported an error."""
    plaintext_bytes = decrypt_with_header(data)
    try:
        plaintext = plaintext_bytes.decode('utf-8')
    except UnicodeDecodeError as e:
        raise TplinkProtocolError(f"Response is not valid UTF-8 after decoding: {e}", plaintext_bytes) from e
    try:
        response = json.loads(plaintext)
    except ValueError as e:
        raise TplinkProtocolError(f"Invalid response: {plaintext!r}", plaintext) from e
    if not isinstance(response, dict):
        raise TplinkProtocolError(f"Invalid response: {plaintext!r}", response)
    err_code = find_error_code(response)
    if not err_code is None:
        raise TplinkResponseError(f"Device returned err_code {err_code}: {plaintext}", response, err_code)
    return response

class TplinkRequest:
    """A single request/response exchange with a device.

    The attempt moves through CONNECTING -> SENDING -> RECEIVING -> DONE, or to FAILED from
    any state.
    """

    host: str
    port: int
    payload: str
    timeout: float
    """The timeout (in seconds) for the entire exchange. 0 waits indefinitely."""

    state: RequestState = RequestState.IDLE

    response: Optional[JsonableDict] = None
    """The parsed response, once the request is DONE."""

    def __init__(
            self,
            host: str,
            payload: Union[str, Mapping[str, Jsonable]],
            port: int=TPLINK_PORT,
            timeout: float=DEFAULT_TIMEOUT,
          ) -> None:
        self.host = host
        self.port = port
        self.payload = serialize_payload(payload)
        self.timeout = timeout

    def __str__(self) -> str:
        return f"TplinkRequest({self.host}:{self.port}, state={self.state.value})"

    def __repr__(self) -> str:
        return str(self)

    def _set_state(self, state: RequestState) -> None:
        logger.debug(f"{self}: -> {state.value}")
        self.state = state

    async def run(self) -> JsonableDict:
        """Performs the exchange and returns the parsed response."""
        if self.state != RequestState.IDLE:
            raise TplinkTransportError(f"{self} has already been run")
        try:
            if self.timeout > 0:
                response = await asyncio.wait_for(self._exchange(), self.timeout)
            else:
                response = await self._exchange()
        except asyncio.TimeoutError as e:
            self._set_state(RequestState.FAILED)
            if isinstance(e, TplinkTimeoutError):
                raise
            raise TplinkTimeoutError(f"Request to {self.host}:{self.port} timed out after {self.timeout} seconds") from e
        except BaseException:
            self._set_state(RequestState.FAILED)
            raise
        self.response = response
        self._set_state(RequestState.DONE)
        return response

    async def _exchange(self) -> JsonableDict:
        self._set_state(RequestState.CONNECTING)
        try:
            reader, writer = await asyncio.open_connection(self.host, self.port)
        except TimeoutError as e:
            raise TplinkTimeoutError(f"Connection to {self.host}:{self.port} timed out: {e}") from e
        except OSError as e:
            logger.error(f"TCP error connecting to {self.host}:{self.port}: {e}")
            raise TplinkConnectionError(f"Unable to connect to {self.host}:{self.port}: {e}") from e

        try:
            self._set_state(RequestState.SENDING)
            data = encrypt_with_header(self.payload)
            logger.debug(f"{self}: sending {self.payload}")
            writer.write(data)
            await writer.drain()
            self._set_state(RequestState.RECEIVING)
            received = await reader.read()
            logger.debug(f"{self}: received {len(received)} bytes")
        except asyncio.CancelledError:
            writer.transport.abort()
            raise
        except ConnectionError as e:
            writer.transport.abort()
            logger.error(f"TCP error communicating with {self.host}:{self.port}: {e}")
            raise TplinkConnectionError(f"Connection to {self.host}:{self.port} failed: {e}") from e
        except OSError as e:
            writer.transport.abort()
            logger.error(f"TCP error communicating with {self.host}:{self.port}: {e}")
            raise TplinkTransportError(f"Socket error communicating with {self.host}:{self.port}: {e}") from e

        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug(f"{self}: error while closing: {e}")

        if len(received) == 0:
            raise TplinkProtocolError(f"Connection to {self.host}:{self.port} was closed without a response", b'')
        return parse_response(received)

async def send_request(
        host: str,
        payload: Union[str, Mapping[str, Jsonable]],
        port: int=TPLINK_PORT,
        timeout: float=DEFAULT_TIMEOUT,
      ) -> JsonableDict:
    """Sends a single request to a device over TCP and returns the parsed response.

    Raises:
        TplinkTimeoutError:    The response was not complete within timeout seconds.
        TplinkConnectionError: The connection could not be established, or was reset.
        TplinkTransportError:  Some other socket error occurred.
        TplinkProtocolError:   The response could not be decoded or parsed.
        TplinkResponseError:   The device reported a non-zero err_code.
    """
    return await TplinkRequest(host, payload, port=port, timeout=timeout).run()
