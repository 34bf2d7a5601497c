"""Shared fixtures: an event loop runner and in-process fake devices."""

from __future__ import annotations

import asyncio
import json
import struct
from typing import Any, Callable, Coroutine, Dict, List, Optional, Tuple

import pytest

from tplink_smarthome_protocol import encrypt, decrypt

PLUG_SYSINFO: Dict[str, Any] = {
    "sw_ver": "1.0.8 Build 151113 Rel.24658",
    "hw_ver": "1.0",
    "type": "IOT.SMARTPLUGSWITCH",
    "model": "HS100(US)",
    "mac": "50:C7:BF:00:00:01",
    "deviceId": "8006PLUG0000000000000000000000000001",
    "alias": "Mock HS100",
    "relay_state": 0,
    "err_code": 0,
}

BULB_SYSINFO: Dict[str, Any] = {
    "sw_ver": "1.1.2 Build 160927 Rel.111100",
    "hw_ver": "1.0",
    "mic_type": "IOT.SMARTBULB",
    "model": "LB120(US)",
    "mic_mac": "50C7BF000002",
    "deviceId": "8012BULB0000000000000000000000000002",
    "alias": "Mock LB120",
    "err_code": 0,
}

GENERIC_SYSINFO: Dict[str, Any] = {
    "type": "IOT.SMARTCAMERA",
    "model": "KC100(US)",
    "deviceId": "8099CAM00000000000000000000000000003",
    "alias": "Mock Camera",
    "err_code": 0,
}

@pytest.fixture
def run_async() -> Any:
    """Runs coroutines on a fresh event loop that is closed at the end of the test."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def run(coro: Coroutine[Any, Any, Any]) -> Any:
        return loop.run_until_complete(coro)

    yield run
    pending = asyncio.all_tasks(loop)
    for task in pending:
        task.cancel()
    if len(pending) > 0:
        loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
    loop.close()
    asyncio.set_event_loop(None)

async def wait_until(predicate: Callable[[], bool], timeout: float=3.0, interval: float=0.01) -> None:
    """Polls predicate until it is true, failing the test after timeout seconds."""
    loop = asyncio.get_running_loop()
    end_time = loop.time() + timeout
    while not predicate():
        if loop.time() > end_time:
            raise AssertionError(f"Condition not met within {timeout} seconds")
        await asyncio.sleep(interval)

class FakeTcpDevice:
    """A TCP server that answers one framed request per connection, like a real device."""

    def __init__(
            self,
            sysinfo: Optional[Dict[str, Any]]=None,
            response: Optional[Any]=None,
            raw_response: Optional[str]=None,
            reply: bool=True,
            chunked: bool=False,
          ) -> None:
        self.sysinfo = PLUG_SYSINFO if sysinfo is None else sysinfo
        self.response = response
        self.raw_response = raw_response
        self.reply = reply
        self.chunked = chunked
        self.requests: List[Any] = []
        self.port = 0
        self._released = asyncio.Event()
        self._server: Optional[asyncio.base_events.Server] = None

    async def start(self) -> FakeTcpDevice:
        self._server = await asyncio.start_server(self._handle, '127.0.0.1', 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def stop(self) -> None:
        self._released.set()
        assert self._server is not None
        self._server.close()
        await self._server.wait_closed()

    def _response_text(self) -> str:
        if self.raw_response is not None:
            return self.raw_response
        if self.response is not None:
            return json.dumps(self.response)
        return json.dumps({"system": {"get_sysinfo": self.sysinfo}})

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            header = await reader.readexactly(4)
            length = struct.unpack('>I', header)[0]
            body = await reader.readexactly(length)
            self.requests.append(json.loads(decrypt(body).decode('utf-8')))
            if not self.reply:
                await self._released.wait()
                return
            text = self._response_text().encode('utf-8')
            data = struct.pack('>I', len(text)) + encrypt(text)
            if self.chunked:
                middle = len(data) // 2
                writer.write(data[:middle])
                await writer.drain()
                await asyncio.sleep(0.05)
                writer.write(data[middle:])
            else:
                writer.write(data)
            await writer.drain()
        finally:
            writer.close()

class FakeUdpDevice(asyncio.DatagramProtocol):
    """A UDP endpoint that answers discovery requests with a descriptor, like a real device."""

    def __init__(self, sysinfo: Dict[str, Any], raw_reply: Optional[bytes]=None) -> None:
        self.sysinfo = sysinfo
        self.raw_reply = raw_reply
        self.responding = True
        self.requests = 0
        self.transport: Optional[asyncio.DatagramTransport] = None
        self.port = 0

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport  # type: ignore[assignment]

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        self.requests += 1
        if not self.responding:
            return
        assert self.transport is not None
        if self.raw_reply is not None:
            self.transport.sendto(self.raw_reply, addr)
        else:
            reply = json.dumps({"system": {"get_sysinfo": self.sysinfo}})
            self.transport.sendto(encrypt(reply), addr)

    def close(self) -> None:
        if self.transport is not None:
            self.transport.close()

async def start_fake_udp_device(sysinfo: Dict[str, Any], raw_reply: Optional[bytes]=None) -> FakeUdpDevice:
    loop = asyncio.get_running_loop()
    _, device = await loop.create_datagram_endpoint(
        lambda: FakeUdpDevice(sysinfo, raw_reply=raw_reply),
        local_addr=('127.0.0.1', 0)
      )
    assert device.transport is not None
    device.port = device.transport.get_extra_info('sockname')[1]
    return device
