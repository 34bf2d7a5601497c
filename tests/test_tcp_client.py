import asyncio
import socket

import pytest

from tplink_smarthome_protocol import (
    TplinkClient,
    TplinkRequest,
    RequestState,
    TplinkPlug,
    TplinkBulb,
    TplinkError,
    TplinkTimeoutError,
    TplinkConnectionError,
    TplinkTransportError,
    TplinkProtocolError,
    TplinkResponseError,
    send_request,
)
from tplink_smarthome_protocol.tcp_client import find_error_code

from conftest import FakeTcpDevice, PLUG_SYSINFO, BULB_SYSINFO

SYSINFO_REQUEST = {"system": {"get_sysinfo": {}}}

def unused_tcp_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]

def test_get_sysinfo_unwraps_descriptor(run_async):
    async def amain():
        device = await FakeTcpDevice().start()
        try:
            client = TplinkClient()
            sysinfo = await client.get_sysinfo('127.0.0.1', port=device.port)
        finally:
            await device.stop()
        assert sysinfo == PLUG_SYSINFO
        assert device.requests == [SYSINFO_REQUEST]
    run_async(amain())

def test_send_accepts_mapping_and_string_payloads(run_async):
    async def amain():
        device = await FakeTcpDevice().start()
        try:
            client = TplinkClient()
            r1 = await client.send('127.0.0.1', {"system": {"get_sysinfo": {}}}, port=device.port)
            r2 = await client.send('127.0.0.1', '{"system":{"get_sysinfo":{}}}', port=device.port)
        finally:
            await device.stop()
        assert r1 == r2 == {"system": {"get_sysinfo": PLUG_SYSINFO}}
        assert device.requests == [SYSINFO_REQUEST, SYSINFO_REQUEST]
    run_async(amain())

def test_response_split_across_reads_is_accumulated(run_async):
    async def amain():
        device = await FakeTcpDevice(chunked=True).start()
        try:
            response = await send_request('127.0.0.1', SYSINFO_REQUEST, port=device.port, timeout=2.0)
        finally:
            await device.stop()
        assert response["system"]["get_sysinfo"]["alias"] == "Mock HS100"
    run_async(amain())

def test_nested_err_code_fails(run_async):
    async def amain():
        bad_response = {"system": {"get_sysinfo": {"err_code": 1, "err_msg": "module not support"}}}
        device = await FakeTcpDevice(response=bad_response).start()
        try:
            with pytest.raises(TplinkResponseError) as excinfo:
                await TplinkClient().get_sysinfo('127.0.0.1', port=device.port)
        finally:
            await device.stop()
        assert excinfo.value.err_code == 1
        assert excinfo.value.response == bad_response
        assert isinstance(excinfo.value, TplinkProtocolError)
    run_async(amain())

def test_top_level_err_code_fails(run_async):
    async def amain():
        device = await FakeTcpDevice(response={"err_code": -1, "err_msg": "module not support"}).start()
        try:
            with pytest.raises(TplinkResponseError) as excinfo:
                await TplinkClient().send('127.0.0.1', '{"foo":{}}', port=device.port)
        finally:
            await device.stop()
        assert excinfo.value.err_code == -1
    run_async(amain())

def test_find_error_code():
    assert find_error_code({"system": {"get_sysinfo": {"err_code": 0}}}) is None
    assert find_error_code({"system": {"get_sysinfo": {"alias": "x"}}}) is None
    assert find_error_code({"system": {"set_relay_state": {"err_code": -3}}}) == -3
    assert find_error_code({"err_code": 2}) == 2

def test_unparsable_response_carries_raw_text(run_async):
    async def amain():
        device = await FakeTcpDevice(raw_response='not json at all').start()
        try:
            with pytest.raises(TplinkProtocolError) as excinfo:
                await TplinkClient().send('127.0.0.1', SYSINFO_REQUEST, port=device.port)
        finally:
            await device.stop()
        assert excinfo.value.response == 'not json at all'
        assert not isinstance(excinfo.value, TplinkTransportError)
    run_async(amain())

def test_silent_device_times_out(run_async):
    async def amain():
        device = await FakeTcpDevice(reply=False).start()
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        try:
            with pytest.raises(TplinkTimeoutError) as excinfo:
                await TplinkClient(timeout=0.3).send('127.0.0.1', SYSINFO_REQUEST, port=device.port)
        finally:
            elapsed = loop.time() - start_time
            await device.stop()
        assert 0.25 <= elapsed < 1.5
        assert isinstance(excinfo.value, asyncio.TimeoutError)
        assert isinstance(excinfo.value, TplinkTransportError)
        assert not isinstance(excinfo.value, TplinkConnectionError)
    run_async(amain())

def test_connection_refused(run_async):
    async def amain():
        port = unused_tcp_port()
        with pytest.raises(TplinkConnectionError) as excinfo:
            await TplinkClient(timeout=2.0).send('127.0.0.1', SYSINFO_REQUEST, port=port)
        assert not isinstance(excinfo.value, TplinkTimeoutError)
        assert isinstance(excinfo.value, TplinkError)
    run_async(amain())

def test_unresponsive_device_does_not_delay_others(run_async):
    async def amain():
        silent = await FakeTcpDevice(reply=False).start()
        good = await FakeTcpDevice().start()
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        finish_times = {}

        async def timed(name, coro):
            try:
                return await coro
            finally:
                finish_times[name] = loop.time() - start_time

        client = TplinkClient()
        try:
            results = await asyncio.gather(
                timed('silent', client.send('127.0.0.1', SYSINFO_REQUEST, port=silent.port, timeout=1.0)),
                timed('good', client.send('127.0.0.1', SYSINFO_REQUEST, port=good.port, timeout=1.0)),
                return_exceptions=True,
            )
        finally:
            await silent.stop()
            await good.stop()
        assert isinstance(results[0], TplinkTimeoutError)
        assert results[1] == {"system": {"get_sysinfo": PLUG_SYSINFO}}
        assert finish_times['good'] < 0.5
        assert finish_times['silent'] >= 0.9
    run_async(amain())

def test_request_state_machine(run_async):
    async def amain():
        device = await FakeTcpDevice().start()
        silent = await FakeTcpDevice(reply=False).start()
        try:
            request = TplinkRequest('127.0.0.1', SYSINFO_REQUEST, port=device.port, timeout=2.0)
            assert request.state == RequestState.IDLE
            response = await request.run()
            assert request.state == RequestState.DONE
            assert request.response == response
            with pytest.raises(TplinkTransportError):
                await request.run()

            failing = TplinkRequest('127.0.0.1', SYSINFO_REQUEST, port=silent.port, timeout=0.2)
            with pytest.raises(TplinkTimeoutError):
                await failing.run()
            assert failing.state == RequestState.FAILED
            assert failing.response is None
        finally:
            await device.stop()
            await silent.stop()
    run_async(amain())

def test_get_device_resolves_category_over_the_wire(run_async):
    async def amain():
        plug_device = await FakeTcpDevice(sysinfo=PLUG_SYSINFO).start()
        bulb_device = await FakeTcpDevice(sysinfo=BULB_SYSINFO).start()
        try:
            client = TplinkClient()
            plug = await client.get_device('127.0.0.1', port=plug_device.port)
            bulb = await client.get_device('127.0.0.1', port=bulb_device.port, timeout=2.0)
        finally:
            await plug_device.stop()
            await bulb_device.stop()
        assert isinstance(plug, TplinkPlug)
        assert plug.device_id == PLUG_SYSINFO['deviceId']
        assert plug.port == plug_device.port
        assert plug.timeout is None
        assert isinstance(bulb, TplinkBulb)
        assert bulb.sysinfo == BULB_SYSINFO
        assert bulb.timeout == 2.0
        # discovery registry is untouched by direct requests
        assert len(client.devices) == 0
    run_async(amain())

def test_device_handle_refreshes_sysinfo(run_async):
    async def amain():
        device = await FakeTcpDevice(sysinfo=dict(PLUG_SYSINFO, alias='Renamed')).start()
        try:
            client = TplinkClient()
            plug = client.get_device_from_sysinfo(PLUG_SYSINFO, '127.0.0.1', port=device.port)
            assert plug.alias == 'Mock HS100'
            await plug.get_sysinfo()
            response = await plug.send(SYSINFO_REQUEST)
        finally:
            await device.stop()
        assert plug.alias == 'Renamed'
        assert response["system"]["get_sysinfo"]["alias"] == 'Renamed'
    run_async(amain())
