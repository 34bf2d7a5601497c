import pytest

from tplink_smarthome_protocol import (
    TplinkClient,
    TplinkDeviceRegistry,
    DeviceStatus,
    create_device,
    DeviceCategory,
)
from tplink_smarthome_protocol.constants import DISCOVERY_SEQUENCE_MODULUS
from tplink_smarthome_protocol.registry import next_sequence, sequence_distance

from conftest import PLUG_SYSINFO

def make_plug(device_id='plug-1'):
    return create_device(DeviceCategory.PLUG, TplinkClient(), '192.0.2.10', device_id=device_id, sysinfo=dict(PLUG_SYSINFO))

def test_next_sequence_wraps_to_zero():
    assert next_sequence(0) == 1
    assert next_sequence(DISCOVERY_SEQUENCE_MODULUS - 1) == 0

def test_sequence_distance_is_wraparound_safe():
    assert sequence_distance(5, 2) == 3
    assert sequence_distance(2, DISCOVERY_SEQUENCE_MODULUS - 1) == 3
    assert sequence_distance(0, DISCOVERY_SEQUENCE_MODULUS - 1) == 1
    assert sequence_distance(7, 7) == 0

def test_add_registers_online_record():
    registry = TplinkDeviceRegistry()
    device = make_plug()
    record = registry._add(device, 1)
    assert record.status == DeviceStatus.ONLINE
    assert record.seen_on_discovery == 1
    assert record.device is device
    assert record.device_id == 'plug-1'
    assert record.category == DeviceCategory.PLUG
    assert registry['plug-1'] is record
    assert list(registry) == ['plug-1']
    assert len(registry) == 1
    assert registry.devices == [device]

def test_add_rejects_duplicates_and_missing_identity():
    registry = TplinkDeviceRegistry()
    registry._add(make_plug(), 0)
    with pytest.raises(KeyError):
        registry._add(make_plug(), 0)
    anonymous = create_device(DeviceCategory.PLUG, TplinkClient(), '192.0.2.11')
    with pytest.raises(ValueError):
        registry._add(anonymous, 0)

def test_registry_is_read_only():
    registry = TplinkDeviceRegistry()
    with pytest.raises(TypeError):
        registry['x'] = None  # type: ignore[index]
    with pytest.raises(TypeError):
        del registry['x']  # type: ignore[attr-defined]
    for name in ('add', 'refresh', 'sweep', 'clear', 'pop', 'update'):
        assert not hasattr(registry, name)

def test_client_devices_cannot_be_modified():
    client = TplinkClient()
    with pytest.raises(TypeError):
        client.devices['plug-1'] = None  # type: ignore[index]
    with pytest.raises(AttributeError):
        client.devices = TplinkDeviceRegistry()  # type: ignore[misc]
    assert not hasattr(client.devices, 'add')

def test_sweep_marks_offline_once_after_tolerance_missed_cycles():
    registry = TplinkDeviceRegistry()
    record = registry._add(make_plug(), 1)
    # the device answered the broadcast sent at sequence 0; the counter is now 1
    assert registry._sweep(1, 3) == []
    assert registry._sweep(2, 3) == []
    assert registry._sweep(3, 3) == []
    assert record.status == DeviceStatus.ONLINE
    assert registry._sweep(4, 3) == [record]
    assert record.status == DeviceStatus.OFFLINE
    assert registry._sweep(5, 3) == []
    assert registry._sweep(6, 3) == []

def test_refresh_brings_offline_device_back_online_in_same_record():
    registry = TplinkDeviceRegistry()
    device = make_plug()
    record = registry._add(device, 0)
    registry._sweep(5, 3)
    assert record.status == DeviceStatus.OFFLINE
    sysinfo = dict(PLUG_SYSINFO, alias='Renamed')
    refreshed = registry._refresh('plug-1', '192.0.2.99', 9999, sysinfo, 6)
    assert refreshed is record
    assert refreshed.device is device
    assert record.status == DeviceStatus.ONLINE
    assert (record.host, record.port, record.seen_on_discovery) == ('192.0.2.99', 9999, 6)
    assert device.alias == 'Renamed'
    assert len(registry) == 1

def test_sweep_across_sequence_wraparound():
    registry = TplinkDeviceRegistry()
    record = registry._add(make_plug(), DISCOVERY_SEQUENCE_MODULUS - 1)
    assert registry._sweep(0, 3) == []
    assert registry._sweep(1, 3) == []
    assert record.status == DeviceStatus.ONLINE
    assert registry._sweep(2, 3) == [record]
