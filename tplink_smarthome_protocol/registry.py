#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
The registry of devices that have answered discovery.

Each device identity maps to exactly one TplinkDeviceRecord, created on first response and
never removed; a device that stops answering is marked offline instead. Only the discovery
engine mutates the registry; everything else sees it as a read-only mapping.
"""

from __future__ import annotations

from .internal_types import *
from .pkg_logging import logger
from .constants import DISCOVERY_SEQUENCE_MODULUS
from .device import DeviceCategory, DeviceStatus, TplinkDevice

def next_sequence(sequence: int) -> int:
    """Returns the discovery sequence number that follows sequence, wrapping to zero."""
    return (sequence + 1) % DISCOVERY_SEQUENCE_MODULUS

def sequence_distance(current: int, seen: int) -> int:
    """Returns how many sequence increments separate seen from current, modulo the
       sequence wraparound."""
    return (current - seen) % DISCOVERY_SEQUENCE_MODULUS

class TplinkDeviceRecord:
    """The registry entry for a single device."""

    device: TplinkDevice
    """The handle for the device. Its host, port and sysinfo track the latest response."""

    status: DeviceStatus
    """The lifecycle status of the device."""

    seen_on_discovery: int
    """The discovery sequence number current when the device last responded."""

    def __init__(self, device: TplinkDevice, seen_on_discovery: int):
        assert not device.device_id is None
        self.device = device
        self.status = DeviceStatus.NEW
        self.seen_on_discovery = seen_on_discovery

    @property
    def device_id(self) -> str:
        assert not self.device.device_id is None
        return self.device.device_id

    @property
    def host(self) -> str:
        return self.device.host

    @property
    def port(self) -> int:
        return self.device.port

    @property
    def category(self) -> DeviceCategory:
        return self.device.category

    @property
    def sysinfo(self) -> Optional[JsonableDict]:
        return self.device.sysinfo

    def __str__(self) -> str:
        return f"TplinkDeviceRecord({self.device}, status={self.status.value}, seen_on_discovery={self.seen_on_discovery})"

    def __repr__(self) -> str:
        return str(self)

class TplinkDeviceRegistry(Mapping[str, TplinkDeviceRecord]):
    """A read-only mapping from device identity to TplinkDeviceRecord.

    The underscore methods are the mutation interface of the discovery engine, and are not
    part of the public API.
    """

    _records: Dict[str, TplinkDeviceRecord]

    def __init__(self) -> None:
        self._records = {}

    def __getitem__(self, device_id: str) -> TplinkDeviceRecord:
        return self._records[device_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    @property
    def devices(self) -> List[TplinkDevice]:
        """The handles of all registered devices."""
        return [ record.device for record in self._records.values() ]

    def _add(self, device: TplinkDevice, sequence: int) -> TplinkDeviceRecord:
        """Registers a device that has responded for the first time, and marks it online."""
        if device.device_id is None:
            raise ValueError(f"Cannot register a device without a device_id: {device}")
        if device.device_id in self._records:
            raise KeyError(f"Device is already registered: {device.device_id}")
        record = TplinkDeviceRecord(device, sequence)
        self._records[device.device_id] = record
        record.status = DeviceStatus.ONLINE
        logger.info(f"New device {device}")
        return record

    def _refresh(
            self,
            device_id: str,
            host: str,
            port: int,
            sysinfo: JsonableDict,
            sequence: int,
          ) -> TplinkDeviceRecord:
        """Updates an existing record from a fresh discovery response and marks it online."""
        record = self._records[device_id]
        if record.status != DeviceStatus.ONLINE:
            logger.info(f"Device {record.device} is back online")
        record.device.host = host
        record.device.port = port
        record.device.sysinfo = sysinfo
        record.seen_on_discovery = sequence
        record.status = DeviceStatus.ONLINE
        return record

    def _sweep(self, sequence: int, offline_tolerance: int) -> List[TplinkDeviceRecord]:
        """Marks offline every device that has not responded within offline_tolerance
           discovery cycles. Returns the records that changed to offline on this call."""
        result: List[TplinkDeviceRecord] = []
        for record in self._records.values():
            if record.status != DeviceStatus.OFFLINE:
                if sequence_distance(sequence, record.seen_on_discovery) >= offline_tolerance:
                    record.status = DeviceStatus.OFFLINE
                    logger.info(f"Device {record.device} is offline")
                    result.append(record)
        return result
