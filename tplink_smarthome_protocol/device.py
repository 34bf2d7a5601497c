#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Typed handles for TP-Link Smart Home devices.

A handle records a device's identity, network location, and last known descriptor, and
holds a reference to the client whose request engine is used to talk to it. Creating a
handle performs no I/O.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from .internal_types import *
from .constants import TPLINK_PORT
from .util import case_insensitive_sysinfo

if TYPE_CHECKING:
    from .client import TplinkClient

class DeviceCategory(Enum):
    """The closed set of device categories a handle can have."""
    GENERIC = 'device'
    PLUG = 'plug'
    BULB = 'bulb'

class DeviceStatus(Enum):
    """Lifecycle state of a device known to discovery."""
    NEW = 'new'
    ONLINE = 'online'
    OFFLINE = 'offline'

class TplinkDevice:
    """A handle for a device that supports only the operations common to all devices."""

    category: DeviceCategory = DeviceCategory.GENERIC
    """The category of this handle."""

    client: TplinkClient
    """The client whose request engine is used to talk to the device."""

    host: str
    """The host name or IP address of the device."""

    port: int
    """The TCP port of the device."""

    device_id: Optional[str]
    """The identity reported by the device, if known."""

    sysinfo: Optional[JsonableDict]
    """The most recent descriptor reported by the device, if any."""

    timeout: Optional[float]
    """The timeout (in seconds) for requests to this device. If None, the client's default is used."""

    def __init__(
            self,
            client: TplinkClient,
            host: str,
            port: int=TPLINK_PORT,
            device_id: Optional[str]=None,
            sysinfo: Optional[JsonableDict]=None,
            timeout: Optional[float]=None,
          ) -> None:
        self.client = client
        self.host = host
        self.port = port
        self.sysinfo = sysinfo
        if device_id is None and not sysinfo is None:
            reported_id = case_insensitive_sysinfo(sysinfo).get('deviceId')
            if isinstance(reported_id, str):
                device_id = reported_id
        self.device_id = device_id
        self.timeout = timeout

    def __str__(self) -> str:
        return f"{self.__class__.__name__}({self.device_id}@{self.host}:{self.port}, alias={self.alias!r})"

    def __repr__(self) -> str:
        return str(self)

    def _sysinfo_field(self, name: str) -> Optional[str]:
        value = case_insensitive_sysinfo(self.sysinfo).get(name)
        return None if value is None else str(value)

    @property
    def alias(self) -> Optional[str]:
        """The user-assigned name of the device."""
        return self._sysinfo_field('alias')

    @property
    def model(self) -> Optional[str]:
        """The model string reported by the device, e.g. "HS100(US)"."""
        return self._sysinfo_field('model')

    @property
    def mac(self) -> Optional[str]:
        """The MAC address reported by the device. Plugs report "mac", bulbs "mic_mac"."""
        result = self._sysinfo_field('mac')
        if result is None:
            result = self._sysinfo_field('mic_mac')
        return result

    @property
    def device_type(self) -> Optional[str]:
        """The declared type reported by the device. Plugs report "type", bulbs "mic_type"."""
        result = self._sysinfo_field('type')
        if result is None:
            result = self._sysinfo_field('mic_type')
        return result

    async def send(self, payload: Union[str, Mapping[str, Jsonable]], timeout: Optional[float]=None) -> JsonableDict:
        """Sends a request to the device and returns the parsed response."""
        if timeout is None:
            timeout = self.timeout
        return await self.client.send(self.host, payload, port=self.port, timeout=timeout)

    async def get_sysinfo(self, timeout: Optional[float]=None) -> JsonableDict:
        """Requests the device descriptor, and updates self.sysinfo with the result."""
        if timeout is None:
            timeout = self.timeout
        sysinfo = await self.client.get_sysinfo(self.host, port=self.port, timeout=timeout)
        self.sysinfo = sysinfo
        return sysinfo

class TplinkPlug(TplinkDevice):
    """A handle for a smart plug or switch."""
    category = DeviceCategory.PLUG

class TplinkBulb(TplinkDevice):
    """A handle for a smart light bulb."""
    category = DeviceCategory.BULB
