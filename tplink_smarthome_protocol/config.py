#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Discovery configuration.

DiscoveryOptions is constructed once per discovery run, validated at construction, and never
modified afterwards. Use replace() to derive a modified copy.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field

from .internal_types import *
from .constants import (
    TPLINK_PORT,
    TPLINK_BROADCAST_ADDRESS,
    DEFAULT_DISCOVERY_INTERVAL,
    DEFAULT_DISCOVERY_TIMEOUT,
    DEFAULT_OFFLINE_TOLERANCE,
  )
from .device import DeviceCategory
from .util import parse_host_and_port

DEVICE_OPTION_NAMES = ('timeout',)
"""The handle construction options that may be passed through device_options."""

UnicastTarget = Union[str, HostAndPort, Mapping[str, Any]]
"""A device to query directly: "host", "host:port", (host, port), or {"host": ..., "port": ...}."""

def _normalize_target(target: UnicastTarget) -> HostAndPort:
    if isinstance(target, str):
        return parse_host_and_port(target, TPLINK_PORT)
    if isinstance(target, Mapping):
        host = target.get('host')
        port = target.get('port')
        if port is None:
            port = TPLINK_PORT
    else:
        host, port = target
    if not isinstance(host, str) or host == '':
        raise ValueError(f"Invalid device host in {target!r}")
    return (host, int(port))

def _normalize_category(value: Union[str, DeviceCategory]) -> DeviceCategory:
    if isinstance(value, DeviceCategory):
        return value
    try:
        return DeviceCategory(str(value).lower())
    except ValueError:
        raise ValueError(f"Unknown device type '{value}'; expected one of {[c.value for c in DeviceCategory]}") from None

def _validate_port(name: str, port: int) -> None:
    if not 0 <= port <= 65535:
        raise ValueError(f"{name} must be between 0 and 65535, got {port}")

@dataclass(frozen=True)
class DiscoveryOptions:
    address: str = ''
    """The local address to bind the UDP socket to. '' binds all interfaces."""

    port: int = 0
    """The local port to bind the UDP socket to. 0 picks an ephemeral port."""

    broadcast: str = TPLINK_BROADCAST_ADDRESS
    """The address discovery requests are broadcast to."""

    broadcast_port: int = TPLINK_PORT
    """The port discovery requests are broadcast to."""

    discovery_interval: float = DEFAULT_DISCOVERY_INTERVAL
    """The interval (in seconds) between discovery broadcasts."""

    discovery_timeout: float = DEFAULT_DISCOVERY_TIMEOUT
    """The duration (in seconds) of the discovery run. 0 runs until explicitly stopped."""

    offline_tolerance: int = DEFAULT_OFFLINE_TOLERANCE
    """The number of consecutive unanswered broadcasts after which a device is marked offline."""

    device_types: Optional[Tuple[DeviceCategory, ...]] = None
    """If not None, only devices of these categories are registered; others are ignored."""

    devices: Tuple[HostAndPort, ...] = ()
    """Devices that are sent discovery requests directly, in addition to the broadcast."""

    device_options: Mapping[str, Any] = field(default_factory=dict)
    """Options passed through to the construction of each discovered device handle."""

    def __post_init__(self) -> None:
        _validate_port('port', self.port)
        _validate_port('broadcast_port', self.broadcast_port)
        if not self.discovery_interval > 0:
            raise ValueError(f"discovery_interval must be positive, got {self.discovery_interval}")
        if self.discovery_timeout < 0:
            raise ValueError(f"discovery_timeout must not be negative, got {self.discovery_timeout}")
        if self.offline_tolerance < 1:
            raise ValueError(f"offline_tolerance must be at least 1, got {self.offline_tolerance}")
        if not self.device_types is None:
            raw_types: Iterable[Any] = (self.device_types,) if isinstance(self.device_types, (str, DeviceCategory)) else self.device_types
            device_types = tuple(_normalize_category(t) for t in raw_types)
            object.__setattr__(self, 'device_types', device_types)
        devices = tuple(_normalize_target(d) for d in self.devices)
        for _, port in devices:
            _validate_port('device port', port)
        object.__setattr__(self, 'devices', devices)
        for name in self.device_options:
            if not name in DEVICE_OPTION_NAMES:
                raise ValueError(f"Unknown device option '{name}'; expected one of {list(DEVICE_OPTION_NAMES)}")
        object.__setattr__(self, 'device_options', dict(self.device_options))

    def replace(self, **changes: Any) -> DiscoveryOptions:
        """Returns a copy of these options with some fields changed. The result is validated."""
        return dataclasses.replace(self, **changes)

    def accepts(self, category: DeviceCategory) -> bool:
        """True if devices of category pass the device_types filter."""
        return self.device_types is None or category in self.device_types
