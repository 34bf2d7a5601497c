# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Package tplink_smarthome_protocol implements the local network protocol spoken by TP-Link
Smart Home (Kasa) devices: smart plugs, switches, and light bulbs.

Devices accept JSON requests over TCP port 9999 and answer UDP discovery broadcasts on the same
port. Every payload is obfuscated with a simple XOR autokey transform, and TCP payloads are
prefixed with their length. The protocol has no authentication, integrity checking, or
confidentiality; the obfuscation merely keeps the traffic from being plain text.

This package provides the transport (TplinkClient.send), typed device handles, and continuous
broadcast discovery with a registry of devices and new/online/offline lifecycle events.
"""

from .version import __version__

from .internal_types import Jsonable, JsonableDict, HostAndPort

from .exceptions import (
    TplinkError,
    TplinkTransportError,
    TplinkTimeoutError,
    TplinkConnectionError,
    TplinkProtocolError,
    TplinkResponseError,
    TplinkDiscoveryError,
  )

from .crypto import encrypt, encrypt_with_header, decrypt, decrypt_with_header
from .datagram import TplinkDatagram
from .device import DeviceCategory, DeviceStatus, TplinkDevice, TplinkPlug, TplinkBulb
from .resolver import category_of, category_from_name, create_device
from .registry import TplinkDeviceRegistry, TplinkDeviceRecord
from .events import DeviceEventKind, TplinkDeviceEvent, TplinkEventEmitter, EVENT_NAMES, ERROR_EVENT
from .tcp_client import TplinkRequest, RequestState, send_request
from .udp_socket import TplinkSocket, TplinkDatagramSubscriber
from .config import DiscoveryOptions
from .discovery import TplinkDiscovery, DiscoveryState
from .client import TplinkClient
from .constants import (
    TPLINK_PORT,
    TPLINK_BROADCAST_ADDRESS,
    DEFAULT_TIMEOUT,
    DEFAULT_DISCOVERY_INTERVAL,
    DEFAULT_OFFLINE_TOLERANCE,
  )

__all__ = [
    '__version__',
    'Jsonable', 'JsonableDict', 'HostAndPort',
    'TplinkError', 'TplinkTransportError', 'TplinkTimeoutError', 'TplinkConnectionError',
    'TplinkProtocolError', 'TplinkResponseError', 'TplinkDiscoveryError',
    'encrypt', 'encrypt_with_header', 'decrypt', 'decrypt_with_header',
    'TplinkDatagram',
    'DeviceCategory', 'DeviceStatus', 'TplinkDevice', 'TplinkPlug', 'TplinkBulb',
    'category_of', 'category_from_name', 'create_device',
    'TplinkDeviceRegistry', 'TplinkDeviceRecord',
    'DeviceEventKind', 'TplinkDeviceEvent', 'TplinkEventEmitter', 'EVENT_NAMES', 'ERROR_EVENT',
    'TplinkRequest', 'RequestState', 'send_request',
    'TplinkSocket', 'TplinkDatagramSubscriber',
    'DiscoveryOptions',
    'TplinkDiscovery', 'DiscoveryState',
    'TplinkClient',
    'TPLINK_PORT', 'TPLINK_BROADCAST_ADDRESS', 'DEFAULT_TIMEOUT',
    'DEFAULT_DISCOVERY_INTERVAL', 'DEFAULT_OFFLINE_TOLERANCE',
]
