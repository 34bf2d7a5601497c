#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Simple utility functions used by this package
"""

from __future__ import annotations

import netifaces
from ipaddress import IPv4Address, IPv4Network

from .internal_types import *

from requests.structures import CaseInsensitiveDict

def case_insensitive_sysinfo(sysinfo: Optional[Mapping[str, Any]]) -> CaseInsensitiveDict[Any]:
    """Returns a CaseInsensitiveDict view of a device descriptor. Firmware versions disagree on
       the capitalization of some keys (e.g., "deviceId" vs "deviceID"), so lookups of the fields
       this package interprets are done case-insensitively."""
    if sysinfo is None:
        return CaseInsensitiveDict()
    return CaseInsensitiveDict(sysinfo)

def parse_host_and_port(value: str, default_port: int) -> HostAndPort:
    """Parses "host" or "host:port" into a (host, port) tuple. Bracketed IPv6 literals
       ("[::1]:9999") are accepted."""
    host = value
    port = default_port
    if value.startswith('['):
        end = value.find(']')
        if end < 0:
            raise ValueError(f"Invalid host address: '{value}'")
        host = value[1:end]
        remainder = value[end + 1:]
        if remainder.startswith(':'):
            port = int(remainder[1:])
        elif remainder != '':
            raise ValueError(f"Invalid host address: '{value}'")
    elif value.count(':') == 1:
        host, port_str = value.split(':', 1)
        port = int(port_str)
    if host == '':
        raise ValueError(f"Invalid host address: '{value}'")
    return (host, port)

def get_default_ip_gateway() -> Tuple[Optional[str], Optional[str]]:
    """Returns the (gateway_ip_address: str, gateway_interface_name: str) for the default IPV4 gateway,
       if any.
       returns (None, None) if there is no default gateway."""
    gws = netifaces.gateways()
    if "default" in gws:
        default_gateway_infos = gws["default"]
        if netifaces.AF_INET in default_gateway_infos:
            gw_ip, gw_interface_name = default_gateway_infos[netifaces.AF_INET][:2]
            return (gw_ip, gw_interface_name)
    return (None, None)

def get_broadcast_addresses_and_interfaces(include_loopback: bool=False) -> List[Tuple[str, str]]:
    """Returns a list of Tuple[broadcast_address: str, interface_name: str] for the directed (subnet)
       IPV4 broadcast addresses of the local host. The result is sorted in a way that attempts to place
       the "preferred" subnet first in the list, according to the following scheme:
           1. Subnets on the default gateway interface precede all other subnets.
           2. Non-loopback subnets precede loopback subnets.
           3. Subnets that begin with 172. follow other subnets. This is a hack to
              deprioritize local docker networks.
    """
    result_with_priority: List[Tuple[int, str, str]] = []
    _, default_gateway_ifname = get_default_ip_gateway()
    for ifname in netifaces.interfaces():
        ifinfo = netifaces.ifaddresses(ifname)
        if netifaces.AF_INET in ifinfo:
            for addrinfo in ifinfo[netifaces.AF_INET]:
                ip_str = addrinfo.get('addr')
                if ip_str is None:
                    continue
                broadcast_str = addrinfo.get('broadcast')
                if broadcast_str is None:
                    netmask = addrinfo.get('netmask')
                    if netmask is None:
                        continue
                    broadcast_str = str(IPv4Network(f"{ip_str}/{netmask}", strict=False).broadcast_address)
                if ifname == default_gateway_ifname:
                    priority = 0
                elif IPv4Address(ip_str).is_loopback:
                    if not include_loopback:
                        continue
                    priority = 3
                elif ip_str.startswith('172.'):
                    priority = 2
                else:
                    priority = 1
                result_with_priority.append((priority, broadcast_str, ifname))
    return [ (addr, ifname) for _, addr, ifname in sorted(result_with_priority)]

def get_broadcast_addresses(include_loopback: bool=False) -> List[str]:
    """Returns a List[broadcast_address: str] of directed IPV4 broadcast addresses for the local
       subnets, preferred subnet first. See get_broadcast_addresses_and_interfaces()."""
    result: List[str] = []
    for addr, _ in get_broadcast_addresses_and_interfaces(include_loopback=include_loopback):
        if not addr in result:
            result.append(addr)
    return result
