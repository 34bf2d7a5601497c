#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Resolution of device descriptors and category names to typed device handles.

Nothing in this module performs I/O.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .internal_types import *
from .constants import TPLINK_PORT
from .device import DeviceCategory, TplinkDevice, TplinkPlug, TplinkBulb
from .util import case_insensitive_sysinfo

if TYPE_CHECKING:
    from .client import TplinkClient

DEVICE_CLASSES: Dict[DeviceCategory, Type[TplinkDevice]] = {
    DeviceCategory.GENERIC: TplinkDevice,
    DeviceCategory.PLUG: TplinkPlug,
    DeviceCategory.BULB: TplinkBulb,
}
"""The handle class constructed for each category."""

def category_of(sysinfo: Optional[Mapping[str, Any]]) -> DeviceCategory:
    """Guesses the category of a device from its descriptor.

    The declared type ("type" for plugs, "mic_type" for bulbs) is matched case-insensitively:
    anything containing "plug" is a plug, anything containing "bulb" is a bulb, and
    everything else is generic.
    """
    info = case_insensitive_sysinfo(sysinfo)
    declared_type = info.get('type') or info.get('mic_type') or ''
    declared_type = str(declared_type).lower()
    if 'plug' in declared_type:
        return DeviceCategory.PLUG
    if 'bulb' in declared_type:
        return DeviceCategory.BULB
    return DeviceCategory.GENERIC

def category_from_name(type_name: Union[str, DeviceCategory, Type[TplinkDevice]]) -> DeviceCategory:
    """Maps a desired category token to a DeviceCategory.

    type_name may be a DeviceCategory, a category name ("plug", "bulb", "device"), or a handle
    class (whose class name is used, e.g. TplinkPlug). Unrecognized names resolve to PLUG.
    """
    if isinstance(type_name, DeviceCategory):
        return type_name
    if isinstance(type_name, type):
        type_name = type_name.__name__
    name = str(type_name).lower()
    if 'plug' in name:
        return DeviceCategory.PLUG
    if 'bulb' in name:
        return DeviceCategory.BULB
    if name in ('device', 'generic', 'tplinkdevice'):
        return DeviceCategory.GENERIC
    return DeviceCategory.PLUG

def create_device(
        category: DeviceCategory,
        client: TplinkClient,
        host: str,
        port: int=TPLINK_PORT,
        device_id: Optional[str]=None,
        sysinfo: Optional[JsonableDict]=None,
        timeout: Optional[float]=None,
      ) -> TplinkDevice:
    """Constructs the handle class for a category."""
    klass = DEVICE_CLASSES[category]
    return klass(client, host, port=port, device_id=device_id, sysinfo=sysinfo, timeout=timeout)
