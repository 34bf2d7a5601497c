#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Abstraction of a UDP discovery datagram used in the TP-Link Smart Home protocol.
"""

from __future__ import annotations

import json

from .internal_types import *
from .exceptions import TplinkProtocolError
from .crypto import encrypt, decrypt
from .util import case_insensitive_sysinfo

class TplinkDatagram:
    """Wrapper for a raw, obfuscated discovery datagram.

    Either side of the conversion may be supplied; the other is derived. Construction from
    raw_data decodes and parses eagerly, so a TplinkDatagram always holds a valid JSON object.
    """

    _raw_data: bytes
    """The raw (obfuscated) UDP datagram contents"""

    _plaintext: str
    """The decoded JSON text"""

    _data: JsonableDict
    """The parsed JSON object"""

    def __init__(
            self,
            data: Optional[Union[str, Mapping[str, Jsonable]]]=None,
            raw_data: Optional[bytes]=None,
          ):
        if raw_data is None:
            if data is None:
                raise ValueError("Either data or raw_data must be provided")
            plaintext = data if isinstance(data, str) else json.dumps(data, separators=(',', ':'))
            self._raw_data = encrypt(plaintext)
            self._set_plaintext(plaintext)
        else:
            if not data is None:
                raise ValueError("If raw_data is provided, data must be None")
            self._raw_data = bytes(raw_data)
            plaintext_bytes = decrypt(self._raw_data)
            try:
                plaintext = plaintext_bytes.decode('utf-8')
            except UnicodeDecodeError as e:
                raise TplinkProtocolError(f"Datagram is not valid UTF-8 after decoding: {e}", plaintext_bytes) from e
            self._set_plaintext(plaintext)

    def _set_plaintext(self, plaintext: str) -> None:
        try:
            data = json.loads(plaintext)
        except ValueError as e:
            raise TplinkProtocolError(f"Datagram is not valid JSON: {e}", plaintext) from e
        if not isinstance(data, dict):
            raise TplinkProtocolError(f"Datagram is not a JSON object", data)
        self._plaintext = plaintext
        self._data = data

    def __str__(self) -> str:
        return f"TplinkDatagram({self._plaintext})"

    def __repr__(self) -> str:
        return str(self)

    @property
    def raw_data(self) -> bytes:
        """The raw (obfuscated) UDP datagram contents"""
        return self._raw_data

    @property
    def plaintext(self) -> str:
        """The decoded JSON text of the datagram"""
        return self._plaintext

    @property
    def data(self) -> JsonableDict:
        """The parsed JSON object"""
        return self._data

    @property
    def sysinfo(self) -> JsonableDict:
        """The device descriptor carried in a discovery response, i.e. the value at
           system.get_sysinfo. Raises TplinkProtocolError if the datagram has no descriptor."""
        system = self._data.get('system')
        sysinfo = system.get('get_sysinfo') if isinstance(system, dict) else None
        if not isinstance(sysinfo, dict):
            raise TplinkProtocolError("Datagram does not contain system.get_sysinfo", self._data)
        return sysinfo

    @property
    def device_id(self) -> str:
        """The identity reported by the device. Raises TplinkProtocolError if missing."""
        device_id = case_insensitive_sysinfo(self.sysinfo).get('deviceId')
        if not isinstance(device_id, str) or device_id == '':
            raise TplinkProtocolError("Device descriptor has no deviceId", self._data)
        return device_id
