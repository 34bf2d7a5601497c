#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Obfuscation codec for the TP-Link Smart Home protocol.

Every payload exchanged with a device is run through a byte-wise XOR "autokey" transform:
a running key starts at INITIAL_CRYPTO_KEY, each output byte is the input byte XORed with
the running key, and the running key then becomes the ciphertext byte. This is trivially
reversible and provides no confidentiality or integrity whatsoever.

TCP messages are additionally prefixed with a 4-byte big-endian length of the plaintext.
UDP datagrams are not, since the datagram boundary delimits the message.

None of these functions raise on malformed input; garbage in produces garbage out, which
is detected later when the plaintext fails to parse.
"""

from __future__ import annotations

import struct

from .internal_types import *
from .constants import INITIAL_CRYPTO_KEY

_HEADER = struct.Struct('>I')

HEADER_SIZE = _HEADER.size
"""The size in bytes of the length header that precedes a TCP message."""

def _to_bytes(data: Union[str, bytes]) -> bytes:
    if isinstance(data, str):
        return data.encode('utf-8')
    return bytes(data)

def encrypt(plaintext: Union[str, bytes], first_key: int=INITIAL_CRYPTO_KEY) -> bytes:
    """Obfuscates plaintext for sending as a UDP datagram (no length header)."""
    key = first_key
    result = bytearray()
    for b in _to_bytes(plaintext):
        key ^= b
        result.append(key)
    return bytes(result)

def encrypt_with_header(plaintext: Union[str, bytes], first_key: int=INITIAL_CRYPTO_KEY) -> bytes:
    """Obfuscates plaintext for sending over TCP, prefixed with the 4-byte big-endian
       length of the plaintext."""
    data = _to_bytes(plaintext)
    return _HEADER.pack(len(data)) + encrypt(data, first_key)

def decrypt(ciphertext: bytes, first_key: int=INITIAL_CRYPTO_KEY) -> bytes:
    """Reverses encrypt()."""
    key = first_key
    result = bytearray()
    for b in ciphertext:
        result.append(key ^ b)
        key = b
    return bytes(result)

def decrypt_with_header(ciphertext: bytes, first_key: int=INITIAL_CRYPTO_KEY) -> bytes:
    """Reverses encrypt_with_header(). The length header is discarded without being checked."""
    return decrypt(ciphertext[HEADER_SIZE:], first_key)
