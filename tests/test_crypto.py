import struct

import pytest

from tplink_smarthome_protocol import encrypt, encrypt_with_header, decrypt, decrypt_with_header
from tplink_smarthome_protocol.crypto import HEADER_SIZE

PAYLOADS = [
    '{"system":{"get_sysinfo":{}}}',
    '{"system":{"set_relay_state":{"state":1}}}',
    '{"smartlife.iot.smartbulb.lightingservice":{"transition_light_state":{"on_off":1,"brightness":50}}}',
    '{"system":{"set_dev_alias":{"alias":"Küche ☕"}}}',
    '',
]

@pytest.mark.parametrize('payload', PAYLOADS)
def test_unframed_roundtrip(payload):
    assert decrypt(encrypt(payload)) == payload.encode('utf-8')

@pytest.mark.parametrize('payload', PAYLOADS)
def test_framed_roundtrip(payload):
    assert decrypt_with_header(encrypt_with_header(payload)) == payload.encode('utf-8')

def test_running_key_chains_on_ciphertext():
    data = encrypt('{"')
    # first byte is XORed with the initial key 171, the second with the first ciphertext byte
    assert data[0] == ord('{') ^ 171
    assert data[1] == ord('"') ^ data[0]

def test_known_sysinfo_request_prefix():
    assert encrypt('{"system":{"get_sysinfo":{}}}')[:4] == bytes([0xd0, 0xf2, 0x81, 0xf8])

def test_header_is_big_endian_plaintext_length():
    payload = '{"alias":"Küche"}'
    framed = encrypt_with_header(payload)
    assert len(framed) == HEADER_SIZE + len(payload.encode('utf-8'))
    assert struct.unpack('>I', framed[:HEADER_SIZE])[0] == len(payload.encode('utf-8'))
    assert framed[HEADER_SIZE:] == encrypt(payload)

def test_bytes_and_str_are_equivalent():
    assert encrypt(b'{"a":1}') == encrypt('{"a":1}')

def test_decrypt_never_raises_on_garbage():
    garbage = bytes(range(256))
    assert len(decrypt(garbage)) == 256
    assert decrypt_with_header(b'\x00\x01') == b''
