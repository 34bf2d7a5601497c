# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Constants used by this package"""

TPLINK_PORT = 9999
"""The TCP and UDP port number that TP-Link Smart Home devices listen on."""

TPLINK_BROADCAST_ADDRESS = "255.255.255.255"
"""The default broadcast address that discovery requests are sent to."""

INITIAL_CRYPTO_KEY = 171
"""The starting value of the running XOR key used to obfuscate every payload."""

DEFAULT_TIMEOUT = 5.0
"""The default timeout (in seconds) for a single TCP request."""

DEFAULT_DISCOVERY_INTERVAL = 10.0
"""The default interval (in seconds) between discovery broadcasts."""

DEFAULT_DISCOVERY_TIMEOUT = 0.0
"""The default duration (in seconds) of a discovery run. 0 runs until explicitly stopped."""

DEFAULT_OFFLINE_TOLERANCE = 3
"""The default number of consecutive unanswered broadcasts before a device is considered offline."""

SYSINFO_REQUEST = '{"system":{"get_sysinfo":{}}}'
"""The request that asks a device to describe itself. Also used as the discovery datagram."""

DISCOVERY_SEQUENCE_MODULUS = 2 ** 32
"""The discovery sequence counter wraps to zero when it reaches this value."""

MAX_DATAGRAM_SIZE = 65507
"""The largest UDP payload that can be received."""
