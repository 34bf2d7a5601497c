# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Package tplink_smarthome_protocol discovers and talks to TP-Link Smart Home devices on a local network
"""

# The following line is automatically updated with "semantic-release version"
__version__ =  "0.14.0"


__all__ = [ '__version__' ]
