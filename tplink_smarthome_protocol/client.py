# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
TplinkClient -- A TP-Link Smart Home client that can:

  1. Send requests to a device over TCP and return the parsed response
  2. Create typed device handles, either directly or by asking a device what it is
  3. Discover devices on the local network by UDP broadcast, maintain a registry of them,
     and report new/online/offline transitions as events
"""

from __future__ import annotations

from .internal_types import *
from .pkg_logging import logger
from .constants import TPLINK_PORT, DEFAULT_TIMEOUT, SYSINFO_REQUEST
from .config import DiscoveryOptions
from .device import DeviceCategory, TplinkDevice
from .events import TplinkEventEmitter, EventHandler, ERROR_EVENT
from .exceptions import TplinkDiscoveryError, TplinkProtocolError
from .registry import TplinkDeviceRegistry
from .resolver import category_of, category_from_name, create_device
from .discovery import TplinkDiscovery
from .tcp_client import send_request

class TplinkClient(AsyncContextManager['TplinkClient']):
    """
    A TP-Link Smart Home client.

    Usage:
        async with TplinkClient() as client:
            client.on('plug-new', on_new_plug)
            await client.start_discovery(discovery_timeout=5.0)
            await client.discovery.wait_for_done()
            for device in client.devices.devices:
                print(device)
    """

    timeout: float
    """The default timeout (in seconds) for TCP requests. 0 waits indefinitely."""

    discovery: Optional[TplinkDiscovery] = None
    """The current (or most recently finished) discovery run, or None."""

    _registry: TplinkDeviceRegistry
    _emitter: TplinkEventEmitter

    def __init__(self, timeout: float=DEFAULT_TIMEOUT) -> None:
        if timeout < 0:
            raise ValueError(f"timeout must not be negative, got {timeout}")
        self.timeout = timeout
        self._registry = TplinkDeviceRegistry()
        self._emitter = TplinkEventEmitter()

    @property
    def devices(self) -> TplinkDeviceRegistry:
        """The read-only registry of devices found by discovery, indexed by device ID."""
        return self._registry

    async def send(
            self,
            host: str,
            payload: Union[str, Mapping[str, Jsonable]],
            port: int=TPLINK_PORT,
            timeout: Optional[float]=None,
          ) -> JsonableDict:
        """Sends payload to a device over TCP and returns the parsed JSON response.

        Parameters:
            host:    The host name or IP address of the device.
            payload: The request, as JSON text or a JSON-serializable mapping;
                       e.g. {"system": {"get_sysinfo": {}}}.
            port:    The TCP port of the device. Defaults to 9999.
            timeout: The timeout (in seconds) for the whole exchange. Defaults to self.timeout.

        All responses carry an err_code, 0 meaning success; a non-zero err_code raises
        TplinkResponseError. See tcp_client.send_request() for the other exceptions raised.
        """
        if timeout is None:
            timeout = self.timeout
        logger.debug(f"client.send(host={host}, port={port}, timeout={timeout}, payload={payload})")
        return await send_request(host, payload, port=port, timeout=timeout)

    async def get_sysinfo(self, host: str, port: int=TPLINK_PORT, timeout: Optional[float]=None) -> JsonableDict:
        """Requests {"system":{"get_sysinfo":{}}} from a device and returns the descriptor."""
        response = await self.send(host, SYSINFO_REQUEST, port=port, timeout=timeout)
        system = response.get('system')
        sysinfo = system.get('get_sysinfo') if isinstance(system, dict) else None
        if not isinstance(sysinfo, dict):
            raise TplinkProtocolError(f"Response from {host}:{port} does not contain system.get_sysinfo", response)
        return sysinfo

    def get_general_device(self, host: str, port: int=TPLINK_PORT, **device_options: Any) -> TplinkDevice:
        """Creates a handle that supports only the operations common to all devices."""
        return create_device(DeviceCategory.GENERIC, self, host, port=port, **device_options)

    def get_plug(self, host: str, port: int=TPLINK_PORT, **device_options: Any) -> TplinkDevice:
        """Creates a plug handle without contacting the device."""
        return create_device(DeviceCategory.PLUG, self, host, port=port, **device_options)

    def get_bulb(self, host: str, port: int=TPLINK_PORT, **device_options: Any) -> TplinkDevice:
        """Creates a bulb handle without contacting the device."""
        return create_device(DeviceCategory.BULB, self, host, port=port, **device_options)

    def get_device_from_type(
            self,
            type_name: Union[str, DeviceCategory, Type[TplinkDevice]],
            host: str,
            port: int=TPLINK_PORT,
            **device_options: Any
          ) -> TplinkDevice:
        """Creates a handle for a category named by type_name ("plug", "bulb", a handle class, ...).
           Unrecognized names create a plug."""
        return create_device(category_from_name(type_name), self, host, port=port, **device_options)

    def get_device_from_sysinfo(
            self,
            sysinfo: JsonableDict,
            host: str,
            port: int=TPLINK_PORT,
            **device_options: Any
          ) -> TplinkDevice:
        """Creates a handle of the category that the descriptor sysinfo indicates. No I/O is performed."""
        return create_device(category_of(sysinfo), self, host, port=port, sysinfo=sysinfo, **device_options)

    async def get_device(
            self,
            host: str,
            port: int=TPLINK_PORT,
            timeout: Optional[float]=None,
            **device_options: Any
          ) -> TplinkDevice:
        """Asks a device for its descriptor and creates a handle of the matching category."""
        sysinfo = await self.get_sysinfo(host, port=port, timeout=timeout)
        if not timeout is None:
            device_options.setdefault('timeout', timeout)
        return self.get_device_from_sysinfo(sysinfo, host, port=port, **device_options)

    def on(self, event_name: str, handler: EventHandler) -> int:
        """Adds an async handler for an event channel: "device-new", "device-online", "device-offline",
           the same for "plug-" and "bulb-", or "error". Returns an ID for off()."""
        return self._emitter.on(event_name, handler)

    def off(self, handler_id: int) -> None:
        """Removes a handler added with on()."""
        self._emitter.off(handler_id)

    async def start_discovery(self, options: Optional[DiscoveryOptions]=None, **overrides: Any) -> TplinkDiscovery:
        """Starts discovering devices on the local network.

        Parameters:
            options:   The discovery configuration. Defaults to DiscoveryOptions().
            overrides: Individual DiscoveryOptions fields that replace those in options; e.g.
                         discovery_timeout=5.0, device_types=['plug'].

        Returns the running TplinkDiscovery once its socket is bound and the first broadcast has
        been scheduled. Raises TplinkDiscoveryError if discovery is already running on this client
        or the socket cannot be bound; a bind failure is also reported on the "error" channel.
        """
        if options is None:
            options = DiscoveryOptions(**overrides)
        elif len(overrides) > 0:
            options = options.replace(**overrides)
        if not self.discovery is None and not self.discovery.final_result.done():
            raise TplinkDiscoveryError("Discovery is already running on this client")
        sequence = 0 if self.discovery is None else self.discovery.sequence
        discovery = TplinkDiscovery(self, self._registry, self._emitter, options, sequence=sequence)
        self.discovery = discovery
        try:
            await discovery.start()
        except TplinkDiscoveryError as e:
            logger.error(f"client.start_discovery: {e}")
            self._emitter.emit(ERROR_EVENT, e)
            await self._emitter.wait_for_handlers()
            raise
        return discovery

    async def stop_discovery(self) -> None:
        """Stops discovery and closes the UDP socket. Does nothing if discovery is not running."""
        discovery = self.discovery
        if discovery is None:
            return
        logger.debug("client.stop_discovery()")
        try:
            await discovery.stop_and_wait()
        except TplinkDiscoveryError as e:
            # already reported on the error channel when the run failed
            logger.debug(f"client.stop_discovery: run had failed: {e}")

    async def __aenter__(self) -> TplinkClient:
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        await self.stop_discovery()
        return False
