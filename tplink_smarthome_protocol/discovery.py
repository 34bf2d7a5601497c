#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
TplinkDiscovery -- A single discovery run that:

  1. Binds a UDP socket and enables broadcast
  2. Every discovery_interval seconds (first immediately), marks devices that have stopped
     responding offline, then broadcasts a get_sysinfo request (and sends it to any explicitly
     configured devices)
  3. Decodes responses, updates the device registry, and emits new/online/offline events
  4. Stops when discovery_timeout elapses, when stopped explicitly, or on a socket error
     (which is also reported on the "error" event channel)

A run is started by TplinkClient.start_discovery(); a client never has more than one active run.
"""

from __future__ import annotations

import asyncio
import socket
from enum import Enum
from typing import TYPE_CHECKING

from .internal_types import *
from .pkg_logging import logger
from .constants import SYSINFO_REQUEST
from .config import DiscoveryOptions
from .datagram import TplinkDatagram
from .device import DeviceStatus
from .events import DeviceEventKind, TplinkDeviceEvent, TplinkEventEmitter, ERROR_EVENT
from .exceptions import TplinkDiscoveryError, TplinkProtocolError
from .registry import TplinkDeviceRegistry, next_sequence
from .resolver import category_of, create_device
from .udp_socket import TplinkSocket, TplinkDatagramSubscriber

if TYPE_CHECKING:
    from .client import TplinkClient

class DiscoveryState(Enum):
    IDLE = 'idle'
    BOUND = 'bound'
    ACTIVE = 'active'
    STOPPED = 'stopped'

class TplinkDiscovery(TplinkSocket):
    """A single discovery run. See the module documentation."""

    client: TplinkClient
    """The client that handles are created for."""

    options: DiscoveryOptions

    registry: TplinkDeviceRegistry
    """The registry this run updates. It outlives the run."""

    emitter: TplinkEventEmitter

    sequence: int = 0
    """The discovery sequence number. Incremented after every broadcast, wrapping to zero."""

    tick_count: int = 0
    """The number of broadcasts sent by this run."""

    discovery_datagram: TplinkDatagram

    collector_task: Optional[asyncio.Task[None]] = None
    """The task that processes discovery responses."""

    broadcaster_task: Optional[asyncio.Task[None]] = None
    """The task that sends periodic discovery broadcasts."""

    timeout_task: Optional[asyncio.Task[None]] = None
    """The task that ends the run after discovery_timeout. None if the run is indefinite."""

    monitor_task: Optional[asyncio.Task[None]] = None
    """The task that reports a failed run on the error channel."""

    _subscriber: Optional[TplinkDatagramSubscriber] = None

    def __init__(
            self,
            client: TplinkClient,
            registry: TplinkDeviceRegistry,
            emitter: TplinkEventEmitter,
            options: Optional[DiscoveryOptions]=None,
            sequence: int=0,
          ) -> None:
        super().__init__()
        self.client = client
        self.registry = registry
        self.emitter = emitter
        self.options = DiscoveryOptions() if options is None else options
        self.sequence = sequence
        self.discovery_datagram = TplinkDatagram(SYSINFO_REQUEST)

    @property
    def state(self) -> DiscoveryState:
        if self.final_result.done():
            return DiscoveryState.STOPPED
        if not self.broadcaster_task is None:
            return DiscoveryState.ACTIVE
        if not self.bound_addr is None:
            return DiscoveryState.BOUND
        return DiscoveryState.IDLE

    @property
    def is_running(self) -> bool:
        return self.state in (DiscoveryState.BOUND, DiscoveryState.ACTIVE)

    #@override
    async def create_socket(self) -> socket.socket:
        bind_addr = (self.options.address, self.options.port)
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.bind(bind_addr)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        except OSError as e:
            sock.close()
            raise TplinkDiscoveryError(f"Unable to bind UDP socket to {bind_addr}: {e}") from e
        logger.debug(f"Discovery UDP socket listening on {sock.getsockname()}")
        return sock

    #@override
    async def finish_start(self) -> None:
        self._subscriber = TplinkDatagramSubscriber(self)
        # Tasks first run in creation order, so the collector registers its subscriber before
        # the broadcaster sends the first request.
        self.monitor_task = asyncio.create_task(self._run_monitor_task())
        self.collector_task = asyncio.create_task(self._run_collector_task())
        self.broadcaster_task = asyncio.create_task(self._run_broadcaster_task())
        if self.options.discovery_timeout > 0:
            self.timeout_task = asyncio.create_task(self._run_timeout_task())
        logger.info(
            f"Discovery started on {self.bound_addr}, broadcasting to {self.options.broadcast}:{self.options.broadcast_port} "
            f"every {self.options.discovery_interval} seconds"
          )

    #@override
    async def wait_for_dependents_done(self) -> None:
        current_task = asyncio.current_task()
        # The monitor is allowed to finish so a failure is always reported.
        if not self.monitor_task is None and self.monitor_task is not current_task:
            await asyncio.wait({self.monitor_task})
        for task in (self.timeout_task, self.broadcaster_task, self.collector_task):
            if task is None or task is current_task:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f"Exception while cancelling discovery task: {e}")
        await self.emitter.wait_for_handlers()

    def discovery_tick(self) -> None:
        """One broadcast cycle: mark stale devices offline, send the discovery request, and advance
           the sequence number. Does nothing once the run has stopped."""
        if self.final_result.done() or not self.is_open:
            logger.debug("Discovery stopped; skipping discovery tick")
            return
        logger.debug(f"Discovery tick, sequence={self.sequence}")
        for record in self.registry._sweep(self.sequence, self.options.offline_tolerance):
            self.emitter.emit_device_event(TplinkDeviceEvent(DeviceEventKind.OFFLINE, record.device, record.status))

        targets: List[HostAndPort] = [ (self.options.broadcast, self.options.broadcast_port) ]
        targets.extend(self.options.devices)
        for addr in targets:
            if not self.is_open:
                # closed by a send error on a previous target
                return
            try:
                self.sendto(self.discovery_datagram, addr)
            except (OSError, ValueError) as e:
                logger.error(f"Unable to send discovery request to {addr}: {e}")
                self.set_final_exception(TplinkDiscoveryError(f"Unable to send discovery request to {addr}: {e}"))
                return

        self.sequence = next_sequence(self.sequence)
        self.tick_count += 1

    def handle_datagram(self, addr: HostAndPort, datagram: TplinkDatagram) -> None:
        """Updates the registry from one discovery response and emits the resulting event."""
        if self.final_result.done():
            logger.debug(f"Discovery stopped; ignoring response from {addr}")
            return
        try:
            sysinfo = datagram.sysinfo
            device_id = datagram.device_id
        except TplinkProtocolError as e:
            logger.warning(f"Ignoring discovery response from {addr}: {e}")
            return
        host, port = addr
        category = category_of(sysinfo)
        if not self.options.accepts(category):
            logger.debug(f"Filtered out {device_id} ({category.value}); allowed device types: {self.options.device_types}")
            return

        event: TplinkDeviceEvent
        record = self.registry.get(device_id)
        if record is None:
            device = create_device(
                category,
                self.client,
                host,
                port=port,
                device_id=device_id,
                sysinfo=sysinfo,
                **self.options.device_options
              )
            record = self.registry._add(device, self.sequence)
            event = TplinkDeviceEvent(DeviceEventKind.NEW, record.device, record.status)
        else:
            record = self.registry._refresh(device_id, host, port, sysinfo, self.sequence)
            event = TplinkDeviceEvent(DeviceEventKind.ONLINE, record.device, record.status)
        self.emitter.emit_device_event(event)

    async def _run_broadcaster_task(self) -> None:
        interval = self.options.discovery_interval
        logger.debug(f"Discovery broadcaster task starting, broadcasting every {interval} seconds")
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        n = 0
        try:
            while not self.final_result.done():
                self.discovery_tick()
                n += 1
                delay = start_time + n * interval - loop.time()
                if delay < 0:
                    # Ticks that were missed entirely are skipped rather than sent in a burst
                    n = int((loop.time() - start_time) / interval) + 1
                    delay = start_time + n * interval - loop.time()
                await asyncio.wait({self.final_result}, timeout=delay)
        except asyncio.CancelledError:
            logger.debug("Discovery broadcaster task cancelled; exiting")
            raise
        except Exception as e:
            logger.error(f"Discovery broadcaster task exiting with exception: {e}")
            self.set_final_exception(TplinkDiscoveryError(f"Discovery broadcast failed: {e}"))
            return
        logger.debug("Discovery broadcaster task exiting")

    async def _run_collector_task(self) -> None:
        logger.debug("Discovery collector task starting")
        subscriber = self._subscriber
        assert not subscriber is None
        try:
            async with subscriber:
                async for addr, datagram in subscriber:
                    self.handle_datagram(addr, datagram)
        except asyncio.CancelledError:
            logger.debug("Discovery collector task cancelled; exiting")
            raise
        except TplinkDiscoveryError as e:
            logger.debug(f"Discovery collector task ending with run failure: {e}")
            return
        except Exception as e:
            logger.error(f"Discovery collector task exiting with exception: {e}")
            self.set_final_exception(TplinkDiscoveryError(f"Discovery response processing failed: {e}"))
            return
        logger.debug("Discovery collector task exiting")

    async def _run_timeout_task(self) -> None:
        done, _ = await asyncio.wait({self.final_result}, timeout=self.options.discovery_timeout)
        if len(done) == 0:
            logger.debug(f"Discovery timeout of {self.options.discovery_timeout} seconds reached, stopping discovery")
            self.set_final_result()

    async def _run_monitor_task(self) -> None:
        await asyncio.wait({self.final_result})
        if self.final_result.cancelled():
            return
        exc = self.final_result.exception()
        if exc is None:
            logger.info(f"Discovery stopped after {self.tick_count} broadcasts")
            return
        logger.error(f"Discovery stopped due to error: {exc}")
        self.emitter.emit(ERROR_EVENT, exc)
