#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Lifecycle events reported by discovery.

Every device transition (new, online, offline) is delivered as a TplinkDeviceEvent on the
generic "device-<kind>" channel, and again on the "<category>-<kind>" channel for plugs and
bulbs, so a listener can subscribe to every device or to one category only. Failures that end
a discovery run are delivered on the "error" channel.
"""

from __future__ import annotations

import asyncio
from enum import Enum

from .internal_types import *
from .pkg_logging import logger
from .device import DeviceCategory, DeviceStatus, TplinkDevice

class DeviceEventKind(Enum):
    NEW = 'new'
    ONLINE = 'online'
    OFFLINE = 'offline'

ERROR_EVENT = 'error'
"""The name of the channel on which discovery failures are reported."""

class TplinkDeviceEvent:
    """A single lifecycle transition of a discovered device."""

    kind: DeviceEventKind
    device: TplinkDevice
    status: DeviceStatus
    """The status of the device after the transition."""

    def __init__(self, kind: DeviceEventKind, device: TplinkDevice, status: DeviceStatus):
        self.kind = kind
        self.device = device
        self.status = status

    @property
    def device_id(self) -> Optional[str]:
        return self.device.device_id

    @property
    def category(self) -> DeviceCategory:
        return self.device.category

    @property
    def event_names(self) -> List[str]:
        """The channels this event is delivered on, generic channel first."""
        result = [ event_name(DeviceCategory.GENERIC, self.kind) ]
        if self.category != DeviceCategory.GENERIC:
            result.append(event_name(self.category, self.kind))
        return result

    def __str__(self) -> str:
        return f"TplinkDeviceEvent({self.kind.value}, {self.device})"

    def __repr__(self) -> str:
        return str(self)

def event_name(category: DeviceCategory, kind: DeviceEventKind) -> str:
    """Returns the channel name for a category and kind; e.g., "plug-offline"."""
    return f"{category.value}-{kind.value}"

EVENT_NAMES: List[str] = [ event_name(c, k) for c in DeviceCategory for k in DeviceEventKind ] + [ ERROR_EVENT ]
"""All valid event channel names."""

EventHandler = Callable[[Any], Awaitable[None]]
"""A callback for an event. Device channels pass a TplinkDeviceEvent; the error channel passes
   the exception."""

class TplinkEventEmitter:
    """Delivers events to async handlers registered by channel name.

    Each handler call runs in its own task, so emitting never waits for a handler; a slow
    handler delays neither discovery responses nor broadcasts. Calls are started in
    registration order.
    """

    handlers: Dict[int, Tuple[str, EventHandler]]
    """The registered handlers, indexed by ID number."""

    i_next_handler: int = 0
    """The next handler ID to assign."""

    handler_tasks: Set[asyncio.Task[None]]
    """Handler calls that have not yet finished."""

    def __init__(self) -> None:
        self.handlers = {}
        self.handler_tasks = set()

    def on(self, name: str, handler: EventHandler) -> int:
        """Adds a handler to be called for each event on the named channel. Returns an ID that
           can be passed to off()."""
        if not name in EVENT_NAMES:
            raise ValueError(f"Unknown event name '{name}'; expected one of {EVENT_NAMES}")
        i = self.i_next_handler
        self.i_next_handler += 1
        self.handlers[i] = (name, handler)
        return i

    def off(self, i: int) -> None:
        """Removes a previously added handler."""
        del self.handlers[i]

    async def _call_handler(self, name: str, handler: EventHandler, arg: Any) -> None:
        try:
            await handler(arg)
        except Exception as e:
            logger.warning(f"Handler for '{name}' raised exception processing {arg}: {e}")

    def emit(self, name: str, arg: Any) -> None:
        """Starts a call of every handler registered for a channel. A handler that raises is
           logged and does not affect the others. Must be called from the event loop."""
        for handler_name, handler in list(self.handlers.values()):
            if handler_name == name:
                task = asyncio.create_task(self._call_handler(name, handler, arg))
                self.handler_tasks.add(task)
                task.add_done_callback(self.handler_tasks.discard)

    def emit_device_event(self, event: TplinkDeviceEvent) -> None:
        """Delivers a device event on each of its channels."""
        logger.debug(f"Emitting {event} on {event.event_names}")
        for name in event.event_names:
            self.emit(name, event)

    async def wait_for_handlers(self) -> None:
        """Waits until every handler call started so far has finished, including calls started
           by those handlers. Returns immediately when called from a handler, since a handler
           waiting on its peers could wait on itself."""
        if asyncio.current_task() in self.handler_tasks:
            return
        while len(self.handler_tasks) > 0:
            await asyncio.wait(set(self.handler_tasks))

