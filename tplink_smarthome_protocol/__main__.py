#!/usr/bin/env python3

# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

from __future__ import annotations

import sys
import argparse
import json
import asyncio
import logging
from signal import SIGINT, SIGTERM

from tplink_smarthome_protocol.internal_types import *

from tplink_smarthome_protocol import (
    __version__ as pkg_version,
    TplinkClient,
    TplinkDeviceEvent,
    TplinkDiscoveryError,
    DiscoveryOptions,
    DEFAULT_TIMEOUT,
    DEFAULT_DISCOVERY_INTERVAL,
    DEFAULT_OFFLINE_TOLERANCE,
    TPLINK_PORT,
    TPLINK_BROADCAST_ADDRESS,
    EVENT_NAMES,
    ERROR_EVENT,
  )
from tplink_smarthome_protocol.util import parse_host_and_port, get_broadcast_addresses

class CmdExitError(RuntimeError):
    exit_code: int

    def __init__(self, exit_code: int, msg: Optional[str]=None):
        if msg is None:
            msg = f"Command exited with return code {exit_code}"
        super().__init__(msg)
        self.exit_code = exit_code

class ArgparseExitError(CmdExitError):
    pass

class NoExitArgumentParser(argparse.ArgumentParser):
    def exit(self, status=0, message=None):
        if message:
            self._print_message(message, sys.stderr)
        raise ArgparseExitError(status, message)

def event_summary(name: str, event: TplinkDeviceEvent) -> JsonableDict:
    device = event.device
    return {
        "event": name,
        "device_id": device.device_id,
        "category": device.category.value,
        "status": event.status.value,
        "host": device.host,
        "port": device.port,
        "alias": device.alias,
        "model": device.model,
        "mac": device.mac,
      }

class CommandHandler:
    _argv: Optional[Sequence[str]]
    _parser: argparse.ArgumentParser
    _args: argparse.Namespace
    _provide_traceback: bool = True

    def __init__(self, argv: Optional[Sequence[str]]=None):
        self._argv = argv

    async def cmd_bare(self) -> int:
        print("A command is required", file=sys.stderr)
        return 1

    def _print_json(self, data: Jsonable) -> None:
        print(json.dumps(data, indent=2, sort_keys=True))
        sys.stdout.flush()

    async def cmd_search(self) -> int:
        broadcast: str = self._args.broadcast
        if self._args.subnet_broadcast:
            broadcast_addresses = get_broadcast_addresses()
            if len(broadcast_addresses) == 0:
                raise CmdExitError(1, "No local IPV4 subnet found to broadcast to")
            broadcast = broadcast_addresses[0]
        device_types: Optional[List[str]] = self._args.device_types
        if not device_types is None and len(device_types) == 0:
            device_types = None
        options = DiscoveryOptions(
            address=self._args.bind_address,
            broadcast=broadcast,
            discovery_interval=self._args.interval,
            discovery_timeout=self._args.wait_time,
            offline_tolerance=self._args.offline_tolerance,
            device_types=None if device_types is None else tuple(device_types),
            devices=tuple(self._args.devices),
          )

        async with TplinkClient(timeout=self._args.timeout) as client:
            event_names = [ name for name in EVENT_NAMES if name.startswith('device-') ]
            for name in event_names:
                async def handler(event: TplinkDeviceEvent, name: str=name) -> None:
                    print(json.dumps(event_summary(name, event), sort_keys=True))
                    sys.stdout.flush()
                client.on(name, handler)

            errors: List[BaseException] = []
            async def error_handler(exc: BaseException) -> None:
                errors.append(exc)
            client.on(ERROR_EVENT, error_handler)

            discovery = await client.start_discovery(options)
            loop = asyncio.get_running_loop()
            signals_installed = False
            if not self._provide_traceback:
                try:
                    for signal in (SIGINT, SIGTERM):
                        loop.add_signal_handler(signal, discovery.set_final_result)
                    signals_installed = True
                except NotImplementedError:
                    pass
            try:
                await discovery.wait_for_done()
            except TplinkDiscoveryError:
                # the failure was delivered to error_handler
                pass
            finally:
                if signals_installed:
                    for signal in (SIGINT, SIGTERM):
                        loop.remove_signal_handler(signal)
            if len(errors) > 0:
                raise CmdExitError(1, f"Discovery failed: {errors[0]}")
        return 0

    async def cmd_sysinfo(self) -> int:
        host, port = parse_host_and_port(self._args.host, TPLINK_PORT)
        async with TplinkClient(timeout=self._args.timeout) as client:
            sysinfo = await client.get_sysinfo(host, port=port)
        self._print_json(sysinfo)
        return 0

    async def cmd_send(self) -> int:
        host, port = parse_host_and_port(self._args.host, TPLINK_PORT)
        payload: str = self._args.payload
        try:
            json.loads(payload)
        except ValueError as e:
            raise CmdExitError(1, f"PAYLOAD is not valid JSON: {e}") from e
        async with TplinkClient(timeout=self._args.timeout) as client:
            response = await client.send(host, payload, port=port)
        self._print_json(response)
        return 0

    async def cmd_version(self) -> int:
        print(pkg_version)
        return 0

    async def arun(self) -> int:
        """Run the tplink-smarthome command-line tool with provided arguments

        Args:
            argv (Optional[Sequence[str]], optional):
                A list of commandline arguments (NOT including the program as argv[0]!),
                or None to use sys.argv[1:]. Defaults to None.

        Returns:
            int: The exit code that would be returned if this were run as a standalone command.
        """
        parser = NoExitArgumentParser(description="Discover and query TP-Link Smart Home devices.")


        # ======================= Main command

        self._parser = parser
        parser.add_argument('--traceback', "--tb", action='store_true', default=False,
                            help='Display detailed exception information')
        parser.add_argument('--log-level', dest='log_level', default='warning',
                            choices=['debug', 'info', 'warning', 'error', 'critical'],
                            help='''The logging level to use. Default: warning''')
        parser.set_defaults(func=self.cmd_bare)

        subparsers = parser.add_subparsers(
                            title='Commands',
                            description='Valid commands',
                            help='Additional help available with "<command-name> -h"')


        # ======================= search

        parser_search = subparsers.add_parser('search', description="Discover devices by UDP broadcast, printing one JSON line per device event")
        parser_search.add_argument('--wait-time', dest='wait_time', type=float, default=10.0,
                            help='''How long to run discovery, in seconds. 0 runs until interrupted. Default: 10''')
        parser_search.add_argument('--interval', type=float, default=DEFAULT_DISCOVERY_INTERVAL,
                            help=f'''The interval between discovery broadcasts, in seconds. Default: {DEFAULT_DISCOVERY_INTERVAL}''')
        parser_search.add_argument('--offline-tolerance', dest='offline_tolerance', type=int, default=DEFAULT_OFFLINE_TOLERANCE,
                            help=f'''Unanswered broadcasts before a device is reported offline. Default: {DEFAULT_OFFLINE_TOLERANCE}''')
        parser_search.add_argument('--broadcast', default=TPLINK_BROADCAST_ADDRESS,
                            help=f'''The address to broadcast discovery requests to. Default: {TPLINK_BROADCAST_ADDRESS}''')
        parser_search.add_argument('--subnet-broadcast', dest='subnet_broadcast', action='store_true', default=False,
                            help='''Broadcast to the directed broadcast address of the preferred local subnet instead of --broadcast''')
        parser_search.add_argument('-b', '--bind', dest='bind_address', default='',
                            help='''The local IP address to bind to. Default: all interfaces''')
        parser_search.add_argument('-t', '--type', dest='device_types', action='append', default=[],
                            choices=['plug', 'bulb', 'device'],
                            help='''Only report devices of this type. May be repeated. Default: all types''')
        parser_search.add_argument('-d', '--device', dest='devices', action='append', default=[],
                            help='''A HOST[:PORT] to query directly in addition to the broadcast. May be repeated.''')
        parser_search.add_argument('--timeout', type=float, default=DEFAULT_TIMEOUT,
                            help=f'''The timeout for TCP requests, in seconds. Default: {DEFAULT_TIMEOUT}''')
        parser_search.set_defaults(func=self.cmd_search)

        # ======================= sysinfo

        parser_sysinfo = subparsers.add_parser('sysinfo', description="Print the descriptor reported by a device")
        parser_sysinfo.add_argument('host', help='''The device, as HOST[:PORT]''')
        parser_sysinfo.add_argument('--timeout', type=float, default=DEFAULT_TIMEOUT,
                            help=f'''The request timeout, in seconds. Default: {DEFAULT_TIMEOUT}''')
        parser_sysinfo.set_defaults(func=self.cmd_sysinfo)

        # ======================= send

        parser_send = subparsers.add_parser('send', description="Send a JSON request to a device and print the response")
        parser_send.add_argument('host', help='''The device, as HOST[:PORT]''')
        parser_send.add_argument('payload', help='''The JSON request; e.g. '{"system":{"get_sysinfo":{}}}' ''')
        parser_send.add_argument('--timeout', type=float, default=DEFAULT_TIMEOUT,
                            help=f'''The request timeout, in seconds. Default: {DEFAULT_TIMEOUT}''')
        parser_send.set_defaults(func=self.cmd_send)

        # ======================= version

        parser_version = subparsers.add_parser('version',
                                description='''Display version information.''')
        parser_version.set_defaults(func=self.cmd_version)

        # =========================================================

        try:
            args = parser.parse_args(self._argv)
        except ArgparseExitError as ex:
            return ex.exit_code
        traceback: bool = args.traceback
        self._provide_traceback = traceback

        try:
            logging.basicConfig(
                level=logging.getLevelName(args.log_level.upper()),
            )
            self._args = args
            func: Callable[[], Awaitable[int]] = args.func
            logging.debug(f"Running command {func.__name__}, tb = {traceback}")
            rc = await func()
            logging.debug(f"Command {func.__name__} returned {rc}")
        except Exception as ex:
            if isinstance(ex, CmdExitError):
                rc = ex.exit_code
            else:
                rc = 1
            if rc != 0:
                if traceback:
                    raise
            print(f"tplink-smarthome: error: {ex}", file=sys.stderr)
        except BaseException as ex:
            print(f"tplink-smarthome: Unhandled exception: {ex}", file=sys.stderr)
            raise

        return rc

    def run(self) -> int:
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            rc = loop.run_until_complete(self.arun())
        finally:
            loop.close()
        return rc

def run(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = CommandHandler(argv).run()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

async def arun(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = await CommandHandler(argv).arun()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

# allow running with "python3 -m", or as a standalone script
if __name__ == "__main__":
    sys.exit(run())
