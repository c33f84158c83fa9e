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

from wemo_protocol.internal_types import *

from wemo_protocol import (
    __version__ as pkg_version,
    WemoConfig,
    WemoDevice,
    WemoDeviceClient,
    InsightDeviceClient,
    AuthMode,
    CipherMode,
    EncryptionMethod,
    WifiConnectParams,
    DiscoveryCooldown,
    discover_devices,
    get_device_by_address,
    supports_insight,
    detect_setup_device,
    encrypt_wifi_password,
    send_wifi_connect_command,
    get_ap_list,
  )
from wemo_protocol.constants import DEFAULT_DEVICE_PORT

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

def print_json(data: Jsonable) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))
    sys.stdout.flush()

class CommandHandler:
    _argv: Optional[Sequence[str]]
    _parser: argparse.ArgumentParser
    _args: argparse.Namespace
    _config: WemoConfig
    _cooldown: DiscoveryCooldown
    _provide_traceback: bool = True

    def __init__(self, argv: Optional[Sequence[str]]=None):
        self._argv = argv

    async def cmd_bare(self) -> int:
        print("A command is required", file=sys.stderr)
        return 1

    def _get_bind_addresses(self) -> Optional[List[str]]:
        bind_addresses: Optional[List[str]] = self._args.bind_addresses
        if bind_addresses is None or len(bind_addresses) == 0:
            if self._config.bind_addresses is None:
                return None
            return list(self._config.bind_addresses)
        return bind_addresses

    async def _lookup_device(self) -> WemoDevice:
        host: str = self._args.host
        port: int = self._args.port
        device = await get_device_by_address(host, port, timeout=self._config.description_timeout)
        if device is None:
            raise CmdExitError(1, f"No WeMo device found at {host}:{port}")
        return device

    def _client_kwargs(self) -> Dict[str, Any]:
        return dict(
            retries=self._config.retries,
            retry_delay=self._config.retry_delay,
            timeout=self._config.request_timeout,
          )

    async def _get_client(self) -> WemoDeviceClient:
        return WemoDeviceClient(await self._lookup_device(), **self._client_kwargs())

    async def cmd_discover(self) -> int:
        timeout: Optional[float] = self._args.timeout
        if timeout is None:
            timeout = self._config.discovery_timeout
        result = await discover_devices(
            timeout=timeout,
            cooldown=self._cooldown,
            bind_addresses=self._get_bind_addresses(),
            description_timeout=self._config.description_timeout,
          )
        print_json(result.to_jsonable())
        return 0

    async def cmd_lookup(self) -> int:
        device = await self._lookup_device()
        print_json(device.to_jsonable())
        return 0

    async def cmd_state(self) -> int:
        client = await self._get_client()
        state = await client.get_state()
        print_json(dict(state.to_jsonable(), isOn=state.is_on))
        return 0

    async def cmd_on(self) -> int:
        client = await self._get_client()
        await client.turn_on()
        return 0

    async def cmd_off(self) -> int:
        client = await self._get_client()
        await client.turn_off()
        return 0

    async def cmd_toggle(self) -> int:
        client = await self._get_client()
        state = await client.toggle()
        print_json(dict(state.to_jsonable(), isOn=state.is_on))
        return 0

    async def cmd_rename(self) -> int:
        client = await self._get_client()
        await client.rename(self._args.name)
        return 0

    async def cmd_insight(self) -> int:
        device = await self._lookup_device()
        if not supports_insight(device):
            raise CmdExitError(1, f"{device.name} is a {device.device_type.value} device, not an Insight")
        client = InsightDeviceClient(device, **self._client_kwargs())
        if self._args.raw:
            params = await client.get_insight_params()
            print_json({
                "state": int(params.state),
                "lastChange": params.last_change,
                "onFor": params.on_for,
                "onToday": params.on_today,
                "onTotal": params.on_total,
                "timePeriod": params.time_period,
                "averagePower": params.average_power,
                "instantPower": params.instant_power,
                "todayEnergy": params.today_energy,
                "totalEnergy": params.total_energy,
                "standbyThreshold": params.standby_threshold,
              })
        else:
            power = await client.get_power_data()
            print_json(power.to_jsonable())
        return 0

    async def cmd_setup_detect(self) -> int:
        result = await detect_setup_device()
        print_json(result.to_jsonable())
        return 0 if result.device is not None else 1

    async def cmd_setup_aps(self) -> int:
        aps = await get_ap_list(timeout=self._config.request_timeout)
        print_json([ap.to_jsonable() for ap in aps])
        return 0

    async def cmd_setup_connect(self) -> int:
        mac: Optional[str] = self._args.mac
        serial: Optional[str] = self._args.serial
        if mac is None or serial is None:
            detection = await detect_setup_device()
            if detection.device is None:
                raise CmdExitError(1, detection.error)
            mac = detection.device.mac if mac is None else mac
            serial = detection.device.serial if serial is None else serial
        params = WifiConnectParams(
            ssid=self._args.ssid,
            password=self._args.password,
            mac=mac,
            serial=serial,
            auth=AuthMode(self._args.auth),
            encrypt=CipherMode(self._args.encrypt),
            channel=self._args.channel,
            method=EncryptionMethod(self._args.method),
            add_lengths=not self._args.no_lengths,
          )
        result = await send_wifi_connect_command(params, timeout=self._config.request_timeout)
        data = result.to_jsonable()
        if not self._args.diagnostics:
            del data["diagnostics"]
        print_json(data)
        return 0 if result.success else 1

    async def cmd_encrypt(self) -> int:
        print(encrypt_wifi_password(
            self._args.password,
            self._args.mac,
            self._args.serial,
            method=EncryptionMethod(self._args.method),
            add_lengths=not self._args.no_lengths,
          ))
        return 0

    async def cmd_version(self) -> int:
        print(pkg_version)
        return 0

    async def arun(self) -> int:
        """Run the wemo command-line tool with provided arguments

        Args:
            argv (Optional[Sequence[str]], optional):
                A list of commandline arguments (NOT including the program as argv[0]!),
                or None to use sys.argv[1:]. Defaults to None.

        Returns:
            int: The exit code that would be returned if this were run as a standalone command.
        """
        parser = NoExitArgumentParser(description="Discover, control and set up WeMo devices on the local network.")


        # ======================= Main command

        self._parser = parser
        parser.add_argument('--traceback', "--tb", action='store_true', default=False,
                            help='Display detailed exception information')
        parser.add_argument('--log-level', dest='log_level', default='warning',
                            choices=['debug', 'info', 'warning', 'error', 'critical'],
                            help='''The logging level to use. Default: warning''')
        parser.add_argument('--config', dest='config_file', default=None,
                            help='''A JSON configuration file. WEMO_* environment variables override it.''')
        parser.set_defaults(func=self.cmd_bare)

        subparsers = parser.add_subparsers(
                            title='Commands',
                            description='Valid commands',
                            help='Additional help available with "<command-name> -h"')

        def add_device_args(p: argparse.ArgumentParser) -> None:
            p.add_argument('host', help='The IP address or hostname of the device')
            p.add_argument('-p', '--port', type=int, default=DEFAULT_DEVICE_PORT,
                           help=f'''The device's HTTP port. Default: {DEFAULT_DEVICE_PORT}''')

        def add_encryption_args(p: argparse.ArgumentParser) -> None:
            p.add_argument('--method', type=int, default=EncryptionMethod.METHOD_2.value,
                           choices=[m.value for m in EncryptionMethod],
                           help='''The password key derivation method for the device's firmware. Default: 2''')
            p.add_argument('--no-lengths', dest='no_lengths', action='store_true', default=False,
                           help='''Do not append the length suffix to the encrypted password''')

        # ======================= discover

        parser_discover = subparsers.add_parser('discover', description="Search the local network for WeMo devices")
        parser_discover.add_argument('--timeout', type=float, default=None,
                            help='''The scan duration, in seconds (1-30). Default: 5''')
        parser_discover.add_argument('-b', '--bind', dest="bind_addresses", action='append', default=[],
                            help='''The local unicast IP address to send from. May be repeated. Default: all usable local interfaces.''')
        parser_discover.set_defaults(func=self.cmd_discover)

        # ======================= lookup

        parser_lookup = subparsers.add_parser('lookup', description="Read the description of a device at a known address")
        add_device_args(parser_lookup)
        parser_lookup.set_defaults(func=self.cmd_lookup)

        # ======================= state, on, off, toggle

        parser_state = subparsers.add_parser('state', description="Display the on/off state of a device")
        add_device_args(parser_state)
        parser_state.set_defaults(func=self.cmd_state)

        parser_on = subparsers.add_parser('on', description="Turn a device on")
        add_device_args(parser_on)
        parser_on.set_defaults(func=self.cmd_on)

        parser_off = subparsers.add_parser('off', description="Turn a device off")
        add_device_args(parser_off)
        parser_off.set_defaults(func=self.cmd_off)

        parser_toggle = subparsers.add_parser('toggle', description="Toggle a device on or off")
        add_device_args(parser_toggle)
        parser_toggle.set_defaults(func=self.cmd_toggle)

        # ======================= rename

        parser_rename = subparsers.add_parser('rename', description="Change the friendly name of a device")
        add_device_args(parser_rename)
        parser_rename.add_argument('name', help='The new friendly name')
        parser_rename.set_defaults(func=self.cmd_rename)

        # ======================= insight

        parser_insight = subparsers.add_parser('insight', description="Display power usage of an Insight switch")
        add_device_args(parser_insight)
        parser_insight.add_argument('--raw', action='store_true', default=False,
                            help='''Display the raw telemetry record instead of the summary''')
        parser_insight.set_defaults(func=self.cmd_insight)

        # ======================= setup-detect, setup-aps, setup-connect

        parser_setup_detect = subparsers.add_parser('setup-detect',
                                description="Check for a device in setup mode (requires joining its 'Wemo.*' network)")
        parser_setup_detect.set_defaults(func=self.cmd_setup_detect)

        parser_setup_aps = subparsers.add_parser('setup-aps',
                                description="List the WiFi networks seen by a device in setup mode")
        parser_setup_aps.set_defaults(func=self.cmd_setup_aps)

        parser_setup_connect = subparsers.add_parser('setup-connect',
                                description="Join a device in setup mode to a WiFi network")
        parser_setup_connect.add_argument('--ssid', required=True, help='The WiFi network name')
        parser_setup_connect.add_argument('--password', default="", help='The WiFi password')
        parser_setup_connect.add_argument('--auth', default=AuthMode.WPA2.value,
                            choices=[m.value for m in AuthMode], help='Default: WPA2')
        parser_setup_connect.add_argument('--encrypt', default=CipherMode.AES.value,
                            choices=[m.value for m in CipherMode], help='Default: AES')
        parser_setup_connect.add_argument('--channel', type=int, default=0,
                            help='The WiFi channel. Default: 0 (automatic)')
        parser_setup_connect.add_argument('--mac', default=None,
                            help='The device MAC address. Default: read from the device')
        parser_setup_connect.add_argument('--serial', default=None,
                            help='The device serial number. Default: read from the device')
        parser_setup_connect.add_argument('--diagnostics', action='store_true', default=False,
                            help='Include the request and per-attempt responses in the output')
        add_encryption_args(parser_setup_connect)
        parser_setup_connect.set_defaults(func=self.cmd_setup_connect)

        # ======================= encrypt

        parser_encrypt = subparsers.add_parser('encrypt',
                                description="Encrypt a WiFi password the way a device in setup mode expects it")
        parser_encrypt.add_argument('password', help='The WiFi password')
        parser_encrypt.add_argument('--mac', required=True, help='The device MAC address')
        parser_encrypt.add_argument('--serial', required=True, help='The device serial number')
        add_encryption_args(parser_encrypt)
        parser_encrypt.set_defaults(func=self.cmd_encrypt)

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
            self._config = WemoConfig.load(args.config_file)
            self._cooldown = DiscoveryCooldown(interval=self._config.discovery_cooldown)
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
            print(f"wemo: error: {ex}", file=sys.stderr)
        except BaseException as ex:
            print(f"wemo: Unhandled exception: {ex}", file=sys.stderr)
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
