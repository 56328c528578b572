from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Callable

from spintech.common.logging_config import (
    LEVEL_NAMES,
    TRACE,
    configure_logging,
    level_from_name,
)
from spintech.config import config
from spintech.constants import LOG_LEVEL
from spintech.errors import DeviceError
from spintech.services.data_parser import DataParser
from spintech.services.device_client import DeviceClient
from spintech.services.valve_controller import ValveController
from spintech.services.view_model import TurbineViewModel
from spintech.state import ProjectInfo, TurbineData, TurbineState, TurbineStatus

logger = logging.getLogger(__name__)


def format_reading(data: TurbineData) -> str:
    state = "RUN" if data.is_running else "STOP"
    return (
        f"{state:<4} rpm={data.rpm:>5} in={data.temp_in:6.1f}C out={data.temp_out:6.1f}C "
        f"flow={data.steam_flow:5.1f}kg/h P={data.power:6.1f}W U={data.voltage:5.1f}V "
        f"valve={data.valve_position:>3}% eff={data.efficiency:4.1f}%"
    )


def _make_client(args: argparse.Namespace) -> DeviceClient:
    return DeviceClient(
        device_ip=args.device_ip,
        connect_timeout=config.CONNECT_TIMEOUT,
        read_timeout=config.READ_TIMEOUT,
    )


# --------------- Commands ---------------


async def cmd_ping(args: argparse.Namespace) -> int:
    client = _make_client(args)
    try:
        ok = await client.check_connection()
    finally:
        await client.close()
    print("online" if ok else "offline")
    return 0 if ok else 1


async def cmd_status(args: argparse.Namespace) -> int:
    client = _make_client(args)
    try:
        data = await client.get_turbine_data()
    finally:
        await client.close()
    if args.json:
        print(json.dumps(data.to_dict()))
    else:
        print(format_reading(data))
    for problem in DataParser().validate_turbine_data(data):
        logger.warning(problem)
    return 0


def status_logger() -> Callable[[TurbineStatus], None]:
    """Log online/offline transitions; going offline is reported at WARNING."""
    last: str | None = None

    def _log(status: TurbineStatus) -> None:
        nonlocal last
        if status.status == last:
            return
        last = status.status
        if status.is_online:
            logger.info("Device online")
        else:
            logger.warning(
                "Device %s: %s", status.status, status.error_message or "no details"
            )

    return _log


async def cmd_monitor(args: argparse.Namespace) -> int:
    if args.demo:
        return await _print_demo_readings(args.interval, args.count)
    client = _make_client(args)
    queue: asyncio.Queue[TurbineData] = asyncio.Queue()
    client.on_data_received = queue.put_nowait
    client.on_status_changed = status_logger()
    client.start_polling(args.interval)
    seen = 0
    try:
        while args.count is None or seen < args.count:
            data = await queue.get()
            print(format_reading(data), flush=True)
            seen += 1
    finally:
        await client.close()
    return 0


async def _sync_valve(client: DeviceClient, valve: ValveController) -> None:
    try:
        data = await client.get_turbine_data()
    except DeviceError as e:
        logger.warning("Could not read current valve position: %s", e)
        return
    valve.update_current_position(data.valve_position)


async def cmd_valve(args: argparse.Namespace) -> int:
    client = _make_client(args)
    valve = ValveController(client)
    errors: list[str] = []
    valve.on_error = errors.append
    valve.on_position_changed = lambda p: logger.info("Valve at %s%%", p)
    try:
        await _sync_valve(client, valve)
        if args.rpm is not None or args.temp is not None:
            sent = await valve.set_position_with_safety_check(
                args.position,
                args.rpm if args.rpm is not None else 0,
                args.temp if args.temp is not None else 0.0,
                force_unsafe=args.force,
            )
            if not sent:
                print(errors[-1], file=sys.stderr)
                return 1
        else:
            await valve.set_position(args.position, smooth=not args.direct)
        await valve.wait_adjustment()
    finally:
        await valve.close()
        await client.close()
    if errors:
        print(errors[-1], file=sys.stderr)
        return 1
    print(f"Valve at {valve.current_position}%")
    return 0


async def cmd_system(args: argparse.Namespace) -> int:
    client = _make_client(args)
    try:
        if args.action == "emergency_stop":
            valve = ValveController(client)
            await valve.emergency_close()
        print(await client.send_system_command(args.action))
    finally:
        await client.close()
    return 0


async def _print_demo_readings(interval: float, count: int | None) -> int:
    state = TurbineState()
    vm = TurbineViewModel(state=state, demo_interval=interval)
    seen = 0
    try:
        await vm.toggle_demo_mode()
        while count is None or seen < count:
            await asyncio.sleep(interval)
            print(format_reading(state.turbine_data), flush=True)
            seen += 1
    finally:
        await vm.close()
    return 0


async def cmd_demo(args: argparse.Namespace) -> int:
    return await _print_demo_readings(args.interval, args.count)


async def cmd_info(args: argparse.Namespace) -> int:
    info = ProjectInfo()
    print(info.title)
    print(info.description)
    print()
    print("Goals:")
    for goal in info.goals:
        print(f"  - {goal}")
    print("Specifications:")
    for key, value in info.specifications.items():
        print(f"  {key}: {value}")
    print("Authors: " + ", ".join(info.authors))
    return 0


# --------------- CLI ---------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spintech", description="SpinTech steam turbine monitor and control"
    )
    parser.add_argument(
        "--device-ip", default=config.DEVICE_IP, help="Turbine controller address"
    )
    parser.add_argument(
        "--demo",
        action=argparse.BooleanOptionalAction,
        default=config.DEMO_MODE,
        help="Monitor generated readings instead of the device (env SPINTECH_DEMO)",
    )
    parser.add_argument("--log-level", choices=LEVEL_NAMES, help="Set log level")
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity; -v=INFO, -vv=DEBUG, -vvv=TRACE",
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Only log errors"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("ping", help="Check whether the device answers")
    p.set_defaults(func=cmd_ping)

    p = sub.add_parser("status", help="Print one telemetry reading")
    p.add_argument("--json", action="store_true", help="Print raw JSON")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("monitor", help="Poll telemetry continuously")
    p.add_argument("--interval", type=float, default=config.POLL_INTERVAL)
    p.add_argument("--count", type=int, default=None, help="Stop after N readings")
    p.set_defaults(func=cmd_monitor)

    p = sub.add_parser("valve", help="Move the steam valve")
    p.add_argument("position", type=int, help="Target position 0..100 %%")
    p.add_argument("--direct", action="store_true", help="Skip the stepped ramp")
    p.add_argument("--rpm", type=int, default=None, help="Current rpm for safety check")
    p.add_argument("--temp", type=float, default=None, help="Current temperature for safety check")
    p.add_argument("--force", action="store_true", help="Ignore safety warnings")
    p.set_defaults(func=cmd_valve)

    for name, action in (
        ("start", "start"),
        ("stop", "stop"),
        ("restart", "restart"),
        ("emergency-stop", "emergency_stop"),
    ):
        p = sub.add_parser(name, help=f"Send the {action} system command")
        p.set_defaults(func=cmd_system, action=action)

    p = sub.add_parser("demo", help="Print generated demo readings")
    p.add_argument("--interval", type=float, default=1.0)
    p.add_argument("--count", type=int, default=5)
    p.set_defaults(func=cmd_demo)

    p = sub.add_parser("info", help="About the project")
    p.set_defaults(func=cmd_info)
    return parser


def resolve_log_level(args: argparse.Namespace) -> int:
    # explicit --log-level > -v/-q > env default
    if args.log_level:
        return level_from_name(args.log_level)
    if args.verbose >= 3:
        return TRACE
    if args.verbose >= 2:
        return logging.DEBUG
    if args.verbose == 1:
        return logging.INFO
    if args.quiet:
        return logging.ERROR
    return LOG_LEVEL


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(resolve_log_level(args))
    logger.info("Device target: %s", args.device_ip)
    try:
        return asyncio.run(args.func(args))
    except DeviceError as e:
        logger.error("%s", e)
        print(f"error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
