"""Connect to a BUDDHA device, configure a treatment and watch its progress.

Usage:
    uv run python examples/treatment_monitor.py --duration 30
    uv run python examples/treatment_monitor.py --step 50:1000 --step 100:2000 \
        --total-ms 30000 --intensity 80 --start
    uv run python examples/treatment_monitor.py --steps-b64 MugDZP//  --start
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from datetime import datetime

from buddha import (
    BuddhaDevice,
    BuddhaError,
    ControlAction,
    Step,
    TreatmentStatus,
    decode_steps,
    encode_steps,
)

STATUS_POLL_INTERVAL = 2.0


def _timestamp() -> str:
    return datetime.now().strftime("%H:%M:%S")


def _status_text(status: int) -> str:
    try:
        return TreatmentStatus(status).name.lower()
    except ValueError:
        return f"unknown({status})"


async def _print_snapshot(device: BuddhaDevice) -> None:
    """Print device info, battery and treatment state as JSON."""
    info = await device.read_device_info()
    battery = await device.read_battery()
    treatment = await device.read_treatment()

    snapshot = treatment.to_dict()
    snapshot["steps_b64"] = encode_steps(treatment.steps, max_steps=None) if treatment.steps else ""
    print(json.dumps({
        "hw_version": str(info.hw_version),
        "fw_version": str(info.fw_version),
        "battery": {
            "level": battery.level,
            "avg_current_ma": battery.avg_current_ma,
            "charging": battery.charging,
            "charger_connected": battery.charger_connected,
        },
        "treatment": snapshot,
    }, indent=2))


async def _poll_status(device: BuddhaDevice) -> None:
    """Read battery and remaining time every STATUS_POLL_INTERVAL seconds."""
    while True:
        try:
            battery, remaining = await asyncio.gather(
                device.read_battery(),
                device.read_remaining_time_ms(),
            )
            print(
                f"[{_timestamp()}] poll battery={battery.level}% "
                f"charger={battery.charger_connected} remaining={remaining}ms"
            )
        except BuddhaError as err:
            print(f"[{_timestamp()}] poll failed: {err}")
            if not device.is_connected:
                return
        await asyncio.sleep(STATUS_POLL_INTERVAL)


async def run(args: argparse.Namespace) -> None:
    steps = [Step.parse(text) for text in args.step]
    if args.steps_b64:
        steps = decode_steps(args.steps_b64)

    device = BuddhaDevice(name_prefix=args.name_prefix)
    print(f"Scanning for devices named {args.name_prefix!r}* ({args.scan_timeout:.0f}s)...")
    await device.scan_and_connect(timeout=args.scan_timeout)
    print(f"Connected to {device.connection.device_name} ({device.connection.address})")

    try:
        await _print_snapshot(device)

        if steps:
            await device.write_steps(steps)
            print(f"Sent {len(steps)} steps")
        if args.total_ms is not None and args.intensity is not None:
            await device.write_duration_and_intensity(args.total_ms, args.intensity)
        elif args.total_ms is not None:
            await device.write_total_duration_ms(args.total_ms)
        elif args.intensity is not None:
            await device.write_intensity(args.intensity)

        if args.start:
            await device.write_control(ControlAction.START)
            print("Treatment started")

        dispose = await device.subscribe_treatment(
            on_status=lambda status: print(f"[{_timestamp()}] status={_status_text(status)}"),
            on_remaining_ms=lambda ms: print(f"[{_timestamp()}] remaining={ms}ms"),
        )
        battery_handle = await device.subscribe_battery_level(
            lambda level: print(f"[{_timestamp()}] battery={level}%")
        )

        poller = asyncio.create_task(_poll_status(device))
        try:
            if args.duration > 0:
                await asyncio.sleep(args.duration)
            else:
                while device.is_connected:
                    await asyncio.sleep(1)
        finally:
            poller.cancel()
            dispose()
            battery_handle()

        if args.stop:
            await device.write_control(ControlAction.STOP)
            print("Treatment stopped")
    finally:
        await device.disconnect()
        print("Disconnected")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Configure and monitor a BUDDHA treatment device over BLE."
    )
    parser.add_argument(
        "--name-prefix",
        default="buddha",
        help="Advertised name prefix, case-insensitive. Default: buddha",
    )
    parser.add_argument(
        "--scan-timeout",
        type=float,
        default=10.0,
        help="Scan deadline in seconds. Default: 10",
    )
    parser.add_argument(
        "--step",
        action="append",
        default=[],
        metavar="AMP:MS",
        help="Treatment step as amplitude percent and duration in ms (repeatable).",
    )
    parser.add_argument(
        "--steps-b64",
        help="Step list in base64 transport form (overrides --step).",
    )
    parser.add_argument("--total-ms", type=int, help="Total treatment duration in ms.")
    parser.add_argument("--intensity", type=int, help="Treatment intensity in percent.")
    parser.add_argument("--start", action="store_true", help="Start the treatment after configuring.")
    parser.add_argument("--stop", action="store_true", help="Stop the treatment before disconnecting.")
    parser.add_argument(
        "--duration",
        type=float,
        default=30.0,
        help="Monitor duration in seconds (0 = until disconnected or Ctrl+C). Default: 30",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        pass
    except BuddhaError as err:
        raise SystemExit(f"Error: {err}") from err


if __name__ == "__main__":
    main()
