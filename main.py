"""
Main command-line interface for pymxdcp.

This script provides a CLI to list and recall presets on a Tascam MX-DCP mixer.
Host, port and password may also come from ~/.tascam-preset.conf.
"""

import argparse
import asyncio
import getpass
import logging
import sys

from pymxdcp.config import load_config
from pymxdcp.errors import MixerError
from pymxdcp.mixer import MXDCPMixer
from pymxdcp.protocol import DEFAULT_PORT, DEFAULT_RECALL_WAIT


async def list_presets(mixer: MXDCPMixer):
    """Print all presets, marking the active one with *."""
    async with mixer:
        presets = await mixer.async_list_presets()
        current = await mixer.async_get_current_preset()

    if not presets:
        print("No presets found.")
        return

    current_number = current.number if current else None
    for preset in presets:
        marker = "*" if preset.number == current_number else " "
        lock_indicator = " [locked]" if preset.locked else ""
        print(f'{marker}{preset.number:2d}: "{preset.name}"{lock_indicator}')


async def show_current(mixer: MXDCPMixer):
    async with mixer:
        current = await mixer.async_get_current_preset()
    if current:
        print(f'{current.number:2d}: "{current.name}"')
    else:
        print("No preset is active.")


async def recall_preset(mixer: MXDCPMixer, preset_number: int, wait: float):
    async with mixer:
        print(f"Recalling preset {preset_number}...")
        await mixer.async_recall_preset(preset_number, wait)
    print("Done")


def main() -> int:
    parser = argparse.ArgumentParser(description="List and recall presets on Tascam MX-DCP series mixers")
    parser.add_argument("--host", help="Mixer hostname or IP (default: from ~/.tascam-preset.conf)")
    parser.add_argument("-p", "--port", type=int, help=f"Mixer port (default: {DEFAULT_PORT})")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable debug output (raw protocol messages)")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser("list", help="List all presets")
    subparsers.add_parser("current", help="Show the active preset")

    recall_parser = subparsers.add_parser("recall", help="Recall a preset")
    recall_parser.add_argument("preset", type=int, help="Preset number (1-50)")
    recall_parser.add_argument(
        "--wait", type=float, default=DEFAULT_RECALL_WAIT,
        help=f"Seconds to wait before verifying the recall, 0 to skip (default: {DEFAULT_RECALL_WAIT})",
    )

    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.WARNING)

    if args.command is None:
        parser.print_help()
        return 0

    config = load_config().merge(host=args.host, port=args.port)
    if config.host is None:
        parser.error("--host is required when no host is set in ~/.tascam-preset.conf")
    password = config.password
    if password is None:
        password = getpass.getpass("Password (press Enter if none): ")

    mixer = MXDCPMixer(config.host, config.port or DEFAULT_PORT, password=password)
    try:
        if args.command == "list":
            asyncio.run(list_presets(mixer))
        elif args.command == "current":
            asyncio.run(show_current(mixer))
        elif args.command == "recall":
            asyncio.run(recall_preset(mixer, args.preset, args.wait))
    except (MixerError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
