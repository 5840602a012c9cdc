"""Subcommand dispatcher for clipcue.

Usage:
    clipcue play      --manifest ... [--steps N] [--skip] [--realtime]
    clipcue schedule  --manifest ... [--sequence N]
"""

import argparse
import sys


def main(args=None):
    parser = argparse.ArgumentParser(
        prog="clipcue",
        description="Manifest-driven, reversible animation playback.",
    )
    subparsers = parser.add_subparsers(dest="command")

    # Each subcommand delegates to its own module's main().
    subparsers.add_parser("play", help="Step a manifest's timeline forward")
    subparsers.add_parser("schedule", help="Print clip schedules per sequence")

    # Parse only the subcommand name, pass the rest to the subcommand's parser.
    parsed, remaining = parser.parse_known_args(args)

    if parsed.command is None:
        parser.print_help()
        sys.exit(1)

    if parsed.command == "play":
        from .cli import main as play_main
        play_main(remaining)
    elif parsed.command == "schedule":
        from .schedule_cli import main as schedule_main
        schedule_main(remaining)


if __name__ == "__main__":
    main()
