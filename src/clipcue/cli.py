"""CLI for timeline playback.

Reads a YAML manifest, builds the timeline, and steps it forward. Targets
are in-memory elements, so a run reports the state each target ends up in
rather than drawing anything.

Usage:
    # Step through every sequence on a virtual clock (instant, exact timing)
    python -m clipcue.cli --manifest scene.yaml

    # Only the first two steps, fast-forwarded
    python -m clipcue.cli --manifest scene.yaml --steps 2 --skip

    # Wall-clock pacing, with step and clip logs
    python -m clipcue.cli --manifest scene.yaml --realtime --verbose

    # Validate only (import effects, build clips, don't play)
    python -m clipcue.cli --manifest scene.yaml --validate
"""

import argparse
import asyncio
import logging
import time

from .clock import RealtimeClock, VirtualClock
from .logging_setup import configure_logging
from .manifest import build_timeline, load_manifest
from .timeline import StepOutcome


# ── Reporting helpers ─────────────────────────────────────────────


def _describe_target(target) -> str:
    classes = ", ".join(sorted(target.classes)) or "-"
    styles = ", ".join(f"{k}={v}" for k, v in sorted(target.styles.items())) or "-"
    text = f"classes [{classes}]  styles [{styles}]"
    if hasattr(target, "point_a"):
        text += f"  points {target.point_a} -> {target.point_b}"
    return text


def _print_targets(targets) -> None:
    for name, target in targets.items():
        print(f"    {name}: {_describe_target(target)}", flush=True)


# ── Playback ──────────────────────────────────────────────────────


async def _run(timeline, targets, clock, steps, skip) -> int:
    if skip:
        timeline.toggle_skipping("on")
    taken = 0
    while steps is None or taken < steps:
        index = timeline.cursor_index
        started = clock.now()
        outcome = await timeline.step("forward")
        if outcome is StepOutcome.BOUNDARY:
            break
        taken += 1
        played = timeline.sequences[index:timeline.cursor_index]
        label = "; ".join(s.description for s in played)
        print(
            f"  STEP {taken}  [{index}->{timeline.cursor_index}] {label} "
            f"({clock.now() - started:.0f}ms)",
            flush=True,
        )
        _print_targets(targets)
    return taken


def play(
    manifest_path: str,
    steps: int | None = None,
    skip: bool = False,
    realtime: bool = False,
) -> int:
    """Load a manifest and step its timeline forward.

    Args:
        manifest_path: Path to YAML manifest.
        steps: Stop after this many forward steps (None: until the end).
        skip: Turn skip-mode on so every sequence resolves instantly.
        realtime: Pace playback on the event loop's clock instead of a
            virtual one.

    Returns:
        Number of forward steps taken.
    """
    config = load_manifest(manifest_path)
    clock = RealtimeClock() if realtime else VirtualClock()
    timeline, targets = build_timeline(config, clock=clock)

    if not timeline.sequences:
        print("No sequences to play.")
        return 0

    print(f"Playing timeline '{timeline.name}' ({len(timeline.sequences)} sequences)\n", flush=True)
    t0 = time.monotonic()
    taken = asyncio.run(_run(timeline, targets, clock, steps, skip))
    elapsed = time.monotonic() - t0
    print(
        f"\nDone: {taken} steps, cursor at {timeline.cursor_index}/{len(timeline.sequences)} "
        f"({elapsed:.1f}s wall)",
        flush=True,
    )
    return taken


# ── CLI entry point ───────────────────────────────────────────────


def main(args=None):
    parser = argparse.ArgumentParser(
        description="Play a YAML scene manifest through the clipcue timeline.",
    )
    parser.add_argument(
        "--manifest", required=True,
        help="Path to YAML manifest file",
    )
    parser.add_argument(
        "--steps", type=int, default=None,
        help="Stop after N forward steps (default: play to the end)",
    )
    parser.add_argument(
        "--skip", action="store_true",
        help="Fast-forward every sequence (skip-mode on)",
    )
    parser.add_argument(
        "--realtime", action="store_true",
        help="Pace playback in wall-clock time instead of a virtual clock",
    )
    parser.add_argument(
        "--validate", action="store_true",
        help="Validate manifest only: import effects and build clips, don't play",
    )
    parser.add_argument(
        "--verbose", action="store_true",
        help="Log clip and sequence transitions at DEBUG level",
    )
    args = parser.parse_args(args)

    if args.steps is not None and args.steps < 1:
        parser.error("--steps must be >= 1")

    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    if args.validate:
        config = load_manifest(args.manifest)
        timeline, targets = build_timeline(config, clock=VirtualClock())
        print(f"Manifest valid: {len(timeline.sequences)} sequences, {len(targets)} targets")
        for i, sequence in enumerate(timeline.sequences):
            tag = f" [{sequence.tag}]" if sequence.tag else ""
            print(f"  {i}: {sequence.description}{tag} ({len(sequence.clips)} clips)")
        print("All effects imported.")
        return

    play(args.manifest, steps=args.steps, skip=args.skip, realtime=args.realtime)


if __name__ == "__main__":
    main()
