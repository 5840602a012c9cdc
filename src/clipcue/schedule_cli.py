"""CLI for inspecting sequence schedules.

Prints, for every sequence in a manifest, the start-groups and the
sequence-relative offsets (ms) at which each clip starts, enters and
leaves its active phase, and finishes. Nothing is played.

Usage:
    python -m clipcue.schedule_cli --manifest scene.yaml
    python -m clipcue.schedule_cli --manifest scene.yaml --sequence 2
"""

import argparse

from .clock import VirtualClock
from .manifest import build_timeline, load_manifest


def format_schedule(sequence) -> list[str]:
    """Human-readable rows for one sequence's schedule."""
    tag = f" [tag: {sequence.tag}]" if sequence.tag else ""
    lines = [f"{sequence.description}{tag}  total {sequence.total_duration:.0f}ms"]
    for row in sequence.schedule():
        clip = row["clip"]
        lines.append(
            f"  g{row['group']}  {clip.category.value:<17} {clip.effect_name:<20} "
            f"{clip.target.name:<12} "
            f"start {row['start']:>7.0f}  active {row['active_start']:>7.0f}-"
            f"{row['active_finish']:<7.0f}  finish {row['finish']:>7.0f}"
        )
    return lines


def main(args=None):
    parser = argparse.ArgumentParser(
        description="Print the clip schedule of each sequence in a manifest.",
    )
    parser.add_argument(
        "--manifest", required=True,
        help="Path to YAML manifest file",
    )
    parser.add_argument(
        "--sequence", type=int, default=None,
        help="Only this sequence index (0-based)",
    )
    args = parser.parse_args(args)

    config = load_manifest(args.manifest)
    timeline, _ = build_timeline(config, clock=VirtualClock())
    sequences = timeline.sequences

    if args.sequence is not None:
        if not 0 <= args.sequence < len(sequences):
            raise ValueError(
                f"--sequence {args.sequence} out of range "
                f"(manifest has {len(sequences)} sequences, 0-{len(sequences) - 1})"
            )
        indexed = [(args.sequence, sequences[args.sequence])]
    else:
        indexed = list(enumerate(sequences))

    for i, sequence in indexed:
        lines = format_schedule(sequence)
        print(f"[{i}] {lines[0]}")
        for line in lines[1:]:
            print(line)


if __name__ == "__main__":
    main()
