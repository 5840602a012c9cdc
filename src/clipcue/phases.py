"""Phase positions and roadblocks.

A clip's local timeline (forward coordinates, milliseconds) is

  0 ── delay ──┬── active ──┬── end_delay ── total
             delay      delay+duration

A backward pass walks the same coordinates from total down to 0, so a
point named ('backward', 'active', '25%') is crossed when the rewind
reaches 25% of the way through the active phase measured from its start,
i.e. after 75% of the active phase has been rewound.

Positions within a phase:
  'beginning' / 'end'   phase bounds
  'N%'                  fraction of the phase length
  number                milliseconds from the phase start (negative: from its end)
"""

import itertools
import math
from dataclasses import dataclass, field
from typing import Callable

from .common import is_number, parse_percentage
from .errors import InvalidPhasePositionError, RangeError


DIRECTIONS = ("forward", "backward")
PHASES = ("delay", "active", "end_delay", "whole")


@dataclass(frozen=True)
class Timing:
    delay: float
    duration: float
    end_delay: float

    @property
    def total(self) -> float:
        return self.delay + self.duration + self.end_delay

    @property
    def active_start(self) -> float:
        return self.delay

    @property
    def active_end(self) -> float:
        return self.delay + self.duration


def check_direction(direction: str) -> str:
    if direction not in DIRECTIONS:
        raise RangeError(f"Invalid direction '{direction}'. Valid: {list(DIRECTIONS)}")
    return direction


def phase_bounds(timing: Timing, phase: str) -> tuple[float, float]:
    """(start, length) of a phase in local forward coordinates."""
    if phase == "delay":
        return 0.0, timing.delay
    if phase == "active":
        return timing.delay, timing.duration
    if phase == "end_delay":
        return timing.active_end, timing.end_delay
    if phase == "whole":
        return 0.0, timing.total
    raise RangeError(f"Invalid phase '{phase}'. Valid: {list(PHASES)}")


def resolve_position(timing: Timing, phase: str, position) -> float:
    """Convert (phase, position) to a local time in forward coordinates.

    Raises:
        RangeError: Unknown phase.
        InvalidPhasePositionError: Position malformed or outside the phase.
    """
    start, length = phase_bounds(timing, phase)
    if position == "beginning":
        offset = 0.0
    elif position == "end":
        offset = length
    elif isinstance(position, str):
        pct = parse_percentage(position)
        if pct is None:
            raise InvalidPhasePositionError(
                f"Invalid position {position!r} for phase '{phase}'. "
                f"Use 'beginning', 'end', 'N%' or a number of milliseconds"
            )
        if not 0 <= pct <= 100:
            raise InvalidPhasePositionError(
                f"Position {position!r} is outside phase '{phase}' (0%..100%)"
            )
        offset = length * pct / 100
    elif is_number(position):
        offset = position if position >= 0 else length + position
        if not 0 <= offset <= length:
            raise InvalidPhasePositionError(
                f"Position {position}ms is outside phase '{phase}' "
                f"(length {length}ms)"
            )
    else:
        raise InvalidPhasePositionError(
            f"Invalid position {position!r} for phase '{phase}'"
        )
    return start + offset


_roadblock_ids = itertools.count(1)


@dataclass
class Roadblock:
    direction: str
    phase: str
    position: object
    callbacks: list[Callable]
    remaining: float = math.inf
    pauses_root: bool = True
    id: int = field(default_factory=lambda: next(_roadblock_ids))


class RoadblockRegistry:
    """Await-points attached to one clip, keyed by direction and position."""

    def __init__(self):
        self._blocks: dict[int, Roadblock] = {}

    def add(
        self,
        direction: str,
        phase: str,
        position,
        callbacks,
        frequency_limit: float = math.inf,
        pauses_root: bool = True,
    ) -> Roadblock:
        check_direction(direction)
        if phase not in PHASES:
            raise RangeError(f"Invalid phase '{phase}'. Valid: {list(PHASES)}")
        if callable(callbacks):
            callbacks = [callbacks]
        callbacks = list(callbacks)
        if not callbacks or not all(callable(cb) for cb in callbacks):
            raise RangeError("Roadblocks need one or more callables")
        if not (frequency_limit == math.inf or (is_number(frequency_limit) and frequency_limit >= 1)):
            raise RangeError(f"frequency_limit must be >= 1, got {frequency_limit!r}")
        block = Roadblock(direction, phase, position, callbacks, frequency_limit, pauses_root)
        self._blocks[block.id] = block
        return block

    def remove(self, block_id: int) -> Roadblock | None:
        return self._blocks.pop(block_id, None)

    def at(self, direction: str, timing: Timing) -> list[tuple[float, Roadblock]]:
        """Roadblocks for a direction with their resolved local times."""
        return [
            (resolve_position(timing, b.phase, b.position), b)
            for b in self._blocks.values()
            if b.direction == direction
        ]

    def consume(self, block: Roadblock) -> None:
        """Count one pass through a roadblock; drop it when exhausted."""
        block.remaining -= 1
        if block.remaining <= 0:
            self._blocks.pop(block.id, None)

    def __contains__(self, block) -> bool:
        return self._blocks.get(block.id) is block

    def __len__(self):
        return len(self._blocks)
