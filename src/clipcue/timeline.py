"""Timeline stepper.

A Timeline owns an ordered list of sequences and a cursor. The cursor
points at the next sequence to play; sequences before it have played.

  step('forward')   play sequences[cursor], then cursor += 1
  step('backward')  rewind sequences[cursor - 1], then cursor -= 1

Stepping past either end is a no-op that returns StepOutcome.BOUNDARY.
After a step, playback chains on while autoplay flags ask for it: forward
into the next sequence when it autoplays (or the one just played
autoplays its successor), backward symmetrically.

Jumps (by tag or position) take the minimal run of steps that leaves the
cursor just before the target. They play instantly when skip-mode is on
or when instant=True is passed.
"""

import itertools
import logging
import re
from enum import Enum

from .clock import default_clock
from .effects import AnchorStack
from .errors import (
    OperationConflictError,
    RangeError,
    SequenceBusyError,
    TimeParadoxError,
)
from .logging_setup import log_context
from .phases import check_direction
from .sequence import Sequence


logger = logging.getLogger(__name__)

SEARCH_MODES = ("forward-from-beginning", "backward-from-end", "forward", "backward")
AUTOPLAY_DETECTION = ("none", "forward", "backward")

_timeline_ids = itertools.count(1)


class StepOutcome(str, Enum):
    STEPPED = "stepped"
    BOUNDARY = "boundary"


def _toggle_value(force_state, current: bool, what: str) -> bool:
    if force_state is None:
        return not current
    if force_state not in ("on", "off"):
        raise RangeError(
            f"Invalid force_state '{force_state}' for {what}. Valid: ['off', 'on'] or None"
        )
    return force_state == "on"


class Timeline:
    """Ordered sequences stepped through with a single cursor."""

    def __init__(
        self,
        *sequences: Sequence,
        name: str = "",
        debug_mode: bool = False,
        playback_rate: float = 1,
        clock=None,
    ):
        self.id = next(_timeline_ids)
        self.name = name or f"timeline-{self.id}"
        self.debug_mode = debug_mode
        Sequence._check_rate(playback_rate)
        self.playback_rate = playback_rate
        self.clock = clock or default_clock()
        self.anchor_stack = AnchorStack()

        self._sequences: list[Sequence] = []
        self._in_progress: list[Sequence] = []
        self.cursor_index = 0
        self.direction = "none"
        self.skipping = False
        self.is_jumping = False
        self.is_animating = False
        self._jumping_instantly = False
        self._paused = False

        if sequences:
            self.add_sequences(*sequences)

    def __repr__(self):
        return f"<Timeline {self.name!r} at {self.cursor_index}/{len(self._sequences)}>"

    # ── Status ─────────────────────────────────────────────────────

    @property
    def sequences(self) -> tuple[Sequence, ...]:
        return tuple(self._sequences)

    @property
    def root(self):
        return self

    @property
    def instant_now(self) -> bool:
        return self.skipping or self._jumping_instantly

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def at_beginning(self) -> bool:
        return self.cursor_index == 0

    @property
    def at_end(self) -> bool:
        return self.cursor_index == len(self._sequences)

    @property
    def step_number(self) -> int:
        """1-based number of the sequence the next forward step plays."""
        return self.cursor_index + 1

    def status(self) -> dict:
        return {
            "cursor_index": self.cursor_index,
            "step_number": self.step_number,
            "at_beginning": self.at_beginning,
            "at_end": self.at_end,
            "is_animating": self.is_animating,
            "is_paused": self._paused,
            "is_skipping": self.skipping,
            "is_jumping": self.is_jumping,
            "direction": self.direction,
        }

    # ── Structure ──────────────────────────────────────────────────

    def _check_mutable(self, action: str) -> None:
        if self.is_animating:
            raise SequenceBusyError(
                f"Cannot {action} while timeline {self.name!r} is animating."
            )

    def add_sequences(self, *sequences: Sequence, at_index: int | None = None) -> "Timeline":
        """Insert sequences (at the end by default). Never behind the cursor."""
        self._check_mutable("add sequences")
        index = len(self._sequences) if at_index is None else at_index
        if not 0 <= index <= len(self._sequences):
            raise RangeError(f"at_index {at_index} out of range 0..{len(self._sequences)}")
        if index < self.cursor_index:
            raise TimeParadoxError(
                f"Cannot add sequences at index {index}; timeline {self.name!r} has "
                f"already played up to index {self.cursor_index}."
            )
        for sequence in sequences:
            if not isinstance(sequence, Sequence):
                raise RangeError(f"Timelines hold sequences, got {type(sequence).__name__}")
            if sequence.timeline is not None:
                raise OperationConflictError(
                    f"{sequence!r} already belongs to timeline {sequence.timeline.name!r}"
                )
            if sequence.in_progress or sequence.was_played:
                raise OperationConflictError(
                    f"{sequence!r} must be unplayed to join a timeline"
                )
        for offset, sequence in enumerate(sequences):
            sequence.timeline = self
            self._sequences.insert(index + offset, sequence)
        return self

    def remove_sequences(self, *sequences: Sequence) -> list[Sequence]:
        self._check_mutable("remove sequences")
        for sequence in sequences:
            if sequence not in self._sequences:
                raise RangeError(f"{sequence!r} is not in timeline {self.name!r}")
            if self._sequences.index(sequence) < self.cursor_index:
                raise TimeParadoxError(
                    f"Cannot remove {sequence!r}; timeline {self.name!r} has already played it."
                )
        for sequence in sequences:
            self._sequences.remove(sequence)
            sequence.timeline = None
        return list(sequences)

    def remove_sequences_at(self, start: int, end: int | None = None) -> list[Sequence]:
        end = start + 1 if end is None else end
        if not (0 <= start < end <= len(self._sequences)):
            raise RangeError(
                f"Invalid sequence range [{start}, {end}) for {len(self._sequences)} sequences"
            )
        return self.remove_sequences(*self._sequences[start:end])

    def find_sequences(self, tag) -> list[Sequence]:
        return [s for s in self._sequences if self._tag_matches(tag, s)]

    # ── Playback controls ──────────────────────────────────────────

    def pause(self) -> None:
        if self._paused:
            return
        self._paused = True
        for sequence in self._in_progress:
            sequence._pause()

    def unpause(self) -> None:
        if not self._paused:
            return
        self._paused = False
        for sequence in self._in_progress:
            sequence._unpause()
        # Skip-mode switched on while paused takes effect now.
        if self.skipping:
            self.finish_in_progress_sequences()

    def toggle_pause(self, force_state: str | None = None) -> bool:
        if _toggle_value(force_state, self._paused, "toggle_pause"):
            self.pause()
        else:
            self.unpause()
        return self._paused

    def toggle_skipping(self, force_state: str | None = None) -> bool:
        """Switch skip-mode; turning it on fast-forwards sequences in flight."""
        self.skipping = _toggle_value(force_state, self.skipping, "toggle_skipping")
        if self.skipping and self.is_animating and not self._paused:
            self.finish_in_progress_sequences()
        logger.debug("%r skipping %s", self, "on" if self.skipping else "off")
        return self.skipping

    def finish_in_progress_sequences(self) -> None:
        for sequence in list(self._in_progress):
            sequence._expedite()

    def set_playback_rate(self, rate: float) -> None:
        Sequence._check_rate(rate)
        self.playback_rate = rate
        for sequence in self._in_progress:
            sequence._refresh_rate()

    # ── Stepping ───────────────────────────────────────────────────

    def _check_can_step(self, action: str) -> None:
        if self._paused:
            raise OperationConflictError(
                f"Cannot {action} while timeline {self.name!r} is paused."
            )
        if self.is_animating:
            raise OperationConflictError(
                f"Cannot {action} while timeline {self.name!r} is already animating."
            )

    async def step(self, direction: str = "forward") -> StepOutcome:
        """Play or rewind one sequence, then follow autoplay chaining.

        Returns:
            StepOutcome.BOUNDARY when there is nothing to step into,
            StepOutcome.STEPPED otherwise.

        Raises:
            RangeError: Invalid direction.
            OperationConflictError: Timeline paused or already animating.
        """
        check_direction(direction)
        self._check_can_step("step")
        if (direction == "forward" and self.at_end) or (direction == "backward" and self.at_beginning):
            logger.debug("%r: %s step at boundary ignored", self, direction)
            return StepOutcome.BOUNDARY
        self.is_animating = True
        try:
            await self._step_chain(direction)
        finally:
            self.is_animating = False
        return StepOutcome.STEPPED

    def _should_continue(self, direction: str) -> bool:
        if direction == "forward":
            if self.at_end or self.at_beginning:
                return False
            played = self._sequences[self.cursor_index - 1]
            upcoming = self._sequences[self.cursor_index]
            return played.autoplays_next_sequence or upcoming.autoplays
        if self.at_beginning or self.at_end:
            return False
        rewound = self._sequences[self.cursor_index]
        upcoming = self._sequences[self.cursor_index - 1]
        return rewound.autoplays or upcoming.autoplays_next_sequence

    async def _step_chain(self, direction: str) -> None:
        while True:
            if direction == "forward":
                await self._step_forward()
            else:
                await self._step_backward()
            if not self._should_continue(direction):
                return

    def _log_step(self, direction: str, sequence: Sequence) -> None:
        if direction == "forward":
            message = f"{self.cursor_index + 1} -->>: {sequence.description}"
        else:
            message = f"<<-- {self.cursor_index}: {sequence.description}"
        if sequence.tag:
            message += f" [Jump tag: {sequence.tag}]"
        logger.log(logging.INFO if self.debug_mode else logging.DEBUG, message)

    async def _run_sequence(self, sequence: Sequence, direction: str) -> None:
        self._log_step(direction, sequence)
        self.direction = direction
        self._in_progress.append(sequence)
        try:
            with log_context(timeline=self.name, sequence=sequence.description):
                if direction == "forward":
                    await sequence._play()
                else:
                    await sequence._rewind()
        finally:
            self._in_progress.remove(sequence)

    async def _step_forward(self) -> None:
        await self._run_sequence(self._sequences[self.cursor_index], "forward")
        self.cursor_index += 1

    async def _step_backward(self) -> None:
        await self._run_sequence(self._sequences[self.cursor_index - 1], "backward")
        self.cursor_index -= 1

    # ── Jumps ──────────────────────────────────────────────────────

    @staticmethod
    def _tag_matches(tag, sequence: Sequence) -> bool:
        if isinstance(tag, re.Pattern):
            return bool(sequence.tag) and tag.search(sequence.tag) is not None
        return sequence.tag == tag

    def _find_tag(self, tag, search: str, search_offset: int) -> int | None:
        n = len(self._sequences)
        if search == "forward-from-beginning":
            indices = range(search_offset, n)
        elif search == "backward-from-end":
            indices = range(n - 1 - search_offset, -1, -1)
        elif search == "forward":
            indices = range(self.cursor_index + search_offset, n)
        else:
            indices = range(self.cursor_index - 1 - search_offset, -1, -1)
        for i in indices:
            if 0 <= i < n and self._tag_matches(tag, self._sequences[i]):
                return i
        return None

    async def jump_to_sequence_tag(
        self,
        tag,
        *,
        search: str = "forward-from-beginning",
        search_offset: int = 0,
        target_offset: int = 0,
        autoplay_detection: str = "none",
        instant: bool | None = None,
    ) -> int:
        """Step until the cursor sits just before the sequence tagged `tag`.

        Args:
            tag: Exact tag string, or a compiled regex searched in each tag.
            search: Where to search from. Valid: SEARCH_MODES.
            search_offset: Sequences to skip before searching.
            target_offset: Shift the landing index relative to the match.
            autoplay_detection: 'forward'/'backward' to follow autoplay
                chaining after landing; 'none' stops at the target.
            instant: Override skip-mode for this jump (None follows it).

        Returns:
            The new cursor index.

        Raises:
            RangeError: Invalid search mode, unknown tag, or a landing
                index outside the timeline.
            OperationConflictError: Timeline paused or already animating.
        """
        if search not in SEARCH_MODES:
            raise RangeError(f"Invalid search '{search}'. Valid: {list(SEARCH_MODES)}")
        self._check_can_step("jump")
        index = self._find_tag(tag, search, search_offset)
        if index is None:
            pattern = tag.pattern if isinstance(tag, re.Pattern) else tag
            raise RangeError(
                f"Sequence tag {pattern!r} not found in timeline {self.name!r} "
                f"(search '{search}', offset {search_offset})"
            )
        return await self._jump_to(index + target_offset, autoplay_detection, instant)

    async def jump_to_position(
        self,
        position,
        *,
        target_offset: int = 0,
        autoplay_detection: str = "none",
        instant: bool | None = None,
    ) -> int:
        """Jump to 'beginning', 'end', or a cursor index."""
        self._check_can_step("jump")
        if position == "beginning":
            index = 0
        elif position == "end":
            index = len(self._sequences)
        elif isinstance(position, int) and not isinstance(position, bool):
            index = position
        else:
            raise RangeError(
                f"Invalid position {position!r}. Valid: 'beginning', 'end' or an index"
            )
        return await self._jump_to(index + target_offset, autoplay_detection, instant)

    async def _jump_to(self, target: int, autoplay_detection: str, instant: bool | None) -> int:
        if autoplay_detection not in AUTOPLAY_DETECTION:
            raise RangeError(
                f"Invalid autoplay_detection '{autoplay_detection}'. "
                f"Valid: {list(AUTOPLAY_DETECTION)}"
            )
        if not 0 <= target <= len(self._sequences):
            raise RangeError(
                f"Jump target {target} is outside timeline {self.name!r} "
                f"(0..{len(self._sequences)})"
            )
        self.is_animating = True
        self.is_jumping = True
        self._jumping_instantly = self.skipping if instant is None else instant
        try:
            while self.cursor_index < target:
                await self._step_forward()
            while self.cursor_index > target:
                await self._step_backward()
            self.is_jumping = False
            self._jumping_instantly = False
            if autoplay_detection != "none" and self._should_continue(autoplay_detection):
                await self._step_chain(autoplay_detection)
        finally:
            self.is_animating = False
            self.is_jumping = False
            self._jumping_instantly = False
        return self.cursor_index
