"""Sequence scheduler.

A Sequence owns an ordered list of clips and decides when each starts.

Scheduling (recomputed on every forward play):
  - A clip flagged starts_with_previous, or whose predecessor is flagged
    starts_next_clip_too, joins its predecessor's start-group and starts
    when the predecessor's active phase begins.
  - Any other clip opens a new start-group at the latest finish time of
    every clip scheduled so far.

Forward play runs start-groups one after another. Inside a group the
first clip starts at once and each following clip starts when its
predecessor crosses ('forward', 'active', 'beginning').

Rewind runs the groups in reverse with mirrored timing: inside a group the
clip that finished last rewinds first, and every other clip starts
rewinding when the mirrored clock reaches its forward finish time.

A pass that fails part way is rolled back before the error propagates:
clips in flight are fast-forwarded and every clip the pass completed is
undone instantly, so the sequence is left as the pass found it.
"""

import asyncio
import itertools
import logging

from .clip import Clip, Phase
from .clock import PlaybackTimer, default_clock
from .common import call_maybe_async
from .effects import AnchorStack
from .errors import (
    ChildPlaybackError,
    OperationConflictError,
    RangeError,
    SequenceBusyError,
)


logger = logging.getLogger(__name__)

_sequence_ids = itertools.count(1)


def _consume_exception(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()


class Sequence:
    """Ordered group of clips played with relative timing."""

    def __init__(
        self,
        *clips: Clip,
        description: str = "<blank sequence description>",
        tag: str = "",
        autoplays: bool = False,
        autoplays_next_sequence: bool = False,
        playback_rate: float = 1,
        clock=None,
    ):
        self.id = next(_sequence_ids)
        self.description = description
        self.tag = tag
        self.autoplays = autoplays
        self.autoplays_next_sequence = autoplays_next_sequence
        self._check_rate(playback_rate)
        self.playback_rate = playback_rate
        self.timeline = None

        self._clock = clock
        self._own_anchors = AnchorStack()
        self._clips: list[Clip] = []
        self._groupings: list[list[Clip]] = []
        self._integrity: list[tuple[Clip, int]] = []
        self._tasks: list[asyncio.Task] = []
        self._timer: PlaybackTimer | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._on_start = (None, None)
        self._on_finish = (None, None)

        self.in_progress = False
        self.direction = "none"
        self.was_played = False
        self.using_finish = False
        self._paused = False

        if clips:
            self.add_clips(*clips)

    def __repr__(self):
        return f"<Sequence #{self.id} {self.describe()}>"

    def describe(self) -> str:
        text = repr(self.description)
        if self.tag:
            text += f" [tag: {self.tag}]"
        return text

    def _error(self, cls, message: str) -> Exception:
        lines = [message, f"  Sequence: {self.describe()}"]
        if self.timeline is not None:
            lines.append(f"  Timeline: {self.timeline.name!r}")
        return cls("\n".join(lines))

    # ── Relationships ──────────────────────────────────────────────

    @property
    def clips(self) -> tuple[Clip, ...]:
        return tuple(self._clips)

    @property
    def clock(self):
        if self._clock is not None:
            return self._clock
        if self.timeline is not None:
            return self.timeline.clock
        return default_clock()

    @property
    def root(self):
        return self.timeline if self.timeline is not None else self

    @property
    def anchor_stack(self) -> AnchorStack:
        if self.timeline is not None:
            return self.timeline.anchor_stack
        return self._own_anchors

    @property
    def compounded_rate(self) -> float:
        rate = self.playback_rate
        if self.timeline is not None:
            rate *= self.timeline.playback_rate
        return rate

    @property
    def skipping(self) -> bool:
        """True when clips should resolve without real-time pacing."""
        if self.using_finish:
            return True
        return self.timeline is not None and self.timeline.instant_now

    @property
    def is_paused(self) -> bool:
        return self._paused

    def status(self) -> dict:
        return {
            "in_progress": self.in_progress,
            "is_paused": self._paused,
            "direction": self.direction,
            "was_played": self.was_played,
        }

    # ── Structure ──────────────────────────────────────────────────

    def _check_mutable(self, action: str) -> None:
        if self.in_progress:
            raise self._error(SequenceBusyError, f"Cannot {action} while the sequence is in progress.")
        if self.was_played:
            raise self._error(
                SequenceBusyError,
                f"Cannot {action} while the sequence is in its played state; rewind it first.",
            )

    def add_clips(self, *clips: Clip, at_index: int | None = None) -> "Sequence":
        """Insert clips (at the end by default) and recompute the schedule."""
        self._check_mutable("add clips")
        for clip in clips:
            if not isinstance(clip, Clip):
                raise self._error(RangeError, f"Sequences hold clips, got {type(clip).__name__}")
            if clip.sequence is not None:
                raise self._error(
                    OperationConflictError,
                    f"{clip!r} already belongs to sequence {clip.sequence.describe()}",
                )
            if clip.in_progress:
                raise self._error(OperationConflictError, f"{clip!r} is currently playing")
        index = len(self._clips) if at_index is None else at_index
        if not 0 <= index <= len(self._clips):
            raise self._error(
                RangeError, f"at_index {at_index} out of range 0..{len(self._clips)}"
            )
        for offset, clip in enumerate(clips):
            clip.sequence = self
            self._clips.insert(index + offset, clip)
        self._commit()
        return self

    def remove_clips(self, *clips: Clip) -> list[Clip]:
        self._check_mutable("remove clips")
        missing = [c for c in clips if c not in self._clips]
        if missing:
            raise self._error(RangeError, f"Clips not in this sequence: {missing}")
        for clip in clips:
            self._clips.remove(clip)
            clip.sequence = None
        self._commit()
        return list(clips)

    def remove_clips_at(self, start: int, end: int | None = None) -> list[Clip]:
        """Remove clips[start:end] (a single clip when end is omitted)."""
        end = start + 1 if end is None else end
        if not (0 <= start < end <= len(self._clips)):
            raise self._error(
                RangeError, f"Invalid clip range [{start}, {end}) for {len(self._clips)} clips"
            )
        return self.remove_clips(*self._clips[start:end])

    def set_on_start(self, do=None, undo=None) -> None:
        """Callbacks run before the first clip plays / after the last rewinds."""
        self._on_start = (do, undo)

    def set_on_finish(self, do=None, undo=None) -> None:
        """Callbacks run after the last clip plays / before the first rewinds."""
        self._on_finish = (do, undo)

    # ── Schedule ───────────────────────────────────────────────────

    def _commit(self) -> list[list[Clip]]:
        groupings: list[list[Clip]] = []
        current: list[Clip] = []
        max_finish = 0.0
        prev = None
        for clip in self._clips:
            joins = prev is not None and (
                clip.config["starts_with_previous"] or prev.config["starts_next_clip_too"]
            )
            if joins:
                clip.scheduled_start = prev.scheduled_active_start
                current.append(clip)
            else:
                if current:
                    groupings.append(current)
                clip.scheduled_start = max_finish
                current = [clip]
            max_finish = max(max_finish, clip.scheduled_finish)
            prev = clip
        if current:
            groupings.append(current)
        self._groupings = groupings
        return groupings

    def schedule(self) -> list[dict]:
        """Scheduled offsets (ms, sequence-relative) for every clip."""
        rows = []
        for group_index, grouping in enumerate(self._commit()):
            for clip in grouping:
                rows.append({
                    "clip": clip,
                    "group": group_index,
                    "start": clip.scheduled_start,
                    "active_start": clip.scheduled_active_start,
                    "active_finish": clip.scheduled_active_finish,
                    "finish": clip.scheduled_finish,
                })
        return rows

    @property
    def total_duration(self) -> float:
        self._commit()
        return max((c.scheduled_finish for c in self._clips), default=0.0)

    # ── Public controls ────────────────────────────────────────────

    def _check_standalone(self, action: str) -> None:
        if self.timeline is not None:
            raise self._error(
                ChildPlaybackError,
                f"Cannot {action} a sequence that belongs to a timeline; "
                f"step the timeline instead.",
            )

    async def play(self) -> "Sequence":
        self._check_standalone("play")
        return await self._play()

    async def rewind(self) -> "Sequence":
        self._check_standalone("rewind")
        return await self._rewind()

    def pause(self) -> None:
        self._check_standalone("pause")
        self._pause()

    def unpause(self) -> None:
        self._check_standalone("unpause")
        self._unpause()

    async def finish(self) -> "Sequence":
        self._check_standalone("finish")
        return await self._finish()

    def set_playback_rate(self, rate: float) -> None:
        self._check_rate(rate)
        self.playback_rate = rate
        self._refresh_rate()

    @staticmethod
    def _check_rate(rate) -> None:
        if isinstance(rate, bool) or not isinstance(rate, (int, float)) or rate <= 0:
            raise RangeError(f"playback_rate must be a number > 0, got {rate!r}")

    # ── Controls used by the owning timeline ───────────────────────

    def _pause(self) -> None:
        if not self.in_progress or self._paused:
            return
        self._paused = True
        self._timer.pause()
        for clip in self._clips:
            clip._pause()
        logger.debug("%r paused", self)

    def _unpause(self) -> None:
        if not self.in_progress or not self._paused:
            return
        self._paused = False
        self._timer.resume()
        for clip in self._clips:
            clip._unpause()
        logger.debug("%r unpaused", self)

    def _expedite(self) -> None:
        if self.in_progress:
            self.using_finish = True
            self._timer.expedite()
            for clip in self._clips:
                clip._expedite()

    def _refresh_rate(self) -> None:
        if self.in_progress:
            self._timer.set_rate(self.compounded_rate)
        for clip in self._clips:
            clip._refresh_rate()

    async def _finish(self) -> "Sequence":
        if self._paused:
            return self
        if self.in_progress:
            self._expedite()
            await self._idle.wait()
        elif not self.was_played:
            self.using_finish = True
            await self._play()
        return self

    # ── Playback ───────────────────────────────────────────────────

    def _begin(self, direction: str) -> None:
        self.in_progress = True
        self._idle.clear()
        self.direction = direction
        self._tasks = []
        self._timer = PlaybackTimer(self.clock, self.compounded_rate)
        if self.using_finish:
            self._timer.expedite()
        if self.timeline is not None and self.timeline.is_paused:
            self._paused = True
            self._timer.pause()
        logger.debug("%r starting %s", self, "playback" if direction == "forward" else "rewind")

    def _drop_integrity_blocks(self) -> None:
        for clip, block_id in self._integrity:
            clip.roadblocks.remove(block_id)
        self._integrity = []

    def _end(self) -> None:
        self._drop_integrity_blocks()
        self._tasks = []
        self.in_progress = False
        self.using_finish = False
        self._paused = False
        self._idle.set()

    async def _settle(self, direction: str, compensate=None) -> None:
        """Put every clip back where a failed pass found it.

        Clips still in flight are fast-forwarded to the end of the pass,
        then each clip the pass completed is undone instantly. The sequence
        keeps its pre-pass state, so the same call can be retried once the
        cause of the failure is fixed.
        """
        self._drop_integrity_blocks()
        self._paused = False
        self.using_finish = True
        for clip in self._clips:
            clip._drop_waiters(direction)
            clip._unpause()
            clip._expedite()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        if direction == "forward":
            completed, undo, clips = Phase.FINISHED, "backward", reversed(self._clips)
        else:
            completed, undo, clips = Phase.IDLE, "forward", self._clips
        for clip in list(clips):
            if clip.direction == direction and clip.phase is completed:
                await clip._animate(undo)
        if compensate:
            await call_maybe_async(compensate)
        logger.debug("%r rolled back a failed %s pass", self, direction)

    def _launch(self, clip: Clip, direction: str) -> asyncio.Task:
        task = asyncio.ensure_future(clip._animate(direction))
        task.add_done_callback(_consume_exception)
        self._tasks.append(task)
        return task

    @staticmethod
    async def _await_point(task: asyncio.Task, waiter: asyncio.Future) -> None:
        """Wait for a clip to cross a point, surfacing its failure instead."""
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        if waiter not in done:
            waiter.cancel()
            task.result()

    def _add_integrity_blocks(self, groupings: list[list[Clip]], direction: str) -> None:
        """Within a start-group, active phases finish in scheduled order."""
        for grouping in groupings:
            if direction == "forward":
                ordered = sorted(grouping, key=lambda c: c.scheduled_active_finish)
                position = "end"
            else:
                ordered = sorted(grouping, key=lambda c: -c.scheduled_active_start)
                position = "beginning"
            for earlier, later in zip(ordered, ordered[1:]):
                block = later.roadblocks.add(
                    direction, "active", position,
                    lambda earlier=earlier, position=position: asyncio.wait(
                        {earlier.wait_for(direction, "active", position)}
                    ),
                    frequency_limit=1,
                    pauses_root=False,
                )
                self._integrity.append((later, block.id))

    async def _play(self) -> "Sequence":
        if self.in_progress:
            raise self._error(OperationConflictError, "Cannot play a sequence that is already in progress.")
        groupings = self._commit()
        self._begin("forward")
        started = False
        try:
            do_start = self._on_start[0]
            if do_start:
                await call_maybe_async(do_start)
                started = True
            self._add_integrity_blocks(groupings, "forward")
            for grouping in groupings:
                tasks = [self._launch(grouping[0], "forward")]
                for prev, clip in zip(grouping, grouping[1:]):
                    await self._await_point(tasks[-1], prev.wait_for("forward", "active", "beginning"))
                    tasks.append(self._launch(clip, "forward"))
                await asyncio.gather(*tasks)
            do_finish = self._on_finish[0]
            if do_finish:
                await call_maybe_async(do_finish)
        except BaseException:
            try:
                await self._settle("forward", self._on_start[1] if started else None)
            finally:
                self._end()
            raise
        self.was_played = True
        self._end()
        logger.debug("%r finished playing", self)
        return self

    async def _rewind(self) -> "Sequence":
        if self.in_progress:
            raise self._error(OperationConflictError, "Cannot rewind a sequence that is already in progress.")
        if not self.was_played:
            raise self._error(OperationConflictError, "Cannot rewind a sequence that has not been played.")
        groupings = self._groupings
        self._begin("backward")
        undone = False
        try:
            undo_finish = self._on_finish[1]
            if undo_finish:
                await call_maybe_async(undo_finish)
                undone = True
            self._add_integrity_blocks(groupings, "backward")
            for grouping in reversed(groupings):
                ordered = sorted(grouping, key=lambda c: c.scheduled_finish)
                later = ordered[-1]
                tasks = [self._launch(later, "backward")]
                for curr in reversed(ordered[:-1]):
                    overlap = curr.scheduled_finish - later.scheduled_start
                    if overlap > 0:
                        await self._await_point(tasks[-1], later.wait_for("backward", "whole", overlap))
                    else:
                        await self._await_point(tasks[-1], later.wait_for("backward", "whole", "beginning"))
                        await self._timer.elapse(-overlap)
                    tasks.append(self._launch(curr, "backward"))
                    later = curr
                await asyncio.gather(*tasks)
            undo_start = self._on_start[1]
            if undo_start:
                await call_maybe_async(undo_start)
        except BaseException:
            try:
                await self._settle("backward", self._on_finish[0] if undone else None)
            finally:
                self._end()
            raise
        self.was_played = False
        self._end()
        logger.debug("%r finished rewinding", self)
        return self
