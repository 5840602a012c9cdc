"""Clip state machine.

A Clip pairs one target with one effect and plays it through

  idle → delay → active → end_delay → finished      (play)
  finished → end_delay → active → delay → idle      (rewind)

Driver loop (one pass, either direction):
  1. Compose the effect if the frequency policy asks for it (forward
     passes only) and validate the composed callables.
  2. Walk the local timeline from stop to stop. Stops are the phase
     boundaries, registered roadblocks, and points other components are
     waiting on (wait_for). Time between stops elapses on a PlaybackTimer,
     so pause, finish and playback-rate changes apply mid-wait.
  3. At each stop, after the pause gate: run the roadblocks for that point
     concurrently, then the boundary action, then release waiters.
  4. Entering the active phase runs the category's start hook, CSS class
     toggles and attaches keyframes / builds the mutator. Leaving it
     commits styles (when configured), then class toggles and the finish
     hook.

A category precondition failure raises before anything is applied and
rolls the clip back to its previous phase, so the call can be retried.
The same holds when a keyframe or mutator producer returns something
malformed: the target is restored to how the start hook found it.
"""

import asyncio
import itertools
import logging
import math
from enum import Enum

from .categories import CATEGORY_SPECS, Category
from .clock import EPSILON, PlaybackTimer, default_clock
from .common import call_maybe_async
from .config import resolve_config
from .easing import get_easing, invert_easing
from .effects import (
    AnchorStack,
    CompositionContext,
    CompositionFrequency,
    compose,
    produce_keyframes,
    produce_mutator,
)
from .errors import (
    ChildPlaybackError,
    ConfigurationError,
    InvalidTargetError,
    LateSchedulingError,
    OperationConflictError,
    RangeError,
)
from .phases import (
    RoadblockRegistry,
    Timing,
    check_direction,
    resolve_position,
)
from .targets import is_connector


logger = logging.getLogger(__name__)


class Phase(str, Enum):
    IDLE = "idle"
    DELAY = "delay"
    ACTIVE = "active"
    END_DELAY = "end_delay"
    FINISHED = "finished"


# Stop ranks at equal times: roadblocks run before the boundary action.
_ROADBLOCK, _BOUNDARY = 0, 1

_clip_ids = itertools.count(1)


class Clip:
    """One target animated by one composed effect."""

    def __init__(
        self,
        category,
        target,
        effect_name: str,
        generator,
        effect_options=(),
        config: dict | None = None,
        *,
        strict: bool = False,
        clock=None,
    ):
        self.id = next(_clip_ids)
        self.category = Category.parse(category)
        self.spec = CATEGORY_SPECS[self.category]
        self.target = target
        self.effect_name = effect_name
        self.generator = generator
        self.effect_options = tuple(effect_options)
        self.sequence = None
        self.bookkeeping: dict = {}
        self.roadblocks = RoadblockRegistry()
        self.ctx = CompositionContext(self)

        if generator is None:
            raise ConfigurationError(
                f"{self.category.value} clip '{effect_name}' has no effect generator"
            )
        if self.spec.connector_target and not is_connector(target):
            raise InvalidTargetError(
                f"{self.category.value} clips need a connector target, got {target!r}"
            )
        if not self.spec.connector_target and is_connector(target):
            raise InvalidTargetError(
                f"{self.category.value} clips cannot animate connector {target!r}; "
                f"use the Connector categories"
            )

        self.config = resolve_config(self.spec, generator, config, strict=strict)
        self._ease = get_easing(self.config["easing"])
        self._ease_backward = invert_easing(self._ease)

        self._clock = clock
        self._own_anchors = AnchorStack()
        self._timer: PlaybackTimer | None = None
        self._idle = asyncio.Event()
        self._idle.set()

        self.phase = Phase.IDLE
        self.direction = "none"
        self.in_progress = False
        self.position = 0.0
        self.started_at: float | None = None
        self.finished_at: float | None = None
        self.scheduled_start = 0.0

        self._composed = None
        self._forward_frames: list[dict] = []
        self._forward_mutator = None
        self._mutator = None
        self._mutator_is_backward = False
        self._frontier: float | None = None
        self._segment: tuple[float, int] | None = None
        self._waiters: list[tuple[str, float, asyncio.Future]] = []
        self._instant = False
        self._entered_active = False

        if self.spec.on_initialize:
            self.spec.on_initialize(self)

    def __repr__(self):
        return f"<Clip #{self.id} {self.category.value} '{self.effect_name}' on {self.target!r}>"

    # ── Relationships ──────────────────────────────────────────────

    @property
    def clock(self):
        if self._clock is not None:
            return self._clock
        if self.sequence is not None:
            return self.sequence.clock
        return default_clock()

    @property
    def root(self):
        """Outermost owner: timeline, else sequence, else the clip itself."""
        if self.sequence is None:
            return self
        return self.sequence.root

    @property
    def anchor_stack(self) -> AnchorStack:
        if self.sequence is not None:
            return self.sequence.anchor_stack
        return self._own_anchors

    @property
    def compounded_rate(self) -> float:
        rate = self.config["playback_rate"]
        if self.sequence is not None:
            rate *= self.sequence.compounded_rate
        return rate

    def error(self, cls, message: str) -> Exception:
        """Build an exception whose message ends with where it happened."""
        lines = [message, f"  Clip: {self!r}"]
        if self.sequence is not None:
            lines.append(f"  Sequence: {self.sequence.describe()}")
            if self.sequence.timeline is not None:
                lines.append(f"  Timeline: {self.sequence.timeline.name!r}")
        return cls("\n".join(lines))

    # ── Timing ─────────────────────────────────────────────────────

    @property
    def timing(self) -> Timing:
        return Timing(self.config["delay"], self.config["duration"], self.config["end_delay"])

    @property
    def scheduled_active_start(self) -> float:
        return self.scheduled_start + self.config["delay"]

    @property
    def scheduled_active_finish(self) -> float:
        return self.scheduled_active_start + self.config["duration"]

    @property
    def scheduled_finish(self) -> float:
        return self.scheduled_active_finish + self.config["end_delay"]

    # ── Status ─────────────────────────────────────────────────────

    @property
    def is_paused(self) -> bool:
        return self.in_progress and self._timer is not None and self._timer.paused

    @property
    def is_running(self) -> bool:
        return self.in_progress and not self.is_paused

    def status(self) -> dict:
        return {
            "in_progress": self.in_progress,
            "is_running": self.is_running,
            "is_paused": self.is_paused,
            "direction": self.direction,
            "phase": self.phase.value,
        }

    # ── Public controls ────────────────────────────────────────────

    def _check_standalone(self, action: str) -> None:
        if self.sequence is not None:
            raise self.error(
                ChildPlaybackError,
                f"Cannot {action} a clip that belongs to a sequence; "
                f"control the sequence instead.",
            )

    async def play(self) -> "Clip":
        self._check_standalone("play")
        return await self._animate("forward")

    async def rewind(self) -> "Clip":
        self._check_standalone("rewind")
        return await self._animate("backward")

    def pause(self) -> None:
        self._check_standalone("pause")
        self._pause()

    def unpause(self) -> None:
        self._check_standalone("unpause")
        self._unpause()

    async def finish(self) -> "Clip":
        self._check_standalone("finish")
        return await self._finish()

    def use_playback_rate(self, rate: float) -> None:
        """Change this clip's own rate; applies immediately when running."""
        if not (isinstance(rate, (int, float)) and rate > 0):
            raise self.error(RangeError, f"playback_rate must be > 0, got {rate!r}")
        self.config["playback_rate"] = rate
        self._refresh_rate()

    # ── Controls used by the owning sequence ───────────────────────

    def _pause(self) -> None:
        if self.in_progress and not self._timer.paused:
            self._timer.pause()
            logger.debug("%r paused in %s phase", self, self.phase.value)

    def _unpause(self) -> None:
        if self.in_progress and self._timer.paused:
            self._timer.resume()
            logger.debug("%r unpaused", self)

    def _expedite(self) -> None:
        if self.in_progress:
            self._timer.expedite()

    def _refresh_rate(self) -> None:
        if self.in_progress:
            self._timer.set_rate(self.compounded_rate)

    async def _finish(self) -> "Clip":
        if self.in_progress:
            if self._timer.paused:
                return self
            self._timer.expedite()
            await self._idle.wait()
            return self
        if self.phase is Phase.FINISHED:
            return self
        self._instant = True
        try:
            return await self._animate("forward")
        finally:
            self._instant = False

    # ── Await points ───────────────────────────────────────────────

    def add_roadblocks(
        self,
        direction: str,
        phase: str,
        position,
        callbacks,
        frequency_limit: float = math.inf,
    ) -> int:
        """Hold playback at a point until every callback has settled.

        Callbacks may be plain or async; they run concurrently. While they
        run the clip's root is paused so sibling clips hold position.

        Returns:
            Roadblock id for remove_roadblocks().

        Raises:
            InvalidPhasePositionError: Position outside the named phase.
            LateSchedulingError: The point has already passed in the
                current pass.
        """
        time = resolve_position(self.timing, phase, position)
        check_direction(direction)
        if self.in_progress and self._is_passed(direction, time):
            raise self.error(
                LateSchedulingError,
                f"Cannot add a roadblock at ({direction}, {phase}, {position!r}); "
                f"playback has already passed that point.",
            )
        block = self.roadblocks.add(direction, phase, position, callbacks, frequency_limit)
        self._retarget()
        return block.id

    def remove_roadblocks(self, roadblock_id: int) -> None:
        self.roadblocks.remove(roadblock_id)

    def wait_for(self, direction: str, phase: str, position) -> asyncio.Future:
        """Future resolved when playback in `direction` crosses the point.

        Resolves immediately if the point was already crossed, either in
        the pass in flight or by the most recent completed pass in that
        direction.
        """
        time = resolve_position(self.timing, phase, position)
        fut = asyncio.get_running_loop().create_future()
        if self._is_passed(check_direction(direction), time):
            fut.set_result(None)
            return fut
        self._waiters.append((direction, time, fut))
        self._retarget()
        return fut

    def _retarget(self) -> None:
        if self.in_progress:
            self._timer.retarget()

    def _live_position(self) -> float:
        """Current local time, including a wait that is still elapsing."""
        if self._segment is None:
            return self.position
        origin, sign = self._segment
        return origin + sign * self._timer.elapsed

    def _is_passed(self, direction: str, time: float) -> bool:
        if self.in_progress:
            if self.direction != direction:
                return False
            live = self._live_position()
            frontier = self._frontier
            if direction == "forward":
                return (frontier is not None and time <= frontier + EPSILON) or time < live - EPSILON
            return (frontier is not None and time >= frontier - EPSILON) or time > live + EPSILON
        if direction == "forward":
            return self.direction == "forward" and self.phase is Phase.FINISHED
        return self.direction == "backward" and self.phase is Phase.IDLE

    def _release_waiters(self) -> None:
        pending = []
        for direction, time, fut in self._waiters:
            if fut.done():
                continue
            if self._is_passed(direction, time):
                fut.set_result(None)
            else:
                pending.append((direction, time, fut))
        self._waiters = pending

    def _drop_waiters(self, direction: str) -> None:
        for d, _, fut in self._waiters:
            if d == direction and not fut.done():
                fut.cancel()
        self._waiters = [w for w in self._waiters if not w[2].done()]

    # ── Composition ────────────────────────────────────────────────

    def _prepare_composition(self, direction: str) -> None:
        first_time = self._composed is None
        every_play = self.generator.composition_frequency is CompositionFrequency.ON_EVERY_PLAY
        if first_time or (direction == "forward" and every_play):
            self.ctx.tween_progress = 0.0
            self._composed = compose(self.generator, self.ctx, self.effect_options)

    # ── Driver ─────────────────────────────────────────────────────

    async def _animate(self, direction: str) -> "Clip":
        if self.in_progress:
            doing = "playing" if self.direction == "forward" else "rewinding"
            raise self.error(
                OperationConflictError,
                f"Cannot {'play' if direction == 'forward' else 'rewind'} {self!r} "
                f"while it is already {doing}.",
            )
        if direction == "backward" and self.phase is not Phase.FINISHED:
            raise self.error(
                OperationConflictError,
                f"Cannot rewind {self!r}; it has not been played forward.",
            )
        self._prepare_composition(direction)

        previous = (self.phase, self.direction, self.position)
        timing = self.timing
        self.in_progress = True
        self._idle.clear()
        self.direction = direction
        self._frontier = None
        self._timer = PlaybackTimer(self.clock, self.compounded_rate)
        if self._instant or (self.sequence is not None and self.sequence.skipping):
            self._timer.expedite()
        if self.sequence is not None and self.sequence.is_paused:
            self._timer.pause()
        self.started_at = self.clock.now()
        self.finished_at = None
        self._entered_active = False
        if direction == "forward":
            self.phase, self.position = Phase.DELAY, 0.0
        else:
            self.phase, self.position = Phase.END_DELAY, timing.total
        logger.debug("%r starting %s pass", self, direction)

        try:
            await self._drive(direction, timing)
        except BaseException:
            self.in_progress = False
            self._mutator = None
            if not self._entered_active:
                self.phase, self.direction, self.position = previous
            self._drop_waiters(direction)
            self._idle.set()
            raise

        self.in_progress = False
        self.phase = Phase.FINISHED if direction == "forward" else Phase.IDLE
        self.finished_at = self.clock.now()
        self._mutator = None
        self._release_waiters()
        self._idle.set()
        logger.debug("%r finished %s pass", self, direction)
        return self

    def _static_stops(self, direction: str, timing: Timing) -> list[tuple[float, int, object]]:
        forward = direction == "forward"
        stops = [
            (timing.active_start, _BOUNDARY, self._enter_active if forward else self._leave_active),
            (timing.active_end, _BOUNDARY, self._leave_active if forward else self._enter_active),
            (timing.total if forward else 0.0, _BOUNDARY, None),
        ]
        for time, block in self.roadblocks.at(direction, timing):
            stops.append((time, _ROADBLOCK, block))
        if forward:
            stops.sort(key=lambda s: (s[0], s[1]))
        else:
            stops.sort(key=lambda s: (-s[0], s[1]))
        return stops

    def _nearest_waiter(self, direction: str, limit: float) -> float | None:
        """Closest pending waiter at or ahead of the current position, up to limit."""
        forward = direction == "forward"
        best = None
        for d, time, fut in self._waiters:
            if d != direction or fut.done():
                continue
            ahead = time >= self.position - EPSILON if forward else time <= self.position + EPSILON
            within = time <= limit if forward else time >= limit
            if ahead and within and (best is None or (time < best if forward else time > best)):
                best = time
        return best

    async def _drive(self, direction: str, timing: Timing) -> None:
        forward = direction == "forward"
        stops = self._static_stops(direction, timing)
        while stops:
            goal = stops[0][0]
            waiter = self._nearest_waiter(direction, goal)
            if waiter is not None:
                goal = waiter
            span = abs(goal - self.position)
            if span > EPSILON:
                origin = self.position
                sign = 1 if forward else -1
                on_frame = None
                if self.phase is Phase.ACTIVE and self._mutator is not None:
                    def on_frame(elapsed, origin=origin, sign=sign):
                        self.position = origin + sign * elapsed
                        self._apply_mutator()
                self._segment = (origin, sign)
                try:
                    elapsed = await self._timer.elapse(span, on_frame)
                finally:
                    self._segment = None
                if elapsed < span - EPSILON and not self._timer.expediting:
                    # Retargeted: a nearer stop or waiter was registered.
                    self.position = origin + sign * elapsed
                    stops = self._merge_new_roadblocks(stops, direction, timing)
                    continue
            self.position = goal
            await self._timer.wait_resumed()
            stops = self._merge_new_roadblocks(stops, direction, timing)

            due = []
            while stops and abs(stops[0][0] - goal) <= EPSILON:
                due.append(stops.pop(0))
            # Blocks removed since the pass started are skipped.
            blocks = [s[2] for s in due if s[1] == _ROADBLOCK and s[2] in self.roadblocks]
            if blocks:
                await self._run_roadblocks(blocks, direction)
            for _, rank, action in due:
                if rank == _BOUNDARY and action is not None:
                    action(direction)
            self._frontier = goal
            self._release_waiters()
            stops = self._merge_new_roadblocks(stops, direction, timing)

    def _merge_new_roadblocks(self, stops, direction, timing):
        """Pick up roadblocks registered since the pass started."""
        known = {id(s[2]) for s in stops if s[1] == _ROADBLOCK}
        forward = direction == "forward"
        added = False
        for time, block in self.roadblocks.at(direction, timing):
            if id(block) in known or block.remaining <= 0:
                continue
            ahead = time > self.position + EPSILON if forward else time < self.position - EPSILON
            at_pos = abs(time - self.position) <= EPSILON and self._frontier != self.position
            if ahead or at_pos:
                stops.append((time, _ROADBLOCK, block))
                added = True
        if added:
            if forward:
                stops.sort(key=lambda s: (s[0], s[1]))
            else:
                stops.sort(key=lambda s: (-s[0], s[1]))
        return stops

    async def _run_roadblocks(self, blocks, direction: str) -> None:
        if direction == "backward":
            blocks = list(reversed(blocks))
        callbacks = [cb for block in blocks for cb in block.callbacks]
        root = self.root
        hold = any(block.pauses_root for block in blocks) and not root.is_paused
        if hold:
            root.pause()
        try:
            await asyncio.gather(*(call_maybe_async(cb) for cb in callbacks))
        finally:
            if hold:
                root.unpause()
        for block in blocks:
            self.roadblocks.consume(block)

    # ── Active phase boundaries ────────────────────────────────────

    def _enter_active(self, direction: str) -> None:
        target = self.target
        classes = self.config["css_classes"]
        composed = self._composed
        before = target.snapshot()
        if direction == "forward":
            if self.spec.on_start_forward:
                self.spec.on_start_forward(self)
            target.classes.update(classes["to_add_on_start"])
            target.classes.difference_update(classes["to_remove_on_start"])
        else:
            if self.spec.on_start_backward:
                self.spec.on_start_backward(self)
            target.classes.difference_update(classes["to_add_on_finish"])
            target.classes.update(classes["to_remove_on_finish"])
        self.ctx.tween_progress = 0.0
        # Producers see the target as the start hook left it (an Entrance is
        # already shown); a malformed result puts the target back untouched.
        try:
            frames, mutator = self._produce(direction, composed)
        except Exception:
            target.restore(before)
            raise
        self._entered_active = True

        if direction == "forward":
            if frames is not None:
                self._forward_frames = frames
                target.attach_frames(frames, composite=self.config["composite"])
            if mutator is not None:
                self._forward_mutator = mutator
            self._mutator = mutator
            self._mutator_is_backward = False
        else:
            if frames is not None:
                target.attach_frames(frames, composite=self.config["composite"])
            elif composed.forward_keyframes:
                target.attach_frames(
                    self._forward_frames, reverse=True, composite=self.config["composite"]
                )
            if mutator is not None:
                self._mutator = mutator
                self._mutator_is_backward = True
            else:
                self._mutator = self._forward_mutator
                self._mutator_is_backward = False
        self.phase = Phase.ACTIVE
        self._apply_mutator()

    def _produce(self, direction: str, composed):
        """Call the keyframe and mutator producers for one direction."""
        if direction == "forward":
            keyframes, mutator = composed.forward_keyframes, composed.forward_mutator
        else:
            keyframes, mutator = composed.backward_keyframes, composed.backward_mutator
        frames = produce_keyframes(keyframes, self.effect_name) if keyframes else None
        built = produce_mutator(mutator, self.effect_name) if mutator else None
        return frames, built

    def _leave_active(self, direction: str) -> None:
        target = self.target
        classes = self.config["css_classes"]
        self._apply_mutator()
        self._mutator = None
        if self.config["commits_styles"] and target.frames:
            target.commit_frames()
        target.detach_frames()
        if direction == "forward":
            target.classes.update(classes["to_add_on_finish"])
            target.classes.difference_update(classes["to_remove_on_finish"])
            if self.spec.on_finish_forward:
                self.spec.on_finish_forward(self)
            self.phase = Phase.END_DELAY
        else:
            target.classes.difference_update(classes["to_add_on_start"])
            target.classes.update(classes["to_remove_on_start"])
            if self.spec.on_finish_backward:
                self.spec.on_finish_backward(self)
            self.phase = Phase.DELAY

    def _apply_mutator(self) -> None:
        if self._mutator is None:
            return
        timing = self.timing
        raw = min(max((self.position - timing.delay) / timing.duration, 0.0), 1.0)
        if self._mutator_is_backward:
            # Backward mutators see their own progress run 0 -> 1.
            self.ctx.tween_progress = float(self._ease_backward(1 - raw))
        else:
            self.ctx.tween_progress = float(self._ease(raw))
        self._mutator()
