"""Error taxonomy for the playback engine.

ConfigurationError   malformed effect generators / composed effects
PreconditionError    target is in the wrong state for the clip's category
OperationConflict    call collides with playback already in flight
RangeError           an option value outside its valid set

Stepping a timeline past either end is not an error (see
timeline.StepOutcome.BOUNDARY).
"""


class ClipcueError(Exception):
    """Base class for every error raised by clipcue."""


# ── Configuration ──────────────────────────────────────────────────

class ConfigurationError(ClipcueError, ValueError):
    """An effect generator or composed effect does not honour its contract."""


class ImmutableConfigError(ConfigurationError):
    """A call-site option tried to override an immutable one (strict mode)."""


# ── Preconditions ──────────────────────────────────────────────────

class PreconditionError(ClipcueError):
    """The target's current state forbids the requested transition."""


class InvalidEntranceAttempt(PreconditionError):
    pass


class InvalidExitAttempt(PreconditionError):
    pass


class InvalidTargetError(PreconditionError, TypeError):
    """The target kind does not match the clip category."""


# ── Operation conflicts ────────────────────────────────────────────

class OperationConflictError(ClipcueError):
    """The call conflicts with playback that is in progress (or paused)."""


class SequenceBusyError(OperationConflictError):
    """Sequence/timeline structure is locked while playback is in flight."""


class ChildPlaybackError(OperationConflictError):
    """A clip owned by a sequence was driven directly."""


class TimeParadoxError(OperationConflictError):
    """Tried to remove sequences the timeline has already played."""


class LateSchedulingError(OperationConflictError):
    """A roadblock was registered for a point that has already passed."""


# ── Ranges ─────────────────────────────────────────────────────────

class RangeError(ClipcueError, ValueError):
    """A discrete option was given a value outside its valid set."""


class InvalidPhasePositionError(RangeError):
    """A roadblock position falls outside the phase it names."""
