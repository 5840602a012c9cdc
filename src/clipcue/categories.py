"""Clip categories and their capability table.

Each category contributes default config, immutable config, the kind of
target it accepts, and lifecycle hooks. Hooks are plain functions taking
the clip; they fire at the active-phase boundaries:

  on_start_forward    before forward keyframes are attached
  on_finish_forward   after forward keyframes are committed
  on_start_backward   before backward keyframes are attached
  on_finish_backward  after backward keyframes are committed

Per-clip state a hook needs to undo later lives in clip.bookkeeping.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Callable

from .errors import InvalidEntranceAttempt, InvalidExitAttempt, RangeError
from .targets import (
    DISPLAY_NONE_CLASS,
    HIDING_CLASSES,
    VISIBILITY_HIDDEN_CLASS,
    hidden_markers,
)


class Category(str, Enum):
    ENTRANCE = "Entrance"
    EXIT = "Exit"
    EMPHASIS = "Emphasis"
    MOTION = "Motion"
    TRANSITION = "Transition"
    SCROLLER = "Scroller"
    CONNECTOR_SETTER = "ConnectorSetter"
    CONNECTOR_ENTRANCE = "ConnectorEntrance"
    CONNECTOR_EXIT = "ConnectorExit"

    @classmethod
    def parse(cls, value) -> "Category":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise RangeError(
                f"Invalid category '{value}'. Valid: {sorted(c.value for c in cls)}"
            ) from None


Hook = Callable[[object], None]


@dataclass(frozen=True)
class CategorySpec:
    category: Category
    default_config: Mapping = field(default_factory=dict)
    immutable_config: Mapping = field(default_factory=dict)
    connector_target: bool = False
    on_initialize: Hook | None = None
    on_start_forward: Hook | None = None
    on_finish_forward: Hook | None = None
    on_start_backward: Hook | None = None
    on_finish_backward: Hook | None = None

    def __post_init__(self):
        object.__setattr__(self, "default_config", MappingProxyType(dict(self.default_config)))
        object.__setattr__(self, "immutable_config", MappingProxyType(dict(self.immutable_config)))


# ── Entrance ───────────────────────────────────────────────────────

def _apply_hide_now(clip):
    hide_now_type = clip.config.get("hide_now_type")
    if hide_now_type:
        clip.target.classes.add(HIDING_CLASSES[hide_now_type])


def _entrance_start_forward(clip):
    target = clip.target
    if DISPLAY_NONE_CLASS in target.classes:
        clip.bookkeeping["hiding_class"] = DISPLAY_NONE_CLASS
    elif VISIBILITY_HIDDEN_CLASS in target.classes:
        clip.bookkeeping["hiding_class"] = VISIBILITY_HIDDEN_CLASS
    else:
        if target.computed_style("display") == "none":
            state = (
                "its CSS display property is 'none' but it lacks the class "
                f"'{DISPLAY_NONE_CLASS}'"
            )
        elif target.computed_style("visibility") == "hidden":
            state = (
                "its CSS visibility property is 'hidden' but it lacks the class "
                f"'{VISIBILITY_HIDDEN_CLASS}'"
            )
        else:
            state = "it is not hidden"
        raise clip.error(
            InvalidEntranceAttempt,
            f"Cannot play an entrance on {target!r} because {state}. Entrances "
            f"need '{DISPLAY_NONE_CLASS}' or '{VISIBILITY_HIDDEN_CLASS}' on the target.",
        )
    target.classes.discard(clip.bookkeeping["hiding_class"])


def _entrance_finish_backward(clip):
    clip.target.classes.add(clip.bookkeeping["hiding_class"])


# ── Exit ───────────────────────────────────────────────────────────

def _exit_start_forward(clip):
    reasons = hidden_markers(clip.target)
    if reasons:
        raise clip.error(
            InvalidExitAttempt,
            f"Cannot play an exit on {clip.target!r} because it is already "
            f"hidden: {'; '.join(reasons)}.",
        )


def _exit_finish_forward(clip):
    clip.target.classes.add(HIDING_CLASSES[clip.config["exit_type"]])


def _exit_start_backward(clip):
    clip.target.classes.discard(HIDING_CLASSES[clip.config["exit_type"]])


# ── Transition ─────────────────────────────────────────────────────

def _transition_finish_forward(clip):
    if not clip.config.get("remove_inline_styles_on_finish"):
        return
    frame = clip.effect_options[0] if clip.effect_options else {}
    if isinstance(frame, Mapping):
        clip.target.clear_styles(frame.keys())


# ── Connectors ─────────────────────────────────────────────────────

def _check_connector_hide_now(clip):
    if clip.config.get("hide_now_type") not in (None, "display-none"):
        raise RangeError(
            f"ConnectorEntrance: invalid hide_now_type "
            f"'{clip.config['hide_now_type']}'. Valid: ['display-none'] or None"
        )
    _apply_hide_now(clip)


def _setter_start_forward(clip):
    target = clip.target
    clip.bookkeeping["previous"] = (target.point_a, target.point_b, target.tracking)
    point_a, point_b = clip.bookkeeping["points"]
    tracking = clip.bookkeeping["tracking"]
    target.set_endpoints(
        target.point_a if point_a == "preserve" else point_a,
        target.point_b if point_b == "preserve" else point_b,
    )
    if tracking != "preserve":
        target.tracking = tracking == "on"


def _setter_start_backward(clip):
    point_a, point_b, tracking = clip.bookkeeping["previous"]
    clip.target.set_endpoints(point_a, point_b)
    clip.target.tracking = tracking


def _connector_show(clip):
    target = clip.target
    target.classes.discard(DISPLAY_NONE_CLASS)
    target.update_endpoints()
    if target.tracking:
        target.continuously_update_endpoints()


def _connector_hide(clip):
    clip.target.cancel_continuous_updates()
    clip.target.classes.add(DISPLAY_NONE_CLASS)


def _connector_entrance_start_forward(clip):
    if DISPLAY_NONE_CLASS not in clip.target.classes:
        raise clip.error(
            InvalidEntranceAttempt,
            f"Cannot play a connector entrance on {clip.target!r} because it "
            f"lacks the class '{DISPLAY_NONE_CLASS}'.",
        )
    _connector_show(clip)


def _connector_exit_start_forward(clip):
    reasons = hidden_markers(clip.target)
    if reasons:
        raise clip.error(
            InvalidExitAttempt,
            f"Cannot play a connector exit on {clip.target!r} because it is "
            f"already hidden: {'; '.join(reasons)}.",
        )


# ── Capability table ───────────────────────────────────────────────

CATEGORY_SPECS = {
    spec.category: spec
    for spec in (
        CategorySpec(
            Category.ENTRANCE,
            default_config={"hide_now_type": None},
            immutable_config={"commits_styles": False},
            on_initialize=_apply_hide_now,
            on_start_forward=_entrance_start_forward,
            on_finish_backward=_entrance_finish_backward,
        ),
        CategorySpec(
            Category.EXIT,
            default_config={"exit_type": "display-none"},
            immutable_config={"commits_styles": False},
            on_start_forward=_exit_start_forward,
            on_finish_forward=_exit_finish_forward,
            on_start_backward=_exit_start_backward,
        ),
        CategorySpec(Category.EMPHASIS),
        CategorySpec(Category.MOTION, default_config={"composite": "accumulate"}),
        CategorySpec(
            Category.TRANSITION,
            default_config={"remove_inline_styles_on_finish": False},
            on_finish_forward=_transition_finish_forward,
        ),
        CategorySpec(Category.SCROLLER, default_config={"commits_styles": False}),
        CategorySpec(
            Category.CONNECTOR_SETTER,
            immutable_config={
                "duration": 0,
                "commits_styles": False,
                "starts_next_clip_too": True,
            },
            connector_target=True,
            on_start_forward=_setter_start_forward,
            on_start_backward=_setter_start_backward,
        ),
        CategorySpec(
            Category.CONNECTOR_ENTRANCE,
            default_config={"hide_now_type": None},
            immutable_config={"commits_styles": False},
            connector_target=True,
            on_initialize=_check_connector_hide_now,
            on_start_forward=_connector_entrance_start_forward,
            on_finish_backward=_connector_hide,
        ),
        CategorySpec(
            Category.CONNECTOR_EXIT,
            immutable_config={"commits_styles": False},
            connector_target=True,
            on_start_forward=_connector_exit_start_forward,
            on_finish_forward=_connector_hide,
            on_start_backward=_connector_show,
        ),
    )
}
