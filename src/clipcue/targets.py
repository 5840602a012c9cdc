"""Render targets.

The engine never paints anything. It talks to a target through a small
protocol: a mutable set of class markers, a computed-style query, a
bounding box, and keyframe attach/commit/detach. Element implements that
protocol in memory (and is what tests and headless runs animate);
ConnectorElement adds the endpoint API used by the Connector categories.

Hiding is expressed by two class markers:
  cc-display-none       removed from layout entirely
  cc-visibility-hidden  invisible but still occupying space
"""

import itertools


DISPLAY_NONE_CLASS = "cc-display-none"
VISIBILITY_HIDDEN_CLASS = "cc-visibility-hidden"

# exit_type / hide_now_type value → marker class.
HIDING_CLASSES = {
    "display-none": DISPLAY_NONE_CLASS,
    "visibility-hidden": VISIBILITY_HIDDEN_CLASS,
}

DEFAULT_STYLES = {
    "display": "block",
    "visibility": "visible",
    "opacity": "1",
}

_ids = itertools.count(1)


class Element:
    """In-memory target with classes, inline styles and keyframes."""

    def __init__(
        self,
        name: str | None = None,
        classes=(),
        styles: dict | None = None,
        box: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0),
    ):
        self.name = name or f"element-{next(_ids)}"
        self.classes: set[str] = set(classes)
        self.styles: dict[str, object] = dict(styles or {})
        self.box = tuple(box)
        self.frames: list[dict] = []
        self.frames_reversed = False
        self.composite = "replace"

    def __repr__(self):
        return f"<{type(self).__name__} {self.name!r}>"

    # ── Queries ────────────────────────────────────────────────────

    def computed_style(self, prop: str) -> str:
        """Resolved value of a style property, markers taken into account."""
        if prop == "display" and DISPLAY_NONE_CLASS in self.classes:
            return "none"
        if prop == "visibility" and VISIBILITY_HIDDEN_CLASS in self.classes:
            return "hidden"
        if prop in self.styles:
            return str(self.styles[prop])
        return DEFAULT_STYLES.get(prop, "")

    def bounding_box(self) -> tuple[float, float, float, float]:
        """(left, top, width, height)."""
        if self.computed_style("display") == "none":
            return (0.0, 0.0, 0.0, 0.0)
        return self.box

    def snapshot(self) -> dict:
        """Copy of the tracked state (classes, inline styles, box)."""
        return {
            "classes": frozenset(self.classes),
            "styles": dict(self.styles),
            "box": self.box,
        }

    def restore(self, snapshot: dict) -> None:
        """Put back state captured by snapshot()."""
        self.classes.clear()
        self.classes.update(snapshot["classes"])
        self.styles.clear()
        self.styles.update(snapshot["styles"])
        self.box = snapshot["box"]

    # ── Keyframes ──────────────────────────────────────────────────

    def attach_frames(
        self, frames: list[dict], reverse: bool = False, composite: str = "replace",
    ) -> None:
        self.frames = [dict(f) for f in frames]
        self.frames_reversed = reverse
        self.composite = composite

    def detach_frames(self) -> None:
        self.frames = []
        self.frames_reversed = False

    def commit_frames(self) -> None:
        """Write the final keyframe's properties into the inline styles."""
        if not self.frames:
            return
        final = self.frames[0] if self.frames_reversed else self.frames[-1]
        for prop, value in final.items():
            if prop not in ("offset", "easing", "composite"):
                self.styles[prop] = value

    def clear_styles(self, props) -> None:
        for prop in props:
            self.styles.pop(prop, None)



class ConnectorElement(Element):
    """Element drawn between two endpoints, optionally tracking them."""

    def __init__(self, name: str | None = None, classes=(), styles=None, box=(0.0, 0.0, 0.0, 0.0)):
        super().__init__(name, classes, styles, box)
        self.point_a = None
        self.point_b = None
        self.tracking = False
        self.updating_continuously = False
        self.endpoint_updates = 0

    def snapshot(self) -> dict:
        state = super().snapshot()
        state["endpoints"] = (self.point_a, self.point_b)
        state["tracking"] = self.tracking
        state["updating_continuously"] = self.updating_continuously
        return state

    def restore(self, snapshot: dict) -> None:
        super().restore(snapshot)
        self.point_a, self.point_b = snapshot["endpoints"]
        self.tracking = snapshot["tracking"]
        self.updating_continuously = snapshot["updating_continuously"]

    def set_endpoints(self, point_a, point_b) -> None:
        self.point_a = point_a
        self.point_b = point_b

    def update_endpoints(self) -> None:
        self.endpoint_updates += 1

    def continuously_update_endpoints(self) -> None:
        self.updating_continuously = True

    def cancel_continuous_updates(self) -> None:
        self.updating_continuously = False


def is_connector(target) -> bool:
    return isinstance(target, ConnectorElement)


def hidden_markers(target) -> list[str]:
    """Reasons the target currently counts as hidden, for error messages."""
    reasons = []
    if DISPLAY_NONE_CLASS in target.classes:
        reasons.append(f"it has the class '{DISPLAY_NONE_CLASS}'")
    elif target.computed_style("display") == "none":
        reasons.append("its CSS display property is 'none'")
    if VISIBILITY_HIDDEN_CLASS in target.classes:
        reasons.append(f"it has the class '{VISIBILITY_HIDDEN_CLASS}'")
    elif target.computed_style("visibility") == "hidden":
        reasons.append("its CSS visibility property is 'hidden'")
    return reasons
