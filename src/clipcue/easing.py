"""Easing curves.

Easings map raw progress through an active phase (0..1) to eased
progress. Named easings follow the CSS keywords; any other curve can be
given as 'cubic-bezier(x1, y1, x2, y2)'. Curves are evaluated with numpy
so a whole array of sample points can be eased at once.
"""

import re
from functools import lru_cache
from typing import Callable

import numpy as np

from .errors import RangeError


EasingFunc = Callable[[float | np.ndarray], float | np.ndarray]

# Control points (x1, y1, x2, y2) for the named curves.
NAMED_EASINGS = {
    "linear": (0.0, 0.0, 1.0, 1.0),
    "ease": (0.25, 0.1, 0.25, 1.0),
    "ease-in": (0.42, 0.0, 1.0, 1.0),
    "ease-out": (0.0, 0.0, 0.58, 1.0),
    "ease-in-out": (0.42, 0.0, 0.58, 1.0),
    "ease-in-sine": (0.12, 0.0, 0.39, 0.0),
    "ease-out-sine": (0.61, 1.0, 0.88, 1.0),
    "ease-in-out-sine": (0.37, 0.0, 0.63, 1.0),
    "ease-in-quad": (0.11, 0.0, 0.5, 0.0),
    "ease-out-quad": (0.5, 1.0, 0.89, 1.0),
    "ease-in-out-quad": (0.45, 0.0, 0.55, 1.0),
    "ease-in-cubic": (0.32, 0.0, 0.67, 0.0),
    "ease-out-cubic": (0.33, 1.0, 0.68, 1.0),
    "ease-in-out-cubic": (0.65, 0.0, 0.35, 1.0),
    "ease-in-back": (0.36, 0.0, 0.66, -0.56),
    "ease-out-back": (0.34, 1.56, 0.64, 1.0),
}

_BEZIER_RE = re.compile(
    r"cubic-bezier\(\s*([-\d.]+)\s*,\s*([-\d.]+)\s*,\s*([-\d.]+)\s*,\s*([-\d.]+)\s*\)"
)


def cubic_bezier(x1: float, y1: float, x2: float, y2: float) -> EasingFunc:
    """Build an easing function from CSS cubic-bezier control points.

    x(t) is inverted with a few Newton iterations followed by bisection
    for the samples Newton could not settle, all vectorized over the input.

    Raises:
        RangeError: x1 or x2 outside [0, 1] (the curve would not be a function).
    """
    if not (0 <= x1 <= 1 and 0 <= x2 <= 1):
        raise RangeError(
            f"cubic-bezier x control points must be within [0, 1], got ({x1}, {x2})"
        )

    cx = 3 * x1
    bx = 3 * (x2 - x1) - cx
    ax = 1 - cx - bx
    cy = 3 * y1
    by = 3 * (y2 - y1) - cy
    ay = 1 - cy - by

    def sample_x(t):
        return ((ax * t + bx) * t + cx) * t

    def sample_y(t):
        return ((ay * t + by) * t + cy) * t

    def slope_x(t):
        return (3 * ax * t + 2 * bx) * t + cx

    def solve_t(x: np.ndarray) -> np.ndarray:
        t = x.copy()
        for _ in range(8):
            err = sample_x(t) - x
            d = slope_x(t)
            ok = np.abs(d) > 1e-6
            t = np.where(ok, t - err / np.where(ok, d, 1.0), t)
        unsettled = np.abs(sample_x(t) - x) > 1e-7
        if np.any(unsettled):
            lo = np.zeros_like(x)
            hi = np.ones_like(x)
            tb = x.copy()
            for _ in range(40):
                too_high = sample_x(tb) > x
                hi = np.where(too_high, tb, hi)
                lo = np.where(too_high, lo, tb)
                tb = (lo + hi) / 2
            t = np.where(unsettled, tb, t)
        return np.clip(t, 0.0, 1.0)

    def ease(progress):
        x = np.clip(np.asarray(progress, dtype=float), 0.0, 1.0)
        y = sample_y(solve_t(np.atleast_1d(x)))
        # Endpoints are exact regardless of solver error.
        y = np.where(np.atleast_1d(x) <= 0.0, 0.0, y)
        y = np.where(np.atleast_1d(x) >= 1.0, 1.0, y)
        if x.ndim == 0:
            return float(y[0])
        return y

    return ease


def linear(progress):
    x = np.clip(np.asarray(progress, dtype=float), 0.0, 1.0)
    return float(x) if x.ndim == 0 else x


@lru_cache(maxsize=None)
def get_easing(name: str) -> EasingFunc:
    """Look up an easing by CSS keyword or 'cubic-bezier(...)' string.

    Raises:
        RangeError: Unknown easing name or malformed cubic-bezier.
    """
    if name == "linear":
        return linear
    if name in NAMED_EASINGS:
        return cubic_bezier(*NAMED_EASINGS[name])
    match = _BEZIER_RE.fullmatch(name.strip())
    if match:
        return cubic_bezier(*(float(g) for g in match.groups()))
    raise RangeError(
        f"Invalid easing '{name}'. Valid: {sorted(NAMED_EASINGS)} "
        f"or 'cubic-bezier(x1, y1, x2, y2)'"
    )


def is_valid_easing(name) -> bool:
    if not isinstance(name, str):
        return False
    try:
        get_easing(name)
    except RangeError:
        return False
    return True


def invert_easing(ease: EasingFunc) -> EasingFunc:
    """Return the easing that traces `ease` backwards in time.

    inverted(u) == 1 - ease(1 - u), so a backward pass that runs its own
    progress 0 -> 1 follows the same curve as the forward pass reversed.
    """
    def inverted(progress):
        return 1 - ease(1 - np.asarray(progress, dtype=float))
    return inverted


def sample_curve(ease: EasingFunc, samples: int = 11) -> np.ndarray:
    """Evaluate an easing at evenly spaced points (inclusive of 0 and 1)."""
    return np.asarray(ease(np.linspace(0.0, 1.0, samples)), dtype=float)
