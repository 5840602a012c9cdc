"""Effect recipes for the demo timeline (examples/demo_timeline.yaml).

Each compose function receives the composition context plus any options
listed in the manifest, and returns the callables one playback runs.

Usage:
    clipcue play --manifest examples/demo_timeline.yaml --verbose
    clipcue schedule --manifest examples/demo_timeline.yaml
"""

from clipcue.effects import ComposedEffect


def compose_fade_in(ctx):
    return ComposedEffect(
        forward_keyframes=lambda: [{"opacity": 0}, {"opacity": 1}],
    )


def compose_fade_out(ctx):
    return ComposedEffect(
        forward_keyframes=lambda: [{"opacity": 1}, {"opacity": 0}],
    )


def compose_highlight(ctx, color="yellow"):
    # Plain mappings work too.
    return {
        "forward_keyframes": lambda: [
            {"background-color": "transparent"},
            {"background-color": color},
            {"background-color": "transparent"},
        ],
    }


def compose_slide(ctx, dx=0, dy=0):
    """Move the target by (dx, dy) and remember where it started."""
    target = ctx.target
    left, top, width, height = target.box

    def forward_mutator():
        def step():
            target.box = (
                ctx.compute_tween(left, left + dx),
                ctx.compute_tween(top, top + dy),
                width,
                height,
            )
        return step

    return ComposedEffect(forward_mutator=forward_mutator)


def compose_draw_line(ctx):
    return ComposedEffect(
        forward_keyframes=lambda: [{"stroke-dashoffset": 100}, {"stroke-dashoffset": 0}],
    )


def compose_erase_line(ctx):
    return ComposedEffect(
        forward_keyframes=lambda: [{"stroke-dashoffset": 0}, {"stroke-dashoffset": -100}],
    )
