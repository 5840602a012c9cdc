"""Shared test fixtures for clipcue tests."""

import logging

import pytest

from clipcue.clock import VirtualClock
from clipcue.effects import ComposedEffect, EffectGenerator
from clipcue.factories import ClipFactories
from clipcue.targets import DISPLAY_NONE_CLASS, ConnectorElement, Element


def compose_fade(ctx):
    return ComposedEffect(forward_keyframes=lambda: [{"opacity": 0}, {"opacity": 1}])


def compose_fade_out(ctx):
    return ComposedEffect(forward_keyframes=lambda: [{"opacity": 1}, {"opacity": 0}])


def compose_grow(ctx, amount=100):
    """Mutator effect: writes ctx.compute_tween(0, amount) into styles['width']."""
    def forward_mutator():
        def step():
            ctx.target.styles["width"] = ctx.compute_tween(0, amount)
        return step
    return ComposedEffect(forward_mutator=forward_mutator)


def compose_line(ctx):
    return ComposedEffect(forward_keyframes=lambda: [{"stroke": 0}, {"stroke": 1}])


DEMO_BANKS = {
    "Entrance": {"fade-in": EffectGenerator(compose_fade)},
    "Exit": {"fade-out": EffectGenerator(compose_fade_out)},
    "Emphasis": {"pulse": EffectGenerator(compose_fade)},
    "Motion": {"grow": EffectGenerator(compose_grow)},
    "Transition": {"fade": EffectGenerator(compose_fade)},
    "Scroller": {"scroll": EffectGenerator(compose_grow)},
    "ConnectorEntrance": {"draw": EffectGenerator(compose_line)},
    "ConnectorExit": {"erase": EffectGenerator(compose_line)},
}


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def factories(clock):
    """ClipFactories over DEMO_BANKS, on a virtual clock."""
    return ClipFactories(DEMO_BANKS, clock=clock)


@pytest.fixture
def hidden_element():
    return Element("hidden", classes=[DISPLAY_NONE_CLASS])


@pytest.fixture
def visible_element():
    return Element("visible")


@pytest.fixture
def connector():
    return ConnectorElement("line", classes=[DISPLAY_NONE_CLASS])


@pytest.fixture
def clean_logger():
    """Restore the 'clipcue' logger after a test that configures logging."""
    logger = logging.getLogger("clipcue")
    handlers, level = list(logger.handlers), logger.level
    yield logger
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)
    if hasattr(logger, "_clipcue_logging_configured"):
        del logger._clipcue_logging_configured
