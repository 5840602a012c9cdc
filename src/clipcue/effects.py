"""Effect composition.

An EffectGenerator is a named recipe: default and immutable config plus a
compose_effect(ctx, *options) callable. Composing yields a ComposedEffect,
the concrete callables one playback runs:

  forward_keyframes()   -> list of keyframe dicts
  backward_keyframes()  -> list of keyframe dicts
  forward_mutator()     -> per-frame callable
  backward_mutator()    -> per-frame callable

A missing backward callable means "replay the forward output with time
reversed". Effect code reads progress only through ctx.compute_tween().
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable

from .errors import ConfigurationError, RangeError


logger = logging.getLogger(__name__)

CALLABLE_FIELDS = (
    "forward_keyframes", "backward_keyframes",
    "forward_mutator", "backward_mutator",
)


class CompositionFrequency(str, Enum):
    ON_FIRST_PLAY_ONLY = "on-first-play-only"
    ON_EVERY_PLAY = "on-every-play"

    @classmethod
    def parse(cls, value) -> "CompositionFrequency":
        try:
            return cls(value)
        except ValueError:
            raise RangeError(
                f"Invalid composition_frequency '{value}'. "
                f"Valid: {sorted(f.value for f in cls)}"
            ) from None


@dataclass(frozen=True)
class ComposedEffect:
    forward_keyframes: Callable[[], list] | None = None
    backward_keyframes: Callable[[], list] | None = None
    forward_mutator: Callable[[], Callable[[], None]] | None = None
    backward_mutator: Callable[[], Callable[[], None]] | None = None

    @classmethod
    def from_result(cls, result: Any, effect_name: str) -> "ComposedEffect":
        """Accept what compose_effect returned and check its shape.

        Raises:
            ConfigurationError: Not a ComposedEffect/mapping, unknown keys,
                non-callable entries, all four callables absent, or a
                backward callable without its forward counterpart.
        """
        if isinstance(result, Mapping):
            unknown = set(result) - set(CALLABLE_FIELDS)
            if unknown:
                raise ConfigurationError(
                    f"Effect '{effect_name}': unknown composed-effect keys "
                    f"{sorted(unknown)}. Valid: {list(CALLABLE_FIELDS)}"
                )
            result = cls(**result)
        elif not isinstance(result, cls):
            raise ConfigurationError(
                f"Effect '{effect_name}': compose_effect must return a "
                f"ComposedEffect or mapping, got {type(result).__name__}"
            )

        for name in CALLABLE_FIELDS:
            value = getattr(result, name)
            if value is not None and not callable(value):
                raise ConfigurationError(
                    f"Effect '{effect_name}': {name} must be callable, "
                    f"got {type(value).__name__}"
                )
        if all(getattr(result, name) is None for name in CALLABLE_FIELDS):
            raise ConfigurationError(
                f"Effect '{effect_name}': composed effect has no keyframe "
                f"or mutator callables"
            )
        if result.backward_keyframes and not result.forward_keyframes:
            raise ConfigurationError(
                f"Effect '{effect_name}': backward_keyframes requires forward_keyframes"
            )
        if result.backward_mutator and not result.forward_mutator:
            raise ConfigurationError(
                f"Effect '{effect_name}': backward_mutator requires forward_mutator"
            )
        return result


def _freeze(config, what: str) -> Mapping:
    if config is None:
        return MappingProxyType({})
    if not isinstance(config, Mapping):
        raise ConfigurationError(f"{what} must be a mapping, got {type(config).__name__}")
    return MappingProxyType(dict(config))


@dataclass(frozen=True)
class EffectGenerator:
    compose_effect: Callable[..., ComposedEffect | Mapping]
    default_config: Mapping = field(default_factory=dict)
    immutable_config: Mapping = field(default_factory=dict)
    composition_frequency: CompositionFrequency = CompositionFrequency.ON_EVERY_PLAY

    def __post_init__(self):
        if not callable(self.compose_effect):
            raise ConfigurationError("compose_effect must be callable")
        object.__setattr__(self, "default_config", _freeze(self.default_config, "default_config"))
        object.__setattr__(self, "immutable_config", _freeze(self.immutable_config, "immutable_config"))
        object.__setattr__(
            self, "composition_frequency",
            CompositionFrequency.parse(self.composition_frequency),
        )

    @classmethod
    def from_mapping(cls, data: Mapping) -> "EffectGenerator":
        """Build a generator from {compose_effect, default_config, ...}."""
        if not isinstance(data, Mapping) or "compose_effect" not in data:
            raise ConfigurationError(
                "Effect generator needs a 'compose_effect' callable"
            )
        unknown = set(data) - {
            "compose_effect", "default_config", "immutable_config", "composition_frequency",
        }
        if unknown:
            raise ConfigurationError(f"Effect generator: unknown fields {sorted(unknown)}")
        return cls(**data)


class EffectBank(Mapping):
    """Read-only name → EffectGenerator mapping."""

    def __init__(self, generators: Mapping | None = None):
        entries = {}
        for name, gen in (generators or {}).items():
            if not isinstance(name, str) or not name:
                raise ConfigurationError(f"Effect names must be non-empty strings, got {name!r}")
            if not isinstance(gen, EffectGenerator):
                try:
                    gen = EffectGenerator.from_mapping(gen)
                except ConfigurationError as e:
                    raise ConfigurationError(f"Effect '{name}': {e}") from e
            entries[name] = gen
        self._entries = entries

    def __getitem__(self, name):
        return self._entries[name]

    def __iter__(self):
        return iter(self._entries)

    def __len__(self):
        return len(self._entries)

    def __repr__(self):
        return f"EffectBank({sorted(self._entries)})"

    def merged(self, other: Mapping) -> "EffectBank":
        """New bank with other's generators added (other wins on clashes)."""
        combined = dict(self._entries)
        combined.update(EffectBank(other)._entries)
        return EffectBank(combined)


class AnchorStack:
    """Scroll anchors saved by forward passes and restored by rewinds."""

    def __init__(self):
        self._items: list = []

    def push(self, value) -> None:
        self._items.append(value)

    def pop(self):
        if not self._items:
            raise IndexError("anchor stack is empty")
        return self._items.pop()

    def peek(self):
        return self._items[-1] if self._items else None

    def __len__(self):
        return len(self._items)


class CompositionContext:
    """What effect code sees while composing and while its callables run.

    One context belongs to one clip. The clip keeps `tween_progress`
    current before invoking any effect callable, so compute_tween() always
    answers for the callable that is running.
    """

    def __init__(self, clip):
        self._clip = clip
        self.tween_progress = 0.0

    @property
    def target(self):
        return self._clip.target

    @property
    def category(self) -> str:
        return self._clip.category.value

    @property
    def effect_name(self) -> str:
        return self._clip.effect_name

    @property
    def config(self) -> Mapping:
        return MappingProxyType(self._clip.config)

    @property
    def anchors(self) -> AnchorStack:
        return self._clip.anchor_stack

    def compute_tween(self, start: float, end: float) -> float:
        return start + (end - start) * self.tween_progress


def compose(generator: EffectGenerator, ctx: CompositionContext, options: tuple) -> ComposedEffect:
    """Run the generator's compose_effect and validate the result."""
    result = generator.compose_effect(ctx, *options)
    composed = ComposedEffect.from_result(result, ctx.effect_name)
    logger.debug("Composed effect '%s' for %s", ctx.effect_name, ctx.target)
    return composed


def produce_keyframes(producer: Callable, effect_name: str) -> list[dict]:
    frames = producer()
    if frames is None:
        return []
    if not isinstance(frames, (list, tuple)) or not all(isinstance(f, Mapping) for f in frames):
        raise ConfigurationError(
            f"Effect '{effect_name}': keyframe producer must return a list of mappings"
        )
    return [dict(f) for f in frames]


def produce_mutator(producer: Callable, effect_name: str) -> Callable[[], None]:
    mutator = producer()
    if not callable(mutator):
        raise ConfigurationError(
            f"Effect '{effect_name}': mutator producer must return a callable"
        )
    return mutator
