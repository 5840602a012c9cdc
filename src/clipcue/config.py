"""Clip configuration resolver.

Effective config is built from four layers plus two immutable overlays:

  1. base defaults          (BASE_DEFAULT_CONFIG)
  2. category defaults      (categories.CATEGORY_SPECS[...].default_config)
  3. generator defaults     (EffectGenerator.default_config)
  4. call-site config       (what the caller passed to the factory)
  5. generator immutables   (EffectGenerator.immutable_config)
  6. category immutables    (categories.CATEGORY_SPECS[...].immutable_config)

Later layers overlay earlier ones, except css_classes whose four lists are
concatenated across layers 1-4. A call-site value for an immutable option
is discarded (logged at DEBUG) unless strict mode asks for an error.
"""

import copy
import logging
from collections.abc import Mapping

from .common import is_number
from .easing import is_valid_easing
from .errors import ImmutableConfigError, RangeError


logger = logging.getLogger(__name__)

MIN_DURATION = 0.01

CSS_CLASS_KEYS = (
    "to_add_on_start", "to_remove_on_start",
    "to_add_on_finish", "to_remove_on_finish",
)

BASE_DEFAULT_CONFIG = {
    "commits_styles": True,
    "composite": "replace",
    "css_classes": {key: [] for key in CSS_CLASS_KEYS},
    "delay": 0,
    "duration": 500,
    "easing": "linear",
    "end_delay": 0,
    "playback_rate": 1,
    "starts_next_clip_too": False,
    "starts_with_previous": False,
}

VALID_COMPOSITES = {"replace", "add", "accumulate"}
VALID_HIDE_NOW_TYPES = {None, "display-none", "visibility-hidden"}
VALID_EXIT_TYPES = {"display-none", "visibility-hidden"}


def _merge_css_classes(base: dict, extra) -> dict:
    if not isinstance(extra, Mapping):
        raise RangeError(f"css_classes must be a mapping, got {type(extra).__name__}")
    unknown = set(extra) - set(CSS_CLASS_KEYS)
    if unknown:
        raise RangeError(
            f"Unknown css_classes keys {sorted(unknown)}. Valid: {list(CSS_CLASS_KEYS)}"
        )
    merged = {key: list(base.get(key, [])) for key in CSS_CLASS_KEYS}
    for key, classes in extra.items():
        if isinstance(classes, str):
            classes = [classes]
        merged[key].extend(classes)
    return merged


def _overlay(config: dict, layer: Mapping | None, merge_classes: bool = True) -> None:
    for key, value in (layer or {}).items():
        if key == "css_classes" and merge_classes:
            config[key] = _merge_css_classes(config[key], value)
        else:
            config[key] = copy.deepcopy(value)


def resolve_config(
    category_spec,
    generator=None,
    call_site: Mapping | None = None,
    strict: bool = False,
) -> dict:
    """Merge the configuration layers for one clip and validate the result.

    Args:
        category_spec: CategorySpec of the clip's category.
        generator: EffectGenerator (or None for generator-less clips).
        call_site: Options passed at clip construction.
        strict: Raise ImmutableConfigError instead of discarding call-site
            values for immutable options.

    Returns:
        A fresh, validated config dict.

    Raises:
        RangeError: Unknown option names or invalid values.
        ImmutableConfigError: Strict mode and an immutable option overridden.
    """
    call_site = dict(call_site or {})
    gen_defaults = generator.default_config if generator else {}
    gen_immutables = generator.immutable_config if generator else {}

    valid_keys = set(BASE_DEFAULT_CONFIG) | set(category_spec.default_config) | set(
        category_spec.immutable_config
    )
    for layer_name, layer in (
        ("generator default_config", gen_defaults),
        ("call-site config", call_site),
        ("generator immutable_config", gen_immutables),
    ):
        unknown = set(layer) - valid_keys
        if unknown:
            raise RangeError(
                f"{category_spec.category.value}: unknown option(s) {sorted(unknown)} "
                f"in {layer_name}. Valid: {sorted(valid_keys)}"
            )

    immutables = dict(gen_immutables)
    immutables.update(category_spec.immutable_config)
    for key in sorted(set(call_site) & set(immutables)):
        if call_site[key] == immutables[key]:
            continue
        message = (
            f"{category_spec.category.value}: option '{key}' is immutable "
            f"(fixed to {immutables[key]!r}); ignoring {call_site[key]!r}"
        )
        if strict:
            raise ImmutableConfigError(message)
        logger.debug(message)

    config = copy.deepcopy(BASE_DEFAULT_CONFIG)
    _overlay(config, category_spec.default_config)
    _overlay(config, gen_defaults)
    _overlay(config, call_site)
    _overlay(config, gen_immutables, merge_classes=False)
    _overlay(config, category_spec.immutable_config, merge_classes=False)

    validate_config(config, category_spec.category.value)
    config["duration"] = max(config["duration"], MIN_DURATION)
    return config


def validate_config(config: dict, label: str) -> None:
    """Check option values. Raises RangeError naming the offending value."""
    for key in ("delay", "duration", "end_delay"):
        value = config[key]
        if not is_number(value) or value < 0:
            raise RangeError(f"{label}: {key} must be a number >= 0, got {value!r}")
    rate = config["playback_rate"]
    if not is_number(rate) or rate <= 0:
        raise RangeError(f"{label}: playback_rate must be a number > 0, got {rate!r}")
    if config["composite"] not in VALID_COMPOSITES:
        raise RangeError(
            f"{label}: invalid composite '{config['composite']}'. "
            f"Valid: {sorted(VALID_COMPOSITES)}"
        )
    if not is_valid_easing(config["easing"]):
        raise RangeError(f"{label}: invalid easing {config['easing']!r}")
    for key in ("commits_styles", "starts_next_clip_too", "starts_with_previous"):
        if not isinstance(config[key], bool):
            raise RangeError(f"{label}: {key} must be true/false, got {config[key]!r}")
    if "hide_now_type" in config and config["hide_now_type"] not in VALID_HIDE_NOW_TYPES:
        raise RangeError(
            f"{label}: invalid hide_now_type '{config['hide_now_type']}'. "
            f"Valid: {sorted(t for t in VALID_HIDE_NOW_TYPES if t)} or None"
        )
    if "exit_type" in config and config["exit_type"] not in VALID_EXIT_TYPES:
        raise RangeError(
            f"{label}: invalid exit_type '{config['exit_type']}'. "
            f"Valid: {sorted(VALID_EXIT_TYPES)}"
        )
