"""Scene manifest loader.

Parses YAML manifests that declare effect banks, render targets and the
sequences of a timeline, then builds the live objects.

Manifest schema:
  timeline:
    name: "intro"
    debug_mode: false
    playback_rate: 1
  paths:
    fx: "effects"                      # ${fx} substitution in strings
  effects:
    Entrance:
      fade-in:
        compose: "${fx}/fades.py:compose_fade_in"   # or "package.module:attr"
        default_config: {duration: 300}
        immutable_config: {}
        composition_frequency: on-every-play
  targets:
    box: {classes: [cc-display-none], styles: {opacity: 0}, box: [0, 0, 100, 40]}
    line: {connector: true}
  sequences:
    - description: "Show the box"
      tag: intro
      autoplays: false
      autoplays_next_sequence: false
      playback_rate: 1
      clips:
        - {category: Entrance, target: box, effect: fade-in, config: {duration: 500}}
        - {category: ConnectorSetter, target: line, point_a: [0, 0], point_b: preserve}
"""

from pathlib import Path

import yaml

from .categories import Category
from .clock import Clock
from .common import import_callable, is_number, resolve_path_vars_deep
from .effects import CompositionFrequency, EffectGenerator
from .factories import VALID_TRACKING, ClipFactories
from .sequence import Sequence
from .targets import ConnectorElement, Element
from .timeline import Timeline


VALID_TOP_LEVEL = {"timeline", "paths", "effects", "targets", "sequences"}
VALID_EFFECT_FIELDS = {"compose", "default_config", "immutable_config", "composition_frequency"}
VALID_TARGET_FIELDS = {"classes", "styles", "box", "connector"}
VALID_SEQUENCE_FIELDS = {
    "description", "tag", "autoplays", "autoplays_next_sequence", "playback_rate", "clips",
}
VALID_CLIP_FIELDS = {"category", "target", "effect", "options", "config", "point_a", "point_b", "tracking"}


def _check_fields(where: str, data: dict, valid: set) -> None:
    if not isinstance(data, dict):
        raise ValueError(f"{where}: expected a mapping, got {type(data).__name__}")
    unknown = set(data) - valid
    if unknown:
        raise ValueError(f"{where}: unknown field(s) {sorted(unknown)}. Valid: {sorted(valid)}")


def _normalize_tracking(value, where: str) -> str:
    # YAML reads bare on/off as booleans.
    if value is True:
        return "on"
    if value is False:
        return "off"
    if value not in VALID_TRACKING:
        raise ValueError(f"{where}: invalid tracking '{value}'. Valid: {list(VALID_TRACKING)}")
    return value


def load_manifest(manifest_path: str | Path) -> dict:
    """Load, validate, and normalize a scene manifest.

    Processing pipeline:
      1. Parse YAML.
      2. Resolve ${path} variables in every string value.
      3. Validate timeline settings and apply defaults.
      4. Validate effect entries per category (compose refs stay strings;
         they are imported by build_timeline).
      5. Validate targets.
      6. Validate sequences and their clips against targets and effects.

    Args:
        manifest_path: Path to the YAML manifest.

    Returns:
        Normalized config dict. config["base_dir"] is the manifest's
        directory, used to resolve relative effect files.

    Raises:
        ValueError: Missing/invalid fields.
    """
    manifest_path = Path(manifest_path)
    with open(manifest_path) as f:
        raw = yaml.safe_load(f) or {}
    _check_fields("Manifest", raw, VALID_TOP_LEVEL)

    paths = raw.get("paths", {}) or {}
    raw = {k: v for k, v in raw.items() if k != "paths"}
    raw = resolve_path_vars_deep(raw, paths)

    # Timeline settings.
    timeline = raw.get("timeline", {}) or {}
    _check_fields("Manifest timeline", timeline, {"name", "debug_mode", "playback_rate"})
    timeline.setdefault("name", manifest_path.stem)
    timeline.setdefault("debug_mode", False)
    timeline.setdefault("playback_rate", 1)
    rate = timeline["playback_rate"]
    if not is_number(rate) or rate <= 0:
        raise ValueError(f"Manifest timeline: playback_rate must be > 0, got {rate!r}")

    # Effects, per category.
    effects = raw.get("effects", {}) or {}
    if not isinstance(effects, dict):
        raise ValueError("Manifest effects: expected a mapping of category -> effects")
    normalized_effects = {}
    for category_name, entries in effects.items():
        category = Category.parse(category_name)
        if not isinstance(entries, dict):
            raise ValueError(f"Effects for {category.value}: expected a mapping of name -> effect")
        for name, entry in entries.items():
            where = f"Effect {category.value}/{name}"
            _check_fields(where, entry, VALID_EFFECT_FIELDS)
            if "compose" not in entry:
                raise ValueError(f"{where}: missing required field 'compose'")
            entry.setdefault("default_config", {})
            entry.setdefault("immutable_config", {})
            freq = entry.setdefault("composition_frequency", CompositionFrequency.ON_EVERY_PLAY.value)
            valid_freqs = sorted(f.value for f in CompositionFrequency)
            if freq not in valid_freqs:
                raise ValueError(f"{where}: invalid composition_frequency '{freq}'. Valid: {valid_freqs}")
        normalized_effects[category.value] = entries

    # Targets.
    targets = raw.get("targets", {}) or {}
    if not isinstance(targets, dict):
        raise ValueError("Manifest targets: expected a mapping of name -> target")
    for name, target in targets.items():
        if target is None:
            targets[name] = target = {}
        _check_fields(f"Target '{name}'", target, VALID_TARGET_FIELDS)
        target.setdefault("classes", [])
        target.setdefault("styles", {})
        target.setdefault("connector", False)
        box = target.setdefault("box", [0, 0, 0, 0])
        if not (isinstance(box, list) and len(box) == 4 and all(is_number(v) for v in box)):
            raise ValueError(f"Target '{name}': box must be [left, top, width, height], got {box!r}")

    # Sequences.
    if "sequences" not in raw:
        raise ValueError("Manifest: missing required 'sequences' section")
    sequences = raw["sequences"] or []
    for i, seq in enumerate(sequences):
        _check_fields(f"Sequence {i}", seq, VALID_SEQUENCE_FIELDS)
        seq.setdefault("description", f"sequence {i}")
        seq.setdefault("tag", "")
        seq.setdefault("autoplays", False)
        seq.setdefault("autoplays_next_sequence", False)
        seq.setdefault("playback_rate", 1)
        clips = seq.setdefault("clips", [])
        for j, clip in enumerate(clips):
            where = f"Sequence {i}, clip {j}"
            _check_fields(where, clip, VALID_CLIP_FIELDS)
            for required in ("category", "target"):
                if required not in clip:
                    raise ValueError(f"{where}: missing required field '{required}'")
            category = Category.parse(clip["category"])
            clip["category"] = category.value
            if clip["target"] not in targets:
                raise ValueError(
                    f"{where}: unknown target '{clip['target']}'. Valid: {sorted(targets)}"
                )
            if category.value.startswith("Connector") != bool(targets[clip["target"]]["connector"]):
                kind = "a connector" if category.value.startswith("Connector") else "a plain"
                raise ValueError(f"{where}: {category.value} needs {kind} target")
            clip.setdefault("config", {})
            if category is Category.CONNECTOR_SETTER:
                for point in ("point_a", "point_b"):
                    if point not in clip:
                        raise ValueError(f"{where}: missing required field '{point}'")
                clip["tracking"] = _normalize_tracking(clip.get("tracking", "preserve"), where)
                continue
            if "effect" not in clip:
                raise ValueError(f"{where}: missing required field 'effect'")
            bank = normalized_effects.get(category.value, {})
            if clip["effect"] not in bank:
                raise ValueError(
                    f"{where}: unknown {category.value} effect '{clip['effect']}'. "
                    f"Valid: {sorted(bank)}"
                )
            options = clip.setdefault("options", [])
            if not isinstance(options, list):
                raise ValueError(f"{where}: options must be a list, got {type(options).__name__}")

    return {
        "base_dir": str(manifest_path.parent),
        "timeline": timeline,
        "effects": normalized_effects,
        "targets": targets,
        "sequences": sequences,
    }


def build_banks(config: dict) -> dict:
    """Import compose callables and build EffectGenerators per category."""
    banks = {}
    for category, entries in config["effects"].items():
        bank = {}
        for name, entry in entries.items():
            bank[name] = EffectGenerator(
                compose_effect=import_callable(entry["compose"], config["base_dir"]),
                default_config=entry["default_config"],
                immutable_config=entry["immutable_config"],
                composition_frequency=entry["composition_frequency"],
            )
        banks[category] = bank
    return banks


def build_targets(config: dict) -> dict:
    targets = {}
    for name, spec in config["targets"].items():
        cls = ConnectorElement if spec["connector"] else Element
        targets[name] = cls(name, classes=spec["classes"], styles=spec["styles"], box=spec["box"])
    return targets


def _point(value):
    return value if value == "preserve" else tuple(value)


def build_timeline(config: dict, clock: Clock | None = None) -> tuple[Timeline, dict]:
    """Turn a normalized manifest into a Timeline.

    Returns:
        (timeline, targets) where targets maps names to the created
        Element / ConnectorElement instances.
    """
    factories = ClipFactories(build_banks(config), clock=clock)
    targets = build_targets(config)

    sequences = []
    for seq in config["sequences"]:
        clips = []
        for clip in seq["clips"]:
            target = targets[clip["target"]]
            if clip["category"] == Category.CONNECTOR_SETTER.value:
                clips.append(factories.connector_setter(
                    target, _point(clip["point_a"]), _point(clip["point_b"]),
                    tracking=clip["tracking"], config=clip["config"],
                ))
            else:
                clips.append(factories.create(
                    clip["category"], target, clip["effect"], *clip["options"],
                    config=clip["config"],
                ))
        sequences.append(Sequence(
            *clips,
            description=seq["description"],
            tag=seq["tag"],
            autoplays=seq["autoplays"],
            autoplays_next_sequence=seq["autoplays_next_sequence"],
            playback_rate=seq["playback_rate"],
        ))

    timeline = Timeline(
        *sequences,
        name=config["timeline"]["name"],
        debug_mode=config["timeline"]["debug_mode"],
        playback_rate=config["timeline"]["playback_rate"],
        clock=clock,
    )
    return timeline, targets
