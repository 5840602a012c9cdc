"""clipcue.common: shared utilities.

Contains: path variable resolution, dotted callable import, awaitable
helpers, and small validation helpers used by the config resolver and
the manifest loader.
"""

import importlib
import importlib.util
import inspect
import re
from pathlib import Path
from typing import Any, Callable


# ── Path utilities ─────────────────────────────────────────────────

def resolve_path_vars(text: str, paths: dict[str, str]) -> str:
    """Replace ${name} variables in a string using the paths dict."""
    def _replace(match):
        key = match.group(1)
        if key not in paths:
            raise ValueError(f"Unknown path variable: ${{{key}}}")
        return str(paths[key])
    return re.sub(r"\$\{(\w+)\}", _replace, text)


def resolve_path_vars_deep(value: Any, paths: dict[str, str]) -> Any:
    """Apply resolve_path_vars to every string inside nested lists/dicts."""
    if isinstance(value, str):
        return resolve_path_vars(value, paths)
    if isinstance(value, list):
        return [resolve_path_vars_deep(v, paths) for v in value]
    if isinstance(value, dict):
        return {k: resolve_path_vars_deep(v, paths) for k, v in value.items()}
    return value


# ── Callable import ────────────────────────────────────────────────

def import_callable(ref: str | Callable, base_dir: str | Path | None = None) -> Callable:
    """Resolve a 'package.module:attr' or 'path/to/file.py:attr' reference.

    Callables are returned unchanged so programmatic callers can skip the
    string form. Nested attributes ('module:Class.method') are followed.
    Relative .py paths are resolved against base_dir (default: cwd).

    Raises:
        ValueError: Malformed reference, missing module/attribute, or the
            resolved object is not callable.
    """
    if callable(ref):
        return ref
    if not isinstance(ref, str) or ref.count(":") != 1:
        raise ValueError(
            f"Invalid callable reference {ref!r}. Expected 'module:attribute'"
        )
    module_name, attr_path = ref.split(":")
    if module_name.endswith(".py"):
        obj = _load_module_file(Path(base_dir or ".") / module_name)
    else:
        try:
            obj = importlib.import_module(module_name)
        except ImportError as e:
            raise ValueError(f"Cannot import module '{module_name}': {e}") from e
    for part in attr_path.split("."):
        if not hasattr(obj, part):
            raise ValueError(f"Module '{module_name}' has no attribute '{attr_path}'")
        obj = getattr(obj, part)
    if not callable(obj):
        raise ValueError(f"'{ref}' does not refer to a callable")
    return obj


# ── Awaitables ─────────────────────────────────────────────────────

async def call_maybe_async(func: Callable[[], Any]) -> Any:
    """Call func() and await the result if it is awaitable."""
    result = func()
    if inspect.isawaitable(result):
        result = await result
    return result


# ── Validation ─────────────────────────────────────────────────────

def parse_percentage(value: str) -> float | None:
    """Return the number in 'N%' as a float, or None if value is not a percentage."""
    match = re.fullmatch(r"\s*(-?\d+(?:\.\d+)?)\s*%\s*", value)
    if match is None:
        return None
    return float(match.group(1))


def is_number(value: Any) -> bool:
    """True for int/float values, excluding bool."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


_loaded_files: dict = {}


def _load_module_file(path: Path):
    """Import a standalone .py file as a module (cached by resolved path)."""
    path = path.resolve()
    if not path.exists():
        raise ValueError(f"Module file not found: {path}")
    name = f"_clipcue_effects_{abs(hash(str(path)))}"
    if name in _loaded_files:
        return _loaded_files[name]
    spec = importlib.util.spec_from_file_location(name, path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    _loaded_files[name] = module
    return module

