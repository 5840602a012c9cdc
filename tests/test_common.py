"""Tests for clipcue.common utilities."""

import asyncio
import os

import pytest

from clipcue.common import (
    call_maybe_async,
    import_callable,
    is_number,
    parse_percentage,
    resolve_path_vars,
    resolve_path_vars_deep,
)


class TestResolvePathVars:
    def test_single_var(self):
        result = resolve_path_vars("${fx}/fades.py", {"fx": "/data/effects"})
        assert result == "/data/effects/fades.py"

    def test_multiple_vars(self):
        paths = {"fx": "/data/fx", "lib": "/data/lib"}
        result = resolve_path_vars("${fx}/a and ${lib}/b", paths)
        assert result == "/data/fx/a and /data/lib/b"

    def test_no_vars(self):
        assert resolve_path_vars("/plain/path", {}) == "/plain/path"

    def test_unknown_var_raises(self):
        with pytest.raises(ValueError, match="Unknown path variable"):
            resolve_path_vars("${missing}/x", {})


class TestResolvePathVarsDeep:
    def test_nested_structures(self):
        value = {"a": ["${x}/1", {"b": "${x}/2"}], "n": 3}
        result = resolve_path_vars_deep(value, {"x": "/root"})
        assert result == {"a": ["/root/1", {"b": "/root/2"}], "n": 3}

    def test_non_strings_untouched(self):
        assert resolve_path_vars_deep([1, True, None], {}) == [1, True, None]


class TestImportCallable:
    def test_callable_passthrough(self):
        def f():
            pass
        assert import_callable(f) is f

    def test_module_reference(self):
        assert import_callable("os.path:join") is os.path.join

    def test_nested_attribute(self):
        from clipcue.effects import EffectGenerator
        assert import_callable("clipcue.effects:EffectGenerator.from_mapping") == EffectGenerator.from_mapping

    def test_file_reference_relative_to_base_dir(self, tmp_path):
        (tmp_path / "fx.py").write_text("def compose(ctx):\n    return 42\n")
        func = import_callable("fx.py:compose", tmp_path)
        assert func(None) == 42

    def test_file_reference_missing_file(self, tmp_path):
        with pytest.raises(ValueError, match="not found"):
            import_callable("nope.py:compose", tmp_path)

    def test_malformed_reference(self):
        with pytest.raises(ValueError, match="Invalid callable reference"):
            import_callable("no_colon_here")

    def test_missing_module(self):
        with pytest.raises(ValueError, match="Cannot import module"):
            import_callable("definitely_not_a_module_xyz:f")

    def test_missing_attribute(self):
        with pytest.raises(ValueError, match="has no attribute"):
            import_callable("os.path:not_there")

    def test_not_callable(self):
        with pytest.raises(ValueError, match="does not refer to a callable"):
            import_callable("os:sep")


class TestCallMaybeAsync:
    @pytest.mark.asyncio
    async def test_plain_function(self):
        assert await call_maybe_async(lambda: 7) == 7

    @pytest.mark.asyncio
    async def test_coroutine_function(self):
        async def f():
            await asyncio.sleep(0)
            return 8
        assert await call_maybe_async(f) == 8


class TestParsePercentage:
    def test_integer(self):
        assert parse_percentage("25%") == 25.0

    def test_decimal_with_spaces(self):
        assert parse_percentage(" 12.5 % ") == 12.5

    def test_not_a_percentage(self):
        assert parse_percentage("beginning") is None
        assert parse_percentage("25") is None


class TestIsNumber:
    def test_numbers(self):
        assert is_number(0)
        assert is_number(1.5)

    def test_bool_is_not_a_number(self):
        assert not is_number(True)

    def test_string_is_not_a_number(self):
        assert not is_number("1")
