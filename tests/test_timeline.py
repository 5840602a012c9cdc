"""Tests for the timeline stepper."""

import asyncio
import logging
import re

import pytest

from clipcue.errors import (
    ChildPlaybackError,
    InvalidEntranceAttempt,
    OperationConflictError,
    RangeError,
    SequenceBusyError,
    TimeParadoxError,
)
from clipcue.sequence import Sequence
from clipcue.targets import DISPLAY_NONE_CLASS, Element
from clipcue.timeline import StepOutcome, Timeline


def _sequence(factories, tag="", **overrides):
    """One-clip sequence (500ms Emphasis on a fresh element)."""
    kwargs = {"description": f"seq {tag or 'untagged'}", "tag": tag}
    kwargs.update(overrides)
    return Sequence(factories.emphasis(Element(tag or None), "pulse"), **kwargs)


def _timeline(factories, clock, *tags, **overrides):
    """Timeline with one _sequence per tag."""
    return Timeline(*(_sequence(factories, t) for t in tags), clock=clock, **overrides)


class TestStepping:
    @pytest.mark.asyncio
    async def test_step_forward_and_back(self, factories, clock):
        tl = _timeline(factories, clock, "a", "b")
        assert await tl.step() is StepOutcome.STEPPED
        assert tl.cursor_index == 1
        assert tl.sequences[0].was_played
        assert clock.now() == 500

        assert await tl.step("backward") is StepOutcome.STEPPED
        assert tl.cursor_index == 0
        assert not tl.sequences[0].was_played
        assert clock.now() == 1000

    @pytest.mark.asyncio
    async def test_boundaries_are_no_ops(self, factories, clock):
        tl = _timeline(factories, clock, "a")
        assert await tl.step("backward") is StepOutcome.BOUNDARY
        await tl.step()
        assert await tl.step() is StepOutcome.BOUNDARY
        assert tl.cursor_index == 1
        assert tl.at_end

    @pytest.mark.asyncio
    async def test_empty_timeline(self, clock):
        tl = Timeline(clock=clock)
        assert await tl.step() is StepOutcome.BOUNDARY
        assert tl.at_beginning and tl.at_end

    @pytest.mark.asyncio
    async def test_invalid_direction(self, factories, clock):
        tl = _timeline(factories, clock, "a")
        with pytest.raises(RangeError, match="Invalid direction"):
            await tl.step("sideways")

    @pytest.mark.asyncio
    async def test_autoplays_next_sequence_chains(self, factories, clock):
        s0 = _sequence(factories, "a", autoplays_next_sequence=True)
        s1 = _sequence(factories, "b")
        s2 = _sequence(factories, "c")
        tl = Timeline(s0, s1, s2, clock=clock)
        await tl.step()
        assert tl.cursor_index == 2
        assert clock.now() == 1000

        # Rewinding s1 chains back through s0 symmetrically.
        await tl.step("backward")
        assert tl.cursor_index == 0

    @pytest.mark.asyncio
    async def test_autoplays_chains(self, factories, clock):
        s0 = _sequence(factories, "a")
        s1 = _sequence(factories, "b", autoplays=True)
        s2 = _sequence(factories, "c", autoplays=True)
        tl = Timeline(s0, s1, s2, clock=clock)
        await tl.step()
        assert tl.cursor_index == 3
        await tl.step("backward")
        assert tl.cursor_index == 0

    @pytest.mark.asyncio
    async def test_step_while_animating_raises(self, factories, clock):
        tl = _timeline(factories, clock, "a", "b")
        task = asyncio.ensure_future(tl.step())
        await clock.sleep(10)
        with pytest.raises(OperationConflictError, match="already animating"):
            await tl.step()
        await task

    @pytest.mark.asyncio
    async def test_step_while_paused_raises(self, factories, clock):
        tl = _timeline(factories, clock, "a")
        tl.pause()
        with pytest.raises(OperationConflictError, match="paused"):
            await tl.step()

    @pytest.mark.asyncio
    async def test_child_sequence_cannot_be_driven_directly(self, factories, clock):
        tl = _timeline(factories, clock, "a")
        with pytest.raises(ChildPlaybackError):
            await tl.sequences[0].play()

    @pytest.mark.asyncio
    async def test_failed_step_can_be_retried(self, factories, clock):
        a = factories.emphasis(Element("a"), "pulse")
        bad = factories.entrance(Element("shown"), "fade-in", config={"starts_with_previous": True})
        tl = Timeline(Sequence(a, bad), clock=clock)
        with pytest.raises(InvalidEntranceAttempt):
            await tl.step()
        assert tl.cursor_index == 0
        assert not tl.is_animating
        assert not tl.sequences[0].in_progress

        bad.target.classes.add(DISPLAY_NONE_CLASS)
        assert await tl.step() is StepOutcome.STEPPED
        assert tl.cursor_index == 1
        assert tl.sequences[0].was_played

    @pytest.mark.asyncio
    async def test_failing_roadblock_releases_pause(self, factories, clock):
        tl = _timeline(factories, clock, "a")

        def boom():
            raise RuntimeError("boom")

        tl.sequences[0].clips[0].add_roadblocks("forward", "active", "50%", boom, frequency_limit=1)
        with pytest.raises(RuntimeError, match="boom"):
            await tl.step()
        assert not tl.is_paused

    @pytest.mark.asyncio
    async def test_step_logging(self, factories, clock, caplog):
        tl = _timeline(factories, clock, "intro", debug_mode=True)
        with caplog.at_level(logging.INFO, logger="clipcue.timeline"):
            await tl.step()
            await tl.step("backward")
        assert "1 -->>: seq intro [Jump tag: intro]" in caplog.text
        assert "<<-- 1: seq intro [Jump tag: intro]" in caplog.text


class TestControls:
    @pytest.mark.asyncio
    async def test_pause_propagates(self, factories, clock):
        tl = _timeline(factories, clock, "a")
        task = asyncio.ensure_future(tl.step())
        await clock.sleep(100)
        tl.pause()
        assert tl.sequences[0].is_paused
        await clock.sleep(1000)
        assert not task.done()
        tl.unpause()
        await task
        assert clock.now() == pytest.approx(1500)

    @pytest.mark.asyncio
    async def test_status_mid_step(self, factories, clock):
        tl = _timeline(factories, clock, "a", "b")
        seq = tl.sequences[0]
        task = asyncio.ensure_future(tl.step())
        await clock.sleep(100)
        assert tl.status() == {
            "cursor_index": 0,
            "step_number": 1,
            "at_beginning": True,
            "at_end": False,
            "is_animating": True,
            "is_paused": False,
            "is_skipping": False,
            "is_jumping": False,
            "direction": "forward",
        }
        assert seq.status()["in_progress"] is True
        assert seq.clips[0].status() == {
            "in_progress": True,
            "is_running": True,
            "is_paused": False,
            "direction": "forward",
            "phase": "active",
        }
        await task
        assert tl.status()["cursor_index"] == 1
        assert seq.status() == {
            "in_progress": False,
            "is_paused": False,
            "direction": "forward",
            "was_played": True,
        }

    @pytest.mark.asyncio
    async def test_toggle_pause(self, factories, clock):
        tl = _timeline(factories, clock, "a")
        assert tl.toggle_pause() is True
        assert tl.toggle_pause() is False
        assert tl.toggle_pause("off") is False
        assert tl.toggle_pause("on") is True
        with pytest.raises(RangeError, match="force_state"):
            tl.toggle_pause("maybe")

    @pytest.mark.asyncio
    async def test_skipping_makes_steps_instant(self, factories, clock):
        tl = _timeline(factories, clock, "a", "b")
        tl.toggle_skipping("on")
        await tl.step()
        await tl.step()
        await tl.step("backward")
        assert clock.now() == 0
        assert tl.cursor_index == 1

    @pytest.mark.asyncio
    async def test_skipping_mid_step_finishes_it(self, factories, clock):
        tl = _timeline(factories, clock, "a")
        task = asyncio.ensure_future(tl.step())
        await clock.sleep(100)
        tl.toggle_skipping("on")
        await task
        assert clock.now() == 100
        assert tl.sequences[0].was_played

    @pytest.mark.asyncio
    async def test_skipping_turned_on_while_paused_applies_on_unpause(self, factories, clock):
        tl = _timeline(factories, clock, "a")
        task = asyncio.ensure_future(tl.step())
        await clock.sleep(100)
        tl.pause()
        tl.toggle_skipping("on")
        await clock.sleep(200)
        assert not task.done()
        tl.unpause()
        await task
        assert clock.now() == 300
        assert tl.sequences[0].was_played

    @pytest.mark.asyncio
    async def test_playback_rate_compounds(self, factories, clock):
        tl = _timeline(factories, clock, "a", playback_rate=2)
        await tl.step()
        assert clock.now() == pytest.approx(250)

    @pytest.mark.asyncio
    async def test_roadblock_pauses_timeline(self, factories, clock):
        tl = _timeline(factories, clock, "a")
        clip = tl.sequences[0].clips[0]
        seen = []
        clip.add_roadblocks("forward", "active", "50%", lambda: seen.append(tl.is_paused))
        await tl.step()
        assert seen == [True]
        assert not tl.is_paused


class TestStructure:
    @pytest.mark.asyncio
    async def test_time_paradox_on_played_sequences(self, factories, clock):
        tl = _timeline(factories, clock, "a", "b")
        await tl.step()
        with pytest.raises(TimeParadoxError):
            tl.remove_sequences(tl.sequences[0])
        with pytest.raises(TimeParadoxError):
            tl.add_sequences(_sequence(factories, "x"), at_index=0)
        # Ahead of the cursor is fine.
        tl.add_sequences(_sequence(factories, "y"), at_index=1)
        assert [s.tag for s in tl.sequences] == ["a", "y", "b"]
        assert tl.remove_sequences_at(2)[0].tag == "b"

    @pytest.mark.asyncio
    async def test_structure_locked_while_animating(self, factories, clock):
        tl = _timeline(factories, clock, "a", "b")
        task = asyncio.ensure_future(tl.step())
        await clock.sleep(10)
        with pytest.raises(SequenceBusyError):
            tl.add_sequences(_sequence(factories, "x"))
        await task

    def test_sequence_belongs_to_one_timeline(self, factories, clock):
        tl = _timeline(factories, clock, "a")
        with pytest.raises(OperationConflictError, match="already belongs"):
            Timeline(tl.sequences[0])

    def test_find_sequences(self, factories, clock):
        tl = _timeline(factories, clock, "intro", "scene-1", "scene-2")
        assert [s.tag for s in tl.find_sequences(re.compile(r"^scene"))] == ["scene-1", "scene-2"]
        assert tl.find_sequences("intro") == [tl.sequences[0]]


class TestJumps:
    @pytest.mark.asyncio
    async def test_jump_forward_to_tag(self, factories, clock):
        tl = _timeline(factories, clock, "intro", "middle", "outro")
        assert await tl.jump_to_sequence_tag("outro") == 2
        assert clock.now() == 1000
        assert not tl.sequences[2].was_played

    @pytest.mark.asyncio
    async def test_jump_instant(self, factories, clock):
        tl = _timeline(factories, clock, "intro", "middle", "outro")
        await tl.jump_to_sequence_tag("outro", instant=True)
        assert clock.now() == 0
        assert not tl.instant_now

    @pytest.mark.asyncio
    async def test_jump_with_regex_and_target_offset(self, factories, clock):
        tl = _timeline(factories, clock, "intro", "scene-1", "scene-2")
        cursor = await tl.jump_to_sequence_tag(re.compile(r"scene-\d"), target_offset=1, instant=True)
        assert cursor == 2

    @pytest.mark.asyncio
    async def test_jump_backward(self, factories, clock):
        tl = _timeline(factories, clock, "intro", "middle", "outro")
        await tl.jump_to_position("end", instant=True)
        assert tl.cursor_index == 3
        await tl.jump_to_sequence_tag("middle", search="backward", instant=True)
        assert tl.cursor_index == 1
        assert not tl.sequences[1].was_played
        await tl.jump_to_position("beginning", instant=True)
        assert all(not s.was_played for s in tl.sequences)

    @pytest.mark.asyncio
    async def test_search_offset_skips_matches(self, factories, clock):
        tl = _timeline(factories, clock, "x", "x", "x")
        assert await tl.jump_to_sequence_tag("x", search_offset=1, instant=True) == 1
        assert await tl.jump_to_sequence_tag("x", search="backward-from-end", instant=True) == 2

    @pytest.mark.asyncio
    async def test_jump_follows_autoplay_when_asked(self, factories, clock):
        s0 = _sequence(factories, "a")
        s1 = _sequence(factories, "b", autoplays=True)
        tl = Timeline(s0, s1, clock=clock)
        assert await tl.jump_to_sequence_tag("b", autoplay_detection="forward", instant=True) == 2

    @pytest.mark.asyncio
    async def test_jump_errors(self, factories, clock):
        tl = _timeline(factories, clock, "a")
        with pytest.raises(RangeError, match="not found"):
            await tl.jump_to_sequence_tag("zzz")
        with pytest.raises(RangeError, match="Invalid search"):
            await tl.jump_to_sequence_tag("a", search="sideways")
        with pytest.raises(RangeError, match="outside timeline"):
            await tl.jump_to_position(5)
        with pytest.raises(RangeError, match="Invalid position"):
            await tl.jump_to_position("middle")
        with pytest.raises(RangeError, match="autoplay_detection"):
            await tl.jump_to_position(0, autoplay_detection="sometimes")
