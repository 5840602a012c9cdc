"""Tests for sequence scheduling and playback."""

import asyncio

import pytest

from clipcue.clip import Phase
from clipcue.errors import (
    InvalidEntranceAttempt,
    OperationConflictError,
    RangeError,
    SequenceBusyError,
)
from clipcue.sequence import Sequence
from clipcue.targets import DISPLAY_NONE_CLASS, Element


def _pulse(factories, name="el", **config):
    """Emphasis clip on a fresh element; config overrides go to the clip."""
    return factories.emphasis(Element(name), "pulse", config=config)


def _fade_in(factories, name="el", **config):
    """Entrance clip on a fresh hidden element."""
    return factories.entrance(Element(name, classes=[DISPLAY_NONE_CLASS]), "fade-in", config=config)


class TestSchedule:
    def test_new_group_starts_at_latest_finish(self, factories):
        a = _pulse(factories, duration=500)
        b = _pulse(factories, duration=300, starts_with_previous=True)
        c = _pulse(factories, duration=100)
        seq = Sequence(a, b, c)
        rows = seq.schedule()
        assert [(r["group"], r["start"]) for r in rows] == [(0, 0), (0, 0), (1, 500)]
        assert seq.total_duration == 600

    def test_starts_next_clip_too_is_transitive(self, factories):
        a = _pulse(factories, duration=100, starts_next_clip_too=True)
        b = _pulse(factories, delay=50, duration=200, starts_next_clip_too=True)
        c = _pulse(factories)
        Sequence(a, b, c).schedule()
        assert c.scheduled_start - a.scheduled_start == 50

    def test_without_flag_next_group_waits_for_all(self, factories):
        a = _pulse(factories, duration=100, starts_next_clip_too=True)
        b = _pulse(factories, delay=50, duration=200)
        c = _pulse(factories)
        Sequence(a, b, c).schedule()
        assert b.scheduled_start == 0
        assert c.scheduled_start == 250

    def test_join_uses_predecessor_active_start(self, factories):
        a = _pulse(factories, delay=120)
        b = _pulse(factories, starts_with_previous=True)
        Sequence(a, b)
        assert b.scheduled_start == 120

    def test_schedule_recomputed_after_edit(self, factories):
        a = _pulse(factories, duration=200)
        seq = Sequence(a)
        b = _pulse(factories, duration=100)
        seq.add_clips(b, at_index=0)
        assert seq.clips == (b, a)
        assert a.scheduled_start == 100


class TestPlay:
    @pytest.mark.asyncio
    async def test_grouped_clips_start_together(self, factories, clock):
        a = _pulse(factories, duration=500)
        b = _pulse(factories, duration=300, starts_with_previous=True)
        c = _pulse(factories, duration=100)
        await Sequence(a, b, c, clock=clock).play()
        assert a.started_at == b.started_at == 0
        assert c.started_at >= max(a.finished_at, b.finished_at)
        assert c.started_at == 500
        assert clock.now() == 600

    @pytest.mark.asyncio
    async def test_transitive_trigger_timing(self, factories, clock):
        a = _pulse(factories, duration=100, starts_next_clip_too=True)
        b = _pulse(factories, delay=50, duration=200, starts_next_clip_too=True)
        c = _pulse(factories)
        await Sequence(a, b, c, clock=clock).play()
        assert c.started_at - a.started_at == 50

    @pytest.mark.asyncio
    async def test_without_trigger_flag_timing(self, factories, clock):
        a = _pulse(factories, duration=100, starts_next_clip_too=True)
        b = _pulse(factories, delay=50, duration=200)
        c = _pulse(factories)
        await Sequence(a, b, c, clock=clock).play()
        assert c.started_at - a.started_at == 250

    @pytest.mark.asyncio
    async def test_rewind_is_mirrored(self, factories, clock):
        a = _pulse(factories, duration=500)
        b = _pulse(factories, duration=300, starts_with_previous=True)
        seq = Sequence(a, b, clock=clock)
        await seq.play()
        await seq.rewind()
        # Forward: B finished 200ms before A, so on rewind it starts 200ms after.
        assert a.started_at == 500
        assert b.started_at == 700
        assert clock.now() == 1000

    @pytest.mark.asyncio
    async def test_rewind_with_gap_between_clips(self, factories, clock):
        a = _pulse(factories, duration=100, starts_next_clip_too=True)
        b = _pulse(factories, delay=300, duration=100)
        seq = Sequence(a, b, clock=clock)
        await seq.play()
        assert clock.now() == 400
        await seq.rewind()
        # B rewinds first; A's forward finish (100) is 300ms of mirrored time later.
        assert b.started_at == 400
        assert a.started_at == 700
        assert clock.now() == 800

    @pytest.mark.asyncio
    async def test_rewind_waits_out_gap_before_earlier_clip(self, factories, clock):
        a = _pulse(factories, duration=100, starts_next_clip_too=True)
        b = _pulse(factories, delay=300, duration=100, starts_next_clip_too=True)
        c = _pulse(factories, duration=50)
        seq = Sequence(a, b, c, clock=clock)
        await seq.play()
        assert c.started_at == 300
        await seq.rewind()
        # A finished 300ms before the end going forward, so it rewinds 300ms in.
        assert b.started_at == 400
        assert c.started_at == 450
        assert a.started_at == 700
        assert clock.now() == 800

    @pytest.mark.asyncio
    async def test_play_rewind_restores_targets(self, factories, clock):
        a = _fade_in(factories, "a")
        b = _fade_in(factories, "b", starts_with_previous=True, delay=100)
        c = _fade_in(factories, "c")
        before = [clip.target.snapshot() for clip in (a, b, c)]
        seq = Sequence(a, b, c, clock=clock)
        await seq.play()
        assert all(DISPLAY_NONE_CLASS not in clip.target.classes for clip in (a, b, c))
        await seq.rewind()
        assert [clip.target.snapshot() for clip in (a, b, c)] == before

    @pytest.mark.asyncio
    async def test_callbacks_order(self, factories, clock):
        log = []
        seq = Sequence(_pulse(factories), clock=clock)
        seq.set_on_start(lambda: log.append("start"), lambda: log.append("undo start"))

        async def finish():
            log.append("finish")

        seq.set_on_finish(finish, lambda: log.append("undo finish"))
        await seq.play()
        await seq.rewind()
        assert log == ["start", "finish", "undo finish", "undo start"]

    @pytest.mark.asyncio
    async def test_playback_rate_compounds(self, factories, clock):
        clip = _pulse(factories, playback_rate=2)
        await Sequence(clip, playback_rate=2, clock=clock).play()
        assert clock.now() == pytest.approx(125)

    @pytest.mark.asyncio
    async def test_rewind_unplayed_raises(self, factories, clock):
        with pytest.raises(OperationConflictError, match="has not been played"):
            await Sequence(_pulse(factories), clock=clock).rewind()

    @pytest.mark.asyncio
    async def test_play_twice_concurrently_raises(self, factories, clock):
        seq = Sequence(_pulse(factories), clock=clock)
        task = asyncio.ensure_future(seq.play())
        await clock.sleep(10)
        with pytest.raises(OperationConflictError, match="already in progress"):
            await seq.play()
        await task


class TestControls:
    @pytest.mark.asyncio
    async def test_pause_holds_every_clip(self, factories, clock):
        a = _pulse(factories)
        b = _pulse(factories, starts_with_previous=True)
        seq = Sequence(a, b, clock=clock)
        task = asyncio.ensure_future(seq.play())
        await clock.sleep(100)
        seq.pause()
        assert a.is_paused and b.is_paused
        await clock.sleep(1000)
        assert not task.done()
        seq.unpause()
        await task
        assert clock.now() == pytest.approx(1500)

    @pytest.mark.asyncio
    async def test_finish_fast_forwards_remaining_groups(self, factories, clock):
        a = _pulse(factories)
        c = _pulse(factories)
        seq = Sequence(a, c, clock=clock)
        task = asyncio.ensure_future(seq.play())
        await clock.sleep(100)
        await seq.finish()
        assert task.done()
        assert seq.was_played
        assert clock.now() == 100
        assert not seq.using_finish

    @pytest.mark.asyncio
    async def test_finish_unplayed_plays_instantly(self, factories, clock):
        seq = Sequence(_pulse(factories), _pulse(factories), clock=clock)
        await seq.finish()
        assert seq.was_played
        assert clock.now() == 0

    @pytest.mark.asyncio
    async def test_roadblock_pauses_siblings(self, factories, clock):
        a = _pulse(factories)
        b = _pulse(factories, starts_with_previous=True)

        async def hold():
            await clock.sleep(100)

        a.add_roadblocks("forward", "active", "50%", hold)
        await Sequence(a, b, clock=clock).play()
        assert b.finished_at == pytest.approx(600)
        assert a.finished_at == pytest.approx(600)

    @pytest.mark.asyncio
    async def test_set_playback_rate_mid_play(self, factories, clock):
        seq = Sequence(_pulse(factories), clock=clock)
        task = asyncio.ensure_future(seq.play())
        await clock.sleep(100)
        seq.set_playback_rate(4)
        await task
        assert clock.now() == pytest.approx(200)

    def test_invalid_rate(self):
        with pytest.raises(RangeError, match="playback_rate"):
            Sequence(playback_rate=0)


class TestStructureLocks:
    @pytest.mark.asyncio
    async def test_add_while_playing_raises(self, factories, clock):
        seq = Sequence(_pulse(factories), clock=clock)
        task = asyncio.ensure_future(seq.play())
        await clock.sleep(10)
        with pytest.raises(SequenceBusyError, match="in progress"):
            seq.add_clips(_pulse(factories))
        await task

    @pytest.mark.asyncio
    async def test_remove_after_play_raises_until_rewound(self, factories, clock):
        a = _pulse(factories)
        seq = Sequence(a, _pulse(factories), clock=clock)
        await seq.play()
        with pytest.raises(SequenceBusyError, match="played state"):
            seq.remove_clips(a)
        await seq.rewind()
        assert seq.remove_clips(a) == [a]
        assert a.sequence is None

    def test_clip_cannot_join_two_sequences(self, factories):
        a = _pulse(factories)
        Sequence(a)
        with pytest.raises(OperationConflictError, match="already belongs"):
            Sequence(a)

    def test_remove_clips_at_range(self, factories):
        clips = [_pulse(factories) for _ in range(3)]
        seq = Sequence(*clips)
        assert seq.remove_clips_at(1) == [clips[1]]
        with pytest.raises(RangeError, match="Invalid clip range"):
            seq.remove_clips_at(1, 5)

    def test_only_clips_accepted(self):
        with pytest.raises(RangeError, match="Sequences hold clips"):
            Sequence("not a clip")


class TestFailures:
    @pytest.mark.asyncio
    async def test_failed_clip_rolls_sequence_back(self, factories, clock):
        a = _pulse(factories)
        bad = factories.entrance(Element("shown"), "fade-in", config={"starts_with_previous": True})
        seq = Sequence(a, bad, clock=clock)
        with pytest.raises(InvalidEntranceAttempt):
            await seq.play()
        assert not seq.in_progress
        assert not seq.was_played
        assert a.phase is Phase.IDLE and not a.in_progress
        assert bad.phase is Phase.IDLE
        # Error message names the clip and its sequence.
        with pytest.raises(InvalidEntranceAttempt, match="Sequence: '<blank sequence description>'"):
            await bad._animate("forward")

    @pytest.mark.asyncio
    async def test_play_can_be_retried_after_fixing_the_target(self, factories, clock):
        a = _pulse(factories)
        bad = factories.entrance(Element("shown"), "fade-in", config={"starts_with_previous": True})
        seq = Sequence(a, bad, clock=clock)
        with pytest.raises(InvalidEntranceAttempt):
            await seq.play()
        bad.target.classes.add(DISPLAY_NONE_CLASS)
        await seq.play()
        assert seq.was_played
        assert a.phase is Phase.FINISHED and bad.phase is Phase.FINISHED

    @pytest.mark.asyncio
    async def test_failure_in_later_group_undoes_earlier_groups(self, factories, clock):
        a = _pulse(factories, "a")
        bad = factories.entrance(Element("shown"), "fade-in")
        seq = Sequence(a, bad, clock=clock)
        with pytest.raises(InvalidEntranceAttempt):
            await seq.play()
        assert clock.now() == 500
        assert a.phase is Phase.IDLE
        assert a.target.frames == []

    @pytest.mark.asyncio
    async def test_on_start_is_undone_after_failure(self, factories, clock):
        calls = []
        seq = Sequence(
            _pulse(factories),
            factories.entrance(Element("shown"), "fade-in", config={"starts_with_previous": True}),
            clock=clock,
        )
        seq.set_on_start(lambda: calls.append("do"), lambda: calls.append("undo"))
        with pytest.raises(InvalidEntranceAttempt):
            await seq.play()
        assert calls == ["do", "undo"]

    @pytest.mark.asyncio
    async def test_failed_rewind_restores_played_state(self, factories, clock):
        a = _pulse(factories, "a")
        b = _pulse(factories, "b")
        seq = Sequence(a, b, clock=clock)
        await seq.play()

        def boom():
            raise RuntimeError("boom")

        block_id = a.add_roadblocks("backward", "whole", "end", boom)
        with pytest.raises(RuntimeError, match="boom"):
            await seq.rewind()
        assert seq.was_played and not seq.in_progress
        assert not seq.is_paused
        assert a.phase is Phase.FINISHED
        assert b.phase is Phase.FINISHED and b.direction == "forward"

        a.remove_roadblocks(block_id)
        await seq.rewind()
        assert not seq.was_played
        assert a.phase is Phase.IDLE and b.phase is Phase.IDLE
