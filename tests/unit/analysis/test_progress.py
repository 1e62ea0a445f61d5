"""Tests for the progress aggregator: update modes, gates and cancellation."""

import pytest

from pair_review.analysis.contracts import RunStatus, SlotStatus, StreamEvent, StreamEventKind
from pair_review.analysis.progress import ProgressAggregator


def text(value: str = "thinking") -> StreamEvent:
    return StreamEvent(kind=StreamEventKind.TEXT_DELTA, text=value)


def tool(value: str = "Read: a.py") -> StreamEvent:
    return StreamEvent(kind=StreamEventKind.TOOL_CALL_START, text=value, tool_name="Read")


@pytest.fixture
def aggregator(broadcaster, clock):
    aggregator = ProgressAggregator(broadcaster, clock=clock)
    aggregator.create_run("run-1")
    broadcaster.clear()
    return aggregator


class TestCreateRun:
    def test_initial_levels(self, broadcaster, clock):
        aggregator = ProgressAggregator(broadcaster, clock=clock)

        run = aggregator.create_run("run-1", skip_levels=[2])

        assert run.status == RunStatus.RUNNING
        assert run.levels[1].status == SlotStatus.RUNNING
        assert run.levels[2].status == SlotStatus.SKIPPED
        assert run.levels[4].status == SlotStatus.PENDING
        assert len(broadcaster.published) == 1

    def test_message_shape(self, aggregator):
        aggregator.update_level("run-1", 1, SlotStatus.RUNNING, "Reviewing", voice_id="claude-sonnet")
        aggregator.update_stream_event("run-1", 1, tool())

        message = aggregator.get_run("run-1").to_message()

        assert message["type"] == "progress"
        assert message["status"] == "running"
        assert set(message["levels"]) == {"1", "2", "3", "4"}
        level = message["levels"]["1"]
        assert level["voiceId"] == "claude-sonnet"
        assert level["streamEvent"]["toolName"] == "Read"
        assert level["streamEvent"]["kind"] == "tool_call_start"
        assert "own_status" not in level
        assert "consolidationStep" not in level


class TestUpdateModes:
    def test_simple_update_clears_stream_event_and_voice(self, aggregator):
        aggregator.update_level("run-1", 1, SlotStatus.RUNNING, "Reviewing", voice_id="v1")
        aggregator.update_stream_event("run-1", 1, text(), voice_id="v1")

        aggregator.update_level("run-1", 1, SlotStatus.COMPLETED, "Done")

        level = aggregator.get_run("run-1").levels[1]
        assert level.stream_event is None
        assert level.voice_id is None
        assert level.progress == "Done"

    def test_per_voice_update(self, aggregator):
        aggregator.update_level("run-1", 2, SlotStatus.RUNNING, "a running", voice_id="a")
        aggregator.update_level("run-1", 2, SlotStatus.COMPLETED, "b done", voice_id="b")

        level = aggregator.get_run("run-1").levels[2]
        assert level.voices["a"].status == SlotStatus.RUNNING
        assert level.voices["b"].status == SlotStatus.COMPLETED
        assert level.voice_id == "b"
        assert level.progress == "b done"
        assert level.status == SlotStatus.RUNNING

        aggregator.update_level("run-1", 2, SlotStatus.COMPLETED, "a done", voice_id="a")
        assert level.status == SlotStatus.COMPLETED

    def test_consolidation_steps_aggregate(self, aggregator):
        aggregator.update_level("run-1", "consolidation-L1", SlotStatus.COMPLETED, "L1 merged")
        aggregator.update_level("run-1", "consolidation-L2", SlotStatus.RUNNING, "Merging L2")
        level = aggregator.get_run("run-1").levels[4]

        assert level.status == SlotStatus.RUNNING
        assert level.consolidation_step == "L2"

        aggregator.update_level("run-1", "consolidation-L2", SlotStatus.COMPLETED, "L2 merged")
        assert level.status == SlotStatus.COMPLETED

        aggregator.update_level("run-1", "consolidation-L3", SlotStatus.FAILED, "L3 failed")
        aggregator.update_level("run-1", "consolidation-L1", SlotStatus.COMPLETED, "L1 merged again")
        assert level.status == SlotStatus.FAILED

    def test_orchestration_alias(self, aggregator):
        aggregator.update_level("run-1", "orchestration", SlotStatus.RUNNING, "Synthesizing")

        assert aggregator.get_run("run-1").levels[4].status == SlotStatus.RUNNING

    def test_status_updates_always_broadcast(self, aggregator, broadcaster):
        for _ in range(3):
            aggregator.update_level("run-1", 1, SlotStatus.RUNNING, "Still going")

        assert len(broadcaster.published) == 3


class TestIgnoredUpdates:
    def test_unknown_run(self, aggregator, broadcaster):
        assert not aggregator.update_level("nope", 1, SlotStatus.RUNNING)
        assert not aggregator.update_stream_event("nope", 1, text())
        assert aggregator.get_run("nope") is None
        assert broadcaster.published == []

    @pytest.mark.parametrize("level", [0, 5, "5", "consolidation-L4", "level-1", None, True])
    def test_out_of_range_level(self, aggregator, level):
        assert not aggregator.update_level("run-1", level, SlotStatus.RUNNING)
        assert not aggregator.update_stream_event("run-1", level, text())
        assert set(aggregator.get_run("run-1").levels) == {1, 2, 3, 4}

    def test_unknown_status(self, aggregator):
        assert not aggregator.update_level("run-1", 1, "exploded")


class TestThrottle:
    def test_one_broadcast_per_window(self, aggregator, broadcaster, clock):
        admitted = []
        for ms, value in [(0, "a"), (100, "b"), (250, "c"), (350, "d")]:
            clock.set(ms / 1000)
            admitted.append(aggregator.update_stream_event("run-1", 1, text(value)))

        assert admitted == [True, False, False, True]
        assert len(broadcaster.published) == 2
        assert broadcaster.published[-1][1]["levels"]["1"]["streamEvent"]["text"] == "d"

    def test_throttled_event_is_stored(self, aggregator, clock):
        aggregator.update_stream_event("run-1", 1, text("first"))
        clock.set(0.1)
        aggregator.update_stream_event("run-1", 1, text("latest"))

        assert aggregator.get_run("run-1").levels[1].stream_event.text == "latest"

    def test_slots_throttle_independently(self, aggregator):
        assert aggregator.update_stream_event("run-1", 1, text())
        assert aggregator.update_stream_event("run-1", 2, text())
        assert not aggregator.update_stream_event("run-1", 1, text())

    def test_window_is_configurable(self, broadcaster, clock):
        aggregator = ProgressAggregator(broadcaster, throttle_window=1.0, clock=clock)
        aggregator.create_run("run-1")

        aggregator.update_stream_event("run-1", 1, text())
        clock.set(0.5)

        assert not aggregator.update_stream_event("run-1", 1, text())


class TestPriority:
    def test_tool_call_suppressed_after_text(self, aggregator, clock):
        aggregator.update_stream_event("run-1", 1, text("narrating"))
        clock.set(0.5)

        assert not aggregator.update_stream_event("run-1", 1, tool())
        assert aggregator.get_run("run-1").levels[1].stream_event.text == "narrating"

    def test_tool_call_admitted_after_window(self, aggregator, clock):
        aggregator.update_stream_event("run-1", 1, text("narrating"))
        clock.set(2.1)

        assert aggregator.update_stream_event("run-1", 1, tool())

    def test_tool_call_without_recent_text(self, aggregator):
        assert aggregator.update_stream_event("run-1", 3, tool())

    def test_priority_is_per_slot(self, aggregator, clock):
        aggregator.update_stream_event("run-1", 1, text())
        clock.set(0.5)

        assert aggregator.update_stream_event("run-1", 2, tool())


class TestTerminalRuns:
    def test_cancel_marks_open_entries(self, aggregator):
        aggregator.update_level("run-1", 1, SlotStatus.COMPLETED, "Done")
        aggregator.update_level("run-1", 2, SlotStatus.RUNNING, "v", voice_id="v")
        aggregator.update_level("run-1", "consolidation-L1", SlotStatus.RUNNING, "Merging")

        assert aggregator.cancel_run("run-1")

        run = aggregator.get_run("run-1")
        assert run.status == RunStatus.CANCELLED
        assert run.levels[1].status == SlotStatus.COMPLETED
        assert run.levels[2].status == SlotStatus.CANCELLED
        assert run.levels[3].status == SlotStatus.CANCELLED
        assert run.levels[4].status == SlotStatus.CANCELLED
        assert run.finished_at is not None

    def test_cancellation_is_monotonic(self, aggregator, broadcaster):
        aggregator.cancel_run("run-1")
        broadcaster.clear()

        assert not aggregator.update_level("run-1", 1, SlotStatus.RUNNING, "Back again")
        assert not aggregator.update_stream_event("run-1", 1, text())
        assert not aggregator.complete_run("run-1", RunStatus.COMPLETED)
        assert not aggregator.cancel_run("run-1")
        assert aggregator.get_status("run-1") == RunStatus.CANCELLED
        assert broadcaster.published == []

    def test_complete_run(self, aggregator, broadcaster):
        assert aggregator.complete_run("run-1", RunStatus.FAILED, error="all failed")

        run = aggregator.get_run("run-1")
        assert run.status == RunStatus.FAILED
        assert run.error == "all failed"
        assert broadcaster.published[-1][1]["status"] == "failed"

    def test_remove_run(self, aggregator):
        aggregator.remove_run("run-1")

        assert aggregator.get_status("run-1") is None

    def test_oldest_finished_runs_are_evicted(self, broadcaster, clock):
        aggregator = ProgressAggregator(broadcaster, clock=clock, max_finished_runs=2)
        for run_id in ("a", "b", "c"):
            aggregator.create_run(run_id)
        aggregator.create_run("open")

        aggregator.complete_run("a")
        aggregator.cancel_run("b")
        aggregator.complete_run("c", RunStatus.FAILED)

        assert aggregator.get_run("a") is None
        assert aggregator.get_status("b") == RunStatus.CANCELLED
        assert aggregator.get_status("c") == RunStatus.FAILED
        assert aggregator.get_status("open") == RunStatus.RUNNING
