"""Tests for status decoding, change notification and elapsed polling."""

from __future__ import annotations

import threading

import pytest
from PySide6.QtCore import Qt

from popover.core.connection import ConnectionManager
from popover.core.errors import MpdConnectionError, ProtocolError
from popover.core.models import PlayState, Status
from popover.core.status_tracker import StatusTracker, parse_status
from popover.core.transport import Response

from conftest import FakeDaemon


DIRECT = Qt.ConnectionType.DirectConnection


@pytest.fixture
def tracker(idle_manager: ConnectionManager, command_manager: ConnectionManager):
    instance = StatusTracker(idle_manager, command_manager, elapsed_interval=0.05)
    idle_manager.connect()
    yield instance
    instance.stop_tracking_elapsed()


def record(tracker: StatusTracker) -> list[tuple[str, object]]:
    changes: list[tuple[str, object]] = []
    tracker.field_changed.connect(lambda name, value: changes.append((name, value)), type=DIRECT)
    return changes


class TestParseStatus:
    """Test decoding of the status reply."""

    def test_full_status(self) -> None:
        response = Response(pairs=[("state", "play"), ("elapsed", "12.500"), ("random", "1"), ("repeat", "0")])
        assert parse_status(response) == Status(PlayState.PLAYING, 12.5, True, False)

    def test_stopped_status_has_no_elapsed(self) -> None:
        response = Response(pairs=[("state", "stop"), ("random", "0"), ("repeat", "0")])
        assert parse_status(response).elapsed is None

    def test_missing_state_is_protocol_error(self) -> None:
        with pytest.raises(ProtocolError):
            parse_status(Response(pairs=[("random", "0")]))

    @pytest.mark.parametrize("pairs", [
        [("state", "rewinding")],
        [("state", "play"), ("elapsed", "soon")],
        [("state", "play"), ("random", "yes")],
    ])
    def test_bad_values_are_protocol_errors(self, pairs: list[tuple[str, str]]) -> None:
        with pytest.raises(ProtocolError):
            parse_status(Response(pairs=pairs))


class TestSet:
    """Test field-wise updates and notifications."""

    def test_set_publishes_changed_fields(self, daemon: FakeDaemon, tracker: StatusTracker) -> None:
        daemon.status = {"state": "play", "elapsed": "12.0", "random": "1", "repeat": "0"}
        changes = record(tracker)

        tracker.set()

        assert tracker.snapshot() == Status(PlayState.PLAYING, 12.0, True, False)
        assert changes == [
            ("play_state", PlayState.PLAYING),
            ("elapsed", 12.0),
            ("is_random", True),
            ("is_repeat", False),
        ]

    def test_repeated_identical_sync_is_silent(self, daemon: FakeDaemon, tracker: StatusTracker) -> None:
        daemon.status = {"state": "play", "elapsed": "12.0", "random": "1", "repeat": "1"}
        tracker.set()
        changes = record(tracker)

        tracker.set()
        tracker.set()

        assert changes == []

    def test_only_changed_field_is_published(self, daemon: FakeDaemon, tracker: StatusTracker) -> None:
        daemon.status = {"state": "play", "elapsed": "12.0", "random": "0", "repeat": "0"}
        tracker.set()
        transitions: list[tuple[object, object]] = []
        tracker.play_state_changed.connect(lambda old, new: transitions.append((old, new)), type=DIRECT)
        changes = record(tracker)

        daemon.status["state"] = "pause"
        tracker.set()

        assert changes == [("play_state", PlayState.PAUSED)]
        assert transitions == [(PlayState.PLAYING, PlayState.PAUSED)]
        assert tracker.snapshot() == Status(PlayState.PAUSED, 12.0, False, False)

    def test_dedicated_signals(self, daemon: FakeDaemon, tracker: StatusTracker) -> None:
        received: list[tuple[str, object]] = []
        tracker.random_changed.connect(lambda v: received.append(("random", v)), type=DIRECT)
        tracker.repeat_changed.connect(lambda v: received.append(("repeat", v)), type=DIRECT)
        tracker.elapsed_changed.connect(lambda v: received.append(("elapsed", v)), type=DIRECT)

        daemon.status = {"state": "play", "elapsed": "3.0", "random": "1", "repeat": "1"}
        tracker.set()

        assert received == [("elapsed", 3.0), ("random", True), ("repeat", True)]

    def test_failure_keeps_previous_snapshot(self, daemon: FakeDaemon, tracker: StatusTracker) -> None:
        daemon.status = {"state": "play", "elapsed": "1.0", "random": "0", "repeat": "0"}
        tracker.set()
        before = tracker.snapshot()

        daemon.status = {"state": "bogus"}
        with pytest.raises(ProtocolError):
            tracker.set()
        assert tracker.snapshot() == before

        daemon.replies["status"] = None
        with pytest.raises(MpdConnectionError):
            tracker.set()
        assert tracker.snapshot() == before

    def test_set_elapsed_only_touches_elapsed(self, daemon: FakeDaemon, tracker: StatusTracker) -> None:
        daemon.status = {"state": "play", "elapsed": "1.0", "random": "1", "repeat": "0"}
        tracker.set()
        changes = record(tracker)

        tracker.set_elapsed(42.0)
        tracker.set_elapsed(42.0)

        assert changes == [("elapsed", 42.0)]
        assert tracker.snapshot() == Status(PlayState.PLAYING, 42.0, True, False)


class TestTrackElapsed:
    """Test the visible-only elapsed poll."""

    def test_poll_updates_elapsed_over_command_connection(
        self, daemon: FakeDaemon, tracker: StatusTracker, wait_until
    ) -> None:
        daemon.status = {"state": "play", "elapsed": "5.0", "random": "0", "repeat": "0"}
        tracker.track_elapsed()
        wait_until(lambda: tracker.snapshot().elapsed == 5.0, message="first elapsed poll")

        daemon.status["elapsed"] = "5.5"
        wait_until(lambda: tracker.snapshot().elapsed == 5.5, message="second elapsed poll")
        # Play state belongs to the idle sync, the poll leaves it alone.
        assert tracker.snapshot().play_state == PlayState.STOPPED

    def test_start_twice_runs_one_poll(self, tracker: StatusTracker, wait_until) -> None:
        # Pollers cancelled by earlier tests may still be finishing.
        wait_until(lambda: not [t for t in threading.enumerate() if t.name == "mpd-elapsed"], message="quiet start")

        tracker.track_elapsed()
        tracker.track_elapsed()

        pollers = [t for t in threading.enumerate() if t.name == "mpd-elapsed"]
        assert len(pollers) == 1
        assert tracker.is_tracking_elapsed

    def test_stop_when_not_running_is_noop(self, tracker: StatusTracker) -> None:
        tracker.stop_tracking_elapsed()
        assert not tracker.is_tracking_elapsed

    def test_stop_cancels_poll(self, daemon: FakeDaemon, tracker: StatusTracker, wait_until) -> None:
        tracker.track_elapsed()
        wait_until(lambda: len(daemon.sent("status")) >= 1, message="poll to run")
        tracker.stop_tracking_elapsed()
        wait_until(
            lambda: not [t for t in threading.enumerate() if t.name == "mpd-elapsed"],
            message="poll thread to exit",
        )
        polls = len(daemon.sent("status"))

        daemon.status["elapsed"] = "99.0"
        threading.Event().wait(0.2)
        assert len(daemon.sent("status")) == polls
        assert tracker.snapshot().elapsed != 99.0

    def test_show_hide_cycles_leave_no_orphans(self, tracker: StatusTracker, wait_until) -> None:
        for _ in range(5):
            tracker.track_elapsed()
            tracker.stop_tracking_elapsed()
        tracker.track_elapsed()

        wait_until(
            lambda: len([t for t in threading.enumerate() if t.name == "mpd-elapsed"]) == 1,
            message="stale pollers to exit",
        )

    def test_poll_survives_daemon_errors(self, daemon: FakeDaemon, tracker: StatusTracker, wait_until) -> None:
        daemon.replies["status"] = None
        tracker.track_elapsed()
        wait_until(lambda: len(daemon.sent("status")) >= 2, message="poll to retry")

        del daemon.replies["status"]
        daemon.status = {"state": "play", "elapsed": "7.0", "random": "0", "repeat": "0"}
        wait_until(lambda: tracker.snapshot().elapsed == 7.0, message="poll to recover")
