# pyright: reportUnknownMemberType=false

import dataclasses
import logging
import threading
from typing import final

from PySide6.QtCore import QObject, Signal

from popover.core.connection import ConnectionManager
from popover.core.errors import MpdError, ProtocolError
from popover.core.models import PlayState, Status
from popover.core.transport import Response


DEFAULT_ELAPSED_INTERVAL = 0.5

log = logging.getLogger(__name__)


def _parse_flag(value: str | None) -> bool | None:
    if value is None:
        return None
    if value not in ("0", "1"):
        raise ProtocolError(f"Expected 0 or 1, got {value!r}")
    return value == "1"


def _parse_float(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError as e:
        raise ProtocolError(f"Expected a number, got {value!r}") from e


def parse_status(response: Response) -> Status:
    """Decodes the reply to a `status` command."""

    attrs = response.as_dict()
    try:
        play_state = PlayState(attrs["state"])
    except KeyError as e:
        raise ProtocolError("Status reply has no 'state' line") from e
    except ValueError as e:
        raise ProtocolError(f"Unknown play state {attrs['state']!r}") from e

    return Status(
        play_state=play_state,
        elapsed=_parse_float(attrs.get("elapsed")),
        is_random=_parse_flag(attrs.get("random")),
        is_repeat=_parse_flag(attrs.get("repeat")),
    )


@final
class StatusTracker(QObject):
    """
    Mirrors the daemon's playback status. Every field that actually changes
    emits `field_changed` and its dedicated signal, in field order, after the
    new snapshot has been stored.
    """

    field_changed = Signal(str, object)
    play_state_changed = Signal(object, object)
    elapsed_changed = Signal(object)
    random_changed = Signal(object)
    repeat_changed = Signal(object)

    def __init__(
        self,
        idle_manager: ConnectionManager,
        command_manager: ConnectionManager,
        elapsed_interval: float = DEFAULT_ELAPSED_INTERVAL,
    ):
        super().__init__()
        self._idle_manager = idle_manager
        self._command_manager = command_manager
        self._elapsed_interval = elapsed_interval
        self._status = Status()
        self._lock = threading.RLock()
        self._elapsed_stop: threading.Event | None = None

    def snapshot(self) -> Status:
        with self._lock:
            return self._status

    @property
    def is_tracking_elapsed(self) -> bool:
        with self._lock:
            return self._elapsed_stop is not None

    def fetch(self, manager: ConnectionManager | None = None) -> Status:
        """Queries the daemon without touching the stored snapshot."""

        response = (manager or self._idle_manager).execute("status")
        return parse_status(response)

    def set(self):
        """Refreshes the whole snapshot over the idle connection."""

        self.apply(self.fetch())

    def apply(self, status: Status):
        with self._lock:
            old = self._status
            changes = [
                (f.name, getattr(status, f.name))
                for f in dataclasses.fields(Status)
                if getattr(old, f.name) != getattr(status, f.name)
            ]
            self._status = status

        for name, value in changes:
            self._emit(name, value, old)

    def set_elapsed(self, elapsed: float | None):
        with self._lock:
            old = self._status
            if old.elapsed == elapsed:
                return
            self._status = dataclasses.replace(old, elapsed=elapsed)

        self._emit("elapsed", elapsed, old)

    def track_elapsed(self):
        """
        Starts polling the elapsed time over the command connection. Calling
        it again while a poll is running does nothing.
        """

        with self._lock:
            if self._elapsed_stop is not None:
                return
            stop = threading.Event()
            self._elapsed_stop = stop

        thread = threading.Thread(target=self._run_elapsed_loop, args=(stop,), name="mpd-elapsed", daemon=True)
        thread.start()
        log.debug("Elapsed time tracking started.")

    def stop_tracking_elapsed(self):
        with self._lock:
            stop, self._elapsed_stop = self._elapsed_stop, None

        if stop:
            stop.set()
            log.debug("Elapsed time tracking stopped.")

    def _run_elapsed_loop(self, stop: threading.Event):
        while not stop.wait(self._elapsed_interval):
            try:
                status = self.fetch(self._command_manager)
            except MpdError as e:
                log.debug(f"Elapsed poll failed: {e}")
                continue

            # A poll that outlived its cancellation must not write.
            if stop.is_set():
                break
            self.set_elapsed(status.elapsed)

    def _emit(self, name: str, value: object, old: Status):
        self.field_changed.emit(name, value)
        if name == "play_state":
            self.play_state_changed.emit(old.play_state, value)
        elif name == "elapsed":
            self.elapsed_changed.emit(value)
        elif name == "is_random":
            self.random_changed.emit(value)
        elif name == "is_repeat":
            self.repeat_changed.emit(value)
