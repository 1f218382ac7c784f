# pyright: reportUnknownMemberType=false, reportAny=false

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Protocol, final

from PySide6.QtCore import QObject, Qt, Signal

from popover.core.connection import ConnectionManager
from popover.core.errors import CommandError, MpdConnectionError, MpdError, ProtocolError
from popover.core.models import AppConfig, PlayState, Song
from popover.core.song_tracker import SongTracker
from popover.core.status_tracker import StatusTracker
from popover.core.transport import Response


IDLE_SUBSYSTEMS = ("player", "options")
STOP_TIMEOUT = 2.0

log = logging.getLogger(__name__)


class LoopState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SYNCING = "syncing"
    IDLING = "idling"
    BACKING_OFF = "backing-off"
    STOPPED = "stopped"


class PlayerNotifier(Protocol):
    """Receives every published change, e.g. to flash a tray icon."""

    def notify(self, event: str, value: object) -> None: ...


@final
class Player(QObject):
    """
    Keeps the local Status and Song in step with the daemon and exposes the
    playback commands.

    A background thread owns the idle connection: connect, sync, block in
    `idle` until the daemon reports a change, sync again. Commands go through
    a separate command-mode connection on a single worker thread, so they
    never wait on the idle connection.
    """

    loop_state_changed = Signal(object)
    track_changed = Signal(object)
    play_state_changed = Signal(object, object)
    random_changed = Signal(object)
    repeat_changed = Signal(object)
    elapsed_changed = Signal(object)
    artwork_changed = Signal(object)

    def __init__(self, config: AppConfig, notifier: PlayerNotifier | None = None):
        super().__init__()
        self._config = config
        self._notifier = notifier

        self.idle_manager = ConnectionManager(config, idle=True)
        self.command_manager = ConnectionManager(config)

        self.status = StatusTracker(self.idle_manager, self.command_manager, config.daemon.elapsed_interval)
        self.song = SongTracker(self.idle_manager, self.command_manager, config.daemon.artwork_max_bytes)

        self._loop_state = LoopState.DISCONNECTED
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="mpd-command")
        self._popover_visible = False

        self._connect_signals()

    @property
    def loop_state(self) -> LoopState:
        return self._loop_state

    @property
    def popover_visible(self) -> bool:
        return self._popover_visible

    def _connect_signals(self):
        """
        Re-emits the trackers' notifications as the Player's own. These hops
        are direct so a sync pass publishes in order on the writer's thread;
        UI receivers get them queued onto their own thread.
        """

        direct = Qt.ConnectionType.DirectConnection
        _ = self.status.play_state_changed.connect(self.play_state_changed, type=direct)
        _ = self.status.random_changed.connect(self.random_changed, type=direct)
        _ = self.status.repeat_changed.connect(self.repeat_changed, type=direct)
        _ = self.status.elapsed_changed.connect(self.elapsed_changed, type=direct)
        _ = self.song.track_changed.connect(self.track_changed, type=direct)
        _ = self.song.artwork_changed.connect(self.artwork_changed, type=direct)
        _ = self.song.uri_changed.connect(self._on_uri_changed, type=direct)

        if self._notifier:
            notifier = self._notifier
            _ = self.play_state_changed.connect(lambda _old, new: notifier.notify("play_state", new), type=direct)
            _ = self.random_changed.connect(lambda value: notifier.notify("random", value), type=direct)
            _ = self.repeat_changed.connect(lambda value: notifier.notify("repeat", value), type=direct)
            _ = self.elapsed_changed.connect(lambda value: notifier.notify("elapsed", value), type=direct)
            _ = self.track_changed.connect(lambda song: notifier.notify("track", song), type=direct)
            _ = self.artwork_changed.connect(lambda data: notifier.notify("artwork", data), type=direct)

    def start(self):
        """Starts the update loop. Does nothing if it is already running."""

        if self._thread and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_update_loop, name="mpd-idle", daemon=True)
        self._thread.start()
        log.info("Player update loop started.")

    def stop(self):
        """Stops the update loop and releases both connections."""

        self._stop_event.set()
        self.idle_manager.abort()
        # Unblocks an artwork transfer holding the command connection.
        self.command_manager.abort()
        self.status.stop_tracking_elapsed()

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=STOP_TIMEOUT)
            if self._thread.is_alive():
                log.warning("Update loop did not stop in time.")
        self._thread = None

        self._executor.shutdown(wait=False, cancel_futures=True)
        self.idle_manager.disconnect()
        self.command_manager.disconnect()
        self._set_loop_state(LoopState.STOPPED)
        log.info("Player stopped.")

    def on_config_changed(self, new_config: AppConfig):
        """Host and port changes take effect on the next connect."""

        self._config = new_config
        self.idle_manager.on_config_changed(new_config)
        self.command_manager.on_config_changed(new_config)

    def _set_loop_state(self, state: LoopState):
        if state == self._loop_state:
            return
        log.debug(f"Update loop: {self._loop_state.value} -> {state.value}")
        self._loop_state = state
        self.loop_state_changed.emit(state)

    def _run_update_loop(self):
        while not self._stop_event.is_set():
            if not self.idle_manager.is_connected:
                self._set_loop_state(LoopState.CONNECTING)
                try:
                    self.idle_manager.connect()
                    log.info("Idle connection established.")
                except MpdError as e:
                    retry_interval = self._config.daemon.retry_interval
                    log.warning(f"Connection failed: {e}. Retrying in {retry_interval}s.")
                    self.idle_manager.disconnect()
                    self._set_loop_state(LoopState.BACKING_OFF)
                    _ = self._stop_event.wait(retry_interval)
                    continue

            try:
                self._set_loop_state(LoopState.SYNCING)
                try:
                    self._sync()
                except (ProtocolError, CommandError) as e:
                    log.error(f"Sync pass aborted, keeping previous state: {e}")

                if self._stop_event.is_set():
                    break
                self._set_loop_state(LoopState.IDLING)
                changed = self.idle_manager.idle(IDLE_SUBSYSTEMS)
                log.debug(f"Daemon reported changes: {changed}")
            except MpdConnectionError as e:
                if not self._stop_event.is_set():
                    log.warning(f"Idle connection lost: {e}")
                self.idle_manager.disconnect()
                self._set_loop_state(LoopState.DISCONNECTED)
            except (ProtocolError, CommandError) as e:
                log.error(f"Idle wait rejected: {e}")
                self.idle_manager.disconnect()
                self._set_loop_state(LoopState.BACKING_OFF)
                _ = self._stop_event.wait(self._config.daemon.retry_interval)

        self._set_loop_state(LoopState.STOPPED)

    def _sync(self):
        """
        One sync pass. Both snapshots are read before either is applied, so a
        failed read leaves the model untouched and the two always describe the
        same moment. Status is applied before song.
        """

        status = self.status.fetch()
        song = self.song.fetch()
        self.status.apply(status)
        self.song.apply(song)

    def set_popover_visible(self, visible: bool):
        """Elapsed time is only polled while the popover is on screen."""

        self._popover_visible = visible
        if visible:
            self.status.track_elapsed()
            current = self.song.snapshot()
            if current.uri and current.artwork is None:
                self._schedule_artwork(current.uri)
        else:
            self.status.stop_tracking_elapsed()

    def _on_uri_changed(self, uri: str | None):
        if uri and self._popover_visible:
            self._schedule_artwork(uri)

    def _schedule_artwork(self, uri: str):
        try:
            _ = self._executor.submit(self._load_artwork, uri)
        except RuntimeError:
            log.debug("Command worker is shut down, skipping artwork fetch.")

    def _load_artwork(self, uri: str):
        if self.song.snapshot().uri != uri:
            return
        self.song.set_artwork(uri, self.song.fetch_artwork(uri))

    def _execute_command(self, command: str) -> Future[Response]:
        def run() -> Response:
            try:
                return self.command_manager.execute(command)
            except MpdError as e:
                log.warning(f"Command {command!r} failed: {e}")
                raise

        try:
            return self._executor.submit(run)
        except RuntimeError as e:
            log.debug(f"Command worker is shut down, dropping {command!r}.")
            future: Future[Response] = Future()
            future.set_exception(e)
            return future

    def pause(self, value: bool) -> Future[Response]:
        return self._execute_command(f"pause {int(value)}")

    def toggle_pause(self) -> Future[Response]:
        return self.pause(self.status.snapshot().play_state == PlayState.PLAYING)

    def previous(self) -> Future[Response]:
        return self._execute_command("previous")

    def next(self) -> Future[Response]:
        return self._execute_command("next")

    def seek(self, seconds: float) -> Future[Response]:
        """Seeks within the current song; the elapsed time is updated right away."""

        seconds = max(0.0, seconds)
        self.status.set_elapsed(seconds)
        return self._execute_command(f"seekcur {seconds:.3f}")

    def set_random(self, value: bool) -> Future[Response]:
        return self._execute_command(f"random {int(value)}")

    def set_repeat(self, value: bool) -> Future[Response]:
        return self._execute_command(f"repeat {int(value)}")

    def current_song(self) -> Song:
        return self.song.snapshot()
