# pyright: reportAttributeAccessIssue=false, reportUnknownMemberType=false, reportUnknownVariableType=false, reportUnknownParameterType=false, reportAny=false, reportUnannotatedClassAttribute=false, reportUnknownArgumentType=false, reportOptionalMemberAccess=false

import logging

from PySide6.QtCore import QTimer, Signal, Slot
from PySide6.QtGui import QAction, QIcon
from PySide6.QtWidgets import QApplication, QMenu, QStyle, QSystemTrayIcon

from popover.core.models import PlayState, Song
from popover.core.player import Player
from popover.ui.popover_window import PopoverWindow


ACTION_PLAY_PAUSE = "Play/Pause"
ACTION_PREVIOUS = "Previous"
ACTION_NEXT = "Next"
ACTION_RANDOM = "Random"
ACTION_REPEAT = "Repeat"
ACTION_QUIT = "Quit"
TOOLTIP_MAX_LEN = 80
ICON_FLASH_MS = 800

log = logging.getLogger(__name__)


def flash_icon_key(event: str, value: object) -> object | None:
    """Which icon a change flashes, or None if it flashes nothing."""

    if event == "play_state":
        return value
    if event == "random":
        return "random" if value else "sequential"
    if event == "repeat":
        return "repeat" if value else "single"
    return None


class TrayIcon(QSystemTrayIcon):
    """
    The menu-bar/tray anchor of the popover. Left click toggles the popover,
    the context menu carries the playback commands. Also acts as the Player's
    notifier: changes flash a matching icon for a moment.
    """

    _notified = Signal(str, object)

    def __init__(self, app_name: str, window: PopoverWindow):
        app_instance = QApplication.instance()
        super().__init__(app_instance)

        self._app_name = app_name
        self._window = window
        self._player: Player | None = None
        self._play_state = PlayState.STOPPED
        self._song = Song()

        style = QApplication.style()
        self._icons = {
            "default": style.standardIcon(QStyle.StandardPixmap.SP_MediaVolume),
            PlayState.PLAYING: style.standardIcon(QStyle.StandardPixmap.SP_MediaPlay),
            PlayState.PAUSED: style.standardIcon(QStyle.StandardPixmap.SP_MediaPause),
            PlayState.STOPPED: style.standardIcon(QStyle.StandardPixmap.SP_MediaStop),
            "random": style.standardIcon(QStyle.StandardPixmap.SP_BrowserReload),
            "repeat": style.standardIcon(QStyle.StandardPixmap.SP_MediaSeekForward),
            "sequential": style.standardIcon(QStyle.StandardPixmap.SP_ArrowForward),
            "single": style.standardIcon(QStyle.StandardPixmap.SP_MediaSkipForward),
        }
        self._restore_timer = QTimer(self)
        self._restore_timer.setSingleShot(True)
        _ = self._restore_timer.timeout.connect(lambda: self.setIcon(self._icons["default"]))

        self._random_action = QAction(ACTION_RANDOM, self)
        self._repeat_action = QAction(ACTION_REPEAT, self)

        self.setIcon(self._icons["default"])
        self.setToolTip(app_name)

        # notify() is called on whichever thread changed the model.
        _ = self._notified.connect(self._on_notified)
        _ = self.activated.connect(self._on_activated)

    def attach(self, player: Player):
        """Binds the menu actions to the player and shows the icon."""

        self._player = player
        self.setContextMenu(self._build_menu())
        self.show()
        log.info("System tray icon initialized.")

    def notify(self, event: str, value: object) -> None:
        self._notified.emit(event, value)

    def _build_menu(self) -> QMenu:
        """Creates and returns the context menu for the tray icon."""

        menu = QMenu()

        play_pause_action = QAction(ACTION_PLAY_PAUSE, self)
        _ = play_pause_action.triggered.connect(lambda: self._player.toggle_pause())
        menu.addAction(play_pause_action)

        previous_action = QAction(ACTION_PREVIOUS, self)
        _ = previous_action.triggered.connect(lambda: self._player.previous())
        menu.addAction(previous_action)

        next_action = QAction(ACTION_NEXT, self)
        _ = next_action.triggered.connect(lambda: self._player.next())
        menu.addAction(next_action)

        _ = menu.addSeparator()

        self._random_action.setCheckable(True)
        _ = self._random_action.triggered.connect(lambda checked: self._player.set_random(checked))
        menu.addAction(self._random_action)

        self._repeat_action.setCheckable(True)
        _ = self._repeat_action.triggered.connect(lambda checked: self._player.set_repeat(checked))
        menu.addAction(self._repeat_action)

        _ = menu.addSeparator()

        quit_action = QAction(ACTION_QUIT, self)
        _ = quit_action.triggered.connect(QApplication.instance().quit)
        menu.addAction(quit_action)

        return menu

    def _on_activated(self, reason: QSystemTrayIcon.ActivationReason):
        """Handles left-click activation on the tray icon."""

        if reason == QSystemTrayIcon.ActivationReason.Trigger:
            self.toggle_popover()
        elif reason == QSystemTrayIcon.ActivationReason.MiddleClick and self._player:
            _ = self._player.toggle_pause()

    def toggle_popover(self):
        if self._window.isVisible():
            self._window.hide()
        else:
            self._window.show_near(self.geometry())

    @Slot(str, object)
    def _on_notified(self, event: str, value: object):
        icon_key = flash_icon_key(event, value)
        if icon_key is not None:
            self._flash(self._icons[icon_key])

        if event == "play_state":
            self._play_state = value
            self._update_tooltip()
        elif event == "random":
            self._random_action.setChecked(bool(value))
        elif event == "repeat":
            self._repeat_action.setChecked(bool(value))
        elif event == "track":
            self._song = value
            self._update_tooltip()

    def _flash(self, icon: QIcon):
        """Shows `icon` briefly, then falls back to the default one."""

        self.setIcon(icon)
        self._restore_timer.start(ICON_FLASH_MS)

    def _update_tooltip(self):
        if self._play_state == PlayState.STOPPED:
            self.setToolTip(self._app_name)
            return

        description = self._song.description
        if len(description) > TOOLTIP_MAX_LEN:
            description = description[:TOOLTIP_MAX_LEN] + "…"
        self.setToolTip(description)
