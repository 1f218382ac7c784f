# pyright: reportAttributeAccessIssue=false, reportUnknownMemberType=false, reportUnknownVariableType=false, reportUnknownParameterType=false, reportAny=false, reportUnannotatedClassAttribute=false, reportUnknownArgumentType=false, reportOptionalMemberAccess=false

import logging
from typing import override

from PySide6.QtCore import QRect, Qt, Signal, Slot
from PySide6.QtGui import QPainter, QPainterPath, QPixmap
from PySide6.QtWidgets import QHBoxLayout, QLabel, QPushButton, QSlider, QVBoxLayout, QWidget

from popover.core.models import AppConfig, PlayState, Song
from popover.core.player import Player


WINDOW_WIDTH = 300
TITLE_MAX_LEN = 30
ARTIST_MAX_LEN = 40
ART_IMAGE_CORNER_RADIUS = 6
SLIDER_STEPS_PER_SECOND = 10

log = logging.getLogger(__name__)


def _truncate_text(text: str, max_length: int) -> str:
    """Truncates text with an ellipsis if it exceeds the max length."""
    return text[:max_length].rstrip() + "…" if len(text) > max_length else text


def _format_time(seconds: float | None) -> str:
    if seconds is None:
        return "--:--"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}:{secs:02d}"


class ArtLabel(QLabel):
    """A custom QLabel that paints its pixmap with rounded corners."""

    def __init__(self, *args, **kwargs):  # pyright: ignore[reportMissingParameterType]
        super().__init__(*args, **kwargs)
        self._pixmap: QPixmap | None = None
        self.radius = ART_IMAGE_CORNER_RADIUS

    @override
    def setPixmap(self, pixmap: QPixmap | None):  # pyright: ignore[reportIncompatibleMethodOverride]
        self._pixmap = pixmap
        self.update()

    @override
    def paintEvent(self, event):  # pyright: ignore[reportMissingParameterType, reportIncompatibleMethodOverride]
        if self._pixmap:
            painter = QPainter(self)
            painter.setRenderHint(QPainter.RenderHint.Antialiasing)
            path = QPainterPath()
            path.addRoundedRect(self.rect(), self.radius, self.radius)
            painter.setClipPath(path)
            painter.drawPixmap(self.rect(), self._pixmap)


class PopoverWindow(QWidget):
    """
    The popover shown from the tray icon: artwork, track info, a seek slider
    and the playback buttons. It only renders what the Player publishes and
    forwards clicks to the Player's commands.
    """

    visibility_changed = Signal(bool)

    def __init__(self, config: AppConfig):
        super().__init__()
        self._config = config
        self._player: Player | None = None
        self._play_state = PlayState.STOPPED
        self._is_random = False
        self._is_repeat = False
        self._duration: float | None = None
        self._elapsed: float | None = None
        self._seeking = False

        self._setup_window_properties()
        self._create_widgets()
        self._layout_widgets()
        self.show_placeholder("Connecting to daemon…")

    def _setup_window_properties(self):
        self.setWindowTitle("mpopover")
        self.setWindowFlags(Qt.WindowType.Popup | Qt.WindowType.FramelessWindowHint)
        self.setFixedWidth(WINDOW_WIDTH)

    def _create_widgets(self):
        self._art_label = ArtLabel()
        self._art_label.setFixedSize(self._config.ui.art_size, self._config.ui.art_size)

        self._title_label = QLabel("Title")
        self._title_label.setObjectName("title")

        self._artist_label = QLabel("Artist")
        self._artist_label.setObjectName("artist")

        self._seek_slider = QSlider(Qt.Orientation.Horizontal)
        self._time_label = QLabel(_format_time(None))
        self._time_label.setObjectName("time")

        self._previous_button = QPushButton("⏮")
        self._play_pause_button = QPushButton("▶")
        self._next_button = QPushButton("⏭")
        self._random_button = QPushButton("🔀")
        self._random_button.setCheckable(True)
        self._repeat_button = QPushButton("🔁")
        self._repeat_button.setCheckable(True)

    def _layout_widgets(self):
        info_layout = QVBoxLayout()
        info_layout.setSpacing(2)
        info_layout.addWidget(self._title_label)
        info_layout.addWidget(self._artist_label)
        info_layout.addStretch()

        header_layout = QHBoxLayout()
        header_layout.setSpacing(9)
        header_layout.addWidget(self._art_label)
        header_layout.addLayout(info_layout)

        seek_layout = QHBoxLayout()
        seek_layout.addWidget(self._seek_slider)
        seek_layout.addWidget(self._time_label)

        buttons_layout = QHBoxLayout()
        buttons_layout.addWidget(self._random_button)
        buttons_layout.addStretch()
        buttons_layout.addWidget(self._previous_button)
        buttons_layout.addWidget(self._play_pause_button)
        buttons_layout.addWidget(self._next_button)
        buttons_layout.addStretch()
        buttons_layout.addWidget(self._repeat_button)

        layout = QVBoxLayout(self)
        layout.setContentsMargins(10, 10, 10, 10)
        layout.addLayout(header_layout)
        layout.addLayout(seek_layout)
        layout.addLayout(buttons_layout)

    def attach(self, player: Player):
        """Connects the player's published state to the widgets and the buttons to its commands."""

        self._player = player

        _ = player.track_changed.connect(self.set_song)
        _ = player.play_state_changed.connect(self.set_play_state)
        _ = player.elapsed_changed.connect(self.set_elapsed)
        _ = player.random_changed.connect(self.set_random)
        _ = player.repeat_changed.connect(self.set_repeat)
        _ = player.artwork_changed.connect(self.set_artwork)
        _ = self.visibility_changed.connect(player.set_popover_visible)

        _ = self._previous_button.clicked.connect(lambda: player.previous())
        _ = self._next_button.clicked.connect(lambda: player.next())
        _ = self._play_pause_button.clicked.connect(lambda: player.toggle_pause())
        _ = self._random_button.clicked.connect(lambda: player.set_random(not self._is_random))
        _ = self._repeat_button.clicked.connect(lambda: player.set_repeat(not self._is_repeat))
        _ = self._seek_slider.sliderPressed.connect(self._on_seek_started)
        _ = self._seek_slider.sliderReleased.connect(self._on_seek_released)

    def show_near(self, anchor: QRect):
        """Shows the popover just below (or above) the tray icon geometry."""

        self.adjustSize()
        x = anchor.x() + anchor.width() // 2 - self.width() // 2
        y = anchor.y() + anchor.height()
        screen = self.screen()
        if screen:
            geometry = screen.availableGeometry()
            x = max(geometry.x(), min(x, geometry.x() + geometry.width() - self.width()))
            if y + self.height() > geometry.y() + geometry.height():
                y = anchor.y() - self.height()
        self.move(x, y)
        self.show()

    @override
    def showEvent(self, event):  # pyright: ignore[reportMissingParameterType]
        super().showEvent(event)
        self.visibility_changed.emit(True)

    @override
    def hideEvent(self, event):  # pyright: ignore[reportMissingParameterType]
        super().hideEvent(event)
        self.visibility_changed.emit(False)

    def show_placeholder(self, text: str):
        """Displays a simple text message in place of the track."""

        self._title_label.setText(text)
        self._artist_label.setText("")
        self._art_label.setPixmap(None)

    @Slot(object)  # pyright: ignore[reportArgumentType]
    def set_song(self, song: Song):
        if song.uri is None:
            self.show_placeholder("Nothing playing")
            self._duration = None
        else:
            self._title_label.setText(_truncate_text(song.title or "Unknown title", TITLE_MAX_LEN))
            self._artist_label.setText(_truncate_text(song.artist or "Unknown artist", ARTIST_MAX_LEN))
            self._duration = song.duration

        self._seek_slider.setRange(0, int((self._duration or 0) * SLIDER_STEPS_PER_SECOND))
        self._update_time()

    @Slot(object, object)  # pyright: ignore[reportArgumentType]
    def set_play_state(self, _old: PlayState, new: PlayState):
        self._play_state = new
        self._play_pause_button.setText("⏸" if new == PlayState.PLAYING else "▶")

    @Slot(object)  # pyright: ignore[reportArgumentType]
    def set_elapsed(self, elapsed: float | None):
        self._elapsed = elapsed
        self._update_time()

    @Slot(object)  # pyright: ignore[reportArgumentType]
    def set_random(self, value: bool | None):
        self._is_random = bool(value)
        self._random_button.setChecked(self._is_random)

    @Slot(object)  # pyright: ignore[reportArgumentType]
    def set_repeat(self, value: bool | None):
        self._is_repeat = bool(value)
        self._repeat_button.setChecked(self._is_repeat)

    @Slot(object)  # pyright: ignore[reportArgumentType]
    def set_artwork(self, data: bytes | None):
        if not data:
            self._art_label.setPixmap(None)
            return

        pixmap = QPixmap()
        if not pixmap.loadFromData(data):
            log.warning("Artwork could not be loaded by Qt, showing none.")
            self._art_label.setPixmap(None)
            return
        self._art_label.setPixmap(pixmap)

    def _update_time(self):
        if not self._seeking:
            self._seek_slider.setValue(int((self._elapsed or 0) * SLIDER_STEPS_PER_SECOND))
        self._time_label.setText(f"{_format_time(self._elapsed)} / {_format_time(self._duration)}")

    def _on_seek_started(self):
        self._seeking = True

    def _on_seek_released(self):
        self._seeking = False
        if self._player and self._duration:
            _ = self._player.seek(self._seek_slider.value() / SLIDER_STEPS_PER_SECOND)
