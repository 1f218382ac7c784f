# pyright: reportUnknownMemberType=false

import dataclasses
import logging
import threading
from typing import final

from PySide6.QtCore import QObject, Signal

from popover.core.connection import ConnectionManager
from popover.core.errors import CommandError, MpdError, ProtocolError
from popover.core.models import Song
from popover.core.transport import Response, quote


DEFAULT_ARTWORK_MAX_BYTES = 32 * 1024 * 1024

# uri first: consumers react to a track change before seeing its tags.
TRACK_FIELDS = ("uri", "artist", "title", "duration")

log = logging.getLogger(__name__)


def parse_song(response: Response) -> Song:
    """Decodes the reply to `currentsong`. An empty reply means no current song."""

    attrs = response.as_dict()
    duration = attrs.get("duration") or attrs.get("Time")
    try:
        duration_value = float(duration) if duration is not None else None
    except ValueError as e:
        raise ProtocolError(f"Invalid song duration {duration!r}") from e

    return Song(
        artist=attrs.get("Artist"),
        title=attrs.get("Title"),
        uri=attrs.get("file"),
        duration=duration_value,
    )


@final
class SongTracker(QObject):
    """
    Mirrors the daemon's current song. The URI identifies the track; when it
    changes the stored artwork is dropped in the same write.
    """

    field_changed = Signal(str, object)
    uri_changed = Signal(object)
    track_changed = Signal(object)
    artwork_changed = Signal(object)

    def __init__(
        self,
        idle_manager: ConnectionManager,
        command_manager: ConnectionManager,
        artwork_max_bytes: int = DEFAULT_ARTWORK_MAX_BYTES,
    ):
        super().__init__()
        self._idle_manager = idle_manager
        self._command_manager = command_manager
        self._artwork_max_bytes = artwork_max_bytes
        self._song = Song()
        self._lock = threading.Lock()

    def snapshot(self) -> Song:
        with self._lock:
            return self._song

    def fetch(self, manager: ConnectionManager | None = None) -> Song:
        response = (manager or self._idle_manager).execute("currentsong")
        return parse_song(response)

    def set(self):
        """Refreshes the current song over the idle connection."""

        self.apply(self.fetch())

    def apply(self, song: Song):
        with self._lock:
            old = self._song
            artwork = old.artwork if song.uri == old.uri else None
            new = dataclasses.replace(song, artwork=artwork)
            changes = [(name, getattr(new, name)) for name in TRACK_FIELDS if getattr(old, name) != getattr(new, name)]
            artwork_dropped = old.artwork is not None and artwork is None
            self._song = new

        for name, value in changes:
            self.field_changed.emit(name, value)
            if name == "uri":
                log.info(f"Track changed: {new.description} ({value})")
                self.uri_changed.emit(value)

        if artwork_dropped:
            self.field_changed.emit("artwork", None)
            self.artwork_changed.emit(None)

        if changes:
            self.track_changed.emit(new)

    def set_artwork(self, uri: str, data: bytes | None):
        """Stores fetched artwork, unless the track changed while it was being fetched."""

        artwork = data or None
        with self._lock:
            if self._song.uri != uri or self._song.artwork == artwork:
                return
            self._song = dataclasses.replace(self._song, artwork=artwork)

        self.field_changed.emit("artwork", artwork)
        self.artwork_changed.emit(artwork)

    def fetch_artwork(self, uri: str) -> bytes:
        """
        Reads the picture embedded in `uri` chunk by chunk over one command
        connection. Returns whatever was assembled, which is empty when the
        track has no artwork or the transfer exceeds the size cap.
        """

        buffer = bytearray()
        try:
            with self._command_manager.session() as transport:
                while True:
                    response = transport.execute(f"readpicture {quote(uri)} {len(buffer)}")
                    chunk = response.binary
                    if not chunk:
                        break

                    buffer += chunk
                    if len(buffer) > self._artwork_max_bytes:
                        log.warning(f"Artwork for {uri} exceeds {self._artwork_max_bytes} bytes, discarding it.")
                        return b""

                    size = response.as_dict().get("size", "")
                    if size.isdigit() and len(buffer) >= int(size):
                        break
        except CommandError as e:
            log.info(f"No artwork for {uri}: {e}")
        except MpdError as e:
            log.warning(f"Artwork fetch for {uri} stopped after {len(buffer)} bytes: {e}")

        return bytes(buffer)
