from dataclasses import dataclass
from enum import Enum


@dataclass
class DaemonConfig:
    host: str
    port: int
    timeout: float
    retry_interval: float
    elapsed_interval: float
    artwork_max_bytes: int

@dataclass
class UIConfig:
    art_size: int

@dataclass
class AppConfig:
    daemon: DaemonConfig
    ui: UIConfig
    config_path: str


class PlayState(Enum):
    STOPPED = "stop"
    PAUSED = "pause"
    PLAYING = "play"


@dataclass(frozen=True)
class Status:
    play_state: PlayState = PlayState.STOPPED
    elapsed: float | None = None
    is_random: bool | None = None
    is_repeat: bool | None = None

@dataclass(frozen=True)
class Song:
    artist: str | None = None
    title: str | None = None
    uri: str | None = None
    duration: float | None = None
    artwork: bytes | None = None

    @property
    def description(self) -> str:
        return f"{self.artist or 'Unknown artist'} - {self.title or 'Unknown title'}"
