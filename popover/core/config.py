# pyright: reportAny=false, reportUnknownMemberType=false

import logging
import os
import sys

import toml

from popover.core.models import AppConfig, DaemonConfig, UIConfig


APP_NAME = "Mpopover"
CONFIG_FILE_NAME = "config.toml"
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 6600
DEFAULT_TIMEOUT = 10.0
DEFAULT_RETRY_INTERVAL = 5.0
DEFAULT_ELAPSED_INTERVAL = 0.5
DEFAULT_ARTWORK_MAX_BYTES = 32 * 1024 * 1024
DEFAULT_ART_SIZE = 64

log = logging.getLogger(__name__)


def user_data_dir() -> str:
    home = os.path.expanduser("~")
    if sys.platform.startswith("win"):
        base = os.environ.get("APPDATA", os.path.join(home, "AppData", "Roaming"))
    else:
        base = os.environ.get("XDG_CONFIG_HOME", os.path.join(home, ".config"))
    return os.path.join(base, APP_NAME)


def get_default_config() -> AppConfig:
    data_directory = user_data_dir()

    return AppConfig(
        daemon=DaemonConfig(
            host=DEFAULT_HOST,
            port=DEFAULT_PORT,
            timeout=DEFAULT_TIMEOUT,
            retry_interval=DEFAULT_RETRY_INTERVAL,
            elapsed_interval=DEFAULT_ELAPSED_INTERVAL,
            artwork_max_bytes=DEFAULT_ARTWORK_MAX_BYTES,
        ),
        ui=UIConfig(art_size=DEFAULT_ART_SIZE),
        config_path=os.path.join(data_directory, CONFIG_FILE_NAME),
    )


def save_config(config: AppConfig):
    config_to_save = {
        "daemon": {
            "host": config.daemon.host,
            "port": config.daemon.port,
            "timeout": config.daemon.timeout,
            "retry_interval": config.daemon.retry_interval,
            "elapsed_interval": config.daemon.elapsed_interval,
            "artwork_max_bytes": config.daemon.artwork_max_bytes,
        },
        "ui": {
            "art_size": config.ui.art_size,
        },
    }

    try:
        os.makedirs(os.path.dirname(config.config_path), exist_ok=True)
        with open(config.config_path, "w") as f:
            _ = toml.dump(config_to_save, f)
    except (IOError, OSError) as e:
        log.error(f"Failed to save configuration to {config.config_path}: {e}")


def _apply_environment(config: AppConfig):
    """MPD_HOST and MPD_PORT win over the file, like other MPD clients."""

    host = os.environ.get("MPD_HOST")
    if host:
        config.daemon.host = host

    port = os.environ.get("MPD_PORT")
    if port:
        try:
            config.daemon.port = int(port)
        except ValueError:
            log.warning(f"Ignoring invalid MPD_PORT value: {port!r}")


def load_config(config_path: str | None = None) -> AppConfig:
    """
    Loads configuration from the user's file, safely falling back to defaults
    for any missing or invalid values. Creates the file if it doesn't exist.
    """

    config = get_default_config()
    if config_path:
        config.config_path = config_path

    if not os.path.exists(config.config_path):
        save_config(config)
        _apply_environment(config)
        return config

    try:
        with open(config.config_path, "r") as f:
            user_config = toml.load(f)
    except toml.TomlDecodeError as e:
        log.warning(f"Failed to decode config file, using defaults. Error: {e}")
        _apply_environment(config)
        return config

    daemon_section = user_config.get("daemon", {})
    if isinstance(daemon_section, dict):
        daemon = config.daemon
        try:
            daemon.host = str(daemon_section.get("host", daemon.host))  # pyright: ignore[reportUnknownArgumentType]
            daemon.port = int(daemon_section.get("port", daemon.port))  # pyright: ignore[reportUnknownArgumentType]
            daemon.timeout = float(daemon_section.get("timeout", daemon.timeout))  # pyright: ignore[reportUnknownArgumentType]
            daemon.retry_interval = float(daemon_section.get("retry_interval", daemon.retry_interval))  # pyright: ignore[reportUnknownArgumentType]
            daemon.elapsed_interval = float(daemon_section.get("elapsed_interval", daemon.elapsed_interval))  # pyright: ignore[reportUnknownArgumentType]
            daemon.artwork_max_bytes = int(daemon_section.get("artwork_max_bytes", daemon.artwork_max_bytes))  # pyright: ignore[reportUnknownArgumentType]
        except (ValueError, TypeError):
            log.warning("Invalid value in 'daemon' section of config, using defaults for affected keys.")

    ui_section = user_config.get("ui", {})
    if isinstance(ui_section, dict):
        try:
            config.ui.art_size = int(ui_section.get("art_size", config.ui.art_size))  # pyright: ignore[reportUnknownArgumentType]
        except (ValueError, TypeError):
            log.warning("Invalid value in 'ui' section of config, using defaults for affected keys.")

    _apply_environment(config)
    return config
