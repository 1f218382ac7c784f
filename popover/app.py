# pyright: reportUnknownMemberType=false, reportAttributeAccessIssue=false, reportUnknownArgumentType=false, reportUnknownParameterType=false, reportMissingParameterType=false

import logging
from logging.handlers import RotatingFileHandler
import os
import signal
import sys
from typing import final

from PySide6.QtCore import QObject
from PySide6.QtWidgets import QApplication
from qt_material import apply_stylesheet

from popover.core.config import APP_NAME, user_data_dir, load_config
from popover.core.models import AppConfig
from popover.core.player import LoopState, Player
from popover.ui.popover_window import PopoverWindow
from popover.ui.tray_icon import TrayIcon


APP_DISPLAY_NAME = "Mpopover"

log = logging.getLogger(__name__)


@final
class MpopoverApp(QObject):
    """
    Manages the lifecycle of the entire application and its components.
    """

    def __init__(self):
        super().__init__()
        log.info("Starting initialization.")
        self.config = self._load_initial_config()
        log.info(f"Configuration loaded, daemon at {self.config.daemon.host}:{self.config.daemon.port}.")

        self.popover_window = PopoverWindow(self.config)
        self.tray_icon = TrayIcon(APP_DISPLAY_NAME, self.popover_window)
        self.player = Player(self.config, notifier=self.tray_icon)
        log.info("Player has been created with the initial configuration.")

        self.popover_window.attach(self.player)
        self.tray_icon.attach(self.player)

        self._connect_signals()
        self._setup_shutdown_hooks()

    def _load_initial_config(self) -> AppConfig:
        try:
            return load_config()
        except Exception:
            log.exception("Fatal error: Failed to load configuration.")
            sys.exit(1)

    def _connect_signals(self):
        _ = self.player.loop_state_changed.connect(self._on_loop_state_changed)
        log.info("Application signals connected.")

    def _on_loop_state_changed(self, state: LoopState):
        if state in (LoopState.BACKING_OFF, LoopState.DISCONNECTED):
            self.popover_window.show_placeholder("Connecting to daemon…")
        elif state == LoopState.IDLING:
            # The song may be unchanged after a reconnect, so no track_changed follows.
            self.popover_window.set_song(self.player.current_song())

    def _setup_shutdown_hooks(self):
        """Sets up handlers for graceful application shutdown."""

        QApplication.instance().aboutToQuit.connect(self._on_about_to_quit)  # pyright: ignore[reportUnusedCallResult, reportOptionalMemberAccess]
        _ = signal.signal(signal.SIGINT, self._on_os_signal)
        _ = signal.signal(signal.SIGTERM, self._on_os_signal)

        log.info("Shutdown hooks registered.")

    def run(self):
        """Starts the application's main processes."""

        self.player.start()

    def _on_about_to_quit(self):
        """Cleans up all resources before the application exits."""

        log.info("Shutdown sequence initiated...")
        self.player.stop()
        log.info(f"--- Stopped {APP_DISPLAY_NAME} ---")

    def _on_os_signal(self, *_args):
        """Handles OS signals like Ctrl+C for a graceful exit."""

        log.info("OS shutdown signal received, quitting application.")
        QApplication.instance().quit()  # pyright: ignore[reportOptionalMemberAccess]


def setup_logging():
    """Configures logging to output to both console and log file."""

    log_formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_formatter)
    root_logger.addHandler(console_handler)

    try:
        data_dir = user_data_dir()
        os.makedirs(data_dir, exist_ok=True)
        log_file_path = os.path.join(data_dir, f"{APP_NAME.lower()}.log")

        # 1MB per file, keeping 5 old files
        file_handler = RotatingFileHandler(log_file_path, maxBytes=1 * 1024 * 1024, backupCount=5)
        file_handler.setFormatter(log_formatter)
        root_logger.addHandler(file_handler)
    except Exception as e:
        root_logger.error(f"Failed to set up file logging: {e}")


def main() -> None:
    setup_logging()
    log.info(f"--- Starting {APP_DISPLAY_NAME} ---")

    app = QApplication(sys.argv)
    app.setQuitOnLastWindowClosed(False)
    app.setApplicationName(APP_NAME)
    app.setApplicationDisplayName(APP_DISPLAY_NAME)

    extra = {"density_scale": "-1"}
    apply_stylesheet(app, "dark_cyan.xml", invert_secondary=False, extra=extra)

    mpopover_app = MpopoverApp()
    mpopover_app.run()

    log.info("Entering Qt main event loop...")
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
