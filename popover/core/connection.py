import logging
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import final

from popover.core.errors import MpdConnectionError
from popover.core.models import AppConfig
from popover.core.transport import Response, Transport


log = logging.getLogger(__name__)


@final
class ConnectionManager:
    """
    Owns one Transport and serialises every exchange on it.

    In idle mode the connection is held open between calls (keepalive on,
    no read timeout, since an idle wait can last for hours). In command mode
    every execute() connects, runs the command and disconnects again.
    """

    def __init__(self, config: AppConfig, idle: bool = False):
        self._config = config
        self._idle = idle
        self._transport = Transport()
        self._lock = threading.RLock()

    @property
    def idle_mode(self) -> bool:
        return self._idle

    @property
    def is_connected(self) -> bool:
        return self._transport.is_open

    def connect(self):
        """Opens a fresh connection, dropping any previous one."""

        with self._lock:
            self._disconnect()
            daemon = self._config.daemon
            log.debug(f"Connecting to {daemon.host}:{daemon.port} (idle={self._idle})")
            self._transport.open(daemon.host, daemon.port, timeout=daemon.timeout, keepalive=self._idle)
            if self._idle:
                self._transport.set_timeout(None)

    def disconnect(self):
        with self._lock:
            self._disconnect()

    def abort(self):
        """
        Interrupts whatever exchange is in flight, from any thread. The owning
        thread sees a MpdConnectionError and cleans up with disconnect().
        """

        self._transport.shutdown()

    @contextmanager
    def session(self) -> Iterator[Transport]:
        """Holds the connection for several exchanges."""

        with self._lock:
            if not self._idle or not self.is_connected:
                self.connect()
            try:
                yield self._transport
            finally:
                if not self._idle:
                    self._disconnect()

    def execute(self, command: str) -> Response:
        with self.session() as transport:
            log.debug(f"-> {command}")
            return transport.execute(command)

    def idle(self, subsystems: Sequence[str]) -> list[str]:
        """
        Blocks until the daemon reports a change in one of the subsystems.
        Returns the changed subsystem names.
        """

        if not self._idle:
            raise RuntimeError("idle() requires an idle-mode connection")
        if not self.is_connected:
            raise MpdConnectionError("Not connected")

        response = self.execute("idle " + " ".join(subsystems))
        return response.values("changed")

    def on_config_changed(self, new_config: AppConfig):
        """The new host and port are picked up on the next connect."""

        self._config = new_config

    def _disconnect(self):
        if self._transport.is_open:
            log.debug(f"Disconnecting (idle={self._idle})")
        self._transport.close()
