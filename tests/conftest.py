"""Pytest fixtures: an in-process fake daemon speaking the MPD text protocol."""

from __future__ import annotations

import shlex
import socket
import threading
import time
from collections.abc import Callable, Iterator

import pytest
from PySide6.QtCore import QCoreApplication

from popover.core.connection import ConnectionManager
from popover.core.models import AppConfig, DaemonConfig, UIConfig
from popover.core.player import Player


GREETING = b"OK MPD 0.23.5\n"
IDLE_TIMEOUT = 10.0


class FakeDaemon:
    """
    Threaded TCP server answering status, currentsong, idle, readpicture and
    the playback commands. Tests mutate `status`, `song` and the artwork
    fields, then call notify() to wake clients blocked in idle.
    """

    def __init__(self, port: int = 0):
        self.status: dict[str, str] = {"state": "stop", "random": "0", "repeat": "0"}
        self.song: dict[str, str] = {}
        self.artwork_chunks: list[bytes] | None = None
        self.artwork_size: int | None = None
        self.artwork_forever: bytes | None = None
        # Raw reply overrides keyed by command word; None closes the connection.
        self.replies: dict[str, bytes | None] = {}
        self.greeting = GREETING
        # Seconds to wait before answering, keyed by command word.
        self.delays: dict[str, float] = {}

        self.commands: list[str] = []
        self.connection_count = 0

        self._cond = threading.Condition()
        self._generation = 0
        self._changed: list[str] = []
        self._clients: list[socket.socket] = []
        self._closed = False

        self._server = socket.create_server(("127.0.0.1", port))
        self.port: int = self._server.getsockname()[1]
        self._thread = threading.Thread(target=self._accept_loop, name="fake-daemon", daemon=True)
        self._thread.start()

    def notify(self, *subsystems: str):
        with self._cond:
            self._changed = list(subsystems)
            self._generation += 1
            self._cond.notify_all()

    def sent(self, word: str) -> list[str]:
        with self._cond:
            return [c for c in self.commands if c.split(" ", 1)[0] == word]

    def drop_connections(self):
        """Simulates a daemon restart from the clients' point of view."""

        with self._cond:
            clients, self._clients = self._clients, []
        for client in clients:
            try:
                client.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            client.close()

    def close(self):
        with self._cond:
            self._closed = True
            self._cond.notify_all()
        self._server.close()
        self.drop_connections()

    def _accept_loop(self):
        while True:
            try:
                conn, _ = self._server.accept()
            except OSError:
                break
            with self._cond:
                self.connection_count += 1
                self._clients.append(conn)
            threading.Thread(target=self._serve, args=(conn,), daemon=True).start()

    def _serve(self, conn: socket.socket):
        with self._cond:
            seen = self._generation
        try:
            conn.sendall(self.greeting)
            with conn.makefile("rb") as reader:
                for raw in reader:
                    line = raw.decode("utf-8").rstrip("\n")
                    with self._cond:
                        self.commands.append(line)
                    word = line.split(" ", 1)[0]
                    if word in self.delays:
                        time.sleep(self.delays[word])

                    if word in self.replies:
                        reply = self.replies[word]
                    elif word == "idle":
                        reply, seen = self._idle(seen)
                    else:
                        reply = self._reply(line)

                    if reply is None:
                        break
                    conn.sendall(reply)
        except OSError:
            pass
        finally:
            conn.close()

    def _idle(self, seen: int) -> tuple[bytes | None, int]:
        with self._cond:
            woke = self._cond.wait_for(lambda: self._generation > seen or self._closed, timeout=IDLE_TIMEOUT)
            if self._closed or not woke:
                return None, seen
            lines = "".join(f"changed: {s}\n" for s in self._changed)
            return (lines + "OK\n").encode(), self._generation

    def _reply(self, line: str) -> bytes:
        args = shlex.split(line)
        word = args[0]

        if word == "status":
            return _pairs(self.status)
        if word == "currentsong":
            return _pairs(self.song)
        if word == "readpicture":
            return self._readpicture(int(args[2]))
        if word in ("pause", "previous", "next", "seekcur", "random", "repeat"):
            return b"OK\n"
        return f"ACK [5@0] {{{word}}} unknown command \"{word}\"\n".encode()

    def _readpicture(self, offset: int) -> bytes:
        if self.artwork_forever is not None:
            return _binary(self.artwork_forever, None)
        if self.artwork_chunks is None:
            return b"OK\n"

        position = 0
        for chunk in self.artwork_chunks:
            if position == offset:
                return _binary(chunk, self.artwork_size)
            position += len(chunk)
        return _binary(b"", self.artwork_size)


def _pairs(values: dict[str, str]) -> bytes:
    return ("".join(f"{k}: {v}\n" for k, v in values.items()) + "OK\n").encode()


def _binary(chunk: bytes, size: int | None) -> bytes:
    head = f"size: {size}\n" if size is not None else ""
    head += f"type: image/png\nbinary: {len(chunk)}\n"
    return head.encode() + chunk + b"\nOK\n"


def make_config(port: int, data_directory: str) -> AppConfig:
    return AppConfig(
        daemon=DaemonConfig(
            host="127.0.0.1",
            port=port,
            timeout=2.0,
            retry_interval=0.1,
            elapsed_interval=0.05,
            artwork_max_bytes=64 * 1024,
        ),
        ui=UIConfig(art_size=64),
        config_path=f"{data_directory}/config.toml",
    )


@pytest.fixture(scope="session", autouse=True)
def qt_core_app() -> QCoreApplication:
    """Signals are connected directly in tests, no event loop runs."""

    return QCoreApplication.instance() or QCoreApplication([])


@pytest.fixture
def daemon() -> Iterator[FakeDaemon]:
    fake = FakeDaemon()
    yield fake
    fake.close()


@pytest.fixture
def config(daemon: FakeDaemon, tmp_path) -> AppConfig:
    return make_config(daemon.port, str(tmp_path))


@pytest.fixture
def idle_manager(config: AppConfig) -> Iterator[ConnectionManager]:
    manager = ConnectionManager(config, idle=True)
    yield manager
    manager.disconnect()


@pytest.fixture
def command_manager(config: AppConfig) -> Iterator[ConnectionManager]:
    manager = ConnectionManager(config)
    yield manager
    manager.disconnect()


@pytest.fixture
def player(config: AppConfig) -> Iterator[Player]:
    instance = Player(config)
    yield instance
    instance.stop()


@pytest.fixture
def wait_until() -> Callable[..., None]:
    """Polls a predicate until it holds, failing the test after `timeout` seconds."""

    def wait(predicate: Callable[[], bool], timeout: float = 3.0, message: str = "condition"):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return
            time.sleep(0.01)
        pytest.fail(f"timed out waiting for {message}")

    return wait
