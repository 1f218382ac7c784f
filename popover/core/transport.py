import logging
import socket
from dataclasses import dataclass, field
from typing import BinaryIO, final

from popover.core.errors import CommandError, MpdConnectionError, ProtocolError


GREETING_PREFIX = "OK MPD "
MAX_LINE_LENGTH = 64 * 1024

log = logging.getLogger(__name__)


@dataclass
class Response:
    pairs: list[tuple[str, str]] = field(default_factory=list)
    binary: bytes | None = None

    def as_dict(self) -> dict[str, str]:
        """Collapses the key/value lines, keeping the first value of repeated keys."""

        result: dict[str, str] = {}
        for key, value in self.pairs:
            _ = result.setdefault(key, value)
        return result

    def values(self, key: str) -> list[str]:
        return [value for k, value in self.pairs if k == key]


def quote(arg: str) -> str:
    """Quotes a command argument if it contains whitespace or quotes."""

    if arg and not any(c in arg for c in " \t'\"\\"):
        return arg
    escaped = arg.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


@final
class Transport:
    """
    A single TCP connection to the daemon. Sends one command line at a time
    and reads the response until the terminating OK/ACK line.

    Not thread-safe on its own; the ConnectionManager serialises access.
    The only call allowed from another thread is shutdown(), which unblocks
    a pending read.
    """

    def __init__(self):
        self._sock: socket.socket | None = None
        self._reader: BinaryIO | None = None
        self.version: str | None = None

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    def open(self, host: str, port: int, timeout: float | None = None, keepalive: bool = False):
        """Connects and validates the daemon's greeting line."""

        try:
            self._sock = socket.create_connection((host, port), timeout=timeout)
            if keepalive:
                self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
            self._reader = self._sock.makefile("rb")
        except OSError as e:
            self.close()
            raise MpdConnectionError(f"Could not connect to {host}:{port}: {e}") from e

        greeting = self.read_line()
        if not greeting.startswith(GREETING_PREFIX):
            self.close()
            raise ProtocolError(f"Unexpected greeting from {host}:{port}: {greeting!r}")

        self.version = greeting[len(GREETING_PREFIX):]
        log.debug(f"Connected to daemon {self.version} at {host}:{port}")

    def set_timeout(self, timeout: float | None):
        if self._sock:
            self._sock.settimeout(timeout)

    def send_line(self, text: str):
        if not self._sock:
            raise MpdConnectionError("Not connected")
        if "\n" in text:
            raise ValueError(f"Command must be a single line: {text!r}")

        try:
            self._sock.sendall(text.encode("utf-8") + b"\n")
        except OSError as e:
            self.close()
            raise MpdConnectionError(f"Failed to send {text!r}: {e}") from e

    def read_line(self) -> str:
        """Reads one newline-terminated line, without the newline."""

        raw = self._read_terminated_line()
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            # The caller cannot tell where the reply ends.
            self.close()
            raise ProtocolError(f"Line is not valid UTF-8: {raw[:80]!r}") from e

    def read_response(self) -> Response:
        """
        Reads key/value lines until OK or ACK. A malformed or undecodable line
        does not stop the read, so the stream stays in sync; it is reported
        once the terminator has been consumed.
        """

        response = Response()
        malformed: str | None = None

        while True:
            raw = self._read_terminated_line()
            try:
                line = raw.decode("utf-8")
            except UnicodeDecodeError:
                malformed = malformed or raw[:80].decode("utf-8", errors="replace")
                continue

            if line == "OK":
                break
            if line.startswith("ACK"):
                raise CommandError(line)

            key, sep, value = line.partition(": ")
            if not sep:
                malformed = malformed or line
                continue

            if key == "binary":
                response.binary = self._read_binary(value)
            else:
                response.pairs.append((key, value))

        if malformed is not None:
            raise ProtocolError(f"Malformed response line: {malformed!r}")
        return response

    def execute(self, command: str) -> Response:
        self.send_line(command)
        return self.read_response()

    def shutdown(self):
        """Shuts the socket down so a read blocked in another thread returns EOF."""

        sock = self._sock
        if sock:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass

    def close(self):
        self.shutdown()
        if self._reader:
            try:
                self._reader.close()
            except OSError:
                pass
            self._reader = None
        if self._sock:
            self._sock.close()
            self._sock = None
        self.version = None

    def _read_terminated_line(self) -> bytes:
        raw = self._read_raw_line()
        if not raw.endswith(b"\n"):
            # The rest of the line is still in the stream, nothing after it can be trusted.
            self.close()
            raise ProtocolError(f"Line exceeds {MAX_LINE_LENGTH} bytes or is unterminated")
        return raw[:-1]

    def _read_raw_line(self) -> bytes:
        if not self._reader:
            raise MpdConnectionError("Not connected")

        try:
            raw = self._reader.readline(MAX_LINE_LENGTH + 1)
        except (OSError, ValueError) as e:
            # ValueError: the reader was closed under us.
            self.close()
            raise MpdConnectionError(f"Connection lost: {e}") from e

        if not raw:
            self.close()
            raise MpdConnectionError("Connection closed by daemon")
        return raw

    def _read_binary(self, declared: str) -> bytes:
        try:
            length = int(declared)
        except ValueError as e:
            self.close()
            raise ProtocolError(f"Invalid binary length: {declared!r}") from e
        if length < 0:
            self.close()
            raise ProtocolError(f"Invalid binary length: {length}")

        if not self._reader:
            raise MpdConnectionError("Not connected")
        try:
            data = self._reader.read(length)
        except OSError as e:
            self.close()
            raise MpdConnectionError(f"Connection lost during binary transfer: {e}") from e

        if len(data) < length:
            self.close()
            raise MpdConnectionError(f"Binary transfer truncated at {len(data)} of {length} bytes")

        if self._read_raw_line() != b"\n":
            self.close()
            raise ProtocolError("Binary chunk is not followed by a newline")
        return data
