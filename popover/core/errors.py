import re


ACK_PATTERN = re.compile(r"^ACK \[(\d+)@(\d+)\] \{([^}]*)\} ?(.*)$")


class MpdError(Exception):
    """Base class for everything the daemon client raises."""


class MpdConnectionError(MpdError, ConnectionError):
    """The daemon could not be reached, or the connection dropped mid-exchange."""


class ProtocolError(MpdError):
    """The daemon sent something that does not follow the protocol."""


class CommandError(MpdError):
    """
    The daemon rejected a command with an ACK line, e.g.
    ``ACK [50@0] {readpicture} No such file``.
    """

    def __init__(self, line: str):
        self.line = line
        match = ACK_PATTERN.match(line)
        if match:
            self.code = int(match.group(1))
            self.index = int(match.group(2))
            self.command = match.group(3)
            self.message = match.group(4)
        else:
            self.code = 0
            self.index = 0
            self.command = ""
            self.message = line[3:].strip()
        super().__init__(self.message or line)
