"""Sink writing records in the layout of kernel syslog entries."""

from __future__ import annotations

import socket
import time
from collections.abc import Sequence

from .record import HANGUP_SIGNAL, Key, LogFile, key_text

DEFAULT_PATH = "/var/log/ulogd_syslogemu.log"


def short_hostname(name: str) -> str:
    """Cut a host name at its first dot."""
    return name.split(".", 1)[0]


def format_logemu(line: str, when: float, hostname: str) -> str:
    """Prefix a line with a syslog-style time stamp and the host name."""
    stamp = time.ctime(when)[4:19]
    return f"{stamp} {hostname} {line}"


class LogEmuSink:
    """Appends the 'print' key of each record in syslog layout to a file."""

    def __init__(self, path: str = DEFAULT_PATH, sync: bool = False) -> None:
        self._file = LogFile(path, sync)
        self.hostname = ""

    def start(self) -> None:
        """Open the file and look up the short host name."""
        self._file.open()
        self.hostname = short_hostname(socket.gethostname())

    def interp(self, keys: Sequence[Key | None]) -> None:
        line = keys[0] if keys else None
        if line is None or not line.valid:
            return
        stamp_key = keys[1] if len(keys) > 1 else None
        if stamp_key is not None and stamp_key.valid:
            when = float(stamp_key.value)
        else:
            when = time.time()
        self._file.write(format_logemu(key_text(line.value), when, self.hostname))

    def signal(self, signum: int) -> None:
        if signum == HANGUP_SIGNAL:
            self._file.reopen()

    def stop(self) -> None:
        self._file.close()

    def __enter__(self) -> LogEmuSink:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()