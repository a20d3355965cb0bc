"""Sink handing the 'print' line of each record to the system logger."""

from __future__ import annotations

import syslog
from collections.abc import Mapping, Sequence
from typing import Optional, Union

from .record import Key, key_text

DEFAULT_FACILITY = "LOG_KERN"
DEFAULT_LEVEL = "LOG_NOTICE"
PRINT_KEY = "print"

_FACILITIES = {
    "LOG_DAEMON": syslog.LOG_DAEMON,
    "LOG_KERN": syslog.LOG_KERN,
    "LOG_LOCAL0": syslog.LOG_LOCAL0,
    "LOG_LOCAL1": syslog.LOG_LOCAL1,
    "LOG_LOCAL2": syslog.LOG_LOCAL2,
    "LOG_LOCAL3": syslog.LOG_LOCAL3,
    "LOG_LOCAL4": syslog.LOG_LOCAL4,
    "LOG_LOCAL5": syslog.LOG_LOCAL5,
    "LOG_LOCAL6": syslog.LOG_LOCAL6,
    "LOG_LOCAL7": syslog.LOG_LOCAL7,
    "LOG_USER": syslog.LOG_USER,
}

_LEVELS = {
    "LOG_EMERG": syslog.LOG_EMERG,
    "LOG_ALERT": syslog.LOG_ALERT,
    "LOG_CRIT": syslog.LOG_CRIT,
    "LOG_ERR": syslog.LOG_ERR,
    "LOG_WARNING": syslog.LOG_WARNING,
    "LOG_NOTICE": syslog.LOG_NOTICE,
    "LOG_INFO": syslog.LOG_INFO,
    "LOG_DEBUG": syslog.LOG_DEBUG,
}

KeyInput = Union[Sequence[Optional[Key]], Mapping[str, Optional[Key]]]


def parse_facility(name: str) -> int:
    """Map a facility name such as LOG_LOCAL0 to its value."""
    try:
        return _FACILITIES[name]
    except KeyError:
        raise ValueError(f"unknown facility {name!r}") from None


def parse_level(name: str) -> int:
    """Map a level name such as LOG_NOTICE to its value."""
    try:
        return _LEVELS[name]
    except KeyError:
        raise ValueError(f"unknown level {name!r}") from None


class SyslogSink:
    """Logs the 'print' key of each record through syslog."""

    def __init__(self, facility: str = DEFAULT_FACILITY, level: str = DEFAULT_LEVEL) -> None:
        self.facility = parse_facility(facility)
        self.level = parse_level(level)

    @property
    def priority(self) -> int:
        return self.level | self.facility

    def start(self) -> None:
        syslog.openlog("ulogd", syslog.LOG_NDELAY | syslog.LOG_PID, syslog.LOG_DAEMON)

    def interp(self, keys: KeyInput) -> None:
        if isinstance(keys, Mapping):
            line = keys.get(PRINT_KEY)
        else:
            line = keys[0] if keys else None
        if line is None or not line.valid:
            return
        syslog.syslog(self.priority, key_text(line.value))

    def stop(self) -> None:
        syslog.closelog()

    def __enter__(self) -> SyslogSink:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()