"""Sink writing each record as one comma-separated key=value line."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from .record import HANGUP_SIGNAL, Key, KeyType, LogFile, format_address, key_text

DEFAULT_PATH = "/var/log/ulogd_gprint.log"


def format_gprint(keys: Iterable[Key | None], now: datetime | None = None) -> str:
    """Build the key=value line for the valid keys, with an optional timestamp."""
    parts: list[str] = []
    if now is not None:
        parts.append(
            f"timestamp={now.year:04d}/{now.month:02d}/{now.day:02d}-"
            f"{now.hour:02d}:{now.minute:02d}:{now.second:02d},"
        )
    for key in keys:
        if key is None or not key.valid:
            continue
        if key.type is KeyType.STRING:
            parts.append(f"{key.name}={key_text(key.value)},")
        elif key.type.is_signed or key.type.is_unsigned:
            parts.append(f"{key.name}={int(key.value)},")
        elif key.type is KeyType.IPADDR:
            parts.append(f"{key.name}=")
            try:
                parts.append(format_address(key))
            except ValueError:
                pass
    # The last character written (normally the trailing comma) is dropped.
    return "".join(parts)[:-1]


class GPrintSink:
    """Appends one comma-separated line per record to a file."""

    def __init__(
        self, path: str = DEFAULT_PATH, sync: bool = False, timestamp: bool = False
    ) -> None:
        self.timestamp = bool(timestamp)
        self._file = LogFile(path, sync)

    def start(self) -> None:
        self._file.open()

    def interp(self, keys: Iterable[Key | None]) -> None:
        now = datetime.now() if self.timestamp else None
        self._file.write(format_gprint(keys, now) + "\n")

    def signal(self, signum: int) -> None:
        if signum == HANGUP_SIGNAL:
            self._file.reopen()

    def stop(self) -> None:
        self._file.close()

    def __enter__(self) -> GPrintSink:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()