"""Sink writing each record as a block of name=value lines."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .record import HANGUP_SIGNAL, Key, KeyType, LogFile, format_address, key_text

log = logging.getLogger(__name__)

DEFAULT_PATH = "/var/log/ulogd_oprint.log"
BOUNDARY = "===>PACKET BOUNDARY\n"


def _render(key: Key) -> str:
    if key.type is KeyType.STRING:
        return key_text(key.value) + "\n"
    if key.type.is_signed or key.type.is_unsigned:
        return f"{int(key.value)}\n"
    if key.type is KeyType.IPADDR:
        try:
            return format_address(key) + "\n"
        except ValueError:
            return ""
    if key.type is KeyType.NONE:
        return "<none>\n"
    return "default\n"


def format_oprint(keys: Iterable[Key | None]) -> str:
    """Build the block for one record: a boundary line then one line per key."""
    out = [BOUNDARY]
    for key in keys:
        if key is None:
            log.info("no result for input key")
            continue
        if not key.valid:
            continue
        out.append(f"{key.name}=")
        out.append(_render(key))
    return "".join(out)


class OPrintSink:
    """Appends a name=value block per record to a file."""

    def __init__(self, path: str = DEFAULT_PATH, sync: bool = False) -> None:
        self._file = LogFile(path, sync)

    def start(self) -> None:
        self._file.open()

    def interp(self, keys: Iterable[Key | None]) -> None:
        self._file.write(format_oprint(keys))

    def signal(self, signum: int) -> None:
        if signum == HANGUP_SIGNAL:
            self._file.reopen()

    def stop(self) -> None:
        self._file.close()

    def __enter__(self) -> OPrintSink:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()