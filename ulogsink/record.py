"""Input keys handed to output sinks, and the append-mode log file they write to."""

from __future__ import annotations

import ipaddress
import logging
import signal
import sys
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, TextIO

log = logging.getLogger(__name__)

HANGUP_SIGNAL = getattr(signal, "SIGHUP", 1)


class KeyType(Enum):
    """Type of the value carried by a key."""

    NONE = auto()
    BOOL = auto()
    INT8 = auto()
    INT16 = auto()
    INT32 = auto()
    INT64 = auto()
    UINT8 = auto()
    UINT16 = auto()
    UINT32 = auto()
    UINT64 = auto()
    IPADDR = auto()
    STRING = auto()
    RAW = auto()

    @property
    def is_signed(self) -> bool:
        return self in _SIGNED

    @property
    def is_unsigned(self) -> bool:
        return self in _UNSIGNED


_SIGNED = frozenset(
    {KeyType.BOOL, KeyType.INT8, KeyType.INT16, KeyType.INT32, KeyType.INT64}
)
_UNSIGNED = frozenset(
    {KeyType.UINT8, KeyType.UINT16, KeyType.UINT32, KeyType.UINT64}
)


@dataclass
class Key:
    """A named value produced by an input plugin."""

    name: str
    type: KeyType
    value: Any = None
    valid: bool = True
    length: int | None = None
    cim_name: str | None = None


def key_text(value: Any) -> str:
    """Render a string key's value as text."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).split(b"\0", 1)[0].decode("utf-8", "replace")
    return str(value)


def format_address(key: Key) -> str:
    """Render an address key as dotted IPv4 or IPv6 text.

    A 16-byte key is IPv6, anything else IPv4. Raises ValueError when the
    value cannot be read as an address.
    """
    value = key.value
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
        if len(raw) == 16:
            return str(ipaddress.IPv6Address(raw))
        if len(raw) == 4:
            return str(ipaddress.IPv4Address(raw))
        raise ValueError(f"address of {len(raw)} bytes for key {key.name!r}")
    if isinstance(value, int) and not isinstance(value, bool):
        if key.length == 16:
            return str(ipaddress.IPv6Address(value))
        return str(ipaddress.IPv4Address(value))
    raise ValueError(f"key {key.name!r} does not hold an address")


class LogFile:
    """A text file opened for appending, optionally flushed after each write."""

    def __init__(self, path: str, sync: bool = False) -> None:
        self.path = path
        self.sync = bool(sync)
        self._stream: TextIO | None = None

    @property
    def closed(self) -> bool:
        return self._stream is None

    def _open_stream(self) -> TextIO:
        if self.path == "-":
            return sys.stdout
        return open(self.path, "a", encoding="utf-8")

    def open(self) -> None:
        """Open the file; raises OSError when it cannot be opened."""
        self._stream = self._open_stream()

    def write(self, text: str) -> None:
        if self._stream is None:
            raise RuntimeError("log file is not open")
        self._stream.write(text)
        if self.sync:
            self._stream.flush()

    def reopen(self) -> bool:
        """Open the path afresh, keeping the old stream if that fails."""
        log.info("reopening logfile %s", self.path)
        try:
            stream = self._open_stream()
        except OSError as exc:
            log.error("can't open log file %s: %s", self.path, exc.strerror or exc)
            return False
        old, self._stream = self._stream, stream
        if old is not None and old is not sys.stdout:
            old.close()
        return True

    def close(self) -> None:
        if self._stream is not None and self._stream is not sys.stdout:
            self._stream.close()
        self._stream = None