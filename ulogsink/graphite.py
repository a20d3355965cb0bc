"""Sink feeding packet and byte counters to a graphite server."""

from __future__ import annotations

import logging
import socket
import time
from collections.abc import Mapping, Sequence
from typing import Optional, Union

from .record import Key, key_text

log = logging.getLogger(__name__)

INPUT_KEYS = ("sum.name", "sum.pkts", "sum.bytes", "oob.time.sec")
KEY_SUM_NAME, KEY_SUM_PKTS, KEY_SUM_BYTES, KEY_OOB_TIME_SEC = range(len(INPUT_KEYS))

_SEND_FLAGS = getattr(socket, "MSG_NOSIGNAL", 0)

KeyInput = Union[Sequence[Optional[Key]], Mapping[str, Optional[Key]]]


def _lookup(keys: KeyInput, index: int) -> Key | None:
    if isinstance(keys, Mapping):
        return keys.get(INPUT_KEYS[index])
    return keys[index] if index < len(keys) else None


def _number(keys: KeyInput, index: int, bits: int) -> int:
    key = _lookup(keys, index)
    if key is None or key.value is None:
        return 0
    return int(key.value) & ((1 << bits) - 1)


def format_graphite(prefix: str, name: str, pkts: int, nbytes: int, now: int) -> str:
    """Build the two plaintext-protocol lines for one counter."""
    return (
        f"{prefix}.{name}.pkts {pkts} {now}\n"
        f"{prefix}.{name}.bytes {nbytes} {now}\n"
    )


class GraphiteSink:
    """Sends sum.pkts and sum.bytes of each record to graphite over TCP."""

    def __init__(self, host: str | None, port: str | int | None, prefix: str = "") -> None:
        self.host = host
        self.port = None if port is None else str(port)
        self.prefix = prefix
        self._sock: socket.socket | None = None

    def _connect(self) -> None:
        log.debug("connecting to graphite")
        infos = socket.getaddrinfo(self.host, self.port, socket.AF_UNSPEC,
                                   socket.SOCK_STREAM)
        last_error: OSError | None = None
        for family, stype, proto, _canon, addr in infos:
            try:
                sock = socket.socket(family, stype, proto)
            except OSError as exc:
                last_error = exc
                continue
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            try:
                sock.connect(addr)
            except OSError as exc:
                last_error = exc
                sock.close()
                continue
            self._sock = sock
            return
        log.error("Could not connect")
        raise OSError(f"could not connect to {self.host}:{self.port}") from last_error

    def start(self) -> None:
        """Connect to the server; host and port must both be set."""
        log.debug("starting graphite")
        if self.host is None:
            raise ValueError("no graphite host configured")
        if self.port is None:
            raise ValueError("no graphite port configured")
        self._connect()

    def interp(self, keys: KeyInput) -> None:
        stamp = _number(keys, KEY_OOB_TIME_SEC, 32)
        now = stamp if stamp else int(time.time())
        name_key = _lookup(keys, KEY_SUM_NAME)
        name = "" if name_key is None or name_key.value is None else key_text(name_key.value)
        data = format_graphite(
            self.prefix,
            name,
            _number(keys, KEY_SUM_PKTS, 64),
            _number(keys, KEY_SUM_BYTES, 64),
            now,
        ).encode("utf-8")
        if self._sock is None:
            log.error("Failure sending message")
            self._connect()
            return
        try:
            sent = self._sock.send(data, _SEND_FLAGS)
        except OSError:
            log.error("Failure sending message")
            self._sock.close()
            self._sock = None
            self._connect()
            return
        if sent != len(data):
            log.error("Failure sending message")

    def stop(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def __enter__(self) -> GraphiteSink:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()