"""Sink writing each record as one JSON object per line, to a file or a socket."""

from __future__ import annotations

import json
import logging
import math
import socket
import time
from collections.abc import Sequence
from datetime import datetime
from enum import Enum
from typing import Any

from .record import HANGUP_SIGNAL, Key, KeyType, LogFile, key_text

log = logging.getLogger(__name__)

DEFAULT_PATH = "/var/log/ulogd.json"
DEFAULT_DEVICE = "Netfilter"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = "12345"
UNIX_PATH_MAX = 108

SEC_KEY = "oob.time.sec"
USEC_KEY = "oob.time.usec"
LABEL_KEY = "raw.label"


class JsonMode(Enum):
    """Where the JSON lines go."""

    FILE = "file"
    TCP = "tcp"
    UDP = "udp"
    UNIX = "unix"


def parse_mode(text: str | JsonMode) -> JsonMode:
    """Read a mode name, ignoring case; raises ValueError for unknown names."""
    if isinstance(text, JsonMode):
        return text
    try:
        return JsonMode(text.lower())
    except ValueError:
        raise ValueError(f"unknown mode {text!r}") from None


def _tz_suffix(offset_seconds: int) -> str:
    gmtoff = int(math.fmod(offset_seconds, 86400))
    hours = int(gmtoff / 3600)
    minutes = abs(gmtoff) // 60 % 60
    return f"{hours:+03d}{minutes:02d}"


def format_timestamp(seconds: int | float, usec: int | None = None) -> str:
    """Format a Unix time as local ISO-8601 text with a +HHMM offset."""
    local = datetime.fromtimestamp(int(seconds)).astimezone()
    offset = local.utcoffset()
    tz = _tz_suffix(int(offset.total_seconds()) if offset is not None else 0)
    base = (
        f"{local.year:04d}-{local.month:02d}-{local.day:02d}T"
        f"{local.hour:02d}:{local.minute:02d}:{local.second:02d}"
    )
    if usec is not None:
        return f"{base}.{int(usec):06d}{tz}"
    return f"{base}{tz}"


def _time_indexes(keys: Sequence[Key | None]) -> tuple[int | None, int | None]:
    sec_idx: int | None = None
    usec_idx: int | None = None
    for index, key in enumerate(keys):
        if key is None:
            continue
        if key.name == SEC_KEY:
            sec_idx = index
        elif key.name == USEC_KEY:
            usec_idx = index
    return sec_idx, usec_idx


def _valid_at(keys: Sequence[Key | None], index: int | None) -> bool:
    if index is None or index >= len(keys):
        return False
    key = keys[index]
    return key is not None and key.valid


def _field_value(key: Key) -> Any:
    if key.type is KeyType.STRING:
        return key_text(key.value)
    if key.type.is_signed or key.type.is_unsigned:
        return int(key.value)
    return None


def _message(
    keys: Sequence[Key | None],
    sec_idx: int | None,
    usec_idx: int | None,
    timestamp: bool,
    eventv1: bool,
    device: str,
    boolean_label: bool,
    now: float | None,
) -> dict[str, Any]:
    msg: dict[str, Any] = {}
    if eventv1:
        msg["@version"] = 1
    if timestamp:
        if _valid_at(keys, sec_idx):
            seconds = int(keys[sec_idx].value)  # type: ignore[union-attr,index]
        else:
            seconds = int(time.time() if now is None else now)
        usec = int(keys[usec_idx].value) if _valid_at(keys, usec_idx) else None  # type: ignore[union-attr,index]
        msg["@timestamp" if eventv1 else "timestamp"] = format_timestamp(seconds, usec)
    msg["dvc"] = device

    for key in keys:
        if key is None or not key.valid:
            continue
        if boolean_label and key.type is KeyType.UINT8 and key.name == LABEL_KEY:
            msg["action"] = "allowed" if key.value else "blocked"
            continue
        value = _field_value(key)
        if value is None:
            continue
        msg[key.cim_name or key.name] = value
    return msg


def build_message(
    keys: Sequence[Key | None],
    timestamp: bool = True,
    eventv1: bool = False,
    device: str = DEFAULT_DEVICE,
    boolean_label: bool = False,
    now: float | None = None,
) -> dict[str, Any]:
    """Build the JSON object for one record.

    The time comes from valid oob.time.sec/oob.time.usec keys; ``now`` is
    used when there is no seconds key (the current time when it is None).
    """
    sec_idx, usec_idx = _time_indexes(keys)
    return _message(keys, sec_idx, usec_idx, timestamp, eventv1, device,
                    boolean_label, now)


def _encode(msg: dict[str, Any]) -> str:
    return json.dumps(msg, ensure_ascii=False) + "\n"


class JsonSink:
    """Writes one JSON object per record to a file or a socket."""

    def __init__(
        self,
        mode: str | JsonMode = JsonMode.FILE,
        path: str = DEFAULT_PATH,
        host: str = DEFAULT_HOST,
        port: str | int = DEFAULT_PORT,
        sync: bool = False,
        timestamp: bool = True,
        eventv1: bool = False,
        device: str = DEFAULT_DEVICE,
        boolean_label: bool = False,
    ) -> None:
        self.mode = parse_mode(mode)
        self.path = path
        self.host = host
        self.port = str(port)
        self.timestamp = bool(timestamp)
        self.eventv1 = bool(eventv1)
        self.device = device
        self.boolean_label = bool(boolean_label)
        self._file = LogFile(path, sync)
        self._sock: socket.socket | None = None
        self._sec_idx: int | None = None
        self._usec_idx: int | None = None

    def _validate_unix_path(self) -> None:
        if not self.path:
            raise ValueError("missing unix socket path")
        if len(self.path) >= UNIX_PATH_MAX:
            raise ValueError(
                f"unix socket path {self.path!r} is longer than {UNIX_PATH_MAX}"
            )

    def _close_socket(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def _connect_unix(self) -> socket.socket:
        log.debug("connecting to unix:%s", self.path)
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.connect(self.path)
        except OSError:
            sock.close()
            raise
        return sock

    def _connect_net(self) -> socket.socket:
        log.debug("connecting to %s:%s", self.host, self.port)
        socktype = socket.SOCK_DGRAM if self.mode is JsonMode.UDP else socket.SOCK_STREAM
        infos = socket.getaddrinfo(self.host, self.port, socket.AF_UNSPEC, socktype)
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
            return sock
        raise OSError(f"could not connect to {self.host}:{self.port}") from last_error

    def _connect(self) -> None:
        self._close_socket()
        if self.mode is JsonMode.UNIX:
            self._sock = self._connect_unix()
        else:
            self._sock = self._connect_net()

    def start(self, keys: Sequence[Key | None] = ()) -> None:
        """Locate the time keys among the input keys and open the output."""
        self._sec_idx, self._usec_idx = _time_indexes(keys)
        if self.mode is JsonMode.FILE:
            self._file.open()
            return
        if self.mode is JsonMode.UNIX:
            self._validate_unix_path()
        self._connect()

    def _send(self, data: bytes) -> None:
        if self._sock is None:
            log.error("Failure sending message: not connected")
            self._connect()
            return
        try:
            sent = self._sock.send(data)
        except OSError as exc:
            log.error("Failure sending message: %s", exc.strerror or exc)
            self._connect()
            return
        if sent != len(data):
            raise ConnectionError(f"short send: {sent} of {len(data)} bytes")

    def interp(self, keys: Sequence[Key | None]) -> None:
        msg = _message(keys, self._sec_idx, self._usec_idx, self.timestamp,
                       self.eventv1, self.device, self.boolean_label, None)
        text = _encode(msg)
        if self.mode is JsonMode.FILE:
            self._file.write(text)
        else:
            self._send(text.encode("utf-8"))

    def signal(self, signum: int) -> None:
        if signum != HANGUP_SIGNAL:
            return
        if self.mode is JsonMode.FILE:
            self._file.reopen()
            return
        log.info("reopening socket")
        try:
            if self.mode is JsonMode.UNIX:
                self._validate_unix_path()
            self._connect()
        except (OSError, ValueError) as exc:
            log.error("can't open JSON socket: %s", exc)

    def stop(self) -> None:
        if self.mode is JsonMode.FILE:
            self._file.close()
        else:
            self._close_socket()

    def __enter__(self) -> JsonSink:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()