"""Sink writing logged packets to a pcap capture file readable by tcpdump."""

from __future__ import annotations

import logging
import os
import struct
import time
from collections.abc import Mapping, Sequence
from typing import BinaryIO, Optional, Union

from .record import HANGUP_SIGNAL, Key

log = logging.getLogger(__name__)

DEFAULT_PATH = "/var/log/ulogd.pcap"

TCPDUMP_MAGIC = 0xA1B2C3D4
PCAP_VERSION_MAJOR = 2
PCAP_VERSION_MINOR = 4
SNAPLEN = 64 * 1024
LINKTYPE_RAW = 101

FAMILY_INET = 2
FAMILY_INET6 = 10
IPV6_HEADER_LEN = 40

_FILE_HEADER = struct.Struct("=IHHiIII")
_RECORD_HEADER = struct.Struct("=iiII")

INPUT_KEYS = (
    "raw.pkt",
    "raw.pktlen",
    "ip.totlen",
    "oob.time.sec",
    "oob.time.usec",
    "oob.family",
    "ip6.payloadlen",
)

(
    KEY_RAW_PKT,
    KEY_RAW_PKTLEN,
    KEY_IP_TOTLEN,
    KEY_TIME_SEC,
    KEY_TIME_USEC,
    KEY_FAMILY,
    KEY_IP6_PAYLOADLEN,
) = range(len(INPUT_KEYS))

KeyInput = Union[Sequence[Optional[Key]], Mapping[str, Optional[Key]]]


def _lookup(keys: KeyInput, index: int) -> Key | None:
    if isinstance(keys, Mapping):
        return keys.get(INPUT_KEYS[index])
    return keys[index] if index < len(keys) else None


def _valid(keys: KeyInput, index: int) -> bool:
    key = _lookup(keys, index)
    return key is not None and key.valid


def _number(keys: KeyInput, index: int, bits: int) -> int:
    key = _lookup(keys, index)
    if key is None or key.value is None:
        return 0
    return int(key.value) & ((1 << bits) - 1)


def _int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value >= 1 << 31 else value


def pack_file_header(thiszone: int | None = None) -> bytes:
    """Encode the capture file header; thiszone defaults to the local offset."""
    if thiszone is None:
        thiszone = time.timezone
    return _FILE_HEADER.pack(
        TCPDUMP_MAGIC,
        PCAP_VERSION_MAJOR,
        PCAP_VERSION_MINOR,
        _int32(int(thiszone)),
        0,
        SNAPLEN,
        LINKTYPE_RAW,
    )


def pack_record_header(seconds: int, usec: int, caplen: int, length: int) -> bytes:
    """Encode the header stored before each captured packet."""
    return _RECORD_HEADER.pack(
        _int32(int(seconds)),
        _int32(int(usec)),
        int(caplen) & 0xFFFFFFFF,
        int(length) & 0xFFFFFFFF,
    )


def record_from_keys(keys: KeyInput, now: float | None = None) -> bytes:
    """Build one capture record (header and packet bytes) from the input keys.

    The time stamp comes from valid oob.time.sec and oob.time.usec keys, or
    else from ``now`` (the current time when None). Raises ValueError when
    the packet holds fewer bytes than its capture length.
    """
    caplen = _number(keys, KEY_RAW_PKTLEN, 32)
    family = _number(keys, KEY_FAMILY, 8)
    if family == FAMILY_INET:
        length = _number(keys, KEY_IP_TOTLEN, 16)
    elif family == FAMILY_INET6:
        length = _number(keys, KEY_IP6_PAYLOADLEN, 16) + IPV6_HEADER_LEN
    else:
        length = caplen

    if _valid(keys, KEY_TIME_SEC) and _valid(keys, KEY_TIME_USEC):
        seconds = _number(keys, KEY_TIME_SEC, 32)
        usec = _number(keys, KEY_TIME_USEC, 32)
    else:
        current = time.time() if now is None else now
        seconds = int(current)
        usec = int(round((current - seconds) * 1_000_000)) % 1_000_000

    packet_key = _lookup(keys, KEY_RAW_PKT)
    packet = b"" if packet_key is None or packet_key.value is None else bytes(packet_key.value)
    if len(packet) < caplen:
        raise ValueError(f"packet holds {len(packet)} bytes, capture length is {caplen}")
    return pack_record_header(seconds, usec, caplen, length) + packet[:caplen]


class PcapSink:
    """Appends packets to a pcap file, writing the file header when it is empty."""

    def __init__(self, path: str = DEFAULT_PATH, sync: bool = False) -> None:
        self.path = path
        self.sync = bool(sync)
        self._stream: BinaryIO | None = None

    def _append_create(self) -> None:
        stream = open(self.path, "ab")
        if self._stream is not None:
            self._stream.close()
        self._stream = stream
        if os.fstat(stream.fileno()).st_size == 0:
            stream.write(pack_file_header())
            stream.flush()

    def start(self) -> None:
        """Open the file for appending; raises OSError on failure."""
        self._append_create()

    def interp(self, keys: KeyInput) -> None:
        if self._stream is None:
            raise RuntimeError("capture file is not open")
        self._stream.write(record_from_keys(keys))
        if self.sync:
            self._stream.flush()

    def signal(self, signum: int) -> None:
        if signum != HANGUP_SIGNAL:
            return
        log.info("reopening capture file")
        try:
            self._append_create()
        except OSError as exc:
            log.error("can't open pcap file %s: %s", self.path, exc.strerror or exc)

    def stop(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None

    def __enter__(self) -> PcapSink:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()