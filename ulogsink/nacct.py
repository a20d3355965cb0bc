"""Accounting sink writing one tab-separated line per flow, in nacct layout."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Optional, Union

from .record import HANGUP_SIGNAL, Key, LogFile, key_text

DEFAULT_PATH = "/var/log/ulogd_nacct.log"
IPPROTO_ICMP = 1
MAX_LINE = 255

INPUT_KEYS = (
    "orig.ip.saddr.str",
    "orig.ip.daddr.str",
    "orig.ip.protocol",
    "orig.l4.sport",
    "orig.l4.dport",
    "reply.raw.pktlen",
    "reply.raw.pktcount",
    "icmp.code",
    "icmp.type",
    "flow.start.sec",
    "flow.end.sec",
)

(
    KEY_IP_SADDR,
    KEY_IP_DADDR,
    KEY_IP_PROTO,
    KEY_L4_SPORT,
    KEY_L4_DPORT,
    KEY_RAW_PKTLEN,
    KEY_RAW_PKTCNT,
    KEY_ICMP_CODE,
    KEY_ICMP_TYPE,
    KEY_FLOW_START,
    KEY_FLOW_END,
) = range(len(INPUT_KEYS))

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


def _text(keys: KeyInput, index: int) -> str:
    key = _lookup(keys, index)
    if key is None or key.value is None:
        return ""
    return key_text(key.value)


def format_nacct(keys: KeyInput) -> str:
    """Build the accounting line for one flow (without the newline).

    ``keys`` is either a sequence in the order of INPUT_KEYS or a mapping from
    key name to key. ICMP flows show type and code where others show ports.
    """
    proto = _number(keys, KEY_IP_PROTO, 8)
    if proto == IPPROTO_ICMP:
        first = _number(keys, KEY_ICMP_TYPE, 8)
        second = _number(keys, KEY_ICMP_CODE, 8)
    else:
        first = _number(keys, KEY_L4_SPORT, 16)
        second = _number(keys, KEY_L4_DPORT, 16)
    fields = (
        _number(keys, KEY_FLOW_END, 32),
        proto,
        _text(keys, KEY_IP_SADDR),
        first,
        _text(keys, KEY_IP_DADDR),
        second,
        _number(keys, KEY_RAW_PKTCNT, 64),
        _number(keys, KEY_RAW_PKTLEN, 64),
    )
    return "\t".join(str(field) for field in fields)[:MAX_LINE]


class NacctSink:
    """Appends one accounting line per flow to a file."""

    def __init__(self, path: str = DEFAULT_PATH, sync: bool = False) -> None:
        self._file = LogFile(path, sync)

    def start(self) -> None:
        self._file.open()

    def interp(self, keys: KeyInput) -> None:
        self._file.write(format_nacct(keys) + "\n")

    def signal(self, signum: int) -> None:
        if signum == HANGUP_SIGNAL:
            self._file.reopen()

    def stop(self) -> None:
        self._file.close()

    def __enter__(self) -> NacctSink:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()