"""IPFIX message building: header, optional template, one data set of flow records."""

from __future__ import annotations

import ipaddress
import struct
from dataclasses import dataclass, field

IPFIX_VERSION = 0xA
IPFIX_SET_TEMPL = 2
IPFIX_SET_OPT_TEMPL = 3
VY_IPFIX_SID = 256
VY_IPFIX_FLOWS = 36

_HEADER = struct.Struct(">HHIII")
_SET_HEADER = struct.Struct(">HH")
_TEMPLATE_HEADER = struct.Struct(">HHHH")
_TEMPLATE_FIELD = struct.Struct(">HH")
_RECORD = struct.Struct(">4s4sIIIIHHBI")

IPFIX_HDRLEN = _HEADER.size
IPFIX_SET_HDRLEN = _SET_HEADER.size
RECORD_LEN = _RECORD.size

# Information element ids and sizes, in the order of FlowRecord's fields.
TEMPLATE = (
    (8, 4),    # sourceIPv4Address
    (12, 4),   # destinationIPv4Address
    (86, 4),   # packetTotalCount
    (85, 4),   # octetTotalCount
    (150, 4),  # flowStartSeconds
    (151, 4),  # flowEndSeconds
    (7, 2),    # sourceTransportPort
    (11, 2),   # destinationTransportPort
    (4, 1),    # protocolIdentifier
    (95, 4),   # applicationId
)

_U32 = 0xFFFFFFFF


def template_length(nfields: int) -> int:
    """Size of a template set holding nfields fields."""
    return _TEMPLATE_HEADER.size + _TEMPLATE_FIELD.size * nfields


TEMPLATE_LEN = template_length(len(TEMPLATE))
VY_IPFIX_PKT_LEN = IPFIX_HDRLEN + IPFIX_SET_HDRLEN + VY_IPFIX_FLOWS * RECORD_LEN


class MessageFull(Exception):
    """The message has no room left for what was to be added."""


@dataclass
class FlowRecord:
    """One flow as carried in the data set."""

    saddr: ipaddress.IPv4Address = field(default_factory=lambda: ipaddress.IPv4Address(0))
    daddr: ipaddress.IPv4Address = field(default_factory=lambda: ipaddress.IPv4Address(0))
    packets: int = 0
    bytes: int = 0
    start: int = 0
    end: int = 0
    sport: int = 0
    dport: int = 0
    l4_proto: int = 0
    aid: int = 0

    def pack(self) -> bytes:
        """Encode the record in network byte order."""
        return _RECORD.pack(
            ipaddress.IPv4Address(self.saddr).packed,
            ipaddress.IPv4Address(self.daddr).packed,
            self.packets & _U32,
            self.bytes & _U32,
            self.start & _U32,
            self.end & _U32,
            self.sport & 0xFFFF,
            self.dport & 0xFFFF,
            self.l4_proto & 0xFF,
            self.aid & _U32,
        )

    @classmethod
    def unpack(cls, data: bytes) -> FlowRecord:
        saddr, daddr, *rest = _RECORD.unpack(bytes(data[:RECORD_LEN]))
        return cls(ipaddress.IPv4Address(saddr), ipaddress.IPv4Address(daddr), *rest)


@dataclass(frozen=True)
class MessageHeader:
    """The fixed fields at the start of an IPFIX message."""

    version: int
    length: int
    time: int
    seqno: int
    oid: int


class IpfixMessage:
    """An IPFIX message of bounded size under construction."""

    def __init__(self, mtu: int, oid: int, tid: int) -> None:
        if (tid > 0 and mtu < IPFIX_HDRLEN + TEMPLATE_LEN + IPFIX_SET_HDRLEN) or (
            mtu < IPFIX_HDRLEN + IPFIX_SET_HDRLEN
        ):
            raise ValueError(f"MTU {mtu} too small for an IPFIX message")
        self.mtu = mtu
        self.oid = oid & _U32
        self.tid = tid
        self.nrecs = 0
        self.time = 0
        self.seqno = 0
        self.length = 0
        self._sets: list[tuple[int, bytearray]] = []
        self._used = IPFIX_HDRLEN + (TEMPLATE_LEN if tid > 0 else 0)

    def __len__(self) -> int:
        return self._used

    @property
    def has_template(self) -> bool:
        return self.tid > 0

    def add_set(self, sid: int) -> None:
        """Open a new set; later data goes into it."""
        if self.mtu - self._used < IPFIX_SET_HDRLEN:
            raise MessageFull("no room for a set header")
        self._sets.append((sid, bytearray()))
        self._used += IPFIX_SET_HDRLEN

    def add_data(self, data: bytes) -> None:
        """Append one record to the last set, counting it."""
        if not self._sets:
            raise RuntimeError("no set to add data to")
        if len(data) > self.mtu - self._used:
            raise MessageFull(f"no room for {len(data)} more bytes")
        self._sets[-1][1].extend(data)
        self._used += len(data)
        self.nrecs += 1

    def finalize(self, seqno: int, now: int) -> None:
        """Fill in sequence number, export time and total length."""
        self.seqno = seqno & _U32
        self.time = int(now) & _U32
        self.length = len(self)

    def _template_bytes(self) -> bytes:
        parts = [_TEMPLATE_HEADER.pack(IPFIX_SET_TEMPL, TEMPLATE_LEN, self.tid, len(TEMPLATE))]
        parts.extend(_TEMPLATE_FIELD.pack(ie, size) for ie, size in TEMPLATE)
        return b"".join(parts)

    def to_bytes(self) -> bytes:
        parts = [_HEADER.pack(IPFIX_VERSION, self.length, self.time, self.seqno, self.oid)]
        if self.has_template:
            parts.append(self._template_bytes())
        for sid, payload in self._sets:
            parts.append(_SET_HEADER.pack(sid, IPFIX_SET_HDRLEN + len(payload)))
            parts.append(bytes(payload))
        return b"".join(parts)


def record_length(sid: int) -> int:
    """Length of one record of the given data set id."""
    if sid != VY_IPFIX_SID:
        raise ValueError(f"invalid set id {sid}")
    return RECORD_LEN


def validate_message(data: bytes) -> MessageHeader:
    """Check a message's length fields and return its header."""
    if len(data) < IPFIX_HDRLEN + IPFIX_SET_HDRLEN:
        raise ValueError("message shorter than its headers")
    header = MessageHeader(*_HEADER.unpack_from(data))
    if header.length < IPFIX_HDRLEN:
        raise ValueError("invalid IPFIX message header length")
    _sid, set_len = _SET_HEADER.unpack_from(data, IPFIX_HDRLEN)
    if len(data) != IPFIX_HDRLEN + set_len:
        raise ValueError("invalid IPFIX message length")
    return header