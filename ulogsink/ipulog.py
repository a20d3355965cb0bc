"""Reception of ULOG packets from a netlink socket."""

from __future__ import annotations

import os
import socket
import struct
from collections.abc import Iterator
from dataclasses import dataclass
from enum import IntEnum

NETLINK_NFLOG = 5
NLMSG_DONE = 3
NLM_F_MULTI = 2
MSG_TRUNC = 0x20

_AF_NETLINK = getattr(socket, "AF_NETLINK", 16)
_NLMSG_HDR = struct.Struct("=IHHII")
_NLMSGERR_LEN = 4 + _NLMSG_HDR.size
_ULOG_PACKET = struct.Struct("@LllI16s16sN32sB80s")


class ErrorCode(IntEnum):
    NONE = 0
    IMPL = 1
    HANDLE = 2
    SOCKET = 3
    BIND = 4
    RECVBUF = 5
    RECV = 6
    NLEOF = 7
    TRUNC = 8
    INVGR = 9
    INVNL = 10


_MESSAGES = {
    ErrorCode.NONE: "No error",
    ErrorCode.IMPL: "Not implemented yet",
    ErrorCode.HANDLE: "Unable to create netlink handle",
    ErrorCode.SOCKET: "Unable to create netlink socket",
    ErrorCode.BIND: "Unable to bind netlink socket",
    ErrorCode.RECVBUF: "Receive buffer size invalid",
    ErrorCode.RECV: "Error during netlink receive",
    ErrorCode.NLEOF: "Received EOF on netlink socket",
    ErrorCode.TRUNC: "Receive message truncated",
    ErrorCode.INVGR: "Invalid group specified",
    ErrorCode.INVNL: "Invalid netlink message",
}


def strerror(code: int) -> str:
    """Describe an error code; unknown codes read as not implemented."""
    if code < 0 or code > max(ErrorCode):
        code = ErrorCode.IMPL
    return _MESSAGES[ErrorCode(code)]


class IpulogError(Exception):
    """A failure while receiving ULOG packets."""

    def __init__(self, code: ErrorCode, cause: OSError | None = None) -> None:
        self.code = ErrorCode(code)
        self.cause = cause
        text = strerror(self.code)
        if cause is not None:
            text = f"{text}: {cause.strerror or cause}"
        super().__init__(text)


def group_to_mask(group: int) -> int:
    """Convert a netlink group (1-32) to a group mask."""
    if group < 1 or group > 32:
        raise IpulogError(ErrorCode.INVGR)
    return 1 << (group - 1)


def _cstr(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("latin-1")


@dataclass
class PacketMessage:
    """One logged packet as delivered by the kernel."""

    mark: int
    timestamp_sec: int
    timestamp_usec: int
    hook: int
    indev_name: str
    outdev_name: str
    data_len: int
    prefix: str
    mac: bytes
    payload: bytes

    @property
    def mac_len(self) -> int:
        return len(self.mac)

    @classmethod
    def parse(cls, payload: bytes) -> PacketMessage:
        if len(payload) < _ULOG_PACKET.size:
            raise IpulogError(ErrorCode.INVNL)
        (mark, sec, usec, hook, indev, outdev, data_len,
         prefix, mac_len, mac) = _ULOG_PACKET.unpack_from(payload)
        start = _ULOG_PACKET.size
        return cls(
            mark=mark,
            timestamp_sec=sec,
            timestamp_usec=usec,
            hook=hook,
            indev_name=_cstr(indev),
            outdev_name=_cstr(outdev),
            data_len=data_len,
            prefix=_cstr(prefix),
            mac=bytes(mac[:mac_len]),
            payload=bytes(payload[start:start + data_len]),
        )


def _header_at(buf: bytes, offset: int, remaining: int) -> tuple[int, int, int] | None:
    if remaining < _NLMSG_HDR.size:
        return None
    length, mtype, flags, _seq, _pid = _NLMSG_HDR.unpack_from(buf, offset)
    if length < _NLMSG_HDR.size or length > remaining:
        return None
    return length, mtype, flags


def iter_packets(buf: bytes) -> Iterator[PacketMessage]:
    """Yield the packets of a received buffer, following multipart messages."""
    buf = bytes(buf)
    offset = 0
    remaining = len(buf)
    header = _header_at(buf, offset, remaining)
    if header is None:
        raise IpulogError(ErrorCode.INVNL)
    while header is not None:
        length, mtype, flags = header
        yield PacketMessage.parse(buf[offset + _NLMSG_HDR.size:offset + length])
        if mtype == NLMSG_DONE or not flags & NLM_F_MULTI:
            return
        step = (length + 3) & ~3
        offset += step
        remaining -= step
        header = _header_at(buf, offset, remaining)


def format_packet(packet: PacketMessage) -> str:
    """Describe a packet as hook, mark, length, prefix and MAC address."""
    parts = [f"Hook={packet.hook} Mark={packet.mark} len={packet.data_len} "]
    if packet.prefix:
        parts.append(f"Prefix={packet.prefix} ")
    if packet.mac:
        parts.append("mac=" + ":".join(f"{b:02x}" for b in packet.mac) + " ")
    return "".join(parts)


class IpulogHandle:
    """A netlink socket bound to a set of ULOG groups."""

    def __init__(self, gmask: int, rcvbufsize: int | None = None) -> None:
        try:
            sock = socket.socket(_AF_NETLINK, socket.SOCK_RAW, NETLINK_NFLOG)
        except OSError as exc:
            raise IpulogError(ErrorCode.SOCKET, exc) from exc
        try:
            sock.bind((os.getpid(), gmask))
        except OSError as exc:
            sock.close()
            raise IpulogError(ErrorCode.BIND, exc) from exc
        if rcvbufsize is not None:
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, rcvbufsize)
            except OSError as exc:
                sock.close()
                raise IpulogError(ErrorCode.RECVBUF, exc) from exc
        self.gmask = gmask
        self._sock = sock

    def read(self, size: int) -> bytes:
        """Receive one datagram of at most size bytes, blocking."""
        if size < _NLMSGERR_LEN:
            raise IpulogError(ErrorCode.RECVBUF)
        try:
            data, addr = self._sock.recvfrom(size)
        except OSError as exc:
            raise IpulogError(ErrorCode.RECV, exc) from exc
        pid = addr[0] if isinstance(addr, tuple) else addr
        if pid != 0:
            raise IpulogError(ErrorCode.RECV)
        if not data:
            raise IpulogError(ErrorCode.NLEOF)
        if len(data) >= 8:
            (flags,) = struct.unpack_from("=H", data, 6)
            if flags & MSG_TRUNC:
                raise IpulogError(ErrorCode.TRUNC)
        if len(data) > size:
            raise IpulogError(ErrorCode.TRUNC)
        return data

    def packets(self, buf: bytes) -> Iterator[PacketMessage]:
        return iter_packets(buf)

    def fileno(self) -> int:
        return self._sock.fileno()

    def close(self) -> None:
        self._sock.close()

    def __enter__(self) -> IpulogHandle:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()