"""IPFIX exporter sending flow records to a collector over TCP or UDP."""

from __future__ import annotations

import ipaddress
import logging
import socket
import threading
import time
from collections.abc import Mapping, Sequence
from typing import Optional, Union

from .ipfix import VY_IPFIX_SID, FlowRecord, IpfixMessage, MessageFull
from .record import Key

log = logging.getLogger(__name__)

DEFAULT_MTU = 512
DEFAULT_PORT = 4739
DEFAULT_SEND_TEMPLATE = "once"

INPUT_KEYS = (
    "orig.ip.saddr",
    "orig.ip.daddr",
    "orig.raw.pktcount",
    "orig.raw.pktlen",
    "reply.raw.pktcount",
    "reply.raw.pktlen",
    "flow.start.sec",
    "flow.start.usec",
    "flow.end.sec",
    "flow.end.usec",
    "orig.l4.sport",
    "orig.l4.dport",
    "orig.ip.protocol",
    "ct.mark",
)

(
    IN_IP_SADDR,
    IN_IP_DADDR,
    IN_RAW_IN_PKTCOUNT,
    IN_RAW_IN_PKTLEN,
    IN_RAW_OUT_PKTCOUNT,
    IN_RAW_OUT_PKTLEN,
    IN_FLOW_START_SEC,
    IN_FLOW_START_USEC,
    IN_FLOW_END_SEC,
    IN_FLOW_END_USEC,
    IN_L4_SPORT,
    IN_L4_DPORT,
    IN_IP_PROTO,
    IN_CT_MARK,
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


def _ipv4(key: Key | None) -> ipaddress.IPv4Address | None:
    """The key's value as an IPv4 address, or None when it is not four bytes long."""
    if key is None or key.value is None:
        return None
    if key.length is not None and key.length != 4:
        return None
    value = key.value
    if isinstance(value, ipaddress.IPv4Address):
        return value
    if isinstance(value, ipaddress.IPv6Address):
        return None
    if isinstance(value, (bytes, bytearray)):
        return ipaddress.IPv4Address(bytes(value)) if len(value) == 4 else None
    if isinstance(value, str):
        try:
            return ipaddress.IPv4Address(value)
        except ValueError:
            return None
    return ipaddress.IPv4Address(int(value) & 0xFFFFFFFF)


def flow_from_keys(keys: KeyInput) -> FlowRecord | None:
    """Build a flow record, or None when there is no valid IPv4 source address."""
    if not _valid(keys, IN_IP_SADDR):
        return None
    saddr = _ipv4(_lookup(keys, IN_IP_SADDR))
    if saddr is None:
        return None
    daddr = _ipv4(_lookup(keys, IN_IP_DADDR)) or ipaddress.IPv4Address(0)
    flow = FlowRecord(
        saddr=saddr,
        daddr=daddr,
        packets=(_number(keys, IN_RAW_IN_PKTCOUNT, 64)
                 + _number(keys, IN_RAW_OUT_PKTCOUNT, 64)) & 0xFFFFFFFF,
        bytes=(_number(keys, IN_RAW_IN_PKTLEN, 64)
               + _number(keys, IN_RAW_OUT_PKTLEN, 64)) & 0xFFFFFFFF,
        start=_number(keys, IN_FLOW_START_SEC, 32),
        end=_number(keys, IN_FLOW_END_SEC, 32),
        l4_proto=_number(keys, IN_IP_PROTO, 8),
    )
    if _valid(keys, IN_L4_SPORT):
        flow.sport = _number(keys, IN_L4_SPORT, 16)
        flow.dport = _number(keys, IN_L4_DPORT, 16)
    if _valid(keys, IN_CT_MARK):
        flow.aid = _number(keys, IN_CT_MARK, 32)
    return flow


class IpfixExporter:
    """Collects flows into IPFIX messages and sends them to a collector.

    Full messages are sent as soon as the next flow arrives; a background
    timer flushes a partly filled message every FLUSH_INTERVAL seconds.
    """

    FLUSH_INTERVAL = 1.0

    def __init__(
        self,
        oid: int,
        host: str,
        port: int = DEFAULT_PORT,
        proto: str = "tcp",
        mtu: int = DEFAULT_MTU,
        send_template: str = DEFAULT_SEND_TEMPLATE,
    ) -> None:
        if not oid:
            raise ValueError("invalid Observation ID")
        if not host:
            raise ValueError("no destination host specified")
        if proto == "udp":
            self._socktype = socket.SOCK_DGRAM
        elif proto == "tcp":
            self._socktype = socket.SOCK_STREAM
        else:
            raise ValueError(f"unsupported protocol {proto!r}")
        try:
            self.address = ipaddress.IPv4Address(host)
        except ValueError:
            raise ValueError(f"invalid IPv4 address {host!r}") from None
        self.oid = int(oid)
        self.port = int(port)
        self.proto = proto
        self.mtu = int(mtu)
        self.send_template = send_template
        self.tid = -1 if send_template == "never" else VY_IPFIX_SID
        self.seqno = 0
        self._msg: IpfixMessage | None = None
        self._queue: list[IpfixMessage] = []
        self._sock: socket.socket | None = None
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._timer: threading.Thread | None = None
        log.info("using IPFIX Collector at %s:%d (MTU %d)", self.address, self.port, self.mtu)

    def start(self) -> None:
        """Connect to the collector and start the flush timer."""
        sock = socket.socket(socket.AF_INET, self._socktype)
        try:
            sock.connect((str(self.address), self.port))
        except OSError as exc:
            sock.close()
            log.error("connect: %s", exc.strerror or exc)
            raise
        self._sock = sock
        self.seqno = 0
        log.info("connected to %s:%d", self.address, self.port)
        self._stop_event.clear()
        self._timer = threading.Thread(target=self._run_timer, daemon=True)
        self._timer.start()

    def _run_timer(self) -> None:
        while not self._stop_event.wait(self.FLUSH_INTERVAL):
            try:
                self.flush()
            except OSError:
                pass

    def _enqueue(self, msg: IpfixMessage) -> None:
        self.seqno = (self.seqno + msg.nrecs) & 0xFFFFFFFF
        msg.finalize(self.seqno, int(time.time()))
        self._queue.append(msg)

    def _send_queued(self) -> None:
        if self._sock is None:
            log.error("send: not connected")
            raise ConnectionError("not connected to the IPFIX collector")
        for msg in self._queue:
            data = msg.to_bytes()
            try:
                sent = self._sock.send(data)
            except OSError as exc:
                log.error("send: %s", exc.strerror or exc)
                raise
            if sent < len(data):
                log.error("short send: %d < %d", sent, len(data))
        self._queue.clear()

    def _new_message(self) -> IpfixMessage | None:
        try:
            msg = IpfixMessage(self.mtu, self.oid, self.tid)
        except ValueError:
            log.error("cannot allocate message, dropping flow")
            return None
        msg.add_set(VY_IPFIX_SID)
        # Template sent - do not send it again the next time.
        if self.tid == VY_IPFIX_SID and self.send_template == "once":
            self.tid = -1
        return msg

    def interp(self, keys: KeyInput) -> None:
        """Add one flow, sending any messages that have filled up."""
        flow = flow_from_keys(keys)
        if flow is None:
            return
        record = flow.pack()
        with self._lock:
            for _attempt in range(2):
                if self._msg is None:
                    self._msg = self._new_message()
                    if self._msg is None:
                        return
                try:
                    self._msg.add_data(record)
                    break
                except MessageFull:
                    if self._msg.nrecs == 0:
                        log.error("MTU too small for a flow record, dropping flow")
                        return
                    self._enqueue(self._msg)
                    self._msg = None
            log.debug(
                "Got new packet (packets = %d, bytes = %d, flow = (%d, %d), "
                "saddr = %s, daddr = %s, sport = %d, dport = %d)",
                flow.packets, flow.bytes, flow.start, flow.end,
                flow.saddr, flow.daddr, flow.sport, flow.dport,
            )
            self._send_queued()

    def flush(self) -> None:
        """Send the current message if it holds any flows."""
        with self._lock:
            if self._msg is not None and self._msg.nrecs > 0:
                self._enqueue(self._msg)
                self._msg = None
                self._send_queued()

    def stop(self) -> None:
        """Stop the timer, close the connection and drop unsent flows."""
        self._stop_event.set()
        if self._timer is not None:
            self._timer.join()
            self._timer = None
        with self._lock:
            if self._sock is not None:
                self._sock.close()
                self._sock = None
            if self._msg is not None and self._msg.nrecs > 0:
                log.debug("%d flows have been lost", self._msg.nrecs)
            self._msg = None

    def __enter__(self) -> IpfixExporter:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()