import ipaddress
import socket
import struct

import pytest

from ulogsink.ipfix import (
    IPFIX_HDRLEN,
    IPFIX_SET_TEMPL,
    IPFIX_VERSION,
    VY_IPFIX_SID,
    FlowRecord,
    validate_message,
)
from ulogsink.ipfix_export import INPUT_KEYS, IpfixExporter, flow_from_keys
from ulogsink.record import Key, KeyType

_TYPES = {
    "orig.ip.saddr": KeyType.IPADDR,
    "orig.ip.daddr": KeyType.IPADDR,
    "orig.ip.protocol": KeyType.UINT8,
    "orig.l4.sport": KeyType.UINT16,
    "orig.l4.dport": KeyType.UINT16,
}


def make_keys(**values):
    defaults = {
        "orig.ip.saddr": ipaddress.IPv4Address("192.0.2.1"),
        "orig.ip.daddr": ipaddress.IPv4Address("198.51.100.7"),
        "orig.raw.pktcount": 3,
        "orig.raw.pktlen": 300,
        "reply.raw.pktcount": 2,
        "reply.raw.pktlen": 200,
        "flow.start.sec": 100,
        "flow.start.usec": 0,
        "flow.end.sec": 200,
        "flow.end.usec": 0,
        "orig.l4.sport": 1234,
        "orig.l4.dport": 80,
        "orig.ip.protocol": 6,
        "ct.mark": None,
    }
    defaults.update({name.replace("_", "."): v for name, v in values.items()})
    keys = []
    for name in INPUT_KEYS:
        value = defaults[name]
        keys.append(Key(name, _TYPES.get(name, KeyType.UINT32), value, valid=value is not None))
    return keys


@pytest.fixture
def collector():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(5)
    yield sock
    sock.close()


def test_flow_from_keys_sums_counters():
    flow = flow_from_keys(make_keys())
    assert flow.saddr == ipaddress.IPv4Address("192.0.2.1")
    assert flow.daddr == ipaddress.IPv4Address("198.51.100.7")
    assert flow.packets == 3 + 2
    assert flow.bytes == 300 + 200
    assert (flow.start, flow.end) == (100, 200)
    assert (flow.sport, flow.dport, flow.l4_proto) == (1234, 80, 6)
    assert flow.aid == 0


def test_flow_from_keys_mark_and_missing_ports():
    keys = make_keys(ct_mark=9)
    keys[INPUT_KEYS.index("orig.l4.sport")].valid = False
    flow = flow_from_keys(keys)
    assert flow.aid == 9
    assert (flow.sport, flow.dport) == (0, 0)


def test_flow_from_keys_accepts_mapping():
    keys = {key.name: key for key in make_keys()}
    assert flow_from_keys(keys) == flow_from_keys(make_keys())


def test_flow_from_keys_skips_invalid_or_ipv6_source():
    keys = make_keys()
    keys[0].valid = False
    assert flow_from_keys(keys) is None
    assert flow_from_keys(make_keys(orig_ip_saddr=ipaddress.IPv6Address("2001:db8::1"))) is None
    assert flow_from_keys(make_keys(orig_ip_saddr=bytes(16))) is None


@pytest.mark.parametrize(
    "kwargs",
    [
        {"oid": 0, "host": "127.0.0.1"},
        {"oid": 1, "host": ""},
        {"oid": 1, "host": "127.0.0.1", "proto": "sctp"},
        {"oid": 1, "host": "collector.example.com"},
    ],
)
def test_configuration_errors(kwargs):
    with pytest.raises(ValueError):
        IpfixExporter(**kwargs)


def test_flush_sends_one_record(collector):
    port = collector.getsockname()[1]
    exporter = IpfixExporter(11, "127.0.0.1", port, "udp", 512, "never")
    exporter.start()
    try:
        exporter.interp(make_keys())
        exporter.flush()
        data, _ = collector.recvfrom(4096)
    finally:
        exporter.stop()
    header = validate_message(data)
    assert header.version == IPFIX_VERSION
    assert header.oid == 11
    assert header.seqno == 1
    assert header.length == len(data)
    assert FlowRecord.unpack(data[IPFIX_HDRLEN + 4:]) == flow_from_keys(make_keys())


def test_template_sent_once(collector):
    port = collector.getsockname()[1]
    exporter = IpfixExporter(1, "127.0.0.1", port, "udp", 512, "once")
    exporter.start()
    try:
        exporter.interp(make_keys())
        exporter.flush()
        first, _ = collector.recvfrom(4096)
        exporter.interp(make_keys())
        exporter.flush()
        second, _ = collector.recvfrom(4096)
    finally:
        exporter.stop()
    (first_set,) = struct.unpack_from(">H", first, IPFIX_HDRLEN)
    (second_set,) = struct.unpack_from(">H", second, IPFIX_HDRLEN)
    assert first_set == IPFIX_SET_TEMPL
    assert second_set == VY_IPFIX_SID
    assert validate_message(second).seqno == 2
    assert len(first) > len(second)


def test_full_message_sent_on_next_flow(collector):
    port = collector.getsockname()[1]
    mtu = IPFIX_HDRLEN + 4 + len(FlowRecord().pack())
    exporter = IpfixExporter(5, "127.0.0.1", port, "udp", mtu, "never")
    exporter.start()
    try:
        exporter.interp(make_keys(flow_end_sec=1))
        exporter.interp(make_keys(flow_end_sec=2))
        data, _ = collector.recvfrom(4096)
    finally:
        exporter.stop()
    assert len(data) == mtu
    assert validate_message(data).seqno == 1
    assert FlowRecord.unpack(data[IPFIX_HDRLEN + 4:]).end == 1


def test_interp_without_connection_raises():
    exporter = IpfixExporter(1, "127.0.0.1", 9, "udp", 512, "never")
    with pytest.raises(ConnectionError):
        exporter.interp(make_keys())