import struct

import pytest

from ulogsink.pcap import (
    LINKTYPE_RAW,
    TCPDUMP_MAGIC,
    PcapSink,
    pack_file_header,
    pack_record_header,
    record_from_keys,
)
from ulogsink.record import HANGUP_SIGNAL, Key, KeyType


def make_keys(packet=b"\x45\x00\x00\x14abcdefghijklmnop", pktlen=None, totlen=20,
              sec=None, usec=None, family=2, payloadlen=0):
    if pktlen is None:
        pktlen = len(packet)
    return [
        Key("raw.pkt", KeyType.RAW, packet),
        Key("raw.pktlen", KeyType.UINT32, pktlen),
        Key("ip.totlen", KeyType.UINT16, totlen),
        Key("oob.time.sec", KeyType.UINT32, sec, valid=sec is not None),
        Key("oob.time.usec", KeyType.UINT32, usec, valid=usec is not None),
        Key("oob.family", KeyType.UINT8, family),
        Key("ip6.payloadlen", KeyType.UINT16, payloadlen),
    ]


def header_of(record):
    return struct.unpack("=iiII", record[:16])


def test_file_header_fields():
    data = pack_file_header(0)
    assert len(data) == 24
    assert struct.unpack("=IHHiIII", data) == (TCPDUMP_MAGIC, 2, 4, 0, 0, 65536, LINKTYPE_RAW)


def test_file_header_keeps_zone():
    data = pack_file_header(-3600)
    assert struct.unpack("=IHHiIII", data)[3] == -3600


def test_record_header_round_trip():
    data = pack_record_header(1000, 250, 60, 80)
    assert len(data) == 16
    assert struct.unpack("=iiII", data) == (1000, 250, 60, 80)


def test_ipv4_length_from_total_length():
    packet = bytes(range(32))
    record = record_from_keys(make_keys(packet, totlen=1500, sec=10, usec=5))
    assert header_of(record) == (10, 5, 32, 1500)
    assert record[16:] == packet


def test_ipv6_length_adds_header():
    packet = bytes(48)
    record = record_from_keys(make_keys(packet, family=10, payloadlen=8, sec=1, usec=2))
    assert header_of(record)[3] == 8 + 40


def test_unknown_family_uses_capture_length():
    packet = bytes(12)
    record = record_from_keys(make_keys(packet, family=7, sec=1, usec=2))
    caplen, length = header_of(record)[2:]
    assert caplen == length == 12


def test_time_falls_back_to_now():
    record = record_from_keys(make_keys(sec=5), now=777.25)
    seconds, usec = header_of(record)[:2]
    assert seconds == 777
    assert usec == 250000


def test_packet_cut_to_capture_length():
    packet = bytes(range(20))
    record = record_from_keys(make_keys(packet, pktlen=8, sec=1, usec=1))
    assert record[16:] == packet[:8]


def test_short_packet_rejected():
    with pytest.raises(ValueError):
        record_from_keys(make_keys(b"abc", pktlen=10, sec=1, usec=1))


def test_mapping_input():
    keys = {key.name: key for key in make_keys(bytes(4), totlen=4, sec=3, usec=4)}
    record = record_from_keys(keys)
    assert header_of(record) == (3, 4, 4, 4)


def test_sink_writes_header_once(tmp_path):
    path = tmp_path / "out.pcap"
    keys = make_keys(bytes(10), sec=1, usec=2)
    with PcapSink(str(path), sync=True) as sink:
        sink.interp(keys)
        sink.signal(HANGUP_SIGNAL)
        sink.interp(keys)
    data = path.read_bytes()
    record = record_from_keys(keys)
    assert len(data) == 24 + 2 * len(record)
    assert struct.unpack_from("=I", data)[0] == TCPDUMP_MAGIC
    assert data[24:] == record + record


def test_sink_appends_without_new_header(tmp_path):
    path = tmp_path / "out.pcap"
    keys = make_keys(bytes(6), sec=1, usec=2)
    for _ in range(2):
        with PcapSink(str(path)) as sink:
            sink.interp(keys)
    data = path.read_bytes()
    assert data.count(pack_file_header()[:4]) == 1
    assert len(data) == 24 + 2 * len(record_from_keys(keys))


def test_start_fails_for_missing_directory(tmp_path):
    sink = PcapSink(str(tmp_path / "missing" / "out.pcap"))
    with pytest.raises(OSError):
        sink.start()


def test_interp_before_start_fails(tmp_path):
    sink = PcapSink(str(tmp_path / "out.pcap"))
    with pytest.raises(RuntimeError):
        sink.interp(make_keys(sec=1, usec=1))