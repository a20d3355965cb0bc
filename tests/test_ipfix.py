import ipaddress
import struct

import pytest

from ulogsink.ipfix import (
    IPFIX_HDRLEN,
    IPFIX_SET_HDRLEN,
    IPFIX_SET_TEMPL,
    IPFIX_VERSION,
    RECORD_LEN,
    TEMPLATE,
    TEMPLATE_LEN,
    VY_IPFIX_SID,
    FlowRecord,
    IpfixMessage,
    MessageFull,
    record_length,
    validate_message,
)


def sample_flow():
    return FlowRecord(
        saddr=ipaddress.IPv4Address("192.0.2.1"),
        daddr=ipaddress.IPv4Address("198.51.100.7"),
        packets=10,
        bytes=1500,
        start=100,
        end=200,
        sport=1234,
        dport=80,
        l4_proto=6,
        aid=3,
    )


def test_record_length_matches_pack():
    assert len(sample_flow().pack()) == record_length(VY_IPFIX_SID)
    assert record_length(VY_IPFIX_SID) == RECORD_LEN


def test_record_length_rejects_other_sid():
    with pytest.raises(ValueError):
        record_length(VY_IPFIX_SID + 1)


def test_flow_pack_round_trip():
    flow = sample_flow()
    assert FlowRecord.unpack(flow.pack()) == flow


def test_flow_pack_address_bytes():
    packed = sample_flow().pack()
    assert packed[:4] == ipaddress.IPv4Address("192.0.2.1").packed
    assert packed[4:8] == ipaddress.IPv4Address("198.51.100.7").packed


def test_header_without_template():
    msg = IpfixMessage(512, 7, -1)
    msg.add_set(VY_IPFIX_SID)
    msg.finalize(0, 0)
    data = msg.to_bytes()
    size = IPFIX_HDRLEN + IPFIX_SET_HDRLEN
    assert data[:IPFIX_HDRLEN] == struct.pack(">HHIII", IPFIX_VERSION, size, 0, 0, 7)
    assert len(data) == size == len(msg)


def test_template_header_and_fields():
    msg = IpfixMessage(512, 1, VY_IPFIX_SID)
    msg.add_set(VY_IPFIX_SID)
    data = msg.to_bytes()
    start = IPFIX_HDRLEN
    sid, length, tid, count = struct.unpack_from(">HHHH", data, start)
    assert (sid, length, tid, count) == (IPFIX_SET_TEMPL, TEMPLATE_LEN, VY_IPFIX_SID, len(TEMPLATE))
    fields = [struct.unpack_from(">HH", data, start + 8 + 4 * i) for i in range(len(TEMPLATE))]
    assert tuple(fields) == TEMPLATE


def test_add_data_without_set_raises():
    msg = IpfixMessage(512, 1, -1)
    with pytest.raises(RuntimeError):
        msg.add_data(sample_flow().pack())


def test_mtu_too_small_raises():
    with pytest.raises(ValueError):
        IpfixMessage(IPFIX_HDRLEN, 1, -1)
    with pytest.raises(ValueError):
        IpfixMessage(IPFIX_HDRLEN + IPFIX_SET_HDRLEN, 1, VY_IPFIX_SID)


@pytest.mark.parametrize("tid", [-1, VY_IPFIX_SID])
def test_fill_until_full(tid):
    msg = IpfixMessage(512, 1, tid)
    msg.add_set(VY_IPFIX_SID)
    record = sample_flow().pack()
    added = 0
    with pytest.raises(MessageFull):
        while True:
            msg.add_data(record)
            added += 1
    assert msg.nrecs == added
    assert len(msg) <= 512 < len(msg) + RECORD_LEN
    assert len(msg.to_bytes()) == len(msg)


def test_set_length_counts_records():
    msg = IpfixMessage(512, 1, -1)
    msg.add_set(VY_IPFIX_SID)
    msg.add_data(sample_flow().pack())
    msg.add_data(sample_flow().pack())
    data = msg.to_bytes()
    sid, set_len = struct.unpack_from(">HH", data, IPFIX_HDRLEN)
    assert sid == VY_IPFIX_SID
    assert set_len == IPFIX_SET_HDRLEN + 2 * RECORD_LEN


def test_validate_finalized_message():
    msg = IpfixMessage(512, 42, -1)
    msg.add_set(VY_IPFIX_SID)
    msg.add_data(sample_flow().pack())
    msg.finalize(5, 1000)
    header = validate_message(msg.to_bytes())
    assert header.version == IPFIX_VERSION
    assert header.oid == 42
    assert header.seqno == 5
    assert header.time == 1000
    assert header.length == len(msg)


def test_validate_rejects_bad_lengths():
    msg = IpfixMessage(512, 42, -1)
    msg.add_set(VY_IPFIX_SID)
    msg.add_data(sample_flow().pack())
    msg.finalize(1, 1)
    data = msg.to_bytes()
    with pytest.raises(ValueError):
        validate_message(data + b"\0")
    with pytest.raises(ValueError):
        validate_message(data[:2] + b"\0\0" + data[4:])
    with pytest.raises(ValueError):
        validate_message(data[:10])