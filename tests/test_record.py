import ipaddress
import sys

import pytest

from ulogsink.record import Key, KeyType, LogFile, format_address


def test_ipv4_bytes():
    key = Key("ip.saddr", KeyType.IPADDR, bytes([192, 168, 1, 1]))
    assert format_address(key) == "192.168.1.1"


def test_ipv6_bytes_round_trip():
    addr = ipaddress.IPv6Address("2001:db8::5")
    key = Key("ip6.saddr", KeyType.IPADDR, addr.packed, length=16)
    assert ipaddress.IPv6Address(format_address(key)) == addr


def test_int_with_ipv6_length():
    addr = ipaddress.IPv6Address("::1")
    key = Key("a", KeyType.IPADDR, int(addr), length=16)
    assert format_address(key) == str(addr)


def test_int_ipv4_round_trip():
    addr = ipaddress.IPv4Address("10.1.2.3")
    key = Key("a", KeyType.IPADDR, int(addr), length=4)
    assert format_address(key) == str(addr)


def test_bad_address_length():
    with pytest.raises(ValueError):
        format_address(Key("a", KeyType.IPADDR, b"\x01\x02\x03"))


def test_non_address_value():
    with pytest.raises(ValueError):
        format_address(Key("a", KeyType.IPADDR, "nope"))


def test_logfile_appends(tmp_path):
    path = tmp_path / "out.log"
    path.write_text("first\n")
    lf = LogFile(str(path), sync=True)
    lf.open()
    lf.write("second\n")
    assert path.read_text() == "first\nsecond\n"
    lf.close()
    assert lf.closed


def test_write_before_open_raises(tmp_path):
    lf = LogFile(str(tmp_path / "x.log"))
    with pytest.raises(RuntimeError):
        lf.write("x")


def test_open_missing_directory(tmp_path):
    lf = LogFile(str(tmp_path / "missing" / "x.log"))
    with pytest.raises(OSError):
        lf.open()


def test_reopen_follows_rotation(tmp_path):
    path = tmp_path / "out.log"
    lf = LogFile(str(path), sync=True)
    lf.open()
    lf.write("old\n")
    rotated = tmp_path / "out.log.1"
    path.rename(rotated)
    assert lf.reopen() is True
    lf.write("new\n")
    lf.close()
    assert rotated.read_text() == "old\n"
    assert path.read_text() == "new\n"


def test_reopen_failure_keeps_old(tmp_path):
    path = tmp_path / "out.log"
    lf = LogFile(str(path), sync=True)
    lf.open()
    lf.path = str(tmp_path / "missing" / "x.log")
    assert lf.reopen() is False
    lf.write("still\n")
    lf.close()
    assert path.read_text() == "still\n"


def test_close_leaves_stdout_open():
    lf = LogFile("-")
    lf.open()
    lf.close()
    assert not sys.stdout.closed
    assert lf.closed