import pytest

from ulogsink.oprint import OPrintSink, format_oprint
from ulogsink.record import HANGUP_SIGNAL, Key, KeyType


def test_empty_record_is_boundary_only():
    assert format_oprint([]) == "===>PACKET BOUNDARY\n"


def test_lines_per_key():
    keys = [
        Key("s", KeyType.STRING, "abc"),
        Key("n", KeyType.INT16, -7),
        Key("u", KeyType.UINT32, 9),
    ]
    lines = format_oprint(keys).splitlines()
    assert lines[0] == "===>PACKET BOUNDARY"
    assert lines[1:] == ["s=abc", "n=-7", "u=9"]


def test_none_and_unknown_types():
    keys = [Key("a", KeyType.NONE), Key("b", KeyType.RAW, b"\x00")]
    assert format_oprint(keys).splitlines()[1:] == ["a=<none>", "b=default"]


def test_address_key():
    key = Key("ip", KeyType.IPADDR, bytes([127, 0, 0, 1]))
    assert format_oprint([key]).splitlines()[1] == "ip=127.0.0.1"


def test_invalid_and_missing_skipped():
    keys = [None, Key("x", KeyType.UINT8, 3, valid=False)]
    assert format_oprint(keys) == format_oprint([])


def test_unreadable_address_leaves_name_only():
    key = Key("ip", KeyType.IPADDR, b"\x01")
    assert format_oprint([key]).endswith("ip=")


def test_sink_appends_blocks(tmp_path):
    path = tmp_path / "o.log"
    keys = [Key("s", KeyType.STRING, "v")]
    with OPrintSink(str(path), sync=True) as sink:
        sink.interp(keys)
        sink.interp(keys)
    assert path.read_text() == format_oprint(keys) * 2


def test_sink_reopen(tmp_path):
    path = tmp_path / "o.log"
    keys = [Key("s", KeyType.STRING, "v")]
    sink = OPrintSink(str(path), sync=True)
    sink.start()
    sink.interp(keys)
    path.rename(tmp_path / "o.log.1")
    sink.signal(HANGUP_SIGNAL)
    sink.interp(keys)
    sink.stop()
    assert path.read_text() == format_oprint(keys)


def test_start_fails_on_missing_dir(tmp_path):
    with pytest.raises(OSError):
        OPrintSink(str(tmp_path / "nope" / "o.log")).start()