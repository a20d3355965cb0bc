# ulogsink

Output sinks for netfilter packet and flow logs, plus a small reader for the
netfilter ULOG netlink protocol. The package has no dependencies outside the
standard library; the syslog sink needs a Unix system and the ULOG reader
needs Linux.

## Keys

Every sink works on *keys*: named, typed values such as `orig.ip.saddr`,
`oob.time.sec` or `sum.pkts`. A key is a `ulogsink.record.Key`:

```python
from ulogsink.record import Key, KeyType

keys = [
    Key("orig.ip.saddr", KeyType.IPADDR, b"\xc0\x00\x02\x01"),
    Key("orig.l4.dport", KeyType.UINT16, 443),
    Key("print", KeyType.STRING, "IN=eth0 OUT= SRC=192.0.2.1"),
    Key("oob.time.sec", KeyType.UINT32, 0, valid=False),
]
```

A key has a `name`, a `type`, a `value`, a `valid` flag (invalid keys are
skipped or treated as absent), an optional `length` and an optional
`cim_name` (used as the field name by the JSON sink). `format_address(key)`
renders an address key as IPv4 or IPv6 text; a 16-byte key is IPv6 and
`ValueError` is raised when the value is not an address.

The sinks in `gprint`, `oprint`, `jsonsink` and `logemu` take a sequence of
keys. The sinks in `nacct`, `syslogsink`, `graphite`, `ipfix_export`, `pcap`
and `sqlite_sink` take either a sequence in the order of the module's
`INPUT_KEYS` (where it has one) or a mapping from key name to key.

## Life cycle

All sinks follow the same pattern: create, `start()`, call `interp(keys)`
for each record, and `stop()` at the end. Sinks that write to a file also
have `signal(signum)`: on `SIGHUP` the file is opened afresh (for log
rotation) and the old stream kept if that fails. Most sinks can be used as
context managers, which call `start()` and `stop()`.

File-based text sinks write through `ulogsink.record.LogFile`, which appends
to the path, flushes after each write when `sync` is true, and writes to
standard output when the path is `-`.

## Sinks

| Module | Class | Output |
| --- | --- | --- |
| `ulogsink.gprint` | `GPrintSink` | one line of `name=value` pairs separated by commas, with an optional `timestamp=` field |
| `ulogsink.oprint` | `OPrintSink` | a `===>PACKET BOUNDARY` line, then one `name=value` line per valid key |
| `ulogsink.jsonsink` | `JsonSink` | one JSON object per line, to a file or over TCP, UDP or a Unix socket |
| `ulogsink.logemu` | `LogEmuSink` | the `print` key prefixed with a syslog-style time stamp and the short host name |
| `ulogsink.nacct` | `NacctSink` | tab-separated accounting lines in the nacct layout |
| `ulogsink.syslogsink` | `SyslogSink` | the `print` key, sent to the system logger |
| `ulogsink.graphite` | `GraphiteSink` | `sum.pkts` and `sum.bytes` in the Graphite plaintext protocol over TCP |
| `ulogsink.ipfix_export` | `IpfixExporter` | IPFIX messages over TCP or UDP |
| `ulogsink.pcap` | `PcapSink` | a pcap capture file |
| `ulogsink.sqlite_sink` | `SqliteSink` | one row per record in an existing SQLite table |

The formatting functions can be used on their own, without a file or socket:
`format_gprint`, `format_oprint`, `build_message` and `format_timestamp`
(JSON), `format_logemu` and `short_hostname`, `format_nacct`,
`format_graphite`, `flow_from_keys` (IPFIX), `record_from_keys`,
`pack_file_header` and `pack_record_header` (pcap), `column_to_key_name` and
`build_insert` (SQLite).

```python
from ulogsink.graphite import format_graphite

format_graphite("fw", "eth0", 10, 1500, 1700000000)
# 'fw.eth0.pkts 10 1700000000\nfw.eth0.bytes 1500 1700000000\n'
```

### Text files

```python
from ulogsink.gprint import GPrintSink

with GPrintSink("/var/log/ulogd_gprint.log", sync=True, timestamp=True) as sink:
    sink.interp(keys)
```

`OPrintSink(path, sync)`, `NacctSink(path, sync)` and `LogEmuSink(path, sync)`
work the same way. `LogEmuSink` reads the line from the first key and the time
from the second (`oob.time.sec`) when it is valid, else uses the current time.
`format_nacct` shows ICMP type and code where other protocols show ports.

### JSON

```python
from ulogsink.jsonsink import JsonSink

sink = JsonSink(mode="udp", host="127.0.0.1", port=12345, eventv1=True)
sink.start(keys)   # finds oob.time.sec / oob.time.usec among the keys
sink.interp(keys)
sink.stop()
```

The mode is `file`, `tcp`, `udp` or `unix` in any case (`parse_mode` raises
`ValueError` otherwise); in `unix` mode `path` is the socket path, which must
be shorter than 108 characters. Each object holds the time stamp (as
`timestamp`, or `@timestamp` with `@version: 1` when `eventv1` is set) in
local time with a `+HHMM` offset, `dvc` (the `device` option, `Netfilter` by
default) and every valid string or integer key. With `boolean_label` a
`raw.label` key becomes `"action": "allowed"` or `"blocked"`. A failed send
reconnects.

### syslog

```python
from ulogsink.syslogsink import SyslogSink

sink = SyslogSink("LOG_LOCAL0", "LOG_INFO")
```

`parse_facility` accepts `LOG_DAEMON`, `LOG_KERN`, `LOG_LOCAL0` to
`LOG_LOCAL7` and `LOG_USER`; `parse_level` accepts `LOG_EMERG` to `LOG_DEBUG`.
Other names raise `ValueError`. The defaults are `LOG_KERN` and `LOG_NOTICE`.

### Graphite

`GraphiteSink(host, port, prefix)` connects on `start()` (raising
`ValueError` when host or port is missing, `OSError` when no address can be
reached) and reconnects when a send fails. The time is `oob.time.sec` when
non-zero, else the current time.

### IPFIX

`ulogsink.ipfix` builds messages: `IpfixMessage(mtu, oid, tid)` holds the
header, a template when `tid` is positive, and sets opened with `add_set`
into which `add_data` appends `FlowRecord.pack()` output; `MessageFull` is
raised when there is no room left. `finalize(seqno, now)` fills in the header
fields and `to_bytes()` encodes the message. `validate_message` checks the
length fields of a message holding one set, and `record_length` gives the
record size for set id 256.

`IpfixExporter(oid, host, port=4739, proto="tcp", mtu=512,
send_template="once")` needs a non-zero observation id and an IPv4 address.
Flows without a valid 4-byte source address are ignored. A full message is
sent when the next flow arrives, and a background thread flushes a partly
filled message every second; `flush()` does the same on demand. With
`send_template="once"` the template goes in the first message only, with
`"never"` in none, and with any other value in every message. Unsent flows
are dropped on `stop()`.

### pcap

`PcapSink(path, sync)` appends to the file and writes the pcap file header
(raw IP link type, 64 KiB snap length) when the file is empty. Each record
takes its capture length from `raw.pktlen`, its original length from
`ip.totlen` (IPv4) or `ip6.payloadlen` plus 40 (IPv6), and its time from
`oob.time.sec`/`oob.time.usec` or the current time. `record_from_keys`
raises `ValueError` when `raw.pkt` holds fewer bytes than the capture length.

### SQLite

```python
from ulogsink.sqlite_sink import SqliteSink

sink = SqliteSink("/var/log/ulogd.sqlite3", "ulog")
sink.start(keys)   # the key names (or keys) that will be supplied
sink.interp(keys)
sink.stop()
```

The table must exist. Its column names are mapped to key names with
underscores turned into dots (`ip_saddr` becomes `ip.saddr`); `start` raises
`ValueError` when the table is missing or a column matches no key. Invalid or
absent keys are stored as NULL, IPv4 addresses as their 32-bit word, and
other addresses as NULL. Rows refused because the database is busy are
counted in `busy_errors` and skipped.

## Reading ULOG messages

`ulogsink.ipulog` receives packets that the kernel's `ULOG` target sends to a
netlink multicast group (Linux only, usually needs root):

```python
from ulogsink.ipulog import IpulogError, IpulogHandle, format_packet, group_to_mask

try:
    with IpulogHandle(group_to_mask(1), 150000) as handle:
        buf = handle.read(2048)
        for packet in handle.packets(buf):
            print(format_packet(packet))
except IpulogError as exc:
    print(exc)
```

`group_to_mask` accepts groups 1 to 32. Failures raise `IpulogError`, whose
`code` is an `ErrorCode`; `strerror` gives the message for a code.
`iter_packets` and `PacketMessage.parse` decode a buffer received some other
way, following multipart netlink messages.

## What the package does not do

There is no command-line program, no daemon and no configuration file
reader: the caller creates the sinks with their options, builds the keys and
calls `interp` for each record. Apart from the ULOG reader there are no input
sources that produce keys, and no way to chain plugins together. The only
database sink is the SQLite one.