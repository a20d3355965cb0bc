"""Sink inserting one row per record into an SQLite table."""

from __future__ import annotations

import ipaddress
import logging
import sqlite3
import sys
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Optional, Union

from .record import Key, KeyType, key_text

log = logging.getLogger(__name__)

BUSY_TIMEOUT = 0.3

KeyInput = Union[Sequence[Optional[Key]], Mapping[str, Optional[Key]]]


def column_to_key_name(name: str) -> str:
    """Map a column name to an input key name: underscores become dots."""
    return name.replace("_", ".")


def build_insert(table: str, columns: Sequence[str]) -> str:
    """Build the insert statement with one placeholder per column."""
    if not columns:
        raise ValueError("no columns to insert into")
    names = ",".join(columns)
    marks = ",".join("?" for _ in columns)
    return f"insert into {table} ({names}) values ({marks})"


def _wrap(value: int, bits: int) -> int:
    value &= (1 << bits) - 1
    return value - (1 << bits) if value >= 1 << (bits - 1) else value


def _ipv4_word(key: Key) -> int | None:
    """The IPv4 address as its in-memory 32-bit word, or None for other addresses."""
    if key.length is not None and key.length != 4:
        return None
    value = key.value
    if isinstance(value, ipaddress.IPv6Address):
        return None
    if isinstance(value, ipaddress.IPv4Address):
        address = value
    elif isinstance(value, (bytes, bytearray)):
        if len(value) != 4:
            return None
        address = ipaddress.IPv4Address(bytes(value))
    elif isinstance(value, str):
        try:
            address = ipaddress.IPv4Address(value)
        except ValueError:
            return None
    else:
        address = ipaddress.IPv4Address(int(value) & 0xFFFFFFFF)
    return _wrap(int.from_bytes(address.packed, sys.byteorder), 32)


_SIGNED_BITS = {KeyType.INT8: 8, KeyType.INT16: 16, KeyType.INT32: 32, KeyType.INT64: 64}


def _bind_value(key: Key) -> Any:
    kind = key.type
    if kind is KeyType.BOOL:
        return int(bool(key.value))
    if kind in _SIGNED_BITS:
        return _wrap(int(key.value), _SIGNED_BITS[kind])
    if kind is KeyType.UINT8:
        return int(key.value) & 0xFF
    if kind is KeyType.UINT16:
        return int(key.value) & 0xFFFF
    if kind is KeyType.UINT32:
        return _wrap(int(key.value), 32)
    if kind is KeyType.UINT64:
        return _wrap(int(key.value), 64)
    if kind is KeyType.IPADDR:
        return _ipv4_word(key)
    if kind is KeyType.STRING:
        return key_text(key.value)
    log.info("unknown type %s for %s", kind.name, key.name)
    return None


@dataclass(frozen=True)
class _Field:
    column: str
    key_name: str


class SqliteSink:
    """Inserts the input keys matching the table's columns as one row per record."""

    def __init__(self, db: str, table: str) -> None:
        self.db = db
        self.table = table
        self.busy_errors = 0
        self._conn: sqlite3.Connection | None = None
        self._fields: list[_Field] = []
        self._stmt = ""

    @property
    def statement(self) -> str:
        return self._stmt

    def _read_columns(self, conn: sqlite3.Connection) -> list[str]:
        try:
            cursor = conn.execute(f"select * from {self.table} limit 0")
        except sqlite3.Error:
            cursor = None
        columns = [] if cursor is None or cursor.description is None else [
            item[0] for item in cursor.description
        ]
        if not columns:
            raise ValueError(
                f"table {self.table!r} is empty or missing in file {self.db!r}"
            )
        return columns

    def start(self, keys: Iterable[Key | str | None]) -> None:
        """Open the database and match each table column to an input key.

        Raises ValueError when the table is missing or a column names no key.
        """
        available = {
            key if isinstance(key, str) else key.name
            for key in keys
            if key is not None
        }
        conn = sqlite3.connect(self.db, timeout=BUSY_TIMEOUT, isolation_level=None)
        try:
            fields = []
            for column in self._read_columns(conn):
                key_name = column_to_key_name(column)
                if key_name not in available:
                    raise ValueError(f"unknown input key: {column}")
                fields.append(_Field(column, key_name))
            stmt = build_insert(self.table, [f.column for f in fields])
        except Exception:
            conn.close()
            raise
        self._conn = conn
        self._fields = fields
        self._stmt = stmt
        log.debug("stmt=%r", stmt)

    def _row(self, keys: KeyInput) -> list[Any]:
        if isinstance(keys, Mapping):
            by_name = keys
        else:
            by_name = {key.name: key for key in keys if key is not None}
        row = []
        for field in self._fields:
            key = by_name.get(field.key_name)
            if key is None or not key.valid or key.value is None:
                row.append(None)
            else:
                row.append(_bind_value(key))
        return row

    def interp(self, keys: KeyInput) -> None:
        """Insert one row; a busy database is counted and the row skipped."""
        if self._conn is None:
            raise RuntimeError("database is not open")
        row = self._row(keys)
        try:
            self._conn.execute(self._stmt, row)
        except sqlite3.OperationalError as exc:
            text = str(exc).lower()
            if "locked" in text or "busy" in text:
                self.busy_errors += 1
                return
            log.error("SQLITE3: step: %s", exc)
            raise

    def stop(self) -> None:
        if self._conn is None:
            raise RuntimeError("database is not open")
        self._conn.close()
        self._conn = None

    def __exit__(self, *args: object) -> None:
        self.stop()

    def __enter__(self) -> SqliteSink:
        return self