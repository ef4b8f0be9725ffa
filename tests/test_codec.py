import ctypes
import datetime
import decimal
import uuid
from typing import Optional

import pytest
import litebind
from litebind import ZeroBlob


@pytest.mark.parametrize(
    "value",
    [None, 0, -1, 2**63 - 1, -(2**63), 3.5, -0.25, "", "héllo", "a\x00b", b"", b"\x00\x01\xff"],
)
def test_round_trip(conn, value):
    conn.execute("CREATE TABLE v (x)")
    conn.execute("INSERT INTO v VALUES (?)", value)
    with conn.prepare("SELECT x FROM v") as s:
        assert s.step()
        got, is_null = s.scan_column(0)
        assert got == value
        assert type(got) is type(value)
        assert is_null == (value is None)


def test_bool_binds_as_integer(conn):
    assert conn.one_value("SELECT typeof(?)", True) == "integer"
    assert conn.one_value("SELECT ?", False) == 0


def test_int_out_of_range(conn):
    with conn.prepare("SELECT ?") as s:
        with pytest.raises(litebind.ConversionError):
            s.bind(2**63)


def test_unsupported_bind_type(conn):
    with conn.prepare("SELECT ?") as s:
        with pytest.raises(litebind.ConversionError):
            s.bind(object())


def test_bytes_like(conn):
    assert conn.one_value("SELECT ?", bytearray(b"ab")) == b"ab"
    assert conn.one_value("SELECT ?", memoryview(b"cd")) == b"cd"


def test_zeroblob(conn):
    assert conn.one_value("SELECT ?", ZeroBlob(4)) == b"\x00" * 4
    with conn.prepare("SELECT ?") as s:
        with pytest.raises(litebind.ConversionError):
            s.bind(ZeroBlob(-1))
        with pytest.raises(litebind.ConversionError):
            s.bind(ZeroBlob(2**32 + 4))


def test_host_types_bind_as_text_or_blob(conn):
    assert conn.one_value("SELECT ?", decimal.Decimal("1.10")) == "1.10"
    assert conn.one_value("SELECT ?", datetime.date(2024, 2, 29)) == "2024-02-29"
    assert conn.one_value("SELECT ?", datetime.datetime(2024, 2, 29, 12, 30)) == "2024-02-29 12:30:00"
    assert conn.one_value("SELECT ?", datetime.time(8, 15, 1)) == "08:15:01"
    u = uuid.UUID("12345678-1234-5678-1234-567812345678")
    assert conn.one_value("SELECT ?", u) == u.bytes


def scan(conn, sql, target):
    with conn.prepare(sql) as s:
        assert s.step()
        return s.scan_column(0, target)[0]


def test_checked_int_conversions(conn):
    assert scan(conn, "SELECT 2.0", int) == 2
    assert scan(conn, "SELECT ' 17 '", int) == 17
    for sql in ("SELECT 2.5", "SELECT 'abc'", "SELECT x'01'", "SELECT '99999999999999999999'"):
        with pytest.raises(litebind.ConversionError):
            scan(conn, sql, int)


def test_checked_float_conversions(conn):
    assert scan(conn, "SELECT 3", float) == 3.0
    assert scan(conn, "SELECT '2.5'", float) == 2.5
    with pytest.raises(litebind.ConversionError):
        scan(conn, "SELECT 9007199254740993", float)
    with pytest.raises(litebind.ConversionError):
        scan(conn, "SELECT 'x'", float)
    assert scan(conn, "SELECT ' 1e3 '", float) == 1000.0
    assert scan(conn, "SELECT '.5'", float) == 0.5
    for text in ("1_000", "nan", "infinity", "1e999", "0x10"):
        with pytest.raises(litebind.ConversionError):
            scan(conn, f"SELECT '{text}'", float)


def test_text_and_bytes_conversions(conn):
    assert scan(conn, "SELECT 12", str) == "12"
    assert scan(conn, "SELECT x'6869'", str) == "hi"
    with pytest.raises(litebind.ConversionError):
        scan(conn, "SELECT x'ff'", str)
    assert scan(conn, "SELECT 'hi'", bytes) == b"hi"
    assert scan(conn, "SELECT 7", bytes) == b"7"


def test_bool_conversion(conn):
    assert scan(conn, "SELECT 2", bool) is True
    assert scan(conn, "SELECT 0", bool) is False
    with pytest.raises(litebind.ConversionError):
        scan(conn, "SELECT 'yes'", bool)


def test_narrow_integer_targets(conn):
    assert scan(conn, "SELECT 127", ctypes.c_int8) == 127
    assert scan(conn, "SELECT 255", ctypes.c_uint8) == 255
    with pytest.raises(litebind.ConversionError) as excinfo:
        scan(conn, "SELECT 128 AS n", ctypes.c_int8)
    assert "'n'" in str(excinfo.value)
    with pytest.raises(litebind.ConversionError):
        scan(conn, "SELECT -1", ctypes.c_uint32)
    assert scan(conn, "SELECT -1", ctypes.c_int64) == -1


def test_optional_targets(conn):
    assert scan(conn, "SELECT NULL", Optional[str]) is None
    assert scan(conn, "SELECT 'a'", Optional[str]) == "a"


def test_conversion_error_names_column(conn):
    with conn.prepare("SELECT 'abc' AS word") as s:
        assert s.step()
        with pytest.raises(litebind.ConversionError) as excinfo:
            s.scan_column(0, int)
    msg = str(excinfo.value)
    assert "column 0" in msg
    assert "'word'" in msg
    assert "TEXT" in msg
    assert "int" in msg


def test_unsupported_scan_target(conn):
    with pytest.raises(litebind.ConversionError):
        scan(conn, "SELECT 1", list)
