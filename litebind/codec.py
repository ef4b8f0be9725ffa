import ctypes
import datetime
import decimal
import enum
import re
import types
import typing
import uuid

from . import native
from .errors import ConversionError

INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1
INT32_MAX = (1 << 31) - 1

_INT_TEXT = re.compile(r"[+-]?[0-9]+")
# Numeric literals as SQL writes them; no "nan", "inf" or digit separators.
_REAL_TEXT = re.compile(r"[+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")


class ColumnType(enum.IntEnum):
    """Engine storage class of a value."""

    INTEGER = native.SQLITE_INTEGER
    FLOAT = native.SQLITE_FLOAT
    TEXT = native.SQLITE_TEXT
    BLOB = native.SQLITE_BLOB
    NULL = native.SQLITE_NULL


class ZeroBlob(typing.NamedTuple):
    """Bind value standing for a zero-filled blob of ``length`` bytes."""

    length: int


def _type_name(target):
    return getattr(target, "__name__", repr(target))


def _kind_name(kind):
    try:
        return ColumnType(kind).name
    except ValueError:
        return str(kind)


def bind_value(handle, index, value):
    """Bind ``value`` to the 1-based parameter ``index``; returns the engine rc."""
    lib = native.load_library()
    if value is None:
        return lib.sqlite3_bind_null(handle, index)
    if isinstance(value, ZeroBlob):
        if not 0 <= value.length <= INT32_MAX:
            raise ConversionError(f"parameter {index}: zeroblob length must be 0..{INT32_MAX}, got {value.length}")
        return lib.sqlite3_bind_zeroblob(handle, index, value.length)
    if isinstance(value, int):
        if not INT64_MIN <= value <= INT64_MAX:
            raise ConversionError(f"parameter {index}: int {value} does not fit in a 64-bit INTEGER")
        return lib.sqlite3_bind_int64(handle, index, int(value))
    if isinstance(value, float):
        return lib.sqlite3_bind_double(handle, index, value)
    if isinstance(value, str):
        return _bind_text(lib, handle, index, value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        data = bytes(value)
        return lib.sqlite3_bind_blob(handle, index, data, len(data), native.SQLITE_TRANSIENT)
    if isinstance(value, decimal.Decimal):
        return _bind_text(lib, handle, index, str(value))
    # datetime is a date subclass; its text form uses a space separator.
    if isinstance(value, datetime.datetime):
        return _bind_text(lib, handle, index, value.isoformat(" "))
    if isinstance(value, (datetime.date, datetime.time)):
        return _bind_text(lib, handle, index, value.isoformat())
    if isinstance(value, uuid.UUID):
        data = value.bytes
        return lib.sqlite3_bind_blob(handle, index, data, len(data), native.SQLITE_TRANSIENT)
    raise ConversionError(f"parameter {index}: unsupported type {type(value).__name__}")


def _bind_text(lib, handle, index, text):
    try:
        data = text.encode("utf-8")
    except UnicodeEncodeError as e:
        raise ConversionError(f"parameter {index}: text is not encodable as UTF-8") from e
    return lib.sqlite3_bind_text(handle, index, data, len(data), native.SQLITE_TRANSIENT)


def _column_bytes(lib, handle, index, accessor):
    # The pointer must be fetched before the length.
    ptr = accessor(handle, index)
    size = lib.sqlite3_column_bytes(handle, index)
    if not ptr or size <= 0:
        return b""
    return ctypes.string_at(ptr, size)


def _column_text(lib, handle, index):
    return _column_bytes(lib, handle, index, lib.sqlite3_column_text)


def _column_blob(lib, handle, index):
    return _column_bytes(lib, handle, index, lib.sqlite3_column_blob)


def column_value(handle, index, kind=None):
    """Dynamic value of a column of the current row."""
    lib = native.load_library()
    if kind is None:
        kind = lib.sqlite3_column_type(handle, index)
    if kind == native.SQLITE_INTEGER:
        return lib.sqlite3_column_int64(handle, index)
    if kind == native.SQLITE_FLOAT:
        return lib.sqlite3_column_double(handle, index)
    if kind == native.SQLITE_TEXT:
        return _column_text(lib, handle, index).decode("utf-8", errors="replace")
    if kind == native.SQLITE_BLOB:
        return _column_blob(lib, handle, index)
    return None


class _Mismatch(Exception):
    pass


def _to_int(lib, handle, index, kind):
    if kind == native.SQLITE_INTEGER:
        return lib.sqlite3_column_int64(handle, index)
    if kind == native.SQLITE_FLOAT:
        d = lib.sqlite3_column_double(handle, index)
        if d != d or d in (float("inf"), float("-inf")) or not d.is_integer():
            raise _Mismatch
        i = int(d)
        if not INT64_MIN <= i <= INT64_MAX:
            raise _Mismatch
        return i
    if kind == native.SQLITE_TEXT:
        text = _column_text(lib, handle, index).decode("utf-8", errors="replace").strip()
        if not _INT_TEXT.fullmatch(text):
            raise _Mismatch
        i = int(text)
        if not INT64_MIN <= i <= INT64_MAX:
            raise _Mismatch
        return i
    raise _Mismatch


def _to_float(lib, handle, index, kind):
    if kind == native.SQLITE_FLOAT:
        return lib.sqlite3_column_double(handle, index)
    if kind == native.SQLITE_INTEGER:
        i = lib.sqlite3_column_int64(handle, index)
        f = float(i)
        if int(f) != i:
            raise _Mismatch
        return f
    if kind == native.SQLITE_TEXT:
        text = _column_text(lib, handle, index).decode("utf-8", errors="replace").strip()
        if not _REAL_TEXT.fullmatch(text):
            raise _Mismatch
        f = float(text)
        if f in (float("inf"), float("-inf")):
            raise _Mismatch
        return f
    raise _Mismatch


def _to_str(lib, handle, index, kind):
    data = _column_text(lib, handle, index) if kind != native.SQLITE_BLOB else _column_blob(lib, handle, index)
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        raise _Mismatch from None


def _to_bytes(lib, handle, index, kind):
    if kind == native.SQLITE_BLOB:
        return _column_blob(lib, handle, index)
    # The engine renders numbers and text as their UTF-8 text form.
    return _column_text(lib, handle, index)


def _to_bool(lib, handle, index, kind):
    if kind != native.SQLITE_INTEGER:
        raise _Mismatch
    return lib.sqlite3_column_int64(handle, index) != 0


_CONVERTERS = {
    int: _to_int,
    float: _to_float,
    str: _to_str,
    bytes: _to_bytes,
    bool: _to_bool,
}

_ZERO = {int: 0, float: 0.0, str: "", bytes: b"", bool: False}


def _is_ctypes_int(target):
    return (
        isinstance(target, type)
        and issubclass(target, ctypes._SimpleCData)
        and getattr(target, "_type_", None) in ("b", "B", "h", "H", "i", "I", "l", "L", "q", "Q")
    )


def _int_bounds(target):
    bits = ctypes.sizeof(target) * 8
    if target(-1).value < 0:
        return -(1 << (bits - 1)), (1 << (bits - 1)) - 1
    return 0, (1 << bits) - 1


def _unwrap_optional(target):
    origin = typing.get_origin(target)
    if origin is typing.Union or (hasattr(types, "UnionType") and origin is types.UnionType):
        args = typing.get_args(target)
        inner = [a for a in args if a is not type(None)]
        if len(inner) == 1 and len(args) == 2:
            return True, inner[0]
        raise ConversionError(f"unsupported scan target {target!r}")
    return False, target


def scan_value(handle, index, target=object, name=None):
    """Convert column ``index`` of the current row into ``target``.

    Returns ``(value, is_null)``. A NULL column yields ``None`` for nullable
    targets (``object`` and ``Optional[T]``) and the zero value of ``T``
    otherwise. Conversions never lose information; anything that would
    raises :class:`ConversionError`.
    """
    nullable, base = _unwrap_optional(target)
    if base is object:
        nullable = True
    elif base in _CONVERTERS:
        converter = _CONVERTERS[base]
    elif _is_ctypes_int(base):
        converter = _to_int
    else:
        raise ConversionError(f"unsupported scan target {_type_name(target)} for column {index} ({name!r})")

    lib = native.load_library()
    kind = lib.sqlite3_column_type(handle, index)
    if kind == native.SQLITE_NULL:
        if nullable:
            return None, True
        return _ZERO.get(base, 0), True
    if base is object:
        return column_value(handle, index, kind), False

    try:
        value = converter(lib, handle, index, kind)
    except _Mismatch:
        raise ConversionError(
            f"cannot convert column {index} ({name!r}) of type {_kind_name(kind)} to {_type_name(base)}"
        ) from None
    if _is_ctypes_int(base):
        low, high = _int_bounds(base)
        if not low <= value <= high:
            raise ConversionError(
                f"cannot convert column {index} ({name!r}) of type {_kind_name(kind)} to {_type_name(base)}: "
                f"{value} out of range"
            )
    return value, False


# Values crossing the application-defined function boundary.

def _value_bytes(lib, value, accessor):
    ptr = accessor(value)
    size = lib.sqlite3_value_bytes(value)
    if not ptr or size <= 0:
        return b""
    return ctypes.string_at(ptr, size)


def function_arg(value):
    """Dynamic value of a ``sqlite3_value*`` passed to a SQL function."""
    lib = native.load_library()
    kind = lib.sqlite3_value_type(value)
    if kind == native.SQLITE_INTEGER:
        return lib.sqlite3_value_int64(value)
    if kind == native.SQLITE_FLOAT:
        return lib.sqlite3_value_double(value)
    if kind == native.SQLITE_TEXT:
        return _value_bytes(lib, value, lib.sqlite3_value_text).decode("utf-8", errors="replace")
    if kind == native.SQLITE_BLOB:
        return _value_bytes(lib, value, lib.sqlite3_value_blob)
    return None


def set_result(ctx, value):
    """Hand a Python value back to the engine as a SQL function result."""
    lib = native.load_library()
    if value is None:
        lib.sqlite3_result_null(ctx)
    elif isinstance(value, ZeroBlob):
        if not 0 <= value.length <= INT32_MAX:
            raise ConversionError(f"zeroblob length must be 0..{INT32_MAX}, got {value.length}")
        lib.sqlite3_result_zeroblob(ctx, value.length)
    elif isinstance(value, int):
        if not INT64_MIN <= value <= INT64_MAX:
            raise ConversionError(f"function result {value} does not fit in a 64-bit INTEGER")
        lib.sqlite3_result_int64(ctx, int(value))
    elif isinstance(value, float):
        lib.sqlite3_result_double(ctx, value)
    elif isinstance(value, str):
        data = value.encode("utf-8")
        lib.sqlite3_result_text(ctx, data, len(data), native.SQLITE_TRANSIENT)
    elif isinstance(value, (bytes, bytearray, memoryview)):
        data = bytes(value)
        lib.sqlite3_result_blob(ctx, data, len(data), native.SQLITE_TRANSIENT)
    else:
        raise ConversionError(f"unsupported function result type {type(value).__name__}")
