import collections.abc
import itertools
import json

from . import native


# DB-API 2.0 hierarchy. Every error carries the SQLite result code it stands
# for and the engine (or driver) message.
class Error(Exception):
    default_code = native.SQLITE_ERROR

    def __init__(self, message="", code=None):
        super().__init__(message)
        self.message = message
        self.code = self.default_code if code is None else code

    @property
    def sqlite_errorcode(self):
        return self.code

    @property
    def sqlite_errorname(self):
        return native.ERROR_NAMES.get(self.code & 0xFF, f"SQLITE_{self.code}")


class Warning(Exception):
    pass


class InterfaceError(Error):
    pass


class DatabaseError(Error):
    pass


class InternalError(DatabaseError):
    default_code = native.SQLITE_INTERNAL


class OperationalError(DatabaseError):
    pass


class ProgrammingError(DatabaseError):
    default_code = native.SQLITE_MISUSE


class IntegrityError(DatabaseError):
    default_code = native.SQLITE_CONSTRAINT


class DataError(DatabaseError):
    pass


class NotSupportedError(DatabaseError):
    pass


class ConfigurationError(InterfaceError):
    """Unrecognized or contradictory open flags."""

    default_code = native.SQLITE_MISUSE


class SQLError(OperationalError):
    """The engine reported a fault while preparing or stepping."""


class BusyError(SQLError):
    default_code = native.SQLITE_BUSY


class AuthorizationError(SQLError):
    default_code = native.SQLITE_AUTH

    def __init__(self, message="", code=None, action=None, operands=()):
        super().__init__(message, code)
        self.action = action
        self.operands = tuple(operands)


class InterruptError(SQLError):
    default_code = native.SQLITE_INTERRUPT


class NotFoundError(SQLError):
    default_code = native.SQLITE_NOTFOUND


class ConstraintError(IntegrityError, SQLError):
    default_code = native.SQLITE_CONSTRAINT


class TransactionStateError(OperationalError):
    pass


class ConversionError(DataError):
    default_code = native.SQLITE_MISMATCH


class RangeError(DataError):
    default_code = native.SQLITE_RANGE


class UnknownParameterError(ProgrammingError):
    default_code = native.SQLITE_RANGE


class UnknownColumnError(ProgrammingError):
    default_code = native.SQLITE_RANGE


class StatementFinalizedError(ProgrammingError):
    pass


class ConnectionClosedError(ProgrammingError):
    pass


class BlobClosedError(ProgrammingError):
    pass


_BY_PRIMARY_CODE = {
    native.SQLITE_BUSY: BusyError,
    native.SQLITE_LOCKED: BusyError,
    native.SQLITE_AUTH: AuthorizationError,
    native.SQLITE_INTERRUPT: InterruptError,
    native.SQLITE_CANTOPEN: NotFoundError,
    native.SQLITE_NOTFOUND: NotFoundError,
    native.SQLITE_CONSTRAINT: ConstraintError,
}


_MAX_TEXT = 200
_MAX_BLOB = 64
_MAX_PARAMS = 50


def _clip(text, limit=_MAX_TEXT):
    return text if len(text) <= limit else text[:limit] + "…"


def _param_summary(value):
    """JSON-safe stand-in for one bound value."""
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return _clip(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        data = bytes(value)
        key = "hex" if len(data) <= _MAX_BLOB else "hex_prefix"
        return {"_type": "bytes", key: data[:_MAX_BLOB].hex(), "len": len(data)}
    return _clip(repr(value))


def _params_summary(params):
    if params is None:
        return None
    if isinstance(params, collections.abc.Mapping):
        items = list(itertools.islice(params.items(), _MAX_PARAMS + 1))
        summary = {str(name): _param_summary(value) for name, value in items[:_MAX_PARAMS]}
        if len(items) > _MAX_PARAMS:
            summary["_truncated"] = True
        return summary
    if not isinstance(params, collections.abc.Iterable) or isinstance(params, (str, bytes)):
        return _param_summary(params)
    values = list(itertools.islice(params, _MAX_PARAMS + 1))
    summary = [_param_summary(value) for value in values[:_MAX_PARAMS]]
    if len(values) > _MAX_PARAMS:
        summary.append("<truncated>")
    return summary


def error_for(code, message, *, sql=None, params=None, cls=None):
    """Build the exception matching an extended SQLite result code."""
    if cls is None:
        cls = _BY_PRIMARY_CODE.get(code & 0xFF, SQLError)
    if sql is not None:
        ctx = {
            "native_code": int(code),
            "sql": sql,
            "params": _params_summary(params),
        }
        message = message + "\nContext: " + json.dumps(ctx, ensure_ascii=False)
    return cls(message, code)


def last_error(db_handle, code=None, *, sql=None, params=None, cls=None):
    """Exception for the most recent failure on a connection handle."""
    lib = native.load_library()
    if code is None or code == native.SQLITE_OK:
        code = lib.sqlite3_extended_errcode(db_handle) if db_handle else native.SQLITE_ERROR
    msg = lib.sqlite3_errmsg(db_handle) if db_handle else None
    # Native messages should be UTF-8, but don't crash if not.
    msg_str = msg.decode("utf-8", errors="replace") if msg else native.errstr(code)
    return error_for(code, msg_str, sql=sql, params=params, cls=cls)
