"""DB-API 2.0 (PEP 249) interface over :class:`litebind.Connection`.

Unlike the core connection, ``commit()`` and ``rollback()`` here are no-ops
outside a transaction, and a transaction is opened implicitly before
INSERT/UPDATE/DELETE/REPLACE unless ``isolation_level`` is None.
"""
import collections.abc
import datetime
import itertools
import re
import time
import weakref

from . import native
from .connection import Connection as _Connection, OpenFlag
from .errors import (
    DataError,
    DatabaseError,
    Error,
    IntegrityError,
    InterfaceError,
    InternalError,
    NotSupportedError,
    OperationalError,
    ProgrammingError,
    Warning,
)

apilevel = "2.0"
threadsafety = 1  # Threads may share the module, but not connections
paramstyle = "qmark"  # ?, ?NNN, :name, @name and $name are all accepted


def __getattr__(name):
    # Loading the engine is deferred until a version is asked for.
    if name == "sqlite_version":
        return native.engine_info().version
    if name == "sqlite_version_info":
        return tuple(int(part) for part in native.engine_info().version.split("."))
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


# Types
Date = datetime.date
Time = datetime.time
Timestamp = datetime.datetime
def DateFromTicks(ticks): return datetime.date(*time.localtime(ticks)[:3])
def TimeFromTicks(ticks): return datetime.time(*time.localtime(ticks)[3:6])
def TimestampFromTicks(ticks): return datetime.datetime(*time.localtime(ticks)[:6])
def Binary(string): return bytes(string)
STRING = str
BINARY = bytes
NUMBER = float
DATETIME = datetime.datetime
ROWID = int

_DML = ("INSERT", "UPDATE", "DELETE", "REPLACE")
_ISOLATION_LEVELS = ("", "DEFERRED", "IMMEDIATE", "EXCLUSIVE")


# Whitespace, "--" line comments and "/* */" block comments (an unterminated
# block comment runs to the end of the text).
_LEADING_NOISE = re.compile(r"(?:\s+|--[^\n]*|/\*.*?(?:\*/|\Z))*", re.DOTALL)


def _sql_lstrip_comments(sql):
    return sql[_LEADING_NOISE.match(sql).end():]


class Cursor:
    def __init__(self, connection):
        self.connection = connection
        self._stmt = None
        self._is_dml = False
        self._pending_row = None
        self._exhausted = True
        self.description = None
        self.rowcount = -1
        self.lastrowid = None
        self.arraysize = 1
        self._closed = False

    def _check(self):
        if self._closed:
            raise ProgrammingError("Cursor is closed")
        self.connection._check()

    def _release_statement(self):
        if self._stmt is not None:
            # Return to the connection's cache instead of finalizing directly
            if not self.connection.native.closed:
                self._stmt.release()
            self._stmt = None

    def close(self):
        if self._closed:
            return
        self._release_statement()
        self._pending_row = None
        self._closed = True

    def execute(self, operation, parameters=None):
        self._check()
        self._pending_row = None
        self._exhausted = True
        self.description = None
        self.rowcount = -1

        native_conn = self.connection.native
        stripped = _sql_lstrip_comments(operation)
        if not stripped:
            self._release_statement()
            return self

        if self._stmt is None or self._stmt._cache_key != operation:
            self._release_statement()
            stmt = native_conn.cache_or_prepare(operation)
            if _sql_lstrip_comments(stmt.tail):
                stmt.finalize()
                raise ProgrammingError("You can only execute one statement at a time.")
            self._stmt = stmt
        stmt = self._stmt

        if parameters is None:
            parameters = ()
        if isinstance(parameters, collections.abc.Mapping):
            stmt.bind(parameters)
        else:
            stmt.bind(*parameters)

        self._is_dml = stripped[:7].upper().startswith(_DML) and not stmt.is_readonly()
        if self._is_dml and self.connection.isolation_level is not None and not native_conn.in_transaction:
            native_conn.begin(self.connection.isolation_level or "DEFERRED")

        has_row = stmt.step()
        names = stmt.column_names()
        if names:
            self.description = tuple((name, None, None, None, None, None, None) for name in names)
        if has_row:
            self._pending_row = stmt.row()
            self._exhausted = False
        else:
            self._finish()
        if self._is_dml:
            self.lastrowid = native_conn.last_insert_rowid()
        return self

    def _finish(self):
        self._exhausted = True
        if self._is_dml:
            self.rowcount = self.connection.native.changes()
        # Release read locks held by a half-consumed statement.
        self._stmt.reset()

    def executemany(self, operation, seq_of_parameters):
        total = 0
        for params in seq_of_parameters:
            self.execute(operation, params)
            if self.rowcount > 0:
                total += self.rowcount
        self.rowcount = total if self._is_dml else -1
        return self

    def executescript(self, script):
        self._check()
        self.connection.commit()
        self.connection.native.execute(script)
        return self

    def fetchone(self):
        self._check()
        if self._stmt is None:
            raise ProgrammingError("No statement")
        if self._pending_row is not None:
            row, self._pending_row = self._pending_row, None
            return row
        if self._exhausted:
            return None
        if self._stmt.step():
            return self._stmt.row()
        self._finish()
        return None

    def fetchmany(self, size=None):
        return list(itertools.islice(self, self.arraysize if size is None else size))

    def fetchall(self):
        return list(self)

    def setinputsizes(self, sizes):
        pass

    def setoutputsize(self, size, column=None):
        pass

    def __iter__(self):
        return iter(self.fetchone, None)


class Connection:
    def __init__(self, database, timeout=5.0, uri=False, isolation_level="DEFERRED", stmt_cache_size=128):
        flags = [OpenFlag.READWRITE, OpenFlag.CREATE]
        if uri:
            flags.append(OpenFlag.URI)
        self.native = _Connection(database, *flags, stmt_cache_size=stmt_cache_size)
        if timeout is not None:
            self.native.busy_timeout(int(timeout * 1000))
        self._isolation_level = None
        self.isolation_level = isolation_level
        self._cursors = weakref.WeakSet()

    def _check(self):
        if self.native.closed:
            raise ProgrammingError("Connection closed")

    @property
    def isolation_level(self):
        return self._isolation_level

    @isolation_level.setter
    def isolation_level(self, value):
        if value is not None:
            value = value.upper()
            if value not in _ISOLATION_LEVELS:
                raise ValueError(f"invalid isolation_level {value!r}")
        elif not self.native.closed and self.native.in_transaction:
            # Switching to autocommit ends the open transaction.
            self.native.commit()
        self._isolation_level = value

    @property
    def in_transaction(self):
        self._check()
        return self.native.in_transaction

    @property
    def total_changes(self):
        self._check()
        return self.native.total_changes()

    def close(self):
        if self.native.closed:
            return
        for c in list(self._cursors):
            c.close()
        self.native.close()

    def commit(self):
        self._check()
        if self.native.in_transaction:
            self.native.commit()

    def rollback(self):
        self._check()
        if self.native.in_transaction:
            self.native.rollback()

    def cursor(self):
        self._check()
        c = Cursor(self)
        self._cursors.add(c)
        return c

    def execute(self, operation, parameters=None):
        # Convenience method
        c = self.cursor()
        c.execute(operation, parameters)
        return c

    def executemany(self, operation, seq_of_parameters):
        c = self.cursor()
        c.executemany(operation, seq_of_parameters)
        return c

    def executescript(self, script):
        c = self.cursor()
        c.executescript(script)
        return c

    def create_function(self, name, n_args, func, deterministic=False):
        self._check()
        self.native.create_function(name, n_args, func, deterministic=deterministic)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            self.rollback()
        else:
            self.commit()
        self.close()


def connect(database, timeout=5.0, uri=False, isolation_level="DEFERRED", stmt_cache_size=128):
    return Connection(
        database,
        timeout=timeout,
        uri=uri,
        isolation_level=isolation_level,
        stmt_cache_size=stmt_cache_size,
    )


__all__ = [
    "apilevel", "threadsafety", "paramstyle", "connect", "Connection", "Cursor",
    "Error", "Warning", "InterfaceError", "DatabaseError", "InternalError", "OperationalError",
    "ProgrammingError", "IntegrityError", "DataError", "NotSupportedError",
    "Date", "Time", "Timestamp", "DateFromTicks", "TimeFromTicks", "TimestampFromTicks", "Binary",
    "STRING", "BINARY", "NUMBER", "DATETIME", "ROWID",
]
