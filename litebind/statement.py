import collections.abc
import ctypes
import enum
import weakref

from . import codec, errors, native
from .codec import ColumnType


class CursorState(enum.Enum):
    BEFORE_FIRST = "before-first"
    ON_ROW = "on-row"
    EXHAUSTED = "exhausted"
    ERROR = "error"


class StmtStatus(enum.IntEnum):
    """Per-statement counters read with :meth:`Statement.status`."""

    FULLSCAN_STEP = native.SQLITE_STMTSTATUS_FULLSCAN_STEP
    SORT = native.SQLITE_STMTSTATUS_SORT
    AUTOINDEX = native.SQLITE_STMTSTATUS_AUTOINDEX
    VM_STEP = native.SQLITE_STMTSTATUS_VM_STEP
    REPREPARE = native.SQLITE_STMTSTATUS_REPREPARE
    RUN = native.SQLITE_STMTSTATUS_RUN
    MEMUSED = native.SQLITE_STMTSTATUS_MEMUSED


_NAME_PREFIXES = (":", "@", "$")


def compile_sql(connection, sql):
    """Compile the first statement in ``sql``.

    Returns ``(handle, tail)`` where ``tail`` is the text after the compiled
    statement. ``handle`` is None when ``sql`` holds only whitespace or
    comments.
    """
    lib = native.load_library()
    encoded = sql.encode("utf-8")
    if b"\0" in encoded:
        raise errors.ProgrammingError("the query contains a null character")
    buf = ctypes.create_string_buffer(encoded)
    handle = ctypes.c_void_p()
    tail = ctypes.c_void_p()
    rc = lib.sqlite3_prepare_v2(connection._db, buf, len(encoded) + 1, ctypes.byref(handle), ctypes.byref(tail))
    if rc != native.SQLITE_OK:
        raise connection._error(rc, sql=sql)
    rest = ""
    if tail.value:
        rest = encoded[tail.value - ctypes.addressof(buf):].decode("utf-8")
    return handle.value, rest


class Statement:
    """A compiled SQL statement plus its cursor.

    Statements are created by :meth:`Connection.prepare` and
    :meth:`Connection.cache_or_prepare`; they stay usable until finalized or
    until their connection closes.
    """

    def __init__(self, connection, handle, tail=""):
        self._conn_ref = weakref.ref(connection)
        self._stmt = handle
        self._lib = native.load_library()
        self.tail = tail
        self._state = CursorState.BEFORE_FIRST
        self._params = None
        self._cache_key = None

        lib = self._lib
        self.sql = lib.sqlite3_sql(handle).decode("utf-8")
        n_params = lib.sqlite3_bind_parameter_count(handle)
        self._param_names = []
        for i in range(1, n_params + 1):
            name = lib.sqlite3_bind_parameter_name(handle, i)
            self._param_names.append(name.decode("utf-8") if name else "")
        self._param_index = {}
        for i, name in enumerate(self._param_names, 1):
            if name:
                self._param_index.setdefault(name, i)

        n_cols = lib.sqlite3_column_count(handle)
        self._column_names = [
            lib.sqlite3_column_name(handle, i).decode("utf-8", errors="replace") for i in range(n_cols)
        ]
        self._column_index = {}
        for i, name in enumerate(self._column_names):
            self._column_index.setdefault(name, i)
        self._readonly = bool(lib.sqlite3_stmt_readonly(handle))

    def __repr__(self):
        status = "finalized" if self._stmt is None else self._state.value
        return f"<Statement {self.sql!r} {status}>"

    # Lifecycle

    @property
    def _connection(self):
        conn = self._conn_ref()
        if conn is None:
            raise errors.ConnectionClosedError("connection is closed")
        return conn

    def _check(self):
        self._connection._check_open()
        if self._stmt is None:
            raise errors.StatementFinalizedError("statement has been finalized")

    def _check_row(self):
        self._check()
        if self._state is not CursorState.ON_ROW:
            raise errors.ProgrammingError(f"no current row (cursor is {self._state.value})")

    @property
    def state(self):
        return self._state

    @property
    def finalized(self):
        return self._stmt is None

    def finalize(self):
        if self._stmt is None:
            return
        handle, self._stmt = self._stmt, None
        conn = self._conn_ref()
        if conn is not None:
            conn._forget_statement(self)
        # A failed last step reports its code again here; it was already raised.
        self._lib.sqlite3_finalize(handle)

    def release(self):
        """Return a cached statement to its connection, or finalize it."""
        if self._stmt is None:
            return
        conn = self._conn_ref()
        if self._cache_key is not None and conn is not None and not conn.closed:
            conn._recycle_statement(self)
        else:
            self.finalize()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.finalize()

    def __del__(self):
        # Live statements are finalized by their connection when it goes
        # away; a handle left here belongs to an open or zombie connection.
        handle = getattr(self, "_stmt", None)
        if handle is not None:
            self._stmt = None
            self._lib.sqlite3_finalize(handle)

    # Introspection

    def bind_parameter_count(self):
        self._check()
        return len(self._param_names)

    def bind_parameter_name(self, index):
        self._check()
        if not 1 <= index <= len(self._param_names):
            raise errors.UnknownParameterError(f"parameter index {index} out of range 1..{len(self._param_names)}")
        return self._param_names[index - 1]

    def bind_parameter_index(self, name):
        self._check()
        index = self._param_index.get(name)
        if index is None and not name.startswith(_NAME_PREFIXES + ("?",)):
            for prefix in _NAME_PREFIXES:
                index = self._param_index.get(prefix + name)
                if index is not None:
                    break
        if index is None:
            raise errors.UnknownParameterError(f"unknown parameter name {name!r}")
        return index

    def column_count(self):
        self._check()
        return len(self._column_names)

    def column_name(self, index):
        self._check()
        if not 0 <= index < len(self._column_names):
            raise errors.UnknownColumnError(f"column index {index} out of range 0..{len(self._column_names) - 1}")
        return self._column_names[index]

    def column_names(self):
        self._check()
        return list(self._column_names)

    def column_index(self, name):
        self._check()
        try:
            return self._column_index[name]
        except KeyError:
            raise errors.UnknownColumnError(f"unknown column name {name!r}") from None

    def column_type(self, index):
        self._check_row()
        self.column_name(index)
        return ColumnType(self._lib.sqlite3_column_type(self._stmt, index))

    def column_decltype(self, index):
        self.column_name(index)
        decltype = self._lib.sqlite3_column_decltype(self._stmt, index)
        return decltype.decode("utf-8") if decltype else None

    def expanded_sql(self):
        self._check()
        ptr = self._lib.sqlite3_expanded_sql(self._stmt)
        if not ptr:
            return None
        try:
            return ctypes.string_at(ptr).decode("utf-8", errors="replace")
        finally:
            self._lib.sqlite3_free(ptr)

    def is_readonly(self):
        self._check()
        return self._readonly

    def is_busy(self):
        self._check()
        return bool(self._lib.sqlite3_stmt_busy(self._stmt))

    def data_count(self):
        self._check()
        return self._lib.sqlite3_data_count(self._stmt)

    def status(self, kind, reset=False):
        self._check()
        return self._lib.sqlite3_stmt_status(self._stmt, int(kind), 1 if reset else 0)

    # Binding

    def _bind_one(self, index, value):
        rc = codec.bind_value(self._stmt, index, value)
        if rc != native.SQLITE_OK:
            raise self._connection._error(rc, sql=self.sql, params=self._params)

    def bind(self, *args):
        """Bind positional values, or a single mapping of named values.

        Binding resets the cursor. Positional binding must supply exactly
        one value per parameter.
        """
        self._check()
        if len(args) == 1 and isinstance(args[0], collections.abc.Mapping):
            params = args[0]
            self.reset()
            self._params = params
            for name, value in params.items():
                self._bind_one(self.bind_parameter_index(name), value)
            return self
        if len(args) != len(self._param_names):
            raise errors.ProgrammingError(
                f"incorrect number of bindings supplied: statement uses {len(self._param_names)}, "
                f"{len(args)} supplied"
            )
        self.reset()
        self._params = args
        for i, value in enumerate(args, 1):
            self._bind_one(i, value)
        return self

    def bind_by_index(self, index, value):
        self._check()
        if not 1 <= index <= len(self._param_names):
            raise errors.UnknownParameterError(f"parameter index {index} out of range 1..{len(self._param_names)}")
        self.reset()
        self._bind_one(index, value)
        return self

    def bind_by_name(self, name, value):
        index = self.bind_parameter_index(name)
        self.reset()
        self._bind_one(index, value)
        return self

    def clear_bindings(self):
        self._check()
        self.reset()
        self._lib.sqlite3_clear_bindings(self._stmt)
        self._params = None
        return self

    # Cursor

    def step(self):
        """Advance to the next row; False once the statement is exhausted."""
        self._check()
        self._connection._check_reentrancy()
        if self._state is CursorState.EXHAUSTED:
            return False
        if self._state is CursorState.ERROR:
            raise errors.SQLError("statement must be reset after a failed step", native.SQLITE_MISUSE)
        rc = self._lib.sqlite3_step(self._stmt)
        if rc == native.SQLITE_ROW:
            self._state = CursorState.ON_ROW
            return True
        if rc == native.SQLITE_DONE:
            self._state = CursorState.EXHAUSTED
            return False
        self._state = CursorState.ERROR
        raise self._connection._error(rc, sql=self.sql, params=self._params)

    def reset(self):
        self._check()
        failed = self._state is CursorState.ERROR
        rc = self._lib.sqlite3_reset(self._stmt)
        self._state = CursorState.BEFORE_FIRST
        if rc != native.SQLITE_OK and not failed:
            raise self._connection._error(rc, sql=self.sql, params=self._params)
        return self

    # Scanning

    def scan_column(self, index, target=object):
        """Convert column ``index`` of the current row; returns (value, is_null)."""
        self._check_row()
        name = self.column_name(index)
        return codec.scan_value(self._stmt, index, target, name)

    def named_scan_column(self, name, target=object):
        return self.scan_column(self.column_index(name), target)

    def scan_row(self, *targets):
        self._check_row()
        if len(targets) != len(self._column_names):
            raise errors.ProgrammingError(
                f"incorrect number of scan targets: statement has {len(self._column_names)} columns, "
                f"{len(targets)} supplied"
            )
        return tuple(self.scan_column(i, target)[0] for i, target in enumerate(targets))

    def named_scan_row(self, targets=None, /, **kwargs):
        self._check_row()
        wanted = dict(targets or {})
        wanted.update(kwargs)
        return {name: self.named_scan_column(name, target)[0] for name, target in wanted.items()}

    def row(self):
        self._check_row()
        return tuple(codec.column_value(self._stmt, i) for i in range(len(self._column_names)))

    def __iter__(self):
        while self.step():
            yield self.row()

    # Convenience

    def execute(self, *args):
        """Run a statement that yields no rows; returns the changes counter."""
        if args:
            self.bind(*args)
        else:
            self.reset()
        if self.step():
            self.reset()
            raise errors.ProgrammingError(f"execute() used with a statement that returns rows: {self.sql!r}")
        self.reset()
        return self._connection.changes()

    def insert(self, *args):
        """Run an INSERT; returns the new rowid, or -1 when nothing was inserted."""
        if self.execute(*args) == 0:
            return -1
        return self._connection.last_insert_rowid()

    def exists(self, *args):
        if args:
            self.bind(*args)
        else:
            self.reset()
        try:
            return self.step()
        finally:
            self.reset()
