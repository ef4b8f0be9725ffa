import collections
import contextlib
import ctypes
import enum
import functools
import logging
import operator
import os
import weakref

from . import errors, native
from .blob import BlobStream, check_rowid
from .callbacks import CallbackBridge
from .codec import INT32_MAX
from .schema import SchemaMixin
from .statement import Statement, compile_sql
from .transaction import TransactionTracker

logger = logging.getLogger(__name__)

DEFAULT_STMT_CACHE_SIZE = 128


class OpenFlag(enum.IntFlag):
    READONLY = native.SQLITE_OPEN_READONLY
    READWRITE = native.SQLITE_OPEN_READWRITE
    CREATE = native.SQLITE_OPEN_CREATE
    URI = native.SQLITE_OPEN_URI
    MEMORY = native.SQLITE_OPEN_MEMORY
    NOMUTEX = native.SQLITE_OPEN_NOMUTEX
    FULLMUTEX = native.SQLITE_OPEN_FULLMUTEX
    SHAREDCACHE = native.SQLITE_OPEN_SHAREDCACHE
    PRIVATECACHE = native.SQLITE_OPEN_PRIVATECACHE
    NOFOLLOW = native.SQLITE_OPEN_NOFOLLOW


DEFAULT_FLAGS = OpenFlag.READWRITE | OpenFlag.CREATE | OpenFlag.FULLMUTEX

_KNOWN_FLAGS = functools.reduce(operator.or_, (int(f) for f in OpenFlag), 0)

_BEGIN_MODES = ("DEFERRED", "IMMEDIATE", "EXCLUSIVE")


def combine_flags(flags):
    """Validate open flags and fold them into the value sqlite3_open_v2 takes."""
    if not flags:
        return DEFAULT_FLAGS
    value = 0
    for flag in flags:
        value |= int(flag)
    unknown = value & ~_KNOWN_FLAGS
    if unknown:
        raise errors.ConfigurationError(f"unrecognized open flags: {unknown:#x}")
    flags = OpenFlag(value)
    if bool(flags & OpenFlag.READONLY) == bool(flags & OpenFlag.READWRITE):
        raise errors.ConfigurationError("exactly one of READONLY and READWRITE is required")
    if flags & OpenFlag.CREATE and not flags & OpenFlag.READWRITE:
        raise errors.ConfigurationError("CREATE requires READWRITE")
    if flags & OpenFlag.NOMUTEX and flags & OpenFlag.FULLMUTEX:
        raise errors.ConfigurationError("NOMUTEX and FULLMUTEX are mutually exclusive")
    if flags & OpenFlag.SHAREDCACHE and flags & OpenFlag.PRIVATECACHE:
        raise errors.ConfigurationError("SHAREDCACHE and PRIVATECACHE are mutually exclusive")
    return flags


def complete_statement(sql):
    """True if ``sql`` ends with a complete SQL statement."""
    return bool(native.load_library().sqlite3_complete(sql.encode("utf-8")))


def _stmt_cache_size_from_env():
    value = os.environ.get("LITEBIND_STMT_CACHE_SIZE")
    if not value:
        return DEFAULT_STMT_CACHE_SIZE
    try:
        return int(value)
    except ValueError:
        raise errors.ConfigurationError(f"LITEBIND_STMT_CACHE_SIZE must be an integer, got {value!r}") from None


class Connection(SchemaMixin):
    """An open database handle.

    ``path`` may be a filename, ``":memory:"``, ``""`` (private temporary
    database) or, with ``OpenFlag.URI``, a ``file:`` URI. Without flags the
    database is opened read-write and created if missing.
    """

    def __init__(self, path="", *flags, vfs=None, stmt_cache_size=None):
        self._db = None
        self._lib = native.load_library()
        self.flags = combine_flags(flags)
        self.path = path

        db = ctypes.c_void_p()
        rc = self._lib.sqlite3_open_v2(
            os.fsencode(path), ctypes.byref(db), int(self.flags), vfs.encode("utf-8") if vfs else None
        )
        if rc != native.SQLITE_OK:
            err = errors.last_error(db.value, rc)
            # A handle is allocated even when opening fails.
            if db.value:
                self._lib.sqlite3_close(db)
            raise err
        self._db = db.value
        self._lib.sqlite3_extended_result_codes(self._db, 1)

        self._statements = weakref.WeakSet()
        self._blobs = weakref.WeakSet()
        self._stmt_cache = collections.OrderedDict()
        self._stmt_cache_size = _stmt_cache_size_from_env() if stmt_cache_size is None else int(stmt_cache_size)
        self._stats = collections.Counter()
        self._tx = TransactionTracker()
        self._bridge = CallbackBridge()
        logger.debug("opened %r (flags=%r)", path, self.flags)

    def __repr__(self):
        state = "closed" if self._db is None else "open"
        return f"<Connection {self.path!r} {state}>"

    # Internal plumbing shared with Statement and BlobStream

    @property
    def closed(self):
        return self._db is None

    def _check_open(self):
        if self._db is None:
            raise errors.ConnectionClosedError("connection is closed")

    def _check_reentrancy(self):
        self._bridge.check_reentrancy()

    def _check_usable(self):
        self._check_open()
        self._bridge.check_reentrancy()

    def _error(self, rc, *, sql=None, params=None, cls=None):
        """Exception for a failed engine call, with callback context attached."""
        code = rc
        if code is None or code == native.SQLITE_OK:
            code = self._lib.sqlite3_extended_errcode(self._db)
        msg = self._lib.sqlite3_errmsg(self._db)
        message = msg.decode("utf-8", errors="replace") if msg else native.errstr(code)
        denial, cause = self._bridge.take()
        action, operands = None, ()
        if (code & 0xFF) == native.SQLITE_AUTH and denial is not None:
            action, operands = denial
            name = getattr(action, "name", action)
            message = f"{message}: {name} denied on {', '.join(o for o in operands if o)}"
        err = errors.error_for(code, message, sql=sql, params=params, cls=cls)
        if isinstance(err, errors.AuthorizationError):
            err.action = action
            err.operands = tuple(operands)
        if cause is not None:
            err.__cause__ = cause
        return err

    def _blob_error(self, rc):
        err = self._error(rc)
        if err.message.startswith("no such"):
            wrapped = errors.NotFoundError(err.message, err.code)
            wrapped.__cause__ = err.__cause__
            return wrapped
        return err

    def _forget_statement(self, stmt):
        self._statements.discard(stmt)
        if stmt._cache_key is not None and self._stmt_cache.get(stmt._cache_key) is stmt:
            del self._stmt_cache[stmt._cache_key]

    def _forget_blob(self, blob):
        self._blobs.discard(blob)

    def _autocommit(self):
        return bool(self._lib.sqlite3_get_autocommit(self._db))

    # Statements

    def _new_statement(self, handle, tail):
        stmt = Statement(self, handle, tail)
        self._statements.add(stmt)
        return stmt

    def prepare(self, sql, *args):
        """Compile the first statement of ``sql``; the rest is ``Statement.tail``."""
        self._check_usable()
        self._stats["prepare_count"] += 1
        handle, tail = compile_sql(self, sql)
        if handle is None:
            raise errors.error_for(native.SQLITE_MISUSE, "no SQL statement to prepare", sql=sql, cls=errors.SQLError)
        stmt = self._new_statement(handle, tail)
        if args:
            try:
                stmt.bind(*args)
            except BaseException:
                stmt.finalize()
                raise
        return stmt

    def cache_or_prepare(self, sql, *args):
        """Like :meth:`prepare`, drawing from the statement cache.

        Hand the statement back with :meth:`Statement.release`.
        """
        self._check_usable()
        stmt = self._stmt_cache.pop(sql, None)
        if stmt is not None:
            self._stats["cache_hit"] += 1
            if args:
                stmt.bind(*args)
            return stmt
        self._stats["cache_miss"] += 1
        stmt = self.prepare(sql, *args)
        stmt._cache_key = sql
        return stmt

    def _recycle_statement(self, stmt):
        stmt.reset()
        stmt.clear_bindings()
        if self._stmt_cache_size <= 0:
            stmt.finalize()
            return
        previous = self._stmt_cache.pop(stmt._cache_key, None)
        if previous is not None and previous is not stmt:
            previous.finalize()
        self._stmt_cache[stmt._cache_key] = stmt
        while len(self._stmt_cache) > self._stmt_cache_size:
            _, evicted = self._stmt_cache.popitem(last=False)
            self._stats["cache_evict"] += 1
            logger.debug("evicting cached statement %r", evicted.sql)
            evicted.finalize()

    def execute(self, sql, *args):
        """Run every statement in ``sql``, discarding rows.

        Positional ``args`` are consumed in order, each statement taking as
        many as it has parameters.
        """
        self._check_usable()
        pending = list(args)
        remaining = sql
        while remaining:
            handle, tail = compile_sql(self, remaining)
            if handle is None:
                break
            stmt = self._new_statement(handle, tail)
            try:
                count = stmt.bind_parameter_count()
                if count:
                    if len(pending) < count:
                        raise errors.ProgrammingError(
                            f"not enough arguments: {stmt.sql!r} needs {count}, {len(pending)} left"
                        )
                    stmt.bind(*pending[:count])
                    del pending[:count]
                while stmt.step():
                    pass
            finally:
                stmt.finalize()
            remaining = tail
        if pending:
            raise errors.ProgrammingError(f"{len(pending)} unused arguments")

    def exists(self, sql, *args):
        stmt = self.cache_or_prepare(sql)
        try:
            return stmt.exists(*args)
        finally:
            stmt.release()

    def one_value(self, sql, *args, target=object):
        """First column of the first row, or None when there are no rows."""
        stmt = self.cache_or_prepare(sql)
        try:
            if args:
                stmt.bind(*args)
            if not stmt.step():
                return None
            return stmt.scan_column(0, target)[0]
        finally:
            stmt.release()

    # Transactions

    def begin(self, mode="DEFERRED"):
        self._check_usable()
        mode = mode.upper()
        if mode not in _BEGIN_MODES:
            raise errors.ProgrammingError(f"invalid transaction mode {mode!r}")
        self._tx.sync(self._autocommit())
        self._tx.begin()
        try:
            self.execute(f"BEGIN {mode}")
        finally:
            self._tx.sync(self._autocommit())

    def commit(self):
        self._check_usable()
        self._tx.sync(self._autocommit())
        self._tx.end("commit")
        try:
            self.execute("COMMIT")
        finally:
            self._tx.sync(self._autocommit())

    def rollback(self):
        self._check_usable()
        self._tx.sync(self._autocommit())
        self._tx.end("rollback")
        try:
            self.execute("ROLLBACK")
        finally:
            self._tx.sync(self._autocommit())

    @property
    def in_transaction(self):
        self._check_open()
        return not self._autocommit()

    @contextlib.contextmanager
    def transaction(self, mode="DEFERRED"):
        """Commit on success, roll back if the block raises."""
        self.begin(mode)
        try:
            yield self
        except BaseException:
            if self.in_transaction:
                self.rollback()
            raise
        else:
            self.commit()

    # Counters

    def last_insert_rowid(self):
        self._check_open()
        return self._lib.sqlite3_last_insert_rowid(self._db)

    def changes(self):
        self._check_open()
        return self._lib.sqlite3_changes(self._db)

    def total_changes(self):
        self._check_open()
        return self._lib.sqlite3_total_changes(self._db)

    # Blobs

    def open_blob(self, table, column, rowid, database="main", writable=False):
        self._check_usable()
        check_rowid(rowid)
        handle = ctypes.c_void_p()
        rc = self._lib.sqlite3_blob_open(
            self._db,
            database.encode("utf-8"),
            table.encode("utf-8"),
            column.encode("utf-8"),
            rowid,
            1 if writable else 0,
            ctypes.byref(handle),
        )
        if rc != native.SQLITE_OK:
            raise self._blob_error(rc)
        blob = BlobStream(self, handle.value, database, table, column, rowid, writable)
        self._blobs.add(blob)
        return blob

    # Callbacks

    def set_busy_handler(self, handler, context=None):
        """``handler(context, count)``; truthy retries, falsy gives up with BusyError."""
        self._check_open()
        rc = self._bridge.set_busy_handler(self._db, handler, context)
        if rc != native.SQLITE_OK:
            raise self._error(rc)

    def busy_timeout(self, ms):
        self._check_open()
        ms = int(ms)
        if not 0 <= ms <= INT32_MAX:
            raise errors.RangeError(f"busy timeout must be 0..{INT32_MAX} ms, got {ms}")
        self._bridge.forget_busy_handler()
        rc = self._lib.sqlite3_busy_timeout(self._db, ms)
        if rc != native.SQLITE_OK:
            raise self._error(rc)

    def set_trace(self, handler, context=None):
        """``handler(context, sql)`` for each statement as it starts running."""
        self._check_open()
        rc = self._bridge.set_trace(self._db, handler, context)
        if rc != native.SQLITE_OK:
            raise self._error(rc)

    def set_profile(self, handler, context=None):
        """``handler(context, sql, nanoseconds)`` when a statement finishes."""
        self._check_open()
        rc = self._bridge.set_profile(self._db, handler, context)
        if rc != native.SQLITE_OK:
            raise self._error(rc)

    def set_progress_handler(self, handler, n_ops=100, context=None):
        """``handler(context)`` every ``n_ops`` VM instructions; truthy interrupts."""
        self._check_open()
        self._bridge.set_progress_handler(self._db, handler, n_ops, context)

    def set_authorizer(self, handler, context=None):
        """``handler(context, action, arg1, arg2, database, trigger)`` -> Auth."""
        self._check_open()
        rc = self._bridge.set_authorizer(self._db, handler, context)
        if rc != native.SQLITE_OK:
            raise self._error(rc)

    def set_commit_hook(self, handler, context=None):
        self._check_open()
        self._bridge.set_commit_hook(self._db, handler, context)

    def set_rollback_hook(self, handler, context=None):
        self._check_open()
        self._bridge.set_rollback_hook(self._db, handler, context)

    def set_update_hook(self, handler, context=None):
        self._check_open()
        self._bridge.set_update_hook(self._db, handler, context)

    def create_function(self, name, n_args, func, deterministic=False):
        """Register ``func(*args)`` as a scalar SQL function (``None`` removes it)."""
        self._check_usable()
        rc = self._bridge.create_function(self._db, name, n_args, func, deterministic)
        if rc != native.SQLITE_OK:
            raise self._error(rc)

    # Misc

    def interrupt(self):
        """Abort running statements; safe to call from another thread."""
        self._check_open()
        self._lib.sqlite3_interrupt(self._db)

    def readonly(self, database="main"):
        self._check_open()
        rc = self._lib.sqlite3_db_readonly(self._db, database.encode("utf-8"))
        if rc < 0:
            raise errors.NotFoundError(f"no such database: {database}")
        return bool(rc)

    def filename(self, database="main"):
        self._check_open()
        name = self._lib.sqlite3_db_filename(self._db, database.encode("utf-8"))
        return os.fsdecode(name) if name else None

    def enable_load_extension(self, on=True):
        self._check_open()
        if not native.has_load_extension():
            raise errors.NotSupportedError("the sqlite3 library was built without extension loading")
        rc = self._lib.sqlite3_enable_load_extension(self._db, 1 if on else 0)
        if rc != native.SQLITE_OK:
            raise self._error(rc)

    def load_extension(self, path, entry_point=None):
        self._check_usable()
        if not native.has_load_extension():
            raise errors.NotSupportedError("the sqlite3 library was built without extension loading")
        errmsg = ctypes.c_void_p()
        rc = self._lib.sqlite3_load_extension(
            self._db,
            os.fsencode(path),
            entry_point.encode("utf-8") if entry_point else None,
            ctypes.byref(errmsg),
        )
        if rc != native.SQLITE_OK:
            message = native.errstr(rc)
            if errmsg.value:
                message = ctypes.string_at(errmsg.value).decode("utf-8", errors="replace")
                self._lib.sqlite3_free(errmsg)
            raise errors.error_for(rc, message)

    @staticmethod
    def complete(sql):
        return complete_statement(sql)

    # Close

    def _release_children(self):
        for blob in list(self._blobs):
            try:
                blob.close()
            except errors.Error:
                # Its handle is gone either way; keep releasing the rest.
                logger.warning("closing blob %r failed", blob, exc_info=True)
        for stmt in list(self._statements):
            stmt.finalize()
        self._stmt_cache.clear()

    def close(self):
        """Finalize statements, close blobs, then close the handle.

        Raises BusyError, leaving the connection open, if the engine refuses.
        Closing an already closed connection does nothing.
        """
        if self._db is None:
            return
        self._check_reentrancy()
        self._release_children()
        rc = self._lib.sqlite3_close(self._db)
        if rc != native.SQLITE_OK:
            raise self._error(rc)
        self._db = None
        self._bridge.release()
        logger.debug("closed %r", self.path)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __del__(self):
        db = getattr(self, "_db", None)
        if db is None:
            return
        self._release_children()
        self._db = None
        # Statements already unreachable finalize themselves later; v2 defers
        # the real close until they have.
        self._lib.sqlite3_close_v2(db)
        self._bridge.release()
