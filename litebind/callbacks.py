import contextlib
import ctypes
import enum
import itertools
import logging
import threading

from . import codec, native
from .errors import ProgrammingError

logger = logging.getLogger(__name__)


class Auth(enum.IntEnum):
    """Authorizer verdicts."""

    OK = native.SQLITE_OK
    DENY = native.SQLITE_DENY
    IGNORE = native.SQLITE_IGNORE


class Action(enum.IntEnum):
    """Action codes passed to the authorizer and the update hook."""

    CREATE_INDEX = native.SQLITE_CREATE_INDEX
    CREATE_TABLE = native.SQLITE_CREATE_TABLE
    CREATE_TEMP_INDEX = native.SQLITE_CREATE_TEMP_INDEX
    CREATE_TEMP_TABLE = native.SQLITE_CREATE_TEMP_TABLE
    CREATE_TEMP_TRIGGER = native.SQLITE_CREATE_TEMP_TRIGGER
    CREATE_TEMP_VIEW = native.SQLITE_CREATE_TEMP_VIEW
    CREATE_TRIGGER = native.SQLITE_CREATE_TRIGGER
    CREATE_VIEW = native.SQLITE_CREATE_VIEW
    DELETE = native.SQLITE_DELETE
    DROP_INDEX = native.SQLITE_DROP_INDEX
    DROP_TABLE = native.SQLITE_DROP_TABLE
    DROP_TEMP_INDEX = native.SQLITE_DROP_TEMP_INDEX
    DROP_TEMP_TABLE = native.SQLITE_DROP_TEMP_TABLE
    DROP_TEMP_TRIGGER = native.SQLITE_DROP_TEMP_TRIGGER
    DROP_TEMP_VIEW = native.SQLITE_DROP_TEMP_VIEW
    DROP_TRIGGER = native.SQLITE_DROP_TRIGGER
    DROP_VIEW = native.SQLITE_DROP_VIEW
    INSERT = native.SQLITE_INSERT
    PRAGMA = native.SQLITE_PRAGMA
    READ = native.SQLITE_READ
    SELECT = native.SQLITE_SELECT
    TRANSACTION = native.SQLITE_TRANSACTION
    UPDATE = native.SQLITE_UPDATE
    ATTACH = native.SQLITE_ATTACH
    DETACH = native.SQLITE_DETACH
    ALTER_TABLE = native.SQLITE_ALTER_TABLE
    REINDEX = native.SQLITE_REINDEX
    ANALYZE = native.SQLITE_ANALYZE
    CREATE_VTABLE = native.SQLITE_CREATE_VTABLE
    DROP_VTABLE = native.SQLITE_DROP_VTABLE
    FUNCTION = native.SQLITE_FUNCTION
    SAVEPOINT = native.SQLITE_SAVEPOINT
    RECURSIVE = native.SQLITE_RECURSIVE


def _action(code):
    try:
        return Action(code)
    except ValueError:
        return code


def _text(value):
    if value is None:
        return None
    return value.decode("utf-8", errors="replace")


# Token -> bridge. The engine only ever sees the integer token as its
# user-data pointer.
_bridges = {}
# Token -> (bridge token, name, func) for application-defined functions.
_functions = {}
_tokens = itertools.count(1)


def _bridge_for(token):
    return _bridges.get(token)


@native.TRACE_CALLBACK
def _trace_trampoline(event, token, p, x):
    bridge = _bridge_for(token)
    if bridge is None:
        return 0
    lib = native.load_library()
    if event == native.SQLITE_TRACE_STMT and "trace" in bridge.handlers:
        sql = None
        expanded = lib.sqlite3_expanded_sql(p)
        if expanded:
            try:
                sql = ctypes.string_at(expanded).decode("utf-8", errors="replace")
            finally:
                lib.sqlite3_free(expanded)
        elif x:
            sql = ctypes.string_at(x).decode("utf-8", errors="replace")
        bridge.notify("trace", sql)
    elif event == native.SQLITE_TRACE_PROFILE and "profile" in bridge.handlers:
        sql = _text(lib.sqlite3_sql(p))
        elapsed = ctypes.cast(x, ctypes.POINTER(ctypes.c_int64)).contents.value
        bridge.notify("profile", sql, elapsed)
    return 0


@native.PROGRESS_CALLBACK
def _progress_trampoline(token):
    bridge = _bridge_for(token)
    if bridge is None:
        return 0
    try:
        return 1 if bridge.call("progress") else 0
    except Exception as exc:
        bridge.fail("progress", exc)
        return 1


@native.BUSY_CALLBACK
def _busy_trampoline(token, count):
    bridge = _bridge_for(token)
    if bridge is None:
        return 0
    try:
        return 1 if bridge.call("busy", count) else 0
    except Exception as exc:
        bridge.fail("busy", exc)
        return 0


@native.AUTHORIZER_CALLBACK
def _authorizer_trampoline(token, code, arg1, arg2, database, trigger):
    bridge = _bridge_for(token)
    if bridge is None:
        return native.SQLITE_OK
    action = _action(code)
    operands = (_text(arg1), _text(arg2), _text(database), _text(trigger))
    try:
        verdict = Auth(int(bridge.call("authorizer", action, *operands)))
    except Exception as exc:
        bridge.fail("authorizer", exc)
        verdict = Auth.DENY
    if verdict is Auth.DENY:
        bridge.denial = (action, operands)
    return int(verdict)


@native.COMMIT_HOOK
def _commit_trampoline(token):
    bridge = _bridge_for(token)
    if bridge is None:
        return 0
    try:
        return 1 if bridge.call("commit") else 0
    except Exception as exc:
        bridge.fail("commit", exc)
        return 1


@native.ROLLBACK_HOOK
def _rollback_trampoline(token):
    bridge = _bridge_for(token)
    if bridge is not None:
        bridge.notify("rollback")


@native.UPDATE_HOOK
def _update_trampoline(token, code, database, table, rowid):
    bridge = _bridge_for(token)
    if bridge is not None:
        bridge.notify("update", _action(code), _text(database), _text(table), rowid)


@native.FUNCTION_CALLBACK
def _function_trampoline(ctx, argc, argv):
    lib = native.load_library()
    entry = _functions.get(lib.sqlite3_user_data(ctx))
    if entry is None:
        msg = b"function is no longer registered"
        lib.sqlite3_result_error(ctx, msg, len(msg))
        return
    bridge_token, name, func = entry
    bridge = _bridge_for(bridge_token)
    args = [codec.function_arg(argv[i]) for i in range(argc)]
    try:
        if bridge is None:
            result = func(*args)
        else:
            with bridge.inside():
                result = func(*args)
        codec.set_result(ctx, result)
    except Exception as exc:
        if bridge is not None:
            bridge.fail(f"function {name}", exc)
        msg = f"user-defined function {name!r} raised {type(exc).__name__}: {exc}".encode("utf-8")
        lib.sqlite3_result_error(ctx, msg, len(msg))


@native.DESTROY_CALLBACK
def _destroy_trampoline(token):
    _functions.pop(token, None)


class CallbackBridge:
    """Per-connection owner of every registered Python handler."""

    def __init__(self):
        self.token = next(_tokens)
        self.handlers = {}
        # Per thread: another thread may use a FULLMUTEX connection while
        # this one is inside a handler.
        self._local = threading.local()
        self.pending = None
        self.denial = None
        _bridges[self.token] = self

    @property
    def active(self):
        """Handler nesting depth on the calling thread."""
        return getattr(self._local, "depth", 0)

    @contextlib.contextmanager
    def inside(self):
        self._local.depth = self.active + 1
        try:
            yield
        finally:
            self._local.depth -= 1

    def check_reentrancy(self):
        if self.active:
            raise ProgrammingError("the connection cannot be used from inside one of its callbacks")

    def call(self, kind, *args):
        handler, context = self.handlers[kind]
        with self.inside():
            return handler(context, *args)

    def notify(self, kind, *args):
        # Handlers that cannot abort anything; exceptions are only logged.
        try:
            self.call(kind, *args)
        except Exception:
            logger.warning("%s handler raised", kind, exc_info=True)

    def fail(self, kind, exc):
        logger.debug("%s handler raised %r", kind, exc)
        if self.pending is None:
            self.pending = exc

    def take(self):
        """Pop the denial and the handler exception behind the last failure."""
        denial, pending = self.denial, self.pending
        self.denial = None
        self.pending = None
        return denial, pending

    def _store(self, kind, handler, context):
        if handler is None:
            self.handlers.pop(kind, None)
            return False
        if not callable(handler):
            raise TypeError(f"{kind} handler must be callable")
        self.handlers[kind] = (handler, context)
        return True

    def _install_trace(self, db):
        lib = native.load_library()
        mask = 0
        if "trace" in self.handlers:
            mask |= native.SQLITE_TRACE_STMT
        if "profile" in self.handlers:
            mask |= native.SQLITE_TRACE_PROFILE
        if mask:
            rc = lib.sqlite3_trace_v2(db, mask, _trace_trampoline, self.token)
        else:
            rc = lib.sqlite3_trace_v2(db, 0, native.TRACE_CALLBACK(), None)
        return rc

    def set_trace(self, db, handler, context=None):
        self._store("trace", handler, context)
        return self._install_trace(db)

    def set_profile(self, db, handler, context=None):
        self._store("profile", handler, context)
        return self._install_trace(db)

    def set_progress_handler(self, db, handler, n_ops=100, context=None):
        lib = native.load_library()
        if handler is not None and not 1 <= n_ops <= codec.INT32_MAX:
            raise ValueError(f"n_ops must be 1..{codec.INT32_MAX}")
        if self._store("progress", handler, context):
            lib.sqlite3_progress_handler(db, n_ops, _progress_trampoline, self.token)
        else:
            lib.sqlite3_progress_handler(db, 0, native.PROGRESS_CALLBACK(), None)

    def set_busy_handler(self, db, handler, context=None):
        lib = native.load_library()
        if self._store("busy", handler, context):
            return lib.sqlite3_busy_handler(db, _busy_trampoline, self.token)
        return lib.sqlite3_busy_handler(db, native.BUSY_CALLBACK(), None)

    def forget_busy_handler(self):
        # sqlite3_busy_timeout replaces whatever busy handler was installed.
        self.handlers.pop("busy", None)

    def set_authorizer(self, db, handler, context=None):
        lib = native.load_library()
        if self._store("authorizer", handler, context):
            return lib.sqlite3_set_authorizer(db, _authorizer_trampoline, self.token)
        return lib.sqlite3_set_authorizer(db, native.AUTHORIZER_CALLBACK(), None)

    def set_commit_hook(self, db, handler, context=None):
        lib = native.load_library()
        if self._store("commit", handler, context):
            lib.sqlite3_commit_hook(db, _commit_trampoline, self.token)
        else:
            lib.sqlite3_commit_hook(db, native.COMMIT_HOOK(), None)

    def set_rollback_hook(self, db, handler, context=None):
        lib = native.load_library()
        if self._store("rollback", handler, context):
            lib.sqlite3_rollback_hook(db, _rollback_trampoline, self.token)
        else:
            lib.sqlite3_rollback_hook(db, native.ROLLBACK_HOOK(), None)

    def set_update_hook(self, db, handler, context=None):
        lib = native.load_library()
        if self._store("update", handler, context):
            lib.sqlite3_update_hook(db, _update_trampoline, self.token)
        else:
            lib.sqlite3_update_hook(db, native.UPDATE_HOOK(), None)

    def create_function(self, db, name, n_args, func, deterministic=False):
        """Register (or with ``func=None`` remove) a scalar SQL function.

        The engine drops its registration through the destroy callback when
        the function is replaced, removed or the connection closes.
        """
        lib = native.load_library()
        flags = native.SQLITE_UTF8
        if deterministic:
            flags |= native.SQLITE_DETERMINISTIC
        encoded = name.encode("utf-8")
        if func is None:
            return lib.sqlite3_create_function_v2(
                db, encoded, n_args, flags, None,
                native.FUNCTION_CALLBACK(), None, None, native.DESTROY_CALLBACK(),
            )
        if not callable(func):
            raise TypeError("function must be callable")
        token = next(_tokens)
        _functions[token] = (self.token, name, func)
        rc = lib.sqlite3_create_function_v2(
            db, encoded, n_args, flags, token,
            _function_trampoline, None, None, _destroy_trampoline,
        )
        return rc

    def release(self):
        self.handlers.clear()
        self.pending = None
        self.denial = None
        _bridges.pop(self.token, None)
