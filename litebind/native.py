import ctypes
import ctypes.util
import dataclasses
import logging
import os
import sys
from ctypes import c_int, c_int64, c_uint, c_double, c_char_p, c_void_p, POINTER, CFUNCTYPE

logger = logging.getLogger(__name__)

# Result codes (must match sqlite3.h).
SQLITE_OK = 0
SQLITE_ERROR = 1
SQLITE_INTERNAL = 2
SQLITE_PERM = 3
SQLITE_ABORT = 4
SQLITE_BUSY = 5
SQLITE_LOCKED = 6
SQLITE_NOMEM = 7
SQLITE_READONLY = 8
SQLITE_INTERRUPT = 9
SQLITE_IOERR = 10
SQLITE_CORRUPT = 11
SQLITE_NOTFOUND = 12
SQLITE_FULL = 13
SQLITE_CANTOPEN = 14
SQLITE_PROTOCOL = 15
SQLITE_EMPTY = 16
SQLITE_SCHEMA = 17
SQLITE_TOOBIG = 18
SQLITE_CONSTRAINT = 19
SQLITE_MISMATCH = 20
SQLITE_MISUSE = 21
SQLITE_NOLFS = 22
SQLITE_AUTH = 23
SQLITE_FORMAT = 24
SQLITE_RANGE = 25
SQLITE_NOTADB = 26
SQLITE_NOTICE = 27
SQLITE_WARNING = 28
SQLITE_ROW = 100
SQLITE_DONE = 101

ERROR_NAMES = {
    SQLITE_OK: "SQLITE_OK",
    SQLITE_ERROR: "SQLITE_ERROR",
    SQLITE_INTERNAL: "SQLITE_INTERNAL",
    SQLITE_PERM: "SQLITE_PERM",
    SQLITE_ABORT: "SQLITE_ABORT",
    SQLITE_BUSY: "SQLITE_BUSY",
    SQLITE_LOCKED: "SQLITE_LOCKED",
    SQLITE_NOMEM: "SQLITE_NOMEM",
    SQLITE_READONLY: "SQLITE_READONLY",
    SQLITE_INTERRUPT: "SQLITE_INTERRUPT",
    SQLITE_IOERR: "SQLITE_IOERR",
    SQLITE_CORRUPT: "SQLITE_CORRUPT",
    SQLITE_NOTFOUND: "SQLITE_NOTFOUND",
    SQLITE_FULL: "SQLITE_FULL",
    SQLITE_CANTOPEN: "SQLITE_CANTOPEN",
    SQLITE_PROTOCOL: "SQLITE_PROTOCOL",
    SQLITE_EMPTY: "SQLITE_EMPTY",
    SQLITE_SCHEMA: "SQLITE_SCHEMA",
    SQLITE_TOOBIG: "SQLITE_TOOBIG",
    SQLITE_CONSTRAINT: "SQLITE_CONSTRAINT",
    SQLITE_MISMATCH: "SQLITE_MISMATCH",
    SQLITE_MISUSE: "SQLITE_MISUSE",
    SQLITE_NOLFS: "SQLITE_NOLFS",
    SQLITE_AUTH: "SQLITE_AUTH",
    SQLITE_FORMAT: "SQLITE_FORMAT",
    SQLITE_RANGE: "SQLITE_RANGE",
    SQLITE_NOTADB: "SQLITE_NOTADB",
    SQLITE_NOTICE: "SQLITE_NOTICE",
    SQLITE_WARNING: "SQLITE_WARNING",
    SQLITE_ROW: "SQLITE_ROW",
    SQLITE_DONE: "SQLITE_DONE",
}

# Open flags (sqlite3_open_v2).
SQLITE_OPEN_READONLY = 0x00000001
SQLITE_OPEN_READWRITE = 0x00000002
SQLITE_OPEN_CREATE = 0x00000004
SQLITE_OPEN_URI = 0x00000040
SQLITE_OPEN_MEMORY = 0x00000080
SQLITE_OPEN_NOMUTEX = 0x00008000
SQLITE_OPEN_FULLMUTEX = 0x00010000
SQLITE_OPEN_SHAREDCACHE = 0x00020000
SQLITE_OPEN_PRIVATECACHE = 0x00040000
SQLITE_OPEN_NOFOLLOW = 0x01000000

# Fundamental datatypes (sqlite3_column_type).
SQLITE_INTEGER = 1
SQLITE_FLOAT = 2
SQLITE_TEXT = 3
SQLITE_BLOB = 4
SQLITE_NULL = 5

# Per-statement counters (sqlite3_stmt_status).
SQLITE_STMTSTATUS_FULLSCAN_STEP = 1
SQLITE_STMTSTATUS_SORT = 2
SQLITE_STMTSTATUS_AUTOINDEX = 3
SQLITE_STMTSTATUS_VM_STEP = 4
SQLITE_STMTSTATUS_REPREPARE = 5
SQLITE_STMTSTATUS_RUN = 6
SQLITE_STMTSTATUS_FILTER_MISS = 7
SQLITE_STMTSTATUS_FILTER_HIT = 8
SQLITE_STMTSTATUS_MEMUSED = 99

# Authorizer return values.
SQLITE_DENY = 1
SQLITE_IGNORE = 2

# Authorizer action codes.
SQLITE_CREATE_INDEX = 1
SQLITE_CREATE_TABLE = 2
SQLITE_CREATE_TEMP_INDEX = 3
SQLITE_CREATE_TEMP_TABLE = 4
SQLITE_CREATE_TEMP_TRIGGER = 5
SQLITE_CREATE_TEMP_VIEW = 6
SQLITE_CREATE_TRIGGER = 7
SQLITE_CREATE_VIEW = 8
SQLITE_DELETE = 9
SQLITE_DROP_INDEX = 10
SQLITE_DROP_TABLE = 11
SQLITE_DROP_TEMP_INDEX = 12
SQLITE_DROP_TEMP_TABLE = 13
SQLITE_DROP_TEMP_TRIGGER = 14
SQLITE_DROP_TEMP_VIEW = 15
SQLITE_DROP_TRIGGER = 16
SQLITE_DROP_VIEW = 17
SQLITE_INSERT = 18
SQLITE_PRAGMA = 19
SQLITE_READ = 20
SQLITE_SELECT = 21
SQLITE_TRANSACTION = 22
SQLITE_UPDATE = 23
SQLITE_ATTACH = 24
SQLITE_DETACH = 25
SQLITE_ALTER_TABLE = 26
SQLITE_REINDEX = 27
SQLITE_ANALYZE = 28
SQLITE_CREATE_VTABLE = 29
SQLITE_DROP_VTABLE = 30
SQLITE_FUNCTION = 31
SQLITE_SAVEPOINT = 32
SQLITE_RECURSIVE = 33

# Text encoding and function flags (sqlite3_create_function_v2).
SQLITE_UTF8 = 1
SQLITE_DETERMINISTIC = 0x000000800

# sqlite3_trace_v2 event masks.
SQLITE_TRACE_STMT = 0x01
SQLITE_TRACE_PROFILE = 0x02

# Destructor sentinel telling the engine to copy bound text/blob data.
SQLITE_TRANSIENT = c_void_p(-1)

# Native callback signatures. Every callback receives the registration token
# as its first (user data) argument.
TRACE_CALLBACK = CFUNCTYPE(c_int, c_uint, c_void_p, c_void_p, c_void_p)
PROGRESS_CALLBACK = CFUNCTYPE(c_int, c_void_p)
BUSY_CALLBACK = CFUNCTYPE(c_int, c_void_p, c_int)
AUTHORIZER_CALLBACK = CFUNCTYPE(c_int, c_void_p, c_int, c_char_p, c_char_p, c_char_p, c_char_p)
COMMIT_HOOK = CFUNCTYPE(c_int, c_void_p)
ROLLBACK_HOOK = CFUNCTYPE(None, c_void_p)
UPDATE_HOOK = CFUNCTYPE(None, c_void_p, c_int, c_char_p, c_char_p, c_int64)
FUNCTION_CALLBACK = CFUNCTYPE(None, c_void_p, c_int, POINTER(c_void_p))
DESTROY_CALLBACK = CFUNCTYPE(None, c_void_p)


@dataclasses.dataclass(frozen=True)
class EngineInfo:
    version: str
    version_number: int
    source_id: str
    threadsafe: int


_lib = None
_engine_info = None


def _candidates():
    lib_path = os.environ.get("LITEBIND_SQLITE_LIB")
    if lib_path:
        # An explicit override is the only candidate.
        return [lib_path]

    candidates = []
    found = ctypes.util.find_library("sqlite3")
    if found:
        candidates.append(found)

    # Common artifact names across platforms
    lib_names = [
        "libsqlite3.so.0",
        "libsqlite3.so",
        "libsqlite3.dylib",
        "sqlite3.dll",
        "winsqlite3.dll",
    ]
    candidates.extend(lib_names)

    # Interpreter-local copies (conda, venvs with bundled libs)
    for prefix in (sys.prefix, sys.base_prefix):
        for sub in ("lib", os.path.join("Library", "bin"), "DLLs"):
            for name in lib_names:
                p = os.path.join(prefix, sub, name)
                if os.path.exists(p):
                    candidates.append(p)

    # Last resort: the engine linked into the interpreter's own sqlite3 module.
    try:
        import _sqlite3
        candidates.append(_sqlite3.__file__)
    except ImportError:
        pass

    return candidates


def load_library():
    """Load and configure the native SQLite library once per process."""
    global _lib
    if _lib is not None:
        return _lib

    lib = None
    errors = []
    for candidate in _candidates():
        try:
            lib = ctypes.CDLL(candidate)
        except OSError as e:
            errors.append(f"{candidate}: {e}")
            continue
        if not hasattr(lib, "sqlite3_libversion"):
            errors.append(f"{candidate}: no sqlite3 symbols")
            lib = None
            continue
        logger.debug("loaded sqlite3 native library from %s", candidate)
        break

    if lib is None:
        raise RuntimeError(
            "Could not find the sqlite3 native library. Set LITEBIND_SQLITE_LIB env var. "
            "Tried: " + "; ".join(errors)
        )

    # Define signatures

    # Library / process-wide state
    lib.sqlite3_initialize.argtypes = []
    lib.sqlite3_initialize.restype = c_int

    lib.sqlite3_libversion.argtypes = []
    lib.sqlite3_libversion.restype = c_char_p

    lib.sqlite3_libversion_number.argtypes = []
    lib.sqlite3_libversion_number.restype = c_int

    lib.sqlite3_sourceid.argtypes = []
    lib.sqlite3_sourceid.restype = c_char_p

    lib.sqlite3_threadsafe.argtypes = []
    lib.sqlite3_threadsafe.restype = c_int

    lib.sqlite3_errstr.argtypes = [c_int]
    lib.sqlite3_errstr.restype = c_char_p

    lib.sqlite3_complete.argtypes = [c_char_p]
    lib.sqlite3_complete.restype = c_int

    # Memory management for engine-allocated buffers
    lib.sqlite3_free.argtypes = [c_void_p]
    lib.sqlite3_free.restype = None

    # Connections
    lib.sqlite3_open_v2.argtypes = [c_char_p, POINTER(c_void_p), c_int, c_char_p]
    lib.sqlite3_open_v2.restype = c_int

    lib.sqlite3_close.argtypes = [c_void_p]
    lib.sqlite3_close.restype = c_int

    lib.sqlite3_close_v2.argtypes = [c_void_p]
    lib.sqlite3_close_v2.restype = c_int

    lib.sqlite3_extended_result_codes.argtypes = [c_void_p, c_int]
    lib.sqlite3_extended_result_codes.restype = c_int

    lib.sqlite3_errcode.argtypes = [c_void_p]
    lib.sqlite3_errcode.restype = c_int

    lib.sqlite3_extended_errcode.argtypes = [c_void_p]
    lib.sqlite3_extended_errcode.restype = c_int

    lib.sqlite3_errmsg.argtypes = [c_void_p]
    lib.sqlite3_errmsg.restype = c_char_p

    lib.sqlite3_changes.argtypes = [c_void_p]
    lib.sqlite3_changes.restype = c_int

    lib.sqlite3_total_changes.argtypes = [c_void_p]
    lib.sqlite3_total_changes.restype = c_int

    lib.sqlite3_last_insert_rowid.argtypes = [c_void_p]
    lib.sqlite3_last_insert_rowid.restype = c_int64

    lib.sqlite3_get_autocommit.argtypes = [c_void_p]
    lib.sqlite3_get_autocommit.restype = c_int

    lib.sqlite3_interrupt.argtypes = [c_void_p]
    lib.sqlite3_interrupt.restype = None

    lib.sqlite3_busy_timeout.argtypes = [c_void_p, c_int]
    lib.sqlite3_busy_timeout.restype = c_int

    lib.sqlite3_db_filename.argtypes = [c_void_p, c_char_p]
    lib.sqlite3_db_filename.restype = c_char_p

    lib.sqlite3_db_readonly.argtypes = [c_void_p, c_char_p]
    lib.sqlite3_db_readonly.restype = c_int

    # Statements
    lib.sqlite3_prepare_v2.argtypes = [c_void_p, c_void_p, c_int, POINTER(c_void_p), POINTER(c_void_p)]
    lib.sqlite3_prepare_v2.restype = c_int

    lib.sqlite3_finalize.argtypes = [c_void_p]
    lib.sqlite3_finalize.restype = c_int

    lib.sqlite3_reset.argtypes = [c_void_p]
    lib.sqlite3_reset.restype = c_int

    lib.sqlite3_clear_bindings.argtypes = [c_void_p]
    lib.sqlite3_clear_bindings.restype = c_int

    lib.sqlite3_step.argtypes = [c_void_p]
    lib.sqlite3_step.restype = c_int

    lib.sqlite3_sql.argtypes = [c_void_p]
    lib.sqlite3_sql.restype = c_char_p

    # Returned pointer is engine-allocated; caller frees with sqlite3_free.
    lib.sqlite3_expanded_sql.argtypes = [c_void_p]
    lib.sqlite3_expanded_sql.restype = c_void_p

    lib.sqlite3_stmt_readonly.argtypes = [c_void_p]
    lib.sqlite3_stmt_readonly.restype = c_int

    lib.sqlite3_stmt_busy.argtypes = [c_void_p]
    lib.sqlite3_stmt_busy.restype = c_int

    lib.sqlite3_stmt_status.argtypes = [c_void_p, c_int, c_int]
    lib.sqlite3_stmt_status.restype = c_int

    lib.sqlite3_data_count.argtypes = [c_void_p]
    lib.sqlite3_data_count.restype = c_int

    # Parameters
    lib.sqlite3_bind_parameter_count.argtypes = [c_void_p]
    lib.sqlite3_bind_parameter_count.restype = c_int

    lib.sqlite3_bind_parameter_name.argtypes = [c_void_p, c_int]
    lib.sqlite3_bind_parameter_name.restype = c_char_p

    lib.sqlite3_bind_parameter_index.argtypes = [c_void_p, c_char_p]
    lib.sqlite3_bind_parameter_index.restype = c_int

    # Bindings
    lib.sqlite3_bind_null.argtypes = [c_void_p, c_int]
    lib.sqlite3_bind_null.restype = c_int

    lib.sqlite3_bind_int64.argtypes = [c_void_p, c_int, c_int64]
    lib.sqlite3_bind_int64.restype = c_int

    lib.sqlite3_bind_double.argtypes = [c_void_p, c_int, c_double]
    lib.sqlite3_bind_double.restype = c_int

    lib.sqlite3_bind_text.argtypes = [c_void_p, c_int, c_char_p, c_int, c_void_p]
    lib.sqlite3_bind_text.restype = c_int

    lib.sqlite3_bind_blob.argtypes = [c_void_p, c_int, c_void_p, c_int, c_void_p]
    lib.sqlite3_bind_blob.restype = c_int

    lib.sqlite3_bind_zeroblob.argtypes = [c_void_p, c_int, c_int]
    lib.sqlite3_bind_zeroblob.restype = c_int

    # Columns
    lib.sqlite3_column_count.argtypes = [c_void_p]
    lib.sqlite3_column_count.restype = c_int

    lib.sqlite3_column_name.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_name.restype = c_char_p

    lib.sqlite3_column_decltype.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_decltype.restype = c_char_p

    lib.sqlite3_column_type.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_type.restype = c_int

    lib.sqlite3_column_int64.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_int64.restype = c_int64

    lib.sqlite3_column_double.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_double.restype = c_double

    # Text and blob accessors return raw pointers so embedded NULs survive;
    # always pair them with sqlite3_column_bytes.
    lib.sqlite3_column_text.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_text.restype = c_void_p

    lib.sqlite3_column_blob.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_blob.restype = c_void_p

    lib.sqlite3_column_bytes.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_bytes.restype = c_int

    # Incremental blob I/O
    lib.sqlite3_blob_open.argtypes = [c_void_p, c_char_p, c_char_p, c_char_p, c_int64, c_int, POINTER(c_void_p)]
    lib.sqlite3_blob_open.restype = c_int

    lib.sqlite3_blob_reopen.argtypes = [c_void_p, c_int64]
    lib.sqlite3_blob_reopen.restype = c_int

    lib.sqlite3_blob_close.argtypes = [c_void_p]
    lib.sqlite3_blob_close.restype = c_int

    lib.sqlite3_blob_bytes.argtypes = [c_void_p]
    lib.sqlite3_blob_bytes.restype = c_int

    lib.sqlite3_blob_read.argtypes = [c_void_p, c_void_p, c_int, c_int]
    lib.sqlite3_blob_read.restype = c_int

    lib.sqlite3_blob_write.argtypes = [c_void_p, c_void_p, c_int, c_int]
    lib.sqlite3_blob_write.restype = c_int

    # Callbacks
    lib.sqlite3_trace_v2.argtypes = [c_void_p, c_uint, TRACE_CALLBACK, c_void_p]
    lib.sqlite3_trace_v2.restype = c_int

    lib.sqlite3_progress_handler.argtypes = [c_void_p, c_int, PROGRESS_CALLBACK, c_void_p]
    lib.sqlite3_progress_handler.restype = None

    lib.sqlite3_busy_handler.argtypes = [c_void_p, BUSY_CALLBACK, c_void_p]
    lib.sqlite3_busy_handler.restype = c_int

    lib.sqlite3_set_authorizer.argtypes = [c_void_p, AUTHORIZER_CALLBACK, c_void_p]
    lib.sqlite3_set_authorizer.restype = c_int

    lib.sqlite3_commit_hook.argtypes = [c_void_p, COMMIT_HOOK, c_void_p]
    lib.sqlite3_commit_hook.restype = c_void_p

    lib.sqlite3_rollback_hook.argtypes = [c_void_p, ROLLBACK_HOOK, c_void_p]
    lib.sqlite3_rollback_hook.restype = c_void_p

    lib.sqlite3_update_hook.argtypes = [c_void_p, UPDATE_HOOK, c_void_p]
    lib.sqlite3_update_hook.restype = c_void_p

    # Application-defined SQL functions
    lib.sqlite3_create_function_v2.argtypes = [
        c_void_p, c_char_p, c_int, c_int, c_void_p,
        FUNCTION_CALLBACK, c_void_p, c_void_p, DESTROY_CALLBACK,
    ]
    lib.sqlite3_create_function_v2.restype = c_int

    lib.sqlite3_user_data.argtypes = [c_void_p]
    lib.sqlite3_user_data.restype = c_void_p

    lib.sqlite3_value_type.argtypes = [c_void_p]
    lib.sqlite3_value_type.restype = c_int

    lib.sqlite3_value_int64.argtypes = [c_void_p]
    lib.sqlite3_value_int64.restype = c_int64

    lib.sqlite3_value_double.argtypes = [c_void_p]
    lib.sqlite3_value_double.restype = c_double

    lib.sqlite3_value_text.argtypes = [c_void_p]
    lib.sqlite3_value_text.restype = c_void_p

    lib.sqlite3_value_blob.argtypes = [c_void_p]
    lib.sqlite3_value_blob.restype = c_void_p

    lib.sqlite3_value_bytes.argtypes = [c_void_p]
    lib.sqlite3_value_bytes.restype = c_int

    lib.sqlite3_result_null.argtypes = [c_void_p]
    lib.sqlite3_result_null.restype = None

    lib.sqlite3_result_int64.argtypes = [c_void_p, c_int64]
    lib.sqlite3_result_int64.restype = None

    lib.sqlite3_result_double.argtypes = [c_void_p, c_double]
    lib.sqlite3_result_double.restype = None

    lib.sqlite3_result_text.argtypes = [c_void_p, c_char_p, c_int, c_void_p]
    lib.sqlite3_result_text.restype = None

    lib.sqlite3_result_blob.argtypes = [c_void_p, c_void_p, c_int, c_void_p]
    lib.sqlite3_result_blob.restype = None

    lib.sqlite3_result_zeroblob.argtypes = [c_void_p, c_int]
    lib.sqlite3_result_zeroblob.restype = None

    lib.sqlite3_result_error.argtypes = [c_void_p, c_char_p, c_int]
    lib.sqlite3_result_error.restype = None

    # Extension loading (optional; absent in SQLITE_OMIT_LOAD_EXTENSION builds)
    if hasattr(lib, "sqlite3_enable_load_extension"):
        lib.sqlite3_enable_load_extension.argtypes = [c_void_p, c_int]
        lib.sqlite3_enable_load_extension.restype = c_int

        lib.sqlite3_load_extension.argtypes = [c_void_p, c_char_p, c_char_p, POINTER(c_void_p)]
        lib.sqlite3_load_extension.restype = c_int

    rc = lib.sqlite3_initialize()
    if rc != SQLITE_OK:
        raise RuntimeError(f"sqlite3_initialize failed with code {rc}")

    _lib = lib
    return _lib


def has_load_extension():
    return hasattr(load_library(), "sqlite3_enable_load_extension")


def engine_info():
    """Process-wide engine facts, read once after the library is loaded."""
    global _engine_info
    if _engine_info is None:
        lib = load_library()
        _engine_info = EngineInfo(
            version=lib.sqlite3_libversion().decode("ascii"),
            version_number=int(lib.sqlite3_libversion_number()),
            source_id=lib.sqlite3_sourceid().decode("ascii"),
            threadsafe=int(lib.sqlite3_threadsafe()),
        )
    return _engine_info


def errstr(code):
    msg = load_library().sqlite3_errstr(code)
    return msg.decode("utf-8", errors="replace") if msg else f"Unknown error {code}"
