"""Python binding for the SQLite engine over ctypes.

The core API is :class:`Connection` / :class:`Statement` / :class:`BlobStream`;
:mod:`litebind.dbapi` layers a DB-API 2.0 interface on top.
"""
from . import native
from .blob import BlobStream
from .callbacks import Action, Auth
from .codec import ColumnType, ZeroBlob
from .connection import DEFAULT_FLAGS, Connection, OpenFlag, complete_statement
from .errors import (
    AuthorizationError,
    BlobClosedError,
    BusyError,
    ConfigurationError,
    ConnectionClosedError,
    ConstraintError,
    ConversionError,
    DataError,
    DatabaseError,
    Error,
    IntegrityError,
    InterfaceError,
    InternalError,
    InterruptError,
    NotFoundError,
    NotSupportedError,
    OperationalError,
    ProgrammingError,
    RangeError,
    SQLError,
    StatementFinalizedError,
    TransactionStateError,
    UnknownColumnError,
    UnknownParameterError,
    Warning,
)
from .schema import Column, ForeignKey, Index
from .statement import CursorState, Statement, StmtStatus

__version__ = "0.3.0"


def open(path="", *flags, vfs=None, stmt_cache_size=None):
    """Open a database; see :class:`Connection`."""
    return Connection(path, *flags, vfs=vfs, stmt_cache_size=stmt_cache_size)


def version():
    """Version string of the loaded SQLite library."""
    return native.engine_info().version


def engine_info():
    return native.engine_info()


__all__ = [
    "open", "version", "engine_info", "complete_statement",
    "Connection", "Statement", "BlobStream", "OpenFlag", "DEFAULT_FLAGS",
    "CursorState", "StmtStatus", "ColumnType", "ZeroBlob", "Action", "Auth",
    "Column", "ForeignKey", "Index",
    "Error", "Warning", "InterfaceError", "DatabaseError", "InternalError", "OperationalError",
    "ProgrammingError", "IntegrityError", "DataError", "NotSupportedError",
    "ConfigurationError", "SQLError", "BusyError", "AuthorizationError", "InterruptError",
    "NotFoundError", "ConstraintError", "TransactionStateError", "ConversionError", "RangeError",
    "UnknownParameterError", "UnknownColumnError", "StatementFinalizedError",
    "ConnectionClosedError", "BlobClosedError",
]
