import ctypes
import logging
import os
import weakref

from . import errors, native
from .codec import INT64_MAX, INT64_MIN

logger = logging.getLogger(__name__)


def check_rowid(rowid):
    if not INT64_MIN <= rowid <= INT64_MAX:
        raise errors.RangeError(f"rowid {rowid} does not fit in a 64-bit INTEGER")
    return rowid


class BlobStream:
    """Incremental I/O on one BLOB cell, opened with ``Connection.open_blob``.

    The size is fixed when the stream is opened; reads and writes never
    change it. Positional access goes through ``read_at``/``write_at``, and
    the ``read``/``write``/``seek``/``tell`` methods keep a file-like offset.
    """

    def __init__(self, connection, handle, database, table, column, rowid, writable):
        self._conn_ref = weakref.ref(connection)
        self._blob = handle
        self._io_failed = False
        self._lib = native.load_library()
        self.database = database
        self.table = table
        self.column = column
        self.rowid = rowid
        self.writable = writable
        self._size = self._lib.sqlite3_blob_bytes(handle)
        self._offset = 0

    def __repr__(self):
        state = "closed" if self._blob is None else f"{self._size} bytes"
        return f"<BlobStream {self.table}.{self.column} rowid={self.rowid} {state}>"

    @property
    def _connection(self):
        conn = self._conn_ref()
        if conn is None:
            raise errors.ConnectionClosedError("connection is closed")
        return conn

    def _check(self):
        self._connection._check_open()
        if self._blob is None:
            raise errors.BlobClosedError("blob stream is closed")

    def _check_range(self, offset, n):
        if offset < 0 or n < 0 or offset + n > self._size:
            raise errors.RangeError(f"range [{offset}, {offset + n}) is outside the blob's {self._size} bytes")

    @property
    def closed(self):
        return self._blob is None

    def size(self):
        self._check()
        return self._size

    def __len__(self):
        return self.size()

    def read_at(self, offset, n):
        self._check()
        self._check_range(offset, n)
        buf = ctypes.create_string_buffer(n)
        if n:
            rc = self._lib.sqlite3_blob_read(self._blob, buf, n, offset)
            if rc != native.SQLITE_OK:
                self._io_failed = True
                raise self._connection._error(rc)
        return buf.raw

    def readinto_at(self, buffer, offset):
        view = memoryview(buffer).cast("B")
        data = self.read_at(offset, len(view))
        view[:len(data)] = data
        return len(data)

    def write_at(self, data, offset):
        self._check()
        data = bytes(data)
        self._check_range(offset, len(data))
        if data:
            rc = self._lib.sqlite3_blob_write(self._blob, data, len(data), offset)
            if rc != native.SQLITE_OK:
                self._io_failed = True
                raise self._connection._error(rc)
        return len(data)

    def read(self, n=-1):
        self._check()
        remaining = self._size - self._offset
        if n < 0 or n > remaining:
            n = remaining
        data = self.read_at(self._offset, n)
        self._offset += n
        return data

    def readinto(self, buffer):
        self._check()
        view = memoryview(buffer).cast("B")
        n = min(len(view), self._size - self._offset)
        self.readinto_at(view[:n], self._offset)
        self._offset += n
        return n

    def write(self, data):
        n = self.write_at(data, self._offset)
        self._offset += n
        return n

    def seek(self, offset, whence=os.SEEK_SET):
        self._check()
        if whence == os.SEEK_SET:
            target = offset
        elif whence == os.SEEK_CUR:
            target = self._offset + offset
        elif whence == os.SEEK_END:
            target = self._size + offset
        else:
            raise ValueError(f"invalid whence ({whence})")
        if not 0 <= target <= self._size:
            raise errors.RangeError(f"offset {target} is outside the blob's {self._size} bytes")
        self._offset = target
        return target

    def tell(self):
        self._check()
        return self._offset

    def reopen(self, rowid):
        """Point the stream at the same column of another row."""
        self._check()
        check_rowid(rowid)
        rc = self._lib.sqlite3_blob_reopen(self._blob, rowid)
        if rc != native.SQLITE_OK:
            # The engine aborts the handle; only close() is left.
            self._io_failed = True
            raise self._connection._blob_error(rc)
        self.rowid = rowid
        self._size = self._lib.sqlite3_blob_bytes(self._blob)
        self._offset = 0

    def close(self):
        if self._blob is None:
            return
        handle, self._blob = self._blob, None
        conn = self._conn_ref()
        if conn is not None:
            conn._forget_blob(self)
        # The handle is released whatever the result code says.
        rc = self._lib.sqlite3_blob_close(handle)
        if rc == native.SQLITE_OK:
            return
        if self._io_failed or conn is None:
            # Repeats the code of the read or write that already raised.
            logger.debug("blob close reported %s after a failed operation", native.errstr(rc))
            return
        raise conn._error(rc)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __del__(self):
        handle = getattr(self, "_blob", None)
        if handle is not None:
            self._blob = None
            self._lib.sqlite3_blob_close(handle)
