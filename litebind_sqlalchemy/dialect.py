import math
import os
import re

from sqlalchemy import exc, pool, util
from sqlalchemy.dialects.sqlite.base import SQLiteDialect


class LitebindDialect(SQLiteDialect):
    """SQLAlchemy dialect for ``sqlite+litebind://`` URLs."""

    driver = "litebind"
    default_paramstyle = "qmark"
    supports_statement_cache = True
    returns_native_bytes = True
    description_encoding = None

    @classmethod
    def import_dbapi(cls):
        from litebind import dbapi

        return dbapi

    @classmethod
    def _is_url_file_db(cls, url):
        if (url.database and url.database != ":memory:") and url.query.get("mode") != "memory":
            return True
        return False

    @classmethod
    def get_pool_class(cls, url):
        if cls._is_url_file_db(url):
            return pool.QueuePool
        return pool.SingletonThreadPool

    def _get_server_version_info(self, connection):
        return self.dbapi.sqlite_version_info

    _isolation_lookup = SQLiteDialect._isolation_lookup.union({"AUTOCOMMIT": None})

    def set_isolation_level(self, dbapi_connection, level):
        if level == "AUTOCOMMIT":
            dbapi_connection.isolation_level = None
        else:
            dbapi_connection.isolation_level = "DEFERRED"
            return super().set_isolation_level(dbapi_connection, level)

    def detect_autocommit_setting(self, dbapi_conn):
        return dbapi_conn.isolation_level is None

    def on_connect(self):
        def regexp(a, b):
            if b is None:
                return None
            return re.search(a, b) is not None

        def connect(conn):
            conn.create_function("regexp", 2, regexp, deterministic=True)
            # floor() only ships with engines built with the math functions.
            conn.create_function("floor", 1, math.floor, deterministic=True)

        return connect

    def create_connect_args(self, url):
        if url.username or url.password or url.host or url.port:
            raise exc.ArgumentError(
                "Invalid litebind URL: %s\n"
                "Valid URL forms are:\n"
                " sqlite+litebind:///:memory: (or, sqlite+litebind://)\n"
                " sqlite+litebind:///relative/path/to/file.db\n"
                " sqlite+litebind:////absolute/path/to/file.db" % (url,)
            )

        litebind_args = [
            ("uri", bool),
            ("timeout", float),
            ("isolation_level", str),
            ("stmt_cache_size", int),
        ]
        opts = url.query
        connect_opts = {}
        for key, type_ in litebind_args:
            util.coerce_kw_type(opts, key, type_, dest=connect_opts)

        if connect_opts.get("uri", False):
            uri_opts = dict(opts)
            for key, _ in litebind_args:
                uri_opts.pop(key, None)
            filename = url.database
            if uri_opts:
                filename += "?" + "&".join("%s=%s" % (key, uri_opts[key]) for key in sorted(uri_opts))
        else:
            filename = url.database or ":memory:"
            if filename != ":memory:":
                filename = os.path.abspath(filename)

        return ([filename], connect_opts)

    def is_disconnect(self, e, connection, cursor):
        return isinstance(e, self.dbapi.ProgrammingError) and "Connection closed" in str(e)


dialect = LitebindDialect
