import dataclasses
from typing import List, Optional


@dataclasses.dataclass
class Column:
    cid: int
    name: str
    type: str
    not_null: bool
    default: Optional[str]
    pk: int


@dataclasses.dataclass
class ForeignKey:
    id: int
    table: str
    from_columns: List[str]
    to_columns: List[Optional[str]]
    on_update: str
    on_delete: str
    match: str


@dataclasses.dataclass
class Index:
    name: str
    unique: bool
    origin: str
    partial: bool
    columns: List[str]


_JOURNAL_MODES = ("DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF")


def quote_identifier(name):
    return '"' + name.replace('"', '""') + '"'


class SchemaMixin:
    """Schema introspection and pragma helpers for :class:`Connection`."""

    def _select_rows(self, sql, *args):
        stmt = self.cache_or_prepare(sql)
        try:
            if args:
                stmt.bind(*args)
            return list(stmt)
        finally:
            stmt.release()

    def _pragma_rows(self, pragma, table, database):
        # Table-valued pragma functions take the schema as an optional
        # second argument.
        if database is None:
            return self._select_rows(f"SELECT * FROM pragma_{pragma}(?)", table)
        return self._select_rows(f"SELECT * FROM pragma_{pragma}(?, ?)", table, database)

    def databases(self):
        """Attached databases as ``{name: file}``."""
        return {name: file for _, name, file in self._select_rows("SELECT seq, name, file FROM pragma_database_list")}

    def _schema_objects(self, kind, database):
        prefix = "" if database is None else quote_identifier(database) + "."
        rows = self._select_rows(
            f"SELECT name FROM {prefix}sqlite_master WHERE type = ? AND name NOT LIKE 'sqlite_%' ORDER BY name",
            kind,
        )
        return [name for (name,) in rows]

    def tables(self, database=None):
        return self._schema_objects("table", database)

    def views(self, database=None):
        return self._schema_objects("view", database)

    def columns(self, table, database=None):
        return [
            Column(cid, name, decltype, bool(notnull), default, pk)
            for cid, name, decltype, notnull, default, pk in self._pragma_rows("table_info", table, database)
        ]

    def foreign_keys(self, table, database=None):
        """Foreign keys of ``table``; multi-column keys come back as one entry."""
        keys = {}
        for fk_id, _seq, parent, src, dst, on_update, on_delete, match in self._pragma_rows(
            "foreign_key_list", table, database
        ):
            fk = keys.get(fk_id)
            if fk is None:
                fk = keys[fk_id] = ForeignKey(fk_id, parent, [], [], on_update, on_delete, match)
            fk.from_columns.append(src)
            fk.to_columns.append(dst)
        return [keys[k] for k in sorted(keys)]

    def indexes(self, table, database=None):
        result = []
        for _seq, name, unique, origin, partial in self._pragma_rows("index_list", table, database):
            info = self._pragma_rows("index_info", name, database)
            columns = [col for _seqno, _cid, col in sorted(info)]
            result.append(Index(name, bool(unique), origin, bool(partial), columns))
        return result

    def foreign_keys_enabled(self):
        return bool(self.one_value("PRAGMA foreign_keys"))

    def enable_foreign_keys(self, on=True):
        self.execute(f"PRAGMA foreign_keys = {1 if on else 0}")
        return self.foreign_keys_enabled()

    def integrity_check(self, max_errors=100, quick=False):
        """Problems reported by the engine; an empty list means the database is sound."""
        pragma = "quick_check" if quick else "integrity_check"
        messages = [msg for (msg,) in self._select_rows(f"PRAGMA {pragma}({int(max_errors)})")]
        if messages == ["ok"]:
            return []
        return messages

    def journal_mode(self, database="main"):
        return self.one_value(f"PRAGMA {quote_identifier(database)}.journal_mode")

    def set_journal_mode(self, mode, database="main"):
        mode = mode.upper()
        if mode not in _JOURNAL_MODES:
            raise ValueError(f"invalid journal mode {mode!r}")
        return self.one_value(f"PRAGMA {quote_identifier(database)}.journal_mode = {mode}")

    def schema_version(self, database="main"):
        return self.one_value(f"PRAGMA {quote_identifier(database)}.schema_version")

    def encoding(self):
        return self.one_value("PRAGMA encoding")
