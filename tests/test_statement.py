import ctypes
from typing import Optional

import pytest
import litebind
from litebind import ColumnType, CursorState, StmtStatus


def fill(conn, n=1000):
    conn.begin()
    with conn.prepare("INSERT INTO test (float_num, int_num, a_string) VALUES (:f, :i, :s)") as s:
        for i in range(n):
            assert s.execute(i * 3.14, i, "hello") == 1
    conn.commit()


def test_insert_with_statement(conn, test_table):
    s = conn.prepare("INSERT INTO test (float_num, int_num, a_string) VALUES (:f, :i, :s)")
    assert not s.is_readonly()
    assert s.bind_parameter_count() == 3
    assert s.bind_parameter_name(1) == ":f"
    assert s.bind_parameter_index(":s") == 3
    assert s.bind_parameter_index("s") == 3

    conn.begin()
    for i in range(1000):
        assert s.execute(i * 3.14, i, "hello") == 1
    conn.commit()
    s.finalize()

    with conn.prepare("SELECT COUNT(*) FROM test") as cs:
        assert cs.is_readonly()
        assert cs.step()
        assert cs.scan_column(0, int) == (1000, False)

    rs = conn.prepare(
        "SELECT float_num, int_num, a_string FROM test where a_string like ? ORDER BY int_num LIMIT 2", "hel%"
    )
    assert rs.column_count() == 3
    assert rs.column_name(1) == "int_num"

    assert rs.step()
    assert rs.scan_row(float, int, str) == (0.0, 0, "hello")
    assert rs.step()
    row = rs.named_scan_row(a_string=str, float_num=float, int_num=int)
    assert row == {"a_string": "hello", "float_num": 3.14, "int_num": 1}

    assert rs.status(StmtStatus.FULLSCAN_STEP) == 999
    assert rs.status(StmtStatus.SORT) == 1
    assert rs.status(StmtStatus.AUTOINDEX) == 0
    rs.finalize()


def test_named_and_positional_bind_match(conn, test_table):
    conn.execute("INSERT INTO test (float_num, int_num, a_string) VALUES (?, ?, ?)", 1.5, 7, "x")
    with conn.prepare("INSERT INTO test (float_num, int_num, a_string) VALUES (:f, :i, :s)") as s:
        s.bind({":f": 1.5, "i": 7, "s": "x"})
        assert not s.step()

    rows = list(conn.prepare("SELECT float_num, int_num, a_string FROM test ORDER BY id"))
    assert rows == [(1.5, 7, "x"), (1.5, 7, "x")]


def test_bind_by_index_and_name(conn):
    with conn.prepare("SELECT ?1, @b") as s:
        s.bind_by_index(1, "one")
        s.bind_by_name("b", 2)
        assert s.step()
        assert s.row() == ("one", 2)
        assert s.bind_parameter_name(2) == "@b"
        with pytest.raises(litebind.UnknownParameterError):
            s.bind_by_name("nope", 1)
        with pytest.raises(litebind.UnknownParameterError):
            s.bind_by_index(3, 1)


def test_positional_parameter_has_no_name(conn):
    with conn.prepare("SELECT ?, ?") as s:
        assert s.bind_parameter_name(1) == ""
        with pytest.raises(litebind.ProgrammingError):
            s.bind(1)
        with pytest.raises(litebind.ProgrammingError):
            s.bind(1, 2, 3)


def test_clear_bindings(conn):
    with conn.prepare("SELECT ?") as s:
        s.bind(5)
        s.clear_bindings()
        assert s.step()
        assert s.scan_column(0) == (None, True)


def test_scan_column(conn):
    with conn.prepare("select 1, null, 0") as s:
        assert s.step()
        assert s.scan_column(0, int) == (1, False)
        assert s.scan_column(1, int) == (0, True)
        assert s.scan_column(2, int) == (0, False)
        assert s.scan_column(1, Optional[int]) == (None, True)
        assert s.scan_column(1) == (None, True)


def test_named_scan_column(conn):
    with conn.prepare("select 1 as i1, null as i2, 0 as i3") as s:
        assert s.step()
        assert s.named_scan_column("i1", int) == (1, False)
        assert s.named_scan_column("i2", int) == (0, True)
        assert s.named_scan_column("i3", int) == (0, False)
        with pytest.raises(litebind.UnknownColumnError):
            s.named_scan_column("i4", int)
        with pytest.raises(litebind.UnknownColumnError):
            s.named_scan_row(i4=int)


def test_null_zero_values(conn):
    with conn.prepare("SELECT NULL") as s:
        assert s.step()
        assert s.scan_column(0, float) == (0.0, True)
        assert s.scan_column(0, str) == ("", True)
        assert s.scan_column(0, bytes) == (b"", True)
        assert s.scan_column(0, bool) == (False, True)
        assert s.scan_column(0, ctypes.c_int8) == (0, True)


def test_scan_row_count_mismatch(conn):
    with conn.prepare("SELECT 1, 2") as s:
        assert s.step()
        with pytest.raises(litebind.ProgrammingError):
            s.scan_row(int)


def test_introspection(conn, test_table):
    with conn.prepare("SELECT id, a_string AS s, 1 + 1 FROM test") as s:
        assert s.column_names() == ["id", "s", "1 + 1"]
        assert s.column_index("s") == 1
        assert s.column_decltype(1) == "TEXT"
        assert s.column_decltype(2) is None
        assert s.sql == "SELECT id, a_string AS s, 1 + 1 FROM test"
        with pytest.raises(litebind.UnknownColumnError):
            s.column_index("missing")
        with pytest.raises(litebind.UnknownColumnError):
            s.column_name(3)


def test_column_type_and_data_count(conn):
    with conn.prepare("SELECT 1, 1.5, 'a', x'00', NULL") as s:
        assert s.data_count() == 0
        assert s.step()
        assert s.data_count() == 5
        assert [s.column_type(i) for i in range(5)] == [
            ColumnType.INTEGER, ColumnType.FLOAT, ColumnType.TEXT, ColumnType.BLOB, ColumnType.NULL,
        ]


def test_mutation_has_no_columns(conn, test_table):
    with conn.prepare("DELETE FROM test") as s:
        assert s.column_count() == 0
        assert not s.is_readonly()


def test_expanded_sql(conn):
    with conn.prepare("SELECT ?, :name", 1, "x") as s:
        assert s.expanded_sql() == "SELECT 1, 'x'"


def test_cursor_states(conn):
    with conn.prepare("SELECT 1") as s:
        assert s.state is CursorState.BEFORE_FIRST
        assert s.step()
        assert s.state is CursorState.ON_ROW
        assert s.is_busy()
        assert not s.step()
        assert s.state is CursorState.EXHAUSTED
        assert not s.step()
        s.reset()
        assert s.state is CursorState.BEFORE_FIRST
        assert s.step()


def test_error_state_requires_reset(conn):
    conn.execute("CREATE TABLE u (x UNIQUE)")
    conn.execute("INSERT INTO u VALUES (1)")
    with conn.prepare("INSERT INTO u VALUES (?)", 1) as s:
        with pytest.raises(litebind.ConstraintError):
            s.step()
        assert s.state is CursorState.ERROR
        with pytest.raises(litebind.SQLError) as excinfo:
            s.step()
        assert excinfo.value.code == litebind.native.SQLITE_MISUSE
        s.bind(2)
        assert not s.step()


def test_no_row_before_step(conn):
    with conn.prepare("SELECT 1") as s:
        with pytest.raises(litebind.ProgrammingError):
            s.row()


def test_finalize_is_idempotent(conn):
    s = conn.prepare("SELECT 1")
    s.finalize()
    s.finalize()
    with pytest.raises(litebind.StatementFinalizedError):
        s.step()
    with pytest.raises(litebind.StatementFinalizedError):
        s.column_count()


def test_tail(conn):
    s = conn.prepare("SELECT 1; SELECT 2")
    assert s.tail.strip() == "SELECT 2"
    s.finalize()
    with conn.prepare("SELECT 1") as s:
        assert s.tail == ""


def test_empty_sql(conn):
    with pytest.raises(litebind.SQLError):
        conn.prepare("   -- nothing here")


def test_execute_rejects_rows(conn):
    with conn.prepare("SELECT 1") as s:
        with pytest.raises(litebind.ProgrammingError):
            s.execute()


def test_insert_and_exists(conn, test_table):
    with conn.prepare("INSERT INTO test (a_string) VALUES (?)") as s:
        assert s.insert("a") == 1
        assert s.insert("b") == 2
    with conn.prepare("SELECT 1 FROM test WHERE a_string = ?") as s:
        assert s.exists("a")
        assert not s.exists("z")


def test_iteration(conn, test_table):
    fill(conn, 5)
    with conn.prepare("SELECT int_num FROM test ORDER BY int_num") as s:
        assert [r[0] for r in s] == [0, 1, 2, 3, 4]


def test_statement_cache_reuse(tmp_path):
    conn = litebind.open(str(tmp_path / "cache_test.db"), stmt_cache_size=10)
    conn.execute("CREATE TABLE foo (id INTEGER)")

    sql = "SELECT * FROM foo WHERE id = ?"
    initial_prepares = conn._stats["prepare_count"]

    s = conn.cache_or_prepare(sql, 1)
    s.release()
    assert conn._stats["prepare_count"] == initial_prepares + 1

    s2 = conn.cache_or_prepare(sql)
    assert s2 is s
    assert conn._stats["cache_hit"] == 1
    assert s2.state is CursorState.BEFORE_FIRST
    s2.release()
    assert conn._stats["prepare_count"] == initial_prepares + 1
    conn.close()


def test_cache_eviction(tmp_path):
    conn = litebind.open(str(tmp_path / "eviction_test.db"), stmt_cache_size=2)
    for sql in ("SELECT 1", "SELECT 2", "SELECT 3"):
        conn.cache_or_prepare(sql).release()
    assert list(conn._stmt_cache) == ["SELECT 2", "SELECT 3"]
    assert conn._stats["cache_evict"] == 1

    before = conn._stats["prepare_count"]
    conn.cache_or_prepare("SELECT 1").release()
    assert conn._stats["prepare_count"] == before + 1
    conn.close()


def test_cache_disabled(conn):
    conn._stmt_cache_size = 0
    s = conn.cache_or_prepare("SELECT 1")
    s.release()
    assert s.finalized
    assert not conn._stmt_cache
