import json

import pytest
from litebind import dbapi


def test_module_globals():
    assert dbapi.apilevel == "2.0"
    assert dbapi.paramstyle == "qmark"
    assert dbapi.sqlite_version.startswith("3.")
    assert dbapi.sqlite_version_info[0] == 3
    assert issubclass(dbapi.IntegrityError, dbapi.DatabaseError)
    assert issubclass(dbapi.DatabaseError, dbapi.Error)


def test_connect(db_path):
    conn = dbapi.connect(db_path)
    assert conn is not None
    conn.close()
    conn.close()
    with pytest.raises(dbapi.ProgrammingError):
        conn.cursor()


def test_ddl_and_insert(db_path):
    conn = dbapi.connect(db_path)
    cur = conn.cursor()

    cur.execute("CREATE TABLE foo (id INTEGER, name TEXT)")
    cur.execute("INSERT INTO foo VALUES (1, 'alice')")
    assert conn.in_transaction
    cur.execute("INSERT INTO foo VALUES (2, 'bob')")

    conn.commit()
    assert not conn.in_transaction
    conn.close()

    # Reopen and verify
    conn = dbapi.connect(db_path)
    cur = conn.cursor()
    cur.execute("SELECT * FROM foo ORDER BY id")
    rows = cur.fetchall()

    assert len(rows) == 2
    assert rows[0] == (1, "alice")
    assert rows[1] == (2, "bob")
    assert [d[0] for d in cur.description] == ["id", "name"]

    conn.close()


def test_uncommitted_changes_are_lost(db_path):
    conn = dbapi.connect(db_path)
    conn.execute("CREATE TABLE foo (id INTEGER)")
    conn.execute("INSERT INTO foo VALUES (1)")
    conn.close()

    conn = dbapi.connect(db_path)
    assert conn.execute("SELECT COUNT(*) FROM foo").fetchone() == (0,)
    conn.close()


def test_parameters(db_path):
    conn = dbapi.connect(db_path)
    cur = conn.cursor()
    cur.execute("CREATE TABLE foo (id INTEGER, val TEXT)")

    cur.execute("INSERT INTO foo VALUES (?, ?)", (1, "a"))
    cur.execute("INSERT INTO foo VALUES (:id, :val)", {"id": 2, "val": "b"})

    conn.commit()

    cur.execute("SELECT * FROM foo WHERE id = ?", (1,))
    assert cur.fetchone() == (1, "a")

    cur.execute("SELECT * FROM foo WHERE id = :target", {"target": 2})
    assert cur.fetchone() == (2, "b")

    # Same named parameter appearing twice binds once.
    cur.execute("SELECT id FROM foo WHERE id = :target OR id = :target ORDER BY id", {"target": 2})
    assert cur.fetchall() == [(2,)]

    with pytest.raises(dbapi.ProgrammingError):
        cur.execute("SELECT * FROM foo WHERE id = ?", (1, 2))

    conn.close()


def test_fetchmany(db_path):
    conn = dbapi.connect(db_path)
    cur = conn.cursor()
    cur.execute("CREATE TABLE foo (id INTEGER)")

    for i in range(10):
        cur.execute("INSERT INTO foo VALUES (?)", (i,))
    conn.commit()

    cur.execute("SELECT * FROM foo ORDER BY id")
    batch = cur.fetchmany(3)
    assert len(batch) == 3
    assert batch[0][0] == 0

    batch = cur.fetchmany(3)
    assert len(batch) == 3
    assert batch[0][0] == 3

    batch = cur.fetchmany(5)  # Remaining 4
    assert len(batch) == 4
    assert cur.fetchone() is None

    cur.execute("SELECT * FROM foo ORDER BY id")
    assert cur.fetchmany() == [(0,)]
    cur.arraysize = 4
    assert cur.fetchmany() == [(1,), (2,), (3,), (4,)]
    assert cur.fetchall() == [(5,), (6,), (7,), (8,), (9,)]
    assert cur.fetchmany() == []

    conn.close()


def test_types(db_path):
    conn = dbapi.connect(db_path)
    cur = conn.cursor()
    cur.execute("CREATE TABLE types (i INTEGER, f REAL, t TEXT, b BLOB, bool BOOLEAN, n TEXT)")

    blob_data = b"\x00\x01\x02"
    cur.execute("INSERT INTO types VALUES (?, ?, ?, ?, ?, ?)", (123, 1.23, "hello", blob_data, True, None))
    conn.commit()

    cur.execute("SELECT * FROM types")
    row = cur.fetchone()

    assert row[0] == 123
    assert isinstance(row[1], float)
    assert abs(row[1] - 1.23) < 0.0001
    assert row[2] == "hello"
    assert row[3] == blob_data
    assert row[4] == 1
    assert row[5] is None

    conn.close()


def test_rowcount_and_lastrowid(db_path):
    conn = dbapi.connect(db_path)
    cur = conn.cursor()
    cur.execute("CREATE TABLE foo (id INTEGER PRIMARY KEY, val TEXT)")
    cur.executemany("INSERT INTO foo (val) VALUES (?)", [("a",), ("b",), ("c",)])
    assert cur.rowcount == 3
    assert cur.lastrowid == 3

    cur.execute("UPDATE foo SET val = 'z' WHERE id > 1")
    assert cur.rowcount == 2

    cur.execute("SELECT * FROM foo")
    assert cur.rowcount == -1
    conn.close()


def test_rollback(db_path):
    conn = dbapi.connect(db_path)
    conn.execute("CREATE TABLE foo (id INTEGER)")
    conn.commit()
    conn.execute("INSERT INTO foo VALUES (1)")
    conn.rollback()
    assert conn.execute("SELECT COUNT(*) FROM foo").fetchone() == (0,)
    # Both are no-ops without an open transaction.
    conn.commit()
    conn.rollback()
    conn.close()


def test_autocommit(db_path):
    conn = dbapi.connect(db_path, isolation_level=None)
    conn.execute("CREATE TABLE foo (id INTEGER)")
    conn.execute("INSERT INTO foo VALUES (1)")
    assert not conn.in_transaction
    conn.close()

    conn = dbapi.connect(db_path)
    conn.execute("INSERT INTO foo VALUES (2)")
    assert conn.in_transaction
    conn.isolation_level = None
    assert not conn.in_transaction
    conn.close()

    conn = dbapi.connect(db_path)
    assert conn.execute("SELECT COUNT(*) FROM foo").fetchone() == (2,)
    with pytest.raises(ValueError):
        conn.isolation_level = "SOMETIMES"
    conn.close()


def test_executescript(db_path):
    conn = dbapi.connect(db_path)
    conn.executescript(
        """
        CREATE TABLE foo (id INTEGER);
        INSERT INTO foo VALUES (1);
        INSERT INTO foo VALUES (2);
        """
    )
    assert conn.execute("SELECT SUM(id) FROM foo").fetchone() == (3,)
    conn.close()


def test_one_statement_at_a_time(db_path):
    conn = dbapi.connect(db_path)
    with pytest.raises(dbapi.ProgrammingError):
        conn.execute("SELECT 1; SELECT 2")
    # Trailing comments are not a second statement.
    assert conn.execute("SELECT 1; -- done").fetchone() == (1,)
    conn.close()


def test_cursor_iteration_and_reuse(db_path):
    conn = dbapi.connect(db_path)
    cur = conn.cursor()
    cur.execute("CREATE TABLE foo (id INTEGER)")
    cur.executemany("INSERT INTO foo VALUES (?)", [(i,) for i in range(5)])
    cur.execute("SELECT id FROM foo ORDER BY id")
    assert cur.fetchone() == (0,)
    # Re-executing a half-read statement starts over.
    cur.execute("SELECT id FROM foo ORDER BY id")
    assert [r[0] for r in cur] == [0, 1, 2, 3, 4]
    cur.close()
    with pytest.raises(dbapi.ProgrammingError):
        cur.execute("SELECT 1")
    conn.close()


def test_context_manager(db_path):
    with dbapi.connect(db_path) as conn:
        conn.execute("CREATE TABLE foo (id INTEGER)")
        conn.execute("INSERT INTO foo VALUES (1)")

    with pytest.raises(RuntimeError):
        with dbapi.connect(db_path) as conn:
            conn.execute("INSERT INTO foo VALUES (2)")
            raise RuntimeError("boom")

    with dbapi.connect(db_path) as conn:
        assert conn.execute("SELECT id FROM foo").fetchall() == [(1,)]


def test_integrity_error(db_path):
    conn = dbapi.connect(db_path)
    conn.execute("CREATE TABLE foo (id INTEGER PRIMARY KEY)")
    conn.execute("INSERT INTO foo VALUES (1)")
    with pytest.raises(dbapi.IntegrityError):
        conn.execute("INSERT INTO foo VALUES (1)")
    conn.close()


def test_leading_comments_still_begin_transaction(db_path):
    conn = dbapi.connect(db_path)
    conn.execute("CREATE TABLE foo (id INTEGER)")
    conn.commit()
    conn.execute("/* note */ -- another\n  INSERT INTO foo VALUES (1)")
    assert conn.in_transaction
    conn.rollback()
    assert conn.execute("SELECT COUNT(*) FROM foo").fetchone() == (0,)
    # Only comments is no statement at all.
    assert conn.execute("-- nothing here").description is None
    conn.close()


def test_error_context_clips_large_params(db_path):
    conn = dbapi.connect(db_path)
    conn.execute("CREATE TABLE foo (id INTEGER PRIMARY KEY, body TEXT, data BLOB)")
    row = (1, "x" * 5000, b"\x01" * 5000)
    conn.execute("INSERT INTO foo VALUES (?, ?, ?)", row)
    with pytest.raises(dbapi.IntegrityError) as excinfo:
        conn.execute("INSERT INTO foo VALUES (?, ?, ?)", row)

    ctx = json.loads(str(excinfo.value).split("Context: ", 1)[1])
    params = ctx["params"]
    assert params[0] == 1
    assert len(params[1]) < 300
    assert params[2]["len"] == 5000
    assert len(params[2]["hex_prefix"]) == 128
    conn.close()


def test_error_includes_sql_and_code(db_path):
    conn = dbapi.connect(db_path)
    cur = conn.cursor()

    with pytest.raises(dbapi.OperationalError) as excinfo:
        cur.execute("SELEC 1")

    msg = str(excinfo.value)
    assert "Context:" in msg
    assert "native_code" in msg
    assert '"sql":' in msg

    conn.close()


def test_create_function(db_path):
    conn = dbapi.connect(db_path)
    conn.create_function("shout", 1, lambda s: s.upper())
    assert conn.execute("SELECT shout('hi')").fetchone() == ("HI",)
    conn.close()
