import pytest
import litebind
from sqlalchemy.dialects import registry

registry.register("sqlite.litebind", "litebind_sqlalchemy.dialect", "LitebindDialect")


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "test.db")


@pytest.fixture
def conn():
    c = litebind.open("", litebind.OpenFlag.READWRITE, litebind.OpenFlag.CREATE,
                      litebind.OpenFlag.FULLMUTEX, litebind.OpenFlag.URI)
    yield c
    c.close()


@pytest.fixture
def test_table(conn):
    conn.execute(
        "DROP TABLE IF EXISTS test;"
        "CREATE TABLE test (id INTEGER PRIMARY KEY AUTOINCREMENT,"
        " float_num REAL, int_num INTEGER, a_string TEXT); -- bim"
    )
    return "test"
