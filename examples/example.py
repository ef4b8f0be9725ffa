"""Example: basic litebind usage, core API and DB-API 2.0 interface.

Uses the system SQLite library; point at another build with:
    LITEBIND_SQLITE_LIB=/path/to/libsqlite3.so python example.py
"""

import os
import tempfile

import litebind
from litebind import dbapi


def main():
    # Create a temporary database file for this example.
    db_path = os.path.join(tempfile.gettempdir(), "litebind_example.db")

    conn = dbapi.connect(db_path)
    cursor = conn.cursor()

    # Create a table.
    cursor.execute("""
        CREATE TABLE users (
            id    INTEGER PRIMARY KEY,
            name  TEXT NOT NULL,
            email TEXT UNIQUE,
            photo BLOB
        )
    """)

    # Insert rows using positional parameters.
    users = [
        ("Alice", "alice@example.com"),
        ("Bob", "bob@example.com"),
        ("Carol", "carol@example.com"),
    ]
    cursor.executemany("INSERT INTO users (name, email) VALUES (?, ?)", users)
    conn.commit()

    # Query all users.
    cursor.execute("SELECT id, name, email FROM users ORDER BY id")
    print("All users:")
    for row in cursor.fetchall():
        print(f"  id={row[0]}  name={row[1]}  email={row[2]}")

    # Named parameter lookup.
    cursor.execute("SELECT name FROM users WHERE email = :email", {"email": "bob@example.com"})
    row = cursor.fetchone()
    print(f"\nLookup by email: {row[0]}")
    cursor.close()
    conn.close()

    # The core API: explicit transactions, typed scans, blob streaming.
    with litebind.open(db_path) as db:
        with db.transaction():
            db.execute("INSERT INTO users (name, email, photo) VALUES (?, ?, ?)",
                       "Dave", "dave@example.com", litebind.ZeroBlob(8))
            rowid = db.last_insert_rowid()

        with db.open_blob("users", "photo", rowid, writable=True) as blob:
            blob.write(b"\x89PNG")

        with db.prepare("SELECT name, length(photo) FROM users WHERE id = ?", rowid) as stmt:
            stmt.step()
            name, size = stmt.scan_row(str, int)
            print(f"\n{name} has a {size} byte photo")

        print(f"\nTotal users: {db.one_value('SELECT count(*) FROM users')}")

        # Schema introspection.
        print(f"\nTables: {db.tables()}")
        print("Columns:")
        for col in db.columns("users"):
            print(f"  {col.name} ({col.type})"
                  f"{'  PK' if col.pk else ''}"
                  f"{'  NOT NULL' if col.not_null else ''}")

    # Clean up.
    for suffix in ("", "-journal"):
        try:
            os.unlink(db_path + suffix)
        except FileNotFoundError:
            pass

    print("\nDone.")


if __name__ == "__main__":
    main()
