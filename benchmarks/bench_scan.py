import os
import sys
import tempfile
import time

import litebind
from litebind import dbapi


def setup(db_path, count):
    conn = litebind.open(db_path)
    conn.execute("DROP TABLE IF EXISTS bench")
    conn.execute("CREATE TABLE bench (id INTEGER PRIMARY KEY, float_num REAL, int_num INTEGER, a_string TEXT)")

    start_time = time.perf_counter()
    with conn.transaction():
        with conn.prepare("INSERT INTO bench (float_num, int_num, a_string) VALUES (?, ?, ?)") as s:
            for i in range(count):
                s.execute(i * 3.14, i, "hello")
    end_time = time.perf_counter()
    print(f"Insert {count} rows: {end_time - start_time:.4f}s")
    return conn


def bench_scan(conn, count):
    start_time = time.perf_counter()
    with conn.prepare("SELECT float_num, int_num, a_string FROM bench") as s:
        n = 0
        while s.step():
            s.scan_row(float, int, str)
            n += 1
    end_time = time.perf_counter()
    print(f"Scan {count} rows: {end_time - start_time:.4f}s")
    assert n == count


def bench_named_scan(conn, count):
    start_time = time.perf_counter()
    with conn.prepare("SELECT float_num, int_num, a_string FROM bench") as s:
        n = 0
        while s.step():
            s.named_scan_row(a_string=str, float_num=float, int_num=int)
            n += 1
    end_time = time.perf_counter()
    print(f"Named scan {count} rows: {end_time - start_time:.4f}s")
    assert n == count


def bench_fetch(db_path, count):
    conn = dbapi.connect(db_path)
    cur = conn.cursor()

    start_time = time.perf_counter()
    cur.execute("SELECT * FROM bench")
    rows = cur.fetchall()
    end_time = time.perf_counter()
    print(f"Fetchall {count} rows: {end_time - start_time:.4f}s")
    assert len(rows) == count

    start_time = time.perf_counter()
    cur.execute("SELECT * FROM bench")
    total = 0
    while True:
        batch = cur.fetchmany(1000)
        if not batch:
            break
        total += len(batch)
    end_time = time.perf_counter()
    print(f"Fetchmany(1000) {count} rows: {end_time - start_time:.4f}s")
    assert total == count
    conn.close()


def run_benchmark(count=100000):
    db_path = os.path.join(tempfile.gettempdir(), "litebind_bench_scan.db")
    if os.path.exists(db_path):
        os.remove(db_path)

    print(f"SQLite {litebind.version()}")
    conn = setup(db_path, count)
    bench_scan(conn, count)
    bench_named_scan(conn, count)
    conn.close()
    bench_fetch(db_path, count)

    if os.path.exists(db_path):
        os.remove(db_path)


if __name__ == "__main__":
    run_benchmark(int(sys.argv[1]) if len(sys.argv) > 1 else 100000)
