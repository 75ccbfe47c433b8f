from __future__ import annotations

import argparse
import os
import sqlite3


def _connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def list_databases(conn: sqlite3.Connection) -> list[sqlite3.Row]:
    return list(conn.execute("SELECT name, throughput FROM store_databases ORDER BY name").fetchall())


def list_containers(conn: sqlite3.Connection, database: str) -> list[sqlite3.Row]:
    return list(
        conn.execute(
            "SELECT name, key_paths FROM store_containers WHERE database_name = ? ORDER BY name",
            (database,),
        ).fetchall()
    )


def count_by_discriminator(
    conn: sqlite3.Connection, database: str, container: str
) -> list[tuple[str, int]]:
    cur = conn.execute(
        """
        SELECT COALESCE(json_extract(body, '$.discriminator'), '') AS d, COUNT(*) AS n
        FROM store_documents
        WHERE database_name = ? AND container_name = ?
        GROUP BY d ORDER BY d
        """,
        (database, container),
    )
    return [(r["d"], int(r["n"])) for r in cur.fetchall()]


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Inspect SQLite document store contents")
    p.add_argument("--db", default=os.path.join("data", "docrepo.sqlite3"))
    args = p.parse_args(argv)

    if not os.path.exists(args.db):
        print(f"No store at {args.db}.")
        return 1

    conn = _connect(args.db)
    try:
        databases = list_databases(conn)
        if not databases:
            print("No databases provisioned yet.")
            return 0
        for db in databases:
            print(f"Database {db['name']} (throughput: {db['throughput']})")
            for c in list_containers(conn, db["name"]):
                print(f"  Container {c['name']} key paths: {c['key_paths']}")
                for discriminator, n in count_by_discriminator(conn, db["name"], c["name"]):
                    print(f"    {discriminator or '<none>':<24} {n}")
        return 0
    finally:
        conn.close()


if __name__ == "__main__":
    raise SystemExit(main())
