from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Mapping, Optional, Sequence, TypeVar

from docrepo.errors import (
    HTTP_BAD_REQUEST,
    HTTP_CONFLICT,
    HTTP_PRECONDITION_FAILED,
    NotFoundError,
    StoreError,
)
from docrepo.infrastructure.partition_keys import PartitionKey

from .base import (
    ETAG_FIELD,
    ID_FIELD,
    TIMESTAMP_FIELD,
    ContainerHandle,
    DatabaseHandle,
    Document,
    QueryPage,
    StoreClient,
    StoreResponse,
    check_document_key,
    new_etag,
    next_timestamp,
    query_diagnostics,
)
from .memory import QUERY_ITEM_CHARGE, QUERY_PAGE_CHARGE, READ_CHARGE, WRITE_CHARGE, parse_continuation
from .query import Query

R = TypeVar("R")


def _encode_key(partition_key: PartitionKey) -> str:
    return json.dumps(list(partition_key.values))


def _decode_key(raw: str) -> PartitionKey:
    return PartitionKey(tuple(json.loads(raw)))


class SqliteStoreClient(StoreClient):
    """SQLite implementation of :class:`StoreClient`.

    Documents are stored as JSON text keyed by database, container,
    partition key and id. Blocking sqlite3 calls run in worker threads and
    share one connection guarded by a lock, so the connection must be
    opened with ``check_same_thread=False`` (see :meth:`connect`).

    Example:
        >>> import asyncio
        >>> client = SqliteStoreClient.connect(":memory:")
        >>> db = asyncio.run(client.create_database("app", throughput=400))
        >>> asyncio.run(client.list_databases())
        ['app']
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.Lock()
        self._conn.execute("PRAGMA foreign_keys = ON;")
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS store_databases (
                name TEXT PRIMARY KEY,
                throughput INTEGER
            )
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS store_containers (
                database_name TEXT NOT NULL,
                name TEXT NOT NULL,
                key_paths TEXT NOT NULL,
                PRIMARY KEY (database_name, name),
                FOREIGN KEY (database_name) REFERENCES store_databases(name)
            )
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS store_documents (
                database_name TEXT NOT NULL,
                container_name TEXT NOT NULL,
                partition_key TEXT NOT NULL,
                item_id TEXT NOT NULL,
                body TEXT NOT NULL,
                etag TEXT NOT NULL,
                ts INTEGER NOT NULL,
                PRIMARY KEY (database_name, container_name, partition_key, item_id)
            )
            """
        )
        self._conn.commit()

    @classmethod
    def connect(cls, path: str | Path) -> SqliteStoreClient:
        return cls(sqlite3.connect(str(path), timeout=30.0, check_same_thread=False))

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def run_locked(self, fn: Callable[[sqlite3.Connection], R]) -> R:
        with self._lock:
            return fn(self._conn)

    async def run(self, fn: Callable[[sqlite3.Connection], R]) -> R:
        return await asyncio.to_thread(self.run_locked, fn)

    async def list_databases(self) -> list[str]:
        def _list(conn: sqlite3.Connection) -> list[str]:
            rows = conn.execute("SELECT name FROM store_databases ORDER BY rowid").fetchall()
            return [r[0] for r in rows]

        return await self.run(_list)

    async def create_database(self, name: str, throughput: Optional[int] = None) -> SqliteDatabase:
        def _create(conn: sqlite3.Connection) -> None:
            try:
                conn.execute(
                    "INSERT INTO store_databases (name, throughput) VALUES (?, ?)",
                    (name, throughput),
                )
            except sqlite3.IntegrityError:
                raise StoreError(f"Database {name} already exists", status_code=HTTP_CONFLICT) from None
            conn.commit()

        await self.run(_create)
        return SqliteDatabase(self, name)

    async def get_database(self, name: str) -> SqliteDatabase:
        row = await self.run(
            lambda conn: conn.execute(
                "SELECT 1 FROM store_databases WHERE name = ?", (name,)
            ).fetchone()
        )
        if row is None:
            raise NotFoundError(f"Database {name} not found")
        return SqliteDatabase(self, name)


class SqliteDatabase(DatabaseHandle):
    def __init__(self, client: SqliteStoreClient, name: str) -> None:
        self._client = client
        self.name = name

    async def list_containers(self) -> list[str]:
        def _list(conn: sqlite3.Connection) -> list[str]:
            rows = conn.execute(
                "SELECT name FROM store_containers WHERE database_name = ? ORDER BY rowid",
                (self.name,),
            ).fetchall()
            return [r[0] for r in rows]

        return await self._client.run(_list)

    async def create_container(self, name: str, key_paths: Sequence[str]) -> SqliteContainer:
        paths = list(key_paths)

        def _create(conn: sqlite3.Connection) -> None:
            try:
                conn.execute(
                    "INSERT INTO store_containers (database_name, name, key_paths) VALUES (?, ?, ?)",
                    (self.name, name, json.dumps(paths)),
                )
            except sqlite3.IntegrityError as exc:
                if "FOREIGN KEY" in str(exc).upper():
                    raise NotFoundError(f"Database {self.name} not found") from None
                raise StoreError(
                    f"Container {name} already exists", status_code=HTTP_CONFLICT
                ) from None
            conn.commit()

        await self._client.run(_create)
        return SqliteContainer(self._client, self.name, name, paths)

    async def get_container(self, name: str) -> SqliteContainer:
        row = await self._client.run(
            lambda conn: conn.execute(
                "SELECT key_paths FROM store_containers WHERE database_name = ? AND name = ?",
                (self.name, name),
            ).fetchone()
        )
        if row is None:
            raise NotFoundError(f"Container {name} not found in database {self.name}")
        return SqliteContainer(self._client, self.name, name, json.loads(row[0]))


class SqliteContainer(ContainerHandle):
    def __init__(
        self, client: SqliteStoreClient, database_name: str, name: str, key_paths: Sequence[str]
    ) -> None:
        self._client = client
        self._database_name = database_name
        self.name = name
        self.key_paths = tuple(key_paths)

    def _existing(
        self, conn: sqlite3.Connection, partition_key: PartitionKey, item_id: str
    ) -> Optional[tuple[str, str, int]]:
        return conn.execute(
            """
            SELECT body, etag, ts FROM store_documents
            WHERE database_name = ? AND container_name = ? AND partition_key = ? AND item_id = ?
            """,
            (self._database_name, self.name, _encode_key(partition_key), item_id),
        ).fetchone()

    def _write(
        self,
        conn: sqlite3.Connection,
        document: Mapping[str, Any],
        partition_key: PartitionKey,
        previous_ts: int,
    ) -> Document:
        stored = dict(document)
        stored[ETAG_FIELD] = new_etag()
        stored[TIMESTAMP_FIELD] = next_timestamp(previous_ts)
        conn.execute(
            """
            INSERT OR REPLACE INTO store_documents
                (database_name, container_name, partition_key, item_id, body, etag, ts)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                self._database_name,
                self.name,
                _encode_key(partition_key),
                str(stored[ID_FIELD]),
                json.dumps(stored, default=str),
                stored[ETAG_FIELD],
                stored[TIMESTAMP_FIELD],
            ),
        )
        return stored

    def _validate(self, document: Mapping[str, Any], partition_key: PartitionKey) -> str:
        item_id = document.get(ID_FIELD)
        if not item_id:
            raise StoreError("Document is missing an 'id'", status_code=HTTP_BAD_REQUEST)
        check_document_key(document, partition_key, self.key_paths)
        return str(item_id)

    async def upsert(
        self, document: Mapping[str, Any], partition_key: PartitionKey, *, if_match: Optional[str] = None
    ) -> StoreResponse:
        item_id = self._validate(document, partition_key)

        def _upsert(conn: sqlite3.Connection) -> tuple[Document, bool]:
            row = self._existing(conn, partition_key, item_id)
            if if_match and (row is None or row[1] != if_match):
                raise StoreError(
                    f"Precondition failed for item {item_id}: etag {if_match} is not current",
                    status_code=HTTP_PRECONDITION_FAILED,
                )
            stored = self._write(conn, document, partition_key, row[2] if row else 0)
            conn.commit()
            return stored, row is not None

        stored, replaced = await self._client.run(_upsert)
        return StoreResponse(
            status_code=200 if replaced else 201,
            document=stored,
            etag=stored[ETAG_FIELD],
            diagnostics=f"upsert {self.name}/{partition_key}/{item_id}",
            request_charge=WRITE_CHARGE,
        )

    async def read(self, item_id: str, partition_key: PartitionKey) -> StoreResponse:
        row = await self._client.run(lambda conn: self._existing(conn, partition_key, item_id))
        if row is None:
            raise NotFoundError(f"Item {item_id} not found in partition {partition_key}")
        return StoreResponse(
            status_code=200,
            document=json.loads(row[0]),
            etag=row[1],
            diagnostics=f"read {self.name}/{partition_key}/{item_id}",
            request_charge=READ_CHARGE,
        )

    async def delete(self, item_id: str, partition_key: PartitionKey) -> StoreResponse:
        def _delete(conn: sqlite3.Connection) -> int:
            cur = conn.execute(
                """
                DELETE FROM store_documents
                WHERE database_name = ? AND container_name = ? AND partition_key = ? AND item_id = ?
                """,
                (self._database_name, self.name, _encode_key(partition_key), item_id),
            )
            conn.commit()
            return cur.rowcount

        if await self._client.run(_delete) == 0:
            raise NotFoundError(f"Item {item_id} not found in partition {partition_key}")
        return StoreResponse(
            status_code=204,
            diagnostics=f"delete {self.name}/{partition_key}/{item_id}",
            request_charge=WRITE_CHARGE,
        )

    async def execute_batch(
        self, documents: Sequence[Mapping[str, Any]], partition_key: PartitionKey
    ) -> StoreResponse:
        for document in documents:
            self._validate(document, partition_key)

        def _batch(conn: sqlite3.Connection) -> list[Document]:
            written: list[Document] = []
            try:
                for document in documents:
                    row = self._existing(conn, partition_key, str(document[ID_FIELD]))
                    written.append(self._write(conn, document, partition_key, row[2] if row else 0))
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
            return written

        written = await self._client.run(_batch)
        return StoreResponse(
            status_code=200,
            documents=written,
            diagnostics=f"batch {self.name}/{partition_key} operations={len(written)}",
            request_charge=WRITE_CHARGE * len(written),
        )

    async def query(
        self,
        query: Query,
        partition_key: Optional[PartitionKey] = None,
        *,
        page_size: int = 100,
        continuation_token: Optional[str] = None,
    ) -> AsyncIterator[QueryPage]:
        if page_size < 1:
            raise StoreError("page_size must be positive", status_code=HTTP_BAD_REQUEST)
        offset = parse_continuation(continuation_token)

        def _scan(conn: sqlite3.Connection) -> list[tuple[str, str]]:
            sql = (
                "SELECT partition_key, body FROM store_documents "
                "WHERE database_name = ? AND container_name = ?"
            )
            params: list[Any] = [self._database_name, self.name]
            if partition_key is not None:
                sql += " AND partition_key = ?"
                params.append(_encode_key(partition_key))
            return conn.execute(sql, params).fetchall()

        rows = await self._client.run(_scan)
        partitions = {_decode_key(r[0]) for r in rows}
        results = query.apply([json.loads(r[1]) for r in rows])
        diagnostics = query_diagnostics(len(partitions), scoped=partition_key is not None)

        while True:
            items = [dict(doc) for doc in results[offset : offset + page_size]]
            offset += len(items)
            token = str(offset) if offset < len(results) else None
            yield QueryPage(
                items=items,
                diagnostics=diagnostics,
                request_charge=QUERY_PAGE_CHARGE + QUERY_ITEM_CHARGE * len(items),
                continuation_token=token,
            )
            if token is None:
                return
