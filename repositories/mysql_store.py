# repositories/mysql_store.py
from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence, TypeVar

import aiomysql

from db.pool import DbPool
from db.tx import get_cursor, transaction
from domain.errors import ConcurrencyConflict
from repositories.store import Doc, DocumentStore, Transaction, WriteOp

log = logging.getLogger(__name__)

T = TypeVar("T")

# ER_LOCK_DEADLOCK, ER_LOCK_WAIT_TIMEOUT, ER_DUP_ENTRY
_CONFLICT_CODES = {1213, 1205, 1062}


def to_json(v: Any) -> str:
    return json.dumps(v, separators=(",", ":"), ensure_ascii=False)


def _body(raw: Any) -> Doc:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    return json.loads(raw) if isinstance(raw, str) else dict(raw)


def _where_sql(where: Mapping[str, Any]) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    for key, value in where.items():
        clauses.append("JSON_CONTAINS(body, %s, %s)")
        params.extend([to_json(value), f"$.{key}"])
    return ("".join(f" AND {c}" for c in clauses), params)


def _is_conflict(exc: BaseException) -> bool:
    args = getattr(exc, "args", ())
    return bool(args) and isinstance(args[0], int) and args[0] in _CONFLICT_CODES


class MySqlTransaction(Transaction):
    def __init__(self, cur: aiomysql.Cursor) -> None:
        super().__init__()
        self._cur = cur
        self.read_versions: dict[tuple[str, str], int] = {}

    async def _load(self, collection: str, doc_id: str) -> Optional[Doc]:
        await self._cur.execute(
            """
            SELECT doc_id, body, version
            FROM document
            WHERE collection=%s AND doc_id=%s
            FOR UPDATE;
            """,
            (collection, doc_id),
        )
        row = await self._cur.fetchone()
        self.read_versions.setdefault((collection, doc_id), int(row["version"]) if row else 0)
        return _body(row["body"]) if row else None

    async def _load_where(self, collection: str, where: Mapping[str, Any]) -> dict[str, Doc]:
        extra, params = _where_sql(where)
        await self._cur.execute(
            f"""
            SELECT doc_id, body, version
            FROM document
            WHERE collection=%s{extra}
            FOR UPDATE;
            """,
            (collection, *params),
        )
        out: dict[str, Doc] = {}
        for row in await self._cur.fetchall() or []:
            doc_id = str(row["doc_id"])
            self.read_versions.setdefault((collection, doc_id), int(row["version"]))
            out[doc_id] = _body(row["body"])
        return out

    async def flush(self) -> None:
        for op in self.pending_writes:
            await _write(self._cur, op, self.read_versions.get((op.collection, op.doc_id)))


async def _write(cur: aiomysql.Cursor, op: WriteOp, expected_version: Optional[int]) -> None:
    if op.kind == "delete":
        await cur.execute(
            "DELETE FROM document WHERE collection=%s AND doc_id=%s;",
            (op.collection, op.doc_id),
        )
        return

    if op.kind == "update":
        await cur.execute(
            """
            UPDATE document
            SET body=JSON_MERGE_PATCH(body, %s), version=version+1
            WHERE collection=%s AND doc_id=%s;
            """,
            (to_json(op.data or {}), op.collection, op.doc_id),
        )
        if cur.rowcount == 0:
            raise KeyError(f"{op.collection}/{op.doc_id} does not exist")
        return

    if not expected_version:
        await cur.execute(
            """
            INSERT INTO document (collection, doc_id, body, version)
            VALUES (%s, %s, %s, 1);
            """,
            (op.collection, op.doc_id, to_json(op.data or {})),
        )
        return

    await cur.execute(
        """
        UPDATE document
        SET body=%s, version=version+1
        WHERE collection=%s AND doc_id=%s AND version=%s;
        """,
        (to_json(op.data or {}), op.collection, op.doc_id, expected_version),
    )
    if cur.rowcount == 0:
        raise ConcurrencyConflict(f"{op.collection}/{op.doc_id} changed during the transaction")


class MySqlStore(DocumentStore):
    """
    Document store on one InnoDB table (see db/schema.sql).
    Transactions run at SERIALIZABLE and lock what they read; deadlocks and lock
    wait timeouts surface as ConcurrencyConflict so callers can retry.
    """

    def __init__(self, db: DbPool) -> None:
        self._db = db

    @property
    def pool(self) -> aiomysql.Pool:
        return self._db.pool

    async def get(self, collection: str, doc_id: str) -> Optional[Doc]:
        async with get_cursor(self.pool, dict_rows=True) as cur:
            await cur.execute(
                "SELECT body FROM document WHERE collection=%s AND doc_id=%s;",
                (collection, doc_id),
            )
            row = await cur.fetchone()
            return _body(row["body"]) if row else None

    async def query(self, collection: str, where: Mapping[str, Any] | None = None) -> list[Doc]:
        extra, params = _where_sql(dict(where or {}))
        async with get_cursor(self.pool, dict_rows=True) as cur:
            await cur.execute(
                f"SELECT body FROM document WHERE collection=%s{extra};",
                (collection, *params),
            )
            rows = await cur.fetchall()
            return [_body(r["body"]) for r in rows or []]

    async def commit_batch(self, ops: Sequence[WriteOp]) -> None:
        try:
            async with transaction(self.pool, dict_rows=True, isolation="SERIALIZABLE") as (_conn, cur):
                for op in ops:
                    if op.kind == "set":
                        await cur.execute(
                            """
                            INSERT INTO document (collection, doc_id, body, version)
                            VALUES (%s, %s, %s, 1)
                            ON DUPLICATE KEY UPDATE body=VALUES(body), version=version+1;
                            """,
                            (op.collection, op.doc_id, to_json(op.data or {})),
                        )
                    else:
                        await _write(cur, op, None)
        except aiomysql.MySQLError as e:
            if _is_conflict(e):
                raise ConcurrencyConflict(str(e)) from e
            raise

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        try:
            async with transaction(self.pool, dict_rows=True, isolation="SERIALIZABLE") as (_conn, cur):
                tx = MySqlTransaction(cur)
                result = await fn(tx)
                await tx.flush()
        except aiomysql.MySQLError as e:
            if _is_conflict(e):
                log.info("transaction conflict: %s", e)
                raise ConcurrencyConflict(str(e)) from e
            raise
        return result
