# db/tx.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Tuple

import aiomysql

ISOLATION_LEVELS = ("READ COMMITTED", "REPEATABLE READ", "SERIALIZABLE")


@asynccontextmanager
async def get_cursor(
    pool: aiomysql.Pool, *, dict_rows: bool = True
) -> AsyncIterator[aiomysql.Cursor]:
    """
    Acquire a cursor for a single autocommit statement (DictCursor by default).
    """
    cursor_cls = aiomysql.DictCursor if dict_rows else aiomysql.Cursor
    async with pool.acquire() as conn:
        async with conn.cursor(cursor_cls) as cur:
            yield cur


@asynccontextmanager
async def transaction(
    pool: aiomysql.Pool,
    *,
    dict_rows: bool = True,
    isolation: Optional[str] = None,
) -> AsyncIterator[Tuple[aiomysql.Connection, aiomysql.Cursor]]:
    """
    Runs statements inside a transaction.
    - Commits on success
    - Rolls back on exception

    Usage:
        async with transaction(pool, isolation="SERIALIZABLE") as (conn, cur):
            await cur.execute(...)
            ...
    """
    if isolation is not None and isolation not in ISOLATION_LEVELS:
        raise ValueError(f"unsupported isolation level: {isolation!r}")

    cursor_cls = aiomysql.DictCursor if dict_rows else aiomysql.Cursor

    async with pool.acquire() as conn:
        if isolation is not None:
            # applies to the next transaction on this connection only
            async with conn.cursor() as cur:
                await cur.execute(f"SET TRANSACTION ISOLATION LEVEL {isolation};")
        await conn.begin()
        try:
            async with conn.cursor(cursor_cls) as cur:
                yield conn, cur
            await conn.commit()
        except Exception:
            await conn.rollback()
            raise
