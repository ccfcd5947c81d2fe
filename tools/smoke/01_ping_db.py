from __future__ import annotations

import os, sys
from dataclasses import asdict

HERE = os.path.dirname(__file__)
ROOT = os.path.abspath(os.path.join(HERE, "..", ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import asyncio
from config import load_config
from db.pool import DbPool, MySqlPoolConfig
from db.tx import get_cursor

async def main() -> None:
    cfg = load_config()

    db = DbPool()
    await db.start(MySqlPoolConfig(**asdict(cfg.mysql)))
    await db.ensure_schema()

    async with get_cursor(db.pool) as cur:
        await cur.execute("SELECT collection, COUNT(*) AS n FROM document GROUP BY collection;")
        rows = await cur.fetchall()
    await db.close()

    print("OK: DB pool ping succeeded, document table present.")
    for r in rows or []:
        print(f"  {r['collection']}: {r['n']}")

if __name__ == "__main__":
    asyncio.run(main())
