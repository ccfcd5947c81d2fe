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

    run_id = os.getenv("SMOKE_RUN_ID")
    if not run_id:
        raise RuntimeError("Set SMOKE_RUN_ID to the run_id you want to clean up.")

    db = DbPool()
    await db.start(MySqlPoolConfig(**asdict(cfg.mysql)))

    tournament_id = f"smoke-{run_id}"
    statements = [
        # rounds carry only stage_id, so they go before their stages
        ("DELETE r FROM document r JOIN document s "
         "ON s.collection='stages' AND JSON_UNQUOTE(JSON_EXTRACT(r.body,'$.stage_id'))=s.doc_id "
         "WHERE r.collection='rounds' AND JSON_UNQUOTE(JSON_EXTRACT(s.body,'$.tournament_id'))=%s;", (tournament_id,)),
        ("DELETE FROM document WHERE collection IN ('matches','stages','brackets') "
         "AND JSON_UNQUOTE(JSON_EXTRACT(body,'$.tournament_id'))=%s;", (tournament_id,)),
    ]

    async with get_cursor(db.pool, dict_rows=False) as cur:
        for sql, params in statements:
            await cur.execute(sql, params)
            print(f"OK: {cur.rowcount} rows affected")

    await db.close()
    print(f"OK: cleanup done for run_id={run_id}")

if __name__ == "__main__":
    asyncio.run(main())
