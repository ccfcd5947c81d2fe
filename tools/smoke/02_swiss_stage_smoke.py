from __future__ import annotations

import os, sys, uuid
from dataclasses import asdict

HERE = os.path.dirname(__file__)
ROOT = os.path.abspath(os.path.join(HERE, "..", ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import asyncio
from config import load_config
from db.pool import DbPool, MySqlPoolConfig
from repositories.mysql_store import MySqlStore
from services.tournament_engine import TournamentEngine

async def main() -> None:
    cfg = load_config()

    run_id = os.getenv("SMOKE_RUN_ID") or uuid.uuid4().hex[:8]
    tournament_id = f"smoke-{run_id}"

    db = DbPool()
    await db.start(MySqlPoolConfig(**asdict(cfg.mysql)))
    await db.ensure_schema()

    engine = TournamentEngine(MySqlStore(db))
    teams = [f"{tournament_id}-team{i}" for i in range(1, 8)]

    started = await engine.start_stage(tournament_id=tournament_id, competitors=teams, round_count=3)
    stage_id = started.stage.id
    print(f"OK: stage {stage_id} with {len(started.matches)} round-1 matches")

    for m in started.matches:
        if not m.is_bye:
            await engine.record_match_result(match_id=m.id, team1_score=13, team2_score=7)
    print("OK: round 1 results recorded")

    nxt = await engine.advance_round(stage_id=stage_id)
    print(f"OK: advanced to round {nxt.round.round_no}: " + ", ".join(m.code for m in nxt.matches))

    stage = await engine.revert_to_round(stage_id=stage_id, round_no=1)
    print(f"OK: reverted to round {stage.current_round}")

    for s in await engine.get_standings(stage_id=stage_id):
        print(f"  {s.competitor_id}: {s.points} pts, BH {s.buchholz}")

    await db.close()
    print(f"OK: smoke run {run_id} done (clean up with SMOKE_RUN_ID={run_id} 99_cleanup_smoke.py)")

if __name__ == "__main__":
    asyncio.run(main())
