from __future__ import annotations

import asyncio
import logging

import pytest

from conftest import team_ids
from main import _forfeit_loop, forfeit_sweep


class FlakyEngine:
    """Fails the first sweep the way a dropped database connection would."""

    def __init__(self, stop_event: asyncio.Event) -> None:
        self.calls = 0
        self._stop = stop_event

    async def active_stages(self):
        self.calls += 1
        if self.calls == 1:
            raise ConnectionError("lost connection to MySQL server")
        self._stop.set()
        return []


@pytest.mark.asyncio
async def test_forfeit_loop_survives_a_failed_sweep(caplog):
    stop = asyncio.Event()
    engine = FlakyEngine(stop)

    with caplog.at_level(logging.ERROR, logger="main"):
        await asyncio.wait_for(_forfeit_loop(engine, 0, stop), timeout=5)

    assert engine.calls == 2
    assert "forfeit sweep failed" in caplog.text


@pytest.mark.asyncio
async def test_forfeit_sweep_resolves_elapsed_rounds(engine, clock):
    started = await engine.start_stage(tournament_id="t1", competitors=team_ids(4), round_count=3)
    assert await forfeit_sweep(engine) == 0

    clock.advance(days=8)
    assert await forfeit_sweep(engine) == 2
    status = await engine.check_round_completion(stage_id=started.stage.id)
    assert status.forfeited_matches == 2
