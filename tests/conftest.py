from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from repositories.store import MemoryStore
from services.notifications import EngineEvent
from services.tournament_engine import TournamentEngine

T0 = datetime(2025, 3, 3, 18, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self) -> None:
        self.events: list[EngineEvent] = []

    async def notify(self, event: EngineEvent) -> None:
        self.events.append(event)


def team_ids(n: int) -> list[str]:
    return [f"team{i:02d}" for i in range(1, n + 1)]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def engine(store: MemoryStore, notifier: RecordingNotifier, clock: FakeClock) -> TournamentEngine:
    return TournamentEngine(store, notifier=notifier, window_days=7, playoff_best_of=3, clock=clock)
