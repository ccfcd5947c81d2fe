# services/pairing.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from domain.errors import ConsistencyError
from domain.models import BYE, Standing
from services.standings import rank_standings

log = logging.getLogger(__name__)

POINTS_WEIGHT = 10
MATCH_WINS_WEIGHT = 3
DEFAULT_SEARCH_BUDGET = 50_000


@dataclass(frozen=True)
class Pairing:
    team1_id: str
    team2_id: str  # BYE when team1 sits out

    @property
    def is_bye(self) -> bool:
        return self.team2_id == BYE


def distance(a: Standing, b: Standing) -> int:
    return POINTS_WEIGHT * abs(a.points - b.points) + MATCH_WINS_WEIGHT * abs(a.match_wins - b.match_wins)


def _pick_bye(ranked: list[Standing]) -> Standing:
    """Lowest-ranked competitor that has not sat out yet; lowest overall if everyone has."""
    for s in reversed(ranked):
        if not s.had_bye:
            return s
    return ranked[-1]


def _preferences(a: Standing, pool: Sequence[Standing]) -> list[Standing]:
    eligible = [b for b in pool if b.competitor_id not in a.opponents]
    # sort is stable, so equal distances keep rank order
    return sorted(eligible, key=lambda b: distance(a, b))


class _Search:
    """Depth-first search over greedy preference order, bounded by `budget` steps."""

    def __init__(self, budget: int) -> None:
        self.budget = budget

    def run(self, pool: list[Standing]) -> Optional[list[Pairing]]:
        if not pool:
            return []
        self.budget -= 1
        if self.budget < 0:
            return None

        a, rest = pool[0], pool[1:]
        for b in _preferences(a, rest):
            tail = self.run([s for s in rest if s is not b])
            if tail is not None:
                return [Pairing(a.competitor_id, b.competitor_id)] + tail
            if self.budget < 0:
                return None
        return None


def _greedy(pool: list[Standing]) -> list[Pairing]:
    out: list[Pairing] = []
    remaining = list(pool)
    while remaining:
        a = remaining.pop(0)
        prefs = _preferences(a, remaining)
        if not prefs:
            log.warning("no eligible opponent for %s; assigning a forced bye", a.competitor_id)
            out.append(Pairing(a.competitor_id, BYE))
            continue
        b = prefs[0]
        remaining.remove(b)
        out.append(Pairing(a.competitor_id, b.competitor_id))
    return out


def _validate(pairings: list[Pairing], competitor_ids: list[str]) -> None:
    seen: list[str] = []
    for p in pairings:
        seen.append(p.team1_id)
        if not p.is_bye:
            seen.append(p.team2_id)
    if sorted(seen) != sorted(competitor_ids):
        raise ConsistencyError("pairings do not cover every competitor exactly once")


def generate_pairings(
    standings: Sequence[Standing],
    *,
    order: Optional[Sequence[str]] = None,
    search_budget: int = DEFAULT_SEARCH_BUDGET,
) -> list[Pairing]:
    """
    Swiss pairings for the next round.

    1. Odd field: one bye for the lowest-ranked competitor without a prior bye.
    2. Everyone else in ranking order; each takes the closest eligible opponent
       (10 * points gap + 3 * match-wins gap, never a previous opponent,
       earlier-ranked candidate on ties).
    3. If that greedy walk dead-ends, a bounded backtracking search over the
       same preference order looks for a rematch-free completion.
    4. Only when none is found does a competitor without eligible opponents
       receive a forced bye.

    Deterministic: identical standings always give identical pairings.
    """
    ids = [s.competitor_id for s in standings]
    if len(ids) < 2:
        raise ConsistencyError("at least two competitors are required to pair a round")
    if len(set(ids)) != len(ids):
        raise ConsistencyError("duplicate competitor in standings")

    ranked = rank_standings(standings, order)

    pairings: list[Pairing] = []
    if len(ranked) % 2 == 1:
        sitter = _pick_bye(ranked)
        ranked = [s for s in ranked if s is not sitter]
        pairings.append(Pairing(sitter.competitor_id, BYE))

    found = _Search(search_budget).run(ranked)
    if found is None:
        log.warning("no rematch-free pairing found for %d competitors; falling back to greedy", len(ranked))
        found = _greedy(ranked)

    pairings = found + pairings
    _validate(pairings, ids)
    return pairings
