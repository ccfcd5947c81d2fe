# services/standings.py
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable, Mapping, Optional, Sequence

from domain.enums import MatchState
from domain.errors import ConsistencyError, ValidationError
from domain.models import BYE, Match, Standing

log = logging.getLogger(__name__)

POINTS_FOR_WIN = 3
BYE_GAME_WINS = 2


def zeroed(competitor_ids: Iterable[str]) -> list[Standing]:
    return [Standing(competitor_id=c) for c in competitor_ids]


def copy_standing(s: Standing) -> Standing:
    return replace(s, opponents=list(s.opponents))


def ranking_key(s: Standing) -> tuple[int, ...]:
    """
    Sort key, best first:
      points, match wins, game wins (desc)
      game losses, match losses (asc)
      no round lost at all ranks above any round lost
      round differential, Buchholz (desc)
    """
    return (
        -s.points,
        -s.match_wins,
        -s.game_wins,
        s.game_losses,
        s.match_losses,
        0 if s.rounds_lost == 0 else 1,
        -s.round_differential,
        -s.buchholz,
    )


def refresh_buchholz(standings: Sequence[Standing]) -> None:
    """Buchholz = sum of every real opponent's current points."""
    points = {s.competitor_id: s.points for s in standings}
    for s in standings:
        total = 0
        for opp in s.opponents:
            if opp == BYE:
                continue
            if opp not in points:
                raise ConsistencyError(f"{s.competitor_id} has opponent {opp} with no standing")
            total += points[opp]
        s.buchholz = total


def rank_standings(standings: Sequence[Standing], order: Optional[Sequence[str]] = None) -> list[Standing]:
    """
    Return copies of `standings`, Buchholz refreshed, sorted by ranking_key.
    Full ties keep the position given by `order` (defaults to the input order).
    """
    out = [copy_standing(s) for s in standings]
    refresh_buchholz(out)

    position = {cid: i for i, cid in enumerate(order or [s.competitor_id for s in standings])}
    fallback = len(position)
    out.sort(key=lambda s: (ranking_key(s), position.get(s.competitor_id, fallback)))
    return out


def _standing(by_id: Mapping[str, Standing], competitor_id: Optional[str], match: Match) -> Standing:
    s = by_id.get(competitor_id or "")
    if s is None:
        raise ConsistencyError(f"match {match.code} references {competitor_id!r} with no standing")
    return s


def _games_and_rounds(match: Match) -> tuple[int, int, int, int]:
    """(team1 games, team2 games, team1 rounds, team2 rounds) for a played match."""
    if match.map_results:
        g1 = sum(1 for m in match.map_results if m.team1_score > m.team2_score)
        g2 = sum(1 for m in match.map_results if m.team2_score > m.team1_score)
        r1 = sum(m.team1_score for m in match.map_results)
        r2 = sum(m.team2_score for m in match.map_results)
        return g1, g2, r1, r2

    s1, s2 = match.team1_score, match.team2_score
    g1 = 1 if s1 > s2 else 0
    g2 = 1 if s2 > s1 else 0
    return g1, g2, s1, s2


def apply_match(by_id: Mapping[str, Standing], match: Match) -> None:
    """Fold one completed (or forfeited, or bye) match into the standings in place."""
    if not match.is_complete:
        raise ConsistencyError(f"match {match.code} is not complete")

    if match.is_bye:
        sitter = match.team1_id if match.team2_id == BYE else match.team2_id
        s = _standing(by_id, sitter, match)
        s.points += POINTS_FOR_WIN
        s.match_wins += 1
        s.game_wins += BYE_GAME_WINS
        s.opponents.append(BYE)
        return

    a = _standing(by_id, match.team1_id, match)
    b = _standing(by_id, match.team2_id, match)

    if match.state == MatchState.FORFEITED:
        # recorded as a 1-1 draw: opponents only
        a.opponents.append(b.competitor_id)
        b.opponents.append(a.competitor_id)
        return

    if match.winner_id not in (match.team1_id, match.team2_id):
        raise ConsistencyError(f"match {match.code} is complete without a valid winner")

    g1, g2, r1, r2 = _games_and_rounds(match)
    a.game_wins += g1
    a.game_losses += g2
    b.game_wins += g2
    b.game_losses += g1
    a.rounds_won += r1
    a.rounds_lost += r2
    b.rounds_won += r2
    b.rounds_lost += r1

    winner, loser = (a, b) if match.winner_id == a.competitor_id else (b, a)
    winner.points += POINTS_FOR_WIN
    winner.match_wins += 1
    loser.match_losses += 1

    a.opponents.append(b.competitor_id)
    b.opponents.append(a.competitor_id)


def apply_to_standings(
    standings: Sequence[Standing], matches: Iterable[Match], order: Optional[Sequence[str]] = None
) -> list[Standing]:
    """Incremental update: fold `matches` into copies of `standings` and re-rank."""
    out = [copy_standing(s) for s in standings]
    by_id = {s.competitor_id: s for s in out}
    for m in matches:
        apply_match(by_id, m)
    return rank_standings(out, order)


def recompute_standings(competitor_ids: Sequence[str], matches: Iterable[Match]) -> list[Standing]:
    """
    Rebuild standings from scratch: zeroed standings for every competitor, then
    every completed match folded in (round_no, match_no) order.
    """
    played = sorted((m for m in matches if m.is_complete), key=lambda m: (m.round_no, m.match_no))
    out = zeroed(competitor_ids)
    by_id = {s.competitor_id: s for s in out}
    for m in played:
        apply_match(by_id, m)
    log.debug("recomputed standings for %d competitors from %d matches", len(out), len(played))
    return rank_standings(out, competitor_ids)


def qualifiers(standings: Sequence[Standing], count: int) -> list[str]:
    if count < 0:
        raise ValidationError("qualifier count must be >= 0")
    return [s.competitor_id for s in standings[:count]]
