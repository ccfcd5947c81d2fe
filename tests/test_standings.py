from __future__ import annotations

import pytest

from domain.enums import MatchState
from domain.errors import ConsistencyError
from domain.models import BYE, MapResult, Match, Standing
from services.standings import (
    apply_match,
    apply_to_standings,
    rank_standings,
    recompute_standings,
    zeroed,
)


def _match(round_no, match_no, t1, t2, *, s1=0, s2=0, maps=(), winner=None, state=MatchState.COMPLETED):
    return Match(
        id=f"m{round_no}-{match_no}",
        tournament_id="t",
        stage_id="s",
        round_no=round_no,
        match_no=match_no,
        team1_id=t1,
        team2_id=t2,
        team1_score=s1,
        team2_score=s2,
        map_results=list(maps),
        is_complete=True,
        winner_id=winner,
        state=state,
    )


def _by_id(standings):
    return {s.competitor_id: s for s in standings}


def test_win_with_map_results():
    table = _by_id(zeroed(["a", "b"]))
    m = _match(1, 1, "a", "b", s1=2, s2=1, winner="a",
               maps=[MapResult(13, 7), MapResult(9, 13), MapResult(13, 11)])
    apply_match(table, m)

    a, b = table["a"], table["b"]
    assert (a.points, a.match_wins, a.match_losses) == (3, 1, 0)
    assert (b.points, b.match_wins, b.match_losses) == (0, 0, 1)
    assert (a.game_wins, a.game_losses) == (2, 1)
    assert (b.game_wins, b.game_losses) == (1, 2)
    assert (a.rounds_won, a.rounds_lost) == (35, 31)
    assert a.opponents == ["b"] and b.opponents == ["a"]


def test_win_without_map_results_counts_as_one_game():
    table = _by_id(zeroed(["a", "b"]))
    apply_match(table, _match(1, 1, "a", "b", s1=13, s2=9, winner="a"))
    assert (table["a"].game_wins, table["a"].game_losses) == (1, 0)
    assert (table["a"].rounds_won, table["a"].rounds_lost) == (13, 9)
    assert table["b"].round_differential == -4


def test_bye_and_forfeit():
    table = _by_id(zeroed(["a", "b", "c"]))
    apply_match(table, _match(1, 1, "a", BYE, winner="a"))
    apply_match(table, _match(1, 2, "b", "c", s1=1, s2=1, state=MatchState.FORFEITED))

    a = table["a"]
    assert (a.points, a.match_wins, a.game_wins, a.rounds_won) == (3, 1, 2, 0)
    assert a.opponents == [BYE] and a.had_bye

    for cid, opp in (("b", "c"), ("c", "b")):
        s = table[cid]
        assert (s.points, s.match_wins, s.match_losses, s.game_wins, s.rounds_won) == (0, 0, 0, 0, 0)
        assert s.opponents == [opp]


def test_unknown_competitor_is_a_consistency_error():
    table = _by_id(zeroed(["a"]))
    with pytest.raises(ConsistencyError):
        apply_match(table, _match(1, 1, "a", "ghost", s1=1, winner="a"))


def test_buchholz_requires_every_opponent():
    with pytest.raises(ConsistencyError):
        rank_standings([Standing("a", opponents=["ghost"])])


def test_higher_buchholz_ranks_first():
    # a and b tie on everything except the strength of their opponents
    standings = [
        Standing("a", points=3, match_wins=1, match_losses=1, opponents=["x", "y"]),
        Standing("b", points=3, match_wins=1, match_losses=1, opponents=["z", "y"]),
        Standing("x", points=0, opponents=["a"]),
        Standing("y", points=6, opponents=["a", "b"]),
        Standing("z", points=3, opponents=["b"]),
    ]
    ranked = [s.competitor_id for s in rank_standings(standings)]
    assert ranked.index("b") < ranked.index("a")


def test_zero_round_losses_beats_bigger_differential():
    clean = Standing("clean", points=3, match_wins=1, rounds_won=2, rounds_lost=0)
    lossy = Standing("lossy", points=3, match_wins=1, rounds_won=40, rounds_lost=1)
    ranked = rank_standings([lossy, clean])
    assert [s.competitor_id for s in ranked] == ["clean", "lossy"]


def test_full_tie_keeps_given_order():
    ranked = rank_standings(zeroed(["c", "a", "b"]), order=["b", "c", "a"])
    assert [s.competitor_id for s in ranked] == ["b", "c", "a"]


def test_recompute_matches_incremental_updates():
    ids = ["a", "b", "c", "d", "e"]
    history = [
        _match(1, 1, "a", "b", s1=13, s2=5, winner="a"),
        _match(1, 2, "c", "d", s1=3, s2=13, winner="d"),
        _match(1, 3, "e", BYE, winner="e"),
        _match(2, 1, "a", "d", s1=13, s2=11, winner="a"),
        _match(2, 2, "e", "c", s1=1, s2=1, state=MatchState.FORFEITED),
        _match(2, 3, "b", BYE, winner="b"),
    ]

    live = zeroed(ids)
    for m in history:
        live = apply_to_standings(live, [m], ids)

    assert recompute_standings(ids, history) == live
    assert recompute_standings(ids, history) == recompute_standings(ids, list(reversed(history)))


def test_opponent_count_matches_completed_matches():
    ids = ["a", "b", "c"]
    history = [
        _match(1, 1, "a", "b", s1=1, winner="a"),
        _match(1, 2, "c", BYE, winner="c"),
        _match(2, 1, "c", "a", s1=1, winner="c"),
        _match(2, 2, "b", BYE, winner="b"),
    ]
    for s in recompute_standings(ids, history):
        played = sum(1 for m in history if m.has_competitor(s.competitor_id))
        assert len(s.opponents) == played
