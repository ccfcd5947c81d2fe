from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import T0, team_ids
from domain.enums import MatchState
from domain.errors import PreconditionError, ValidationError
from domain.models import BYE, MapResult


async def _finish_round(engine, stage_id, round_no):
    for m in await engine.list_matches(stage_id=stage_id, round_no=round_no):
        if not m.is_complete:
            await engine.record_match_result(match_id=m.id, team1_score=13, team2_score=7)


def _table(stage):
    return {s.competitor_id: s for s in stage.standings}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "competitors, rounds",
    [
        (["solo"], 3),
        (["a", "a", "b"], 3),
        (["a", BYE], 3),
        (["a", "b"], 0),
    ],
)
async def test_start_stage_validation(engine, competitors, rounds):
    with pytest.raises(ValidationError):
        await engine.start_stage(tournament_id="t1", competitors=competitors, round_count=rounds)
    assert await engine.active_stage_for(tournament_id="t1") is None


@pytest.mark.asyncio
async def test_one_active_stage_per_tournament(engine):
    await engine.start_stage(tournament_id="t1", competitors=team_ids(4), round_count=3)
    with pytest.raises(PreconditionError):
        await engine.start_stage(tournament_id="t1", competitors=team_ids(4), round_count=3)


@pytest.mark.asyncio
async def test_odd_field_gets_a_completed_bye(engine):
    started = await engine.start_stage(tournament_id="t1", competitors=team_ids(5), round_count=3)

    assert started.round.starts_at == T0
    assert started.round.ends_at == T0 + timedelta(days=7)
    assert len(started.matches) == 3

    bye = started.matches[-1]
    assert (bye.team1_id, bye.team2_id) == ("team05", BYE)
    assert bye.is_complete and bye.state == MatchState.COMPLETED

    stored = await engine.get_match(match_id=bye.id)
    assert (stored.team1_score, stored.team2_score) == (2, 0)
    assert stored.winner_id == "team05"

    table = _table(await engine.get_stage(stage_id=started.stage.id))
    assert (table["team05"].points, table["team05"].game_wins) == (3, 2)
    assert table["team05"].opponents == [BYE]


@pytest.mark.asyncio
async def test_record_result_updates_standings(engine):
    started = await engine.start_stage(tournament_id="t1", competitors=team_ids(4), round_count=3)
    m = started.matches[0]

    done = await engine.record_match_result(
        match_id=m.id, team1_score=2, team2_score=1,
        map_results=[MapResult(13, 9), MapResult(7, 13), MapResult(13, 4)],
    )
    assert done.is_complete and done.winner_id == m.team1_id

    stage = await engine.get_stage(stage_id=started.stage.id)
    winner, loser = _table(stage)[m.team1_id], _table(stage)[m.team2_id]
    assert (winner.points, winner.game_wins, winner.game_losses) == (3, 2, 1)
    assert (winner.rounds_won, winner.rounds_lost) == (33, 26)
    assert loser.match_losses == 1
    assert stage.standings[0].competitor_id == m.team1_id

    with pytest.raises(PreconditionError):
        await engine.record_match_result(match_id=m.id, team1_score=2, team2_score=0)


@pytest.mark.asyncio
@pytest.mark.parametrize("s1, s2", [(0, 0), (5, 5), (-1, 2)])
async def test_malformed_scores_are_rejected(engine, s1, s2):
    started = await engine.start_stage(tournament_id="t1", competitors=team_ids(4), round_count=3)
    m = started.matches[0]
    with pytest.raises(ValidationError):
        await engine.record_match_result(match_id=m.id, team1_score=s1, team2_score=s2)
    assert not (await engine.get_match(match_id=m.id)).is_complete


@pytest.mark.asyncio
async def test_advance_is_blocked_while_matches_are_open(engine):
    started = await engine.start_stage(tournament_id="t1", competitors=team_ids(4), round_count=3)
    await engine.record_match_result(match_id=started.matches[0].id, team1_score=13, team2_score=3)

    status = await engine.check_round_completion(stage_id=started.stage.id)
    assert (status.total_matches, status.completed_matches) == (2, 1)
    assert [i.match_id for i in status.incomplete] == [started.matches[1].id]
    assert not status.can_advance

    with pytest.raises(PreconditionError):
        await engine.advance_round(stage_id=started.stage.id)
    stage = await engine.get_stage(stage_id=started.stage.id)
    assert stage.current_round == 1
    assert len(await engine.list_matches(stage_id=stage.id)) == 2


@pytest.mark.asyncio
async def test_advance_pairs_next_round_from_standings(engine):
    started = await engine.start_stage(tournament_id="t1", competitors=team_ids(4), round_count=3)
    await _finish_round(engine, started.stage.id, 1)

    nxt = await engine.advance_round(stage_id=started.stage.id)

    assert nxt.round.round_no == 2
    assert nxt.round.starts_at == started.round.ends_at
    assert nxt.stage.current_round == 2
    pairs = {frozenset((m.team1_id, m.team2_id)) for m in nxt.matches}
    # winners meet winners
    assert pairs == {frozenset(("team01", "team03")), frozenset(("team02", "team04"))}

    r1 = await engine.list_matches(stage_id=started.stage.id, round_no=1)
    assert not pairs & {frozenset((m.team1_id, m.team2_id)) for m in r1}


@pytest.mark.asyncio
async def test_elapsed_window_forfeits_open_matches_on_advance(engine, clock):
    started = await engine.start_stage(tournament_id="t1", competitors=team_ids(4), round_count=3)
    await engine.record_match_result(match_id=started.matches[0].id, team1_score=13, team2_score=3)

    clock.advance(days=8)
    status = await engine.check_round_completion(stage_id=started.stage.id)
    assert status.window_elapsed and status.can_advance

    nxt = await engine.advance_round(stage_id=started.stage.id)

    [forfeit] = nxt.forfeited
    assert forfeit.state == MatchState.FORFEITED
    assert forfeit.is_complete and forfeit.winner_id is None
    assert (forfeit.team1_score, forfeit.team2_score) == (1, 1)

    table = _table(nxt.stage)
    for cid in (forfeit.team1_id, forfeit.team2_id):
        assert (table[cid].points, table[cid].match_wins, table[cid].match_losses) == (0, 0, 0)
        assert len(table[cid].opponents) == 1


@pytest.mark.asyncio
async def test_no_show_forfeit_awards_the_ready_side(engine, clock):
    started = await engine.start_stage(tournament_id="t1", competitors=team_ids(4), round_count=3)
    m = started.matches[0]
    start_at = T0 + timedelta(hours=2)

    proposal = await engine.propose_time(match_id=m.id, competitor_id=m.team1_id, proposed_at=start_at)
    await engine.respond_to_proposal(
        match_id=m.id, proposal_id=proposal.id, competitor_id=m.team2_id, accept=True
    )
    await engine.open_ready_up(match_id=m.id)
    await engine.ready_up(match_id=m.id, competitor_id=m.team1_id)

    clock.advance(hours=2, minutes=10)
    assert await engine.process_forfeits(stage_id=started.stage.id) == []

    clock.advance(minutes=10)
    [resolved] = await engine.process_forfeits(stage_id=started.stage.id)
    assert resolved.id == m.id
    assert resolved.state == MatchState.COMPLETED
    assert resolved.winner_id == m.team1_id

    other = await engine.get_match(match_id=started.matches[1].id)
    assert not other.is_complete
    assert _table(await engine.get_stage(stage_id=started.stage.id))[m.team1_id].points == 3


@pytest.mark.asyncio
async def test_finalize_and_qualifiers(engine):
    started = await engine.start_stage(tournament_id="t1", competitors=team_ids(4), round_count=2)
    stage_id = started.stage.id

    with pytest.raises(PreconditionError):
        await engine.finalize_stage(stage_id=stage_id)

    await _finish_round(engine, stage_id, 1)
    await engine.advance_round(stage_id=stage_id)
    await _finish_round(engine, stage_id, 2)

    with pytest.raises(PreconditionError):
        await engine.advance_round(stage_id=stage_id)

    final = await engine.finalize_stage(stage_id=stage_id)
    assert final[0].competitor_id == "team01"
    assert final[0].points == 6

    stage = await engine.get_stage(stage_id=stage_id)
    assert stage.is_complete and not stage.is_active
    assert await engine.active_stage_for(tournament_id="t1") is None
    assert await engine.qualifiers(stage_id=stage_id, count=2) == [s.competitor_id for s in final[:2]]

    with pytest.raises(PreconditionError):
        await engine.advance_round(stage_id=stage_id)


@pytest.mark.asyncio
async def test_force_complete_swiss_match(engine):
    started = await engine.start_stage(tournament_id="t1", competitors=team_ids(4), round_count=3)
    m = started.matches[1]

    done = await engine.force_complete_match(match_id=m.id, team1_score=7, team2_score=13)
    assert done.winner_id == m.team2_id and done.admin_assigned
    assert (done.team1_score, done.team2_score) == (7, 13)

    table = _table(await engine.get_stage(stage_id=started.stage.id))
    winner, loser = table[m.team2_id], table[m.team1_id]
    assert (winner.points, winner.match_wins, winner.game_wins) == (3, 1, 1)
    assert (winner.rounds_won, winner.rounds_lost) == (13, 7)
    assert (loser.match_losses, loser.game_losses, loser.rounds_won) == (1, 1, 7)


@pytest.mark.asyncio
async def test_force_complete_with_maps_and_explicit_winner(engine):
    started = await engine.start_stage(tournament_id="t1", competitors=team_ids(4), round_count=3)
    first, second = started.matches[0], started.matches[1]

    done = await engine.force_complete_match(
        match_id=first.id, team1_score=2, team2_score=0,
        map_results=[MapResult(13, 5), MapResult(13, 11)], winner_id=first.team1_id,
    )
    table = _table(await engine.get_stage(stage_id=started.stage.id))
    assert done.winner_id == first.team1_id
    assert (table[first.team1_id].game_wins, table[first.team1_id].rounds_won) == (2, 26)

    # a tied line needs the winner spelled out; a contradicting one is refused
    with pytest.raises(ValidationError):
        await engine.force_complete_match(match_id=second.id, team1_score=0, team2_score=0)
    with pytest.raises(ValidationError):
        await engine.force_complete_match(
            match_id=second.id, team1_score=13, team2_score=2, winner_id=second.team2_id
        )
    with pytest.raises(ValidationError):
        await engine.force_complete_match(match_id=second.id, team1_score=1, team2_score=0, winner_id="nobody")

    tied = await engine.force_complete_match(
        match_id=second.id, team1_score=0, team2_score=0, winner_id=second.team2_id
    )
    assert tied.winner_id == second.team2_id
