from __future__ import annotations

import pytest

from conftest import team_ids
from domain.enums import BracketKey, BracketKind, MatchState
from domain.errors import ConsistencyError, PreconditionError, SeedCountError, ValidationError
from domain.routing import SlotRef
from repositories.tournament_repo import TournamentRepo
from services.bracket_service import BracketService

W, L, GF = BracketKey.W, BracketKey.L, BracketKey.GF


async def _node(engine, bracket_id, bracket, round_no, match_no):
    for m in await engine.list_matches(bracket_id=bracket_id):
        if (m.bracket, m.round_no, m.match_no) == (bracket, round_no, match_no):
            return m
    return None


async def _win(engine, bracket_id, bracket, round_no, match_no, *, team1=True):
    m = await _node(engine, bracket_id, bracket, round_no, match_no)
    assert m is not None, f"{bracket.value}{round_no}-{match_no} missing"
    s1, s2 = (13, 5) if team1 else (5, 13)
    return await engine.record_match_result(match_id=m.id, team1_score=s1, team2_score=s2)


@pytest.mark.asyncio
@pytest.mark.parametrize("n", [2, 3, 6, 12])
async def test_double_elimination_needs_power_of_two_field(engine, n):
    with pytest.raises(ValidationError):
        await engine.create_double_elimination(tournament_id="t1", competitors=team_ids(n))


@pytest.mark.asyncio
async def test_double_elimination_seeds_first_round(engine):
    bracket, matches = await engine.create_double_elimination(tournament_id="t1", competitors=team_ids(8))

    assert bracket.kind == BracketKind.DOUBLE
    assert (bracket.winners_rounds, bracket.losers_rounds) == (3, 4)
    assert [(m.team1_id, m.team2_id) for m in matches] == [
        ("team01", "team08"),
        ("team04", "team05"),
        ("team02", "team07"),
        ("team03", "team06"),
    ]
    assert all(m.state == MatchState.PENDING_SCHEDULE for m in matches)
    # later nodes only appear once a feeder completes
    assert len(await engine.list_matches(bracket_id=bracket.id)) == 4


@pytest.mark.asyncio
async def test_nodes_are_created_lazily(engine):
    bracket, _ = await engine.create_double_elimination(tournament_id="t1", competitors=team_ids(8))

    await _win(engine, bracket.id, W, 1, 1)
    w2 = await _node(engine, bracket.id, W, 2, 1)
    l1 = await _node(engine, bracket.id, L, 1, 1)
    assert (w2.team1_id, w2.team2_id, w2.state) == ("team01", None, MatchState.PENDING_PAIRING)
    assert (l1.team1_id, l1.team2_id, l1.state) == ("team08", None, MatchState.PENDING_PAIRING)

    with pytest.raises(PreconditionError):
        await engine.record_match_result(match_id=w2.id, team1_score=13, team2_score=2)

    await _win(engine, bracket.id, W, 1, 2, team1=False)
    w2 = await _node(engine, bracket.id, W, 2, 1)
    l1 = await _node(engine, bracket.id, L, 1, 1)
    assert (w2.team1_id, w2.team2_id, w2.state) == ("team01", "team05", MatchState.PENDING_SCHEDULE)
    assert (l1.team1_id, l1.team2_id, l1.state) == ("team08", "team04", MatchState.PENDING_SCHEDULE)


@pytest.mark.asyncio
async def test_four_team_double_elimination_to_champion(engine, notifier):
    bracket, _ = await engine.create_double_elimination(tournament_id="t1", competitors=team_ids(4))
    bid = bracket.id

    await _win(engine, bid, W, 1, 1)   # team01 > team04
    await _win(engine, bid, W, 1, 2)   # team02 > team03
    await _win(engine, bid, L, 1, 1)   # team04 > team03, team03 out
    await _win(engine, bid, W, 2, 1)   # team01 > team02

    l2 = await _node(engine, bid, L, 2, 1)
    assert (l2.team1_id, l2.team2_id) == ("team04", "team02")
    await _win(engine, bid, L, 2, 1)   # team04 > team02

    gf = await _node(engine, bid, GF, 1, 1)
    assert (gf.team1_id, gf.team2_id) == ("team01", "team04")
    await _win(engine, bid, GF, 1, 1, team1=False)

    done, matches = await engine.get_bracket(bracket_id=bid)
    assert done.champion_id == "team04" and done.is_complete
    assert len(matches) == 6 and all(m.is_complete for m in matches)

    await engine.drain_notifications()
    assert any(e.competitor_id == "team04" for e in notifier.events)


@pytest.mark.asyncio
async def test_admin_assigned_winner_routes_like_a_result(engine):
    bracket, matches = await engine.create_double_elimination(tournament_id="t1", competitors=team_ids(4))

    done = await engine.advance_bracket_winner(match_id=matches[0].id, winner_id="team04")
    assert done.admin_assigned and done.winner_id == "team04"

    w2 = await _node(engine, bracket.id, W, 2, 1)
    l1 = await _node(engine, bracket.id, L, 1, 1)
    assert w2.team1_id == "team04" and l1.team1_id == "team01"

    with pytest.raises(PreconditionError):
        await engine.advance_bracket_winner(match_id=matches[0].id, winner_id="team04")
    with pytest.raises(ValidationError):
        await engine.advance_bracket_winner(match_id=matches[1].id, winner_id="team01")


@pytest.mark.asyncio
async def test_advance_bracket_winner_rejects_swiss_matches(engine):
    started = await engine.start_stage(tournament_id="t1", competitors=team_ids(4), round_count=3)
    with pytest.raises(PreconditionError):
        await engine.advance_bracket_winner(match_id=started.matches[0].id, winner_id="team01")


@pytest.mark.asyncio
async def test_playoff_quarterfinal_seeding(engine):
    seeds = list("ABCDEFGH")
    bracket, matches = await engine.generate_playoff_seeding(tournament_id="t1", seeds=seeds)

    assert bracket.kind == BracketKind.PLAYOFF and bracket.best_of == 3
    assert [(m.team1_id, m.team2_id) for m in matches] == [("A", "H"), ("C", "F"), ("B", "G"), ("D", "E")]
    assert all(m.best_of == 3 for m in matches)


@pytest.mark.asyncio
async def test_top_two_seeds_meet_only_in_the_final(engine):
    bracket, _ = await engine.generate_playoff_seeding(tournament_id="t1", seeds=list("ABCDEFGH"))
    bid = bracket.id

    for match_no in range(1, 5):
        await _win(engine, bid, W, 1, match_no)
    sf1 = await _node(engine, bid, W, 2, 1)
    sf2 = await _node(engine, bid, W, 2, 2)
    assert {sf1.team1_id, sf1.team2_id} == {"A", "C"}
    assert {sf2.team1_id, sf2.team2_id} == {"B", "D"}

    await _win(engine, bid, W, 2, 1)
    await _win(engine, bid, W, 2, 2)
    final = await _node(engine, bid, GF, 1, 1)
    assert (final.team1_id, final.team2_id) == ("A", "B")

    await _win(engine, bid, GF, 1, 1)
    done, matches = await engine.get_bracket(bracket_id=bid)
    assert done.champion_id == "A"
    # no losers bracket in playoffs
    assert not [m for m in matches if m.bracket == L]


@pytest.mark.asyncio
@pytest.mark.parametrize("count", [7, 9])
async def test_playoffs_need_exactly_eight_seeds(engine, count):
    with pytest.raises(SeedCountError) as err:
        await engine.generate_playoff_seeding(tournament_id="t1", seeds=team_ids(count))
    assert isinstance(err.value, ValidationError)
    assert isinstance(err.value, PreconditionError)


@pytest.mark.asyncio
async def test_seed_playoffs_from_finalized_stage(engine):
    started = await engine.start_stage(tournament_id="t1", competitors=team_ids(8), round_count=1)
    with pytest.raises(PreconditionError):
        await engine.seed_playoffs_from_stage(stage_id=started.stage.id)

    for m in started.matches:
        await engine.record_match_result(match_id=m.id, team1_score=13, team2_score=7)
    final = await engine.finalize_stage(stage_id=started.stage.id)

    bracket, matches = await engine.seed_playoffs_from_stage(stage_id=started.stage.id)
    assert bracket.competitors == [s.competitor_id for s in final]
    assert matches[0].team1_id == final[0].competitor_id
    assert matches[0].team2_id == final[7].competitor_id


@pytest.mark.asyncio
async def test_placing_into_an_occupied_slot_is_a_consistency_error(engine, store):
    bracket, matches = await engine.create_double_elimination(tournament_id="t1", competitors=team_ids(4))
    await _win(engine, bracket.id, W, 1, 1)

    # corrupt the W2 node so the next placement collides
    w2 = await _node(engine, bracket.id, W, 2, 1)
    doc = await store.get("matches", w2.id)
    doc["team2_id"] = "intruder"
    store._rows[("matches", w2.id)].doc = doc

    with pytest.raises(ConsistencyError):
        await _win(engine, bracket.id, W, 1, 2)
    # nothing from the failed operation was written
    assert not (await engine.get_match(match_id=matches[1].id)).is_complete


@pytest.mark.asyncio
async def test_a_stage_seeds_only_one_playoff(engine):
    started = await engine.start_stage(tournament_id="t1", competitors=team_ids(8), round_count=1)
    for m in started.matches:
        await engine.record_match_result(match_id=m.id, team1_score=13, team2_score=7)
    await engine.finalize_stage(stage_id=started.stage.id)

    bracket, _ = await engine.seed_playoffs_from_stage(stage_id=started.stage.id)
    assert bracket.source_stage_id == started.stage.id

    with pytest.raises(PreconditionError):
        await engine.seed_playoffs_from_stage(stage_id=started.stage.id)
    # a playoff seeded by hand is not tied to any stage
    manual, _ = await engine.generate_playoff_seeding(tournament_id="t1", seeds=team_ids(8))
    assert manual.source_stage_id is None


@pytest.mark.asyncio
async def test_force_complete_bracket_match_routes_with_the_given_scores(engine):
    bracket, matches = await engine.create_double_elimination(tournament_id="t1", competitors=team_ids(4))

    done = await engine.force_complete_match(match_id=matches[0].id, team1_score=1, team2_score=2)
    assert done.winner_id == "team04" and done.admin_assigned
    assert (done.team1_score, done.team2_score) == (1, 2)

    assert (await _node(engine, bracket.id, W, 2, 1)).team1_id == "team04"
    assert (await _node(engine, bracket.id, L, 1, 1)).team1_id == "team01"

    with pytest.raises(ValidationError):
        await engine.force_complete_match(
            match_id=matches[1].id, team1_score=2, team2_score=0, winner_id=matches[1].team2_id
        )


@pytest.mark.asyncio
async def test_placement_must_come_out_of_a_completed_feeder(engine, store, clock):
    bracket, _ = await engine.create_double_elimination(tournament_id="t1", competitors=team_ids(4))

    async def place(slot, competitor_id):
        async def body(tx):
            repo = TournamentRepo(tx)
            b = await repo.get_bracket(bracket_id=bracket.id)
            return await BracketService(repo).place(b, slot, competitor_id, clock.now)

        return await store.run_transaction(body)

    # W1-1 has not been played yet
    with pytest.raises(ConsistencyError):
        await place(SlotRef(W, 2, 1, 1), "team01")

    await _win(engine, bracket.id, W, 1, 1)
    # the loser of W1-1 drops to L1, it does not advance
    with pytest.raises(ConsistencyError):
        await place(SlotRef(W, 2, 1, 1), "team04")
    # W1-1 feeds slot 1 only
    with pytest.raises(ConsistencyError):
        await place(SlotRef(W, 2, 1, 2), "team01")

    placed = await place(SlotRef(W, 2, 1, 1), "team01")
    assert placed.team1_id == "team01"
