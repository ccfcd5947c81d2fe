# services/bracket_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from domain.enums import BracketKey, BracketKind, MatchState
from domain.errors import ConsistencyError, PreconditionError, ValidationError
from domain.models import BYE, Bracket, MapResult, Match, is_power_of_two, match_code, new_id, seeded_positions
from domain.routing import BracketShape, NodeRef, SlotRef, feeders, loser_destination, winner_destination
from repositories.tournament_repo import TournamentRepo
from services.round_service import complete_match, determine_winner, resolve_winner, validate_scores

log = logging.getLogger(__name__)


@dataclass
class BracketAdvance:
    bracket: Bracket
    match: Match
    placed: list[Match] = field(default_factory=list)
    champion_id: Optional[str] = None


def shape_of(bracket: Bracket) -> BracketShape:
    return BracketShape(
        size=len(bracket.competitors),
        winners_rounds=bracket.winners_rounds,
        losers_rounds=bracket.losers_rounds,
    )


def node_of(match: Match) -> NodeRef:
    return NodeRef(match.bracket, match.round_no, match.match_no)


def validate_competitors(competitors: Sequence[str]) -> list[str]:
    ids = [str(c) for c in competitors]
    if len(set(ids)) != len(ids):
        raise ValidationError("competitor ids must be unique")
    if BYE in ids:
        raise ValidationError(f"{BYE!r} is reserved")
    return ids


class BracketService:
    """
    Elimination brackets stored as Match documents keyed by (bracket, round, match).

    Only the first round exists up front. Every later node is created the
    first time a feeder completes, and becomes schedulable once both of its
    slots are filled.
    """

    def __init__(self, repo: TournamentRepo) -> None:
        self._repo = repo

    # -------------------------
    # Creation
    # -------------------------

    async def create_double_elimination(
        self,
        *,
        tournament_id: str,
        competitors: Sequence[str],
        best_of: int,
        now: datetime,
    ) -> tuple[Bracket, list[Match]]:
        ids = validate_competitors(competitors)
        if len(ids) < 4 or not is_power_of_two(len(ids)):
            raise ValidationError(
                f"double elimination needs a power-of-two field of at least 4 (got {len(ids)})"
            )
        if best_of < 1:
            raise ValidationError("best_of must be >= 1")

        shape = BracketShape.double_elimination(len(ids))
        bracket = Bracket(
            id=new_id(),
            tournament_id=tournament_id,
            kind=BracketKind.DOUBLE,
            competitors=ids,
            winners_rounds=shape.winners_rounds,
            losers_rounds=shape.losers_rounds,
            best_of=best_of,
            created_at=now,
        )

        # competitors are in seed order; seeded_positions keeps top seeds apart
        positions = seeded_positions(len(ids))
        pairs = [(ids[positions[i] - 1], ids[positions[i + 1] - 1]) for i in range(0, len(positions), 2)]
        matches = self.create_first_round(bracket, pairs, now)

        self._repo.save_bracket(bracket)
        log.info(
            "double elimination bracket %s created: %d competitors, W%d/L%d rounds",
            bracket.id, len(ids), shape.winners_rounds, shape.losers_rounds,
        )
        return bracket, matches

    def create_first_round(
        self, bracket: Bracket, pairs: Sequence[tuple[str, str]], now: datetime
    ) -> list[Match]:
        out: list[Match] = []
        for match_no, (t1, t2) in enumerate(pairs, start=1):
            m = self._new_node(bracket, NodeRef(BracketKey.W, 1, match_no), now)
            m.team1_id = t1
            m.team2_id = t2
            m.state = MatchState.PENDING_SCHEDULE
            self._repo.save_match(m)
            out.append(m)
        return out

    def _new_node(self, bracket: Bracket, node: NodeRef, now: datetime) -> Match:
        return Match(
            id=new_id(),
            tournament_id=bracket.tournament_id,
            bracket_id=bracket.id,
            bracket=node.bracket,
            round_no=node.round_no,
            match_no=node.match_no,
            state=MatchState.PENDING_PAIRING,
            best_of=bracket.best_of,
            created_at=now,
            updated_at=now,
        )

    # -------------------------
    # Results
    # -------------------------

    async def _bracket_for(self, match: Match) -> Bracket:
        if match.bracket_id is None:
            raise ConsistencyError(f"match {match.id} is not a bracket match")
        bracket = await self._repo.get_bracket(bracket_id=match.bracket_id)
        if not shape_of(bracket).has_node(node_of(match)):
            raise ConsistencyError(f"match {match.code} has no place in bracket {bracket.id}")
        return bracket

    def _check_playable(self, match: Match) -> None:
        if match.is_complete:
            raise PreconditionError(f"match {match.code} is already complete")
        if not match.both_slots_filled:
            raise PreconditionError(f"match {match.code} is still waiting for an opponent")

    async def record_result(
        self,
        *,
        match: Match,
        team1_score: int,
        team2_score: int,
        map_results: Sequence[MapResult] = (),
        now: datetime,
    ) -> BracketAdvance:
        bracket = await self._bracket_for(match)
        self._check_playable(match)
        validate_scores(team1_score, team2_score, map_results)
        winner = determine_winner(match, team1_score, team2_score, map_results)

        complete_match(
            match,
            winner_id=winner,
            team1_score=team1_score,
            team2_score=team2_score,
            map_results=map_results,
            now=now,
        )
        return await self._route(bracket, match, now)

    async def assign_winner(
        self,
        *,
        match: Match,
        winner_id: Optional[str] = None,
        team1_score: Optional[int] = None,
        team2_score: Optional[int] = None,
        map_results: Optional[Sequence[MapResult]] = None,
        now: datetime,
    ) -> BracketAdvance:
        """
        Admin path: same completion and routing as a reported result.
        Scores left out keep what is stored on the match; the winner is
        derived from the score line when not given.
        """
        bracket = await self._bracket_for(match)
        self._check_playable(match)

        s1 = match.team1_score if team1_score is None else team1_score
        s2 = match.team2_score if team2_score is None else team2_score
        maps = list(match.map_results if map_results is None else map_results)
        validate_scores(s1, s2, maps)
        winner = resolve_winner(match, s1, s2, maps, winner_id)

        complete_match(
            match,
            winner_id=winner,
            team1_score=s1,
            team2_score=s2,
            map_results=maps,
            now=now,
            admin_assigned=True,
        )
        log.info("match %s: winner %s assigned by an admin", match.code, winner)
        return await self._route(bracket, match, now)

    async def _route(self, bracket: Bracket, match: Match, now: datetime) -> BracketAdvance:
        self._repo.save_match(match)
        shape = shape_of(bracket)
        node = node_of(match)
        result = BracketAdvance(bracket=bracket, match=match)

        win_to = winner_destination(shape, node)
        if win_to is None:
            bracket.champion_id = match.winner_id
            bracket.is_complete = True
            self._repo.save_bracket(bracket)
            result.champion_id = match.winner_id
            log.info("bracket %s complete, champion %s", bracket.id, match.winner_id)
            return result

        result.placed.append(await self.place(bracket, win_to, match.winner_id, now))

        lose_to = loser_destination(shape, node)
        if lose_to is not None and match.loser_id is not None:
            result.placed.append(await self.place(bracket, lose_to, match.loser_id, now))
        return result

    async def place(self, bracket: Bracket, slot: SlotRef, competitor_id: str, now: datetime) -> Match:
        """Write a competitor into a slot, creating the node on first use."""
        await self._check_fed(bracket, slot, competitor_id)

        m = await self._repo.bracket_node(bracket_id=bracket.id, node=slot.node)
        if m is None:
            m = self._new_node(bracket, slot.node, now)

        if m.is_complete:
            raise ConsistencyError(f"cannot place {competitor_id} into completed match {m.code}")

        current = m.team1_id if slot.position == 1 else m.team2_id
        if current not in (None, competitor_id):
            raise ConsistencyError(f"{m.code} slot {slot.position} is already held by {current}")

        if slot.position == 1:
            m.team1_id = competitor_id
        else:
            m.team2_id = competitor_id

        if m.both_slots_filled and m.state == MatchState.PENDING_PAIRING:
            m.state = MatchState.PENDING_SCHEDULE
        m.updated_at = now
        self._repo.save_match(m)
        return m

    async def _check_fed(self, bracket: Bracket, slot: SlotRef, competitor_id: str) -> None:
        """A slot only ever holds the winner or loser of the completed node feeding it."""
        for f in feeders(shape_of(bracket), slot.node):
            if f.position != slot.position:
                continue
            src = await self._repo.bracket_node(bracket_id=bracket.id, node=f.source)
            if src is None or not src.is_complete:
                continue
            if (src.winner_id if f.outcome == "winner" else src.loser_id) == competitor_id:
                return
        raise ConsistencyError(
            f"{competitor_id} did not come out of a completed feeder of "
            f"{match_code(slot.bracket.value, slot.round_no, slot.match_no)} slot {slot.position}"
        )
