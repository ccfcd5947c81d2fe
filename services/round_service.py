# services/round_service.py
from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Sequence

from domain.enums import BracketKey, MatchState
from domain.errors import ConsistencyError, PreconditionError, ValidationError
from domain.models import BYE, MapResult, Match, Round, Stage, Standing, new_id
from repositories.tournament_repo import TournamentRepo
from services.pairing import Pairing, generate_pairings
from services.standings import BYE_GAME_WINS, apply_to_standings, qualifiers, zeroed

log = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 7


@dataclass(frozen=True)
class IncompleteMatch:
    match_id: str
    code: str
    team1_id: Optional[str]
    team2_id: Optional[str]
    state: MatchState


@dataclass(frozen=True)
class RoundStatus:
    stage_id: str
    round_no: int
    total_matches: int
    completed_matches: int
    forfeited_matches: int
    incomplete: list[IncompleteMatch]
    window_ends_at: datetime
    window_elapsed: bool
    is_last_round: bool

    @property
    def all_complete(self) -> bool:
        return not self.incomplete

    @property
    def can_advance(self) -> bool:
        # an elapsed window turns every open match into a forfeit on advance
        return not self.is_last_round and (self.all_complete or self.window_elapsed)


@dataclass
class RoundStart:
    stage: Stage
    round: Round
    matches: list[Match] = field(default_factory=list)
    forfeited: list[Match] = field(default_factory=list)


def determine_winner(match: Match, team1_score: int, team2_score: int, map_results: Sequence[MapResult]) -> str:
    """Map results decide when present; otherwise the match scores do. Ties are rejected."""
    if map_results:
        w1 = sum(1 for m in map_results if m.team1_score > m.team2_score)
        w2 = sum(1 for m in map_results if m.team2_score > m.team1_score)
    else:
        w1, w2 = team1_score, team2_score
    if w1 == w2:
        raise ValidationError(f"result for {match.code} has no winner ({w1}-{w2})")
    return match.team1_id if w1 > w2 else match.team2_id


def resolve_winner(
    match: Match,
    team1_score: int,
    team2_score: int,
    map_results: Sequence[MapResult],
    winner_id: Optional[str],
) -> str:
    """An explicit winner must play in the match and may not contradict a decisive score line."""
    if winner_id is None:
        return determine_winner(match, team1_score, team2_score, map_results)
    if not match.has_competitor(winner_id):
        raise ValidationError(f"{winner_id} is not playing in {match.code}")
    try:
        scored = determine_winner(match, team1_score, team2_score, map_results)
    except ValidationError:
        return winner_id
    if scored != winner_id:
        raise ValidationError(f"score line for {match.code} names {scored} as winner, not {winner_id}")
    return winner_id


def validate_scores(team1_score: int, team2_score: int, map_results: Sequence[MapResult]) -> None:
    if team1_score < 0 or team2_score < 0:
        raise ValidationError("scores must be non-negative")
    for m in map_results:
        if m.team1_score < 0 or m.team2_score < 0:
            raise ValidationError("map scores must be non-negative")


def complete_match(
    match: Match,
    *,
    winner_id: str,
    team1_score: int,
    team2_score: int,
    map_results: Sequence[MapResult],
    now: datetime,
    admin_assigned: bool = False,
) -> None:
    match.team1_score = team1_score
    match.team2_score = team2_score
    match.map_results = list(map_results)
    match.winner_id = winner_id
    match.is_complete = True
    match.state = MatchState.COMPLETED
    match.admin_assigned = admin_assigned
    match.updated_at = now


class RoundService:
    """
    Swiss stage lifecycle: stage creation, result recording, round completion
    checks, forfeits at the end of a round window and round advancement.
    """

    def __init__(self, repo: TournamentRepo, *, window_days: int = DEFAULT_WINDOW_DAYS) -> None:
        if window_days < 1:
            raise ValidationError("window_days must be >= 1")
        self._repo = repo
        self._window = timedelta(days=window_days)

    # -------------------------
    # Stage
    # -------------------------

    async def start_stage(
        self,
        *,
        tournament_id: str,
        competitors: Sequence[str],
        round_count: int,
        starts_at: datetime,
        now: datetime,
        shuffle_seed: Optional[int] = None,
    ) -> RoundStart:
        ids = [str(c) for c in competitors]
        if len(ids) < 2:
            raise ValidationError("a Swiss stage needs at least two competitors")
        if len(set(ids)) != len(ids):
            raise ValidationError("competitor ids must be unique")
        if BYE in ids:
            raise ValidationError(f"{BYE!r} is reserved")
        if round_count < 1:
            raise ValidationError("round_count must be >= 1")

        existing = await self._repo.active_stage_for(tournament_id=tournament_id)
        if existing is not None:
            raise PreconditionError(f"tournament {tournament_id} already has an active stage ({existing.id})")

        stage = Stage(
            id=new_id(),
            tournament_id=tournament_id,
            total_rounds=round_count,
            competitors=ids,
            standings=zeroed(ids),
            window_days=self._window.days,
            created_at=now,
        )

        order = list(ids)
        if shuffle_seed is not None:
            random.Random(shuffle_seed).shuffle(order)

        pairings = generate_pairings(zeroed(order), order=order)
        rnd, matches = self._create_round(stage, 1, starts_at, pairings, now)

        self._repo.save_stage(stage)
        log.info(
            "Swiss stage %s started for tournament %s: %d competitors, %d rounds",
            stage.id, tournament_id, len(ids), round_count,
        )
        return RoundStart(stage=stage, round=rnd, matches=matches)

    def _create_round(
        self,
        stage: Stage,
        round_no: int,
        starts_at: datetime,
        pairings: Sequence[Pairing],
        now: datetime,
    ) -> tuple[Round, list[Match]]:
        """Create the round and its matches. Byes are completed and folded into the stage right away."""
        rnd = Round(
            id=new_id(),
            stage_id=stage.id,
            round_no=round_no,
            starts_at=starts_at,
            ends_at=starts_at + self._window,
        )

        matches: list[Match] = []
        byes: list[Match] = []
        for match_no, p in enumerate(pairings, start=1):
            m = Match(
                id=new_id(),
                tournament_id=stage.tournament_id,
                stage_id=stage.id,
                bracket=BracketKey.NONE,
                round_no=round_no,
                match_no=match_no,
                team1_id=p.team1_id,
                team2_id=p.team2_id,
                state=MatchState.PENDING_SCHEDULE,
                created_at=now,
                updated_at=now,
            )
            if p.is_bye:
                m.is_complete = True
                m.winner_id = p.team1_id
                m.team1_score, m.team2_score = BYE_GAME_WINS, 0
                m.state = MatchState.COMPLETED
                byes.append(m)
            matches.append(m)
            rnd.match_ids.append(m.id)
            self._repo.save_match(m)

        if byes:
            stage.standings = apply_to_standings(stage.standings, byes, stage.competitors)

        stage.round_ids.append(rnd.id)
        self._repo.save_round(rnd)
        log.info("round %d of stage %s created: %d matches (%d byes)", round_no, stage.id, len(matches), len(byes))
        return rnd, matches

    async def _active_stage(self, stage_id: str) -> Stage:
        stage = await self._repo.get_stage(stage_id=stage_id)
        if not stage.is_active or stage.is_complete:
            raise PreconditionError(f"stage {stage_id} is not active")
        return stage

    async def _current_round(self, stage: Stage) -> Round:
        rnd = await self._repo.round_by_number(stage_id=stage.id, round_no=stage.current_round)
        if rnd is None:
            raise ConsistencyError(f"stage {stage.id} has no round {stage.current_round}")
        return rnd

    # -------------------------
    # Results
    # -------------------------

    async def record_result(
        self,
        *,
        match: Match,
        team1_score: int,
        team2_score: int,
        map_results: Sequence[MapResult] = (),
        now: datetime,
        winner_id: Optional[str] = None,
        admin_assigned: bool = False,
    ) -> tuple[Match, Stage]:
        """Complete a Swiss match and fold it into the stage standings."""
        if match.stage_id is None:
            raise ConsistencyError(f"match {match.id} is not a Swiss match")
        if match.is_complete:
            raise PreconditionError(f"match {match.code} is already complete")
        if match.is_bye:
            raise PreconditionError(f"match {match.code} is a bye")

        stage = await self._active_stage(match.stage_id)
        if match.round_no != stage.current_round:
            raise PreconditionError(
                f"match {match.code} belongs to round {match.round_no}; current round is {stage.current_round}"
            )

        validate_scores(team1_score, team2_score, map_results)
        winner_id = resolve_winner(match, team1_score, team2_score, map_results, winner_id)

        complete_match(
            match,
            winner_id=winner_id,
            team1_score=team1_score,
            team2_score=team2_score,
            map_results=map_results,
            now=now,
            admin_assigned=admin_assigned,
        )
        stage.standings = apply_to_standings(stage.standings, [match], stage.competitors)

        self._repo.save_match(match)
        self._repo.save_stage(stage)
        return match, stage

    # -------------------------
    # Round completion
    # -------------------------

    async def check_round_completion(self, *, stage_id: str, now: datetime) -> RoundStatus:
        """Read-only snapshot of the current round."""
        stage = await self._repo.get_stage(stage_id=stage_id)
        rnd = await self._current_round(stage)
        matches = await self._repo.stage_matches(stage_id=stage.id, round_no=rnd.round_no)

        incomplete = [
            IncompleteMatch(m.id, m.code, m.team1_id, m.team2_id, m.state)
            for m in matches
            if not m.is_complete
        ]
        return RoundStatus(
            stage_id=stage.id,
            round_no=rnd.round_no,
            total_matches=len(matches),
            completed_matches=sum(1 for m in matches if m.is_complete),
            forfeited_matches=sum(1 for m in matches if m.state == MatchState.FORFEITED),
            incomplete=incomplete,
            window_ends_at=rnd.ends_at,
            window_elapsed=rnd.window_elapsed(now),
            is_last_round=stage.current_round >= stage.total_rounds,
        )

    def _apply_forfeits(self, stage: Stage, rnd: Round, matches: Sequence[Match], now: datetime) -> list[Match]:
        """
        Resolve what can no longer be played:
          - a side that readied up when the opponent did not show by forfeit_at wins
          - once the round window has ended, every open match is a 1-1 draw
        """
        resolved: list[Match] = []
        for m in matches:
            if m.is_complete:
                continue

            if (
                m.forfeit_at is not None
                and now >= m.forfeit_at
                and m.state in (MatchState.SCHEDULED, MatchState.READY)
                and m.team1_ready != m.team2_ready
            ):
                winner = m.team1_id if m.team1_ready else m.team2_id
                complete_match(m, winner_id=winner, team1_score=0, team2_score=0, map_results=(), now=now)
                log.info("match %s: no-show, %s wins", m.code, winner)
            elif rnd.window_elapsed(now):
                m.state = MatchState.FORFEITED
                m.is_complete = True
                m.winner_id = None
                m.team1_score = 1
                m.team2_score = 1
                m.map_results = []
                m.updated_at = now
                log.info("match %s forfeited at the end of round %d", m.code, rnd.round_no)
            else:
                continue

            self._repo.save_match(m)
            resolved.append(m)

        if resolved:
            stage.standings = apply_to_standings(stage.standings, resolved, stage.competitors)
        return resolved

    async def process_forfeits(self, *, stage_id: str, now: datetime) -> list[Match]:
        stage = await self._active_stage(stage_id)
        rnd = await self._current_round(stage)
        matches = await self._repo.stage_matches(stage_id=stage.id, round_no=rnd.round_no)

        resolved = self._apply_forfeits(stage, rnd, matches, now)
        if resolved:
            self._repo.save_stage(stage)
        return resolved

    async def advance_round(self, *, stage_id: str, now: datetime) -> RoundStart:
        """
        Close the current round and pair the next one. All or nothing:
        any open match left after forfeits aborts the advance.
        """
        stage = await self._active_stage(stage_id)
        if stage.current_round >= stage.total_rounds:
            raise PreconditionError(f"all {stage.total_rounds} rounds of stage {stage.id} have been played")

        rnd = await self._current_round(stage)
        matches = await self._repo.stage_matches(stage_id=stage.id, round_no=rnd.round_no)
        forfeited = self._apply_forfeits(stage, rnd, matches, now)

        open_codes = [m.code for m in matches if not m.is_complete]
        if open_codes:
            raise PreconditionError(
                f"round {rnd.round_no} still has {len(open_codes)} open matches: {', '.join(open_codes)}"
            )

        rnd.is_complete = True
        self._repo.save_round(rnd)

        pairings = generate_pairings(stage.standings, order=stage.competitors)
        next_no = stage.current_round + 1
        new_round, new_matches = self._create_round(stage, next_no, rnd.ends_at, pairings, now)

        stage.current_round = next_no
        self._repo.save_stage(stage)
        return RoundStart(stage=stage, round=new_round, matches=new_matches, forfeited=forfeited)

    async def finalize_stage(self, *, stage_id: str, now: datetime) -> list[Standing]:
        """Close the last round and the stage; returns the final ranking."""
        stage = await self._active_stage(stage_id)
        if stage.current_round < stage.total_rounds:
            raise PreconditionError(
                f"stage {stage.id} is on round {stage.current_round} of {stage.total_rounds}"
            )

        rnd = await self._current_round(stage)
        matches = await self._repo.stage_matches(stage_id=stage.id, round_no=rnd.round_no)
        self._apply_forfeits(stage, rnd, matches, now)

        open_codes = [m.code for m in matches if not m.is_complete]
        if open_codes:
            raise PreconditionError(f"final round still has open matches: {', '.join(open_codes)}")

        rnd.is_complete = True
        stage.is_complete = True
        stage.is_active = False
        self._repo.save_round(rnd)
        self._repo.save_stage(stage)
        log.info("stage %s finalized after %d rounds", stage.id, stage.total_rounds)
        return list(stage.standings)

    @staticmethod
    def qualifiers(stage: Stage, count: int) -> list[str]:
        return qualifiers(stage.standings, count)
