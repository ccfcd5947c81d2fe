# services/revert_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from domain.enums import BracketKey, MatchState
from domain.errors import PreconditionError, ValidationError
from domain.models import Bracket, Match, Stage
from domain.routing import BracketShape, SlotRef, loser_destination, winner_destination
from repositories.tournament_repo import TournamentRepo
from services.bracket_service import node_of, shape_of
from services.standings import recompute_standings

log = logging.getLogger(__name__)


@dataclass
class RevertResult:
    reset: list[Match] = field(default_factory=list)
    deleted: list[Match] = field(default_factory=list)
    deleted_brackets: list[Bracket] = field(default_factory=list)
    stage: Optional[Stage] = None
    bracket: Optional[Bracket] = None


def reset_match(match: Match, now: datetime) -> None:
    match.is_complete = False
    match.winner_id = None
    match.team1_score = 0
    match.team2_score = 0
    match.map_results = []
    match.team1_ready = False
    match.team2_ready = False
    match.admin_assigned = False
    if not match.both_slots_filled:
        match.state = MatchState.PENDING_PAIRING
    elif match.scheduled_at is not None:
        match.state = MatchState.SCHEDULED
    else:
        match.state = MatchState.PENDING_SCHEDULE
    match.updated_at = now


class RevertService:
    """
    Undo Swiss rounds and bracket progress.
    Forward state is deleted or cleared; standings are always rebuilt from the
    matches that remain.
    """

    def __init__(self, repo: TournamentRepo) -> None:
        self._repo = repo

    # -------------------------
    # Swiss
    # -------------------------

    async def revert_to_round(self, *, stage_id: str, round_no: int) -> RevertResult:
        stage = await self._repo.get_stage(stage_id=stage_id)
        if not 1 <= round_no <= stage.current_round:
            raise ValidationError(f"round must be between 1 and {stage.current_round}, got {round_no}")

        result = RevertResult(stage=stage)
        kept_round_ids: list[str] = []
        for rnd in await self._repo.rounds_for_stage(stage_id=stage.id):
            if rnd.round_no <= round_no:
                kept_round_ids.append(rnd.id)
                if rnd.round_no == round_no and rnd.is_complete:
                    rnd.is_complete = False
                    self._repo.save_round(rnd)
                continue
            for m in await self._repo.stage_matches(stage_id=stage.id, round_no=rnd.round_no):
                self._repo.delete_match(m)
                result.deleted.append(m)
            self._repo.delete_round(rnd)

        remaining = await self._repo.stage_matches(stage_id=stage.id)
        remaining = [m for m in remaining if m.round_no <= round_no]

        await self._drop_seeded_brackets(stage, result)

        stage.round_ids = [rid for rid in stage.round_ids if rid in kept_round_ids]
        stage.current_round = round_no
        stage.standings = recompute_standings(stage.competitors, remaining)
        stage.is_active = True
        stage.is_complete = False
        self._repo.save_stage(stage)

        log.info("stage %s reverted to round %d (%d matches deleted)", stage.id, round_no, len(result.deleted))
        return result

    async def _drop_seeded_brackets(self, stage: Stage, result: RevertResult) -> None:
        """Brackets seeded from this stage's final standings no longer have a valid seeding."""
        for bracket in await self._repo.brackets_seeded_from(stage_id=stage.id):
            for m in await self._repo.bracket_matches(bracket_id=bracket.id):
                self._repo.delete_match(m)
                result.deleted.append(m)
            self._repo.delete_bracket(bracket)
            result.deleted_brackets.append(bracket)
            log.info("bracket %s seeded from stage %s removed by the revert", bracket.id, stage.id)

    async def _revert_swiss_match(self, match: Match, now: datetime) -> RevertResult:
        stage = await self._repo.get_stage(stage_id=match.stage_id)
        if match.round_no != stage.current_round:
            raise PreconditionError(
                f"only matches of the current round ({stage.current_round}) can be reverted; {match.code} is not"
            )
        if match.is_bye:
            raise PreconditionError(f"match {match.code} is a bye")

        reset_match(match, now)
        self._repo.save_match(match)

        rnd = await self._repo.round_by_number(stage_id=stage.id, round_no=match.round_no)
        if rnd is not None and rnd.is_complete:
            rnd.is_complete = False
            self._repo.save_round(rnd)

        result = RevertResult(reset=[match], stage=stage)
        await self._drop_seeded_brackets(stage, result)

        matches = await self._repo.stage_matches(stage_id=stage.id)
        stage.standings = recompute_standings(stage.competitors, matches)
        stage.is_active = True
        stage.is_complete = False
        self._repo.save_stage(stage)

        log.info("match %s reverted; standings of stage %s recomputed", match.code, stage.id)
        return result

    # -------------------------
    # Brackets
    # -------------------------

    async def revert_single_match(self, *, match_id: str, now: datetime) -> RevertResult:
        match = await self._repo.get_match(match_id=match_id)
        if not match.is_complete:
            raise PreconditionError(f"match {match.code} is not complete")

        if match.bracket_id is None:
            return await self._revert_swiss_match(match, now)

        bracket = await self._repo.get_bracket(bracket_id=match.bracket_id)
        result = RevertResult(bracket=bracket)
        await self._reset_node(bracket, shape_of(bracket), match, now, result)
        self._repo.save_bracket(bracket)
        log.info("bracket match %s reverted (%d reset, %d removed)", match.code, len(result.reset), len(result.deleted))
        return result

    async def revert_team_advancement(self, *, match_id: str, competitor_id: str, now: datetime) -> RevertResult:
        """
        Pull one competitor back out of the node it was routed to from `match_id`.
        The source result stays as recorded; whatever the competitor played
        further on is cascaded away.
        """
        match = await self._repo.get_match(match_id=match_id)
        if match.bracket_id is None:
            raise PreconditionError(f"match {match.code} is not a bracket match")
        if not match.is_complete:
            raise PreconditionError(f"match {match.code} is not complete")
        if not match.has_competitor(competitor_id):
            raise ValidationError(f"{competitor_id} is not playing in {match.code}")

        bracket = await self._repo.get_bracket(bracket_id=match.bracket_id)
        shape = shape_of(bracket)
        node = node_of(match)
        slot = (
            winner_destination(shape, node) if competitor_id == match.winner_id else loser_destination(shape, node)
        )
        if slot is None:
            raise PreconditionError(f"{competitor_id} was not advanced anywhere from {match.code}")

        dest = await self._repo.bracket_node(bracket_id=bracket.id, node=slot.node)
        held = None if dest is None else (dest.team1_id if slot.position == 1 else dest.team2_id)
        if held != competitor_id:
            raise PreconditionError(f"{competitor_id} is no longer in the slot fed by {match.code}")

        result = RevertResult(bracket=bracket)
        await self._unplace(bracket, shape, slot, competitor_id, now, result)
        self._repo.save_bracket(bracket)
        log.info(
            "advancement of %s out of %s reverted (%d reset, %d removed)",
            competitor_id, match.code, len(result.reset), len(result.deleted),
        )
        return result

    async def revert_bracket_round(
        self,
        *,
        bracket_id: str,
        bracket_key: BracketKey,
        round_no: int,
        now: datetime,
    ) -> RevertResult:
        bracket = await self._repo.get_bracket(bracket_id=bracket_id)
        shape = shape_of(bracket)
        if not shape.has_round(bracket_key, round_no):
            raise ValidationError(f"bracket {bracket_id} has no {bracket_key.value} round {round_no}")

        result = RevertResult(bracket=bracket)
        matches = [
            m for m in await self._repo.bracket_matches(bracket_id=bracket.id)
            if m.bracket == bracket_key and m.round_no == round_no
        ]
        for m in matches:
            # an earlier cascade in this loop may already have touched it
            fresh = await self._repo.find_match(match_id=m.id)
            if fresh is not None and fresh.is_complete:
                await self._reset_node(bracket, shape, fresh, now, result)

        self._repo.save_bracket(bracket)
        log.info(
            "bracket %s %s round %d reverted (%d reset, %d removed)",
            bracket.id, bracket_key.value, round_no, len(result.reset), len(result.deleted),
        )
        return result

    async def _reset_node(
        self, bracket: Bracket, shape: BracketShape, match: Match, now: datetime, result: RevertResult
    ) -> None:
        node = node_of(match)
        winner, loser = match.winner_id, match.loser_id

        if winner is not None:
            win_to = winner_destination(shape, node)
            if win_to is None:
                if bracket.champion_id == winner:
                    bracket.champion_id = None
                    bracket.is_complete = False
            else:
                await self._unplace(bracket, shape, win_to, winner, now, result)

        if loser is not None:
            lose_to = loser_destination(shape, node)
            if lose_to is not None:
                await self._unplace(bracket, shape, lose_to, loser, now, result)

        reset_match(match, now)
        self._repo.save_match(match)
        result.reset.append(match)

    async def _unplace(
        self,
        bracket: Bracket,
        shape: BracketShape,
        slot: SlotRef,
        competitor_id: str,
        now: datetime,
        result: RevertResult,
    ) -> None:
        dest = await self._repo.bracket_node(bracket_id=bracket.id, node=slot.node)
        if dest is None:
            return

        if dest.is_complete:
            await self._reset_node(bracket, shape, dest, now, result)

        if slot.position == 1 and dest.team1_id == competitor_id:
            dest.team1_id = None
        elif slot.position == 2 and dest.team2_id == competitor_id:
            dest.team2_id = None

        if dest.team1_id is None and dest.team2_id is None:
            self._repo.delete_match(dest)
            result.deleted.append(dest)
            return

        dest.state = MatchState.PENDING_PAIRING
        dest.scheduled_at = None
        dest.forfeit_at = None
        dest.updated_at = now
        self._repo.save_match(dest)
