# services/playoff_service.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Sequence

from domain.enums import BracketKind
from domain.errors import PreconditionError, SeedCountError, ValidationError
from domain.models import Bracket, Match, new_id
from domain.routing import BracketShape
from repositories.tournament_repo import TournamentRepo
from services.bracket_service import BracketService, validate_competitors
from services.standings import qualifiers

log = logging.getLogger(__name__)

PLAYOFF_SIZE = 8

# (higher seed, lower seed), 1-based. QF1+QF2 feed SF1, QF3+QF4 feed SF2,
# so seeds 1 and 2 can only meet in the final.
QUARTERFINAL_SEEDS = ((1, 8), (3, 6), (2, 7), (4, 5))


class PlayoffService:
    """8-team single elimination seeded from the Swiss standings."""

    def __init__(self, repo: TournamentRepo, brackets: BracketService) -> None:
        self._repo = repo
        self._brackets = brackets

    async def generate_playoff_seeding(
        self,
        *,
        tournament_id: str,
        seeds: Sequence[str],
        best_of: int,
        now: datetime,
        source_stage_id: Optional[str] = None,
    ) -> tuple[Bracket, list[Match]]:
        if len(seeds) != PLAYOFF_SIZE:
            raise SeedCountError(f"playoffs need exactly {PLAYOFF_SIZE} seeds, got {len(seeds)}")
        ids = validate_competitors(seeds)
        if best_of < 1:
            raise ValidationError("best_of must be >= 1")

        shape = BracketShape.playoff(PLAYOFF_SIZE)
        bracket = Bracket(
            id=new_id(),
            tournament_id=tournament_id,
            kind=BracketKind.PLAYOFF,
            competitors=ids,
            winners_rounds=shape.winners_rounds,
            losers_rounds=0,
            best_of=best_of,
            created_at=now,
            source_stage_id=source_stage_id,
        )

        pairs = [(ids[hi - 1], ids[lo - 1]) for hi, lo in QUARTERFINAL_SEEDS]
        matches = self._brackets.create_first_round(bracket, pairs, now)

        self._repo.save_bracket(bracket)
        log.info("playoff bracket %s seeded for tournament %s (best of %d)", bracket.id, tournament_id, best_of)
        return bracket, matches

    async def seed_from_stage(self, *, stage_id: str, best_of: int, now: datetime) -> tuple[Bracket, list[Match]]:
        """Top eight of a finalized Swiss stage, in ranking order. A stage seeds at most one playoff."""
        stage = await self._repo.get_stage(stage_id=stage_id)
        if not stage.is_complete:
            raise PreconditionError(f"stage {stage_id} is not finalized")
        existing = await self._repo.brackets_seeded_from(stage_id=stage.id)
        if existing:
            raise PreconditionError(f"stage {stage_id} already seeded playoff bracket {existing[0].id}")

        return await self.generate_playoff_seeding(
            tournament_id=stage.tournament_id,
            seeds=qualifiers(stage.standings, PLAYOFF_SIZE),
            best_of=best_of,
            now=now,
            source_stage_id=stage.id,
        )
