# services/tournament_engine.py
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, Optional, Sequence, TypeVar

from domain.enums import BracketKey
from domain.errors import ConcurrencyConflict, NotFoundError, PreconditionError, ValidationError
from domain.models import Bracket, MapResult, Match, SchedulingProposal, Stage, Standing, utcnow
from repositories.store import DocumentStore, Transaction
from repositories.tournament_repo import MATCHES, TournamentRepo
from services.bracket_service import BracketAdvance, BracketService
from services.notifications import EngineEvent, EventKind, NotificationDispatcher, Notifier, NullNotifier
from services.playoff_service import PLAYOFF_SIZE, PlayoffService
from services.revert_service import RevertResult, RevertService
from services.round_service import DEFAULT_WINDOW_DAYS, RoundService, RoundStart, RoundStatus
from services.scheduling_service import SchedulingService

log = logging.getLogger(__name__)

T = TypeVar("T")

Events = list[EngineEvent]


@dataclass
class Services:
    """Per-transaction service graph."""

    repo: TournamentRepo
    rounds: RoundService
    brackets: BracketService
    playoffs: PlayoffService
    reverts: RevertService
    scheduling: SchedulingService


class TournamentEngine:
    """
    Public entry point. Every operation runs as one store transaction and
    either fully commits or fully fails; notifications go out only after commit.

    Advance/revert/finalize on a stage, and bracket-level writes on a bracket,
    are serialized per aggregate: a second attempt while one is running raises
    ConcurrencyConflict instead of waiting.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        notifier: Notifier | None = None,
        window_days: int = DEFAULT_WINDOW_DAYS,
        playoff_best_of: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._dispatcher = NotificationDispatcher(notifier or NullNotifier())
        self._window_days = window_days
        self._playoff_best_of = playoff_best_of
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    # -------------------------
    # Plumbing
    # -------------------------

    def _services(self, tx: Transaction) -> Services:
        repo = TournamentRepo(tx)
        brackets = BracketService(repo)
        return Services(
            repo=repo,
            rounds=RoundService(repo, window_days=self._window_days),
            brackets=brackets,
            playoffs=PlayoffService(repo, brackets),
            reverts=RevertService(repo),
            scheduling=SchedulingService(repo),
        )

    @asynccontextmanager
    async def _exclusive(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        if lock.locked():
            raise ConcurrencyConflict(f"another operation on {key} is in progress")
        async with lock:
            yield

    async def _run(self, fn: Callable[[Services, Events], Awaitable[T]]) -> T:
        events: Events = []

        async def body(tx: Transaction) -> T:
            events.clear()
            return await fn(self._services(tx), events)

        result = await self._store.run_transaction(body)
        if events:
            self._dispatcher.dispatch(events)
        return result

    async def drain_notifications(self) -> None:
        await self._dispatcher.drain()

    async def _lock_key_for_match(self, match_id: str) -> str:
        doc = await self._store.get(MATCHES, match_id)
        if doc is None:
            raise NotFoundError(f"match {match_id} not found")
        if doc.get("bracket_id"):
            return f"bracket:{doc['bracket_id']}"
        return f"stage:{doc.get('stage_id')}"

    @staticmethod
    def _bracket_events(adv: BracketAdvance) -> Events:
        tid = adv.bracket.tournament_id
        out: Events = [EngineEvent(EventKind.MATCH_COMPLETED, tid, matches=(adv.match,))]
        if adv.placed:
            out.append(EngineEvent(EventKind.MATCH_PLACED, tid, matches=tuple(adv.placed)))
        if adv.champion_id:
            out.append(EngineEvent(EventKind.CHAMPION, tid, competitor_id=adv.champion_id))
        return out

    # -------------------------
    # Swiss stage
    # -------------------------

    async def start_stage(
        self,
        *,
        tournament_id: str,
        competitors: Sequence[str],
        round_count: int,
        starts_at: Optional[datetime] = None,
        shuffle_seed: Optional[int] = None,
    ) -> RoundStart:
        now = self._clock()

        async def op(s: Services, events: Events) -> RoundStart:
            started = await s.rounds.start_stage(
                tournament_id=tournament_id,
                competitors=competitors,
                round_count=round_count,
                starts_at=starts_at or now,
                now=now,
                shuffle_seed=shuffle_seed,
            )
            events.append(
                EngineEvent(
                    EventKind.ROUND_STARTED,
                    tournament_id,
                    round_no=1,
                    ends_at=started.round.ends_at,
                    matches=tuple(started.matches),
                )
            )
            return started

        async with self._exclusive(f"tournament:{tournament_id}"):
            return await self._run(op)

    async def record_match_result(
        self,
        *,
        match_id: str,
        team1_score: int,
        team2_score: int,
        map_results: Sequence[MapResult] = (),
    ) -> Match:
        now = self._clock()

        async def op(s: Services, events: Events) -> Match:
            match = await s.repo.get_match(match_id=match_id)
            if match.bracket_id is not None:
                adv = await s.brackets.record_result(
                    match=match, team1_score=team1_score, team2_score=team2_score, map_results=map_results, now=now
                )
                events.extend(self._bracket_events(adv))
                return adv.match

            match, _stage = await s.rounds.record_result(
                match=match, team1_score=team1_score, team2_score=team2_score, map_results=map_results, now=now
            )
            events.append(EngineEvent(EventKind.MATCH_COMPLETED, match.tournament_id, matches=(match,)))
            return match

        return await self._run(op)

    async def force_complete_match(
        self,
        *,
        match_id: str,
        team1_score: int,
        team2_score: int,
        map_results: Sequence[MapResult] = (),
        winner_id: Optional[str] = None,
    ) -> Match:
        """
        Admin override: complete any open match with an explicit score line.
        The winner comes from the scores unless given; a given winner may not
        contradict a decisive score line.
        """
        now = self._clock()

        async def op(s: Services, events: Events) -> Match:
            match = await s.repo.get_match(match_id=match_id)
            if match.bracket_id is not None:
                adv = await s.brackets.assign_winner(
                    match=match,
                    winner_id=winner_id,
                    team1_score=team1_score,
                    team2_score=team2_score,
                    map_results=map_results,
                    now=now,
                )
                events.extend(self._bracket_events(adv))
                return adv.match

            match, _stage = await s.rounds.record_result(
                match=match,
                team1_score=team1_score,
                team2_score=team2_score,
                map_results=map_results,
                now=now,
                winner_id=winner_id,
                admin_assigned=True,
            )
            events.append(EngineEvent(EventKind.MATCH_COMPLETED, match.tournament_id, matches=(match,)))
            return match

        async with self._exclusive(await self._lock_key_for_match(match_id)):
            return await self._run(op)

    async def check_round_completion(self, *, stage_id: str) -> RoundStatus:
        now = self._clock()

        async def op(s: Services, _events: Events) -> RoundStatus:
            return await s.rounds.check_round_completion(stage_id=stage_id, now=now)

        return await self._run(op)

    async def process_forfeits(self, *, stage_id: str) -> list[Match]:
        now = self._clock()

        async def op(s: Services, events: Events) -> list[Match]:
            resolved = await s.rounds.process_forfeits(stage_id=stage_id, now=now)
            if resolved:
                events.append(EngineEvent(EventKind.MATCH_COMPLETED, resolved[0].tournament_id, matches=tuple(resolved)))
            return resolved

        async with self._exclusive(f"stage:{stage_id}"):
            return await self._run(op)

    async def advance_round(self, *, stage_id: str) -> RoundStart:
        now = self._clock()

        async def op(s: Services, events: Events) -> RoundStart:
            started = await s.rounds.advance_round(stage_id=stage_id, now=now)
            tid = started.stage.tournament_id
            if started.forfeited:
                events.append(EngineEvent(EventKind.MATCH_COMPLETED, tid, matches=tuple(started.forfeited)))
            events.append(EngineEvent(EventKind.STANDINGS, tid, standings=tuple(started.stage.standings)))
            events.append(
                EngineEvent(
                    EventKind.ROUND_STARTED,
                    tid,
                    round_no=started.round.round_no,
                    ends_at=started.round.ends_at,
                    matches=tuple(started.matches),
                )
            )
            return started

        async with self._exclusive(f"stage:{stage_id}"):
            return await self._run(op)

    async def finalize_stage(self, *, stage_id: str) -> list[Standing]:
        now = self._clock()

        async def op(s: Services, events: Events) -> list[Standing]:
            final = await s.rounds.finalize_stage(stage_id=stage_id, now=now)
            stage = await s.repo.get_stage(stage_id=stage_id)
            events.append(EngineEvent(EventKind.STANDINGS, stage.tournament_id, standings=tuple(final)))
            return final

        async with self._exclusive(f"stage:{stage_id}"):
            return await self._run(op)

    async def qualifiers(self, *, stage_id: str, count: int = PLAYOFF_SIZE) -> list[str]:
        stage = await self.get_stage(stage_id=stage_id)
        return RoundService.qualifiers(stage, count)

    # -------------------------
    # Brackets
    # -------------------------

    async def create_double_elimination(
        self, *, tournament_id: str, competitors: Sequence[str], best_of: int = 1
    ) -> tuple[Bracket, list[Match]]:
        now = self._clock()

        async def op(s: Services, events: Events) -> tuple[Bracket, list[Match]]:
            bracket, matches = await s.brackets.create_double_elimination(
                tournament_id=tournament_id, competitors=competitors, best_of=best_of, now=now
            )
            events.append(EngineEvent(EventKind.ROUND_STARTED, tournament_id, round_no=1, matches=tuple(matches)))
            return bracket, matches

        return await self._run(op)

    async def generate_playoff_seeding(
        self, *, tournament_id: str, seeds: Sequence[str], best_of: Optional[int] = None
    ) -> tuple[Bracket, list[Match]]:
        now = self._clock()

        async def op(s: Services, events: Events) -> tuple[Bracket, list[Match]]:
            bracket, matches = await s.playoffs.generate_playoff_seeding(
                tournament_id=tournament_id,
                seeds=seeds,
                best_of=best_of if best_of is not None else self._playoff_best_of,
                now=now,
            )
            events.append(EngineEvent(EventKind.ROUND_STARTED, tournament_id, round_no=1, matches=tuple(matches)))
            return bracket, matches

        return await self._run(op)

    async def seed_playoffs_from_stage(
        self, *, stage_id: str, best_of: Optional[int] = None
    ) -> tuple[Bracket, list[Match]]:
        """Top eight of a finalized Swiss stage, in ranking order. Each stage seeds one playoff."""
        now = self._clock()

        async def op(s: Services, events: Events) -> tuple[Bracket, list[Match]]:
            bracket, matches = await s.playoffs.seed_from_stage(
                stage_id=stage_id,
                best_of=best_of if best_of is not None else self._playoff_best_of,
                now=now,
            )
            events.append(
                EngineEvent(EventKind.ROUND_STARTED, bracket.tournament_id, round_no=1, matches=tuple(matches))
            )
            return bracket, matches

        async with self._exclusive(f"stage:{stage_id}"):
            return await self._run(op)

    async def advance_bracket_winner(self, *, match_id: str, winner_id: str) -> Match:
        now = self._clock()

        async def op(s: Services, events: Events) -> Match:
            match = await s.repo.get_match(match_id=match_id)
            if match.bracket_id is None:
                raise PreconditionError(f"match {match.code} is not a bracket match")
            adv = await s.brackets.assign_winner(match=match, winner_id=winner_id, now=now)
            events.extend(self._bracket_events(adv))
            return adv.match

        async with self._exclusive(await self._lock_key_for_match(match_id)):
            return await self._run(op)

    # -------------------------
    # Reverts
    # -------------------------

    async def revert_to_round(self, *, stage_id: str, round_no: int) -> Stage:
        async def op(s: Services, events: Events) -> Stage:
            result = await s.reverts.revert_to_round(stage_id=stage_id, round_no=round_no)
            stage = result.stage
            events.append(
                EngineEvent(
                    EventKind.REVERTED,
                    stage.tournament_id,
                    round_no=round_no,
                    message=f"Stage reverted to round {round_no}",
                )
            )
            return stage

        async with self._exclusive(f"stage:{stage_id}"):
            return await self._run(op)

    async def revert_bracket_round(self, *, bracket_id: str, bracket_key: BracketKey, round_no: int) -> RevertResult:
        now = self._clock()

        async def op(s: Services, events: Events) -> RevertResult:
            result = await s.reverts.revert_bracket_round(
                bracket_id=bracket_id, bracket_key=bracket_key, round_no=round_no, now=now
            )
            events.append(
                EngineEvent(
                    EventKind.REVERTED,
                    result.bracket.tournament_id,
                    round_no=round_no,
                    message=f"{bracket_key.value} round {round_no} reverted",
                )
            )
            return result

        async with self._exclusive(f"bracket:{bracket_id}"):
            return await self._run(op)

    async def revert_single_match(self, *, match_id: str) -> RevertResult:
        now = self._clock()

        async def op(s: Services, events: Events) -> RevertResult:
            result = await s.reverts.revert_single_match(match_id=match_id, now=now)
            tid = result.reset[0].tournament_id if result.reset else ""
            events.append(EngineEvent(EventKind.REVERTED, tid, message=f"{len(result.reset)} match(es) reset"))
            return result

        async with self._exclusive(await self._lock_key_for_match(match_id)):
            return await self._run(op)

    async def revert_team_advancement(self, *, match_id: str, competitor_id: str) -> RevertResult:
        now = self._clock()

        async def op(s: Services, events: Events) -> RevertResult:
            result = await s.reverts.revert_team_advancement(match_id=match_id, competitor_id=competitor_id, now=now)
            events.append(
                EngineEvent(
                    EventKind.REVERTED,
                    result.bracket.tournament_id,
                    competitor_id=competitor_id,
                    message=f"Advancement of {competitor_id} reverted",
                )
            )
            return result

        async with self._exclusive(await self._lock_key_for_match(match_id)):
            return await self._run(op)

    # -------------------------
    # Scheduling
    # -------------------------

    async def propose_time(
        self, *, match_id: str, competitor_id: str, proposed_at: datetime, message: Optional[str] = None
    ) -> SchedulingProposal:
        now = self._clock()

        async def op(s: Services, events: Events) -> SchedulingProposal:
            match, proposal = await s.scheduling.propose_time(
                match_id=match_id, competitor_id=competitor_id, proposed_at=proposed_at, message=message, now=now
            )
            events.append(EngineEvent(EventKind.PROPOSAL, match.tournament_id, matches=(match,), proposal=proposal))
            return proposal

        return await self._run(op)

    async def respond_to_proposal(
        self,
        *,
        match_id: str,
        proposal_id: str,
        competitor_id: str,
        accept: bool,
        message: Optional[str] = None,
        alternative_at: Optional[datetime] = None,
    ) -> Match:
        now = self._clock()

        async def op(s: Services, events: Events) -> Match:
            match, counter = await s.scheduling.respond_to_proposal(
                match_id=match_id,
                proposal_id=proposal_id,
                competitor_id=competitor_id,
                accept=accept,
                message=message,
                alternative_at=alternative_at,
                now=now,
            )
            if counter is not None:
                events.append(EngineEvent(EventKind.PROPOSAL, match.tournament_id, matches=(match,), proposal=counter))
            else:
                events.append(EngineEvent(EventKind.MATCH_SCHEDULED, match.tournament_id, matches=(match,)))
            return match

        return await self._run(op)

    async def open_ready_up(self, *, match_id: str, force: bool = False) -> Match:
        now = self._clock()

        async def op(s: Services, _events: Events) -> Match:
            return await s.scheduling.open_ready_up(match_id=match_id, now=now, force=force)

        return await self._run(op)

    async def ready_up(self, *, match_id: str, competitor_id: str) -> Match:
        now = self._clock()

        async def op(s: Services, _events: Events) -> Match:
            return await s.scheduling.ready_up(match_id=match_id, competitor_id=competitor_id, now=now)

        return await self._run(op)

    # -------------------------
    # Reads
    # -------------------------

    async def get_stage(self, *, stage_id: str) -> Stage:
        async def op(s: Services, _events: Events) -> Stage:
            return await s.repo.get_stage(stage_id=stage_id)

        return await self._run(op)

    async def get_standings(self, *, stage_id: str) -> list[Standing]:
        stage = await self.get_stage(stage_id=stage_id)
        return list(stage.standings)

    async def get_bracket(self, *, bracket_id: str) -> tuple[Bracket, list[Match]]:
        async def op(s: Services, _events: Events) -> tuple[Bracket, list[Match]]:
            bracket = await s.repo.get_bracket(bracket_id=bracket_id)
            return bracket, await s.repo.bracket_matches(bracket_id=bracket_id)

        return await self._run(op)

    async def get_match(self, *, match_id: str) -> Match:
        async def op(s: Services, _events: Events) -> Match:
            return await s.repo.get_match(match_id=match_id)

        return await self._run(op)

    async def list_matches(
        self,
        *,
        stage_id: Optional[str] = None,
        bracket_id: Optional[str] = None,
        round_no: Optional[int] = None,
    ) -> list[Match]:
        if (stage_id is None) == (bracket_id is None):
            raise ValidationError("pass exactly one of stage_id or bracket_id")

        async def op(s: Services, _events: Events) -> list[Match]:
            if stage_id is not None:
                return await s.repo.stage_matches(stage_id=stage_id, round_no=round_no)
            matches = await s.repo.bracket_matches(bracket_id=bracket_id)
            return [m for m in matches if round_no is None or m.round_no == round_no]

        return await self._run(op)

    async def active_stage_for(self, *, tournament_id: str) -> Optional[Stage]:
        async def op(s: Services, _events: Events) -> Optional[Stage]:
            return await s.repo.active_stage_for(tournament_id=tournament_id)

        return await self._run(op)

    async def active_stages(self) -> list[Stage]:
        async def op(s: Services, _events: Events) -> list[Stage]:
            return await s.repo.active_stages()

        return await self._run(op)
