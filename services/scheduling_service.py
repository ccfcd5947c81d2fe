# services/scheduling_service.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from domain.enums import MatchState, ProposalStatus
from domain.errors import NotFoundError, PreconditionError, ValidationError
from domain.models import Match, SchedulingProposal, new_id
from repositories.tournament_repo import TournamentRepo

log = logging.getLogger(__name__)

FORFEIT_GRACE = timedelta(minutes=15)
READY_UP_LEAD = timedelta(minutes=15)
READY_UP_EARLY_WINDOW = timedelta(hours=24)

_SCHEDULABLE = (MatchState.PENDING_SCHEDULE, MatchState.SCHEDULED)


def as_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken as UTC, the same way stored documents are read."""
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def pending_proposals(match: Match, competitor_id: Optional[str] = None) -> list[SchedulingProposal]:
    return [
        p for p in match.proposals
        if p.status == ProposalStatus.PENDING and (competitor_id is None or p.proposed_by == competitor_id)
    ]


def ready_up_opens_at(match: Match, now: datetime) -> Optional[datetime]:
    """
    Ready-up opens 15 minutes before the start, or immediately once the start
    is less than 24 hours away. None when the match has no start time.
    """
    if match.scheduled_at is None:
        return None
    if match.scheduled_at - now <= READY_UP_EARLY_WINDOW:
        return now
    return match.scheduled_at - READY_UP_LEAD


class SchedulingService:
    def __init__(self, repo: TournamentRepo) -> None:
        self._repo = repo

    async def _match_for(self, match_id: str, competitor_id: str) -> Match:
        match = await self._repo.get_match(match_id=match_id)
        if match.is_bye or not match.has_competitor(competitor_id):
            raise ValidationError(f"{competitor_id} is not playing in {match.code}")
        return match

    # -------------------------
    # Proposals
    # -------------------------

    def _file_proposal(
        self, match: Match, competitor_id: str, proposed_at: datetime, message: Optional[str], now: datetime
    ) -> SchedulingProposal:
        # at most one pending proposal per competitor per match
        for p in pending_proposals(match, competitor_id):
            p.status = ProposalStatus.CANCELLED
            p.responded_at = now

        proposal = SchedulingProposal(
            id=new_id(),
            proposed_by=competitor_id,
            proposed_at=proposed_at,
            message=message,
            created_at=now,
        )
        match.proposals.append(proposal)
        return proposal

    async def propose_time(
        self,
        *,
        match_id: str,
        competitor_id: str,
        proposed_at: datetime,
        message: Optional[str] = None,
        now: datetime,
    ) -> tuple[Match, SchedulingProposal]:
        proposed_at = as_utc(proposed_at)
        match = await self._match_for(match_id, competitor_id)
        if match.state not in _SCHEDULABLE or not match.both_slots_filled:
            raise PreconditionError(f"match {match.code} cannot be scheduled in state {match.state.value}")
        if proposed_at <= now:
            raise ValidationError("proposed time must be in the future")

        proposal = self._file_proposal(match, competitor_id, proposed_at, message, now)
        match.updated_at = now
        self._repo.save_match(match)
        log.info("match %s: %s proposed %s", match.code, competitor_id, proposed_at.isoformat())
        return match, proposal

    async def respond_to_proposal(
        self,
        *,
        match_id: str,
        proposal_id: str,
        competitor_id: str,
        accept: bool,
        message: Optional[str] = None,
        alternative_at: Optional[datetime] = None,
        now: datetime,
    ) -> tuple[Match, Optional[SchedulingProposal]]:
        """
        Accept: the match is scheduled at the proposed time.
        Deny: requires an alternative time, filed as a new pending proposal
        by the responder. Returns the match and that new proposal, if any.
        """
        match = await self._match_for(match_id, competitor_id)
        proposal = next((p for p in match.proposals if p.id == proposal_id), None)
        if proposal is None:
            raise NotFoundError(f"proposal {proposal_id} not found on {match.code}")
        if proposal.status != ProposalStatus.PENDING:
            raise PreconditionError(f"proposal {proposal_id} is {proposal.status.value}")
        if proposal.proposed_by == competitor_id:
            raise ValidationError("a competitor cannot answer its own proposal")
        if match.state not in _SCHEDULABLE:
            raise PreconditionError(f"match {match.code} cannot be scheduled in state {match.state.value}")

        proposal.responded_at = now
        proposal.response_message = message
        counter: Optional[SchedulingProposal] = None

        if accept:
            proposal.status = ProposalStatus.ACCEPTED
            for p in pending_proposals(match):
                p.status = ProposalStatus.CANCELLED
                p.responded_at = now
            match.scheduled_at = proposal.proposed_at
            match.forfeit_at = proposal.proposed_at + FORFEIT_GRACE
            match.state = MatchState.SCHEDULED
            log.info("match %s scheduled for %s", match.code, proposal.proposed_at.isoformat())
        else:
            if alternative_at is None:
                raise ValidationError("denying a proposal requires an alternative time")
            alternative_at = as_utc(alternative_at)
            if alternative_at <= now:
                raise ValidationError("alternative time must be in the future")
            proposal.status = ProposalStatus.DENIED
            counter = self._file_proposal(match, competitor_id, alternative_at, message, now)

        match.updated_at = now
        self._repo.save_match(match)
        return match, counter

    # -------------------------
    # Ready-up
    # -------------------------

    async def open_ready_up(self, *, match_id: str, now: datetime, force: bool = False) -> Match:
        match = await self._repo.get_match(match_id=match_id)
        if match.state != MatchState.SCHEDULED:
            raise PreconditionError(f"match {match.code} is not scheduled")

        if not force:
            opens = ready_up_opens_at(match, now)
            if opens is None or now < opens:
                raise PreconditionError(f"ready-up for {match.code} is not open yet")

        match.state = MatchState.READY
        if match.forfeit_at is None:
            match.forfeit_at = (match.scheduled_at or now) + FORFEIT_GRACE
        match.updated_at = now
        self._repo.save_match(match)
        return match

    async def ready_up(self, *, match_id: str, competitor_id: str, now: datetime) -> Match:
        match = await self._match_for(match_id, competitor_id)
        if match.state != MatchState.READY:
            raise PreconditionError(f"ready-up for {match.code} is not open")

        if competitor_id == match.team1_id:
            match.team1_ready = True
        else:
            match.team2_ready = True

        if match.team1_ready and match.team2_ready:
            match.state = MatchState.IN_PROGRESS
            log.info("match %s started", match.code)
        match.updated_at = now
        self._repo.save_match(match)
        return match
