from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from domain.enums import BracketKey, BracketKind, MatchState, ProposalStatus

# Opponent recorded for a competitor that sat out a round.
BYE = "BYE"


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def match_code(bracket: str, round_no: int, match_no: int) -> str:
    b = bracket.upper()
    if b == "GF":
        return f"GF-{match_no:02d}"
    if b == "NONE":
        return f"R{round_no}-{match_no:02d}"
    return f"{b}{round_no}-{match_no:02d}"


def next_power_of_two(n: int) -> int:
    if n <= 1:
        return 1
    p = 1
    while p < n:
        p <<= 1
    return p


def is_power_of_two(n: int) -> bool:
    return n >= 1 and next_power_of_two(n) == n


def seeded_positions(n: int) -> list[int]:
    """
    Standard tournament seeding positions list (length n, n is power of two).
    Example n=8 => [1,8,4,5,2,7,3,6]
    """
    if n <= 1:
        return [1]
    if n == 2:
        return [1, 2]
    prev = seeded_positions(n // 2)
    out: list[int] = []
    for s in prev:
        out.append(s)
        out.append(n + 1 - s)
    return out


def _dt_out(v: Optional[datetime]) -> Optional[str]:
    return v.isoformat() if v is not None else None


def _dt_in(v: Any) -> Optional[datetime]:
    if v is None or v == "":
        return None
    if isinstance(v, datetime):
        dt = v
    else:
        dt = datetime.fromisoformat(str(v))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class MapResult:
    team1_score: int
    team2_score: int

    def to_doc(self) -> dict[str, Any]:
        return {"team1_score": self.team1_score, "team2_score": self.team2_score}

    @classmethod
    def from_doc(cls, d: Mapping[str, Any]) -> "MapResult":
        return cls(team1_score=int(d["team1_score"]), team2_score=int(d["team2_score"]))


@dataclass
class SchedulingProposal:
    id: str
    proposed_by: str
    proposed_at: datetime
    status: ProposalStatus = ProposalStatus.PENDING
    message: Optional[str] = None
    created_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    response_message: Optional[str] = None

    def to_doc(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "proposed_by": self.proposed_by,
            "proposed_at": _dt_out(self.proposed_at),
            "status": self.status.value,
            "message": self.message,
            "created_at": _dt_out(self.created_at),
            "responded_at": _dt_out(self.responded_at),
            "response_message": self.response_message,
        }

    @classmethod
    def from_doc(cls, d: Mapping[str, Any]) -> "SchedulingProposal":
        return cls(
            id=str(d["id"]),
            proposed_by=str(d["proposed_by"]),
            proposed_at=_dt_in(d["proposed_at"]),
            status=ProposalStatus(d.get("status") or ProposalStatus.PENDING.value),
            message=d.get("message"),
            created_at=_dt_in(d.get("created_at")),
            responded_at=_dt_in(d.get("responded_at")),
            response_message=d.get("response_message"),
        )


@dataclass
class Standing:
    competitor_id: str
    points: int = 0
    match_wins: int = 0
    match_losses: int = 0
    game_wins: int = 0
    game_losses: int = 0
    rounds_won: int = 0
    rounds_lost: int = 0
    opponents: list[str] = field(default_factory=list)
    buchholz: int = 0

    @property
    def round_differential(self) -> int:
        return self.rounds_won - self.rounds_lost

    @property
    def had_bye(self) -> bool:
        return BYE in self.opponents

    def to_doc(self) -> dict[str, Any]:
        return {
            "competitor_id": self.competitor_id,
            "points": self.points,
            "match_wins": self.match_wins,
            "match_losses": self.match_losses,
            "game_wins": self.game_wins,
            "game_losses": self.game_losses,
            "rounds_won": self.rounds_won,
            "rounds_lost": self.rounds_lost,
            "opponents": list(self.opponents),
            "buchholz": self.buchholz,
        }

    @classmethod
    def from_doc(cls, d: Mapping[str, Any]) -> "Standing":
        return cls(
            competitor_id=str(d["competitor_id"]),
            points=int(d.get("points") or 0),
            match_wins=int(d.get("match_wins") or 0),
            match_losses=int(d.get("match_losses") or 0),
            game_wins=int(d.get("game_wins") or 0),
            game_losses=int(d.get("game_losses") or 0),
            rounds_won=int(d.get("rounds_won") or 0),
            rounds_lost=int(d.get("rounds_lost") or 0),
            opponents=[str(o) for o in (d.get("opponents") or [])],
            buchholz=int(d.get("buchholz") or 0),
        )


@dataclass
class Match:
    id: str
    tournament_id: str
    round_no: int
    match_no: int
    team1_id: Optional[str] = None
    team2_id: Optional[str] = None
    stage_id: Optional[str] = None
    bracket_id: Optional[str] = None
    bracket: BracketKey = BracketKey.NONE
    team1_score: int = 0
    team2_score: int = 0
    map_results: list[MapResult] = field(default_factory=list)
    is_complete: bool = False
    winner_id: Optional[str] = None
    state: MatchState = MatchState.PENDING_SCHEDULE
    best_of: int = 1
    scheduled_at: Optional[datetime] = None
    forfeit_at: Optional[datetime] = None
    team1_ready: bool = False
    team2_ready: bool = False
    proposals: list[SchedulingProposal] = field(default_factory=list)
    admin_assigned: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def code(self) -> str:
        return match_code(self.bracket.value, self.round_no, self.match_no)

    @property
    def is_bye(self) -> bool:
        return self.team2_id == BYE or self.team1_id == BYE

    @property
    def both_slots_filled(self) -> bool:
        return self.team1_id is not None and self.team2_id is not None

    @property
    def loser_id(self) -> Optional[str]:
        if not self.is_complete or self.winner_id is None or self.is_bye:
            return None
        return self.team2_id if self.winner_id == self.team1_id else self.team1_id

    def has_competitor(self, competitor_id: str) -> bool:
        return competitor_id in (self.team1_id, self.team2_id)

    def opponent_of(self, competitor_id: str) -> Optional[str]:
        if competitor_id == self.team1_id:
            return self.team2_id
        if competitor_id == self.team2_id:
            return self.team1_id
        return None

    def to_doc(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "stage_id": self.stage_id,
            "bracket_id": self.bracket_id,
            "bracket": self.bracket.value,
            "round_no": self.round_no,
            "match_no": self.match_no,
            "team1_id": self.team1_id,
            "team2_id": self.team2_id,
            "team1_score": self.team1_score,
            "team2_score": self.team2_score,
            "map_results": [m.to_doc() for m in self.map_results],
            "is_complete": self.is_complete,
            "winner_id": self.winner_id,
            "state": self.state.value,
            "best_of": self.best_of,
            "scheduled_at": _dt_out(self.scheduled_at),
            "forfeit_at": _dt_out(self.forfeit_at),
            "team1_ready": self.team1_ready,
            "team2_ready": self.team2_ready,
            "proposals": [p.to_doc() for p in self.proposals],
            "admin_assigned": self.admin_assigned,
            "created_at": _dt_out(self.created_at),
            "updated_at": _dt_out(self.updated_at),
        }

    @classmethod
    def from_doc(cls, d: Mapping[str, Any]) -> "Match":
        return cls(
            id=str(d["id"]),
            tournament_id=str(d["tournament_id"]),
            stage_id=d.get("stage_id"),
            bracket_id=d.get("bracket_id"),
            bracket=BracketKey(d.get("bracket") or BracketKey.NONE.value),
            round_no=int(d["round_no"]),
            match_no=int(d["match_no"]),
            team1_id=d.get("team1_id"),
            team2_id=d.get("team2_id"),
            team1_score=int(d.get("team1_score") or 0),
            team2_score=int(d.get("team2_score") or 0),
            map_results=[MapResult.from_doc(m) for m in (d.get("map_results") or [])],
            is_complete=bool(d.get("is_complete")),
            winner_id=d.get("winner_id"),
            state=MatchState(d.get("state") or MatchState.PENDING_SCHEDULE.value),
            best_of=int(d.get("best_of") or 1),
            scheduled_at=_dt_in(d.get("scheduled_at")),
            forfeit_at=_dt_in(d.get("forfeit_at")),
            team1_ready=bool(d.get("team1_ready")),
            team2_ready=bool(d.get("team2_ready")),
            proposals=[SchedulingProposal.from_doc(p) for p in (d.get("proposals") or [])],
            admin_assigned=bool(d.get("admin_assigned")),
            created_at=_dt_in(d.get("created_at")),
            updated_at=_dt_in(d.get("updated_at")),
        )


@dataclass
class Round:
    id: str
    stage_id: str
    round_no: int
    starts_at: datetime
    ends_at: datetime
    is_complete: bool = False
    match_ids: list[str] = field(default_factory=list)

    def window_elapsed(self, now: datetime) -> bool:
        return now >= self.ends_at

    def to_doc(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "stage_id": self.stage_id,
            "round_no": self.round_no,
            "starts_at": _dt_out(self.starts_at),
            "ends_at": _dt_out(self.ends_at),
            "is_complete": self.is_complete,
            "match_ids": list(self.match_ids),
        }

    @classmethod
    def from_doc(cls, d: Mapping[str, Any]) -> "Round":
        return cls(
            id=str(d["id"]),
            stage_id=str(d["stage_id"]),
            round_no=int(d["round_no"]),
            starts_at=_dt_in(d["starts_at"]),
            ends_at=_dt_in(d["ends_at"]),
            is_complete=bool(d.get("is_complete")),
            match_ids=[str(m) for m in (d.get("match_ids") or [])],
        )


@dataclass
class Stage:
    id: str
    tournament_id: str
    total_rounds: int
    competitors: list[str] = field(default_factory=list)  # registration order
    current_round: int = 1
    standings: list[Standing] = field(default_factory=list)
    round_ids: list[str] = field(default_factory=list)
    is_active: bool = True
    is_complete: bool = False
    window_days: int = 7
    revision: int = 0
    created_at: Optional[datetime] = None

    def standing_for(self, competitor_id: str) -> Optional[Standing]:
        for s in self.standings:
            if s.competitor_id == competitor_id:
                return s
        return None

    def to_doc(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "total_rounds": self.total_rounds,
            "competitors": list(self.competitors),
            "current_round": self.current_round,
            "standings": [s.to_doc() for s in self.standings],
            "round_ids": list(self.round_ids),
            "is_active": self.is_active,
            "is_complete": self.is_complete,
            "window_days": self.window_days,
            "revision": self.revision,
            "created_at": _dt_out(self.created_at),
        }

    @classmethod
    def from_doc(cls, d: Mapping[str, Any]) -> "Stage":
        return cls(
            id=str(d["id"]),
            tournament_id=str(d["tournament_id"]),
            total_rounds=int(d["total_rounds"]),
            competitors=[str(c) for c in (d.get("competitors") or [])],
            current_round=int(d.get("current_round") or 1),
            standings=[Standing.from_doc(s) for s in (d.get("standings") or [])],
            round_ids=[str(r) for r in (d.get("round_ids") or [])],
            is_active=bool(d.get("is_active")),
            is_complete=bool(d.get("is_complete")),
            window_days=int(d.get("window_days") or 7),
            revision=int(d.get("revision") or 0),
            created_at=_dt_in(d.get("created_at")),
        )


@dataclass
class Bracket:
    id: str
    tournament_id: str
    kind: BracketKind
    competitors: list[str]
    winners_rounds: int
    losers_rounds: int = 0
    best_of: int = 1
    champion_id: Optional[str] = None
    is_complete: bool = False
    revision: int = 0
    created_at: Optional[datetime] = None
    source_stage_id: Optional[str] = None

    def to_doc(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "kind": self.kind.value,
            "competitors": list(self.competitors),
            "winners_rounds": self.winners_rounds,
            "losers_rounds": self.losers_rounds,
            "best_of": self.best_of,
            "champion_id": self.champion_id,
            "is_complete": self.is_complete,
            "revision": self.revision,
            "created_at": _dt_out(self.created_at),
            "source_stage_id": self.source_stage_id,
        }

    @classmethod
    def from_doc(cls, d: Mapping[str, Any]) -> "Bracket":
        return cls(
            id=str(d["id"]),
            tournament_id=str(d["tournament_id"]),
            kind=BracketKind(d["kind"]),
            competitors=[str(c) for c in (d.get("competitors") or [])],
            winners_rounds=int(d["winners_rounds"]),
            losers_rounds=int(d.get("losers_rounds") or 0),
            best_of=int(d.get("best_of") or 1),
            champion_id=d.get("champion_id"),
            is_complete=bool(d.get("is_complete")),
            revision=int(d.get("revision") or 0),
            created_at=_dt_in(d.get("created_at")),
            source_stage_id=d.get("source_stage_id"),
        )
