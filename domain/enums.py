from __future__ import annotations

from enum import Enum


class BracketKey(str, Enum):
    W = "W"     # Winners
    L = "L"     # Losers
    GF = "GF"   # Grand Final
    NONE = "NONE"  # Swiss rounds


class BracketKind(str, Enum):
    DOUBLE = "double_elim"
    PLAYOFF = "playoff"


class MatchState(str, Enum):
    PENDING_PAIRING = "pending_pairing"
    PENDING_SCHEDULE = "pending_schedule"
    SCHEDULED = "scheduled"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FORFEITED = "forfeited"

    @property
    def is_final(self) -> bool:
        return self in (MatchState.COMPLETED, MatchState.FORFEITED)


class ProposalStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DENIED = "denied"
    CANCELLED = "cancelled"
