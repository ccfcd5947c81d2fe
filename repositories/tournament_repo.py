# repositories/tournament_repo.py
from __future__ import annotations

from typing import Optional

from domain.enums import BracketKey
from domain.errors import NotFoundError
from domain.models import Bracket, Match, Round, Stage
from domain.routing import NodeRef
from repositories.store import Transaction

STAGES = "stages"
ROUNDS = "rounds"
MATCHES = "matches"
BRACKETS = "brackets"


def _match_order(m: Match) -> tuple[int, int, int]:
    bracket_rank = {BracketKey.NONE: 0, BracketKey.W: 0, BracketKey.L: 1, BracketKey.GF: 2}
    return (bracket_rank[m.bracket], m.round_no, m.match_no)


class TournamentRepo:
    """
    Typed access to tournament documents inside one transaction.
    Repos hold no business rules; save_* calls are buffered until commit.
    """

    def __init__(self, tx: Transaction) -> None:
        self._tx = tx

    # -------------------------
    # Stages
    # -------------------------

    async def find_stage(self, *, stage_id: str) -> Optional[Stage]:
        doc = await self._tx.get(STAGES, stage_id)
        return Stage.from_doc(doc) if doc else None

    async def get_stage(self, *, stage_id: str) -> Stage:
        stage = await self.find_stage(stage_id=stage_id)
        if stage is None:
            raise NotFoundError(f"stage {stage_id} not found")
        return stage

    async def active_stage_for(self, *, tournament_id: str) -> Optional[Stage]:
        docs = await self._tx.query(STAGES, {"tournament_id": tournament_id, "is_active": True})
        stages = sorted((Stage.from_doc(d) for d in docs), key=lambda s: s.created_at.isoformat() if s.created_at else "")
        return stages[0] if stages else None

    async def active_stages(self) -> list[Stage]:
        docs = await self._tx.query(STAGES, {"is_active": True})
        return [Stage.from_doc(d) for d in docs]

    def save_stage(self, stage: Stage) -> None:
        stage.revision += 1
        self._tx.set(STAGES, stage.id, stage.to_doc())

    # -------------------------
    # Rounds
    # -------------------------

    async def get_round(self, *, round_id: str) -> Round:
        doc = await self._tx.get(ROUNDS, round_id)
        if doc is None:
            raise NotFoundError(f"round {round_id} not found")
        return Round.from_doc(doc)

    async def rounds_for_stage(self, *, stage_id: str) -> list[Round]:
        docs = await self._tx.query(ROUNDS, {"stage_id": stage_id})
        return sorted((Round.from_doc(d) for d in docs), key=lambda r: r.round_no)

    async def round_by_number(self, *, stage_id: str, round_no: int) -> Optional[Round]:
        docs = await self._tx.query(ROUNDS, {"stage_id": stage_id, "round_no": round_no})
        return Round.from_doc(docs[0]) if docs else None

    def save_round(self, rnd: Round) -> None:
        self._tx.set(ROUNDS, rnd.id, rnd.to_doc())

    def delete_round(self, rnd: Round) -> None:
        self._tx.delete(ROUNDS, rnd.id)

    # -------------------------
    # Matches
    # -------------------------

    async def find_match(self, *, match_id: str) -> Optional[Match]:
        doc = await self._tx.get(MATCHES, match_id)
        return Match.from_doc(doc) if doc else None

    async def get_match(self, *, match_id: str) -> Match:
        m = await self.find_match(match_id=match_id)
        if m is None:
            raise NotFoundError(f"match {match_id} not found")
        return m

    async def stage_matches(self, *, stage_id: str, round_no: int | None = None) -> list[Match]:
        where: dict = {"stage_id": stage_id}
        if round_no is not None:
            where["round_no"] = round_no
        docs = await self._tx.query(MATCHES, where)
        return sorted((Match.from_doc(d) for d in docs), key=_match_order)

    async def bracket_matches(self, *, bracket_id: str) -> list[Match]:
        docs = await self._tx.query(MATCHES, {"bracket_id": bracket_id})
        return sorted((Match.from_doc(d) for d in docs), key=_match_order)

    async def bracket_node(self, *, bracket_id: str, node: NodeRef) -> Optional[Match]:
        docs = await self._tx.query(
            MATCHES,
            {
                "bracket_id": bracket_id,
                "bracket": node.bracket.value,
                "round_no": node.round_no,
                "match_no": node.match_no,
            },
        )
        return Match.from_doc(docs[0]) if docs else None

    def save_match(self, match: Match) -> None:
        self._tx.set(MATCHES, match.id, match.to_doc())

    def delete_match(self, match: Match) -> None:
        self._tx.delete(MATCHES, match.id)

    # -------------------------
    # Brackets
    # -------------------------

    async def get_bracket(self, *, bracket_id: str) -> Bracket:
        doc = await self._tx.get(BRACKETS, bracket_id)
        if doc is None:
            raise NotFoundError(f"bracket {bracket_id} not found")
        return Bracket.from_doc(doc)

    def save_bracket(self, bracket: Bracket) -> None:
        bracket.revision += 1
        self._tx.set(BRACKETS, bracket.id, bracket.to_doc())

    async def brackets_seeded_from(self, *, stage_id: str) -> list[Bracket]:
        docs = await self._tx.query(BRACKETS, {"source_stage_id": stage_id})
        return [Bracket.from_doc(d) for d in docs]

    def delete_bracket(self, bracket: Bracket) -> None:
        self._tx.delete(BRACKETS, bracket.id)
