"""
Elimination-bracket addressing.

A node is identified by (bracket, round_no, match_no). Predecessors and
successors are never stored; they are computed here from the bracket shape.

Double elimination (size n, power of two):
  winners rounds  wr = log2(n)
  losers rounds   lr = 2 * (wr - 1)

  W r, s  winner -> W r+1, ceil(s/2)         (GF once r == wr)
          loser  -> L 1, ceil(s/2)          (r == 1)
                    L 2*(r-1), s            (r > 1)
  L r, s  winner -> L r+1, s                (r odd)
                    L r+1, ceil(s/2)        (r even)
                    GF                      (r == lr)

Odd losers rounds merge drop-ins with survivors; even losers rounds halve the
field. A playoff bracket is the same shape with no losers rounds and the
final stored as the GF node.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, NamedTuple, Optional

from domain.enums import BracketKey
from domain.errors import ConsistencyError


class NodeRef(NamedTuple):
    bracket: BracketKey
    round_no: int
    match_no: int


@dataclass(frozen=True)
class SlotRef:
    bracket: BracketKey
    round_no: int
    match_no: int
    position: int  # 1 => team1, 2 => team2

    @property
    def node(self) -> NodeRef:
        return NodeRef(self.bracket, self.round_no, self.match_no)


@dataclass(frozen=True)
class Feeder:
    source: NodeRef
    outcome: str  # "winner" | "loser"
    position: int


def ceil_half(n: int) -> int:
    return (n + 1) // 2


def _position_by_parity(match_no: int) -> int:
    return 1 if match_no % 2 == 1 else 2


@dataclass(frozen=True)
class BracketShape:
    size: int
    winners_rounds: int
    losers_rounds: int = 0

    @classmethod
    def double_elimination(cls, size: int) -> "BracketShape":
        wr = max(1, (size - 1).bit_length())
        return cls(size=size, winners_rounds=wr, losers_rounds=2 * (wr - 1))

    @classmethod
    def playoff(cls, size: int) -> "BracketShape":
        # last winners round is played as the GF node
        wr = max(1, (size - 1).bit_length()) - 1
        return cls(size=size, winners_rounds=wr, losers_rounds=0)

    def has_round(self, bracket: BracketKey, round_no: int) -> bool:
        if bracket == BracketKey.W:
            return 1 <= round_no <= self.winners_rounds
        if bracket == BracketKey.L:
            return 1 <= round_no <= self.losers_rounds
        if bracket == BracketKey.GF:
            return round_no == 1
        return False

    def matches_in(self, bracket: BracketKey, round_no: int) -> int:
        if not self.has_round(bracket, round_no):
            return 0
        if bracket == BracketKey.W:
            return self.size >> round_no
        if bracket == BracketKey.L:
            return self.size >> (ceil_half(round_no) + 1)
        return 1

    def has_node(self, node: NodeRef) -> bool:
        return 1 <= node.match_no <= self.matches_in(node.bracket, node.round_no)

    def nodes(self) -> Iterator[NodeRef]:
        for r in range(1, self.winners_rounds + 1):
            for m in range(1, self.matches_in(BracketKey.W, r) + 1):
                yield NodeRef(BracketKey.W, r, m)
        for r in range(1, self.losers_rounds + 1):
            for m in range(1, self.matches_in(BracketKey.L, r) + 1):
                yield NodeRef(BracketKey.L, r, m)
        yield NodeRef(BracketKey.GF, 1, 1)

    def _require(self, node: NodeRef) -> None:
        if not self.has_node(node):
            raise ConsistencyError(
                f"{node.bracket.value} round {node.round_no} match {node.match_no} "
                f"does not exist in a {self.size}-competitor bracket"
            )


def winner_destination(shape: BracketShape, node: NodeRef) -> Optional[SlotRef]:
    """Where the winner of `node` plays next. None means the winner is champion."""
    shape._require(node)
    b, r, s = node

    if b == BracketKey.W:
        if r < shape.winners_rounds:
            return SlotRef(BracketKey.W, r + 1, ceil_half(s), _position_by_parity(s))
        # double elimination has a single W final (team1); playoffs feed two semis in
        return SlotRef(BracketKey.GF, 1, 1, _position_by_parity(s))

    if b == BracketKey.L:
        if r == shape.losers_rounds:
            return SlotRef(BracketKey.GF, 1, 1, 2)
        if r % 2 == 1:
            return SlotRef(BracketKey.L, r + 1, s, 1)
        return SlotRef(BracketKey.L, r + 1, ceil_half(s), _position_by_parity(s))

    return None


def loser_destination(shape: BracketShape, node: NodeRef) -> Optional[SlotRef]:
    """Where the loser of `node` drops to. None means the loser is eliminated."""
    shape._require(node)
    b, r, s = node

    if b != BracketKey.W or shape.losers_rounds == 0:
        return None
    if r == 1:
        return SlotRef(BracketKey.L, 1, ceil_half(s), _position_by_parity(s))
    return SlotRef(BracketKey.L, 2 * (r - 1), s, 2)


def feeders(shape: BracketShape, node: NodeRef) -> list[Feeder]:
    """Inverse of the destination functions: the (source, outcome, position) triples feeding `node`."""
    shape._require(node)
    out: list[Feeder] = []
    for src in shape.nodes():
        w = winner_destination(shape, src)
        if w is not None and w.node == node:
            out.append(Feeder(source=src, outcome="winner", position=w.position))
        lo = loser_destination(shape, src)
        if lo is not None and lo.node == node:
            out.append(Feeder(source=src, outcome="loser", position=lo.position))
    out.sort(key=lambda f: f.position)
    return out
