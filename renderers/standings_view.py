# renderers/standings_view.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Protocol, Sequence

from domain.models import BYE, Match, Standing


class RosterDirectory(Protocol):
    """Resolves competitor ids to display names. Only renderers use it."""

    def display_name(self, competitor_id: str) -> str:
        ...


class StaticRoster:
    def __init__(self, names: Mapping[str, str] | None = None) -> None:
        self._names = dict(names or {})

    def display_name(self, competitor_id: str) -> str:
        if competitor_id == BYE:
            return "BYE"
        return self._names.get(competitor_id, competitor_id)


def _pad(s: str, width: int) -> str:
    s = s or ""
    if len(s) > width:
        return s[: max(0, width - 1)] + "…" if width >= 2 else s[:width]
    return s + (" " * (width - len(s)))


def _signed(n: int) -> str:
    return f"+{n}" if n > 0 else str(n)


@dataclass(frozen=True)
class StandingsOptions:
    max_rows: int = 16
    name_width: int = 18
    show_buchholz: bool = True
    title: str = "Standings"


class StandingsView:
    """
    Monospace tables for Discord code blocks.
    """

    def __init__(self, roster: Optional[RosterDirectory] = None) -> None:
        self._roster = roster or StaticRoster()

    def name(self, competitor_id: Optional[str]) -> str:
        if competitor_id is None:
            return "TBD"
        return self._roster.display_name(competitor_id)

    def render_standings(self, standings: Sequence[Standing], *, opts: StandingsOptions | None = None) -> str:
        o = opts or StandingsOptions()
        data = list(standings)[: o.max_rows]

        idx_w = 3
        num_w = 4
        names = [self.name(s.competitor_id) for s in data]
        name_w = max(o.name_width, min(28, max((len(n) for n in names), default=o.name_width)))

        header = (
            f"{_pad('#', idx_w)} {_pad('Team', name_w)} "
            f"{_pad('Pts', num_w)} {_pad('W', num_w)} {_pad('L', num_w)} "
            f"{_pad('GW', num_w)} {_pad('GL', num_w)} {_pad('RD', num_w)}"
            + (f" {_pad('BH', num_w)}" if o.show_buchholz else "")
        )
        lines = [f"=== {o.title} ===", header, "-" * len(header)]

        for i, (s, n) in enumerate(zip(data, names), start=1):
            line = (
                f"{_pad(str(i), idx_w)} {_pad(n, name_w)} "
                f"{_pad(str(s.points), num_w)} {_pad(str(s.match_wins), num_w)} {_pad(str(s.match_losses), num_w)} "
                f"{_pad(str(s.game_wins), num_w)} {_pad(str(s.game_losses), num_w)} "
                f"{_pad(_signed(s.round_differential), num_w)}"
            )
            if o.show_buchholz:
                line += f" {_pad(str(s.buchholz), num_w)}"
            lines.append(line)

        return "```text\n" + "\n".join(lines).rstrip() + "\n```"

    def render_pairings(self, matches: Sequence[Match], *, title: str = "Pairings") -> str:
        rows = sorted(matches, key=lambda m: m.match_no)
        code_w = max((len(m.code) for m in rows), default=6)

        lines = [f"=== {title} ==="]
        for m in rows:
            if m.is_bye:
                lines.append(f"{_pad(m.code, code_w)}  {self.name(m.team1_id)} (bye)")
                continue
            line = f"{_pad(m.code, code_w)}  {self.name(m.team1_id)} vs {self.name(m.team2_id)}"
            if m.is_complete and m.winner_id:
                line += f"  [{m.team1_score}-{m.team2_score}, {self.name(m.winner_id)}]"
            elif m.is_complete:
                line += "  [forfeit]"
            lines.append(line)

        return "```text\n" + "\n".join(lines).rstrip() + "\n```"
