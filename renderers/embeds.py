# renderers/embeds.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import discord

from domain.models import Match, SchedulingProposal, Standing
from renderers.standings_view import StandingsView


@dataclass(frozen=True)
class EmbedTheme:
    primary: int = 0xB08D57   # antique gold
    success: int = 0x2ECC71
    warning: int = 0xF1C40F
    danger: int = 0xE74C3C
    neutral: int = 0x5865F2   # discord-ish blue


def _ts(value) -> str:
    return f"<t:{int(value.timestamp())}:f>" if value is not None else "TBD"


class Embeds:
    """
    Centralized embed styling so every notification and admin reply looks consistent.
    """

    def __init__(
        self,
        *,
        theme: EmbedTheme | None = None,
        footer: str = "Tournament Engine",
        view: StandingsView | None = None,
    ) -> None:
        self._theme = theme or EmbedTheme()
        self._footer = footer
        self._view = view or StandingsView()

    def base(
        self,
        *,
        title: str,
        description: str | None = None,
        color: int | None = None,
        url: str | None = None,
    ) -> discord.Embed:
        e = discord.Embed(
            title=title,
            description=description,
            color=color if color is not None else self._theme.primary,
            url=url,
        )
        e.set_footer(text=self._footer)
        return e

    def info(self, *, title: str, description: str | None = None) -> discord.Embed:
        return self.base(title=title, description=description, color=self._theme.neutral)

    def success(self, *, title: str, description: str | None = None) -> discord.Embed:
        return self.base(title=title, description=description, color=self._theme.success)

    def warning(self, *, title: str, description: str | None = None) -> discord.Embed:
        return self.base(title=title, description=description, color=self._theme.warning)

    def error(self, *, title: str, description: str | None = None) -> discord.Embed:
        return self.base(title=title, description=description, color=self._theme.danger)

    # -------------------------
    # Tournament embeds
    # -------------------------

    def round_started(self, *, round_no: int, matches: Sequence[Match], ends_at=None) -> discord.Embed:
        e = self.info(
            title=f"Round {round_no} pairings",
            description=self._view.render_pairings(matches, title=f"Round {round_no}"),
        )
        e.add_field(name="Window closes", value=_ts(ends_at), inline=False)
        return e

    def match_result(self, *, match: Match) -> discord.Embed:
        a, b = self._view.name(match.team1_id), self._view.name(match.team2_id)
        if match.winner_id is None:
            return self.warning(title=f"{match.code} forfeited", description=f"{a} vs {b} recorded as a draw.")

        e = self.success(
            title=f"{match.code} result",
            description=f"**{self._view.name(match.winner_id)}** wins {a} vs {b} ({match.team1_score}-{match.team2_score})",
        )
        if match.map_results:
            maps = "\n".join(
                f"Map {i}: {m.team1_score}-{m.team2_score}" for i, m in enumerate(match.map_results, start=1)
            )
            e.add_field(name="Maps", value=maps, inline=False)
        if match.admin_assigned:
            e.add_field(name="Note", value="Winner assigned by an admin", inline=False)
        return e

    def standings(self, *, standings: Sequence[Standing], title: str = "Standings") -> discord.Embed:
        return self.base(title=title, description=self._view.render_standings(standings))

    def match_placed(self, *, match: Match) -> discord.Embed:
        a, b = self._view.name(match.team1_id), self._view.name(match.team2_id)
        if match.both_slots_filled:
            return self.info(title=f"{match.code} is set", description=f"{a} vs {b}")
        return self.info(title=f"{match.code} updated", description=f"{a} vs {b} (waiting for opponent)")

    def champion(self, *, competitor_id: str) -> discord.Embed:
        return self.success(title="Champion", description=f"🏆 **{self._view.name(competitor_id)}**")

    def proposal(self, *, match: Match, proposal: SchedulingProposal) -> discord.Embed:
        e = self.info(
            title=f"{match.code} time proposed",
            description=f"{self._view.name(proposal.proposed_by)} proposes {_ts(proposal.proposed_at)}",
        )
        if proposal.message:
            e.add_field(name="Message", value=proposal.message[:1024], inline=False)
        return e

    def match_scheduled(self, *, match: Match) -> discord.Embed:
        return self.success(
            title=f"{match.code} scheduled",
            description=f"{self._view.name(match.team1_id)} vs {self._view.name(match.team2_id)} at {_ts(match.scheduled_at)}",
        )

    def reverted(self, *, title: str, description: Optional[str] = None) -> discord.Embed:
        return self.warning(title=title, description=description)
