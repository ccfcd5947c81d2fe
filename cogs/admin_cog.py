# cogs/admin_cog.py
from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

import discord
from discord import app_commands
from discord.ext import commands

from domain.enums import BracketKey
from domain.errors import ConcurrencyConflict, EngineError, ValidationError
from domain.models import MapResult
from renderers.embeds import Embeds
from services.tournament_engine import TournamentEngine

log = logging.getLogger(__name__)

BRACKET_CHOICES = [
    app_commands.Choice(name="Winners", value=BracketKey.W.value),
    app_commands.Choice(name="Losers", value=BracketKey.L.value),
    app_commands.Choice(name="Grand Final", value=BracketKey.GF.value),
]


def parse_map_scores(raw: Optional[str]) -> list[MapResult]:
    """Parse "13-7, 9-13" into map results."""
    if not raw or not raw.strip():
        return []
    out: list[MapResult] = []
    for part in raw.split(","):
        try:
            a, b = part.strip().split("-")
            out.append(MapResult(int(a), int(b)))
        except ValueError:
            raise ValidationError(f"bad map score {part.strip()!r}; expected team1-team2") from None
    return out


class AdminCog(commands.Cog):
    """
    Admin overrides. Every command goes through the engine's normal
    operations; engine errors come back as error embeds.
    """

    admin = app_commands.Group(name="tadmin", description="Tournament admin overrides.")

    def __init__(self, bot: commands.Bot, *, engine: TournamentEngine, embeds: Embeds) -> None:
        self.bot = bot
        self.engine = engine
        self.embeds = embeds

    async def _respond(
        self,
        interaction: discord.Interaction,
        action: Callable[[], Awaitable[discord.Embed]],
    ) -> None:
        await interaction.response.defer(ephemeral=True)
        try:
            e = await action()
        except ConcurrencyConflict as ex:
            e = self.embeds.warning(title="Busy", description=f"{ex} Try again in a moment.")
        except EngineError as ex:
            log.info("admin command %s rejected: %s", interaction.command.name if interaction.command else "?", ex)
            e = self.embeds.error(title=type(ex).__name__, description=str(ex))
        await interaction.followup.send(embed=e, ephemeral=True)

    # -------------------------
    # Swiss
    # -------------------------

    @admin.command(name="round_status", description="Show completion of the current round.")
    @app_commands.describe(stage_id="Stage id")
    async def round_status(self, interaction: discord.Interaction, stage_id: str) -> None:
        async def action() -> discord.Embed:
            st = await self.engine.check_round_completion(stage_id=stage_id)
            e = self.embeds.info(
                title=f"Round {st.round_no}",
                description=f"{st.completed_matches}/{st.total_matches} complete ({st.forfeited_matches} forfeited)",
            )
            if st.incomplete:
                e.add_field(name="Open", value="\n".join(m.code for m in st.incomplete)[:1024], inline=False)
            e.add_field(name="Can advance", value="yes" if st.can_advance else "no", inline=True)
            e.add_field(name="Window elapsed", value="yes" if st.window_elapsed else "no", inline=True)
            return e

        await self._respond(interaction, action)

    @admin.command(name="advance_round", description="Close the current round and pair the next one.")
    @app_commands.describe(stage_id="Stage id")
    async def advance_round(self, interaction: discord.Interaction, stage_id: str) -> None:
        async def action() -> discord.Embed:
            started = await self.engine.advance_round(stage_id=stage_id)
            return self.embeds.round_started(
                round_no=started.round.round_no, matches=started.matches, ends_at=started.round.ends_at
            )

        await self._respond(interaction, action)

    @admin.command(name="standings", description="Show the current Swiss standings.")
    @app_commands.describe(stage_id="Stage id")
    async def standings(self, interaction: discord.Interaction, stage_id: str) -> None:
        async def action() -> discord.Embed:
            return self.embeds.standings(standings=await self.engine.get_standings(stage_id=stage_id))

        await self._respond(interaction, action)

    @admin.command(name="finalize_stage", description="Close the last round and the Swiss stage.")
    @app_commands.describe(stage_id="Stage id")
    async def finalize_stage(self, interaction: discord.Interaction, stage_id: str) -> None:
        async def action() -> discord.Embed:
            final = await self.engine.finalize_stage(stage_id=stage_id)
            return self.embeds.standings(standings=final, title="Final standings")

        await self._respond(interaction, action)

    @admin.command(name="revert_round", description="Revert the stage to an earlier round.")
    @app_commands.describe(stage_id="Stage id", round_no="Round to return to")
    async def revert_round(self, interaction: discord.Interaction, stage_id: str, round_no: int) -> None:
        async def action() -> discord.Embed:
            stage = await self.engine.revert_to_round(stage_id=stage_id, round_no=round_no)
            return self.embeds.reverted(
                title="Stage reverted", description=f"Stage is back on round {stage.current_round}."
            )

        await self._respond(interaction, action)

    # -------------------------
    # Matches and brackets
    # -------------------------

    @admin.command(name="force_complete", description="Complete an open match with an explicit score line.")
    @app_commands.describe(
        match_id="Match id",
        team1_score="Score of the first team",
        team2_score="Score of the second team",
        winner_id="Competitor id of the winner (derived from the scores when left out)",
        maps="Map scores as team1-team2, comma separated, e.g. 13-7,9-13,13-11",
    )
    async def force_complete(
        self,
        interaction: discord.Interaction,
        match_id: str,
        team1_score: int,
        team2_score: int,
        winner_id: Optional[str] = None,
        maps: Optional[str] = None,
    ) -> None:
        async def action() -> discord.Embed:
            match = await self.engine.force_complete_match(
                match_id=match_id,
                team1_score=team1_score,
                team2_score=team2_score,
                map_results=parse_map_scores(maps),
                winner_id=winner_id,
            )
            return self.embeds.match_result(match=match)

        await self._respond(interaction, action)

    @admin.command(name="assign_winner", description="Advance a bracket match winner.")
    @app_commands.describe(match_id="Bracket match id", winner_id="Competitor id of the winner")
    async def assign_winner(self, interaction: discord.Interaction, match_id: str, winner_id: str) -> None:
        async def action() -> discord.Embed:
            match = await self.engine.advance_bracket_winner(match_id=match_id, winner_id=winner_id)
            return self.embeds.match_result(match=match)

        await self._respond(interaction, action)

    @admin.command(name="revert_match", description="Reset a completed match and everything fed from it.")
    @app_commands.describe(match_id="Match id")
    async def revert_match(self, interaction: discord.Interaction, match_id: str) -> None:
        async def action() -> discord.Embed:
            result = await self.engine.revert_single_match(match_id=match_id)
            return self.embeds.reverted(
                title="Match reverted",
                description=f"{len(result.reset)} reset, {len(result.deleted)} removed.",
            )

        await self._respond(interaction, action)

    @admin.command(name="revert_advancement", description="Pull one team back out of the match it advanced to.")
    @app_commands.describe(match_id="Bracket match the team advanced from", competitor_id="Competitor id to pull back")
    async def revert_advancement(self, interaction: discord.Interaction, match_id: str, competitor_id: str) -> None:
        async def action() -> discord.Embed:
            result = await self.engine.revert_team_advancement(match_id=match_id, competitor_id=competitor_id)
            return self.embeds.reverted(
                title="Advancement reverted",
                description=f"{len(result.reset)} reset, {len(result.deleted)} removed.",
            )

        await self._respond(interaction, action)

    @admin.command(name="revert_bracket_round", description="Reset every match of a bracket round.")
    @app_commands.describe(bracket_id="Bracket id", bracket="Winners, Losers or Grand Final", round_no="Round number")
    @app_commands.choices(bracket=BRACKET_CHOICES)
    async def revert_bracket_round(
        self,
        interaction: discord.Interaction,
        bracket_id: str,
        bracket: app_commands.Choice[str],
        round_no: int,
    ) -> None:
        async def action() -> discord.Embed:
            result = await self.engine.revert_bracket_round(
                bracket_id=bracket_id, bracket_key=BracketKey(bracket.value), round_no=round_no
            )
            return self.embeds.reverted(
                title=f"{bracket.name} round {round_no} reverted",
                description=f"{len(result.reset)} reset, {len(result.deleted)} removed.",
            )

        await self._respond(interaction, action)

    @admin.command(name="seed_playoffs", description="Seed the 8-team playoff from a finalized stage.")
    @app_commands.describe(stage_id="Finalized stage id")
    async def seed_playoffs(self, interaction: discord.Interaction, stage_id: str) -> None:
        async def action() -> discord.Embed:
            bracket, matches = await self.engine.seed_playoffs_from_stage(stage_id=stage_id)
            e = self.embeds.round_started(round_no=1, matches=matches)
            e.title = "Playoff quarterfinals"
            e.add_field(name="Bracket", value=bracket.id, inline=False)
            return e

        await self._respond(interaction, action)


async def setup(bot: commands.Bot, *, engine: TournamentEngine, embeds: Embeds) -> None:
    await bot.add_cog(AdminCog(bot, engine=engine, embeds=embeds))
