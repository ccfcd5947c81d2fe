# services/notifications.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Protocol, Sequence

import aiohttp
import discord

from domain.models import Match, SchedulingProposal, Standing
from renderers.embeds import Embeds

log = logging.getLogger(__name__)


class EventKind(str, Enum):
    ROUND_STARTED = "round_started"
    MATCH_COMPLETED = "match_completed"
    MATCH_PLACED = "match_placed"
    CHAMPION = "champion"
    PROPOSAL = "proposal"
    MATCH_SCHEDULED = "match_scheduled"
    STANDINGS = "standings"
    REVERTED = "reverted"


@dataclass(frozen=True)
class EngineEvent:
    kind: EventKind
    tournament_id: str
    round_no: Optional[int] = None
    ends_at: Optional[datetime] = None
    matches: tuple[Match, ...] = ()
    standings: tuple[Standing, ...] = ()
    proposal: Optional[SchedulingProposal] = None
    competitor_id: Optional[str] = None
    message: Optional[str] = None


class Notifier(Protocol):
    async def notify(self, event: EngineEvent) -> None:
        ...


class NullNotifier:
    async def notify(self, event: EngineEvent) -> None:
        log.debug("notification dropped: %s (%s)", event.kind.value, event.tournament_id)


class DiscordWebhookNotifier:
    """
    Posts one embed per event to a Discord webhook.
    Owns its aiohttp session; call start() before use and close() on shutdown.
    """

    def __init__(self, url: str, *, embeds: Embeds | None = None, username: str = "Tournament Engine") -> None:
        self._url = url
        self._embeds = embeds or Embeds()
        self._username = username
        self._session: Optional[aiohttp.ClientSession] = None
        self._webhook: Optional[discord.Webhook] = None

    async def start(self) -> None:
        if self._session is not None:
            return
        self._session = aiohttp.ClientSession()
        self._webhook = discord.Webhook.from_url(self._url, session=self._session)

    async def close(self) -> None:
        if self._session is None:
            return
        await self._session.close()
        self._session = None
        self._webhook = None

    def render(self, event: EngineEvent) -> list[discord.Embed]:
        e = self._embeds
        k = event.kind
        if k == EventKind.ROUND_STARTED:
            return [e.round_started(round_no=event.round_no or 0, matches=event.matches, ends_at=event.ends_at)]
        if k == EventKind.MATCH_COMPLETED:
            return [e.match_result(match=m) for m in event.matches]
        if k == EventKind.MATCH_PLACED:
            return [e.match_placed(match=m) for m in event.matches]
        if k == EventKind.CHAMPION and event.competitor_id:
            return [e.champion(competitor_id=event.competitor_id)]
        if k == EventKind.PROPOSAL and event.proposal and event.matches:
            return [e.proposal(match=event.matches[0], proposal=event.proposal)]
        if k == EventKind.MATCH_SCHEDULED:
            return [e.match_scheduled(match=m) for m in event.matches]
        if k == EventKind.STANDINGS:
            return [e.standings(standings=event.standings)]
        if k == EventKind.REVERTED:
            return [e.reverted(title="Reverted", description=event.message)]
        return []

    async def notify(self, event: EngineEvent) -> None:
        if self._webhook is None:
            await self.start()
        # Discord allows at most 10 embeds per message
        embeds = self.render(event)
        for i in range(0, len(embeds), 10):
            await self._webhook.send(embeds=embeds[i : i + 10], username=self._username, wait=False)


class NotificationDispatcher:
    """
    Fire-and-forget delivery after commit. A failing notifier is logged and
    never reaches the caller.
    """

    def __init__(self, notifier: Notifier) -> None:
        self._notifier = notifier
        self._tasks: set[asyncio.Task] = set()

    def dispatch(self, events: Sequence[EngineEvent]) -> None:
        for event in events:
            task = asyncio.create_task(self._deliver(event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _deliver(self, event: EngineEvent) -> None:
        try:
            await self._notifier.notify(event)
        except Exception:
            log.exception("notification %s for tournament %s failed", event.kind.value, event.tournament_id)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (tests, shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
