# main.py
from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import asdict
from typing import Optional

import discord
from discord.ext import commands

from config import EngineConfig, load_config
from db.pool import DbPool, MySqlPoolConfig
from domain.errors import ConcurrencyConflict, EngineError

from repositories.store import DocumentStore, MemoryStore
from repositories.mysql_store import MySqlStore

from services.notifications import DiscordWebhookNotifier, Notifier, NullNotifier
from services.tournament_engine import TournamentEngine

from renderers.embeds import Embeds

from cogs.admin_cog import setup as setup_admin_cog

log = logging.getLogger("main")


class EngineBot(commands.Bot):
    """Discord host for the admin override commands."""

    def __init__(self, cfg: EngineConfig, *, engine: TournamentEngine, embeds: Embeds) -> None:
        self.cfg = cfg
        self.engine = engine
        self.embeds = embeds

        intents = discord.Intents.default()
        super().__init__(
            command_prefix="!",
            intents=intents,
            allowed_mentions=discord.AllowedMentions.none(),
        )

    async def setup_hook(self) -> None:
        logging.info("Starting setup_hook...")

        await setup_admin_cog(self, engine=self.engine, embeds=self.embeds)

        # --- Slash sync ---
        if self.cfg.dev_guild_id:
            guild = discord.Object(id=self.cfg.dev_guild_id)
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
            logging.info("Slash commands synced to DEV guild %s", self.cfg.dev_guild_id)
        else:
            await self.tree.sync()
            logging.info("Slash commands synced globally")

        logging.info("setup_hook complete.")


async def forfeit_sweep(engine: TournamentEngine) -> int:
    """One pass over every active stage. Returns the number of matches resolved."""
    resolved = 0
    for stage in await engine.active_stages():
        try:
            resolved += len(await engine.process_forfeits(stage_id=stage.id))
        except ConcurrencyConflict:
            log.info("stage %s busy; forfeits deferred to the next sweep", stage.id)
        except EngineError as e:
            log.warning("forfeit sweep skipped stage %s: %s", stage.id, e)
    return resolved


async def _forfeit_loop(engine: TournamentEngine, interval: int, stop_event: asyncio.Event) -> None:
    while not stop_event.is_set():
        try:
            n = await forfeit_sweep(engine)
        except Exception:
            # store outages and the like; try again next interval
            log.exception("forfeit sweep failed")
        else:
            if n:
                log.info("forfeit sweep resolved %d matches", n)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass


async def _open_store(cfg: EngineConfig) -> tuple[DocumentStore, Optional[DbPool]]:
    if cfg.store_backend == "memory":
        log.warning("using the in-memory store; nothing will be persisted")
        return MemoryStore(), None

    db = DbPool()
    await db.start(MySqlPoolConfig(**asdict(cfg.mysql)))
    await db.ensure_schema()
    return MySqlStore(db), db


async def _run() -> None:
    cfg = load_config()

    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    store, db = await _open_store(cfg)

    notifier: Notifier
    webhook: Optional[DiscordWebhookNotifier] = None
    if cfg.notify_webhook_url:
        webhook = DiscordWebhookNotifier(cfg.notify_webhook_url)
        await webhook.start()
        notifier = webhook
    else:
        notifier = NullNotifier()

    engine = TournamentEngine(
        store,
        notifier=notifier,
        window_days=cfg.round_window_days,
        playoff_best_of=cfg.playoff_best_of,
    )

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _request_stop(*_args) -> None:
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_stop)
        except NotImplementedError:
            pass

    poller = asyncio.create_task(_forfeit_loop(engine, cfg.forfeit_poll_seconds, stop_event))
    bot: Optional[EngineBot] = None
    try:
        if cfg.discord_token:
            bot = EngineBot(cfg, engine=engine, embeds=Embeds())
            await bot.login(cfg.discord_token)
            bot_task = asyncio.create_task(bot.connect())
            await stop_event.wait()
            await bot.close()
            await asyncio.gather(bot_task, return_exceptions=True)
        else:
            log.info("DISCORD_TOKEN not set; running the forfeit poller only")
            await stop_event.wait()
    finally:
        stop_event.set()
        await poller
        await engine.drain_notifications()
        if webhook is not None:
            await webhook.close()
        if db is not None:
            await db.close()


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
