from __future__ import annotations

import asyncio
import logging

import discord
from discord.ext import commands

from poom_bridge.adapters.discord.tool_cog import ToolCommandCog
from poom_bridge.config.models import AppConfig
from poom_bridge.hub.scheduler import AsyncioScheduler
from poom_bridge.tools.dispatcher import ToolDispatcher

logger = logging.getLogger(__name__)


def _build_intents() -> discord.Intents:
    intents = discord.Intents.none()
    intents.guilds = True
    intents.guild_messages = True
    intents.dm_messages = True
    intents.message_content = True
    return intents


class _BridgeBot(commands.Bot):
    def __init__(self, *, config: AppConfig, dispatcher: ToolDispatcher) -> None:
        intents = _build_intents()
        # Commands are parsed by the cog listener; the built-in prefix handler stays unused.
        super().__init__(command_prefix=commands.when_mentioned, intents=intents, help_command=None)

        self.tool_cog = ToolCommandCog(
            bot=self,
            dispatcher=dispatcher,
            settings=config.discord,
            polling=config.polling,
            scheduler=AsyncioScheduler(),
        )

    async def setup_hook(self) -> None:
        await self.add_cog(self.tool_cog)

    async def on_ready(self) -> None:
        user = self.user
        logger.info(
            "Discord bot is ready. user_id=%s user=%s",
            str(user.id) if user is not None else None,
            str(user) if user is not None else None,
        )


class DiscordBotAdapter:
    def __init__(self, *, config: AppConfig, dispatcher: ToolDispatcher) -> None:
        if not config.discord.token:
            raise ValueError("discord.token must be configured to run the Discord adapter.")
        self._config = config
        self._bot = _BridgeBot(config=config, dispatcher=dispatcher)

    async def start(self) -> None:
        logger.info("Starting Discord adapter. command_prefix=%s", self._config.discord.command_prefix)
        await self._bot.start(self._config.discord.token)

    async def run_for(self, *, seconds: float, ready_timeout_seconds: float = 30) -> None:
        logger.info("Starting Discord adapter for a limited run. run_for_seconds=%s", seconds)

        await self._bot.login(self._config.discord.token)
        connect_task = asyncio.create_task(self._bot.connect(reconnect=True))
        try:
            await asyncio.wait_for(self._bot.wait_until_ready(), timeout=ready_timeout_seconds)
            await asyncio.sleep(seconds)
        finally:
            await self.stop()
            if not connect_task.done():
                connect_task.cancel()
            try:
                await connect_task
            except asyncio.CancelledError:
                logger.info("Discord connect task was cancelled.")

    async def stop(self) -> None:
        self._bot.tool_cog.close_sessions()
        if not self._bot.is_closed():
            await self._bot.close()
