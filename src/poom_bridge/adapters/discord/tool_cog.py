from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import discord
from discord.ext import commands

from poom_bridge.adapters.discord.commands import CommandError, ParsedCommand, parse_command, usage
from poom_bridge.adapters.discord.render import render_hub_state, render_response, truncate
from poom_bridge.config.models import DiscordSettings, PollingSettings
from poom_bridge.hub.poller import PollPhase
from poom_bridge.hub.scheduler import Scheduler
from poom_bridge.hub.session import HubSession
from poom_bridge.hub.state import HubState
from poom_bridge.tools.dispatcher import ToolDispatcher
from poom_bridge.tools.envelope import ToolResponse

logger = logging.getLogger(__name__)


@dataclass
class _ChannelHub:
    session: HubSession
    channel: discord.abc.Messageable
    status_message: Optional[discord.Message] = None
    posted_player_run: Optional[str] = None


class ToolCommandCog(commands.Cog):
    """
    Exposes the bridge tools as chat commands.

    Each channel gets its own hub session, so a `create` in one channel never cancels polling in
    another. A new `create` in the same channel supersedes the job being followed there.
    """

    def __init__(
        self,
        *,
        bot: commands.Bot,
        dispatcher: ToolDispatcher,
        settings: DiscordSettings,
        polling: PollingSettings,
        scheduler: Scheduler,
    ) -> None:
        self._bot = bot
        self._dispatcher = dispatcher
        self._settings = settings
        self._polling = polling
        self._scheduler = scheduler
        self._hubs: dict[int, _ChannelHub] = {}

    def cog_unload(self) -> None:
        self.close_sessions()

    def close_sessions(self) -> None:
        for hub in self._hubs.values():
            hub.session.close()
        self._hubs.clear()

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if message.author is not None and message.author.bot:
            return

        prefix = self._settings.command_prefix
        try:
            parsed = parse_command(message.content, prefix)
        except CommandError as e:
            await message.channel.send(truncate(str(e)))
            return
        if parsed is None:
            return

        logger.debug(
            "Bridge command received. kind=%s tool=%s channel_id=%s message_id=%s",
            parsed.kind,
            parsed.tool,
            getattr(message.channel, "id", None),
            message.id,
        )
        try:
            await self._handle(message, parsed)
        except discord.DiscordException:
            logger.exception("Failed to deliver a bridge reply. channel_id=%s", getattr(message.channel, "id", None))

    async def _handle(self, message: discord.Message, parsed: ParsedCommand) -> None:
        if parsed.kind == "help":
            await message.channel.send(usage(self._settings.command_prefix))
            return

        if parsed.kind == "create":
            await self._create(message, parsed)
            return

        assert parsed.tool is not None
        async with message.channel.typing():
            response = await self._dispatcher.call(parsed.tool, parsed.arguments)
        await message.channel.send(render_response(parsed.tool, response))

    async def _create(self, message: discord.Message, parsed: ParsedCommand) -> None:
        hub = self._hub_for(message.channel)
        hub.status_message = None
        hub.posted_player_run = None
        hub.session.state.player = None
        await hub.session.create(
            parsed.arguments["source_url"],
            run_id=parsed.arguments.get("run_id"),
        )

    def _hub_for(self, channel: discord.abc.Messageable) -> _ChannelHub:
        channel_id = getattr(channel, "id", 0)
        hub = self._hubs.get(channel_id)
        if hub is not None:
            return hub

        async def _on_change(state: HubState) -> None:
            await self._publish(channel_id, state)

        session = HubSession(
            self._call_tool,
            scheduler=self._scheduler,
            polling=self._polling,
            on_change=_on_change,
        )
        hub = _ChannelHub(session=session, channel=channel)
        self._hubs[channel_id] = hub
        return hub

    async def _call_tool(self, name: str, arguments) -> ToolResponse:
        return await self._dispatcher.call(name, arguments)

    async def _publish(self, channel_id: int, state: HubState) -> None:
        hub = self._hubs.get(channel_id)
        if hub is None or state.working:
            return

        text = render_hub_state(state, hub.session.poller.phase)
        try:
            if hub.status_message is None:
                hub.status_message = await hub.channel.send(text)
            elif hub.status_message.content != text:
                hub.status_message = await hub.status_message.edit(content=text)

            player = state.player
            if player is not None and hub.session.poller.phase is PollPhase.COMPLETED:
                run_id = player.get("run_id")
                if run_id and run_id != hub.posted_player_run:
                    hub.posted_player_run = run_id
                    await hub.channel.send(
                        render_response("open_run_player", ToolResponse.success(player, _player_text(player)))
                    )
        except discord.DiscordException:
            logger.exception("Failed to publish hub status. channel_id=%s", channel_id)


def _player_text(player: dict) -> str:
    chapters = player.get("chapter_metadata") or []
    lines = [f"POOM ready: {player.get('run_id')}", f"POOM URL: {player.get('reference_url')}"]
    for row in chapters:
        lines.append(f"- {row.get('index')}. {row.get('name')} ({row.get('start_s', 0):.1f}s-{row.get('end_s', 0):.1f}s)")
    return "\n".join(lines)
