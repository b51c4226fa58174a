"""Discord chat host for the bridge tools."""

from poom_bridge.adapters.discord.bot_adapter import DiscordBotAdapter
from poom_bridge.adapters.discord.commands import CommandError, ParsedCommand, parse_command
from poom_bridge.adapters.discord.tool_cog import ToolCommandCog

__all__ = [
    "CommandError",
    "DiscordBotAdapter",
    "ParsedCommand",
    "ToolCommandCog",
    "parse_command",
]
