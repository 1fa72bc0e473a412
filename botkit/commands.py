"""Command declarations shared by slash invocation and message triggers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterator, List, Optional, Tuple

import discord
from discord import app_commands

from .config import PermissionsConfig

log = logging.getLogger(__name__)
PERMISSION_LOG = logging.getLogger("botkit.permissions")

DEV_ONLY_DENIAL = "Only developers are allowed to run this command."
TEST_ONLY_DENIAL = "This command cannot be run here."
PERMISSION_DENIAL = "Not enough permissions."
BOT_PERMISSION_DENIAL = "I don't have enough permissions."

SlashCallback = Callable[..., Awaitable[None]]
MessageCallback = Callable[[discord.Message], Awaitable[None]]


@dataclass(slots=True)
class BotCommand:
    """One command the bot declares to Discord.

    ``context_menu`` set to ``discord.AppCommandType.user`` turns the command
    into a user context menu entry whose callback also receives the target
    member. ``message_callback`` lets trigger rules run the command from chat.
    """
    name: str
    description: str
    callback: SlashCallback
    message_callback: Optional[MessageCallback] = None
    dev_only: bool = False
    test_only: bool = False
    required_permissions: Tuple[str, ...] = ()
    bot_permissions: Tuple[str, ...] = ()
    context_menu: Optional[discord.AppCommandType] = None

    def __post_init__(self) -> None:
        for flag in (*self.required_permissions, *self.bot_permissions):
            if flag not in discord.Permissions.VALID_FLAGS:
                raise ValueError(f"Command {self.name} uses unknown permission {flag!r}")


class CommandRegistry:
    def __init__(self, permissions: PermissionsConfig) -> None:
        self.permissions = permissions
        self._commands: Dict[str, BotCommand] = {}

    def add(self, command: BotCommand) -> BotCommand:
        if command.name in self._commands:
            raise ValueError(f"Duplicate command name: {command.name}")
        self._commands[command.name] = command
        return command

    def get(self, name: str) -> Optional[BotCommand]:
        return self._commands.get(name)

    def __iter__(self) -> Iterator[BotCommand]:
        return iter(self._commands.values())

    def __len__(self) -> int:
        return len(self._commands)

    def is_developer(self, user_id: int) -> bool:
        return user_id in self.permissions.developer_ids

    def check_interaction(
        self, command: BotCommand, interaction: discord.Interaction
    ) -> Optional[str]:
        """Return the denial message for ``interaction`` or ``None`` when allowed."""
        user_id = interaction.user.id
        if command.dev_only and not self.is_developer(user_id):
            PERMISSION_LOG.info("Denied %s for %s: not a developer.", command.name, user_id)
            return DEV_ONLY_DENIAL
        if command.test_only and interaction.guild_id != self.permissions.test_guild_id:
            PERMISSION_LOG.info("Denied %s for %s: outside the test guild.", command.name, user_id)
            return TEST_ONLY_DENIAL
        permissions = interaction.permissions
        missing = [f for f in command.required_permissions if not getattr(permissions, f, False)]
        if missing:
            PERMISSION_LOG.info("Denied %s for %s: missing %s.", command.name, user_id, missing)
            return PERMISSION_DENIAL
        app_permissions = interaction.app_permissions
        missing = [f for f in command.bot_permissions if not getattr(app_permissions, f, False)]
        if missing:
            PERMISSION_LOG.warning("Cannot run %s: bot is missing %s.", command.name, missing)
            return BOT_PERMISSION_DENIAL
        return None

    def can_run_from_message(self, command: BotCommand, message: discord.Message) -> bool:
        member = message.author
        if not isinstance(member, discord.Member):
            return False
        guild_id = message.guild.id if message.guild else None
        if command.test_only and guild_id != self.permissions.test_guild_id:
            return False
        if command.dev_only and not self.is_developer(member.id):
            return False
        permissions = member.guild_permissions
        return all(getattr(permissions, flag, False) for flag in command.required_permissions)

    def install(self, tree: app_commands.CommandTree) -> List[str]:
        """Add every command to ``tree``; returns the names that were installed."""
        installed: List[str] = []
        test_guild = (
            discord.Object(self.permissions.test_guild_id)
            if self.permissions.test_guild_id
            else None
        )
        for command in self._commands.values():
            if command.test_only and test_guild is None:
                log.warning("Skipping test-only command %s: no test guild configured.", command.name)
                continue
            app_command = self._build_app_command(command)
            if command.test_only:
                tree.add_command(app_command, guild=test_guild)
            else:
                tree.add_command(app_command)
            installed.append(command.name)
        log.info("Installed %d command(s): %s", len(installed), ", ".join(installed))
        return installed

    def _build_app_command(self, command: BotCommand):
        registry = self

        async def deny(interaction: discord.Interaction) -> bool:
            denial = registry.check_interaction(command, interaction)
            if denial is None:
                return False
            await interaction.response.send_message(denial, ephemeral=True)
            return True

        if command.context_menu is discord.AppCommandType.user:
            async def member_callback(
                interaction: discord.Interaction, member: discord.Member
            ) -> None:
                if await deny(interaction):
                    return
                await command.callback(interaction, member)

            return app_commands.ContextMenu(name=command.name, callback=member_callback)

        async def slash_callback(interaction: discord.Interaction) -> None:
            if await deny(interaction):
                return
            await command.callback(interaction)

        return app_commands.Command(
            name=command.name,
            description=command.description,
            callback=slash_callback,
        )
