"""Small commands that show off each kind of routed component."""

from __future__ import annotations

import logging
from typing import Sequence

import discord

from .commands import BotCommand, CommandRegistry
from .giveaway_views import button, static_view, text_modal
from .models import TierRule
from .router import DEFAULT_LEVEL, InteractionMatch, InteractionRouter, modal_values, selected_values

log = logging.getLogger(__name__)

PING_BUTTON = "ping-response"
EXAMPLE_SELECT = "example_select"
EXAMPLE_MODAL = "example_feedback_modal"
KICK_BUTTON = "admin_panel_kick"
BAN_BUTTON = "admin_panel_ban"
SPECIAL_BUTTON = "admin_panel_special"

_LEVEL_REPLIES = {
    0: "Developer access: the special action ran with full privileges.",
    1: "Moderator access: the special action ran with ban privileges.",
    2: "Helper access: the special action ran with kick privileges.",
}


def admin_tiers(developer_ids: Sequence[int]) -> list[TierRule]:
    """Developers first, then ban rights, then kick rights."""
    rules = [TierRule.user(user_id, 0) for user_id in developer_ids]
    rules.append(TierRule.permission("ban_members", 1))
    rules.append(TierRule.permission("kick_members", 2))
    return rules


def latency_text(bot: discord.Client) -> str:
    return f"Pong! {round(bot.latency * 1000)}ms."


class ExampleCommands:
    def __init__(self, bot: discord.Client) -> None:
        self.bot = bot

    def register(self, router: InteractionRouter, registry: CommandRegistry) -> None:
        # a ping button never goes stale
        router.register_button(PING_BUTTON, self.on_ping_button, timeout=None)
        router.register_select(EXAMPLE_SELECT, self.on_example_select, timeout=None)
        router.register_modal(EXAMPLE_MODAL, self.on_example_modal)
        router.register_button(KICK_BUTTON, self.on_kick, required_permissions=("kick_members",))
        router.register_button(BAN_BUTTON, self.on_ban, required_permissions=("ban_members",))
        router.register_button(
            SPECIAL_BUTTON,
            self.on_special,
            tiers=admin_tiers(registry.permissions.developer_ids),
        )

        registry.add(BotCommand("ping", "Replies with the bot latency.", self.ping))
        registry.add(
            BotCommand(
                "ping-chat",
                "Pong! Works as a slash command or from a chat trigger.",
                self.ping,
                message_callback=self.ping_message,
                test_only=True,
            )
        )
        registry.add(BotCommand("ping-button", "Sends a ping button!", self.ping_button, test_only=True))
        registry.add(
            BotCommand("dropdown-example", "Shows a simple dropdown menu example.", self.dropdown, test_only=True)
        )
        registry.add(
            BotCommand("modal-example", "Shows an example modal popup.", self.modal, test_only=True)
        )
        registry.add(
            BotCommand(
                "ping-user",
                "",
                self.ping_user,
                test_only=True,
                context_menu=discord.AppCommandType.user,
            )
        )
        registry.add(
            BotCommand(
                "admin-panel",
                "Displays an example admin panel with permission-locked buttons.",
                self.admin_panel,
                test_only=True,
                required_permissions=("administrator",),
            )
        )

    async def ping(self, interaction: discord.Interaction) -> None:
        await interaction.response.send_message(latency_text(self.bot))

    async def ping_message(self, message: discord.Message) -> None:
        await message.reply(latency_text(self.bot))

    async def ping_user(self, interaction: discord.Interaction, member: discord.Member) -> None:
        await interaction.response.send_message(f"Pong! {member.mention} ({round(self.bot.latency * 1000)}ms)")

    async def ping_button(self, interaction: discord.Interaction) -> None:
        view = static_view([button(PING_BUTTON, "Click me!", style=discord.ButtonStyle.primary)])
        await interaction.response.send_message(
            "Click the button below to test!", view=view, ephemeral=True
        )

    async def on_ping_button(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        await interaction.response.send_message("Pong! 🏓", ephemeral=True)

    async def dropdown(self, interaction: discord.Interaction) -> None:
        select = discord.ui.Select(
            custom_id=EXAMPLE_SELECT,
            placeholder="Choose an option",
            options=[
                discord.SelectOption(label=f"Option {n}", value=f"option_{n}", description=f"This is option {n}.")
                for n in (1, 2, 3)
            ],
        )
        await interaction.response.send_message(
            "Please choose one:", view=static_view([select]), ephemeral=True
        )

    async def on_example_select(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        values = selected_values(interaction)
        await interaction.response.edit_message(
            content=f"You selected: {values[0] if values else 'nothing'}", view=None
        )

    async def modal(self, interaction: discord.Interaction) -> None:
        await interaction.response.send_modal(
            text_modal(
                EXAMPLE_MODAL,
                "My Example Modal",
                [
                    discord.ui.TextInput(
                        label="What's your favorite color?",
                        custom_id="favorite_color",
                        placeholder="e.g., Blue",
                    ),
                    discord.ui.TextInput(
                        label="Any feedback for us?",
                        custom_id="feedback",
                        style=discord.TextStyle.paragraph,
                        required=False,
                        placeholder="Enter your feedback here...",
                    ),
                ],
            )
        )

    async def on_example_modal(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        values = modal_values(interaction)
        reply = f"Thanks for submitting! Your favorite color is {values.get('favorite_color', '')}."
        feedback = values.get("feedback", "").strip()
        if feedback:
            reply += f'\nWe appreciate your feedback: "{feedback}"'
        else:
            reply += "\nNo feedback provided."
        await interaction.response.send_message(reply, ephemeral=True)

    async def admin_panel(self, interaction: discord.Interaction) -> None:
        view = static_view([
            button(KICK_BUTTON, "Kick User (Test)", style=discord.ButtonStyle.danger, emoji="👢"),
            button(BAN_BUTTON, "Ban User (Test)", style=discord.ButtonStyle.danger, emoji="🔨"),
            button(SPECIAL_BUTTON, "Special Action", style=discord.ButtonStyle.primary, emoji="✨", row=1),
        ])
        await interaction.response.send_message(
            "🚧 **Admin Panel (Test)** 🚧\nClick buttons to test the permission checks.", view=view
        )

    async def on_kick(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        log.info("Kick test triggered by %s (level %s)", interaction.user.id, match.level)
        await interaction.response.send_message("Kick action triggered. Requires Kick Members.", ephemeral=True)

    async def on_ban(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        log.info("Ban test triggered by %s (level %s)", interaction.user.id, match.level)
        await interaction.response.send_message("Ban action triggered. Requires Ban Members.", ephemeral=True)

    async def on_special(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        reply = _LEVEL_REPLIES.get(match.level)
        if match.level == DEFAULT_LEVEL or reply is None:
            reply = "You don't have any special access for this action."
        await interaction.response.send_message(reply, ephemeral=True)
