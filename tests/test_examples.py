from types import SimpleNamespace
from unittest.mock import AsyncMock

import discord
import pytest

from botkit.commands import CommandRegistry
from botkit.config import PermissionsConfig
from botkit.examples import (
    BAN_BUTTON,
    EXAMPLE_MODAL,
    EXAMPLE_SELECT,
    KICK_BUTTON,
    PING_BUTTON,
    SPECIAL_BUTTON,
    ExampleCommands,
)
from botkit.router import DENIED_NOTICE, ComponentKind, InteractionRouter
from conftest import make_interaction, text_component


def setup(developer_ids=()):
    router = InteractionRouter()
    registry = CommandRegistry(PermissionsConfig(developer_ids=list(developer_ids), test_guild_id=10))
    examples = ExampleCommands(SimpleNamespace(latency=0.042))
    examples.register(router, registry)
    return examples, router, registry


class TestRegistration:
    def test_commands_and_components(self):
        _, router, registry = setup()
        assert sorted(command.name for command in registry) == [
            "admin-panel",
            "dropdown-example",
            "modal-example",
            "ping",
            "ping-button",
            "ping-chat",
            "ping-user",
        ]
        assert registry.get("ping-chat").message_callback is not None
        assert registry.get("ping-user").context_menu is discord.AppCommandType.user
        assert router.registered(ComponentKind.BUTTON) == sorted(
            [PING_BUTTON, KICK_BUTTON, BAN_BUTTON, SPECIAL_BUTTON]
        )
        assert router.registered(ComponentKind.SELECT) == [EXAMPLE_SELECT]
        assert router.registered(ComponentKind.MODAL) == [EXAMPLE_MODAL]


class TestHandlers:
    @pytest.mark.asyncio
    async def test_ping_reports_latency(self):
        examples, _, _ = setup()
        interaction = make_interaction(kind="command")
        await examples.ping(interaction)
        interaction.response.send_message.assert_awaited_once_with("Pong! 42ms.")
        message = SimpleNamespace(reply=AsyncMock())
        await examples.ping_message(message)
        message.reply.assert_awaited_once_with("Pong! 42ms.")

    @pytest.mark.asyncio
    async def test_ping_button(self):
        _, router, _ = setup()
        interaction = make_interaction(PING_BUTTON)
        await router.dispatch(interaction)
        interaction.response.send_message.assert_awaited_once_with("Pong! 🏓", ephemeral=True)

    @pytest.mark.asyncio
    async def test_select_edits_message(self):
        _, router, _ = setup()
        interaction = make_interaction(EXAMPLE_SELECT, kind="select", values=["option_2"])
        await router.dispatch(interaction)
        interaction.response.edit_message.assert_awaited_once_with(content="You selected: option_2", view=None)

    @pytest.mark.asyncio
    async def test_feedback_modal(self):
        _, router, _ = setup()
        with_feedback = make_interaction(
            EXAMPLE_MODAL,
            kind="modal",
            components=[text_component("favorite_color", "Blue"), text_component("feedback", "Great")],
        )
        await router.dispatch(with_feedback)
        reply = with_feedback.response.send_message.await_args.args[0]
        assert reply.startswith("Thanks for submitting! Your favorite color is Blue.")
        assert "Great" in reply

        without = make_interaction(
            EXAMPLE_MODAL,
            kind="modal",
            components=[text_component("favorite_color", "Red"), text_component("feedback", "")],
        )
        await router.dispatch(without)
        assert without.response.send_message.await_args.args[0].endswith("No feedback provided.")

    @pytest.mark.asyncio
    async def test_kick_button_needs_permission(self):
        _, router, _ = setup()
        denied = make_interaction(KICK_BUTTON)
        await router.dispatch(denied)
        denied.response.send_message.assert_awaited_once_with(DENIED_NOTICE, ephemeral=True)

        allowed = make_interaction(KICK_BUTTON, permissions=discord.Permissions(kick_members=True))
        await router.dispatch(allowed)
        assert allowed.response.send_message.await_args.args[0].startswith("Kick action triggered.")

    @pytest.mark.asyncio
    async def test_special_button_levels(self):
        _, router, _ = setup(developer_ids=[42])
        cases = [
            (make_interaction(SPECIAL_BUTTON, user_id=42), "Developer access"),
            (make_interaction(SPECIAL_BUTTON, permissions=discord.Permissions(ban_members=True)), "Moderator access"),
            (make_interaction(SPECIAL_BUTTON, permissions=discord.Permissions(kick_members=True)), "Helper access"),
            (make_interaction(SPECIAL_BUTTON), "You don't have any special access"),
        ]
        for interaction, expected in cases:
            await router.dispatch(interaction)
            assert interaction.response.send_message.await_args.args[0].startswith(expected)

    @pytest.mark.asyncio
    async def test_admin_panel_sends_buttons(self):
        examples, _, _ = setup()
        interaction = make_interaction(kind="command")
        await examples.admin_panel(interaction)
        view = interaction.response.send_message.await_args.kwargs["view"]
        assert [item.custom_id for item in view.children] == [KICK_BUTTON, BAN_BUTTON, SPECIAL_BUTTON]
