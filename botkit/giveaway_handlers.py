"""Interaction handlers for the /giveaway panel, the creation wizard and live controls."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

import discord

from . import giveaway_views as views
from .commands import BotCommand
from .custom_ids import CustomId
from .giveaway_manager import GiveawayManager
from .models import (
    ANSWER_MAX_LENGTH,
    PRIZE_MAX_LENGTH,
    QUESTION_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    UNLIMITED_ATTEMPTS,
    CreationSession,
    EntryMode,
    Giveaway,
)
from .reactions import resolve_emoji_identifier
from .router import InteractionMatch, InteractionRouter, modal_values, selected_values
from .timeutils import format_duration, parse_duration

log = logging.getLogger(__name__)

MANAGE_PERMISSIONS = ("manage_messages",)
MAX_WINNERS = 50
SESSION_EXPIRED = "This giveaway draft has expired. Run /giveaway again."


class GiveawayController:
    """Owns the wizard sessions and wires giveaway controls into the router."""

    def __init__(self, manager: GiveawayManager) -> None:
        self.manager = manager
        self.sessions: Dict[str, CreationSession] = {}
        self.session_ttl: Optional[timedelta] = None

    def register(self, router: InteractionRouter) -> None:
        # drafts live as long as the wizard buttons stay clickable
        self.session_ttl = router.default_timeout
        router.register_button(views.LIST_GIVEAWAYS_BTN, self.on_list)
        router.register_button(views.LIST_PAGE_BTN, self.on_list_page)
        router.register_select(views.LIST_SELECT, self.on_list_select)
        router.register_button(
            views.DETAIL_FINISH_BTN, self.on_finish_now, required_permissions=MANAGE_PERMISSIONS
        )
        router.register_button(
            views.DETAIL_CANCEL_BTN, self.on_cancel, required_permissions=MANAGE_PERMISSIONS
        )
        router.register_button(
            views.CREATE_GIVEAWAY_BTN, self.on_create, required_permissions=MANAGE_PERMISSIONS
        )

        router.register_button(views.CREATE_SET_TITLE_BTN, self.on_set_title)
        router.register_modal(views.MODAL_SET_TITLE, self.on_title_submitted)
        router.register_button(views.CREATE_SET_TIME_BTN, self.on_set_time)
        router.register_modal(views.MODAL_SET_TIME, self.on_time_submitted)
        router.register_button(views.CREATE_SET_PRIZE_BTN, self.on_set_prize)
        router.register_modal(views.MODAL_SET_PRIZE, self.on_prize_submitted)
        router.register_button(views.CREATE_SET_EMOJI_BTN, self.on_set_emoji)
        router.register_modal(views.MODAL_SET_EMOJI, self.on_emoji_submitted)
        router.register_button(views.CREATE_SET_TRIVIA_QNA_BTN, self.on_set_trivia_qna)
        router.register_modal(views.MODAL_SET_TRIVIA_QNA, self.on_trivia_qna_submitted)
        router.register_button(views.CREATE_SET_TRIVIA_ATTEMPTS_BTN, self.on_set_trivia_attempts)
        router.register_modal(views.MODAL_SET_TRIVIA_ATTEMPTS, self.on_trivia_attempts_submitted)
        router.register_button(views.CREATE_TOGGLE_ENTRY_BTN, self.on_toggle_entry)
        router.register_button(views.CREATE_REFRESH_PANEL_BTN, self.on_refresh)
        router.register_button(views.CREATE_BACK_BTN, self.on_back)
        router.register_button(views.CREATE_START_NOW_BTN, self.on_start_now)

        # announcements stay clickable for the whole giveaway
        router.register_button(views.ENTER_BTN, self.on_enter, timeout=None)
        router.register_button(views.TRIVIA_ANSWER_BTN, self.on_trivia_answer, timeout=None)
        router.register_modal(views.TRIVIA_ANSWER_MODAL, self.on_trivia_submitted)
        router.register_button(views.CLAIM_PRIZE_BTN, self.on_claim, timeout=None)

    def command(self) -> BotCommand:
        return BotCommand(
            name="giveaway",
            description="Manage giveaways for this server.",
            callback=self.open_panel,
            bot_permissions=("send_messages", "embed_links"),
        )

    # --- panel --------------------------------------------------------------

    async def open_panel(self, interaction: discord.Interaction) -> None:
        if interaction.guild is None:
            await interaction.response.send_message(
                "This command can only be used in a server.", ephemeral=True
            )
            return
        embed, view = views.main_panel(can_create=self._can_manage(interaction))
        await interaction.response.send_message(embed=embed, view=view, ephemeral=True)

    async def on_list(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        await self._show_list(interaction, 0)

    async def on_list_page(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        try:
            page = int(match.entity_id or 0)
        except ValueError:
            page = 0
        await self._show_list(interaction, page)

    async def _show_list(self, interaction: discord.Interaction, page: int) -> None:
        giveaways = await self.manager.list_giveaways(interaction.guild_id)
        embed, view = views.list_panel(giveaways, page)
        await interaction.response.edit_message(embed=embed, view=view)

    async def on_list_select(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        values = selected_values(interaction)
        giveaway = await self.manager.get_giveaway(values[0]) if values else None
        if giveaway is None or giveaway.guild_id != interaction.guild_id:
            await interaction.response.send_message(
                "This giveaway could not be found.", ephemeral=True
            )
            return
        await self._show_detail(interaction, giveaway)

    async def _show_detail(self, interaction: discord.Interaction, giveaway: Giveaway) -> None:
        embed, view = views.detail_panel(giveaway, can_manage=self._can_manage(interaction))
        await interaction.response.edit_message(embed=embed, view=view)

    async def on_finish_now(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        giveaway = await self.manager.finish_now(match.entity_id or "")
        if giveaway is None:
            await interaction.response.send_message(
                "This giveaway is no longer active or has ended.", ephemeral=True
            )
            return
        log.info("User %s finished giveaway %s early.", interaction.user.id, giveaway.id)
        await interaction.response.edit_message(
            content="The giveaway is finishing now. Winners will be announced shortly.",
            embed=None,
            view=None,
        )

    async def on_cancel(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        giveaway = await self.manager.cancel_giveaway(match.entity_id or "")
        if giveaway is None:
            await interaction.response.send_message(
                "This giveaway is no longer active or has ended.", ephemeral=True
            )
            return
        log.info("User %s cancelled giveaway %s.", interaction.user.id, giveaway.id)
        await self._show_detail(interaction, giveaway)

    # --- wizard -------------------------------------------------------------

    async def on_create(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        if interaction.guild_id is None or interaction.channel_id is None:
            await interaction.response.send_message(
                "Giveaways can only be created inside a server channel.", ephemeral=True
            )
            return
        session = CreationSession(
            session_id=str(interaction.id),
            guild_id=interaction.guild_id,
            channel_id=interaction.channel_id,
            creator_id=interaction.user.id,
            created_at=interaction.created_at,
        )
        self._evict_expired(interaction.created_at)
        self.sessions[session.session_id] = session
        await self._render_wizard(interaction, session)

    def _evict_expired(self, now: datetime) -> None:
        if self.session_ttl is None:
            return
        expired = [
            key
            for key, session in self.sessions.items()
            if session.created_at is not None and now - session.created_at > self.session_ttl
        ]
        for key in expired:
            del self.sessions[key]
        if expired:
            log.debug("Dropped %d abandoned giveaway draft(s).", len(expired))

    async def _session(
        self, interaction: discord.Interaction, match: InteractionMatch
    ) -> Optional[CreationSession]:
        session = self.sessions.get(match.entity_id or "")
        if session is None:
            await interaction.response.send_message(SESSION_EXPIRED, ephemeral=True)
        return session

    async def _render_wizard(
        self,
        interaction: discord.Interaction,
        session: CreationSession,
        *,
        notice: Optional[str] = None,
    ) -> None:
        embed, view = views.wizard_panel(session, notice=notice)
        await interaction.response.edit_message(content=None, embed=embed, view=view)

    async def on_set_title(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        session = await self._session(interaction, match)
        if session is None:
            return
        await interaction.response.send_modal(
            views.text_modal(
                CustomId(views.MODAL_SET_TITLE, session.session_id),
                "Set Giveaway Title",
                [
                    discord.ui.TextInput(
                        label="Title",
                        custom_id="title",
                        max_length=TITLE_MAX_LENGTH,
                        default=session.title,
                    )
                ],
            )
        )

    async def on_title_submitted(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        session = await self._session(interaction, match)
        if session is None:
            return
        title = modal_values(interaction).get("title", "").strip()
        session.title = title[:TITLE_MAX_LENGTH] or None
        await self._render_wizard(interaction, session)

    async def on_set_time(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        session = await self._session(interaction, match)
        if session is None:
            return
        await interaction.response.send_modal(
            views.text_modal(
                CustomId(views.MODAL_SET_TIME, session.session_id),
                "Set Duration & Winners",
                [
                    discord.ui.TextInput(
                        label="Duration (e.g. 1d2h30m, 01:30:00, 90)",
                        custom_id="duration",
                        max_length=20,
                        default=format_duration(session.duration).replace(" ", ""),
                    ),
                    discord.ui.TextInput(
                        label="Number of winners",
                        custom_id="winners",
                        max_length=3,
                        default=str(session.winner_count),
                    ),
                ],
            )
        )

    async def on_time_submitted(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        session = await self._session(interaction, match)
        if session is None:
            return
        values = modal_values(interaction)
        duration = parse_duration(values.get("duration", ""))
        if duration is None:
            await interaction.response.send_message(
                "Invalid duration format. Setting not applied.", ephemeral=True
            )
            return
        try:
            winners = int(values.get("winners", "1").strip() or 1)
        except ValueError:
            winners = 0
        if not 1 <= winners <= MAX_WINNERS:
            await interaction.response.send_message(
                f"The number of winners must be between 1 and {MAX_WINNERS}.", ephemeral=True
            )
            return
        session.duration = duration
        session.winner_count = winners
        await self._render_wizard(interaction, session)

    async def on_set_prize(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        session = await self._session(interaction, match)
        if session is None:
            return
        await interaction.response.send_modal(
            views.text_modal(
                CustomId(views.MODAL_SET_PRIZE, session.session_id),
                "Set Giveaway Prize",
                [
                    discord.ui.TextInput(
                        label="Prize",
                        custom_id="prize",
                        style=discord.TextStyle.paragraph,
                        max_length=PRIZE_MAX_LENGTH,
                        default=session.prize,
                    )
                ],
            )
        )

    async def on_prize_submitted(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        session = await self._session(interaction, match)
        if session is None:
            return
        prize = modal_values(interaction).get("prize", "").strip()
        session.prize = prize[:PRIZE_MAX_LENGTH] or None
        await self._render_wizard(interaction, session)

    async def on_set_emoji(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        session = await self._session(interaction, match)
        if session is None:
            return
        await interaction.response.send_modal(
            views.text_modal(
                CustomId(views.MODAL_SET_EMOJI, session.session_id),
                "Set Reaction Emoji",
                [
                    discord.ui.TextInput(
                        label="Emoji, custom emoji, or custom emoji ID",
                        custom_id="emoji",
                        max_length=64,
                        default=session.reaction_display,
                    )
                ],
            )
        )

    async def on_emoji_submitted(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        session = await self._session(interaction, match)
        if session is None:
            return
        raw = modal_values(interaction).get("emoji", "")
        resolved = resolve_emoji_identifier(raw, interaction.client)
        if resolved is None:
            await interaction.response.send_message(
                "I couldn't use that emoji. Use a standard emoji or a custom emoji I can see.",
                ephemeral=True,
            )
            return
        session.reaction_identifier, session.reaction_display = resolved
        await self._render_wizard(interaction, session)

    async def on_set_trivia_qna(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        session = await self._session(interaction, match)
        if session is None:
            return
        await interaction.response.send_modal(
            views.text_modal(
                CustomId(views.MODAL_SET_TRIVIA_QNA, session.session_id),
                "Set Trivia Question",
                [
                    discord.ui.TextInput(
                        label="Question",
                        custom_id="question",
                        style=discord.TextStyle.paragraph,
                        max_length=QUESTION_MAX_LENGTH,
                        default=session.trivia_question,
                    ),
                    discord.ui.TextInput(
                        label="Answer (case-insensitive)",
                        custom_id="answer",
                        max_length=ANSWER_MAX_LENGTH,
                        default=session.trivia_answer,
                    ),
                ],
            )
        )

    async def on_trivia_qna_submitted(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        session = await self._session(interaction, match)
        if session is None:
            return
        values = modal_values(interaction)
        session.trivia_question = values.get("question", "").strip() or None
        session.trivia_answer = values.get("answer", "").strip() or None
        await self._render_wizard(interaction, session)

    async def on_set_trivia_attempts(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        session = await self._session(interaction, match)
        if session is None:
            return
        await interaction.response.send_modal(
            views.text_modal(
                CustomId(views.MODAL_SET_TRIVIA_ATTEMPTS, session.session_id),
                "Set Trivia Attempts",
                [
                    discord.ui.TextInput(
                        label="Max attempts per user (-1 for unlimited)",
                        custom_id="attempts",
                        max_length=4,
                        default=str(session.max_trivia_attempts),
                    )
                ],
            )
        )

    async def on_trivia_attempts_submitted(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        session = await self._session(interaction, match)
        if session is None:
            return
        raw = modal_values(interaction).get("attempts", "").strip()
        try:
            attempts = int(raw)
        except ValueError:
            await interaction.response.send_message("Invalid number for attempts.", ephemeral=True)
            return
        session.max_trivia_attempts = attempts if attempts > 0 else UNLIMITED_ATTEMPTS
        await self._render_wizard(interaction, session)

    async def on_toggle_entry(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        session = await self._session(interaction, match)
        if session is None:
            return
        try:
            session.entry_mode = EntryMode(match.custom_id.field(0, EntryMode.BUTTON.value))
        except ValueError:
            session.entry_mode = session.entry_mode.next()
        await self._render_wizard(interaction, session)

    async def on_refresh(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        session = await self._session(interaction, match)
        if session is None:
            return
        await self._render_wizard(interaction, session)

    async def on_back(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        self.sessions.pop(match.entity_id or "", None)
        embed, view = views.main_panel(can_create=self._can_manage(interaction))
        await interaction.response.edit_message(content=None, embed=embed, view=view)

    async def on_start_now(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        session = await self._session(interaction, match)
        if session is None:
            return
        problem = session.validate()
        if problem:
            await interaction.response.send_message(problem, ephemeral=True)
            return
        channel = interaction.channel
        if not isinstance(channel, discord.abc.Messageable):
            await interaction.response.send_message(
                "Error: Cannot send giveaway to this channel type.", ephemeral=True
            )
            return

        await interaction.response.defer()
        result = await self.manager.start_giveaway(session, channel)
        if isinstance(result, str):
            await interaction.followup.send(result, ephemeral=True)
            return
        self.sessions.pop(session.session_id, None)
        await interaction.edit_original_response(
            content=(
                f"Giveaway **{result.title}** started! It ends "
                f"{discord.utils.format_dt(result.end_time, style='R')}."
            ),
            embed=None,
            view=None,
        )

    # --- live controls ------------------------------------------------------

    async def on_enter(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        result = await self.manager.enter(match.entity_id or "", interaction.user.id)
        await interaction.response.send_message(result.message, ephemeral=True)

    async def on_trivia_answer(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        giveaway_id = match.entity_id or ""
        refusal = await self.manager.trivia_gate(giveaway_id, interaction.user.id)
        if refusal:
            await interaction.response.send_message(refusal, ephemeral=True)
            return
        question = await self.manager.trivia_question(giveaway_id) or ""
        await interaction.response.send_modal(
            views.text_modal(
                CustomId(views.TRIVIA_ANSWER_MODAL, giveaway_id),
                "Trivia",
                [
                    discord.ui.TextInput(
                        label="Your answer",
                        custom_id="answer",
                        placeholder=question[:QUESTION_MAX_LENGTH] or None,
                        max_length=ANSWER_MAX_LENGTH,
                    )
                ],
            )
        )

    async def on_trivia_submitted(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        answer = modal_values(interaction).get("answer", "")
        reply = await self.manager.submit_trivia(
            match.entity_id or "", interaction.user.id, answer
        )
        await interaction.response.send_message(reply, ephemeral=True)

    async def on_claim(self, interaction: discord.Interaction, match: InteractionMatch) -> None:
        guild = interaction.guild
        is_manager = self.manager.is_manager(
            interaction.user,
            guild_owner_id=guild.owner_id if guild else None,
            base_permissions=interaction.permissions,
        )
        reply = await self.manager.claim(
            match.entity_id or "", interaction.user.id, is_manager=is_manager
        )
        await interaction.response.send_message(reply, ephemeral=True)

    @staticmethod
    def _can_manage(interaction: discord.Interaction) -> bool:
        permissions = interaction.permissions
        return all(getattr(permissions, flag, False) for flag in MANAGE_PERMISSIONS)
