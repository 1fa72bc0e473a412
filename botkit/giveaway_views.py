"""Embeds and component layouts for giveaway announcements and the wizard."""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

import discord

from .custom_ids import CustomId
from .models import (
    ButtonEntry,
    CreationSession,
    EntryMode,
    Giveaway,
    GiveawayStatus,
    ReactionEntry,
    TriviaEntry,
    UNLIMITED_ATTEMPTS,
)
from .timeutils import format_duration

# panel
LIST_GIVEAWAYS_BTN = "giveaway_list_btn"
CREATE_GIVEAWAY_BTN = "giveaway_create_btn"
LIST_PAGE_BTN = "giveaway_list_page_btn"
LIST_SELECT = "giveaway_list_select"
DETAIL_FINISH_BTN = "gw_detail_finish_btn"
DETAIL_CANCEL_BTN = "gw_detail_cancel_btn"

# wizard
CREATE_SET_TITLE_BTN = "gw_create_set_title_btn"
CREATE_TOGGLE_ENTRY_BTN = "gw_create_toggle_entry_btn"
CREATE_SET_TIME_BTN = "gw_create_set_time_btn"
CREATE_SET_PRIZE_BTN = "gw_create_set_prize_btn"
CREATE_SET_EMOJI_BTN = "gw_create_set_emoji_btn"
CREATE_SET_TRIVIA_QNA_BTN = "gw_create_set_trivia_qna_btn"
CREATE_SET_TRIVIA_ATTEMPTS_BTN = "gw_create_set_trivia_attempts_btn"
CREATE_BACK_BTN = "gw_create_back_btn"
CREATE_START_NOW_BTN = "gw_create_start_now_btn"
CREATE_REFRESH_PANEL_BTN = "gw_create_refresh_panel_btn"

MODAL_SET_TITLE = "gw_modal_set_title"
MODAL_SET_TIME = "gw_modal_set_time"
MODAL_SET_PRIZE = "gw_modal_set_prize"
MODAL_SET_EMOJI = "gw_modal_set_emoji"
MODAL_SET_TRIVIA_QNA = "gw_modal_set_trivia_qna"
MODAL_SET_TRIVIA_ATTEMPTS = "gw_modal_set_trivia_attempts"

# live giveaway controls
ENTER_BTN = "gw_enter_btn"
TRIVIA_ANSWER_BTN = "gw_trivia_answer_btn"
TRIVIA_ANSWER_MODAL = "gw_trivia_answer_modal"
CLAIM_PRIZE_BTN = "gw_claim_prize_btn"

LIST_PAGE_SIZE = 10

_STATUS_COLORS = {
    GiveawayStatus.ACTIVE: discord.Color.blue,
    GiveawayStatus.ENDED: discord.Color.dark_gray,
    GiveawayStatus.CANCELLED: discord.Color.red,
}


def static_view(items: Iterable[discord.ui.Item]) -> Optional[discord.ui.View]:
    """Components whose clicks are handled by the interaction router.

    The view is stopped before it is sent so discord.py never stores or
    dispatches it itself.
    """
    view = discord.ui.View(timeout=None)
    for item in items:
        view.add_item(item)
    view.stop()
    return view if view.children else None


def button(
    custom_id: CustomId | str,
    label: str,
    *,
    style: discord.ButtonStyle = discord.ButtonStyle.secondary,
    emoji: Optional[str] = None,
    disabled: bool = False,
    row: Optional[int] = None,
) -> discord.ui.Button:
    return discord.ui.Button(
        label=label,
        style=style,
        custom_id=str(custom_id),
        emoji=emoji,
        disabled=disabled,
        row=row,
    )


def text_modal(
    custom_id: CustomId | str,
    title: str,
    inputs: Sequence[discord.ui.TextInput],
) -> discord.ui.Modal:
    modal = discord.ui.Modal(title=title, custom_id=str(custom_id), timeout=None)
    for text_input in inputs:
        modal.add_item(text_input)
    # submissions are routed by custom id like every other component
    modal.stop()
    return modal


def _timestamp(value) -> str:
    return discord.utils.format_dt(value, style="R")


def entry_instructions(giveaway: Giveaway) -> str:
    entry = giveaway.entry
    if isinstance(entry, ReactionEntry):
        return f"React with {entry.display_emoji} to enter!"
    if isinstance(entry, TriviaEntry):
        return f"Answer the trivia question to enter:\n**{entry.question}**"
    return "Click the button below to enter!"


def announcement_embed(giveaway: Giveaway) -> discord.Embed:
    status = giveaway.status
    embed = discord.Embed(
        title=f"🎉 {giveaway.title}",
        description=f"**Prize:** {giveaway.prize}",
        color=_STATUS_COLORS[status](),
    )
    embed.add_field(name="Winners", value=str(giveaway.winner_count), inline=True)
    embed.add_field(name="Participants", value=str(len(giveaway.participants)), inline=True)
    embed.add_field(name="Hosted by", value=f"<@{giveaway.creator_id}>", inline=True)
    if status is GiveawayStatus.ACTIVE:
        embed.add_field(name="Ends", value=_timestamp(giveaway.end_time), inline=False)
        embed.add_field(name="How to enter", value=entry_instructions(giveaway), inline=False)
    elif status is GiveawayStatus.ENDED:
        embed.add_field(name="Ended", value=_timestamp(giveaway.end_time), inline=False)
        winners = " ".join(f"<@{w}>" for w in giveaway.winners) or "No valid participants."
        embed.add_field(name="Winner(s)", value=winners, inline=False)
    else:
        embed.add_field(name="Status", value="This giveaway was cancelled.", inline=False)
    embed.set_footer(text=f"Giveaway ID: {giveaway.id}")
    embed.timestamp = giveaway.end_time
    return embed


def entry_view(giveaway: Giveaway) -> Optional[discord.ui.View]:
    """Controls shown under an active announcement; none for reaction entry."""
    entry = giveaway.entry
    if isinstance(entry, TriviaEntry):
        return static_view([
            button(
                CustomId(TRIVIA_ANSWER_BTN, giveaway.id),
                "Answer Trivia",
                style=discord.ButtonStyle.primary,
                emoji="❓",
            )
        ])
    if isinstance(entry, ButtonEntry):
        return static_view([
            button(
                CustomId(ENTER_BTN, giveaway.id),
                "Enter Giveaway",
                style=discord.ButtonStyle.success,
                emoji="🎉",
            )
        ])
    return None


def results_embed(giveaway: Giveaway, winner_lines: Sequence[str]) -> discord.Embed:
    embed = discord.Embed(
        title=f"🎊 Giveaway ended: {giveaway.title}",
        color=discord.Color.gold() if winner_lines else discord.Color.dark_gray(),
    )
    if winner_lines:
        embed.description = "Congratulations to the winner(s)!\n" + "\n".join(winner_lines)
        embed.add_field(
            name="Claim",
            value="Winners can press **Claim Prize** to reveal their prize.",
            inline=False,
        )
    else:
        embed.description = "No one entered this giveaway, so there are no winners."
    embed.add_field(name="Participants", value=str(len(giveaway.participants)), inline=True)
    embed.set_footer(text=f"Giveaway ID: {giveaway.id}")
    return embed


def claim_view(giveaway: Giveaway) -> Optional[discord.ui.View]:
    return static_view([
        button(
            CustomId(CLAIM_PRIZE_BTN, giveaway.id),
            "Claim Prize",
            style=discord.ButtonStyle.success,
            emoji="🎁",
            disabled=not giveaway.winners,
        )
    ])


# --- panel and wizard ---------------------------------------------------

def main_panel(*, can_create: bool) -> tuple[discord.Embed, Optional[discord.ui.View]]:
    embed = discord.Embed(
        title="Giveaway Panel",
        description="Browse the giveaways of this server or start a new one.",
        color=discord.Color.blurple(),
    )
    items: List[discord.ui.Item] = [
        button(LIST_GIVEAWAYS_BTN, "List Giveaways", style=discord.ButtonStyle.primary, emoji="📜"),
    ]
    if can_create:
        items.append(
            button(CREATE_GIVEAWAY_BTN, "Create Giveaway", style=discord.ButtonStyle.success, emoji="➕")
        )
    return embed, static_view(items)


def wizard_panel(
    session: CreationSession, *, notice: Optional[str] = None
) -> tuple[discord.Embed, Optional[discord.ui.View]]:
    embed = discord.Embed(
        title="Create a Giveaway",
        description=notice or "Configure the giveaway below, then press **Start Now**.",
        color=discord.Color.green(),
    )
    embed.add_field(name="Title", value=session.title or "Not Set", inline=True)
    embed.add_field(name="Prize", value=session.prize or "Not Set", inline=True)
    embed.add_field(name="Entry Mode", value=session.entry_mode.value.upper(), inline=True)
    embed.add_field(name="Duration", value=format_duration(session.duration), inline=True)
    embed.add_field(name="Winner Count", value=str(session.winner_count), inline=True)
    if session.entry_mode is EntryMode.REACTION:
        embed.add_field(name="Reaction Emoji", value=session.reaction_display or "Not Set", inline=True)
    elif session.entry_mode is EntryMode.TRIVIA:
        attempts = (
            "Unlimited"
            if session.max_trivia_attempts == UNLIMITED_ATTEMPTS
            else str(session.max_trivia_attempts)
        )
        embed.add_field(name="Trivia Question", value=session.trivia_question or "Not Set", inline=False)
        embed.add_field(name="Trivia Answer", value=session.trivia_answer or "Not Set", inline=True)
        embed.add_field(name="Max Attempts", value=attempts, inline=True)

    sid = session.session_id
    next_mode = session.entry_mode.next()
    items: List[discord.ui.Item] = [
        button(CustomId(CREATE_SET_TITLE_BTN, sid), "Set Title", row=0),
        button(CustomId(CREATE_SET_PRIZE_BTN, sid), "Set Prize", row=0),
        button(CustomId(CREATE_SET_TIME_BTN, sid), "Set Duration & Winners", row=0),
        button(
            CustomId(CREATE_TOGGLE_ENTRY_BTN, sid, (next_mode.value,)),
            f"Entry: {next_mode.label}",
            style=discord.ButtonStyle.primary,
            row=1,
        ),
    ]
    if session.entry_mode is EntryMode.REACTION:
        items.append(button(CustomId(CREATE_SET_EMOJI_BTN, sid), "Set Emoji", row=1))
    elif session.entry_mode is EntryMode.TRIVIA:
        items.append(button(CustomId(CREATE_SET_TRIVIA_QNA_BTN, sid), "Set Q&A", row=1))
        items.append(button(CustomId(CREATE_SET_TRIVIA_ATTEMPTS_BTN, sid), "Set Attempts", row=1))
    items.extend([
        button(CustomId(CREATE_START_NOW_BTN, sid), "Start Now", style=discord.ButtonStyle.success, row=2),
        button(CustomId(CREATE_REFRESH_PANEL_BTN, sid), "Refresh", row=2),
        button(CustomId(CREATE_BACK_BTN, sid), "Cancel", style=discord.ButtonStyle.danger, row=2),
    ])
    return embed, static_view(items)


def list_panel(
    giveaways: Sequence[Giveaway], page: int
) -> tuple[discord.Embed, Optional[discord.ui.View]]:
    pages = max(1, (len(giveaways) + LIST_PAGE_SIZE - 1) // LIST_PAGE_SIZE)
    page = min(max(page, 0), pages - 1)
    chunk = giveaways[page * LIST_PAGE_SIZE:(page + 1) * LIST_PAGE_SIZE]
    embed = discord.Embed(title="Giveaways", color=discord.Color.blurple())
    if not chunk:
        embed.description = "There are no giveaways in this server yet."
    else:
        embed.description = "\n".join(
            f"**{g.title}** · {g.status.value} · {len(g.participants)} entrant(s) · ends {_timestamp(g.end_time)}"
            for g in chunk
        )
    embed.set_footer(text=f"Page {page + 1}/{pages}")

    items: List[discord.ui.Item] = []
    if chunk:
        select = discord.ui.Select(
            custom_id=LIST_SELECT,
            placeholder="Select a giveaway for details",
            options=[
                discord.SelectOption(
                    label=g.title[:100],
                    value=g.id,
                    description=f"{g.status.value} · {g.entry_mode.label} entry",
                )
                for g in chunk
            ],
            row=0,
        )
        items.append(select)
    items.append(
        button(CustomId(LIST_PAGE_BTN, str(page - 1)), "Previous", disabled=page == 0, row=1)
    )
    items.append(
        button(CustomId(LIST_PAGE_BTN, str(page + 1)), "Next", disabled=page >= pages - 1, row=1)
    )
    return embed, static_view(items)


def detail_panel(
    giveaway: Giveaway, *, can_manage: bool
) -> tuple[discord.Embed, Optional[discord.ui.View]]:
    embed = announcement_embed(giveaway)
    embed.title = giveaway.title
    embed.add_field(name="Entry Mode", value=giveaway.entry_mode.label, inline=True)
    embed.add_field(
        name="Announcement",
        value=f"https://discord.com/channels/{giveaway.guild_id}/{giveaway.channel_id}/{giveaway.message_id}",
        inline=False,
    )
    items: List[discord.ui.Item] = []
    if can_manage and giveaway.is_active:
        items.append(
            button(CustomId(DETAIL_FINISH_BTN, giveaway.id), "Finish Now", style=discord.ButtonStyle.primary)
        )
        items.append(
            button(CustomId(DETAIL_CANCEL_BTN, giveaway.id), "Cancel Giveaway", style=discord.ButtonStyle.danger)
        )
    items.append(button(LIST_GIVEAWAYS_BTN, "Back to List"))
    return embed, static_view(items)
