"""Reaction campaigns: one tracked emoji per message with entrant bookkeeping."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, Iterable, Optional, Set, Tuple, Union

import discord

from .timeutils import Clock, utcnow

log = logging.getLogger(__name__)

User = Union[discord.Member, discord.User]
ReactionHandler = Callable[[discord.RawReactionActionEvent, User], Awaitable[bool]]


def emoji_identifier(emoji: discord.PartialEmoji) -> str:
    """Custom emoji match by id, unicode emoji by the character sequence."""
    if emoji.id:
        return str(emoji.id)
    return emoji.name or ""


def resolve_emoji_identifier(
    raw: str, bot: Optional[discord.Client] = None
) -> Optional[Tuple[str, str]]:
    """Turn user input into ``(identifier, display)`` or ``None`` if unusable.

    Accepts custom emoji markup (``<:name:id>``), a bare custom emoji id known
    to the bot, or a unicode emoji.
    """
    text = (raw or "").strip()
    if not text:
        return None
    if text.isdigit():
        emoji = bot.get_emoji(int(text)) if bot is not None else None
        if emoji is None:
            return None
        return str(emoji.id), str(emoji)
    partial = discord.PartialEmoji.from_str(text)
    if partial.id:
        return str(partial.id), str(partial)
    # words and shortcodes are not emoji
    if text.isascii() or " " in text:
        return None
    return text, text


@dataclass(slots=True)
class ReactionCampaign:
    message_id: int
    emoji_identifier: str
    handler: ReactionHandler
    end_time: Optional[datetime] = None
    guild_id: Optional[int] = None
    max_entrants: Optional[int] = None
    allow_bots: bool = False
    collected: Set[int] = field(default_factory=set)

    @property
    def is_full(self) -> bool:
        return self.max_entrants is not None and len(self.collected) >= self.max_entrants


class ReactionRouter:
    """Dispatches ``on_raw_reaction_add`` events to per-message campaigns."""

    def __init__(self, bot: discord.Client, *, clock: Clock = utcnow) -> None:
        self.bot = bot
        self._clock = clock
        self._campaigns: Dict[int, ReactionCampaign] = {}

    def register(
        self,
        message_id: int,
        emoji_identifier: str,
        handler: ReactionHandler,
        *,
        end_time: Optional[datetime] = None,
        guild_id: Optional[int] = None,
        max_entrants: Optional[int] = None,
        allow_bots: bool = False,
        collected: Iterable[int] = (),
    ) -> ReactionCampaign:
        if message_id in self._campaigns:
            log.warning("Replacing reaction campaign on message %s", message_id)
        campaign = ReactionCampaign(
            message_id=message_id,
            emoji_identifier=str(emoji_identifier),
            handler=handler,
            end_time=end_time,
            guild_id=guild_id,
            max_entrants=max_entrants,
            allow_bots=allow_bots,
            collected=set(collected),
        )
        self._campaigns[message_id] = campaign
        log.debug("Registered reaction campaign on message %s for %s", message_id, emoji_identifier)
        return campaign

    def unregister(self, message_id: int) -> bool:
        removed = self._campaigns.pop(message_id, None) is not None
        if removed:
            log.debug("Unregistered reaction campaign on message %s", message_id)
        return removed

    def get(self, message_id: int) -> Optional[ReactionCampaign]:
        return self._campaigns.get(message_id)

    async def dispatch(self, payload: discord.RawReactionActionEvent) -> bool:
        """Apply the campaign gates in order. Returns whether the handler credited the user."""
        campaign = self._campaigns.get(payload.message_id)
        if campaign is None:
            return False

        if not campaign.allow_bots:
            if payload.member is not None and payload.member.bot:
                return False
            own_user = getattr(self.bot, "user", None)
            if own_user is not None and payload.user_id == own_user.id:
                return False

        user = await self._resolve_user(payload)
        if user is None:
            log.debug("Could not resolve user %s for reaction on %s", payload.user_id, payload.message_id)
            return False
        if user.bot and not campaign.allow_bots:
            return False

        if emoji_identifier(payload.emoji) != campaign.emoji_identifier:
            return False
        if campaign.end_time is not None and self._clock() > campaign.end_time:
            return False
        if campaign.guild_id is not None and payload.guild_id != campaign.guild_id:
            return False
        if user.id in campaign.collected:
            return False
        if campaign.is_full:
            return False

        try:
            credited = await campaign.handler(payload, user)
        except Exception:
            log.exception(
                "Reaction handler failed for message %s (user %s)",
                payload.message_id,
                user.id,
            )
            return False
        if credited:
            campaign.collected.add(user.id)
        return bool(credited)

    async def _resolve_user(self, payload: discord.RawReactionActionEvent) -> Optional[User]:
        if payload.member is not None:
            return payload.member
        if payload.guild_id is not None:
            guild = self.bot.get_guild(payload.guild_id)
            if guild is not None:
                member = guild.get_member(payload.user_id)
                if member is not None:
                    return member
                try:
                    return await guild.fetch_member(payload.user_id)
                except (discord.NotFound, discord.Forbidden, discord.HTTPException):
                    pass
        user = self.bot.get_user(payload.user_id)
        if user is not None:
            return user
        try:
            return await self.bot.fetch_user(payload.user_id)
        except (discord.NotFound, discord.HTTPException):
            return None
