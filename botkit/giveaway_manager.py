from __future__ import annotations

import enum
import functools
import logging
import random
import secrets
from typing import List, Optional, Sequence, Union

import discord

from .config import Config
from .custom_ids import new_entity_id
from .giveaway_views import announcement_embed, claim_view, entry_view, results_embed
from .models import CreationSession, Giveaway, ReactionEntry, TriviaEntry
from .reactions import ReactionRouter, User
from .scheduler import Scheduler
from .storage import GiveawayRepository, StorageError, TriviaAttemptLedger
from .timeutils import Clock, utcnow

log = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "This giveaway could not be found."
ALREADY_ANSWERED_MESSAGE = "You have already successfully answered the trivia for this giveaway!"
WRONG_ANSWER_PREFIX = "Sorry, that's not the right answer. "


class EntryResult(enum.Enum):
    ENTERED = "You have successfully entered the giveaway!"
    ALREADY_ENTERED = "You are already entered in this giveaway!"
    CLOSED = "This giveaway is no longer active or has ended."
    NOT_FOUND = NOT_FOUND_MESSAGE

    @property
    def message(self) -> str:
        return self.value


def choose_winners(
    participants: Sequence[int], count: int, rng: Union[random.Random, secrets.SystemRandom]
) -> List[int]:
    """Shuffle the distinct participants and take the first ``count``."""
    pool = list(dict.fromkeys(participants))
    rng.shuffle(pool)
    return pool[: max(count, 0)]


class GiveawayManager:
    """Coordinates giveaway lifecycle, persistence, and Discord interactions."""

    def __init__(
        self,
        bot: discord.Client,
        config: Config,
        repository: GiveawayRepository,
        attempts: TriviaAttemptLedger,
        reactions: ReactionRouter,
        scheduler: Scheduler,
        *,
        clock: Clock = utcnow,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.bot = bot
        self.config = config
        self.repository = repository
        self.attempts = attempts
        self.reactions = reactions
        self.scheduler = scheduler
        self._clock = clock
        self._rng = rng or secrets.SystemRandom()

    async def load(self) -> None:
        """Re-arm active giveaways and finish the ones that ended while offline."""
        try:
            giveaways = await self.repository.load(force=True)
        except StorageError as exc:
            log.exception("Failed to load persisted giveaways: %s", exc)
            return

        now = self._clock()
        overdue: List[str] = []
        for giveaway in giveaways:
            if not giveaway.is_active:
                continue
            if giveaway.end_time <= now:
                overdue.append(giveaway.id)
                continue
            await self._on_announced(giveaway)
            self._schedule_finish(giveaway)

        log.info(
            "Restored %d active giveaway(s); %d overdue.",
            sum(1 for g in giveaways if g.is_active) - len(overdue),
            len(overdue),
        )
        for giveaway_id in overdue:
            await self.end_giveaway(giveaway_id)

    def is_manager(
        self,
        member: Union[discord.Member, discord.User],
        *,
        guild_owner_id: Optional[int] = None,
        base_permissions: Optional[discord.Permissions] = None,
    ) -> bool:
        if guild_owner_id is not None and guild_owner_id == member.id:
            log.debug("Member %s is guild owner; treating as giveaway manager.", member.id)
            return True

        permissions_obj = base_permissions
        if permissions_obj is None:
            permissions_obj = getattr(member, "guild_permissions", None)
        if permissions_obj and (
            permissions_obj.administrator or permissions_obj.manage_guild
        ):
            log.debug(
                "Member %s has administrative permissions; treating as giveaway manager.",
                member.id,
            )
            return True

        admin_roles = set(self.config.permissions.admin_roles)
        if not admin_roles:
            return False
        role_ids = {role.id for role in getattr(member, "roles", [])}
        matching = sorted(admin_roles & role_ids)
        if matching:
            log.debug("Member %s matched giveaway admin role(s) %s.", member.id, matching)
            return True
        return False

    async def start_giveaway(
        self, session: CreationSession, channel: discord.abc.Messageable
    ) -> Union[Giveaway, str]:
        """Announce the draft. Returns the giveaway, or a message explaining why not."""
        problem = session.validate()
        if problem:
            return problem

        now = self._clock()
        giveaway = Giveaway(
            id=new_entity_id(),
            guild_id=session.guild_id,
            channel_id=session.channel_id,
            message_id=0,
            title=session.title or "",
            prize=session.prize or "",
            start_time=now,
            end_time=now + session.duration,
            creator_id=session.creator_id,
            entry=session.build_entry(),
            winner_count=session.winner_count,
        )

        try:
            message = await channel.send(
                embed=announcement_embed(giveaway), view=entry_view(giveaway)
            )
        except discord.HTTPException as exc:
            log.warning("Unable to announce giveaway in channel %s: %s", session.channel_id, exc)
            return "I couldn't post the giveaway in this channel. Check my permissions there."

        giveaway.message_id = message.id
        await self.repository.add(giveaway)
        await self._on_announced(giveaway, message)
        self._schedule_finish(giveaway)

        await self._notify_logger(
            f"Giveaway **{giveaway.title}** (`{giveaway.id}`) started in <#{giveaway.channel_id}> "
            f"by <@{giveaway.creator_id}>."
        )
        return giveaway

    async def end_giveaway(self, giveaway_id: str) -> Optional[Giveaway]:
        """Pick winners and close the giveaway. ``None`` if it is not active."""
        transitioned = False

        def finish(giveaway: Giveaway) -> bool:
            nonlocal transitioned
            if not giveaway.is_active:
                return False
            giveaway.winners = choose_winners(
                giveaway.participants, giveaway.winner_count, self._rng
            )
            giveaway.ended = True
            transitioned = True
            return True

        giveaway = await self.repository.update(giveaway_id, finish)
        if giveaway is None or not transitioned:
            log.info("Refusing to end giveaway %s: missing or already closed.", giveaway_id)
            return None

        self.scheduler.cancel(giveaway.id)
        await self._on_terminated(giveaway)
        log.info(
            "Giveaway %s ended with %d winner(s) from %d participant(s).",
            giveaway.id,
            len(giveaway.winners),
            len(giveaway.participants),
        )

        channel = await self._fetch_text_channel(giveaway.channel_id)
        if channel is None:
            log.warning(
                "Unable to locate channel %s for giveaway %s",
                giveaway.channel_id,
                giveaway.id,
            )
        else:
            winner_lines = [
                f"<@{winner_id}> ({await self._display_name(giveaway.guild_id, winner_id)})"
                for winner_id in giveaway.winners
            ]
            try:
                await channel.send(
                    embed=results_embed(giveaway, winner_lines), view=claim_view(giveaway)
                )
            except discord.HTTPException as exc:
                log.warning("Failed to announce results for giveaway %s: %s", giveaway.id, exc)
            await self._edit_announcement(giveaway, channel)

        if giveaway.winners:
            mentions = ", ".join(f"<@{winner_id}>" for winner_id in giveaway.winners)
            await self._notify_logger(
                f"Giveaway **{giveaway.title}** (`{giveaway.id}`) finished with "
                f"{len(giveaway.winners)} winner(s): {mentions}."
            )
        else:
            await self._notify_logger(
                f"Giveaway **{giveaway.title}** (`{giveaway.id}`) finished with no winners."
            )
        return giveaway

    async def cancel_giveaway(self, giveaway_id: str) -> Optional[Giveaway]:
        transitioned = False

        def cancel(giveaway: Giveaway) -> bool:
            nonlocal transitioned
            if not giveaway.is_active:
                return False
            giveaway.ended = True
            giveaway.cancelled = True
            giveaway.winners = []
            transitioned = True
            return True

        giveaway = await self.repository.update(giveaway_id, cancel)
        if giveaway is None or not transitioned:
            log.info("Refusing to cancel giveaway %s: missing or already closed.", giveaway_id)
            return None

        self.scheduler.cancel(giveaway.id)
        await self._on_terminated(giveaway)
        await self._edit_announcement(giveaway)
        await self._notify_logger(f"Giveaway **{giveaway.title}** (`{giveaway.id}`) was cancelled.")
        return giveaway

    async def finish_now(self, giveaway_id: str) -> Optional[Giveaway]:
        """Move the end time to now and let the regular termination run."""
        now = self._clock()
        changed = False

        def rewrite(giveaway: Giveaway) -> bool:
            nonlocal changed
            if not giveaway.is_active:
                return False
            giveaway.end_time = min(giveaway.end_time, now)
            changed = True
            return True

        giveaway = await self.repository.update(giveaway_id, rewrite)
        if giveaway is None or not changed:
            return None
        self._schedule_finish(giveaway)
        return giveaway

    async def enter(self, giveaway_id: str, user_id: int) -> EntryResult:
        now = self._clock()
        result = EntryResult.NOT_FOUND

        def join(giveaway: Giveaway) -> bool:
            nonlocal result
            if not giveaway.accepts_entries(now):
                result = EntryResult.CLOSED
                return False
            if not giveaway.add_participant(user_id):
                result = EntryResult.ALREADY_ENTERED
                return False
            result = EntryResult.ENTERED
            return True

        giveaway = await self.repository.update(giveaway_id, join)
        if giveaway is None:
            return EntryResult.NOT_FOUND
        if result is EntryResult.ENTERED:
            log.info("User %s entered giveaway %s.", user_id, giveaway_id)
            await self._edit_announcement(giveaway)
        return result

    async def trivia_gate(self, giveaway_id: str, user_id: int) -> Optional[str]:
        """Why ``user_id`` may not answer right now, or ``None`` to show the prompt."""
        giveaway = await self.repository.get(giveaway_id)
        if giveaway is None:
            return NOT_FOUND_MESSAGE
        entry = giveaway.entry
        if not isinstance(entry, TriviaEntry):
            return "This giveaway does not use trivia entry."
        if not giveaway.accepts_entries(self._clock()):
            return "This trivia giveaway is no longer active."
        if user_id in giveaway.participants:
            return ALREADY_ANSWERED_MESSAGE
        if not entry.unlimited:
            attempts = await self.attempts.get(giveaway_id, user_id)
            if attempts >= entry.max_attempts:
                return f"You have no more attempts left for this trivia. (Max: {entry.max_attempts})"
        return None

    async def trivia_question(self, giveaway_id: str) -> Optional[str]:
        giveaway = await self.repository.get(giveaway_id)
        if giveaway is None or not isinstance(giveaway.entry, TriviaEntry):
            return None
        return giveaway.entry.question

    async def submit_trivia(self, giveaway_id: str, user_id: int, answer: str) -> str:
        refusal = await self.trivia_gate(giveaway_id, user_id)
        if refusal:
            return refusal
        giveaway = await self.repository.get(giveaway_id)
        if giveaway is None or not isinstance(giveaway.entry, TriviaEntry):
            return NOT_FOUND_MESSAGE
        entry = giveaway.entry

        if entry.is_correct(answer):
            result = await self.enter(giveaway_id, user_id)
            if result is EntryResult.ENTERED:
                return "Correct! You've entered the giveaway. 🎉"
            if result is EntryResult.ALREADY_ENTERED:
                return ALREADY_ANSWERED_MESSAGE
            return result.message

        attempts = await self.attempts.increment(giveaway_id, user_id)
        log.debug("User %s missed trivia for %s (%d attempt(s)).", user_id, giveaway_id, attempts)
        if entry.unlimited:
            return WRONG_ANSWER_PREFIX + "Better luck next time!"
        remaining = entry.max_attempts - attempts
        if remaining > 0:
            return WRONG_ANSWER_PREFIX + f"You have **{remaining}** attempt(s) left."
        return WRONG_ANSWER_PREFIX + "You have no more attempts left."

    async def claim(self, giveaway_id: str, user_id: int, *, is_manager: bool) -> str:
        giveaway = await self.repository.get(giveaway_id)
        if giveaway is None:
            return NOT_FOUND_MESSAGE
        if giveaway.cancelled:
            return "This giveaway was cancelled."
        if not giveaway.ended:
            return "This giveaway has not ended yet."
        if user_id in giveaway.winners:
            return f"🎁 Congratulations! Your prize is: ||{giveaway.prize}||"
        if is_manager or user_id == giveaway.creator_id:
            winners = ", ".join(f"<@{w}>" for w in giveaway.winners) or "nobody"
            return (
                "You didn't win this one. As an admin/creator, you can see the prize: "
                f"||{giveaway.prize}||\nWinners: {winners}"
            )
        return "Nice try! But you are not the winner of this giveaway... Maybe next time!"

    async def get_giveaway(self, giveaway_id: str) -> Optional[Giveaway]:
        return await self.repository.get(giveaway_id)

    async def list_giveaways(
        self, guild_id: Optional[int], *, active_only: bool = False
    ) -> List[Giveaway]:
        return await self.repository.list(guild_id, active_only=active_only, now=self._clock())

    # --- entry mode hooks ---------------------------------------------------

    async def _on_announced(
        self, giveaway: Giveaway, message: Optional[discord.Message] = None
    ) -> None:
        entry = giveaway.entry
        if isinstance(entry, ReactionEntry):
            if message is not None:
                try:
                    await message.add_reaction(entry.display_emoji)
                except discord.HTTPException as exc:
                    log.warning(
                        "Could not add %s to giveaway %s: %s", entry.display_emoji, giveaway.id, exc
                    )
            self.reactions.register(
                giveaway.message_id,
                entry.identifier,
                functools.partial(self._reaction_entry, giveaway.id),
                end_time=giveaway.end_time,
                guild_id=giveaway.guild_id,
                collected=giveaway.participants,
            )

    async def _on_terminated(self, giveaway: Giveaway) -> None:
        if isinstance(giveaway.entry, ReactionEntry):
            self.reactions.unregister(giveaway.message_id)
        elif isinstance(giveaway.entry, TriviaEntry):
            await self.attempts.clear([giveaway.id])

    async def _reaction_entry(
        self, giveaway_id: str, payload: discord.RawReactionActionEvent, user: User
    ) -> bool:
        result = await self.enter(giveaway_id, user.id)
        return result in (EntryResult.ENTERED, EntryResult.ALREADY_ENTERED)

    # --- helpers ------------------------------------------------------------

    def _schedule_finish(self, giveaway: Giveaway) -> None:
        self.scheduler.schedule(
            giveaway.id,
            giveaway.end_time,
            functools.partial(self.end_giveaway, giveaway.id),
        )

    async def _edit_announcement(
        self, giveaway: Giveaway, channel: Optional[discord.TextChannel] = None
    ) -> None:
        channel = channel or await self._fetch_text_channel(giveaway.channel_id)
        if channel is None:
            return
        message = await self._fetch_message(channel, giveaway.message_id)
        if message is None:
            return
        view = entry_view(giveaway) if giveaway.is_active else None
        try:
            await message.edit(embed=announcement_embed(giveaway), view=view)
        except discord.HTTPException as exc:
            log.warning("Failed to update announcement for giveaway %s: %s", giveaway.id, exc)

    async def _display_name(self, guild_id: int, user_id: int) -> str:
        guild = self.bot.get_guild(guild_id)
        member = guild.get_member(user_id) if guild else None
        if member is not None:
            return member.display_name
        try:
            user = await self.bot.fetch_user(user_id)
        except (discord.NotFound, discord.HTTPException):
            return str(user_id)
        return user.name

    async def _notify_logger(self, message: str) -> None:
        channel_id = self.config.logging.logger_channel_id
        if not channel_id:
            return
        channel = await self._fetch_text_channel(channel_id)
        if channel:
            try:
                await channel.send(f"[Giveaway] {message}")
            except discord.HTTPException as exc:
                log.warning("Failed to send log message to %s: %s", channel_id, exc)

    async def _fetch_text_channel(
        self, channel_id: int
    ) -> Optional[discord.TextChannel]:
        channel = self.bot.get_channel(channel_id)
        if isinstance(channel, discord.TextChannel):
            return channel
        try:
            fetched = await self.bot.fetch_channel(channel_id)
        except (discord.NotFound, discord.Forbidden, discord.HTTPException):
            return None
        return fetched if isinstance(fetched, discord.TextChannel) else None

    async def _fetch_message(
        self, channel: discord.TextChannel, message_id: int
    ) -> Optional[discord.Message]:
        try:
            return await channel.fetch_message(message_id)
        except (discord.NotFound, discord.Forbidden, discord.HTTPException):
            return None
