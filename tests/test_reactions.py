from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from botkit.reactions import ReactionRouter, emoji_identifier, resolve_emoji_identifier
from conftest import START, make_bot


def member(user_id: int, *, bot: bool = False) -> SimpleNamespace:
    return SimpleNamespace(id=user_id, bot=bot)


def reaction(user_id: int, emoji: str = "🎉", *, message_id: int = 1, guild_id: int = 10, who=None):
    return SimpleNamespace(
        message_id=message_id,
        user_id=user_id,
        guild_id=guild_id,
        member=who if who is not None else member(user_id),
        emoji=discord.PartialEmoji.from_str(emoji),
    )


class TestEmojiIdentifiers:
    def test_custom_emoji_matches_by_id(self):
        assert emoji_identifier(discord.PartialEmoji.from_str("<:party:123456>")) == "123456"
        assert emoji_identifier(discord.PartialEmoji(name="🎉")) == "🎉"

    def test_resolve_user_input(self):
        assert resolve_emoji_identifier("🎉") == ("🎉", "🎉")
        assert resolve_emoji_identifier("<:party:123456>") == ("123456", "<:party:123456>")
        assert resolve_emoji_identifier("party") is None
        assert resolve_emoji_identifier(":tada:") is None
        assert resolve_emoji_identifier("") is None

    def test_resolve_bare_id_through_bot_cache(self):
        bot = make_bot()
        assert resolve_emoji_identifier("123456", bot) is None
        bot.get_emoji.return_value = MagicMock(id=123456)
        bot.get_emoji.return_value.__str__.return_value = "<:party:123456>"
        assert resolve_emoji_identifier("123456", bot) == ("123456", "<:party:123456>")


class TestReactionRouter:
    @pytest.mark.asyncio
    async def test_three_right_emojis_and_one_wrong(self, clock):
        router = ReactionRouter(make_bot(), clock=clock)
        handler = AsyncMock(return_value=True)
        campaign = router.register(1, "🎉", handler, end_time=START + timedelta(hours=1), guild_id=10)
        for user_id in (1, 2, 3):
            assert await router.dispatch(reaction(user_id))
        assert not await router.dispatch(reaction(4, "👍"))
        assert campaign.collected == {1, 2, 3}
        assert handler.await_count == 3

    @pytest.mark.asyncio
    async def test_repeat_reactions_are_not_credited_twice(self, clock):
        router = ReactionRouter(make_bot(), clock=clock)
        handler = AsyncMock(return_value=True)
        router.register(1, "🎉", handler)
        assert await router.dispatch(reaction(5))
        assert not await router.dispatch(reaction(5))
        handler.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_bots_and_self_are_ignored(self, clock):
        router = ReactionRouter(make_bot(user_id=999), clock=clock)
        handler = AsyncMock(return_value=True)
        router.register(1, "🎉", handler)
        assert not await router.dispatch(reaction(7, who=member(7, bot=True)))
        assert not await router.dispatch(reaction(999))
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_foreign_and_full_campaigns(self, clock):
        router = ReactionRouter(make_bot(), clock=clock)
        handler = AsyncMock(return_value=True)
        router.register(1, "🎉", handler, end_time=START + timedelta(minutes=1), guild_id=10, max_entrants=1)
        assert not await router.dispatch(reaction(1, guild_id=11))
        assert await router.dispatch(reaction(1))
        assert not await router.dispatch(reaction(2))
        router.register(2, "🎉", handler, end_time=START + timedelta(minutes=1))
        clock.advance(minutes=2)
        assert not await router.dispatch(reaction(3, message_id=2))

    @pytest.mark.asyncio
    async def test_declined_or_failing_handler_does_not_collect(self, clock):
        router = ReactionRouter(make_bot(), clock=clock)
        campaign = router.register(1, "🎉", AsyncMock(return_value=False))
        assert not await router.dispatch(reaction(1))
        router.register(2, "🎉", AsyncMock(side_effect=RuntimeError("boom")))
        assert not await router.dispatch(reaction(1, message_id=2))
        assert campaign.collected == set()

    @pytest.mark.asyncio
    async def test_user_is_resolved_when_member_missing(self, clock):
        bot = make_bot()
        bot.get_user.return_value = member(8)
        router = ReactionRouter(bot, clock=clock)
        handler = AsyncMock(return_value=True)
        router.register(1, "🎉", handler)
        payload = reaction(8)
        payload.member = None
        payload.guild_id = None
        assert await router.dispatch(payload)
        assert handler.await_args.args[1].id == 8

    @pytest.mark.asyncio
    async def test_unregistered_message_is_ignored(self, clock):
        router = ReactionRouter(make_bot(), clock=clock)
        router.register(1, "🎉", AsyncMock(return_value=True))
        assert router.unregister(1)
        assert not await router.dispatch(reaction(1))
