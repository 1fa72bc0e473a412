import random
from datetime import timedelta
from types import SimpleNamespace

import discord
import pytest

from botkit.giveaway_manager import (
    ALREADY_ANSWERED_MESSAGE,
    EntryResult,
    GiveawayManager,
    choose_winners,
)
from botkit.models import CreationSession, EntryMode, Giveaway, TriviaEntry
from botkit.reactions import ReactionRouter
from botkit.storage import GiveawayRepository, MemoryDocumentStore, TriviaAttemptLedger
from conftest import START, make_bot, make_config, make_text_channel


def build(clock, scheduler, store=None, **permissions):
    channel = make_text_channel()
    bot = make_bot(channel)
    store = store or MemoryDocumentStore()
    manager = GiveawayManager(
        bot,
        make_config(**permissions),
        GiveawayRepository(store),
        TriviaAttemptLedger(store),
        ReactionRouter(bot, clock=clock),
        scheduler,
        clock=clock,
        rng=random.Random(0),
    )
    return SimpleNamespace(manager=manager, channel=channel, bot=bot, store=store)


def draft(**overrides) -> CreationSession:
    values = dict(
        session_id="s1",
        guild_id=10,
        channel_id=20,
        creator_id=1,
        title="Nitro",
        prize="CODE-123",
        duration=timedelta(hours=1),
    )
    values.update(overrides)
    return CreationSession(**values)


async def start(env, **overrides) -> Giveaway:
    giveaway = await env.manager.start_giveaway(draft(**overrides), env.channel)
    assert isinstance(giveaway, Giveaway), giveaway
    return giveaway


def reaction(user_id: int, emoji: str, message_id: int):
    return SimpleNamespace(
        message_id=message_id,
        user_id=user_id,
        guild_id=10,
        member=SimpleNamespace(id=user_id, bot=False),
        emoji=discord.PartialEmoji.from_str(emoji),
    )


class TestChooseWinners:
    def test_enough_participants(self):
        winners = choose_winners([1, 2, 3, 4, 5], 3, random.Random(1))
        assert len(winners) == 3
        assert len(set(winners)) == 3
        assert set(winners) <= {1, 2, 3, 4, 5}

    def test_fewer_participants_than_winners(self):
        assert sorted(choose_winners([1, 2], 3, random.Random(1))) == [1, 2]

    def test_duplicates_are_collapsed(self):
        assert sorted(choose_winners([1, 1, 2], 5, random.Random(1))) == [1, 2]


class TestDraftEntry:
    def test_incomplete_entries_raise(self):
        with pytest.raises(ValueError):
            draft(entry_mode=EntryMode.REACTION).build_entry()
        with pytest.raises(ValueError):
            draft(entry_mode=EntryMode.TRIVIA, trivia_question="2+2?").build_entry()

    def test_trivia_entry(self):
        entry = draft(
            entry_mode=EntryMode.TRIVIA, trivia_question="2+2?", trivia_answer="4"
        ).build_entry()
        assert isinstance(entry, TriviaEntry)
        assert entry.max_attempts == -1


class TestStartGiveaway:
    @pytest.mark.asyncio
    async def test_announces_persists_and_schedules(self, clock, scheduler):
        env = build(clock, scheduler)
        giveaway = await start(env)
        assert giveaway.message_id == env.channel.sent_message.id
        assert giveaway.end_time == START + timedelta(hours=1)
        assert env.channel.send.await_args.kwargs["view"] is not None
        assert scheduler.is_scheduled(giveaway.id)
        assert (await env.manager.get_giveaway(giveaway.id)).is_active

    @pytest.mark.asyncio
    async def test_zero_duration_is_refused(self, clock, scheduler):
        env = build(clock, scheduler)
        result = await env.manager.start_giveaway(draft(duration=timedelta(0)), env.channel)
        assert result == "Please set title, prize, and a valid duration before starting."
        env.channel.send.assert_not_awaited()
        assert env.store.writes == 0

    @pytest.mark.asyncio
    async def test_failed_announcement_persists_nothing(self, clock, scheduler):
        env = build(clock, scheduler)
        env.channel.send.side_effect = discord.Forbidden(SimpleNamespace(status=403, reason="no"), "nope")
        result = await env.manager.start_giveaway(draft(), env.channel)
        assert isinstance(result, str)
        assert env.store.writes == 0


class TestEntries:
    @pytest.mark.asyncio
    async def test_enter_once_then_closed(self, clock, scheduler):
        env = build(clock, scheduler)
        giveaway = await start(env)
        assert await env.manager.enter(giveaway.id, 5) is EntryResult.ENTERED
        assert await env.manager.enter(giveaway.id, 5) is EntryResult.ALREADY_ENTERED
        env.channel.sent_message.edit.assert_awaited_once()
        clock.advance(hours=1)
        assert await env.manager.enter(giveaway.id, 6) is EntryResult.CLOSED
        assert await env.manager.enter("missing", 6) is EntryResult.NOT_FOUND

    @pytest.mark.asyncio
    async def test_reaction_entries(self, clock, scheduler):
        env = build(clock, scheduler)
        giveaway = await start(
            env, entry_mode=EntryMode.REACTION, reaction_identifier="🎉", reaction_display="🎉"
        )
        env.channel.sent_message.add_reaction.assert_awaited_once_with("🎉")
        router = env.manager.reactions
        for user_id in (1, 2, 3):
            await router.dispatch(reaction(user_id, "🎉", giveaway.message_id))
        await router.dispatch(reaction(4, "👍", giveaway.message_id))
        stored = await env.manager.get_giveaway(giveaway.id)
        assert sorted(stored.participants) == [1, 2, 3]

        await env.manager.end_giveaway(giveaway.id)
        assert router.get(giveaway.message_id) is None


class TestTermination:
    @pytest.mark.asyncio
    async def test_timer_ends_and_picks_winners(self, clock, scheduler):
        env = build(clock, scheduler)
        giveaway = await start(env, winner_count=2)
        for user_id in (5, 6, 7):
            await env.manager.enter(giveaway.id, user_id)
        clock.advance(hours=1)
        assert await scheduler.fire_due() == 1
        ended = await env.manager.get_giveaway(giveaway.id)
        assert ended.ended and not ended.cancelled
        assert len(ended.winners) == 2
        assert set(ended.winners) <= {5, 6, 7}
        assert env.channel.send.await_count == 2

    @pytest.mark.asyncio
    async def test_fewer_participants_than_winners(self, clock, scheduler):
        env = build(clock, scheduler)
        giveaway = await start(env, winner_count=3)
        await env.manager.enter(giveaway.id, 5)
        ended = await env.manager.end_giveaway(giveaway.id)
        assert ended.winners == [5]

    @pytest.mark.asyncio
    async def test_cancel_and_end_are_mutually_exclusive(self, clock, scheduler):
        env = build(clock, scheduler)
        first = await start(env)
        assert await env.manager.end_giveaway(first.id) is not None
        assert await env.manager.cancel_giveaway(first.id) is None

        second = await start(env)
        await env.manager.enter(second.id, 5)
        cancelled = await env.manager.cancel_giveaway(second.id)
        assert cancelled.cancelled and cancelled.winners == []
        assert cancelled.participants == [5]
        assert not scheduler.is_scheduled(second.id)
        assert await env.manager.end_giveaway(second.id) is None

    @pytest.mark.asyncio
    async def test_finish_now_reschedules_to_now(self, clock, scheduler):
        env = build(clock, scheduler)
        giveaway = await start(env)
        clock.advance(minutes=10)
        updated = await env.manager.finish_now(giveaway.id)
        assert updated.end_time == clock()
        assert await scheduler.fire_due() == 1
        assert (await env.manager.get_giveaway(giveaway.id)).ended

    @pytest.mark.asyncio
    async def test_restart_finishes_overdue_giveaways(self, clock, scheduler):
        store = MemoryDocumentStore()
        await GiveawayRepository(store).add(
            Giveaway(
                id="late",
                guild_id=10,
                channel_id=20,
                message_id=9000,
                title="Late",
                prize="Prize",
                start_time=START - timedelta(hours=1),
                end_time=START - timedelta(minutes=5),
                creator_id=1,
                participants=[5, 6],
            )
        )
        env = build(clock, scheduler, store=store)
        await env.manager.load()
        restored = await env.manager.get_giveaway("late")
        assert restored.ended
        assert len(restored.winners) == 1
        assert set(restored.winners) <= {5, 6}
        assert not scheduler.is_scheduled("late")

    @pytest.mark.asyncio
    async def test_restart_rearms_active_giveaways(self, clock, scheduler):
        env = build(clock, scheduler)
        giveaway = await start(env, entry_mode=EntryMode.REACTION, reaction_identifier="🎉")
        restarted = build(clock, type(scheduler)(clock), store=env.store)
        await restarted.manager.load()
        assert restarted.manager.scheduler.is_scheduled(giveaway.id)
        assert restarted.manager.reactions.get(giveaway.message_id) is not None


class TestTrivia:
    @pytest.mark.asyncio
    async def test_correct_answer_then_retry(self, clock, scheduler):
        env = build(clock, scheduler)
        giveaway = await start(
            env, entry_mode=EntryMode.TRIVIA, trivia_question="2+2?", trivia_answer="Four"
        )
        assert await env.manager.submit_trivia(giveaway.id, 5, " four ") == (
            "Correct! You've entered the giveaway. 🎉"
        )
        assert await env.manager.submit_trivia(giveaway.id, 5, "four") == ALREADY_ANSWERED_MESSAGE
        assert await env.manager.attempts.get(giveaway.id, 5) == 0

    @pytest.mark.asyncio
    async def test_limited_attempts(self, clock, scheduler):
        env = build(clock, scheduler)
        giveaway = await start(
            env,
            entry_mode=EntryMode.TRIVIA,
            trivia_question="2+2?",
            trivia_answer="4",
            max_trivia_attempts=2,
        )
        assert await env.manager.submit_trivia(giveaway.id, 5, "5") == (
            "Sorry, that's not the right answer. You have **1** attempt(s) left."
        )
        assert await env.manager.submit_trivia(giveaway.id, 5, "6") == (
            "Sorry, that's not the right answer. You have no more attempts left."
        )
        assert await env.manager.trivia_gate(giveaway.id, 5) == (
            "You have no more attempts left for this trivia. (Max: 2)"
        )
        assert await env.manager.submit_trivia(giveaway.id, 5, "4") == (
            "You have no more attempts left for this trivia. (Max: 2)"
        )

    @pytest.mark.asyncio
    async def test_attempts_are_dropped_when_the_giveaway_ends(self, clock, scheduler):
        env = build(clock, scheduler)
        giveaway = await start(
            env, entry_mode=EntryMode.TRIVIA, trivia_question="2+2?", trivia_answer="4"
        )
        await env.manager.submit_trivia(giveaway.id, 5, "5")
        assert await env.manager.attempts.get(giveaway.id, 5) == 1
        await env.manager.end_giveaway(giveaway.id)
        assert await env.manager.attempts.get(giveaway.id, 5) == 0
        assert giveaway.id not in env.store.documents.get("trivia_attempts", {})

    @pytest.mark.asyncio
    async def test_unlimited_attempts(self, clock, scheduler):
        env = build(clock, scheduler)
        giveaway = await start(env, entry_mode=EntryMode.TRIVIA, trivia_question="Q", trivia_answer="A")
        for _ in range(5):
            assert (await env.manager.submit_trivia(giveaway.id, 5, "B")).endswith("Better luck next time!")
        assert await env.manager.trivia_gate(giveaway.id, 5) is None
        assert isinstance((await env.manager.get_giveaway(giveaway.id)).entry, TriviaEntry)

    @pytest.mark.asyncio
    async def test_gate_rejects_other_entry_modes(self, clock, scheduler):
        env = build(clock, scheduler)
        giveaway = await start(env)
        assert await env.manager.trivia_gate(giveaway.id, 5) == "This giveaway does not use trivia entry."


class TestClaim:
    @pytest.mark.asyncio
    async def test_claim_messages(self, clock, scheduler):
        env = build(clock, scheduler)
        giveaway = await start(env)
        assert await env.manager.claim(giveaway.id, 5, is_manager=False) == (
            "This giveaway has not ended yet."
        )
        await env.manager.enter(giveaway.id, 5)
        await env.manager.end_giveaway(giveaway.id)
        assert await env.manager.claim(giveaway.id, 5, is_manager=False) == (
            "🎁 Congratulations! Your prize is: ||CODE-123||"
        )
        assert (await env.manager.claim(giveaway.id, 1, is_manager=False)).startswith(
            "You didn't win this one. As an admin/creator, you can see the prize: ||CODE-123||"
        )
        assert await env.manager.claim(giveaway.id, 8, is_manager=False) == (
            "Nice try! But you are not the winner of this giveaway... Maybe next time!"
        )


class TestManagerChecks:
    def test_owner_admin_and_roles(self, clock, scheduler):
        env = build(clock, scheduler, admin_roles=[77])
        plain = SimpleNamespace(id=5, roles=[], guild_permissions=discord.Permissions.none())
        assert not env.manager.is_manager(plain)
        assert env.manager.is_manager(plain, guild_owner_id=5)
        assert env.manager.is_manager(plain, base_permissions=discord.Permissions(manage_guild=True))
        helper = SimpleNamespace(id=6, roles=[SimpleNamespace(id=77)], guild_permissions=None)
        assert env.manager.is_manager(helper)

    @pytest.mark.asyncio
    async def test_lifecycle_is_posted_to_logger_channel(self, clock, scheduler):
        env = build(clock, scheduler)
        env.manager.config.logging.logger_channel_id = 77
        await start(env)
        contents = [call.args[0] for call in env.channel.send.await_args_list if call.args]
        assert any(text.startswith("[Giveaway] Giveaway **Nitro**") for text in contents)
