"""Tests for the polling retry used with automated participants."""
import asyncio
from unittest.mock import AsyncMock

import pytest

from subscriptions.client import RemoteParticipant
from subscriptions.state import SubscriptionState


@pytest.fixture
def bot(session_client):
    participant = RemoteParticipant("bot1", has_audio=False)
    session_client.add(participant)
    return participant


class TestPublishBeforeReady:

    @pytest.mark.asyncio
    async def test_polls_until_audio_flag_flips(self, make_manager, session_client, sleeper, bot, bot_predicate):
        manager = make_manager(is_automated=bot_predicate)
        sleeper.hooks[2] = lambda: setattr(bot, "has_audio", True)

        await session_client.publish(bot, "audio")
        assert session_client.subscribe_calls == []
        task = manager.registry.get_timer("bot1")
        assert task is not None

        assert await task is True

        assert session_client.subscribe_calls == [("bot1", "audio")]
        assert sleeper.calls == [1.0, 1.0]
        assert not manager.registry.has_timer("bot1")
        record = manager.registry.get("bot1")
        assert record.audio_state == SubscriptionState.SUBSCRIBED
        assert record.has_audio is True

    @pytest.mark.asyncio
    async def test_human_publish_does_not_poll(self, make_manager, session_client, sleeper):
        manager = make_manager(is_automated=lambda uid: False)
        human = RemoteParticipant("human", has_audio=False)
        session_client.add(human)

        await session_client.publish(human, "audio")

        assert manager.registry.timer_count == 0
        assert sleeper.calls == []

    @pytest.mark.asyncio
    async def test_direct_subscribe_failure_falls_back_to_polling(self, make_manager, session_client, bot, bot_predicate):
        manager = make_manager(is_automated=bot_predicate, enable_auto_subscribe=False)
        bot.has_audio = True
        session_client.subscribe_failures = 1

        await session_client.publish(bot, "audio")
        assert manager.registry.get("bot1").audio_state == SubscriptionState.SUBSCRIPTION_FAILED
        task = manager.registry.get_timer("bot1")

        assert await task is True
        assert len(session_client.subscribe_calls) == 2
        assert manager.registry.get("bot1").audio_subscribed


class TestPollingTermination:

    @pytest.mark.asyncio
    async def test_budget_exhaustion(self, make_manager, session_client, sleeper, bot, bot_predicate):
        manager = make_manager(is_automated=bot_predicate, bot_max_attempts=3, bot_retry_interval=0.5)

        task = manager.retry.schedule_automated_retry("bot1")
        assert await task is False

        assert sleeper.calls == [0.5, 0.5, 0.5]
        assert session_client.subscribe_calls == []
        assert not manager.registry.has_timer("bot1")

    @pytest.mark.asyncio
    async def test_stops_when_participant_disappears(self, make_manager, session_client, sleeper, bot, bot_predicate):
        manager = make_manager(is_automated=bot_predicate)
        sleeper.hooks[1] = lambda: session_client.remove(bot)

        task = manager.retry.schedule_automated_retry("bot1")
        assert await task is False
        assert sleeper.calls == [1.0]

    @pytest.mark.asyncio
    async def test_stops_when_already_subscribed(self, make_manager, session_client, bot, bot_predicate):
        manager = make_manager(is_automated=bot_predicate, enable_auto_subscribe=False)
        bot.has_audio = True
        assert await manager.subscribe_to_user("bot1", "audio") is True

        task = manager.retry.schedule_automated_retry("bot1")
        assert await task is True
        assert len(session_client.subscribe_calls) == 1

    @pytest.mark.asyncio
    async def test_leave_cancels_pending_poll(self, make_manager, session_client, bot, bot_predicate):
        manager = make_manager(is_automated=bot_predicate)
        await session_client.join(bot)
        await session_client.publish(bot, "audio")
        task = manager.registry.get_timer("bot1")

        await session_client.leave(bot)

        assert not manager.registry.has("bot1")
        assert manager.registry.timer_count == 0
        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_errors_do_not_abort_polling(self, make_manager, session_client, bot, bot_predicate):
        manager = make_manager(is_automated=bot_predicate)
        bot.has_audio = True
        manager.retry.subscribe_with_retry = AsyncMock(side_effect=[RuntimeError("boom"), True])

        task = manager.retry.schedule_automated_retry("bot1")
        assert await task is True
        assert manager.retry.subscribe_with_retry.await_count == 2


@pytest.mark.asyncio
async def test_rescheduling_replaces_previous_poll(make_manager, session_client, bot, bot_predicate):
    manager = make_manager(is_automated=bot_predicate)
    bot.has_audio = True

    first = manager.retry.schedule_automated_retry("bot1")
    second = manager.retry.schedule_automated_retry("bot1")

    assert manager.registry.get_timer("bot1") is second
    with pytest.raises(asyncio.CancelledError):
        await first
    assert await second is True
    assert session_client.subscribe_calls == [("bot1", "audio")]
