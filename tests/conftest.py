"""
Pytest configuration and fixtures.

The session client is a fake built on EventEmitter; sleeps are recorded
instead of waited on.
"""
import asyncio

import pytest

from subscriptions.client import (
    MEDIA_PUBLISHED,
    MEDIA_UNPUBLISHED,
    PARTICIPANT_JOINED,
    PARTICIPANT_LEFT,
    EventEmitter,
    RemoteParticipant,
)
from subscriptions.config import SubscriptionOptions
from subscriptions.manager import SubscriptionManager
from subscriptions.utils import uids_equal


class FakeSessionClient(EventEmitter):
    """In-memory session client driving notifications by hand"""

    def __init__(self, participants=()):
        super().__init__()
        self.remote_participants = list(participants)
        self.subscribe_calls = []
        self.unsubscribe_calls = []
        self.subscribe_failures = 0  # fail the next N subscribe calls
        self.subscribe_error = RuntimeError("transport not ready")
        self.hang_subscribe = False
        self.unsubscribe_error = None

    async def subscribe(self, participant, media_kind):
        self.subscribe_calls.append((participant.uid, media_kind))
        if self.hang_subscribe:
            await asyncio.Event().wait()
        if self.subscribe_failures > 0:
            self.subscribe_failures -= 1
            raise self.subscribe_error
        return f"track:{participant.uid}:{media_kind}"

    async def unsubscribe(self, participant, media_kind):
        self.unsubscribe_calls.append((participant.uid, media_kind))
        if self.unsubscribe_error is not None:
            raise self.unsubscribe_error

    def add(self, participant):
        self.remote_participants.append(participant)

    def remove(self, participant):
        self.remote_participants = [
            p for p in self.remote_participants if not uids_equal(p.uid, participant.uid)
        ]

    async def join(self, participant):
        self.add(participant)
        await self.emit(PARTICIPANT_JOINED, participant)

    async def publish(self, participant, media_kind):
        await self.emit(MEDIA_PUBLISHED, participant, media_kind)

    async def unpublish(self, participant, media_kind):
        await self.emit(MEDIA_UNPUBLISHED, participant, media_kind)

    async def leave(self, participant):
        self.remove(participant)
        await self.emit(PARTICIPANT_LEFT, participant)


class FakeSleeper:
    """Records requested delays; hooks[n] runs during the n-th sleep"""

    def __init__(self):
        self.calls = []
        self.hooks = {}

    async def __call__(self, delay):
        self.calls.append(delay)
        hook = self.hooks.get(len(self.calls))
        if hook is not None:
            hook()
        await asyncio.sleep(0)


@pytest.fixture
def session_client():
    return FakeSessionClient()


@pytest.fixture
def sleeper():
    return FakeSleeper()


@pytest.fixture
def make_manager(session_client, sleeper):
    """Factory for managers bound to the fake client"""
    def _make(is_automated=None, **options):
        return SubscriptionManager(
            session_client,
            options=SubscriptionOptions(**options),
            is_automated=is_automated,
            sleep=sleeper,
        )
    return _make


@pytest.fixture
def bot_predicate():
    return lambda uid: uid.startswith("bot")


@pytest.fixture
def p1():
    return RemoteParticipant("p1", has_audio=True, has_video=False)
