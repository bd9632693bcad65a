"""Tests for attempt history and aggregate statistics."""
from subscriptions.registry import SubscriptionRegistry
from subscriptions.state import MediaKind, SubscriptionState
from subscriptions.stats import SubscriptionHistory, build_stats


class TestSubscriptionHistory:

    def test_trims_to_newest_fifty_after_overflow(self):
        history = SubscriptionHistory()
        for attempt in range(1, 101):
            history.record("p1", MediaKind.AUDIO, True, attempt)
        assert len(history) == 100

        history.record("p1", MediaKind.AUDIO, True, 101)

        entries = history.entries()
        assert len(entries) == 50
        assert [e.attempt for e in entries] == list(range(52, 102))

    def test_filter_by_participant(self):
        history = SubscriptionHistory()
        history.record(1, MediaKind.AUDIO, False, 1, "timeout")
        history.record("2", MediaKind.VIDEO, True, 1)

        only_one = history.entries("1")
        assert len(only_one) == 1
        assert only_one[0].error_message == "timeout"
        assert only_one[0].to_dict()["media_kind"] == "audio"

    def test_clear(self):
        history = SubscriptionHistory()
        history.record("p1", MediaKind.AUDIO, True, 1)
        history.clear()
        assert len(history) == 0


class TestBuildStats:

    def test_empty(self):
        stats = build_stats(SubscriptionRegistry(), SubscriptionHistory(), True)
        assert stats == {
            "total_users": 0,
            "audio_subscribed": 0,
            "video_subscribed": 0,
            "total_attempts": 0,
            "successful_attempts": 0,
            "success_rate": 0.0,
            "auto_subscribe_enabled": True,
        }

    def test_counts_and_rate(self):
        registry = SubscriptionRegistry()
        registry.upsert("a")
        registry.upsert("b")
        registry.set_media_state("a", MediaKind.AUDIO, SubscriptionState.SUBSCRIBED)
        registry.set_media_state("b", MediaKind.AUDIO, SubscriptionState.SUBSCRIBED)
        registry.set_media_state("b", MediaKind.VIDEO, SubscriptionState.SUBSCRIBED)

        history = SubscriptionHistory()
        history.record("a", MediaKind.AUDIO, False, 1, "boom")
        history.record("a", MediaKind.AUDIO, False, 2, "boom")
        history.record("a", MediaKind.AUDIO, True, 3)

        stats = build_stats(registry, history, False)
        assert stats["total_users"] == 2
        assert stats["audio_subscribed"] == 2
        assert stats["video_subscribed"] == 1
        assert stats["total_attempts"] == 3
        assert stats["successful_attempts"] == 1
        assert stats["success_rate"] == 33.3
        assert stats["auto_subscribe_enabled"] is False
