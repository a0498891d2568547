"""Tests for the shared market state store."""

import pytest

from marketfeed.ingestion.errors import SliceOwnershipError
from marketfeed.storage.store import RefreshState


class TestMarketStateStore:
    """Tests for MarketStateStore."""

    def test_publish_and_get(self, store):
        writer = store.claim("networks", owner="scheduler:networks")
        writer.publish([1, 2])

        assert store.get("networks") == [1, 2]
        assert store.get("tokens", "missing") == "missing"
        assert store.snapshot() == {"networks": [1, 2]}

    def test_single_writer_per_slice(self, store):
        store.claim("prices", owner="price_feed")

        with pytest.raises(SliceOwnershipError):
            store.claim("prices", owner="someone_else")

    def test_reclaim_by_same_owner_invalidates_old_writer(self, store):
        old = store.claim("prices", owner="price_feed")
        new = store.claim("prices", owner="price_feed")

        old.publish("stale")
        new.publish("fresh")

        assert old.released
        assert store.get("prices") == "fresh"

    def test_release_frees_slice_and_drops_writes(self, store):
        writer = store.claim("tokens", owner="a")
        writer.publish("v1")
        writer.release()
        writer.publish("v2")

        assert store.get("tokens") == "v1"
        assert store.owner_of("tokens") is None
        store.claim("tokens", owner="b")
        assert store.owner_of("tokens") == "b"

    def test_subscribers_notified_synchronously(self, store):
        seen = []
        unsubscribe = store.subscribe("overview", lambda key, value: seen.append((key, value)))
        writer = store.claim("overview", owner="a")

        writer.publish(1)
        unsubscribe()
        writer.publish(2)
        unsubscribe()

        assert seen == [("overview", 1)]

    def test_subscriber_failure_is_isolated(self, store):
        seen = []

        def broken(key, value):
            raise RuntimeError("render failed")

        store.subscribe("overview", broken)
        store.subscribe("overview", lambda key, value: seen.append(value))
        store.claim("overview", owner="a").publish("ok")

        assert seen == ["ok"]
        assert store.get("overview") == "ok"


class TestRefreshState:
    """Tests for RefreshState."""

    def test_evolve_returns_new_state(self):
        state = RefreshState(data=[])
        loading = state.evolve(loading=True)

        assert state.loading is False
        assert loading.loading is True
        assert loading.data is state.data
