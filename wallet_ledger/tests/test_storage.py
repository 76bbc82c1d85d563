"""
Unit Tests for the document store, change notifications and settings
"""

import pytest

from conftest import make_config
from wallet_ledger.exceptions import ConcurrentModificationError, DocumentExistsError
from wallet_ledger.models import SettingsUpdate
from wallet_ledger.settings_store import SettingsStore
from wallet_ledger.storage import ChangeEvent, InMemoryStorage, VersionedView


class TestDocumentStore:
    """Tests for versioned writes."""

    def test_versions_increase_on_write(self):
        """Test every write bumps the document version."""
        storage = InMemoryStorage()
        assert storage.set("users", "u1", {"a": 1}) == 1
        assert storage.update("users", "u1", {"b": 2}) == 2
        snapshot = storage.get("users", "u1")
        assert snapshot.data == {"a": 1, "b": 2}
        assert snapshot.version == 2

    def test_compare_and_set_rejects_stale_version(self):
        """Test compare-and-set refuses a stale version."""
        storage = InMemoryStorage()
        storage.set("users", "u1", {"wallet_balance": 0})
        stale = storage.get("users", "u1")
        storage.update("users", "u1", {"wallet_balance": 50})

        with pytest.raises(ConcurrentModificationError):
            storage.compare_and_set("users", "u1", stale.version, {"wallet_balance": 100})

        assert storage.get("users", "u1").data["wallet_balance"] == 50

    def test_create_refuses_existing_id(self):
        """Test create refuses an existing id."""
        storage = InMemoryStorage()
        storage.create("referrals", "order1", {"commission": 100})

        with pytest.raises(DocumentExistsError):
            storage.create("referrals", "order1", {"commission": 100})

    def test_snapshots_are_copies(self):
        """Test snapshots do not alias stored data."""
        storage = InMemoryStorage()
        storage.set("users", "u1", {"payment_details": {"upi_id": "a@upi"}})
        storage.get("users", "u1").data["payment_details"]["upi_id"] = "changed"
        assert storage.get("users", "u1").data["payment_details"]["upi_id"] == "a@upi"

    def test_query_by_fields(self):
        """Test equality queries."""
        storage = InMemoryStorage()
        storage.add("withdrawals", {"user_id": "u1", "status": "pending"})
        storage.add("withdrawals", {"user_id": "u1", "status": "paid"})
        storage.add("withdrawals", {"user_id": "u2", "status": "pending"})

        assert len(storage.query("withdrawals", user_id="u1")) == 2
        assert len(storage.query("withdrawals", user_id="u1", status="pending")) == 1
        assert len(storage.query("withdrawals")) == 3


class TestSubscriptions:
    """Tests for change notifications."""

    def test_subscriber_receives_changes(self):
        """Test subscribers see writes and deletes until unsubscribed."""
        storage = InMemoryStorage()
        events = []
        unsubscribe = storage.subscribe("users", events.append)

        storage.set("users", "u1", {"a": 1})
        storage.set("orders", "o1", {"a": 1})
        storage.delete("users", "u1")
        unsubscribe()
        storage.set("users", "u2", {"a": 1})

        assert [(e.doc_id, e.version, e.deleted) for e in events] == [("u1", 1, False), ("u1", 2, True)]

    def test_document_filter(self):
        """Test subscribing to a single document."""
        storage = InMemoryStorage()
        events = []
        storage.subscribe("users", events.append, doc_id="u2")

        storage.set("users", "u1", {})
        storage.set("users", "u2", {})

        assert [e.doc_id for e in events] == ["u2"]

    def test_failing_listener_does_not_break_writes(self):
        """Test a failing listener does not fail the write."""
        storage = InMemoryStorage()

        def broken(event):
            raise RuntimeError("listener down")

        storage.subscribe("users", broken)
        storage.set("users", "u1", {"a": 1})
        assert storage.get("users", "u1").data == {"a": 1}

    def test_versioned_view_ignores_duplicates_and_stale_events(self):
        """Test the view ignores duplicate and older events."""
        view = VersionedView()
        newer = ChangeEvent("users", "u1", 3, {"wallet_balance": 300})
        older = ChangeEvent("users", "u1", 2, {"wallet_balance": 200})

        assert view.apply(newer) is True
        assert view.apply(newer) is False
        assert view.apply(older) is False
        assert view.get("u1") == {"wallet_balance": 300}

    def test_versioned_view_follows_store(self):
        """Test the view tracks the store."""
        storage = InMemoryStorage()
        view = VersionedView()
        storage.subscribe("users", view.apply)

        storage.set("users", "u1", {"wallet_balance": 10})
        storage.update("users", "u1", {"wallet_balance": 20})

        assert view.get("u1") == {"wallet_balance": 20}


class TestSettingsStore:
    """Tests for settings defaults, updates and cache invalidation."""

    def test_defaults_from_config(self):
        """Test settings fall back to configured defaults."""
        store = SettingsStore(InMemoryStorage(), make_config(DEFAULT_MIN_WITHDRAWAL=250))
        settings = store.get()
        assert settings.min_withdrawal == 250
        assert settings.commission_rate == 10
        assert settings.max_commission_purchases == 1

    def test_update_merges_fields(self):
        """Test settings updates merge with current values."""
        store = SettingsStore(InMemoryStorage(), make_config())
        updated = store.update(SettingsUpdate(commission_rate=15))
        assert updated.commission_rate == 15
        assert updated.min_withdrawal == 100

    def test_external_write_invalidates_cache(self):
        """Test a direct write to the settings document is picked up."""
        storage = InMemoryStorage()
        store = SettingsStore(storage, make_config())
        assert store.get().commission_rate == 10

        storage.update("settings", "app", {"commission_rate": 20})

        assert store.get().commission_rate == 20
