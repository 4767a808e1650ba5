"""Tests for the SQLite record store."""
import sqlite3
from datetime import timedelta

import pytest

from cardflo.core.errors import RecordStoreError
from cardflo.core.models import Account, ContactRecord, SubscriptionTier, UsageCounter


class TestContacts:

    def test_add_assigns_id_and_timestamp(self, store):
        record = store.add_contact(ContactRecord(owner_id="owner-1", first_name="Ada"))
        assert record.id
        assert record.created_at is not None

        loaded = store.get_contact(record.id)
        assert loaded.first_name == "Ada"
        assert loaded.owner_id == "owner-1"

    def test_get_missing(self, store):
        assert store.get_contact("nope") is None

    def test_update_fields(self, store, add_contact):
        record = add_contact(first_name="Ada")
        record.company = "Engines Ltd"
        assert store.update_contact(record) is True
        assert store.get_contact(record.id).company == "Engines Ltd"

    def test_owner_cannot_be_reassigned(self, add_contact):
        record = add_contact()
        with pytest.raises(AttributeError):
            record.owner_id = "intruder"

    def test_update_is_scoped_to_owner(self, store, add_contact):
        record = add_contact(first_name="Ada")
        forged = ContactRecord(owner_id="intruder", id=record.id, first_name="Eve")
        assert store.update_contact(forged) is False
        assert store.get_contact(record.id).first_name == "Ada"

    def test_delete(self, store, add_contact):
        record = add_contact()
        assert store.delete_contact(record.id) is True
        assert store.delete_contact(record.id) is False

    def test_list_is_owner_scoped_and_newest_first(self, store, add_contact, now):
        add_contact(first_name="Old", created_at=now - timedelta(days=2))
        add_contact(first_name="New", created_at=now)
        add_contact(owner_id="owner-2", first_name="Other")

        names = [r.first_name for r in store.list_contacts("owner-1")]
        assert names == ["New", "Old"]
        assert len(store.list_contacts("owner-1", limit=1)) == 1

    def test_stats(self, store, add_contact, now):
        add_contact(created_at=now - timedelta(days=1))
        add_contact(created_at=now.replace(hour=8))
        add_contact(created_at=now)
        stats = store.stats("owner-1", now=now)
        assert stats.today == 2
        assert stats.total == 3

    def test_find_by_email_trims_and_lowercases(self, store, add_contact):
        add_contact(email=" Ada@Engines.io ")
        assert len(store.find_by_email("owner-1", "ada@engines.io")) == 1
        assert store.find_by_email("owner-1", "   ") == []


class TestUsage:

    def test_latest_usage_is_most_recent(self, store, now):
        store.add_usage(UsageCounter(owner_id="owner-1", scans_count=4, created_at=now - timedelta(days=40)))
        newest = store.add_usage(UsageCounter(owner_id="owner-1", scans_count=1, created_at=now))
        assert store.latest_usage("owner-1").id == newest.id

    def test_increment_in_place(self, store, now):
        counter = store.add_usage(UsageCounter(owner_id="owner-1", created_at=now))
        assert store.increment_usage_count(counter.id) is True
        assert store.increment_usage_count(counter.id, amount=2) is True
        assert store.latest_usage("owner-1").scans_count == 3

    def test_increment_missing_counter(self, store):
        assert store.increment_usage_count(999) is False

    def test_counts_never_decrease(self, store, now):
        counter = store.add_usage(UsageCounter(owner_id="owner-1", created_at=now))
        with pytest.raises(ValueError):
            store.increment_usage_count(counter.id, amount=-1)

    def test_negative_counter_rejected(self):
        with pytest.raises(ValueError):
            UsageCounter(owner_id="owner-1", scans_count=-1)

    def test_bonus_scans(self, store, now):
        counter = store.add_usage(UsageCounter(owner_id="owner-1", created_at=now))
        assert store.add_bonus_scans(counter.id, 10) is True
        assert store.latest_usage("owner-1").bonus_scans == 10


class TestAccounts:

    def test_round_trip(self, store, now):
        store.save_account(Account(
            owner_id="owner-1",
            tier=SubscriptionTier.TEAM,
            is_admin=True,
            custom_scan_limit=250,
            billing_cycle_end=now,
        ))
        account = store.get_account("owner-1")
        assert account.tier == SubscriptionTier.TEAM
        assert account.is_admin is True
        assert account.custom_scan_limit == 250
        assert account.billing_cycle_end == now
        assert account.limits.team_member_cap == 5

    def test_save_replaces(self, store):
        store.save_account(Account(owner_id="owner-1", tier=SubscriptionTier.PRO))
        store.save_account(Account(owner_id="owner-1", tier=SubscriptionTier.LITE))
        assert store.get_account("owner-1").tier == SubscriptionTier.LITE

    def test_missing_account(self, store):
        assert store.get_account("owner-1") is None


class TestDismissals:

    def test_pairs_are_canonical(self, store):
        store.dismiss_pair("owner-1", "b", "a")
        store.dismiss_pair("owner-1", "a", "b")
        assert store.dismissed_pairs("owner-1") == {("a", "b")}
        assert store.dismissed_pairs("owner-2") == set()


def test_sqlite_errors_are_wrapped(store):
    with sqlite3.connect(store.db_path) as conn:
        conn.execute("DROP TABLE contacts")
    conn.close()

    with pytest.raises(RecordStoreError):
        store.list_contacts("owner-1")
