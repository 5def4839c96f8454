"""Tests for the event stores and records."""

import re
from unittest.mock import MagicMock, patch

import pytest

from nestsync.records import (
    Contraction,
    DiaperEntry,
    FeedingSession,
    MalformedPayloadError,
    SyncStatus,
    generate_id,
    start_of_day_ms,
)
from nestsync.storage import MemoryStorage
from nestsync.stores import ContractionStore, DiaperStore, FeedingStore
from nestsync.stores.diapers import DAY_MS
from nestsync.sync import Outbox

# Local noon, so "today" and "yesterday" are unambiguous
NOON = start_of_day_ms(1_700_000_000_000) + 12 * 60 * 60 * 1000
MIDNIGHT = start_of_day_ms(NOON)


@pytest.fixture
def contractions():
    """Create an unpersisted contraction store."""
    return ContractionStore()


class TestRecords:
    """Tests for record serialization."""

    def test_generate_id_format(self):
        """Ids are prefix, millisecond timestamp and a base36 suffix."""
        record_id = generate_id("contraction")
        assert re.fullmatch(r"contraction_\d{13}_[a-z0-9]{9}", record_id)

    def test_to_dict_uses_camel_case_and_omits_status(self):
        """Wire form carries payload fields only."""
        record = Contraction(id="c1", start_time=1000, duration=60, end_time=61000)

        data = record.to_dict()

        assert data == {"id": "c1", "startTime": 1000, "endTime": 61000, "duration": 60}
        assert "syncStatus" not in data

    def test_from_dict_defaults_to_synced(self):
        """Decoded remote records are synced."""
        record = FeedingSession.from_dict({"id": "f1", "startTime": 5, "side": "right"})

        assert record.side == "right"
        assert record.sync_status == SyncStatus.SYNCED

    def test_from_dict_requires_id(self):
        """A record without an id is rejected."""
        with pytest.raises(MalformedPayloadError):
            DiaperEntry.from_dict({"timestamp": 1, "type": "wet"})

    def test_from_dict_rejects_unknown_type(self):
        """Values outside the allowed set are rejected."""
        with pytest.raises(MalformedPayloadError):
            DiaperEntry.from_dict({"id": "d1", "timestamp": 1, "type": "blue"})

    def test_storage_form_keeps_status(self):
        """Persisted records restore their local sync status."""
        record = DiaperEntry(id="d1", timestamp=1, type="both")

        restored = DiaperEntry.from_storage(record.to_storage())

        assert restored == record
        assert restored.sync_status == SyncStatus.PENDING

    def test_from_storage_rejects_non_object(self):
        """A stored item that is not an object is malformed, not a crash."""
        with pytest.raises(MalformedPayloadError):
            DiaperEntry.from_storage("garbage")


class TestEventStoreWrites:
    """Tests for local writes."""

    def test_create_is_pending(self, contractions):
        """New records start pending and get a generated id."""
        record_id = contractions.create({"startTime": 1000, "duration": 60})

        record = contractions.get(record_id)
        assert record.start_time == 1000
        assert record.duration == 60
        assert record.sync_status == SyncStatus.PENDING
        assert record_id.startswith("contraction_")

    def test_mutate_resets_to_pending(self, contractions):
        """Editing a synced record invalidates its acknowledgment."""
        record_id = contractions.create({"startTime": 1000})
        contractions.mark_synced(record_id)

        assert contractions.mutate(record_id, {"notes": "strong"})

        record = contractions.get(record_id)
        assert record.notes == "strong"
        assert record.sync_status == SyncStatus.PENDING

    def test_mutate_unknown_id_is_noop(self, contractions):
        """Mutating a missing id changes nothing."""
        assert contractions.mutate("missing", {"notes": "x"}) is False
        assert len(contractions) == 0

    def test_mutate_cannot_change_id(self, contractions):
        """The id in a partial update is ignored."""
        record_id = contractions.create({"startTime": 1000})

        contractions.mutate(record_id, {"id": "other", "startTime": 2000})

        assert contractions.get(record_id).start_time == 2000
        assert "other" not in contractions

    def test_mutate_keeps_position(self, contractions):
        """Edited records keep their insertion order."""
        first = contractions.create({"startTime": 1})
        second = contractions.create({"startTime": 2})

        contractions.mutate(first, {"startTime": 3})

        assert [r.id for r in contractions] == [first, second]

    def test_remove_is_local(self, contractions):
        """Removing a record twice only succeeds once."""
        record_id = contractions.create({"startTime": 1})

        assert contractions.remove(record_id)
        assert contractions.remove(record_id) is False
        assert len(contractions) == 0

    def test_create_validates(self):
        """Invalid payloads are rejected before insertion."""
        store = FeedingStore()
        with pytest.raises(MalformedPayloadError):
            store.create({"startTime": 1, "side": "middle"})
        assert len(store) == 0


class TestEventStoreMerge:
    """Tests for idempotent merge."""

    def test_merge_inserts_synced(self, contractions):
        """A remote record is stored as synced."""
        remote = Contraction(id="c1", start_time=1000, duration=60)

        assert contractions.merge(remote)

        assert contractions.get("c1").sync_status == SyncStatus.SYNCED

    def test_merge_twice_is_idempotent(self, contractions):
        """Applying the same record twice equals applying it once."""
        remote = Contraction(id="c1", start_time=1000, duration=60)

        contractions.merge(remote)
        snapshot = [(r, r.sync_status) for r in contractions]
        assert contractions.merge(remote) is False

        assert [(r, r.sync_status) for r in contractions] == snapshot

    def test_merge_does_not_overwrite_local_copy(self, contractions):
        """First-seen copy wins; a later remote version is ignored."""
        contractions.replace_all([Contraction(id="c1", start_time=1000, duration=60)])

        contractions.merge(Contraction(id="c1", start_time=1000, duration=90))

        record = contractions.get("c1")
        assert record.duration == 60
        assert record.sync_status == SyncStatus.PENDING


class TestEventStoreSyncStatus:
    """Tests for pending selection and acknowledgment."""

    def test_pending_in_insertion_order(self, contractions):
        """Only local pending records are selected, oldest first."""
        ids = [contractions.create({"startTime": i}) for i in range(3)]
        contractions.merge(Contraction(id="remote", start_time=99))

        assert [r.id for r in contractions.pending()] == ids

    def test_mark_synced_keeps_payload(self, contractions):
        """Acknowledgment flips the status without touching fields."""
        record_id = contractions.create({"startTime": 1000, "duration": 45})

        contractions.mark_synced(record_id)

        record = contractions.get(record_id)
        assert record.sync_status == SyncStatus.SYNCED
        assert record.duration == 45
        assert contractions.pending() == []

    def test_mark_pending(self, contractions):
        """Known ids are reset to pending; unknown ids are skipped."""
        record_id = contractions.create({"startTime": 1})
        contractions.mark_synced(record_id)

        assert contractions.mark_pending([record_id, "missing"]) == 1
        assert contractions.get(record_id).sync_status == SyncStatus.PENDING

    def test_listener_reports_pending_changes(self, contractions):
        """Listeners see each change until they unsubscribe."""
        listener = MagicMock()
        unsubscribe = contractions.subscribe(listener)

        record_id = contractions.create({"startTime": 1})
        contractions.mark_synced(record_id)

        create_change, synced_change = [c.args[0] for c in listener.call_args_list]
        assert create_change.action == "create" and create_change.pending
        assert synced_change.action == "synced" and not synced_change.pending

        unsubscribe()
        contractions.create({"startTime": 2})
        assert listener.call_count == 2


class TestEventStorePersistence:
    """Tests for saving and loading through key-value storage."""

    def test_round_trip(self):
        """Records and their statuses survive a reload."""
        storage = MemoryStorage()
        store = DiaperStore(storage)
        pending_id = store.add("wet", timestamp=10)
        synced_id = store.add("dirty", timestamp=20)
        store.mark_synced(synced_id)

        restored = DiaperStore(storage)
        assert restored.load() == 2

        assert [r.id for r in restored] == [pending_id, synced_id]
        assert restored.get(pending_id).sync_status == SyncStatus.PENDING
        assert restored.get(synced_id).sync_status == SyncStatus.SYNCED

    def test_load_skips_unreadable_records(self):
        """A record missing its id is skipped, the rest load."""
        storage = MemoryStorage()
        storage.set(
            "records:diaper",
            [{"id": "d1", "timestamp": 1, "type": "wet"}, {"timestamp": 2}],
        )

        store = DiaperStore(storage)

        assert store.load() == 1
        assert "d1" in store

    def test_load_skips_non_object_items(self):
        """Items of the wrong JSON type are skipped instead of aborting the load."""
        storage = MemoryStorage()
        storage.set(
            "records:contraction",
            ["garbage", 42, None, {"id": "c1", "startTime": 1000}],
        )

        store = ContractionStore(storage)

        assert store.load() == 1
        assert "c1" in store

    def test_load_ignores_non_list_value(self):
        """A stored collection that is not a list loads as empty."""
        storage = MemoryStorage()
        storage.set("records:contraction", {"id": "c1", "startTime": 1000})
        storage.set("meta:feeding", ["left"])

        assert ContractionStore(storage).load() == 0
        feedings = FeedingStore(storage)
        assert feedings.load() == 0
        assert feedings.last_side is None


class TestContractionStore:
    """Tests for contraction conveniences."""

    def test_active_contraction_not_logged_until_ended(self, contractions):
        """A timed contraction joins the log only when it ends."""
        with patch("nestsync.stores.contractions.now_ms", side_effect=[1000, 61000]):
            record_id = contractions.start()
            assert len(contractions) == 0

            assert contractions.end(notes="long") == record_id

        record = contractions.get(record_id)
        assert record.duration == 60
        assert record.end_time == 61000
        assert record.notes == "long"
        assert record.sync_status == SyncStatus.PENDING
        assert contractions.active is None

    def test_cancel_discards_active(self, contractions):
        """A cancelled contraction is never logged."""
        contractions.start()
        contractions.cancel()

        assert contractions.end() is None
        assert len(contractions) == 0

    def test_add_and_water_broke(self, contractions):
        """Manual entries derive end time; water broke is its own type."""
        record_id = contractions.add(10_000, 50)
        water_id = contractions.add_water_broke(20_000)

        assert contractions.get(record_id).end_time == 60_000
        assert contractions.get(water_id).type == "water_broke"

    def test_update_recomputes_end_time(self, contractions):
        """Changing the duration moves the end time and resets to pending."""
        record_id = contractions.add(10_000, 50)
        contractions.mark_synced(record_id)

        contractions.update(record_id, duration=70)

        record = contractions.get(record_id)
        assert record.end_time == 80_000
        assert record.sync_status == SyncStatus.PENDING

    def test_recent(self, contractions):
        """Only contractions that ended inside the window are returned."""
        with patch("nestsync.stores.contractions.now_ms", return_value=10 * 60_000):
            old = contractions.add(0, 30)
            fresh = contractions.add(9 * 60_000, 30)
            recent = contractions.recent(5)

        assert [c.id for c in recent] == [fresh]
        assert old in contractions


class TestFeedingStore:
    """Tests for feeding conveniences and daily analysis."""

    def test_end_records_side(self):
        """Ending a feeding logs it and flips the recommended side."""
        store = FeedingStore()
        with patch("nestsync.stores.feedings.now_ms", side_effect=[0, 600_000]):
            store.start("left")
            session_id = store.end(amount=None)

        assert store.get(session_id).duration == 600
        assert store.last_side == "left"
        assert store.recommended_side() == "right"

    def test_recommended_side_after_bottle(self):
        """A bottle feed restarts alternation on the left."""
        store = FeedingStore()
        store.last_side = "bottle"
        assert store.recommended_side() == "left"

    def test_last_side_survives_reload(self):
        """Side alternation continues after a restart."""
        storage = MemoryStorage()
        store = FeedingStore(storage)
        store.start("left")
        store.end()

        restored = FeedingStore(storage)
        restored.load()

        assert restored.last_side == "left"
        assert restored.recommended_side() == "right"

    def test_set_last_side_persists(self):
        """A side recorded for a manually logged feeding is saved."""
        storage = MemoryStorage()
        FeedingStore(storage).set_last_side("right")

        restored = FeedingStore(storage)
        restored.load()

        assert restored.recommended_side() == "left"

    def test_clear_forgets_last_side(self):
        """Clearing the log also resets alternation."""
        storage = MemoryStorage()
        store = FeedingStore(storage)
        store.set_last_side("left")
        store.clear()

        restored = FeedingStore(storage)
        restored.load()

        assert restored.last_side is None

    def test_time_since_last_feed(self):
        """Measured from the most recent end time."""
        store = FeedingStore()
        assert store.time_since_last_feed() is None

        store.create({"startTime": NOON - 900_000, "endTime": NOON - 600_000, "side": "left"})
        store.create({"startTime": NOON - 120_000, "endTime": NOON - 60_000, "side": "right"})

        with patch("nestsync.stores.feedings.now_ms", return_value=NOON):
            assert store.time_since_last_feed() == 60_000

    def test_daily_stats(self):
        """Only sessions started since local midnight are counted."""
        store = FeedingStore()
        store.create({"startTime": MIDNIGHT - 1000, "duration": 900, "side": "left"})
        store.create({"startTime": MIDNIGHT + 1000, "duration": 600, "side": "left"})
        store.create({"startTime": NOON - 3000, "duration": 300, "side": "right"})
        store.create({"startTime": NOON - 2000, "side": "bottle", "amount": 60})
        store.create({"startTime": NOON - 1000, "side": "bottle", "amount": 30.5})

        with patch("nestsync.stores.feedings.now_ms", return_value=NOON):
            assert len(store.today_sessions()) == 4
            stats = store.daily_stats()

        assert stats == {
            "total_feedings": 4,
            "total_duration": 900,
            "left_count": 1,
            "right_count": 1,
            "bottle_count": 2,
            "bottle_amount": 90.5,
        }


class TestDiaperStore:
    """Tests for diaper analysis against day-of-life expectations."""

    def test_current_day_without_birth_date(self):
        """Day 1 is assumed until a birth date is set."""
        assert DiaperStore().current_day() == 1

    def test_current_day_counts_from_birth(self):
        """The birth day is day 1; a future birth date clamps to day 1."""
        store = DiaperStore()
        store.set_birth_date(NOON - 2 * DAY_MS - 1000)

        with patch("nestsync.stores.diapers.now_ms", return_value=NOON):
            assert store.current_day() == 3

            store.set_birth_date(NOON + DAY_MS)
            assert store.current_day() == 1

    def test_birth_date_persists(self):
        """Birth date is saved with the store."""
        storage = MemoryStorage()
        DiaperStore(storage).set_birth_date(123_456)

        restored = DiaperStore(storage)
        restored.load()

        assert restored.birth_date == 123_456

    def test_day_stats(self):
        """Today's counts, with both counting as wet and dirty."""
        store = DiaperStore()
        store.add("dirty", timestamp=MIDNIGHT - 1)
        store.add("wet", timestamp=MIDNIGHT + 1)
        store.add("both", timestamp=NOON - 1)

        with patch("nestsync.stores.diapers.now_ms", return_value=NOON):
            assert len(store.today_entries()) == 2
            stats = store.day_stats()

        assert stats == {
            "wet": 2,
            "dirty": 1,
            "total": 2,
            "expected_wet": 1,
            "expected_dirty": 1,
            "meets_expectation": True,
        }

    def test_day_stats_caps_expectation_at_day_seven(self):
        """Later days use the day-seven expectation."""
        store = DiaperStore()
        store.add("both", timestamp=NOON)

        with patch("nestsync.stores.diapers.now_ms", return_value=NOON):
            stats = store.day_stats(day=30)

        assert stats["expected_wet"] == 6
        assert stats["expected_dirty"] == 3
        assert stats["meets_expectation"] is False


class TestOutbox:
    """Tests for the pending selector."""

    def test_aggregates_across_stores(self):
        """Pending records of every store are selected in store order."""
        contractions, feedings, diapers = ContractionStore(), FeedingStore(), DiaperStore()
        c_id = contractions.create({"startTime": 1})
        d_id = diapers.add("wet")
        f_id = feedings.create({"startTime": 2, "side": "left"})
        feedings.mark_synced(f_id)

        outbox = Outbox([contractions, feedings, diapers])

        assert [item.record.id for item in outbox.items()] == [c_id, d_id]
        assert outbox.pending_count == 2

    def test_recomputed_on_demand(self):
        """The outbox reflects store changes without being told."""
        diapers = DiaperStore()
        outbox = Outbox([diapers])
        assert outbox.is_empty()

        record_id = diapers.add("both")
        assert outbox.pending_count == 1

        diapers.mark_synced(record_id)
        assert outbox.is_empty()
