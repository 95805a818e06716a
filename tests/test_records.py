from datetime import datetime, timedelta, timezone

import pytest

from securerelay.core.errors import DuplicateIdError, NotFoundError
from securerelay.core.storage.records import SQLiteRecordStore, UploadRecord

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_record(record_id, expires_in=timedelta(hours=48), created_at=T0):
    return UploadRecord(
        id=record_id,
        remote_location=f"{record_id}.enc",
        original_filename="report.pdf",
        created_at=created_at,
        expires_at=created_at + expires_in,
    )


class TestUploadRecord:
    def test_expiry_boundary(self):
        record = make_record("a")
        assert not record.is_expired(T0 + timedelta(hours=47, minutes=59))
        assert record.is_expired(T0 + timedelta(hours=48))

    def test_naive_now_is_taken_as_utc(self):
        record = make_record("a")
        assert record.is_expired(datetime(2024, 1, 3, 12))
        assert not record.is_expired(datetime(2024, 1, 2, 12))


class TestSQLiteRecordStore:
    @pytest.fixture
    def store(self, tmp_path):
        return SQLiteRecordStore(tmp_path / "relay.db")

    def test_create_and_find(self, store):
        record = make_record("abc")
        store.create(record)
        found = store.find_by_id("abc")
        assert found == record
        assert found.expires_at.tzinfo is not None

    def test_find_missing(self, store):
        with pytest.raises(NotFoundError):
            store.find_by_id("missing")

    def test_duplicate_id(self, store):
        store.create(make_record("abc"))
        with pytest.raises(DuplicateIdError):
            store.create(make_record("abc"))

    def test_delete(self, store):
        store.create(make_record("abc"))
        store.delete_by_id("abc")
        with pytest.raises(NotFoundError):
            store.find_by_id("abc")
        with pytest.raises(NotFoundError):
            store.delete_by_id("abc")

    def test_list_expired_is_strictly_before_now(self, store):
        store.create(make_record("old", expires_in=timedelta(hours=1)))
        store.create(make_record("edge", expires_in=timedelta(hours=2)))
        store.create(make_record("fresh", expires_in=timedelta(hours=48)))

        now = T0 + timedelta(hours=2)
        assert [r.id for r in store.list_expired(now)] == ["old"]

    def test_list_expired_orders_oldest_first(self, store):
        store.create(make_record("b", expires_in=timedelta(minutes=30)))
        store.create(make_record("a", expires_in=timedelta(minutes=10)))
        store.create(make_record("c", expires_in=timedelta(minutes=20)))

        assert [r.id for r in store.list_expired(T0 + timedelta(hours=1))] == ["a", "c", "b"]

    def test_list_expired_pages_through_deletions(self, store):
        for i in range(7):
            store.create(make_record(f"r{i}", expires_in=timedelta(minutes=i + 1)))

        seen = []
        for record in store.list_expired(T0 + timedelta(hours=1), batch_size=2):
            seen.append(record.id)
            store.delete_by_id(record.id)

        assert seen == [f"r{i}" for i in range(7)]
        assert store.count() == 0

    def test_timezone_offsets_are_normalized(self, store):
        offset = timezone(timedelta(hours=5))
        record = make_record("tz", created_at=datetime(2024, 1, 1, 17, tzinfo=offset))
        store.create(record)
        assert store.find_by_id("tz").created_at == T0 + timedelta(hours=12)
