"""Tests for the audit stores: query, history, stats and retention cleanup."""

from __future__ import annotations

from datetime import datetime, timedelta, UTC

import pytest

from encore_sec.audit.models import AuditFilters, AuditOutcome, AuditRecord
from encore_sec.audit.store import InMemoryAuditStore, SqlAuditStore
from encore_sec.exceptions import ValidationError

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)


def make_record(days_ago: float = 0, **kwargs) -> AuditRecord:
    fields = {
        "action": "REQUEST_CREATE",
        "entity_type": "REQUEST",
        "actor_user_id": "alice",
    }
    fields.update(kwargs)
    return AuditRecord.create(timestamp=NOW - timedelta(days=days_ago), **fields)


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Every test runs against both backends."""
    if request.param == "memory":
        yield InMemoryAuditStore(clock=lambda: NOW)
    else:
        sql_store = SqlAuditStore("sqlite://", clock=lambda: NOW)
        yield sql_store
        sql_store.dispose()


class TestAuditQuery:
    """Filtered, paginated queries."""

    def test_results_are_newest_first(self, store) -> None:
        for days in (3, 1, 2):
            store.append(make_record(days, entity_id=str(days)))

        page = store.query()

        assert [r.entity_id for r in page.records] == ["1", "2", "3"]
        assert page.total == 3

    def test_default_limit_and_hard_cap(self, store) -> None:
        for i in range(120):
            store.append(make_record(i / 1000))

        assert len(store.query().records) == 50

        capped = store.query(AuditFilters(limit=500))
        assert len(capped.records) == 100
        assert capped.limit == 100
        assert capped.total == 120
        assert capped.has_more

    def test_offset_paging(self, store) -> None:
        for i in range(5):
            store.append(make_record(i, entity_id=str(i)))

        page = store.query(AuditFilters(limit=2, offset=2))

        assert [r.entity_id for r in page.records] == ["2", "3"]

    def test_filters(self, store) -> None:
        store.append(make_record(1, actor_user_id="alice", entity_type="SONG", entity_id="9"))
        store.append(make_record(2, actor_user_id="bob", entity_type="SONG", entity_id="9"))
        store.append(make_record(3, actor_user_id="bob", entity_type="EVENT", entity_id="1"))
        store.append(make_record(10, actor_user_id="bob", entity_type="EVENT", entity_id="2"))

        assert store.count(AuditFilters(user_id="bob")) == 3
        assert store.count(AuditFilters(entity_type="SONG", entity_id="9")) == 2
        assert store.count(AuditFilters(start_date=NOW - timedelta(days=5))) == 3
        assert store.count(AuditFilters(end_date=NOW - timedelta(days=2))) == 3
        assert store.count(AuditFilters.from_mapping({"userId": "bob", "entityType": "EVENT"})) == 2

    def test_negative_paging_rejected(self, store) -> None:
        with pytest.raises(ValidationError):
            store.query(AuditFilters(limit=-1))
        with pytest.raises(ValidationError):
            store.query(AuditFilters(offset=-5))

    def test_inverted_date_range_rejected(self, store) -> None:
        with pytest.raises(ValidationError):
            store.query(AuditFilters(start_date=NOW, end_date=NOW - timedelta(days=1)))

    def test_malformed_filter_mapping_rejected(self) -> None:
        with pytest.raises(ValidationError):
            AuditFilters.from_mapping({"startDate": "not-a-date"})

    def test_records_round_trip_intact(self, store) -> None:
        original = make_record(1, entity_id="5", details={"title": "Song", "tags": ["a", "b"]},
                               outcome=AuditOutcome.FAILURE, reason="ValueError: nope")
        store.append(original)

        [loaded] = store.query().records

        assert loaded == original
        assert loaded.timestamp.tzinfo is not None
        assert loaded.verify_digest()

    def test_duplicate_id_rejected(self, store) -> None:
        record = make_record(1)
        store.append(record)

        with pytest.raises(ValidationError):
            store.append(record)


class TestEntityHistoryAndStats:
    """Per-entity history and activity aggregates."""

    def test_entity_history_newest_first(self, store) -> None:
        store.append(make_record(3, entity_type="SONG", entity_id="7", action="SONG_CREATE"))
        store.append(make_record(1, entity_type="SONG", entity_id="7", action="SONG_UPDATE"))
        store.append(make_record(2, entity_type="SONG", entity_id="8", action="SONG_UPDATE"))

        history = store.entity_history("SONG", "7")

        assert [r.action for r in history] == ["SONG_UPDATE", "SONG_CREATE"]

    def test_entity_history_limit(self, store) -> None:
        for i in range(5):
            store.append(make_record(i, entity_type="SONG", entity_id="7"))

        assert len(store.entity_history("SONG", "7", limit=2)) == 2

    def test_activity_stats_for_user(self, store) -> None:
        store.append(make_record(1, actor_user_id="alice", action="REQUEST_CREATE"))
        store.append(make_record(2, actor_user_id="alice", action="REQUEST_CREATE"))
        store.append(make_record(3, actor_user_id="alice", action="SONG_CREATE", entity_type="SONG",
                                 outcome=AuditOutcome.DENIED))
        store.append(make_record(40, actor_user_id="alice", action="SONG_CREATE"))
        store.append(make_record(1, actor_user_id="bob", action="REQUEST_CREATE"))

        stats = store.activity_stats("alice", 30)

        assert stats.total == 3
        assert stats.by_action == {"REQUEST_CREATE": 2, "SONG_CREATE": 1}
        assert stats.by_entity_type == {"REQUEST": 2, "SONG": 1}
        assert stats.by_outcome == {"success": 2, "denied": 1}

    def test_system_stats_cover_all_users(self, store) -> None:
        store.append(make_record(1, actor_user_id="alice"))
        store.append(make_record(1, actor_user_id="bob"))

        assert store.activity_stats(None, 7).total == 2

    @pytest.mark.parametrize("days", [0, -1])
    def test_non_positive_window_rejected(self, store, days) -> None:
        with pytest.raises(ValidationError):
            store.activity_stats("alice", days)


class TestRetentionCleanup:
    """Retention-based deletion."""

    def test_boundary_record_is_retained(self, store) -> None:
        store.append(make_record(30, entity_id="boundary"))
        store.append(make_record(30 + 1 / 86400, entity_id="expired"))
        store.append(make_record(5, entity_id="recent"))

        deleted = store.cleanup(30)

        assert deleted == 1
        assert sorted(r.entity_id for r in store.query().records) == ["boundary", "recent"]

    @pytest.mark.parametrize("retention_days", [0, -3, None, "abc", True])
    def test_invalid_retention_rejected(self, store, retention_days) -> None:
        store.append(make_record(400))

        with pytest.raises(ValidationError):
            store.cleanup(retention_days)

        assert store.count() == 1

