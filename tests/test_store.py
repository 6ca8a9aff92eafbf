"""
Tests for the deploy memory stores.
"""

import json
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest

from deploy_memory.config import Settings
from deploy_memory.errors import StoreError
from deploy_memory.models import DeployMemoryEvent, ErrorClass, utc_now
from deploy_memory.store import (
    DynamoDBMemoryStore,
    LocalMemoryStore,
    STATS_HISTORY_LIMIT,
    create_store,
)

FINGERPRINT = "0123456789abcdef"
BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_event(index, fingerprint_id=FINGERPRINT, confidence=0.9, created_at=None):
    return DeployMemoryEvent(
        event_id=f"event-{index}",
        fingerprint_id=fingerprint_id,
        error_class=ErrorClass.ACM_DNS_VALIDATION_PENDING,
        service="ACM",
        confidence=confidence,
        tokens=("ACM", "DNS"),
        signals_json="[]",
        created_at=created_at or BASE_TIME + timedelta(minutes=index),
        stack_name="MyAppStack",
        region="us-west-2",
    )


class FakeTable:
    """In-memory stand-in for a DynamoDB Table resource."""

    def __init__(self, page_size=None):
        self.items = []
        self.page_size = page_size
        self.query_calls = []

    def put_item(self, Item):
        self.items.append(Item)

    def query(self, **kwargs):
        self.query_calls.append(kwargs)
        pk = kwargs['KeyConditionExpression'].get_expression()['values'][1]
        min_ttl = kwargs['FilterExpression'].get_expression()['values'][1]

        matching = sorted(
            (i for i in self.items if i['pk'] == pk),
            key=lambda i: i['sk'],
            reverse=not kwargs.get('ScanIndexForward', True),
        )
        start = kwargs.get('ExclusiveStartKey')
        if start:
            keys = [i['sk'] for i in matching]
            matching = matching[keys.index(start['sk']) + 1:]

        page_limit = kwargs.get('Limit', len(matching))
        if self.page_size is not None:
            page_limit = min(page_limit, self.page_size)
        evaluated = matching[:page_limit]

        response = {'Items': [i for i in evaluated if i['ttl'] > min_ttl]}
        if len(matching) > page_limit:
            response['LastEvaluatedKey'] = {'pk': pk, 'sk': evaluated[-1]['sk']}
        return response


class TestLocalMemoryStore:
    """Test the NDJSON file store."""

    def test_query_returns_most_recent_first(self, tmp_path):
        store = LocalMemoryStore(tmp_path)
        for i in (1, 3, 2):
            store.put_event(make_event(i))

        events = store.query_by_fingerprint(FINGERPRINT)

        assert [e.event_id for e in events] == ["event-3", "event-2", "event-1"]

    def test_query_respects_limit(self, tmp_path):
        store = LocalMemoryStore(tmp_path)
        for i in range(5):
            store.put_event(make_event(i))

        events = store.query_by_fingerprint(FINGERPRINT, limit=2)

        assert [e.event_id for e in events] == ["event-4", "event-3"]
        assert store.query_by_fingerprint(FINGERPRINT, limit=0) == []

    def test_fingerprints_are_isolated(self, tmp_path):
        store = LocalMemoryStore(tmp_path)
        store.put_event(make_event(1))
        store.put_event(make_event(2, fingerprint_id="fedcba9876543210"))

        assert [e.event_id for e in store.query_by_fingerprint(FINGERPRINT)] == ["event-1"]

    def test_unknown_fingerprint_has_no_history(self, tmp_path):
        store = LocalMemoryStore(tmp_path)

        assert store.query_by_fingerprint(FINGERPRINT) == []
        assert store.get_latest_event(FINGERPRINT) is None

    def test_event_round_trips(self, tmp_path):
        store = LocalMemoryStore(tmp_path)
        event = make_event(1)
        store.put_event(event)

        assert store.get_latest_event(FINGERPRINT) == event

    def test_get_latest_event(self, tmp_path):
        store = LocalMemoryStore(tmp_path)
        store.put_event(make_event(2))
        store.put_event(make_event(7))
        store.put_event(make_event(4))

        assert store.get_latest_event(FINGERPRINT).event_id == "event-7"

    def test_event_stats(self, tmp_path):
        store = LocalMemoryStore(tmp_path)
        store.put_event(make_event(0, confidence=0.9))
        store.put_event(make_event(10, confidence=0.6))
        store.put_event(make_event(5, confidence=0.6))

        stats = store.get_event_stats(FINGERPRINT)

        assert stats.total_occurrences == 3
        assert stats.first_seen == BASE_TIME
        assert stats.last_seen == BASE_TIME + timedelta(minutes=10)
        assert stats.average_confidence == pytest.approx(0.7)

    def test_empty_stats_are_zeroed(self, tmp_path):
        store = LocalMemoryStore(tmp_path)
        before = utc_now()

        stats = store.get_event_stats(FINGERPRINT)

        assert stats.total_occurrences == 0
        assert stats.average_confidence == 0.0
        assert stats.first_seen == stats.last_seen
        assert stats.first_seen >= before

    def test_expired_events_are_hidden(self, tmp_path):
        store = LocalMemoryStore(tmp_path, ttl_days=90)
        with patch('deploy_memory.store.local.utc_now', return_value=utc_now() - timedelta(days=91)):
            store.put_event(make_event(1))
        store.put_event(make_event(2))

        assert [e.event_id for e in store.query_by_fingerprint(FINGERPRINT)] == ["event-2"]

    def test_expiry_is_written_with_the_record(self, tmp_path):
        store = LocalMemoryStore(tmp_path, ttl_days=90)
        written_at = datetime(2024, 6, 1, tzinfo=timezone.utc)
        with patch('deploy_memory.store.local.utc_now', return_value=written_at):
            store.put_event(make_event(1))

        line = (tmp_path / "memory" / f"{FINGERPRINT}.ndjson").read_text().strip()
        record = json.loads(line)

        assert datetime.fromisoformat(record["expires_at"]) == written_at + timedelta(days=90)

    def test_partial_lines_are_skipped(self, tmp_path):
        store = LocalMemoryStore(tmp_path)
        store.put_event(make_event(1))
        with open(tmp_path / "memory" / f"{FINGERPRINT}.ndjson", "a") as f:
            f.write('{"event_id": "event-2", "fingerp')

        assert [e.event_id for e in store.query_by_fingerprint(FINGERPRINT)] == ["event-1"]

    def test_malformed_record_raises(self, tmp_path):
        store = LocalMemoryStore(tmp_path)
        store.put_event(make_event(1))
        expires = (utc_now() + timedelta(days=1)).isoformat()
        with open(tmp_path / "memory" / f"{FINGERPRINT}.ndjson", "a") as f:
            f.write(json.dumps({"event_id": "event-2", "expires_at": expires}) + "\n")

        with pytest.raises(StoreError):
            store.query_by_fingerprint(FINGERPRINT)

    @pytest.mark.parametrize("expires_at", [None, "next tuesday"])
    def test_bad_expiry_raises_store_error(self, tmp_path, expires_at):
        store = LocalMemoryStore(tmp_path)
        record = make_event(1).to_dict()
        if expires_at is not None:
            record["expires_at"] = expires_at
        events_file = tmp_path / "memory" / f"{FINGERPRINT}.ndjson"
        events_file.parent.mkdir(parents=True)
        events_file.write_text(json.dumps(record) + "\n")

        with pytest.raises(StoreError):
            store.query_by_fingerprint(FINGERPRINT)

    def test_expired_lines_are_pruned_on_write(self, tmp_path):
        store = LocalMemoryStore(tmp_path, ttl_days=90)
        with patch('deploy_memory.store.local.utc_now', return_value=utc_now() - timedelta(days=91)):
            store.put_event(make_event(1))
            store.put_event(make_event(2))
        store.put_event(make_event(3))

        lines = (tmp_path / "memory" / f"{FINGERPRINT}.ndjson").read_text().splitlines()

        assert [json.loads(line)["event_id"] for line in lines] == ["event-3"]
        assert not (tmp_path / "memory" / f"{FINGERPRINT}.ndjson.tmp").exists()

    def test_unexpired_lines_survive_pruning(self, tmp_path):
        store = LocalMemoryStore(tmp_path)
        store.put_event(make_event(1))
        store.put_event(make_event(2))

        assert len(store.query_by_fingerprint(FINGERPRINT)) == 2

    def test_invalid_fingerprint_rejected(self, tmp_path):
        store = LocalMemoryStore(tmp_path)

        with pytest.raises(ValueError):
            store.query_by_fingerprint("../../etc/passwd")


class TestDynamoDBMemoryStore:
    """Test the DynamoDB store against an in-memory table."""

    def test_put_event_writes_keys_and_ttl(self):
        table = FakeTable()
        store = DynamoDBMemoryStore(table=table, ttl_days=90)

        before = int(utc_now().timestamp())
        store.put_event(make_event(1))
        after = int(utc_now().timestamp())

        item = table.items[0]
        ninety_days = 90 * 24 * 60 * 60
        assert item['pk'] == f"FP#{FINGERPRINT}"
        assert item['sk'].endswith("#event-1")
        assert before + ninety_days <= item['ttl'] <= after + ninety_days
        assert isinstance(item['confidence'], Decimal)

    def test_none_fields_are_omitted(self):
        table = FakeTable()
        store = DynamoDBMemoryStore(table=table)
        event = make_event(1)
        store.put_event(replace(event, stack_name=None, region=None))

        assert 'stack_name' not in table.items[0]
        assert 'region' not in table.items[0]

    def test_query_is_descending_and_limited(self):
        table = FakeTable()
        store = DynamoDBMemoryStore(table=table)
        for i in range(4):
            store.put_event(make_event(i))

        events = store.query_by_fingerprint(FINGERPRINT, limit=3)

        assert [e.event_id for e in events] == ["event-3", "event-2", "event-1"]
        assert table.query_calls[0]['ScanIndexForward'] is False
        assert all(isinstance(e.confidence, float) for e in events)

    def test_query_follows_pagination(self):
        table = FakeTable(page_size=2)
        store = DynamoDBMemoryStore(table=table)
        for i in range(5):
            store.put_event(make_event(i))

        events = store.query_by_fingerprint(FINGERPRINT, limit=10)

        assert len(events) == 5
        assert len(table.query_calls) == 3
        assert 'ExclusiveStartKey' in table.query_calls[1]

    def test_expired_items_are_hidden(self):
        table = FakeTable()
        store = DynamoDBMemoryStore(table=table)
        store.put_event(make_event(1))
        store.put_event(make_event(2))
        table.items[1]['ttl'] = int(utc_now().timestamp()) - 60

        events = store.query_by_fingerprint(FINGERPRINT)

        assert [e.event_id for e in events] == ["event-1"]

    def test_event_stats_from_items(self):
        table = FakeTable()
        store = DynamoDBMemoryStore(table=table)
        store.put_event(make_event(0, confidence=0.95))
        store.put_event(make_event(3, confidence=0.85))

        stats = store.get_event_stats(FINGERPRINT)

        assert stats.total_occurrences == 2
        assert stats.first_seen == BASE_TIME
        assert stats.last_seen == BASE_TIME + timedelta(minutes=3)
        assert stats.average_confidence == pytest.approx(0.9)
        assert table.query_calls[0]['Limit'] == STATS_HISTORY_LIMIT

    def test_empty_history(self):
        store = DynamoDBMemoryStore(table=FakeTable())

        assert store.get_latest_event(FINGERPRINT) is None
        assert store.get_event_stats(FINGERPRINT).total_occurrences == 0

    def test_malformed_item_raises(self):
        table = FakeTable()
        store = DynamoDBMemoryStore(table=table)
        store.put_event(make_event(1))
        del table.items[0]['error_class']

        with pytest.raises(StoreError):
            store.query_by_fingerprint(FINGERPRINT)


class TestCreateStore:
    """Test backend selection."""

    def test_local_backend(self, tmp_path):
        store = create_store(Settings(backend="local", home=tmp_path, ttl_days=30))

        assert isinstance(store, LocalMemoryStore)
        assert store.home == tmp_path
        assert store.ttl_days == 30

    def test_dynamodb_backend(self):
        store = create_store(Settings(backend="dynamodb", table_name="memory", region="eu-west-1"))

        assert isinstance(store, DynamoDBMemoryStore)
        assert store.table_name == "memory"
        assert store.region == "eu-west-1"
