"""DatabaseClient against a mocked Supabase query builder."""
import random
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from postgrest.exceptions import APIError

from conftest import make_item
from emt_trainer.config import Settings
from emt_trainer.database import DatabaseClient
from emt_trainer.models import PerformanceRecord


def mock_client(data=None, error=None, count=None):
    """Every chained builder call returns the same query; execute() yields `data` or raises `error`."""
    client = MagicMock()
    query = client.table.return_value
    for method in ("select", "insert", "update", "upsert", "eq", "or_", "order", "limit", "range"):
        getattr(query, method).return_value = query
    if error is not None:
        query.execute.side_effect = error
    else:
        query.execute.return_value = MagicMock(data=data, count=count)
    return client, query


def test_get_performance_parses_row():
    client, query = mock_client([{"topic": "Airway", "accuracy": 0.5, "attempts": 4, "last_practiced": "2024-03-01T10:00:00Z"}])
    record = DatabaseClient(client).get_performance("u1", "Airway")

    client.table.assert_called_with("performance")
    query.eq.assert_any_call("user_id", "u1")
    query.eq.assert_any_call("topic", "Airway")
    assert record.attempts == 4
    assert record.last_practiced == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


def test_get_performance_missing_row():
    client, _ = mock_client([])
    assert DatabaseClient(client).get_performance("u1", "Airway") is None


def test_insert_performance_unique_violation_returns_false():
    client, _ = mock_client(error=APIError({"code": "23505", "message": "duplicate key"}))
    assert DatabaseClient(client).insert_performance("u1", PerformanceRecord("Airway", 1.0, 1)) is False


def test_insert_performance_other_errors_raise():
    client, _ = mock_client(error=APIError({"code": "42501", "message": "permission denied"}))
    with pytest.raises(APIError):
        DatabaseClient(client).insert_performance("u1", PerformanceRecord("Airway", 1.0, 1))


def test_update_performance_is_compare_and_set():
    client, query = mock_client([])
    written = DatabaseClient(client).update_performance("u1", PerformanceRecord("Airway", 0.5, 2), expected_attempts=1)

    assert written is False
    query.eq.assert_any_call("attempts", 1)

    client, _ = mock_client([{"topic": "Airway"}])
    assert DatabaseClient(client).update_performance("u1", PerformanceRecord("Airway", 0.5, 2), expected_attempts=1)


def test_latest_scenario_round_trips_row():
    item = make_item("row-1", "Trauma")
    client, query = mock_client([item.to_dict()])

    cached = DatabaseClient(client).latest_scenario("u1", "Trauma")

    query.order.assert_called_with("created_at", desc=True)
    assert cached == item


def test_insert_scenario_returns_stored_row():
    item = make_item("gen-1", "Trauma")
    client, query = mock_client([dict(item.to_dict(), id="7f3c-uuid", user_id="u1")])
    created = datetime(2024, 5, 1, tzinfo=timezone.utc)

    stored = DatabaseClient(client).insert_scenario("u1", item, created)

    row = query.insert.call_args[0][0]
    assert "id" not in row
    assert row["user_id"] == "u1"
    assert row["topic"] == "Trauma"
    assert row["created_at"] == created.isoformat()
    assert stored.id == "7f3c-uuid"
    assert stored.vignette == item.vignette


def test_insert_scenario_without_returned_row_raises():
    client, _ = mock_client([])
    with pytest.raises(LookupError):
        DatabaseClient(client).insert_scenario("u1", make_item("gen-1"), datetime(2024, 5, 1, tzinfo=timezone.utc))


def test_list_scenarios_pages_with_exact_count():
    rows = [make_item(f"s-{i}", "Airway").to_dict() for i in range(10)]
    client, query = mock_client(rows, count=23)

    scenarios, total = DatabaseClient(client).list_scenarios("u1", page=2, page_size=10)

    client.table.assert_called_with("generated_scenarios")
    query.select.assert_called_with("*", count="exact")
    query.eq.assert_called_once_with("user_id", "u1")
    query.order.assert_called_with("created_at", desc=True)
    query.range.assert_called_with(20, 29)
    query.or_.assert_not_called()
    assert total == 23
    assert [s.id for s in scenarios] == [f"s-{i}" for i in range(10)]


def test_list_scenarios_filters_topic_and_search():
    client, query = mock_client([], count=0)

    scenarios, total = DatabaseClient(client).list_scenarios(
        "u1", topic="Trauma", query="  chest pain, (left)  ", page_size=5
    )

    query.eq.assert_any_call("topic", "Trauma")
    filter_arg = query.or_.call_args[0][0]
    assert filter_arg.startswith("vignette.ilike.%chest pain")
    assert ",question.ilike.%" in filter_arg
    assert "(" not in filter_arg and ")" not in filter_arg
    query.range.assert_called_with(0, 4)
    assert (scenarios, total) == ([], 0)


def test_seed_exam_items_clamps_and_orders():
    rows = [make_item(f"e-{i}").to_dict() for i in range(15)]
    client, query = mock_client(rows)

    seeded = DatabaseClient(client).seed_exam_items(3, rng=random.Random(1))

    query.eq.assert_called_with("is_exam_eligible", True)
    assert len(seeded) == 10
    assert [s.order_index for s in seeded] == list(range(10))
    assert len({s.item_id for s in seeded}) == 10
    assert all(s.item_id == s.item.id for s in seeded)


def test_seed_exam_items_empty_pool():
    client, _ = mock_client([])
    with pytest.raises(LookupError):
        DatabaseClient(client).seed_exam_items(10)


def test_upsert_items_dedupes_and_chunks():
    client, query = mock_client([])
    rows = [{"id": str(i % 5)} for i in range(12)]

    total = DatabaseClient(client).upsert_items(rows, chunk_size=2)

    assert total == 5
    assert query.upsert.call_count == 3
    query.upsert.assert_called_with([{"id": "4"}], on_conflict="id")


def test_record_answer_row():
    client, query = mock_client([{}])
    DatabaseClient(client).record_answer("s-1", "item-3", 2, None, 90)

    client.table.assert_called_with("exam_session_items")
    row = query.insert.call_args[0][0]
    assert row["order_index"] == 2
    assert row["selected_choice_id"] is None
    assert row["time_spent_seconds"] == 90


def test_exam_session_lifecycle_rows():
    client, query = mock_client([{"id": 42}])
    db = DatabaseClient(client)

    assert db.create_exam_session("u1", 40) == "42"
    db.complete_exam_session("42", 30, 38, exited=True)

    update = query.update.call_args[0][0]
    assert update["status"] == "exited"
    assert (update["correct_count"], update["total"]) == (30, 38)


def test_requires_credentials():
    with pytest.raises(ValueError):
        DatabaseClient(settings=Settings(supabase_url=None, supabase_key=None))


def test_schema_declares_all_tables():
    from init_db import schema_statements

    statements = schema_statements()
    for table in ("performance", "generated_scenarios", "items", "exam_sessions", "exam_session_items"):
        assert any(f"CREATE TABLE IF NOT EXISTS {table} (" in s for s in statements)
    assert any("UNIQUE(user_id, topic)" in s for s in statements)
