from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from cancellation_service.axiom.client import AxiomQueryError
from cancellation_service.axiom.log_service import (
    STATS_FETCH_LIMIT,
    CancellationLogService,
    LogQueryError,
    StatisticsError,
    summarize,
)
from cancellation_service.axiom.models import (
    CancellationAttempt,
    IngestFailure,
    IngestResult,
    QueryResult,
)

START = datetime(2024, 1, 1, tzinfo=timezone.utc)
END = datetime(2024, 1, 8, tzinfo=timezone.utc)


@pytest.fixture
def client():
    mock = MagicMock()
    mock.dataset = "orders"
    mock.ingest_events = AsyncMock(return_value=IngestResult(ingested=1, failed=0))
    mock.query_apl = AsyncMock(return_value=QueryResult(matches=[]))
    return mock


@pytest.fixture
def service(client):
    return CancellationLogService(client)


def _attempt(**overrides) -> CancellationAttempt:
    data = {
        "orderId": "A1",
        "totalAmount": 500,
        "orderStatus": "CANCELED",
        "success": True,
        "message": "Order cancelled successfully",
        "tax": 50,
    }
    data.update(overrides)
    return CancellationAttempt.model_validate(data)


def test_requires_client():
    with pytest.raises(ValueError, match="client is required"):
        CancellationLogService(None)


@pytest.mark.asyncio
async def test_record_attempt_stamps_missing_timestamp(service, client):
    assert await service.record_attempt(_attempt()) is True

    (events,), _ = client.ingest_events.call_args
    event = events[0]
    assert event["orderId"] == "A1"
    assert event["tax"] == 50
    assert "failureReason" not in event
    assert event["timestamp"]
    assert event["_time"] == event["timestamp"]


@pytest.mark.asyncio
async def test_record_attempt_keeps_existing_timestamp(service, client):
    await service.record_attempt(_attempt(timestamp="2024-01-02T03:04:05.000Z"))

    event = client.ingest_events.call_args.args[0][0]
    assert event["timestamp"] == "2024-01-02T03:04:05.000Z"
    assert event["_time"] != "2024-01-02T03:04:05.000Z"


@pytest.mark.asyncio
async def test_record_attempt_accepts_plain_dict(service, client):
    await service.record_attempt({"orderId": "A9", "success": False})

    event = client.ingest_events.call_args.args[0][0]
    assert event["orderId"] == "A9"
    assert "timestamp" in event


@pytest.mark.asyncio
async def test_record_attempt_false_when_nothing_ingested(service, client):
    client.ingest_events.return_value = IngestResult(
        ingested=0, failed=1, failures=[IngestFailure(error="boom")]
    )

    assert await service.record_attempt(_attempt()) is False


@pytest.mark.asyncio
async def test_record_attempt_never_raises(service, client):
    client.ingest_events.side_effect = RuntimeError("store exploded")

    assert await service.record_attempt(_attempt()) is False


@pytest.mark.asyncio
async def test_list_successful_filters_capped_page(service, client):
    client.query_apl.return_value = QueryResult(
        matches=[
            {"orderId": "A1", "success": True},
            {"orderId": "A2", "success": False},
            {"orderId": "A3", "success": True},
            {"orderId": "A4"},
        ]
    )

    logs = await service.list_successful(START, END, 4)

    assert [log["orderId"] for log in logs] == ["A1", "A3"]
    apl, start, end, token = client.query_apl.call_args.args
    assert apl == "['orders'] | limit 4"
    assert start == "2024-01-01T00:00:00.000Z"
    assert end == "2024-01-08T00:00:00.000Z"
    assert token is None


@pytest.mark.asyncio
async def test_list_failed_returns_fewer_than_limit_without_backfill(service, client):
    client.query_apl.return_value = QueryResult(
        matches=[
            {"orderId": "A1", "success": True},
            {"orderId": "A2", "success": False},
        ]
    )

    logs = await service.list_failed(START, END, 2)

    assert [log["orderId"] for log in logs] == ["A2"]
    client.query_apl.assert_awaited_once()


@pytest.mark.asyncio
async def test_list_accepts_iso_strings(service, client):
    await service.list_failed("2024-01-01T00:00:00Z", "2024-01-02T00:00:00+00:00")

    apl, start, end, _ = client.query_apl.call_args.args
    assert apl == "['orders'] | limit 100"
    assert start == "2024-01-01T00:00:00.000Z"
    assert end == "2024-01-02T00:00:00.000Z"


@pytest.mark.asyncio
async def test_list_propagates_query_errors(service, client):
    client.query_apl.side_effect = AxiomQueryError("broken")

    with pytest.raises(LogQueryError, match="Failed to query cancellation logs"):
        await service.list_successful(START, END)


@pytest.mark.asyncio
async def test_query_logs_follows_continuation_tokens(service, client):
    client.query_apl.side_effect = [
        QueryResult(matches=[{"n": 1}, {"n": 2}], continuation_token="t1"),
        QueryResult(matches=[{"n": 3}], continuation_token="t2"),
        QueryResult(matches=[{"n": 4}], continuation_token=None),
    ]

    logs = await service._query_logs("['orders']", START, END)

    assert [log["n"] for log in logs] == [1, 2, 3, 4]
    tokens = [call.args[3] for call in client.query_apl.call_args_list]
    assert tokens == [None, "t1", "t2"]


@pytest.mark.asyncio
async def test_query_logs_truncates_at_limit(service, client):
    client.query_apl.side_effect = [
        QueryResult(matches=[{"n": 1}, {"n": 2}], continuation_token="t1"),
        QueryResult(matches=[{"n": 3}, {"n": 4}], continuation_token="t2"),
        QueryResult(matches=[{"n": 5}], continuation_token=None),
    ]

    logs = await service._query_logs("['orders']", START, END, limit=3)

    assert [log["n"] for log in logs] == [1, 2, 3]
    assert client.query_apl.await_count == 2
    assert client.query_apl.call_args_list[0].args[0] == "['orders'] | limit 3"


@pytest.mark.asyncio
async def test_query_logs_does_not_add_second_limit(service, client):
    await service._query_logs("['orders'] | limit 10", START, END, limit=5)

    assert client.query_apl.call_args.args[0] == "['orders'] | limit 10"


@pytest.mark.asyncio
async def test_compute_statistics(service, client):
    client.query_apl.return_value = QueryResult(
        matches=[
            {"success": True, "tax": 50, "totalAmount": 500},
            {"success": True, "tax": 10, "totalAmount": 100},
            {"success": False, "totalAmount": 1500, "failureReason": "Amount above the allowed limit"},
            {"success": False, "totalAmount": 2000, "failureReason": "Amount above the allowed limit"},
            {"success": False, "totalAmount": 400, "failureReason": "Order already cancelled"},
        ]
    )

    stats = await service.compute_statistics(START, END)

    assert client.query_apl.call_args.args[0] == f"['orders'] | limit {STATS_FETCH_LIMIT}"
    assert stats.total_attempts == 5
    assert stats.successful_cancellations == 2
    assert stats.failed_cancellations == 3
    assert stats.success_rate == pytest.approx(0.4)
    assert stats.total_tax_collected == 60
    assert stats.average_tax == 30
    assert stats.average_order_amount == pytest.approx(900)
    assert stats.top_failure_reason == "Amount above the allowed limit"


@pytest.mark.asyncio
async def test_compute_statistics_is_idempotent(service, client):
    client.query_apl.return_value = QueryResult(
        matches=[{"success": True, "tax": 5, "totalAmount": 50}, {"success": False}]
    )

    first = await service.compute_statistics(START, END)
    second = await service.compute_statistics(START, END)

    assert first == second


@pytest.mark.asyncio
async def test_compute_statistics_wraps_failures(service, client):
    client.query_apl.side_effect = AxiomQueryError("broken")

    with pytest.raises(StatisticsError, match="Failed to get cancellation statistics"):
        await service.compute_statistics(START, END)


def test_summarize_empty_window():
    stats = summarize([])

    assert stats.total_attempts == 0
    assert stats.success_rate == 0
    assert stats.average_tax == 0
    assert stats.average_order_amount == 0
    assert stats.top_failure_reason is None
    assert "topFailureReason" not in stats.to_dict()


def test_summarize_counts_records_without_outcome_in_total_only():
    stats = summarize(
        [
            {"success": True, "tax": 1, "totalAmount": 10},
            {"success": "yes", "totalAmount": 10},
            {"totalAmount": 10},
        ]
    )

    assert stats.total_attempts == 3
    assert stats.successful_cancellations == 1
    assert stats.failed_cancellations == 0
    assert stats.successful_cancellations + stats.failed_cancellations != stats.total_attempts


def test_summarize_failure_without_reason_counts_as_unknown():
    stats = summarize([{"success": False}, {"success": False}, {"success": False, "failureReason": "x"}])

    assert stats.top_failure_reason == "Unknown"


def test_summarize_tie_keeps_first_seen_reason():
    stats = summarize(
        [
            {"success": False, "failureReason": "first"},
            {"success": False, "failureReason": "second"},
        ]
    )

    assert stats.top_failure_reason == "first"


def test_statistics_serialize_with_wire_names():
    stats = summarize([{"success": True, "tax": 50, "totalAmount": 500}])

    assert stats.to_dict() == {
        "totalAttempts": 1,
        "successfulCancellations": 1,
        "failedCancellations": 0,
        "successRate": 1.0,
        "averageTax": 50.0,
        "totalTaxCollected": 50.0,
        "averageOrderAmount": 500.0,
    }


def test_attempt_rejects_inconsistent_outcome_fields():
    with pytest.raises(ValueError):
        _attempt(success=True, failureReason="nope", tax=None)
    with pytest.raises(ValueError):
        _attempt(success=False, tax=10)
