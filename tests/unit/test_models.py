"""Tests for core models."""

import math

import pytest

from bulktq.models import (
    COMPLETION_MESSAGE,
    MAX_CHUNK_SIZE,
    CapacityParams,
    CompletionReport,
    FetchChunkPlan,
    InvocationState,
    RawQueueEntry,
)


class TestFetchChunkPlan:
    """Tests for splitting a budget into receive calls."""

    def test_budget_23(self) -> None:
        plan = FetchChunkPlan.for_budget(23)
        assert plan.sizes == (10, 10, 3)
        assert str(plan) == "10,10,3"

    def test_zero_budget_has_no_chunks(self) -> None:
        plan = FetchChunkPlan.for_budget(0)
        assert len(plan) == 0
        assert not plan
        assert plan.total == 0

    def test_exact_multiple(self) -> None:
        assert FetchChunkPlan.for_budget(30).sizes == (10, 10, 10)

    @pytest.mark.parametrize("budget", list(range(0, 64)) + [99, 100, 101, 1000])
    def test_chunk_invariants(self, budget: int) -> None:
        plan = FetchChunkPlan.for_budget(budget)
        assert len(plan) == math.ceil(budget / MAX_CHUNK_SIZE)
        assert len(plan) == FetchChunkPlan.request_count(budget)
        assert all(1 <= size <= MAX_CHUNK_SIZE for size in plan)
        assert plan.total == budget

    def test_custom_chunk_size(self) -> None:
        assert FetchChunkPlan.for_budget(7, max_chunk_size=3).sizes == (3, 3, 1)

    def test_negative_budget_rejected(self) -> None:
        with pytest.raises(ValueError, match="non-negative"):
            FetchChunkPlan.for_budget(-1)

    def test_invalid_chunk_size_rejected(self) -> None:
        with pytest.raises(ValueError, match="positive"):
            FetchChunkPlan.for_budget(5, max_chunk_size=0)


class TestCapacityParams:
    """Tests for throttle configuration."""

    def test_ceiling_applies_safe_pct_and_reserve(self) -> None:
        params = CapacityParams(throttle_limit=50, safe_throttle_pct=0.8, reserve_for_direct=5)
        assert params.ceiling == 35

    def test_ceiling_rounds_down(self) -> None:
        assert CapacityParams(throttle_limit=9, safe_throttle_pct=0.5).ceiling == 4

    def test_ceiling_never_negative(self) -> None:
        assert CapacityParams(throttle_limit=4, reserve_for_direct=10).ceiling == 0

    @pytest.mark.parametrize(
        ("kwargs", "match"),
        [
            ({"throttle_limit": -1}, "throttle_limit"),
            ({"throttle_limit": 1, "safe_throttle_pct": 0}, "safe_throttle_pct"),
            ({"throttle_limit": 1, "safe_throttle_pct": 1.5}, "safe_throttle_pct"),
            ({"throttle_limit": 1, "reserve_for_direct": -1}, "reserve_for_direct"),
            ({"throttle_limit": 1, "retry_count": -1}, "retry_count"),
        ],
    )
    def test_validation(self, kwargs: dict, match: str) -> None:
        with pytest.raises(ValueError, match=match):
            CapacityParams(**kwargs)


class TestRawQueueEntry:
    """Tests for building entries from SQS responses."""

    def test_from_receive_message(self) -> None:
        entry = RawQueueEntry.from_sqs(
            {
                "MessageId": "m-1",
                "ReceiptHandle": "rh-1",
                "Body": '{"Message": "x"}',
                "MessageAttributes": {"a": {"DataType": "String", "StringValue": "b"}},
            }
        )
        assert entry.body == '{"Message": "x"}'
        assert entry.acknowledgment_token == "rh-1"
        assert entry.message_id == "m-1"
        assert entry.message_attributes == {"a": {"DataType": "String", "StringValue": "b"}}

    def test_from_event_record_lowercase_keys(self) -> None:
        entry = RawQueueEntry.from_sqs(
            {"messageId": "m-2", "receiptHandle": "rh-2", "body": "{}", "messageAttributes": {}}
        )
        assert entry.body == "{}"
        assert entry.acknowledgment_token == "rh-2"
        assert entry.message_id == "m-2"
        assert entry.message_attributes is None

    def test_empty_attributes_stored_as_none(self) -> None:
        entry = RawQueueEntry.from_sqs(
            {"ReceiptHandle": "rh", "Body": "{}", "MessageAttributes": {}}
        )
        assert entry.message_attributes is None

    @pytest.mark.parametrize(
        "message",
        [
            {"MessageId": "m-3", "Body": "{}"},
            {"MessageId": "m-3", "Body": "{}", "ReceiptHandle": ""},
            {"messageId": "m-3", "body": "{}", "receiptHandle": None},
        ],
    )
    def test_missing_receipt_handle_raises(self, message) -> None:
        with pytest.raises(ValueError, match="'m-3' has no receipt handle"):
            RawQueueEntry.from_sqs(message)

    def test_empty_body_preferred_over_lowercase(self) -> None:
        entry = RawQueueEntry.from_sqs({"Body": "", "body": "other", "ReceiptHandle": "rh"})
        assert entry.body == ""


class TestCompletionReport:
    """Tests for the invocation report."""

    def test_str_is_completion_message(self) -> None:
        report = CompletionReport(InvocationState.COMPLETE, allowance=5, fetched=0, processed=0)
        assert str(report) == COMPLETION_MESSAGE == "bulkTransition: INFO: Processing complete"

    def test_as_dict(self) -> None:
        report = CompletionReport(
            InvocationState.COMPLETE, allowance=5, fetched=3, processed=3, duration_ms=1.234
        )
        assert report.as_dict() == {
            "state": "complete",
            "allowance": 5,
            "fetched": 3,
            "processed": 3,
            "duration_ms": 1.23,
        }
