"""Core models for bulktq."""

import math
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

MAX_CHUNK_SIZE = 10
"""SQS ReceiveMessage ceiling for MaxNumberOfMessages."""

COMPLETION_MESSAGE = "bulkTransition: INFO: Processing complete"


@dataclass(frozen=True)
class RawQueueEntry:
    """
    A message as returned by the queue backend.

    Attributes:
        body: Raw message body, usually a JSON-encoded SNS envelope
        acknowledgment_token: Receipt handle used to delete the entry
        message_attributes: SQS message attributes, if any were requested
        message_id: SQS message id (for logging only)
    """

    body: str
    acknowledgment_token: str
    message_attributes: dict[str, Any] | None = None
    message_id: str | None = None

    @classmethod
    def from_sqs(cls, message: dict[str, Any]) -> "RawQueueEntry":
        """
        Build an entry from a boto SQS message or an SQS event record.

        An empty attribute mapping is stored as None.

        Raises:
            ValueError: If the message has no receipt handle
        """
        body = message.get("Body")
        if body is None:
            body = message.get("body", "")
        receipt_handle = message.get("ReceiptHandle") or message.get("receiptHandle")
        if not receipt_handle:
            raise ValueError(
                f"SQS message {message.get('MessageId') or message.get('messageId')!r} "
                "has no receipt handle"
            )
        return cls(
            body=body,
            acknowledgment_token=receipt_handle,
            message_attributes=(
                message.get("MessageAttributes") or message.get("messageAttributes") or None
            ),
            message_id=message.get("MessageId") or message.get("messageId"),
        )


@dataclass(frozen=True)
class DecodedMessage:
    """
    Normalized form of a queue entry handed to the processing function.

    Attributes:
        payload: The inner SNS ``Message``, deep-parsed if it was JSON
        attributes: Flattened SNS message attributes
        acknowledgment_token: Receipt handle, carried through unchanged
    """

    payload: Any
    attributes: dict[str, Any] = field(default_factory=dict)
    acknowledgment_token: str = ""


@dataclass(frozen=True)
class FetchChunkPlan:
    """
    Sizes of the ReceiveMessage calls needed to fetch a budget.

    Each size is between 1 and ``MAX_CHUNK_SIZE``; the number of chunks
    is ``ceil(budget / MAX_CHUNK_SIZE)``.
    """

    sizes: tuple[int, ...] = ()

    @classmethod
    def for_budget(cls, budget: int, max_chunk_size: int = MAX_CHUNK_SIZE) -> "FetchChunkPlan":
        """
        Split ``budget`` into chunks of at most ``max_chunk_size``.

        Example:
            >>> FetchChunkPlan.for_budget(23).sizes
            (10, 10, 3)
        """
        if budget < 0:
            raise ValueError("budget must be non-negative")
        if max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be positive")
        full, rest = divmod(budget, max_chunk_size)
        sizes = (max_chunk_size,) * full
        if rest:
            sizes += (rest,)
        return cls(sizes)

    @staticmethod
    def request_count(budget: int, max_chunk_size: int = MAX_CHUNK_SIZE) -> int:
        """Number of fetch requests for ``budget`` (for display/debugging)."""
        return math.ceil(budget / max_chunk_size)

    @property
    def total(self) -> int:
        """Total messages requested across all chunks."""
        return sum(self.sizes)

    def __len__(self) -> int:
        return len(self.sizes)

    def __iter__(self) -> Iterator[int]:
        return iter(self.sizes)

    def __str__(self) -> str:
        return ",".join(str(s) for s in self.sizes)


@dataclass(frozen=True)
class CapacityParams:
    """
    Throttle configuration handed to the capacity gate.

    Attributes:
        throttle_limit: Calls per second the downstream service accepts
        safe_throttle_pct: Fraction of the limit the bulk path may use
        reserve_for_direct: Calls per second held back for direct traffic
        retry_count: Extra allowance checks when none is available
    """

    throttle_limit: int
    safe_throttle_pct: float = 1.0
    reserve_for_direct: int = 0
    retry_count: int = 0

    def __post_init__(self) -> None:
        if self.throttle_limit < 0:
            raise ValueError("throttle_limit must be non-negative")
        if not 0 < self.safe_throttle_pct <= 1:
            raise ValueError("safe_throttle_pct must be in (0, 1]")
        if self.reserve_for_direct < 0:
            raise ValueError("reserve_for_direct must be non-negative")
        if self.retry_count < 0:
            raise ValueError("retry_count must be non-negative")

    @property
    def ceiling(self) -> int:
        """Bulk calls allowed per second before any usage is counted."""
        usable = math.floor(self.throttle_limit * self.safe_throttle_pct)
        return max(0, usable - self.reserve_for_direct)


class InvocationState(Enum):
    """Lifecycle of a single consumer invocation."""

    START = "start"
    CAPACITY_CHECKED = "capacity_checked"
    FETCHED = "fetched"
    USAGE_RECORDED = "usage_recorded"
    DISPATCHED = "dispatched"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class CompletionReport:
    """Result of a successful invocation."""

    state: InvocationState
    allowance: int
    fetched: int
    processed: int
    duration_ms: float = 0.0
    message: str = COMPLETION_MESSAGE

    def __str__(self) -> str:
        return self.message

    def as_dict(self) -> dict[str, Any]:
        """Serialize for logging."""
        return {
            "state": self.state.value,
            "allowance": self.allowance,
            "fetched": self.fetched,
            "processed": self.processed,
            "duration_ms": round(self.duration_ms, 2),
        }
