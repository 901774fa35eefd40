"""
bulktq: capacity-bounded consumer for SNS-fed SQS bulk transition queues.

Each invocation asks a shared capacity gate how many calls it may start,
fetches at most that many messages in parallel chunks of 10, records the
actual count as used, decodes the SNS envelopes and processes every
message concurrently.

Example:
    from bulktq import BulkConsumer, ConsumerConfig, acknowledging

    config = ConsumerConfig(service="orders", account_id="123456789012")

    async def transition(message):
        await move_to_cold_storage(message.payload["object_key"])

    async with BulkConsumer.from_config(config) as consumer:
        report = await consumer.run(
            config.capacity_params,
            acknowledging(transition, consumer.queue, config.queue_url),
        )
"""

# ---------------------------------------------------------------------------
# Lazy imports for Lambda compatibility
# ---------------------------------------------------------------------------
# BulkConsumer, SQSQueueBackend, DynamoDBCapacityGate and friends depend on
# aioboto3, which is NOT part of the AWS Lambda runtime. Deferring them via
# __getattr__ keeps the envelope decoder and models importable with boto3
# alone.
# ---------------------------------------------------------------------------
from typing import TYPE_CHECKING

from .envelope import decode, deep_parse_json, encode, unmarshall_attributes
from .exceptions import (
    BackendError,
    BulkTQError,
    CapacityError,
    CapacityGateError,
    EnvelopeError,
    InvalidNameError,
    MalformedEnvelopeError,
    NoCapacityError,
    ProcessingError,
    ProcessingFailure,
    QueueBackendError,
    ValidationError,
)
from .models import (
    CapacityParams,
    CompletionReport,
    DecodedMessage,
    FetchChunkPlan,
    InvocationState,
    RawQueueEntry,
)
from .naming import queue_url

if TYPE_CHECKING:
    from .capacity import CapacityGateProtocol as CapacityGateProtocol
    from .capacity import DynamoDBCapacityGate as DynamoDBCapacityGate
    from .config import ConsumerConfig as ConsumerConfig
    from .dispatcher import BulkConsumer as BulkConsumer
    from .dispatcher import acknowledging as acknowledging
    from .dispatcher import run_bulk_transition as run_bulk_transition
    from .queue import QueueBackendProtocol as QueueBackendProtocol
    from .queue import SQSQueueBackend as SQSQueueBackend
    from .queue import fetch_messages as fetch_messages

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Main classes
    "BulkConsumer",
    "ConsumerConfig",
    "DynamoDBCapacityGate",
    "SQSQueueBackend",
    "CapacityGateProtocol",
    "QueueBackendProtocol",
    # Operations
    "acknowledging",
    "decode",
    "deep_parse_json",
    "encode",
    "fetch_messages",
    "queue_url",
    "run_bulk_transition",
    "unmarshall_attributes",
    # Models
    "CapacityParams",
    "CompletionReport",
    "DecodedMessage",
    "FetchChunkPlan",
    "InvocationState",
    "RawQueueEntry",
    # Exceptions - Base
    "BulkTQError",
    # Exceptions - Categories
    "CapacityError",
    "EnvelopeError",
    "BackendError",
    "ProcessingError",
    "ValidationError",
    # Exceptions
    "NoCapacityError",
    "MalformedEnvelopeError",
    "CapacityGateError",
    "QueueBackendError",
    "ProcessingFailure",
    "InvalidNameError",
]

_LAZY = {
    "BulkConsumer": ".dispatcher",
    "acknowledging": ".dispatcher",
    "run_bulk_transition": ".dispatcher",
    "ConsumerConfig": ".config",
    "DynamoDBCapacityGate": ".capacity",
    "CapacityGateProtocol": ".capacity",
    "SQSQueueBackend": ".queue",
    "QueueBackendProtocol": ".queue",
    "fetch_messages": ".queue",
}


def __getattr__(name: str) -> object:
    """Lazy import for names that require aioboto3.

    See Also:
        PEP 562 -- Module __getattr__ and __dir__
    """
    if name in _LAZY:
        import importlib

        module = importlib.import_module(_LAZY[name], __name__)
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
