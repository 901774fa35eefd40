"""Queue backend and chunked fetching for the bulk transition queue."""

import asyncio
from typing import Any, Protocol, runtime_checkable

import aioboto3  # type: ignore[import-untyped]
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import QueueBackendError
from .log import StructuredLogger
from .models import MAX_CHUNK_SIZE, FetchChunkPlan, RawQueueEntry

logger = StructuredLogger(__name__)

DEFAULT_VISIBILITY_TIMEOUT = 900
"""Seconds a fetched entry stays hidden; matches the longest Lambda run."""

DEFAULT_WAIT_SECONDS = 10
"""Long-poll wait per ReceiveMessage call."""


@runtime_checkable
class QueueBackendProtocol(Protocol):
    """
    Protocol for queue backends.

    Duck typing - no inheritance needed. ``SQSQueueBackend`` is the
    production implementation; tests supply in-memory fakes.
    """

    async def receive_batch(
        self,
        queue_url: str,
        max_count: int,
        visibility_timeout: int = DEFAULT_VISIBILITY_TIMEOUT,
        wait_seconds: int = DEFAULT_WAIT_SECONDS,
    ) -> list[RawQueueEntry]:
        """Receive up to ``max_count`` (1-10) entries; may return fewer."""
        ...

    async def delete_entry(self, queue_url: str, acknowledgment_token: str) -> None:
        """Remove an entry using its receipt handle."""
        ...

    async def send_entry(
        self,
        queue_url: str,
        body: str,
        attributes: dict[str, Any] | None = None,
    ) -> str:
        """Enqueue ``body`` and return the message id."""
        ...

    async def close(self) -> None:
        """Release the underlying client. Safe to call multiple times."""
        ...


class SQSQueueBackend:
    """
    Async SQS queue backend.

    The client is created lazily on first use and shared by every
    concurrent call made through this backend.
    """

    def __init__(
        self,
        region: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        self.region = region
        self.endpoint_url = endpoint_url
        self._session: aioboto3.Session | None = None
        self._client: Any = None
        self._client_lock = asyncio.Lock()

    async def _get_client(self) -> Any:
        """Get or create the SQS client."""
        async with self._client_lock:
            if self._client is None:
                self._session = aioboto3.Session()
                self._client = await self._session.client(
                    "sqs",
                    region_name=self.region,
                    endpoint_url=self.endpoint_url,
                ).__aenter__()
        return self._client

    async def close(self) -> None:
        """Close the SQS client."""
        if self._client is not None:
            await self._client.__aexit__(None, None, None)
            self._client = None
            self._session = None

    async def __aenter__(self) -> "SQSQueueBackend":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def receive_batch(
        self,
        queue_url: str,
        max_count: int,
        visibility_timeout: int = DEFAULT_VISIBILITY_TIMEOUT,
        wait_seconds: int = DEFAULT_WAIT_SECONDS,
    ) -> list[RawQueueEntry]:
        """
        Receive up to ``max_count`` entries with a long poll.

        Raises:
            ValueError: If ``max_count`` is outside 1..10
            QueueBackendError: If the ReceiveMessage call fails
        """
        if not 1 <= max_count <= MAX_CHUNK_SIZE:
            raise ValueError(f"max_count must be between 1 and {MAX_CHUNK_SIZE}")

        client = await self._get_client()
        try:
            response = await client.receive_message(
                QueueUrl=queue_url,
                MaxNumberOfMessages=max_count,
                VisibilityTimeout=visibility_timeout,
                WaitTimeSeconds=wait_seconds,
                MessageAttributeNames=["All"],
            )
        except (ClientError, BotoCoreError) as e:
            raise QueueBackendError("ReceiveMessage", e, queue_url=queue_url) from e

        return [RawQueueEntry.from_sqs(m) for m in response.get("Messages", [])]

    async def delete_entry(self, queue_url: str, acknowledgment_token: str) -> None:
        """
        Delete an entry from the queue.

        Raises:
            QueueBackendError: If the DeleteMessage call fails
        """
        client = await self._get_client()
        try:
            await client.delete_message(QueueUrl=queue_url, ReceiptHandle=acknowledgment_token)
        except (ClientError, BotoCoreError) as e:
            raise QueueBackendError("DeleteMessage", e, queue_url=queue_url) from e

    async def send_entry(
        self,
        queue_url: str,
        body: str,
        attributes: dict[str, Any] | None = None,
    ) -> str:
        """
        Send a message to the queue.

        Args:
            queue_url: Target queue
            body: Message body
            attributes: Optional SQS message attributes
                (``{name: {"DataType": ..., "StringValue": ...}}``)

        Returns:
            The SQS message id

        Raises:
            QueueBackendError: If the SendMessage call fails
        """
        client = await self._get_client()
        params: dict[str, Any] = {"QueueUrl": queue_url, "MessageBody": body}
        if attributes:
            params["MessageAttributes"] = attributes
        try:
            response = await client.send_message(**params)
        except (ClientError, BotoCoreError) as e:
            raise QueueBackendError("SendMessage", e, queue_url=queue_url) from e
        return str(response["MessageId"])


async def fetch_messages(
    queue: QueueBackendProtocol,
    budget: int,
    queue_url: str,
    *,
    visibility_timeout: int = DEFAULT_VISIBILITY_TIMEOUT,
    wait_seconds: int = DEFAULT_WAIT_SECONDS,
) -> list[RawQueueEntry]:
    """
    Fetch up to ``budget`` entries using concurrent bounded receives.

    Issues ``ceil(budget / 10)`` ReceiveMessage calls at once. A chunk that
    comes back short or empty is not retried, so the result may hold fewer
    than ``budget`` entries. Results are concatenated in chunk order.

    Args:
        queue: Queue backend
        budget: Maximum number of entries to fetch
        queue_url: Queue to fetch from
        visibility_timeout: Seconds fetched entries stay hidden
        wait_seconds: Long-poll wait per call

    Returns:
        Between 0 and ``budget`` raw entries

    Raises:
        QueueBackendError: If any receive call fails
    """
    plan = FetchChunkPlan.for_budget(budget)
    if not plan:
        return []

    logger.debug(
        "Fetching messages",
        queue_url=queue_url,
        budget=budget,
        chunks=str(plan),
    )
    responses = await asyncio.gather(
        *(
            queue.receive_batch(
                queue_url,
                size,
                visibility_timeout=visibility_timeout,
                wait_seconds=wait_seconds,
            )
            for size in plan
        )
    )

    entries: list[RawQueueEntry] = []
    for chunk in responses:
        entries.extend(chunk)

    if len(entries) > budget:
        logger.warning(
            "Queue returned more entries than requested",
            requested=budget,
            received=len(entries),
        )
        entries = entries[:budget]
    return entries
