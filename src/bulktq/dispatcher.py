"""Capacity-bounded batch dispatch.

One invocation runs through a fixed sequence of states::

    START -> CAPACITY_CHECKED -> FETCHED -> USAGE_RECORDED -> DISPATCHED -> COMPLETE
                    |               |
                    |               +-> COMPLETE (nothing fetched)
                    +-> FAILED (no capacity)

Any error on the way moves the invocation to FAILED and is re-raised.
Usage is recorded before dispatch, so a concurrent invocation reading the
gate sees this batch as already spent.
"""

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable
from typing import Any

from .capacity import CapacityGateProtocol, DynamoDBCapacityGate
from .config import ConsumerConfig
from .envelope import decode
from .exceptions import NoCapacityError, ProcessingFailure
from .log import StructuredLogger
from .models import CapacityParams, CompletionReport, DecodedMessage, InvocationState
from .queue import (
    DEFAULT_VISIBILITY_TIMEOUT,
    DEFAULT_WAIT_SECONDS,
    QueueBackendProtocol,
    SQSQueueBackend,
    fetch_messages,
)

logger = StructuredLogger(__name__)

ProcessFn = Callable[[DecodedMessage], Any] | Callable[[DecodedMessage], Awaitable[Any]]


def _is_async_callable(fn: Any) -> bool:
    return inspect.iscoroutinefunction(fn) or inspect.iscoroutinefunction(
        getattr(fn, "__call__", None)
    )


async def call_process_fn(process_fn: ProcessFn, message: DecodedMessage) -> Any:
    """Run a sync or async processing function for one message."""
    if _is_async_callable(process_fn):
        return await process_fn(message)  # type: ignore[misc]
    result = await asyncio.to_thread(process_fn, message)
    if inspect.isawaitable(result):
        return await result
    return result


def acknowledging(
    process_fn: ProcessFn,
    queue: QueueBackendProtocol,
    queue_url: str,
) -> Callable[[DecodedMessage], Awaitable[Any]]:
    """
    Wrap ``process_fn`` so the entry is deleted after it succeeds.

    If ``process_fn`` raises, the entry is left on the queue and becomes
    visible again once its visibility timeout lapses.

    Example:
        async with BulkConsumer.from_config(config) as consumer:
            await consumer.run(
                config.capacity_params,
                acknowledging(handle_transition, consumer.queue, config.queue_url),
            )
    """

    async def _process_and_delete(message: DecodedMessage) -> Any:
        result = await call_process_fn(process_fn, message)
        await queue.delete_entry(queue_url, message.acknowledgment_token)
        return result

    return _process_and_delete


class BulkConsumer:
    """
    Consumes one capacity-bounded batch from a bulk transition queue.

    The consumer is stateless between invocations: everything it knows
    about capacity comes from the capacity gate, and redelivery of failed
    entries is left to the queue's visibility timeout.
    """

    def __init__(
        self,
        capacity_gate: CapacityGateProtocol,
        queue: QueueBackendProtocol,
        service: str,
        queue_url: str,
        *,
        visibility_timeout: int = DEFAULT_VISIBILITY_TIMEOUT,
        wait_seconds: int = DEFAULT_WAIT_SECONDS,
    ) -> None:
        self.capacity_gate = capacity_gate
        self.queue = queue
        self.service = service
        self.queue_url = queue_url
        self.visibility_timeout = visibility_timeout
        self.wait_seconds = wait_seconds

    @classmethod
    def from_config(cls, config: ConsumerConfig) -> "BulkConsumer":
        """Build a consumer backed by DynamoDB and SQS."""
        return cls(
            capacity_gate=DynamoDBCapacityGate(
                table_name=config.capacity_table,
                region=config.region,
                endpoint_url=config.endpoint_url,
            ),
            queue=SQSQueueBackend(region=config.region, endpoint_url=config.endpoint_url),
            service=config.service,
            queue_url=config.queue_url,
            visibility_timeout=config.visibility_timeout,
            wait_seconds=config.wait_seconds,
        )

    async def close(self) -> None:
        """Close both backends."""
        await self.capacity_gate.close()
        await self.queue.close()

    async def __aenter__(self) -> "BulkConsumer":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _transition(self, state: InvocationState, **extra: Any) -> InvocationState:
        logger.debug("State transition", service=self.service, state=state.value, **extra)
        return state

    async def run(self, params: CapacityParams, process_fn: ProcessFn) -> CompletionReport:
        """
        Run one invocation.

        Args:
            params: Throttle settings for the capacity gate
            process_fn: Called once per decoded message, sync or async.
                Deleting the entry after success is its responsibility
                (see ``acknowledging``).

        Returns:
            CompletionReport (also when nothing was fetched)

        Raises:
            NoCapacityError: If the gate reports no allowance
            MalformedEnvelopeError: If any fetched entry cannot be decoded
            ProcessingFailure: If any processing call fails, after all settle
            CapacityGateError: If the gate cannot be read or updated
            QueueBackendError: If fetching fails
        """
        start_time = time.perf_counter()
        state = InvocationState.START
        allowance = 0
        fetched = 0

        def elapsed_ms() -> float:
            return (time.perf_counter() - start_time) * 1000

        try:
            allowance = await self.capacity_gate.query_allowance(self.service, params)
            state = self._transition(InvocationState.CAPACITY_CHECKED, allowance=allowance)
            if allowance < 1:
                raise NoCapacityError(self.service, allowance)

            entries = await fetch_messages(
                self.queue,
                allowance,
                self.queue_url,
                visibility_timeout=self.visibility_timeout,
                wait_seconds=self.wait_seconds,
            )
            fetched = len(entries)
            state = self._transition(InvocationState.FETCHED, fetched=fetched)
            logger.info(
                "Processing event",
                service=self.service,
                allowance=allowance,
                message_count=fetched,
            )

            if not entries:
                state = self._transition(InvocationState.COMPLETE)
                return CompletionReport(
                    state=state,
                    allowance=allowance,
                    fetched=0,
                    processed=0,
                    duration_ms=elapsed_ms(),
                )

            await self.capacity_gate.record_usage(self.service, fetched)
            state = self._transition(InvocationState.USAGE_RECORDED, recorded=fetched)

            messages = [decode(entry) for entry in entries]
            results = await asyncio.gather(
                *(call_process_fn(process_fn, message) for message in messages),
                return_exceptions=True,
            )
            state = self._transition(InvocationState.DISPATCHED, dispatched=len(messages))

            failures = [
                (message.acknowledgment_token, result)
                for message, result in zip(messages, results, strict=True)
                if isinstance(result, BaseException)
            ]
            if failures:
                raise ProcessingFailure(failures, total=len(messages)) from failures[0][1]

            state = self._transition(InvocationState.COMPLETE)
            return CompletionReport(
                state=state,
                allowance=allowance,
                fetched=fetched,
                processed=len(messages),
                duration_ms=elapsed_ms(),
            )
        except Exception as e:
            self._transition(InvocationState.FAILED, failed_in=state.value)
            logger.error(
                "Invocation failed",
                service=self.service,
                failed_in=state.value,
                allowance=allowance,
                fetched=fetched,
                error=f"{type(e).__name__}: {e}",
            )
            raise


async def run_bulk_transition(
    config: ConsumerConfig,
    process_fn: ProcessFn,
    *,
    acknowledge: bool = False,
) -> CompletionReport:
    """
    Run one invocation against the configured DynamoDB table and SQS queue.

    Args:
        config: Consumer configuration
        process_fn: Processing function
        acknowledge: Delete each entry after ``process_fn`` succeeds
    """
    async with BulkConsumer.from_config(config) as consumer:
        if acknowledge:
            process_fn = acknowledging(process_fn, consumer.queue, consumer.queue_url)
        return await consumer.run(config.capacity_params, process_fn)
