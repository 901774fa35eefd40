"""Exceptions for bulktq."""

from typing import Any

# ---------------------------------------------------------------------------
# Base Exception
# ---------------------------------------------------------------------------


class BulkTQError(Exception):
    """
    Base exception for all bulktq errors.

    All exceptions raised by this library inherit from this class,
    allowing callers to catch all library-specific errors with a single
    except clause.
    """

    pass


# ---------------------------------------------------------------------------
# Category Exceptions
# ---------------------------------------------------------------------------


class CapacityError(BulkTQError):
    """Base exception for capacity budget errors."""

    pass


class EnvelopeError(BulkTQError):
    """Base exception for queue message envelope errors."""

    pass


class BackendError(BulkTQError):
    """
    Base exception for external collaborator errors.

    This includes transport and service errors from the capacity gate
    and the queue backend. They are never retried locally; the next
    scheduled invocation is the retry.
    """

    pass


class ProcessingError(BulkTQError):
    """Base exception for errors raised by processing callbacks."""

    pass


class ValidationError(BulkTQError, ValueError):
    """
    Raised when an identifier or configuration value is invalid.

    Attributes:
        field: Name of the field that failed validation
        value: The rejected value
        reason: Human-readable explanation
    """

    def __init__(self, field: str, value: Any, reason: str) -> None:
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field} {value!r}: {reason}")


# ---------------------------------------------------------------------------
# Capacity Exceptions
# ---------------------------------------------------------------------------


class NoCapacityError(CapacityError):  # noqa: N818
    """
    Raised when the capacity gate reports no allowance for this invocation.

    This is an expected condition under load, not a bug. The caller should
    wait for its next scheduled trigger instead of retrying immediately.
    """

    def __init__(self, service: str, allowance: int = 0) -> None:
        self.service = service
        self.allowance = allowance
        super().__init__(f"No capacity to make a call [service={service}, allowance={allowance}]")


# ---------------------------------------------------------------------------
# Envelope Exceptions
# ---------------------------------------------------------------------------


class MalformedEnvelopeError(EnvelopeError):
    """
    Raised when a queue entry cannot be decoded.

    Attributes:
        acknowledgment_token: Receipt handle of the offending entry
        layer: "body" when the body is not JSON, "attribute" when a
            message attribute value is not JSON
        attribute: Name of the failing attribute (layer="attribute" only)
        cause: The underlying parse error
    """

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        *,
        acknowledgment_token: str | None = None,
        layer: str = "body",
        attribute: str | None = None,
    ) -> None:
        self.cause = cause
        self.acknowledgment_token = acknowledgment_token
        self.layer = layer
        self.attribute = attribute
        super().__init__(self._format_message(message))

    def _format_message(self, message: str) -> str:
        context = [f"layer={self.layer}"]
        if self.attribute:
            context.append(f"attribute={self.attribute}")
        if self.cause is not None:
            context.append(f"cause={self.cause}")
        return f"{message} [{', '.join(context)}]"


# ---------------------------------------------------------------------------
# Backend Exceptions
# ---------------------------------------------------------------------------


class _WrappedBackendError(BackendError):
    """Shared formatting for errors wrapping a transport failure."""

    def __init__(
        self,
        operation: str,
        cause: Exception | None = None,
        **context: str | None,
    ) -> None:
        self.operation = operation
        self.cause = cause
        parts = [f"{k}={v}" for k, v in context.items() if v]
        msg = f"{operation} failed"
        if cause is not None:
            msg += f": {cause}"
        if parts:
            msg += f" [{', '.join(parts)}]"
        super().__init__(msg)


class CapacityGateError(_WrappedBackendError):
    """Raised when the capacity gate cannot be read or updated."""

    def __init__(
        self,
        operation: str,
        cause: Exception | None = None,
        *,
        table_name: str | None = None,
        service: str | None = None,
    ) -> None:
        self.table_name = table_name
        self.service = service
        super().__init__(operation, cause, table=table_name, service=service)


class QueueBackendError(_WrappedBackendError):
    """Raised when a queue receive, delete or send call fails."""

    def __init__(
        self,
        operation: str,
        cause: Exception | None = None,
        *,
        queue_url: str | None = None,
    ) -> None:
        self.queue_url = queue_url
        super().__init__(operation, cause, queue=queue_url)


# ---------------------------------------------------------------------------
# Processing Exceptions
# ---------------------------------------------------------------------------


class ProcessingFailure(ProcessingError):  # noqa: N818
    """
    Raised when one or more processing callbacks fail.

    Every dispatched call has settled by the time this is raised.
    Successful calls keep their side effects.

    Attributes:
        failures: (acknowledgment_token, exception) for each failed call
        succeeded: Number of calls that completed
        total: Number of calls dispatched
    """

    def __init__(
        self,
        failures: list[tuple[str, BaseException]],
        total: int,
    ) -> None:
        if not failures:
            raise ValueError("ProcessingFailure requires at least one failure")
        self.failures = failures
        self.total = total
        self.succeeded = total - len(failures)
        first = failures[0][1]
        super().__init__(
            f"{len(failures)} of {total} messages failed processing; "
            f"first error: {type(first).__name__}: {first}"
        )

    @property
    def exceptions(self) -> list[BaseException]:
        """The exceptions raised by the failed calls."""
        return [exc for _, exc in self.failures]


# ---------------------------------------------------------------------------
# Validation Exceptions
# ---------------------------------------------------------------------------


class InvalidNameError(ValidationError):
    """Raised when a service name or account id is not usable in a queue URL."""

    pass
