"""Capacity gate: shared per-second call budget for a downstream service.

The capacity counter is the only state shared between overlapping
invocations. It lives in DynamoDB and is only ever changed with an atomic
``ADD``, so concurrent consumers cannot lose each other's usage.

Table layout (single table, one item per service per second)::

    PK = SERVICE#{service}
    SK = #SECOND#{epoch_second}
    calls = <number of calls started in that second>
    ttl = <epoch seconds after which DynamoDB may expire the item>
"""

import asyncio
import time
from typing import Any, Protocol, runtime_checkable

import aioboto3  # type: ignore[import-untyped]
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import CapacityGateError
from .log import StructuredLogger
from .models import CapacityParams

logger = StructuredLogger(__name__)

DEFAULT_TABLE_NAME = "bulktq-capacity"

COUNTER_TTL_SECONDS = 3600

PK_SERVICE_PREFIX = "SERVICE#"
SK_SECOND_PREFIX = "#SECOND#"


def pk_service(service: str) -> str:
    """Build partition key for a service's counters."""
    return f"{PK_SERVICE_PREFIX}{service}"


def sk_second(epoch_second: int) -> str:
    """Build sort key for one second's counter."""
    return f"{SK_SECOND_PREFIX}{epoch_second}"


def get_table_definition(table_name: str) -> dict[str, Any]:
    """CreateTable arguments for the capacity counter table."""
    return {
        "TableName": table_name,
        "KeySchema": [
            {"AttributeName": "PK", "KeyType": "HASH"},
            {"AttributeName": "SK", "KeyType": "RANGE"},
        ],
        "AttributeDefinitions": [
            {"AttributeName": "PK", "AttributeType": "S"},
            {"AttributeName": "SK", "AttributeType": "S"},
        ],
        "BillingMode": "PAY_PER_REQUEST",
    }


@runtime_checkable
class CapacityGateProtocol(Protocol):
    """
    Protocol for capacity accounting backends.

    The consumer treats the gate as authoritative: it never infers
    capacity locally, and ``record_usage`` must be atomic under
    concurrent callers.
    """

    async def query_allowance(self, service: str, params: CapacityParams) -> int:
        """Return how many calls may be started now (always >= 0)."""
        ...

    async def record_usage(self, service: str, count: int) -> None:
        """Add ``count`` started calls to the current window."""
        ...

    async def close(self) -> None:
        """Release the underlying client. Safe to call multiple times."""
        ...


class DynamoDBCapacityGate:
    """
    Async DynamoDB-backed capacity gate.

    Counts calls per service per wall-clock second. The allowance for the
    current second is the safe share of the throttle limit, minus the
    reserve for direct traffic, minus calls already recorded.
    """

    def __init__(
        self,
        table_name: str = DEFAULT_TABLE_NAME,
        region: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        self.table_name = table_name
        self.region = region
        self.endpoint_url = endpoint_url
        self._session: aioboto3.Session | None = None
        self._client: Any = None

    async def _get_client(self) -> Any:
        """Get or create the DynamoDB client."""
        if self._client is None:
            self._session = aioboto3.Session()
            self._client = await self._session.client(
                "dynamodb",
                region_name=self.region,
                endpoint_url=self.endpoint_url,
            ).__aenter__()
        return self._client

    async def close(self) -> None:
        """Close the DynamoDB client."""
        if self._client is not None:
            await self._client.__aexit__(None, None, None)
            self._client = None
            self._session = None

    async def __aenter__(self) -> "DynamoDBCapacityGate":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _now(self) -> float:
        """Current wall-clock time in seconds."""
        return time.time()

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    # -------------------------------------------------------------------------
    # Table operations
    # -------------------------------------------------------------------------

    async def create_table(self) -> None:
        """Create the counter table if it doesn't exist."""
        client = await self._get_client()
        try:
            await client.create_table(**get_table_definition(self.table_name))
            waiter = client.get_waiter("table_exists")
            await waiter.wait(TableName=self.table_name)
        except ClientError as e:
            if e.response["Error"]["Code"] != "ResourceInUseException":
                raise CapacityGateError("CreateTable", e, table_name=self.table_name) from e

    # -------------------------------------------------------------------------
    # Counter operations
    # -------------------------------------------------------------------------

    async def get_usage(self, service: str, epoch_second: int | None = None) -> int:
        """
        Calls recorded for ``service`` in one second.

        Args:
            service: Service name
            epoch_second: Second to read (default: the current second)

        Raises:
            CapacityGateError: If the read fails
        """
        second = int(self._now()) if epoch_second is None else epoch_second
        client = await self._get_client()
        try:
            response = await client.get_item(
                TableName=self.table_name,
                Key={
                    "PK": {"S": pk_service(service)},
                    "SK": {"S": sk_second(second)},
                },
                ConsistentRead=True,
            )
        except (ClientError, BotoCoreError) as e:
            raise CapacityGateError(
                "GetItem", e, table_name=self.table_name, service=service
            ) from e

        item = response.get("Item")
        if not item or "calls" not in item:
            return 0
        return int(item["calls"]["N"])

    async def query_allowance(self, service: str, params: CapacityParams) -> int:
        """
        Return the number of calls that may be started this second.

        When nothing is available and ``params.retry_count`` allows it, waits
        for the next second and checks again.

        Raises:
            CapacityGateError: If the counter cannot be read
        """
        attempts = params.retry_count + 1
        allowance = 0
        for attempt in range(attempts):
            now = self._now()
            used = await self.get_usage(service, int(now))
            allowance = max(0, params.ceiling - used)
            logger.debug(
                "Capacity checked",
                service=service,
                ceiling=params.ceiling,
                used=used,
                allowance=allowance,
                attempt=attempt + 1,
            )
            if allowance > 0 or attempt + 1 == attempts:
                break
            await self._sleep(max(0.0, int(now) + 1 - now))
        return allowance

    async def record_usage(self, service: str, count: int) -> None:
        """
        Atomically add ``count`` calls to the current second.

        Raises:
            ValueError: If ``count`` is negative
            CapacityGateError: If the update fails
        """
        if count < 0:
            raise ValueError("count must be non-negative")
        if count == 0:
            return

        second = int(self._now())
        client = await self._get_client()
        try:
            await client.update_item(
                TableName=self.table_name,
                Key={
                    "PK": {"S": pk_service(service)},
                    "SK": {"S": sk_second(second)},
                },
                UpdateExpression="ADD #calls :n SET #ttl = :ttl",
                ExpressionAttributeNames={"#calls": "calls", "#ttl": "ttl"},
                ExpressionAttributeValues={
                    ":n": {"N": str(count)},
                    ":ttl": {"N": str(second + COUNTER_TTL_SECONDS)},
                },
            )
        except (ClientError, BotoCoreError) as e:
            raise CapacityGateError(
                "UpdateItem", e, table_name=self.table_name, service=service
            ) from e
