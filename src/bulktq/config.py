"""Consumer configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .capacity import DEFAULT_TABLE_NAME
from .models import CapacityParams
from .naming import queue_url
from .queue import DEFAULT_VISIBILITY_TIMEOUT, DEFAULT_WAIT_SECONDS


@dataclass
class ConsumerConfig:
    """Configuration for one bulk transition consumer."""

    # Target queue
    service: str
    account_id: str
    region: str = "us-east-1"
    endpoint_url: str | None = None

    # Capacity gate
    capacity_table: str = DEFAULT_TABLE_NAME
    throttle_limit: int = 10
    safe_throttle_pct: float = 0.8
    reserve_for_direct: int = 0
    capacity_retries: int = 0

    # Fetching
    visibility_timeout: int = DEFAULT_VISIBILITY_TIMEOUT
    wait_seconds: int = DEFAULT_WAIT_SECONDS

    @property
    def queue_url(self) -> str:
        """URL of the service's bulk transition queue."""
        return queue_url(self.region, self.account_id, self.service)

    @property
    def capacity_params(self) -> CapacityParams:
        """Throttle settings for the capacity gate."""
        return CapacityParams(
            throttle_limit=self.throttle_limit,
            safe_throttle_pct=self.safe_throttle_pct,
            reserve_for_direct=self.reserve_for_direct,
            retry_count=self.capacity_retries,
        )

    @classmethod
    def from_environment(cls) -> ConsumerConfig:
        """
        Create ConsumerConfig from environment variables.

        Environment variables:
            BULKTQ_SERVICE: Service name (required)
            BULKTQ_ACCOUNT_ID: AWS account owning the queue (required)
            AWS_REGION: Region (default: us-east-1)
            AWS_ENDPOINT_URL: Custom endpoint, e.g. LocalStack (optional)
            BULKTQ_CAPACITY_TABLE: Counter table (default: bulktq-capacity)
            BULKTQ_THROTTLE_LIMIT: Downstream calls per second (default: 10)
            BULKTQ_SAFE_THROTTLE_PCT: Usable share of the limit (default: 0.8)
            BULKTQ_RESERVE_FOR_DIRECT: Calls/second kept for direct use (default: 0)
            BULKTQ_CAPACITY_RETRIES: Extra allowance checks (default: 0)
            BULKTQ_VISIBILITY_TIMEOUT: Seconds entries stay hidden (default: 900)
            BULKTQ_WAIT_SECONDS: Long-poll wait per fetch (default: 10)
        """
        return cls(
            service=os.environ["BULKTQ_SERVICE"],
            account_id=os.environ["BULKTQ_ACCOUNT_ID"],
            region=os.environ.get("AWS_REGION", "us-east-1"),
            endpoint_url=os.environ.get("AWS_ENDPOINT_URL") or None,
            capacity_table=os.environ.get("BULKTQ_CAPACITY_TABLE", DEFAULT_TABLE_NAME),
            throttle_limit=int(os.environ.get("BULKTQ_THROTTLE_LIMIT", "10")),
            safe_throttle_pct=float(os.environ.get("BULKTQ_SAFE_THROTTLE_PCT", "0.8")),
            reserve_for_direct=int(os.environ.get("BULKTQ_RESERVE_FOR_DIRECT", "0")),
            capacity_retries=int(os.environ.get("BULKTQ_CAPACITY_RETRIES", "0")),
            visibility_timeout=int(
                os.environ.get("BULKTQ_VISIBILITY_TIMEOUT", str(DEFAULT_VISIBILITY_TIMEOUT))
            ),
            wait_seconds=int(os.environ.get("BULKTQ_WAIT_SECONDS", str(DEFAULT_WAIT_SECONDS))),
        )
