"""Queue naming utilities.

This module provides validation and formatting for the bulk transition
queue identifiers. The queue URL format is fixed:
``https://sqs.{region}.amazonaws.com/{account_id}/{service}-bulktq``.

SQS queue names are limited to 80 characters of alphanumerics, hyphens
and underscores, so service names are capped at 73 characters to leave
room for the ``-bulktq`` suffix.
"""

import re

from .exceptions import InvalidNameError

QUEUE_SUFFIX = "-bulktq"

SQS_HOST_TEMPLATE = "sqs.{region}.amazonaws.com"

MAX_SERVICE_NAME_LENGTH = 80 - len(QUEUE_SUFFIX)

# - Alphanumeric, hyphens and underscores
# - Must start with a letter
SERVICE_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")

ACCOUNT_ID_PATTERN = re.compile(r"^\d{12}$")

REGION_PATTERN = re.compile(r"^[a-z]{2}(-[a-z]+)+-\d$")


def validate_service_name(service: str) -> None:
    """
    Validate a service name used to derive the queue name.

    Args:
        service: The service identifier

    Raises:
        InvalidNameError: If the name cannot form a valid SQS queue name
    """
    if not service:
        raise InvalidNameError("service", service, "Service name cannot be empty")

    if " " in service:
        raise InvalidNameError(
            "service",
            service,
            "Contains spaces. Use hyphens instead (e.g., 'my-service' not 'my service')",
        )

    if not SERVICE_NAME_PATTERN.match(service):
        raise InvalidNameError(
            "service",
            service,
            "Must start with a letter and contain only alphanumeric characters, "
            "hyphens and underscores.",
        )

    if len(service) > MAX_SERVICE_NAME_LENGTH:
        raise InvalidNameError(
            "service",
            service,
            f"Too long. Service name exceeds {MAX_SERVICE_NAME_LENGTH} characters "
            "(SQS queue name limit).",
        )


def validate_account_id(account_id: str) -> None:
    """Raise InvalidNameError unless ``account_id`` is a 12-digit AWS account id."""
    if not ACCOUNT_ID_PATTERN.match(account_id or ""):
        raise InvalidNameError("account_id", account_id, "Must be a 12-digit AWS account id")


def validate_region(region: str) -> None:
    """Raise InvalidNameError unless ``region`` looks like an AWS region name."""
    if not REGION_PATTERN.match(region or ""):
        raise InvalidNameError("region", region, "Not an AWS region name (e.g., 'us-east-1')")


def queue_name(service: str) -> str:
    """Return the bulk transition queue name for ``service``."""
    validate_service_name(service)
    return f"{service}{QUEUE_SUFFIX}"


def queue_url(region: str, account_id: str, service: str) -> str:
    """
    Build the bulk transition queue URL.

    Example:
        >>> queue_url("us-east-1", "123456789012", "orders")
        'https://sqs.us-east-1.amazonaws.com/123456789012/orders-bulktq'

    Raises:
        InvalidNameError: If any component is invalid
    """
    validate_region(region)
    validate_account_id(account_id)
    host = SQS_HOST_TEMPLATE.format(region=region)
    return f"https://{host}/{account_id}/{queue_name(service)}"
