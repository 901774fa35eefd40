"""SNS-in-SQS envelope decoding.

A bulk transition queue entry carries an SNS notification as its body::

    {
        "Type": "Notification",
        "Message": "{\\"x\\": 1}",
        "MessageAttributes": {
            "k": {"Type": "Number", "Value": "5"},
            "ids": {"Type": "String.Array", "Value": "[1, 2, 3]"}
        },
        ...
    }

Decoding deep-parses the body (strings holding JSON are replaced by their
parsed form, at any depth; numeric strings are left alone) and flattens
the SNS attributes into a plain mapping.
"""

import json
from typing import Any

from .exceptions import MalformedEnvelopeError
from .log import StructuredLogger
from .models import DecodedMessage, RawQueueEntry

logger = StructuredLogger(__name__)

DEFAULT_MAX_DEPTH = 32

# Attribute types whose Value is kept verbatim; every other type is JSON.
VERBATIM_TYPES = frozenset({"String", "Number"})


def _is_numeric(value: str) -> bool:
    try:
        float(value)
    except ValueError:
        return False
    return True


def normalize(value: Any, max_depth: int = DEFAULT_MAX_DEPTH) -> Any:
    """
    Recursively replace JSON-bearing strings in a value tree.

    Any string that parses as JSON is replaced by its parsed form, so
    ``"true"`` becomes ``True`` and a doubly encoded object unwraps fully.
    Numeric strings such as ``"5"`` stay strings. Nesting deeper than
    ``max_depth`` is returned untouched.
    """
    if max_depth < 0:
        return value
    if isinstance(value, str):
        if _is_numeric(value):
            return value
        try:
            parsed = json.loads(value)
        except (ValueError, RecursionError):
            return value
        return normalize(parsed, max_depth - 1)
    if isinstance(value, dict):
        return {k: normalize(v, max_depth - 1) for k, v in value.items()}
    if isinstance(value, list):
        return [normalize(v, max_depth - 1) for v in value]
    return value


def deep_parse_json(text: str, max_depth: int = DEFAULT_MAX_DEPTH) -> Any:
    """
    Parse ``text`` as JSON and deep-parse any nested JSON strings.

    Parsing an already deep-parsed document's serialization yields the
    same value (the operation is idempotent).

    Raises:
        ValueError: If ``text`` is not valid JSON
    """
    return normalize(json.loads(text), max_depth)


def unmarshall_attributes(
    attributes: dict[str, Any],
    acknowledgment_token: str | None = None,
) -> dict[str, Any]:
    """
    Flatten SNS ``{Type, Value}`` attributes to ``{name: value}``.

    ``String`` and ``Number`` values are kept as they are (numbers are not
    coerced); values of any other type are JSON-decoded.

    Raises:
        MalformedEnvelopeError: If an attribute is not a ``{Type, Value}``
            pair or a non-verbatim value is not valid JSON
    """
    result: dict[str, Any] = {}
    for name, attribute in attributes.items():
        if not isinstance(attribute, dict) or "Value" not in attribute:
            raise MalformedEnvelopeError(
                "Message attribute is not a {Type, Value} pair",
                acknowledgment_token=acknowledgment_token,
                layer="attribute",
                attribute=name,
            )
        attr_type = attribute.get("Type")
        value = attribute["Value"]
        if attr_type in VERBATIM_TYPES or not isinstance(value, str):
            # Deep parsing may already have turned a JSON value into a structure
            result[name] = value
            continue
        try:
            result[name] = json.loads(value)
        except ValueError as e:
            raise MalformedEnvelopeError(
                f"Message attribute of type {attr_type} is not JSON",
                cause=e,
                acknowledgment_token=acknowledgment_token,
                layer="attribute",
                attribute=name,
            ) from e
    return result


def decode(entry: RawQueueEntry) -> DecodedMessage:
    """
    Decode a raw queue entry into its SNS payload and attributes.

    Args:
        entry: Entry returned by the queue backend

    Returns:
        DecodedMessage with the deep-parsed ``Message`` as payload

    Raises:
        MalformedEnvelopeError: If the body is not a JSON object or an
            attribute cannot be decoded
    """
    try:
        envelope = deep_parse_json(entry.body)
    except (TypeError, ValueError, RecursionError) as e:
        logger.error(
            "Did not get a JSON parsable message in body",
            message_id=entry.message_id,
        )
        raise MalformedEnvelopeError(
            "Queue entry body is not JSON",
            cause=e,
            acknowledgment_token=entry.acknowledgment_token,
        ) from e

    if not isinstance(envelope, dict):
        logger.error(
            "Queue entry body is not a notification envelope",
            message_id=entry.message_id,
            body_type=type(envelope).__name__,
        )
        raise MalformedEnvelopeError(
            f"Queue entry body is a JSON {type(envelope).__name__}, not an object",
            acknowledgment_token=entry.acknowledgment_token,
        )

    attributes: dict[str, Any] = {}
    raw_attributes = envelope.get("MessageAttributes")
    if raw_attributes is not None:
        if not isinstance(raw_attributes, dict):
            raise MalformedEnvelopeError(
                "MessageAttributes is not an object",
                acknowledgment_token=entry.acknowledgment_token,
                layer="attribute",
            )
        attributes = unmarshall_attributes(raw_attributes, entry.acknowledgment_token)

    return DecodedMessage(
        payload=envelope.get("Message"),
        attributes=attributes,
        acknowledgment_token=entry.acknowledgment_token,
    )


def encode(
    payload: Any,
    attributes: dict[str, Any] | None = None,
    *,
    typed_attributes: dict[str, tuple[str, str]] | None = None,
) -> str:
    """
    Build an SNS-style envelope body for ``payload``.

    Args:
        payload: Message; non-strings are JSON-encoded
        attributes: Values whose SNS type is inferred. Strings and numbers
            become ``String`` / ``Number``; any other value is JSON-encoded
            under the ``String.Array`` type.
        typed_attributes: ``{name: (type, value)}`` pairs sent as given
    """
    message = payload if isinstance(payload, str) else json.dumps(payload)
    envelope: dict[str, Any] = {"Type": "Notification", "Message": message}
    marshalled: dict[str, dict[str, str]] = {}
    for name, value in (attributes or {}).items():
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            marshalled[name] = {"Type": "String.Array", "Value": json.dumps(value)}
        elif isinstance(value, str):
            marshalled[name] = {"Type": "String", "Value": value}
        else:
            marshalled[name] = {"Type": "Number", "Value": str(value)}
    for name, (attr_type, value) in (typed_attributes or {}).items():
        marshalled[name] = {"Type": attr_type, "Value": value}
    if marshalled:
        envelope["MessageAttributes"] = marshalled
    return json.dumps(envelope)
