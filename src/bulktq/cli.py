"""Command-line interface for the bulk transition queue consumer."""

import asyncio
import json
import sys
from typing import Any

import click

from .capacity import DEFAULT_TABLE_NAME, DynamoDBCapacityGate
from .config import ConsumerConfig
from .dispatcher import run_bulk_transition
from .envelope import VERBATIM_TYPES, encode
from .exceptions import BulkTQError, NoCapacityError
from .handler import load_processor
from .models import FetchChunkPlan
from .naming import queue_url as build_queue_url
from .queue import SQSQueueBackend


def _queue_options(fn: Any) -> Any:
    fn = click.option("--service", required=True, help="Service name (queue is {service}-bulktq)")(
        fn
    )
    fn = click.option("--account", "account_id", required=True, help="12-digit AWS account id")(
        fn
    )
    fn = click.option("--region", default="us-east-1", show_default=True, help="AWS region")(fn)
    return fn


def _parse_attribute(value: str) -> tuple[str, tuple[str, str]]:
    name, sep, typed = value.partition("=")
    attr_type, colon, raw = typed.partition(":")
    if not sep or not name or not colon or not attr_type:
        raise click.BadParameter(f"expected NAME=TYPE:VALUE, got {value!r}")
    if attr_type not in VERBATIM_TYPES:
        # The consumer JSON-decodes every other type
        try:
            json.loads(raw)
        except ValueError as e:
            raise click.BadParameter(f"{name}: {attr_type} value is not JSON ({e})") from e
    return name, (attr_type, raw)


@click.group()
@click.version_option()
def cli() -> None:
    """bulktq: capacity-bounded bulk transition queue consumer."""
    pass


@cli.command("queue-url")
@_queue_options
def queue_url(service: str, account_id: str, region: str) -> None:
    """Print the bulk transition queue URL."""
    try:
        click.echo(build_queue_url(region, account_id, service))
    except BulkTQError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("budget", type=click.IntRange(min=0))
def plan(budget: int) -> None:
    """Print the fetch chunk sizes for BUDGET messages (e.g. 23 -> 10,10,3)."""
    chunks = FetchChunkPlan.for_budget(budget)
    click.echo(str(chunks) if chunks else "(no requests)")


@cli.command()
@_queue_options
@click.option("--message", required=True, help="Message payload (JSON or plain text)")
@click.option(
    "--attribute",
    "attributes",
    multiple=True,
    help="Message attribute NAME=TYPE:VALUE (e.g. tier=String:GLACIER, ids=String.Array:[1,2])",
)
@click.option(
    "--endpoint-url",
    help="AWS endpoint URL (e.g., http://localhost:4566 for LocalStack)",
)
def send(
    service: str,
    account_id: str,
    region: str,
    message: str,
    attributes: tuple[str, ...],
    endpoint_url: str | None,
) -> None:
    """Enqueue a notification envelope on the bulk transition queue."""
    attrs = dict(_parse_attribute(a) for a in attributes)
    try:
        payload: Any = json.loads(message)
    except ValueError:
        payload = message
    body = encode(payload, typed_attributes=attrs)

    async def _send() -> str:
        url = build_queue_url(region, account_id, service)
        async with SQSQueueBackend(region=region, endpoint_url=endpoint_url) as queue:
            return await queue.send_entry(url, body)

    try:
        message_id = asyncio.run(_send())
    except BulkTQError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(message_id)


@cli.command()
@click.option("--processor", required=True, help="Processing function as module:function")
@click.option(
    "--acknowledge/--no-acknowledge",
    default=False,
    help="Delete each message after the processor succeeds",
)
def run(processor: str, acknowledge: bool) -> None:
    """Run one invocation using BULKTQ_* environment configuration."""
    try:
        process_fn = load_processor(processor)
        config = ConsumerConfig.from_environment()
    except (ValueError, ImportError, AttributeError, KeyError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)

    try:
        report = asyncio.run(run_bulk_transition(config, process_fn, acknowledge=acknowledge))
    except NoCapacityError as e:
        click.echo(str(e), err=True)
        sys.exit(75)  # EX_TEMPFAIL
    except BulkTQError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(report.message)
    click.echo(f"  Fetched:   {report.fetched}")
    click.echo(f"  Processed: {report.processed}")


@cli.command("init-table")
@click.option("--table-name", default=DEFAULT_TABLE_NAME, show_default=True)
@click.option("--region", help="AWS region (default: use boto3 defaults)")
@click.option("--endpoint-url", help="AWS endpoint URL")
def init_table(table_name: str, region: str | None, endpoint_url: str | None) -> None:
    """Create the capacity counter table."""

    async def _create() -> None:
        async with DynamoDBCapacityGate(table_name, region, endpoint_url) as gate:
            await gate.create_table()

    try:
        asyncio.run(_create())
    except BulkTQError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Table ready: {table_name}")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
