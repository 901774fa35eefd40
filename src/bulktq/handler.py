"""Lambda handler for scheduled bulk transition runs."""

import asyncio
import importlib
import os
import time
from collections.abc import Callable
from typing import Any

from .config import ConsumerConfig
from .dispatcher import ProcessFn, run_bulk_transition
from .exceptions import NoCapacityError
from .log import StructuredLogger
from .models import COMPLETION_MESSAGE

PROCESSOR_ENV_VAR = "BULKTQ_PROCESSOR"
ACKNOWLEDGE_ENV_VAR = "BULKTQ_ACKNOWLEDGE"

logger = StructuredLogger(__name__)


def load_processor(path: str) -> ProcessFn:
    """
    Import a processing function from a ``module:attribute`` path.

    Raises:
        ValueError: If ``path`` is not of the form ``module:attribute``
        ImportError: If the module cannot be imported
        AttributeError: If the attribute does not exist
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Processor must be 'module:function', got {path!r}")
    module = importlib.import_module(module_name)
    fn = module
    for part in attr.split("."):
        fn = getattr(fn, part)
    if not callable(fn):
        raise ValueError(f"Processor {path!r} is not callable")
    return fn  # type: ignore[return-value]


def make_handler(
    process_fn: ProcessFn,
    *,
    acknowledge: bool = False,
    config_factory: Callable[[], ConsumerConfig] = ConsumerConfig.from_environment,
) -> Callable[[dict[str, Any], Any], str]:
    """
    Build a Lambda handler that runs one bulk transition invocation.

    Args:
        process_fn: Called once per decoded message
        acknowledge: Delete each entry after ``process_fn`` succeeds
        config_factory: Supplies the configuration on every call

    Returns:
        ``handler(event, context)`` returning the completion message, or
        raising the invocation's error so the trigger records a failure
    """

    def handler(event: dict[str, Any], context: Any) -> str:
        start_time = time.perf_counter()
        request_id = getattr(context, "aws_request_id", "unknown")
        logger.info(
            "bulkTransition: INFO: Scheduled call started",
            request_id=request_id,
            function_name=getattr(context, "function_name", "unknown"),
            event=event,
        )

        try:
            config = config_factory()
            report = asyncio.run(
                run_bulk_transition(config, process_fn, acknowledge=acknowledge)
            )
        except NoCapacityError as e:
            logger.warning(
                f"bulkTransition: ERROR: {e}",
                request_id=request_id,
                service=e.service,
            )
            raise
        except Exception as e:
            logger.error(
                f"bulkTransition: ERROR: {type(e).__name__}: {e}",
                exc_info=True,
                request_id=request_id,
            )
            raise

        logger.info(
            COMPLETION_MESSAGE,
            request_id=request_id,
            processing_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
            **report.as_dict(),
        )
        return report.message

    return handler


def handler(event: dict[str, Any], context: Any) -> str:
    """
    Lambda entry point configured entirely from the environment.

    Environment variables:
        BULKTQ_PROCESSOR: ``module:function`` processing each message (required)
        BULKTQ_ACKNOWLEDGE: Delete entries after success (default: false)
        plus everything read by ``ConsumerConfig.from_environment``
    """
    process_fn = load_processor(os.environ[PROCESSOR_ENV_VAR])
    acknowledge = os.environ.get(ACKNOWLEDGE_ENV_VAR, "false").lower() == "true"
    return make_handler(process_fn, acknowledge=acknowledge)(event, context)
