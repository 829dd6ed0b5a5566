"""AWS Lambda entry point for DynamoDB Streams event source mappings."""

import logging
import time
from functools import lru_cache
from typing import Any

from cdc_fanout.bootstrap import build_coordinator
from cdc_fanout.config import PipelineConfig
from cdc_fanout.logging import setup_logging
from cdc_fanout.pipeline.coordinator import BatchCoordinator
from cdc_fanout.transport.dynamodb_stream import build_response, parse_stream_event

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_config() -> PipelineConfig:
    """Configuration read once per execution environment."""
    config = PipelineConfig.from_env()
    setup_logging(config.log_level, config.log_format)
    return config


@lru_cache(maxsize=1)
def get_coordinator() -> BatchCoordinator:
    """Coordinator reused across warm invocations."""
    return build_coordinator(get_config())


def handler(event: dict[str, Any], context: Any = None) -> dict[str, Any]:
    """Process one DynamoDB Streams batch.

    Parameters
    ----------
    event : dict[str, Any]
        Lambda event with a ``Records`` list.
    context : Any
        Lambda context; its remaining time bounds the batch.

    Returns
    -------
    dict[str, Any]
        Partial batch response listing the records to redeliver.
    """
    config = get_config()
    coordinator = get_coordinator()

    records = parse_stream_event(event, config.source_tables, config.default_entity_kind)
    logger.info("Processing %d stream records", len(records))

    result = coordinator.process(records, deadline=_deadline(context, config.deadline_margin_seconds))
    logger.info("Batch summary", extra={"extra": result.summary()})
    return build_response(result, config.report_batch_item_failures)


def _deadline(context: Any, margin_seconds: float) -> float | None:
    remaining = getattr(context, "get_remaining_time_in_millis", None)
    if remaining is None:
        return None
    return time.monotonic() + max(0.0, remaining() / 1000 - margin_seconds)
