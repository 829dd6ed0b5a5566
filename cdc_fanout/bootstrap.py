"""Assemble sinks, dispatcher and coordinator from a :class:`PipelineConfig`."""

import logging

from cdc_fanout.config import PipelineConfig
from cdc_fanout.pipeline.coordinator import BatchCoordinator
from cdc_fanout.pipeline.dispatcher import SinkDispatcher
from cdc_fanout.sinks.archive import ArchivalSink, S3ObjectStore
from cdc_fanout.sinks.base import Sink
from cdc_fanout.sinks.lookup_table import DynamoLookupTable, SecondaryIndexSink
from cdc_fanout.sinks.search_index import PostgresSearchBackend, SearchIndexSink
from cdc_fanout.transport.dead_letter import DeadLetterQueue, JsonLinesDeadLetterQueue

logger = logging.getLogger(__name__)


def build_sinks(config: PipelineConfig) -> list[Sink]:
    """Create the enabled sinks against their production backends."""
    timeout = config.dispatch.sink_timeout_seconds
    sinks: list[Sink] = []
    for name in config.dispatch.enabled_sinks:
        if name == "search_index":
            backend = PostgresSearchBackend(
                config.search_index.dsn,
                statement_timeout_ms=config.search_index.statement_timeout_ms,
                connect_timeout=config.search_index.connect_timeout_seconds,
            )
            sinks.append(
                SearchIndexSink(
                    backend,
                    namespace=config.search_index.namespace,
                    ttl_days=config.search_index.ttl_days,
                )
            )
        elif name == "archive":
            store = S3ObjectStore(
                config.archive.bucket,
                endpoint_url=config.archive.endpoint_url,
                region_name=config.archive.region,
                timeout_seconds=timeout,
            )
            sinks.append(ArchivalSink(store))
        elif name == "lookup_table":
            table = DynamoLookupTable(
                config.lookup_table.table_name,
                endpoint_url=config.lookup_table.endpoint_url,
                region_name=config.lookup_table.region,
                timeout_seconds=timeout,
            )
            sinks.append(SecondaryIndexSink(table, ttl_days=config.lookup_table.ttl_days))
    return sinks


def build_dispatcher(config: PipelineConfig, sinks: list[Sink] | None = None) -> SinkDispatcher:
    """Wrap ``sinks`` (default: :func:`build_sinks`) in a dispatcher."""
    if sinks is None:
        sinks = build_sinks(config)
    return SinkDispatcher(
        sinks,
        required=config.dispatch.required,
        timeout_seconds=config.dispatch.sink_timeout_seconds,
        max_workers=config.dispatch.dispatch_workers,
    )


def build_dead_letter(config: PipelineConfig) -> DeadLetterQueue | None:
    """Kafka topic when configured, else a JSON Lines file, else nothing."""
    if config.kafka.dead_letter_topic:
        # Imported here so the Lambda path does not load librdkafka
        from cdc_fanout.transport.kafka import KafkaDeadLetterQueue

        return KafkaDeadLetterQueue(config.kafka, config.kafka.dead_letter_topic)
    if config.dead_letter_dir is not None:
        return JsonLinesDeadLetterQueue(config.dead_letter_dir)
    logger.warning("No dead-letter destination configured; rejected records are only logged")
    return None


def build_coordinator(
    config: PipelineConfig,
    dispatcher: SinkDispatcher | None = None,
    dead_letter: DeadLetterQueue | None = None,
) -> BatchCoordinator:
    """Create a ready-to-use coordinator."""
    dispatcher = dispatcher or build_dispatcher(config)
    if dead_letter is None:
        dead_letter = build_dead_letter(config)
    coordinator = BatchCoordinator(
        dispatcher,
        dead_letter=dead_letter,
        max_workers=config.dispatch.coordinator_max_workers,
    )
    logger.info(
        "Pipeline ready: sinks=%s required=%s",
        ",".join(sink.name for sink in dispatcher.sinks),
        ",".join(sorted(dispatcher.required)),
    )
    return coordinator
