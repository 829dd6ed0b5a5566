#!/usr/bin/env python3
"""Replay a DynamoDB Streams event file through the fan-out pipeline.

By default the sinks are in-memory, so a replay needs no infrastructure.
``--configured`` uses the backends from the environment (see
``PipelineConfig.from_env``) instead.
"""

import argparse
import json
import logging
import sys
import time
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from cdc_fanout.bootstrap import build_coordinator, build_dispatcher
from cdc_fanout.config import PipelineConfig
from cdc_fanout.logging import setup_logging
from cdc_fanout.models.enums import EntityKind
from cdc_fanout.sinks import (
    ArchivalSink,
    InMemoryLookupTable,
    InMemoryObjectStore,
    InMemorySearchBackend,
    SearchIndexSink,
    SecondaryIndexSink,
)
from cdc_fanout.transport.dynamodb_stream import build_response, parse_stream_event

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_TABLES = {"Products": EntityKind.PRODUCT, "Purchases": EntityKind.PURCHASE}


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Replay a stream event file through the pipeline")
    parser.add_argument("event_file", type=Path, help="JSON file with a {\"Records\": [...]} event")
    parser.add_argument(
        "--configured",
        action="store_true",
        help="Write to the backends configured in the environment instead of in-memory sinks",
    )
    parser.add_argument(
        "--passes",
        type=int,
        default=1,
        help="Replay the same batch this many times to exercise redelivery (default: 1)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        help="Log level (default: INFO)",
    )
    args = parser.parse_args()

    setup_logging(args.log_level, "standard")

    with open(args.event_file, encoding="utf-8") as f:
        event = json.load(f)

    config = PipelineConfig.from_env()
    if not config.source_tables:
        config.source_tables = dict(DEFAULT_SOURCE_TABLES)

    memory = None
    if args.configured:
        dispatcher = build_dispatcher(config)
    else:
        memory = (InMemorySearchBackend(), InMemoryObjectStore(), InMemoryLookupTable())
        dispatcher = build_dispatcher(
            config,
            sinks=[
                SearchIndexSink(memory[0], namespace=config.search_index.namespace),
                ArchivalSink(memory[1]),
                SecondaryIndexSink(memory[2]),
            ],
        )
    coordinator = build_coordinator(config, dispatcher=dispatcher)

    records = parse_stream_event(event, config.source_tables, config.default_entity_kind)
    try:
        for attempt in range(1, args.passes + 1):
            start = time.perf_counter()
            result = coordinator.process(records)
            elapsed = time.perf_counter() - start
            response = build_response(result, report_batch_item_failures=True)

            print(f"\nPass {attempt}: {len(records)} records in {elapsed:.2f}s")
            print(json.dumps(result.summary(), indent=2, ensure_ascii=False))
            print(f"Redeliver: {len(response['batchItemFailures'])} records")
    finally:
        dispatcher.close()

    if memory is not None:
        search, archive, lookup = memory
        print("\nIn-memory sinks:")
        for scope, docs in sorted(search.scopes.items()):
            print(f"  search {scope:<40} {len(docs):>6} documents")
        print(f"  archive objects {len(archive.objects):>31}")
        print(f"  lookup items {len(lookup.items):>34}")


if __name__ == "__main__":
    main()
