#!/usr/bin/env python3
"""Run the fan-out pipeline as a long-lived Kafka consumer.

Configuration comes from the environment (``KAFKA_BOOTSTRAP_SERVERS``,
``KAFKA_TOPICS`` as a JSON topic -> entity kind object, sink settings).
"""

import argparse
import logging
import signal
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from cdc_fanout.bootstrap import build_coordinator, build_dead_letter
from cdc_fanout.config import PipelineConfig
from cdc_fanout.logging import setup_logging
from cdc_fanout.transport.kafka import KafkaChangeConsumer

logger = logging.getLogger(__name__)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Consume change records from Kafka and fan them out")
    parser.add_argument(
        "--max-batches",
        type=int,
        default=None,
        help="Stop after this many non-empty batches (default: run until interrupted)",
    )
    args = parser.parse_args()

    config = PipelineConfig.from_env()
    setup_logging(config.log_level, config.log_format)

    dead_letter = build_dead_letter(config)
    coordinator = build_coordinator(config, dead_letter=dead_letter)
    consumer = KafkaChangeConsumer(
        config.kafka,
        coordinator,
        dead_letter=dead_letter,
        default_kind=config.default_entity_kind,
    )

    # Graceful shutdown
    original_sigint = signal.getsignal(signal.SIGINT)

    def _signal_handler(signum: int, frame: object) -> None:
        logger.info("Shutdown requested, finishing the current batch...")
        consumer.stop()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        consumer.run(max_batches=args.max_batches)
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        consumer.close()
        coordinator.dispatcher.close()
        close = getattr(dead_letter, "close", None)
        if close is not None:
            close()


if __name__ == "__main__":
    main()
