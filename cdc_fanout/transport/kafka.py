"""Kafka transport: consume change records and publish dead letters."""

import json
import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Any

from confluent_kafka import Consumer, KafkaError, Message, Producer, TopicPartition

from cdc_fanout.config import KafkaConfig
from cdc_fanout.exceptions import CdcFanoutError
from cdc_fanout.models.enums import EntityKind, RecordStatus
from cdc_fanout.models.records import ChangeRecord
from cdc_fanout.models.results import BatchResult, RecordOutcome
from cdc_fanout.pipeline.coordinator import BatchCoordinator
from cdc_fanout.sinks.serialization import dumps, to_dict
from cdc_fanout.transport.dead_letter import DeadLetter, DeadLetterQueue
from cdc_fanout.transport.dynamodb_stream import parse_stream_record

logger = logging.getLogger(__name__)


@dataclass
class ProducerStats:
    """Track producer delivery statistics."""

    sent: int = 0
    delivered: int = 0
    failed: int = 0


class KafkaDeadLetterQueue:
    """Publish dead letters to a Kafka topic.

    ``publish`` waits for the broker acknowledgement so a letter is only
    reported kept once it is durable; anything else raises.

    Parameters
    ----------
    config : KafkaConfig | dict[str, Any]
        Kafka configuration, or a raw confluent-kafka producer config.
    topic : str
        Dead-letter topic.
    flush_timeout : float
        Seconds to wait for the acknowledgement.
    producer : Producer | None
        Pre-built producer (tests).
    """

    def __init__(
        self,
        config: KafkaConfig | dict[str, Any],
        topic: str,
        flush_timeout: float = 10.0,
        producer: Producer | None = None,
    ) -> None:
        producer_config = config.producer_config() if isinstance(config, KafkaConfig) else config
        self.topic = topic
        self.flush_timeout = flush_timeout
        self.producer = producer or Producer(producer_config)
        self.stats = ProducerStats()
        self._lock = threading.Lock()

    def publish(self, letter: DeadLetter) -> None:
        outcome: dict[str, Any] = {}

        def on_delivery(err: Any, msg: Any) -> None:
            outcome["error"] = err
            outcome["done"] = True

        self.producer.produce(
            topic=self.topic,
            key=letter.record_id.encode("utf-8"),
            value=dumps(to_dict(letter)),
            callback=on_delivery,
        )
        with self._lock:
            self.stats.sent += 1
        self.producer.flush(self.flush_timeout)

        error = outcome.get("error") if outcome.get("done") else "not acknowledged before timeout"
        with self._lock:
            if error:
                self.stats.failed += 1
            else:
                self.stats.delivered += 1
        if error:
            raise CdcFanoutError(f"Dead letter for record {letter.record_id} not delivered: {error}")
        logger.debug("Dead letter for record %s delivered to %s", letter.record_id, self.topic)

    def close(self) -> None:
        """Flush and close the producer."""
        self.producer.flush(self.flush_timeout)
        logger.info(
            "Dead-letter producer closed: sent=%d, delivered=%d, failed=%d",
            self.stats.sent,
            self.stats.delivered,
            self.stats.failed,
        )


class KafkaChangeConsumer:
    """Consume change records from Kafka and run them through the pipeline.

    Each message value is one DynamoDB Streams record serialized as JSON.
    A polled batch is the delivery unit: offsets are committed only up to
    the first record of each partition that needs redelivery, and the
    consumer seeks back there so the record comes round again.

    Parameters
    ----------
    config : KafkaConfig
        Kafka configuration; ``topics`` maps topic to entity kind.
    coordinator : BatchCoordinator
        Pipeline driver.
    dead_letter : DeadLetterQueue | None
        Destination for messages that are not valid JSON records.
    default_kind : EntityKind | None
        Entity kind for topics without a mapping.
    consumer : Consumer | None
        Pre-built consumer (tests).
    """

    def __init__(
        self,
        config: KafkaConfig,
        coordinator: BatchCoordinator,
        dead_letter: DeadLetterQueue | None = None,
        default_kind: EntityKind | None = None,
        consumer: Consumer | None = None,
    ) -> None:
        self.config = config
        self.coordinator = coordinator
        self.dead_letter = dead_letter
        self.default_kind = default_kind
        self.consumer = consumer or Consumer(config.consumer_config())
        self._running = False

    def subscribe(self) -> None:
        topics = list(self.config.topics)
        if not topics:
            raise CdcFanoutError("No Kafka topics configured")
        self.consumer.subscribe(topics)
        logger.info("Subscribed to %s", ", ".join(topics))

    def run(self, max_batches: int | None = None) -> None:
        """Poll and process batches until :meth:`stop` or ``max_batches``."""
        self.subscribe()
        self._running = True
        batches = 0
        while self._running and (max_batches is None or batches < max_batches):
            messages = self.consumer.consume(
                num_messages=self.config.batch_size,
                timeout=self.config.poll_timeout,
            )
            if not messages:
                continue
            self.process_batch(messages)
            batches += 1

    def stop(self) -> None:
        self._running = False

    def close(self) -> None:
        self.consumer.close()
        logger.info("Kafka consumer closed")

    def process_batch(self, messages: list[Message]) -> BatchResult:
        """Process one polled batch and commit or rewind each partition."""
        messages = [m for m in messages if not self._is_error(m)]
        outcomes: list[RecordOutcome | None] = [None] * len(messages)
        records: list[ChangeRecord] = []
        positions: list[int] = []

        for index, message in enumerate(messages):
            try:
                records.append(self.to_record(message))
                positions.append(index)
            except ValueError as exc:
                outcomes[index] = self._reject(message, exc)

        deadline = time.monotonic() + self.config.batch_timeout_seconds
        processed = self.coordinator.process(records, deadline=deadline) if records else BatchResult()
        for index, outcome in zip(positions, processed.outcomes):
            outcomes[index] = outcome

        result = BatchResult(outcomes=[o for o in outcomes if o is not None])
        self._settle(messages, result.outcomes)
        return result

    def to_record(self, message: Message) -> ChangeRecord:
        """Parse a message into a change record.

        Raises
        ------
        ValueError
            When the value is not a JSON object.
        """
        payload = json.loads(message.value() or b"")
        if not isinstance(payload, dict):
            raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
        topic = message.topic()
        record = parse_stream_record(payload, {}, None)
        return replace(
            record,
            record_id=_message_id(message),
            entity_kind=self.config.topics.get(topic, self.default_kind),
            source=topic,
        )

    def _reject(self, message: Message, exc: Exception) -> RecordOutcome:
        record_id = _message_id(message)
        logger.error("Message %s rejected: %s", record_id, exc)
        outcome = RecordOutcome(record_id=record_id, status=RecordStatus.REJECTED, error=str(exc))
        if self.dead_letter is None:
            return outcome
        value = message.value() or b""
        letter = DeadLetter(
            record_id=record_id,
            status=RecordStatus.REJECTED,
            error_type=type(exc).__name__,
            reason=str(exc),
            source=message.topic(),
            record={"value": value.decode("utf-8", errors="replace")},
        )
        try:
            self.dead_letter.publish(letter)
        except Exception:
            logger.exception("Dead-letter publish failed for message %s", record_id)
            outcome.status = RecordStatus.RETRY
        return outcome

    def _settle(self, messages: list[Message], outcomes: list[RecordOutcome]) -> None:
        """Commit what is done; seek back to the first record needing redelivery."""
        commit: dict[tuple[str, int], int] = {}
        rewind: dict[tuple[str, int], int] = {}
        for message, outcome in zip(messages, outcomes):
            partition = (message.topic(), message.partition())
            if partition in rewind:
                continue
            if outcome.status is RecordStatus.RETRY:
                rewind[partition] = message.offset()
            else:
                commit[partition] = message.offset() + 1

        for (topic, partition), offset in rewind.items():
            logger.warning("Rewinding %s[%d] to offset %d for redelivery", topic, partition, offset)
            self.consumer.seek(TopicPartition(topic, partition, offset))

        offsets = [TopicPartition(topic, partition, offset) for (topic, partition), offset in commit.items()]
        if offsets:
            self.consumer.commit(offsets=offsets, asynchronous=False)

    @staticmethod
    def _is_error(message: Message) -> bool:
        error = message.error()
        if error is None:
            return False
        if error.code() != KafkaError._PARTITION_EOF:
            logger.error("Consumer error: %s", error)
        return True


def _message_id(message: Message) -> str:
    return f"{message.topic()}:{message.partition()}:{message.offset()}"
