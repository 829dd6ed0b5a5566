"""Tests for transport adapters: DynamoDB Streams, Kafka and dead letters."""

import json
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
from confluent_kafka import KafkaError

from cdc_fanout.config import KafkaConfig
from cdc_fanout.exceptions import BatchRedeliveryError, CdcFanoutError
from cdc_fanout.generators import StreamRecordBuilder
from cdc_fanout.models import BatchResult, EntityKind, PartitionKey, RecordOutcome, RecordStatus, SinkFailure
from cdc_fanout.pipeline.coordinator import BatchCoordinator
from cdc_fanout.transport.dead_letter import DeadLetter, JsonLinesDeadLetterQueue
from cdc_fanout.transport.dynamodb_stream import (
    build_response,
    parse_stream_event,
    parse_stream_record,
    partition_key_from_keys,
    table_name_from_arn,
)
from cdc_fanout.transport.kafka import KafkaChangeConsumer, KafkaDeadLetterQueue

SOURCE_TABLES = {"Products": EntityKind.PRODUCT, "Purchases": EntityKind.PURCHASE}


def kafka_message(
    value: bytes | None,
    offset: int,
    topic: str = "cdc.products",
    partition: int = 0,
    error: Any = None,
) -> MagicMock:
    message = MagicMock()
    message.value.return_value = value
    message.topic.return_value = topic
    message.partition.return_value = partition
    message.offset.return_value = offset
    message.error.return_value = error
    return message


class TestDynamoDbStream:
    """Tests for the DynamoDB Streams envelope adapter."""

    def test_table_name_from_arn(self) -> None:
        arn = "arn:aws:dynamodb:us-east-1:123456789012:table/Products/stream/2024-01-01T00:00:00.000"

        assert table_name_from_arn(arn) == "Products"
        assert table_name_from_arn("") == ""

    def test_partition_key(self) -> None:
        """Test the tenant and the remaining key attribute form the partition key."""
        keys = {"tenant_id": {"S": "T1"}, "codigo": {"S": "P1"}}

        assert partition_key_from_keys(keys) == PartitionKey("T1", "P1")

    @pytest.mark.parametrize(
        "keys",
        [
            None,
            {"codigo": {"S": "P1"}},
            {"tenant_id": {"S": "T1"}},
            {"tenant_id": {"BOOL": True}, "codigo": {"S": "P1"}},
            {"tenant_id": {"S": "T1"}, "codigo": {"S": " "}},
        ],
    )
    def test_partition_key_unreadable(self, keys: Any) -> None:
        """Test unreadable keys yield no partition key instead of failing."""
        assert partition_key_from_keys(keys) is None

    def test_parse_record(self, builder: StreamRecordBuilder, laptop: dict[str, Any]) -> None:
        """Test a stream record becomes a ChangeRecord with kind and key resolved."""
        raw = builder.build("INSERT", "Products", new_item=laptop)

        record = parse_stream_record(raw, SOURCE_TABLES)

        assert record.record_id == raw["dynamodb"]["SequenceNumber"]
        assert record.event_name == "INSERT"
        assert record.entity_kind is EntityKind.PRODUCT
        assert record.partition_key == PartitionKey("T1", "P1")
        assert record.source == "Products"
        assert record.new_image["nombre"] == {"S": "Laptop Gaming"}
        assert record.old_image is None
        assert record.raw == raw

    def test_default_kind(self, builder: StreamRecordBuilder, laptop: dict[str, Any]) -> None:
        """Test unmapped tables fall back to the default kind."""
        raw = builder.build("INSERT", "Products", new_item=laptop)

        assert parse_stream_record(raw, {}).entity_kind is None
        assert parse_stream_record(raw, {}, EntityKind.PRODUCT).entity_kind is EntityKind.PRODUCT

    def test_parse_event_skips_other_sources(self, builder: StreamRecordBuilder, laptop: dict[str, Any]) -> None:
        """Test records from other event sources are ignored."""
        event = {
            "Records": [
                builder.build("INSERT", "Products", new_item=laptop),
                {"eventSource": "aws:sqs", "body": "{}"},
            ]
        }

        records = parse_stream_event(event, SOURCE_TABLES)

        assert len(records) == 1

    def test_response_lists_retries(self) -> None:
        """Test only RETRY outcomes are reported back for redelivery."""
        result = BatchResult(
            outcomes=[
                RecordOutcome("1", RecordStatus.PROCESSED),
                RecordOutcome("2", RecordStatus.RETRY, error="timeout"),
                RecordOutcome("3", RecordStatus.REJECTED, error="bad"),
            ]
        )

        assert build_response(result) == {"batchItemFailures": [{"itemIdentifier": "2"}]}

    def test_response_without_item_failures(self) -> None:
        """Test the whole batch is failed when per-record reporting is off."""
        result = BatchResult(outcomes=[RecordOutcome("2", RecordStatus.RETRY)])

        with pytest.raises(BatchRedeliveryError) as exc_info:
            build_response(result, report_batch_item_failures=False)

        assert exc_info.value.record_ids == ["2"]

    def test_response_clean_batch(self) -> None:
        result = BatchResult(outcomes=[RecordOutcome("1", RecordStatus.PROCESSED)])

        assert build_response(result, report_batch_item_failures=False) == {"batchItemFailures": []}


class TestJsonLinesDeadLetterQueue:
    """Tests for JsonLinesDeadLetterQueue."""

    def test_publish_appends(self, tmp_path: Path) -> None:
        """Test each letter is written as one JSON line."""
        queue = JsonLinesDeadLetterQueue(tmp_path / "dlq")
        queue.publish(DeadLetter("r1", RecordStatus.REJECTED, "DecodeError", "bad tag", record={"eventName": "X"}))
        queue.publish(
            DeadLetter(
                "r2",
                RecordStatus.FAILED,
                "SinkError",
                "archive: exists",
                tenant_id="T1",
                entity_id="P1",
                failures=[SinkFailure("archive", "exists", retryable=False)],
            )
        )
        queue.close()

        lines = (tmp_path / "dlq" / "dead_letters.jsonl").read_text(encoding="utf-8").splitlines()
        first, second = (json.loads(line) for line in lines)
        assert first["status"] == "REJECTED"
        assert first["record"] == {"eventName": "X"}
        assert second["failures"][0]["sink"] == "archive"
        assert second["entity_id"] == "P1"
        assert "failed_at" in second


class TestKafkaDeadLetterQueue:
    """Tests for KafkaDeadLetterQueue with a mocked producer."""

    def test_publish_delivered(self) -> None:
        """Test a letter is produced keyed by record id and flushed."""
        producer = MagicMock()
        producer.produce.side_effect = lambda **kwargs: kwargs["callback"](None, MagicMock())
        queue = KafkaDeadLetterQueue({"bootstrap.servers": "x"}, "cdc.dlq", producer=producer)

        queue.publish(DeadLetter("r1", RecordStatus.REJECTED, "DecodeError", "bad"))

        kwargs = producer.produce.call_args.kwargs
        assert kwargs["topic"] == "cdc.dlq"
        assert kwargs["key"] == b"r1"
        assert json.loads(kwargs["value"])["reason"] == "bad"
        producer.flush.assert_called_once()
        assert queue.stats.delivered == 1

    def test_delivery_error_raises(self) -> None:
        """Test a failed delivery raises so the record is redelivered."""
        producer = MagicMock()
        producer.produce.side_effect = lambda **kwargs: kwargs["callback"]("broker down", None)
        queue = KafkaDeadLetterQueue({"bootstrap.servers": "x"}, "cdc.dlq", producer=producer)

        with pytest.raises(CdcFanoutError, match="broker down"):
            queue.publish(DeadLetter("r1", RecordStatus.REJECTED, "DecodeError", "bad"))

        assert queue.stats.failed == 1

    def test_unacknowledged_raises(self) -> None:
        """Test a letter not acknowledged before the flush timeout raises."""
        queue = KafkaDeadLetterQueue({"bootstrap.servers": "x"}, "cdc.dlq", producer=MagicMock())

        with pytest.raises(CdcFanoutError, match="not acknowledged"):
            queue.publish(DeadLetter("r1", RecordStatus.REJECTED, "DecodeError", "bad"))


class TestKafkaChangeConsumer:
    """Tests for KafkaChangeConsumer with a mocked consumer."""

    @pytest.fixture
    def config(self) -> KafkaConfig:
        return KafkaConfig(topics={"cdc.products": EntityKind.PRODUCT}, batch_size=10, poll_timeout=0.01)

    def stream_value(self, builder: StreamRecordBuilder, item: dict[str, Any]) -> bytes:
        return json.dumps(builder.build("INSERT", "Products", new_item=item)).encode("utf-8")

    def test_to_record_uses_topic(
        self, config: KafkaConfig, coordinator: BatchCoordinator, builder: StreamRecordBuilder, laptop: dict[str, Any]
    ) -> None:
        """Test records are identified by offset and typed by topic."""
        consumer = KafkaChangeConsumer(config, coordinator, consumer=MagicMock())

        record = consumer.to_record(kafka_message(self.stream_value(builder, laptop), 7))

        assert record.record_id == "cdc.products:0:7"
        assert record.entity_kind is EntityKind.PRODUCT
        assert record.source == "cdc.products"
        assert record.partition_key == PartitionKey("T1", "P1")

    def test_batch_committed(
        self, config: KafkaConfig, coordinator: BatchCoordinator, builder: StreamRecordBuilder, laptop: dict[str, Any]
    ) -> None:
        """Test a clean batch commits past its last offset."""
        kafka = MagicMock()
        consumer = KafkaChangeConsumer(config, coordinator, consumer=kafka)
        messages = [
            kafka_message(self.stream_value(builder, {**laptop, "codigo": f"P{i}"}), offset=10 + i) for i in range(3)
        ]

        result = consumer.process_batch(messages)

        assert result.successful == 3
        offsets = kafka.commit.call_args.kwargs["offsets"]
        assert [(tp.topic, tp.partition, tp.offset) for tp in offsets] == [("cdc.products", 0, 13)]
        kafka.seek.assert_not_called()

    def test_malformed_message_dead_lettered(
        self, config: KafkaConfig, coordinator: BatchCoordinator, builder: StreamRecordBuilder, laptop: dict[str, Any]
    ) -> None:
        """Test a non-JSON message is dead-lettered and does not block the partition."""
        kafka = MagicMock()
        dead_letter = MagicMock()
        consumer = KafkaChangeConsumer(config, coordinator, dead_letter=dead_letter, consumer=kafka)
        messages = [kafka_message(b"not json", 0), kafka_message(self.stream_value(builder, laptop), 1)]

        result = consumer.process_batch(messages)

        assert [o.status for o in result.outcomes] == [RecordStatus.REJECTED, RecordStatus.PROCESSED]
        assert dead_letter.publish.call_args.args[0].record == {"value": "not json"}
        offsets = kafka.commit.call_args.kwargs["offsets"]
        assert offsets[0].offset == 2

    def test_retry_rewinds_partition(self, config: KafkaConfig, builder: StreamRecordBuilder) -> None:
        """Test the partition is rewound to its first record needing redelivery."""
        kafka = MagicMock()
        coordinator = MagicMock()
        coordinator.process.return_value = BatchResult(
            outcomes=[
                RecordOutcome("cdc.products:0:5", RecordStatus.PROCESSED),
                RecordOutcome("cdc.products:0:6", RecordStatus.RETRY),
                RecordOutcome("cdc.products:0:7", RecordStatus.PROCESSED),
            ]
        )
        consumer = KafkaChangeConsumer(config, coordinator, consumer=kafka)
        item = {"tenant_id": "T1", "codigo": "P1"}
        messages = [kafka_message(self.stream_value(builder, item), offset) for offset in (5, 6, 7)]

        consumer.process_batch(messages)

        kafka.seek.assert_called_once()
        seek_to = kafka.seek.call_args.args[0]
        assert (seek_to.topic, seek_to.partition, seek_to.offset) == ("cdc.products", 0, 6)
        offsets = kafka.commit.call_args.kwargs["offsets"]
        assert offsets[0].offset == 6

    def test_partition_eof_skipped(self, config: KafkaConfig, coordinator: BatchCoordinator) -> None:
        """Test end-of-partition events are not treated as records."""
        error = MagicMock()
        error.code.return_value = KafkaError._PARTITION_EOF
        kafka = MagicMock()
        consumer = KafkaChangeConsumer(config, coordinator, consumer=kafka)

        result = consumer.process_batch([kafka_message(None, 3, error=error)])

        assert result.outcomes == []
        kafka.commit.assert_not_called()

    def test_run_subscribes(self, config: KafkaConfig, coordinator: BatchCoordinator) -> None:
        """Test run subscribes to the configured topics."""
        kafka = MagicMock()
        kafka.consume.return_value = []
        consumer = KafkaChangeConsumer(config, coordinator, consumer=kafka)

        consumer.run(max_batches=0)

        kafka.subscribe.assert_called_once_with(["cdc.products"])

    def test_no_topics(self, coordinator: BatchCoordinator) -> None:
        consumer = KafkaChangeConsumer(KafkaConfig(), coordinator, consumer=MagicMock())

        with pytest.raises(CdcFanoutError, match="No Kafka topics"):
            consumer.subscribe()
