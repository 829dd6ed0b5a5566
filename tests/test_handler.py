"""Tests for the Lambda entry point and pipeline assembly."""

import os
import time
from pathlib import Path
from typing import Any, Iterator
from unittest.mock import MagicMock, patch

import pytest

from cdc_fanout import handler as lambda_handler
from cdc_fanout.bootstrap import build_coordinator, build_dead_letter, build_dispatcher, build_sinks
from cdc_fanout.config import DispatchConfig, KafkaConfig, PipelineConfig
from cdc_fanout.exceptions import BatchRedeliveryError, SinkError
from cdc_fanout.generators import StreamRecordBuilder
from cdc_fanout.models import DomainEvent
from cdc_fanout.pipeline.coordinator import BatchCoordinator
from cdc_fanout.pipeline.dispatcher import SinkDispatcher
from cdc_fanout.sinks import ArchivalSink, InMemoryObjectStore, InMemorySearchBackend, SearchIndexSink
from cdc_fanout.sinks.base import Sink
from cdc_fanout.transport.dead_letter import JsonLinesDeadLetterQueue

ENV = {
    "SOURCE_TABLES": '{"Products": "product", "Purchases": "purchase"}',
    "LOG_FORMAT": "standard",
}


class RejectingSink(Sink):
    """Sink refusing one entity with a retryable error."""

    name = "lookup_table"

    def __init__(self, entity_id: str) -> None:
        self.entity_id = entity_id

    def write(self, event: DomainEvent) -> None:
        if event.entity_id == self.entity_id:
            raise SinkError("throttled", retryable=True)


@pytest.fixture
def lambda_env(search_backend: InMemorySearchBackend) -> Iterator[MagicMock]:
    """Environment and in-memory coordinator behind the handler."""

    dispatchers: list[SinkDispatcher] = []

    def fake_build(config: PipelineConfig) -> BatchCoordinator:
        dispatcher = SinkDispatcher(
            [SearchIndexSink(search_backend), ArchivalSink(InMemoryObjectStore()), RejectingSink("P2")],
            timeout_seconds=5.0,
        )
        dispatchers.append(dispatcher)
        return BatchCoordinator(dispatcher)

    lambda_handler.get_config.cache_clear()
    lambda_handler.get_coordinator.cache_clear()
    with patch.dict(os.environ, ENV, clear=True):
        with patch.object(lambda_handler, "build_coordinator", side_effect=fake_build) as build:
            yield build
    for dispatcher in dispatchers:
        dispatcher.close()
    lambda_handler.get_config.cache_clear()
    lambda_handler.get_coordinator.cache_clear()


def stream_event(builder: StreamRecordBuilder, *codes: str) -> dict[str, Any]:
    return {
        "Records": [
            builder.build("INSERT", "Products", new_item={"tenant_id": "T1", "codigo": code, "nombre": code})
            for code in codes
        ]
    }


class TestHandler:
    """Tests for the Lambda handler."""

    def test_clean_batch(
        self,
        lambda_env: MagicMock,
        builder: StreamRecordBuilder,
        search_backend: InMemorySearchBackend,
    ) -> None:
        """Test a fully processed batch reports no item failures."""
        response = lambda_handler.handler(stream_event(builder, "P1", "P3"))

        assert response == {"batchItemFailures": []}
        assert sorted(search_backend.scopes["search-products-T1"]) == ["P1", "P3"]

    def test_failed_record_reported(self, lambda_env: MagicMock, builder: StreamRecordBuilder) -> None:
        """Test the stream sequence number of a retryable record is returned."""
        event = stream_event(builder, "P1", "P2")

        response = lambda_handler.handler(event)

        assert response == {"batchItemFailures": [{"itemIdentifier": "1001"}]}

    def test_whole_batch_redelivery(self, lambda_env: MagicMock, builder: StreamRecordBuilder) -> None:
        """Test disabling per-record reporting raises instead."""
        with patch.dict(os.environ, {"REPORT_BATCH_ITEM_FAILURES": "false"}):
            with pytest.raises(BatchRedeliveryError) as excinfo:
                lambda_handler.handler(stream_event(builder, "P2"))

        assert excinfo.value.record_ids == ["1000"]

    def test_coordinator_reused(self, lambda_env: MagicMock, builder: StreamRecordBuilder) -> None:
        """Test warm invocations reuse one coordinator."""
        lambda_handler.handler(stream_event(builder, "P1"))
        lambda_handler.handler(stream_event(builder, "P3"))

        assert lambda_env.call_count == 1

    def test_deadline_from_context(self) -> None:
        """Test the deadline leaves the configured margin."""
        context = MagicMock()
        context.get_remaining_time_in_millis.return_value = 10_000

        before = time.monotonic()
        deadline = lambda_handler._deadline(context, margin_seconds=2.0)

        assert before + 7.9 <= deadline <= time.monotonic() + 8.0

    def test_no_context_no_deadline(self) -> None:
        assert lambda_handler._deadline(None, 2.0) is None


class TestBootstrap:
    """Tests for pipeline assembly."""

    @patch("cdc_fanout.sinks.aws.boto3")
    def test_build_all_sinks(self, mock_boto3: MagicMock) -> None:
        """Test every enabled sink is built against its backend."""
        config = PipelineConfig()
        config.archive.endpoint_url = "http://minio:9000"

        sinks = build_sinks(config)

        assert [s.name for s in sinks] == ["search_index", "archive", "lookup_table"]
        assert mock_boto3.client.call_args.args == ("s3",)
        assert mock_boto3.client.call_args.kwargs["endpoint_url"] == "http://minio:9000"
        mock_boto3.resource.return_value.Table.assert_called_once_with("SearchIndex")

    @patch("cdc_fanout.sinks.aws.boto3")
    def test_sink_clients_bounded_by_sink_timeout(self, mock_boto3: MagicMock) -> None:
        """Test backend clients are built with timeouts that end inside the sink timeout."""
        config = PipelineConfig(dispatch=DispatchConfig(sink_timeout_seconds=6.0))
        config.search_index.connect_timeout_seconds = 2

        search, _, _ = build_sinks(config)

        assert search.backend.connect_timeout == 2
        for call in (mock_boto3.client.call_args, mock_boto3.resource.call_args):
            botocore_config = call.kwargs["config"]
            attempts = botocore_config.retries["max_attempts"] + 1
            assert (botocore_config.connect_timeout + botocore_config.read_timeout) * attempts <= 6.0

    @patch("cdc_fanout.sinks.aws.boto3")
    def test_build_search_only(self, mock_boto3: MagicMock) -> None:
        """Test disabled sinks create no clients."""
        config = PipelineConfig(dispatch=DispatchConfig(enabled_sinks=("search_index",)))

        sinks = build_sinks(config)

        assert [s.name for s in sinks] == ["search_index"]
        mock_boto3.client.assert_not_called()
        mock_boto3.resource.assert_not_called()

    def test_build_dispatcher_required(self) -> None:
        """Test the dispatcher takes required sinks from config."""
        config = PipelineConfig(dispatch=DispatchConfig(required_sinks=("search_index",)))
        sinks = [SearchIndexSink(InMemorySearchBackend()), ArchivalSink(InMemoryObjectStore())]

        dispatcher = build_dispatcher(config, sinks)
        try:
            assert dispatcher.required == {"search_index"}
            assert dispatcher.timeout_seconds == 10.0
        finally:
            dispatcher.close()

    def test_dead_letter_file(self, tmp_path: Path) -> None:
        config = PipelineConfig(dead_letter_dir=tmp_path)

        assert isinstance(build_dead_letter(config), JsonLinesDeadLetterQueue)

    @patch("cdc_fanout.transport.kafka.Producer")
    def test_dead_letter_topic_preferred(self, mock_producer: MagicMock, tmp_path: Path) -> None:
        """Test a configured topic wins over a local directory."""
        from cdc_fanout.transport.kafka import KafkaDeadLetterQueue

        config = PipelineConfig(kafka=KafkaConfig(dead_letter_topic="cdc.dlq"), dead_letter_dir=tmp_path)

        queue = build_dead_letter(config)

        assert isinstance(queue, KafkaDeadLetterQueue)
        assert queue.topic == "cdc.dlq"

    def test_no_dead_letter(self) -> None:
        assert build_dead_letter(PipelineConfig()) is None

    def test_build_coordinator(self, tmp_path: Path) -> None:
        """Test the coordinator is wired to the given dispatcher."""
        config = PipelineConfig(
            dispatch=DispatchConfig(enabled_sinks=("search_index",)),
            dead_letter_dir=tmp_path,
        )
        dispatcher = build_dispatcher(config, [SearchIndexSink(InMemorySearchBackend())])

        coordinator = build_coordinator(config, dispatcher=dispatcher)
        try:
            assert coordinator.dispatcher is dispatcher
            assert isinstance(coordinator.dead_letter, JsonLinesDeadLetterQueue)
            assert coordinator.max_workers == 8
        finally:
            dispatcher.close()
