"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator

import pytest

from cdc_fanout.generators import StreamRecordBuilder
from cdc_fanout.models import ChangeRecord, DomainEvent, EntityKind, Operation
from cdc_fanout.pipeline.coordinator import BatchCoordinator
from cdc_fanout.pipeline.dispatcher import SinkDispatcher
from cdc_fanout.sinks import (
    ArchivalSink,
    InMemoryLookupTable,
    InMemoryObjectStore,
    InMemorySearchBackend,
    SearchIndexSink,
    SecondaryIndexSink,
)
from cdc_fanout.transport.dynamodb_stream import parse_stream_record

SOURCE_TABLES = {"Products": EntityKind.PRODUCT, "Purchases": EntityKind.PURCHASE}
FIXED_TIME = datetime(2024, 3, 5, 7, 30, tzinfo=timezone.utc)


class StepClock:
    """Deterministic clock advancing one second per reading."""

    def __init__(self, start: datetime = FIXED_TIME) -> None:
        self.current = start

    def __call__(self) -> datetime:
        now = self.current
        self.current += timedelta(seconds=1)
        return now


@pytest.fixture
def seed() -> int:
    """Fixed seed for reproducible tests."""
    return 42


@pytest.fixture
def clock() -> StepClock:
    """Clock starting at 2024-03-05T07:30:00Z."""
    return StepClock()


@pytest.fixture
def builder() -> StreamRecordBuilder:
    """Stream record builder with predictable sequence numbers."""
    return StreamRecordBuilder(start_sequence=1000)


@pytest.fixture
def laptop() -> dict[str, Any]:
    """Product item as stored in the Products table."""
    return {
        "tenant_id": "T1",
        "codigo": "P1",
        "nombre": "Laptop Gaming",
        "descripcion": "Portatil de alto rendimiento",
        "categoria": "electronica",
        "precio": 1299,
    }


@pytest.fixture
def to_record(builder: StreamRecordBuilder) -> Callable[..., ChangeRecord]:
    """Build a ChangeRecord from plain items via a real stream envelope."""

    def make(
        event_name: str,
        new_item: dict[str, Any] | None = None,
        old_item: dict[str, Any] | None = None,
        table: str = "Products",
    ) -> ChangeRecord:
        raw = builder.build(event_name, table, new_item=new_item, old_item=old_item)
        return parse_stream_record(raw, SOURCE_TABLES)

    return make


@pytest.fixture
def product_event(laptop: dict[str, Any]) -> DomainEvent:
    """CREATE event for the laptop product."""
    return DomainEvent(
        entity_kind=EntityKind.PRODUCT,
        operation=Operation.CREATE,
        tenant_id="T1",
        entity_id="P1",
        occurred_at=FIXED_TIME,
        payload=dict(laptop),
        source_record_id="1000",
    )


@pytest.fixture
def search_backend() -> InMemorySearchBackend:
    return InMemorySearchBackend()


@pytest.fixture
def object_store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def lookup() -> InMemoryLookupTable:
    return InMemoryLookupTable()


@pytest.fixture
def dispatcher(
    search_backend: InMemorySearchBackend,
    object_store: InMemoryObjectStore,
    lookup: InMemoryLookupTable,
) -> Iterator[SinkDispatcher]:
    """Dispatcher over the three in-memory sinks, all required."""
    dispatcher = SinkDispatcher(
        [SearchIndexSink(search_backend), ArchivalSink(object_store), SecondaryIndexSink(lookup)],
        timeout_seconds=5.0,
    )
    yield dispatcher
    dispatcher.close()


@pytest.fixture
def coordinator(dispatcher: SinkDispatcher, clock: StepClock) -> BatchCoordinator:
    """Coordinator over the in-memory dispatcher with no dead-letter queue."""
    return BatchCoordinator(dispatcher, clock=clock, max_workers=4)


@pytest.fixture
def fixed_time() -> datetime:
    """Timestamp the step clock starts from."""
    return FIXED_TIME
