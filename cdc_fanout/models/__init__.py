"""Domain models for the change-data-capture fan-out pipeline."""

from cdc_fanout.models.enums import EntityKind, Operation, RecordStatus
from cdc_fanout.models.events import ArchivalObject, DomainEvent, SearchIndexEntry
from cdc_fanout.models.records import ChangeRecord, PartitionKey
from cdc_fanout.models.results import (
    BatchResult,
    DispatchResult,
    RecordOutcome,
    SinkFailure,
    SinkResult,
)

__all__ = [
    "ArchivalObject",
    "BatchResult",
    "ChangeRecord",
    "DispatchResult",
    "DomainEvent",
    "EntityKind",
    "Operation",
    "PartitionKey",
    "RecordOutcome",
    "RecordStatus",
    "SearchIndexEntry",
    "SinkFailure",
    "SinkResult",
]
