"""Domain events and the documents derived from them."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from cdc_fanout.models.enums import EntityKind, Operation

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class DomainEvent:
    """A classified change to a product or purchase."""

    entity_kind: EntityKind
    operation: Operation
    tenant_id: str
    entity_id: str
    occurred_at: datetime
    payload: dict[str, Any] | None = None
    previous_payload: dict[str, Any] | None = None  # UPDATE only
    source_record_id: str = ""

    @property
    def event_type(self) -> str:
        return f"{self.entity_kind.value}_{self.operation.past_tense}"

    @property
    def epoch_millis(self) -> int:
        return (self.occurred_at - _EPOCH) // timedelta(milliseconds=1)


@dataclass
class SearchIndexEntry:
    """Current-state search document for one entity."""

    tenant_id: str
    entity_id: str
    entity_type: str
    search_text: str
    data: dict[str, Any]
    updated_at: datetime
    ttl: int | None = None  # epoch seconds


@dataclass
class ArchivalObject:
    """Immutable snapshot written once under a time-partitioned key."""

    key: str
    body: dict[str, Any] = field(default_factory=dict)
    content_type: str = "application/json"
