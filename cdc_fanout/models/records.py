"""Inbound change record envelope."""

from dataclasses import dataclass
from typing import Any

from cdc_fanout.models.enums import EntityKind


@dataclass(frozen=True)
class PartitionKey:
    """Identity that orders delivery within the transport."""

    tenant_id: str
    entity_id: str

    def __str__(self) -> str:
        return f"{self.tenant_id}/{self.entity_id}"


@dataclass(frozen=True)
class ChangeRecord:
    """One insert/modify/remove as delivered by the change-log transport.

    Images and keys are kept in their typed wire form; decoding happens in
    the pipeline so a malformed record fails there, not in the transport.
    """

    record_id: str
    event_name: str  # INSERT, MODIFY, REMOVE
    new_image: dict[str, Any] | None = None
    old_image: dict[str, Any] | None = None
    keys: dict[str, Any] | None = None
    partition_key: PartitionKey | None = None
    entity_kind: EntityKind | None = None  # hint from the source table or topic
    source: str = ""
    raw: dict[str, Any] | None = None
