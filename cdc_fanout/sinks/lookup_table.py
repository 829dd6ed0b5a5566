"""Secondary index sink: tenant-scoped lookup table with expiry."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import timedelta
from typing import Any, Iterator, Protocol

from botocore.exceptions import BotoCoreError, ClientError

from cdc_fanout.exceptions import SinkError
from cdc_fanout.models.enums import Operation
from cdc_fanout.models.events import DomainEvent
from cdc_fanout.pipeline.projector import project_search_text
from cdc_fanout.sinks import aws
from cdc_fanout.sinks.base import Sink

logger = logging.getLogger(__name__)


class LookupTable(Protocol):
    """Boundary of the keyed lookup store."""

    def put(self, item: dict[str, Any]) -> None: ...

    def delete(self, tenant_id: str, entity_id: str) -> None: ...


class SecondaryIndexSink(Sink):
    """Mirror the current payload of each entity under (tenant_id, entity_id).

    Items carry a numeric ``ttl`` (epoch seconds) the table expires them by.
    """

    name = "lookup_table"

    def __init__(self, table: LookupTable, ttl_days: int = 365) -> None:
        self.table = table
        self.ttl_days = ttl_days

    def build_item(self, event: DomainEvent) -> dict[str, Any]:
        expires = event.occurred_at + timedelta(days=self.ttl_days)
        return {
            "tenant_id": event.tenant_id,
            "entity_id": event.entity_id,
            "entity_type": event.entity_kind.value,
            "search_text": project_search_text(event.entity_kind, event.payload),
            "data": dict(event.payload or {}),
            "updated_at": event.occurred_at.isoformat(),
            "ttl": int(expires.timestamp()),
        }

    def write(self, event: DomainEvent) -> None:
        if event.operation is Operation.DELETE:
            self.table.delete(event.tenant_id, event.entity_id)
        else:
            self.table.put(self.build_item(event))


class DynamoLookupTable:
    """DynamoDB table keyed by ``tenant_id`` (hash) and ``entity_id`` (range).

    Payload numbers arrive from the decoder as ``int``/``Decimal``, which is
    what the DynamoDB resource layer accepts.
    """

    def __init__(self, table_name: str, table: Any = None, **resource_options: Any) -> None:
        self.table_name = table_name
        self.table = table or aws.get_dynamodb_table(table_name, **resource_options)

    def put(self, item: dict[str, Any]) -> None:
        with _translated(f"put {item['tenant_id']}/{item['entity_id']}"):
            self.table.put_item(Item=item)

    def delete(self, tenant_id: str, entity_id: str) -> None:
        # DeleteItem on a missing key succeeds, which keeps deletes idempotent
        with _translated(f"delete {tenant_id}/{entity_id}"):
            self.table.delete_item(Key={"tenant_id": tenant_id, "entity_id": entity_id})


@contextmanager
def _translated(action: str) -> Iterator[None]:
    """Map botocore failures onto :class:`SinkError`."""
    try:
        yield
    except ClientError as exc:
        raise SinkError(
            f"Lookup table {action} failed: {aws.error_code(exc) or exc}",
            retryable=aws.is_retryable(exc),
        ) from exc
    except BotoCoreError as exc:
        raise SinkError(f"Lookup table unreachable during {action}: {exc}", retryable=True) from exc
