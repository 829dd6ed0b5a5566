"""DynamoDB Streams envelopes as delivered to AWS Lambda."""

from __future__ import annotations

from typing import Any, Mapping

from cdc_fanout.exceptions import BatchRedeliveryError
from cdc_fanout.models.enums import EntityKind
from cdc_fanout.models.records import ChangeRecord, PartitionKey
from cdc_fanout.models.results import BatchResult
from cdc_fanout.pipeline.fields import TENANT_FIELD

_SCALAR_TAGS = ("S", "N")


def table_name_from_arn(arn: str) -> str:
    """``arn:aws:dynamodb:<region>:<acct>:table/Products/stream/...`` -> ``Products``."""
    _, _, resource = arn.partition(":table/")
    return resource.split("/", 1)[0]


def resolve_entity_kind(
    source: str,
    source_kinds: Mapping[str, EntityKind],
    default_kind: EntityKind | None = None,
) -> EntityKind | None:
    """Entity kind configured for ``source``, else ``default_kind``."""
    return source_kinds.get(source, default_kind)


def partition_key_from_keys(keys: Mapping[str, Any] | None) -> PartitionKey | None:
    """Read (tenant, entity) from typed key attributes without failing.

    The tenant is the ``tenant_id`` attribute and the entity the remaining
    key attribute. Anything unexpected yields ``None``; the decoder reports
    malformed keys properly later.
    """
    if not isinstance(keys, Mapping) or TENANT_FIELD not in keys:
        return None
    tenant_id = _scalar(keys[TENANT_FIELD])
    others = sorted(name for name in keys if name != TENANT_FIELD)
    if tenant_id is None or len(others) != 1:
        return None
    entity_id = _scalar(keys[others[0]])
    if entity_id is None:
        return None
    return PartitionKey(tenant_id=tenant_id, entity_id=entity_id)


def parse_stream_record(
    raw: Mapping[str, Any],
    source_kinds: Mapping[str, EntityKind],
    default_kind: EntityKind | None = None,
) -> ChangeRecord:
    """Build a :class:`ChangeRecord` from one stream record."""
    data = raw.get("dynamodb") or {}
    source = table_name_from_arn(str(raw.get("eventSourceARN", "")))
    keys = data.get("Keys")
    return ChangeRecord(
        record_id=str(data.get("SequenceNumber") or raw.get("eventID") or ""),
        event_name=str(raw.get("eventName", "")),
        new_image=data.get("NewImage"),
        old_image=data.get("OldImage"),
        keys=keys,
        partition_key=partition_key_from_keys(keys),
        entity_kind=resolve_entity_kind(source, source_kinds, default_kind),
        source=source,
        raw=dict(raw),
    )


def parse_stream_event(
    event: Mapping[str, Any],
    source_kinds: Mapping[str, EntityKind],
    default_kind: EntityKind | None = None,
) -> list[ChangeRecord]:
    """Build change records from a Lambda DynamoDB Streams event."""
    return [
        parse_stream_record(raw, source_kinds, default_kind)
        for raw in event.get("Records", [])
        if raw.get("eventSource", "aws:dynamodb") == "aws:dynamodb"
    ]


def build_response(result: BatchResult, report_batch_item_failures: bool = True) -> dict[str, Any]:
    """Translate a batch result into Lambda's redelivery signal.

    With ``ReportBatchItemFailures`` enabled on the event source mapping the
    records to redeliver are listed by sequence number. Without it, the only
    way to get a redelivery is to fail the invocation.

    Raises
    ------
    BatchRedeliveryError
        When redelivery is needed and per-record reporting is disabled.
    """
    if report_batch_item_failures:
        return {"batchItemFailures": [{"itemIdentifier": record_id} for record_id in result.redelivery_ids]}
    if result.should_redeliver:
        raise BatchRedeliveryError(
            f"{len(result.redelivery_ids)} records need redelivery",
            record_ids=result.redelivery_ids,
        )
    return {"batchItemFailures": []}


def _scalar(value: Any) -> str | None:
    if isinstance(value, Mapping) and len(value) == 1:
        ((tag, raw),) = value.items()
        if tag in _SCALAR_TAGS and isinstance(raw, str) and raw.strip():
            return raw
    return None
