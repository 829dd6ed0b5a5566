"""Append-only archival sink writing time-partitioned JSON objects."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from botocore.exceptions import BotoCoreError, ClientError

from cdc_fanout.exceptions import SinkError
from cdc_fanout.models.enums import Operation
from cdc_fanout.models.events import ArchivalObject, DomainEvent
from cdc_fanout.pipeline.fields import ENTITY_ID_FIELDS, TENANT_FIELD
from cdc_fanout.pipeline.keys import archival_key
from cdc_fanout.sinks import aws
from cdc_fanout.sinks.base import Sink
from cdc_fanout.sinks.serialization import dumps

logger = logging.getLogger(__name__)


class ObjectStore(Protocol):
    """Boundary of the archival object store."""

    def put_once(self, key: str, body: bytes, content_type: str) -> None: ...


class ArchivalSink(Sink):
    """Write one immutable snapshot per event.

    Keys are never reused, so a redelivered event produces a second object
    rather than overwriting the first. UPDATE snapshots keep the old image
    under ``previous_data`` for change history.
    """

    name = "archive"

    def __init__(self, store: ObjectStore) -> None:
        self.store = store

    def build_object(self, event: DomainEvent) -> ArchivalObject:
        body: dict[str, Any] = dict(event.payload or {})
        body.setdefault(TENANT_FIELD, event.tenant_id)
        body.setdefault(ENTITY_ID_FIELDS[event.entity_kind][0], event.entity_id)
        body["processed_at"] = event.occurred_at.isoformat()
        body["event_type"] = event.event_type
        if event.operation is Operation.UPDATE:
            body["previous_data"] = event.previous_payload

        key = archival_key(event.entity_kind, event.tenant_id, event.entity_id, event.occurred_at)
        return ArchivalObject(key=key, body=body)

    def write(self, event: DomainEvent) -> None:
        obj = self.build_object(event)
        self.store.put_once(obj.key, dumps(obj.body), obj.content_type)
        logger.debug("Archived %s", obj.key)


class S3ObjectStore:
    """Write-once puts against an S3 bucket.

    ``If-None-Match: *`` makes S3 refuse to replace an existing object, so
    a key collision surfaces as an error instead of silently losing history.
    """

    def __init__(self, bucket: str, client: Any = None, **client_options: Any) -> None:
        self.bucket = bucket
        self.client = client or aws.get_s3_client(**client_options)

    def put_once(self, key: str, body: bytes, content_type: str) -> None:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
                IfNoneMatch="*",
            )
        except ClientError as exc:
            if aws.error_code(exc) == "PreconditionFailed":
                raise SinkError(f"Archival key already exists: {key}", retryable=False) from exc
            raise SinkError(
                f"Archival put failed for {key}: {aws.error_code(exc) or exc}",
                retryable=aws.is_retryable(exc),
            ) from exc
        except BotoCoreError as exc:
            raise SinkError(f"Archival store unreachable for {key}: {exc}", retryable=True) from exc
