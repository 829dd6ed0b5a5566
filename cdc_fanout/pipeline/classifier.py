"""Build typed domain events from decoded change records."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Mapping

from cdc_fanout.exceptions import ValidationError
from cdc_fanout.models.enums import EntityKind, Operation
from cdc_fanout.models.events import DomainEvent
from cdc_fanout.pipeline.clock import utc_now
from cdc_fanout.pipeline.fields import ENTITY_ID_FIELDS, TENANT_FIELD, first_present


def classify(
    operation: Operation,
    new_image: dict[str, Any] | None,
    old_image: dict[str, Any] | None,
    entity_kind: EntityKind | None,
    keys: Mapping[str, Any] | None = None,
    clock: Callable[[], datetime] = utc_now,
    source_record_id: str = "",
) -> DomainEvent:
    """Classify a decoded change into a :class:`DomainEvent`.

    Parameters
    ----------
    operation : Operation
        CREATE, UPDATE or DELETE.
    new_image, old_image : dict[str, Any] | None
        Decoded images; either may be ``None``.
    entity_kind : EntityKind | None
        Kind resolved from the source table or topic.
    keys : Mapping[str, Any] | None
        Decoded key attributes, used when the image lacks identity fields.
    clock : Callable[[], datetime]
        Processing-time source for ``occurred_at``.
    source_record_id : str
        Transport identifier carried through for logging and dead letters.

    Returns
    -------
    DomainEvent
        Event with ``payload`` from the new image (old image on DELETE) and
        ``previous_payload`` from the old image on UPDATE.

    Raises
    ------
    ValidationError
        If the kind is unknown, a CREATE/UPDATE has no new image, or the
        tenant or entity id is missing or empty.
    """
    if entity_kind is None:
        raise ValidationError("Entity kind could not be resolved from the record source", ["entity_kind"])

    if operation is Operation.DELETE:
        payload, previous = old_image, None
    else:
        if new_image is None:
            raise ValidationError(f"{operation.value} record has no new image", ["new_image"])
        payload = new_image
        previous = old_image if operation is Operation.UPDATE else None

    id_fields = ENTITY_ID_FIELDS[entity_kind]
    tenant_id = _identity(payload, keys, (TENANT_FIELD,))
    entity_id = _identity(payload, keys, id_fields)

    missing = []
    if tenant_id is None:
        missing.append(TENANT_FIELD)
    if entity_id is None:
        missing.append(id_fields[0])
    if missing:
        raise ValidationError(
            f"Missing required {entity_kind.value} fields: {', '.join(missing)}",
            missing,
        )

    return DomainEvent(
        entity_kind=entity_kind,
        operation=operation,
        tenant_id=tenant_id,  # type: ignore[arg-type]
        entity_id=entity_id,  # type: ignore[arg-type]
        occurred_at=clock(),
        payload=payload,
        previous_payload=previous,
        source_record_id=source_record_id,
    )


def _identity(
    payload: Mapping[str, Any] | None,
    keys: Mapping[str, Any] | None,
    names: tuple[str, ...],
) -> str | None:
    value = first_present(payload, names)
    if value is None:
        value = first_present(keys, names)
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value).strip()
    return text or None
