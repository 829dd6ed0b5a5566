"""Derive the normalized search text for an entity payload.

The projection is a pure function of the payload: re-deriving it on a retry
must give a byte-identical string, or the index sees a spurious change.
"""

from typing import Any, Iterator, Mapping

from cdc_fanout.models.enums import EntityKind
from cdc_fanout.pipeline.fields import (
    CATEGORY_FIELDS,
    CUSTOMER_FIELDS,
    DESCRIPTION_FIELDS,
    ENTITY_ID_FIELDS,
    LINE_ITEM_FIELDS,
    LINE_ITEM_NAME_FIELDS,
    NAME_FIELDS,
    PURCHASE_DATE_FIELDS,
    TENANT_FIELD,
    first_present,
)


def project_search_text(entity_kind: EntityKind, payload: Mapping[str, Any] | None) -> str:
    """Join the searchable fields of ``payload`` into one lower-cased string.

    Products contribute name, description, category, tenant id and product id.
    Purchases contribute purchase id, customer id, tenant id, purchase date,
    then the code and name of every line item. Absent fields are skipped and
    runs of whitespace collapse to a single space.

    Parameters
    ----------
    entity_kind : EntityKind
        Kind of entity the payload describes.
    payload : Mapping[str, Any] | None
        Decoded payload; ``None`` projects to an empty string.

    Returns
    -------
    str
        Normalized search text.
    """
    if not payload:
        return ""
    if entity_kind is EntityKind.PRODUCT:
        values = _product_fields(payload)
    else:
        values = _purchase_fields(payload)
    return " ".join(_normalize(v) for v in values if _searchable(v)).strip().lower()


def _product_fields(payload: Mapping[str, Any]) -> Iterator[Any]:
    yield first_present(payload, NAME_FIELDS)
    yield first_present(payload, DESCRIPTION_FIELDS)
    yield first_present(payload, CATEGORY_FIELDS)
    yield payload.get(TENANT_FIELD)
    yield first_present(payload, ENTITY_ID_FIELDS[EntityKind.PRODUCT])


def _purchase_fields(payload: Mapping[str, Any]) -> Iterator[Any]:
    product_id_fields = ENTITY_ID_FIELDS[EntityKind.PRODUCT]

    yield first_present(payload, ENTITY_ID_FIELDS[EntityKind.PURCHASE])
    yield first_present(payload, CUSTOMER_FIELDS)
    yield payload.get(TENANT_FIELD)
    yield first_present(payload, PURCHASE_DATE_FIELDS)

    items = first_present(payload, LINE_ITEM_FIELDS)
    if isinstance(items, list):
        for item in items:
            if isinstance(item, Mapping):
                yield first_present(item, product_id_fields)
                yield first_present(item, LINE_ITEM_NAME_FIELDS)
    else:
        # Single-product purchases carry the product inline
        yield first_present(payload, product_id_fields)
        yield payload.get("product_name")


def _searchable(value: Any) -> bool:
    if value is None or isinstance(value, (bool, dict, list)):
        return False
    return bool(str(value).strip())


def _normalize(value: Any) -> str:
    return " ".join(str(value).split())
