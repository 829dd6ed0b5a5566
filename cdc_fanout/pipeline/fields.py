"""Field-name aliases shared by the classifier and the search projector.

Source tables were created with Spanish attribute names (``codigo``,
``nombre``) and later ones with English names; both spellings are accepted,
English first.
"""

from typing import Any, Mapping

from cdc_fanout.models.enums import EntityKind

TENANT_FIELD = "tenant_id"

ENTITY_ID_FIELDS: dict[EntityKind, tuple[str, ...]] = {
    EntityKind.PRODUCT: ("product_id", "codigo"),
    EntityKind.PURCHASE: ("purchase_id", "compra_id"),
}

NAME_FIELDS = ("name", "nombre")
DESCRIPTION_FIELDS = ("description", "descripcion")
CATEGORY_FIELDS = ("category", "categoria")
CUSTOMER_FIELDS = ("user_id", "customer_id")
PURCHASE_DATE_FIELDS = ("purchase_date", "fecha")
LINE_ITEM_FIELDS = ("items", "productos")
LINE_ITEM_NAME_FIELDS = ("name", "nombre", "product_name")


def first_present(payload: Mapping[str, Any] | None, names: tuple[str, ...]) -> Any:
    """Return the first non-empty value among ``names``, or ``None``."""
    if not payload:
        return None
    for name in names:
        value = payload.get(name)
        if value is not None and value != "":
            return value
    return None
