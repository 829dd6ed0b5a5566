"""Decode DynamoDB-style typed attribute values into plain Python values.

Every attribute value on the wire is a single-entry map whose key is a type
tag::

    {"name": {"S": "Laptop"}, "price": {"N": "1299.99"}, "tags": {"SS": ["a"]}}

decodes to ``{"name": "Laptop", "price": Decimal("1299.99"), "tags": ["a"]}``.
Maps and lists decode their children with the same rule. A missing image
decodes to ``None`` so callers can tell "no data" from "empty object".
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from cdc_fanout.exceptions import DecodeError
from cdc_fanout.models.enums import Operation

EVENT_NAME_OPERATIONS = {
    "INSERT": Operation.CREATE,
    "MODIFY": Operation.UPDATE,
    "REMOVE": Operation.DELETE,
}


def decode_operation(event_name: str) -> Operation:
    """Map a stream event name to an :class:`Operation`.

    Raises
    ------
    DecodeError
        If the event name is not INSERT, MODIFY or REMOVE.
    """
    try:
        return EVENT_NAME_OPERATIONS[event_name]
    except KeyError:
        raise DecodeError(f"Unrecognized operation tag: {event_name!r}") from None


def decode_image(image: dict[str, Any] | None, path: str = "") -> dict[str, Any] | None:
    """Decode a typed field map.

    Parameters
    ----------
    image : dict[str, Any] | None
        Field name to typed attribute value, or ``None``.
    path : str
        Field path prefix used in error messages.

    Returns
    -------
    dict[str, Any] | None
        Plain field map, or ``None`` when ``image`` is ``None``.

    Raises
    ------
    DecodeError
        If any field carries an unrecognized or malformed value.
    """
    if image is None:
        return None
    if not isinstance(image, dict):
        raise DecodeError(f"Expected a field map at {path or '<root>'}, got {type(image).__name__}")
    return {
        name: decode_value(value, f"{path}.{name}" if path else name)
        for name, value in image.items()
    }


def decode_value(value: Any, path: str = "") -> Any:
    """Decode one typed attribute value."""
    if not isinstance(value, dict) or len(value) != 1:
        raise DecodeError(f"Field {path or '<value>'} is not a single-tag attribute value: {value!r}")

    ((tag, raw),) = value.items()
    decoder = _DECODERS.get(tag)
    if decoder is None:
        raise DecodeError(f"Field {path or '<value>'} has unrecognized type tag {tag!r}")
    return decoder(raw, path)


def _decode_number(raw: Any, path: str) -> int | Decimal:
    try:
        number = Decimal(str(raw))
    except InvalidOperation:
        raise DecodeError(f"Field {path} has a malformed number: {raw!r}") from None
    if not number.is_finite():
        raise DecodeError(f"Field {path} has a non-finite number: {raw!r}")
    # "10" stays an int, "10.0" keeps its scale
    if number.as_tuple().exponent >= 0:
        return int(number)
    return number


def _decode_string(raw: Any, path: str) -> str:
    if not isinstance(raw, str):
        raise DecodeError(f"Field {path} is tagged S but holds {type(raw).__name__}")
    return raw


def _decode_bool(raw: Any, path: str) -> bool:
    if not isinstance(raw, bool):
        raise DecodeError(f"Field {path} is tagged BOOL but holds {raw!r}")
    return raw


def _decode_list_of(item: Callable[[Any, str], Any]) -> Callable[[Any, str], list[Any]]:
    def decode(raw: Any, path: str) -> list[Any]:
        if not isinstance(raw, list):
            raise DecodeError(f"Field {path} must hold a list, got {type(raw).__name__}")
        return [item(element, f"{path}[{i}]") for i, element in enumerate(raw)]

    return decode


def _decode_map(raw: Any, path: str) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise DecodeError(f"Field {path} is tagged M but holds {type(raw).__name__}")
    return decode_image(raw, path)  # type: ignore[return-value]


def _decode_null(raw: Any, path: str) -> None:
    return None


_DECODERS: dict[str, Callable[[Any, str], Any]] = {
    "S": _decode_string,
    "N": _decode_number,
    "BOOL": _decode_bool,
    "NULL": _decode_null,
    "B": _decode_string,  # base64 text, kept as text
    "SS": _decode_list_of(_decode_string),
    "NS": _decode_list_of(_decode_number),
    "BS": _decode_list_of(_decode_string),
    "M": _decode_map,
    "L": _decode_list_of(decode_value),
}
