"""Enumeration types for change records and pipeline outcomes."""

from enum import Enum


class Operation(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    @property
    def past_tense(self) -> str:
        """Suffix used in event type names (``product_created``)."""
        return {
            Operation.CREATE: "created",
            Operation.UPDATE: "updated",
            Operation.DELETE: "deleted",
        }[self]


class EntityKind(str, Enum):
    PRODUCT = "product"
    PURCHASE = "purchase"

    @property
    def collection(self) -> str:
        """Plural name used for archival prefixes and index scopes."""
        return f"{self.value}s"


class RecordStatus(str, Enum):
    PROCESSED = "PROCESSED"
    RETRY = "RETRY"
    FAILED = "FAILED"
    REJECTED = "REJECTED"
