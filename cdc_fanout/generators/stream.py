"""Turn plain items into DynamoDB Streams records and event batches."""

from __future__ import annotations

import itertools
from datetime import datetime, timezone
from typing import Any, Iterator

from boto3.dynamodb.types import TypeSerializer

from cdc_fanout.generators.base import BaseGenerator
from cdc_fanout.generators.entities import ProductGenerator, PurchaseGenerator

DEFAULT_REGION = "us-east-1"
DEFAULT_ACCOUNT = "123456789012"

# Source table -> hash/range key attributes
TABLE_KEYS = {
    "Products": ("tenant_id", "codigo"),
    "Purchases": ("tenant_id", "compra_id"),
}


class StreamRecordBuilder:
    """Wrap items in the envelope Lambda receives from DynamoDB Streams.

    Parameters
    ----------
    region : str
        Region used in the stream ARN.
    account : str
        Account id used in the stream ARN.
    start_sequence : int
        First sequence number handed out.
    """

    def __init__(
        self,
        region: str = DEFAULT_REGION,
        account: str = DEFAULT_ACCOUNT,
        start_sequence: int = 100000000000000000000,
    ) -> None:
        self.region = region
        self.account = account
        self._serializer = TypeSerializer()
        self._sequence = itertools.count(start_sequence)

    def stream_arn(self, table: str) -> str:
        return f"arn:aws:dynamodb:{self.region}:{self.account}:table/{table}/stream/2024-01-01T00:00:00.000"

    def serialize(self, item: dict[str, Any]) -> dict[str, Any]:
        """Item attributes in DynamoDB's typed wire form."""
        return {name: self._serializer.serialize(value) for name, value in item.items()}

    def build(
        self,
        event_name: str,
        table: str,
        new_item: dict[str, Any] | None = None,
        old_item: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Build one stream record.

        Parameters
        ----------
        event_name : str
            ``INSERT``, ``MODIFY`` or ``REMOVE``.
        table : str
            Source table; must be listed in :data:`TABLE_KEYS`.
        new_item, old_item : dict[str, Any] | None
            Plain item images.
        """
        item = new_item if new_item is not None else old_item
        if item is None:
            raise ValueError("A stream record needs at least one image")
        keys = {name: item[name] for name in TABLE_KEYS[table]}
        sequence = str(next(self._sequence))

        data: dict[str, Any] = {
            "ApproximateCreationDateTime": int(datetime.now(timezone.utc).timestamp()),
            "Keys": self.serialize(keys),
            "SequenceNumber": sequence,
            "StreamViewType": "NEW_AND_OLD_IMAGES",
        }
        if new_item is not None:
            data["NewImage"] = self.serialize(new_item)
        if old_item is not None:
            data["OldImage"] = self.serialize(old_item)

        return {
            "eventID": sequence[-12:],
            "eventName": event_name,
            "eventVersion": "1.1",
            "eventSource": "aws:dynamodb",
            "awsRegion": self.region,
            "dynamodb": data,
            "eventSourceARN": self.stream_arn(table),
        }


class ChangeStreamGenerator(BaseGenerator):
    """Generate realistic product and purchase change streams.

    Every entity starts with an INSERT; later changes are MODIFY with the
    previous image attached, and some entities are eventually removed.

    Parameters
    ----------
    tenants : list[str] | None
        Tenant ids to spread entities across.
    seed : int | None
        Random seed for reproducibility.
    delete_ratio : float
        Share of changes that remove an existing entity.
    """

    def __init__(
        self,
        tenants: list[str] | None = None,
        seed: int | None = None,
        delete_ratio: float = 0.1,
    ) -> None:
        super().__init__(seed)
        self.products = ProductGenerator(tenants=tenants, seed=seed)
        self.purchases = PurchaseGenerator(seed=seed)
        self.builder = StreamRecordBuilder()
        self.delete_ratio = delete_ratio
        self._live_products: list[dict[str, Any]] = []
        self._live_purchases: list[dict[str, Any]] = []

    def generate(self) -> dict[str, Any]:
        """Generate the next change on either table."""
        if not self._live_products or self.random.random() < 0.4:
            return self._insert_product()
        if self.random.random() < 0.5:
            return self._purchase_change()
        return self._product_change()

    def generate_batch(self, count: int) -> Iterator[dict[str, Any]]:
        """Yield ``count`` stream records in commit order."""
        for _ in range(count):
            yield self.generate()

    def generate_event(self, count: int) -> dict[str, Any]:
        """A Lambda event carrying ``count`` records."""
        return {"Records": list(self.generate_batch(count))}

    def _insert_product(self) -> dict[str, Any]:
        product = self.products.generate()
        self._live_products.append(product)
        return self.builder.build("INSERT", "Products", new_item=product)

    def _product_change(self) -> dict[str, Any]:
        index = self.random.randrange(len(self._live_products))
        current = self._live_products[index]
        if self.random.random() < self.delete_ratio:
            del self._live_products[index]
            return self.builder.build("REMOVE", "Products", old_item=current)
        updated = self.products.modify(current)
        self._live_products[index] = updated
        return self.builder.build("MODIFY", "Products", new_item=updated, old_item=current)

    def _purchase_change(self) -> dict[str, Any]:
        if not self._live_purchases or self.random.random() < 0.6:
            purchase = self.purchases.generate(self._live_products)
            self._live_purchases.append(purchase)
            return self.builder.build("INSERT", "Purchases", new_item=purchase)

        index = self.random.randrange(len(self._live_purchases))
        current = self._live_purchases[index]
        if self.random.random() < self.delete_ratio:
            del self._live_purchases[index]
            return self.builder.build("REMOVE", "Purchases", old_item=current)
        updated = self.purchases.advance(current)
        self._live_purchases[index] = updated
        return self.builder.build("MODIFY", "Purchases", new_item=updated, old_item=current)
