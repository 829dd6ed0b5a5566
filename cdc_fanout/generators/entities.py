"""Product and purchase item generators shaped like the source tables."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterator

from cdc_fanout.generators.base import BaseGenerator


class ProductGenerator(BaseGenerator):
    """Generate product items for a multi-tenant catalog table."""

    CATEGORIES = ["electronica", "hogar", "deportes", "libros", "juguetes", "moda"]
    ADJECTIVES = ["Gaming", "Pro", "Ultra", "Compacto", "Inalambrico", "Premium"]
    NOUNS = ["Laptop", "Teclado", "Monitor", "Silla", "Raqueta", "Lampara", "Mochila"]

    def __init__(self, tenants: list[str] | None = None, seed: int | None = None) -> None:
        super().__init__(seed)
        self.tenants = tenants or ["tenant-a", "tenant-b"]

    def generate(self, tenant_id: str | None = None) -> dict[str, Any]:
        """Generate a single product item.

        Parameters
        ----------
        tenant_id : str | None
            Owning tenant; picked at random when omitted.

        Returns
        -------
        dict[str, Any]
            Item with ``tenant_id`` and ``codigo`` as its key.
        """
        name = f"{self.random.choice(self.NOUNS)} {self.random.choice(self.ADJECTIVES)}"
        return {
            "tenant_id": tenant_id or self.random.choice(self.tenants),
            "codigo": f"PROD-{self.random.randint(1, 999999):06d}",
            "nombre": name,
            "descripcion": self.fake.sentence(nb_words=8),
            "categoria": self.random.choice(self.CATEGORIES),
            "precio": Decimal(self.random.randint(500, 250000)) / 100,
            "stock": self.random.randint(0, 500),
            "activo": True,
            "tags": {self.fake.word() for _ in range(3)},
        }

    def generate_batch(self, count: int, tenant_id: str | None = None) -> Iterator[dict[str, Any]]:
        for _ in range(count):
            yield self.generate(tenant_id)

    def modify(self, product: dict[str, Any]) -> dict[str, Any]:
        """Return a copy with a new price and stock level."""
        updated = dict(product)
        updated["precio"] = (product["precio"] * Decimal(self.random.choice(["0.9", "1.1", "1.25"]))).quantize(
            Decimal("0.01")
        )
        updated["stock"] = max(0, product["stock"] + self.random.randint(-20, 20))
        return updated


class PurchaseGenerator(BaseGenerator):
    """Generate purchase items referencing generated products."""

    STATUSES = ["pendiente", "pagada", "enviada", "entregada"]

    def generate(self, products: list[dict[str, Any]], tenant_id: str | None = None) -> dict[str, Any]:
        """Generate a purchase of one to three of ``products``.

        Parameters
        ----------
        products : list[dict[str, Any]]
            Catalog to pick line items from; only the tenant's own are used
            when ``tenant_id`` is given.
        tenant_id : str | None
            Owning tenant; defaults to the first picked product's tenant.

        Returns
        -------
        dict[str, Any]
            Item with ``tenant_id`` and ``compra_id`` as its key.
        """
        if not products:
            raise ValueError("A purchase needs at least one product")
        if tenant_id is not None:
            products = [p for p in products if p["tenant_id"] == tenant_id] or products
        picked = self.random.sample(products, k=min(len(products), self.random.randint(1, 3)))
        lines = [
            {
                "codigo": p["codigo"],
                "nombre": p["nombre"],
                "cantidad": self.random.randint(1, 4),
                "precio": p["precio"],
            }
            for p in picked
        ]
        return {
            "tenant_id": tenant_id or picked[0]["tenant_id"],
            "compra_id": f"COMPRA-{self.random.randint(1, 99999999):08d}",
            "user_id": f"user-{self.random.randint(1, 5000):05d}",
            "productos": lines,
            "total": sum((line["precio"] * line["cantidad"] for line in lines), Decimal("0")),
            "estado": self.STATUSES[0],
            "fecha": self.fake.date_time_this_year().isoformat(),
        }

    def advance(self, purchase: dict[str, Any]) -> dict[str, Any]:
        """Return a copy moved to the next status."""
        updated = dict(purchase)
        position = self.STATUSES.index(purchase["estado"])
        updated["estado"] = self.STATUSES[min(position + 1, len(self.STATUSES) - 1)]
        return updated
